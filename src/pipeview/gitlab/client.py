"""Async GitLab REST client for pipelines, jobs and job logs."""

from __future__ import annotations

import dataclasses
import logging
import urllib.parse
from typing import TYPE_CHECKING, Any, Protocol, Self

import anyio
import httpx
import pydantic

from pipeview import exceptions
from pipeview.gitlab import models
from pipeview.types import Job, group_jobs_into_stages

if TYPE_CHECKING:
    from types import TracebackType

    from pipeview.types import CommitId, Pipeline

__all__ = ["GitLabClient", "PipelineSource"]

_logger = logging.getLogger(__name__)

JOBS_PER_PAGE = 100
# Upper bound on job pages followed for one pipeline (2000 jobs)
_MAX_JOB_PAGES = 20


class PipelineSource(Protocol):
    """What the controller needs from a CI backend.

    Implementations raise exceptions.GitLabError subclasses and never retry;
    every call is bounded by the caller's timeout.
    """

    async def fetch_pipeline_details(self, commit: CommitId, *, timeout: float) -> Pipeline:
        """Fetch the newest pipeline for a commit, stages and jobs included."""
        ...

    async def fetch_job_log(self, job_id: int, *, timeout: float) -> str:
        """Fetch a job's raw log text."""
        ...

    async def aclose(self) -> None:
        """Release network resources."""
        ...


def _describe_http_error(e: httpx.HTTPError) -> str:
    match e:
        case httpx.TimeoutException():
            return "request timed out"
        case httpx.ConnectError():
            return "could not connect to GitLab"
        case _:
            return f"request failed: {type(e).__name__}"


@dataclasses.dataclass(frozen=True)
class _Endpoint:
    path: str
    what: str


class GitLabClient:
    """Client for one GitLab project.

    The access token is only ever sent as the PRIVATE-TOKEN header; it is not
    logged and never appears in exception messages.
    """

    _base_url: str
    _project: str
    _token: str
    _transport: httpx.AsyncBaseTransport | None
    _http: httpx.AsyncClient | None

    def __init__(
        self,
        base_url: str,
        project: str,
        token: str,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._project = project
        self._token = token
        self._transport = transport
        self._http = None

    @property
    def project_url(self) -> str:
        """API root for the project; path-style ids like group/proj are URL-encoded."""
        return f"{self._base_url}/api/v4/projects/{urllib.parse.quote(self._project, safe='')}"

    def _get_http(self) -> httpx.AsyncClient:
        # Created lazily so the connection pool belongs to the event loop that uses it
        if self._http is None:
            self._http = httpx.AsyncClient(
                headers={"PRIVATE-TOKEN": self._token, "Accept": "application/json"},
                transport=self._transport,
                follow_redirects=True,
            )
        return self._http

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def _get(
        self, endpoint: _Endpoint, *, timeout: float, params: dict[str, Any] | None = None
    ) -> httpx.Response:
        """GET an endpoint, mapping auth and transport failures onto the error taxonomy.

        404 responses are returned to the caller, which knows what "not found" means.
        """
        url = f"{self.project_url}/{endpoint.path}"
        try:
            response = await self._get_http().get(url, params=params, timeout=timeout)
        except httpx.HTTPError as e:
            raise exceptions.TransportError(
                f"Fetching {endpoint.what} failed: {_describe_http_error(e)}"
            ) from e

        if response.status_code in (401, 403):
            raise exceptions.AuthError(
                f"GitLab rejected the access token ({response.status_code}) "
                f"fetching {endpoint.what}"
            )
        if response.status_code != 404 and not response.is_success:
            raise exceptions.TransportError(
                f"GitLab API error {response.status_code} fetching {endpoint.what}"
            )
        return response

    async def _get_json[T](
        self,
        endpoint: _Endpoint,
        adapter: pydantic.TypeAdapter[T],
        *,
        timeout: float,
        params: dict[str, Any] | None = None,
    ) -> tuple[T, httpx.Response]:
        response = await self._get(endpoint, timeout=timeout, params=params)
        if response.status_code == 404:
            raise exceptions.TransportError(
                f"GitLab returned 404 fetching {endpoint.what}; check the project setting"
            )
        try:
            return adapter.validate_json(response.content), response
        except pydantic.ValidationError as e:
            _logger.debug("Malformed %s payload: %s", endpoint.what, e)
            raise exceptions.TransportError(
                f"Malformed response fetching {endpoint.what}"
            ) from e

    async def fetch_pipelines_for_commit(self, commit: CommitId, *, timeout: float) -> Pipeline:
        """Fetch the newest pipeline for a commit, without its jobs.

        Raises:
            PipelineNotFoundError: The remote has no pipeline for this commit.
            AuthError: Credentials rejected.
            TransportError: Timeout, connection failure, non-2xx or malformed body.
        """
        endpoint = _Endpoint("pipelines", f"pipelines for {commit[:8]}")
        try:
            with anyio.fail_after(timeout):
                payloads, _ = await self._get_json(
                    endpoint,
                    models.PIPELINE_LIST,
                    timeout=timeout,
                    params={"sha": commit, "order_by": "id", "sort": "desc"},
                )
        except TimeoutError:
            raise exceptions.TransportError(
                f"Fetching {endpoint.what} timed out after {timeout:g}s"
            ) from None

        if not payloads:
            raise exceptions.PipelineNotFoundError(commit)
        return payloads[0].to_pipeline()

    async def fetch_jobs(self, pipeline_id: int, *, timeout: float) -> list[Job]:
        """Fetch all jobs of a pipeline in remote-reported order, following pagination."""
        endpoint = _Endpoint(f"pipelines/{pipeline_id}/jobs", f"jobs of pipeline {pipeline_id}")
        jobs = list[Job]()
        try:
            with anyio.fail_after(timeout):
                page = "1"
                for _ in range(_MAX_JOB_PAGES):
                    payloads, response = await self._get_json(
                        endpoint,
                        models.JOB_LIST,
                        timeout=timeout,
                        params={"per_page": JOBS_PER_PAGE, "page": page},
                    )
                    jobs.extend(p.to_job() for p in payloads)
                    page = response.headers.get("X-Next-Page", "").strip()
                    if not page:
                        break
                else:
                    _logger.warning(
                        "Pipeline %d has more than %d pages of jobs; showing the first %d",
                        pipeline_id,
                        _MAX_JOB_PAGES,
                        len(jobs),
                    )
        except TimeoutError:
            raise exceptions.TransportError(
                f"Fetching {endpoint.what} timed out after {timeout:g}s"
            ) from None
        return jobs

    async def fetch_job_log(self, job_id: int, *, timeout: float) -> str:
        """Fetch a job's raw log text.

        Raises:
            JobLogNotFoundError: The job has no log.
            AuthError: Credentials rejected.
            TransportError: Timeout, connection failure or non-2xx.
        """
        endpoint = _Endpoint(f"jobs/{job_id}/trace", f"log of job {job_id}")
        try:
            with anyio.fail_after(timeout):
                response = await self._get(endpoint, timeout=timeout)
        except TimeoutError:
            raise exceptions.TransportError(
                f"Fetching {endpoint.what} timed out after {timeout:g}s"
            ) from None

        if response.status_code == 404:
            raise exceptions.JobLogNotFoundError(job_id)
        return response.text

    async def fetch_pipeline_details(self, commit: CommitId, *, timeout: float) -> Pipeline:
        """Fetch the newest pipeline for a commit with its jobs grouped into stages.

        Each of the two round trips is bounded by timeout.
        """
        pipeline = await self.fetch_pipelines_for_commit(commit, timeout=timeout)
        jobs = await self.fetch_jobs(pipeline.id, timeout=timeout)
        _logger.debug("Pipeline %d for %s has %d jobs", pipeline.id, commit[:8], len(jobs))
        return dataclasses.replace(pipeline, stages=group_jobs_into_stages(jobs))
