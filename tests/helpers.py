"""Builders and fakes shared by the test suite."""

from __future__ import annotations

import dataclasses
from typing import TYPE_CHECKING, Any

import anyio

from pipeview import exceptions
from pipeview.types import Job, Pipeline, group_jobs_into_stages

if TYPE_CHECKING:
    from collections.abc import Coroutine


def make_job(
    job_id: int,
    stage: str = "test",
    status: str = "success",
    *,
    name: str | None = None,
    allow_failure: bool = False,
    started_at: str | None = None,
) -> Job:
    return Job(
        id=job_id,
        name=name or f"job-{job_id}",
        stage=stage,
        status=status,
        allow_failure=allow_failure,
        started_at=started_at,
    )


def make_pipeline(
    commit: str, *jobs: Job, pipeline_id: int = 1, status: str = "success"
) -> Pipeline:
    return Pipeline(
        id=pipeline_id,
        status=status,
        ref="main",
        sha=commit,
        stages=group_jobs_into_stages(list(jobs)),
    )


class FakeSource:
    """In-memory PipelineSource.

    Maps commits to a Pipeline, or to an exception to raise. An optional
    anyio.Event per commit holds the response until the test sets it.
    """

    pipelines: dict[str, Pipeline | Exception]
    logs: dict[int, str | Exception]
    gates: dict[str, anyio.Event]
    calls: list[str]
    log_calls: list[int]
    closed: bool

    def __init__(
        self,
        pipelines: dict[str, Pipeline | Exception] | None = None,
        logs: dict[int, str | Exception] | None = None,
    ) -> None:
        self.pipelines = dict(pipelines or {})
        self.logs = dict(logs or {})
        self.gates = {}
        self.calls = []
        self.log_calls = []
        self.closed = False

    async def fetch_pipeline_details(self, commit: str, *, timeout: float) -> Pipeline:
        self.calls.append(commit)
        if (gate := self.gates.get(commit)) is not None:
            await gate.wait()
        result = self.pipelines.get(commit, exceptions.PipelineNotFoundError(commit))
        if isinstance(result, Exception):
            raise result
        return result

    async def fetch_job_log(self, job_id: int, *, timeout: float) -> str:
        self.log_calls.append(job_id)
        result = self.logs.get(job_id, exceptions.JobLogNotFoundError(job_id))
        if isinstance(result, Exception):
            raise result
        return result

    async def aclose(self) -> None:
        self.closed = True


@dataclasses.dataclass
class CollectingSpawner:
    """TaskSpawner that collects coroutines so tests choose when each one runs."""

    tasks: list[Coroutine[Any, Any, None]] = dataclasses.field(default_factory=list)

    def __call__(self, task: Coroutine[Any, Any, None], /) -> object:
        self.tasks.append(task)
        return None

    async def run(self, index: int) -> None:
        """Run one collected task to completion (out of spawn order if wanted)."""
        await self.tasks.pop(index)

    async def run_all(self) -> None:
        while self.tasks:
            await self.tasks.pop(0)

    def close(self) -> None:
        """Close coroutines that were never awaited."""
        for task in self.tasks:
            task.close()
        self.tasks.clear()
