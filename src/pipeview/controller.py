"""Pipeline panel state machine.

The controller is the only writer of the caches and the generation counter.
Fetches run as background tasks that never touch controller state: each one
sends a result tagged with the generation current when it was spawned over a
memory channel, and the UI loop calls drain() once per frame to apply them.
A result whose generation no longer matches is dropped, so a slow response for
a previously selected commit can never overwrite a newer selection.
"""

from __future__ import annotations

import dataclasses
import logging
import math
import time
from typing import TYPE_CHECKING, Any, Protocol

import anyio

from pipeview import exceptions, joblog
from pipeview.cache import EntryCache
from pipeview.panel import (
    Empty,
    Failed,
    Hidden,
    JobCursor,
    Loaded,
    Loading,
    LogFailed,
    LogLoaded,
    LogLoading,
)
from pipeview.types import (
    CacheEntry,
    FailureKind,
    FetchFailure,
    JobLogFound,
    JobStatus,
    PipelineAbsent,
    PipelineFound,
)

if TYPE_CHECKING:
    from collections.abc import Coroutine

    from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream

    from pipeview.gitlab.client import PipelineSource
    from pipeview.panel import JobLogState, PanelState
    from pipeview.types import CommitId, JobLogOutcome, Pipeline, PipelineOutcome

__all__ = [
    "DEFAULT_REQUEST_TIMEOUT",
    "JobLogResult",
    "PipelineController",
    "PipelineResult",
    "TaskSpawner",
    "pick_initial_cursor",
]

_logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 10.0


class TaskSpawner(Protocol):
    """Schedules a coroutine to run in the background without waiting for it.

    In the TUI this is App.run_worker; tests collect the coroutines and await
    them in whatever order they need.
    """

    def __call__(self, task: Coroutine[Any, Any, None], /) -> object: ...


@dataclasses.dataclass(frozen=True)
class PipelineResult:
    commit: CommitId
    generation: int
    outcome: PipelineOutcome


@dataclasses.dataclass(frozen=True)
class JobLogResult:
    job_id: int
    generation: int
    outcome: JobLogOutcome


FetchResult = PipelineResult | JobLogResult


def _failure_from(e: exceptions.GitLabError) -> FetchFailure:
    kind = FailureKind.AUTH if isinstance(e, exceptions.AuthError) else FailureKind.TRANSPORT
    return FetchFailure(kind=kind, reason=str(e))


def pick_initial_cursor(pipeline: Pipeline) -> JobCursor | None:
    """Place the cursor on the most recently started running job, else the first failed one."""
    jobs = pipeline.iter_jobs()
    if not jobs:
        return None

    running = [
        (job.started_at or "", stage_idx, job_idx)
        for stage_idx, job_idx, job in jobs
        if job.status == JobStatus.RUNNING
    ]
    if running:
        # max() keeps the first job among equal timestamps
        _, stage_idx, job_idx = max(running, key=lambda r: r[0])
        return JobCursor(stage_idx, job_idx)

    for stage_idx, job_idx, job in jobs:
        if job.status == JobStatus.FAILED:
            return JobCursor(stage_idx, job_idx)

    stage_idx, job_idx, _ = jobs[0]
    return JobCursor(stage_idx, job_idx)


class PipelineController:
    """Owns the pipeline cache, the generation counter and the panel toggles."""

    _source: PipelineSource
    _spawn: TaskSpawner
    _request_timeout: float
    _cache: EntryCache[CommitId, PipelineOutcome]
    _log_cache: EntryCache[int, JobLogOutcome]
    _send: MemoryObjectSendStream[FetchResult]
    _receive: MemoryObjectReceiveStream[FetchResult]
    _in_flight: set[tuple[str, CommitId | int, int]]

    def __init__(
        self,
        source: PipelineSource,
        spawn: TaskSpawner,
        *,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        cache_size: int = 100,
        log_cache_size: int = 50,
        visible: bool = True,
    ) -> None:
        if request_timeout <= 0:
            raise ValueError(f"request_timeout must be positive, got {request_timeout}")
        self._source = source
        self._spawn = spawn
        self._request_timeout = request_timeout
        self._cache = EntryCache(cache_size)
        self._log_cache = EntryCache(log_cache_size)
        # Unbounded: producers must never block, and the UI drains every frame
        self._send, self._receive = anyio.create_memory_object_stream[FetchResult](math.inf)
        self._in_flight = set()

        self._generation: int = 0
        self._commit: CommitId | None = None
        self._visible: bool = visible
        self._cursor: JobCursor | None = None
        # Job whose log is shown; None while the log view is off
        self._log_job_id: int | None = None
        self._closed: bool = False

    # =========================================================================
    # Read-only views
    # =========================================================================

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def selected_commit(self) -> CommitId | None:
        return self._commit

    @property
    def visible(self) -> bool:
        return self._visible

    @property
    def in_flight(self) -> int:
        """Number of spawned fetches whose results have not been drained yet."""
        return len(self._in_flight)

    @property
    def cache(self) -> EntryCache[CommitId, PipelineOutcome]:
        return self._cache

    @property
    def log_cache(self) -> EntryCache[int, JobLogOutcome]:
        return self._log_cache

    def snapshot(self) -> PanelState:
        """Derive the panel state from the cache, the generation and the toggles."""
        commit = self._commit
        if not self._visible or commit is None:
            return Hidden()

        entry = self._cache.get(commit)
        if entry is None:
            return Loading(commit)

        match entry.outcome:
            case PipelineFound(pipeline=pipeline):
                return Loaded(pipeline, cursor=self._cursor, log=self._log_state())
            case PipelineAbsent():
                return Empty(commit)
            case FetchFailure(kind=kind, reason=reason):
                # An older failure while a retry for this generation is in flight
                if entry.generation != self._generation:
                    return Loading(commit)
                return Failed(commit, kind, reason)

    def _log_state(self) -> JobLogState | None:
        job_id = self._log_job_id
        if job_id is None:
            return None

        entry = self._log_cache.get(job_id)
        if entry is None:
            return LogLoading(job_id)
        match entry.outcome:
            case JobLogFound(lines=lines):
                return LogLoaded(job_id, lines)
            case FetchFailure(reason=reason):
                if entry.generation != self._generation:
                    return LogLoading(job_id)
                return LogFailed(job_id, reason)

    def _loaded_pipeline(self) -> Pipeline | None:
        if self._commit is None:
            return None
        entry = self._cache.get(self._commit)
        if entry is not None and isinstance(entry.outcome, PipelineFound):
            return entry.outcome.pipeline
        return None

    # =========================================================================
    # Commands
    # =========================================================================

    def select_commit(self, commit: CommitId | None) -> None:
        """Handle a selection change in the commit list."""
        if commit == self._commit:
            return

        self._commit = commit
        self._generation += 1
        self._cursor = None
        self._log_job_id = None
        if commit is None:
            return

        entry = self._cache.get(commit)
        if entry is not None and entry.is_fresh:
            _logger.debug("Cache hit for %s (generation %d)", commit[:8], self._generation)
            if isinstance(entry.outcome, PipelineFound):
                self._cursor = pick_initial_cursor(entry.outcome.pipeline)
            return

        self._spawn_pipeline_fetch(commit)

    def refresh(self) -> None:
        """Invalidate the selected commit and fetch it again, bypassing the cache."""
        commit = self._commit
        if commit is None:
            return

        if (pipeline := self._loaded_pipeline()) is not None:
            for _, _, job in pipeline.iter_jobs():
                self._log_cache.invalidate(job.id)
        self._cache.invalidate(commit)
        self._generation += 1
        _logger.debug("Refreshing %s (generation %d)", commit[:8], self._generation)

        self._spawn_pipeline_fetch(commit)
        if self._log_job_id is not None:
            self._log_cache.invalidate(self._log_job_id)
            self._spawn_log_fetch(self._log_job_id)

    def toggle_panel(self) -> bool:
        """Show or hide the panel. In-flight fetches and the cache are left alone."""
        self._visible = not self._visible
        return self._visible

    def toggle_job_log(self) -> None:
        """Show or hide the log of the job under the cursor.

        Hiding does not cancel a log fetch in flight; its result still lands in
        the log cache.
        """
        if self._log_job_id is not None:
            self._log_job_id = None
            return

        snapshot = self.snapshot()
        if not isinstance(snapshot, Loaded) or (job := snapshot.selected_job) is None:
            return

        self._log_job_id = job.id
        entry = self._log_cache.get(job.id)
        if entry is not None:
            if entry.is_fresh:
                return
            # Retry of a failed log: show Loading rather than the old failure
            self._log_cache.invalidate(job.id)
        self._spawn_log_fetch(job.id)

    def move_stage(self, delta: int) -> None:
        """Move the cursor to a neighbouring stage (first job), closing any open log."""
        pipeline = self._loaded_pipeline()
        if pipeline is None or not pipeline.stages:
            return
        current = self._cursor.stage_index if self._cursor else 0
        stage_idx = min(max(current + delta, 0), len(pipeline.stages) - 1)
        if not pipeline.stages[stage_idx].jobs:
            return
        self._set_cursor(JobCursor(stage_idx, 0))

    def move_job(self, delta: int) -> None:
        """Move the cursor within the current stage, closing any open log."""
        pipeline = self._loaded_pipeline()
        if pipeline is None or self._cursor is None:
            return
        jobs = pipeline.stages[self._cursor.stage_index].jobs
        job_idx = min(max(self._cursor.job_index + delta, 0), len(jobs) - 1)
        self._set_cursor(JobCursor(self._cursor.stage_index, job_idx))

    def _set_cursor(self, cursor: JobCursor) -> None:
        if cursor != self._cursor:
            self._cursor = cursor
            self._log_job_id = None

    # =========================================================================
    # Frame update
    # =========================================================================

    def drain(self) -> bool:
        """Apply every completed fetch result. Returns True if the view may have changed."""
        if self._closed:
            return False
        changed = False
        while True:
            try:
                result = self._receive.receive_nowait()
            except anyio.WouldBlock:
                break
            changed |= self._apply(result)
        return changed

    def _apply(self, result: FetchResult) -> bool:
        match result:
            case PipelineResult(commit=commit, generation=generation, outcome=outcome):
                self._in_flight.discard(("pipeline", commit, generation))
                if generation != self._generation:
                    _logger.debug(
                        "Discarding stale pipeline result for %s (generation %d, current %d)",
                        commit[:8],
                        generation,
                        self._generation,
                    )
                    return False
                self._cache.put(commit, CacheEntry(outcome, time.time(), generation))
                if isinstance(outcome, PipelineFound):
                    self._cursor = self._clamp_cursor(outcome.pipeline)
                    self._follow_log(outcome.pipeline)
                return True
            case JobLogResult(job_id=job_id, generation=generation, outcome=outcome):
                self._in_flight.discard(("log", job_id, generation))
                if generation != self._generation:
                    _logger.debug(
                        "Discarding stale log result for job %d (generation %d, current %d)",
                        job_id,
                        generation,
                        self._generation,
                    )
                    return False
                self._log_cache.put(job_id, CacheEntry(outcome, time.time(), generation))
                return job_id == self._log_job_id

    def _follow_log(self, pipeline: Pipeline) -> None:
        """Move an open log to the job under the cursor once its job left the pipeline.

        A retried job comes back with a new id, so the old log would never refresh.
        """
        if self._log_job_id is None:
            return
        if any(job.id == self._log_job_id for _, _, job in pipeline.iter_jobs()):
            return
        job = Loaded(pipeline, cursor=self._cursor).selected_job
        if job is None:
            self._log_job_id = None
            return
        _logger.debug("Job %d is gone, showing log of job %d", self._log_job_id, job.id)
        self._log_job_id = job.id
        entry = self._log_cache.get(job.id)
        if entry is not None and entry.is_fresh:
            return
        self._log_cache.invalidate(job.id)
        self._spawn_log_fetch(job.id)

    def _clamp_cursor(self, pipeline: Pipeline) -> JobCursor | None:
        """Keep the cursor across a refresh if it still points at a job."""
        cursor = self._cursor
        if cursor is not None and cursor.stage_index < len(pipeline.stages):
            jobs = pipeline.stages[cursor.stage_index].jobs
            if jobs:
                return JobCursor(cursor.stage_index, min(cursor.job_index, len(jobs) - 1))
        return pick_initial_cursor(pipeline)

    # =========================================================================
    # Background tasks
    # =========================================================================

    def _spawn_pipeline_fetch(self, commit: CommitId) -> None:
        key = ("pipeline", commit, self._generation)
        if key in self._in_flight:
            _logger.debug("Fetch for %s already in flight", commit[:8])
            return
        self._in_flight.add(key)
        self._spawn(self._fetch_pipeline(commit, self._generation))

    def _spawn_log_fetch(self, job_id: int) -> None:
        key = ("log", job_id, self._generation)
        if key in self._in_flight:
            _logger.debug("Log fetch for job %d already in flight", job_id)
            return
        self._in_flight.add(key)
        self._spawn(self._fetch_job_log(job_id, self._generation))

    async def _fetch_pipeline(self, commit: CommitId, generation: int) -> None:
        outcome: PipelineOutcome
        try:
            pipeline = await self._source.fetch_pipeline_details(
                commit, timeout=self._request_timeout
            )
            outcome = PipelineFound(pipeline)
        except exceptions.PipelineNotFoundError:
            outcome = PipelineAbsent()
        except exceptions.GitLabError as e:
            _logger.debug("Pipeline fetch for %s failed: %s", commit[:8], e)
            outcome = _failure_from(e)
        except Exception:
            _logger.exception("Unexpected error fetching pipeline for %s", commit[:8])
            outcome = FetchFailure(FailureKind.TRANSPORT, "Unexpected error fetching pipeline")
        self._publish(PipelineResult(commit, generation, outcome))

    async def _fetch_job_log(self, job_id: int, generation: int) -> None:
        outcome: JobLogOutcome
        try:
            raw = await self._source.fetch_job_log(job_id, timeout=self._request_timeout)
            outcome = JobLogFound(job_id, tuple(joblog.parse_job_log(raw)))
        except exceptions.JobLogNotFoundError:
            outcome = JobLogFound(job_id, ())
        except exceptions.GitLabError as e:
            _logger.debug("Log fetch for job %d failed: %s", job_id, e)
            outcome = _failure_from(e)
        except Exception:
            _logger.exception("Unexpected error fetching log for job %d", job_id)
            outcome = FetchFailure(FailureKind.TRANSPORT, "Unexpected error fetching job log")
        self._publish(JobLogResult(job_id, generation, outcome))

    def _publish(self, result: FetchResult) -> None:
        if self._closed:
            _logger.debug("Controller closed, dropping %s", type(result).__name__)
            return
        self._send.send_nowait(result)

    def close(self) -> None:
        """Close the result channel. Results of tasks still running are dropped."""
        if self._closed:
            return
        self._closed = True
        self._send.close()
        self._receive.close()
