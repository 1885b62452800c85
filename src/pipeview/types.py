from __future__ import annotations

import dataclasses
import enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pipeview.joblog import LogLine

# Opaque full commit SHA; the identity key for cache lookups and generation tagging
CommitId = str


class JobStatus(enum.StrEnum):
    """Status strings reported by GitLab for jobs and pipelines."""

    CREATED = "created"
    WAITING_FOR_RESOURCE = "waiting_for_resource"
    PREPARING = "preparing"
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELING = "canceling"
    CANCELED = "canceled"
    SKIPPED = "skipped"
    MANUAL = "manual"
    SCHEDULED = "scheduled"


# Statuses that mean "queued but not yet running"
PENDING_STATUSES: frozenset[str] = frozenset(
    {JobStatus.PENDING, JobStatus.WAITING_FOR_RESOURCE, JobStatus.PREPARING}
)


class DisplayCategory(enum.StrEnum):
    """Display bucket for a remote status."""

    SUCCESS = "success"
    FAILED = "failed"
    RUNNING = "running"
    PENDING = "pending"
    CANCELED = "canceled"
    SKIPPED = "skipped"
    MANUAL = "manual"
    UNKNOWN = "unknown"


class FailureKind(enum.StrEnum):
    """Why a fetch failed; AUTH needs user action, TRANSPORT can be retried."""

    AUTH = "auth"
    TRANSPORT = "transport"


@dataclasses.dataclass(frozen=True)
class Job:
    """A single unit of work within a stage."""

    id: int
    name: str
    stage: str
    # Raw remote value; unrecognized strings are kept and mapped to UNKNOWN for display
    status: str
    allow_failure: bool = False
    duration: float | None = None
    started_at: str | None = None
    web_url: str | None = None


@dataclasses.dataclass(frozen=True)
class Stage:
    """A named grouping of jobs, in remote-reported order."""

    name: str
    jobs: tuple[Job, ...] = ()

    @property
    def status(self) -> str:
        """Aggregate status of the stage's jobs.

        Failures of jobs marked allow_failure don't fail the stage.
        """
        has_running = False
        has_pending = False
        for job in self.jobs:
            if job.status == JobStatus.FAILED and not job.allow_failure:
                return JobStatus.FAILED
            if job.status == JobStatus.RUNNING:
                has_running = True
            elif job.status in PENDING_STATUSES:
                has_pending = True

        if has_running:
            return JobStatus.RUNNING
        if has_pending:
            return JobStatus.PENDING
        if self.jobs and all(
            j.status == JobStatus.SUCCESS or (j.status == JobStatus.FAILED and j.allow_failure)
            for j in self.jobs
        ):
            return JobStatus.SUCCESS
        if self.jobs and all(j.status == JobStatus.SKIPPED for j in self.jobs):
            return JobStatus.SKIPPED
        return JobStatus.CREATED

    @property
    def has_mixed_failure(self) -> bool:
        """True if some job really failed while others did not."""
        real_failure = any(j.status == JobStatus.FAILED and not j.allow_failure for j in self.jobs)
        non_failure = any(j.status != JobStatus.FAILED or j.allow_failure for j in self.jobs)
        return real_failure and non_failure


@dataclasses.dataclass(frozen=True)
class Pipeline:
    """A CI/CD run for one commit. Zero stages is valid."""

    id: int
    status: str
    ref: str | None
    sha: CommitId
    web_url: str | None = None
    stages: tuple[Stage, ...] = ()

    def iter_jobs(self) -> list[tuple[int, int, Job]]:
        """Return (stage_index, job_index, job) for every job in display order."""
        return [
            (stage_idx, job_idx, job)
            for stage_idx, stage in enumerate(self.stages)
            for job_idx, job in enumerate(stage.jobs)
        ]


def group_jobs_into_stages(jobs: list[Job]) -> tuple[Stage, ...]:
    """Group jobs by their stage field, preserving first-seen stage order."""
    grouped = dict[str, list[Job]]()
    for job in jobs:
        grouped.setdefault(job.stage, []).append(job)
    return tuple(Stage(name, tuple(stage_jobs)) for name, stage_jobs in grouped.items())


# =============================================================================
# Fetch outcomes and cache entries
# =============================================================================


@dataclasses.dataclass(frozen=True)
class PipelineFound:
    """A pipeline snapshot, stages included."""

    pipeline: Pipeline


@dataclasses.dataclass(frozen=True)
class PipelineAbsent:
    """The remote has no pipeline for the commit. A successful fetch, not an error."""


@dataclasses.dataclass(frozen=True)
class JobLogFound:
    """Parsed log lines for a job; empty when the job has no log yet."""

    job_id: int
    lines: tuple[LogLine, ...]


@dataclasses.dataclass(frozen=True)
class FetchFailure:
    """A fetch that ended in an auth or transport error."""

    kind: FailureKind
    reason: str


PipelineOutcome = PipelineFound | PipelineAbsent | FetchFailure
JobLogOutcome = JobLogFound | FetchFailure


@dataclasses.dataclass(frozen=True)
class CacheEntry[O]:
    """Last known outcome for a key, plus when and by which generation it was fetched."""

    outcome: O
    fetched_at: float
    generation: int

    @property
    def is_fresh(self) -> bool:
        """Successful fetches are served without a network call; failures are not."""
        return not isinstance(self.outcome, FetchFailure)
