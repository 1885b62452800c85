"""Per-frame view model consumed by the rendering layer.

Every value here is immutable pure data; widgets never reach back into the
controller or the network.
"""

from __future__ import annotations

import dataclasses
from typing import TYPE_CHECKING

from pipeview.types import FailureKind

if TYPE_CHECKING:
    from pipeview.joblog import LogLine
    from pipeview.types import CommitId, Job, Pipeline


@dataclasses.dataclass(frozen=True)
class JobCursor:
    """Selected job within a loaded pipeline."""

    stage_index: int
    job_index: int


# =============================================================================
# Job log sub-state (only present while the log view is on)
# =============================================================================


@dataclasses.dataclass(frozen=True)
class LogLoading:
    job_id: int


@dataclasses.dataclass(frozen=True)
class LogLoaded:
    job_id: int
    lines: tuple[LogLine, ...]


@dataclasses.dataclass(frozen=True)
class LogFailed:
    job_id: int
    reason: str


JobLogState = LogLoading | LogLoaded | LogFailed


# =============================================================================
# Panel states
# =============================================================================


@dataclasses.dataclass(frozen=True)
class Hidden:
    """Panel toggled off, or no commit selected."""


@dataclasses.dataclass(frozen=True)
class Loading:
    commit: CommitId


@dataclasses.dataclass(frozen=True)
class Loaded:
    pipeline: Pipeline
    cursor: JobCursor | None = None
    log: JobLogState | None = None

    @property
    def selected_job(self) -> Job | None:
        if self.cursor is None:
            return None
        try:
            stage = self.pipeline.stages[self.cursor.stage_index]
            return stage.jobs[self.cursor.job_index]
        except IndexError:
            return None


@dataclasses.dataclass(frozen=True)
class Empty:
    """The remote has no pipeline for this commit."""

    commit: CommitId


@dataclasses.dataclass(frozen=True)
class Failed:
    commit: CommitId
    kind: FailureKind
    reason: str

    @property
    def hint(self) -> str:
        if self.kind == FailureKind.AUTH:
            return "Check the access token, then press r to retry"
        return "Press r to retry"


PanelState = Hidden | Loading | Loaded | Empty | Failed
