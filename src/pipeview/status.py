from __future__ import annotations

from typing import NamedTuple

from pipeview.types import PENDING_STATUSES, DisplayCategory, JobStatus

__all__ = [
    "SPINNER_FRAMES",
    "StatusStyle",
    "is_active",
    "map_status",
    "spinner_glyph",
    "status_label",
]

SPINNER_FRAMES: tuple[str, ...] = ("◜", "◠", "◝", "◞", "◡", "◟")

# Frame ticks per spinner step; pending spins slower than running
_RUNNING_TICKS_PER_FRAME = 4
_PENDING_TICKS_PER_FRAME = 6


class StatusStyle(NamedTuple):
    """Display attributes for a remote status."""

    category: DisplayCategory
    glyph: str
    color: str


_SUCCESS = StatusStyle(DisplayCategory.SUCCESS, "●", "green")
_FAILED = StatusStyle(DisplayCategory.FAILED, "✕", "red")
_RUNNING = StatusStyle(DisplayCategory.RUNNING, "◐", "cyan")
_PENDING = StatusStyle(DisplayCategory.PENDING, "○", "yellow")
_CREATED = StatusStyle(DisplayCategory.PENDING, "◯", "white")
_CANCELED = StatusStyle(DisplayCategory.CANCELED, "⊘", "yellow dim")
_SKIPPED = StatusStyle(DisplayCategory.SKIPPED, "⊘", "dim")
_MANUAL = StatusStyle(DisplayCategory.MANUAL, "▶", "magenta")
_UNKNOWN = StatusStyle(DisplayCategory.UNKNOWN, "?", "dim")

_STATUS_STYLES: dict[str, StatusStyle] = {
    JobStatus.SUCCESS: _SUCCESS,
    JobStatus.FAILED: _FAILED,
    JobStatus.RUNNING: _RUNNING,
    JobStatus.PENDING: _PENDING,
    JobStatus.WAITING_FOR_RESOURCE: _PENDING,
    JobStatus.PREPARING: _PENDING,
    JobStatus.CREATED: _CREATED,
    JobStatus.SCHEDULED: _CREATED,
    JobStatus.CANCELED: _CANCELED,
    JobStatus.CANCELING: _CANCELED,
    JobStatus.SKIPPED: _SKIPPED,
    JobStatus.MANUAL: _MANUAL,
}


def map_status(status: str) -> StatusStyle:
    """Map a remote job/pipeline status to its display category, glyph and color.

    Total: statuses GitLab may add in the future map to UNKNOWN instead of raising.
    """
    return _STATUS_STYLES.get(status.strip().lower(), _UNKNOWN)


def is_active(status: str) -> bool:
    """Check if the status means work is queued or in progress."""
    normalized = status.strip().lower()
    return normalized == JobStatus.RUNNING or normalized in PENDING_STATUSES


def spinner_glyph(status: str, tick: int) -> str:
    """Get the glyph for a status, animated for running and pending statuses."""
    style = map_status(status)
    match style.category:
        case DisplayCategory.RUNNING:
            return SPINNER_FRAMES[(tick // _RUNNING_TICKS_PER_FRAME) % len(SPINNER_FRAMES)]
        case DisplayCategory.PENDING if is_active(status):
            return SPINNER_FRAMES[(tick // _PENDING_TICKS_PER_FRAME) % len(SPINNER_FRAMES)]
        case _:
            return style.glyph


def status_label(status: str) -> str:
    """Get a short uppercase label for headers (raw status for known values)."""
    style = map_status(status)
    if style.category == DisplayCategory.UNKNOWN:
        return "UNKNOWN"
    return status.strip().lower().replace("_", " ").upper()
