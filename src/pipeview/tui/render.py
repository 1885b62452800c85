"""Pure rendering of panel states into rich renderables, shared by the TUI and the CLI."""

from __future__ import annotations

from typing import TYPE_CHECKING

import rich.console
import rich.markup
import rich.table
import rich.text

from pipeview import status
from pipeview.panel import (
    Empty,
    Failed,
    Hidden,
    Loaded,
    Loading,
    LogFailed,
    LogLoaded,
    LogLoading,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from pipeview.joblog import LogLine
    from pipeview.panel import JobLogState, PanelState
    from pipeview.types import Job, Stage

__all__ = ["render_log_lines", "render_panel", "state_is_animated"]

# Log lines shown under the pipeline; the tail is what matters for running jobs
_LOG_TAIL_LINES = 200
_MAX_NAME_WIDTH = 24


def _truncate(text: str, width: int = _MAX_NAME_WIDTH) -> str:
    if len(text) <= width:
        return text
    return text[: width - 1] + "…"


def _format_duration(seconds: float | None) -> str:
    if seconds is None:
        return ""
    mins, secs = divmod(max(0, int(seconds)), 60)
    return f"{mins}:{secs:02d}"


def _render_job(job: Job, tick: int, *, selected: bool) -> rich.text.Text:
    style = status.map_status(job.status)
    text = rich.text.Text()
    text.append(status.spinner_glyph(job.status, tick), style=style.color)
    text.append(" ")
    text.append(_truncate(job.name), style="reverse" if selected else "")
    if duration := _format_duration(job.duration):
        text.append(f" {duration}", style="dim")
    if job.allow_failure and job.status == "failed":
        text.append(" (allowed)", style="dim")
    return text


def _render_stage_header(stage: Stage, tick: int) -> rich.text.Text:
    stage_status = stage.status
    style = status.map_status(stage_status)
    header = rich.text.Text()
    header.append(status.spinner_glyph(stage_status, tick), style=style.color)
    header.append(f" {_truncate(stage.name)}", style="bold")
    if stage.has_mixed_failure:
        header.append(" !", style="yellow")
    return header


def render_log_lines(lines: Sequence[LogLine]) -> rich.console.RenderableType:
    """Render parsed log lines, keeping their ANSI colors."""
    if not lines:
        return rich.text.Text("(log is empty)", style="dim")
    rendered = list[rich.text.Text]()
    for line in lines:
        text = rich.text.Text(f"{line.timestamp or '':>8}  ", style="dim")
        text.append_text(rich.text.Text.from_ansi(line.content))
        if line.duration:
            text.append(f"  {line.duration}", style="dim")
        rendered.append(text)
    return rich.console.Group(*rendered)


def _render_log(log: JobLogState) -> rich.console.RenderableType:
    match log:
        case LogLoading(job_id=job_id):
            return rich.text.Text(f"Loading log of job {job_id}...", style="dim")
        case LogFailed(reason=reason):
            return rich.text.Text.from_markup(
                f"[red]✕ {rich.markup.escape(reason)}[/]  [dim]Press r to retry[/]"
            )
        case LogLoaded(lines=lines):
            return render_log_lines(lines[-_LOG_TAIL_LINES:])


def _render_loaded(state: Loaded, tick: int) -> rich.console.RenderableType:
    pipeline = state.pipeline
    style = status.map_status(pipeline.status)
    header = rich.text.Text()
    header.append(status.spinner_glyph(pipeline.status, tick), style=style.color)
    header.append(f" Pipeline #{pipeline.id}", style="bold")
    if pipeline.ref:
        header.append(f"  {pipeline.ref}", style="cyan")
    header.append(f"  {status.status_label(pipeline.status)}", style=style.color)

    if not pipeline.stages:
        return rich.console.Group(header, rich.text.Text("(no jobs)", style="dim"))

    table = rich.table.Table.grid(padding=(0, 3))
    for stage in pipeline.stages:
        table.add_column(header=_render_stage_header(stage, tick), no_wrap=True)
    table.show_header = True

    cursor = state.cursor
    max_jobs = max(len(stage.jobs) for stage in pipeline.stages)
    for row in range(max_jobs):
        cells = list[rich.console.RenderableType]()
        for stage_idx, stage in enumerate(pipeline.stages):
            if row >= len(stage.jobs):
                cells.append("")
                continue
            selected = (
                cursor is not None and cursor.stage_index == stage_idx and cursor.job_index == row
            )
            cells.append(_render_job(stage.jobs[row], tick, selected=selected))
        table.add_row(*cells)

    parts: list[rich.console.RenderableType] = [header, table]
    if state.log is not None:
        job = state.selected_job
        title = f"Log: {job.name}" if job is not None else "Log"
        parts.append(rich.text.Text(f"\n{title}", style="bold underline"))
        parts.append(_render_log(state.log))
    return rich.console.Group(*parts)


def render_panel(state: PanelState, tick: int = 0) -> rich.console.RenderableType:
    """Render a panel state. Pure: reads nothing but its arguments."""
    match state:
        case Hidden():
            return rich.text.Text("")
        case Loading(commit=commit):
            spinner = status.SPINNER_FRAMES[(tick // 4) % len(status.SPINNER_FRAMES)]
            return rich.text.Text(f"{spinner} Loading pipeline for {commit[:8]}...", style="dim")
        case Empty(commit=commit):
            return rich.text.Text(f"No pipeline for {commit[:8]}", style="dim")
        case Failed(reason=reason):
            return rich.text.Text.from_markup(
                f"[red bold]✕ {rich.markup.escape(reason)}[/]\n[dim]{state.hint}[/]"
            )
        case Loaded():
            return _render_loaded(state, tick)


def state_is_animated(state: PanelState) -> bool:
    """Check if the rendering changes with the tick (spinners on screen)."""
    match state:
        case Loading():
            return True
        case Loaded(pipeline=pipeline):
            return status.is_active(pipeline.status) or any(
                status.is_active(job.status) for _, _, job in pipeline.iter_jobs()
            )
        case _:
            return False
