from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, ClassVar, override

import textual.app
import textual.binding
import textual.containers
import textual.css.query
import textual.timer
import textual.widgets

from pipeview.config.models import PanelSettings
from pipeview.controller import PipelineController
from pipeview.panel import Loaded
from pipeview.tui.widgets.commit_list import CommitList
from pipeview.tui.widgets.pipeline_panel import PipelinePanel

if TYPE_CHECKING:
    from collections.abc import Coroutine

    from pipeview.git import CommitSummary
    from pipeview.gitlab.client import PipelineSource
    from pipeview.panel import PanelState

__all__ = ["PipeviewApp"]

_logger = logging.getLogger(__name__)

_TUI_CSS = """
#commit-list {
    height: 1fr;
    border: none;
}

#pipeline-view {
    height: auto;
    max-height: 60%;
}

#pipeline-panel {
    height: auto;
    border-top: solid $primary;
    padding: 0 1;
}
"""

_TUI_BINDINGS: list[textual.binding.BindingType] = [
    textual.binding.Binding("q", "quit", "Quit"),
    # Commit navigation
    textual.binding.Binding("j", "commit_down", "Down", show=False),
    textual.binding.Binding("k", "commit_up", "Up", show=False),
    # Pipeline panel
    textual.binding.Binding("p", "toggle_panel", "Pipeline"),
    textual.binding.Binding("r", "refresh", "Refresh"),
    textual.binding.Binding("o", "toggle_job_log", "Job Log"),
    # Job cursor: h/l across stages, J/K within a stage
    textual.binding.Binding("h", "stage_prev", "Prev Stage", show=False),
    textual.binding.Binding("l", "stage_next", "Next Stage", show=False),
    textual.binding.Binding("K", "job_prev", "Prev Job", show=False),
    textual.binding.Binding("J", "job_next", "Next Job", show=False),
]

NOT_CONFIGURED_MESSAGE = (
    "GitLab is not configured. Set gitlab.url and gitlab.project in .pipeview/config.yaml "
    "(or add a GitLab remote) and store a token with 'pipeview token set <host>'."
)


class PipeviewApp(textual.app.App[None]):
    """Commit history browser with a CI pipeline panel for the selected commit."""

    CSS: ClassVar[str] = _TUI_CSS
    BINDINGS: ClassVar[list[textual.binding.BindingType]] = _TUI_BINDINGS
    TITLE = "pipeview"

    _commits: list[CommitSummary]
    _source: PipelineSource | None
    _controller: PipelineController | None
    _settings: PanelSettings
    _not_configured_message: str
    _tick: int
    _frame_timer: textual.timer.Timer | None

    def __init__(
        self,
        commits: list[CommitSummary],
        source: PipelineSource | None,
        settings: PanelSettings | None = None,
        *,
        not_configured_message: str = NOT_CONFIGURED_MESSAGE,
    ) -> None:
        super().__init__()
        self._commits = commits
        self._source = source
        self._settings = settings or PanelSettings()
        self._not_configured_message = not_configured_message
        self._tick = 0
        self._frame_timer = None
        self._controller = None
        if source is not None:
            self._controller = PipelineController(
                source,
                self._spawn,
                request_timeout=self._settings.request_timeout,
                cache_size=self._settings.cache_size,
                log_cache_size=self._settings.log_cache_size,
                visible=self._settings.visible,
            )

    @property
    def controller(self) -> PipelineController | None:
        return self._controller

    def _spawn(self, task: Coroutine[Any, Any, None]) -> object:
        return self.run_worker(task, group="pipeline", exit_on_error=False)

    @override
    def compose(self) -> textual.app.ComposeResult:  # pragma: no cover
        yield textual.widgets.Header()
        yield CommitList(self._commits, id="commit-list")
        with textual.containers.VerticalScroll(id="pipeline-view"):
            yield PipelinePanel(id="pipeline-panel")
        yield textual.widgets.Footer()

    def on_mount(self) -> None:  # pragma: no cover
        _logger.debug("Browsing %d commits", len(self._commits))
        commit_list = self.query_one("#commit-list", CommitList)
        commit_list.focus()
        if self._commits:
            commit_list.highlighted = 0

        if self._controller is None:
            self.query_one("#pipeline-panel", PipelinePanel).show_message(
                self._not_configured_message
            )
            return

        if self._commits:
            self._controller.select_commit(self._commits[0].sha)
        self._frame_timer = self.set_interval(self._settings.frame_interval, self._on_frame)
        self._render_panel()

    async def on_unmount(self) -> None:  # pragma: no cover
        if self._frame_timer is not None:
            self._frame_timer.stop()
        if self._controller is not None:
            self._controller.close()
        if self._source is not None:
            await self._source.aclose()

    def _on_frame(self) -> None:  # pragma: no cover
        """Apply finished fetches and redraw; runs once per frame."""
        if self._controller is None:
            return
        self._controller.drain()
        self._tick += 1
        self._render_panel()

    def _render_panel(self) -> None:  # pragma: no cover
        if self._controller is None:
            return
        state: PanelState = self._controller.snapshot()
        try:
            panel = self.query_one("#pipeline-panel", PipelinePanel)
            view = self.query_one("#pipeline-view", textual.containers.VerticalScroll)
        except textual.css.query.NoMatches:
            # Frame timer can still fire while the screen is being torn down
            _logger.debug("pipeline-panel not found during render")
            return
        changed = panel.show_state(state, self._tick)
        if changed and isinstance(state, Loaded) and state.log is not None:
            # Keep the tail of the job log in view
            view.scroll_end(animate=False)

    def on_option_list_option_highlighted(
        self, event: textual.widgets.OptionList.OptionHighlighted
    ) -> None:  # pragma: no cover
        if self._controller is None:
            return
        commit = self.query_one("#commit-list", CommitList).commit_at(event.option_index)
        if commit is None:
            return
        self._controller.select_commit(commit.sha)
        self._render_panel()

    # =========================================================================
    # Actions
    # =========================================================================

    def action_commit_down(self) -> None:  # pragma: no cover
        self.query_one("#commit-list", CommitList).action_cursor_down()

    def action_commit_up(self) -> None:  # pragma: no cover
        self.query_one("#commit-list", CommitList).action_cursor_up()

    def action_toggle_panel(self) -> None:  # pragma: no cover
        if self._controller is None:
            panel = self.query_one("#pipeline-panel", PipelinePanel)
            panel.display = not panel.display
            return
        self._controller.toggle_panel()
        self._render_panel()

    def action_refresh(self) -> None:  # pragma: no cover
        if self._controller is None:
            self.notify(self._not_configured_message, severity="warning")
            return
        self._controller.refresh()
        self._render_panel()

    def action_toggle_job_log(self) -> None:  # pragma: no cover
        if self._controller is None:
            return
        self._controller.toggle_job_log()
        self._render_panel()

    def action_stage_prev(self) -> None:  # pragma: no cover
        self._move_cursor(stage_delta=-1)

    def action_stage_next(self) -> None:  # pragma: no cover
        self._move_cursor(stage_delta=1)

    def action_job_prev(self) -> None:  # pragma: no cover
        self._move_cursor(job_delta=-1)

    def action_job_next(self) -> None:  # pragma: no cover
        self._move_cursor(job_delta=1)

    def _move_cursor(self, *, stage_delta: int = 0, job_delta: int = 0) -> None:  # pragma: no cover
        if self._controller is None:
            return
        if stage_delta:
            self._controller.move_stage(stage_delta)
        if job_delta:
            self._controller.move_job(job_delta)
        self._render_panel()
