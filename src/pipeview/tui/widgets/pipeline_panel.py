from __future__ import annotations

from typing import TYPE_CHECKING

import rich.text
import textual.widgets

from pipeview.panel import Hidden
from pipeview.tui.render import render_panel, state_is_animated

if TYPE_CHECKING:
    from pipeview.panel import PanelState

__all__ = ["PipelinePanel"]


class PipelinePanel(textual.widgets.Static):
    """Bottom panel showing the selected commit's pipeline."""

    _last_state: PanelState | None

    def __init__(self, *, id: str | None = None, classes: str | None = None) -> None:
        super().__init__("", id=id, classes=classes)
        self._last_state = None

    @property
    def last_state(self) -> PanelState | None:
        return self._last_state

    def show_state(self, state: PanelState, tick: int) -> bool:
        """Re-render if the state changed or spinners need a new frame.

        Returns True if the state differs from the one shown before.
        """
        self.display = not isinstance(state, Hidden)
        changed = state != self._last_state
        if not changed and not state_is_animated(state):
            return False
        self._last_state = state
        self.update(render_panel(state, tick))
        return changed

    def show_message(self, message: str) -> None:
        """Show a static message instead of a pipeline (e.g. GitLab not configured)."""
        self.display = True
        self._last_state = None
        self.update(rich.text.Text(message, style="dim"))
