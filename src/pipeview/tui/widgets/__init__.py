from __future__ import annotations

from pipeview.tui.widgets.commit_list import CommitList
from pipeview.tui.widgets.pipeline_panel import PipelinePanel

__all__ = ["CommitList", "PipelinePanel"]
