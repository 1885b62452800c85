from __future__ import annotations

from pipeview.gitlab.client import GitLabClient, PipelineSource

__all__ = ["GitLabClient", "PipelineSource"]
