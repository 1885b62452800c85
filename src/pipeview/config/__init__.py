from __future__ import annotations

from pipeview.config.io import (
    get_local_config_path,
    get_token,
    get_token_store_path,
    load_config,
    resolve_credentials,
    save_token,
)
from pipeview.config.models import GitLabCredentials, GitLabSettings, PanelSettings, PipeviewConfig

__all__ = [
    "GitLabCredentials",
    "GitLabSettings",
    "PanelSettings",
    "PipeviewConfig",
    "get_local_config_path",
    "get_token",
    "get_token_store_path",
    "load_config",
    "resolve_credentials",
    "save_token",
]
