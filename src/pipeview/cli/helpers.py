from __future__ import annotations

import pathlib
from typing import TYPE_CHECKING

from pipeview import config, git
from pipeview.gitlab.client import GitLabClient

if TYPE_CHECKING:
    import click

    from pipeview.cli import CliContext
    from pipeview.config import GitLabCredentials, PipeviewConfig


def get_cli_context(ctx: click.Context) -> CliContext:
    """Get CLI context with defaults if not set."""
    if ctx.obj:
        return ctx.obj
    return {"verbose": False, "quiet": False}


def load_repository(path: pathlib.Path | None) -> tuple[pathlib.Path, PipeviewConfig]:
    """Find the repository root from path (or the cwd) and load its config."""
    repo_root = git.find_repo_root(path or pathlib.Path.cwd())
    return repo_root, config.load_config(repo_root)


def make_client(credentials: GitLabCredentials) -> GitLabClient:
    return GitLabClient(
        credentials.url, credentials.project, credentials.token.get_secret_value()
    )
