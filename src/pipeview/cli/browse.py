from __future__ import annotations

import logging
import pathlib

import click

from pipeview import config, git
from pipeview.cli import decorators as cli_decorators
from pipeview.cli import helpers as cli_helpers

logger = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _redirect_logging(log_file: pathlib.Path | None) -> None:
    """Move logging off the terminal, which the TUI owns while it runs."""
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    if log_file is None:
        root.addHandler(logging.NullHandler())
        return
    handler = logging.FileHandler(log_file, mode="w", encoding="utf-8")
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    root.addHandler(handler)


@click.command()
@click.argument(
    "path",
    required=False,
    type=click.Path(exists=True, file_okay=False, path_type=pathlib.Path),
)
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, path_type=pathlib.Path),
    help="Write logs to this file while the browser runs",
)
@click.option("--limit", "-n", type=click.IntRange(min=1), help="Maximum commits to list")
@cli_decorators.with_error_handling
def browse(path: pathlib.Path | None, log_file: pathlib.Path | None, limit: int | None) -> None:
    """Browse the commit history of PATH (default: current directory).

    The panel below the commit list shows the GitLab pipeline of the
    highlighted commit. Keys: j/k commits, p panel, r refresh, h/l stages,
    J/K jobs, o job log, q quit.
    """
    # Imported here so that other commands do not pay for the textual import
    from pipeview.tui.app import PipeviewApp

    repo_root, cfg = cli_helpers.load_repository(path)
    commits = git.list_commits(repo_root, limit=limit or cfg.panel.commit_limit)
    credentials = config.resolve_credentials(repo_root, cfg)
    if credentials is None:
        logger.warning("GitLab is not configured; the pipeline panel is disabled")

    _redirect_logging(log_file)
    source = cli_helpers.make_client(credentials) if credentials else None
    app = PipeviewApp(commits, source, cfg.panel)
    app.run()
