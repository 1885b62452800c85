from __future__ import annotations

import logging
import pathlib
from typing import TYPE_CHECKING

import anyio
import click
import rich.console
import rich.markup

from pipeview import config, exceptions, git, joblog
from pipeview.cli import decorators as cli_decorators
from pipeview.cli import helpers as cli_helpers
from pipeview.panel import Empty, Loaded
from pipeview.tui.render import render_log_lines, render_panel

if TYPE_CHECKING:
    from pipeview.gitlab.client import GitLabClient
    from pipeview.types import Pipeline

logger = logging.getLogger(__name__)


async def _fetch(
    client: GitLabClient, commit: str, job_name: str | None, timeout: float
) -> tuple[Pipeline | None, str | None]:
    """Fetch the pipeline of a commit and, optionally, the raw log of one of its jobs."""
    async with client:
        try:
            pipeline = await client.fetch_pipeline_details(commit, timeout=timeout)
        except exceptions.PipelineNotFoundError:
            return None, None
        if job_name is None:
            return pipeline, None

        matches = [job for _, _, job in pipeline.iter_jobs() if job.name == job_name]
        if not matches:
            raise click.ClickException(f"No job named '{job_name}' in pipeline #{pipeline.id}")
        try:
            raw = await client.fetch_job_log(matches[-1].id, timeout=timeout)
        except exceptions.JobLogNotFoundError:
            raw = ""
        return pipeline, raw


@click.command()
@click.argument("rev", default="HEAD")
@click.option(
    "--repo",
    "repo_path",
    type=click.Path(exists=True, file_okay=False, path_type=pathlib.Path),
    help="Repository path (default: current directory)",
)
@click.option("--log", "job_name", help="Also print the log of the job with this name")
@click.option("--plain", is_flag=True, help="Print the job log as numbered plain text")
@click.option("--timeout", type=click.FloatRange(min=0, min_open=True), help="Request timeout")
@cli_decorators.with_error_handling
def show(
    rev: str,
    repo_path: pathlib.Path | None,
    job_name: str | None,
    plain: bool,
    timeout: float | None,
) -> None:
    """Print the GitLab pipeline of REV (default: HEAD)."""
    repo_root, cfg = cli_helpers.load_repository(repo_path)
    commit = git.resolve_commit(repo_root, rev)
    credentials = config.resolve_credentials(repo_root, cfg)
    if credentials is None:
        raise exceptions.ConfigError(
            "GitLab is not configured: set gitlab.url and gitlab.project in "
            f"{config.get_local_config_path(repo_root)} and store a token with "
            "'pipeview token set <host>'"
        )

    logger.debug(f"Fetching pipeline for {commit.sha} from {credentials.url}")
    client = cli_helpers.make_client(credentials)
    pipeline, raw_log = anyio.run(
        _fetch, client, commit.sha, job_name, timeout or cfg.panel.request_timeout
    )

    console = rich.console.Console()
    console.print(f"[yellow]{commit.short_sha}[/] {rich.markup.escape(commit.summary)}")
    if pipeline is None:
        console.print(render_panel(Empty(commit.sha)))
        return
    console.print(render_panel(Loaded(pipeline)))
    if raw_log is None:
        return
    lines = joblog.parse_job_log(raw_log)
    console.rule(f"Log: {job_name}")
    if plain:
        click.echo(joblog.format_log_text(lines))
    else:
        console.print(render_log_lines(lines))
