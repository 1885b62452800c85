from __future__ import annotations

import click

from pipeview import config
from pipeview.cli import decorators as cli_decorators
from pipeview.cli import helpers as cli_helpers
from pipeview.config import io as config_io
from pipeview.config.models import url_host


@click.group()
def token() -> None:
    """Manage GitLab access tokens."""


@token.command("set")
@click.argument("host")
@click.option(
    "--token",
    "value",
    prompt="Access token",
    hide_input=True,
    help="Token value (prompted for without echo when omitted)",
)
@click.pass_context
@cli_decorators.with_error_handling
def token_set(ctx: click.Context, host: str, value: str) -> None:
    """Store the access token for HOST (e.g. gitlab.com).

    Tokens are kept in the user token store, readable only by the owner.
    The PIPEVIEW_GITLAB_TOKEN environment variable overrides stored tokens.
    """
    if "://" in host:
        host = url_host(host)
    config.save_token(host, value)
    if not cli_helpers.get_cli_context(ctx)["quiet"]:
        click.echo(f"Saved token for {host} in {config_io.get_token_store_path()}")


@token.command("path")
def token_path() -> None:
    """Print the location of the token store."""
    click.echo(config_io.get_token_store_path())
