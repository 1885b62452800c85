from __future__ import annotations

import importlib
import logging
from typing import TypedDict, override

import click

# Lazy command registry: command_name -> (module_path, attr_name, help_text)
_LAZY_COMMANDS: dict[str, tuple[str, str, str]] = {
    "browse": ("pipeview.cli.browse", "browse", "Browse commits with their CI pipelines."),
    "show": ("pipeview.cli.show", "show", "Print the pipeline of a single commit."),
    "token": ("pipeview.cli.token", "token", "Manage GitLab access tokens."),
}


class CliContext(TypedDict):
    """Context object for CLI commands."""

    verbose: bool
    quiet: bool


class PipeviewGroup(click.Group):
    """Group with lazy command loading, so the TUI stack is only imported by browse."""

    @override
    def list_commands(self, ctx: click.Context) -> list[str]:
        return sorted(_LAZY_COMMANDS.keys())

    @override
    def get_command(self, ctx: click.Context, cmd_name: str) -> click.Command | None:
        if cmd_name not in _LAZY_COMMANDS:
            return None

        module_path, attr_name, _help = _LAZY_COMMANDS[cmd_name]
        module = importlib.import_module(module_path)
        return getattr(module, attr_name)

    @override
    def format_commands(self, ctx: click.Context, formatter: click.HelpFormatter) -> None:
        """List commands from the cached help strings without importing them."""
        commands = [(name, _LAZY_COMMANDS[name][2]) for name in self.list_commands(ctx)]
        if commands:
            with formatter.section("Commands"):
                formatter.write_dl(commands)


def _setup_logging(verbose: bool, quiet: bool) -> None:
    """Configure logging for CLI output."""
    if quiet:
        level = logging.WARNING
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO
    logging.basicConfig(level=level, format="%(message)s", force=True)
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


@click.group(cls=PipeviewGroup)
@click.option("--verbose", "-v", is_flag=True, help="Show detailed output")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.version_option(package_name="pipeview")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, quiet: bool) -> None:
    """Terminal git history browser with a GitLab CI pipeline panel."""
    if verbose and quiet:
        raise click.UsageError("--verbose and --quiet are mutually exclusive")
    ctx.obj = CliContext(verbose=verbose, quiet=quiet)
    _setup_logging(verbose, quiet)


def main() -> None:
    """Main CLI entry point."""
    cli()


if __name__ == "__main__":
    main()
