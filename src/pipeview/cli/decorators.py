from __future__ import annotations

import functools
from typing import TYPE_CHECKING

import click

from pipeview import exceptions

if TYPE_CHECKING:
    from collections.abc import Callable


def _handle_pipeview_error(e: exceptions.PipeviewError) -> click.ClickException:
    """Convert PipeviewError to user-friendly ClickException."""
    message = e.format_user_message()
    if suggestion := e.get_suggestion():
        message = f"{message}\n\nTip: {suggestion}"
    return click.ClickException(message)


def with_error_handling[**P, R](func: Callable[P, R]) -> Callable[P, R]:
    """Wrap a command so PipeviewError is reported without a traceback.

        @click.command()
        @with_error_handling
        def show(...):
            ...
    """

    @functools.wraps(func)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        try:
            return func(*args, **kwargs)
        except click.ClickException:
            raise
        except exceptions.PipeviewError as e:
            raise _handle_pipeview_error(e) from e

    return wrapper
