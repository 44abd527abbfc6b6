from __future__ import annotations

import functools
import logging
from collections.abc import Callable
from typing import Any, NoReturn, TypeVar

import typer

from askcmd.core.console import stderr_console
from askcmd.core.error_middleware import format_error, format_for_cli
from askcmd.core.result import AskCmdError, OperationInterrupted

F = TypeVar("F", bound=Callable[..., Any])


def _handle_exception(exc: BaseException) -> NoReturn:
    verbose = logging.getLogger("askcmd").isEnabledFor(logging.DEBUG)
    formatted = format_error(exc)
    stderr_console.print(format_for_cli(formatted, verbose=verbose))
    raise typer.Exit(code=int(formatted.exit_code))


def handle_exceptions(func: F) -> F:
    """Decorate CLI entrypoints: errors go to stderr and set the exit status."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except AskCmdError as exc:
            _handle_exception(exc)
        except KeyboardInterrupt:
            _handle_exception(OperationInterrupted("Interrupted"))

    return wrapper  # type: ignore[return-value]


__all__ = ["handle_exceptions"]
