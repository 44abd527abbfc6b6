"""
Centralized error formatting for the CLI.

Every failure leaves the process through ``format_error`` so that the code
shown on stderr, the retry guidance and the exit status stay consistent.
"""

from __future__ import annotations

import traceback
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any

from rich.markup import escape

from askcmd.core.result import (
    AskCmdError,
    BackendError,
    BackendTimeoutError,
    BackendUnavailableError,
    ConfigurationError,
    DangerousCommandError,
    DependencyMissingError,
    ExitCode,
    InvalidInputError,
    OperationInterrupted,
    RateLimitedError,
)


class ErrorSeverity(Enum):
    """Severity levels for error display."""

    INFO = auto()
    WARNING = auto()
    ERROR = auto()
    CRITICAL = auto()


@dataclass(frozen=True, slots=True)
class FormattedError:
    """A formatted error ready for display."""

    message: str
    severity: ErrorSeverity
    code: str
    details: dict[str, Any]
    exit_code: ExitCode
    retryable: bool = False
    retry_after: float | None = None
    traceback: str | None = None


def _error_code(exc: BaseException) -> str:
    """Derive an error code from exception type. Subclasses are checked first."""
    if isinstance(exc, RateLimitedError):
        return "RATE_LIMITED"
    if isinstance(exc, BackendUnavailableError):
        return "BACKEND_UNAVAILABLE"
    if isinstance(exc, BackendError):
        return "BACKEND_ERROR"
    if isinstance(exc, InvalidInputError):
        return "INVALID_INPUT"
    if isinstance(exc, DangerousCommandError):
        return "DANGEROUS_COMMAND"
    if isinstance(exc, (BackendTimeoutError, TimeoutError)):
        return "TIMEOUT"
    if isinstance(exc, ConfigurationError):
        return "CONFIG_ERROR"
    if isinstance(exc, DependencyMissingError):
        return "DEPENDENCY_MISSING"
    if isinstance(exc, (OperationInterrupted, KeyboardInterrupt)):
        return "INTERRUPTED"
    return "UNEXPECTED_ERROR"


def _severity(exc: BaseException) -> ErrorSeverity:
    if isinstance(exc, DangerousCommandError):
        return ErrorSeverity.CRITICAL
    if isinstance(exc, (InvalidInputError, OperationInterrupted, KeyboardInterrupt)):
        return ErrorSeverity.WARNING
    if isinstance(exc, (RateLimitedError, BackendUnavailableError)):
        return ErrorSeverity.WARNING
    return ErrorSeverity.ERROR


def exit_code_for(exc: BaseException) -> ExitCode:
    """Map any exception to the process exit status."""
    if isinstance(exc, AskCmdError):
        return exc.exit_code
    if isinstance(exc, KeyboardInterrupt):
        return ExitCode.INTERRUPTED
    if isinstance(exc, TimeoutError):
        return ExitCode.TIMEOUT
    return ExitCode.BACKEND_ERROR


def format_error(
    exc: BaseException,
    *,
    include_traceback: bool = False,
) -> FormattedError:
    """Format an exception into a structured error.

    Args:
        exc: The exception to format
        include_traceback: Whether to include full traceback (for debugging)

    Returns:
        FormattedError ready for display
    """
    details: dict[str, Any] = {}
    message = str(exc) or type(exc).__name__
    retryable = False
    retry_after: float | None = None

    if isinstance(exc, AskCmdError):
        details = dict(exc.context)
        message = exc.message
        retryable = exc.retryable
        retry_after = getattr(exc, "retry_after", None)
    elif isinstance(exc, KeyboardInterrupt):
        message = "Interrupted"

    if isinstance(exc, OSError):
        if exc.filename:
            details["path"] = str(exc.filename)
        if exc.errno:
            details["errno"] = exc.errno

    tb = None
    if include_traceback:
        tb = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))

    return FormattedError(
        message=message,
        severity=_severity(exc),
        code=_error_code(exc),
        details=details,
        exit_code=exit_code_for(exc),
        retryable=retryable,
        retry_after=retry_after,
        traceback=tb,
    )


def suggest_action(error: FormattedError) -> str | None:
    """Short guidance for the user, or None when there is nothing to add."""
    if error.code == "RATE_LIMITED":
        wait = error.retry_after or 0.0
        return f"Wait {wait:.0f}s before the next request."
    if error.code == "BACKEND_UNAVAILABLE":
        wait = error.retry_after or 0.0
        return f"The backend failed repeatedly; it will be retried in {wait:.0f}s."
    if error.code == "TIMEOUT":
        return "Retry, or raise the limit with --timeout."
    if error.code == "DEPENDENCY_MISSING":
        return "Install the backend CLI or set backend.command; run `askcmd doctor`."
    if error.code == "CONFIG_ERROR":
        return "Fix the configuration file or ASKCMD_* variables; run `askcmd config`."
    if error.code == "DANGEROUS_COMMAND":
        return "Rephrase the request; the command was not delivered."
    if error.code == "INVALID_INPUT":
        return "Rephrase the request in plain words."
    if error.code == "BACKEND_ERROR":
        return "Retry the request; run `askcmd status` if it keeps failing."
    return None


# ---------------------------------------------------------------------------
# CLI Formatting
# ---------------------------------------------------------------------------

_COLOR_MAP = {
    ErrorSeverity.INFO: "blue",
    ErrorSeverity.WARNING: "yellow",
    ErrorSeverity.ERROR: "red",
    ErrorSeverity.CRITICAL: "bold red",
}


def format_for_cli(error: FormattedError, *, verbose: bool = False) -> str:
    """Format error for stderr with Rich markup.

    Details are only shown in verbose mode; the backend's stderr tail in
    particular is noise for most users.
    """
    color = _COLOR_MAP.get(error.severity, "red")
    parts = [f"[{color}]{error.code}[/{color}]: {escape(error.message)}"]

    if verbose and error.details:
        parts.append("\n".join(f"  {k}: {escape(str(v))}" for k, v in error.details.items()))

    action = suggest_action(error)
    if action:
        parts.append(f"[dim]{escape(action)}[/dim]")

    if error.traceback:
        parts.append(f"[dim]{escape(error.traceback)}[/dim]")

    return "\n".join(parts)


__all__ = [
    "ErrorSeverity",
    "FormattedError",
    "exit_code_for",
    "format_error",
    "format_for_cli",
    "suggest_action",
]
