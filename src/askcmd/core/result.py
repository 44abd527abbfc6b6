"""
Unified Result types and error hierarchy for askcmd.

This module provides:
1. Result[T, E] type for explicit error handling
2. Domain-specific exception hierarchy with stable exit codes
3. Helper functions for Result operations

Usage:
    from askcmd.core.result import Ok, Err, Result, InvalidInputError

    def sanitize(raw: str) -> Result[str, InvalidInputError]:
        if not raw.strip():
            return Err(InvalidInputError("Request is empty"))
        return Ok(raw.strip())

    result = sanitize(text)
    if result.is_ok():
        print(result.value)
    else:
        print(result.error)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Callable, Generic, TypeVar

T = TypeVar("T")
U = TypeVar("U")
E = TypeVar("E", bound=Exception)
F = TypeVar("F", bound=Exception)


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Represents a successful result containing a value."""

    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        """Return the contained value."""
        return self.value

    def unwrap_or(self, default: T) -> T:
        """Return the contained value (ignores default for Ok)."""
        return self.value

    def map(self, fn: Callable[[T], U]) -> Ok[U]:
        """Apply a function to the contained value."""
        return Ok(fn(self.value))

    def and_then(self, fn: Callable[[T], Result[U, E]]) -> Result[U, E]:
        """Chain operations that may fail."""
        return fn(self.value)


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    """Represents a failed result containing an error."""

    error: E

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> T:
        """Raise the contained error."""
        raise self.error

    def unwrap_or(self, default: T) -> T:
        """Return the default value."""
        return default

    def map(self, fn: Callable[[T], U]) -> Err[E]:
        """No-op for Err - returns self unchanged."""
        return self

    def and_then(self, fn: Callable[[T], Result[U, E]]) -> Err[E]:
        """Short-circuit for Err - returns self unchanged."""
        return self


# Type alias for Result
Result = Ok[T] | Err[E]


# ---------------------------------------------------------------------------
# Exit codes
# ---------------------------------------------------------------------------


class ExitCode(IntEnum):
    """Process exit codes. These are the tool's stable external contract."""

    SUCCESS = 0
    INVALID_INPUT = 1
    BACKEND_ERROR = 2
    DANGEROUS_COMMAND = 3
    TIMEOUT = 4
    CONFIG_ERROR = 5
    DEPENDENCY_MISSING = 6
    INTERRUPTED = 130


# ---------------------------------------------------------------------------
# Domain-specific error hierarchy
# ---------------------------------------------------------------------------


class AskCmdError(Exception):
    """Base exception for all askcmd errors.

    Subclasses pin the exit code reported to the invoking shell and whether
    the failure is worth retrying as-is.
    """

    exit_code: ExitCode = ExitCode.BACKEND_ERROR
    retryable: bool = False

    def __init__(self, message: str, *, context: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} [{ctx_str}]"
        return self.message


class InvalidInputError(AskCmdError):
    """Raised for user-correctable input problems.

    Examples:
    - Request longer than max_input_length
    - Request empty after sanitization
    - Malformed encoding or injection idioms
    - Backend refused the request with an ERROR: sentinel
    """

    exit_code = ExitCode.INVALID_INPUT


class BackendError(AskCmdError):
    """Raised when the backend fails in a possibly transient way."""

    exit_code = ExitCode.BACKEND_ERROR
    retryable = True


class RateLimitedError(BackendError):
    """Raised when the per-window backend call ceiling is reached."""

    def __init__(
        self, message: str, *, retry_after: float, context: dict | None = None
    ) -> None:
        super().__init__(message, context=context)
        self.retry_after = retry_after


class BackendUnavailableError(BackendError):
    """Raised when the circuit breaker short-circuits a call."""

    def __init__(
        self, message: str, *, retry_after: float = 0.0, context: dict | None = None
    ) -> None:
        super().__init__(message, context=context)
        self.retry_after = retry_after


class BackendTimeoutError(AskCmdError):
    """Raised when the backend does not answer within the configured timeout."""

    exit_code = ExitCode.TIMEOUT
    retryable = True


class DangerousCommandError(AskCmdError):
    """Raised when a generated command fails the safety checks."""

    exit_code = ExitCode.DANGEROUS_COMMAND


class ConfigurationError(AskCmdError):
    """Raised for configuration issues.

    Examples:
    - Unknown config keys
    - Invalid config values
    - Config file parse errors
    """

    exit_code = ExitCode.CONFIG_ERROR


class DependencyMissingError(AskCmdError):
    """Raised when a required external program is not installed."""

    exit_code = ExitCode.DEPENDENCY_MISSING


class BackendNotFoundError(DependencyMissingError):
    """Raised when the backend executable cannot be spawned."""


class OperationInterrupted(AskCmdError):
    """Raised when the user interrupts an in-flight request."""

    exit_code = ExitCode.INTERRUPTED


class StorageError(AskCmdError):
    """Raised for cache, lock and state-file failures.

    Callers downgrade these to "feature unavailable"; they never fail a request.
    """


__all__ = [
    # Result types
    "Ok",
    "Err",
    "Result",
    "ExitCode",
    # Error hierarchy
    "AskCmdError",
    "InvalidInputError",
    "BackendError",
    "RateLimitedError",
    "BackendUnavailableError",
    "BackendTimeoutError",
    "DangerousCommandError",
    "ConfigurationError",
    "DependencyMissingError",
    "BackendNotFoundError",
    "OperationInterrupted",
    "StorageError",
]
