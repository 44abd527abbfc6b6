"""Backend invocation: one external process per prompt.

The backend is an opaque CLI (``claude -p`` by default) that maps a prompt to
a completion on stdout. ``BackendPool`` wraps every call in the circuit
breaker, a per-call timeout, and a bounded number of invocation slots shared
by all askcmd processes.

Error classification:
- timeout (exit 124)              -> BackendTimeoutError, counts as a failure
- not found / not executable      -> BackendNotFoundError, does not trip the breaker
- other non-zero exit, no output  -> BackendError, counts as a failure
"""

from __future__ import annotations

import asyncio
import shutil
import time
from collections.abc import Callable, Sequence
from contextlib import ExitStack
from dataclasses import dataclass
from typing import Protocol

from askcmd.core.breaker import CircuitBreaker
from askcmd.core.console import get_logger
from askcmd.core.result import (
    AskCmdError,
    BackendError,
    BackendNotFoundError,
    BackendTimeoutError,
    Err,
    Ok,
    Result,
    StorageError,
)
from askcmd.core.state import LockUnavailable, StateStore

logger = get_logger(__name__)

EXIT_TIMEOUT = 124
EXIT_NOT_EXECUTABLE = 126
EXIT_NOT_FOUND = 127
SLOT_POLL_INTERVAL = 0.1
_STDERR_TAIL = 500


@dataclass(slots=True)
class BackendResult:
    """Raw outcome of one backend process."""

    stdout: str
    exit_code: int
    stderr: str = ""


def classify_result(result: BackendResult) -> Result[str, AskCmdError]:
    """Map a finished backend process to its completion text or a typed error."""
    context: dict[str, object] = {"exit_code": result.exit_code}
    if result.stderr:
        context["stderr"] = result.stderr.strip()[-_STDERR_TAIL:]

    if result.exit_code == EXIT_TIMEOUT:
        return Err(BackendTimeoutError("Backend did not answer in time", context=context))
    if result.exit_code in (EXIT_NOT_EXECUTABLE, EXIT_NOT_FOUND):
        return Err(BackendNotFoundError("Backend executable could not be started", context=context))
    if result.exit_code != 0:
        return Err(BackendError(f"Backend exited with status {result.exit_code}", context=context))
    if not result.stdout.strip():
        return Err(BackendError("Backend returned no output", context=context))
    return Ok(result.stdout)


class BackendRunner(Protocol):
    async def run(self, argv: Sequence[str], timeout: float) -> BackendResult: ...


async def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
    await proc.wait()


class SubprocessRunner:
    """Run the backend with stdin closed and a hard timeout."""

    async def run(self, argv: Sequence[str], timeout: float) -> BackendResult:
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            return BackendResult(stdout="", exit_code=EXIT_NOT_FOUND, stderr=str(exc))
        except PermissionError as exc:
            return BackendResult(stdout="", exit_code=EXIT_NOT_EXECUTABLE, stderr=str(exc))

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            await _kill(proc)
            return BackendResult(
                stdout="", exit_code=EXIT_TIMEOUT, stderr=f"timed out after {timeout:g}s"
            )
        except asyncio.CancelledError:
            # Interrupted by the user or a signal; never leave the child running
            await _kill(proc)
            raise

        return BackendResult(
            stdout=stdout.decode("utf-8", errors="replace"),
            exit_code=proc.returncode if proc.returncode is not None else 0,
            stderr=stderr.decode("utf-8", errors="replace"),
        )


class BackendPool:
    """Breaker-gated, slot-bounded backend invocations.

    Args:
        command: Backend argv; the prompt is appended as the last argument.
        timeout: Per-call timeout in seconds.
        breaker: Shared circuit breaker.
        slots: Maximum concurrent invocations across all processes.
        slot_wait: Seconds to wait for a free slot before giving up.
        slot_store: Store whose locks implement the cross-process slots.
            Without one only in-process concurrency is bounded.
        runner: Process runner, replaceable in tests.
        which: Executable lookup, replaceable in tests.
    """

    def __init__(
        self,
        command: Sequence[str],
        *,
        timeout: float,
        breaker: CircuitBreaker,
        slots: int = 2,
        slot_wait: float = 5.0,
        slot_store: StateStore | None = None,
        runner: BackendRunner | None = None,
        which: Callable[[str], str | None] = shutil.which,
    ) -> None:
        if not command:
            raise ValueError("command must name an executable")
        self.command = tuple(command)
        self.timeout = timeout
        self.slots = slots
        self.slot_wait = slot_wait
        self._breaker = breaker
        self._slot_store = slot_store
        self._runner = runner or SubprocessRunner()
        self._which = which
        self._semaphore = asyncio.Semaphore(slots)
        self._executable: str | None = None

    def resolve_executable(self) -> str:
        """Locate the backend binary once per pool.

        Raises:
            BackendNotFoundError: If the executable is not on PATH.
        """
        if self._executable is None:
            found = self._which(self.command[0])
            if found is None:
                raise BackendNotFoundError(
                    f"Backend executable not found: {self.command[0]}",
                    context={"command": " ".join(self.command)},
                )
            self._executable = found
        return self._executable

    def argv_for(self, prompt: str) -> list[str]:
        return [self.resolve_executable(), *self.command[1:], prompt]

    async def _claim_slot(self, stack: ExitStack) -> None:
        if self._slot_store is None:
            return
        deadline = time.monotonic() + self.slot_wait
        while True:
            for index in range(self.slots):
                try:
                    stack.enter_context(self._slot_store.locked(f"slot-{index}", timeout=0))
                    return
                except LockUnavailable:
                    continue
                except StorageError as exc:
                    logger.warning("Invocation slots unavailable, not bounding: %s", exc)
                    return
            if time.monotonic() >= deadline:
                raise BackendError(
                    "All backend invocation slots are busy",
                    context={"slots": self.slots, "waited": self.slot_wait},
                )
            await asyncio.sleep(SLOT_POLL_INTERVAL)

    async def invoke(self, prompt: str) -> str:
        """Send ``prompt`` to the backend and return its raw completion.

        Raises:
            BackendNotFoundError: Backend missing; the breaker is not touched.
            BackendUnavailableError: The breaker is open.
            BackendTimeoutError: No answer within ``timeout``.
            BackendError: Any other backend failure or no free slot.
        """
        argv = self.argv_for(prompt)
        is_trial = self._breaker.before_call()
        try:
            async with self._semaphore:
                with ExitStack() as stack:
                    await self._claim_slot(stack)
                    logger.debug("Invoking backend %s", self.command[0])
                    result = await self._runner.run(argv, self.timeout)
        except BaseException:
            self._breaker.record_abandoned(is_trial)
            raise

        match classify_result(result):
            case Ok(text):
                self._breaker.record_success()
                return text
            case Err(BackendNotFoundError() as error):
                self._breaker.record_abandoned(is_trial)
                raise error
            case Err(error):
                self._breaker.record_failure()
                logger.debug("Backend failure: %s", error)
                raise error


__all__ = [
    "EXIT_NOT_FOUND",
    "EXIT_TIMEOUT",
    "BackendPool",
    "BackendResult",
    "BackendRunner",
    "SubprocessRunner",
    "classify_result",
]
