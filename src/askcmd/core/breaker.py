"""Circuit breaker guarding the backend, shared across processes.

States:
- CLOSED: calls pass through; consecutive failures are counted and reaching
  the threshold opens the breaker
- OPEN: calls fail fast until the cooldown since opening has passed; the next
  call becomes the single trial and moves the breaker to HALF_OPEN
- HALF_OPEN: one trial in flight; success closes, failure re-opens with a
  fresh cooldown. A trial that never reports back (crashed process) is
  considered abandoned after ``trial_timeout`` and a new trial may start.

The transition functions are pure; ``CircuitBreaker`` applies them to the
persisted state under the store lock.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import asdict, dataclass, replace
from enum import Enum
from typing import Any

from askcmd.core.console import get_logger
from askcmd.core.result import BackendUnavailableError, StorageError
from askcmd.core.state import StateStore

logger = get_logger(__name__)

RECORD_NAME = "breaker"


class BreakerStatus(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class BreakerState:
    status: BreakerStatus = BreakerStatus.CLOSED
    failures: int = 0
    last_failure_at: float | None = None
    opened_at: float | None = None
    trial_started_at: float | None = None

    def to_record(self) -> dict[str, Any]:
        record = asdict(self)
        record["status"] = self.status.value
        return record

    @classmethod
    def from_record(cls, record: dict[str, Any] | None) -> BreakerState:
        if not record:
            return cls()
        try:
            return cls(
                status=BreakerStatus(record.get("status", BreakerStatus.CLOSED.value)),
                failures=int(record.get("failures", 0)),
                last_failure_at=_optional_float(record.get("last_failure_at")),
                opened_at=_optional_float(record.get("opened_at")),
                trial_started_at=_optional_float(record.get("trial_started_at")),
            )
        except (TypeError, ValueError):
            logger.warning("Resetting malformed breaker state")
            return cls()


def _optional_float(value: Any) -> float | None:
    return None if value is None else float(value)


# ---------------------------------------------------------------------------
# Pure transitions
# ---------------------------------------------------------------------------


def admit(
    state: BreakerState, now: float, *, cooldown: float, trial_timeout: float
) -> tuple[BreakerState, bool]:
    """Decide whether a call may proceed. Returns the new state and the decision."""
    if state.status == BreakerStatus.CLOSED:
        return state, True

    if state.status == BreakerStatus.OPEN:
        if state.opened_at is not None and now - state.opened_at <= cooldown:
            return state, False
        return replace(state, status=BreakerStatus.HALF_OPEN, trial_started_at=now), True

    # HALF_OPEN: only one trial at a time, unless the current one was abandoned
    if state.trial_started_at is not None and now - state.trial_started_at <= trial_timeout:
        return state, False
    return replace(state, trial_started_at=now), True


def on_success(state: BreakerState) -> BreakerState:
    return replace(
        state,
        status=BreakerStatus.CLOSED,
        failures=0,
        opened_at=None,
        trial_started_at=None,
    )


def on_failure(state: BreakerState, now: float, *, threshold: int) -> BreakerState:
    failures = state.failures + 1
    if state.status == BreakerStatus.HALF_OPEN:
        return replace(
            state,
            status=BreakerStatus.OPEN,
            failures=failures,
            last_failure_at=now,
            opened_at=now,
            trial_started_at=None,
        )
    if state.status == BreakerStatus.CLOSED and failures >= threshold:
        return replace(
            state,
            status=BreakerStatus.OPEN,
            failures=failures,
            last_failure_at=now,
            opened_at=now,
        )
    return replace(state, failures=failures, last_failure_at=now)


def on_abandon(state: BreakerState) -> BreakerState:
    """A trial ended without a verdict: back to OPEN, cooldown clock untouched."""
    if state.status != BreakerStatus.HALF_OPEN:
        return state
    return replace(state, status=BreakerStatus.OPEN, trial_started_at=None)


# ---------------------------------------------------------------------------
# Persisted breaker
# ---------------------------------------------------------------------------


class CircuitBreaker:
    """
    Circuit breaker whose state is shared by every askcmd process.

    Usage:
        is_trial = breaker.before_call()
        try:
            result = await call_backend()
        except BackendError:
            breaker.record_failure()
            raise
        except BaseException:
            breaker.record_abandoned(is_trial)
            raise
        breaker.record_success()
    """

    def __init__(
        self,
        store: StateStore,
        threshold: int,
        cooldown: float,
        *,
        trial_timeout: float | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if threshold <= 0:
            raise ValueError("threshold must be positive")
        self._store = store
        self.threshold = threshold
        self.cooldown = cooldown
        self.trial_timeout = cooldown if trial_timeout is None else trial_timeout
        self._clock = clock

    def _apply(self, transition: Callable[[BreakerState], BreakerState]) -> BreakerState | None:
        try:
            with self._store.locked(RECORD_NAME):
                current = BreakerState.from_record(self._store.load(RECORD_NAME))
                updated = transition(current)
                if updated != current:
                    self._store.save(RECORD_NAME, updated.to_record())
        except StorageError as exc:
            logger.warning("Circuit breaker state unavailable: %s", exc)
            return None
        if updated.status != current.status:
            logger.info("Circuit breaker %s -> %s", current.status.value, updated.status.value)
        return updated

    def before_call(self) -> bool:
        """Gate one backend call.

        Returns:
            True when this call is the HALF_OPEN trial.

        Raises:
            BackendUnavailableError: If the breaker is open or a trial is in flight.
        """
        decision: dict[str, bool] = {}

        def transition(state: BreakerState) -> BreakerState:
            new_state, allowed = admit(
                state, self._clock(), cooldown=self.cooldown, trial_timeout=self.trial_timeout
            )
            decision["allowed"] = allowed
            return new_state

        state = self._apply(transition)
        if state is None:
            return False
        if not decision["allowed"]:
            wait = self._retry_after(state)
            raise BackendUnavailableError(
                f"Backend temporarily disabled after {state.failures} consecutive failures; "
                f"retry in {wait:.0f}s",
                retry_after=wait,
                context={"status": state.status.value},
            )
        return state.status == BreakerStatus.HALF_OPEN

    def _retry_after(self, state: BreakerState) -> float:
        now = self._clock()
        if state.status == BreakerStatus.OPEN and state.opened_at is not None:
            return max(0.0, state.opened_at + self.cooldown - now)
        if state.status == BreakerStatus.HALF_OPEN and state.trial_started_at is not None:
            return max(0.0, state.trial_started_at + self.trial_timeout - now)
        return 0.0

    def record_success(self) -> None:
        self._apply(on_success)

    def record_failure(self) -> None:
        self._apply(lambda state: on_failure(state, self._clock(), threshold=self.threshold))

    def record_abandoned(self, was_trial: bool) -> None:
        if was_trial:
            self._apply(on_abandon)

    def state(self) -> BreakerState:
        try:
            return BreakerState.from_record(self._store.load(RECORD_NAME))
        except StorageError:
            return BreakerState()

    def reset(self) -> None:
        with self._store.locked(RECORD_NAME):
            self._store.delete(RECORD_NAME)


__all__ = [
    "BreakerState",
    "BreakerStatus",
    "CircuitBreaker",
    "admit",
    "on_abandon",
    "on_failure",
    "on_success",
]
