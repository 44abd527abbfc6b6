"""Sliding-window rate limiting of backend calls across processes.

Each CLI invocation is a fresh process, so the window lives in the state
store and every admission is a lock-guarded read-modify-write.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field

from askcmd.core.console import get_logger
from askcmd.core.result import RateLimitedError, StorageError
from askcmd.core.state import StateStore

logger = get_logger(__name__)

RECORD_NAME = "ratelimit"


@dataclass
class RateWindow:
    """Admitted call times inside a sliding window. Pure, no I/O."""

    max_calls: int
    window_seconds: float
    timestamps: list[float] = field(default_factory=list)

    def prune(self, now: float) -> None:
        cutoff = now - self.window_seconds
        # Times from the future (clock stepped back) are dropped too
        self.timestamps = sorted(t for t in self.timestamps if cutoff < t <= now)

    def admit(self, now: float) -> bool:
        """Record a call at ``now`` if the window has room."""
        self.prune(now)
        if len(self.timestamps) >= self.max_calls:
            return False
        self.timestamps.append(now)
        return True

    def retry_after(self, now: float) -> float:
        """Seconds until the window has room again."""
        self.prune(now)
        if len(self.timestamps) < self.max_calls:
            return 0.0
        oldest = self.timestamps[len(self.timestamps) - self.max_calls]
        return max(0.0, oldest + self.window_seconds - now)

    def to_record(self) -> dict[str, object]:
        return {"timestamps": self.timestamps}

    @classmethod
    def from_record(
        cls, record: dict[str, object] | None, *, max_calls: int, window_seconds: float
    ) -> RateWindow:
        raw = (record or {}).get("timestamps", [])
        timestamps = [float(t) for t in raw if isinstance(t, (int, float))] if isinstance(raw, list) else []
        return cls(max_calls=max_calls, window_seconds=window_seconds, timestamps=timestamps)


class RateLimiter:
    """Bound backend calls to ``max_calls`` per ``window_seconds``.

    Storage problems never block a request: the limiter logs a warning and
    admits the call.
    """

    def __init__(
        self,
        store: StateStore,
        max_calls: int,
        window_seconds: float,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_calls <= 0:
            raise ValueError("max_calls must be positive")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self._store = store
        self.max_calls = max_calls
        self.window_seconds = window_seconds
        self._clock = clock

    def _load(self) -> RateWindow:
        return RateWindow.from_record(
            self._store.load(RECORD_NAME),
            max_calls=self.max_calls,
            window_seconds=self.window_seconds,
        )

    def check_rate_limit(self) -> bool:
        """Admit one call if the window allows it. Returns False when limited."""
        try:
            with self._store.locked(RECORD_NAME):
                window = self._load()
                allowed = window.admit(self._clock())
                if allowed:
                    self._store.save(RECORD_NAME, window.to_record())
                return allowed
        except StorageError as exc:
            logger.warning("Rate limit state unavailable, allowing call: %s", exc)
            return True

    def acquire(self) -> None:
        """Admit one call or raise.

        Raises:
            RateLimitedError: If the window is full. ``retry_after`` holds the backoff.
        """
        if self.check_rate_limit():
            return
        wait = self.retry_after()
        raise RateLimitedError(
            f"Rate limit reached ({self.max_calls} calls per {self.window_seconds:g}s); "
            f"retry in {wait:.0f}s",
            retry_after=wait,
            context={"limit": self.max_calls, "window": self.window_seconds},
        )

    def retry_after(self) -> float:
        try:
            return self._load().retry_after(self._clock())
        except StorageError:
            return 0.0

    def usage(self) -> tuple[int, int]:
        """Return (calls in the current window, max calls)."""
        try:
            window = self._load()
        except StorageError:
            return 0, self.max_calls
        window.prune(self._clock())
        return len(window.timestamps), self.max_calls

    def reset(self) -> None:
        with self._store.locked(RECORD_NAME):
            self._store.delete(RECORD_NAME)


__all__ = ["RateLimiter", "RateWindow"]
