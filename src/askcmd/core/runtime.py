"""
Per-invocation runtime context.

The RuntimeContext is built once by the CLI callback from the frozen
AppConfig and owns the lazily constructed components that share on-disk
state: the cache, the rate limiter, the circuit breaker, the backend pool
and the audit log. Components are created on first use so that commands
which never reach the backend (``check``, ``config``) never touch the state
directory.

Usage:
    runtime = RuntimeContext(config=config)
    runtime.startup_cleanup()
    pipeline = build_pipeline(runtime)
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from uuid import uuid4

from askcmd.core.audit import AuditLog
from askcmd.core.backend import BackendPool, BackendRunner
from askcmd.core.breaker import CircuitBreaker
from askcmd.core.cache import Cache, build_cache
from askcmd.core.config import AppConfig
from askcmd.core.console import get_logger
from askcmd.core.rate_limit import RateLimiter
from askcmd.core.state import FileStateStore, reclaim_stale_locks

logger = get_logger(__name__)

# Extra seconds a HALF_OPEN trial or a backend slot may outlive the call timeout
TRIAL_MARGIN = 5.0


@dataclass
class RuntimeContext:
    """Shared state for one askcmd process.

    Attributes:
        config: Frozen application configuration.
        trace_id: Identifier stamped on every audit record of this run.
        clock: Wall-clock source for TTLs, windows and cooldowns.
        runner: Backend process runner; None selects the subprocess runner.
    """

    config: AppConfig
    trace_id: str = field(default_factory=lambda: uuid4().hex[:12])
    clock: Callable[[], float] = time.time
    runner: BackendRunner | None = None

    _state_store: FileStateStore | None = field(default=None, repr=False)
    _cache: Cache | None = field(default=None, repr=False)
    _rate_limiter: RateLimiter | None = field(default=None, repr=False)
    _breaker: CircuitBreaker | None = field(default=None, repr=False)
    _backend: BackendPool | None = field(default=None, repr=False)
    _audit: AuditLog | None = field(default=None, repr=False)

    @property
    def trial_timeout(self) -> float:
        return self.config.timeout + TRIAL_MARGIN

    def state_store(self) -> FileStateStore:
        if self._state_store is None:
            guard = self.config.guard
            self._state_store = FileStateStore(
                self.config.state_dir,
                self.config.lock_dir,
                namespace="state",
                stale_after=guard.lock_stale_seconds,
                lock_timeout=guard.lock_timeout,
            )
        return self._state_store

    def get_cache(self) -> Cache:
        if self._cache is None:
            self._cache = build_cache(self.config, clock=self.clock)
        return self._cache

    def get_rate_limiter(self) -> RateLimiter:
        if self._rate_limiter is None:
            guard = self.config.guard
            self._rate_limiter = RateLimiter(
                self.state_store(),
                guard.rate_limit_calls,
                guard.rate_limit_window,
                clock=self.clock,
            )
        return self._rate_limiter

    def get_breaker(self) -> CircuitBreaker:
        if self._breaker is None:
            guard = self.config.guard
            self._breaker = CircuitBreaker(
                self.state_store(),
                guard.breaker_threshold,
                guard.breaker_cooldown,
                trial_timeout=self.trial_timeout,
                clock=self.clock,
            )
        return self._breaker

    def get_backend(self) -> BackendPool:
        if self._backend is None:
            # A slot is held for the whole call, so it only goes stale after the timeout
            slot_store = FileStateStore(
                self.config.state_dir,
                self.config.lock_dir,
                namespace="backend",
                stale_after=max(self.config.guard.lock_stale_seconds, self.trial_timeout),
                lock_timeout=0,
            )
            backend = self.config.backend
            self._backend = BackendPool(
                backend.command,
                timeout=self.config.timeout,
                breaker=self.get_breaker(),
                slots=backend.slots,
                slot_wait=backend.slot_wait,
                slot_store=slot_store,
                runner=self.runner,
            )
        return self._backend

    def get_audit(self) -> AuditLog:
        if self._audit is None:
            self._audit = AuditLog(self.config.resolved_log_dir, trace_id=self.trace_id)
        return self._audit

    def startup_cleanup(self) -> None:
        """Reclaim locks and temp files left behind by crashed invocations."""
        stale_after = self.config.guard.lock_stale_seconds
        # Backend slot locks live as long as a call, which may exceed lock_stale_seconds
        reclaim_stale_locks(self.config.lock_dir, max(stale_after, self.trial_timeout))

        removed = 0
        for store in (self.state_store(), self._cache_store()):
            if store is not None:
                removed += store.cleanup_temp_files(max_age=stale_after)
        if removed:
            logger.debug("Removed %d orphaned temp file(s)", removed)

    def _cache_store(self) -> FileStateStore | None:
        if self.config.cache_ttl == 0:
            return None
        return FileStateStore(
            self.config.resolved_cache_dir,
            self.config.lock_dir,
            namespace="cache",
            stale_after=self.config.guard.lock_stale_seconds,
        )


__all__ = ["TRIAL_MARGIN", "RuntimeContext"]
