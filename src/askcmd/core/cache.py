"""Content-addressed cache of validated commands.

Keys are SHA-256 digests of the sanitized request plus the mode flags that
change what the backend is asked, so equal requests share an entry and the
key doubles as a safe file name. Expiry is lazy: an entry older than its TTL
is treated as a miss and evicted on the way out.

Writes are best-effort. A writer that loses the per-key lock race skips the
write and still returns its own command; the cache converges to the last
successful write.
"""

from __future__ import annotations

import hashlib
import time
from collections.abc import Callable
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, ConfigDict, ValidationError

from askcmd.core.config import AppConfig
from askcmd.core.console import get_logger
from askcmd.core.result import StorageError
from askcmd.core.state import FileStateStore, LockUnavailable, StateStore

logger = get_logger(__name__)

CACHE_SCHEMA_VERSION = 1


def make_cache_key(sanitized: str, *, safe_mode: bool) -> str:
    """Deterministic, filesystem-safe fingerprint of a request."""
    material = f"{CACHE_SCHEMA_VERSION}|safe={int(safe_mode)}|{sanitized}"
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


class CacheEntry(BaseModel):
    """A cached command and the moment it was generated."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    key: str
    command: str
    created_at: float
    ttl: int

    def age(self, now: float) -> float:
        return now - self.created_at

    def is_expired(self, now: float) -> bool:
        return self.age(now) > self.ttl


class CacheStats(BaseModel):
    enabled: bool
    directory: Path | None = None
    entries: int = 0
    expired: int = 0
    ttl: int = 0


class Cache(Protocol):
    def lookup(self, key: str) -> CacheEntry | None: ...

    def store(self, key: str, command: str) -> bool: ...

    def clear(self) -> int: ...

    def prune(self) -> int: ...

    def stats(self) -> CacheStats: ...


class CommandCache:
    """TTL cache backed by a StateStore, one record per key.

    Args:
        store: Record store; a FileStateStore in production.
        ttl: Entry lifetime in seconds. Must be positive; use NullCache for 0.
        clock: Wall-clock source, injectable for tests.
    """

    def __init__(
        self,
        store: StateStore,
        ttl: int,
        *,
        clock: Callable[[], float] = time.time,
        directory: Path | None = None,
    ) -> None:
        if ttl <= 0:
            raise ValueError("ttl must be positive; use NullCache to disable caching")
        self._store = store
        self.ttl = ttl
        self._clock = clock
        self._directory = directory

    def _read(self, key: str) -> CacheEntry | None:
        try:
            record = self._store.load(key)
        except StorageError as exc:
            logger.warning("Cache read failed for %s: %s", key[:12], exc)
            return None
        if record is None:
            return None
        try:
            return CacheEntry.model_validate(record)
        except ValidationError:
            logger.warning("Discarding malformed cache entry %s", key[:12])
            self._evict(key)
            return None

    def _evict(self, key: str) -> None:
        try:
            self._store.delete(key)
        except StorageError as exc:
            logger.debug("Cache eviction failed for %s: %s", key[:12], exc)

    def lookup(self, key: str) -> CacheEntry | None:
        """Return the live entry for ``key``, or None on miss or expiry."""
        entry = self._read(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            logger.debug("Cache entry %s expired", key[:12])
            self._evict(key)
            return None
        return entry

    def store(self, key: str, command: str) -> bool:
        """Write ``command`` under ``key`` if the key lock is free.

        Returns:
            True if the entry was written, False if the write was skipped.
        """
        entry = CacheEntry(key=key, command=command, created_at=self._clock(), ttl=self.ttl)
        try:
            with self._store.locked(key, timeout=0):
                self._store.save(key, entry.model_dump())
        except LockUnavailable:
            logger.debug("Cache key %s busy; skipping write", key[:12])
            return False
        except StorageError as exc:
            logger.warning("Cache write failed for %s: %s", key[:12], exc)
            return False
        return True

    def clear(self) -> int:
        removed = 0
        for name in self._store.names():
            self._evict(name)
            removed += 1
        return removed

    def prune(self) -> int:
        """Remove every expired entry. Returns the number removed."""
        now = self._clock()
        removed = 0
        for name in self._store.names():
            entry = self._read(name)
            if entry is not None and entry.is_expired(now):
                self._evict(name)
                removed += 1
        return removed

    def stats(self) -> CacheStats:
        now = self._clock()
        names = self._store.names()
        expired = 0
        for name in names:
            entry = self._read(name)
            if entry is not None and entry.is_expired(now):
                expired += 1
        return CacheStats(
            enabled=True,
            directory=self._directory,
            entries=len(names),
            expired=expired,
            ttl=self.ttl,
        )


class NullCache:
    """Cache that never hits and never stores."""

    def __init__(self, reason: str = "disabled") -> None:
        self.reason = reason

    def lookup(self, key: str) -> CacheEntry | None:
        return None

    def store(self, key: str, command: str) -> bool:
        return False

    def clear(self) -> int:
        return 0

    def prune(self) -> int:
        return 0

    def stats(self) -> CacheStats:
        return CacheStats(enabled=False)


def build_cache(config: AppConfig, *, clock: Callable[[], float] = time.time) -> Cache:
    """Pick the cache strategy once at startup."""
    if config.cache_ttl == 0:
        return NullCache("cache_ttl is 0")

    store = FileStateStore(
        config.resolved_cache_dir,
        config.lock_dir,
        namespace="cache",
        stale_after=config.guard.lock_stale_seconds,
    )
    try:
        store.ensure_writable()
    except StorageError as exc:
        logger.warning("Caching disabled: %s", exc)
        return NullCache(str(exc))
    return CommandCache(store, config.cache_ttl, clock=clock, directory=config.resolved_cache_dir)


__all__ = [
    "CACHE_SCHEMA_VERSION",
    "Cache",
    "CacheEntry",
    "CacheStats",
    "CommandCache",
    "NullCache",
    "build_cache",
    "make_cache_key",
]
