"""Shared on-disk state: directory locks and lock-guarded JSON records."""

from __future__ import annotations

from askcmd.core.state.locks import (
    DirectoryLock,
    LockOwner,
    LockUnavailable,
    is_stale,
    reclaim_stale_locks,
)
from askcmd.core.state.store import FileStateStore, MemoryStateStore, StateStore

__all__ = [
    "DirectoryLock",
    "FileStateStore",
    "LockOwner",
    "LockUnavailable",
    "MemoryStateStore",
    "StateStore",
    "is_stale",
    "reclaim_stale_locks",
]
