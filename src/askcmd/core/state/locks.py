"""Cross-process mutual exclusion with directory locks.

A lock is a directory created with ``os.mkdir``, which is atomic on every
filesystem we care about: exactly one process can create it. The directory
holds an ``owner`` file recording pid, host and acquisition time so other
processes can tell an abandoned lock from a live one.

A lock is reclaimed when:
    - it is older than ``stale_after`` seconds, or
    - its owner ran on this host and that pid no longer exists.

Usage:
    lock = DirectoryLock(lock_dir / "breaker.lock", stale_after=60.0)
    with lock.hold(timeout=2.0):
        ...  # read-modify-write shared state
"""

from __future__ import annotations

import json
import os
import shutil
import socket
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

import psutil

from askcmd.core.console import get_logger
from askcmd.core.result import StorageError

logger = get_logger(__name__)

LOCK_SUFFIX = ".lock"
OWNER_FILE = "owner"
DEFAULT_POLL_INTERVAL = 0.05


class LockUnavailable(StorageError):
    """Raised when a lock is held by another live process."""


@dataclass(frozen=True)
class LockOwner:
    pid: int
    host: str
    acquired_at: float

    @classmethod
    def current(cls) -> LockOwner:
        return cls(pid=os.getpid(), host=socket.gethostname(), acquired_at=time.time())


def _read_owner(path: Path) -> LockOwner | None:
    try:
        data = json.loads((path / OWNER_FILE).read_text(encoding="utf-8"))
        return LockOwner(
            pid=int(data["pid"]), host=str(data["host"]), acquired_at=float(data["acquired_at"])
        )
    except (OSError, ValueError, KeyError, TypeError):
        return None


def _lock_age(path: Path, now: float) -> float | None:
    try:
        return now - path.stat().st_mtime
    except FileNotFoundError:
        return None


def is_stale(path: Path, stale_after: float, *, now: float | None = None) -> bool:
    """Decide whether the lock at ``path`` was abandoned by its holder."""
    now = time.time() if now is None else now
    owner = _read_owner(path)
    if owner is None:
        age = _lock_age(path, now)
        if age is None:
            return False
        # Owner file is written right after mkdir; give the holder a moment.
        return age > min(1.0, stale_after)

    if now - owner.acquired_at > stale_after:
        return True
    if owner.host == socket.gethostname() and owner.pid != os.getpid():
        return not psutil.pid_exists(owner.pid)
    return False


def _remove_lock_dir(path: Path) -> None:
    shutil.rmtree(path, ignore_errors=True)


def _reclaim(path: Path) -> bool:
    """Move a stale lock aside atomically, then delete it.

    Renaming first means two processes racing to reclaim the same lock cannot
    both succeed. If the lock we moved is not the one we judged stale (another
    process reclaimed and re-acquired it in between), it is put back.
    """
    judged = _read_owner(path)
    tomb = path.with_name(f"{path.name}.reclaim-{os.getpid()}-{uuid.uuid4().hex[:8]}")
    try:
        path.rename(tomb)
    except OSError:
        return False
    if _read_owner(tomb) != judged:
        try:
            tomb.rename(path)
        except OSError:
            logger.debug("Could not restore live lock %s", path)
        return False
    _remove_lock_dir(tomb)
    return True


class DirectoryLock:
    """An exclusive lock shared by every process using the same path."""

    def __init__(self, path: Path, *, stale_after: float = 60.0) -> None:
        self.path = path
        self.stale_after = stale_after
        self._held = False
        self._owner: LockOwner | None = None

    @property
    def held(self) -> bool:
        return self._held

    def _try_create(self) -> bool:
        try:
            self.path.mkdir()
        except FileExistsError:
            return False
        except OSError as exc:
            raise StorageError(f"Cannot create lock {self.path}: {exc}") from exc

        owner = LockOwner.current()
        try:
            (self.path / OWNER_FILE).write_text(
                json.dumps(
                    {"pid": owner.pid, "host": owner.host, "acquired_at": owner.acquired_at}
                ),
                encoding="utf-8",
            )
        except OSError as exc:
            _remove_lock_dir(self.path)
            raise StorageError(f"Cannot write lock owner for {self.path}: {exc}") from exc
        self._owner = owner
        return True

    def acquire(self, *, timeout: float = 0.0, poll_interval: float = DEFAULT_POLL_INTERVAL) -> None:
        """Acquire the lock, waiting at most ``timeout`` seconds.

        Raises:
            LockUnavailable: If another live holder keeps the lock past the timeout.
            StorageError: If the lock directory cannot be created at all.
        """
        if self._held:
            raise StorageError(f"Lock {self.path} is already held by this object")

        self.path.parent.mkdir(parents=True, exist_ok=True)
        deadline = time.monotonic() + max(timeout, 0.0)
        while True:
            if self._try_create():
                self._held = True
                return
            if is_stale(self.path, self.stale_after) and _reclaim(self.path):
                logger.warning("Reclaimed stale lock %s", self.path)
                continue
            if time.monotonic() >= deadline:
                raise LockUnavailable(f"Lock busy: {self.path.name}", context={"path": str(self.path)})
            time.sleep(poll_interval)

    def release(self) -> None:
        if not self._held:
            return
        self._held = False
        written, self._owner = self._owner, None
        if _read_owner(self.path) != written:
            # Reclaimed after we went stale, possibly re-created without its owner file yet
            logger.debug("Lock %s changed owner before release", self.path)
            return
        _remove_lock_dir(self.path)

    @contextmanager
    def hold(self, *, timeout: float = 0.0) -> Iterator[DirectoryLock]:
        """Hold the lock for the duration of the block, releasing on every exit path."""
        self.acquire(timeout=timeout)
        try:
            yield self
        finally:
            self.release()


def reclaim_stale_locks(lock_dir: Path, stale_after: float) -> list[Path]:
    """Remove every abandoned lock under ``lock_dir``. Returns the reclaimed paths."""
    reclaimed: list[Path] = []
    if not lock_dir.is_dir():
        return reclaimed
    for candidate in lock_dir.glob(f"*{LOCK_SUFFIX}"):
        if candidate.is_dir() and is_stale(candidate, stale_after) and _reclaim(candidate):
            reclaimed.append(candidate)
    # Leftovers from a reclaimer that died between rename and delete.
    for tomb in lock_dir.glob(f"*{LOCK_SUFFIX}.reclaim-*"):
        _remove_lock_dir(tomb)
    if reclaimed:
        logger.info("Reclaimed %d stale lock(s) in %s", len(reclaimed), lock_dir)
    return reclaimed


__all__ = [
    "DirectoryLock",
    "LockOwner",
    "LockUnavailable",
    "is_stale",
    "reclaim_stale_locks",
]
