"""Tests for core/state/locks.py - cross-process directory locks."""

from __future__ import annotations

import json
import os
import socket
import time
from pathlib import Path
from typing import Any

import pytest

from askcmd.core.state import locks
from askcmd.core.state.locks import (
    OWNER_FILE,
    DirectoryLock,
    LockOwner,
    LockUnavailable,
    is_stale,
    reclaim_stale_locks,
)


def _plant_lock(path: Path, *, pid: int, host: str | None = None, acquired_at: float | None = None) -> None:
    path.mkdir(parents=True)
    (path / OWNER_FILE).write_text(
        json.dumps(
            {
                "pid": pid,
                "host": host or socket.gethostname(),
                "acquired_at": time.time() if acquired_at is None else acquired_at,
            }
        ),
        encoding="utf-8",
    )


# ---------------------------------------------------------------------------
# Acquire / release
# ---------------------------------------------------------------------------


class TestDirectoryLock:
    def test_acquire_creates_directory_with_owner(self, tmp_path: Path) -> None:
        lock = DirectoryLock(tmp_path / "a.lock")
        lock.acquire()
        assert lock.held
        owner = json.loads((tmp_path / "a.lock" / OWNER_FILE).read_text())
        assert owner["pid"] == os.getpid()
        lock.release()
        assert not (tmp_path / "a.lock").exists()

    def test_second_holder_times_out(self, tmp_path: Path) -> None:
        first = DirectoryLock(tmp_path / "a.lock")
        second = DirectoryLock(tmp_path / "a.lock")
        first.acquire()
        try:
            with pytest.raises(LockUnavailable, match="Lock busy"):
                second.acquire(timeout=0.1, poll_interval=0.01)
        finally:
            first.release()

    def test_hold_releases_on_exception(self, tmp_path: Path) -> None:
        lock = DirectoryLock(tmp_path / "a.lock")
        with pytest.raises(RuntimeError):
            with lock.hold():
                raise RuntimeError("boom")
        assert not lock.held
        assert not (tmp_path / "a.lock").exists()

    def test_reacquire_by_same_object_rejected(self, tmp_path: Path) -> None:
        lock = DirectoryLock(tmp_path / "a.lock")
        with lock.hold():
            with pytest.raises(Exception, match="already held"):
                lock.acquire()

    def test_release_without_acquire_is_noop(self, tmp_path: Path) -> None:
        DirectoryLock(tmp_path / "a.lock").release()

    def test_creates_missing_parent(self, tmp_path: Path) -> None:
        lock = DirectoryLock(tmp_path / "nested" / "dir" / "a.lock")
        with lock.hold():
            assert (tmp_path / "nested" / "dir" / "a.lock").is_dir()

    def test_release_leaves_lock_taken_over_by_other_pid(self, tmp_path: Path) -> None:
        path = tmp_path / "a.lock"
        lock = DirectoryLock(path)
        lock.acquire()
        # Simulate another process reclaiming and re-acquiring the lock
        (path / OWNER_FILE).write_text(
            json.dumps({"pid": os.getpid() + 1, "host": "elsewhere", "acquired_at": time.time()})
        )
        lock.release()
        assert path.exists()

    def test_release_leaves_recreated_lock_without_owner(self, tmp_path: Path) -> None:
        path = tmp_path / "a.lock"
        lock = DirectoryLock(path)
        lock.acquire()
        # Another process reclaimed the lock and re-created it, owner file not yet written
        (path / OWNER_FILE).unlink()
        lock.release()
        assert path.is_dir()
        assert not lock.held

    def test_release_leaves_lock_reacquired_in_same_process(self, tmp_path: Path) -> None:
        path = tmp_path / "a.lock"
        lock = DirectoryLock(path)
        lock.acquire()
        other = {"pid": os.getpid(), "host": socket.gethostname(), "acquired_at": 1.0}
        (path / OWNER_FILE).write_text(json.dumps(other))
        lock.release()
        assert path.exists()


# ---------------------------------------------------------------------------
# Staleness and reclamation
# ---------------------------------------------------------------------------


class TestStaleness:
    def test_fresh_live_lock_not_stale(self, tmp_path: Path) -> None:
        path = tmp_path / "a.lock"
        _plant_lock(path, pid=os.getpid())
        assert is_stale(path, stale_after=60.0) is False

    def test_old_lock_is_stale(self, tmp_path: Path) -> None:
        path = tmp_path / "a.lock"
        _plant_lock(path, pid=os.getpid(), acquired_at=time.time() - 600)
        assert is_stale(path, stale_after=60.0) is True

    def test_dead_owner_on_this_host_is_stale(self, tmp_path: Path, monkeypatch: Any) -> None:
        path = tmp_path / "a.lock"
        _plant_lock(path, pid=424242)
        monkeypatch.setattr(locks.psutil, "pid_exists", lambda pid: False)
        assert is_stale(path, stale_after=60.0) is True

    def test_owner_on_other_host_trusted_until_age(self, tmp_path: Path, monkeypatch: Any) -> None:
        path = tmp_path / "a.lock"
        _plant_lock(path, pid=424242, host="some-other-host")
        monkeypatch.setattr(locks.psutil, "pid_exists", lambda pid: False)
        assert is_stale(path, stale_after=60.0) is False

    def test_missing_lock_not_stale(self, tmp_path: Path) -> None:
        assert is_stale(tmp_path / "nope.lock", stale_after=60.0) is False

    def test_ownerless_lock_stale_after_grace(self, tmp_path: Path) -> None:
        path = tmp_path / "a.lock"
        path.mkdir()
        old = time.time() - 30
        os.utime(path, (old, old))
        assert is_stale(path, stale_after=60.0) is True

    def test_ownerless_lock_within_grace(self, tmp_path: Path) -> None:
        path = tmp_path / "a.lock"
        path.mkdir()
        assert is_stale(path, stale_after=60.0, now=time.time()) is False

    def test_acquire_reclaims_stale_lock(self, tmp_path: Path) -> None:
        path = tmp_path / "a.lock"
        _plant_lock(path, pid=os.getpid() + 1, host="elsewhere", acquired_at=time.time() - 600)
        lock = DirectoryLock(path, stale_after=60.0)
        lock.acquire(timeout=0)
        try:
            owner = json.loads((path / OWNER_FILE).read_text())
            assert owner["pid"] == os.getpid()
        finally:
            lock.release()

    def test_reclaim_stale_locks_sweeps_directory(self, tmp_path: Path) -> None:
        _plant_lock(tmp_path / "old.lock", pid=1, host="elsewhere", acquired_at=time.time() - 600)
        _plant_lock(tmp_path / "live.lock", pid=os.getpid())
        (tmp_path / "x.lock.reclaim-1-abcd").mkdir()

        reclaimed = reclaim_stale_locks(tmp_path, stale_after=60.0)

        assert reclaimed == [tmp_path / "old.lock"]
        assert (tmp_path / "live.lock").exists()
        assert not (tmp_path / "x.lock.reclaim-1-abcd").exists()

    def test_reclaim_missing_directory(self, tmp_path: Path) -> None:
        assert reclaim_stale_locks(tmp_path / "absent", stale_after=60.0) == []


def test_lock_owner_current() -> None:
    owner = LockOwner.current()
    assert owner.pid == os.getpid()
    assert owner.host == socket.gethostname()
