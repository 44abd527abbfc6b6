"""Tests for core/state/store.py - JSON record stores."""

from __future__ import annotations

import os
import time
from pathlib import Path

import pytest

from askcmd.core.result import StorageError
from askcmd.core.state import FileStateStore, LockUnavailable, MemoryStateStore


@pytest.fixture
def file_store(tmp_path: Path) -> FileStateStore:
    return FileStateStore(tmp_path / "records", tmp_path / "locks", namespace="test")


# ---------------------------------------------------------------------------
# FileStateStore
# ---------------------------------------------------------------------------


class TestFileStateStore:
    def test_missing_record_loads_none(self, file_store: FileStateStore) -> None:
        assert file_store.load("absent") is None

    def test_save_then_load(self, file_store: FileStateStore) -> None:
        file_store.save("breaker", {"status": "open", "failures": 3})
        assert file_store.load("breaker") == {"status": "open", "failures": 3}

    def test_save_replaces_atomically(self, file_store: FileStateStore) -> None:
        file_store.save("r", {"v": 1})
        file_store.save("r", {"v": 2})
        assert file_store.load("r") == {"v": 2}
        leftovers = list(file_store.root.glob(".*.tmp"))
        assert leftovers == []

    def test_corrupt_record_treated_as_missing(self, file_store: FileStateStore) -> None:
        file_store.root.mkdir(parents=True)
        file_store.path_for("r").write_text("{not json", encoding="utf-8")
        assert file_store.load("r") is None

    def test_non_object_record_treated_as_missing(self, file_store: FileStateStore) -> None:
        file_store.root.mkdir(parents=True)
        file_store.path_for("r").write_text("[1, 2]", encoding="utf-8")
        assert file_store.load("r") is None

    def test_delete_and_names(self, file_store: FileStateStore) -> None:
        file_store.save("b", {})
        file_store.save("a", {})
        assert file_store.names() == ["a", "b"]
        file_store.delete("a")
        file_store.delete("a")
        assert file_store.names() == ["b"]

    def test_names_on_missing_root(self, file_store: FileStateStore) -> None:
        assert file_store.names() == []

    @pytest.mark.parametrize("name", ["../escape", "", ".hidden", "a/b", "x" * 200])
    def test_invalid_names_rejected(self, file_store: FileStateStore, name: str) -> None:
        with pytest.raises(StorageError, match="Invalid record name"):
            file_store.save(name, {})

    def test_locked_is_exclusive(self, file_store: FileStateStore) -> None:
        other = FileStateStore(file_store.root, file_store.lock_dir, namespace="test")
        with file_store.locked("r"):
            with pytest.raises(LockUnavailable):
                with other.locked("r", timeout=0):
                    pass
        with other.locked("r", timeout=0):
            pass

    def test_namespaces_do_not_collide(self, file_store: FileStateStore) -> None:
        other = FileStateStore(file_store.root, file_store.lock_dir, namespace="other")
        with file_store.locked("r"):
            with other.locked("r", timeout=0):
                pass

    def test_ensure_writable_creates_directories(self, file_store: FileStateStore) -> None:
        file_store.ensure_writable()
        assert file_store.root.is_dir()
        assert file_store.lock_dir.is_dir()

    def test_ensure_writable_fails_on_file_in_the_way(self, tmp_path: Path) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        store = FileStateStore(blocker / "records", tmp_path / "locks")
        with pytest.raises(StorageError, match="not writable"):
            store.ensure_writable()

    def test_cleanup_temp_files_removes_old_only(self, file_store: FileStateStore) -> None:
        file_store.root.mkdir(parents=True)
        old = file_store.root / ".r.abc.tmp"
        fresh = file_store.root / ".r.def.tmp"
        old.write_text("x")
        fresh.write_text("x")
        past = time.time() - 3600
        os.utime(old, (past, past))

        assert file_store.cleanup_temp_files(max_age=60.0) == 1
        assert not old.exists()
        assert fresh.exists()


# ---------------------------------------------------------------------------
# MemoryStateStore
# ---------------------------------------------------------------------------


class TestMemoryStateStore:
    def test_round_trip_copies(self, memory_store: MemoryStateStore) -> None:
        record = {"timestamps": [1.0]}
        memory_store.save("r", record)
        record["timestamps"].append(2.0)
        loaded = memory_store.load("r")
        assert loaded == {"timestamps": [1.0]}
        assert loaded is not None
        loaded["timestamps"].append(3.0)
        assert memory_store.load("r") == {"timestamps": [1.0]}

    def test_locked_is_not_reentrant(self, memory_store: MemoryStateStore) -> None:
        with memory_store.locked("r"):
            assert memory_store.is_locked("r")
            with pytest.raises(LockUnavailable):
                with memory_store.locked("r"):
                    pass
        assert not memory_store.is_locked("r")

    def test_delete_missing_is_noop(self, memory_store: MemoryStateStore) -> None:
        memory_store.delete("absent")
        assert memory_store.names() == []
