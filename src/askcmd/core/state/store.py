"""Persistent records shared between askcmd processes.

Cache entries, the rate-limit window and the circuit-breaker state are small
JSON records. Components talk to them through the ``StateStore`` protocol so
the logic on top (TTL arithmetic, window pruning, breaker transitions) can be
tested against ``MemoryStateStore`` without touching a filesystem.

``FileStateStore`` writes each record atomically (temp file + ``os.replace``),
so readers never observe a torn record and need no lock. Writers that
read-modify-write wrap the sequence in ``store.locked(name)``.
"""

from __future__ import annotations

import json
import os
import re
import tempfile
import time
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from pathlib import Path
from typing import Any, ContextManager, Protocol

from askcmd.core.console import get_logger
from askcmd.core.result import StorageError
from askcmd.core.state.locks import LOCK_SUFFIX, DirectoryLock, LockUnavailable

logger = get_logger(__name__)

RECORD_SUFFIX = ".json"
TEMP_SUFFIX = ".tmp"
_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,127}$")


def _check_name(name: str) -> str:
    if not _NAME_PATTERN.match(name) or ".." in name:
        raise StorageError(f"Invalid record name: {name!r}")
    return name


class StateStore(Protocol):
    """Keyed JSON records with per-record cross-process locking."""

    def load(self, name: str) -> dict[str, Any] | None: ...

    def save(self, name: str, record: Mapping[str, Any]) -> None: ...

    def delete(self, name: str) -> None: ...

    def names(self) -> list[str]: ...

    def locked(self, name: str, *, timeout: float | None = None) -> ContextManager[None]: ...


class FileStateStore:
    """StateStore backed by one JSON file per record.

    Args:
        root: Directory holding ``<name>.json`` records.
        lock_dir: Directory holding ``<namespace>-<name>.lock`` lock directories.
        namespace: Prefix that keeps lock names of different stores apart.
        stale_after: Age in seconds after which a lock is reclaimed.
        lock_timeout: Default wait for ``locked()`` when no timeout is given.
    """

    def __init__(
        self,
        root: Path,
        lock_dir: Path,
        *,
        namespace: str = "state",
        stale_after: float = 60.0,
        lock_timeout: float = 2.0,
    ) -> None:
        self.root = root
        self.lock_dir = lock_dir
        self.namespace = namespace
        self.stale_after = stale_after
        self.lock_timeout = lock_timeout

    def ensure_writable(self) -> None:
        """Create the directories and prove we can write into them.

        Raises:
            StorageError: If either directory is not writable.
        """
        for directory in (self.root, self.lock_dir):
            try:
                directory.mkdir(parents=True, exist_ok=True)
                with tempfile.TemporaryFile(dir=directory):
                    pass
            except OSError as exc:
                raise StorageError(
                    f"Directory not writable: {directory}", context={"error": str(exc)}
                ) from exc

    def path_for(self, name: str) -> Path:
        return self.root / f"{_check_name(name)}{RECORD_SUFFIX}"

    def load(self, name: str) -> dict[str, Any] | None:
        path = self.path_for(name)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageError(f"Cannot read {path}: {exc}") from exc

        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Ignoring corrupt state record %s", path)
            return None
        if not isinstance(data, dict):
            logger.warning("Ignoring malformed state record %s", path)
            return None
        return data

    def save(self, name: str, record: Mapping[str, Any]) -> None:
        path = self.path_for(name)
        payload = json.dumps(dict(record), sort_keys=True)
        tmp_path: Path | None = None
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                dir=self.root,
                prefix=f".{name}.",
                suffix=TEMP_SUFFIX,
                delete=False,
                encoding="utf-8",
            ) as handle:
                tmp_path = Path(handle.name)
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, path)
            tmp_path = None
        except OSError as exc:
            raise StorageError(f"Cannot write {path}: {exc}") from exc
        finally:
            if tmp_path is not None:
                tmp_path.unlink(missing_ok=True)

    def delete(self, name: str) -> None:
        try:
            self.path_for(name).unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Cannot delete record {name}: {exc}") from exc

    def names(self) -> list[str]:
        if not self.root.is_dir():
            return []
        return sorted(
            path.name[: -len(RECORD_SUFFIX)]
            for path in self.root.glob(f"*{RECORD_SUFFIX}")
            if not path.name.startswith(".")
        )

    def lock(self, name: str, *, stale_after: float | None = None) -> DirectoryLock:
        lock_name = f"{self.namespace}-{_check_name(name)}{LOCK_SUFFIX}"
        return DirectoryLock(
            self.lock_dir / lock_name,
            stale_after=self.stale_after if stale_after is None else stale_after,
        )

    @contextmanager
    def locked(self, name: str, *, timeout: float | None = None) -> Iterator[None]:
        wait = self.lock_timeout if timeout is None else timeout
        try:
            self.lock_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"Cannot create lock directory {self.lock_dir}: {exc}") from exc
        with self.lock(name).hold(timeout=wait):
            yield

    def cleanup_temp_files(self, max_age: float = 60.0) -> int:
        """Delete temp files orphaned by a process that died mid-write."""
        if not self.root.is_dir():
            return 0
        removed = 0
        cutoff = time.time() - max_age
        for candidate in self.root.glob(f".*{TEMP_SUFFIX}"):
            try:
                if candidate.stat().st_mtime < cutoff:
                    candidate.unlink()
                    removed += 1
            except OSError:
                continue
        return removed


class MemoryStateStore:
    """In-process StateStore used by tests and as a stand-in when disk state is off."""

    def __init__(self) -> None:
        self._records: dict[str, dict[str, Any]] = {}
        self._held: set[str] = set()

    def load(self, name: str) -> dict[str, Any] | None:
        record = self._records.get(_check_name(name))
        return json.loads(json.dumps(record)) if record is not None else None

    def save(self, name: str, record: Mapping[str, Any]) -> None:
        self._records[_check_name(name)] = json.loads(json.dumps(dict(record)))

    def delete(self, name: str) -> None:
        self._records.pop(_check_name(name), None)

    def names(self) -> list[str]:
        return sorted(self._records)

    def is_locked(self, name: str) -> bool:
        return name in self._held

    @contextmanager
    def locked(self, name: str, *, timeout: float | None = None) -> Iterator[None]:
        if name in self._held:
            raise LockUnavailable(f"Lock busy: {name}")
        self._held.add(name)
        try:
            yield
        finally:
            self._held.discard(name)


__all__ = [
    "FileStateStore",
    "MemoryStateStore",
    "StateStore",
]
