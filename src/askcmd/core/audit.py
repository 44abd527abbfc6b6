"""Append-only audit trail of commands, security events and timings.

Each record is one JSON line in ``<log_dir>/audit.jsonl``. Records are written
with a single ``O_APPEND`` write so concurrent processes never interleave
within a line, and the core never rewrites or deletes them. Audit failures
are logged and swallowed; they never fail a request.
"""

from __future__ import annotations

import os
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from askcmd.core.console import get_logger

logger = get_logger(__name__)

AUDIT_FILE = "audit.jsonl"


class AuditCategory(str, Enum):
    COMMAND = "command"
    SECURITY = "security"
    PERFORMANCE = "performance"


class AuditRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    category: AuditCategory
    event: str
    trace_id: str
    payload: dict[str, Any] = Field(default_factory=dict)


class AuditLog:
    def __init__(self, log_dir: Path, trace_id: str | None = None) -> None:
        self.log_dir = log_dir
        self.trace_id = trace_id or uuid.uuid4().hex[:12]
        self._path = log_dir / AUDIT_FILE

    @property
    def path(self) -> Path:
        return self._path

    def record(self, category: AuditCategory, event: str, **payload: Any) -> AuditRecord:
        entry = AuditRecord(category=category, event=event, trace_id=self.trace_id, payload=payload)
        try:
            self._write_line(entry.model_dump_json())
        except OSError as exc:
            logger.warning("Audit log unavailable (%s): %s", self._path, exc)
        if category == AuditCategory.SECURITY:
            logger.warning("Security event %s: %s", event, payload)
        return entry

    def _write_line(self, line: str) -> None:
        self.log_dir.mkdir(parents=True, exist_ok=True)
        data = (line + "\n").encode("utf-8")
        fd = os.open(self._path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o600)
        try:
            os.write(fd, data)
        finally:
            os.close(fd)

    def read(self, category: AuditCategory | None = None, limit: int | None = None) -> list[AuditRecord]:
        """Return records oldest first, optionally filtered, keeping the newest ``limit``."""
        try:
            lines = self._path.read_text(encoding="utf-8").splitlines()
        except FileNotFoundError:
            return []
        except OSError as exc:
            logger.warning("Cannot read audit log %s: %s", self._path, exc)
            return []

        records: list[AuditRecord] = []
        for line in lines:
            if not line.strip():
                continue
            try:
                entry = AuditRecord.model_validate_json(line)
            except ValidationError:
                logger.debug("Skipping malformed audit line")
                continue
            if category is None or entry.category == category:
                records.append(entry)
        if limit is not None:
            records = records[-limit:] if limit > 0 else []
        return records


class StageTimer:
    """Collect wall-clock durations of named pipeline stages, in milliseconds."""

    def __init__(self) -> None:
        self.timings: dict[str, float] = {}
        self._started = time.perf_counter()

    @contextmanager
    def stage(self, name: str) -> Iterator[None]:
        start = time.perf_counter()
        try:
            yield
        finally:
            self.timings[name] = round((time.perf_counter() - start) * 1000, 3)

    def total_ms(self) -> float:
        return round((time.perf_counter() - self._started) * 1000, 3)


__all__ = [
    "AUDIT_FILE",
    "AuditCategory",
    "AuditLog",
    "AuditRecord",
    "StageTimer",
]
