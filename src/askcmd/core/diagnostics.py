"""Environment health checks behind ``askcmd doctor``.

Checks:
    - Backend executable on PATH (required)
    - State, cache, lock and log directories writable
    - Clipboard and tmux availability for delivery
    - Config file source
"""

from __future__ import annotations

import asyncio
import os
import shutil
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path

import pyperclip

from askcmd.core.config import AppConfig
from askcmd.core.result import StorageError
from askcmd.core.state import FileStateStore


@dataclass(frozen=True)
class CheckResult:
    name: str
    status: str
    message: str
    required: bool = False

    @property
    def failed(self) -> bool:
        return self.required and self.status in ("error", "missing")


class DiagnosticCheck(ABC):
    name: str
    required: bool = False

    @abstractmethod
    async def run(self) -> tuple[str, str]:
        """Run the diagnostic and return (status, message)."""


class BackendCheck(DiagnosticCheck):
    required = True

    def __init__(self, config: AppConfig, which: Callable[[str], str | None] = shutil.which) -> None:
        self.config = config
        self.which = which
        self.name = "Backend"

    async def run(self) -> tuple[str, str]:
        binary = self.config.backend.command[0]
        resolved = self.which(binary)
        if resolved is None:
            return "missing", f"{binary} not found on PATH (backend.command)"
        return "ok", resolved


class StorageCheck(DiagnosticCheck):
    def __init__(self, config: AppConfig) -> None:
        self.config = config
        self.name = "Storage"

    async def run(self) -> tuple[str, str]:
        directories = {
            "state": self.config.state_dir,
            "cache": self.config.resolved_cache_dir,
            "logs": self.config.resolved_log_dir,
        }
        problems: list[str] = []
        for label, directory in directories.items():
            store = FileStateStore(directory, self.config.lock_dir)
            try:
                await asyncio.to_thread(store.ensure_writable)
            except StorageError as exc:
                problems.append(f"{label}: {exc.message}")
        if problems:
            return "warn", "; ".join(problems) + " (caching and guards degrade)"
        return "ok", f"Writable under {self.config.home}"


class ClipboardCheck(DiagnosticCheck):
    def __init__(self) -> None:
        self.name = "Clipboard"

    async def run(self) -> tuple[str, str]:
        try:
            await asyncio.to_thread(pyperclip.paste)
        except pyperclip.PyperclipException as exc:
            return "warn", f"Unavailable: {exc}"
        return "ok", "pyperclip backend available"


class TmuxCheck(DiagnosticCheck):
    def __init__(
        self,
        env: Mapping[str, str] | None = None,
        which: Callable[[str], str | None] = shutil.which,
    ) -> None:
        self.env = os.environ if env is None else env
        self.which = which
        self.name = "tmux"

    async def run(self) -> tuple[str, str]:
        if self.which("tmux") is None:
            return "warn", "tmux not installed; prefill delivery unavailable"
        if not self.env.get("TMUX"):
            return "warn", "Not inside a tmux session; prefill delivery unavailable"
        return "ok", "Prefill delivery available"


class ConfigCheck(DiagnosticCheck):
    def __init__(self, config_path: Path | None, file_loaded: bool) -> None:
        self.config_path = config_path
        self.file_loaded = file_loaded
        self.name = "Config"

    async def run(self) -> tuple[str, str]:
        if self.file_loaded:
            return "ok", f"Loaded {self.config_path}"
        return "ok", "No config file; using defaults and environment"


def default_checks(config: AppConfig, config_path: Path | None, file_loaded: bool) -> list[DiagnosticCheck]:
    return [
        BackendCheck(config),
        StorageCheck(config),
        ClipboardCheck(),
        TmuxCheck(),
        ConfigCheck(config_path, file_loaded),
    ]


async def run_diagnostics(checks: list[DiagnosticCheck]) -> list[CheckResult]:
    """Run every check concurrently."""
    outcomes = await asyncio.gather(*(check.run() for check in checks))
    return [
        CheckResult(name=check.name, status=status, message=message, required=check.required)
        for check, (status, message) in zip(checks, outcomes, strict=True)
    ]


__all__ = [
    "BackendCheck",
    "CheckResult",
    "ClipboardCheck",
    "ConfigCheck",
    "DiagnosticCheck",
    "StorageCheck",
    "TmuxCheck",
    "default_checks",
    "run_diagnostics",
]
