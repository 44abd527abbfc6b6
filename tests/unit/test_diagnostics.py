"""Tests for core/diagnostics.py - doctor checks."""

from __future__ import annotations

from pathlib import Path

import pyperclip
import pytest

from askcmd.core import diagnostics
from askcmd.core.config import AppConfig
from askcmd.core.diagnostics import (
    BackendCheck,
    CheckResult,
    ClipboardCheck,
    ConfigCheck,
    DiagnosticCheck,
    StorageCheck,
    TmuxCheck,
    default_checks,
    run_diagnostics,
)


class StaticCheck(DiagnosticCheck):
    def __init__(self, name: str, status: str, required: bool = False) -> None:
        self.name = name
        self.status = status
        self.required = required

    async def run(self) -> tuple[str, str]:
        return self.status, f"{self.name} is {self.status}"


class TestChecks:
    @pytest.mark.asyncio
    async def test_backend_found(self) -> None:
        check = BackendCheck(AppConfig(), which=lambda name: f"/usr/bin/{name}")
        assert await check.run() == ("ok", "/usr/bin/claude")

    @pytest.mark.asyncio
    async def test_backend_missing(self) -> None:
        check = BackendCheck(AppConfig(), which=lambda _: None)
        status, message = await check.run()
        assert status == "missing"
        assert "claude not found" in message

    @pytest.mark.asyncio
    async def test_storage_writable(self) -> None:
        status, _ = await StorageCheck(AppConfig()).run()
        assert status == "ok"

    @pytest.mark.asyncio
    async def test_storage_unwritable_is_warning(self, tmp_path: Path) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        status, message = await StorageCheck(AppConfig(cache_dir=blocker / "cache")).run()
        assert status == "warn"
        assert "cache" in message

    @pytest.mark.asyncio
    async def test_tmux_states(self) -> None:
        assert (await TmuxCheck(env={}, which=lambda _: None).run())[0] == "warn"
        outside = await TmuxCheck(env={}, which=lambda _: "/usr/bin/tmux").run()
        assert "Not inside" in outside[1]
        inside = await TmuxCheck(env={"TMUX": "sock"}, which=lambda _: "/usr/bin/tmux").run()
        assert inside[0] == "ok"

    @pytest.mark.asyncio
    async def test_clipboard_unavailable(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def broken() -> str:
            raise pyperclip.PyperclipException("headless")

        monkeypatch.setattr(diagnostics.pyperclip, "paste", broken)
        status, message = await ClipboardCheck().run()
        assert status == "warn"
        assert "headless" in message

    @pytest.mark.asyncio
    async def test_config_source(self, tmp_path: Path) -> None:
        loaded = await ConfigCheck(tmp_path / "config.toml", True).run()
        assert loaded == ("ok", f"Loaded {tmp_path / 'config.toml'}")
        assert "defaults" in (await ConfigCheck(None, False).run())[1]


class TestRunDiagnostics:
    @pytest.mark.asyncio
    async def test_results_in_check_order(self) -> None:
        results = await run_diagnostics(
            [StaticCheck("a", "ok"), StaticCheck("b", "warn"), StaticCheck("c", "missing", True)]
        )
        assert [r.name for r in results] == ["a", "b", "c"]
        assert [r.failed for r in results] == [False, False, True]

    def test_optional_failures_do_not_fail(self) -> None:
        assert CheckResult("Clipboard", "error", "x", required=False).failed is False

    def test_default_checks(self) -> None:
        names = [c.name for c in default_checks(AppConfig(), None, False)]
        assert names == ["Backend", "Storage", "Clipboard", "tmux", "Config"]
