"""Tests for core/config.py - layered configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from askcmd.core.config import (
    AppConfig,
    ConfigError,
    MultilinePolicy,
    OutputMode,
    apply_overrides,
    load_config,
)
from askcmd.core.result import ExitCode


def _write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


class TestDefaults:
    def test_defaults_without_file(self, isolate_config: Path) -> None:
        config, meta = load_config()
        assert config.output_mode == OutputMode.AUTO
        assert config.cache_ttl == 3600
        assert config.timeout == 30.0
        assert config.safe_mode is False
        assert config.backend.command == ("claude", "-p")
        assert config.backend.multiline_policy == MultilinePolicy.FIRST_LINE
        assert config.guard.rate_limit_calls == 10
        assert config.guard.breaker_threshold == 3
        assert meta.file_loaded is False
        assert meta.path == isolate_config / "config.toml"

    def test_derived_directories(self, isolate_config: Path) -> None:
        config, _ = load_config()
        assert config.home == isolate_config
        assert config.resolved_cache_dir == isolate_config / "cache"
        assert config.resolved_log_dir == isolate_config / "logs"
        assert config.state_dir == isolate_config / "state"
        assert config.lock_dir == isolate_config / "locks"


class TestConfigFile:
    def test_toml_values_loaded(self, isolate_config: Path) -> None:
        _write(
            isolate_config / "config.toml",
            'output_mode = "stdout"\ncache_ttl = 60\n\n[backend]\ncommand = ["llm", "-m", "small"]\n\n'
            "[guard]\nbreaker_cooldown = 5.0\n",
        )
        config, meta = load_config()
        assert meta.file_loaded is True
        assert config.output_mode == OutputMode.STDOUT
        assert config.cache_ttl == 60
        assert config.backend.command == ("llm", "-m", "small")
        assert config.guard.breaker_cooldown == 5.0

    def test_json_file(self, tmp_path: Path) -> None:
        path = _write(tmp_path / "askcmd.json", '{"safe_mode": true}')
        config, _ = load_config(path)
        assert config.safe_mode is True

    def test_unknown_key_rejected(self, isolate_config: Path) -> None:
        _write(isolate_config / "config.toml", "colour = true\n")
        with pytest.raises(ConfigError, match="Unknown option.*colour"):
            load_config()

    def test_unknown_nested_key_rejected(self, isolate_config: Path) -> None:
        _write(isolate_config / "config.toml", "[guard]\nburst = 3\n")
        with pytest.raises(ConfigError, match="guard.burst"):
            load_config()

    def test_section_must_be_table(self, isolate_config: Path) -> None:
        _write(isolate_config / "config.toml", 'backend = "claude"\n')
        with pytest.raises(ConfigError, match="must be a table"):
            load_config()

    def test_syntax_error(self, isolate_config: Path) -> None:
        _write(isolate_config / "config.toml", "cache_ttl = = 3\n")
        with pytest.raises(ConfigError, match="Syntax error"):
            load_config()

    def test_invalid_value(self, isolate_config: Path) -> None:
        _write(isolate_config / "config.toml", "timeout = -1\n")
        with pytest.raises(ConfigError, match="timeout"):
            load_config()

    def test_empty_backend_command(self, isolate_config: Path) -> None:
        _write(isolate_config / "config.toml", "[backend]\ncommand = []\n")
        with pytest.raises(ConfigError, match="must name an executable"):
            load_config()

    def test_explicit_missing_path(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path / "missing.toml")

    def test_config_error_exit_code(self) -> None:
        assert ConfigError("x").exit_code == ExitCode.CONFIG_ERROR


class TestPrecedence:
    def test_env_beats_file(self, isolate_config: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        _write(isolate_config / "config.toml", "cache_ttl = 60\n")
        monkeypatch.setenv("ASKCMD_CACHE_TTL", "120")
        config, meta = load_config()
        assert config.cache_ttl == 120
        assert "cache_ttl" in meta.env_overrides

    def test_nested_env_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ASKCMD_GUARD__BREAKER_THRESHOLD", "7")
        config, meta = load_config()
        assert config.guard.breaker_threshold == 7
        assert "guard.breaker_threshold" in meta.env_overrides

    def test_env_mapping_argument(self) -> None:
        config, _ = load_config(env={"ASKCMD_SAFE_MODE": "true"})
        assert config.safe_mode is True

    def test_overrides_beat_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ASKCMD_TIMEOUT", "10")
        config, _ = load_config(overrides={"timeout": 3.0})
        assert config.timeout == 3.0


class TestApplyOverrides:
    def test_returns_new_config(self) -> None:
        config, _ = load_config()
        updated = apply_overrides(config, {"safe_mode": True, "timeout": 12.5})
        assert updated.safe_mode is True
        assert updated.timeout == 12.5
        assert config.safe_mode is False
        assert updated.home == config.home

    def test_overrides_win_over_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ASKCMD_SAFE_MODE", "false")
        monkeypatch.setenv("ASKCMD_TIMEOUT", "30")
        config, _ = load_config()
        updated = apply_overrides(config, {"safe_mode": True, "timeout": 12.5})
        assert updated.safe_mode is True
        assert updated.timeout == 12.5

    def test_untouched_env_values_survive(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ASKCMD_CACHE_TTL", "90")
        config, _ = load_config()
        updated = apply_overrides(config, {"safe_mode": True})
        assert updated.cache_ttl == 90

    def test_nested_override_merges(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ASKCMD_BACKEND__SLOTS", "4")
        config, _ = load_config()
        updated = apply_overrides(config, {"backend": {"slots": 6}})
        assert updated.backend.slots == 6
        assert updated.backend.command == config.backend.command

    def test_unknown_override(self) -> None:
        config, _ = load_config()
        with pytest.raises(ConfigError, match="Unknown option: colour"):
            apply_overrides(config, {"colour": True})

    def test_invalid_nested_override(self) -> None:
        config, _ = load_config()
        with pytest.raises(ConfigError, match="backend.slots"):
            apply_overrides(config, {"backend": {"slots": 0}})

    def test_no_overrides_returns_same_object(self) -> None:
        config, _ = load_config()
        assert apply_overrides(config, {}) is config

    def test_invalid_override(self) -> None:
        config, _ = load_config()
        with pytest.raises(ConfigError, match="timeout"):
            apply_overrides(config, {"timeout": 0})

    def test_config_is_frozen(self) -> None:
        config = AppConfig()
        with pytest.raises(Exception):
            config.timeout = 1.0  # type: ignore[misc]
