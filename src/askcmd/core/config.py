"""Application configuration management.

Handles loading and validating configuration from multiple sources:
    - TOML/JSON config files
    - Environment variables (ASKCMD_* prefix)
    - Default values

Key components:
    - AppConfig: Main configuration model (immutable once loaded)
    - load_config(): Config loading that fails loudly on invalid input
    - ConfigLoadResult: Metadata about config source
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Mapping
from contextlib import nullcontext
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Annotated, Any
from unittest.mock import patch

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from askcmd.core.result import ConfigurationError

CONFIG_ENV_VAR = "ASKCMD_CONFIG"
HOME_ENV_VAR = "ASKCMD_HOME"


class ConfigError(ConfigurationError):
    """Raised when configuration cannot be loaded or validated."""


class OutputMode(str, Enum):
    AUTO = "auto"
    PREFILL = "prefill"
    CLIPBOARD = "clipboard"
    STDOUT = "stdout"


class MultilinePolicy(str, Enum):
    """How backend output spanning several lines is collapsed to one."""

    FIRST_LINE = "first_line"
    JOIN = "join"


def _default_home() -> Path:
    return Path.home() / ".askcmd"


# -----------------------------------------------------------------------------
# Sub-configuration Models
# -----------------------------------------------------------------------------


class BackendConfig(BaseModel):
    """Text-generation backend invocation settings."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    command: tuple[str, ...] = Field(
        default=("claude", "-p"),
        description="Backend argv; the prompt is appended as the final argument.",
    )
    slots: int = Field(
        default=2, ge=1, le=16, description="Concurrent backend invocations across processes."
    )
    slot_wait: float = Field(
        default=5.0, ge=0, description="Seconds to wait for a free invocation slot."
    )
    multiline_policy: MultilinePolicy = Field(
        default=MultilinePolicy.FIRST_LINE,
        description="Collapse multi-line output to its first line or join all lines.",
    )

    @field_validator("command")
    @classmethod
    def command_not_empty(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        if not v or not v[0].strip():
            raise ValueError("backend.command must name an executable")
        return v


class GuardConfig(BaseModel):
    """Rate limiting, circuit breaker and lock tuning."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    rate_limit_calls: int = Field(default=10, ge=1, description="Max backend calls per window.")
    rate_limit_window: float = Field(
        default=60.0, gt=0, description="Window size in seconds for rate limiting."
    )
    breaker_threshold: int = Field(
        default=3, ge=1, description="Consecutive failures that open the circuit breaker."
    )
    breaker_cooldown: float = Field(
        default=60.0, gt=0, description="Seconds the breaker stays open before a trial call."
    )
    lock_stale_seconds: float = Field(
        default=60.0, gt=0, description="Age after which a lock is considered abandoned."
    )
    lock_timeout: float = Field(
        default=2.0, ge=0, description="Max seconds to wait for a state lock."
    )


@dataclass
class ConfigLoadResult:
    path: Path
    file_loaded: bool
    env_overrides: set[str]


class AppConfig(BaseSettings):
    """Application-wide configuration. Built once at startup and never mutated."""

    model_config = SettingsConfigDict(
        env_prefix="ASKCMD_",
        env_nested_delimiter="__",
        extra="ignore",
        frozen=True,
    )

    output_mode: OutputMode = Field(default=OutputMode.AUTO, description="How to deliver commands.")
    cache_ttl: int = Field(default=3600, ge=0, description="Cache lifetime in seconds; 0 disables.")
    safe_mode: bool = Field(default=False, description="Only accept read-only commands.")
    debug: bool = Field(default=False, description="Enable debug logging.")
    timeout: float = Field(default=30.0, gt=0, le=600, description="Backend timeout in seconds.")
    max_input_length: int = Field(default=500, ge=1, le=10_000)
    color_output: bool = Field(default=True, description="Colourise stderr output.")
    home: Path = Field(default_factory=_default_home, description="Base directory for state.")
    cache_dir: Path | None = Field(default=None, description="Override for the cache directory.")
    log_dir: Path | None = Field(default=None, description="Override for the audit log directory.")

    backend: BackendConfig = Field(default_factory=BackendConfig)
    guard: GuardConfig = Field(default_factory=GuardConfig)

    @field_validator("home", "cache_dir", "log_dir", mode="after")
    @classmethod
    def expand_paths(cls, v: Path | None) -> Path | None:
        return v.expanduser() if v is not None else None

    @property
    def resolved_cache_dir(self) -> Path:
        return self.cache_dir or self.home / "cache"

    @property
    def resolved_log_dir(self) -> Path:
        return self.log_dir or self.home / "logs"

    @property
    def state_dir(self) -> Path:
        return self.home / "state"

    @property
    def lock_dir(self) -> Path:
        return self.home / "locks"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[
        PydanticBaseSettingsSource,
        PydanticBaseSettingsSource,
        PydanticBaseSettingsSource,
        PydanticBaseSettingsSource,
    ]:
        # Ensure environment variables override config file entries.
        return (env_settings, init_settings, dotenv_settings, file_secret_settings)


_NESTED_MODELS: dict[str, type[BaseModel]] = {
    "backend": BackendConfig,
    "guard": GuardConfig,
}


def _resolve_config_path(config_path: Path | None, env_vars: Mapping[str, str]) -> Path:
    if config_path is not None:
        return config_path.expanduser()
    if env_vars.get(CONFIG_ENV_VAR):
        return Path(env_vars[CONFIG_ENV_VAR]).expanduser()
    home = Path(env_vars[HOME_ENV_VAR]).expanduser() if env_vars.get(HOME_ENV_VAR) else _default_home()
    return home / "config.toml"


def _check_known_keys(data: Mapping[str, Any], path: Path) -> None:
    top_level = set(AppConfig.model_fields)
    unknown = sorted(key for key in data if key not in top_level)
    for group, model_cls in _NESTED_MODELS.items():
        section = data.get(group)
        if section is None:
            continue
        if not isinstance(section, dict):
            raise ConfigError(f"Section [{group}] in {path} must be a table.")
        unknown.extend(f"{group}.{key}" for key in section if key not in model_cls.model_fields)
    if unknown:
        raise ConfigError(f"Unknown option(s) in {path}: {', '.join(unknown)}")


def _read_config_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Cannot read {path}: {exc}") from exc

    suffix = path.suffix.lower()
    parser = json.loads if suffix == ".json" else tomllib.loads

    try:
        data = parser(raw)
    except (json.JSONDecodeError, tomllib.TOMLDecodeError) as exc:
        raise ConfigError(f"Syntax error in {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError(f"Config root in {path} must be a mapping.")

    _check_known_keys(data, path)
    return data


def _detect_env_overrides(env_vars: Mapping[str, str]) -> set[str]:
    """Detect which fields are overridden by environment variables.

    For nested models, detects vars like ASKCMD_BACKEND__SLOTS, ASKCMD_GUARD__BREAKER_THRESHOLD.
    """
    prefix = AppConfig.model_config.get("env_prefix", "")
    delimiter = AppConfig.model_config.get("env_nested_delimiter", "__")
    overrides: set[str] = set()

    for field in AppConfig.model_fields:
        if field in _NESTED_MODELS:
            continue
        if f"{prefix}{field}".upper() in env_vars:
            overrides.add(field)

    for group_name, model_cls in _NESTED_MODELS.items():
        for field in model_cls.model_fields:
            env_key = f"{prefix}{group_name}{delimiter}{field}".upper()
            if env_key in env_vars:
                overrides.add(f"{group_name}.{field}")

    return overrides


def _format_validation_error(exc: ValidationError, prefix: str = "") -> str:
    parts = []
    for error in exc.errors():
        items = [prefix] if prefix else []
        items.extend(str(item) for item in error["loc"])
        location = ".".join(items) or "config"
        parts.append(f"{location}: {error['msg']}")
    return "; ".join(parts)


def _validate_override(config: AppConfig, name: str, value: Any) -> Any:
    if name not in AppConfig.model_fields:
        raise ConfigError(f"Unknown option: {name}")
    if name in _NESTED_MODELS and isinstance(value, Mapping):
        current = getattr(config, name).model_dump()
        return _NESTED_MODELS[name].model_validate({**current, **value})

    field = AppConfig.model_fields[name]
    annotation = (
        Annotated[(field.annotation, *field.metadata)] if field.metadata else field.annotation
    )
    validated = TypeAdapter(annotation).validate_python(value)
    return validated.expanduser() if isinstance(validated, Path) else validated


def apply_overrides(config: AppConfig, overrides: Mapping[str, Any]) -> AppConfig:
    """Return a copy of ``config`` with ``overrides`` applied and re-validated.

    Each override is checked against its field's constraints on its own; the
    settings sources are not consulted again, so overrides win over the
    environment.

    Raises:
        ConfigError: If an override is unknown or fails validation.
    """
    if not overrides:
        return config
    update: dict[str, Any] = {}
    for name, value in overrides.items():
        try:
            update[name] = _validate_override(config, name, value)
        except ValidationError as exc:
            raise ConfigError(
                f"Invalid configuration: {_format_validation_error(exc, prefix=name)}"
            ) from exc
    return config.model_copy(update=update)


def load_config(
    config_path: Path | None = None,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> tuple[AppConfig, ConfigLoadResult]:
    """
    Load configuration from file, environment and explicit overrides.

    Explicit overrides (CLI flags) win over environment variables, which win
    over the config file.

    Raises:
        ConfigError: If the file is unreadable, malformed, has unknown keys,
            or any value fails validation.
    """
    env_vars: Mapping[str, str] = os.environ if env is None else {**os.environ, **env}
    resolved_path = _resolve_config_path(config_path, env_vars)
    if config_path is not None and not resolved_path.exists():
        raise ConfigError(f"Config file not found: {resolved_path}")

    file_data = _read_config_file(resolved_path)
    file_loaded = resolved_path.exists()

    context_manager = (
        patch.dict(os.environ, env_vars, clear=False) if env is not None else nullcontext()
    )

    try:
        with context_manager:
            config = AppConfig(**file_data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration: {_format_validation_error(exc)}") from exc
    config = apply_overrides(config, overrides or {})

    load_result = ConfigLoadResult(
        path=resolved_path,
        file_loaded=file_loaded,
        env_overrides=_detect_env_overrides(env_vars),
    )

    return config, load_result
