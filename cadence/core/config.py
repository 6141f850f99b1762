"""
Cadence Configuration — loads and merges config from multiple sources.

Precedence (highest to lowest):
1. Explicit overrides (passed in code)
2. Environment variables (CADENCE_*)
3. Project config (./cadence.toml)
4. User config (~/.cadence/config.toml)
5. Defaults (hardcoded)

Environment variable mapping:
    CADENCE_SCHEDULES_PATH → scheduler.schedules_path
    CADENCE_TIMEZONE → scheduler.timezone
    CADENCE_WAIT_RECHECK_SECONDS → scheduler.wait_recheck_seconds
    CADENCE_RUNNER_URL → runner.base_url
    CADENCE_LOG_DIR → logging.dir
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator

from cadence.core.clock import local_zone
from cadence.core.errors import ConfigError

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Config Sub-Models
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class SchedulerConfig(BaseModel):
    """Scheduling engine configuration."""

    schedules_path: str = ".cadence/schedules.json"
    timezone: str | None = None  # None = host local zone
    wait_recheck_seconds: int = Field(default=60, ge=1)
    known_modes: list[str] = Field(default_factory=list)  # empty = accept any mode

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str | None) -> str | None:
        if value:
            try:
                ZoneInfo(value)
            except (ZoneInfoNotFoundError, ValueError) as e:
                raise ValueError(f"Unknown timezone: {value!r}") from e
        return value

    def tzinfo(self):
        """Resolved tzinfo for wall-clock schedule fields."""
        if self.timezone:
            return ZoneInfo(self.timezone)
        return local_zone()


class RunnerConfig(BaseModel):
    """External task runner connection."""

    base_url: str = "http://localhost:8765"
    timeout: float = 30.0
    token: str = ""


class LoggingConfig(BaseModel):
    """Log output configuration."""

    dir: str = "~/.cadence/logs"
    console_level: str = "WARNING"
    write_events: bool = True


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Main Config
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class CadenceConfig(BaseModel):
    """Root configuration for Cadence."""

    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    runner: RunnerConfig = Field(default_factory=RunnerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @staticmethod
    def load(
        overrides: dict[str, Any] | None = None,
        project_path: Path | None = None,
        user_path: Path | None = None,
    ) -> CadenceConfig:
        """
        Load configuration from all sources and merge.

        Precedence: overrides > env vars > project toml > user toml > defaults
        """
        merged: dict[str, Any] = {}

        user_config_path = user_path or Path.home() / ".cadence" / "config.toml"
        if user_config_path.exists():
            _deep_merge(merged, _load_toml(user_config_path))

        project_config_path = project_path or Path.cwd() / "cadence.toml"
        if project_config_path.exists():
            _deep_merge(merged, _load_toml(project_config_path))

        _deep_merge(merged, _load_from_env())

        if overrides:
            _deep_merge(merged, overrides)

        # Substitute ${ENV_VAR} in string values
        _substitute_env_vars(merged)

        try:
            return CadenceConfig(**merged)
        except Exception as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

    def get_schedules_path(self) -> Path:
        """Resolved path of the schedules document."""
        return Path(self.scheduler.schedules_path).expanduser()

    def get_log_dir(self) -> Path:
        return Path(self.logging.dir).expanduser()


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Internal Helpers
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def _load_toml(path: Path) -> dict[str, Any]:
    """Load a TOML file."""
    try:
        import tomllib
    except ImportError:
        import tomli as tomllib  # type: ignore[no-redef]

    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except Exception as e:
        raise ConfigError(f"Failed to load config from {path}: {e}") from e


def _load_from_env() -> dict[str, Any]:
    """Load configuration from CADENCE_* environment variables."""
    result: dict[str, Any] = {}

    env_mapping = {
        "CADENCE_SCHEDULES_PATH": ("scheduler", "schedules_path"),
        "CADENCE_TIMEZONE": ("scheduler", "timezone"),
        "CADENCE_WAIT_RECHECK_SECONDS": ("scheduler", "wait_recheck_seconds"),
        "CADENCE_RUNNER_URL": ("runner", "base_url"),
        "CADENCE_RUNNER_TIMEOUT": ("runner", "timeout"),
        "CADENCE_RUNNER_TOKEN": ("runner", "token"),
        "CADENCE_LOG_DIR": ("logging", "dir"),
        "CADENCE_LOG_LEVEL": ("logging", "console_level"),
    }

    for env_var, (section, key) in env_mapping.items():
        value = os.environ.get(env_var)
        if value is not None:
            result.setdefault(section, {})[key] = _convert_value(value)

    return result


def _convert_value(value: str) -> Any:
    """Convert string value to appropriate type."""
    if value.lower() in ("true", "yes"):
        return True
    if value.lower() in ("false", "no"):
        return False
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        pass
    return value


def _deep_merge(base: dict, override: dict) -> None:
    """Deep merge override into base (mutates base)."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value


_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")


def _expand(value: str) -> str:
    for var_name in _ENV_PATTERN.findall(value):
        value = value.replace(f"${{{var_name}}}", os.environ.get(var_name, ""))
    return value


def _substitute_env_vars(data: dict) -> None:
    """Recursively substitute ${ENV_VAR} patterns in string values."""
    for key, value in data.items():
        if isinstance(value, dict):
            _substitute_env_vars(value)
        elif isinstance(value, str):
            data[key] = _expand(value)
        elif isinstance(value, list):
            data[key] = [_expand(v) if isinstance(v, str) else v for v in value]
