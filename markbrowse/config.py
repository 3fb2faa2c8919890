"""Runtime configuration for the markbrowse core."""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

CONFIG_ENV = "MARKBROWSE_CONFIG"

DEFAULT_MONITOR_LATENCY = 0.5
DEFAULT_MAX_SCOPED_ACCESSES = 512


@dataclass(slots=True)
class ConfigError(Exception):
    """Raised when a configuration file cannot be used."""

    message: str
    key: str | None = None

    def __str__(self) -> str:
        pointer = f" at '{self.key}'" if self.key else ""
        return f"{self.message}{pointer}"


@dataclass(slots=True)
class ServiceConfig:
    """Options that control how the file-system service behaves."""

    monitor_latency: float = DEFAULT_MONITOR_LATENCY
    show_hidden_files: bool = True
    directories_first: bool = False
    max_scoped_accesses: int = DEFAULT_MAX_SCOPED_ACCESSES
    log_path: Path | None = None
    log_level: str = "INFO"

    @property
    def logging_level(self) -> int:
        return logging.getLevelName(self.log_level.upper())


_ALIASES = {
    "monitorLatency": "monitor_latency",
    "showHiddenFiles": "show_hidden_files",
    "directoriesFirst": "directories_first",
    "maxScopedAccesses": "max_scoped_accesses",
    "logPath": "log_path",
    "logLevel": "log_level",
}


def load_config(path: str | Path | None = None) -> ServiceConfig:
    """Load a :class:`ServiceConfig` from JSON.

    With no *path*, ``MARKBROWSE_CONFIG`` is consulted; when that is unset
    too, defaults are returned.
    """

    if path is None:
        env_value = os.environ.get(CONFIG_ENV)
        if not env_value:
            return ServiceConfig()
        path = env_value

    file_path = Path(path).expanduser()
    try:
        data = json.loads(file_path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ConfigError(f"Config file not found: {file_path}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Invalid JSON (line {exc.lineno}, column {exc.colno}): {exc.msg}") from exc

    if not isinstance(data, dict):
        raise ConfigError("Expected a JSON object")
    return config_from_mapping(data)


def config_from_mapping(data: Mapping[str, Any]) -> ServiceConfig:
    config = ServiceConfig()
    for raw_key, value in data.items():
        key = _ALIASES.get(raw_key, raw_key)
        if key == "monitor_latency":
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
                raise ConfigError("Expected a non-negative number", key=raw_key)
            config.monitor_latency = float(value)
        elif key in ("show_hidden_files", "directories_first"):
            if not isinstance(value, bool):
                raise ConfigError("Expected a boolean", key=raw_key)
            setattr(config, key, value)
        elif key == "max_scoped_accesses":
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise ConfigError("Expected a positive integer", key=raw_key)
            config.max_scoped_accesses = value
        elif key == "log_path":
            if value is not None and not isinstance(value, str):
                raise ConfigError("Expected a path string", key=raw_key)
            config.log_path = Path(value).expanduser() if value else None
        elif key == "log_level":
            if not isinstance(value, str) or not isinstance(logging.getLevelName(value.upper()), int):
                raise ConfigError("Unknown log level", key=raw_key)
            config.log_level = value.upper()
        else:
            raise ConfigError("Unexpected property", key=raw_key)
    return config


__all__ = ["CONFIG_ENV", "ConfigError", "ServiceConfig", "config_from_mapping", "load_config"]
