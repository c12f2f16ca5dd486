"""
Configuration loader for history archive runs.

Settings are resolved in three layers, later layers winning:
1. Optional YAML file (``${VAR}`` placeholders are substituted from the environment)
2. Environment variables (HISTORY_BASE_URI, STATE_URI, FLUSH_SIZE, LOG_LEVEL, MAX_RETRY_ATTEMPTS)
3. Explicit overrides (CLI flags)
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from athena_history.harvester import DEFAULT_FLUSH_SIZE, ConfigurationError
from athena_history.s3_uri import split_s3_uri

ENV_VARS = {
    "history_base_uri": "HISTORY_BASE_URI",
    "state_uri": "STATE_URI",
    "flush_size": "FLUSH_SIZE",
    "log_level": "LOG_LEVEL",
    "max_retry_attempts": "MAX_RETRY_ATTEMPTS",
}

_PLACEHOLDER = re.compile(r"\$\{(\w+)\}")


@dataclass(frozen=True)
class HarvestSettings:
    history_base_uri: str | None
    state_uri: str | None = None
    flush_size: int = DEFAULT_FLUSH_SIZE
    log_level: str = "INFO"
    max_retry_attempts: int | None = None


def load_config(config_path: Path | str) -> dict[str, Any]:
    """
    Read the top-level keys of a YAML config file.

    String values of the form ``${VAR}`` are replaced by the environment
    variable's value, or None when it is unset.

    Raises:
        FileNotFoundError: If the config file does not exist
        ValueError: If the YAML root is not a mapping
    """
    path = Path(config_path)
    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")

    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Config root must be a mapping, got {type(data).__name__}")
    return {key: _resolve_placeholder(value) for key, value in data.items()}


def _resolve_placeholder(value: Any) -> Any:
    match = _PLACEHOLDER.fullmatch(value) if isinstance(value, str) else None
    if match is None:
        return value
    return os.getenv(match.group(1)) or None


def _log_level(value: Any) -> str:
    level = str(value or "INFO").upper()
    if not isinstance(logging.getLevelName(level), int):
        raise ConfigurationError(f"log_level must be a logging level name such as DEBUG or INFO, got {value!r}")
    return level


def _optional_int(name: str, value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from exc
    if number < 1:
        raise ConfigurationError(f"{name} must be >= 1, got {number}")
    return number


def _validate_uri(name: str, value: str | None) -> None:
    if value is None:
        return
    try:
        split_s3_uri(value)
    except ValueError as exc:
        raise ConfigurationError(f"{name}: {exc}") from exc


def load_settings(
    config_path: Path | str | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> HarvestSettings:
    """Resolve HarvestSettings from YAML, environment, and overrides."""
    environ = os.environ if environ is None else environ

    values: dict[str, Any] = {}
    if config_path is not None:
        values.update({k: v for k, v in load_config(config_path).items() if k in ENV_VARS})

    for field_name, env_name in ENV_VARS.items():
        if environ.get(env_name):
            values[field_name] = environ[env_name]

    for field_name, value in (overrides or {}).items():
        if value is not None:
            values[field_name] = value

    history_base_uri = values.get("history_base_uri") or None
    state_uri = values.get("state_uri") or None
    _validate_uri("history_base_uri", history_base_uri)
    _validate_uri("state_uri", state_uri)

    flush_size = _optional_int("flush_size", values.get("flush_size"))
    return HarvestSettings(
        history_base_uri=history_base_uri,
        state_uri=state_uri,
        flush_size=DEFAULT_FLUSH_SIZE if flush_size is None else flush_size,
        log_level=_log_level(values.get("log_level")),
        max_retry_attempts=_optional_int("max_retry_attempts", values.get("max_retry_attempts")),
    )
