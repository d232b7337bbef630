from __future__ import annotations

import json
import logging
import os
import warnings
from collections.abc import Callable
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

DEFAULT_CONFIG_PATH = Path("~/.config/crayon/config.json").expanduser()

CONFIG_ENV_OVERRIDES = {
    "caido_url": "CRAYON_CAIDO_URL",
    "caido_token": "CRAYON_CAIDO_TOKEN",
    "request_timeout_s": "CRAYON_REQUEST_TIMEOUT_S",
    "poll_interval_ms": "CRAYON_POLL_INTERVAL_MS",
    "batch_size": "CRAYON_BATCH_SIZE",
    "pending_max": "CRAYON_PENDING_MAX",
    "pending_ttl_ms": "CRAYON_PENDING_TTL_MS",
    "pending_checks_per_tick": "CRAYON_PENDING_CHECKS_PER_TICK",
    "api_enabled": "CRAYON_API",
    "api_host": "CRAYON_API_HOST",
    "api_port": "CRAYON_API_PORT",
    "settings_path": "CRAYON_SETTINGS",
    "log_level": "CRAYON_LOG_LEVEL",
}


def get_config_path(path: Path | None = None) -> Path:
    candidate = path or Path(os.getenv("CRAYON_CONFIG", DEFAULT_CONFIG_PATH))
    return candidate.expanduser()


def read_config_file(path: Path | None = None) -> dict[str, Any]:
    config_path = get_config_path(path)
    if not config_path.exists():
        return {}
    raw = config_path.read_text()
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("invalid config json") from exc
    if not isinstance(data, dict):
        raise ValueError("config must be an object")
    return data


def get_env_overrides() -> dict[str, str]:
    overrides: dict[str, str] = {}
    for key, env_var in CONFIG_ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value is not None:
            overrides[key] = value
    return overrides


@dataclass
class CrayonConfig:
    caido_url: str = "http://127.0.0.1:8080"
    caido_token: str | None = None
    request_timeout_s: float = 10.0

    poll_interval_ms: int = 1500
    batch_size: int = 200
    pending_max: int = 1000
    pending_ttl_ms: int = 10 * 60 * 1000
    pending_checks_per_tick: int = 50

    # Loopback API used by the settings UI and for push notifications.
    api_enabled: bool = True
    api_host: str = "127.0.0.1"
    api_port: int = 38989

    settings_path: str | None = None
    log_level: str = "INFO"


_FIELDS = {field.name for field in fields(CrayonConfig)}


_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "off", "no"}

# Numeric fields that size queues or intervals; zero or negative is rejected.
_POSITIVE_KEYS = {
    "poll_interval_ms",
    "batch_size",
    "pending_max",
    "pending_ttl_ms",
    "pending_checks_per_tick",
    "request_timeout_s",
}


def _to_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
    raise ValueError(value)


def _to_optional_str(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _to_log_level(value: object) -> str:
    level = str(value).strip().upper()
    if level not in logging.getLevelNamesMapping():
        raise ValueError(value)
    return level


_FIELD_TYPES: dict[str, tuple[str, Callable[[Any], Any]]] = {
    "request_timeout_s": ("float", float),
    "poll_interval_ms": ("int", int),
    "batch_size": ("int", int),
    "pending_max": ("int", int),
    "pending_ttl_ms": ("int", int),
    "pending_checks_per_tick": ("int", int),
    "api_port": ("int", int),
    "api_enabled": ("bool", _to_bool),
    "caido_token": ("str", _to_optional_str),
    "settings_path": ("str", _to_optional_str),
    "log_level": ("log level", _to_log_level),
}


def _coerce(key: str, value: object, current: Any) -> Any:
    kind, convert = _FIELD_TYPES.get(key, ("str", str))
    if value is None:
        return current
    try:
        parsed = convert(value)
    except (TypeError, ValueError):
        warnings.warn(f"Invalid {kind} for {key}: {value!r}", RuntimeWarning, stacklevel=3)
        return current
    if key in _POSITIVE_KEYS and parsed <= 0:
        warnings.warn(f"{key} must be positive, got {value!r}", RuntimeWarning, stacklevel=3)
        return current
    return parsed


def load_config(path: Path | None = None) -> CrayonConfig:
    """Defaults, then the JSON config file, then CRAYON_* environment variables."""
    cfg = CrayonConfig()
    try:
        file_values = read_config_file(path)
    except ValueError as exc:
        warnings.warn(f"Ignoring config file: {exc}", RuntimeWarning, stacklevel=2)
        file_values = {}
    for source in (file_values, get_env_overrides()):
        for key, value in source.items():
            if key in _FIELDS:
                setattr(cfg, key, _coerce(key, value, getattr(cfg, key)))
    return cfg
