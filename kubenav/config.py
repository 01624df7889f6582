"""Configuration loading from environment variables."""

from __future__ import annotations

import os

from kubenav.errors import ValidationError
from kubenav.models.config import (
    DEFAULT_MAX_CONTEXTS,
    MAX_CONTEXTS,
    MIN_CONTEXTS,
    CacheSettings,
    KubeNavConfig,
    LogConfig,
    default_kubeconfig_path,
)

_LOG_LEVELS = ("debug", "info", "warning", "error")
_LOG_FORMATS = ("text", "json")


def _env(key: str, default: str = "") -> str:
    return os.environ.get(f"KUBENAV_{key}", default)


def _env_int(key: str, default: int) -> int:
    raw = _env(key, str(default))
    try:
        return int(raw)
    except ValueError as exc:
        raise ValidationError(f"KUBENAV_{key} must be an integer, got {raw!r}") from exc


def _env_float(key: str, default: float, min_val: float = 0.0) -> float:
    raw = _env(key, str(default))
    try:
        val = float(raw)
    except ValueError as exc:
        raise ValidationError(f"KUBENAV_{key} must be a number, got {raw!r}") from exc
    return max(val, min_val)


def validate_log_level(value: str) -> str:
    if value.lower() not in _LOG_LEVELS:
        raise ValidationError(f"Invalid log level: {value}. Must be one of {_LOG_LEVELS}")
    return value.lower()


def validate_log_format(value: str) -> str:
    if value.lower() not in _LOG_FORMATS:
        raise ValidationError(f"Invalid log format: {value}. Must be one of {_LOG_FORMATS}")
    return value.lower()


def validate_max_contexts(value: int) -> int:
    if not MIN_CONTEXTS <= value <= MAX_CONTEXTS:
        raise ValidationError(
            f"max contexts must be between {MIN_CONTEXTS} and {MAX_CONTEXTS}, got {value}"
        )
    return value


def load_config() -> KubeNavConfig:
    """Load configuration from KUBENAV_* environment variables."""
    defaults = CacheSettings()
    return KubeNavConfig(
        kubeconfig_path=_env("KUBECONFIG_PATH") or default_kubeconfig_path(),
        max_contexts=validate_max_contexts(_env_int("MAX_CONTEXTS", DEFAULT_MAX_CONTEXTS)),
        cache=CacheSettings(
            sync_timeout=_env_float("SYNC_TIMEOUT", defaults.sync_timeout, min_val=0.1),
            resync_period=_env_float("RESYNC_PERIOD", defaults.resync_period, min_val=1.0),
            connect_timeout=defaults.connect_timeout,
            max_backoff=defaults.max_backoff,
        ),
        log=LogConfig(
            level=validate_log_level(_env("LOG_LEVEL", "info")),
            file=_env("LOG_FILE", ""),
            format=validate_log_format(_env("LOG_FORMAT", "text")),
        ),
    )
