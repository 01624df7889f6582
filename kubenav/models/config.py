"""Configuration data structures."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

MIN_CONTEXTS = 1
MAX_CONTEXTS = 20
DEFAULT_MAX_CONTEXTS = 5


def default_kubeconfig_path() -> str:
    """$KUBECONFIG (first entry) or ~/.kube/config."""
    env = os.environ.get("KUBECONFIG", "")
    if env:
        return env.split(os.pathsep)[0]
    return os.path.join(os.path.expanduser("~"), ".kube", "config")


@dataclass(frozen=True)
class CacheSettings:
    """Timing knobs for context loads and informers (seconds)."""

    sync_timeout: float = 10.0
    resync_period: float = 300.0
    connect_timeout: float = 5.0
    max_backoff: float = 30.0


@dataclass
class LogConfig:
    """Logging configuration."""

    level: str = "info"
    file: str = ""
    format: str = "text"


@dataclass
class KubeNavConfig:
    """Top-level kubenav configuration."""

    kubeconfig_path: str = field(default_factory=default_kubeconfig_path)
    contexts: tuple[str, ...] = ()
    max_contexts: int = DEFAULT_MAX_CONTEXTS
    cache: CacheSettings = field(default_factory=CacheSettings)
    log: LogConfig = field(default_factory=LogConfig)
