"""Core data structures for kubenav."""

from kubenav.models.config import CacheSettings, KubeNavConfig, LogConfig
from kubenav.models.messages import (
    ContextLoadCompleteMsg,
    ContextLoadFailedMsg,
    ContextLoadProgressMsg,
    ContextSwitchCompleteMsg,
    StatusKind,
    StatusMsg,
)
from kubenav.models.progress import (
    ContextInfo,
    ContextLoadProgress,
    ContextState,
    ContextStatus,
    LoadPhase,
)
from kubenav.models.resources import (
    KindReadiness,
    Resource,
    ResourceKind,
    ResourceRef,
    ResourceStats,
)

__all__ = [
    "CacheSettings",
    "ContextInfo",
    "ContextLoadCompleteMsg",
    "ContextLoadFailedMsg",
    "ContextLoadProgress",
    "ContextLoadProgressMsg",
    "ContextState",
    "ContextStatus",
    "ContextSwitchCompleteMsg",
    "KindReadiness",
    "KubeNavConfig",
    "LoadPhase",
    "LogConfig",
    "Resource",
    "ResourceKind",
    "ResourceRef",
    "ResourceStats",
    "StatusKind",
    "StatusMsg",
]
