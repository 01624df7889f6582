"""Context load progress and per-context state."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import IntEnum, StrEnum


class LoadPhase(IntEnum):
    """Ordered phases of one context load.

    Callers must compare against these members (``phase is LoadPhase.COMPLETE``)
    rather than raw integers.
    """

    CONNECTING = 0
    ESTABLISHING = 1
    SYNCING = 2
    COMPLETE = 3


class ContextState(StrEnum):
    """Lifecycle state of a context inside the repository pool."""

    NOT_LOADED = "not_loaded"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


@dataclass(frozen=True)
class ContextLoadProgress:
    """One phase transition of a context load.

    Produced by the load coordinator, consumed over an ``asyncio.Queue``.
    The pool keeps no history of these.
    """

    context: str
    message: str
    phase: LoadPhase

    @property
    def is_complete(self) -> bool:
        return self.phase is LoadPhase.COMPLETE


@dataclass(frozen=True)
class ContextInfo:
    """A named context from kubeconfig."""

    name: str
    cluster: str = ""
    user: str = ""
    namespace: str = ""


@dataclass(frozen=True)
class ContextStatus:
    """A kubeconfig context combined with its runtime pool state."""

    info: ContextInfo
    state: ContextState
    error: str = ""
    is_active: bool = False
    loaded_at: datetime | None = None

    @property
    def name(self) -> str:
        return self.info.name
