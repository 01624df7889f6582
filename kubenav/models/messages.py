"""Messages delivered from background cache work to the UI event loop.

The cache never touches UI state directly: every background load, switch,
retry, and mutation ends by putting one of these on the application's
message queue.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from kubenav.models.progress import LoadPhase

# Seconds an error/success status stays on screen before it clears itself.
STATUS_CLEAR_SECONDS = 5.0


class StatusKind(StrEnum):
    """Visual category of a status line."""

    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"
    LOADING = "loading"


@dataclass(frozen=True)
class ContextLoadProgressMsg:
    """A load phase transition for ``context``."""

    context: str
    message: str
    phase: LoadPhase

    @property
    def is_complete(self) -> bool:
        return self.phase is LoadPhase.COMPLETE


@dataclass(frozen=True)
class ContextLoadCompleteMsg:
    """``context`` finished loading and is now in the pool."""

    context: str


@dataclass(frozen=True)
class ContextLoadFailedMsg:
    """``context`` failed to load; the UI should offer a retry."""

    context: str
    error: Exception


@dataclass(frozen=True)
class ContextSwitchCompleteMsg:
    """The active context changed."""

    old_context: str
    new_context: str


@dataclass(frozen=True)
class StatusMsg:
    """A one-line status for the status bar.

    ``clear_after`` is None for messages that stay until replaced
    (LOADING); SUCCESS and ERROR messages clear after STATUS_CLEAR_SECONDS.
    """

    message: str
    kind: StatusKind = StatusKind.INFO
    clear_after: float | None = STATUS_CLEAR_SECONDS

    @classmethod
    def success(cls, message: str) -> StatusMsg:
        return cls(message=message, kind=StatusKind.SUCCESS)

    @classmethod
    def error(cls, message: str) -> StatusMsg:
        return cls(message=message, kind=StatusKind.ERROR)

    @classmethod
    def loading(cls, message: str) -> StatusMsg:
        return cls(message=message, kind=StatusKind.LOADING, clear_after=None)


Message = (
    ContextLoadProgressMsg
    | ContextLoadCompleteMsg
    | ContextLoadFailedMsg
    | ContextSwitchCompleteMsg
    | StatusMsg
)
