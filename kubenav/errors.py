"""Error taxonomy for kubenav.

Every error raised across a public boundary derives from ``KubeNavError`` so
callers (the CLI, the app shell) can catch one type.  Context-level errors
carry the context name; cache-read errors carry the resource kind.

    ConfigError             -- kubeconfig missing, unreadable, or malformed.
    ValidationError         -- caller-supplied value out of range.
    ClusterConnectionError  -- API server unreachable or credentials rejected.
    SyncTimeoutError        -- no informer became usable within the deadline.
    NotLoadedError          -- operation on a context with no repository.
    NotReadyError           -- cache read on a kind still syncing.
    KindUnavailableError    -- cache read on a kind that was denied or timed out.
    NotFoundError           -- cache read miss.
    RemoteError             -- live API call failed; preserves the Status reason.
    PoolClosedError         -- pool closed while a load was in flight.
"""

from __future__ import annotations

import builtins
import json
from typing import Any


class KubeNavError(Exception):
    """Base class for all kubenav errors."""


class ConfigError(KubeNavError):
    """The kubeconfig cannot be read or parsed."""

    def __init__(self, message: str, path: str = "") -> None:
        super().__init__(message)
        self.path = path


class ValidationError(KubeNavError, ValueError):
    """A caller-supplied value is outside its accepted range."""


class ClusterConnectionError(KubeNavError, builtins.ConnectionError):
    """The API server for a context cannot be reached or rejected our credentials."""

    def __init__(self, context: str, message: str) -> None:
        super().__init__(f"context {context!r}: {message}")
        self.context = context


class SyncTimeoutError(KubeNavError, builtins.TimeoutError):
    """No informer for a context completed its initial list in time."""

    def __init__(self, context: str, timeout: float, message: str = "") -> None:
        detail = message or f"informers did not sync within {timeout:g}s"
        super().__init__(f"context {context!r}: {detail}")
        self.context = context
        self.timeout = timeout


class NotLoadedError(KubeNavError):
    """The named context has no repository in the pool."""

    def __init__(self, context: str, message: str = "") -> None:
        super().__init__(message or f"context {context!r} is not loaded")
        self.context = context


class PoolClosedError(KubeNavError):
    """The pool was closed while a context load was still running."""

    def __init__(self, context: str) -> None:
        super().__init__(f"pool closed while loading context {context!r}")
        self.context = context


class NotReadyError(KubeNavError):
    """The informer for a kind has not completed its initial sync."""

    def __init__(self, kind: str, message: str = "") -> None:
        super().__init__(message or f"{kind} are still syncing")
        self.kind = kind


class KindUnavailableError(NotReadyError):
    """The informer for a kind is permanently unavailable for this context.

    Raised for kinds whose list/watch was denied (RBAC) or which never synced
    before the load deadline.  Other kinds of the same context keep working.
    """

    def __init__(self, kind: str, reason: str = "") -> None:
        detail = f": {reason}" if reason else ""
        super().__init__(kind, f"cannot access {kind}{detail}")
        self.reason = reason


class NotFoundError(KubeNavError):
    """A resource is absent from the local snapshot."""

    def __init__(self, kind: str, namespace: str, name: str) -> None:
        ref = f"{namespace}/{name}" if namespace else name
        super().__init__(f"{kind} {ref!r} not found")
        self.kind = kind
        self.namespace = namespace
        self.name = name


class RemoteError(KubeNavError):
    """A live request to the API server failed.

    Attributes:
        status: HTTP status code (0 when the request never got a response).
        reason: Kubernetes Status reason, e.g. ``Forbidden``, ``Conflict``,
                ``NotFound``.  Falls back to the HTTP reason phrase.
    """

    def __init__(self, operation: str, status: int, reason: str, message: str) -> None:
        super().__init__(f"{operation} failed: {reason} ({status}): {message}")
        self.operation = operation
        self.status = status
        self.reason = reason
        self.detail = message

    @classmethod
    def from_api_exception(cls, operation: str, exc: Any) -> RemoteError:
        """Build a RemoteError from a ``kubernetes_asyncio`` ApiException.

        The server's Status object (JSON body) is preferred over the HTTP
        reason phrase so that ``Forbidden``/``Conflict`` survive unchanged.
        """
        status = int(getattr(exc, "status", 0) or 0)
        reason = str(getattr(exc, "reason", "") or "")
        message = reason
        body = getattr(exc, "body", None)
        if body:
            try:
                payload = json.loads(body)
            except (TypeError, ValueError):
                message = str(body)[:200]
            else:
                if isinstance(payload, dict):
                    reason = str(payload.get("reason") or reason)
                    message = str(payload.get("message") or message)
        return cls(operation, status, reason or "Unknown", message)
