"""Tests for the error taxonomy."""

from __future__ import annotations

import json
from types import SimpleNamespace

import pytest

from kubenav.errors import (
    ClusterConnectionError,
    KindUnavailableError,
    KubeNavError,
    NotFoundError,
    NotReadyError,
    RemoteError,
    SyncTimeoutError,
)

# ---------------------------------------------------------------------------
# RemoteError
# ---------------------------------------------------------------------------


class TestRemoteError:
    def test_status_reason_is_preferred(self) -> None:
        """The Kubernetes Status reason survives the HTTP reason phrase."""
        body = json.dumps({"kind": "Status", "reason": "Conflict", "message": "object was modified"})
        exc = SimpleNamespace(status=409, reason="Conflict Error", body=body)
        err = RemoteError.from_api_exception("scale deployments", exc)
        assert err.status == 409
        assert err.reason == "Conflict"
        assert err.detail == "object was modified"
        assert str(err) == "scale deployments failed: Conflict (409): object was modified"

    def test_non_json_body(self) -> None:
        exc = SimpleNamespace(status=502, reason="Bad Gateway", body="<html>upstream</html>")
        err = RemoteError.from_api_exception("list pods", exc)
        assert err.reason == "Bad Gateway"
        assert err.detail == "<html>upstream</html>"

    def test_missing_fields(self) -> None:
        err = RemoteError.from_api_exception("get version", SimpleNamespace())
        assert (err.status, err.reason) == (0, "Unknown")


# ---------------------------------------------------------------------------
# Hierarchy and messages
# ---------------------------------------------------------------------------


class TestHierarchy:
    @pytest.mark.parametrize(
        ("err", "builtin"),
        [
            (ClusterConnectionError("prod", "refused"), ConnectionError),
            (SyncTimeoutError("prod", 10), TimeoutError),
        ],
    )
    def test_builtin_bases(self, err: KubeNavError, builtin: type[Exception]) -> None:
        assert isinstance(err, builtin)
        assert isinstance(err, KubeNavError)

    def test_sync_timeout_default_message(self) -> None:
        assert str(SyncTimeoutError("prod", 2.5)) == "context 'prod': informers did not sync within 2.5s"

    def test_unavailable_is_a_not_ready(self) -> None:
        err = KindUnavailableError("secrets", "Forbidden: no access")
        assert isinstance(err, NotReadyError)
        assert str(err) == "cannot access secrets: Forbidden: no access"
        assert str(NotReadyError("pods")) == "pods are still syncing"

    def test_not_found_message(self) -> None:
        assert str(NotFoundError("pods", "prod", "web")) == "pods 'prod/web' not found"
        assert str(NotFoundError("nodes", "", "n1")) == "nodes 'n1' not found"
