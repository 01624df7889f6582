"""Cluster access for one kubeconfig context.

``ClusterClient`` is the capability interface the cache needs from an API
server: list, watch, read, and the handful of live mutations.  Every
implementation reports server failures as ``RemoteError`` so the informer
can branch on ``status`` (401/403/410) without knowing the transport.

``KubernetesClusterClient`` implements it with kubernetes_asyncio.
"""

from __future__ import annotations

import abc
import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

import aiohttp
from kubernetes_asyncio import client as k8s_client
from kubernetes_asyncio import config as k8s_config
from kubernetes_asyncio import watch as k8s_watch
from kubernetes_asyncio.client.exceptions import ApiException

from kubenav.cache.kinds import KIND_SPECS, KindSpec
from kubenav.errors import ClusterConnectionError, RemoteError
from kubenav.models.config import CacheSettings
from kubenav.models.resources import GroupVersionResource, ResourceKind, ResourceType
from kubenav.observability.logging import get_logger

_log = get_logger("client")

# Server-side watch timeout; the stream is re-opened from the last
# resourceVersion when it expires.
_WATCH_TIMEOUT_SECONDS = 240

EVENT_LIMIT = 100


class ClusterClient(abc.ABC):
    """Capability interface over one context's API server."""

    context: str

    @abc.abstractmethod
    async def server_version(self) -> str:
        """Query the version endpoint; raises RemoteError when unreachable."""

    @abc.abstractmethod
    async def list(self, kind: ResourceType) -> tuple[list[dict[str, Any]], str]:
        """List every object of ``kind``; returns (items, resourceVersion)."""

    @abc.abstractmethod
    def watch(self, kind: ResourceType, resource_version: str) -> AsyncIterator[tuple[str, dict[str, Any]]]:
        """Stream (event type, object) pairs starting after ``resource_version``."""

    @abc.abstractmethod
    async def get(self, kind: ResourceKind, namespace: str, name: str) -> dict[str, Any]:
        """Read one object live from the server."""

    @abc.abstractmethod
    async def delete(self, kind: ResourceKind, namespace: str, name: str) -> None: ...

    @abc.abstractmethod
    async def scale(self, kind: ResourceKind, namespace: str, name: str, replicas: int) -> None: ...

    @abc.abstractmethod
    async def list_events(self, namespace: str, object_kind: str, name: str) -> list[dict[str, Any]]:
        """Events whose involvedObject matches, at most EVENT_LIMIT."""

    @abc.abstractmethod
    async def read_logs(self, namespace: str, pod: str, container: str | None, tail: int) -> str: ...

    @abc.abstractmethod
    def stream_logs(
        self, namespace: str, pod: str, container: str | None, tail: int
    ) -> AsyncIterator[str]:
        """Follow a container's log; yields lines without trailing newlines."""

    @abc.abstractmethod
    async def close(self) -> None: ...


ClientFactory = Callable[[str, str, CacheSettings], Awaitable[ClusterClient]]


class KubernetesClusterClient(ClusterClient):
    """ClusterClient backed by a kubernetes_asyncio ApiClient."""

    def __init__(self, context: str, api_client: k8s_client.ApiClient, settings: CacheSettings) -> None:
        self.context = context
        self._api_client = api_client
        self._settings = settings
        self._apis: dict[str, Any] = {}

    @classmethod
    async def connect(cls, kubeconfig_path: str, context: str, settings: CacheSettings) -> KubernetesClusterClient:
        """Build an ApiClient for ``context`` from the kubeconfig file.

        Raises:
            ClusterConnectionError: the context is unknown or its credentials
                cannot be loaded.
        """
        try:
            api_client = await k8s_config.new_client_from_config(config_file=kubeconfig_path, context=context)
        except (k8s_config.ConfigException, OSError, ValueError) as exc:
            raise ClusterConnectionError(context, f"cannot build client: {exc}") from exc
        return cls(context, api_client, settings)

    def _api(self, spec_or_class: KindSpec | str) -> Any:
        name = spec_or_class if isinstance(spec_or_class, str) else spec_or_class.api_class
        api = self._apis.get(name)
        if api is None:
            api = getattr(k8s_client, name)(self._api_client)
            self._apis[name] = api
        return api

    def _to_dict(self, obj: Any) -> Any:
        return self._api_client.sanitize_for_serialization(obj)

    async def _call(self, operation: str, coro: Awaitable[Any]) -> Any:
        try:
            return await coro
        except ApiException as exc:
            raise RemoteError.from_api_exception(operation, exc) from exc
        except (aiohttp.ClientError, OSError) as exc:
            raise RemoteError(operation, 0, "ConnectionFailed", str(exc)) from exc

    async def server_version(self) -> str:
        version_api = self._api("VersionApi")
        try:
            info = await asyncio.wait_for(
                self._call("get version", version_api.get_code()),
                timeout=self._settings.connect_timeout,
            )
        except TimeoutError as exc:
            raise RemoteError("get version", 0, "Timeout", "API server did not answer") from exc
        return str(info.git_version)

    def _lister(self, kind: ResourceType) -> tuple[Callable[..., Any], tuple[str, ...], tuple[str, str]]:
        """The list function for ``kind``, its positional args, and its (apiVersion, Kind)."""
        if isinstance(kind, GroupVersionResource):
            custom = self._api("CustomObjectsApi")
            args = (kind.group, kind.version, kind.resource)
            return custom.list_cluster_custom_object, args, (kind.api_version, "")
        spec = KIND_SPECS[kind]
        return getattr(self._api(spec), spec.list_method), (), (spec.api_version, spec.object_kind)

    async def list(self, kind: ResourceType) -> tuple[list[dict[str, Any]], str]:
        method, args, (api_version, object_kind) = self._lister(kind)
        result = await self._call(f"list {kind}", method(*args))
        data = self._to_dict(result)
        if not object_kind:
            object_kind = str(data.get("kind") or "").removesuffix("List")
        items = [_with_type_meta(item, api_version, object_kind) for item in data.get("items") or []]
        return items, str((data.get("metadata") or {}).get("resourceVersion", ""))

    async def watch(self, kind: ResourceType, resource_version: str) -> AsyncIterator[tuple[str, dict[str, Any]]]:
        method, args, (api_version, object_kind) = self._lister(kind)
        try:
            async with k8s_watch.Watch() as w:
                async for event in w.stream(
                    method,
                    *args,
                    resource_version=resource_version,
                    allow_watch_bookmarks=True,
                    timeout_seconds=_WATCH_TIMEOUT_SECONDS,
                ):
                    raw = event.get("raw_object") or {}
                    if event["type"] == "ERROR":
                        raise RemoteError(
                            f"watch {kind}",
                            int(raw.get("code") or 0),
                            str(raw.get("reason") or "Unknown"),
                            str(raw.get("message") or ""),
                        )
                    yield event["type"], _with_type_meta(raw, api_version, object_kind)
        except ApiException as exc:
            raise RemoteError.from_api_exception(f"watch {kind}", exc) from exc
        except (aiohttp.ClientError, OSError) as exc:
            raise RemoteError(f"watch {kind}", 0, "ConnectionFailed", str(exc)) from exc

    async def get(self, kind: ResourceKind, namespace: str, name: str) -> dict[str, Any]:
        spec = KIND_SPECS[kind]
        method = getattr(self._api(spec), spec.read_method)
        args = {"name": name, "namespace": namespace} if spec.namespaced else {"name": name}
        result = await self._call(f"get {kind}", method(**args))
        return _with_type_meta(self._to_dict(result), spec.api_version, spec.object_kind)

    async def delete(self, kind: ResourceKind, namespace: str, name: str) -> None:
        spec = KIND_SPECS[kind]
        method = getattr(self._api(spec), spec.delete_method)
        args = {"name": name, "namespace": namespace} if spec.namespaced else {"name": name}
        await self._call(f"delete {kind}", method(**args))

    async def scale(self, kind: ResourceKind, namespace: str, name: str, replicas: int) -> None:
        spec = KIND_SPECS[kind]
        method = getattr(self._api(spec), spec.scale_method)
        body = {"spec": {"replicas": replicas}}
        await self._call(f"scale {kind}", method(name=name, namespace=namespace, body=body))

    async def list_events(self, namespace: str, object_kind: str, name: str) -> list[dict[str, Any]]:
        core = self._api("CoreV1Api")
        field_selector = f"involvedObject.name={name},involvedObject.kind={object_kind}"
        if namespace:
            coro = core.list_namespaced_event(namespace, field_selector=field_selector, limit=EVENT_LIMIT)
        else:
            coro = core.list_event_for_all_namespaces(field_selector=field_selector, limit=EVENT_LIMIT)
        result = await self._call("list events", coro)
        return list(self._to_dict(result).get("items") or [])

    async def read_logs(self, namespace: str, pod: str, container: str | None, tail: int) -> str:
        core = self._api("CoreV1Api")
        kwargs: dict[str, Any] = {"name": pod, "namespace": namespace, "tail_lines": tail}
        if container:
            kwargs["container"] = container
        return str(await self._call("get logs", core.read_namespaced_pod_log(**kwargs)))

    async def stream_logs(
        self, namespace: str, pod: str, container: str | None, tail: int
    ) -> AsyncIterator[str]:
        core = self._api("CoreV1Api")
        kwargs: dict[str, Any] = {
            "name": pod,
            "namespace": namespace,
            "tail_lines": tail,
            "follow": True,
            "_preload_content": False,
        }
        if container:
            kwargs["container"] = container
        resp = await self._call("follow logs", core.read_namespaced_pod_log(**kwargs))
        try:
            async for line in resp.content:
                yield line.decode("utf-8", errors="replace").rstrip("\n")
        except aiohttp.ClientError as exc:
            raise RemoteError("follow logs", 0, "ConnectionFailed", str(exc)) from exc
        finally:
            resp.release()

    async def close(self) -> None:
        await self._api_client.close()


def _with_type_meta(obj: dict[str, Any], api_version: str, object_kind: str) -> dict[str, Any]:
    """List items come back without kind/apiVersion; restore them."""
    if object_kind and (not obj.get("kind") or not obj.get("apiVersion")):
        obj = {**obj, "apiVersion": obj.get("apiVersion") or api_version, "kind": obj.get("kind") or object_kind}
    return obj


async def connect(kubeconfig_path: str, context: str, settings: CacheSettings) -> ClusterClient:
    """Default ClientFactory."""
    _log.debug("building api client", context=context, kubeconfig=kubeconfig_path)
    return await KubernetesClusterClient.connect(kubeconfig_path, context, settings)
