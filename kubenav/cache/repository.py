"""Per-context repository: one informer per kind plus live mutations.

Reads (``list``, ``get`` and the relationship queries) are served from the
informer caches.  A read against a kind that has not finished its initial
list raises ``NotReadyError``; a kind that was denied or timed out raises
``KindUnavailableError``.  Reads never return an empty result just because a
kind is still syncing.

Custom resources get an informer only when first asked for
(``ensure_resource_informer``); their reads go through ``list_resources``.

Mutations (``delete``, ``scale``, ``get_yaml``, ``describe``, ``get_logs``)
go straight to the API server and raise ``RemoteError`` on failure.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Iterable, Mapping
from datetime import UTC, datetime, timedelta
from types import MappingProxyType
from typing import Any

import yaml

from kubenav.cache.client import ClusterClient
from kubenav.cache.informer import Informer, InformerCache, newest_first
from kubenav.cache.kinds import ALL_KINDS, KIND_SPECS, SCALABLE_KINDS
from kubenav.cache.selectors import Selector
from kubenav.cache.transforms import (
    CONFIGMAP_INDEX,
    NODE_INDEX,
    OWNER_INDEX,
    PVC_INDEX,
    SECRET_INDEX,
    parse_timestamp,
)
from kubenav.errors import (
    KindUnavailableError,
    NotFoundError,
    NotLoadedError,
    NotReadyError,
    RemoteError,
    ValidationError,
)
from kubenav.models.config import CacheSettings
from kubenav.models.resources import (
    GroupVersionResource,
    Job,
    KindReadiness,
    Pod,
    ReplicaSet,
    Resource,
    ResourceKind,
    ResourceStats,
)
from kubenav.observability.logging import get_logger

_log = get_logger("repository")

_EVENT_MESSAGE_WIDTH = 80


class Repository:
    """Cached view of one context, owned by the RepositoryPool."""

    def __init__(self, context: str, client: ClusterClient, settings: CacheSettings | None = None) -> None:
        self.context = context
        self._client = client
        self._settings = settings or CacheSettings()
        self._informers: dict[ResourceKind, Informer] = {
            kind: Informer(context, kind, client, self._settings) for kind in ALL_KINDS
        }
        self._custom: dict[GroupVersionResource, Informer] = {}
        self._started = False
        self._closed = False
        self.created_at = datetime.now(tz=UTC)
        self._log = _log.bind(context=context)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def informers(self) -> Mapping[ResourceKind, Informer]:
        return MappingProxyType(self._informers)

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        """Start every informer's list/watch task."""
        if self._started:
            return
        self._started = True
        for informer in self._informers.values():
            informer.start()

    async def close(self) -> None:
        """Stop all informers and release the client; safe to call twice."""
        if self._closed:
            return
        self._closed = True
        informers = [*self._informers.values(), *self._custom.values()]
        await asyncio.gather(*(i.stop() for i in informers))
        await self._client.close()
        self._log.debug("repository closed")

    # ------------------------------------------------------------------
    # Readiness
    # ------------------------------------------------------------------

    def kind_readiness(self, kind: ResourceKind) -> KindReadiness:
        return self._informers[kind].readiness

    def kind_error(self, kind: ResourceKind) -> str:
        return self._informers[kind].error

    def are_typed_informers_ready(self) -> bool:
        """True once every kind has synced or been marked unavailable."""
        return all(i.settled for i in self._informers.values())

    def synced_kinds(self) -> list[ResourceKind]:
        return [k for k, i in self._informers.items() if i.readiness is KindReadiness.SYNCED]

    def unavailable_kinds(self) -> list[ResourceKind]:
        return [k for k, i in self._informers.items() if i.readiness is KindReadiness.UNAVAILABLE]

    async def wait_until_ready(self, timeout: float, poll_interval: float = 0.05) -> bool:
        """Poll ``are_typed_informers_ready()`` for at most ``timeout`` seconds."""
        deadline = time.monotonic() + timeout
        while not self.are_typed_informers_ready():
            if time.monotonic() >= deadline:
                return False
            await asyncio.sleep(poll_interval)
        return True

    def resource_stats(self) -> list[ResourceStats]:
        informers = [*self._informers.values(), *self._custom.values()]
        return [i.cache.stats(i.readiness) for i in informers]

    # ------------------------------------------------------------------
    # Cached reads
    # ------------------------------------------------------------------

    def _cache(self, kind: ResourceKind) -> InformerCache:
        informer = self._informers[kind]
        if informer.readiness is KindReadiness.UNAVAILABLE:
            raise KindUnavailableError(kind, informer.error)
        if informer.readiness is KindReadiness.PENDING:
            raise NotReadyError(kind)
        return informer.cache

    def list(
        self,
        kind: ResourceKind,
        namespace: str = "",
        selector: Selector | str | None = None,
    ) -> list[Resource]:
        """Rows of ``kind`` newest first; empty ``namespace`` means all namespaces."""
        if not KIND_SPECS[kind].namespaced:
            namespace = ""
        if isinstance(selector, str):
            selector = Selector.parse(selector) if selector.strip() else None
        return self._cache(kind).list(namespace, selector)

    def get(self, kind: ResourceKind, namespace: str, name: str) -> Resource:
        if not KIND_SPECS[kind].namespaced:
            namespace = ""
        row = self._cache(kind).get(namespace, name)
        if row is None:
            raise NotFoundError(kind, namespace, name)
        return row

    # ------------------------------------------------------------------
    # Custom resources
    # ------------------------------------------------------------------

    def ensure_resource_informer(self, gvr: GroupVersionResource) -> Informer:
        """Start an informer for ``gvr`` unless one is already running.

        Custom resources are not watched up front; the first caller that
        needs one starts it.  Denial or a sync timeout only affects ``gvr``.
        """
        informer = self._custom.get(gvr)
        if informer is not None:
            return informer
        self._ensure_open()
        informer = Informer(self.context, gvr, self._client, self._settings)
        self._custom[gvr] = informer
        informer.start()
        self._log.info("custom resource informer started", resource=str(gvr))
        return informer

    async def ensure_resource_synced(self, gvr: GroupVersionResource, timeout: float) -> KindReadiness:
        """Start the informer for ``gvr`` and wait up to ``timeout`` for it to settle."""
        informer = self.ensure_resource_informer(gvr)
        try:
            async with asyncio.timeout(timeout):
                await informer.wait_settled()
        except TimeoutError:
            informer.mark_unavailable(f"not synced within {timeout:g}s")
        return informer.readiness

    def custom_resources(self) -> list[GroupVersionResource]:
        return list(self._custom)

    def resource_readiness(self, gvr: GroupVersionResource) -> KindReadiness:
        informer = self._custom.get(gvr)
        return informer.readiness if informer is not None else KindReadiness.PENDING

    def resource_error(self, gvr: GroupVersionResource) -> str:
        informer = self._custom.get(gvr)
        return informer.error if informer is not None else ""

    def list_resources(
        self,
        gvr: GroupVersionResource,
        namespace: str = "",
        selector: Selector | str | None = None,
    ) -> list[Resource]:
        """Cached rows of a custom resource; its informer must have been ensured."""
        informer = self._custom.get(gvr)
        if informer is None:
            raise NotReadyError(str(gvr), f"no informer for {gvr}; ensure it first")
        if informer.readiness is KindReadiness.UNAVAILABLE:
            raise KindUnavailableError(str(gvr), informer.error)
        if informer.readiness is KindReadiness.PENDING:
            raise NotReadyError(str(gvr))
        if isinstance(selector, str):
            selector = Selector.parse(selector) if selector.strip() else None
        if not gvr.namespaced:
            namespace = ""
        return informer.cache.list(namespace, selector)

    # ------------------------------------------------------------------
    # Relationship queries
    # ------------------------------------------------------------------

    def _owned(self, kind: ResourceKind, owner_uids: Iterable[str]) -> list[Resource]:
        cache = self._cache(kind)
        seen: dict[str, Resource] = {}
        for uid in owner_uids:
            for row in cache.by_index(OWNER_INDEX, uid):
                seen[f"{row.namespace}/{row.name}"] = row
        return newest_first(seen.values())

    def replicasets_for_deployment(self, namespace: str, name: str) -> list[ReplicaSet]:
        deployment = self.get(ResourceKind.DEPLOYMENTS, namespace, name)
        return self._owned(ResourceKind.REPLICASETS, [deployment.uid])  # type: ignore[return-value]

    def pods_for_deployment(self, namespace: str, name: str) -> list[Pod]:
        replicasets = self.replicasets_for_deployment(namespace, name)
        return self._owned(ResourceKind.PODS, [rs.uid for rs in replicasets])  # type: ignore[return-value]

    def pods_for_replicaset(self, namespace: str, name: str) -> list[Pod]:
        return self._pods_owned_by(ResourceKind.REPLICASETS, namespace, name)

    def pods_for_statefulset(self, namespace: str, name: str) -> list[Pod]:
        return self._pods_owned_by(ResourceKind.STATEFULSETS, namespace, name)

    def pods_for_daemonset(self, namespace: str, name: str) -> list[Pod]:
        return self._pods_owned_by(ResourceKind.DAEMONSETS, namespace, name)

    def pods_for_job(self, namespace: str, name: str) -> list[Pod]:
        return self._pods_owned_by(ResourceKind.JOBS, namespace, name)

    def _pods_owned_by(self, owner_kind: ResourceKind, namespace: str, name: str) -> list[Pod]:
        owner = self.get(owner_kind, namespace, name)
        return self._owned(ResourceKind.PODS, [owner.uid])  # type: ignore[return-value]

    def jobs_for_cronjob(self, namespace: str, name: str) -> list[Job]:
        cronjob = self.get(ResourceKind.CRONJOBS, namespace, name)
        return self._owned(ResourceKind.JOBS, [cronjob.uid])  # type: ignore[return-value]

    def pods_for_service(self, namespace: str, name: str) -> list[Pod]:
        service = self.get(ResourceKind.SERVICES, namespace, name)
        selector = getattr(service, "selector", {})
        if not selector:
            # headless or externally managed endpoints
            return []
        return self.list(ResourceKind.PODS, namespace, Selector.from_labels(selector))  # type: ignore[return-value]

    def _pods_by(self, index: str, value: str) -> list[Pod]:
        return self._cache(ResourceKind.PODS).by_index(index, value)  # type: ignore[return-value]

    def pods_on_node(self, node: str) -> list[Pod]:
        return self._pods_by(NODE_INDEX, node)

    def pods_for_namespace(self, namespace: str) -> list[Pod]:
        return self.list(ResourceKind.PODS, namespace)  # type: ignore[return-value]

    def pods_using_configmap(self, namespace: str, name: str) -> list[Pod]:
        return self._pods_by(CONFIGMAP_INDEX, f"{namespace}/{name}")

    def pods_using_secret(self, namespace: str, name: str) -> list[Pod]:
        return self._pods_by(SECRET_INDEX, f"{namespace}/{name}")

    def pods_for_pvc(self, namespace: str, name: str) -> list[Pod]:
        return self._pods_by(PVC_INDEX, f"{namespace}/{name}")

    # ------------------------------------------------------------------
    # Live operations
    # ------------------------------------------------------------------

    def _ensure_open(self) -> None:
        if self._closed:
            raise NotLoadedError(self.context, f"repository for context {self.context!r} is closed")

    async def delete(self, kind: ResourceKind, namespace: str, name: str) -> None:
        self._ensure_open()
        await self._client.delete(kind, namespace, name)
        self._log.info("resource deleted", kind=str(kind), namespace=namespace, name=name)

    async def scale(self, kind: ResourceKind, namespace: str, name: str, replicas: int) -> None:
        if kind not in SCALABLE_KINDS:
            raise ValidationError(f"{kind} cannot be scaled")
        if replicas < 0:
            raise ValidationError(f"replicas must be >= 0, got {replicas}")
        self._ensure_open()
        await self._client.scale(kind, namespace, name, replicas)
        self._log.info("resource scaled", kind=str(kind), namespace=namespace, name=name, replicas=replicas)

    async def get_yaml(self, kind: ResourceKind, namespace: str, name: str) -> str:
        self._ensure_open()
        obj = await self._client.get(kind, namespace, name)
        meta = obj.get("metadata")
        if isinstance(meta, dict) and "managedFields" in meta:
            obj = {**obj, "metadata": {k: v for k, v in meta.items() if k != "managedFields"}}
        return yaml.safe_dump(obj, sort_keys=False, default_flow_style=False)

    async def describe(self, kind: ResourceKind, namespace: str, name: str) -> str:
        self._ensure_open()
        spec = KIND_SPECS[kind]
        obj = await self._client.get(kind, namespace, name)
        try:
            events = await self._client.list_events(namespace, spec.object_kind, name)
        except RemoteError as exc:
            events_text = f"  Failed to fetch events: {exc}\n"
        else:
            events_text = format_events(events)
        return format_describe(obj, spec.object_kind, spec.api_version) + "\nEvents:\n" + events_text

    async def get_logs(
        self,
        namespace: str,
        pod: str,
        container: str | None = None,
        tail: int = 100,
        follow: bool = False,
    ) -> str | AsyncIterator[str]:
        """Container logs.

        Returns the text when ``follow`` is False, otherwise an async
        iterator of lines that ends when the container stops or the caller
        stops iterating.
        """
        if tail < 0:
            raise ValidationError(f"tail must be >= 0, got {tail}")
        self._ensure_open()
        if follow:
            return self._client.stream_logs(namespace, pod, container, tail)
        return await self._client.read_logs(namespace, pod, container, tail)


def format_age(delta: timedelta) -> str:
    """kubectl-style short age: 42s, 5m, 3h, 2d."""
    seconds = max(int(delta.total_seconds()), 0)
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m"
    if seconds < 86400:
        return f"{seconds // 3600}h"
    return f"{seconds // 86400}d"


def format_events(events: list[dict[str, Any]]) -> str:
    if not events:
        return "  <none>\n"

    now = datetime.now(tz=UTC)

    def when(event: dict[str, Any]) -> datetime | None:
        return parse_timestamp(event.get("lastTimestamp")) or parse_timestamp(event.get("eventTime"))

    ordered = sorted(events, key=lambda e: when(e) or datetime.min.replace(tzinfo=UTC), reverse=True)
    lines = [
        "  Type    Reason    Age                    Message",
        "  ----    ------    ---                    -------",
    ]
    for event in ordered:
        ts = when(event)
        age = format_age(now - ts) if ts is not None else "<unknown>"
        message = str(event.get("message") or "").strip()
        if len(message) > _EVENT_MESSAGE_WIDTH:
            message = message[: _EVENT_MESSAGE_WIDTH - 3] + "..."
        lines.append(f"  {event.get('type') or '':<7} {event.get('reason') or '':<9} {age:<22} {message}")
    return "\n".join(lines) + "\n"


def format_describe(obj: dict[str, Any], object_kind: str, api_version: str) -> str:
    meta = obj.get("metadata") or {}
    lines = [f"Name:         {meta.get('name', '')}"]
    if meta.get("namespace"):
        lines.append(f"Namespace:    {meta['namespace']}")
    lines.append(f"Kind:         {obj.get('kind') or object_kind}")
    lines.append(f"API Version:  {obj.get('apiVersion') or api_version}")
    lines.extend(_format_map("Labels:", meta.get("labels") or {}))
    lines.extend(_format_map("Annotations:", meta.get("annotations") or {}))
    lines.append(f"Created:      {meta.get('creationTimestamp', '')}")
    text = "\n".join(lines) + "\n"

    status = obj.get("status")
    if status:
        dumped = yaml.safe_dump(status, sort_keys=False, default_flow_style=False)
        text += "\nStatus:\n" + "".join(f"  {line}\n" for line in dumped.splitlines() if line)
    return text


def _format_map(title: str, values: dict[str, Any]) -> list[str]:
    if not values:
        return [f"{title:<14}<none>"]
    lines = []
    for i, (key, value) in enumerate(sorted(values.items())):
        prefix = title if i == 0 else ""
        lines.append(f"{prefix:<14}{key}={value}")
    return lines
