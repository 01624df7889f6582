"""Per-kind informer: a list-then-watch loop feeding an indexed local store.

``InformerCache`` is the store.  Its single mutator is ``apply()``, which
takes an explicit ``WatchEvent``; every state transition (add, update,
delete, full relist) goes through it, so the cache can be driven directly in
tests without any watch stream.

``Informer`` owns the background task for one kind of one context:

    list  -> RELIST event -> SYNCED -> watch from resourceVersion
    410 Gone            -> relist
    401 / 403           -> UNAVAILABLE, task ends
    other failure       -> reconnect with exponential back-off
    every resync_period -> full relist
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from kubenav.cache.selectors import Selector
from kubenav.cache.transforms import Indexer, indexers_for, transform
from kubenav.errors import RemoteError
from kubenav.models.config import CacheSettings
from kubenav.models.resources import KindReadiness, Resource, ResourceStats, ResourceType
from kubenav.observability.logging import get_logger

_log = get_logger("informer")

_DENIED_STATUSES = frozenset({401, 403})
_GONE_STATUS = 410
_INITIAL_BACKOFF = 1.0

_Key = tuple[str, str]


class EventType(StrEnum):
    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"
    RELIST = "RELIST"


@dataclass(frozen=True)
class WatchEvent:
    """One change to an informer's store.

    ``obj`` carries the object for ADDED/MODIFIED/DELETED; ``objects`` carries
    the complete new snapshot for RELIST.
    """

    type: EventType
    obj: dict[str, Any] | None = None
    objects: tuple[dict[str, Any], ...] = ()

    @classmethod
    def relist(cls, objects: Iterable[dict[str, Any]]) -> WatchEvent:
        return cls(EventType.RELIST, objects=tuple(objects))


def _sort_key(row: Resource) -> tuple[float, str, str]:
    ts = row.created_at.timestamp() if row.created_at is not None else float("-inf")
    return (-ts, row.name, row.namespace)


def newest_first(rows: Iterable[Resource]) -> list[Resource]:
    """Sort rows newest first, ties broken by name then namespace."""
    return sorted(rows, key=_sort_key)


class InformerCache:
    """Indexed local snapshot of one resource kind.

    Reads return new lists of immutable rows, so callers never observe a
    store that is half-way through an ``apply()``.
    """

    def __init__(self, kind: ResourceType, indexers: dict[str, Indexer] | None = None) -> None:
        self.kind = kind
        self._indexers = indexers if indexers is not None else indexers_for(kind)
        self._store: dict[_Key, Resource] = {}
        self._indexes: dict[str, dict[str, set[_Key]]] = {name: {} for name in self._indexers}
        self._stats = ResourceStats(kind=kind)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def apply(self, event: WatchEvent) -> None:
        if event.type is EventType.RELIST:
            self._replace(event.objects)
        elif event.obj is None:
            raise ValueError(f"{event.type} event without an object")
        elif event.type is EventType.DELETED:
            self._delete(self._key_of(event.obj))
        else:
            self._upsert(event.type, event.obj)
        self._stats.last_update = datetime.now(tz=UTC)

    def _key_of(self, obj: dict[str, Any]) -> _Key:
        meta = obj.get("metadata") or {}
        return (meta.get("namespace") or "", meta.get("name") or "")

    def _upsert(self, event_type: EventType, obj: dict[str, Any]) -> None:
        row = transform(self.kind, obj)
        key = (row.namespace, row.name)
        existed = key in self._store
        if existed:
            self._unindex(key)
        self._store[key] = row
        self._index(key, row)
        if existed or event_type is EventType.MODIFIED:
            self._stats.update_events += 1
        else:
            self._stats.add_events += 1

    def _delete(self, key: _Key) -> None:
        if key not in self._store:
            return
        self._unindex(key)
        del self._store[key]
        self._stats.delete_events += 1

    def _replace(self, objects: Iterable[dict[str, Any]]) -> None:
        rows = [transform(self.kind, obj) for obj in objects]
        self._store = {(row.namespace, row.name): row for row in rows}
        self._indexes = {name: {} for name in self._indexers}
        for key, row in self._store.items():
            self._index(key, row)

    def _index(self, key: _Key, row: Resource) -> None:
        for name, indexer in self._indexers.items():
            index = self._indexes[name]
            for value in indexer(row):
                index.setdefault(value, set()).add(key)

    def _unindex(self, key: _Key) -> None:
        row = self._store[key]
        for name, indexer in self._indexers.items():
            index = self._indexes[name]
            for value in indexer(row):
                keys = index.get(value)
                if keys is None:
                    continue
                keys.discard(key)
                if not keys:
                    del index[value]

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list(self, namespace: str = "", selector: Selector | None = None) -> list[Resource]:
        rows = [
            row
            for row in self._store.values()
            if (not namespace or row.namespace == namespace)
            and (selector is None or selector.matches(row.labels))
        ]
        rows.sort(key=_sort_key)
        return rows

    def get(self, namespace: str, name: str) -> Resource | None:
        return self._store.get((namespace, name))

    def by_index(self, index: str, value: str) -> list[Resource]:
        if index not in self._indexes:
            raise KeyError(f"{self.kind} has no index {index!r}")
        keys = self._indexes[index].get(value, ())
        rows = [self._store[key] for key in keys]
        rows.sort(key=_sort_key)
        return rows

    def __len__(self) -> int:
        return len(self._store)

    def stats(self, readiness: KindReadiness) -> ResourceStats:
        s = self._stats
        return ResourceStats(
            kind=self.kind,
            count=len(self._store),
            readiness=readiness,
            add_events=s.add_events,
            update_events=s.update_events,
            delete_events=s.delete_events,
            last_update=s.last_update,
        )


class Informer:
    """Runs the list/watch loop for one kind of one context."""

    def __init__(self, context: str, kind: ResourceType, client: Any, settings: CacheSettings) -> None:
        self.context = context
        self.kind = kind
        self.cache = InformerCache(kind)
        self._client = client
        self._settings = settings
        self._readiness = KindReadiness.PENDING
        self._error = ""
        self._settled = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._log = _log.bind(context=context, kind=str(kind))

    @property
    def readiness(self) -> KindReadiness:
        return self._readiness

    @property
    def error(self) -> str:
        return self._error

    @property
    def settled(self) -> bool:
        """True once the kind is SYNCED or UNAVAILABLE."""
        return self._settled.is_set()

    async def wait_settled(self) -> None:
        await self._settled.wait()

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name=f"informer-{self.context}-{self.kind}")

    def mark_unavailable(self, reason: str) -> None:
        """Give up on this kind for the rest of the repository's life."""
        if self._readiness is KindReadiness.UNAVAILABLE:
            return
        self._readiness = KindReadiness.UNAVAILABLE
        self._error = reason
        self._settled.set()
        self._log.debug("kind unavailable", reason=reason)
        if self._task is not None and self._task is not asyncio.current_task():
            self._task.cancel()

    async def stop(self) -> None:
        task = self._task
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _run(self) -> None:
        backoff = _INITIAL_BACKOFF
        while True:
            try:
                resource_version = await self._relist()
                backoff = _INITIAL_BACKOFF
                await self._watch(resource_version)
            except RemoteError as exc:
                if exc.status in _DENIED_STATUSES:
                    self.mark_unavailable(f"{exc.reason}: {exc.detail}")
                    return
                if exc.status == _GONE_STATUS:
                    self._log.debug("watch expired, relisting")
                    continue
                self._log.debug("list/watch failed, backing off", error=str(exc), backoff=backoff)
            except TimeoutError as exc:
                self._log.debug("list/watch timed out, backing off", error=str(exc), backoff=backoff)
            except Exception as exc:  # noqa: BLE001
                # A transform or client bug must not take the other kinds down.
                self._log.warning("informer crashed", error=str(exc), exc_info=True)
                self.mark_unavailable(f"internal error: {exc}")
                return
            await asyncio.sleep(backoff)
            backoff = min(backoff * 2, self._settings.max_backoff)

    async def _relist(self) -> str:
        items, resource_version = await self._client.list(self.kind)
        self.cache.apply(WatchEvent.relist(items))
        if self._readiness is KindReadiness.PENDING:
            self._readiness = KindReadiness.SYNCED
            self._settled.set()
            self._log.debug("kind synced", count=len(self.cache))
        return resource_version

    async def _watch(self, resource_version: str) -> None:
        """Stream events until the resync period elapses."""
        resync = asyncio.timeout(self._settings.resync_period)
        try:
            async with resync:
                while True:
                    received = 0
                    async for event_type, obj in self._client.watch(self.kind, resource_version):
                        received += 1
                        version = (obj.get("metadata") or {}).get("resourceVersion")
                        if version:
                            resource_version = version
                        if event_type in (EventType.ADDED, EventType.MODIFIED, EventType.DELETED):
                            self.cache.apply(WatchEvent(EventType(event_type), obj=obj))
                    if not received:
                        # stream closed straight away; don't spin
                        await asyncio.sleep(_INITIAL_BACKOFF)
        except TimeoutError:
            if not resync.expired():
                raise
            self._log.debug("periodic resync")
