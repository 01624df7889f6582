"""Bounded pool of per-context repositories.

The pool owns every Repository.  It tracks one active context, a per-context
state (LOADING / READY / FAILED) and a least-recently-used order used to pick
eviction victims when a load pushes it past ``max_contexts``.

Concurrency: ``_lock`` guards the repository map, LRU order, state maps and
active name.  It is held only for bookkeeping and never across an await, so
slow work (client construction, initial list) runs unlocked and the finished
Repository is registered in one short critical section.
"""

from __future__ import annotations

import asyncio
import threading
from collections import OrderedDict
from datetime import UTC, datetime

from kubenav.cache.client import ClientFactory
from kubenav.cache.kubeconfig import Kubeconfig, parse_kubeconfig
from kubenav.cache.loader import ContextLoader, ProgressQueue
from kubenav.cache.repository import Repository
from kubenav.cache.selectors import Selector
from kubenav.config import validate_max_contexts
from kubenav.errors import ClusterConnectionError, NotLoadedError, PoolClosedError, ValidationError
from kubenav.models.config import CacheSettings
from kubenav.models.progress import ContextInfo, ContextState, ContextStatus
from kubenav.models.resources import GroupVersionResource, Resource
from kubenav.observability.logging import get_logger, log_duration

_log = get_logger("pool")

_STATE_ORDER = {
    ContextState.READY: 0,
    ContextState.LOADING: 1,
    ContextState.FAILED: 2,
    ContextState.NOT_LOADED: 3,
}


class RepositoryPool:
    """Owns up to ``max_contexts`` loaded repositories keyed by context name."""

    def __init__(
        self,
        kubeconfig_path: str,
        max_contexts: int,
        *,
        client_factory: ClientFactory | None = None,
        settings: CacheSettings | None = None,
    ) -> None:
        """Validate limits and read the kubeconfig; no context is loaded.

        Raises:
            ValidationError: ``max_contexts`` outside 1-20.
            ConfigError: the kubeconfig is missing or cannot be parsed.
        """
        with log_duration(_log, "create pool"):
            self._max_contexts = validate_max_contexts(max_contexts)
            with log_duration(_log, "parse kubeconfig", path=kubeconfig_path):
                self._kubeconfig: Kubeconfig = parse_kubeconfig(kubeconfig_path)
            self._settings = settings or CacheSettings()
            self._loader = ContextLoader(self._kubeconfig, self._settings, client_factory)

            self._lock = threading.Lock()
            # least recently used first
            self._repos: OrderedDict[str, Repository] = OrderedDict()
            self._states: dict[str, ContextState] = {}
            self._errors: dict[str, str] = {}
            self._loaded_at: dict[str, datetime] = {}
            self._active = ""
            self._inflight: dict[str, asyncio.Future[None]] = {}
            self._closing: set[asyncio.Task[None]] = set()
            self._closed = False

        _log.debug(
            "repository pool initialized",
            context_count=len(self._kubeconfig.contexts),
            max_contexts=self._max_contexts,
        )

    # ------------------------------------------------------------------
    # Properties and accessors
    # ------------------------------------------------------------------

    @property
    def kubeconfig_path(self) -> str:
        return self._kubeconfig.path

    @property
    def max_contexts(self) -> int:
        return self._max_contexts

    @property
    def kubeconfig(self) -> Kubeconfig:
        return self._kubeconfig

    def get_active_repository(self) -> Repository | None:
        with self._lock:
            return self._repos.get(self._active) if self._active else None

    def get_active_context(self) -> str:
        with self._lock:
            return self._active

    def get_repository(self, name: str) -> Repository | None:
        with self._lock:
            return self._repos.get(name)

    def loaded_contexts(self) -> list[str]:
        """Loaded context names, most recently used first."""
        with self._lock:
            return list(reversed(self._repos))

    def context_state(self, name: str) -> ContextState:
        with self._lock:
            return self._state_locked(name)

    def context_error(self, name: str) -> str:
        with self._lock:
            return self._errors.get(name, "")

    def _state_locked(self, name: str) -> ContextState:
        if name in self._repos:
            return ContextState.READY
        return self._states.get(name, ContextState.NOT_LOADED)

    def get_all_contexts(self) -> list[ContextStatus]:
        """Every kubeconfig context with its pool state.

        Sorted READY, LOADING, FAILED, NOT_LOADED; alphabetical within each.
        """
        with self._lock:
            infos = {info.name: info for info in self._kubeconfig.contexts}
            for name in self._states:
                infos.setdefault(name, ContextInfo(name=name))
            statuses = [
                ContextStatus(
                    info=info,
                    state=self._state_locked(name),
                    error=self._errors.get(name, ""),
                    is_active=name == self._active,
                    loaded_at=self._loaded_at.get(name),
                )
                for name, info in infos.items()
            ]
        statuses.sort(key=lambda s: (_STATE_ORDER[s.state], s.name))
        return statuses

    def mark_as_loading(self, name: str) -> None:
        """Show ``name`` as LOADING before its background load starts."""
        with self._lock:
            if name not in self._repos:
                self._states[name] = ContextState.LOADING
                self._errors.pop(name, None)

    # ------------------------------------------------------------------
    # Load / switch / retry
    # ------------------------------------------------------------------

    async def load_context(self, name: str, progress: ProgressQueue | None = None) -> None:
        """Load ``name`` and register it; returns once the initial sync is done.

        Phases are streamed on ``progress``, which is never closed here.  A
        second caller for a context that is already loading waits for the
        first load instead of starting another.  Loading a context that is
        already in the pool is a no-op.

        Raises:
            ClusterConnectionError: the API server cannot be reached.
            SyncTimeoutError: no resource type synced in time.
            PoolClosedError: the pool was closed before the load finished.
        """
        with self._lock:
            if self._closed:
                raise PoolClosedError(name)
            if name in self._repos:
                return
            waiting_on = self._inflight.get(name)
            if waiting_on is None:
                future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
                self._inflight[name] = future
                self._states[name] = ContextState.LOADING
                self._errors.pop(name, None)

        if waiting_on is not None:
            _log.debug("context already loading, waiting", context=name)
            await asyncio.shield(waiting_on)
            return

        _log.info("loading context", context=name)
        try:
            repo = await self._loader.load(name, progress)
        except BaseException as exc:
            failure: BaseException = exc
            if isinstance(exc, asyncio.CancelledError):
                # coalesced waiters see an error, not this caller's cancellation
                failure = ClusterConnectionError(name, "load cancelled")
            with self._lock:
                self._inflight.pop(name, None)
                self._states[name] = ContextState.FAILED
                self._errors[name] = str(failure) or type(failure).__name__
            _log.warning("context load failed", context=name, error=str(failure))
            _settle(future, failure)
            raise

        with self._lock:
            self._inflight.pop(name, None)
            discard = self._closed
            evicted: list[tuple[str, Repository]] = []
            if not discard:
                self._repos[name] = repo
                self._repos.move_to_end(name)
                self._states[name] = ContextState.READY
                self._loaded_at[name] = datetime.now(tz=UTC)
                evicted = self._evict_locked(protect=name)

        if discard:
            await repo.close()
            closed_exc = PoolClosedError(name)
            _settle(future, closed_exc)
            raise closed_exc

        self._close_evicted(evicted)
        _settle(future, None)
        _log.info("context loaded successfully", context=name)

    def set_active(self, name: str) -> None:
        """Make ``name`` the active context and most recently used.

        Raises:
            NotLoadedError: ``name`` has no repository.
        """
        with self._lock:
            if name not in self._repos:
                raise NotLoadedError(name)
            self._active = name
            self._repos.move_to_end(name)
            evicted = self._evict_locked()
        self._close_evicted(evicted)

    async def switch_context(self, name: str, progress: ProgressQueue | None = None) -> tuple[str, str]:
        """Activate ``name``, loading it first when needed.

        A context that is already loaded is activated without emitting any
        phase.  Returns ``(old_context, new_context)``.
        """
        with self._lock:
            old = self._active
            loaded = name in self._repos
        if not loaded:
            await self.load_context(name, progress)
        self.set_active(name)
        _log.info("context switched", old_context=old, new_context=name)
        return old, name

    async def retry_failed_context(self, name: str, progress: ProgressQueue | None = None) -> None:
        """Clear the FAILED state of ``name`` and load it again.

        Raises:
            NotLoadedError: ``name`` was never attempted.
            ValidationError: ``name`` is not in the FAILED state.
        """
        with self._lock:
            state = self._state_locked(name)
            if state is ContextState.NOT_LOADED:
                raise NotLoadedError(name, f"context {name!r} was never loaded")
            if state is not ContextState.FAILED:
                raise ValidationError(f"context {name!r} is not in failed state ({state})")
            self._states.pop(name, None)
            self._errors.pop(name, None)
        _log.info("retrying context", context=name)
        await self.load_context(name, progress)

    # ------------------------------------------------------------------
    # Custom resources (active context)
    # ------------------------------------------------------------------

    def _require_active(self) -> Repository:
        repo = self.get_active_repository()
        if repo is None:
            raise NotLoadedError("", "no active repository")
        return repo

    def ensure_cr_informer(self, gvr: GroupVersionResource) -> None:
        """Start watching ``gvr`` in the active context; no-op if already watched."""
        self._require_active().ensure_resource_informer(gvr)

    def get_resources_by_gvr(
        self,
        gvr: GroupVersionResource,
        namespace: str = "",
        selector: Selector | str | None = None,
    ) -> list[Resource]:
        return self._require_active().list_resources(gvr, namespace, selector)

    def custom_resource_error(self, gvr: GroupVersionResource) -> str:
        return self._require_active().resource_error(gvr)

    # ------------------------------------------------------------------
    # Eviction and shutdown
    # ------------------------------------------------------------------

    def _evict_locked(self, protect: str = "") -> list[tuple[str, Repository]]:
        """Pop LRU repositories while over capacity; caller holds the lock."""
        evicted = []
        while len(self._repos) > self._max_contexts:
            victim = next(
                (
                    name
                    for name in self._repos
                    if name not in (self._active, protect) and name not in self._inflight
                ),
                None,
            )
            if victim is None:
                # everything left is pinned; the next activation trims it
                break
            evicted.append((victim, self._repos.pop(victim)))
            self._states.pop(victim, None)
            self._loaded_at.pop(victim, None)
        return evicted

    def _close_evicted(self, evicted: list[tuple[str, Repository]]) -> None:
        for name, repo in evicted:
            _log.info("evicting context", context=name)
            task = asyncio.create_task(repo.close(), name=f"evict-{name}")
            self._closing.add(task)
            task.add_done_callback(self._closing.discard)

    async def close(self) -> None:
        """Stop every repository's informers; safe to call more than once."""
        with self._lock:
            already = self._closed
            self._closed = True
            repos = list(self._repos.values())
            self._repos.clear()
            self._loaded_at.clear()
            self._active = ""
            closing = list(self._closing)
        if already and not closing:
            return
        _log.info("closing repository pool", repositories=len(repos))
        results = await asyncio.gather(*(r.close() for r in repos), *closing, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                _log.warning("repository close failed", error=str(result))


def _settle(future: asyncio.Future[None], exc: BaseException | None) -> None:
    """Resolve a coalesced-load future, marking any exception as retrieved."""
    if future.done():
        return
    if exc is None:
        future.set_result(None)
    else:
        future.set_exception(exc)
        future.exception()
