"""Load coordinator: drives one context from nothing to a synced Repository.

    CONNECTING    build the client, check the version endpoint
    ESTABLISHING  start informers, wait for the first kind to sync
    SYNCING       wait for every kind to sync or be marked unavailable
    COMPLETE

Each transition emits exactly one ContextLoadProgress.  A failure while
CONNECTING raises ClusterConnectionError; a failure while ESTABLISHING
raises SyncTimeoutError.  SYNCING never fails: kinds still pending at the
deadline are marked unavailable and the load completes.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Iterable

from kubenav.cache.client import ClientFactory, ClusterClient
from kubenav.cache.client import connect as default_connect
from kubenav.cache.informer import Informer
from kubenav.cache.kubeconfig import Kubeconfig
from kubenav.cache.repository import Repository
from kubenav.errors import ClusterConnectionError, RemoteError, SyncTimeoutError
from kubenav.models.config import CacheSettings
from kubenav.models.progress import ContextLoadProgress, LoadPhase
from kubenav.observability.logging import get_logger, log_duration

_log = get_logger("loader")

ProgressQueue = asyncio.Queue[ContextLoadProgress]


class ContextLoader:
    """Runs the load state machine for contexts of one kubeconfig."""

    def __init__(
        self,
        kubeconfig: Kubeconfig,
        settings: CacheSettings,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self._kubeconfig = kubeconfig
        self._settings = settings
        self._client_factory = client_factory or default_connect

    async def load(self, context: str, progress: ProgressQueue | None = None) -> Repository:
        log = _log.bind(context=context)
        with log_duration(log, "load context"):
            await _emit(progress, context, LoadPhase.CONNECTING, "Connecting to API server…")
            client = await self._connect(context)

            # any exit before the return releases the client or repository
            repo: Repository | None = None
            try:
                await _emit(progress, context, LoadPhase.ESTABLISHING, "Starting informers…")
                repo = Repository(context, client, self._settings)
                repo.start()
                await self._wait_first_sync(repo)

                synced = len(repo.synced_kinds())
                total = len(repo.informers)
                await _emit(progress, context, LoadPhase.SYNCING, f"Syncing resources ({synced}/{total})…")
                await self._wait_all_settled(repo)

                unavailable = repo.unavailable_kinds()
                message = "Loaded"
                if unavailable:
                    message = f"Loaded ({len(unavailable)} resource types unavailable)"
                await _emit(progress, context, LoadPhase.COMPLETE, message)
                log.info("context loaded", synced=len(repo.synced_kinds()), unavailable=[str(k) for k in unavailable])
                return repo
            except BaseException:
                await (repo.close() if repo is not None else client.close())
                raise

    async def _connect(self, context: str) -> ClusterClient:
        if self._kubeconfig.find(context) is None:
            raise ClusterConnectionError(context, f"context not found in {self._kubeconfig.path}")

        client = await self._client_factory(self._kubeconfig.path, context, self._settings)
        try:
            version = await client.server_version()
        except (RemoteError, OSError, TimeoutError) as exc:
            await client.close()
            raise ClusterConnectionError(context, f"cannot reach API server: {exc}") from exc
        except BaseException:
            await client.close()
            raise
        _log.debug("api server reachable", context=context, version=version)
        return client

    async def _wait_first_sync(self, repo: Repository) -> None:
        timeout = self._settings.sync_timeout
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not repo.synced_kinds():
            if repo.are_typed_informers_ready():
                raise SyncTimeoutError(repo.context, timeout, "every resource type was denied")
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise SyncTimeoutError(repo.context, timeout)
            await _wait_settled(_unsettled(repo.informers.values()), remaining, asyncio.FIRST_COMPLETED)

    async def _wait_all_settled(self, repo: Repository) -> None:
        timeout = self._settings.sync_timeout
        await _wait_settled(_unsettled(repo.informers.values()), timeout, asyncio.ALL_COMPLETED)
        for informer in _unsettled(repo.informers.values()):
            informer.mark_unavailable(f"not synced within {timeout:g}s")


def _unsettled(informers: Iterable[Informer]) -> list[Informer]:
    return [i for i in informers if not i.settled]


async def _wait_settled(informers: list[Informer], timeout: float, return_when: str) -> None:
    if not informers:
        return
    waiters = [asyncio.create_task(i.wait_settled()) for i in informers]
    try:
        await asyncio.wait(waiters, timeout=timeout, return_when=return_when)
    finally:
        for waiter in waiters:
            waiter.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await asyncio.gather(*waiters, return_exceptions=True)


async def _emit(progress: ProgressQueue | None, context: str, phase: LoadPhase, message: str) -> None:
    _log.debug("load phase", context=context, phase=phase.name, message=message)
    if progress is not None:
        await progress.put(ContextLoadProgress(context=context, message=message, phase=phase))
