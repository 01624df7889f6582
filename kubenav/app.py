"""Application shell for kubenav.

Owns the RepositoryPool and the UI message queue.  Startup order:
config -> logging -> pool -> first context (blocking) -> background contexts.

After ``start()`` returns, every cache operation (extra loads, switches,
retries, mutations) runs on its own asyncio task and reports back only by
putting a message on ``App.messages``.  Nothing here touches UI state.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from kubenav import __version__
from kubenav.cache.client import ClientFactory
from kubenav.cache.pool import RepositoryPool
from kubenav.cache.repository import Repository
from kubenav.errors import ConfigError, KubeNavError
from kubenav.models.config import KubeNavConfig
from kubenav.models.messages import (
    ContextLoadCompleteMsg,
    ContextLoadFailedMsg,
    ContextLoadProgressMsg,
    ContextSwitchCompleteMsg,
    Message,
    StatusMsg,
)
from kubenav.models.progress import ContextLoadProgress
from kubenav.observability.logging import get_logger, setup_logging

_SHUTDOWN_GRACE_SECONDS = 15

ProgressCallback = Callable[[ContextLoadProgress], None]


class App:
    """Application root.  Constructed once and passed to every consumer.

    ``stop()`` is safe on an app that was never started or already stopped.
    """

    def __init__(
        self,
        config: KubeNavConfig,
        *,
        client_factory: ClientFactory | None = None,
        configure_logging: bool = True,
    ) -> None:
        self.config = config
        self.messages: asyncio.Queue[Message] = asyncio.Queue()
        self._client_factory = client_factory
        self._configure_logging = configure_logging
        self._pool: RepositoryPool | None = None
        self._tasks: set[asyncio.Task[Any]] = set()
        self._running = False
        self._log = get_logger("app")

    @property
    def pool(self) -> RepositoryPool:
        if self._pool is None:
            raise KubeNavError("app has not been started")
        return self._pool

    @property
    def running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def start(self, on_progress: ProgressCallback | None = None) -> str:
        """Create the pool and load the first context, blocking until it is ready.

        Progress for this first load goes to ``on_progress`` rather than the
        message queue since no UI is running yet.  The remaining configured
        contexts are loaded in the background.  Returns the initial context.

        Raises:
            ConfigError: bad kubeconfig or no context to start with.
            ValidationError: ``max_contexts`` out of range.
            ClusterConnectionError / SyncTimeoutError: the first load failed.
        """
        if self._configure_logging:
            log_cfg = self.config.log
            setup_logging(log_cfg.level, log_cfg.file or None, log_cfg.format)
        self._log.info("kubenav starting", version=__version__)

        self._pool = RepositoryPool(
            self.config.kubeconfig_path,
            self.config.max_contexts,
            client_factory=self._client_factory,
            settings=self.config.cache,
        )

        contexts = list(dict.fromkeys(self.config.contexts))
        initial = contexts[0] if contexts else self._pool.kubeconfig.current_context
        if not initial:
            raise ConfigError(
                "no context given and kubeconfig has no current-context",
                path=self._pool.kubeconfig_path,
            )

        progress: asyncio.Queue[ContextLoadProgress] = asyncio.Queue()
        printer = asyncio.create_task(_drain(progress, on_progress), name="initial-progress")
        try:
            await self._pool.load_context(initial, progress)
        finally:
            printer.cancel()
            _flush(progress, on_progress)
        self._pool.set_active(initial)
        self._running = True
        self._log.info("kubenav started", context=initial)

        self.load_background_contexts(contexts[1:])
        return initial

    # ------------------------------------------------------------------
    # Background operations
    # ------------------------------------------------------------------

    def _spawn(self, coro: Awaitable[Any], name: str) -> asyncio.Task[Any]:
        task = asyncio.ensure_future(coro)
        task.set_name(name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _forwarding(
        self, operation: Callable[[asyncio.Queue[ContextLoadProgress]], Awaitable[Any]]
    ) -> Any:
        """Run ``operation`` with a progress queue forwarded to ``messages``."""
        progress: asyncio.Queue[ContextLoadProgress] = asyncio.Queue()
        forwarder = asyncio.create_task(_drain(progress, self._post_progress))
        try:
            return await operation(progress)
        finally:
            forwarder.cancel()
            _flush(progress, self._post_progress)

    def _post_progress(self, p: ContextLoadProgress) -> None:
        self.messages.put_nowait(ContextLoadProgressMsg(context=p.context, message=p.message, phase=p.phase))

    def load_background_contexts(self, names: Iterable[str]) -> list[asyncio.Task[Any]]:
        """Load each context on its own task; results arrive as messages."""
        tasks = []
        for name in names:
            self.pool.mark_as_loading(name)
            tasks.append(self._spawn(self._load(name), f"load-{name}"))
        return tasks

    async def _load(self, name: str) -> None:
        try:
            await self._forwarding(lambda q: self.pool.load_context(name, q))
        except KubeNavError as exc:
            self.messages.put_nowait(ContextLoadFailedMsg(context=name, error=exc))
        else:
            self.messages.put_nowait(ContextLoadCompleteMsg(context=name))

    def switch_context(self, name: str) -> asyncio.Task[Any]:
        """Switch to ``name`` in the background, loading it if needed."""
        if self.pool.get_repository(name) is None:
            self.pool.mark_as_loading(name)
            self.messages.put_nowait(StatusMsg.loading(f"Switching to {name}…"))
        return self._spawn(self._switch(name), f"switch-{name}")

    async def _switch(self, name: str) -> None:
        try:
            old, new = await self._forwarding(lambda q: self.pool.switch_context(name, q))
        except KubeNavError as exc:
            self.messages.put_nowait(ContextLoadFailedMsg(context=name, error=exc))
            self.messages.put_nowait(StatusMsg.error(f"Failed to switch to {name}: {exc}"))
        else:
            self.messages.put_nowait(ContextSwitchCompleteMsg(old_context=old, new_context=new))
            self.messages.put_nowait(StatusMsg.success(f"Switched to context {new}"))

    def retry_context(self, name: str) -> asyncio.Task[Any]:
        """Retry a FAILED context in the background."""
        return self._spawn(self._retry(name), f"retry-{name}")

    async def _retry(self, name: str) -> None:
        try:
            await self._forwarding(lambda q: self.pool.retry_failed_context(name, q))
        except KubeNavError as exc:
            self.messages.put_nowait(ContextLoadFailedMsg(context=name, error=exc))
        else:
            self.messages.put_nowait(ContextLoadCompleteMsg(context=name))

    def run_mutation(
        self,
        label: str,
        operation: Callable[[Repository], Awaitable[Any]],
    ) -> asyncio.Task[Any]:
        """Run a live operation against the active repository.

        The outcome is posted as a SUCCESS or ERROR StatusMsg; failures are
        never retried.
        """
        return self._spawn(self._mutate(label, operation), f"mutation-{label}")

    async def _mutate(self, label: str, operation: Callable[[Repository], Awaitable[Any]]) -> Any:
        repo = self.active_repository()
        if repo is None:
            self.messages.put_nowait(StatusMsg.error(f"{label} failed: no active context"))
            return None
        try:
            result = await operation(repo)
        except KubeNavError as exc:
            self._log.debug("mutation failed", operation=label, error=str(exc))
            self.messages.put_nowait(StatusMsg.error(f"{label} failed: {exc}"))
            return None
        self.messages.put_nowait(StatusMsg.success(f"{label} succeeded"))
        return result

    # ------------------------------------------------------------------
    # Accessors for the render path
    # ------------------------------------------------------------------

    def active_repository(self) -> Repository | None:
        return self._pool.get_active_repository() if self._pool is not None else None

    def active_context(self) -> str:
        return self._pool.get_active_context() if self._pool is not None else ""

    def pending_tasks(self) -> list[asyncio.Task[Any]]:
        return [t for t in self._tasks if not t.done()]

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """Cancel background work, then close the pool."""
        if self._pool is None:
            return
        self._log.info("kubenav shutting down")
        self._running = False

        tasks = list(self._tasks)
        for task in tasks:
            if not task.done():
                task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

        try:
            await asyncio.wait_for(self._pool.close(), timeout=_SHUTDOWN_GRACE_SECONDS)
        except TimeoutError:
            self._log.warning("pool close timed out", timeout=_SHUTDOWN_GRACE_SECONDS)
        self._log.info("kubenav stopped")


async def _drain(
    queue: asyncio.Queue[ContextLoadProgress],
    callback: ProgressCallback | None,
) -> None:
    while True:
        item = await queue.get()
        if callback is not None:
            callback(item)


def _flush(queue: asyncio.Queue[ContextLoadProgress], callback: ProgressCallback | None) -> None:
    while not queue.empty():
        item = queue.get_nowait()
        if callback is not None:
            callback(item)
