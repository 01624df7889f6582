"""Integration tests for RepositoryPool: load, switch, retry, evict, close.

Every test runs real Repositories and Informers against the FakeCluster from
conftest; only the API server is simulated.
"""

from __future__ import annotations

import asyncio
import dataclasses

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from kubenav.cache.pool import RepositoryPool
from kubenav.errors import (
    ClusterConnectionError,
    ConfigError,
    KindUnavailableError,
    NotLoadedError,
    PoolClosedError,
    SyncTimeoutError,
    ValidationError,
)
from kubenav.models.progress import ContextLoadProgress, ContextState, LoadPhase
from kubenav.models.resources import KindReadiness, ResourceKind
from tests.fakes import FAST_SETTINGS, FakeCluster, eventually

from .conftest import PoolFactory, drain

pytestmark = pytest.mark.integration

ALL_PHASES = [LoadPhase.CONNECTING, LoadPhase.ESTABLISHING, LoadPhase.SYNCING, LoadPhase.COMPLETE]


def _queue() -> asyncio.Queue[ContextLoadProgress]:
    return asyncio.Queue()


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


class TestConstruction:
    @pytest.mark.parametrize("max_contexts", [0, 21, -3])
    def test_max_contexts_is_validated(self, kubeconfig_path: str, max_contexts: int) -> None:
        with pytest.raises(ValidationError):
            RepositoryPool(kubeconfig_path, max_contexts)

    def test_missing_kubeconfig(self, tmp_path) -> None:
        with pytest.raises(ConfigError):
            RepositoryPool(str(tmp_path / "missing"), 5)

    def test_nothing_is_loaded_up_front(self, make_pool: PoolFactory, cluster: FakeCluster) -> None:
        pool = make_pool()
        assert pool.loaded_contexts() == []
        assert pool.get_active_repository() is None
        assert pool.get_active_context() == ""
        assert sum(cluster.connects.values()) == 0


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


class TestLoadContext:
    async def test_phases_in_order(self, make_pool: PoolFactory) -> None:
        """A successful load emits each phase exactly once, in order."""
        pool = make_pool()
        progress = _queue()
        await pool.load_context("alpha", progress)

        events = drain(progress)
        assert [e.phase for e in events] == ALL_PHASES
        assert all(e.context == "alpha" for e in events)
        assert events[-1].message == "Loaded"
        assert events[-1].is_complete
        assert pool.context_state("alpha") is ContextState.READY
        assert pool.loaded_contexts() == ["alpha"]

    async def test_load_does_not_activate(self, make_pool: PoolFactory) -> None:
        pool = make_pool()
        await pool.load_context("alpha")
        assert pool.get_active_repository() is None
        pool.set_active("alpha")
        repo = pool.get_active_repository()
        assert repo is not None
        assert repo.are_typed_informers_ready()

    async def test_unreachable_server(self, make_pool: PoolFactory, cluster: FakeCluster) -> None:
        """Only CONNECTING is emitted; the context ends FAILED and unloaded."""
        pool = make_pool()
        progress = _queue()
        with pytest.raises(ClusterConnectionError):
            await pool.load_context("bad", progress)

        assert [e.phase for e in drain(progress)] == [LoadPhase.CONNECTING]
        assert pool.context_state("bad") is ContextState.FAILED
        assert "cannot reach API server" in pool.context_error("bad")
        assert "bad" not in pool.loaded_contexts()
        assert cluster.client("bad").closed

    async def test_context_missing_from_kubeconfig(self, make_pool: PoolFactory, cluster: FakeCluster) -> None:
        pool = make_pool()
        with pytest.raises(ClusterConnectionError, match="not found"):
            await pool.load_context("nowhere")
        assert cluster.connects["nowhere"] == 0
        assert pool.context_state("nowhere") is ContextState.FAILED

    async def test_denied_kinds_do_not_fail_the_context(self, make_pool: PoolFactory) -> None:
        """RBAC denial on some kinds completes the load with those kinds unavailable."""
        pool = make_pool()
        progress = _queue()
        await pool.load_context("restricted", progress)

        events = drain(progress)
        assert events[-1].message == "Loaded (2 resource types unavailable)"
        repo = pool.get_repository("restricted")
        assert repo is not None
        assert repo.kind_readiness(ResourceKind.SECRETS) is KindReadiness.UNAVAILABLE
        assert repo.kind_readiness(ResourceKind.PODS) is KindReadiness.SYNCED
        assert repo.list(ResourceKind.PODS)
        with pytest.raises(KindUnavailableError):
            repo.list(ResourceKind.NODES)

    async def test_every_kind_denied_is_a_sync_timeout(self, make_pool: PoolFactory, cluster: FakeCluster) -> None:
        cluster.update("gamma", forbidden=list(ResourceKind))
        pool = make_pool()
        progress = _queue()
        with pytest.raises(SyncTimeoutError, match="every resource type was denied"):
            await pool.load_context("gamma", progress)
        assert [e.phase for e in drain(progress)] == [LoadPhase.CONNECTING, LoadPhase.ESTABLISHING]
        assert pool.context_state("gamma") is ContextState.FAILED
        assert cluster.client("gamma").closed

    async def test_no_kind_answers_in_time(self, make_pool: PoolFactory, cluster: FakeCluster) -> None:
        cluster.update("gamma", blocked=list(ResourceKind))
        pool = make_pool(settings=dataclasses.replace(FAST_SETTINGS, sync_timeout=0.1))
        with pytest.raises(SyncTimeoutError, match="did not sync within 0.1s"):
            await pool.load_context("gamma")
        assert pool.context_state("gamma") is ContextState.FAILED

    async def test_slow_kind_is_given_up_on(self, make_pool: PoolFactory, cluster: FakeCluster) -> None:
        """A kind still pending when SYNCING ends is unavailable; the load completes."""
        cluster.update("gamma", blocked=[ResourceKind.NODES])
        pool = make_pool(settings=dataclasses.replace(FAST_SETTINGS, sync_timeout=0.2))
        progress = _queue()
        await pool.load_context("gamma", progress)

        assert drain(progress)[-1].message == "Loaded (1 resource types unavailable)"
        repo = pool.get_repository("gamma")
        assert repo.kind_readiness(ResourceKind.NODES) is KindReadiness.UNAVAILABLE
        assert repo.kind_error(ResourceKind.NODES) == "not synced within 0.2s"

    async def test_loading_a_loaded_context_is_a_no_op(self, make_pool: PoolFactory, cluster: FakeCluster) -> None:
        pool = make_pool()
        await pool.load_context("alpha")
        progress = _queue()
        await pool.load_context("alpha", progress)
        assert drain(progress) == []
        assert cluster.connects["alpha"] == 1

    async def test_concurrent_loads_are_coalesced(self, make_pool: PoolFactory, cluster: FakeCluster) -> None:
        """Two callers for the same context share one connection."""
        cluster.gate = asyncio.Event()
        pool = make_pool()
        first = asyncio.create_task(pool.load_context("alpha"))
        second = asyncio.create_task(pool.load_context("alpha"))
        await eventually(lambda: cluster.connects["alpha"] == 1)
        assert pool.context_state("alpha") is ContextState.LOADING

        cluster.gate.set()
        await asyncio.gather(first, second)
        assert cluster.connects["alpha"] == 1
        assert pool.loaded_contexts() == ["alpha"]

    async def test_coalesced_failure_reaches_every_caller(self, make_pool: PoolFactory, cluster: FakeCluster) -> None:
        cluster.gate = asyncio.Event()
        pool = make_pool()
        first = asyncio.create_task(pool.load_context("bad"))
        second = asyncio.create_task(pool.load_context("bad"))
        await eventually(lambda: cluster.connects["bad"] == 1)
        cluster.gate.set()
        results = await asyncio.gather(first, second, return_exceptions=True)
        assert all(isinstance(r, ClusterConnectionError) for r in results)


# ---------------------------------------------------------------------------
# Cancelled loads
# ---------------------------------------------------------------------------


def _live_informer_tasks(context: str) -> list[asyncio.Task]:
    return [t for t in asyncio.all_tasks() if t.get_name().startswith(f"informer-{context}-") and not t.done()]


class TestCancelledLoad:
    async def test_cancel_while_syncing_releases_everything(
        self, make_pool: PoolFactory, cluster: FakeCluster
    ) -> None:
        """Cancelling after SYNCING stops every informer and closes the client."""
        cluster.update("gamma", blocked=[ResourceKind.SECRETS])
        pool = make_pool(settings=dataclasses.replace(FAST_SETTINGS, sync_timeout=5.0))
        progress = _queue()
        task = asyncio.create_task(pool.load_context("gamma", progress))
        await eventually(lambda: progress.qsize() == 3)
        assert _live_informer_tasks("gamma")

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert [p.phase for p in drain(progress)] == ALL_PHASES[:3]
        assert cluster.client("gamma").closed
        assert _live_informer_tasks("gamma") == []
        assert pool.context_state("gamma") is ContextState.FAILED
        assert "load cancelled" in pool.context_error("gamma")

    async def test_cancel_before_first_sync_releases_everything(
        self, make_pool: PoolFactory, cluster: FakeCluster
    ) -> None:
        cluster.update("gamma", blocked=list(ResourceKind))
        pool = make_pool(settings=dataclasses.replace(FAST_SETTINGS, sync_timeout=5.0))
        progress = _queue()
        task = asyncio.create_task(pool.load_context("gamma", progress))
        await eventually(lambda: progress.qsize() == 2)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert cluster.client("gamma").closed
        assert _live_informer_tasks("gamma") == []

    async def test_cancel_during_version_check_closes_the_client(
        self, make_pool: PoolFactory, cluster: FakeCluster
    ) -> None:
        cluster.update("gamma", stalled=True)
        pool = make_pool()
        task = asyncio.create_task(pool.load_context("gamma"))
        await eventually(lambda: "gamma" in cluster.clients)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert cluster.client("gamma").closed

    async def test_coalesced_waiter_gets_an_error(self, make_pool: PoolFactory, cluster: FakeCluster) -> None:
        """Only the cancelled caller sees CancelledError; the waiter gets a load failure."""
        cluster.gate = asyncio.Event()
        pool = make_pool()
        first = asyncio.create_task(pool.load_context("alpha"))
        second = asyncio.create_task(pool.load_context("alpha"))
        await eventually(lambda: cluster.connects["alpha"] == 1)

        first.cancel()
        with pytest.raises(asyncio.CancelledError):
            await first
        with pytest.raises(ClusterConnectionError, match="load cancelled"):
            await second
        assert not second.cancelled()
        assert pool.context_state("alpha") is ContextState.FAILED

        cluster.gate.set()
        await pool.retry_failed_context("alpha")
        assert pool.context_state("alpha") is ContextState.READY


# ---------------------------------------------------------------------------
# Eviction
# ---------------------------------------------------------------------------


class TestEviction:
    async def test_least_recently_used_is_evicted(self, make_pool: PoolFactory, cluster: FakeCluster) -> None:
        """max=2, load A, B, C with A never activated: A is evicted."""
        pool = make_pool(max_contexts=2)
        await pool.load_context("alpha")
        alpha = pool.get_repository("alpha")
        await pool.load_context("beta")
        await pool.load_context("gamma")

        assert pool.loaded_contexts() == ["gamma", "beta"]
        assert pool.get_repository("alpha") is None
        assert pool.context_state("alpha") is ContextState.NOT_LOADED
        with pytest.raises(NotLoadedError):
            pool.set_active("alpha")
        await eventually(lambda: alpha.closed)
        assert cluster.client("alpha").closed

    async def test_active_context_is_never_evicted(self, make_pool: PoolFactory) -> None:
        pool = make_pool(max_contexts=2)
        await pool.load_context("alpha")
        pool.set_active("alpha")
        await pool.load_context("beta")
        await pool.load_context("gamma")

        assert sorted(pool.loaded_contexts()) == ["alpha", "gamma"]
        assert pool.get_active_context() == "alpha"

    async def test_activation_refreshes_recency(self, make_pool: PoolFactory) -> None:
        pool = make_pool(max_contexts=3)
        for name in ("alpha", "beta", "gamma"):
            await pool.load_context(name)
        pool.set_active("alpha")
        await pool.switch_context("delta")

        assert pool.loaded_contexts() == ["delta", "alpha", "gamma"]
        assert pool.get_active_context() == "delta"

    async def test_single_slot_overflow_is_trimmed_on_switch(self, make_pool: PoolFactory) -> None:
        """With max=1 a background load briefly coexists with the active context."""
        pool = make_pool(max_contexts=1)
        await pool.switch_context("alpha")
        await pool.load_context("beta")
        assert sorted(pool.loaded_contexts()) == ["alpha", "beta"]

        await pool.switch_context("beta")
        assert pool.loaded_contexts() == ["beta"]
        assert pool.get_active_context() == "beta"

    async def test_failed_loads_do_not_evict(self, make_pool: PoolFactory) -> None:
        pool = make_pool(max_contexts=2)
        await pool.load_context("alpha")
        await pool.load_context("beta")
        with pytest.raises(ClusterConnectionError):
            await pool.load_context("bad")
        assert pool.loaded_contexts() == ["beta", "alpha"]

    @settings(max_examples=25, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
    @given(
        max_contexts=st.integers(min_value=2, max_value=5),
        operations=st.lists(
            st.tuples(
                st.sampled_from(["load", "switch", "activate"]),
                st.sampled_from(["alpha", "beta", "gamma", "delta", "epsilon"]),
            ),
            max_size=12,
        ),
    )
    def test_capacity_invariant(
        self,
        kubeconfig_path: str,
        cluster: FakeCluster,
        max_contexts: int,
        operations: list[tuple[str, str]],
    ) -> None:
        """Loaded contexts never exceed the limit and the active one stays loaded."""

        async def scenario() -> None:
            pool = RepositoryPool(kubeconfig_path, max_contexts, client_factory=cluster, settings=FAST_SETTINGS)
            try:
                for op, name in operations:
                    if op == "load":
                        await pool.load_context(name)
                    elif op == "switch":
                        await pool.switch_context(name)
                    elif pool.get_repository(name) is not None:
                        pool.set_active(name)
                    else:
                        with pytest.raises(NotLoadedError):
                            pool.set_active(name)

                    loaded = pool.loaded_contexts()
                    assert len(loaded) <= max_contexts
                    active = pool.get_active_context()
                    if active:
                        assert active in loaded
                        assert pool.get_active_repository() is pool.get_repository(active)
            finally:
                await pool.close()

        asyncio.run(scenario())


# ---------------------------------------------------------------------------
# Switching
# ---------------------------------------------------------------------------


class TestSwitchContext:
    async def test_switch_to_loaded_context_emits_nothing(self, make_pool: PoolFactory) -> None:
        pool = make_pool()
        await pool.switch_context("alpha")
        await pool.load_context("beta")

        progress = _queue()
        old, new = await pool.switch_context("beta", progress)
        assert (old, new) == ("alpha", "beta")
        assert drain(progress) == []
        assert pool.get_active_context() == "beta"

    async def test_switch_loads_when_needed(self, make_pool: PoolFactory) -> None:
        pool = make_pool()
        progress = _queue()
        old, new = await pool.switch_context("alpha", progress)
        assert (old, new) == ("", "alpha")
        assert [e.phase for e in drain(progress)] == ALL_PHASES
        assert pool.get_active_repository() is pool.get_repository("alpha")

    async def test_failed_switch_keeps_the_old_context(self, make_pool: PoolFactory) -> None:
        pool = make_pool()
        await pool.switch_context("alpha")
        with pytest.raises(ClusterConnectionError):
            await pool.switch_context("bad")
        assert pool.get_active_context() == "alpha"


# ---------------------------------------------------------------------------
# Retry
# ---------------------------------------------------------------------------


class TestRetryFailedContext:
    async def test_retry_after_server_comes_back(self, make_pool: PoolFactory, cluster: FakeCluster) -> None:
        pool = make_pool()
        with pytest.raises(ClusterConnectionError):
            await pool.load_context("bad")

        cluster.update("bad", unreachable=False)
        progress = _queue()
        await pool.retry_failed_context("bad", progress)

        assert pool.context_state("bad") is ContextState.READY
        assert pool.context_error("bad") == ""
        assert [e.phase for e in drain(progress)] == ALL_PHASES

    async def test_retry_that_fails_again_stays_failed(self, make_pool: PoolFactory) -> None:
        pool = make_pool()
        with pytest.raises(ClusterConnectionError):
            await pool.load_context("bad")
        with pytest.raises(ClusterConnectionError):
            await pool.retry_failed_context("bad")
        assert pool.context_state("bad") is ContextState.FAILED

    async def test_retry_never_loaded(self, make_pool: PoolFactory) -> None:
        with pytest.raises(NotLoadedError):
            await make_pool().retry_failed_context("alpha")

    async def test_retry_ready_context(self, make_pool: PoolFactory) -> None:
        pool = make_pool()
        await pool.load_context("alpha")
        with pytest.raises(ValidationError, match="not in failed state"):
            await pool.retry_failed_context("alpha")


# ---------------------------------------------------------------------------
# Context listing
# ---------------------------------------------------------------------------


class TestGetAllContexts:
    async def test_sorted_by_state_then_name(self, make_pool: PoolFactory) -> None:
        pool = make_pool()
        await pool.switch_context("delta")
        with pytest.raises(ClusterConnectionError):
            await pool.load_context("bad")
        pool.mark_as_loading("gamma")

        statuses = pool.get_all_contexts()
        assert [(s.name, s.state) for s in statuses] == [
            ("delta", ContextState.READY),
            ("gamma", ContextState.LOADING),
            ("bad", ContextState.FAILED),
            ("alpha", ContextState.NOT_LOADED),
            ("beta", ContextState.NOT_LOADED),
            ("epsilon", ContextState.NOT_LOADED),
            ("restricted", ContextState.NOT_LOADED),
        ]
        delta = statuses[0]
        assert delta.is_active
        assert delta.loaded_at is not None
        assert delta.info.cluster == "delta-cluster"
        assert statuses[2].error

    async def test_mark_as_loading_ignores_loaded_contexts(self, make_pool: PoolFactory) -> None:
        pool = make_pool()
        await pool.load_context("alpha")
        pool.mark_as_loading("alpha")
        assert pool.context_state("alpha") is ContextState.READY


# ---------------------------------------------------------------------------
# Shutdown
# ---------------------------------------------------------------------------


class TestClose:
    async def test_close_is_idempotent_and_stops_everything(self, make_pool: PoolFactory, cluster: FakeCluster) -> None:
        pool = make_pool()
        await pool.switch_context("alpha")
        await pool.load_context("beta")
        repos = [pool.get_repository("alpha"), pool.get_repository("beta")]

        await pool.close()
        await pool.close()

        assert all(r.closed for r in repos)
        assert cluster.client("alpha").closed
        assert cluster.client("beta").closed
        assert pool.loaded_contexts() == []
        assert pool.get_active_repository() is None

    async def test_load_after_close(self, make_pool: PoolFactory) -> None:
        pool = make_pool()
        await pool.close()
        with pytest.raises(PoolClosedError):
            await pool.load_context("alpha")

    async def test_close_during_load_discards_the_result(self, make_pool: PoolFactory, cluster: FakeCluster) -> None:
        """A load that finishes after close() is thrown away."""
        cluster.gate = asyncio.Event()
        pool = make_pool()
        load = asyncio.create_task(pool.load_context("alpha"))
        await eventually(lambda: cluster.connects["alpha"] == 1)

        await pool.close()
        cluster.gate.set()
        with pytest.raises(PoolClosedError):
            await load
        assert cluster.client("alpha").closed
        assert pool.loaded_contexts() == []
