"""Shared fixtures for kubenav integration tests.

Provides a kubeconfig on disk, a FakeCluster pre-populated with a small but
realistic application (deployment -> replicaset -> pods, a statefulset with
a PVC, a cronjob with a job, services, config and secrets), and a pool
factory that closes every pool it built, so integration tests can exercise
full load/switch/evict pipelines without touching real Kubernetes clusters.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from pathlib import Path
from typing import Any

import pytest

from kubenav.cache.pool import RepositoryPool
from kubenav.models.config import CacheSettings
from kubenav.models.progress import ContextLoadProgress
from kubenav.models.resources import ResourceKind
from tests.fakes import FAST_SETTINGS, FakeCluster, make_obj, make_pod, write_kubeconfig

CONTEXTS = ("alpha", "beta", "gamma", "delta", "epsilon", "bad", "restricted")

# ---------------------------------------------------------------------------
# Sample cluster contents
# ---------------------------------------------------------------------------

DEPLOYMENT_UID = "uid-deploy-web"
REPLICASET_UID = "uid-rs-web"
STATEFULSET_UID = "uid-sts-db"
DAEMONSET_UID = "uid-ds-agent"
CRONJOB_UID = "uid-cj-nightly"
JOB_UID = "uid-job-nightly"


def sample_objects() -> dict[ResourceKind, list[dict[str, Any]]]:
    """One namespace ("shop") with a web tier, a database and a nightly job."""
    web_labels = {"app": "web"}
    return {
        ResourceKind.NAMESPACES: [
            make_obj(ResourceKind.NAMESPACES, "shop", status={"phase": "Active"}),
            make_obj(ResourceKind.NAMESPACES, "kube-system", status={"phase": "Active"}),
        ],
        ResourceKind.NODES: [
            make_obj(ResourceKind.NODES, "node-1", status={"conditions": [{"type": "Ready", "status": "True"}]}),
            make_obj(ResourceKind.NODES, "node-2", status={"conditions": [{"type": "Ready", "status": "True"}]}),
        ],
        ResourceKind.DEPLOYMENTS: [
            make_obj(
                ResourceKind.DEPLOYMENTS,
                "web",
                "shop",
                uid=DEPLOYMENT_UID,
                spec={"replicas": 2, "selector": {"matchLabels": web_labels}},
                status={"readyReplicas": 2},
            ),
        ],
        ResourceKind.REPLICASETS: [
            make_obj(
                ResourceKind.REPLICASETS,
                "web-7d9f",
                "shop",
                uid=REPLICASET_UID,
                owners=[("Deployment", "web", DEPLOYMENT_UID)],
                spec={"replicas": 2},
            ),
        ],
        ResourceKind.STATEFULSETS: [
            make_obj(ResourceKind.STATEFULSETS, "db", "shop", uid=STATEFULSET_UID, spec={"replicas": 1}),
        ],
        ResourceKind.DAEMONSETS: [
            make_obj(ResourceKind.DAEMONSETS, "agent", "kube-system", uid=DAEMONSET_UID),
        ],
        ResourceKind.CRONJOBS: [
            make_obj(ResourceKind.CRONJOBS, "nightly", "shop", uid=CRONJOB_UID, spec={"schedule": "0 2 * * *"}),
        ],
        ResourceKind.JOBS: [
            make_obj(
                ResourceKind.JOBS,
                "nightly-28400",
                "shop",
                uid=JOB_UID,
                owners=[("CronJob", "nightly", CRONJOB_UID)],
            ),
        ],
        ResourceKind.PODS: [
            make_pod(
                "web-7d9f-a",
                "shop",
                labels=web_labels,
                owners=[("ReplicaSet", "web-7d9f", REPLICASET_UID)],
                node="node-1",
                volumes=[{"name": "cfg", "configMap": {"name": "web-config"}}],
                created="2024-02-01T00:00:00Z",
            ),
            make_pod(
                "web-7d9f-b",
                "shop",
                labels=web_labels,
                owners=[("ReplicaSet", "web-7d9f", REPLICASET_UID)],
                node="node-2",
                env_from=[{"secretRef": {"name": "db-creds"}}],
                created="2024-03-01T00:00:00Z",
            ),
            make_pod(
                "db-0",
                "shop",
                labels={"app": "db"},
                owners=[("StatefulSet", "db", STATEFULSET_UID)],
                node="node-2",
                volumes=[{"name": "data", "persistentVolumeClaim": {"claimName": "data-db-0"}}],
                env_from=[{"secretRef": {"name": "db-creds"}}],
            ),
            make_pod(
                "agent-x1",
                "kube-system",
                owners=[("DaemonSet", "agent", DAEMONSET_UID)],
                node="node-1",
            ),
            make_pod(
                "nightly-28400-q",
                "shop",
                owners=[("Job", "nightly-28400", JOB_UID)],
                node="node-1",
                phase="Succeeded",
            ),
        ],
        ResourceKind.SERVICES: [
            make_obj(ResourceKind.SERVICES, "web", "shop", spec={"selector": web_labels, "clusterIP": "10.96.0.20"}),
            make_obj(ResourceKind.SERVICES, "external", "shop", spec={"type": "ExternalName"}),
        ],
        ResourceKind.CONFIGMAPS: [
            make_obj(ResourceKind.CONFIGMAPS, "web-config", "shop", data={"LOG_LEVEL": "info"}),
        ],
        ResourceKind.SECRETS: [
            make_obj(ResourceKind.SECRETS, "db-creds", "shop", type="Opaque", data={"password": "c2VjcmV0"}),
        ],
        ResourceKind.PERSISTENTVOLUMECLAIMS: [
            make_obj(ResourceKind.PERSISTENTVOLUMECLAIMS, "data-db-0", "shop", status={"phase": "Bound"}),
        ],
    }


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def kubeconfig_path(tmp_path: Path) -> str:
    return write_kubeconfig(tmp_path / "config", CONTEXTS, current="alpha", namespaces={"alpha": "shop"})


@pytest.fixture
def cluster() -> FakeCluster:
    """Every context serves the sample objects; "bad" is unreachable and
    "restricted" is denied secrets and nodes."""
    fake = FakeCluster()
    for name in CONTEXTS:
        fake.add(name, objects=sample_objects())
    fake.update("bad", unreachable=True)
    fake.update("restricted", forbidden=[ResourceKind.SECRETS, ResourceKind.NODES])
    return fake


PoolFactory = Callable[..., RepositoryPool]


@pytest.fixture
async def make_pool(kubeconfig_path: str, cluster: FakeCluster) -> AsyncIterator[PoolFactory]:
    """Build pools against the fake cluster; all are closed at teardown."""
    pools: list[RepositoryPool] = []

    def factory(max_contexts: int = 5, settings: CacheSettings = FAST_SETTINGS) -> RepositoryPool:
        pool = RepositoryPool(kubeconfig_path, max_contexts, client_factory=cluster, settings=settings)
        pools.append(pool)
        return pool

    yield factory
    for pool in pools:
        await pool.close()


def drain(progress: asyncio.Queue[ContextLoadProgress]) -> list[ContextLoadProgress]:
    """Everything currently queued, in order."""
    items = []
    while not progress.empty():
        items.append(progress.get_nowait())
    return items
