"""Registry of the resource kinds every repository caches.

``KIND_SPECS`` is an immutable mapping built once at import time.  Each entry
names the kubernetes_asyncio API class and the snake-case resource stem from
which the list/read/delete/scale method names are derived.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType

from kubenav.models.resources import ResourceKind


@dataclass(frozen=True)
class KindSpec:
    kind: ResourceKind
    api_class: str
    api_version: str
    object_kind: str
    stem: str
    namespaced: bool = True
    scalable: bool = False

    @property
    def list_method(self) -> str:
        if self.namespaced:
            return f"list_{self.stem}_for_all_namespaces"
        return f"list_{self.stem}"

    @property
    def read_method(self) -> str:
        return f"read_namespaced_{self.stem}" if self.namespaced else f"read_{self.stem}"

    @property
    def delete_method(self) -> str:
        return f"delete_namespaced_{self.stem}" if self.namespaced else f"delete_{self.stem}"

    @property
    def scale_method(self) -> str:
        return f"patch_namespaced_{self.stem}_scale"


_SPECS = (
    KindSpec(ResourceKind.PODS, "CoreV1Api", "v1", "Pod", "pod"),
    KindSpec(ResourceKind.DEPLOYMENTS, "AppsV1Api", "apps/v1", "Deployment", "deployment", scalable=True),
    KindSpec(ResourceKind.SERVICES, "CoreV1Api", "v1", "Service", "service"),
    KindSpec(ResourceKind.CONFIGMAPS, "CoreV1Api", "v1", "ConfigMap", "config_map"),
    KindSpec(ResourceKind.SECRETS, "CoreV1Api", "v1", "Secret", "secret"),
    KindSpec(ResourceKind.NAMESPACES, "CoreV1Api", "v1", "Namespace", "namespace", namespaced=False),
    KindSpec(ResourceKind.STATEFULSETS, "AppsV1Api", "apps/v1", "StatefulSet", "stateful_set", scalable=True),
    KindSpec(ResourceKind.DAEMONSETS, "AppsV1Api", "apps/v1", "DaemonSet", "daemon_set"),
    KindSpec(ResourceKind.JOBS, "BatchV1Api", "batch/v1", "Job", "job"),
    KindSpec(ResourceKind.CRONJOBS, "BatchV1Api", "batch/v1", "CronJob", "cron_job"),
    KindSpec(ResourceKind.NODES, "CoreV1Api", "v1", "Node", "node", namespaced=False),
    KindSpec(ResourceKind.REPLICASETS, "AppsV1Api", "apps/v1", "ReplicaSet", "replica_set", scalable=True),
    KindSpec(
        ResourceKind.PERSISTENTVOLUMECLAIMS,
        "CoreV1Api",
        "v1",
        "PersistentVolumeClaim",
        "persistent_volume_claim",
    ),
    KindSpec(ResourceKind.INGRESSES, "NetworkingV1Api", "networking.k8s.io/v1", "Ingress", "ingress"),
    KindSpec(ResourceKind.ENDPOINTS, "CoreV1Api", "v1", "Endpoints", "endpoints"),
    KindSpec(
        ResourceKind.HORIZONTALPODAUTOSCALERS,
        "AutoscalingV2Api",
        "autoscaling/v2",
        "HorizontalPodAutoscaler",
        "horizontal_pod_autoscaler",
    ),
)

KIND_SPECS: MappingProxyType[ResourceKind, KindSpec] = MappingProxyType({s.kind: s for s in _SPECS})

ALL_KINDS: tuple[ResourceKind, ...] = tuple(KIND_SPECS)

SCALABLE_KINDS: frozenset[ResourceKind] = frozenset(s.kind for s in _SPECS if s.scalable)
