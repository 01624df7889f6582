"""Resource kinds, typed resource rows, and cache readiness enumerations.

Each supported kind has its own frozen row dataclass carrying the fields a
list view needs plus the raw server object.  ``Resource`` is the closed union
of those rows; ``ResourceRef`` is the record commands receive to identify the
currently selected resource.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Any, ClassVar

from kubenav.errors import ValidationError


class ResourceKind(StrEnum):
    """Kubernetes resource kinds cached per context (plural API resource names)."""

    PODS = "pods"
    DEPLOYMENTS = "deployments"
    SERVICES = "services"
    CONFIGMAPS = "configmaps"
    SECRETS = "secrets"
    NAMESPACES = "namespaces"
    STATEFULSETS = "statefulsets"
    DAEMONSETS = "daemonsets"
    JOBS = "jobs"
    CRONJOBS = "cronjobs"
    NODES = "nodes"
    REPLICASETS = "replicasets"
    PERSISTENTVOLUMECLAIMS = "persistentvolumeclaims"
    INGRESSES = "ingresses"
    ENDPOINTS = "endpoints"
    HORIZONTALPODAUTOSCALERS = "horizontalpodautoscalers"

    @classmethod
    def parse(cls, value: str) -> ResourceKind:
        """Resolve a user-typed kind (plural, singular, or short name)."""
        key = value.strip().lower()
        try:
            return cls(key)
        except ValueError:
            pass
        kind = _KIND_ALIASES.get(key)
        if kind is None:
            raise ValueError(f"unknown resource kind: {value!r}")
        return kind


_KIND_ALIASES: dict[str, ResourceKind] = {
    "pod": ResourceKind.PODS,
    "po": ResourceKind.PODS,
    "deployment": ResourceKind.DEPLOYMENTS,
    "deploy": ResourceKind.DEPLOYMENTS,
    "service": ResourceKind.SERVICES,
    "svc": ResourceKind.SERVICES,
    "configmap": ResourceKind.CONFIGMAPS,
    "cm": ResourceKind.CONFIGMAPS,
    "secret": ResourceKind.SECRETS,
    "namespace": ResourceKind.NAMESPACES,
    "ns": ResourceKind.NAMESPACES,
    "statefulset": ResourceKind.STATEFULSETS,
    "sts": ResourceKind.STATEFULSETS,
    "daemonset": ResourceKind.DAEMONSETS,
    "ds": ResourceKind.DAEMONSETS,
    "job": ResourceKind.JOBS,
    "cronjob": ResourceKind.CRONJOBS,
    "cj": ResourceKind.CRONJOBS,
    "node": ResourceKind.NODES,
    "no": ResourceKind.NODES,
    "replicaset": ResourceKind.REPLICASETS,
    "rs": ResourceKind.REPLICASETS,
    "persistentvolumeclaim": ResourceKind.PERSISTENTVOLUMECLAIMS,
    "pvc": ResourceKind.PERSISTENTVOLUMECLAIMS,
    "ingress": ResourceKind.INGRESSES,
    "ing": ResourceKind.INGRESSES,
    "endpoint": ResourceKind.ENDPOINTS,
    "ep": ResourceKind.ENDPOINTS,
    "horizontalpodautoscaler": ResourceKind.HORIZONTALPODAUTOSCALERS,
    "hpa": ResourceKind.HORIZONTALPODAUTOSCALERS,
}


@dataclass(frozen=True)
class GroupVersionResource:
    """An API resource outside the built-in kinds, typically a CRD.

    ``namespaced`` only decides whether namespace filters apply to reads; it
    is not part of the identity.
    """

    group: str
    version: str
    resource: str
    namespaced: bool = field(default=True, compare=False)

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}"

    def __str__(self) -> str:
        return f"{self.resource}.{self.version}.{self.group}"

    @classmethod
    def parse(cls, value: str, namespaced: bool = True) -> GroupVersionResource:
        """Parse kubectl's fully qualified ``resource.version.group`` form."""
        parts = value.strip().lower().split(".", 2)
        if len(parts) != 3 or not all(parts):
            raise ValidationError(f"expected resource.version.group, got {value!r}")
        resource, version, group = parts
        return cls(group=group, version=version, resource=resource, namespaced=namespaced)


# What an informer can be keyed by.
ResourceType = ResourceKind | GroupVersionResource


class KindReadiness(StrEnum):
    """Per-kind informer readiness within one repository."""

    PENDING = "pending"
    SYNCED = "synced"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class OwnerRef:
    """A single ownerReferences entry."""

    kind: str
    name: str
    uid: str
    controller: bool = False


@dataclass(frozen=True)
class ResourceRef:
    """Identifies one resource within the active context.

    This is the closed record passed to commands (``/scale``, ``/delete``,
    ``/yaml``...) in place of a free-form selection map.
    """

    kind: ResourceKind
    namespace: str
    name: str

    @property
    def display_name(self) -> str:
        return f"{self.namespace}/{self.name}" if self.namespace else self.name


@dataclass(frozen=True, kw_only=True)
class ResourceRow:
    """Fields shared by every cached resource row."""

    kind: ClassVar[ResourceKind]

    name: str
    namespace: str = ""
    uid: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    owners: tuple[OwnerRef, ...] = ()
    created_at: datetime | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @property
    def age(self) -> timedelta:
        if self.created_at is None:
            return timedelta(0)
        return datetime.now(tz=UTC) - self.created_at

    @property
    def ref(self) -> ResourceRef:
        return ResourceRef(kind=self.kind, namespace=self.namespace, name=self.name)


@dataclass(frozen=True, kw_only=True)
class Pod(ResourceRow):
    kind: ClassVar[ResourceKind] = ResourceKind.PODS

    ready: str = "0/0"
    status: str = ""
    restarts: int = 0
    node: str = ""
    ip: str = ""
    containers: tuple[str, ...] = ()


@dataclass(frozen=True, kw_only=True)
class Deployment(ResourceRow):
    kind: ClassVar[ResourceKind] = ResourceKind.DEPLOYMENTS

    ready: str = "0/0"
    replicas: int = 0
    up_to_date: int = 0
    available: int = 0
    selector: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True, kw_only=True)
class Service(ResourceRow):
    kind: ClassVar[ResourceKind] = ResourceKind.SERVICES

    type: str = ""
    cluster_ip: str = "<none>"
    external_ip: str = "<none>"
    ports: str = "<none>"
    selector: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True, kw_only=True)
class ConfigMap(ResourceRow):
    kind: ClassVar[ResourceKind] = ResourceKind.CONFIGMAPS

    data: int = 0


@dataclass(frozen=True, kw_only=True)
class Secret(ResourceRow):
    kind: ClassVar[ResourceKind] = ResourceKind.SECRETS

    type: str = ""
    data: int = 0


@dataclass(frozen=True, kw_only=True)
class Namespace(ResourceRow):
    kind: ClassVar[ResourceKind] = ResourceKind.NAMESPACES

    status: str = ""


@dataclass(frozen=True, kw_only=True)
class StatefulSet(ResourceRow):
    kind: ClassVar[ResourceKind] = ResourceKind.STATEFULSETS

    ready: str = "0/0"
    replicas: int = 0
    selector: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True, kw_only=True)
class DaemonSet(ResourceRow):
    kind: ClassVar[ResourceKind] = ResourceKind.DAEMONSETS

    desired: int = 0
    current: int = 0
    ready: int = 0
    up_to_date: int = 0
    available: int = 0
    selector: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True, kw_only=True)
class Job(ResourceRow):
    kind: ClassVar[ResourceKind] = ResourceKind.JOBS

    completions: str = "0/1"
    duration: timedelta | None = None


@dataclass(frozen=True, kw_only=True)
class CronJob(ResourceRow):
    kind: ClassVar[ResourceKind] = ResourceKind.CRONJOBS

    schedule: str = ""
    suspend: bool = False
    active: int = 0
    last_schedule: datetime | None = None


@dataclass(frozen=True, kw_only=True)
class Node(ResourceRow):
    kind: ClassVar[ResourceKind] = ResourceKind.NODES

    status: str = "Unknown"
    roles: str = "<none>"
    version: str = ""
    hostname: str = "<none>"
    instance_type: str = "<none>"
    zone: str = "<none>"
    node_pool: str = "<none>"
    os_image: str = "<none>"


@dataclass(frozen=True, kw_only=True)
class ReplicaSet(ResourceRow):
    kind: ClassVar[ResourceKind] = ResourceKind.REPLICASETS

    desired: int = 0
    current: int = 0
    ready: int = 0


@dataclass(frozen=True, kw_only=True)
class PersistentVolumeClaim(ResourceRow):
    kind: ClassVar[ResourceKind] = ResourceKind.PERSISTENTVOLUMECLAIMS

    status: str = ""
    volume: str = ""
    capacity: str = ""
    access_modes: str = ""
    storage_class: str = ""


@dataclass(frozen=True, kw_only=True)
class Ingress(ResourceRow):
    kind: ClassVar[ResourceKind] = ResourceKind.INGRESSES

    ingress_class: str = "<none>"
    hosts: str = "*"
    address: str = ""
    ports: str = "80"


@dataclass(frozen=True, kw_only=True)
class Endpoints(ResourceRow):
    kind: ClassVar[ResourceKind] = ResourceKind.ENDPOINTS

    endpoints: str = "<none>"


@dataclass(frozen=True, kw_only=True)
class HorizontalPodAutoscaler(ResourceRow):
    kind: ClassVar[ResourceKind] = ResourceKind.HORIZONTALPODAUTOSCALERS

    reference: str = ""
    min_pods: int = 1
    max_pods: int = 0
    replicas: int = 0
    target_cpu: str = "N/A"


@dataclass(frozen=True, kw_only=True)
class CustomResource(ResourceRow):
    """Row for any object served under a GroupVersionResource.

    ``kind`` stays the class-level marker shared by all rows; the concrete
    type is ``gvr`` and the server's own Kind is ``object_kind``.
    """

    kind: ClassVar[ResourceKind | None] = None  # type: ignore[assignment]

    gvr: GroupVersionResource
    object_kind: str = ""
    status: str = ""

    @property
    def ref(self) -> ResourceRef:
        raise TypeError(f"{self.gvr} rows cannot be addressed by a ResourceRef")


Resource = (
    Pod
    | Deployment
    | Service
    | ConfigMap
    | Secret
    | Namespace
    | StatefulSet
    | DaemonSet
    | Job
    | CronJob
    | Node
    | ReplicaSet
    | PersistentVolumeClaim
    | Ingress
    | Endpoints
    | HorizontalPodAutoscaler
    | CustomResource
)


@dataclass
class ResourceStats:
    """Per-kind cache statistics for one repository."""

    kind: ResourceType
    count: int = 0
    readiness: KindReadiness = KindReadiness.PENDING
    add_events: int = 0
    update_events: int = 0
    delete_events: int = 0
    last_update: datetime | None = None
