"""Convert raw Kubernetes objects (plain dicts) into typed resource rows.

Each kind has one explicit transform that pulls the display fields a list
view needs.  ``common_fields`` extracts the metadata every row carries.
Index functions used by the informer cache also live here because they read
the same raw fields.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import datetime, timedelta
from typing import Any

from kubenav.models.resources import (
    ConfigMap,
    CronJob,
    CustomResource,
    DaemonSet,
    Deployment,
    Endpoints,
    GroupVersionResource,
    HorizontalPodAutoscaler,
    Ingress,
    Job,
    Namespace,
    Node,
    OwnerRef,
    PersistentVolumeClaim,
    Pod,
    ReplicaSet,
    Resource,
    ResourceKind,
    ResourceType,
    Secret,
    Service,
    StatefulSet,
)

Transform = Callable[[dict[str, Any], dict[str, Any]], Resource]
Indexer = Callable[[Resource], Iterable[str]]

_NODE_ROLE_PREFIX = "node-role.kubernetes.io/"


def _get(obj: Any, *path: str, default: Any = None) -> Any:
    """Nested dict lookup that tolerates missing keys and None values."""
    cur = obj
    for key in path:
        if not isinstance(cur, dict):
            return default
        cur = cur.get(key)
        if cur is None:
            return default
    return cur


def _int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an RFC 3339 timestamp as served by the API server."""
    if isinstance(value, datetime):
        return value
    if not value or not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def common_fields(obj: dict[str, Any]) -> dict[str, Any]:
    meta = obj.get("metadata") or {}
    owners = tuple(
        OwnerRef(
            kind=str(ref.get("kind", "")),
            name=str(ref.get("name", "")),
            uid=str(ref.get("uid", "")),
            controller=bool(ref.get("controller", False)),
        )
        for ref in meta.get("ownerReferences") or ()
    )
    return {
        "namespace": meta.get("namespace") or "",
        "name": meta.get("name") or "",
        "uid": meta.get("uid") or "",
        "labels": dict(meta.get("labels") or {}),
        "owners": owners,
        "created_at": parse_timestamp(meta.get("creationTimestamp")),
        "raw": obj,
    }


def _match_labels(obj: dict[str, Any]) -> dict[str, str]:
    return dict(_get(obj, "spec", "selector", "matchLabels", default={}))


def transform_pod(obj: dict[str, Any], common: dict[str, Any]) -> Pod:
    statuses = _get(obj, "status", "containerStatuses", default=[])
    ready = sum(1 for cs in statuses if cs.get("ready"))
    restarts = sum(_int(cs.get("restartCount")) for cs in statuses)
    containers = tuple(c.get("name", "") for c in _get(obj, "spec", "containers", default=[]))
    total = len(statuses) or len(containers)
    return Pod(
        **common,
        ready=f"{ready}/{total}",
        status=_pod_status(obj),
        restarts=restarts,
        node=_get(obj, "spec", "nodeName", default=""),
        ip=_get(obj, "status", "podIP", default=""),
        containers=containers,
    )


def _pod_status(obj: dict[str, Any]) -> str:
    """Phase, overridden by a waiting/terminated container reason or deletion."""
    if _get(obj, "metadata", "deletionTimestamp"):
        return "Terminating"
    for cs in _get(obj, "status", "containerStatuses", default=[]):
        waiting = _get(cs, "state", "waiting", "reason")
        if waiting:
            return str(waiting)
        terminated = _get(cs, "state", "terminated", "reason")
        if terminated and _get(obj, "status", "phase") != "Succeeded":
            return str(terminated)
    return str(_get(obj, "status", "phase", default="Unknown"))


def transform_deployment(obj: dict[str, Any], common: dict[str, Any]) -> Deployment:
    desired = _int(_get(obj, "spec", "replicas"))
    ready = _int(_get(obj, "status", "readyReplicas"))
    return Deployment(
        **common,
        ready=f"{ready}/{desired}",
        replicas=desired,
        up_to_date=_int(_get(obj, "status", "updatedReplicas")),
        available=_int(_get(obj, "status", "availableReplicas")),
        selector=_match_labels(obj),
    )


def transform_service(obj: dict[str, Any], common: dict[str, Any]) -> Service:
    external_ip = "<none>"
    lb_ingress = _get(obj, "status", "loadBalancer", "ingress", default=[])
    if lb_ingress:
        external_ip = lb_ingress[0].get("ip") or lb_ingress[0].get("hostname") or "<none>"
    if external_ip == "<none>":
        external_ips = _get(obj, "spec", "externalIPs", default=[])
        if external_ips:
            external_ip = ",".join(external_ips)

    ports = []
    for port in _get(obj, "spec", "ports", default=[]):
        text = str(_int(port.get("port")))
        if port.get("nodePort"):
            text = f"{text}:{_int(port['nodePort'])}"
        ports.append(f"{text}/{port.get('protocol') or 'TCP'}")

    return Service(
        **common,
        type=_get(obj, "spec", "type", default="ClusterIP"),
        cluster_ip=_get(obj, "spec", "clusterIP", default="") or "<none>",
        external_ip=external_ip,
        ports=",".join(ports) or "<none>",
        selector=dict(_get(obj, "spec", "selector", default={})),
    )


def transform_configmap(obj: dict[str, Any], common: dict[str, Any]) -> ConfigMap:
    data = len(obj.get("data") or {}) + len(obj.get("binaryData") or {})
    return ConfigMap(**common, data=data)


def transform_secret(obj: dict[str, Any], common: dict[str, Any]) -> Secret:
    return Secret(**common, type=obj.get("type") or "Opaque", data=len(obj.get("data") or {}))


def transform_namespace(obj: dict[str, Any], common: dict[str, Any]) -> Namespace:
    return Namespace(**common, status=_get(obj, "status", "phase", default=""))


def transform_statefulset(obj: dict[str, Any], common: dict[str, Any]) -> StatefulSet:
    desired = _int(_get(obj, "spec", "replicas"))
    ready = _int(_get(obj, "status", "readyReplicas"))
    return StatefulSet(**common, ready=f"{ready}/{desired}", replicas=desired, selector=_match_labels(obj))


def transform_daemonset(obj: dict[str, Any], common: dict[str, Any]) -> DaemonSet:
    status = obj.get("status") or {}
    return DaemonSet(
        **common,
        desired=_int(status.get("desiredNumberScheduled")),
        current=_int(status.get("currentNumberScheduled")),
        ready=_int(status.get("numberReady")),
        up_to_date=_int(status.get("updatedNumberScheduled")),
        available=_int(status.get("numberAvailable")),
        selector=_match_labels(obj),
    )


def transform_job(obj: dict[str, Any], common: dict[str, Any]) -> Job:
    completions = _int(_get(obj, "spec", "completions", default=1))
    succeeded = _int(_get(obj, "status", "succeeded"))
    duration: timedelta | None = None
    start = parse_timestamp(_get(obj, "status", "startTime"))
    end = parse_timestamp(_get(obj, "status", "completionTime"))
    if start is not None and end is not None:
        duration = end - start
    return Job(**common, completions=f"{succeeded}/{completions}", duration=duration)


def transform_cronjob(obj: dict[str, Any], common: dict[str, Any]) -> CronJob:
    return CronJob(
        **common,
        schedule=_get(obj, "spec", "schedule", default=""),
        suspend=bool(_get(obj, "spec", "suspend", default=False)),
        active=len(_get(obj, "status", "active", default=[])),
        last_schedule=parse_timestamp(_get(obj, "status", "lastScheduleTime")),
    )


def transform_node(obj: dict[str, Any], common: dict[str, Any]) -> Node:
    status = "Unknown"
    for cond in _get(obj, "status", "conditions", default=[]):
        if cond.get("type") == "Ready":
            status = "Ready" if cond.get("status") == "True" else "NotReady"
            break
    if _get(obj, "spec", "unschedulable"):
        status = f"{status},SchedulingDisabled"

    labels: dict[str, str] = common["labels"]
    roles = sorted(
        key.removeprefix(_NODE_ROLE_PREFIX)
        for key in labels
        if key.startswith(_NODE_ROLE_PREFIX) and key != _NODE_ROLE_PREFIX
    )
    instance_type = labels.get("node.kubernetes.io/instance-type") or labels.get(
        "beta.kubernetes.io/instance-type"
    )
    zone = labels.get("topology.kubernetes.io/zone") or labels.get("failure-domain.beta.kubernetes.io/zone")
    return Node(
        **common,
        status=status,
        roles=",".join(roles) or "<none>",
        version=_get(obj, "status", "nodeInfo", "kubeletVersion", default=""),
        hostname=labels.get("kubernetes.io/hostname") or "<none>",
        instance_type=instance_type or "<none>",
        zone=zone or "<none>",
        node_pool=labels.get("karpenter.sh/nodepool") or "<none>",
        os_image=_get(obj, "status", "nodeInfo", "osImage", default="") or "<none>",
    )


def transform_replicaset(obj: dict[str, Any], common: dict[str, Any]) -> ReplicaSet:
    return ReplicaSet(
        **common,
        desired=_int(_get(obj, "spec", "replicas")),
        current=_int(_get(obj, "status", "replicas")),
        ready=_int(_get(obj, "status", "readyReplicas")),
    )


def transform_pvc(obj: dict[str, Any], common: dict[str, Any]) -> PersistentVolumeClaim:
    modes = _get(obj, "status", "accessModes", default=[]) or _get(obj, "spec", "accessModes", default=[])
    return PersistentVolumeClaim(
        **common,
        status=_get(obj, "status", "phase", default=""),
        volume=_get(obj, "spec", "volumeName", default=""),
        capacity=_get(obj, "status", "capacity", "storage", default=""),
        access_modes=",".join(_ACCESS_MODE_SHORT.get(m, m) for m in modes),
        storage_class=_get(obj, "spec", "storageClassName", default=""),
    )


_ACCESS_MODE_SHORT = {
    "ReadWriteOnce": "RWO",
    "ReadOnlyMany": "ROX",
    "ReadWriteMany": "RWX",
    "ReadWriteOncePod": "RWOP",
}


def transform_ingress(obj: dict[str, Any], common: dict[str, Any]) -> Ingress:
    rules = _get(obj, "spec", "rules", default=[])
    hosts = [r.get("host") for r in rules if r.get("host")]
    lb = _get(obj, "status", "loadBalancer", "ingress", default=[])
    addresses = [i.get("ip") or i.get("hostname") for i in lb if i.get("ip") or i.get("hostname")]
    ports = "80, 443" if _get(obj, "spec", "tls") else "80"
    return Ingress(
        **common,
        ingress_class=_get(obj, "spec", "ingressClassName", default="") or "<none>",
        hosts=",".join(hosts) or "*",
        address=",".join(addresses),
        ports=ports,
    )


def transform_endpoints(obj: dict[str, Any], common: dict[str, Any]) -> Endpoints:
    endpoints = []
    for subset in obj.get("subsets") or []:
        ports = [p.get("port") for p in subset.get("ports") or []]
        for addr in subset.get("addresses") or []:
            ip = addr.get("ip", "")
            if ports:
                endpoints.extend(f"{ip}:{port}" for port in ports)
            else:
                endpoints.append(ip)
    return Endpoints(**common, endpoints=",".join(endpoints) or "<none>")


def transform_hpa(obj: dict[str, Any], common: dict[str, Any]) -> HorizontalPodAutoscaler:
    ref = _get(obj, "spec", "scaleTargetRef", default={})
    target_cpu = "N/A"
    for metric in _get(obj, "spec", "metrics", default=[]):
        if metric.get("type") == "Resource" and _get(metric, "resource", "name") == "cpu":
            utilization = _get(metric, "resource", "target", "averageUtilization")
            if utilization is not None:
                target_cpu = f"{utilization}%"
            break
    return HorizontalPodAutoscaler(
        **common,
        reference=f"{ref.get('kind', '')}/{ref.get('name', '')}" if ref else "",
        min_pods=_int(_get(obj, "spec", "minReplicas", default=1)),
        max_pods=_int(_get(obj, "spec", "maxReplicas")),
        replicas=_int(_get(obj, "status", "currentReplicas")),
        target_cpu=target_cpu,
    )


TRANSFORMS: dict[ResourceKind, Transform] = {
    ResourceKind.PODS: transform_pod,
    ResourceKind.DEPLOYMENTS: transform_deployment,
    ResourceKind.SERVICES: transform_service,
    ResourceKind.CONFIGMAPS: transform_configmap,
    ResourceKind.SECRETS: transform_secret,
    ResourceKind.NAMESPACES: transform_namespace,
    ResourceKind.STATEFULSETS: transform_statefulset,
    ResourceKind.DAEMONSETS: transform_daemonset,
    ResourceKind.JOBS: transform_job,
    ResourceKind.CRONJOBS: transform_cronjob,
    ResourceKind.NODES: transform_node,
    ResourceKind.REPLICASETS: transform_replicaset,
    ResourceKind.PERSISTENTVOLUMECLAIMS: transform_pvc,
    ResourceKind.INGRESSES: transform_ingress,
    ResourceKind.ENDPOINTS: transform_endpoints,
    ResourceKind.HORIZONTALPODAUTOSCALERS: transform_hpa,
}


def _custom_status(obj: dict[str, Any]) -> str:
    phase = _get(obj, "status", "phase")
    if phase:
        return str(phase)
    for cond in _get(obj, "status", "conditions", default=[]):
        if cond.get("type") == "Ready":
            return "Ready" if cond.get("status") == "True" else "NotReady"
    return ""


def transform_custom(gvr: GroupVersionResource, obj: dict[str, Any]) -> CustomResource:
    """Generic row for a custom resource: metadata plus a best-effort status."""
    return CustomResource(
        **common_fields(obj),
        gvr=gvr,
        object_kind=str(obj.get("kind") or ""),
        status=_custom_status(obj),
    )


def transform(kind: ResourceType, obj: dict[str, Any]) -> Resource:
    """Build the typed row for ``obj``."""
    if isinstance(kind, GroupVersionResource):
        return transform_custom(kind, obj)
    return TRANSFORMS[kind](obj, common_fields(obj))


# ---------------------------------------------------------------------------
# Secondary index functions
# ---------------------------------------------------------------------------


def index_by_owner(row: Resource) -> Iterable[str]:
    return [owner.uid for owner in row.owners if owner.uid]


def index_by_node(row: Resource) -> Iterable[str]:
    node = _get(row.raw, "spec", "nodeName")
    return [node] if node else []


def _pod_volume_refs(row: Resource, source: str, field: str) -> Iterable[str]:
    refs = []
    for volume in _get(row.raw, "spec", "volumes", default=[]):
        name = _get(volume, source, field)
        if name:
            refs.append(f"{row.namespace}/{name}")
    return refs


def index_by_configmap(row: Resource) -> Iterable[str]:
    refs = set(_pod_volume_refs(row, "configMap", "name"))
    for container in _get(row.raw, "spec", "containers", default=[]):
        for env_from in container.get("envFrom") or []:
            name = _get(env_from, "configMapRef", "name")
            if name:
                refs.add(f"{row.namespace}/{name}")
    return refs


def index_by_secret(row: Resource) -> Iterable[str]:
    refs = set(_pod_volume_refs(row, "secret", "secretName"))
    for container in _get(row.raw, "spec", "containers", default=[]):
        for env_from in container.get("envFrom") or []:
            name = _get(env_from, "secretRef", "name")
            if name:
                refs.add(f"{row.namespace}/{name}")
    return refs


def index_by_pvc(row: Resource) -> Iterable[str]:
    return _pod_volume_refs(row, "persistentVolumeClaim", "claimName")


OWNER_INDEX = "owner"
NODE_INDEX = "node"
CONFIGMAP_INDEX = "configmap"
SECRET_INDEX = "secret"
PVC_INDEX = "pvc"

_POD_INDEXERS: dict[str, Indexer] = {
    OWNER_INDEX: index_by_owner,
    NODE_INDEX: index_by_node,
    CONFIGMAP_INDEX: index_by_configmap,
    SECRET_INDEX: index_by_secret,
    PVC_INDEX: index_by_pvc,
}


def indexers_for(kind: ResourceType) -> dict[str, Indexer]:
    """Secondary indexes maintained for ``kind``."""
    if kind is ResourceKind.PODS:
        return dict(_POD_INDEXERS)
    return {OWNER_INDEX: index_by_owner}
