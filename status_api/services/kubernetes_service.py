"""
Kubernetes service layer: read-only views of the operator's managed resources.

Design principles:
  - Read-only: the operator is the only writer of managed resources
  - The managed set comes from the operator's own resource table
  - Clean error handling: 404 is "absent", anything else propagates
"""

import logging
from typing import Optional
from kubernetes import client, config
from kubernetes.client import ApiException

from ncp_operator import config as operator_config
from ncp_operator.errors import NotFoundError
from ncp_operator.kube import KubeClient
from ncp_operator.resources import ManagedResourceRef, ResourceKind, build_managed_resource_table
from status_api.config import settings
from status_api.models import Condition, ContainerState, PodStatus, ResourceStatus

logger = logging.getLogger("kubernetes_service")

_k8s_loaded = False

MANAGED = build_managed_resource_table()


def _ensure_k8s():
    """Load Kubernetes config exactly once."""
    global _k8s_loaded
    if _k8s_loaded:
        return
    if settings.IN_CLUSTER:
        config.load_incluster_config()
    else:
        config.load_kube_config(config_file=settings.KUBECONFIG or None)
    _k8s_loaded = True


def _apps() -> client.AppsV1Api:
    _ensure_k8s()
    return client.AppsV1Api()


def _core() -> client.CoreV1Api:
    _ensure_k8s()
    return client.CoreV1Api()


def _custom() -> client.CustomObjectsApi:
    _ensure_k8s()
    return client.CustomObjectsApi()


def find_managed(name: str) -> Optional[ManagedResourceRef]:
    for ref in MANAGED:
        if ref.name == name:
            return ref
    return None


def _kube() -> KubeClient:
    return KubeClient(core=_core(), apps=_apps())


def _to_status(ref: ManagedResourceRef, obj) -> ResourceStatus:
    st = obj.status
    if ref.kind == ResourceKind.DAEMON_SET:
        desired = st.desired_number_scheduled or 0
        ready = st.number_ready or 0
        unavailable = st.number_unavailable or 0
    else:
        desired = obj.spec.replicas or 0
        ready = st.ready_replicas or 0
        unavailable = st.unavailable_replicas or 0
    return ResourceStatus(
        name=ref.name,
        namespace=ref.namespace,
        kind=ref.kind.value,
        exists=True,
        desired=desired,
        ready=ready,
        unavailable=unavailable,
    )


def get_resource_status(ref: ManagedResourceRef) -> ResourceStatus:
    try:
        return _to_status(ref, _kube().get(ref.kind, ref.namespace, ref.name))
    except NotFoundError:
        return ResourceStatus(name=ref.name, namespace=ref.namespace,
                              kind=ref.kind.value, exists=False)


def list_resource_statuses() -> list[ResourceStatus]:
    return [get_resource_status(ref) for ref in MANAGED]


def _to_pod_status(pod: client.V1Pod) -> PodStatus:
    containers = []
    statuses = pod.status.container_statuses if pod.status else None
    for cs in statuses or []:
        waiting = cs.state.waiting if cs.state else None
        containers.append(ContainerState(
            name=cs.name,
            ready=bool(cs.ready),
            restartCount=cs.restart_count or 0,
            waitingReason=waiting.reason if waiting else None,
        ))
    return PodStatus(
        name=pod.metadata.name,
        namespace=pod.metadata.namespace,
        node=pod.spec.node_name if pod.spec else None,
        phase=pod.status.phase if pod.status else None,
        containers=containers,
    )


def list_workload_pods(ref: ManagedResourceRef) -> list[PodStatus]:
    """Pods of a managed workload, selected the same way the operator selects them."""
    pods = _core().list_namespaced_pod(
        namespace=ref.namespace, label_selector=f"component={ref.name}"
    )
    return [_to_pod_status(p) for p in pods.items]


def get_operator_conditions() -> list[Condition]:
    """ClusterOperator conditions written by the operator's status manager."""
    try:
        obj = _custom().get_cluster_custom_object(
            operator_config.CLUSTER_OPERATOR_GROUP,
            operator_config.CLUSTER_OPERATOR_VERSION,
            operator_config.CLUSTER_OPERATOR_PLURAL,
            operator_config.CLUSTER_OPERATOR_NAME,
        )
    except ApiException as e:
        if e.status == 404:
            return []
        raise
    return [Condition(**c) for c in obj.get("status", {}).get("conditions", [])]


def count_resources_by_state() -> dict:
    """Count managed resources by observed state."""
    counts = {"total": 0, "ready": 0, "degraded": 0, "missing": 0}
    for s in list_resource_statuses():
        counts["total"] += 1
        if not s.exists:
            counts["missing"] += 1
        elif s.unavailable or s.ready < s.desired:
            counts["degraded"] += 1
        else:
            counts["ready"] += 1
    return counts
