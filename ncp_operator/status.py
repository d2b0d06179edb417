"""
Status aggregation for the nsx-ncp ClusterOperator.

Conditions (Degraded / Progressing / Available) are recomputed in memory and
patched onto the ClusterOperator status. Status writes are best effort: a
failed patch is logged and retried on the next refresh.
"""

import logging
import threading
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

import kubernetes

from ncp_operator import config
from ncp_operator.errors import NotFoundError
from ncp_operator.kube import KubeClient, custom_api
from ncp_operator.resources import ManagedResourceTable, ResourceKind

logger = logging.getLogger("ncp-operator.status")


class StatusDomain(str, Enum):
    OPERATOR_CONFIG = "OperatorConfig"
    POD_DEPLOYMENT = "PodDeployment"


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def set_condition(conditions: list, ctype: str, status: str, reason: str, message: str):
    """Upsert a condition in a conditions list. The transition time only moves when status flips."""
    for c in conditions:
        if c.get("type") == ctype:
            if c.get("status") != status:
                c["lastTransitionTime"] = _now()
            c["status"] = status
            c["reason"] = reason
            c["message"] = message
            return
    conditions.append({
        "type": ctype,
        "status": status,
        "reason": reason,
        "message": message,
        "lastTransitionTime": _now(),
    })


def _daemon_set_progress(ref, status) -> tuple[Optional[str], bool]:
    desired = status.desired_number_scheduled or 0
    unavailable = status.number_unavailable or 0
    updated = status.updated_number_scheduled or 0
    available = (status.number_available or 0) > 0
    if unavailable > 0:
        return f"DaemonSet {ref.namespace}/{ref.name} is not available (awaiting {unavailable} nodes)", available
    if updated < desired:
        return f"DaemonSet {ref.namespace}/{ref.name} is rolling out ({updated} of {desired} updated)", available
    return None, available


def _deployment_progress(ref, status) -> tuple[Optional[str], bool]:
    unavailable = status.unavailable_replicas or 0
    available = (status.available_replicas or 0) > 0
    if unavailable > 0:
        return f"Deployment {ref.namespace}/{ref.name} is not available (awaiting {unavailable} replicas)", available
    return None, available


_PROGRESS_BY_KIND: dict[ResourceKind, Callable[[Any, Any], tuple[Optional[str], bool]]] = {
    ResourceKind.DAEMON_SET: _daemon_set_progress,
    ResourceKind.DEPLOYMENT: _deployment_progress,
}


class StatusManager:
    def __init__(self, table: ManagedResourceTable, kube: KubeClient,
                 custom: kubernetes.client.CustomObjectsApi = None,
                 name: str = config.CLUSTER_OPERATOR_NAME):
        self._table = table
        self._kube = kube
        self._custom = custom
        self._name = name
        self._lock = threading.Lock()
        # (domain, resource name) -> (reason, message); "" is operator-wide
        self._failures: dict[tuple[StatusDomain, str], tuple[str, str]] = {}
        self._progressing: list[str] = []
        self._available = False
        self._published: Optional[dict] = None
        self.conditions: list[dict] = []

    def set_degraded(self, domain: StatusDomain, reason: str, message: str, resource: str = ""):
        with self._lock:
            self._failures[(domain, resource)] = (reason, message)
        logger.warning(f"Degraded [{domain.value}{'/' + resource if resource else ''}] {reason}: {message}")
        self._sync()

    def set_not_degraded(self, domain: StatusDomain, resource: str = ""):
        with self._lock:
            if self._failures.pop((domain, resource), None) is None:
                return
        logger.info(f"Degraded [{domain.value}{'/' + resource if resource else ''}] cleared")
        self._sync()

    def is_degraded(self, domain: Optional[StatusDomain] = None) -> bool:
        with self._lock:
            return any(domain is None or d == domain for d, _ in self._failures)

    def set_from_pods(self):
        """Recompute Progressing/Available from the managed workloads."""
        progressing = []
        all_available = True
        for ref in self._table:
            try:
                obj = self._kube.get(ref.kind, ref.namespace, ref.name)
            except NotFoundError:
                progressing.append(f"{ref.kind.value} {ref.namespace}/{ref.name} is not found")
                all_available = False
                continue
            except kubernetes.client.ApiException as e:
                logger.warning(f"Could not read {ref} for status: {e.status} {e.reason}")
                all_available = False
                continue
            message, available = _PROGRESS_BY_KIND[ref.kind](ref, obj.status)
            if message:
                progressing.append(message)
            all_available = all_available and available
        with self._lock:
            self._progressing = progressing
            self._available = all_available
        self._sync()

    def _sync(self):
        with self._lock:
            if self._failures:
                reasons = sorted(self._failures.items(), key=lambda kv: (kv[0][0].value, kv[0][1]))
                set_condition(self.conditions, "Degraded", "True", reasons[0][1][0],
                              "; ".join(message for _, (_, message) in reasons))
            else:
                set_condition(self.conditions, "Degraded", "False", "AsExpected", "")
            if self._progressing:
                set_condition(self.conditions, "Progressing", "True", "Deploying",
                              "; ".join(self._progressing))
            else:
                set_condition(self.conditions, "Progressing", "False", "AsExpected", "")
            if self._available:
                set_condition(self.conditions, "Available", "True", "AsExpected", "")
            else:
                set_condition(self.conditions, "Available", "False", "Startup",
                              "Waiting for NSX resources to become available")
            body = {"status": {"conditions": [dict(c) for c in self.conditions]}}
            if body == self._published:
                return
        if self._patch(body):
            with self._lock:
                self._published = body

    def _patch(self, body: dict) -> bool:
        if self._custom is None:
            self._custom = custom_api()
        try:
            self._custom.patch_cluster_custom_object_status(
                config.CLUSTER_OPERATOR_GROUP,
                config.CLUSTER_OPERATOR_VERSION,
                config.CLUSTER_OPERATOR_PLURAL,
                self._name,
                body,
            )
        except kubernetes.client.ApiException as e:
            if e.status == 404:
                logger.debug(f"ClusterOperator {self._name} not found; status not published")
            else:
                logger.warning(f"Failed to update ClusterOperator {self._name} status: {e.status} {e.reason}")
            return False
        return True
