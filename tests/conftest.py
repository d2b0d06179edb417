"""Shared fixtures and fakes for the NSX-NCP operator tests.

The reconcilers only talk to the cluster through KubeClient, so a small
in-memory FakeKube is enough to exercise every path without a cluster.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from kubernetes import client
from kubernetes.client import ApiException

from ncp_operator.errors import NotFoundError
from ncp_operator.resources import ResourceKind, build_managed_resource_table
from ncp_operator.shared_info import SharedInfo
from ncp_operator.status import StatusManager

NS = "nsx-system"
DNS_ERROR_LOG = (
    "2024-05-02 10:11:12 nsx_ujo.agent ERROR Failed to connect to NSX manager\n"
    "urllib3.exceptions.NewConnectionError: <urllib3.connection.HTTPSConnection object at 0x7f>: "
    "Failed to establish a new connection: [Errno -2] Name or service not known\n"
)
UNRELATED_LOG = "2024-05-02 10:11:12 nsx_ujo.agent ERROR OVS bridge br-int not found\n"

OWNER = {
    "apiVersion": "config.openshift.io/v1",
    "kind": "Network",
    "metadata": {"name": "cluster", "uid": "0b7e1c4e-7a55-4d1c-9f0e-3c1c4f7d2a11"},
}


# ---------------------------------------------------------------------------
# Object factories
# ---------------------------------------------------------------------------


def make_desired_spec(name: str = "nsx-ncp", kind: str = "Deployment") -> dict:
    return {
        "apiVersion": "apps/v1",
        "kind": kind,
        "metadata": {"name": name, "namespace": NS, "labels": {"component": name}},
        "spec": {
            "selector": {"matchLabels": {"component": name}},
            "template": {
                "metadata": {"labels": {"component": name}},
                "spec": {"containers": [{"name": name, "image": "nsx-ncp:latest"}]},
            },
        },
    }


def make_pod(
    name: str,
    waiting_reason: str | None = "CrashLoopBackOff",
    container: str = "nsx-node-agent",
    namespace: str = NS,
) -> client.V1Pod:
    state = client.V1ContainerState(
        waiting=client.V1ContainerStateWaiting(reason=waiting_reason) if waiting_reason else None,
        running=None if waiting_reason else client.V1ContainerStateRunning(),
    )
    return client.V1Pod(
        metadata=client.V1ObjectMeta(name=name, namespace=namespace, labels={"component": "nsx-node-agent"}),
        spec=client.V1PodSpec(containers=[client.V1Container(name=container)], node_name=f"node-{name}"),
        status=client.V1PodStatus(
            phase="Running",
            container_statuses=[
                client.V1ContainerStatus(
                    name=container,
                    image="nsx-ncp:latest",
                    image_id="",
                    ready=waiting_reason is None,
                    restart_count=7 if waiting_reason else 0,
                    state=state,
                )
            ],
        ),
    )


def make_workload(kind: ResourceKind, available: int = 1, unavailable: int = 0) -> MagicMock:
    obj = MagicMock()
    if kind == ResourceKind.DAEMON_SET:
        obj.status.desired_number_scheduled = available + unavailable
        obj.status.updated_number_scheduled = available + unavailable
        obj.status.number_available = available
        obj.status.number_ready = available
        obj.status.number_unavailable = unavailable
    else:
        obj.spec.replicas = available + unavailable
        obj.status.available_replicas = available
        obj.status.ready_replicas = available
        obj.status.unavailable_replicas = unavailable
    return obj


# ---------------------------------------------------------------------------
# Fake cluster
# ---------------------------------------------------------------------------


class FakeKube:
    """In-memory stand-in for KubeClient that records every call."""

    def __init__(self) -> None:
        self.objects: dict[tuple[str, str, str], object] = {}
        self.get_errors: dict[str, ApiException] = {}
        self.apply_error: ApiException | None = None
        self.applied: list[dict] = []
        self.pods: list[client.V1Pod] = []
        self.list_error: ApiException | None = None
        self.list_calls: list[tuple[str, str]] = []
        self.logs: dict[str, str] = {}
        self.log_errors: dict[str, ApiException] = {}
        self.log_calls: list[tuple[str, str, str, int]] = []
        self.delete_errors: dict[str, ApiException] = {}
        self.deleted: list[dict] = []

    def add(self, kind: ResourceKind, name: str, obj: object | None = None, namespace: str = NS) -> None:
        self.objects[(kind.value, namespace, name)] = obj if obj is not None else make_workload(kind)

    def get(self, kind: ResourceKind, namespace: str, name: str):
        if name in self.get_errors:
            raise self.get_errors[name]
        try:
            return self.objects[(kind.value, namespace, name)]
        except KeyError:
            raise NotFoundError(kind.value, namespace, name) from None

    def create_or_update(self, body: dict) -> None:
        if self.apply_error is not None:
            raise self.apply_error
        self.applied.append(body)
        meta = body["metadata"]
        self.objects[(body["kind"], meta["namespace"], meta["name"])] = make_workload(ResourceKind(body["kind"]))

    def list_pods(self, namespace: str, label_selector: str) -> list[client.V1Pod]:
        self.list_calls.append((namespace, label_selector))
        if self.list_error is not None:
            raise self.list_error
        key, _, value = label_selector.partition("=")
        return [
            p for p in self.pods
            if p.metadata.namespace == namespace and (p.metadata.labels or {}).get(key) == value
        ]

    def previous_log_tail(self, namespace: str, pod_name: str, container: str, lines: int) -> str:
        self.log_calls.append((namespace, pod_name, container, lines))
        if pod_name in self.log_errors:
            raise self.log_errors[pod_name]
        return self.logs.get(pod_name, "")

    def delete_pod(self, namespace: str, name: str, grace_period_seconds: int, propagation_policy: str) -> None:
        if name in self.delete_errors:
            raise self.delete_errors[name]
        self.deleted.append({
            "namespace": namespace,
            "name": name,
            "grace_period_seconds": grace_period_seconds,
            "propagation_policy": propagation_policy,
        })
        self.pods = [p for p in self.pods if p.metadata.name != name]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def table():
    return build_managed_resource_table(NS)


@pytest.fixture
def kube() -> FakeKube:
    return FakeKube()


@pytest.fixture
def status() -> MagicMock:
    return MagicMock(spec=StatusManager)


@pytest.fixture
def shared_info(table) -> SharedInfo:
    info = SharedInfo(table)
    info.set_owner(OWNER)
    for ref in table:
        info.set_desired_spec(ref.name, make_desired_spec(ref.name, ref.kind.value))
    return info


@pytest.fixture
def node_agent(table):
    return table.lookup(NS, "nsx-node-agent")
