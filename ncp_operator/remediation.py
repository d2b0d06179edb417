"""
Crash-loop remediation for nsx-node-agent pods.

A node-agent container that started with a stale resolv.conf keeps failing
name resolution and never recovers on its own. Such pods are recognised by a
single DNS failure signature in the previous run's log and deleted, so the
DaemonSet schedules a replacement with a fresh resolver configuration.
"""

import logging
from dataclasses import dataclass, field
from typing import NamedTuple, Optional

import kubernetes
from kubernetes import client

from ncp_operator import config
from ncp_operator.errors import ErrorKind, ReconcileError
from ncp_operator.events import PODS_RESTARTED, publish_event
from ncp_operator.kube import KubeClient
from ncp_operator.resources import ManagedResourceRef

logger = logging.getLogger("ncp-operator.remediation")


class PodIdentity(NamedTuple):
    namespace: str
    name: str


@dataclass
class CandidatePod:
    namespace: str
    name: str
    container: str
    waiting_reason: str
    previous_log_tail: str = ""

    @property
    def identity(self) -> PodIdentity:
        return PodIdentity(self.namespace, self.name)


@dataclass
class RemediationBatchResult:
    attempted: set[PodIdentity] = field(default_factory=set)
    failed: set[PodIdentity] = field(default_factory=set)

    @property
    def ok(self) -> bool:
        return not self.failed


def waiting_reason(pod: client.V1Pod, container: str) -> Optional[str]:
    """Waiting reason of the named container, or None if it is not waiting."""
    if pod.status is None:
        return None
    for cs in pod.status.container_statuses or []:
        if cs.name == container and cs.state and cs.state.waiting:
            return cs.state.waiting.reason
    return None


class CrashLoopRemediator:
    def __init__(
        self,
        kube: KubeClient,
        workload: ManagedResourceRef,
        container: str = config.NODE_AGENT_CONTAINER_NAME,
        signature: str = config.DNS_FAILURE_SIGNATURE,
        tail_lines: int = config.LOG_TAIL_LINES,
        grace_period_seconds: int = config.POD_DELETE_GRACE_SECONDS,
    ):
        self._kube = kube
        self.workload = workload
        self._container = container
        self._signature = signature
        self._tail_lines = tail_lines
        self._grace_period_seconds = grace_period_seconds

    @property
    def label_selector(self) -> str:
        return f"component={self.workload.name}"

    def remediate(self) -> RemediationBatchResult:
        """
        Delete every pod whose crash loop is explained by the DNS signature.

        Raises ReconcileError (POD_LIST_ERROR / LOG_RETRIEVAL_ERROR) before any
        deletion if the pods cannot be fully diagnosed.
        """
        remediable = self.find_remediable_pods()
        result = RemediationBatchResult()
        if not remediable:
            return result
        for pod in remediable:
            result.attempted.add(pod.identity)
            try:
                self._kube.delete_pod(
                    pod.namespace,
                    pod.name,
                    grace_period_seconds=self._grace_period_seconds,
                    propagation_policy=config.POD_DELETE_PROPAGATION,
                )
            except kubernetes.client.ApiException as e:
                logger.error(f"Unable to delete pod {pod.namespace}/{pod.name}: {e.status} {e.reason}. "
                             f"Its deletion will be retried later")
                result.failed.add(pod.identity)
                continue
            PODS_RESTARTED.inc()
            publish_event(self.workload.name, "POD_RESTARTED",
                          f"Deleted pod {pod.name} stuck in {pod.waiting_reason} on DNS resolution failure")
        return result

    def find_remediable_pods(self) -> list[CandidatePod]:
        try:
            pods = self._kube.list_pods(self.workload.namespace, self.label_selector)
        except kubernetes.client.ApiException as e:
            raise ReconcileError(ErrorKind.POD_LIST_ERROR,
                                 f"could not list pods with {self.label_selector}: {e.status} {e.reason}", e)

        remediable = []
        for candidate in self._candidates(pods):
            try:
                candidate.previous_log_tail = self._kube.previous_log_tail(
                    candidate.namespace, candidate.name, candidate.container, self._tail_lines)
            except kubernetes.client.ApiException as e:
                raise ReconcileError(
                    ErrorKind.LOG_RETRIEVAL_ERROR,
                    f"could not get {candidate.container} logs of pod {candidate.name}: {e.status} {e.reason}", e)
            if self._signature in (candidate.previous_log_tail or ""):
                logger.info(f"Pod {candidate.name} is in {candidate.waiting_reason} because of "
                            f"invalid resolv.conf. It shall be restarted")
                remediable.append(candidate)
        return remediable

    def _candidates(self, pods: list[client.V1Pod]) -> list[CandidatePod]:
        candidates = []
        for pod in pods:
            reason = waiting_reason(pod, self._container)
            if reason != config.CRASH_LOOP_REASON:
                continue
            candidates.append(CandidatePod(
                namespace=pod.metadata.namespace or self.workload.namespace,
                name=pod.metadata.name,
                container=self._container,
                waiting_reason=reason,
            ))
        return candidates
