"""
Per-key reconciliation: filter to the managed table, refresh status, repair
drift, then remediate node-agent crash loops.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from ncp_operator import config
from ncp_operator.drift import DriftReconciler
from ncp_operator.errors import ErrorKind, ReconcileError
from ncp_operator.events import RECONCILE_ERRORS
from ncp_operator.remediation import CrashLoopRemediator
from ncp_operator.resources import ManagedResourceTable
from ncp_operator.status import StatusDomain, StatusManager

logger = logging.getLogger("ncp-operator.dispatcher")


@dataclass(frozen=True)
class DispatchResult:
    requeue: bool = False
    requeue_after: Optional[float] = None
    error: Optional[ReconcileError] = None


class ReconciliationDispatcher:
    def __init__(
        self,
        table: ManagedResourceTable,
        drift: DriftReconciler,
        remediator: CrashLoopRemediator,
        status: StatusManager,
        resync_period: float = config.RESYNC_PERIOD,
    ):
        self._table = table
        self._drift = drift
        self._remediator = remediator
        self._status = status
        self._resync_period = resync_period

    def dispatch(self, namespace: str, name: str) -> DispatchResult:
        ref = self._table.lookup(namespace, name)
        if ref is None:
            return DispatchResult()

        logger.info(f"Reconciling {ref}")
        self._status.set_from_pods()

        outcome = self._drift.reconcile(ref)
        if outcome.error is not None:
            return self._failed(outcome.error)

        if ref == self._remediator.workload:
            try:
                batch = self._remediator.remediate()
            except ReconcileError as e:
                logger.error(f"Could not identify {ref.name} pods in CrashLoopBackOff: {e}")
                self._status.set_degraded(StatusDomain.POD_DEPLOYMENT, e.kind.value, e.message, resource=ref.name)
                return self._failed(e)
            if not batch.ok:
                failed = ", ".join(sorted(p.name for p in batch.failed))
                err = ReconcileError(ErrorKind.DELETION_ERROR,
                                     f"could not restart {len(batch.failed)} of {len(batch.attempted)} "
                                     f"pods in CrashLoopBackOff: {failed}")
                logger.error(str(err))
                self._status.set_degraded(StatusDomain.POD_DEPLOYMENT, "PodRestartError", err.message,
                                         resource=ref.name)
                return self._failed(err)
            if batch.attempted:
                logger.info(f"Restarted {len(batch.attempted)} {ref.name} pods with invalid resolv.conf")

        self._status.set_not_degraded(StatusDomain.POD_DEPLOYMENT, resource=ref.name)
        return DispatchResult(requeue_after=self._resync_period)

    def _failed(self, err: ReconcileError) -> DispatchResult:
        RECONCILE_ERRORS.labels(kind=err.kind.value).inc()
        if err.retryable_silently:
            logger.info(f"{err.message}; retrying on next resync")
            return DispatchResult(requeue=True, requeue_after=self._resync_period, error=err)
        return DispatchResult(requeue=True, error=err)
