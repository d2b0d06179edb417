"""
Drift detection for managed resources: recreate a resource that has been
deleted out from under the operator, from the cached desired spec, owned by
the network config object so garbage collection still cascades.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import kubernetes

from ncp_operator.errors import ErrorKind, NotFoundError, OwnershipError, ReconcileError
from ncp_operator.events import RESOURCES_RECREATED, publish_event
from ncp_operator.kube import KubeClient
from ncp_operator.ownership import set_controller_reference
from ncp_operator.resources import ManagedResourceRef
from ncp_operator.shared_info import DesiredSpecProvider
from ncp_operator.status import StatusDomain, StatusManager

logger = logging.getLogger("ncp-operator.drift")


@dataclass
class ReconcileOutcome:
    ref: ManagedResourceRef
    existed: bool = False
    recreated: bool = False
    error: Optional[ReconcileError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class DriftReconciler:
    def __init__(self, kube: KubeClient, provider: DesiredSpecProvider, status: StatusManager):
        self._kube = kube
        self._provider = provider
        self._status = status

    def reconcile(self, ref: ManagedResourceRef) -> ReconcileOutcome:
        try:
            self._kube.get(ref.kind, ref.namespace, ref.name)
            logger.info(f"{ref} already exists")
            self._status.set_not_degraded(StatusDomain.OPERATOR_CONFIG, resource=ref.name)
            return ReconcileOutcome(ref, existed=True)
        except NotFoundError:
            logger.info(f"{ref} does not exist. It will be recreated")
        except kubernetes.client.ApiException as e:
            # Never recreate on an ambiguous read: the object may still exist
            err = ReconcileError(ErrorKind.LOOKUP_ERROR,
                                 f"could not retrieve {ref}: {e.status} {e.reason}", e)
            logger.error(str(err))
            self._status.set_degraded(StatusDomain.POD_DEPLOYMENT, "LookupError", err.message, resource=ref.name)
            return ReconcileOutcome(ref, error=err)

        return self._recreate(ref)

    def _recreate(self, ref: ManagedResourceRef) -> ReconcileOutcome:
        owner = self._provider.owner()
        if owner is None:
            return ReconcileOutcome(ref, error=ReconcileError(
                ErrorKind.CONFIG_NOT_READY,
                "network config not available yet; waiting for the configuration handlers"))
        body = self._provider.desired_spec(ref.name)
        if body is None:
            return ReconcileOutcome(ref, error=ReconcileError(
                ErrorKind.CONFIG_NOT_READY,
                f"{ref.name} spec not set yet; waiting for the configuration handlers"))
        if body.get("kind") != ref.kind.value:
            return ReconcileOutcome(ref, error=ReconcileError(
                ErrorKind.CONFIG_NOT_READY,
                f"{ref.name} spec has kind {body.get('kind')!r}, expected {ref.kind.value}"))

        # The ref is the object's identity; manifests often omit the namespace
        meta = body.setdefault("metadata", {})
        meta["namespace"] = ref.namespace
        meta["name"] = ref.name

        try:
            set_controller_reference(owner, body)
        except OwnershipError as e:
            err = ReconcileError(ErrorKind.OWNERSHIP_ERROR,
                                 f"could not set owner reference for {ref}: {e}", e)
            logger.error(str(err))
            self._status.set_degraded(StatusDomain.OPERATOR_CONFIG, "ApplyObjectsError",
                                      f"Failed to apply objects: {e}",
                                      resource=ref.name)
            return ReconcileOutcome(ref, error=err)

        try:
            self._kube.create_or_update(body)
        except kubernetes.client.ApiException as e:
            err = ReconcileError(ErrorKind.APPLY_ERROR,
                                 f"could not apply {ref}: {e.status} {e.reason}", e)
            logger.error(str(err))
            self._status.set_degraded(StatusDomain.OPERATOR_CONFIG, "ApplyOperatorConfig",
                                      f"Failed to apply operator configuration: {e.reason}",
                                      resource=ref.name)
            return ReconcileOutcome(ref, error=err)

        logger.info(f"Recreated {ref}")
        self._status.set_not_degraded(StatusDomain.OPERATOR_CONFIG, resource=ref.name)
        RESOURCES_RECREATED.labels(name=ref.name).inc()
        publish_event(ref.name, "RESOURCE_RECREATED", f"Recreated missing {ref}")
        return ReconcileOutcome(ref, recreated=True)
