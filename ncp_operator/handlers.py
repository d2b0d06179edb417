"""
NSX-NCP Pod Operator: kopf wiring

Architecture:
  Two independent producers feed one dedup-by-key work queue:
    1. Watch: every Deployment / DaemonSet event enqueues (namespace, name)
    2. Resync: every RESYNC_PERIOD all managed keys are enqueued, so drift
       missed by the watch (e.g. a deletion while the operator was down) is
       still caught

  Queue workers run the ReconciliationDispatcher per key:
    filter → status refresh → drift repair → node-agent crash-loop remediation

  Configuration handlers keep SharedInfo current:
    - manifests ConfigMap  → desired spec per managed resource
    - network config object → owner of every recreated resource

Run with:  kopf run -m ncp_operator.handlers --all-namespaces
"""

import asyncio
import logging
from dataclasses import dataclass, field

import kopf
from prometheus_client import start_http_server

from ncp_operator import config
from ncp_operator.dispatcher import DispatchResult, ReconciliationDispatcher
from ncp_operator.drift import DriftReconciler
from ncp_operator.kube import KubeClient
from ncp_operator.remediation import CrashLoopRemediator
from ncp_operator.resources import (
    ManagedResourceTable,
    ResourceKey,
    ResourceKind,
    build_managed_resource_table,
)
from ncp_operator.shared_info import SharedInfo
from ncp_operator.status import StatusManager
from ncp_operator.workqueue import WorkQueue, run_resync

logger = logging.getLogger("ncp-operator")


@dataclass
class OperatorRuntime:
    table: ManagedResourceTable
    shared_info: SharedInfo
    status: StatusManager
    dispatcher: ReconciliationDispatcher
    queue: WorkQueue
    tasks: list = field(default_factory=list)

    def enqueue_all(self):
        for key in self.table.keys():
            self.queue.add(key)


def build_runtime(kube: KubeClient, status: StatusManager = None,
                  table: ManagedResourceTable = None) -> OperatorRuntime:
    """Wire the reconciliation core around a KubeClient."""
    table = table or build_managed_resource_table()
    shared_info = SharedInfo(table)
    status = status or StatusManager(table, kube)
    node_agent = next(ref for ref in table.by_kind(ResourceKind.DAEMON_SET)
                      if ref.name == config.NODE_AGENT_DS_NAME)
    dispatcher = ReconciliationDispatcher(
        table=table,
        drift=DriftReconciler(kube, shared_info, status),
        remediator=CrashLoopRemediator(kube, node_agent),
        status=status,
    )

    async def process(key: ResourceKey) -> DispatchResult:
        return await asyncio.to_thread(dispatcher.dispatch, key.namespace, key.name)

    queue = WorkQueue(process, workers=config.WORKERS)
    return OperatorRuntime(table, shared_info, status, dispatcher, queue)


# ---------------------------------------------------------------------------
# Kopf operator settings + lifecycle
# ---------------------------------------------------------------------------

@kopf.on.startup()
async def configure(settings: kopf.OperatorSettings, memo: kopf.Memo, **kwargs):
    settings.posting.enabled = True
    settings.posting.level = logging.WARNING

    if config.METRICS_PORT:
        start_http_server(config.METRICS_PORT)

    runtime = build_runtime(KubeClient())
    await runtime.queue.start()
    runtime.tasks.append(asyncio.create_task(
        run_resync(runtime.queue, runtime.table.keys(), config.RESYNC_PERIOD), name="ncp-resync"))
    memo.runtime = runtime
    logger.info(
        f"NSX-NCP Pod Operator started (workers={config.WORKERS}, "
        f"resync={config.RESYNC_PERIOD}s, managed={[ref.name for ref in runtime.table]})"
    )


@kopf.on.cleanup()
async def shutdown(memo: kopf.Memo, **kwargs):
    runtime: OperatorRuntime = memo.get("runtime")
    if runtime is None:
        return
    for task in runtime.tasks:
        task.cancel()
    await asyncio.gather(*runtime.tasks, return_exceptions=True)
    await runtime.queue.stop()
    logger.info("NSX-NCP Pod Operator stopped")


# ---------------------------------------------------------------------------
# WATCH: managed workload events
# ---------------------------------------------------------------------------

@kopf.on.event("apps", "v1", "deployments")
@kopf.on.event("apps", "v1", "daemonsets")
async def workload_event(namespace, name, memo: kopf.Memo, **kwargs):
    """Enqueue the object's key; the dispatcher drops anything unmanaged."""
    memo.runtime.queue.add(ResourceKey(namespace, name))


# ---------------------------------------------------------------------------
# CONFIG: shared configuration cache
# ---------------------------------------------------------------------------

def _is_manifests_configmap(namespace, name, **_):
    return namespace == config.OPERATOR_NAMESPACE and name == config.MANIFESTS_CONFIGMAP


def _is_network_config(name, **_):
    return name == config.NETWORK_CONFIG_NAME


@kopf.on.event("", "v1", "configmaps", when=_is_manifests_configmap)
async def manifests_event(type, body, memo: kopf.Memo, logger, **kwargs):
    runtime: OperatorRuntime = memo.runtime
    if type == "DELETED":
        logger.warning("Manifests ConfigMap deleted; recreation paused until it returns")
        runtime.shared_info.clear_specs()
        return
    loaded = runtime.shared_info.load_manifests(body.get("data"))
    logger.info(f"Desired specs loaded for {loaded}")
    runtime.enqueue_all()


@kopf.on.event(config.NETWORK_CONFIG_GROUP, config.NETWORK_CONFIG_VERSION,
               config.NETWORK_CONFIG_PLURAL, when=_is_network_config)
async def network_config_event(type, body, memo: kopf.Memo, logger, **kwargs):
    runtime: OperatorRuntime = memo.runtime
    if type == "DELETED":
        logger.warning("Network config deleted; recreation paused until it returns")
        runtime.shared_info.set_owner(None)
        return
    runtime.shared_info.set_owner(body)
    runtime.enqueue_all()
