"""
Kubernetes client helpers and the narrow API surface the reconcilers use.
"""

import logging
from dataclasses import dataclass
from typing import Any

import kubernetes
from kubernetes import client, config as kube_config

from ncp_operator import config
from ncp_operator.errors import NotFoundError
from ncp_operator.resources import ResourceKind

logger = logging.getLogger("ncp-operator.kube")

_k8s_loaded = False


def _ensure_k8s():
    """Load kubeconfig exactly once."""
    global _k8s_loaded
    if _k8s_loaded:
        return
    try:
        kube_config.load_incluster_config()
    except kube_config.ConfigException:
        kube_config.load_kube_config(config_file=config.KUBECONFIG or None)
    _k8s_loaded = True


def core_api() -> client.CoreV1Api:
    _ensure_k8s()
    return client.CoreV1Api()


def apps_api() -> client.AppsV1Api:
    _ensure_k8s()
    return client.AppsV1Api()


def custom_api() -> client.CustomObjectsApi:
    _ensure_k8s()
    return client.CustomObjectsApi()


@dataclass(frozen=True)
class _KindAPI:
    read: str
    create: str
    replace: str


# Adding a managed kind is a new row here plus a ResourceKind member.
_KIND_API: dict[ResourceKind, _KindAPI] = {
    ResourceKind.DEPLOYMENT: _KindAPI(
        read="read_namespaced_deployment",
        create="create_namespaced_deployment",
        replace="replace_namespaced_deployment",
    ),
    ResourceKind.DAEMON_SET: _KindAPI(
        read="read_namespaced_daemon_set",
        create="create_namespaced_daemon_set",
        replace="replace_namespaced_daemon_set",
    ),
}


class KubeClient:
    """
    Synchronous wrapper over CoreV1Api / AppsV1Api.

    Every method is a blocking remote call; timeouts are left to the caller.
    Errors other than 404 on reads surface as kubernetes.client.ApiException.
    """

    def __init__(self, core: client.CoreV1Api = None, apps: client.AppsV1Api = None):
        self._core = core
        self._apps = apps

    @property
    def core(self) -> client.CoreV1Api:
        if self._core is None:
            self._core = core_api()
        return self._core

    @property
    def apps(self) -> client.AppsV1Api:
        if self._apps is None:
            self._apps = apps_api()
        return self._apps

    def get(self, kind: ResourceKind, namespace: str, name: str) -> Any:
        read = getattr(self.apps, _KIND_API[kind].read)
        try:
            return read(name=name, namespace=namespace)
        except kubernetes.client.ApiException as e:
            if e.status == 404:
                raise NotFoundError(kind.value, namespace, name) from e
            raise

    def create_or_update(self, body: dict) -> None:
        """Create the object; if it already exists, replace it at its current resourceVersion."""
        kind = ResourceKind(body["kind"])
        api = _KIND_API[kind]
        namespace = body["metadata"]["namespace"]
        name = body["metadata"]["name"]
        try:
            getattr(self.apps, api.create)(namespace=namespace, body=body)
            logger.info(f"Created {kind.value} {namespace}/{name}")
            return
        except kubernetes.client.ApiException as e:
            if e.status != 409:
                raise
        # Lost a race with another writer: update in place
        current = getattr(self.apps, api.read)(name=name, namespace=namespace)
        body["metadata"]["resourceVersion"] = current.metadata.resource_version
        getattr(self.apps, api.replace)(name=name, namespace=namespace, body=body)
        logger.info(f"Replaced {kind.value} {namespace}/{name}")

    def list_pods(self, namespace: str, label_selector: str) -> list[client.V1Pod]:
        pods = self.core.list_namespaced_pod(namespace=namespace, label_selector=label_selector)
        return list(pods.items)

    def previous_log_tail(self, namespace: str, pod_name: str, container: str, lines: int) -> str:
        """Tail of the previous (terminated) run of a container."""
        return self.core.read_namespaced_pod_log(
            name=pod_name,
            namespace=namespace,
            container=container,
            previous=True,
            tail_lines=lines,
        )

    def delete_pod(self, namespace: str, name: str, grace_period_seconds: int,
                   propagation_policy: str) -> None:
        self.core.delete_namespaced_pod(
            name=name,
            namespace=namespace,
            grace_period_seconds=grace_period_seconds,
            propagation_policy=propagation_policy,
        )
