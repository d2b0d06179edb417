"""
Static registry of the NSX resources this operator keeps alive.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Iterator, NamedTuple, Optional

from ncp_operator import config


class ResourceKind(str, Enum):
    DEPLOYMENT = "Deployment"
    DAEMON_SET = "DaemonSet"


class ResourceKey(NamedTuple):
    """Work queue key: the identity carried by watch events and resync ticks."""
    namespace: str
    name: str


@dataclass(frozen=True)
class ManagedResourceRef:
    namespace: str
    name: str
    kind: ResourceKind

    @property
    def key(self) -> ResourceKey:
        return ResourceKey(self.namespace, self.name)

    def __str__(self) -> str:
        return f"{self.kind.value} {self.namespace}/{self.name}"


class ManagedResourceTable:
    """Immutable lookup of managed refs by (namespace, name)."""

    def __init__(self, refs: Iterable[ManagedResourceRef]):
        self._refs: dict[ResourceKey, ManagedResourceRef] = {}
        for ref in refs:
            if ref.key in self._refs:
                raise ValueError(f"Duplicate managed resource {ref.namespace}/{ref.name}")
            self._refs[ref.key] = ref

    def lookup(self, namespace: str, name: str) -> Optional[ManagedResourceRef]:
        return self._refs.get(ResourceKey(namespace, name))

    def by_kind(self, kind: ResourceKind) -> list[ManagedResourceRef]:
        return [ref for ref in self._refs.values() if ref.kind == kind]

    def keys(self) -> list[ResourceKey]:
        return list(self._refs)

    def __iter__(self) -> Iterator[ManagedResourceRef]:
        return iter(self._refs.values())

    def __len__(self) -> int:
        return len(self._refs)

    def __contains__(self, key: object) -> bool:
        return key in self._refs


def build_managed_resource_table(namespace: str = config.NSX_NAMESPACE) -> ManagedResourceTable:
    """The NCP deployment plus the node-agent and bootstrap daemon sets."""
    return ManagedResourceTable([
        ManagedResourceRef(namespace, config.NCP_DEPLOYMENT_NAME, ResourceKind.DEPLOYMENT),
        ManagedResourceRef(namespace, config.NODE_AGENT_DS_NAME, ResourceKind.DAEMON_SET),
        ManagedResourceRef(namespace, config.BOOTSTRAP_DS_NAME, ResourceKind.DAEMON_SET),
    ])
