"""
Shared configuration cache: desired object bodies per managed resource and
the umbrella network config object they are owned by.

Written only by the configuration handlers; the reconcilers see it through
the read-only DesiredSpecProvider protocol.
"""

import copy
import logging
import threading
from typing import Mapping, Optional, Protocol

import yaml

from ncp_operator.resources import ManagedResourceRef, ManagedResourceTable, ResourceKind

logger = logging.getLogger("ncp-operator.shared-info")

MANIFEST_SUFFIX = ".yaml"
_MANAGED_KINDS = {kind.value for kind in ResourceKind}


class DesiredSpecProvider(Protocol):
    def desired_spec(self, name: str) -> Optional[dict]:
        """Snapshot of the desired body for a managed resource, or None if not populated yet."""

    def owner(self) -> Optional[dict]:
        """Snapshot of the umbrella ownership object, or None if not available yet."""


class SharedInfo:
    def __init__(self, table: Optional[ManagedResourceTable] = None):
        self._lock = threading.Lock()
        self._specs: dict[str, dict] = {}
        self._owner: Optional[dict] = None
        self._refs: Optional[dict[str, ManagedResourceRef]] = (
            {ref.name: ref for ref in table} if table is not None else None
        )

    # --- DesiredSpecProvider ---

    def desired_spec(self, name: str) -> Optional[dict]:
        with self._lock:
            spec = self._specs.get(name)
            return copy.deepcopy(spec) if spec is not None else None

    def owner(self) -> Optional[dict]:
        with self._lock:
            return copy.deepcopy(self._owner) if self._owner is not None else None

    # --- writers (configuration handlers only) ---

    def set_owner(self, body: Optional[Mapping]) -> None:
        """Keep only the fields an owner reference needs."""
        if body is None:
            with self._lock:
                self._owner = None
            logger.info("Network config owner cleared")
            return
        meta = body.get("metadata", {})
        owner = {
            "apiVersion": body.get("apiVersion"),
            "kind": body.get("kind"),
            "metadata": {"name": meta.get("name"), "uid": meta.get("uid")},
        }
        if meta.get("namespace"):
            owner["metadata"]["namespace"] = meta["namespace"]
        with self._lock:
            self._owner = owner
        logger.info(f"Network config owner set: {owner['kind']} {meta.get('name')}")

    def set_desired_spec(self, name: str, spec: Optional[dict]) -> None:
        with self._lock:
            if spec is None:
                self._specs.pop(name, None)
            else:
                self._specs[name] = copy.deepcopy(spec)

    def load_manifests(self, data: Optional[Mapping[str, str]]) -> list[str]:
        """
        Replace the desired specs from ConfigMap data (`<resource>.yaml` keys).
        Unknown, unparseable or mismatched entries are skipped. Returns the names loaded.
        """
        specs: dict[str, dict] = {}
        for key, raw in (data or {}).items():
            if not key.endswith(MANIFEST_SUFFIX):
                continue
            name = key[: -len(MANIFEST_SUFFIX)]
            ref = self._refs.get(name) if self._refs is not None else None
            if self._refs is not None and ref is None:
                logger.warning(f"Ignoring manifest for unmanaged resource '{name}'")
                continue
            try:
                spec = yaml.safe_load(raw)
            except yaml.YAMLError as e:
                logger.error(f"Manifest '{key}' is not valid YAML: {e}")
                continue
            if not isinstance(spec, dict) or not isinstance(spec.get("metadata"), dict):
                logger.error(f"Manifest '{key}' is not a Kubernetes object")
                continue
            if spec.get("kind") not in _MANAGED_KINDS:
                logger.error(f"Manifest '{key}' has unsupported kind {spec.get('kind')!r}")
                continue
            mismatch = _identity_mismatch(spec, name, ref)
            if mismatch:
                logger.error(f"Manifest '{key}' does not describe {ref or name}: {mismatch}")
                continue
            specs[name] = spec
        with self._lock:
            self._specs = specs
        logger.info(f"Loaded desired specs: {sorted(specs)}")
        return sorted(specs)

    def clear_specs(self) -> None:
        with self._lock:
            self._specs = {}
        logger.info("Desired specs cleared")


def _identity_mismatch(spec: dict, name: str, ref: Optional[ManagedResourceRef]) -> Optional[str]:
    meta = spec["metadata"]
    if meta.get("name") not in (None, name):
        return f"metadata.name is {meta['name']!r}"
    if ref is None:
        return None
    if spec["kind"] != ref.kind.value:
        return f"kind is {spec['kind']!r}, expected {ref.kind.value}"
    if meta.get("namespace") not in (None, ref.namespace):
        return f"metadata.namespace is {meta['namespace']!r}"
    return None
