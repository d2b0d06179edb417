"""
Controller owner references, so garbage collection cascades from the
network config object to everything the operator recreates.
"""

from typing import Mapping

import kopf

from ncp_operator.errors import OwnershipError


def set_controller_reference(owner: Mapping, obj: dict) -> None:
    """
    Mark `owner` as the controller of `obj` (in place).

    Raises OwnershipError if the owner is incomplete, lives in another
    namespace, or `obj` is already controlled by a different owner.
    """
    meta = owner.get("metadata") or {}
    for field, value in (("apiVersion", owner.get("apiVersion")),
                         ("kind", owner.get("kind")),
                         ("metadata.name", meta.get("name")),
                         ("metadata.uid", meta.get("uid"))):
        if not value:
            raise OwnershipError(f"owner is missing {field}")

    obj_meta = obj.setdefault("metadata", {})
    owner_ns = meta.get("namespace")
    # Cluster-scoped owners may own anything; namespaced ones only their own namespace
    if owner_ns and owner_ns != obj_meta.get("namespace"):
        raise OwnershipError(
            f"cross-namespace owner references are disallowed: owner {owner_ns}/{meta['name']}, "
            f"object {obj_meta.get('namespace')}/{obj_meta.get('name')}"
        )

    for ref in obj_meta.get("ownerReferences") or []:
        if ref.get("controller") and ref.get("uid") != meta["uid"]:
            raise OwnershipError(
                f"object {obj_meta.get('namespace')}/{obj_meta.get('name')} is already "
                f"controlled by {ref.get('kind')} {ref.get('name')}"
            )

    kopf.append_owner_reference(obj, owner=owner, controller=True, block_owner_deletion=True)
