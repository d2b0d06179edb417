"""Unit tests for controller owner references."""

from __future__ import annotations

import copy

import pytest

from ncp_operator.errors import OwnershipError
from ncp_operator.ownership import set_controller_reference
from tests.conftest import NS, OWNER, make_desired_spec


class TestSetControllerReference:
    def test_cluster_scoped_owner_becomes_controller(self) -> None:
        obj = make_desired_spec()

        set_controller_reference(OWNER, obj)

        refs = obj["metadata"]["ownerReferences"]
        assert len(refs) == 1
        assert refs[0]["apiVersion"] == "config.openshift.io/v1"
        assert refs[0]["kind"] == "Network"
        assert refs[0]["name"] == "cluster"
        assert refs[0]["uid"] == OWNER["metadata"]["uid"]
        assert refs[0]["controller"] is True
        assert refs[0]["blockOwnerDeletion"] is True

    def test_setting_same_owner_twice_is_idempotent(self) -> None:
        obj = make_desired_spec()

        set_controller_reference(OWNER, obj)
        set_controller_reference(OWNER, obj)

        assert len(obj["metadata"]["ownerReferences"]) == 1

    @pytest.mark.parametrize("missing", ["apiVersion", "kind"])
    def test_owner_missing_type_fields(self, missing: str) -> None:
        owner = copy.deepcopy(OWNER)
        del owner[missing]

        with pytest.raises(OwnershipError, match=missing):
            set_controller_reference(owner, make_desired_spec())

    @pytest.mark.parametrize("missing", ["name", "uid"])
    def test_owner_missing_metadata_fields(self, missing: str) -> None:
        owner = copy.deepcopy(OWNER)
        del owner["metadata"][missing]
        obj = make_desired_spec()

        with pytest.raises(OwnershipError, match=f"metadata.{missing}"):
            set_controller_reference(owner, obj)
        assert "ownerReferences" not in obj["metadata"]

    def test_namespaced_owner_in_other_namespace_is_rejected(self) -> None:
        owner = copy.deepcopy(OWNER)
        owner["metadata"]["namespace"] = "openshift-network-operator"

        with pytest.raises(OwnershipError, match="cross-namespace"):
            set_controller_reference(owner, make_desired_spec())

    def test_namespaced_owner_in_same_namespace_is_accepted(self) -> None:
        owner = copy.deepcopy(OWNER)
        owner["metadata"]["namespace"] = NS
        obj = make_desired_spec()

        set_controller_reference(owner, obj)

        assert obj["metadata"]["ownerReferences"][0]["uid"] == OWNER["metadata"]["uid"]

    def test_object_controlled_by_another_owner_is_rejected(self) -> None:
        obj = make_desired_spec()
        obj["metadata"]["ownerReferences"] = [{
            "apiVersion": "operator.openshift.io/v1",
            "kind": "Network",
            "name": "cluster",
            "uid": "ffffffff-0000-0000-0000-000000000000",
            "controller": True,
        }]

        with pytest.raises(OwnershipError, match="already controlled"):
            set_controller_reference(OWNER, obj)
