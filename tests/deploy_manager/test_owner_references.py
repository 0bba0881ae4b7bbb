"""
Tests for the owner reference helpers
"""

# Local
from csm_operator.deploy_manager.owner_references import (
    make_owner_reference,
    set_owner_reference,
)
from csm_operator.test_helpers.helpers import (
    SOME_OTHER_NAMESPACE,
    TEST_NAMESPACE,
    make_csm,
)


def _child(namespace=TEST_NAMESPACE, refs=None):
    metadata = {"name": "child", "namespace": namespace}
    if refs is not None:
        metadata["ownerReferences"] = refs
    return {"apiVersion": "apps/v1", "kind": "Deployment", "metadata": metadata}


def test_make_owner_reference():
    owner = make_csm()
    ref = make_owner_reference(owner, block_owner_deletion=False)
    assert ref == {
        "apiVersion": owner["apiVersion"],
        "kind": owner["kind"],
        "name": owner["metadata"]["name"],
        "uid": owner["metadata"]["uid"],
        "controller": True,
        "blockOwnerDeletion": False,
    }


def test_make_owner_reference_partial_owner():
    """Missing owner fields are left empty"""
    ref = make_owner_reference({"kind": "Foo"})
    assert ref["kind"] == "Foo"
    assert ref["uid"] is None
    assert ref["blockOwnerDeletion"]


def test_set_owner_reference_replaces_own_ref():
    """An old reference to the same owner is replaced and others are kept"""
    owner = make_csm()
    other_ref = {"kind": "Other", "name": "other", "uid": "other-uid"}
    stale_ref = dict(make_owner_reference(owner), blockOwnerDeletion=False)
    child = _child(refs=[other_ref, stale_ref])
    set_owner_reference(child, owner, block_owner_deletion=True)
    refs = child["metadata"]["ownerReferences"]
    assert refs == [other_ref, make_owner_reference(owner)]


def test_set_owner_reference_cross_namespace():
    """Objects in another namespace are never given an owner reference"""
    child = _child(namespace=SOME_OTHER_NAMESPACE)
    set_owner_reference(child, make_csm())
    assert "ownerReferences" not in child["metadata"]
