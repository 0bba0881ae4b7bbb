"""
This module holds helpers to attach ownerReferences for a managed resource to
the objects deployed on its behalf
"""

# First Party
import alog

log = alog.use_channel("OWNRF")


def make_owner_reference(owner: dict, block_owner_deletion: bool = True) -> dict:
    """Make a controller owner reference for the given managed resource

    Error Semantics: This function makes a best-effort and does not validate the
    content of the owner, so the resulting ownerReference may contain None
    entries.

    Args:
        owner:  dict
            The full manifest for the owning resource
        block_owner_deletion:  bool
            Whether the owner is kept until this object completes its deletion

    Returns:
        owner_reference:  dict
            The dict entry for the `metadata.ownerReferences` entry of the owned
            object
    """
    metadata = owner.get("metadata", {})
    return {
        "apiVersion": owner.get("apiVersion"),
        "kind": owner.get("kind"),
        "name": metadata.get("name"),
        "uid": metadata.get("uid"),
        "controller": True,
        "blockOwnerDeletion": block_owner_deletion,
    }


def set_owner_reference(child: dict, owner: dict, block_owner_deletion: bool = True):
    """Replace any reference to the owner on the child with a fresh one. Owner
    references for other owners are left in place.
    """
    owner_uid = owner.get("metadata", {}).get("uid")
    metadata = child.setdefault("metadata", {})
    if metadata.get("namespace") != owner.get("metadata", {}).get("namespace"):
        log.debug2(
            "Not adding owner reference across namespaces for %s/%s",
            child.get("kind"),
            metadata.get("name"),
        )
        return
    refs = [
        ref
        for ref in metadata.get("ownerReferences", [])
        if ref.get("uid") != owner_uid
    ]
    refs.append(make_owner_reference(owner, block_owner_deletion))
    log.debug3("Final owner refs: %s", refs)
    metadata["ownerReferences"] = refs
