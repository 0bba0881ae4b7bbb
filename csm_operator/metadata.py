"""
Helpers that update the metadata (finalizers and annotations) of managed
resources
"""

# Standard
from typing import Dict
import copy

# First Party
import alog

# Local
from .deploy_manager import DeployManagerBase, DeployMethod
from .exceptions import assert_cluster

log = alog.use_channel("METAD")

# Metadata fields populated by the server which are never sent back
SERVER_METADATA_FIELDS = [
    "managedFields",
    "resourceVersion",
    "creationTimestamp",
    "generation",
    "deletionTimestamp",
    "deletionGracePeriodSeconds",
]


def add_finalizer(
    deploy_manager: DeployManagerBase,
    manifest: dict,
    finalizer: str,
) -> bool:
    """This helper adds a finalizer to a managed resource in the cluster and to
    the in-memory manifest

    Args:
        deploy_manager:  DeployManagerBase
            The deploy manager used to update the resource
        manifest:  dict
            The manifest of the managed resource
        finalizer:  str
            The finalizer to be added

    Returns:
        added:  bool
            True if the finalizer was not already present
    """
    finalizers = manifest.setdefault("metadata", {}).setdefault("finalizers", [])
    if finalizer in finalizers:
        return False

    log.debug("Adding finalizer: %s", finalizer)
    update = _metadata_manifest(manifest)
    update["metadata"]["finalizers"] = finalizers + [finalizer]
    success, _ = deploy_manager.deploy([update], method=DeployMethod.UPDATE)

    # Once successfully added to cluster than add it to the manifest
    assert_cluster(success, f"Failed add finalizer {finalizer}")
    finalizers.append(finalizer)
    return True


def remove_finalizer(
    deploy_manager: DeployManagerBase,
    manifest: dict,
    finalizer: str,
) -> bool:
    """This helper removes a finalizer from a managed resource in the cluster
    and from the in-memory manifest

    Args:
        deploy_manager:  DeployManagerBase
            The deploy manager used to update the resource
        manifest:  dict
            The manifest of the managed resource
        finalizer:  str
            The finalizer to remove

    Returns:
        removed:  bool
            True if the finalizer was present
    """
    finalizers = manifest.get("metadata", {}).get("finalizers", [])
    if finalizer not in finalizers:
        return False

    log.debug("Removing finalizer: %s", finalizer)
    metadata = manifest["metadata"]

    # Check to see if the object exists in the cluster
    success, found = deploy_manager.get_object_current_state(
        kind=manifest["kind"],
        name=metadata["name"],
        namespace=metadata.get("namespace"),
        api_version=manifest["apiVersion"],
    )
    assert_cluster(success, "Failed to look up managed resource")

    # If still present in the cluster, update it without the finalizer
    if found:
        update = _metadata_manifest(manifest)
        update["metadata"]["finalizers"] = [
            name for name in finalizers if name != finalizer
        ]
        success, _ = deploy_manager.deploy([update], method=DeployMethod.UPDATE)
        assert_cluster(success, f"Failed remove finalizer {finalizer}")

    finalizers.remove(finalizer)
    return True


def update_annotations(
    deploy_manager: DeployManagerBase,
    manifest: dict,
    annotations: Dict[str, str],
) -> bool:
    """Set annotations on a managed resource in the cluster and in the
    in-memory manifest. Annotations that already hold the value are skipped.

    Args:
        deploy_manager:  DeployManagerBase
            The deploy manager used to update the resource
        manifest:  dict
            The manifest of the managed resource
        annotations:  Dict[str, str]
            The annotations to set

    Returns:
        changed:  bool
            True if any annotation was written
    """
    current = manifest.setdefault("metadata", {}).setdefault("annotations", {})
    changes = {
        key: value for key, value in annotations.items() if current.get(key) != value
    }
    if not changes:
        return False

    log.debug2("Updating annotations %s", list(changes))
    update = _metadata_manifest(manifest)
    update["metadata"]["annotations"] = {**current, **changes}
    success, _ = deploy_manager.deploy([update], method=DeployMethod.UPDATE)
    assert_cluster(success, f"Failed to update annotations {list(changes)}")
    current.update(changes)
    return True


def has_finalizer(manifest: dict, finalizer: str) -> bool:
    """Check whether the finalizer is set on the manifest"""
    return finalizer in manifest.get("metadata", {}).get("finalizers", [])


def _metadata_manifest(manifest: dict) -> dict:
    """Create a manifest with only the fields required to update metadata"""
    metadata = copy.deepcopy(manifest["metadata"])
    for key in SERVER_METADATA_FIELDS:
        metadata.pop(key, None)
    return {
        "kind": manifest["kind"],
        "apiVersion": manifest["apiVersion"],
        "metadata": metadata,
    }
