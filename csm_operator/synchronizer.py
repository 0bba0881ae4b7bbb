"""
The ResourceSynchronizer is the only place where composed objects are written
to or removed from the cluster
"""

# Standard
from typing import List

# First Party
import alog

# Local
from . import constants
from .deploy_manager import DeployManagerBase
from .exceptions import assert_cluster
from .manifests.bundle import Bundle

log = alog.use_channel("SYNCR")


def api_group(obj: dict) -> str:
    """Get the API group of an object ("" for the core group)"""
    api_version = obj.get("apiVersion", "")
    return api_version.split("/")[0] if "/" in api_version else ""


def is_builtin(obj: dict) -> bool:
    """Whether the kind of an object is always installed in the cluster"""
    return api_group(obj) in constants.BUILTIN_API_GROUPS


def describe(obj: dict) -> str:
    metadata = obj.get("metadata", {})
    parts = [obj.get("kind"), metadata.get("namespace"), metadata.get("name")]
    return "/".join(part for part in parts if part)


class ResourceSynchronizer:
    """Applies and deletes objects one at a time so that the order of a
    bundle is the order in which the cluster sees it
    """

    def __init__(self, deploy_manager: DeployManagerBase):
        self.deploy_manager = deploy_manager

    ## Apply ###################################################################

    def apply(self, obj: dict) -> bool:
        """Create or update a single object

        Args:
            obj:  dict
                The full desired definition of the object

        Returns:
            changed:  bool
                Whether the cluster content changed

        Raises:
            ClusterError if the object could not be applied
        """
        log.debug2("Applying %s", describe(obj))
        success, changed = self.deploy_manager.deploy([obj])
        assert_cluster(success, f"Failed to apply {describe(obj)}")
        if changed:
            log.debug("Applied changes to %s", describe(obj))
        return changed

    def apply_objects(self, objects: List[dict]) -> bool:
        """Apply objects in order, stopping at the first failure

        Returns:
            changed:  bool
                Whether any of the objects changed
        """
        changed = False
        for obj in objects:
            changed = self.apply(obj) or changed
        return changed

    @alog.logged_function(log.debug2)
    def sync_bundle(self, bundle: Bundle, include_node: bool = True) -> bool:
        """Apply a composed bundle: RBAC, driver registration, config map,
        controller and (unless skipped) node

        Args:
            bundle:  Bundle
                The composed bundle
            include_node:  bool
                Whether to apply the node workload and its RBAC

        Returns:
            changed:  bool
                Whether any object of the bundle changed
        """
        if not include_node:
            log.debug("Skipping node workload")
        return self.apply_objects(bundle.ordered_objects(include_node=include_node))

    ## Delete ##################################################################

    def delete(self, obj: dict, tolerate_extensions: bool = False) -> bool:
        """Delete a single object. Missing objects are not an error.

        Args:
            obj:  dict
                The definition of the object to delete
            tolerate_extensions:  bool
                Only warn when an object whose kind is backed by a CRD can
                not be deleted

        Returns:
            changed:  bool
                Whether the object was present and deleted
        """
        log.debug2("Deleting %s", describe(obj))
        success, changed = self.deploy_manager.disable([obj])
        if not success and tolerate_extensions and not is_builtin(obj):
            log.warning("Failed to delete extension object %s", describe(obj))
            return False
        assert_cluster(success, f"Failed to delete {describe(obj)}")
        return changed

    def delete_objects(
        self, objects: List[dict], tolerate_extensions: bool = False
    ) -> bool:
        """Delete objects in the reverse of their apply order

        Returns:
            changed:  bool
                Whether any object was deleted
        """
        changed = False
        for obj in reversed(objects):
            changed = self.delete(obj, tolerate_extensions) or changed
        return changed
