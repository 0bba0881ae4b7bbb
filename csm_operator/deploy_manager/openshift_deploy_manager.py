"""
This DeployManager is responsible for delegating cluster operations to the
openshift library. It is the one that will be used when the operator is running
in the cluster or outside the cluster making live changes.
"""
# Standard
from collections import namedtuple
from typing import Callable, Iterator, List, Optional, Tuple
import copy
import threading
import time

# Third Party
from kubernetes import client
from kubernetes.watch import Watch
from openshift.dynamic import DynamicClient
from openshift.dynamic.apply import LAST_APPLIED_CONFIG_ANNOTATION, recursive_diff
from openshift.dynamic.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ResourceNotFoundError,
    ResourceNotUniqueError,
)
from openshift.dynamic.resource import Resource
import kubernetes
import urllib3

# First Party
import alog

# Local
from .. import config
from ..exceptions import assert_cluster
from ..managed_object import ManagedObject
from ..utils import merge_configs
from .base import DeployManagerBase, DeployMethod
from .kube_event import KubeEventType, KubeWatchEvent

log = alog.use_channel("OSFTD")

## Deploy Manager ##############################################################


# See this document for value reasonings
# https://github.com/kubernetes-client/python/blob/master/examples/watch/timeout-settings.md
SERVER_WATCH_TIMEOUT = 3600
CLIENT_WATCH_TIMEOUT = 30


class OpenshiftDeployManager(DeployManagerBase):
    """This DeployManager uses the openshift DynamicClient to interact with the
    cluster
    """

    def __init__(self, field_manager: Optional[str] = None):
        """
        Args:
            field_manager:  Optional[str]
                The server side apply field manager. Defaults to the configured
                field_manager.
        """
        self.field_manager = field_manager or config.field_manager

        # Set up the client
        log.debug("Initializing openshift client")
        self._client = None

        # Keep a threading lock for performing status updates. This is necessary
        # to avoid running into 409 Conflict errors if concurrent threads are
        # trying to perform status updates
        self._status_lock = threading.Lock()

    @property
    def client(self):
        """Lazy property access to the client"""
        if self._client is None:
            self._client = self._setup_client()
        return self._client

    @alog.logged_function(log.debug)
    def deploy(
        self,
        resource_definitions: List[dict],
        method: DeployMethod = DeployMethod.DEFAULT,
        retry_operation: bool = True,
        **_,
    ) -> Tuple[bool, bool]:
        """Deploy using the openshift client

        Args:
            resource_definitions:  list(dict)
                List of resource object dicts to apply to the cluster
            method:  DeployMethod
                Whether the definitions are full objects or partial updates
            retry_operation:  bool
                Whether conflicts are retried

        Returns:
            success:  bool
                True if deploy succeeded, False otherwise
            changed:  bool
                Whether or not the deployment resulted in changes
        """
        return self._retried_operation(
            resource_definitions,
            self._apply,
            max_retries=config.deploy_retries if retry_operation else 0,
            method=method,
        )

    @alog.logged_function(log.debug)
    def disable(self, resource_definitions: List[dict]) -> Tuple[bool, bool]:
        """Delete each of the given resources if present

        Args:
            resource_definitions:  list(dict)
                List of resource object dicts to delete from the cluster

        Returns:
            success:  bool
                True if deploy succeeded, False otherwise
            changed:  bool
                Whether or not the delete resulted in changes
        """
        return self._retried_operation(
            resource_definitions,
            self._disable,
            max_retries=config.deploy_retries,
        )

    def get_object_current_state(
        self,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, Optional[dict]]:
        """The get_object_current_state function fetches the current state using
        calls directly to the api client

        Args:
            kind:  str
                The kind of the object ot fetch
            name:  str
                The full name of the object to fetch
            namespace:  Optional[str]
                The namespace to search for the object or None for no namespace
            api_version:  Optional[str]
                The api_version of the resource kind to fetch

        Returns:
            success:  bool
                Whether or not the state fetch operation succeeded
            current_state:  dict or None
                The dict representation of the current object's configuration,
                or None if not present
        """
        resources = self._get_resource_handle(kind, api_version)
        if not resources:
            return True, None

        if not namespace:
            resources.namespaced = False

        try:
            resource = resources.get(name=name, namespace=namespace)
        except ForbiddenError:
            log.debug(
                "Fetching objects of kind [%s] forbidden in namespace [%s]",
                kind,
                namespace,
            )
            return False, None
        except NotFoundError:
            log.debug(
                "No object named [%s/%s] found in namespace [%s]", kind, name, namespace
            )
            return True, None

        return True, resource.to_dict()

    def watch_objects(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        api_version: Optional[str] = None,
        namespace: Optional[str] = None,
        name: Optional[str] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
        resource_version: Optional[str] = None,
        watch_manager: Optional[Watch] = None,
        stop_event: Optional[threading.Event] = None,
        timeout: Optional[int] = None,
        **_,
    ) -> Iterator[KubeWatchEvent]:
        """Stream events of a kind. With a timeout the server closes the
        stream after that many seconds so that a set stop_event is noticed
        even when no events arrive.
        """
        watch_manager = watch_manager if watch_manager else Watch()
        server_timeout = timeout or SERVER_WATCH_TIMEOUT
        resource_handle = self._get_resource_handle(kind, api_version)
        assert_cluster(
            resource_handle,
            (
                "Failed to fetch resource handle for "
                + f"{namespace}/{api_version}/{kind}"
            ),
        )

        resource_version = resource_version if resource_version else 0

        while True:
            try:
                for event_obj in watch_manager.stream(
                    resource_handle.get,
                    resource_version=resource_version,
                    namespace=namespace,
                    name=name,
                    label_selector=label_selector,
                    field_selector=field_selector,
                    serialize=False,
                    timeout_seconds=server_timeout,
                    _request_timeout=CLIENT_WATCH_TIMEOUT,
                ):
                    event_type = KubeEventType(event_obj["type"])
                    event_resource = ManagedObject(event_obj["object"])
                    resource_version = event_resource.resource_version
                    yield KubeWatchEvent(event_type, event_resource)
                    if stop_event is not None and stop_event.is_set():
                        watch_manager.stop()
            except client.exceptions.ApiException as exception:
                if exception.status == 410:
                    log.debug2(
                        "Resource age expired, restarting watch %s/%s",
                        kind,
                        api_version,
                    )
                    resource_version = None
                else:
                    log.info("Unknown ApiException received, re-raising")
                    raise exception
            except urllib3.exceptions.ReadTimeoutError:
                log.debug4(
                    "Watch Socket closed, restarting watch %s/%s", kind, api_version
                )
            except urllib3.exceptions.ProtocolError:
                log.debug2(
                    "Invalid Chunk from server, restarting watch %s/%s",
                    kind,
                    api_version,
                )

            # This is hidden attribute so probably not best to check
            if watch_manager._stop or (  # pylint: disable=protected-access
                stop_event is not None and stop_event.is_set()
            ):
                log.debug(
                    "Internal watch stopped. Stopping deploy manager watch for %s/%s",
                    kind,
                    api_version,
                )
                return

    def filter_objects_current_state(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
    ) -> Tuple[bool, List[dict]]:
        """The filter_objects_current_state function fetches a list of objects
        that match either/both the label or field selector. A namespace of None
        lists across all namespaces.
        """
        resources = self._get_resource_handle(kind, api_version)
        if not resources:
            return True, []

        try:
            list_obj = resources.get(
                label_selector=label_selector,
                field_selector=field_selector,
                namespace=namespace,
            )
        except ForbiddenError:
            log.debug(
                "Fetching objects of kind [%s] forbidden in namespace [%s]",
                kind,
                namespace,
            )
            return False, []
        except NotFoundError:
            log.debug(
                "No objects of kind [%s] found in namespace [%s]", kind, namespace
            )
            return True, []

        return True, list_obj.to_dict().get("items", [])

    def set_status(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        name: str,
        namespace: Optional[str],
        status: dict,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, bool]:
        """Set the status in the cluster manifest for a managed resource

        Args:
            kind:  str
                The kind of the object ot fetch
            name:  str
                The full name of the object to fetch
            namespace:  Optional[str]
                The namespace to search for the object.
            status:  dict
                The status object to set onto the given object
            api_version:  Optional[str]
                The api_version of the resource to update

        Returns:
            success:  bool
                Whether or not the status update operation succeeded
            changed:  bool
                Whether or not the status update resulted in a change
        """
        # Create a dummy resource to use in the common retry function
        resource_definitions = [
            {
                "kind": kind,
                "apiVersion": api_version,
                "metadata": {
                    "name": name,
                    "namespace": namespace,
                },
            }
        ]

        return self._retried_operation(
            resource_definitions,
            self._set_status,
            max_retries=config.deploy_retries,
            status=status,
        )

    ## Implementation Helpers ##################################################

    @staticmethod
    def _setup_client():
        """Create a DynamicClient that will work based on where the operator is
        running
        """
        # Try in-cluster config
        try:
            log.debug2("Running with in-cluster config")

            # Create Empty Config and load in-cluster information
            kube_config = kubernetes.client.Configuration()
            kubernetes.config.load_incluster_config(client_configuration=kube_config)

            # Generate ApiClient and return Openshift DynamicClient
            api_client = kubernetes.client.ApiClient(kube_config)
            return DynamicClient(api_client)

        # Fall back to out-of-cluster config
        except kubernetes.config.ConfigException:
            log.debug2("Running with out-of-cluster config")
            return DynamicClient(kubernetes.config.new_client_from_config())

    @staticmethod
    def _strip_last_applied(resource_definitions):
        """Make sure that the last-applied annotation is not present in any of
        the resources. This can lead to recursive nesting!
        """
        for resource_definition in resource_definitions:
            annotations = resource_definition.get("metadata", {}).get(
                "annotations", {}
            )
            if annotations.pop(LAST_APPLIED_CONFIG_ANNOTATION, None) is not None:
                log.debug3("Removed [%s]", LAST_APPLIED_CONFIG_ANNOTATION)
                if not annotations:
                    del resource_definition["metadata"]["annotations"]

    def _get_resource_handle(self, kind: str, api_version: str) -> Optional[Resource]:
        """Get the openshift resource handle for a specified kind and api_version"""
        resources = None
        try:
            resources = self.client.resources.get(kind=kind, api_version=api_version)
        except (ResourceNotFoundError, ResourceNotUniqueError):
            try:
                resources = self.client.resources.get(
                    short_names=[kind], api_version=api_version
                )
            except (ResourceNotFoundError, ResourceNotUniqueError):
                log.debug(
                    "No objects of kind [%s] found or multiple objects matching request found",
                    kind,
                )
        return resources

    def _retried_operation(
        self,
        resource_definitions,
        operation,
        max_retries,
        **kwargs,
    ):
        """Shared wrapper for executing a client operation with retries"""

        # Make sure the resource_definitions is a list
        assert isinstance(
            resource_definitions, list
        ), "Programming Error: resource_definitions is not a list"
        log.debug3("Running module with %d retries", max_retries)

        # If there are no resource definitions given, consider it a success with
        # no change
        if not resource_definitions:
            log.debug("Nothing to do for an empty list of resources")
            return True, False

        # Work on copies so that the caller's definitions are never modified
        resource_definitions = copy.deepcopy(resource_definitions)
        self._strip_last_applied(resource_definitions)

        # Run each resource individually so that we can track partial completion
        success = True
        changed = False
        for resource_definition in resource_definitions:
            try:
                changed = (
                    self._run_individual_operation_with_retries(
                        operation,
                        max_retries,
                        resource_definition=resource_definition,
                        **kwargs,
                    )
                    or changed
                )

            # On failure, mark it and stop processing the rest of the resources
            # since later resources may depend on earlier ones
            except Exception as err:  # pylint: disable=broad-except
                log.warning(
                    "Operation [%s] failed to execute: %s",
                    operation,
                    err,
                    exc_info=True,
                )
                success = False
                break

        return success, changed

    def _run_individual_operation_with_retries(
        self,
        operation: Callable,
        remaining_retries: int,
        resource_definition: dict,
        **kwargs,
    ):
        """Helper to execute a single helper operation with retries

        Args:
            operation:  Callable
                The operation function to run
            remaining_retries:  int
                The number of remaining retries
            resource_definition:  dict
                The dict representation of the resource being applied
            **kwargs:  dict
                Keyword args to pass to the operation beyond resource_definition

        Returns:
            changed:  bool
                Whether or not the operation resulted in meaningful change
        """
        try:
            return operation(resource_definition=resource_definition, **kwargs)
        except ConflictError as err:
            log.debug2("Handling ConflictError: %s", err)

            if not remaining_retries:
                raise

            backoff_duration = config.retry_backoff_base_seconds * (
                config.deploy_retries - remaining_retries + 1
            )
            log.debug3("Retrying in %fs", backoff_duration)
            time.sleep(backoff_duration)

            # Fetch the current resourceVersion and update in the resource
            # definition. Objects owned by the operator are only written by the
            # operator, so the latest version always wins.
            res_id = self._get_resource_identifiers(
                resource_definition, require_api_version=False
            )
            success, content = self.get_object_current_state(
                kind=res_id.kind,
                name=res_id.name,
                namespace=res_id.namespace,
                api_version=res_id.api_version,
            )
            assert_cluster(
                success and content is not None,
                (
                    "Failed to fetch updated resourceVersion for "
                    + f"{res_id.namespace}/{res_id.api_version}/{res_id.kind}/{res_id.name}"
                ),
            )
            updated_resource_version = content.get("metadata", {}).get(
                "resourceVersion"
            )
            assert_cluster(
                updated_resource_version is not None,
                "No updated resource version found!",
            )
            resource_definition.setdefault("metadata", {})[
                "resourceVersion"
            ] = updated_resource_version

            log.debug3("Retrying")
            return self._run_individual_operation_with_retries(
                operation, remaining_retries - 1, resource_definition, **kwargs
            )

    @classmethod
    def _manifest_diff(cls, manifest_a, manifest_b) -> bool:
        """Helper to compare two manifests for meaningful diff while ignoring
        fields that always change.
        """
        manifest_a = copy.deepcopy(manifest_a)
        manifest_b = copy.deepcopy(manifest_b)
        for metadata_field in [
            "resourceVersion",
            "generation",
            "managedFields",
            "uid",
            "creationTimestamp",
        ]:
            manifest_a.get("metadata", {}).pop(metadata_field, None)
            manifest_b.get("metadata", {}).pop(metadata_field, None)
        manifest_a.pop("status", None)
        manifest_b.pop("status", None)

        cls._strip_last_applied([manifest_b, manifest_a])
        change = bool(recursive_diff(manifest_a, manifest_b))
        log.debug2("Found change? %s", change)
        log.debug4("A: %s", manifest_a)
        log.debug4("B: %s", manifest_b)
        return change

    # Internal struct to hold the key resource identifier elements
    _ResourceIdentifiers = namedtuple(
        "ResourceIdentifiers", ["api_version", "kind", "name", "namespace"]
    )

    @classmethod
    def _get_resource_identifiers(cls, resource_definition, require_api_version=True):
        """Helper for getting the required parts of a single resource definition"""
        api_version = resource_definition.get("apiVersion")
        kind = resource_definition.get("kind")
        name = resource_definition.get("metadata", {}).get("name")
        namespace = resource_definition.get("metadata", {}).get("namespace")
        assert None not in [
            kind,
            name,
        ], "Cannot apply resource without kind or name"
        assert (
            not require_api_version or api_version is not None
        ), "Cannot apply resource without apiVersion"
        return cls._ResourceIdentifiers(api_version, kind, name, namespace)

    ################
    ## Operations ##
    ################

    def _apply_resource(self, resource_definition: dict) -> dict:
        """Helper function to server side apply a single resource"""
        res_id = self._get_resource_identifiers(resource_definition)

        # Strip out managedFields to let the sever set them
        resource_definition["metadata"]["managedFields"] = None

        log.debug2("Fetching resource handle [%s/%s]", res_id.api_version, res_id.kind)
        resource_handle = self._get_resource_handle(
            api_version=res_id.api_version, kind=res_id.kind
        )
        assert_cluster(
            resource_handle,
            (
                "Failed to fetch resource handle for "
                + f"{res_id.namespace}/{res_id.api_version}/{res_id.kind}"
            ),
        )

        log.debug2(
            "Attempting to apply [%s/%s/%s] in %s",
            res_id.api_version,
            res_id.kind,
            res_id.name,
            res_id.namespace,
        )
        try:
            return resource_handle.server_side_apply(
                resource_definition,
                name=res_id.name,
                namespace=res_id.namespace,
                field_manager=self.field_manager,
            ).to_dict()
        except ConflictError:
            log.debug(
                "Overriding field manager conflict for [%s/%s/%s] in %s ",
                res_id.api_version,
                res_id.kind,
                res_id.name,
                res_id.namespace,
            )
            return resource_handle.server_side_apply(
                resource_definition,
                name=res_id.name,
                namespace=res_id.namespace,
                field_manager=self.field_manager,
                force_conflicts=True,
            ).to_dict()

    def _apply(self, resource_definition, method: DeployMethod):
        """Apply a single resource to the cluster

        Args:
            resource_definition:  dict
                The resource manifest to apply
            method:  DeployMethod
                Whether the manifest is a full object or a partial update

        Returns:
            changed:  bool
                Whether or not the apply resulted in a meaningful change
        """
        res_id = self._get_resource_identifiers(resource_definition)

        success, current = self.get_object_current_state(
            kind=res_id.kind,
            name=res_id.name,
            namespace=res_id.namespace,
            api_version=res_id.api_version,
        )
        assert_cluster(
            success,
            (
                "Failed to fetch current state for "
                + f"{res_id.namespace}/{res_id.api_version}/{res_id.kind}/{res_id.name}"
            ),
        )
        current = current or {}

        # Partial updates are compared against the object they will produce
        desired = resource_definition
        if method is DeployMethod.UPDATE:
            desired = merge_configs(copy.deepcopy(current), resource_definition)

        changed = self._manifest_diff(current, desired)
        if changed:
            log.debug2(
                "Attempting to deploy [%s/%s/%s] in %s with %s",
                res_id.api_version,
                res_id.kind,
                res_id.name,
                res_id.namespace,
                method,
            )
            apply_res = self._apply_resource(resource_definition)

            # Recompute the diff to determine if the apply actually caused a
            # meaningful change since server defaulting can make the applied
            # manifest differ from the stored object
            changed = self._manifest_diff(current, apply_res)

        return changed

    def _disable(self, resource_definition):
        """Disable a single resource to the cluster if it exists

        Args:
            resource_definition:  dict
                The resource manifest to disable

        Returns:
            changed:  bool
                Whether or not the disable resulted in a meaningful change
        """
        changed = False
        res_id = self._get_resource_identifiers(resource_definition)

        # Missing kinds and missing instances are a success without change
        log.debug2("Fetching resource [%s/%s]", res_id.api_version, res_id.kind)
        try:
            resource_handle = self.client.resources.get(
                api_version=res_id.api_version, kind=res_id.kind
            )
            if not res_id.namespace:
                resource_handle.namespaced = False

            log.debug2(
                "Attempting to delete [%s/%s/%s] from %s",
                res_id.api_version,
                res_id.kind,
                res_id.name,
                res_id.namespace,
            )
            resource_handle.delete(name=res_id.name, namespace=res_id.namespace)
            changed = True

        except (ResourceNotFoundError, NotFoundError) as err:
            log.debug2(
                "Valid error caught when disabling [%s/%s]: %s",
                res_id.kind,
                res_id.name,
                err,
            )

        return changed

    def _set_status(self, resource_definition, status):
        """Replace the status of a single resource

        Args:
            resource_definition:  dict
                A dummy manifest holding the resource identifiers
            status:  dict
                The status to apply

        Returns:
            changed:  bool
                Whether or not the status update resulted in a meaningful change
        """
        res_id = self._get_resource_identifiers(
            resource_definition, require_api_version=False
        )
        resource_handle = self.client.resources.get(
            api_version=res_id.api_version, kind=res_id.kind
        )
        if not res_id.namespace:
            resource_handle.namespaced = False

        with self._status_lock:
            resource = resource_handle.get(
                name=res_id.name, namespace=res_id.namespace
            ).to_dict()
            log.debug2(
                "Resource version: %s",
                resource.get("metadata", {}).get("resourceVersion"),
            )
            if resource.get("status") == status:
                log.debug("Status has not changed. No update")
                return False

            resource["status"] = status
            resource_handle.status.replace(body=resource)
            log.debug2(
                "Successfully set the status for [%s/%s] in %s",
                res_id.kind,
                res_id.name,
                res_id.namespace,
            )
            return True
