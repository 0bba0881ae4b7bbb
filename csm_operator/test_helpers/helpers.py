"""
This module holds common helper functions for making testing easy
"""

# Standard
from contextlib import contextmanager
from typing import List, Optional
from unittest import mock
import base64
import copy
import inspect
import os

# First Party
import alog

# Local
from csm_operator import constants
from csm_operator.cmd.run_operator_cmd import RunOperatorCmd
from csm_operator.config import library_config as config_detail_dict
from csm_operator.content_watch import ContentWatch
from csm_operator.deploy_manager.dry_run_deploy_manager import DryRunDeployManager
from csm_operator.manifests.loader import TemplateLoader
from csm_operator.manifests.resolver import ManifestResolver
from csm_operator.modules import get_module
from csm_operator.operator_config import OperatorConfig
from csm_operator.resource import ContainerStorageModule

log = alog.use_channel("TEST")


def configure_logging():
    alog.configure(
        os.environ.get("LOG_LEVEL", "off"),
        os.environ.get("LOG_FILTERS", ""),
        formatter="json"
        if os.environ.get("LOG_JSON", "").lower() == "true"
        else "pretty",
        thread_id=os.environ.get("LOG_THREAD_ID", "").lower() == "true",
    )


configure_logging()

TEST_NAMESPACE = "test-csm"
SOME_OTHER_NAMESPACE = "somewhere"
TEST_INSTANCE_NAME = "isilon"
TEST_INSTANCE_UID = "12345678-1234-1234-1234-123456789012"
TEST_CLIENT_NAME = "apex-client"
TEST_CLIENT_UID = "87654321-4321-4321-4321-210987654321"

API_VERSION = "storage.dell.com/v1"
CSM_KIND = "ContainerStorageModule"
ACC_KIND = "ApexConnectivityClient"

## Resource Builders ###########################################################


def make_csm(
    name: str = TEST_INSTANCE_NAME,
    namespace: str = TEST_NAMESPACE,
    driver_type: Optional[str] = "isilon",
    config_version: str = "v2.10.0",
    modules: Optional[List[dict]] = None,
    driver: Optional[dict] = None,
    **metadata,
) -> dict:
    """Build a ContainerStorageModule manifest

    Args:
        name:  str
            Name of the resource
        namespace:  str
            Namespace of the resource
        driver_type:  Optional[str]
            csiDriverType of the driver. None leaves the driver out.
        config_version:  str
            configVersion of the driver
        modules:  Optional[List[dict]]
            The module list of the spec
        driver:  Optional[dict]
            Extra fields of the driver section
        **metadata:
            Extra metadata fields (annotations, finalizers, ...)

    Returns:
        manifest:  dict
            The resource manifest
    """
    spec = {}
    if driver_type is not None:
        spec["driver"] = {
            "csiDriverType": driver_type,
            "configVersion": config_version,
            "replicas": 1,
            "common": {"image": f"dellemc/csi-{driver_type}:{config_version}"},
            **(driver or {}),
        }
    if modules is not None:
        spec["modules"] = copy.deepcopy(modules)
    return {
        "apiVersion": API_VERSION,
        "kind": CSM_KIND,
        "metadata": {
            "name": name,
            "namespace": namespace,
            "uid": TEST_INSTANCE_UID,
            **metadata,
        },
        "spec": spec,
    }


def make_acc(
    name: str = TEST_CLIENT_NAME,
    namespace: str = TEST_NAMESPACE,
    client_type: Optional[str] = "apexConnectivityClient",
    config_version: str = "v1.0.0",
    force_remove: bool = False,
    **metadata,
) -> dict:
    """Build an ApexConnectivityClient manifest"""
    client = {"configVersion": config_version, "forceRemoveClient": force_remove}
    if client_type is not None:
        client["csmClientType"] = client_type
    return {
        "apiVersion": API_VERSION,
        "kind": ACC_KIND,
        "metadata": {
            "name": name,
            "namespace": namespace,
            "uid": TEST_CLIENT_UID,
            **metadata,
        },
        "spec": {"client": client},
    }


def make_secret(
    name: str,
    namespace: str = TEST_NAMESPACE,
    data: Optional[dict] = None,
) -> dict:
    """Build an Opaque secret with base64 encoded data"""
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "metadata": {"name": name, "namespace": namespace},
        "type": "Opaque",
        "data": {
            key: base64.b64encode(value.encode("utf-8")).decode("utf-8")
            for key, value in (data or {}).items()
        },
    }


def driver_secret(cr: dict) -> dict:
    """The config secret a driver needs for its prechecks to pass"""
    driver_type = cr["spec"]["driver"]["csiDriverType"]
    suffix = (
        "-config" if driver_type in ["powerflex", "vxflexos", "powerstore"] else "-creds"
    )
    return make_secret(f"{cr['metadata']['name']}{suffix}", cr["metadata"]["namespace"])


def operator_config(**overrides) -> OperatorConfig:
    return OperatorConfig(**overrides)


def quiet_content_watch(deploy_manager) -> ContentWatch:
    """A content watch which registers its watch sets without starting
    threads
    """
    return ContentWatch(deploy_manager, start_threads=False)


def set_workload_ready(deploy_manager, kind: str, name: str, namespace: str):
    """Write the status of a workload so that all of its replicas count as
    available
    """
    obj = deploy_manager.get_obj(kind, name, namespace, "apps/v1")
    assert obj is not None, f"No {kind} {namespace}/{name}"
    replicas = int(obj.get("spec", {}).get("replicas", 1))
    if kind == "DaemonSet":
        status = {"desiredNumberScheduled": 2, "numberAvailable": 2}
    elif kind == "StatefulSet":
        status = {"readyReplicas": replicas}
    else:
        status = {"availableReplicas": replicas}
    deploy_manager.set_status(kind, name, namespace, status, "apps/v1")


def get_state(deploy_manager, kind: str, name: str, namespace: str) -> str:
    obj = deploy_manager.get_obj(kind, name, namespace, API_VERSION)
    return (obj or {}).get("status", {}).get("state", "")


def has_csm_finalizer(manifest: dict) -> bool:
    return constants.CSM_FINALIZER_NAME in manifest["metadata"].get("finalizers", [])


## Config ######################################################################


@contextmanager
def library_config(**config_overrides):
    """This context manager sets library config values temporarily and reverts
    them on completion
    """
    # Override the configs and hang onto the old values
    old_vals = {}
    for key, val in config_overrides.items():
        if key in config_detail_dict:
            old_vals[key] = config_detail_dict[key]
        config_detail_dict[key] = val

    # Yield to the context
    try:
        yield
    finally:
        # Revert to the old values
        for key in config_overrides:
            if key in old_vals:
                config_detail_dict[key] = old_vals[key]
            else:
                del config_detail_dict[key]


## Failure Injection ###########################################################


def get_failable_method(fail_flag, method, failure_return=False):
    log.debug4(
        "Setting up failable mock of [%s] with fail flag: %s", str(method), fail_flag
    )

    def failable_method(*args, **kwargs):
        log.debug4(
            "Running failable mock of [%s] with fail flag: %s", str(method), fail_flag
        )
        if isinstance(fail_flag, Exception) or (
            inspect.isclass(fail_flag) and issubclass(fail_flag, Exception)
        ):
            log.debug4("Raising in failable mock")
            raise fail_flag
        if callable(fail_flag):
            log.debug4("Calling callable fail flag")
            res = fail_flag(*args, **kwargs)
            if res is not None:
                return res
        elif fail_flag == "assert":
            log.debug4("Asserting in failable mock")
            raise AssertionError(f"You told me to fail {method}!")
        elif fail_flag:
            log.debug4("Returning %s", failure_return)
            return failure_return
        log.debug4("Passing through (%s, **%s)", args, kwargs)
        return method(*args, **kwargs)

    return failable_method


class FailOnce:
    """Helper callable that will fail once on the N'th call"""

    def __init__(self, fail_val, fail_number=1):
        self.call_count = 0
        self.fail_number = fail_number
        self.fail_val = fail_val

    def __call__(self, *_, **__):
        self.call_count += 1
        if self.call_count == self.fail_number:
            log.debug("Failing on call %d with %s", self.call_count, self.fail_val)
            if isinstance(self.fail_val, type) and issubclass(self.fail_val, Exception):
                raise self.fail_val("Raising!")
            return self.fail_val
        log.debug("Not failing on call %d", self.call_count)
        return None


class FailForKind:
    """Helper callable that fails deploys of a single kind"""

    def __init__(self, kind: str, fail_val=(False, False)):
        self.kind = kind
        self.fail_val = fail_val

    def __call__(self, resource_definitions, *_, **__):
        if any(obj.get("kind") == self.kind for obj in resource_definitions):
            log.debug("Failing operation on %s", self.kind)
            return self.fail_val
        return None


class MockDeployManager(DryRunDeployManager):
    """The MockDeployManager wraps a standard DryRunDeployManager and adds
    configuration options to simulate failures in each of its operations.
    """

    def __init__(
        self,
        deploy_fail=False,
        deploy_raise=False,
        disable_fail=False,
        disable_raise=False,
        get_state_fail=False,
        get_state_raise=False,
        watch_fail=False,
        watch_raise=False,
        set_status_fail=False,
        set_status_raise=False,
        auto_enable=True,
        resources=None,
        resource_dir=None,
        **kwargs,
    ):
        """This DeployManager can be configured to have various failure cases
        and will mock the state of the cluster so that get_object_current_state
        will pull its information from the local dict.
        """
        # Parse pre-populated resources if needed
        resources = copy.deepcopy(resources or [])
        resources = resources + RunOperatorCmd._parse_resource_dir(  # pylint: disable=protected-access
            resource_dir
        )
        for resource in resources:
            resource.setdefault("apiVersion", "v1")
        super().__init__(resources, **kwargs)

        self.watch_fail = "assert" if watch_raise else watch_fail
        self.deploy_fail = "assert" if deploy_raise else deploy_fail
        self.disable_fail = "assert" if disable_raise else disable_fail
        self.get_state_fail = "assert" if get_state_raise else get_state_fail
        self.set_status_fail = "assert" if set_status_raise else set_status_fail

        # If auto-enabling, turn the mocks on now
        if auto_enable:
            self.enable_mocks()

    #######################
    ## Helpers for Tests ##
    #######################

    def enable_mocks(self):
        """Turn the mocks on"""
        self.deploy = mock.Mock(
            side_effect=get_failable_method(
                self.deploy_fail, super().deploy, (False, False)
            )
        )
        self.disable = mock.Mock(
            side_effect=get_failable_method(
                self.disable_fail, super().disable, (False, False)
            )
        )
        self.get_object_current_state = mock.Mock(
            side_effect=get_failable_method(
                self.get_state_fail, super().get_object_current_state, (False, None)
            )
        )
        self.set_status = mock.Mock(
            side_effect=get_failable_method(
                self.set_status_fail, super().set_status, (False, False)
            )
        )
        self.watch_objects = mock.Mock(
            side_effect=get_failable_method(self.watch_fail, super().watch_objects, [])
        )

    def get_obj(self, kind, name, namespace=None, api_version=None):
        return self.get_object_current_state(kind, name, namespace, api_version)[1]

    def has_obj(self, *args, **kwargs):
        return self.get_obj(*args, **kwargs) is not None

    def objects_of_kind(self, kind, namespace=None) -> List[dict]:
        return self.filter_objects_current_state(kind, namespace=namespace)[1]

    def events(self, namespace=TEST_NAMESPACE, event_type=None) -> List[dict]:
        events = self.objects_of_kind("Event", namespace)
        if event_type is not None:
            events = [event for event in events if event["type"] == event_type]
        return events


## Modules #####################################################################


def module_context(manifest: dict, module_name: str, **config_overrides):
    """Build a module and its context for one module entry of a resource

    Args:
        manifest:  dict
            The ContainerStorageModule manifest
        module_name:  str
            Name of the module entry to build the context for
        **config_overrides:
            Fields of the OperatorConfig to use

    Returns:
        module:  ModuleBase
            The module implementation
        ctx:  ModuleContext
            The context of the module for the resource
    """
    op_config = OperatorConfig(**config_overrides)
    cr = ContainerStorageModule(manifest)
    module = get_module(module_name)
    ctx = module.context(
        cr, cr.get_module(module_name), op_config, TemplateLoader(op_config)
    )
    return module, ctx


def resolve_bundle(manifest: dict, **config_overrides):
    """Render the base driver bundle of a resource"""
    return ManifestResolver(OperatorConfig(**config_overrides)).resolve(
        ContainerStorageModule(manifest)
    )
