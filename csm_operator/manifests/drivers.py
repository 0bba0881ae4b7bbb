"""
Per driver type settings, template pre-processing and prechecks
"""

# Standard
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple
import base64
import binascii

# Third Party
import yaml

# First Party
import alog

# Local
from ..deploy_manager import DeployManagerBase
from ..exceptions import ConfigError, assert_cluster, assert_config
from ..operator_config import OperatorConfig
from ..resource import ContainerStorageModule
from .bundle import WorkloadSet
from .workloads import find_container, remove_container, remove_volume, set_env

log = alog.use_channel("DRIVR")

## Driver Specific Processing ##################################################

# Env vars and names used by the PowerFlex pre-processing
SDC_ENABLED_ENV = "X_CSI_SDC_ENABLED"
SFTP_REPO_ENABLED_ENV = "X_CSI_SFTP_REPO_ENABLED"
SDC_INIT_CONTAINER = "sdc"
SFTP_KEYS_VOLUME = "sftp-keys"
SCALEIO_OPT_VOLUME = "scaleio-path-opt"

# Names used by the PowerMax reverse proxy
REVERSE_PROXY_MODULE = "csireverseproxy"
REVERSE_PROXY_COMPONENT = "csipowermax-reverseproxy"
REVERSE_PROXY_SERVICE_NAME = "csipowermax-reverseproxy"
REVERSE_PROXY_AS_SIDECAR_ENV = "DeployAsSidecar"
REVERSE_PROXY_PORT_ENV = "X_CSI_REVPROXY_PORT"
DEFAULT_REVERSE_PROXY_PORT = "2222"
PROXY_SERVICE_NAME_ENV = "X_CSI_POWERMAX_PROXY_SERVICE_NAME"
SIDECAR_PROXY_PORT_ENV = "X_CSI_POWERMAX_SIDECAR_PROXY_PORT"


def _node_env(cr: ContainerStorageModule, name: str) -> Optional[str]:
    return cr.driver.node.env(name, cr.driver.common.env(name))


def _noop(*_, **__):
    """Drivers without special handling"""


def preprocess_powerflex_node(
    node: WorkloadSet,
    cr: ContainerStorageModule,
    operator_config: OperatorConfig,
):
    """Remove the init container and volumes that the PowerFlex node does not
    need for the given spec and platform
    """
    pod_spec = node.pod_spec
    if (_node_env(cr, SDC_ENABLED_ENV) or "true").lower() == "false":
        log.debug2("Removing %s init container", SDC_INIT_CONTAINER)
        remove_container(pod_spec, SDC_INIT_CONTAINER, init=True)
    if (_node_env(cr, SFTP_REPO_ENABLED_ENV) or "false").lower() != "true":
        remove_volume(pod_spec, SFTP_KEYS_VOLUME)
    if operator_config.is_openshift:
        remove_volume(pod_spec, SCALEIO_OPT_VOLUME)


def reverse_proxy_settings(cr: ContainerStorageModule) -> Tuple[bool, bool, str]:
    """Get whether the PowerMax reverse proxy is enabled, whether it runs as a
    sidecar of the controller and which port it listens on
    """
    module = cr.get_module(REVERSE_PROXY_MODULE)
    if module is None or not module.enabled:
        return False, False, DEFAULT_REVERSE_PROXY_PORT
    component = module.component(REVERSE_PROXY_COMPONENT)
    as_sidecar = True
    port = DEFAULT_REVERSE_PROXY_PORT
    if component is not None:
        as_sidecar = (
            component.env(REVERSE_PROXY_AS_SIDECAR_ENV) or "true"
        ).lower() == "true"
        port = component.env(REVERSE_PROXY_PORT_ENV) or port
    return True, as_sidecar, port


def preprocess_powermax_controller(
    controller: WorkloadSet,
    cr: ContainerStorageModule,
    _: OperatorConfig,
):
    """Point the driver at the reverse proxy service when the proxy runs as
    its own deployment
    """
    enabled, as_sidecar, port = reverse_proxy_settings(cr)
    if not enabled or as_sidecar:
        return
    driver = find_container(controller.pod_spec, "driver")
    assert_config(driver is not None, "No driver container in powermax controller")
    log.debug2("Using reverse proxy service %s", REVERSE_PROXY_SERVICE_NAME)
    set_env(driver, PROXY_SERVICE_NAME_ENV, REVERSE_PROXY_SERVICE_NAME)
    set_env(driver, SIDECAR_PROXY_PORT_ENV, port)


## Prechecks ###################################################################


def check_secret(
    deploy_manager: DeployManagerBase, name: str, namespace: str
) -> Optional[dict]:
    """Make sure a secret required by the driver exists and return it"""
    success, secret = deploy_manager.get_object_current_state(
        kind="Secret", name=name, namespace=namespace, api_version="v1"
    )
    assert_cluster(success, f"Failed to look up secret {namespace}/{name}")
    assert_config(secret is not None, f"Secret {namespace}/{name} not found")
    return secret


def validate_zones(arrays: List[dict]):
    """Validate the zone settings of the PowerFlex arrays. Zones are optional
    but once one array has one, every array needs a name and they must all use
    the same label key.
    """
    zoned = [array for array in arrays if array.get("zone")]
    if not zoned:
        return
    assert_config(
        len(zoned) == len(arrays), "Zone must be set for all arrays or for none"
    )
    label_keys = set()
    for array in zoned:
        zone = array["zone"]
        array_id = array.get("systemID", "<unknown>")
        assert_config(zone.get("name"), f"Zone name missing for array {array_id}")
        assert_config(
            zone.get("labelKey"), f"Zone labelKey missing for array {array_id}"
        )
        label_keys.add(zone["labelKey"])
    assert_config(
        len(label_keys) == 1, f"Arrays use different zone label keys: {label_keys}"
    )


def precheck_powerflex(
    cr: ContainerStorageModule, deploy_manager: DeployManagerBase, secret: dict
):
    """Validate the zone configuration held in the PowerFlex config secret"""
    raw = (secret.get("data") or {}).get("config")
    if raw is None:
        raw = (secret.get("stringData") or {}).get("config")
    else:
        try:
            raw = base64.b64decode(raw).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as err:
            raise ConfigError(f"Unable to decode config of {cr}: {err}") from err
    assert_config(raw, f"No config key in the config secret of {cr}")
    try:
        arrays = yaml.safe_load(raw)
    except yaml.YAMLError as err:
        raise ConfigError(f"Unable to parse config of {cr}: {err}") from err
    assert_config(
        isinstance(arrays, list), f"Config secret of {cr} does not hold a list"
    )
    validate_zones(arrays)


## Profiles ####################################################################


@dataclass(frozen=True)
class DriverProfile:
    """Everything that differs between driver types"""

    name: str
    plugin_identifier: str
    config_params_volume_mount: str
    secret_suffix: str
    preprocess_controller: Callable = _noop
    preprocess_node: Callable = _noop
    precheck: Callable = _noop

    def config_secret_name(self, cr: ContainerStorageModule) -> str:
        return cr.driver.auth_secret or f"{cr.name}{self.secret_suffix}"

    def default_secret_name(self, cr: ContainerStorageModule) -> str:
        return f"{cr.name}{self.secret_suffix}"

    def run_prechecks(
        self, cr: ContainerStorageModule, deploy_manager: DeployManagerBase
    ):
        secret = check_secret(
            deploy_manager, self.config_secret_name(cr), cr.namespace
        )
        self.precheck(cr, deploy_manager, secret)


DRIVER_PROFILES: Dict[str, DriverProfile] = {
    profile.name: profile
    for profile in [
        DriverProfile(
            name="powerscale",
            plugin_identifier="powerscale",
            config_params_volume_mount="csi-isilon-config-params",
            secret_suffix="-creds",
        ),
        DriverProfile(
            name="powerflex",
            plugin_identifier="powerflex",
            config_params_volume_mount="vxflexos-config-params",
            secret_suffix="-config",
            preprocess_node=preprocess_powerflex_node,
            precheck=precheck_powerflex,
        ),
        DriverProfile(
            name="powermax",
            plugin_identifier="powermax",
            config_params_volume_mount="powermax-config-params",
            secret_suffix="-creds",
            preprocess_controller=preprocess_powermax_controller,
        ),
        DriverProfile(
            name="powerstore",
            plugin_identifier="powerstore",
            config_params_volume_mount="csi-powerstore-config-params",
            secret_suffix="-config",
        ),
        DriverProfile(
            name="unity",
            plugin_identifier="unity",
            config_params_volume_mount="unity-config-params",
            secret_suffix="-creds",
        ),
    ]
}


def get_driver_profile(driver_type: str) -> DriverProfile:
    profile = DRIVER_PROFILES.get(driver_type)
    if profile is None:
        raise ConfigError(f"Unsupported driver type [{driver_type}]")
    return profile
