"""
The ManifestResolver renders the base bundle of a driver from its versioned
templates
"""

# Standard
from typing import Dict, Optional

# Third Party
import yaml

# First Party
import alog

# Local
from .. import constants
from ..deploy_manager.owner_references import set_owner_reference
from ..exceptions import ConfigNotFoundError, assert_config
from ..operator_config import OperatorConfig
from ..resource import ContainerStorageModule, ContainerTemplate
from .bundle import Bundle, WorkloadSet
from .drivers import DriverProfile, get_driver_profile
from .loader import TemplateLoader, modify_common, split_documents
from .workloads import (
    apply_container_overrides,
    find_container,
    iter_containers,
    remove_container,
    replace_envs,
)

log = alog.use_channel("RSOLV")

# Template files of a driver version
CONTROLLER_FILE = "controller.yaml"
NODE_FILE = "node.yaml"
DRIVER_REGISTRATION_FILE = "csidriver.yaml"
CONFIG_MAP_FILE = "driver-config-params.yaml"

# Sidecar container name to the key of its image in the k8s values file
SIDECAR_IMAGE_KEYS = {
    "attacher": "attacher",
    "provisioner": "provisioner",
    "snapshotter": "snapshotter",
    "resizer": "resizer",
    "registrar": "registrar",
    "external-health-monitor": "externalhealthmonitorcontroller",
}

# Sidecars that are only deployed when explicitly enabled
DEFAULT_OFF_SIDECARS = {"external-health-monitor", "sdc-monitor"}

# Config map data key and the log level env that overrides it
CONFIG_PARAMS_KEY = "driver-config-params.yaml"
LOG_LEVEL_ENV = "CSI_LOG_LEVEL"


class ManifestResolver:
    """Loads the templates of a driver type and version and renders them into
    a Bundle for one managed resource
    """

    def __init__(
        self,
        operator_config: OperatorConfig,
        loader: Optional[TemplateLoader] = None,
    ):
        self.operator_config = operator_config
        self.loader = loader or TemplateLoader(operator_config)

    ## Public ##################################################################

    def check_version(self, driver_type: str, config_version: str):
        """Make sure templates exist for the driver version

        Raises:
            ConfigNotFoundError if the version is not supported
        """
        if not self.loader.exists(
            constants.DRIVER_CONFIG_DIR, driver_type, config_version, CONTROLLER_FILE
        ):
            raise ConfigNotFoundError(
                f"Driver {driver_type} version {config_version} is not supported"
            )

    @alog.logged_function(log.debug2)
    def resolve(self, cr: ContainerStorageModule) -> Optional[Bundle]:
        """Render the base bundle for a resource

        Args:
            cr:  ContainerStorageModule
                The resource to render

        Returns:
            bundle:  Optional[Bundle]
                The rendered bundle or None if the resource has no driver
        """
        if not cr.driver_type:
            log.debug("No driver type set for %s. Skipping driver bundle", cr)
            return None
        profile = get_driver_profile(cr.driver_type)
        assert_config(cr.config_version, f"No driver configVersion set for {cr}")
        self.check_version(cr.driver_type, cr.config_version)
        images = self.loader.sidecar_images()

        controller = WorkloadSet.from_documents(
            self._documents(cr, CONTROLLER_FILE), "Deployment"
        )
        node = WorkloadSet.from_documents(self._documents(cr, NODE_FILE), "DaemonSet")
        registration = self._single_document(cr, DRIVER_REGISTRATION_FILE, "CSIDriver")
        config_map = self._single_document(cr, CONFIG_MAP_FILE, "ConfigMap")

        self._customize_controller(controller, cr, profile, images)
        self._customize_node(node, cr, profile, images)
        self._customize_registration(registration, cr)
        self._customize_config_map(config_map, cr)

        profile.preprocess_controller(controller, cr, self.operator_config)
        profile.preprocess_node(node, cr, self.operator_config)

        return Bundle(
            driver_registration=registration,
            config_map=config_map,
            controller=controller,
            node=node,
        )

    ## Implementation Details ##################################################

    def _documents(self, cr: ContainerStorageModule, file_name: str):
        content = self.loader.read(
            constants.DRIVER_CONFIG_DIR, cr.driver_type, cr.config_version, file_name
        )
        content = modify_common(content, cr.name, cr.namespace, cr.driver.common)
        return split_documents(content)

    def _single_document(self, cr: ContainerStorageModule, file_name: str, kind: str):
        docs = self._documents(cr, file_name)
        assert_config(
            len(docs) == 1 and docs[0]["kind"] == kind,
            f"Expected a single {kind} in {file_name}",
        )
        return docs[0]

    @staticmethod
    def _customize_pod(
        workload_set: WorkloadSet,
        cr: ContainerStorageModule,
        profile: DriverProfile,
        overrides: ContainerTemplate,
        images: Dict[str, str],
    ):
        """Apply the customisation shared by the controller and node pods"""
        pod_spec = workload_set.pod_spec
        workload_set.pod_metadata.setdefault("labels", {}).update(cr.pod_labels)

        if overrides.tolerations:
            pod_spec["tolerations"] = list(overrides.tolerations)
        if overrides.node_selector:
            pod_spec["nodeSelector"] = dict(overrides.node_selector)

        # Driver container
        driver = find_container(pod_spec, constants.DRIVER_CONTAINER_NAME)
        assert_config(driver is not None, "No driver container found in template")
        if cr.driver.common.image:
            driver["image"] = cr.driver.common.image
        if cr.driver.common.image_pull_policy:
            driver["imagePullPolicy"] = cr.driver.common.image_pull_policy
        replace_envs(driver, cr.driver.common.envs)
        replace_envs(driver, overrides.envs)

        # Sidecars
        for container in list(iter_containers(pod_spec)):
            name = container["name"]
            if name == constants.DRIVER_CONTAINER_NAME:
                continue
            side_car = cr.driver.side_car(name)
            enabled = side_car.enabled if side_car is not None else None
            if enabled is False or (enabled is None and name in DEFAULT_OFF_SIDECARS):
                log.debug2("Removing disabled sidecar %s", name)
                remove_container(pod_spec, name)
                continue
            if name in SIDECAR_IMAGE_KEYS and images.get(SIDECAR_IMAGE_KEYS[name]):
                container["image"] = images[SIDECAR_IMAGE_KEYS[name]]
            if side_car is not None:
                apply_container_overrides(container, side_car)

        # The config secret may be replaced by a user supplied one
        if cr.driver.auth_secret:
            default_secret = profile.default_secret_name(cr)
            for volume in pod_spec.get("volumes") or []:
                secret = volume.get("secret")
                if secret and secret.get("secretName") == default_secret:
                    secret["secretName"] = cr.driver.auth_secret

    def _customize_controller(
        self,
        controller: WorkloadSet,
        cr: ContainerStorageModule,
        profile: DriverProfile,
        images: Dict[str, str],
    ):
        controller.workload["spec"]["replicas"] = cr.driver.replicas
        self._customize_pod(controller, cr, profile, cr.driver.controller, images)
        set_owner_reference(
            controller.workload,
            cr.manifest,
            block_owner_deletion=not cr.driver.force_remove_driver,
        )

    def _customize_node(
        self,
        node: WorkloadSet,
        cr: ContainerStorageModule,
        profile: DriverProfile,
        images: Dict[str, str],
    ):
        pod_spec = node.pod_spec
        pod_spec["dnsPolicy"] = (
            cr.driver.dns_policy or constants.DEFAULT_NODE_DNS_POLICY
        )
        self._customize_pod(node, cr, profile, cr.driver.node, images)
        for init_template in cr.driver.init_containers:
            init_container = find_container(pod_spec, init_template.name, init=True)
            if init_container is not None:
                apply_container_overrides(init_container, init_template)

    @staticmethod
    def _customize_registration(registration: dict, cr: ContainerStorageModule):
        if cr.driver.fs_group_policy:
            registration.setdefault("spec", {})[
                "fsGroupPolicy"
            ] = cr.driver.fs_group_policy

    @staticmethod
    def _customize_config_map(config_map: dict, cr: ContainerStorageModule):
        log_level = cr.driver.common.env(LOG_LEVEL_ENV)
        if not log_level:
            return
        data = config_map.setdefault("data", {})
        params = yaml.safe_load(data.get(CONFIG_PARAMS_KEY) or "") or {}
        params[LOG_LEVEL_ENV] = log_level
        data[CONFIG_PARAMS_KEY] = yaml.safe_dump(params, sort_keys=True)
