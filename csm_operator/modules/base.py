"""
Base class for the optional modules that are layered onto a driver bundle
"""

# Standard
from typing import Any, Dict, FrozenSet, List, Optional
import abc

# Third Party
import yaml

# First Party
import alog

# Local
from .. import constants
from ..deploy_manager import DeployManagerBase
from ..exceptions import (
    ConfigError,
    ConfigNotFoundError,
    assert_cluster,
    assert_config,
)
from ..manifests.bundle import WorkloadSet
from ..manifests.drivers import DriverProfile, get_driver_profile
from ..manifests.loader import (
    TemplateLoader,
    modify_common,
    replace_all,
    split_documents,
)
from ..manifests.workloads import (
    add_container,
    apply_container_overrides,
    find_container,
    iter_containers,
)
from ..operator_config import OperatorConfig
from ..resource import ContainerStorageModule, ContainerTemplate, ModuleSpec
from ..utils import abstractclassproperty

log = alog.use_channel("MODUL")

# Kinds whose pod template can carry component overrides
WORKLOAD_KINDS = ["Deployment", "DaemonSet", "StatefulSet"]


def default_module_version(
    loader: TemplateLoader,
    driver_type: str,
    driver_version: str,
    module_name: str,
) -> str:
    """Look up the module version that ships with a driver version

    Args:
        loader:  TemplateLoader
            The loader over the operator config tree
        driver_type:  str
            The canonical driver type
        driver_version:  str
            The configVersion of the driver
        module_name:  str
            The name of the module

    Returns:
        version:  str
            The default configVersion of the module
    """
    values = (
        loader.read_yaml(
            constants.MODULE_CONFIG_DIR,
            constants.COMMON_DIR,
            constants.MODULE_VERSION_VALUES_FILE,
        )
        or {}
    )
    version = ((values.get(driver_type) or {}).get(driver_version) or {}).get(
        module_name
    )
    if not version:
        raise ConfigError(
            f"No default version of module {module_name} for driver "
            f"{driver_type} {driver_version}. Set configVersion on the module."
        )
    return version


class ModuleContext:
    """Everything a module needs to render its templates for one resource"""

    def __init__(
        self,
        resource: ContainerStorageModule,
        spec: ModuleSpec,
        operator_config: OperatorConfig,
        loader: TemplateLoader,
        config_dir: Optional[str] = None,
    ):
        self.resource = resource
        self.spec = spec
        self.operator_config = operator_config
        self.loader = loader
        self.config_dir = config_dir or spec.name
        self.profile: Optional[DriverProfile] = (
            get_driver_profile(resource.driver_type) if resource.driver_type else None
        )
        if spec.config_version:
            self.version = spec.config_version
        else:
            assert_config(
                resource.driver_type,
                f"Module {spec.name} needs a configVersion when no driver is set",
            )
            self.version = default_module_version(
                loader, resource.driver_type, resource.config_version, spec.name
            )

    def __str__(self):
        return f"ModuleContext({self.spec.name}/{self.version}, {self.resource})"

    def component(self, name: str) -> ContainerTemplate:
        """Get the settings of a component, empty if it is not listed"""
        return self.spec.component(name) or ContainerTemplate(name=name)

    def component_env(self, component: str, env: str, default: str = "") -> str:
        return self.component(component).env(env, default)

    def has_version(self) -> bool:
        return self.version in self.loader.versions(
            constants.MODULE_CONFIG_DIR, self.config_dir
        )

    def render(self, file_name: str, replacements: Optional[dict] = None) -> str:
        """Read a template of the module version and fill in its placeholders

        Args:
            file_name:  str
                Name of the file in the module version directory
            replacements:  Optional[dict]
                Module specific placeholders and their values

        Returns:
            content:  str
                The rendered template text
        """
        content = self.loader.read(
            constants.MODULE_CONFIG_DIR, self.config_dir, self.version, file_name
        )
        resource = self.resource
        content = modify_common(
            content, resource.name, resource.namespace, resource.driver.common
        )
        common = {
            constants.NAMESPACE_PLACEHOLDER: resource.namespace,
            constants.NAME_PLACEHOLDER: resource.name,
        }
        if self.profile is not None:
            common[constants.PLUGIN_IDENTIFIER_PLACEHOLDER] = (
                self.profile.plugin_identifier
            )
            common[constants.CONFIG_PARAMS_VOLUME_MOUNT_PLACEHOLDER] = (
                self.profile.config_params_volume_mount
            )
        content = replace_all(content, common)
        return replace_all(content, replacements or {})

    def load(self, file_name: str, replacements: Optional[dict] = None) -> Any:
        """Render a template that holds a single yaml value (a container, a
        list of volumes or rules)
        """
        try:
            return yaml.safe_load(self.render(file_name, replacements))
        except yaml.YAMLError as err:
            raise ConfigNotFoundError(f"Unable to parse {file_name}: {err}") from err

    def documents(
        self, file_name: str, replacements: Optional[dict] = None
    ) -> List[dict]:
        return split_documents(self.render(file_name, replacements))


## Shared Transforms ###########################################################


def add_sidecar(
    workload_set: WorkloadSet,
    container: dict,
    component: Optional[ContainerTemplate] = None,
):
    """Add a module container to a workload, applying the overrides from its
    component entry in the spec
    """
    assert_config(
        isinstance(container, dict) and container.get("name"),
        f"Invalid sidecar template: {container}",
    )
    if component is not None:
        apply_container_overrides(container, component)
    log.debug3("Adding sidecar %s", container["name"])
    add_container(workload_set.pod_spec, container)


def add_rules(workload_set: WorkloadSet, rules: List[dict]):
    """Accumulate policy rules onto the ClusterRole of a workload. Rules that
    are already present are not added twice.
    """
    cluster_role = workload_set.cluster_role
    assert_config(cluster_role is not None, "No ClusterRole found for workload")
    current = cluster_role.setdefault("rules", [])
    for rule in rules or []:
        if rule not in current:
            current.append(rule)


def add_workload_annotation(workload_set: WorkloadSet, key: str, value: str):
    workload_set.workload.setdefault("metadata", {}).setdefault("annotations", {})[
        key
    ] = value


def driver_container(workload_set: WorkloadSet) -> dict:
    container = find_container(workload_set.pod_spec, constants.DRIVER_CONTAINER_NAME)
    assert_config(container is not None, "No driver container found in workload")
    return container


def override_workloads(
    docs: List[dict],
    component: ContainerTemplate,
    container_name: Optional[str] = None,
):
    """Apply component overrides to the named (or first) container of every
    workload in a list of standalone objects
    """
    for doc in docs:
        if doc.get("kind") not in WORKLOAD_KINDS:
            continue
        pod_spec = doc["spec"]["template"]["spec"]
        container = (
            find_container(pod_spec, container_name)
            if container_name
            else next(iter_containers(pod_spec), None)
        )
        if container is not None:
            apply_container_overrides(container, component)


def check_object(
    deploy_manager: DeployManagerBase,
    kind: str,
    name: str,
    namespace: str,
    api_version: str = "v1",
):
    """Make sure an object that a module depends on exists"""
    success, found = deploy_manager.get_object_current_state(
        kind=kind, name=name, namespace=namespace, api_version=api_version
    )
    assert_cluster(success, f"Failed to look up {kind} {namespace}/{name}")
    assert_config(found is not None, f"Failed to find {kind} {namespace}/{name}")


## ModuleBase ##################################################################


class ModuleBase(abc.ABC):
    """A module is a set of transforms over the driver bundle plus any objects
    it deploys on its own. All transforms must be idempotent and work on the
    bundle they are given without relying on other modules.
    """

    @abstractclassproperty
    def name(self):
        """All modules must implement a name class attribute"""

    # Directory of the module under moduleconfig if not the module name
    config_dir: Optional[str] = None

    # Canonical driver types the module works with. None means any driver or
    # no driver at all.
    supported_drivers: Optional[FrozenSet[str]] = None

    # Whether a configVersion change across major versions is forbidden
    major_versioned: bool = False

    # Whether the module replaces the node workload of the driver
    skips_node_workload: bool = False

    def __str__(self):
        return f"Module({self.name})"

    def context(
        self,
        resource: ContainerStorageModule,
        spec: ModuleSpec,
        operator_config: OperatorConfig,
        loader: TemplateLoader,
    ) -> ModuleContext:
        return ModuleContext(
            resource=resource,
            spec=spec,
            operator_config=operator_config,
            loader=loader,
            config_dir=self.config_dir or self.name,
        )

    ## Base Class Interface ####################################################
    #
    # These methods MAY be implemented by children, but contain default
    # implementations that are appropriate for simple cases.
    ##

    def precheck(
        self,
        ctx: ModuleContext,
        deploy_manager: DeployManagerBase,  # pylint: disable=unused-argument
    ):
        """Validate the module settings before anything is rendered

        Args:
            ctx:  ModuleContext
                The module context for the resource
            deploy_manager:  DeployManagerBase
                Used to look up objects the module depends on

        Raises:
            ConfigError if the module can not be installed as configured
        """
        driver_type = ctx.resource.driver_type
        if self.supported_drivers is not None:
            assert_config(
                driver_type in self.supported_drivers,
                f"Module {self.name} does not support driver [{driver_type}]",
            )
        if not ctx.has_version():
            supported = ", ".join(
                ctx.loader.versions(constants.MODULE_CONFIG_DIR, ctx.config_dir)
            )
            raise ConfigNotFoundError(
                f"Module {self.name} does not have version {ctx.version}. "
                f"Supported versions: {supported}"
            )

    def inject_controller(self, controller: WorkloadSet, ctx: ModuleContext):
        """Mutate the controller workload and its RBAC in place"""

    def inject_node(self, node: WorkloadSet, ctx: ModuleContext):
        """Mutate the node workload and its RBAC in place"""

    def component_objects(
        self, ctx: ModuleContext  # pylint: disable=unused-argument
    ) -> Dict[Optional[str], List[dict]]:
        """The objects the module deploys on its own, keyed by the component
        they belong to. Objects under the None key belong to the module as a
        whole.
        """
        return {}

    ## Public ##################################################################

    def standalone_objects(self, ctx: ModuleContext) -> List[dict]:
        """All standalone objects of the module's enabled components"""
        objects = []
        for component, docs in self.component_objects(ctx).items():
            if component is None or ctx.spec.component_enabled(component):
                objects.extend(docs)
            else:
                log.debug3("Skipping disabled component %s of %s", component, self)
        return objects
