"""
Typed views of the managed custom resources. The views are built from the raw
manifest once per reconcile and never written back; all writes go through the
deploy manager using the raw manifest.
"""

# Standard
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set
import copy

# Local
from . import constants

# Alternate driver type names accepted in the spec
DRIVER_TYPE_ALIASES = {
    "isilon": "powerscale",
    "vxflexos": "powerflex",
}


def normalize_driver_type(driver_type: str) -> str:
    """Map a driver type from the spec onto its canonical name"""
    driver_type = (driver_type or "").lower()
    return DRIVER_TYPE_ALIASES.get(driver_type, driver_type)


def _as_bool(value) -> Optional[bool]:
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


## Spec Sections ###############################################################


@dataclass
class ContainerTemplate:
    """Overrides for a single container, also used for module components"""

    name: str = ""
    enabled: Optional[bool] = None
    image: str = ""
    image_pull_policy: str = ""
    args: List[str] = field(default_factory=list)
    envs: List[dict] = field(default_factory=list)
    tolerations: List[dict] = field(default_factory=list)
    node_selector: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, content: Optional[dict]) -> "ContainerTemplate":
        content = content or {}
        return cls(
            name=content.get("name", ""),
            enabled=_as_bool(content.get("enabled")),
            image=content.get("image", ""),
            image_pull_policy=content.get("imagePullPolicy", ""),
            args=list(content.get("args") or []),
            envs=[dict(env) for env in content.get("envs") or []],
            tolerations=list(content.get("tolerations") or []),
            node_selector=dict(content.get("nodeSelector") or {}),
        )

    def env(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Get the value of one of the configured env vars"""
        for env in self.envs:
            if env.get("name") == name:
                return str(env.get("value", ""))
        return default


@dataclass
class ModuleSpec:
    """One entry of the module list"""

    name: str
    enabled: bool = False
    config_version: str = ""
    force_remove: bool = False
    components: List[ContainerTemplate] = field(default_factory=list)

    @classmethod
    def from_dict(cls, content: dict) -> "ModuleSpec":
        return cls(
            name=content.get("name", ""),
            enabled=bool(_as_bool(content.get("enabled"))),
            config_version=content.get("configVersion", ""),
            force_remove=bool(_as_bool(content.get("forceRemoveModule"))),
            components=[
                ContainerTemplate.from_dict(comp)
                for comp in content.get("components") or []
            ],
        )

    def component(self, name: str) -> Optional[ContainerTemplate]:
        for comp in self.components:
            if comp.name == name:
                return comp
        return None

    def component_enabled(self, name: str, default: bool = True) -> bool:
        """A component is enabled unless it is listed with enabled: false"""
        comp = self.component(name)
        if comp is None or comp.enabled is None:
            return default
        return comp.enabled


@dataclass
class DriverSpec:
    """The driver section of a ContainerStorageModule"""

    csi_driver_type: str = ""
    config_version: str = ""
    replicas: int = 1
    dns_policy: str = ""
    auth_secret: str = ""
    fs_group_policy: str = ""
    force_remove_driver: bool = False
    common: ContainerTemplate = field(default_factory=ContainerTemplate)
    controller: ContainerTemplate = field(default_factory=ContainerTemplate)
    node: ContainerTemplate = field(default_factory=ContainerTemplate)
    side_cars: List[ContainerTemplate] = field(default_factory=list)
    init_containers: List[ContainerTemplate] = field(default_factory=list)

    @classmethod
    def from_dict(cls, content: Optional[dict]) -> "DriverSpec":
        content = content or {}
        return cls(
            csi_driver_type=normalize_driver_type(content.get("csiDriverType", "")),
            config_version=content.get("configVersion", ""),
            replicas=int(content.get("replicas", 1)),
            dns_policy=content.get("dnsPolicy", ""),
            auth_secret=content.get("authSecret", ""),
            fs_group_policy=content.get("fsGroupPolicy", ""),
            force_remove_driver=bool(_as_bool(content.get("forceRemoveDriver"))),
            common=ContainerTemplate.from_dict(content.get("common")),
            controller=ContainerTemplate.from_dict(content.get("controller")),
            node=ContainerTemplate.from_dict(content.get("node")),
            side_cars=[
                ContainerTemplate.from_dict(sc) for sc in content.get("sideCars") or []
            ],
            init_containers=[
                ContainerTemplate.from_dict(ic)
                for ic in content.get("initContainers") or []
            ],
        )

    def side_car(self, name: str) -> Optional[ContainerTemplate]:
        for side_car in self.side_cars:
            if side_car.name == name:
                return side_car
        return None


## Managed Resources ###########################################################


class ManagedResource:
    """Shared identity helpers for both managed kinds"""

    def __init__(self, manifest: dict):
        self.manifest = manifest
        self.metadata = manifest.get("metadata", {})
        self.spec = manifest.get("spec") or {}

    @property
    def kind(self) -> str:
        return self.manifest.get("kind")

    @property
    def api_version(self) -> str:
        return self.manifest.get("apiVersion")

    @property
    def name(self) -> str:
        return self.metadata.get("name")

    @property
    def namespace(self) -> str:
        return self.metadata.get("namespace")

    @property
    def uid(self) -> Optional[str]:
        return self.metadata.get("uid")

    @property
    def annotations(self) -> Dict[str, str]:
        return self.metadata.get("annotations") or {}

    @property
    def finalizers(self) -> List[str]:
        return self.metadata.get("finalizers") or []

    @property
    def status(self) -> dict:
        return self.manifest.get("status") or {}

    @property
    def is_being_deleted(self) -> bool:
        return bool(self.metadata.get("deletionTimestamp"))

    def __str__(self):
        return f"{self.kind}/{self.namespace}/{self.name}"


class ContainerStorageModule(ManagedResource):
    """View of the primary managed resource"""

    def __init__(self, manifest: dict):
        super().__init__(manifest)
        self.driver = DriverSpec.from_dict(self.spec.get("driver"))
        self.modules = [
            ModuleSpec.from_dict(mod) for mod in self.spec.get("modules") or []
        ]

    @property
    def driver_type(self) -> str:
        return self.driver.csi_driver_type

    @property
    def config_version(self) -> str:
        return self.driver.config_version

    def get_module(self, name: str) -> Optional[ModuleSpec]:
        for module in self.modules:
            if module.name == name:
                return module
        return None

    def module_enabled(self, name: str) -> bool:
        module = self.get_module(name)
        return module is not None and module.enabled

    def enabled_modules(self) -> List[ModuleSpec]:
        return [module for module in self.modules if module.enabled]

    def enabled_module_names(self) -> Set[str]:
        return {module.name for module in self.enabled_modules()}

    def with_spec(self, spec: dict) -> "ContainerStorageModule":
        """Make a view of this resource with a different spec, used to render
        objects as they were applied for an earlier spec
        """
        manifest = copy.deepcopy(self.manifest)
        manifest["spec"] = copy.deepcopy(spec)
        return ContainerStorageModule(manifest)

    @property
    def pod_labels(self) -> Dict[str, str]:
        """Labels that tie workload pods back to this resource"""
        return {
            constants.CSM_LABEL_NAME: self.name,
            constants.CSM_NAMESPACE_LABEL_NAME: self.namespace,
        }


@dataclass
class ClientSpec:
    """The client section of an ApexConnectivityClient"""

    csm_client_type: str = ""
    config_version: str = ""
    force_remove_client: bool = False
    common: ContainerTemplate = field(default_factory=ContainerTemplate)

    @classmethod
    def from_dict(cls, content: Optional[dict]) -> "ClientSpec":
        content = content or {}
        return cls(
            csm_client_type=content.get("csmClientType", ""),
            config_version=content.get("configVersion", ""),
            force_remove_client=bool(_as_bool(content.get("forceRemoveClient"))),
            common=ContainerTemplate.from_dict(content.get("common")),
        )


class ApexConnectivityClient(ManagedResource):
    """View of the secondary client resource"""

    def __init__(self, manifest: dict):
        super().__init__(manifest)
        self.client = ClientSpec.from_dict(self.spec.get("client"))

    @property
    def config_version(self) -> str:
        return self.client.config_version

    @property
    def pod_labels(self) -> Dict[str, str]:
        return {
            constants.ACC_LABEL_NAME: self.name,
            constants.ACC_NAMESPACE_LABEL_NAME: self.namespace,
        }
