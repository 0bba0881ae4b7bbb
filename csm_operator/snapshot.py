"""
The previously applied configuration of a managed resource. The snapshot is
stored in a single annotation as json and is only converted to and from text
at that boundary. Everything else works with the typed values below.
"""

# Standard
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional
import copy
import json

# First Party
import alog

# Local
from .constants import PREVIOUS_CONFIG_ANNOTATION_NAME
from .resource import ContainerStorageModule, ModuleSpec

log = alog.use_channel("SNAPS")

# Version of the annotation payload layout
SNAPSHOT_VERSION = 1


@dataclass(frozen=True)
class ModuleState:
    """The enablement of one module and its components at snapshot time"""

    name: str
    enabled: bool
    config_version: str = ""
    enabled_components: FrozenSet[str] = frozenset()
    disabled_components: FrozenSet[str] = frozenset()

    @classmethod
    def from_module(cls, module: ModuleSpec) -> "ModuleState":
        return cls(
            name=module.name,
            enabled=module.enabled,
            config_version=module.config_version,
            enabled_components=frozenset(
                comp.name for comp in module.components if comp.enabled is not False
            ),
            disabled_components=frozenset(
                comp.name for comp in module.components if comp.enabled is False
            ),
        )


@dataclass(frozen=True)
class ModuleDiff:
    """What was turned off between two snapshots"""

    disabled_modules: List[str] = field(default_factory=list)
    disabled_components: Dict[str, List[str]] = field(default_factory=dict)

    def __bool__(self):
        return bool(self.disabled_modules or self.disabled_components)


@dataclass(frozen=True)
class AppliedSnapshot:
    """The spec of a managed resource as of its last successful sync"""

    spec: dict
    version: int = SNAPSHOT_VERSION

    ## Construction ############################################################

    @classmethod
    def from_resource(cls, resource: ContainerStorageModule) -> "AppliedSnapshot":
        return cls(spec=copy.deepcopy(resource.spec))

    @classmethod
    def from_annotations(cls, annotations: dict) -> Optional["AppliedSnapshot"]:
        """Parse the snapshot annotation if present. Unreadable content is
        treated as a missing snapshot so that a corrupted annotation can never
        block a reconcile.
        """
        raw = (annotations or {}).get(PREVIOUS_CONFIG_ANNOTATION_NAME)
        if not raw:
            return None
        try:
            content = json.loads(raw)
        except ValueError as err:
            log.warning("Ignoring unreadable applied configuration: %s", err)
            return None
        if not isinstance(content, dict):
            log.warning("Ignoring applied configuration of type %s", type(content))
            return None

        # Payloads written before the version marker hold the whole resource
        if "snapshotVersion" not in content:
            return cls(spec=content.get("spec") or {}, version=0)
        return cls(
            spec=content.get("spec") or {},
            version=int(content["snapshotVersion"]),
        )

    def to_annotation(self) -> str:
        return json.dumps(
            {"snapshotVersion": self.version, "spec": self.spec}, sort_keys=True
        )

    ## Typed Views #############################################################

    def module_states(self) -> Dict[str, ModuleState]:
        modules = [ModuleSpec.from_dict(mod) for mod in self.spec.get("modules") or []]
        return {module.name: ModuleState.from_module(module) for module in modules}

    def enabled_modules(self) -> FrozenSet[str]:
        return frozenset(
            name for name, state in self.module_states().items() if state.enabled
        )

    def module_version(self, name: str) -> Optional[str]:
        state = self.module_states().get(name)
        return state.config_version if state else None

    @property
    def driver_config_version(self) -> str:
        return (self.spec.get("driver") or {}).get("configVersion", "")


def diff_modules(
    previous: Optional[AppliedSnapshot],
    current: ContainerStorageModule,
) -> ModuleDiff:
    """Find the modules and components that were enabled in the previous
    snapshot and are disabled now

    Args:
        previous:  Optional[AppliedSnapshot]
            The snapshot of the last successful sync, if any
        current:  ContainerStorageModule
            The resource being reconciled

    Returns:
        diff:  ModuleDiff
            The modules and per-module components to remove
    """
    if previous is None:
        return ModuleDiff()

    current_states = {
        module.name: ModuleState.from_module(module) for module in current.modules
    }
    disabled_modules = []
    disabled_components = {}
    for name, state in previous.module_states().items():
        if not state.enabled:
            continue
        now = current_states.get(name)
        if now is None or not now.enabled:
            disabled_modules.append(name)
            continue

        # Components that were not switched off before and are switched off
        # now. Unlisted components count as on.
        turned_off = sorted(now.disabled_components - state.disabled_components)
        if turned_off:
            disabled_components[name] = turned_off

    log.debug2(
        "Module diff for %s: modules=%s components=%s",
        current,
        disabled_modules,
        disabled_components,
    )
    return ModuleDiff(
        disabled_modules=disabled_modules, disabled_components=disabled_components
    )
