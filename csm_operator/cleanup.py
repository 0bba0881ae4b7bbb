"""
Removal of objects that belong to modules or module components which were
switched off since the last successful sync, and of everything a resource
owns when it is force removed
"""

# Standard
from typing import Iterable, List, Optional

# First Party
import alog

# Local
from .exceptions import CleanupError, ConfigError
from .manifests.bundle import Bundle
from .modules import MODULES
from .modules.pipeline import ModulePipeline
from .resource import ContainerStorageModule, ModuleSpec
from .snapshot import AppliedSnapshot, ModuleDiff, diff_modules
from .synchronizer import ResourceSynchronizer

log = alog.use_channel("CLEAN")


class DifferentialCleanup:
    """Renders the objects of disabled features as they were last applied and
    deletes them before the new bundle is synced
    """

    def __init__(self, pipeline: ModulePipeline, synchronizer: ResourceSynchronizer):
        self.pipeline = pipeline
        self.synchronizer = synchronizer

    ## Public ##################################################################

    @alog.logged_function(log.debug2)
    def cleanup(
        self,
        cr: ContainerStorageModule,
        snapshot: Optional[AppliedSnapshot],
    ) -> bool:
        """Delete the standalone objects of every module and component that
        was enabled in the snapshot and is disabled now

        Args:
            cr:  ContainerStorageModule
                The resource being reconciled
            snapshot:  Optional[AppliedSnapshot]
                The spec of the last successful sync

        Returns:
            changed:  bool
                Whether anything was deleted
        """
        diff = diff_modules(snapshot, cr)
        if not diff:
            log.debug2("Nothing to clean up for %s", cr)
            return False
        log.info(
            "Cleaning up disabled modules %s and components %s of %s",
            diff.disabled_modules,
            diff.disabled_components,
            cr,
        )
        objects = self.disabled_objects(cr.with_spec(snapshot.spec), diff)
        return self.synchronizer.delete_objects(objects, tolerate_extensions=True)

    def disabled_objects(
        self, previous: ContainerStorageModule, diff: ModuleDiff
    ) -> List[dict]:
        """Render the objects that a module diff removes

        Args:
            previous:  ContainerStorageModule
                The resource as it was last applied
            diff:  ModuleDiff
                The modules and components that were switched off

        Returns:
            objects:  List[dict]
                The objects to delete in apply order
        """
        objects = []
        for name in diff.disabled_modules:
            objects.extend(self._render(previous, name))
        for name, components in diff.disabled_components.items():
            objects.extend(self._render(previous, name, components))
        return objects

    @alog.logged_function(log.debug2)
    def remove_all(
        self,
        cr: ContainerStorageModule,
        bundle: Optional[Bundle],
        include_node: bool = True,
    ) -> bool:
        """Delete the driver bundle and the standalone objects of every
        enabled module. Used when the driver is force removed.
        """
        objects = bundle.ordered_objects(include_node=include_node) if bundle else []
        for spec in cr.enabled_modules():
            objects.extend(self._render(cr, spec.name))
        return self.synchronizer.delete_objects(objects)

    @alog.logged_function(log.debug2)
    def remove_modules(
        self, cr: ContainerStorageModule, specs: Iterable[ModuleSpec]
    ) -> bool:
        """Delete the standalone objects of the given modules"""
        objects = []
        for spec in specs:
            log.debug("Force removing module %s of %s", spec.name, cr)
            objects.extend(self._render(cr, spec.name))
        return self.synchronizer.delete_objects(objects)

    ## Implementation Details ##################################################

    def _render(
        self,
        cr: ContainerStorageModule,
        module_name: str,
        components: Optional[List[str]] = None,
    ) -> List[dict]:
        """Render the standalone objects of one module of a resource. With a
        list of components only the objects of those components are rendered.
        """
        module = MODULES.get(module_name)
        spec = cr.get_module(module_name)
        if module is None or spec is None:
            log.warning("Unable to render unknown module %s of %s", module_name, cr)
            return []
        try:
            ctx = module.context(
                cr, spec, self.pipeline.operator_config, self.pipeline.loader
            )
            if components is None:
                return module.standalone_objects(ctx)
            rendered = module.component_objects(ctx)
        except ConfigError as err:
            log.warning(
                "Unable to render objects of module %s for %s: %s",
                module_name,
                cr,
                err,
            )
            raise CleanupError(module_name, str(err)) from err
        objects = []
        for component in components:
            objects.extend(rendered.get(component, []))
        return objects
