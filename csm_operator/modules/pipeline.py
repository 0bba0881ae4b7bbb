"""
The ModulePipeline layers the enabled modules of a resource onto its driver
bundle and collects the objects that modules deploy on their own
"""

# Standard
from typing import List, Optional, Tuple
import copy

# First Party
import alog

# Local
from ..deploy_manager import DeployManagerBase
from ..exceptions import ModuleInjectionError, assert_config
from ..manifests.bundle import Bundle
from ..manifests.loader import TemplateLoader
from ..operator_config import OperatorConfig
from ..resource import ContainerStorageModule
from . import MODULES, get_module
from .base import ModuleBase, ModuleContext

log = alog.use_channel("PIPLN")


class ModulePipeline:
    """Runs module prechecks, transforms and standalone rendering in the order
    the modules are listed in the resource spec
    """

    def __init__(
        self,
        operator_config: OperatorConfig,
        loader: Optional[TemplateLoader] = None,
    ):
        self.operator_config = operator_config
        self.loader = loader or TemplateLoader(operator_config)

    ## Public ##################################################################

    def contexts(
        self, cr: ContainerStorageModule, enabled_only: bool = True
    ) -> List[Tuple[ModuleBase, ModuleContext]]:
        """Build the module and context pairs for a resource

        Args:
            cr:  ContainerStorageModule
                The resource to build the contexts for
            enabled_only:  bool
                Skip modules that are not enabled

        Returns:
            contexts:  List[Tuple[ModuleBase, ModuleContext]]
                The modules in spec order with their contexts
        """
        return [
            (module, module.context(cr, spec, self.operator_config, self.loader))
            for module, spec in self._modules(cr, enabled_only)
        ]

    @alog.logged_function(log.debug2)
    def run_prechecks(
        self, cr: ContainerStorageModule, deploy_manager: DeployManagerBase
    ):
        """Validate the module combination and every enabled module

        Raises:
            ConfigError if any enabled module can not be installed
        """
        self.validate(cr)
        for module, ctx in self.contexts(cr):
            log.debug2("Running prechecks for %s", module)
            module.precheck(ctx, deploy_manager)

    @staticmethod
    def validate(cr: ContainerStorageModule):
        """Validate the module list itself: known names and no duplicates"""
        seen = set()
        for spec in cr.modules:
            get_module(spec.name)
            assert_config(
                spec.name not in seen, f"Module {spec.name} is listed more than once"
            )
            seen.add(spec.name)

    @alog.logged_function(log.debug2)
    def inject(self, bundle: Bundle, cr: ContainerStorageModule) -> Bundle:
        """Apply the transforms of every enabled module to a copy of the bundle

        Args:
            bundle:  Bundle
                The base bundle from the resolver. It is never modified.
            cr:  ContainerStorageModule
                The resource being reconciled

        Returns:
            bundle:  Bundle
                The composed bundle
        """
        composed = copy.deepcopy(bundle)
        for module, spec in self._modules(cr, enabled_only=True):
            try:
                ctx = module.context(cr, spec, self.operator_config, self.loader)
                module.inject_controller(composed.controller, ctx)
                if not module.skips_node_workload:
                    module.inject_node(composed.node, ctx)
            except Exception as err:  # pylint: disable=broad-except
                log.warning("Failed to inject %s: %s", module, err)
                raise ModuleInjectionError(module.name, str(err)) from err
            log.debug2("Injected %s", module)
        return composed

    def standalone_objects(
        self, cr: ContainerStorageModule
    ) -> List[Tuple[str, List[dict]]]:
        """Render the standalone objects of every enabled module"""
        rendered = []
        for module, spec in self._modules(cr, enabled_only=True):
            try:
                ctx = module.context(cr, spec, self.operator_config, self.loader)
                objects = module.standalone_objects(ctx)
            except Exception as err:  # pylint: disable=broad-except
                raise ModuleInjectionError(module.name, str(err)) from err
            if objects:
                rendered.append((module.name, objects))
        return rendered

    @staticmethod
    def skips_node_workload(cr: ContainerStorageModule) -> bool:
        """Whether an enabled module supplies its own workload in place of the
        driver node workload
        """
        return any(
            MODULES[spec.name].skips_node_workload
            for spec in cr.enabled_modules()
            if spec.name in MODULES
        )

    ## Implementation Details ##################################################

    @staticmethod
    def _modules(cr: ContainerStorageModule, enabled_only: bool):
        for spec in cr.modules:
            if enabled_only and not spec.enabled:
                continue
            yield get_module(spec.name), spec
