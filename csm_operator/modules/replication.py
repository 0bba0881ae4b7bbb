"""
Replication: the replicator sidecar in the driver controller and the
replication controller manager that runs in its own namespace
"""

# Standard
from typing import Dict, List, Optional, Tuple

# First Party
import alog

# Local
from ..manifests.bundle import WorkloadSet
from ..manifests.workloads import set_env
from .base import (
    ModuleBase,
    ModuleContext,
    add_rules,
    add_sidecar,
    driver_container,
    override_workloads,
)

log = alog.use_channel("REPLC")

SIDECAR_COMPONENT = "dell-csi-replicator"
MANAGER_COMPONENT = "dell-replication-controller-manager"
INIT_COMPONENT = "dell-replication-controller-init"

DEFAULT_REPLICATION_PREFIX = "replication.storage.dell.com"
CONTEXT_PREFIX_ENV = "X_CSI_REPLICATION_CONTEXT_PREFIX"
PREFIX_ENV = "X_CSI_REPLICATION_PREFIX"
CONTEXT_PREFIX_PLACEHOLDER = "<ReplicationContextPrefix>"
PREFIX_PLACEHOLDER = "<ReplicationPrefix>"

# Placeholders of the controller manager template and their defaults
MANAGER_SETTINGS = {
    "REPLICATION_CTRL_LOG_LEVEL": "debug",
    "REPLICATION_CTRL_REPLICAS": "1",
    "RETRY_INTERVAL_MIN": "1s",
    "RETRY_INTERVAL_MAX": "5m",
}
DEFAULT_MANAGER_IMAGE = "dellemc/dell-replication-controller:v1.8.0"
DEFAULT_INIT_IMAGE = "dellemc/dell-replication-init:v1.0.0"


class ReplicationModule(ModuleBase):
    """The replicator sidecar, its cluster role rules and the controller
    manager
    """

    name = "replication"
    supported_drivers = frozenset(["powerscale", "powerflex", "powermax", "powerstore"])

    @staticmethod
    def prefixes(ctx: ModuleContext) -> Tuple[str, str]:
        """The replication context prefix and prefix, overridable through the
        envs of the sidecar component
        """
        component = ctx.component(SIDECAR_COMPONENT)
        context_prefix = component.env(
            CONTEXT_PREFIX_ENV, ctx.profile.plugin_identifier
        )
        prefix = component.env(PREFIX_ENV, DEFAULT_REPLICATION_PREFIX)
        return context_prefix, prefix

    def inject_controller(self, controller: WorkloadSet, ctx: ModuleContext):
        context_prefix, prefix = self.prefixes(ctx)
        container = ctx.load(
            "container.yaml",
            {
                CONTEXT_PREFIX_PLACEHOLDER: context_prefix,
                PREFIX_PLACEHOLDER: prefix,
            },
        )
        add_sidecar(controller, container, ctx.component(SIDECAR_COMPONENT))

        driver = driver_container(controller)
        set_env(driver, CONTEXT_PREFIX_ENV, context_prefix)
        set_env(driver, PREFIX_ENV, prefix)

        add_rules(controller, ctx.load("rules.yaml"))

    def component_objects(
        self, ctx: ModuleContext
    ) -> Dict[Optional[str], List[dict]]:
        manager = ctx.component(MANAGER_COMPONENT)
        init = ctx.component(INIT_COMPONENT)
        replacements = {
            f"<{name}>": manager.env(name, default)
            for name, default in MANAGER_SETTINGS.items()
        }
        replacements["<REPLICATION_CONTROLLER_IMAGE>"] = (
            manager.image or DEFAULT_MANAGER_IMAGE
        )
        replacements["<REPLICATION_INIT_IMAGE>"] = init.image or DEFAULT_INIT_IMAGE
        docs = ctx.documents("controller.yaml", replacements)
        override_workloads(docs, manager, "manager")
        return {MANAGER_COMPONENT: docs}
