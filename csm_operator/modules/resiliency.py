"""
Resiliency: the podmon sidecar in the driver controller and node
"""

# First Party
import alog

# Local
from ..manifests.bundle import WorkloadSet
from ..manifests.workloads import set_env
from .base import ModuleBase, ModuleContext, add_rules, add_sidecar, driver_container

log = alog.use_channel("RESIL")

CONTROLLER_COMPONENT = "podmon-controller"
NODE_COMPONENT = "podmon-node"

POLL_RATE_PLACEHOLDER = "<PodmonArrayConnectivityPollRate>"
POLL_RATE_ENV = "X_CSI_PODMON_ARRAY_CONNECTIVITY_POLL_RATE"
DEFAULT_POLL_RATE = "15"
API_PORT_ENV = "X_CSI_PODMON_API_PORT"
DEFAULT_API_PORT = "8083"
PODMON_ENABLED_ENV = "X_CSI_PODMON_ENABLED"


class ResiliencyModule(ModuleBase):
    """Adds podmon to both workloads together with the extra RBAC rules it
    needs and tells the node driver how to reach it
    """

    name = "resiliency"
    supported_drivers = frozenset(["powerscale", "powerflex", "powermax", "powerstore"])

    def inject_controller(self, controller: WorkloadSet, ctx: ModuleContext):
        self._inject(controller, ctx, "controller", CONTROLLER_COMPONENT)

    def inject_node(self, node: WorkloadSet, ctx: ModuleContext):
        poll_rate, api_port = self._inject(node, ctx, "node", NODE_COMPONENT)
        driver = driver_container(node)
        set_env(driver, PODMON_ENABLED_ENV, "true")
        set_env(driver, API_PORT_ENV, api_port)
        set_env(driver, POLL_RATE_ENV, poll_rate)

    @staticmethod
    def _inject(
        workload_set: WorkloadSet,
        ctx: ModuleContext,
        mode: str,
        component_name: str,
    ):
        component = ctx.component(component_name)
        poll_rate = component.env(POLL_RATE_ENV, DEFAULT_POLL_RATE)
        api_port = component.env(API_PORT_ENV, DEFAULT_API_PORT)
        container = ctx.load(
            f"container-{mode}.yaml", {POLL_RATE_PLACEHOLDER: poll_rate}
        )
        add_sidecar(workload_set, container, component)
        add_rules(workload_set, ctx.load(f"{mode}-rules.yaml"))
        log.debug2("Injected podmon into %s workload", mode)
        return poll_rate, api_port
