"""
Observability: topology, the otel collector and the metrics exporter of the
driver, all deployed on their own in the karavi namespace
"""

# Standard
from typing import Dict, List, Optional

# First Party
import alog

# Local
from .base import ModuleBase, ModuleContext, override_workloads

log = alog.use_channel("OBSRV")

TOPOLOGY_COMPONENT = "topology"
OTEL_COLLECTOR_COMPONENT = "otel-collector"
METRICS_COMPONENT_PREFIX = "metrics-"

COMPONENT_PLACEHOLDER = "<COMPONENT>"
TOPOLOGY_LOG_LEVEL = "TOPOLOGY_LOG_LEVEL"
METRICS_LOG_LEVEL = "METRICS_LOG_LEVEL"
COLLECTOR_ADDRESS = "COLLECTOR_ADDRESS"
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_COLLECTOR_ADDRESS = "otel-collector:55680"


def metrics_component(driver_type: str) -> str:
    return f"{METRICS_COMPONENT_PREFIX}{driver_type}"


class ObservabilityModule(ModuleBase):
    """Each component is rendered from its own template so that a single
    component can be removed while the rest stay in place
    """

    name = "observability"
    supported_drivers = frozenset(["powerscale", "powerflex", "powermax"])

    def component_objects(
        self, ctx: ModuleContext
    ) -> Dict[Optional[str], List[dict]]:
        driver_type = ctx.resource.driver_type
        objects = {None: ctx.documents("selfsigned-issuer.yaml")}

        topology = ctx.documents(
            "karavi-topology.yaml",
            {
                f"<{TOPOLOGY_LOG_LEVEL}>": ctx.component_env(
                    TOPOLOGY_COMPONENT, "LOG_LEVEL", DEFAULT_LOG_LEVEL
                )
            },
        )
        override_workloads(
            topology, ctx.component(TOPOLOGY_COMPONENT), "karavi-topology"
        )
        objects[TOPOLOGY_COMPONENT] = topology + self._certificate(
            ctx, "karavi-topology"
        )

        collector = ctx.documents("karavi-otel-collector.yaml")
        override_workloads(
            collector,
            ctx.component(OTEL_COLLECTOR_COMPONENT),
            OTEL_COLLECTOR_COMPONENT,
        )
        objects[OTEL_COLLECTOR_COMPONENT] = collector + self._certificate(
            ctx, OTEL_COLLECTOR_COMPONENT
        )

        metrics_name = metrics_component(driver_type)
        metrics = ctx.documents(
            f"karavi-{metrics_name}.yaml",
            {
                f"<{METRICS_LOG_LEVEL}>": ctx.component_env(
                    metrics_name, "LOG_LEVEL", DEFAULT_LOG_LEVEL
                ),
                f"<{COLLECTOR_ADDRESS}>": ctx.component_env(
                    metrics_name, COLLECTOR_ADDRESS, DEFAULT_COLLECTOR_ADDRESS
                ),
            },
        )
        override_workloads(
            metrics, ctx.component(metrics_name), f"karavi-{metrics_name}"
        )
        objects[metrics_name] = metrics
        return objects

    @staticmethod
    def _certificate(ctx: ModuleContext, service_name: str) -> List[dict]:
        return ctx.documents("certificate.yaml", {COMPONENT_PLACEHOLDER: service_name})
