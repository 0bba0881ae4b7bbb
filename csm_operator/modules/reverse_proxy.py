"""
The PowerMax reverse proxy, deployed either as a sidecar of the controller or
as its own service
"""

# Standard
from typing import Dict, List, Optional

# First Party
import alog

# Local
from ..deploy_manager import DeployManagerBase
from ..manifests.bundle import WorkloadSet
from ..manifests.drivers import (
    REVERSE_PROXY_COMPONENT,
    REVERSE_PROXY_MODULE,
    REVERSE_PROXY_PORT_ENV,
    SIDECAR_PROXY_PORT_ENV,
    reverse_proxy_settings,
)
from ..manifests.workloads import add_volume, set_env
from .base import (
    ModuleBase,
    ModuleContext,
    add_sidecar,
    check_object,
    driver_container,
    override_workloads,
)

log = alog.use_channel("RPROX")

TLS_SECRET_ENV = "X_CSI_REVPROXY_TLS_SECRET"
DEFAULT_TLS_SECRET = "csirevproxy-tls-secret"
CONFIG_MAP_ENV = "X_CSI_CONFIG_MAP_NAME"
DEFAULT_CONFIG_MAP = "powermax-reverseproxy-config"


class ReverseProxyModule(ModuleBase):
    """In sidecar mode the proxy container is added to the controller. In
    service mode the driver is pointed at the proxy service while resolving
    the bundle and the proxy deployment is applied on its own.
    """

    name = REVERSE_PROXY_MODULE
    supported_drivers = frozenset(["powermax"])

    @staticmethod
    def _replacements(ctx: ModuleContext) -> dict:
        _, _, port = reverse_proxy_settings(ctx.resource)
        return {
            f"<{TLS_SECRET_ENV}>": ctx.component_env(
                REVERSE_PROXY_COMPONENT, TLS_SECRET_ENV, DEFAULT_TLS_SECRET
            ),
            f"<{CONFIG_MAP_ENV}>": ctx.component_env(
                REVERSE_PROXY_COMPONENT, CONFIG_MAP_ENV, DEFAULT_CONFIG_MAP
            ),
            f"<{REVERSE_PROXY_PORT_ENV}>": port,
        }

    def precheck(self, ctx: ModuleContext, deploy_manager: DeployManagerBase):
        super().precheck(ctx, deploy_manager)
        replacements = self._replacements(ctx)
        namespace = ctx.resource.namespace
        check_object(
            deploy_manager, "Secret", replacements[f"<{TLS_SECRET_ENV}>"], namespace
        )
        check_object(
            deploy_manager,
            "ConfigMap",
            replacements[f"<{CONFIG_MAP_ENV}>"],
            namespace,
        )

    def inject_controller(self, controller: WorkloadSet, ctx: ModuleContext):
        _, as_sidecar, port = reverse_proxy_settings(ctx.resource)
        if not as_sidecar:
            return
        replacements = self._replacements(ctx)
        container = ctx.load("container.yaml", replacements)
        add_sidecar(controller, container, ctx.component(REVERSE_PROXY_COMPONENT))
        for volume in ctx.load("volumes.yaml", replacements) or []:
            add_volume(controller.pod_spec, volume)
        set_env(driver_container(controller), SIDECAR_PROXY_PORT_ENV, port)

    def component_objects(
        self, ctx: ModuleContext
    ) -> Dict[Optional[str], List[dict]]:
        _, as_sidecar, _ = reverse_proxy_settings(ctx.resource)
        if as_sidecar:
            return {}
        docs = ctx.documents("deployment.yaml", self._replacements(ctx))
        override_workloads(
            docs, ctx.component(REVERSE_PROXY_COMPONENT), REVERSE_PROXY_COMPONENT
        )
        return {REVERSE_PROXY_COMPONENT: docs}
