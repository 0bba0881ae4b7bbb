"""
Application mobility: the mobility controller and the velero backup server
"""

# Standard
from typing import Dict, List, Optional

# First Party
import alog

# Local
from ..deploy_manager import DeployManagerBase
from .base import ModuleBase, ModuleContext, check_object, override_workloads

log = alog.use_channel("APMOB")

CONTROLLER_COMPONENT = "application-mobility-controller-manager"
VELERO_COMPONENT = "velero"

REPLICAS_ENV = "APPLICATION_MOBILITY_REPLICAS"
CREDENTIALS_SECRET_ENV = "VELERO_CREDENTIALS_SECRET"
BUCKET_ENV = "BACKUP_STORAGE_BUCKET"
REGION_ENV = "BACKUP_STORAGE_REGION"
DEFAULT_BUCKET = "velero"
DEFAULT_REGION = "us-east-1"


def credentials_secret(ctx: ModuleContext) -> str:
    return ctx.component_env(
        VELERO_COMPONENT, CREDENTIALS_SECRET_ENV, f"{ctx.resource.name}-cloud-creds"
    )


class ApplicationMobilityModule(ModuleBase):
    """Standalone controller and velero deployments next to the driver"""

    name = "application-mobility"
    supported_drivers = frozenset(
        ["powerscale", "powerflex", "powermax", "powerstore", "unity"]
    )

    def precheck(self, ctx: ModuleContext, deploy_manager: DeployManagerBase):
        super().precheck(ctx, deploy_manager)
        if ctx.spec.component_enabled(VELERO_COMPONENT):
            check_object(
                deploy_manager,
                "Secret",
                credentials_secret(ctx),
                ctx.resource.namespace,
            )

    def component_objects(
        self, ctx: ModuleContext
    ) -> Dict[Optional[str], List[dict]]:
        controller = ctx.documents(
            "controller.yaml",
            {
                f"<{REPLICAS_ENV}>": ctx.component_env(
                    CONTROLLER_COMPONENT, REPLICAS_ENV, "1"
                )
            },
        )
        override_workloads(controller, ctx.component(CONTROLLER_COMPONENT), "manager")

        velero = ctx.documents(
            "velero.yaml",
            {
                f"<{CREDENTIALS_SECRET_ENV}>": credentials_secret(ctx),
                f"<{BUCKET_ENV}>": ctx.component_env(
                    VELERO_COMPONENT, BUCKET_ENV, DEFAULT_BUCKET
                ),
                f"<{REGION_ENV}>": ctx.component_env(
                    VELERO_COMPONENT, REGION_ENV, DEFAULT_REGION
                ),
            },
        )
        override_workloads(velero, ctx.component(VELERO_COMPONENT), VELERO_COMPONENT)
        return {CONTROLLER_COMPONENT: controller, VELERO_COMPONENT: velero}
