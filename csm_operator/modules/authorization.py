"""
Authorization: a proxy sidecar in front of the driver and the proxy server
that the sidecars talk to
"""

# Standard
from typing import Dict, List, Optional

# First Party
import alog

# Local
from ..deploy_manager import DeployManagerBase
from ..exceptions import assert_config
from ..manifests.bundle import WorkloadSet
from ..manifests.workloads import set_env
from ..resource import ContainerTemplate
from .base import (
    ModuleBase,
    ModuleContext,
    add_sidecar,
    add_workload_annotation,
    check_object,
    override_workloads,
)

log = alog.use_channel("AUTHZ")

SIDECAR_COMPONENT = "karavi-authorization-proxy"
PROXY_ANNOTATION = "com.dell.karavi-authorization-proxy"
ROOT_CERTIFICATE = "proxy-server-root-certificate"
SKIP_CERTIFICATE_ENVS = ["SKIP_CERTIFICATE_VALIDATION", "INSECURE"]
PROXY_HOST_ENV = "PROXY_HOST"
SIDECAR_SECRETS = ["karavi-authorization-config", "proxy-authz-tokens"]

PROXY_SERVER_COMPONENT = "proxy-server"
REDIS_COMPONENT = "redis"
REDIS_STORAGE_CLASS_PLACEHOLDER = "<REDIS_STORAGE_CLASS>"
REDIS_STORAGE_CLASS_ENV = "REDIS_STORAGE_CLASS"
DEFAULT_REDIS_STORAGE_CLASS = "csm-authorization-local-storage"
PROXY_SERVER_SECRETS = [
    "karavi-config-secret",
    "karavi-storage-secret",
    "karavi-auth-tls",
]


def skip_certificate_validation(component: ContainerTemplate) -> bool:
    """Whether the sidecar is configured to skip proxy certificate checks"""
    skip = False
    for name in SKIP_CERTIFICATE_ENVS:
        value = component.env(name)
        if value is None:
            continue
        assert_config(
            value.lower() in ["true", "false"],
            f"{value} is an invalid value for {name}",
        )
        skip = value.lower() == "true"
    return skip


class AuthorizationModule(ModuleBase):
    """The authorization sidecar injected into the controller and node"""

    name = "authorization"
    supported_drivers = frozenset(["powerscale", "powerflex", "powermax"])
    major_versioned = True

    def precheck(self, ctx: ModuleContext, deploy_manager: DeployManagerBase):
        super().precheck(ctx, deploy_manager)
        component = ctx.component(SIDECAR_COMPONENT)
        assert_config(
            component.env(PROXY_HOST_ENV) != "",
            "PROXY_HOST for authorization is empty",
        )
        secrets = list(SIDECAR_SECRETS)
        if not skip_certificate_validation(component):
            secrets.append(ROOT_CERTIFICATE)
        for secret in secrets:
            check_object(deploy_manager, "Secret", secret, ctx.resource.namespace)
        log.debug("Performed prechecks for %s", self)

    def inject_controller(self, controller: WorkloadSet, ctx: ModuleContext):
        self._inject(controller, ctx)

    def inject_node(self, node: WorkloadSet, ctx: ModuleContext):
        self._inject(node, ctx)

    ## Implementation Details ##################################################

    def _inject(self, workload_set: WorkloadSet, ctx: ModuleContext):
        component = ctx.component(SIDECAR_COMPONENT)
        skip_certs = skip_certificate_validation(component)

        container = ctx.load("container.yaml")
        add_sidecar(workload_set, container, component)
        if skip_certs:
            container["volumeMounts"] = [
                mount
                for mount in container.get("volumeMounts") or []
                if mount.get("name") != ROOT_CERTIFICATE
            ]
        else:
            for env in container.get("env") or []:
                if env.get("name") in SKIP_CERTIFICATE_ENVS:
                    set_env(container, env["name"], "false")

        pod_spec = workload_set.pod_spec
        volumes = pod_spec.setdefault("volumes", [])
        existing = {vol.get("name") for vol in volumes}
        for volume in self._volumes(ctx, skip_certs):
            if volume["name"] not in existing:
                volumes.append(volume)
        add_workload_annotation(workload_set, PROXY_ANNOTATION, "true")

    @staticmethod
    def _volumes(ctx: ModuleContext, skip_certs: bool) -> List[dict]:
        volumes = ctx.load("volumes.yaml") or []
        if skip_certs:
            volumes = [vol for vol in volumes if vol.get("name") != ROOT_CERTIFICATE]
        return volumes


class AuthorizationProxyServerModule(ModuleBase):
    """The authorization proxy server. It runs without a node workload and may
    be installed by a resource that has no driver.
    """

    name = "authorization-proxy-server"
    config_dir = "authorization"
    major_versioned = True
    skips_node_workload = True

    def precheck(self, ctx: ModuleContext, deploy_manager: DeployManagerBase):
        super().precheck(ctx, deploy_manager)
        for secret in PROXY_SERVER_SECRETS:
            check_object(deploy_manager, "Secret", secret, ctx.resource.namespace)
        log.debug("Performed prechecks for %s", self)

    def component_objects(
        self, ctx: ModuleContext
    ) -> Dict[Optional[str], List[dict]]:
        proxy_server = ctx.documents("proxy-server.yaml")
        override_workloads(
            proxy_server,
            ctx.component(PROXY_SERVER_COMPONENT),
            PROXY_SERVER_COMPONENT,
        )

        storage_class = ctx.component_env(
            REDIS_COMPONENT, REDIS_STORAGE_CLASS_ENV, DEFAULT_REDIS_STORAGE_CLASS
        )
        redis = ctx.documents(
            "redis.yaml", {REDIS_STORAGE_CLASS_PLACEHOLDER: storage_class}
        )
        override_workloads(redis, ctx.component(REDIS_COMPONENT), REDIS_COMPONENT)
        return {PROXY_SERVER_COMPONENT: proxy_server, REDIS_COMPONENT: redis}
