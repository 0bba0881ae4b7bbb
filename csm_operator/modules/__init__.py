"""
The optional modules that can be layered onto a driver
"""

# Standard
from typing import Dict

# Local
from ..exceptions import ConfigError
from .application_mobility import ApplicationMobilityModule
from .authorization import AuthorizationModule, AuthorizationProxyServerModule
from .base import ModuleBase, ModuleContext
from .observability import ObservabilityModule
from .replication import ReplicationModule
from .resiliency import ResiliencyModule
from .reverse_proxy import ReverseProxyModule

# All known modules by name
MODULES: Dict[str, ModuleBase] = {
    module.name: module
    for module in [
        AuthorizationModule(),
        AuthorizationProxyServerModule(),
        ReplicationModule(),
        ResiliencyModule(),
        ObservabilityModule(),
        ReverseProxyModule(),
        ApplicationMobilityModule(),
    ]
}


def get_module(name: str) -> ModuleBase:
    module = MODULES.get(name)
    if module is None:
        raise ConfigError(f"Unsupported module [{name}]")
    return module
