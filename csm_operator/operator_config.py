"""
Typed view of the library config values that the reconcile engine needs
"""

# Standard
from dataclasses import dataclass
import os

# Local
from . import config

# Tree of templates that ships with the package
DEFAULT_CONFIG_DIRECTORY = os.path.join(os.path.dirname(__file__), "operatorconfig")


@dataclass(frozen=True)
class OperatorConfig:
    """Settings shared by the resolver, the module pipeline and the upgrade
    path validator
    """

    config_directory: str = DEFAULT_CONFIG_DIRECTORY
    k8s_version: str = "1.29"
    is_openshift: bool = False

    @classmethod
    def from_library_config(cls) -> "OperatorConfig":
        return cls(
            config_directory=config.config_directory or DEFAULT_CONFIG_DIRECTORY,
            k8s_version=str(config.k8s_version),
            is_openshift=bool(config.is_openshift),
        )
