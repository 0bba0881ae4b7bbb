"""
Read-only access to the operator config directory
"""

# Standard
from typing import Any, Dict, List, Optional
import os

# Third Party
import yaml

# First Party
import alog

# Local
from .. import constants
from ..exceptions import ConfigNotFoundError, assert_config
from ..operator_config import OperatorConfig
from ..resource import ContainerTemplate

log = alog.use_channel("LOADR")


class TemplateLoader:
    """Lookup service over the driverconfig, moduleconfig and clientconfig
    trees
    """

    def __init__(self, operator_config: OperatorConfig):
        self.operator_config = operator_config
        self.root = operator_config.config_directory

    def path(self, *parts: str) -> str:
        return os.path.join(self.root, *parts)

    def exists(self, *parts: str) -> bool:
        return os.path.isfile(self.path(*parts))

    def versions(self, *parts: str) -> List[str]:
        """List the version directories below a template subtree"""
        path = self.path(*parts)
        if not os.path.isdir(path):
            return []
        return sorted(
            entry
            for entry in os.listdir(path)
            if os.path.isdir(os.path.join(path, entry))
        )

    def read(self, *parts: str) -> str:
        """Read a template file

        Args:
            *parts:  str
                Path parts relative to the config directory

        Returns:
            content:  str
                The raw file content
        """
        path = self.path(*parts)
        log.debug3("Reading template %s", path)
        try:
            with open(path, "r", encoding="utf-8") as handle:
                return handle.read()
        except FileNotFoundError as err:
            raise ConfigNotFoundError(f"No config found at {path}") from err

    def read_yaml(self, *parts: str) -> Any:
        return yaml.safe_load(self.read(*parts))

    def sidecar_images(self) -> Dict[str, str]:
        """Default sidecar images for the configured kubernetes version"""
        content = self.read_yaml(
            constants.DRIVER_CONFIG_DIR,
            constants.COMMON_DIR,
            f"k8s-{self.operator_config.k8s_version}-values.yaml",
        )
        return (content or {}).get("images", {})


## Template Text Helpers #######################################################


def split_documents(content: str) -> List[dict]:
    """Parse a multi-document yaml template into its non-empty documents"""
    try:
        docs = [doc for doc in yaml.safe_load_all(content) if doc]
    except yaml.YAMLError as err:
        raise ConfigNotFoundError(f"Unable to parse template: {err}") from err
    for doc in docs:
        assert_config(
            isinstance(doc, dict) and "kind" in doc,
            f"Template document is not a kubernetes object: {doc}",
        )
    return docs


def modify_common(
    content: str,
    name: str,
    namespace: str,
    common: Optional[ContainerTemplate] = None,
) -> str:
    """Replace the placeholders shared by every template

    Args:
        content:  str
            The raw template text
        name:  str
            Name of the managed resource used as the release name
        namespace:  str
            Namespace of the managed resource
        common:  Optional[ContainerTemplate]
            The common container settings of the resource

    Returns:
        content:  str
            The template text with the placeholders replaced
    """
    content = content.replace(constants.RELEASE_NAME_PLACEHOLDER, name)
    content = content.replace(constants.RELEASE_NAMESPACE_PLACEHOLDER, namespace)
    common = common or ContainerTemplate()
    if common.image_pull_policy:
        content = content.replace(
            constants.DEFAULT_IMAGE_PULL_POLICY, common.image_pull_policy
        )
    kubelet_dir = common.env(
        constants.KUBELET_CONFIG_DIR_ENV, constants.DEFAULT_KUBELET_CONFIG_DIR
    )
    return content.replace(constants.KUBELET_CONFIG_DIR_PLACEHOLDER, kubelet_dir)


def replace_all(content: str, replacements: Dict[str, str]) -> str:
    for placeholder, value in replacements.items():
        content = content.replace(placeholder, value)
    return content
