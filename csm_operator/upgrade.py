"""
Validation of configVersion transitions against the upgrade-path files that
ship with each driver, module and client version
"""

# Standard
from typing import Optional, Sequence

# First Party
import alog

# Local
from . import constants
from .exceptions import ConfigError, ConfigNotFoundError, UpgradePathError
from .manifests.loader import TemplateLoader
from .modules.base import ModuleBase, default_module_version
from .resource import ApexConnectivityClient, ContainerStorageModule
from .snapshot import AppliedSnapshot
from .utils import major_version, parse_version, version_at_least

log = alog.use_channel("UPGRD")

MIN_UPGRADE_PATH_KEY = "minUpgradePath"


class UpgradePathValidator:
    """Decides whether a configVersion change is allowed. An allowed or
    disallowed transition is returned as a boolean. Only a missing or broken
    upgrade-path file raises.
    """

    def __init__(self, loader: TemplateLoader):
        self.loader = loader

    ## Public ##################################################################

    def is_valid_upgrade(
        self,
        config_parts: Sequence[str],
        old_version: Optional[str],
        new_version: str,
        major_versioned: bool = False,
    ) -> bool:
        """Check a single transition

        Args:
            config_parts:  Sequence[str]
                Path of the versioned directory tree relative to the config
                root (e.g. ["driverconfig", "powerscale"])
            old_version:  Optional[str]
                The version currently installed. None or empty for a first
                install.
            new_version:  str
                The requested version
            major_versioned:  bool
                Refuse any change of the major version

        Returns:
            valid:  bool
                Whether the transition may proceed
        """
        if not old_version:
            log.debug2("No previous version of %s. First install.", config_parts)
            return True
        if old_version == new_version:
            return True
        if major_versioned and major_version(old_version) != major_version(
            new_version
        ):
            log.info(
                "Refusing to move %s across major versions %s -> %s",
                "/".join(config_parts),
                old_version,
                new_version,
            )
            return False

        # Upgrades are limited by the new version, downgrades by the old one
        if parse_version(new_version) > parse_version(old_version):
            minimum = self.min_upgrade_path(config_parts, new_version)
            valid = version_at_least(old_version, minimum)
        else:
            minimum = self.min_upgrade_path(config_parts, old_version)
            valid = version_at_least(new_version, minimum)
        log.debug(
            "Transition of %s %s -> %s (minimum %s) valid: %s",
            "/".join(config_parts),
            old_version,
            new_version,
            minimum,
            valid,
        )
        return valid

    def min_upgrade_path(self, config_parts: Sequence[str], version: str) -> str:
        """Read the oldest version that may move to or from the given one

        Raises:
            UpgradePathError if the upgrade-path file is missing or broken
        """
        try:
            content = self.loader.read_yaml(
                *config_parts, version, constants.UPGRADE_PATH_FILE
            )
        except ConfigNotFoundError as err:
            raise UpgradePathError(str(err)) from err
        minimum = (content or {}).get(MIN_UPGRADE_PATH_KEY) if isinstance(
            content, dict
        ) else None
        if not minimum:
            raise UpgradePathError(
                f"No {MIN_UPGRADE_PATH_KEY} in upgrade path of "
                f"{'/'.join(config_parts)} {version}"
            )
        return minimum

    def validate_driver(
        self, cr: ContainerStorageModule, old_version: Optional[str]
    ) -> bool:
        return self.is_valid_upgrade(
            [constants.DRIVER_CONFIG_DIR, cr.driver_type],
            old_version,
            cr.config_version,
        )

    def validate_module(
        self,
        module: ModuleBase,
        config_dir: str,
        old_version: Optional[str],
        new_version: str,
    ) -> bool:
        return self.is_valid_upgrade(
            [constants.MODULE_CONFIG_DIR, config_dir],
            old_version,
            new_version,
            major_versioned=module.major_versioned,
        )

    def validate_client(
        self, acc: ApexConnectivityClient, old_version: Optional[str]
    ) -> bool:
        return self.is_valid_upgrade(
            [constants.CLIENT_CONFIG_DIR, acc.client.csm_client_type.lower()],
            old_version,
            acc.config_version,
        )

    def previous_module_version(
        self, snapshot: Optional[AppliedSnapshot], module_name: str
    ) -> Optional[str]:
        """The version of a module as of the last successful sync. A module
        that relied on the default version gets the default of the driver
        version it was applied with.
        """
        if snapshot is None:
            return None
        states = snapshot.module_states()
        state = states.get(module_name)
        if state is None or not state.enabled:
            return None
        if state.config_version:
            return state.config_version
        driver = snapshot.spec.get("driver") or {}
        if not driver.get("csiDriverType"):
            return None
        previous = ContainerStorageModule({"spec": snapshot.spec})
        try:
            return default_module_version(
                self.loader,
                previous.driver_type,
                previous.config_version,
                module_name,
            )
        except ConfigError:
            log.debug2("No default version of %s in snapshot", module_name)
            return None
