"""
Tests for the UpgradePathValidator
"""

# Third Party
import pytest

# Local
from csm_operator.exceptions import UpgradePathError
from csm_operator.manifests.loader import TemplateLoader
from csm_operator.modules import get_module
from csm_operator.operator_config import OperatorConfig
from csm_operator.resource import ApexConnectivityClient, ContainerStorageModule
from csm_operator.snapshot import AppliedSnapshot
from csm_operator.test_helpers.helpers import make_acc, make_csm
from csm_operator.upgrade import UpgradePathValidator

POWERSCALE = ["driverconfig", "powerscale"]


@pytest.fixture
def validator():
    return UpgradePathValidator(TemplateLoader(OperatorConfig()))


def test_first_install_and_no_change(validator):
    assert validator.is_valid_upgrade(POWERSCALE, None, "v2.10.0")
    assert validator.is_valid_upgrade(POWERSCALE, "", "v2.10.0")
    assert validator.is_valid_upgrade(POWERSCALE, "v2.10.0", "v2.10.0")


def test_upgrade(validator):
    """Upgrades are allowed from the minimum path of the new version on"""
    assert validator.is_valid_upgrade(POWERSCALE, "v2.9.0", "v2.10.0")
    assert not validator.is_valid_upgrade(POWERSCALE, "v2.8.0", "v2.10.0")


def test_downgrade(validator):
    """Downgrades are limited by the minimum path of the old version"""
    assert validator.is_valid_upgrade(POWERSCALE, "v2.10.0", "v2.9.0")
    assert not validator.is_valid_upgrade(POWERSCALE, "v2.10.0", "v2.8.0")


def test_missing_upgrade_path(validator):
    with pytest.raises(UpgradePathError):
        validator.is_valid_upgrade(POWERSCALE, "v2.10.0", "v2.11.0")


def test_broken_upgrade_path(tmp_path):
    version_dir = tmp_path / "driverconfig" / "powerscale" / "v2.10.0"
    version_dir.mkdir(parents=True)
    (version_dir / "upgrade-path.yaml").write_text("someOtherKey: v1\n")
    validator = UpgradePathValidator(
        TemplateLoader(OperatorConfig(config_directory=str(tmp_path)))
    )
    with pytest.raises(UpgradePathError):
        validator.min_upgrade_path(POWERSCALE, "v2.10.0")


def test_validate_driver(validator):
    cr = ContainerStorageModule(make_csm(config_version="v2.10.0"))
    assert validator.validate_driver(cr, "v2.9.0")
    assert not validator.validate_driver(cr, "v2.8.0")


def test_authorization_major_version(validator):
    """Authorization can not move between major versions"""
    module = get_module("authorization")
    assert not validator.validate_module(
        module, "authorization", "v1.10.0", "v2.0.0"
    )
    assert validator.validate_module(module, "authorization", "v1.9.0", "v1.10.0")


def test_module_without_major_versioning(validator):
    module = get_module("observability")
    assert validator.validate_module(module, "observability", "v1.7.0", "v1.8.0")
    assert not validator.validate_module(module, "observability", "v1.6.0", "v1.8.0")


def test_validate_client(validator):
    acc = ApexConnectivityClient(make_acc())
    assert validator.validate_client(acc, None)
    assert validator.validate_client(acc, "v1.0.0")


def test_previous_module_version(validator):
    """Modules without an explicit version fall back to the default of the
    driver version they were applied with
    """
    snapshot = AppliedSnapshot.from_resource(
        ContainerStorageModule(
            make_csm(
                config_version="v2.9.0",
                modules=[
                    {"name": "authorization", "enabled": True},
                    {
                        "name": "observability",
                        "enabled": True,
                        "configVersion": "v1.7.0",
                    },
                    {"name": "resiliency", "enabled": False},
                ],
            )
        )
    )
    assert validator.previous_module_version(snapshot, "authorization") == "v1.10.0"
    assert validator.previous_module_version(snapshot, "observability") == "v1.7.0"
    assert validator.previous_module_version(snapshot, "resiliency") is None
    assert validator.previous_module_version(snapshot, "replication") is None
    assert validator.previous_module_version(None, "authorization") is None
