"""
Tests for the application mobility module
"""

# Third Party
import pytest

# Local
from csm_operator.exceptions import ConfigError
from csm_operator.manifests.workloads import find_container
from csm_operator.test_helpers.helpers import (
    MockDeployManager,
    make_csm,
    make_secret,
    module_context,
)


def mobility_csm(components=None):
    return make_csm(
        modules=[
            {
                "name": "application-mobility",
                "enabled": True,
                "components": components or [],
            }
        ]
    )


def test_precheck_needs_cloud_credentials():
    module, ctx = module_context(mobility_csm(), "application-mobility")
    with pytest.raises(ConfigError):
        module.precheck(ctx, MockDeployManager())
    module.precheck(
        ctx, MockDeployManager(resources=[make_secret("isilon-cloud-creds")])
    )


def test_precheck_without_velero():
    module, ctx = module_context(
        mobility_csm([{"name": "velero", "enabled": False}]), "application-mobility"
    )
    module.precheck(ctx, MockDeployManager())


def test_objects():
    module, ctx = module_context(
        mobility_csm(
            [
                {
                    "name": "application-mobility-controller-manager",
                    "image": "my/mobility:1",
                },
                {
                    "name": "velero",
                    "envs": [{"name": "BACKUP_STORAGE_BUCKET", "value": "backups"}],
                },
            ]
        ),
        "application-mobility",
    )
    objects = {
        (obj["kind"], obj["metadata"]["name"]): obj
        for obj in module.standalone_objects(ctx)
    }
    controller = objects[
        ("Deployment", "isilon-application-mobility-controller-manager")
    ]
    manager = find_container(controller["spec"]["template"]["spec"], "manager")
    assert manager["image"] == "my/mobility:1"
    assert ("Deployment", "isilon-velero") in objects
    location = objects[("BackupStorageLocation", "default")]
    assert location["spec"]["objectStorage"]["bucket"] == "backups"
    assert location["metadata"]["namespace"] == "test-csm"


def test_velero_disabled():
    module, ctx = module_context(
        mobility_csm([{"name": "velero", "enabled": False}]), "application-mobility"
    )
    names = {obj["metadata"]["name"] for obj in module.standalone_objects(ctx)}
    assert "isilon-velero" not in names
    assert "isilon-application-mobility-controller-manager" in names
