"""
Tests for the typed views of the managed resources
"""

# Local
from csm_operator import constants
from csm_operator.resource import (
    ApexConnectivityClient,
    ContainerStorageModule,
    normalize_driver_type,
)
from csm_operator.test_helpers.helpers import (
    TEST_CLIENT_NAME,
    TEST_INSTANCE_NAME,
    TEST_NAMESPACE,
    make_acc,
    make_csm,
)


def test_driver_type_aliases():
    """The legacy driver names map to the canonical ones"""
    assert normalize_driver_type("isilon") == "powerscale"
    assert normalize_driver_type("VxFlexOS") == "powerflex"
    assert normalize_driver_type("powerstore") == "powerstore"
    assert normalize_driver_type(None) == ""


def test_csm_view():
    """The view exposes identity, driver and module fields"""
    cr = ContainerStorageModule(
        make_csm(
            modules=[
                {
                    "name": "observability",
                    "enabled": True,
                    "configVersion": "v1.8.0",
                    "components": [{"name": "topology", "enabled": False}],
                },
                {"name": "replication", "enabled": "false"},
            ],
            driver={"forceRemoveDriver": "true"},
        )
    )
    assert str(cr) == f"ContainerStorageModule/{TEST_NAMESPACE}/{TEST_INSTANCE_NAME}"
    assert cr.driver_type == "powerscale"
    assert cr.config_version == "v2.10.0"
    assert cr.driver.force_remove_driver
    assert cr.driver.common.image == "dellemc/csi-isilon:v2.10.0"
    assert cr.enabled_module_names() == {"observability"}
    assert not cr.module_enabled("replication")
    assert not cr.module_enabled("resiliency")

    obs = cr.get_module("observability")
    assert obs.config_version == "v1.8.0"
    assert not obs.component_enabled("topology")
    assert obs.component_enabled("otel-collector")
    assert not obs.component_enabled("otel-collector", default=False)


def test_csm_not_deleted():
    cr = ContainerStorageModule(make_csm())
    assert not cr.is_being_deleted
    assert cr.finalizers == []
    assert cr.annotations == {}
    assert cr.status == {}


def test_csm_being_deleted():
    cr = ContainerStorageModule(
        make_csm(
            deletionTimestamp="2024-01-01T00:00:00Z",
            finalizers=[constants.CSM_FINALIZER_NAME],
        )
    )
    assert cr.is_being_deleted
    assert cr.finalizers == [constants.CSM_FINALIZER_NAME]


def test_container_env():
    """Env vars of a container are found by name"""
    cr = ContainerStorageModule(
        make_csm(
            driver={
                "common": {
                    "image": "img",
                    "envs": [{"name": "X_CSI_DEBUG", "value": "true"}],
                }
            }
        )
    )
    assert cr.driver.common.env("X_CSI_DEBUG") == "true"
    assert cr.driver.common.env("MISSING", "dflt") == "dflt"


def test_with_spec_leaves_original():
    """A view with a different spec does not change the original manifest"""
    manifest = make_csm()
    cr = ContainerStorageModule(manifest)
    other = cr.with_spec({"driver": {"csiDriverType": "powerstore"}})
    assert other.driver_type == "powerstore"
    assert other.name == cr.name
    assert manifest["spec"]["driver"]["csiDriverType"] == "isilon"


def test_pod_labels():
    cr = ContainerStorageModule(make_csm())
    assert cr.pod_labels == {
        constants.CSM_LABEL_NAME: TEST_INSTANCE_NAME,
        constants.CSM_NAMESPACE_LABEL_NAME: TEST_NAMESPACE,
    }
    acc = ApexConnectivityClient(make_acc())
    assert acc.pod_labels == {
        constants.ACC_LABEL_NAME: TEST_CLIENT_NAME,
        constants.ACC_NAMESPACE_LABEL_NAME: TEST_NAMESPACE,
    }


def test_acc_view():
    acc = ApexConnectivityClient(make_acc(force_remove=True))
    assert acc.client.csm_client_type == "apexConnectivityClient"
    assert acc.config_version == "v1.0.0"
    assert acc.client.force_remove_client
