"""
Tests for rendering the driver bundle
"""

# Third Party
import pytest
import yaml

# Local
from csm_operator import constants
from csm_operator.exceptions import ConfigError, ConfigNotFoundError
from csm_operator.manifests.resolver import ManifestResolver
from csm_operator.manifests.workloads import find_container, get_env
from csm_operator.operator_config import OperatorConfig
from csm_operator.resource import ContainerStorageModule
from csm_operator.test_helpers.helpers import (
    TEST_INSTANCE_NAME,
    TEST_INSTANCE_UID,
    TEST_NAMESPACE,
    make_csm,
)

## Helpers #####################################################################


def resolve(operator_config=None, **kwargs):
    resolver = ManifestResolver(operator_config or OperatorConfig())
    return resolver.resolve(ContainerStorageModule(make_csm(**kwargs)))


def container_names(pod_spec, init=False):
    return [
        container["name"]
        for container in pod_spec.get("initContainers" if init else "containers")
    ]


## Tests #######################################################################


def test_resolve_powerscale():
    """The rendered bundle is named after the resource and ordered for apply"""
    bundle = resolve()
    kinds_and_names = [
        (obj["kind"], obj["metadata"]["name"]) for obj in bundle.ordered_objects()
    ]
    assert kinds_and_names == [
        ("ServiceAccount", "isilon-controller"),
        ("ServiceAccount", "isilon-node"),
        ("ClusterRole", "isilon-controller"),
        ("ClusterRole", "isilon-node"),
        ("ClusterRoleBinding", "isilon-controller"),
        ("ClusterRoleBinding", "isilon-node"),
        ("CSIDriver", "csi-isilon.dellemc.com"),
        ("ConfigMap", "isilon-config-params"),
        ("Deployment", "isilon-controller"),
        ("DaemonSet", "isilon-node"),
    ]
    for obj in bundle.ordered_objects():
        assert constants.RELEASE_NAME_PLACEHOLDER not in yaml.safe_dump(obj)
    assert bundle.controller.workload["metadata"]["namespace"] == TEST_NAMESPACE
    assert [obj["kind"] for obj in bundle.ordered_objects(include_node=False)][
        -1
    ] == "Deployment"


def test_controller_customisation():
    """Replicas, image, labels and the owner reference come from the spec"""
    bundle = resolve(driver={"replicas": 3})
    controller = bundle.controller.workload
    assert controller["spec"]["replicas"] == 3
    labels = controller["spec"]["template"]["metadata"]["labels"]
    assert labels[constants.CSM_LABEL_NAME] == TEST_INSTANCE_NAME
    assert labels[constants.CSM_NAMESPACE_LABEL_NAME] == TEST_NAMESPACE

    driver = find_container(bundle.controller.pod_spec, "driver")
    assert driver["image"] == "dellemc/csi-isilon:v2.10.0"

    refs = controller["metadata"]["ownerReferences"]
    assert len(refs) == 1
    assert refs[0]["uid"] == TEST_INSTANCE_UID
    assert refs[0]["blockOwnerDeletion"] is True


def test_force_remove_unblocks_owner_deletion():
    bundle = resolve(driver={"forceRemoveDriver": True})
    ref = bundle.controller.workload["metadata"]["ownerReferences"][0]
    assert ref["blockOwnerDeletion"] is False


def test_health_monitor_off_by_default():
    """The health monitor sidecar is only kept when enabled"""
    assert "external-health-monitor" not in container_names(
        resolve().controller.pod_spec
    )
    bundle = resolve(
        driver={"sideCars": [{"name": "external-health-monitor", "enabled": True}]}
    )
    assert "external-health-monitor" in container_names(bundle.controller.pod_spec)


def test_sidecar_overrides():
    """Sidecars take the k8s image defaults and then the spec overrides"""
    bundle = resolve(
        operator_config=OperatorConfig(k8s_version="1.28"),
        driver={
            "sideCars": [
                {"name": "provisioner", "image": "my/provisioner:1", "args": ["--v=1"]},
                {"name": "snapshotter", "enabled": False},
            ]
        },
    )
    pod_spec = bundle.controller.pod_spec
    assert "snapshotter" not in container_names(pod_spec)
    assert (
        find_container(pod_spec, "attacher")["image"]
        == "registry.k8s.io/sig-storage/csi-attacher:v4.4.0"
    )
    provisioner = find_container(pod_spec, "provisioner")
    assert provisioner["image"] == "my/provisioner:1"
    assert "--v=1" in provisioner["args"]
    assert "--v=5" not in provisioner["args"]


def test_common_envs_replace_existing_only():
    bundle = resolve(
        driver={
            "common": {
                "image": "img",
                "envs": [
                    {"name": "X_CSI_DEBUG", "value": "true"},
                    {"name": "NOT_IN_TEMPLATE", "value": "x"},
                ],
            }
        }
    )
    driver = find_container(bundle.controller.pod_spec, "driver")
    assert get_env(driver, "X_CSI_DEBUG") == "true"
    assert get_env(driver, "NOT_IN_TEMPLATE") is None


def test_node_dns_policy():
    assert resolve().node.pod_spec["dnsPolicy"] == constants.DEFAULT_NODE_DNS_POLICY
    bundle = resolve(driver={"dnsPolicy": "ClusterFirst"})
    assert bundle.node.pod_spec["dnsPolicy"] == "ClusterFirst"


def test_auth_secret_replaces_default_secret():
    bundle = resolve(driver={"authSecret": "my-creds"})
    secrets = [
        volume["secret"]["secretName"]
        for volume in bundle.controller.pod_spec["volumes"]
        if "secret" in volume
    ]
    assert "my-creds" in secrets
    assert f"{TEST_INSTANCE_NAME}-creds" not in secrets


def test_registration_and_config_map():
    """The fsGroupPolicy and log level overrides are applied"""
    bundle = resolve(
        driver={
            "fsGroupPolicy": "File",
            "common": {
                "image": "img",
                "envs": [{"name": "CSI_LOG_LEVEL", "value": "info"}],
            },
        }
    )
    assert bundle.driver_registration["spec"]["fsGroupPolicy"] == "File"
    params = yaml.safe_load(
        bundle.config_map["data"]["driver-config-params.yaml"]
    )
    assert params["CSI_LOG_LEVEL"] == "info"
    assert params["CSI_LOG_FORMAT"] == "TEXT"


def test_no_driver():
    assert resolve(driver_type=None) is None


def test_unsupported_driver_type():
    with pytest.raises(ConfigError):
        resolve(driver_type="floppy")


def test_unsupported_version():
    with pytest.raises(ConfigNotFoundError):
        resolve(config_version="v9.9.9")


def test_missing_version():
    with pytest.raises(ConfigError):
        resolve(config_version="")
