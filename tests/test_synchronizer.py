"""
Tests for the ResourceSynchronizer
"""

# Third Party
import pytest

# Local
from csm_operator.exceptions import ClusterError
from csm_operator.synchronizer import ResourceSynchronizer, api_group, is_builtin
from csm_operator.test_helpers.helpers import (
    MockDeployManager,
    TEST_NAMESPACE,
    make_csm,
    resolve_bundle,
)

## Helpers #####################################################################


def config_map(name, namespace=TEST_NAMESPACE):
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {"name": name, "namespace": namespace},
        "data": {"key": name},
    }


def certificate(name):
    return {
        "apiVersion": "cert-manager.io/v1",
        "kind": "Certificate",
        "metadata": {"name": name, "namespace": TEST_NAMESPACE},
        "spec": {"secretName": name},
    }


## Tests #######################################################################


def test_api_group():
    assert api_group(config_map("a")) == ""
    assert api_group({"apiVersion": "apps/v1"}) == "apps"
    assert is_builtin({"apiVersion": "rbac.authorization.k8s.io/v1"})
    assert not is_builtin(certificate("a"))


def test_apply_reports_changes():
    dm = MockDeployManager()
    sync = ResourceSynchronizer(dm)
    assert sync.apply(config_map("a"))
    assert dm.has_obj("ConfigMap", "a", TEST_NAMESPACE)
    assert not sync.apply(config_map("a"))


def test_apply_failure():
    sync = ResourceSynchronizer(MockDeployManager(deploy_fail=True))
    with pytest.raises(ClusterError):
        sync.apply(config_map("a"))


def test_apply_objects_stops_at_failure():
    """Objects after a failed apply are never sent"""
    dm = MockDeployManager()
    dm.deploy.side_effect = [(True, True), (False, False)]
    sync = ResourceSynchronizer(dm)
    with pytest.raises(ClusterError):
        sync.apply_objects([config_map("a"), config_map("b"), config_map("c")])
    assert dm.deploy.call_count == 2


def test_sync_bundle():
    dm = MockDeployManager()
    bundle = resolve_bundle(make_csm())
    assert ResourceSynchronizer(dm).sync_bundle(bundle)
    assert dm.has_obj("Deployment", "isilon-controller", TEST_NAMESPACE)
    assert dm.has_obj("DaemonSet", "isilon-node", TEST_NAMESPACE)
    assert dm.has_obj("CSIDriver", "csi-isilon.dellemc.com")
    applied = [call.args[0][0]["kind"] for call in dm.deploy.call_args_list]
    assert applied.index("CSIDriver") < applied.index("Deployment")
    assert applied[-1] == "DaemonSet"


def test_sync_bundle_without_node():
    dm = MockDeployManager()
    ResourceSynchronizer(dm).sync_bundle(
        resolve_bundle(make_csm()), include_node=False
    )
    assert dm.has_obj("Deployment", "isilon-controller", TEST_NAMESPACE)
    assert not dm.has_obj("DaemonSet", "isilon-node", TEST_NAMESPACE)
    assert dm.has_obj("ServiceAccount", "isilon-controller", TEST_NAMESPACE)
    assert not dm.has_obj("ServiceAccount", "isilon-node", TEST_NAMESPACE)


def test_sync_bundle_idempotent():
    """A second sync of an identical bundle changes no object"""
    dm = MockDeployManager()
    synchronizer = ResourceSynchronizer(dm)
    assert synchronizer.sync_bundle(resolve_bundle(make_csm()))

    bundle = resolve_bundle(make_csm())
    assert not synchronizer.sync_bundle(bundle)
    for obj in bundle.ordered_objects():
        assert not synchronizer.apply(obj), obj["kind"]
    assert not synchronizer.apply_objects(bundle.ordered_objects())


def test_delete_missing_object():
    dm = MockDeployManager()
    assert not ResourceSynchronizer(dm).delete(config_map("a"))


def test_delete_objects_in_reverse():
    objects = [config_map("a"), config_map("b")]
    dm = MockDeployManager(resources=objects)
    assert ResourceSynchronizer(dm).delete_objects(objects)
    deleted = [
        call.args[0][0]["metadata"]["name"] for call in dm.disable.call_args_list
    ]
    assert deleted == ["b", "a"]
    assert not dm.has_obj("ConfigMap", "a", TEST_NAMESPACE)


def test_delete_failures():
    """Failed deletes of extension kinds can be tolerated, built in kinds
    always raise
    """
    dm = MockDeployManager(
        resources=[config_map("a"), certificate("b")], disable_fail=True
    )
    sync = ResourceSynchronizer(dm)
    assert not sync.delete(certificate("b"), tolerate_extensions=True)
    with pytest.raises(ClusterError):
        sync.delete(certificate("b"))
    with pytest.raises(ClusterError):
        sync.delete(config_map("a"), tolerate_extensions=True)
