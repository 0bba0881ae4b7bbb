"""
Tests for the AccReconciler
"""

# Local
from csm_operator import constants
from csm_operator.acc_controller import AccReconciler
from csm_operator.operator_config import OperatorConfig
from csm_operator.resource import ApexConnectivityClient
from csm_operator.test_helpers.helpers import (
    ACC_KIND,
    API_VERSION,
    FailForKind,
    MockDeployManager,
    TEST_CLIENT_NAME,
    TEST_CLIENT_UID,
    TEST_NAMESPACE,
    get_state,
    make_acc,
    quiet_content_watch,
    set_workload_ready,
)
from csm_operator.threads.work_queue import ResourceKey

KEY = ResourceKey(TEST_NAMESPACE, TEST_CLIENT_NAME)
CLIENT_NAME = f"{TEST_CLIENT_NAME}-acc"

## Helpers #####################################################################


def setup(manifest=None, **dm_kwargs):
    dm = MockDeployManager(resources=[manifest or make_acc()], **dm_kwargs)
    rec = AccReconciler(
        dm, operator_config=OperatorConfig(), content_watch=quiet_content_watch(dm)
    )
    return dm, rec


def current_acc(dm):
    return dm.get_obj(ACC_KIND, TEST_CLIENT_NAME, TEST_NAMESPACE, API_VERSION)


def acc_state(dm):
    return get_state(dm, ACC_KIND, TEST_CLIENT_NAME, TEST_NAMESPACE)


def client_statefulset(dm):
    return dm.get_obj("StatefulSet", CLIENT_NAME, TEST_NAMESPACE, "apps/v1")


## Tests #######################################################################


def test_install():
    dm, rec = setup()
    assert not rec.reconcile(KEY).requeue

    obj = current_acc(dm)
    assert constants.ACC_FINALIZER_NAME in obj["metadata"]["finalizers"]
    annotations = obj["metadata"]["annotations"]
    assert annotations[constants.ACC_CONFIG_VERSION_ANNOTATION_NAME] == "v1.0.0"
    assert acc_state(dm) == "Creating"

    statefulset = client_statefulset(dm)
    assert statefulset is not None
    owner = statefulset["metadata"]["ownerReferences"][0]
    assert owner["uid"] == TEST_CLIENT_UID
    assert owner["blockOwnerDeletion"]
    labels = statefulset["spec"]["template"]["metadata"]["labels"]
    assert labels["acc"] == TEST_CLIENT_NAME
    assert dm.has_obj("ServiceAccount", CLIENT_NAME, TEST_NAMESPACE)
    assert f"{TEST_NAMESPACE}/{TEST_CLIENT_NAME}" in rec.content_watch.registry


def test_ready_client_succeeds():
    dm, rec = setup()
    rec.reconcile(KEY)
    set_workload_ready(dm, "StatefulSet", CLIENT_NAME, TEST_NAMESPACE)
    assert not rec.reconcile(KEY).requeue
    assert acc_state(dm) == "Succeeded"
    assert current_acc(dm)["status"]["clientStatus"]["available"] == "1"


def test_image_override():
    manifest = make_acc()
    manifest["spec"]["client"]["common"] = {"image": "my/client:1"}
    dm, rec = setup(manifest)
    rec.reconcile(KEY)
    containers = client_statefulset(dm)["spec"]["template"]["spec"]["containers"]
    images = {c["name"]: c["image"] for c in containers}
    assert images["connectivity-client-docker-k8s"] == "my/client:1"


def test_unsupported_version():
    dm, rec = setup(make_acc(config_version="v9.9.9"))
    result = rec.reconcile(KEY)
    assert not result.requeue
    assert acc_state(dm) == "InvalidConfig"
    assert client_statefulset(dm) is None


def test_missing_client_type():
    dm, rec = setup(make_acc(client_type=None))
    assert not rec.reconcile(KEY).requeue
    assert acc_state(dm) == "InvalidConfig"


def test_apply_failure_requeues():
    dm, rec = setup(deploy_fail=FailForKind("StatefulSet"))
    assert rec.reconcile(KEY).requeue
    assert acc_state(dm) == "Creating"


def test_delete():
    dm, rec = setup()
    rec.reconcile(KEY)
    dm.disable([current_acc(dm)])
    assert not rec.reconcile(KEY).requeue
    assert current_acc(dm) is None
    assert client_statefulset(dm) is not None


def test_delete_force_remove():
    dm, rec = setup(make_acc(force_remove=True))
    rec.reconcile(KEY)
    assert not client_statefulset(dm)["metadata"]["ownerReferences"][0][
        "blockOwnerDeletion"
    ]
    dm.disable([current_acc(dm)])
    assert not rec.reconcile(KEY).requeue
    assert current_acc(dm) is None
    assert client_statefulset(dm) is None
    assert not dm.has_obj("ServiceAccount", CLIENT_NAME, TEST_NAMESPACE)


def test_render():
    rec = AccReconciler(MockDeployManager(), operator_config=OperatorConfig())
    client = rec.render(ApexConnectivityClient(make_acc()))
    assert client.workload["kind"] == "StatefulSet"
    assert client.workload["metadata"]["namespace"] == TEST_NAMESPACE
