"""
Tests for the status helpers
"""

# Third Party
import pytest

# Local
from csm_operator.resource import ContainerStorageModule
from csm_operator.status import (
    CONTROLLER_STATUS_KEY,
    LAST_UPDATE_KEY,
    NODE_STATUS_KEY,
    CSMState,
    WorkloadCounts,
    get_counts,
    get_state,
    live_counts,
    make_status,
    status_changed,
    update_status,
)
from csm_operator.test_helpers.helpers import (
    CSM_KIND,
    TEST_INSTANCE_NAME,
    TEST_NAMESPACE,
    MockDeployManager,
    make_csm,
)


def _deployment(replicas=2, available=None):
    obj = {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {"name": "isilon-controller", "namespace": TEST_NAMESPACE},
        "spec": {"replicas": replicas},
    }
    if available is not None:
        obj["status"] = {"availableReplicas": available}
    return obj


def test_state_from_status():
    assert CSMState.from_status({"state": "Running"}) == CSMState.RUNNING
    assert CSMState.from_status({"state": "bogus"}) == CSMState.NO_STATE
    assert CSMState.from_status(None) == CSMState.NO_STATE


def test_make_status():
    """The status carries the counts as strings and the last update"""
    status = make_status(
        CSMState.CREATING,
        "installing",
        controllerStatus=WorkloadCounts(2, 1, 1),
        nodeStatus=None,
    )
    assert status["state"] == "Creating"
    assert status[CONTROLLER_STATUS_KEY] == {
        "desired": "2",
        "available": "1",
        "failed": "1",
    }
    assert NODE_STATUS_KEY not in status
    assert status[LAST_UPDATE_KEY]["message"] == "installing"
    assert status[LAST_UPDATE_KEY]["state"] == "Creating"


def test_make_status_keeps_previous_counts():
    previous = make_status(CSMState.CREATING, nodeStatus=WorkloadCounts(3, 3, 0))
    status = make_status(CSMState.RUNNING, previous=previous)
    assert get_counts(status, NODE_STATUS_KEY) == WorkloadCounts(3, 3, 0)
    assert get_counts(status, CONTROLLER_STATUS_KEY) is None


def test_status_changed_ignores_timestamp():
    first = make_status(CSMState.RUNNING, "ok")
    second = make_status(CSMState.RUNNING, "ok")
    second[LAST_UPDATE_KEY]["time"] = "later"
    assert not status_changed(first, second)
    assert status_changed(first, make_status(CSMState.FAILED, "ok"))
    assert status_changed(None, first)


@pytest.mark.parametrize(
    ["counts", "healthy"],
    [
        (WorkloadCounts(2, 2, 0), True),
        (WorkloadCounts(0, 0, 0), True),
        (WorkloadCounts(2, 1, 1), False),
    ],
)
def test_counts_healthy(counts, healthy):
    assert counts.healthy == healthy


def test_counts_extraction():
    assert WorkloadCounts.from_deployment(_deployment(2, 1)) == WorkloadCounts(2, 1, 1)
    assert WorkloadCounts.from_deployment(_deployment(2)) == WorkloadCounts(2, 0, 2)
    assert WorkloadCounts.from_daemon_set(
        {"status": {"desiredNumberScheduled": 3, "numberAvailable": 1}}
    ) == WorkloadCounts(3, 1, 2)
    assert WorkloadCounts.from_daemon_set({}) == WorkloadCounts(0, 0, 0)
    assert WorkloadCounts.from_stateful_set(
        {"spec": {"replicas": 1}, "status": {"readyReplicas": 1}}
    ) == WorkloadCounts(1, 1, 0)


def test_update_status_writes_changes_only():
    manifest = make_csm()
    dm = MockDeployManager(resources=[manifest])
    resource = ContainerStorageModule(manifest)
    status = make_status(CSMState.CREATING)
    assert update_status(dm, resource, status)
    assert get_state(resource) == CSMState.CREATING
    stored = dm.get_obj(CSM_KIND, TEST_INSTANCE_NAME, TEST_NAMESPACE)
    assert stored["status"]["state"] == "Creating"

    dm.set_status.reset_mock()
    assert not update_status(dm, resource, make_status(CSMState.CREATING))
    dm.set_status.assert_not_called()


def test_update_status_failure_is_not_raised():
    manifest = make_csm()
    dm = MockDeployManager(resources=[manifest], set_status_fail=True)
    resource = ContainerStorageModule(manifest)
    assert not update_status(dm, resource, make_status(CSMState.RUNNING))
    assert get_state(resource) == CSMState.NO_STATE


def test_live_counts():
    dm = MockDeployManager(resources=[_deployment(2, 2)])
    assert live_counts(
        dm, "Deployment", "isilon-controller", TEST_NAMESPACE
    ) == WorkloadCounts(2, 2, 0)
    assert live_counts(dm, "DaemonSet", "isilon-node", TEST_NAMESPACE) is None
