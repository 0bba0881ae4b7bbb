"""
This module holds the common functionality used to represent the status of
the resources managed by the operator

The status of a ContainerStorageModule has the schema:
{
    "state": "Creating" | "Updating" | "Running" | "Failed" | ...,
    "controllerStatus": {"desired": "N", "available": "N", "failed": "N"},
    "nodeStatus": {"desired": "N", "available": "N", "failed": "N"},
    "lastUpdate": {"time": "<iso timestamp>", "state": "<state>", "message": ""},
}

An ApexConnectivityClient carries "clientStatus" in place of the controller
and node counts.
"""

# Standard
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional
import copy

# Third Party
from deepdiff import DeepDiff

# First Party
import alog

# Local
from .deploy_manager import DeployManagerBase
from .resource import ManagedResource

log = alog.use_channel("STTUS")

## Public ######################################################################

# Keys in the status
STATE_KEY = "state"
CONTROLLER_STATUS_KEY = "controllerStatus"
NODE_STATUS_KEY = "nodeStatus"
CLIENT_STATUS_KEY = "clientStatus"
LAST_UPDATE_KEY = "lastUpdate"
TIMESTAMP_KEY = "time"

# Path of the update timestamp in a DeepDiff of two status objects
TIMESTAMP_PATH = rf"root\['{LAST_UPDATE_KEY}'\]\['{TIMESTAMP_KEY}'\]"


class CSMState(Enum):
    """The lifecycle states of a managed resource"""

    NO_STATE = ""
    CREATING = "Creating"
    UPDATING = "Updating"
    RUNNING = "Running"
    FAILED = "Failed"
    INVALID_CONFIG = "InvalidConfig"
    SUCCEEDED = "Succeeded"

    @classmethod
    def from_status(cls, status: Optional[dict]) -> "CSMState":
        value = (status or {}).get(STATE_KEY, "")
        try:
            return cls(value)
        except ValueError:
            log.debug2("Unknown state [%s] in status", value)
            return cls.NO_STATE


# States a first install is retried from
RETRY_STATES = {CSMState.NO_STATE, CSMState.FAILED, CSMState.INVALID_CONFIG}


@dataclass(frozen=True)
class WorkloadCounts:
    """Replica counts of a single workload"""

    desired: int = 0
    available: int = 0
    failed: int = 0

    @property
    def healthy(self) -> bool:
        return self.desired == self.available

    def to_dict(self) -> dict:
        return {
            "desired": str(self.desired),
            "available": str(self.available),
            "failed": str(self.failed),
        }

    @classmethod
    def from_dict(cls, content: Optional[dict]) -> Optional["WorkloadCounts"]:
        if not content:
            return None
        return cls(
            desired=int(content.get("desired") or 0),
            available=int(content.get("available") or 0),
            failed=int(content.get("failed") or 0),
        )

    ## Extraction ##############################################################

    @classmethod
    def from_deployment(cls, obj: dict) -> "WorkloadCounts":
        desired = int((obj.get("spec") or {}).get("replicas", 1) or 0)
        available = int((obj.get("status") or {}).get("availableReplicas") or 0)
        return cls(desired, available, max(desired - available, 0))

    @classmethod
    def from_daemon_set(cls, obj: dict) -> "WorkloadCounts":
        status = obj.get("status") or {}
        desired = int(status.get("desiredNumberScheduled") or 0)
        available = int(status.get("numberAvailable") or 0)
        failed = int(status.get("numberUnavailable") or max(desired - available, 0))
        return cls(desired, available, failed)

    @classmethod
    def from_stateful_set(cls, obj: dict) -> "WorkloadCounts":
        desired = int((obj.get("spec") or {}).get("replicas", 1) or 0)
        available = int((obj.get("status") or {}).get("readyReplicas") or 0)
        return cls(desired, available, max(desired - available, 0))


# Extraction of counts per workload kind
COUNT_EXTRACTORS = {
    "Deployment": WorkloadCounts.from_deployment,
    "DaemonSet": WorkloadCounts.from_daemon_set,
    "StatefulSet": WorkloadCounts.from_stateful_set,
}


def make_status(
    state: CSMState,
    message: str = "",
    previous: Optional[dict] = None,
    **counts: Optional[WorkloadCounts],
) -> dict:
    """Create a full status object for a managed resource

    Args:
        state:  CSMState
            The lifecycle state
        message:  str
            Plain-text message explaining the state
        previous:  Optional[dict]
            The current status. Count sections that are not given are kept
            from it.
        **counts:  Optional[WorkloadCounts]
            Count sections by status key (e.g. controllerStatus=...)

    Returns:
        status:  dict
            Dict representation of the status
    """
    status = copy.deepcopy(previous or {})
    status[STATE_KEY] = state.value
    for key, value in counts.items():
        if value is not None:
            status[key] = value.to_dict()
    status[LAST_UPDATE_KEY] = {
        TIMESTAMP_KEY: datetime.now().isoformat(),
        STATE_KEY: state.value,
        "message": message,
    }
    return status


def status_changed(current_status: Optional[dict], new_status: dict) -> bool:
    """Compare two status objects while ignoring the update timestamp"""
    if not current_status:
        return True
    return bool(
        DeepDiff(
            current_status,
            new_status,
            ignore_order=True,
            exclude_regex_paths=[TIMESTAMP_PATH],
        )
    )


def get_state(resource: ManagedResource) -> CSMState:
    return CSMState.from_status(resource.status)


def get_counts(status: Optional[dict], key: str) -> Optional[WorkloadCounts]:
    return WorkloadCounts.from_dict((status or {}).get(key))


def update_status(
    deploy_manager: DeployManagerBase,
    resource: ManagedResource,
    status: dict,
) -> bool:
    """Write a status onto a managed resource if it changed. Failures are
    logged and never raised.

    Returns:
        written:  bool
            Whether the status was written
    """
    if not status_changed(resource.status, status):
        log.debug2("Status of %s unchanged", resource)
        return False
    success, _ = deploy_manager.set_status(
        kind=resource.kind,
        name=resource.name,
        namespace=resource.namespace,
        status=status,
        api_version=resource.api_version,
    )
    if not success:
        log.warning("Failed to update status of %s", resource)
        return False
    resource.manifest["status"] = status
    log.debug("Updated status of %s to %s", resource, status.get(STATE_KEY))
    return True


def live_counts(
    deploy_manager: DeployManagerBase,
    kind: str,
    name: str,
    namespace: str,
    api_version: str = "apps/v1",
) -> Optional[WorkloadCounts]:
    """Fetch a workload and extract its counts. None if it does not exist or
    can not be read.
    """
    success, obj = deploy_manager.get_object_current_state(
        kind=kind, name=name, namespace=namespace, api_version=api_version
    )
    if not success or obj is None:
        log.debug2("No live %s %s/%s", kind, namespace, name)
        return None
    return COUNT_EXTRACTORS[kind](obj)
