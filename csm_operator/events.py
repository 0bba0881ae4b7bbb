"""
Kubernetes events written on the managed resources
"""

# Standard
from datetime import datetime, timezone
import uuid

# First Party
import alog

# Local
from . import constants
from .deploy_manager import DeployManagerBase
from .resource import ManagedResource

log = alog.use_channel("EVENT")

# Name of the component reported as the event source
EVENT_SOURCE = "csm-operator"


class EventRecorder:
    """Writes v1 Event objects through the deploy manager. Recording is best
    effort and never fails the caller.
    """

    def __init__(self, deploy_manager: DeployManagerBase):
        self.deploy_manager = deploy_manager

    def normal(self, resource: ManagedResource, reason: str, message: str) -> bool:
        return self.record(resource, constants.EVENT_NORMAL, reason, message)

    def warning(self, resource: ManagedResource, reason: str, message: str) -> bool:
        return self.record(resource, constants.EVENT_WARNING, reason, message)

    def record(
        self,
        resource: ManagedResource,
        event_type: str,
        reason: str,
        message: str,
    ) -> bool:
        """Write a single event

        Args:
            resource:  ManagedResource
                The resource the event is about
            event_type:  str
                Normal or Warning
            reason:  str
                Short machine readable reason
            message:  str
                Human readable description

        Returns:
            recorded:  bool
                Whether the event was written
        """
        event = make_event(resource, event_type, reason, message)
        log.debug2(
            "Recording %s event %s for %s: %s", event_type, reason, resource, message
        )
        success, _ = self.deploy_manager.deploy([event])
        if not success:
            log.warning("Failed to record event %s for %s", reason, resource)
        return success


def make_event(
    resource: ManagedResource, event_type: str, reason: str, message: str
) -> dict:
    """Build the manifest of a v1 Event about a managed resource"""
    timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    return {
        "apiVersion": "v1",
        "kind": "Event",
        "metadata": {
            "name": f"{resource.name}.{uuid.uuid4().hex[:16]}",
            "namespace": resource.namespace,
        },
        "involvedObject": {
            "apiVersion": resource.api_version,
            "kind": resource.kind,
            "name": resource.name,
            "namespace": resource.namespace,
            "uid": resource.uid,
        },
        "type": event_type,
        "reason": reason,
        "message": message,
        "count": 1,
        "firstTimestamp": timestamp,
        "lastTimestamp": timestamp,
        "source": {"component": EVENT_SOURCE},
    }
