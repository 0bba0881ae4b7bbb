"""
The content watch mirrors the replica counts of the live workloads of a
managed resource onto its status between reconciles
"""

# Standard
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple
import threading

# First Party
import alog

# Local
from . import config, constants
from .deploy_manager import DeployManagerBase, KubeEventType, KubeWatchEvent
from .events import EventRecorder
from .managed_object import ManagedObject
from .resource import ManagedResource
from .status import (
    CLIENT_STATUS_KEY,
    CONTROLLER_STATUS_KEY,
    COUNT_EXTRACTORS,
    NODE_STATUS_KEY,
    CSMState,
    WorkloadCounts,
    get_counts,
    live_counts,
    make_status,
    update_status,
)
from .threads.base import ThreadBase

log = alog.use_channel("CWTCH")

## Watched Kinds ###############################################################


def _template_labels(obj: dict) -> Dict[str, str]:
    return (
        ((obj.get("spec") or {}).get("template") or {}).get("metadata") or {}
    ).get("labels") or {}


def _object_labels(obj: dict) -> Dict[str, str]:
    return (obj.get("metadata") or {}).get("labels") or {}


@dataclass(frozen=True)
class WatchedKind:
    """A kind of object watched for a managed resource. Workload kinds carry
    the status section their counts are written to. Pods carry none and
    refresh every workload of the resource.
    """

    kind: str
    api_version: str
    labels: Callable[[dict], Dict[str, str]]
    status_key: Optional[str] = None


CONTROLLER_KIND = WatchedKind(
    "Deployment", "apps/v1", _template_labels, CONTROLLER_STATUS_KEY
)
NODE_KIND = WatchedKind("DaemonSet", "apps/v1", _template_labels, NODE_STATUS_KEY)
CLIENT_KIND = WatchedKind(
    "StatefulSet", "apps/v1", _template_labels, CLIENT_STATUS_KEY
)
POD_KIND = WatchedKind("Pod", "v1", _object_labels)


@dataclass(frozen=True)
class WatchTarget:
    """A managed resource and the workloads whose counts it reports"""

    kind: str
    api_version: str
    name: str
    namespace: str
    label_key: str
    namespace_label_key: str
    # Status section key to the (kind, name) of the workload
    workloads: Dict[str, Tuple[str, str]] = field(default_factory=dict)
    watched_kinds: Tuple[WatchedKind, ...] = ()

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    def owns(self, labels: Dict[str, str]) -> bool:
        return (
            labels.get(self.label_key) == self.name
            and labels.get(self.namespace_label_key) == self.namespace
        )

    def reports(self, watched_kind: WatchedKind, resource: ManagedObject) -> bool:
        """Whether the status of this target shows the given object. Pods
        refresh every workload. A workload event only counts for the workload
        recorded under its status section.
        """
        if watched_kind.status_key is None:
            return True
        expected = self.workloads.get(watched_kind.status_key)
        return (
            expected == (resource.kind, resource.name)
            and resource.namespace == self.namespace
        )

    @classmethod
    def for_csm(
        cls,
        resource: ManagedResource,
        controller_name: Optional[str],
        node_name: Optional[str],
    ) -> "WatchTarget":
        workloads = {}
        if controller_name:
            workloads[CONTROLLER_STATUS_KEY] = ("Deployment", controller_name)
        if node_name:
            workloads[NODE_STATUS_KEY] = ("DaemonSet", node_name)
        return cls(
            kind=resource.kind,
            api_version=resource.api_version,
            name=resource.name,
            namespace=resource.namespace,
            label_key=constants.CSM_LABEL_NAME,
            namespace_label_key=constants.CSM_NAMESPACE_LABEL_NAME,
            workloads=workloads,
            watched_kinds=(CONTROLLER_KIND, NODE_KIND, POD_KIND),
        )

    @classmethod
    def for_acc(cls, resource: ManagedResource, client_name: str) -> "WatchTarget":
        return cls(
            kind=resource.kind,
            api_version=resource.api_version,
            name=resource.name,
            namespace=resource.namespace,
            label_key=constants.ACC_LABEL_NAME,
            namespace_label_key=constants.ACC_NAMESPACE_LABEL_NAME,
            workloads={CLIENT_STATUS_KEY: ("StatefulSet", client_name)},
            watched_kinds=(CLIENT_KIND, POD_KIND),
        )


## Registry ####################################################################


class ContentWatchRegistry:
    """Stop signals of the running watch sets by resource key. The lock only
    guards the map and is never held while talking to the cluster.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: Dict[str, threading.Event] = {}

    def replace(self, key: str) -> threading.Event:
        """Register a new stop signal for a key, stopping the previous one"""
        stop_event = threading.Event()
        with self._lock:
            previous = self._entries.get(key)
            self._entries[key] = stop_event
        if previous is not None:
            log.debug2("Stopping previous content watch for %s", key)
            previous.set()
        return stop_event

    def remove(self, key: str) -> bool:
        """Stop and forget the watch set of a key"""
        with self._lock:
            stop_event = self._entries.pop(key, None)
        if stop_event is None:
            return False
        stop_event.set()
        return True

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries


## Projection ##################################################################


class StatusProjector:
    """Turns workload and pod events into status updates of the owning
    managed resource
    """

    def __init__(
        self,
        deploy_manager: DeployManagerBase,
        recorder: Optional[EventRecorder] = None,
    ):
        self.deploy_manager = deploy_manager
        self.recorder = recorder or EventRecorder(deploy_manager)
        # Serializes the handlers of all watch sets
        self._lock = threading.Lock()

    @alog.logged_function(log.debug3)
    def handle_event(
        self,
        target: WatchTarget,
        watched_kind: WatchedKind,
        event: KubeWatchEvent,
    ) -> bool:
        """Project a single event onto the status of its owner

        Args:
            target:  WatchTarget
                The managed resource the watch set belongs to
            watched_kind:  WatchedKind
                The kind of the event object
            event:  KubeWatchEvent
                The event

        Returns:
            updated:  bool
                Whether the status of the owner was written
        """
        obj = event.resource.definition
        if not target.owns(watched_kind.labels(obj)):
            log.debug4("Ignoring %s not owned by %s", event.resource, target.key)
            return False
        if not target.reports(watched_kind, event.resource):
            log.debug4("Ignoring %s not reported by %s", event.resource, target.key)
            return False
        with self._lock:
            return self._project(target, watched_kind, event)

    def _project(
        self,
        target: WatchTarget,
        watched_kind: WatchedKind,
        event: KubeWatchEvent,
    ) -> bool:
        success, owner_manifest = self.deploy_manager.get_object_current_state(
            kind=target.kind,
            name=target.name,
            namespace=target.namespace,
            api_version=target.api_version,
        )
        if not success or owner_manifest is None:
            log.debug2("Owner %s of %s is gone", target.key, event.resource)
            return False
        owner = ManagedResource(owner_manifest)
        if owner.is_being_deleted:
            return False

        counts = {key: get_counts(owner.status, key) for key in target.workloads}
        key = watched_kind.status_key
        if key is not None and event.type == KubeEventType.DELETED:
            # A deleted workload has nothing available
            desired = counts[key].desired if counts.get(key) else 0
            counts[key] = WorkloadCounts(desired=desired, failed=desired)
        elif key is not None:
            counts[key] = self._fresh_counts(watched_kind, event.resource)
        else:
            for section, (kind, name) in target.workloads.items():
                counts[section] = live_counts(
                    self.deploy_manager, kind, name, target.namespace
                )

        known = [value for value in counts.values() if value is not None]
        healthy = bool(known) and all(value.healthy for value in known)
        state = CSMState.RUNNING if healthy else CSMState.FAILED
        message = "" if healthy else _unhealthy_message(counts)
        status = make_status(state, message, previous=owner.status, **counts)
        if status.get("state") == owner.status.get("state") and all(
            owner.status.get(key) == status.get(key) for key in counts
        ):
            log.debug3("No status change for %s", target.key)
            return False

        written = update_status(self.deploy_manager, owner, status)
        if written and healthy:
            self.recorder.normal(
                owner, constants.EVENT_REASON_UPDATED, f"{owner.kind} is running"
            )
        elif not healthy:
            self.recorder.warning(owner, constants.EVENT_REASON_UPDATED, message)
        else:
            self.recorder.warning(
                owner,
                constants.EVENT_REASON_UPDATED,
                "Failed to update status from workload counts",
            )
        return written

    def _fresh_counts(
        self, watched_kind: WatchedKind, resource: ManagedObject
    ) -> WorkloadCounts:
        """Counts of the event object, re-read so that a stale event never
        overwrites newer counts
        """
        success, current = self.deploy_manager.get_object_current_state(
            kind=resource.kind,
            name=resource.name,
            namespace=resource.namespace,
            api_version=resource.api_version,
        )
        obj = current if success and current is not None else resource.definition
        return COUNT_EXTRACTORS[watched_kind.kind](obj)


def _unhealthy_message(counts: Dict[str, Optional[WorkloadCounts]]) -> str:
    parts = [
        f"{key} {value.available}/{value.desired} available"
        for key, value in sorted(counts.items())
        if value is not None and not value.healthy
    ]
    return ", ".join(parts) or "No workloads found"


## Watch Threads ###############################################################


class ContentWatchThread(ThreadBase):
    """Streams the events of one kind and feeds them to the projector until
    the stop signal of its watch set is raised
    """

    def __init__(
        self,
        target: WatchTarget,
        watched_kind: WatchedKind,
        projector: StatusProjector,
        stop_event: threading.Event,
        deploy_manager: DeployManagerBase,
    ):
        super().__init__(
            name=f"content_watch_{target.key}_{watched_kind.kind}",
            daemon=True,
            deploy_manager=deploy_manager,
        )
        self.target = target
        self.watched_kind = watched_kind
        self.projector = projector
        self.shutdown = stop_event

    def run(self):
        while not self.should_stop():
            try:
                for event in self.deploy_manager.watch_objects(
                    self.watched_kind.kind,
                    self.watched_kind.api_version,
                    timeout=int(config.watch_timeout_seconds),
                    stop_event=self.shutdown,
                ):
                    if self.should_stop():
                        return
                    self.projector.handle_event(self.target, self.watched_kind, event)
            except Exception as err:  # pylint: disable=broad-except
                log.warning(
                    "Content watch of %s for %s failed: %s",
                    self.watched_kind.kind,
                    self.target.key,
                    err,
                    exc_info=True,
                )
                self.shutdown.wait(1)


class ContentWatch:
    """Starts, replaces and stops the watch sets of managed resources"""

    def __init__(
        self,
        deploy_manager: DeployManagerBase,
        recorder: Optional[EventRecorder] = None,
        registry: Optional[ContentWatchRegistry] = None,
        start_threads: bool = True,
    ):
        self.deploy_manager = deploy_manager
        self.registry = registry or ContentWatchRegistry()
        self.projector = StatusProjector(deploy_manager, recorder)
        self.start_threads = start_threads

    def start(self, target: WatchTarget) -> List[ContentWatchThread]:
        """(Re)arm the watch set of a resource. Any previous watch set of the
        same resource is stopped.
        """
        stop_event = self.registry.replace(target.key)
        threads = [
            ContentWatchThread(
                target, kind, self.projector, stop_event, self.deploy_manager
            )
            for kind in target.watched_kinds
        ]
        if self.start_threads:
            for thread in threads:
                thread.start_thread()
        log.debug("Armed content watch for %s", target.key)
        return threads

    def stop(self, namespace: str, name: str) -> bool:
        stopped = self.registry.remove(f"{namespace}/{name}")
        if stopped:
            log.debug("Stopped content watch for %s/%s", namespace, name)
        return stopped

    def stop_all(self):
        for key in self.registry.keys():
            self.registry.remove(key)
