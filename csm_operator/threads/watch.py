"""The ResourceWatchThread is responsible for monitoring the cluster for events
of a managed kind and queueing the keys that need a reconcile
"""
# Standard
from dataclasses import dataclass
from typing import Dict, Optional
import os

# Third Party
from kubernetes import watch

# First Party
import alog

# Local
from .. import config
from ..deploy_manager import DeployManagerBase, KubeEventType, KubeWatchEvent
from .base import ThreadBase
from .work_queue import RateLimitedWorkQueue, ResourceKey

log = alog.use_channel("WTCHTHRD")


@dataclass
class WatchedResource:
    """The fields of a resource used to decide whether a change needs a
    reconcile
    """

    generation: Optional[int] = None
    deletion_timestamp: Optional[str] = None


class ResourceWatchThread(ThreadBase):
    """The ResourceWatchThread watches one kind either cluster-wide or in a
    single namespace. Creation, spec (generation) changes, the start of a
    deletion and the removal of a resource queue its key. Status and metadata
    only changes do not.
    """

    def __init__(  # pylint: disable=too-many-arguments
        self,
        queue: RateLimitedWorkQueue,
        kind: str,
        api_version: str,
        namespace: Optional[str] = None,
        deploy_manager: DeployManagerBase = None,
    ):
        """Initialize a ResourceWatchThread

        Args:
            queue: RateLimitedWorkQueue
                The queue to submit keys to
            kind: str
                The kind to watch
            api_version: str
                The api_version to watch
            namespace: Optional[str] = None
                The namespace to watch. If none then cluster-wide
            deploy_manager: DeployManagerBase = None
                The deploy_manager to watch events
        """
        self.queue = queue
        self.kind = kind
        self.api_version = api_version
        self.namespace = namespace or None

        name = f"watch_thread_{self.api_version}_{self.kind}"
        if self.namespace:
            name = name + f"_{self.namespace}"
        super().__init__(name=name, daemon=True, deploy_manager=deploy_manager)

        # Setup kubernetes watch resource
        self.kubernetes_watch = watch.Watch()

        # Last seen state of every resource by uid
        self.watched_resources: Dict[str, WatchedResource] = {}

        # Variables for tracking retries
        self.attempts_left = int(config.watch_retry_count)
        self.retry_delay = float(config.watch_retry_delay_seconds)

    def run(self):
        """The control loop continuously watches the DeployManager and queues
        the key of every event that needs a reconcile
        """
        list_resource_version = 0
        while True:
            try:
                for event in self.deploy_manager.watch_objects(
                    self.kind,
                    self.api_version,
                    namespace=self.namespace,
                    resource_version=list_resource_version,
                    watch_manager=self.kubernetes_watch,
                    timeout=None,
                    stop_event=self.shutdown,
                ):
                    if self.should_stop():
                        log.debug("Shutdown requested. Stopping watch")
                        return
                    self.handle_event(event)

                if self.should_stop():
                    return

                # Update the resource version to only get new events
                list_resource_version = self.kubernetes_watch.resource_version
            except Exception as exc:  # pylint: disable=broad-except
                log.info(
                    "Exception raised when attempting to watch %s",
                    repr(exc),
                    exc_info=exc,
                )
                if self.attempts_left <= 0:
                    log.error(
                        "Unable to start watch within %d attempts",
                        config.watch_retry_count,
                    )
                    os._exit(1)

                if not self.wait_on_shutdown(self.retry_delay):
                    log.debug("Shutdown requested during retry. Stopping watch")
                    return
                self.attempts_left = self.attempts_left - 1
                log.info("Restarting watch with %d attempts left", self.attempts_left)

    ## Class Interface ###################################################

    def stop_thread(self):
        """Override stop_thread to stop the kubernetes client's Watch as well"""
        super().stop_thread()
        self.kubernetes_watch.stop()

    ## Event Handling ####################################################

    def handle_event(self, event: KubeWatchEvent) -> bool:
        """Queue the key of an event if it needs a reconcile

        Args:
            event: KubeWatchEvent
                The watch event

        Returns:
            queued: bool
                Whether the key was queued
        """
        resource = event.resource
        key = ResourceKey(namespace=resource.namespace, name=resource.name)

        if event.type == KubeEventType.DELETED:
            self.watched_resources.pop(resource.uid, None)
            log.debug2("Queuing deleted resource %s", key)
            self.queue.add(key)
            return True

        current = WatchedResource(
            generation=resource.metadata.get("generation"),
            deletion_timestamp=resource.metadata.get("deletionTimestamp"),
        )
        previous = self.watched_resources.get(resource.uid)
        self.watched_resources[resource.uid] = current
        if previous == current:
            log.debug3("Skipping event without spec change for %s", key)
            return False

        log.debug(
            "Queuing %s for %s",
            event.type.value,
            key,
            extra={"resource": resource.definition},
        )
        self.queue.add(key)
        return True
