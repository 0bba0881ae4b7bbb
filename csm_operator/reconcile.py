"""
The ReconcilerBase class runs a single reconcile of a managed resource. It
fetches the current manifest, hands it to the kind specific implementation
and turns the outcome (including errors) into a ReconciliationResult.
"""

# Standard
from dataclasses import dataclass, field
from typing import Optional
import abc
import base64
import datetime
import uuid

# First Party
import alog

# Local
from . import constants
from .deploy_manager import DeployManagerBase
from .events import EventRecorder
from .exceptions import ConfigError, CsmOperatorError
from .resource import ManagedResource
from .status import CSMState, make_status, update_status
from .threads.work_queue import ResourceKey

log = alog.use_channel("RECONCILE")


## Data models #################################################################


@dataclass
class RequeueParams:
    """RequeueParams holds parameters for requeue request"""

    # Fixed delay for the requeue. None uses the per-key backoff of the queue
    requeue_after: Optional[datetime.timedelta] = None


@dataclass
class ReconciliationResult:
    """ReconciliationResult is the result of a reconciliation pass"""

    # Flag to control requeue of current reconcile request
    requeue: bool
    # Parameters for requeue request
    requeue_params: RequeueParams = field(default_factory=RequeueParams)
    # Flag to identify if the reconciliation raised an exception
    exception: Optional[Exception] = None


def done() -> ReconciliationResult:
    return ReconciliationResult(requeue=False)


def requeue(exception: Optional[Exception] = None) -> ReconciliationResult:
    return ReconciliationResult(requeue=True, exception=exception)


## ReconcilerBase ##############################################################


class ReconcilerBase(abc.ABC):
    """Shared fetch and error handling for the reconcilers of both managed
    kinds
    """

    def __init__(
        self,
        deploy_manager: DeployManagerBase,
        kind: str,
        api_version: str,
        recorder: Optional[EventRecorder] = None,
    ):
        """
        Args:
            deploy_manager:  DeployManagerBase
                The deploy manager used for every cluster operation
            kind:  str
                The kind of the managed resource
            api_version:  str
                The apiVersion of the managed resource
            recorder:  Optional[EventRecorder]
                Recorder for the events emitted on the resource
        """
        self.deploy_manager = deploy_manager
        self.kind = kind
        self.api_version = api_version
        self.recorder = recorder or EventRecorder(deploy_manager)

    ## Abstract Interface ######################################################

    @abc.abstractmethod
    def reconcile_resource(
        self, manifest: dict, reconcile_id: str
    ) -> ReconciliationResult:
        """Run the kind specific reconcile of a fetched manifest

        Args:
            manifest:  dict
                The current manifest of the resource
            reconcile_id:  str
                The id of this pass used in logs

        Returns:
            result:  ReconciliationResult
                The result of the pass
        """

    def on_missing(self, key: ResourceKey):
        """Called when the resource of a key no longer exists"""

    ## Reconciliation ##########################################################

    @alog.logged_function(log.debug)
    @alog.timed_function(log.info, "Reconcile finished in: ")
    def reconcile(self, key: ResourceKey) -> ReconciliationResult:
        """Fetch the resource of a key and reconcile it

        Args:
            key:  ResourceKey
                The namespace and name of the resource

        Returns:
            result:  ReconciliationResult
                The result of the pass
        """
        reconcile_id = self.generate_id()
        manifest = self.fetch(key)
        if manifest is None:
            self.on_missing(key)
            return done()
        log.info(
            "Reconciling %s %s [%s]",
            self.kind,
            key,
            reconcile_id,
            extra={"resource": manifest, "reconcile_id": reconcile_id},
        )
        return self.reconcile_resource(manifest, reconcile_id)

    def safe_reconcile(self, key: ResourceKey) -> ReconciliationResult:
        """Reconcile while catching any error. This function guarantees a safe
        result which is needed by the worker pool.
        """
        try:
            return self.reconcile(key)

        # Capture all generic exceptions
        except Exception as exc:  # pylint: disable=broad-except
            log.warning("Handling caught error in reconcile: %s", exc, exc_info=True)
            log.info("Requeuing %s due to error during reconcile", key)
            return requeue(exc)

    def fetch(self, key: ResourceKey) -> Optional[dict]:
        """Fetch the current manifest. Both a missing resource and a failed
        lookup end the pass without a requeue; a later watch event triggers
        the next pass.
        """
        success, manifest = self.deploy_manager.get_object_current_state(
            kind=self.kind,
            name=key.name,
            namespace=key.namespace,
            api_version=self.api_version,
        )
        if not success:
            log.warning("Unable to fetch %s %s. Waiting for next event", self.kind, key)
            return None
        if manifest is None:
            log.info("%s %s not found. Object must be deleted", self.kind, key)
            return None
        return manifest

    @classmethod
    def generate_id(cls) -> str:
        """Generates a unique human readable id for this reconciliation

        Returns:
            id: str
                A unique base32 encoded id
        """
        uuid4 = uuid.uuid4()
        base32_str = base64.b32encode(uuid4.bytes).decode("utf-8")
        reconcile_id = base32_str[:22]
        log.debug("Generated reconcile id: %s", reconcile_id)
        return reconcile_id

    ## Failure Handling ########################################################

    def handle_error(
        self,
        resource: ManagedResource,
        error: CsmOperatorError,
        reason: str = constants.EVENT_REASON_UPDATED,
    ) -> ReconciliationResult:
        """Map an error of a pass onto the resource and a result. Validation
        errors mark the resource InvalidConfig and wait for the user to change
        it. Every other error leaves the state alone and requeues.
        """
        self.recorder.warning(resource, reason, str(error))
        if isinstance(error, ConfigError):
            log.warning("Invalid configuration of %s: %s", resource, error)
            update_status(
                self.deploy_manager,
                resource,
                make_status(
                    CSMState.INVALID_CONFIG, str(error), previous=resource.status
                ),
            )
            return ReconciliationResult(requeue=False, exception=error)

        log.warning("Failed to reconcile %s: %s", resource, error)
        return requeue(error)

    def set_state(
        self, resource: ManagedResource, state: CSMState, message: str = "", **counts
    ) -> bool:
        return update_status(
            self.deploy_manager,
            resource,
            make_status(state, message, previous=resource.status, **counts),
        )
