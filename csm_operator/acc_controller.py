"""
The AccReconciler installs the connectivity client of an
ApexConnectivityClient. It follows the reconcile shape of the primary
resource without modules or differential cleanup.
"""

# Standard
from typing import Optional

# First Party
import alog

# Local
from . import config, constants
from .content_watch import ContentWatch, WatchTarget
from .deploy_manager import DeployManagerBase
from .deploy_manager.owner_references import set_owner_reference
from .events import EventRecorder
from .exceptions import ConfigNotFoundError, CsmOperatorError, assert_config
from .manifests.bundle import (
    BINDING_KINDS,
    ROLE_KINDS,
    SERVICE_ACCOUNT_KINDS,
    WorkloadSet,
)
from .manifests.loader import TemplateLoader, modify_common, split_documents
from .manifests.workloads import find_container
from .metadata import add_finalizer, has_finalizer, remove_finalizer, update_annotations
from .operator_config import OperatorConfig
from .reconcile import ReconcilerBase, ReconciliationResult, done, requeue
from .resource import ApexConnectivityClient
from .status import CLIENT_STATUS_KEY, RETRY_STATES, CSMState, get_state, live_counts
from .synchronizer import ResourceSynchronizer
from .threads.work_queue import ResourceKey
from .upgrade import UpgradePathValidator

log = alog.use_channel("ACCCTRL")

# Template of a client version
CLIENT_MANIFEST_FILE = "statefulset.yaml"

# Container whose image follows client.common.image
CLIENT_CONTAINER_NAME = "connectivity-client-docker-k8s"


class AccReconciler(ReconcilerBase):
    """Reconciler of the secondary client resource"""

    def __init__(
        self,
        deploy_manager: DeployManagerBase,
        operator_config: Optional[OperatorConfig] = None,
        content_watch: Optional[ContentWatch] = None,
        recorder: Optional[EventRecorder] = None,
        loader: Optional[TemplateLoader] = None,
    ):
        super().__init__(
            deploy_manager, config.acc_kind, config.api_version, recorder=recorder
        )
        self.operator_config = operator_config or OperatorConfig.from_library_config()
        self.loader = loader or TemplateLoader(self.operator_config)
        self.validator = UpgradePathValidator(self.loader)
        self.synchronizer = ResourceSynchronizer(deploy_manager)
        self.content_watch = content_watch or ContentWatch(
            deploy_manager, self.recorder
        )

    ## Reconciliation ##########################################################

    def reconcile_resource(
        self, manifest: dict, reconcile_id: str
    ) -> ReconciliationResult:
        acc = ApexConnectivityClient(manifest)
        if acc.is_being_deleted:
            return self.finalize(acc)

        try:
            self.run_prechecks(acc)
            self.sync(acc)
        except CsmOperatorError as err:
            log.debug("Reconcile of %s failed [%s]", acc, reconcile_id, exc_info=True)
            return self.handle_error(acc, err)

        self.recorder.normal(
            acc,
            constants.EVENT_REASON_COMPLETED,
            f"install/update storage component: {acc.name} completed OK",
        )
        return done()

    def on_missing(self, key: ResourceKey):
        self.content_watch.stop(key.namespace, key.name)

    def run_prechecks(self, acc: ApexConnectivityClient):
        """A client version is supported when its upgrade-path file exists"""
        client_type = _client_dir(acc)
        assert_config(client_type, f"No csmClientType set for {acc}")
        assert_config(acc.config_version, f"No client configVersion set for {acc}")
        if not self.loader.exists(
            constants.CLIENT_CONFIG_DIR,
            client_type,
            acc.config_version,
            constants.UPGRADE_PATH_FILE,
        ):
            raise ConfigNotFoundError(
                f"{acc.client.csm_client_type} {acc.config_version} not supported"
            )
        old_version = acc.annotations.get(constants.ACC_CONFIG_VERSION_ANNOTATION_NAME)
        assert_config(
            self.validator.validate_client(acc, old_version),
            f"Upgrade of {acc.client.csm_client_type} from {old_version} to "
            f"{acc.config_version} is not supported",
        )

    @alog.logged_function(log.debug)
    def sync(self, acc: ApexConnectivityClient):
        old_version = acc.annotations.get(constants.ACC_CONFIG_VERSION_ANNOTATION_NAME)
        finalizer_added = add_finalizer(
            self.deploy_manager, acc.manifest, constants.ACC_FINALIZER_NAME
        )
        current = get_state(acc)
        if finalizer_added or current in RETRY_STATES:
            entry_state = CSMState.CREATING
        elif old_version != acc.config_version:
            entry_state = CSMState.UPDATING
        else:
            entry_state = current
        self.set_state(acc, entry_state)

        update_annotations(
            self.deploy_manager,
            acc.manifest,
            {
                constants.ACC_CONFIG_VERSION_ANNOTATION_NAME: acc.config_version,
                constants.ACC_VERSION_ANNOTATION_NAME: constants.ACC_VERSION,
            },
        )

        client = self.render(acc)
        self.synchronizer.apply_objects(_ordered(client))

        name = client.workload["metadata"]["name"]
        counts = live_counts(self.deploy_manager, "StatefulSet", name, acc.namespace)
        healthy = counts is not None and counts.healthy
        self.set_state(
            acc,
            CSMState.SUCCEEDED if healthy else entry_state,
            **{CLIENT_STATUS_KEY: counts},
        )
        self.content_watch.start(WatchTarget.for_acc(acc, name))

    def render(self, acc: ApexConnectivityClient) -> WorkloadSet:
        """Render the client statefulset and its RBAC for a resource"""
        content = self.loader.read(
            constants.CLIENT_CONFIG_DIR,
            _client_dir(acc),
            acc.config_version,
            CLIENT_MANIFEST_FILE,
        )
        content = modify_common(content, acc.name, acc.namespace, acc.client.common)
        client = WorkloadSet.from_documents(split_documents(content), "StatefulSet")

        client.pod_metadata.setdefault("labels", {}).update(acc.pod_labels)
        if acc.client.common.image:
            container = find_container(client.pod_spec, CLIENT_CONTAINER_NAME)
            if container is not None:
                container["image"] = acc.client.common.image
        set_owner_reference(
            client.workload,
            acc.manifest,
            block_owner_deletion=not acc.client.force_remove_client,
        )
        return client

    ## Deletion ################################################################

    @alog.logged_function(log.debug)
    def finalize(self, acc: ApexConnectivityClient) -> ReconciliationResult:
        if not has_finalizer(acc.manifest, constants.ACC_FINALIZER_NAME):
            self.content_watch.stop(acc.namespace, acc.name)
            return done()

        try:
            if acc.client.force_remove_client:
                log.info("Removing client of %s", acc)
                self.synchronizer.delete_objects(_ordered(self.render(acc)))
            self.content_watch.stop(acc.namespace, acc.name)
            remove_finalizer(
                self.deploy_manager, acc.manifest, constants.ACC_FINALIZER_NAME
            )
        except CsmOperatorError as err:
            log.warning("Failed to clean up %s: %s", acc, err)
            self.recorder.warning(
                acc, constants.EVENT_REASON_DELETED, f"Failed to remove client: {err}"
            )
            return requeue(err)

        self.recorder.normal(
            acc, constants.EVENT_REASON_DELETED, "Object finalizer is deleted"
        )
        return done()


def _client_dir(acc: ApexConnectivityClient) -> str:
    return acc.client.csm_client_type.lower()


def _ordered(client: WorkloadSet):
    objects = []
    for kinds in [SERVICE_ACCOUNT_KINDS, ROLE_KINDS, BINDING_KINDS]:
        objects.extend(client.rbac_objects(kinds))
    objects.append(client.workload)
    return objects
