"""
The CsmReconciler drives the installed state of a ContainerStorageModule
toward its spec: prechecks, finalizer and annotations, differential cleanup,
bundle sync, status and the content watch.
"""

# Standard
from typing import Optional, Tuple

# First Party
import alog

# Local
from . import config, constants
from .cleanup import DifferentialCleanup
from .content_watch import ContentWatch, WatchTarget
from .deploy_manager import DeployManagerBase
from .events import EventRecorder
from .exceptions import CsmOperatorError, assert_config
from .manifests.bundle import Bundle
from .manifests.drivers import get_driver_profile
from .manifests.loader import TemplateLoader
from .manifests.resolver import ManifestResolver
from .metadata import add_finalizer, has_finalizer, remove_finalizer, update_annotations
from .modules.pipeline import ModulePipeline
from .operator_config import OperatorConfig
from .reconcile import ReconcilerBase, ReconciliationResult, done, requeue
from .resource import ContainerStorageModule
from .snapshot import AppliedSnapshot
from .status import (
    CONTROLLER_STATUS_KEY,
    NODE_STATUS_KEY,
    RETRY_STATES,
    CSMState,
    get_state,
    live_counts,
)
from .synchronizer import ResourceSynchronizer
from .threads.work_queue import ResourceKey
from .upgrade import UpgradePathValidator

log = alog.use_channel("CSMCTRL")


class CsmReconciler(ReconcilerBase):
    """Reconciler of the primary managed resource"""

    def __init__(
        self,
        deploy_manager: DeployManagerBase,
        operator_config: Optional[OperatorConfig] = None,
        content_watch: Optional[ContentWatch] = None,
        recorder: Optional[EventRecorder] = None,
        loader: Optional[TemplateLoader] = None,
    ):
        """
        Args:
            deploy_manager:  DeployManagerBase
                The deploy manager used for every cluster operation
            operator_config:  Optional[OperatorConfig]
                Settings of the template tree. Built from the library config
                when not given.
            content_watch:  Optional[ContentWatch]
                The content watch shared by the reconcilers of this process
            recorder:  Optional[EventRecorder]
                Recorder for the events emitted on the resource
            loader:  Optional[TemplateLoader]
                Loader over the template tree
        """
        super().__init__(
            deploy_manager, config.csm_kind, config.api_version, recorder=recorder
        )
        self.operator_config = operator_config or OperatorConfig.from_library_config()
        self.loader = loader or TemplateLoader(self.operator_config)
        self.resolver = ManifestResolver(self.operator_config, self.loader)
        self.pipeline = ModulePipeline(self.operator_config, self.loader)
        self.validator = UpgradePathValidator(self.loader)
        self.synchronizer = ResourceSynchronizer(deploy_manager)
        self.cleanup = DifferentialCleanup(self.pipeline, self.synchronizer)
        self.content_watch = content_watch or ContentWatch(
            deploy_manager, self.recorder
        )

    ## Reconciliation ##########################################################

    def reconcile_resource(
        self, manifest: dict, reconcile_id: str
    ) -> ReconciliationResult:
        cr = ContainerStorageModule(manifest)
        if cr.is_being_deleted:
            return self.finalize(cr)

        try:
            self.run_prechecks(cr)
        except CsmOperatorError as err:
            return self.handle_error(cr, err)
        self.recorder.normal(
            cr, constants.EVENT_REASON_UPDATED, f"PreChecks ok: {cr.name}"
        )

        try:
            self.sync(cr)
        except CsmOperatorError as err:
            log.debug("Sync of %s failed [%s]", cr, reconcile_id, exc_info=True)
            return self.handle_error(cr, err)

        self.recorder.normal(
            cr,
            constants.EVENT_REASON_COMPLETED,
            f"Driver install completed: {cr.name}",
        )
        return done()

    def on_missing(self, key: ResourceKey):
        self.content_watch.stop(key.namespace, key.name)

    ## Prechecks ###############################################################

    @alog.logged_function(log.debug2)
    def run_prechecks(self, cr: ContainerStorageModule):
        """Validate the driver, the modules and every configVersion change

        Raises:
            ConfigError if the resource can not be installed as given
            ClusterError if a dependency can not be looked up
            UpgradePathError if an upgrade-path file is unreadable
        """
        if cr.driver_type:
            profile = get_driver_profile(cr.driver_type)
            assert_config(cr.config_version, f"No driver configVersion set for {cr}")
            self.resolver.check_version(cr.driver_type, cr.config_version)

            old_version = cr.annotations.get(constants.CONFIG_VERSION_ANNOTATION_NAME)
            assert_config(
                self.validator.validate_driver(cr, old_version),
                f"Upgrade of {cr.driver_type} from {old_version} to "
                f"{cr.config_version} is not supported",
            )
            profile.run_prechecks(cr, self.deploy_manager)

        self.pipeline.run_prechecks(cr, self.deploy_manager)
        snapshot = AppliedSnapshot.from_annotations(cr.annotations)
        for module, ctx in self.pipeline.contexts(cr):
            old_version = self.validator.previous_module_version(snapshot, module.name)
            assert_config(
                self.validator.validate_module(
                    module, ctx.config_dir, old_version, ctx.version
                ),
                f"Upgrade of module {module.name} from {old_version} to "
                f"{ctx.version} is not supported",
            )

    ## Sync ####################################################################

    @alog.logged_function(log.debug)
    def sync(self, cr: ContainerStorageModule):
        """Bring the cluster in line with the spec of the resource

        Raises:
            CsmOperatorError if any step fails. Earlier steps are not undone.
        """
        snapshot = AppliedSnapshot.from_annotations(cr.annotations)
        finalizer_added = add_finalizer(
            self.deploy_manager, cr.manifest, constants.CSM_FINALIZER_NAME
        )
        entry_state = self.entry_state(cr, snapshot, finalizer_added)
        self.set_state(cr, entry_state)

        annotations = {constants.CSM_VERSION_ANNOTATION_NAME: config.operator_version}
        if cr.config_version:
            annotations[constants.CONFIG_VERSION_ANNOTATION_NAME] = cr.config_version
        update_annotations(self.deploy_manager, cr.manifest, annotations)

        # Objects of switched off features are removed before anything new is
        # applied
        self.cleanup.cleanup(cr, snapshot)

        include_node = not self.pipeline.skips_node_workload(cr)
        bundle = self.resolver.resolve(cr)
        if bundle is not None:
            bundle = self.pipeline.inject(bundle, cr)
            self.synchronizer.sync_bundle(bundle, include_node=include_node)
        for module_name, objects in self.pipeline.standalone_objects(cr):
            log.debug2("Applying %d objects of %s", len(objects), module_name)
            self.synchronizer.apply_objects(objects)

        update_annotations(
            self.deploy_manager,
            cr.manifest,
            {
                constants.PREVIOUS_CONFIG_ANNOTATION_NAME: (
                    AppliedSnapshot.from_resource(cr).to_annotation()
                )
            },
        )
        self.project_status(cr, bundle, include_node, entry_state)

    @staticmethod
    def entry_state(
        cr: ContainerStorageModule,
        snapshot: Optional[AppliedSnapshot],
        finalizer_added: bool,
    ) -> CSMState:
        """The state shown while a pass syncs. A first install or a retry
        after a failed one is Creating. A changed spec is Updating.
        """
        current = get_state(cr)
        if finalizer_added or snapshot is None or current in RETRY_STATES:
            return CSMState.CREATING
        if snapshot.spec != cr.spec:
            return CSMState.UPDATING
        return current

    def project_status(
        self,
        cr: ContainerStorageModule,
        bundle: Optional[Bundle],
        include_node: bool,
        entry_state: CSMState,
    ):
        """Write the post sync status and (re)arm the content watch"""
        if bundle is None:
            self.content_watch.stop(cr.namespace, cr.name)
            self.set_state(cr, CSMState.SUCCEEDED)
            return

        controller_name, node_name = _workload_names(bundle, include_node)
        counts = {
            CONTROLLER_STATUS_KEY: live_counts(
                self.deploy_manager, "Deployment", controller_name, cr.namespace
            )
        }
        if node_name:
            counts[NODE_STATUS_KEY] = live_counts(
                self.deploy_manager, "DaemonSet", node_name, cr.namespace
            )
        healthy = all(value is not None and value.healthy for value in counts.values())
        self.set_state(cr, CSMState.SUCCEEDED if healthy else entry_state, **counts)
        self.content_watch.start(WatchTarget.for_csm(cr, controller_name, node_name))

    ## Deletion ################################################################

    @alog.logged_function(log.debug)
    def finalize(self, cr: ContainerStorageModule) -> ReconciliationResult:
        """Remove what the resource asks to be removed and release it. The
        finalizer stays in place until every removal succeeded.
        """
        if not has_finalizer(cr.manifest, constants.CSM_FINALIZER_NAME):
            log.debug("No finalizer on %s. Nothing to clean up", cr)
            self.content_watch.stop(cr.namespace, cr.name)
            return done()

        try:
            if cr.driver.force_remove_driver:
                log.info("Removing driver and modules of %s", cr)
                include_node = not self.pipeline.skips_node_workload(cr)
                self.cleanup.remove_all(cr, self.resolver.resolve(cr), include_node)
            else:
                forced = [spec for spec in cr.enabled_modules() if spec.force_remove]
                if forced:
                    self.cleanup.remove_modules(cr, forced)
            self.content_watch.stop(cr.namespace, cr.name)
            remove_finalizer(
                self.deploy_manager, cr.manifest, constants.CSM_FINALIZER_NAME
            )
        except CsmOperatorError as err:
            log.warning("Failed to clean up %s: %s", cr, err)
            self.recorder.warning(
                cr, constants.EVENT_REASON_DELETED, f"Failed to remove: {err}"
            )
            return requeue(err)

        self.recorder.normal(
            cr,
            constants.EVENT_REASON_DELETED,
            f"Object finalizer is removed: {cr.name}",
        )
        return done()


def _workload_names(
    bundle: Bundle, include_node: bool
) -> Tuple[str, Optional[str]]:
    controller_name = bundle.controller.workload["metadata"]["name"]
    node_name = bundle.node.workload["metadata"]["name"] if include_node else None
    return controller_name, node_name
