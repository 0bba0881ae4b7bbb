"""
The OperatorManager wires the reconcilers of both managed kinds to their work
queues, worker pools and resource watches and owns their lifecycle
"""

# Standard
from typing import List, Optional
import threading

# First Party
import alog

# Local
from . import config
from .acc_controller import AccReconciler
from .content_watch import ContentWatch
from .csm_controller import CsmReconciler
from .deploy_manager import DeployManagerBase, OpenshiftDeployManager
from .events import EventRecorder
from .operator_config import OperatorConfig
from .reconcile import ReconcilerBase
from .threads import RateLimitedWorkQueue, ResourceWatchThread, WorkerPool

log = alog.use_channel("MANAGER")


class ControllerRunner:
    """The queue, workers and watches of a single reconciler"""

    def __init__(
        self,
        reconciler: ReconcilerBase,
        deploy_manager: DeployManagerBase,
        namespace_list: List[Optional[str]],
    ):
        self.reconciler = reconciler
        name = reconciler.kind.lower()
        self.queue = RateLimitedWorkQueue(name=f"{name}_queue")
        self.pool = WorkerPool(
            self.queue, reconciler.safe_reconcile, name=f"{name}_workers"
        )
        self.watches = [
            ResourceWatchThread(
                self.queue,
                reconciler.kind,
                reconciler.api_version,
                namespace=namespace,
                deploy_manager=deploy_manager,
            )
            for namespace in namespace_list
        ]

    def __str__(self):
        return f"ControllerRunner({self.reconciler.kind})"

    def start(self):
        self.pool.start()
        for watch_thread in self.watches:
            log.debug("Starting watch_thread: %s", watch_thread.name)
            watch_thread.start_thread()

    def stop(self):
        for watch_thread in self.watches:
            watch_thread.stop_thread()
        self.pool.stop()


class OperatorManager:
    """Runs the reconcilers of the primary and the client resource in one
    process. Both share the deploy manager, the event recorder and the content
    watch.
    """

    def __init__(
        self,
        deploy_manager: Optional[DeployManagerBase] = None,
        namespace_list: Optional[List[str]] = None,
        operator_config: Optional[OperatorConfig] = None,
    ):
        """
        Args:
            deploy_manager:  Optional[DeployManagerBase]
                The deploy manager to use. An OpenshiftDeployManager is
                created when not given.
            namespace_list:  Optional[List[str]]
                Namespaces to watch. Defaults to config.watch_namespace. An
                empty list or "*" watches the whole cluster.
            operator_config:  Optional[OperatorConfig]
                Settings of the template tree
        """
        if deploy_manager is None:
            log.debug("Using OpenshiftDeployManager")
            deploy_manager = OpenshiftDeployManager()
        self.deploy_manager = deploy_manager

        if namespace_list is None and config.watch_namespace:
            namespace_list = str(config.watch_namespace).split(",")
        if not namespace_list or "*" in namespace_list:
            self.namespace_list: List[Optional[str]] = [None]
        else:
            self.namespace_list = [ns.strip() for ns in namespace_list if ns.strip()]

        self.shutdown = threading.Event()
        self.recorder = EventRecorder(self.deploy_manager)
        self.content_watch = ContentWatch(self.deploy_manager, self.recorder)
        operator_config = operator_config or OperatorConfig.from_library_config()
        self.reconcilers: List[ReconcilerBase] = [
            CsmReconciler(
                self.deploy_manager,
                operator_config=operator_config,
                content_watch=self.content_watch,
                recorder=self.recorder,
            ),
            AccReconciler(
                self.deploy_manager,
                operator_config=operator_config,
                content_watch=self.content_watch,
                recorder=self.recorder,
            ),
        ]
        self.runners = [
            ControllerRunner(reconciler, self.deploy_manager, self.namespace_list)
            for reconciler in self.reconcilers
        ]

    ## Interface ###############################################################

    def start(self) -> bool:
        """Start all threads

        Returns:
            started:  bool
                False if the manager was already shut down
        """
        if self.shutdown.is_set():
            return False
        log.info("Starting OperatorManager for namespaces %s", self.namespace_list)
        for runner in self.runners:
            runner.start()
        return True

    def wait(self):
        """Wait shutdown to be signaled"""
        self.shutdown.wait()

    def stop(self):
        """Stop all threads and every content watch"""
        log.info("Stopping OperatorManager")
        self.shutdown.set()
        for runner in self.runners:
            runner.stop()
        self.content_watch.stop_all()
