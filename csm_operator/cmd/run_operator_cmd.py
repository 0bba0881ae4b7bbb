"""
This is the main entrypoint command for running the operator
"""
# Standard
from typing import List, Optional
import argparse
import os
import signal

# Third Party
import yaml

# First Party
import alog

# Local
from .. import config
from ..deploy_manager import DeployManagerBase, DryRunDeployManager
from ..manager import OperatorManager
from .base import CmdBase

log = alog.use_channel("MAIN")


class RunOperatorCmd(CmdBase):
    __doc__ = __doc__

    ## Interface ##

    def add_subparser(
        self,
        subparsers: argparse._SubParsersAction,
    ) -> argparse.ArgumentParser:
        parser = subparsers.add_parser("run", help=__doc__)
        runtime_args = parser.add_argument_group("Runtime Configuration")
        runtime_args.add_argument(
            "--resource_dir",
            "-r",
            default=None,
            help="(dry run) Path to a directory of yaml files that should exist in the cluster",
        )
        runtime_args.add_argument(
            "--namespace",
            "-n",
            action="append",
            default=None,
            help="Namespace to watch. May be repeated. Defaults to watch_namespace",
        )
        return parser

    def cmd(self, args: argparse.Namespace):
        # Validate args
        assert args.resource_dir is None or (
            config.dry_run and os.path.isdir(args.resource_dir)
        ), "Can only specify --resource_dir with dry run and it must point to a valid directory"

        # Parse pre-populated resources if needed
        resources = self._parse_resource_dir(args.resource_dir)

        # Create the manager for both reconcilers
        manager = OperatorManager(
            deploy_manager=self._setup_deploy_manager(resources),
            namespace_list=args.namespace,
        )

        # Register the signal handler to stop the threads
        def do_stop(*_, **__):  # pragma: no cover
            manager.stop()

        signal.signal(signal.SIGINT, do_stop)
        signal.signal(signal.SIGTERM, do_stop)

        # Run until a signal arrives
        log.info("Starting Watches")
        if manager.start():
            manager.wait()

        # All done!
        log.info("SHUTTING DOWN")

    ## Impl ##

    @staticmethod
    def _parse_resource_dir(resource_dir: Optional[str]) -> List[dict]:
        """If given, this will parse all yaml files found in the given directory"""
        all_resources = []
        if resource_dir is not None:
            for fname in sorted(os.listdir(resource_dir)):
                if fname.endswith(".yaml") or fname.endswith(".yml"):
                    resource_path = os.path.join(resource_dir, fname)
                    log.debug3("Reading resource file [%s]", resource_path)
                    with open(resource_path, encoding="utf-8") as handle:
                        all_resources.extend(
                            doc for doc in yaml.safe_load_all(handle) if doc
                        )
        return all_resources

    @staticmethod
    def _setup_deploy_manager(resources: List[dict]) -> Optional[DeployManagerBase]:
        """In dry run mode the in-memory cluster is returned, preloaded with
        the given resources. Otherwise None selects the real cluster.
        """
        if config.dry_run:
            log.info("Running DRY RUN")
            return DryRunDeployManager(resources=resources)
        return None
