"""
Package exports
"""

# Local
from . import config, reconcile, status
from .acc_controller import AccReconciler
from .csm_controller import CsmReconciler
from .deploy_manager import DeployManagerBase
from .exceptions import (
    assert_cluster,
    assert_config,
    assert_precondition,
    assert_verified,
)
from .manager import OperatorManager
from .reconcile import ReconciliationResult
from .resource import ApexConnectivityClient, ContainerStorageModule
