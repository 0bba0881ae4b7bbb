"""
The in-memory set of objects composed for one reconcile pass
"""

# Standard
from dataclasses import dataclass, field
from typing import Dict, List, Optional

# Local
from ..exceptions import assert_config

# Kinds which may accompany a workload in its template, in apply order
SERVICE_ACCOUNT_KINDS = ["ServiceAccount"]
ROLE_KINDS = ["ClusterRole", "Role"]
BINDING_KINDS = ["ClusterRoleBinding", "RoleBinding"]
RBAC_KINDS = SERVICE_ACCOUNT_KINDS + ROLE_KINDS + BINDING_KINDS


@dataclass
class WorkloadSet:
    """A workload template and the RBAC objects it runs with"""

    workload: dict
    rbac: Dict[str, dict] = field(default_factory=dict)

    @classmethod
    def from_documents(cls, docs: List[dict], workload_kind: str) -> "WorkloadSet":
        """Sort the documents of a workload template by kind

        Args:
            docs:  List[dict]
                The parsed documents of the template
            workload_kind:  str
                The kind of the workload (Deployment, DaemonSet, StatefulSet)

        Returns:
            workload_set:  WorkloadSet
                The workload with its RBAC objects
        """
        workload = None
        rbac = {}
        for doc in docs:
            kind = doc["kind"]
            if kind == workload_kind:
                assert_config(workload is None, f"Multiple {kind}s found in template")
                workload = doc
            else:
                assert_config(
                    kind in RBAC_KINDS, f"Unexpected kind {kind} in workload template"
                )
                rbac[kind] = doc
        assert_config(workload is not None, f"No {workload_kind} found in template")
        return cls(workload=workload, rbac=rbac)

    @property
    def pod_spec(self) -> dict:
        return self.workload["spec"]["template"]["spec"]

    @property
    def pod_metadata(self) -> dict:
        return self.workload["spec"]["template"].setdefault("metadata", {})

    @property
    def cluster_role(self) -> Optional[dict]:
        return self.rbac.get("ClusterRole")

    def rbac_objects(self, kinds: List[str]) -> List[dict]:
        return [self.rbac[kind] for kind in kinds if kind in self.rbac]


@dataclass
class Bundle:
    """Driver registration, config map, controller and node for one resource"""

    driver_registration: dict
    config_map: dict
    controller: WorkloadSet
    node: WorkloadSet

    def ordered_objects(self, include_node: bool = True) -> List[dict]:
        """All objects in the order they must be applied"""
        workload_sets = [self.controller] + ([self.node] if include_node else [])
        objects = []
        for kinds in [SERVICE_ACCOUNT_KINDS, ROLE_KINDS, BINDING_KINDS]:
            for workload_set in workload_sets:
                objects.extend(workload_set.rbac_objects(kinds))
        objects.append(self.driver_registration)
        objects.append(self.config_map)
        objects.append(self.controller.workload)
        if include_node:
            objects.append(self.node.workload)
        return objects
