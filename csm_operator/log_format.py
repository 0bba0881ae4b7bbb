"""
Custom logging formats that carry the identity of the resource being
reconciled
"""

# First Party
from alog import AlogJsonFormatter


class CsmJsonFormatter(AlogJsonFormatter):
    """Custom Log Format that extends AlogJsonFormatter to add the identifiers
    of the managed resource and the reconciliation id to the json. Both are
    read from the `resource` and `reconcile_id` log record extras.
    """

    _FIELDS_TO_PRINT = AlogJsonFormatter._FIELDS_TO_PRINT + [
        "process",
        "thread",
        "threadName",
        "kind",
        "apiVersion",
        "namespace",
        "resourceName",
        "reconciliationId",
    ]

    def format(self, record):
        if reconcile_id := getattr(record, "reconcile_id", None):
            record.reconciliationId = reconcile_id

        if resource := getattr(record, "resource", None):
            record.kind = resource.get("kind")
            record.apiVersion = resource.get("apiVersion")

            metadata = resource.get("metadata", {})
            record.namespace = metadata.get("namespace")
            record.resourceName = metadata.get("name")

        return super().format(record)
