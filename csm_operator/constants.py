"""
Shared module to hold constant values for the library
"""

# Finalizers owned by the operator, one per managed kind
CSM_FINALIZER_NAME = "finalizer.dell.emc.com"
ACC_FINALIZER_NAME = "finalizer.dell.com"

# Annotations written to the managed resources
CONFIG_VERSION_ANNOTATION_NAME = "storage.dell.com/CSIDriverConfigVersion"
PREVIOUS_CONFIG_ANNOTATION_NAME = "storage.dell.com/previously-applied-configuration"
CSM_VERSION_ANNOTATION_NAME = "storage.dell.com/CSMVersion"
ACC_CONFIG_VERSION_ANNOTATION_NAME = (
    "storage.dell.com/ApexConnectivityClientConfigVersion"
)
ACC_VERSION_ANNOTATION_NAME = "storage.dell.com/AccVersion"
ACC_VERSION = "v1.0.0"

# Labels placed on workload pod templates that tie live objects back to the
# managed resource which owns them
CSM_LABEL_NAME = "csm"
CSM_NAMESPACE_LABEL_NAME = "csmNamespace"
ACC_LABEL_NAME = "acc"
ACC_NAMESPACE_LABEL_NAME = "accNamespace"

# Event types and reasons
EVENT_NORMAL = "Normal"
EVENT_WARNING = "Warning"
EVENT_REASON_UPDATED = "Updated"
EVENT_REASON_DELETED = "Deleted"
EVENT_REASON_COMPLETED = "Completed"

# Placeholders replaced in every template
RELEASE_NAME_PLACEHOLDER = "<DriverDefaultReleaseName>"
RELEASE_NAMESPACE_PLACEHOLDER = "<DriverDefaultReleaseNamespace>"
KUBELET_CONFIG_DIR_PLACEHOLDER = "<KUBELET_CONFIG_DIR>"
DEFAULT_IMAGE_PULL_POLICY = "IfNotPresent"
KUBELET_CONFIG_DIR_ENV = "KUBELET_CONFIG_DIR"
DEFAULT_KUBELET_CONFIG_DIR = "/var/lib/kubelet"

# Placeholders replaced in module templates
PLUGIN_IDENTIFIER_PLACEHOLDER = "<DriverPluginIdentifier>"
CONFIG_PARAMS_VOLUME_MOUNT_PLACEHOLDER = "<DriverConfigParamsVolumeMount>"
NAMESPACE_PLACEHOLDER = "<NAMESPACE>"
NAME_PLACEHOLDER = "<NAME>"

# Layout of the operator config directory
DRIVER_CONFIG_DIR = "driverconfig"
MODULE_CONFIG_DIR = "moduleconfig"
CLIENT_CONFIG_DIR = "clientconfig"
COMMON_DIR = "common"
UPGRADE_PATH_FILE = "upgrade-path.yaml"
MODULE_VERSION_VALUES_FILE = "version-values.yaml"

# Name of the containers in the driver workloads
DRIVER_CONTAINER_NAME = "driver"

# Default node dns policy
DEFAULT_NODE_DNS_POLICY = "ClusterFirstWithHostNet"

# API groups whose kinds are always installed in a cluster. Objects of any
# other group are backed by a CRD that may have been removed.
BUILTIN_API_GROUPS = {
    "",
    "apps",
    "batch",
    "policy",
    "networking.k8s.io",
    "rbac.authorization.k8s.io",
    "storage.k8s.io",
    "admissionregistration.k8s.io",
    "apiextensions.k8s.io",
    "scheduling.k8s.io",
}

# Delimiter used for nested dict keys
NESTED_DICT_DELIM = "."
