"""
This module implements custom exceptions
"""

## Base Error ##################################################################


class CsmOperatorError(Exception):
    """Base class for all csm_operator exceptions"""

    def __init__(self, message: str, is_fatal_error: bool):
        """Construct with a flag indicating whether this is a fatal error. This
        will be a static property of all children.
        """
        super().__init__(message)
        self._is_fatal_error = is_fatal_error

    @property
    def is_fatal_error(self):
        """Property indicating whether or not this error should stop the
        current reconcile pass without a retry
        """
        return self._is_fatal_error


## Fatal Errors ################################################################


class CsmOperatorFatalError(CsmOperatorError):
    """A CsmOperatorFatalError is one that indicates an unexpected failure
    during a reconciliation pass.
    """

    def __init__(self, message: str = ""):
        super().__init__(message=message, is_fatal_error=True)


class ConfigError(CsmOperatorFatalError):
    """Exception caused by user-provided configuration that can not be
    installed as given. The resource is marked InvalidConfig and the pass is
    not retried until the resource changes.
    """


class ConfigNotFoundError(ConfigError):
    """Exception raised when a template or version file for the requested
    driver, module or client version does not exist
    """


class ClusterError(CsmOperatorFatalError):
    """Exception caused when a cluster operation fails in an unexpected way"""


class ModuleInjectionError(CsmOperatorFatalError):
    """Exception raised when a module transform fails while composing the
    bundle for a resource
    """

    def __init__(self, module_name: str, message: str = ""):
        self.module_name = module_name
        super().__init__(f"module [{module_name}]: {message}")


class CleanupError(CsmOperatorFatalError):
    """Exception raised when the objects of a module that must be removed can
    not be rendered. The pass is retried and the applied snapshot is kept.
    """

    def __init__(self, module_name: str, message: str = ""):
        self.module_name = module_name
        super().__init__(f"cleanup of module [{module_name}]: {message}")


class UpgradePathError(CsmOperatorFatalError):
    """Exception raised when the version compatibility data can not be read"""


## Expected Errors #############################################################


class CsmOperatorExpectedError(CsmOperatorError):
    """A CsmOperatorExpectedError is one that indicates an expected failure
    condition that should cause a reconciliation to terminate, but is expected
    to resolve in a subsequent reconciliation.
    """

    def __init__(self, message: str = ""):
        super().__init__(message=message, is_fatal_error=False)


class PreconditionError(CsmOperatorExpectedError):
    """Exception caused when an expected precondition is not met"""


class VerificationError(CsmOperatorExpectedError):
    """Exception caused during resource verification when a desired verification
    state is not reached.
    """


## Assertions ##################################################################


def assert_precondition(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a PreconditionError"""
    if not condition:
        raise PreconditionError(message)


def assert_verified(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a VerificationError. This
    should be used when verifying the state of a resource in the cluster.
    """
    if not condition:
        raise VerificationError(message)


def assert_config(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a ConfigError. This should be
    used when validating the spec of a managed resource.
    """
    if not condition:
        raise ConfigError(message)


def assert_cluster(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a ClusterError. This should
    be used when an operation in the cluster (such as applying an object or
    fetching an existing secret) must succeed.
    """
    if not condition:
        raise ClusterError(message)
