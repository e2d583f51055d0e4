"""Exception classes for the Extension system"""

from enum import Enum
from typing import Optional


class InstallErrorCode(str, Enum):
    """Standardized error codes for step execution failures"""
    INVALID_STEP = "INVALID_STEP"
    UNSUPPORTED_STEP_TYPE = "UNSUPPORTED_STEP_TYPE"
    COMMAND_FAILED = "COMMAND_FAILED"
    TIMEOUT = "TIMEOUT"
    NAMESPACE_ERROR = "NAMESPACE_ERROR"
    GATEWAY_FAILED = "GATEWAY_FAILED"
    RBAC_FAILED = "RBAC_FAILED"
    UNKNOWN = "UNKNOWN"


class ExtensionError(Exception):
    """Base exception for all extension-related errors"""
    pass


class DescriptorError(ExtensionError):
    """Raised when the extension description cannot be found or parsed"""
    pass


class FetchError(ExtensionError):
    """Raised when an asset cannot be resolved or downloaded"""
    pass


class InstallationError(ExtensionError):
    """Raised when an install or uninstall step fails"""

    def __init__(
        self,
        message: str,
        error_code: InstallErrorCode = InstallErrorCode.UNKNOWN,
        hint: Optional[str] = None,
        failed_step: Optional[str] = None
    ):
        super().__init__(message)
        self.error_code = error_code
        self.hint = hint
        self.failed_step = failed_step


class WaitTimeoutError(InstallationError):
    """Raised when a wait-for condition is not met within its timeout"""

    def __init__(self, message: str, output: str = "", failed_step: Optional[str] = None):
        super().__init__(
            message,
            error_code=InstallErrorCode.TIMEOUT,
            hint="Check the state of the resources in the cluster or increase the timeout",
            failed_step=failed_step
        )
        self.output = output


class CredentialError(ExtensionError):
    """Raised when credential values cannot be read from cluster secrets"""
    pass


class RegistryError(ExtensionError):
    """Raised when the extension registry returns an unexpected response"""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ClusterError(ExtensionError):
    """Raised when a cluster query or mutation fails"""

    def __init__(self, message: str, output: str = ""):
        super().__init__(message)
        self.output = output
