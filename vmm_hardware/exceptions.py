"""
Custom exceptions for vmm-hardware.

This module defines the error taxonomy shared by the device model, the XML
codec, the capability filter, the override editor bridge and the backend
adapters.
"""

from typing import List, Optional


class VmmHardwareError(Exception):
    """Base exception for all vmm-hardware errors."""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class MalformedXmlError(VmmHardwareError):
    """Raised when domain or device XML cannot be parsed structurally.

    ``buffer`` is the still-open edit buffer when raised from an edit, so the
    same text can be edited again.
    """

    def __init__(
        self,
        message: str,
        line: Optional[int] = None,
        column: Optional[int] = None,
        details: dict = None,
    ):
        super().__init__(message, details)
        self.line = line
        self.column = column
        self.buffer = None


class UnsupportedByCapabilitiesError(VmmHardwareError):
    """Raised when a save is blocked by capability violations."""

    def __init__(self, message: str, violations: List = None, details: dict = None):
        super().__init__(message, details)
        self.violations = list(violations or [])


class BackendUnavailableError(VmmHardwareError):
    """Raised when the hypervisor connection is missing or lost."""
    pass


class RejectedByHypervisorError(VmmHardwareError):
    """Raised when the hypervisor refuses a domain definition.

    ``detail`` is the hypervisor's own message, unmodified.
    """

    def __init__(self, detail: str, details: dict = None):
        super().__init__(f"Rejected by hypervisor: {detail}", details)
        self.detail = detail


class EditorLaunchFailedError(VmmHardwareError):
    """Raised when the external editor command cannot be started.

    ``buffer`` is the still-open edit buffer when raised from an edit.
    """

    def __init__(
        self,
        message: str,
        command: Optional[List[str]] = None,
        buffer_path: Optional[str] = None,
        details: dict = None,
    ):
        super().__init__(message, details)
        self.command = list(command or [])
        self.buffer_path = buffer_path
        self.buffer = None


class EditSessionError(VmmHardwareError):
    """Raised when an edit buffer is used in the wrong state."""
    pass


class ResourceNotFoundError(VmmHardwareError):
    """Raised when a requested libvirt resource is not found."""
    pass


class ConfigurationError(VmmHardwareError):
    """Raised when configuration is invalid or missing."""
    pass
