"""
VMM Hardware - 虚拟机硬件设备模型与 XML 编解码

为 libvirt 域提供设备模型、无损 XML 往返编解码、
基于域能力的设备校验以及外部编辑器覆盖编辑。
"""

__version__ = "1.0.0"
__description__ = "Device model, lossless XML codec and capability filter for libvirt domains"

# 导出主要类和函数
from .capabilities import (
    CapabilityCache,
    CapabilitySnapshot,
    Violation,
    ViolationReason,
    legal_values,
    parse_domain_capabilities,
    validate,
)
from .codec import canonical_equal, decode_device, decode_domain, encode_device, encode_domain
from .config import Config
from .devices import Device, DeviceKind, DomainDocument, UnknownDevice
from .editor import EditBuffer, EditOutcome, EditState, OverrideEditor
from .exceptions import (
    BackendUnavailableError,
    ConfigurationError,
    EditorLaunchFailedError,
    EditSessionError,
    MalformedXmlError,
    RejectedByHypervisorError,
    ResourceNotFoundError,
    UnsupportedByCapabilitiesError,
    VmmHardwareError,
)
from .session import HardwareSession

__all__ = [
    "__version__",
    "__description__",
    "BackendUnavailableError",
    "CapabilityCache",
    "CapabilitySnapshot",
    "Config",
    "ConfigurationError",
    "Device",
    "DeviceKind",
    "DomainDocument",
    "EditBuffer",
    "EditOutcome",
    "EditState",
    "EditSessionError",
    "EditorLaunchFailedError",
    "HardwareSession",
    "MalformedXmlError",
    "OverrideEditor",
    "RejectedByHypervisorError",
    "ResourceNotFoundError",
    "UnknownDevice",
    "UnsupportedByCapabilitiesError",
    "Violation",
    "ViolationReason",
    "VmmHardwareError",
    "canonical_equal",
    "decode_device",
    "decode_domain",
    "encode_device",
    "encode_domain",
    "legal_values",
    "parse_domain_capabilities",
    "validate",
]
