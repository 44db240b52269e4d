"""
Capability filter for device fields.

A ``CapabilitySnapshot`` records which values the active hypervisor/domain
combination accepts for each device element, as reported by libvirt's domain
capabilities XML. ``legal_values`` and ``validate`` consult a snapshot that
is passed in explicitly; ``CapabilityCache`` holds the session's current one
and replaces it atomically.
"""

import threading
import xml.etree.ElementTree as ET
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

from .devices import DEVICE_CLASSES, DeviceBase, DeviceKind, UnknownDevice
from .exceptions import MalformedXmlError
from .logging import get_logger

logger = get_logger(__name__)


# domcaps <enum name=...> -> model field, per device element
ENUM_FIELDS: Dict[str, Dict[str, str]] = {
    "disk": {"diskDevice": "device", "bus": "target_bus", "model": "model"},
    "video": {"modelType": "model"},
    "hostdev": {"mode": "mode", "subsysType": "hostdev_type"},
    "rng": {"model": "model", "backendModel": "backend_model"},
    "filesystem": {"driverType": "driver_type"},
    "tpm": {"model": "model", "backendModel": "backend_type", "backendVersion": "backend_version"},
    "redirdev": {"bus": "bus"},
    "channel": {"type": "source_type"},
    "console": {"type": "source_type"},
    "panic": {"model": "model"},
}

REQUIRED_FIELDS: Dict[DeviceKind, Tuple[str, ...]] = {
    DeviceKind.DISK: ("target_dev",),
    DeviceKind.NETWORK: ("interface_type",),
    DeviceKind.CONTROLLER: ("controller_type",),
    DeviceKind.INPUT: ("input_type",),
    DeviceKind.SOUND: ("model",),
    DeviceKind.HOSTDEV: ("hostdev_type",),
    DeviceKind.CHAR: ("source_type",),
    DeviceKind.WATCHDOG: ("model",),
    DeviceKind.FILESYSTEM: ("target_dir",),
    DeviceKind.SMARTCARD: ("mode",),
    DeviceKind.USBREDIR: ("bus", "redir_type"),
    DeviceKind.TPM: ("backend_type",),
    DeviceKind.RNG: ("backend_model",),
}

EXCLUSIVE_FIELDS: Dict[DeviceKind, Tuple[Tuple[str, ...], ...]] = {
    DeviceKind.DISK: (("source_file", "source_dev", "source_dir", "source_protocol"),),
    DeviceKind.NETWORK: (("source_network", "source_bridge"),),
}


class ViolationReason(str, Enum):
    """Why a field failed validation."""

    NOT_IN_LEGAL_SET = "not_in_legal_set"
    REQUIRED_MISSING = "required_missing"
    MUTUALLY_EXCLUSIVE = "mutually_exclusive"
    UNSUPPORTED_DEVICE = "unsupported_device"


class Violation(BaseModel):
    """One validation finding against a device."""

    model_config = ConfigDict(frozen=True)

    kind: DeviceKind = Field(description="Device kind")
    field: str = Field(description="Offending field, 'kind' for unsupported devices")
    reason: ViolationReason
    value: Optional[str] = Field(default=None, description="Offending value")
    legal: Optional[Tuple[str, ...]] = Field(default=None, description="Sorted legal values")
    index: Optional[int] = Field(default=None, description="Device index in the document")
    conflicts_with: Optional[str] = None

    @property
    def message(self) -> str:
        where = f"device #{self.index} " if self.index is not None else ""
        if self.reason is ViolationReason.NOT_IN_LEGAL_SET:
            return (
                f"{where}{self.kind.value}.{self.field}={self.value!r} "
                f"not supported (legal: {', '.join(self.legal or ())})"
            )
        if self.reason is ViolationReason.REQUIRED_MISSING:
            return f"{where}{self.kind.value}.{self.field} is required"
        if self.reason is ViolationReason.MUTUALLY_EXCLUSIVE:
            return f"{where}{self.kind.value}.{self.field} cannot be set together with {self.conflicts_with}"
        return f"{where}{self.kind.value} devices are not supported by the hypervisor"


class DeviceCapability(BaseModel):
    """Capabilities of one ``<devices>`` child in domain capabilities."""

    model_config = ConfigDict(frozen=True)

    supported: bool = True
    enums: Dict[str, FrozenSet[str]] = Field(default_factory=dict, description="Model field -> legal values")
    raw_enums: Dict[str, Tuple[str, ...]] = Field(
        default_factory=dict, description="Every <enum> as reported, by its own name"
    )


class CapabilitySnapshot(BaseModel):
    """Immutable view of what the hypervisor supports for one domain."""

    model_config = ConfigDict(frozen=True)

    devices: Dict[str, DeviceCapability] = Field(default_factory=dict, description="Keyed by element name")
    features: FrozenSet[str] = Field(default_factory=frozenset)
    emulator: Optional[str] = None
    arch: Optional[str] = None
    machine: Optional[str] = None
    domain_type: Optional[str] = None

    @classmethod
    def build(
        cls,
        legal: Mapping[str, Mapping[str, Iterable[str]]],
        unsupported: Iterable[str] = (),
        **kwargs,
    ) -> "CapabilitySnapshot":
        """Build a snapshot from ``{element: {field: values}}``."""
        devices = {
            element: DeviceCapability(enums={f: frozenset(v) for f, v in fields.items()})
            for element, fields in legal.items()
        }
        for element in unsupported:
            devices[element] = DeviceCapability(supported=False)
        return cls(devices=devices, **kwargs)

    def device(self, element: str) -> Optional[DeviceCapability]:
        return self.devices.get(element)


def _element_for(target: Union[DeviceBase, DeviceKind, str]) -> str:
    """Domain-capabilities element name for a device, kind or element name."""
    if isinstance(target, DeviceBase):
        return "" if isinstance(target, UnknownDevice) else target.element_name
    if isinstance(target, DeviceKind):
        if target is DeviceKind.UNKNOWN:
            return ""
        if target is DeviceKind.CHAR:
            raise ValueError(
                "Char devices are described per element; pass the device or "
                "'serial', 'parallel', 'console' or 'channel'"
            )
        return DEVICE_CLASSES[target].element_names[0]
    return target


def parse_domain_capabilities(data: Union[str, bytes]) -> CapabilitySnapshot:
    """
    Build a snapshot from ``virConnect.getDomainCapabilities`` output.

    Raises:
        MalformedXmlError: if the XML cannot be parsed or is not domcaps
    """
    try:
        root = ET.fromstring(data)
    except ET.ParseError as e:
        line, column = getattr(e, "position", (None, None))
        raise MalformedXmlError(f"Malformed capabilities XML: {e}", line=line, column=column) from e
    if root.tag != "domainCapabilities":
        raise MalformedXmlError(f"Expected <domainCapabilities> root element, found <{root.tag}>")

    devices: Dict[str, DeviceCapability] = {}
    devices_elem = root.find("devices")
    for elem in devices_elem if devices_elem is not None else ():
        raw_enums = {
            enum.get("name"): tuple(value.text or "" for value in enum.findall("value"))
            for enum in elem.findall("enum")
        }
        mapping = ENUM_FIELDS.get(elem.tag, {})
        enums = {
            mapping[name]: frozenset(values)
            for name, values in raw_enums.items()
            if name in mapping
        }
        devices[elem.tag] = DeviceCapability(
            supported=elem.get("supported", "yes") == "yes",
            enums=enums,
            raw_enums=raw_enums,
        )

    features = frozenset(
        feature.tag
        for feature in root.findall("features/*")
        if feature.get("supported") == "yes"
    )

    snapshot = CapabilitySnapshot(
        devices=devices,
        features=features,
        emulator=root.findtext("path"),
        arch=root.findtext("arch"),
        machine=root.findtext("machine"),
        domain_type=root.findtext("domain"),
    )
    logger.debug(
        "Parsed domain capabilities for {} {}: {} device elements",
        snapshot.arch,
        snapshot.machine,
        len(devices),
    )
    return snapshot


def legal_values(
    snapshot: Optional[CapabilitySnapshot],
    target: Union[DeviceBase, DeviceKind, str],
    field: str,
) -> Optional[FrozenSet[str]]:
    """
    Legal values of ``field`` for a device, a device kind or an element name.

    Returns None when nothing is known: no snapshot, element not described,
    or field not enumerated. Passing the device looks it up the same way
    ``validate`` does. Char devices share one kind across several elements,
    so ``DeviceKind.CHAR`` raises ValueError; pass the device or its element
    name (``channel``, ``console``, ...).
    """
    if snapshot is None:
        return None
    capability = snapshot.device(_element_for(target))
    if capability is None:
        return None
    return capability.enums.get(field)


def validate(device, snapshot: Optional[CapabilitySnapshot] = None,
             index: Optional[int] = None) -> List[Violation]:
    """
    Check one device. Never mutates it.

    Required-field and mutual-exclusion rules always apply; legal-set checks
    only where the snapshot enumerates the field.
    """
    if isinstance(device, UnknownDevice):
        return []

    kind = device.kind
    violations: List[Violation] = []

    for field in REQUIRED_FIELDS.get(kind, ()):
        if getattr(device, field) in (None, ""):
            violations.append(Violation(
                kind=kind, field=field, reason=ViolationReason.REQUIRED_MISSING, index=index,
            ))

    for group in EXCLUSIVE_FIELDS.get(kind, ()):
        present = [field for field in group if getattr(device, field) is not None]
        for field in present[1:]:
            violations.append(Violation(
                kind=kind,
                field=field,
                reason=ViolationReason.MUTUALLY_EXCLUSIVE,
                value=getattr(device, field),
                conflicts_with=present[0],
                index=index,
            ))

    if snapshot is None:
        return violations

    capability = snapshot.device(_element_for(device))
    if capability is None:
        return violations
    if not capability.supported:
        violations.append(Violation(
            kind=kind, field="kind", reason=ViolationReason.UNSUPPORTED_DEVICE,
            value=device.element_name, index=index,
        ))
        return violations

    for field, allowed in capability.enums.items():
        value = getattr(device, field, None)
        if value is not None and value not in allowed:
            violations.append(Violation(
                kind=kind,
                field=field,
                reason=ViolationReason.NOT_IN_LEGAL_SET,
                value=value,
                legal=tuple(sorted(allowed)),
                index=index,
            ))
    return violations


class CapabilityCache:
    """
    Holder of the session's current snapshot.

    Reads take no lock; ``swap`` replaces the reference under a lock so
    readers see either the old or the new snapshot, never a mix.
    """

    def __init__(self, snapshot: Optional[CapabilitySnapshot] = None):
        self._snapshot = snapshot
        self._lock = threading.Lock()
        self._generation = 0

    @property
    def snapshot(self) -> Optional[CapabilitySnapshot]:
        return self._snapshot

    @property
    def generation(self) -> int:
        """Incremented on every swap."""
        return self._generation

    def swap(self, snapshot: Optional[CapabilitySnapshot]) -> Optional[CapabilitySnapshot]:
        """Install ``snapshot`` and return the previous one."""
        with self._lock:
            previous = self._snapshot
            self._snapshot = snapshot
            self._generation += 1
        return previous

    def invalidate(self) -> None:
        """Drop the snapshot, e.g. after the connection changed."""
        self.swap(None)
        logger.info("Capability snapshot invalidated")

    async def refresh(self, backend, connection, domain_ref: str) -> CapabilitySnapshot:
        """Fetch a fresh snapshot through ``backend`` and install it."""
        snapshot = await backend.fetch_capabilities(connection, domain_ref)
        self.swap(snapshot)
        logger.info(
            "Capability snapshot refreshed for {} ({} device elements)",
            domain_ref,
            len(snapshot.devices),
        )
        return snapshot
