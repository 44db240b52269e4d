"""
Value types shared by the device variants.

Fields hold the literal strings found in domain XML so that any value the
hypervisor writes can be represented. The enums and helpers here interpret
those strings on demand; they never reject a value at construction time.
"""

from enum import Enum
from typing import Dict, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class BusKind(str, Enum):
    """Device bus names used by libvirt."""

    VIRTIO = "virtio"
    USB = "usb"
    SATA = "sata"
    SCSI = "scsi"
    IDE = "ide"
    FDC = "fdc"
    XEN = "xen"
    PS2 = "ps2"
    ISA = "isa"
    PCI = "pci"
    CCID = "ccid"
    SD = "sd"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["BusKind"]:
        """Return the matching member, or None for absent/unknown values."""
        if value is None:
            return None
        try:
            return cls(value)
        except ValueError:
            return None


class TriState(str, Enum):
    """Boolean attribute that may also be left unset."""

    YES = "yes"
    NO = "no"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional[bool]:
        """Map ``yes/on`` and ``no/off`` to booleans; anything else is None."""
        if value is None:
            return None
        lowered = value.strip().lower()
        if lowered in ("yes", "on"):
            return True
        if lowered in ("no", "off"):
            return False
        return None

    @classmethod
    def format(cls, value: Optional[bool]) -> Optional[str]:
        if value is None:
            return None
        return cls.YES.value if value else cls.NO.value


# Multipliers to bytes for the units libvirt accepts on scaled integers
_UNIT_BYTES: Dict[str, int] = {
    "b": 1,
    "bytes": 1,
    "kb": 1000,
    "k": 1024,
    "kib": 1024,
    "mb": 1000 ** 2,
    "m": 1024 ** 2,
    "mib": 1024 ** 2,
    "gb": 1000 ** 3,
    "g": 1024 ** 3,
    "gib": 1024 ** 3,
    "tb": 1000 ** 4,
    "t": 1024 ** 4,
    "tib": 1024 ** 4,
}


class SizeWithUnit(BaseModel):
    """A scaled integer such as ``<memory unit='KiB'>2097152</memory>``."""

    value: Optional[str] = Field(default=None, description="Literal numeric text")
    unit: Optional[str] = Field(default=None, description="Unit attribute, KiB when absent")

    @classmethod
    def from_kib(cls, kib: int, unit: str = "KiB") -> "SizeWithUnit":
        return cls(value=str(kib), unit=unit)

    def to_bytes(self) -> Optional[int]:
        """Size in bytes, or None when the value or unit cannot be read."""
        if self.value is None:
            return None
        try:
            number = int(self.value.strip())
        except ValueError:
            return None
        multiplier = _UNIT_BYTES.get((self.unit or "KiB").lower())
        if multiplier is None:
            return None
        return number * multiplier

    def to_kib(self) -> Optional[int]:
        size = self.to_bytes()
        return None if size is None else size // 1024


class DeviceAddress(BaseModel):
    """
    Bus address of a device (``<address type='pci' .../>``).

    The address is opaque: every attribute is kept in document order so it
    round-trips unchanged. Convenience properties read the common layouts.
    """

    attributes: Dict[str, str] = Field(default_factory=dict, description="Address attributes in document order")

    @classmethod
    def pci(cls, domain: str = "0x0000", bus: str = "0x00", slot: str = "0x00",
            function: str = "0x0") -> "DeviceAddress":
        return cls(attributes={
            "type": "pci", "domain": domain, "bus": bus, "slot": slot, "function": function,
        })

    @classmethod
    def drive(cls, controller: str = "0", bus: str = "0", target: str = "0",
              unit: str = "0") -> "DeviceAddress":
        return cls(attributes={
            "type": "drive", "controller": controller, "bus": bus, "target": target, "unit": unit,
        })

    @property
    def type(self) -> Optional[str]:
        return self.attributes.get("type")

    @property
    def controller(self) -> Optional[str]:
        """Controller index for drive/usb/virtio-serial style addresses."""
        return self.attributes.get("controller")

    @property
    def pci_slot(self) -> Optional[Tuple[int, int, int, int]]:
        """(domain, bus, slot, function) as integers for PCI addresses."""
        if self.type != "pci":
            return None
        try:
            return tuple(
                int(self.attributes.get(key, "0"), 0)
                for key in ("domain", "bus", "slot", "function")
            )
        except ValueError:
            return None


class RawExtra(BaseModel):
    """
    One piece of XML the mapping tables did not recognize.

    ``path`` names the element it was found under, relative to the element
    that owns the raw extra (``()`` is that element itself). ``position`` is
    the attribute index for attributes and the child-node index for
    elements. ``value`` holds the attribute value, the text, or the
    serialized element.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["attribute", "element", "text"]
    path: Tuple[str, ...] = ()
    position: int = 0
    name: Optional[str] = None
    value: str = ""
