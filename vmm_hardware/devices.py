"""
Device model for libvirt domains.

Each device kind is a pydantic model carrying only the fields meaningful to
that kind, plus the common ``address``, ``alias`` and ``raw_extra`` slots.
``Device`` is the discriminated union over every kind and ``UnknownDevice``,
and ``DomainDocument`` is the whole-VM container.

Construction is permissive: values are the literal strings found in XML and
nothing is range-checked here. See ``capabilities.validate`` for validation.
"""

from enum import Enum
from typing import Annotated, ClassVar, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

from .fields import DeviceAddress, RawExtra, SizeWithUnit


class DeviceKind(str, Enum):
    """Device kinds a domain can own."""

    DISK = "disk"
    NETWORK = "network"
    CONTROLLER = "controller"
    INPUT = "input"
    SOUND = "sound"
    HOSTDEV = "hostdev"
    CHAR = "char"
    VIDEO = "video"
    WATCHDOG = "watchdog"
    FILESYSTEM = "filesystem"
    SMARTCARD = "smartcard"
    USBREDIR = "usbredir"
    TPM = "tpm"
    RNG = "rng"
    PANIC = "panic"
    VSOCK = "vsock"
    UNKNOWN = "unknown"


class CharDeviceType(str, Enum):
    """Character device subtypes; each is its own XML element."""

    SERIAL = "serial"
    PARALLEL = "parallel"
    CONSOLE = "console"
    CHANNEL = "channel"


class DeviceBase(BaseModel):
    """Fields every device variant carries."""

    model_config = ConfigDict(extra="forbid")

    element_names: ClassVar[Tuple[str, ...]] = ()
    title: ClassVar[str] = ""

    address: Optional[DeviceAddress] = Field(default=None, description="Bus address, opaque")
    alias: Optional[str] = Field(default=None, frozen=True, description="Hypervisor-assigned alias")
    raw_extra: List[RawExtra] = Field(default_factory=list, description="Unrecognized XML, in order")

    @property
    def element_name(self) -> str:
        """XML element name this device is written as."""
        return self.element_names[0]

    def describe(self) -> str:
        """Short human readable label, used by listings."""
        return self.title


class DiskDevice(DeviceBase):
    """Storage device (``<disk>``)."""

    kind: Literal[DeviceKind.DISK] = DeviceKind.DISK
    element_names: ClassVar[Tuple[str, ...]] = ("disk",)
    title: ClassVar[str] = "Storage"

    disk_type: Optional[str] = Field(default=None, description="Source type: file, block, dir, network, volume")
    device: Optional[str] = Field(default=None, description="disk, cdrom, floppy or lun")
    model: Optional[str] = Field(default=None, description="Device model, e.g. virtio-transitional")
    driver_name: Optional[str] = Field(default=None, description="Driver backend name")
    driver_type: Optional[str] = Field(default=None, description="Image format")
    driver_cache: Optional[str] = Field(default=None, description="Cache mode")
    driver_discard: Optional[str] = Field(default=None, description="Discard mode")
    source_file: Optional[str] = None
    source_dev: Optional[str] = None
    source_dir: Optional[str] = None
    source_pool: Optional[str] = None
    source_volume: Optional[str] = None
    source_protocol: Optional[str] = None
    source_name: Optional[str] = None
    target_dev: Optional[str] = Field(default=None, description="Guest device name, e.g. vda")
    target_bus: Optional[str] = Field(default=None, description="Guest bus")
    readonly: bool = False
    shareable: bool = False
    serial: Optional[str] = None
    boot_order: Optional[str] = None

    @property
    def source_path(self) -> Optional[str]:
        return self.source_file or self.source_dev or self.source_dir or self.source_name

    def describe(self) -> str:
        label = self.device or "disk"
        if self.target_dev:
            return f"{label} {self.target_dev}"
        return label


class NetworkDevice(DeviceBase):
    """Network interface (``<interface>``)."""

    kind: Literal[DeviceKind.NETWORK] = DeviceKind.NETWORK
    element_names: ClassVar[Tuple[str, ...]] = ("interface",)
    title: ClassVar[str] = "Network"

    interface_type: Optional[str] = Field(default=None, description="network, bridge, direct, user, ...")
    mac_address: Optional[str] = None
    source_network: Optional[str] = None
    source_bridge: Optional[str] = None
    source_dev: Optional[str] = None
    source_mode: Optional[str] = None
    target_dev: Optional[str] = None
    model: Optional[str] = Field(default=None, description="NIC model, e.g. virtio or e1000e")
    link_state: Optional[str] = None
    boot_order: Optional[str] = None

    def describe(self) -> str:
        return f"NIC {self.mac_address}" if self.mac_address else "NIC"


class ControllerDevice(DeviceBase):
    """Bus controller (``<controller>``)."""

    kind: Literal[DeviceKind.CONTROLLER] = DeviceKind.CONTROLLER
    element_names: ClassVar[Tuple[str, ...]] = ("controller",)
    title: ClassVar[str] = "Controller"

    controller_type: Optional[str] = Field(default=None, description="usb, pci, scsi, sata, virtio-serial, ...")
    index: Optional[str] = None
    model: Optional[str] = None
    ports: Optional[str] = None
    vectors: Optional[str] = None
    driver_queues: Optional[str] = None
    target_chassis: Optional[str] = None
    target_port: Optional[str] = None

    def describe(self) -> str:
        return f"Controller {self.controller_type or '?'} {self.index or ''}".rstrip()


class InputDevice(DeviceBase):
    """Input device (``<input>``)."""

    kind: Literal[DeviceKind.INPUT] = DeviceKind.INPUT
    element_names: ClassVar[Tuple[str, ...]] = ("input",)
    title: ClassVar[str] = "Input"

    input_type: Optional[str] = Field(default=None, description="tablet, mouse, keyboard, passthrough, evdev")
    bus: Optional[str] = None
    model: Optional[str] = None
    source_evdev: Optional[str] = None

    def describe(self) -> str:
        return f"{self.input_type or 'input'} ({self.bus})" if self.bus else self.input_type or "input"


class SoundDevice(DeviceBase):
    """Sound card (``<sound>``)."""

    kind: Literal[DeviceKind.SOUND] = DeviceKind.SOUND
    element_names: ClassVar[Tuple[str, ...]] = ("sound",)
    title: ClassVar[str] = "Sound"

    model: Optional[str] = Field(default=None, description="ich6, ich9, ac97, usb, ...")
    codec_type: Optional[str] = None
    audio_id: Optional[str] = None

    def describe(self) -> str:
        return f"Sound {self.model}" if self.model else "Sound"


class HostDevice(DeviceBase):
    """Host device passthrough (``<hostdev>``)."""

    kind: Literal[DeviceKind.HOSTDEV] = DeviceKind.HOSTDEV
    element_names: ClassVar[Tuple[str, ...]] = ("hostdev",)
    title: ClassVar[str] = "Host Device"

    mode: Optional[str] = Field(default=None, description="subsystem or capabilities")
    hostdev_type: Optional[str] = Field(default=None, description="usb, pci, scsi, mdev")
    managed: Optional[str] = None
    vendor_id: Optional[str] = None
    product_id: Optional[str] = None
    host_domain: Optional[str] = None
    host_bus: Optional[str] = None
    host_slot: Optional[str] = None
    host_function: Optional[str] = None
    host_device: Optional[str] = None
    boot_order: Optional[str] = None

    def describe(self) -> str:
        if self.vendor_id and self.product_id:
            return f"{self.hostdev_type or 'hostdev'} {self.vendor_id}:{self.product_id}"
        if self.host_bus and self.host_slot:
            return f"{self.hostdev_type or 'hostdev'} {self.host_bus}:{self.host_slot}.{self.host_function or '0'}"
        return self.hostdev_type or "hostdev"


class CharDevice(DeviceBase):
    """Serial, parallel, console or channel device."""

    kind: Literal[DeviceKind.CHAR] = DeviceKind.CHAR
    element_names: ClassVar[Tuple[str, ...]] = tuple(t.value for t in CharDeviceType)
    title: ClassVar[str] = "Char Device"

    device_type: Optional[str] = Field(default=None, description="Element name: serial, parallel, console, channel")
    source_type: Optional[str] = Field(default=None, description="pty, tcp, unix, file, spicevmc, ...")
    source_mode: Optional[str] = None
    source_host: Optional[str] = None
    source_service: Optional[str] = None
    source_path: Optional[str] = None
    protocol_type: Optional[str] = None
    target_type: Optional[str] = None
    target_name: Optional[str] = None
    target_port: Optional[str] = None
    target_model: Optional[str] = None

    @property
    def element_name(self) -> str:
        return self.device_type or CharDeviceType.SERIAL.value

    def describe(self) -> str:
        label = self.element_name
        if self.target_name:
            return f"{label} {self.target_name}"
        return f"{label} ({self.source_type})" if self.source_type else label


class VideoDevice(DeviceBase):
    """Video adapter (``<video>``)."""

    kind: Literal[DeviceKind.VIDEO] = DeviceKind.VIDEO
    element_names: ClassVar[Tuple[str, ...]] = ("video",)
    title: ClassVar[str] = "Video"

    model: Optional[str] = Field(default=None, description="Model type: virtio, qxl, vga, bochs, ...")
    vram: Optional[str] = None
    heads: Optional[str] = None
    primary: Optional[str] = None
    accel3d: Optional[str] = None

    def describe(self) -> str:
        return f"Video {self.model}" if self.model else "Video"


class WatchdogDevice(DeviceBase):
    """Watchdog timer (``<watchdog>``)."""

    kind: Literal[DeviceKind.WATCHDOG] = DeviceKind.WATCHDOG
    element_names: ClassVar[Tuple[str, ...]] = ("watchdog",)
    title: ClassVar[str] = "Watchdog"

    model: Optional[str] = None
    action: Optional[str] = None


class FilesystemDevice(DeviceBase):
    """Shared host directory (``<filesystem>``)."""

    kind: Literal[DeviceKind.FILESYSTEM] = DeviceKind.FILESYSTEM
    element_names: ClassVar[Tuple[str, ...]] = ("filesystem",)
    title: ClassVar[str] = "Filesystem"

    fs_type: Optional[str] = Field(default=None, description="mount, template, file, block, ram, bind")
    accessmode: Optional[str] = None
    driver_type: Optional[str] = Field(default=None, description="path, handle, loop, virtiofs, ...")
    source_dir: Optional[str] = None
    target_dir: Optional[str] = Field(default=None, description="Mount tag seen by the guest")
    readonly: bool = False

    def describe(self) -> str:
        return f"Filesystem {self.target_dir}" if self.target_dir else "Filesystem"


class SmartcardDevice(DeviceBase):
    """Smartcard reader (``<smartcard>``)."""

    kind: Literal[DeviceKind.SMARTCARD] = DeviceKind.SMARTCARD
    element_names: ClassVar[Tuple[str, ...]] = ("smartcard",)
    title: ClassVar[str] = "Smartcard"

    mode: Optional[str] = Field(default=None, description="host, host-certificates or passthrough")
    smartcard_type: Optional[str] = None


class UsbRedirDevice(DeviceBase):
    """USB redirection channel (``<redirdev>``)."""

    kind: Literal[DeviceKind.USBREDIR] = DeviceKind.USBREDIR
    element_names: ClassVar[Tuple[str, ...]] = ("redirdev",)
    title: ClassVar[str] = "USB Redirection"

    bus: Optional[str] = None
    redir_type: Optional[str] = Field(default=None, description="spicevmc or tcp")
    source_host: Optional[str] = None
    source_service: Optional[str] = None


class TpmDevice(DeviceBase):
    """Trusted platform module (``<tpm>``)."""

    kind: Literal[DeviceKind.TPM] = DeviceKind.TPM
    element_names: ClassVar[Tuple[str, ...]] = ("tpm",)
    title: ClassVar[str] = "TPM"

    model: Optional[str] = Field(default=None, description="tpm-tis, tpm-crb, tpm-spapr, ...")
    backend_type: Optional[str] = Field(default=None, description="passthrough or emulator")
    backend_version: Optional[str] = None
    device_path: Optional[str] = None


class RngDevice(DeviceBase):
    """Random number generator (``<rng>``)."""

    kind: Literal[DeviceKind.RNG] = DeviceKind.RNG
    element_names: ClassVar[Tuple[str, ...]] = ("rng",)
    title: ClassVar[str] = "RNG"

    model: Optional[str] = None
    rate_bytes: Optional[str] = None
    rate_period: Optional[str] = None
    backend_model: Optional[str] = Field(default=None, description="random, egd or builtin")
    backend_type: Optional[str] = None
    backend_path: Optional[str] = Field(default=None, description="Source device, e.g. /dev/urandom")


class PanicDevice(DeviceBase):
    """Panic notifier (``<panic>``)."""

    kind: Literal[DeviceKind.PANIC] = DeviceKind.PANIC
    element_names: ClassVar[Tuple[str, ...]] = ("panic",)
    title: ClassVar[str] = "Panic Notifier"

    model: Optional[str] = None


class VsockDevice(DeviceBase):
    """VM sockets device (``<vsock>``)."""

    kind: Literal[DeviceKind.VSOCK] = DeviceKind.VSOCK
    element_names: ClassVar[Tuple[str, ...]] = ("vsock",)
    title: ClassVar[str] = "VM Sockets"

    model: Optional[str] = None
    cid_auto: Optional[str] = None
    cid_address: Optional[str] = None

    def describe(self) -> str:
        return f"vsock cid {self.cid_address}" if self.cid_address else "vsock"


class UnknownDevice(DeviceBase):
    """
    Any element under ``<devices>`` the model does not know.

    The whole element (or comment) is kept as a single raw extra.
    """

    kind: Literal[DeviceKind.UNKNOWN] = DeviceKind.UNKNOWN
    title: ClassVar[str] = "Unknown"

    tag: str = Field(default="", description="Element name as written, '#comment' for comments")

    @property
    def element_name(self) -> str:
        return self.tag

    def describe(self) -> str:
        return f"<{self.tag}>"


Device = Annotated[
    Union[
        DiskDevice,
        NetworkDevice,
        ControllerDevice,
        InputDevice,
        SoundDevice,
        HostDevice,
        CharDevice,
        VideoDevice,
        WatchdogDevice,
        FilesystemDevice,
        SmartcardDevice,
        UsbRedirDevice,
        TpmDevice,
        RngDevice,
        PanicDevice,
        VsockDevice,
        UnknownDevice,
    ],
    Field(discriminator="kind"),
]

DEVICE_CLASSES: Dict[DeviceKind, type] = {
    DeviceKind.DISK: DiskDevice,
    DeviceKind.NETWORK: NetworkDevice,
    DeviceKind.CONTROLLER: ControllerDevice,
    DeviceKind.INPUT: InputDevice,
    DeviceKind.SOUND: SoundDevice,
    DeviceKind.HOSTDEV: HostDevice,
    DeviceKind.CHAR: CharDevice,
    DeviceKind.VIDEO: VideoDevice,
    DeviceKind.WATCHDOG: WatchdogDevice,
    DeviceKind.FILESYSTEM: FilesystemDevice,
    DeviceKind.SMARTCARD: SmartcardDevice,
    DeviceKind.USBREDIR: UsbRedirDevice,
    DeviceKind.TPM: TpmDevice,
    DeviceKind.RNG: RngDevice,
    DeviceKind.PANIC: PanicDevice,
    DeviceKind.VSOCK: VsockDevice,
    DeviceKind.UNKNOWN: UnknownDevice,
}


class OsConfig(BaseModel):
    """Boot configuration (``<os>``)."""

    os_type: Optional[str] = Field(default=None, description="hvm, linux, exe")
    arch: Optional[str] = None
    machine: Optional[str] = None
    boot_devices: List[str] = Field(default_factory=list, description="Boot order, e.g. ['cdrom', 'hd']")


class DomainDocument(BaseModel):
    """A whole domain definition: metadata, devices and unrecognized content."""

    model_config = ConfigDict(extra="forbid")

    domain_type: Optional[str] = Field(default=None, description="Hypervisor type, e.g. kvm")
    name: Optional[str] = None
    uuid: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    memory: Optional[SizeWithUnit] = None
    current_memory: Optional[SizeWithUnit] = None
    vcpus: Optional[str] = None
    vcpu_placement: Optional[str] = None
    os: Optional[OsConfig] = None
    emulator: Optional[str] = None
    devices_present: bool = Field(default=False, description="Whether a <devices> element was written, even an empty one")
    devices: List[Device] = Field(default_factory=list)
    raw_extra: List[RawExtra] = Field(default_factory=list)
    namespaces: Dict[str, str] = Field(default_factory=dict, description="xmlns declarations of the root element, prefix -> URI ('' for the default)")

    def devices_of(self, kind: DeviceKind) -> List[Tuple[int, BaseModel]]:
        """(index, device) pairs of the given kind, in document order."""
        return [(i, d) for i, d in enumerate(self.devices) if d.kind == kind]


def device_diff(before: BaseModel, after: BaseModel) -> List[str]:
    """
    Names of fields that differ between two devices or documents.

    A change of variant reports ``kind``. ``raw_extra`` compares as an ordered
    list.
    """
    if type(before) is not type(after):
        return ["kind"]
    return [
        name
        for name in type(before).model_fields
        if getattr(before, name) != getattr(after, name)
    ]
