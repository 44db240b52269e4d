"""
Hardware editing session.

``HardwareSession`` owns one ``DomainDocument`` and is the surface a UI talks
to: indexed device access, validation against the session's capability
snapshot, the override editor round trip, and saving through a backend.
"""

from typing import List, Optional, Tuple, Union

from .backend import BackendPort, DefineResult
from .capabilities import CapabilityCache, CapabilitySnapshot, Violation, validate
from .codec import decode_domain, encode_domain
from .config import Config
from .devices import ControllerDevice, Device, DeviceKind, DomainDocument
from .editor import EditBuffer, EditOutcome, EditState, OverrideEditor
from .exceptions import (
    EditorLaunchFailedError,
    EditSessionError,
    MalformedXmlError,
    UnsupportedByCapabilitiesError,
)
from .logging import get_logger

logger = get_logger(__name__)


class HardwareSession:
    """Single-owner editing session over one domain document."""

    def __init__(
        self,
        document: DomainDocument,
        config: Optional[Config] = None,
        capabilities: Optional[Union[CapabilityCache, CapabilitySnapshot]] = None,
    ):
        self.document = document
        self.config = config or Config()
        if isinstance(capabilities, CapabilityCache):
            self.capabilities = capabilities
        else:
            self.capabilities = CapabilityCache(capabilities)
        self.editor = OverrideEditor(self.config.editor)

    @classmethod
    def from_xml(cls, xml: Union[str, bytes], config: Optional[Config] = None,
                 capabilities: Optional[Union[CapabilityCache, CapabilitySnapshot]] = None) -> "HardwareSession":
        return cls(decode_domain(xml), config=config, capabilities=capabilities)

    def to_xml(self) -> str:
        return encode_domain(self.document)

    @property
    def devices(self) -> Tuple[Device, ...]:
        return tuple(self.document.devices)

    # Device access

    def _check_index(self, index: int) -> None:
        if not 0 <= index < len(self.document.devices):
            raise IndexError(f"Device index {index} out of range (0..{len(self.document.devices) - 1})")

    def get_device(self, index: int) -> Device:
        """Copy of the device at ``index``."""
        self._check_index(index)
        return self.document.devices[index].model_copy(deep=True)

    def set_device(self, index: int, device: Device) -> Device:
        """
        Replace the device at ``index``.

        An alias already assigned by the hypervisor is kept; the replacement's
        own alias is ignored in that case.
        """
        self._check_index(index)
        existing = self.document.devices[index]
        if existing.alias is not None and device.alias != existing.alias:
            device = device.model_copy(update={"alias": existing.alias})
        self.document.devices[index] = device
        logger.debug("Device #{} set to {}", index, device.describe())
        return device

    def insert_device(self, index: int, device: Device) -> None:
        if not 0 <= index <= len(self.document.devices):
            raise IndexError(f"Insert position {index} out of range (0..{len(self.document.devices)})")
        self.document.devices.insert(index, device)
        logger.debug("Inserted {} at #{}", device.describe(), index)

    def append_device(self, device: Device) -> int:
        """
        Add a device and return its index.

        Controllers go directly after the last existing controller (first
        when there is none); everything else goes at the end.
        """
        devices = self.document.devices
        if isinstance(device, ControllerDevice):
            positions = [i for i, d in enumerate(devices) if isinstance(d, ControllerDevice)]
            index = positions[-1] + 1 if positions else 0
        else:
            index = len(devices)
        self.insert_device(index, device)
        return index

    def remove_device(self, index: int) -> Device:
        self._check_index(index)
        device = self.document.devices.pop(index)
        logger.debug("Removed {} from #{}", device.describe(), index)
        return device

    def reorder_device(self, old_index: int, new_index: int) -> None:
        """Move the device at ``old_index`` so it ends up at ``new_index``."""
        self._check_index(old_index)
        self._check_index(new_index)
        device = self.document.devices.pop(old_index)
        self.document.devices.insert(new_index, device)

    def find_devices(self, kind: DeviceKind) -> List[Tuple[int, Device]]:
        return self.document.devices_of(kind)

    # Validation

    def validate_device(self, index: int) -> List[Violation]:
        self._check_index(index)
        return validate(self.document.devices[index], self.capabilities.snapshot, index=index)

    def validate_all(self) -> List[Violation]:
        """Violations for every device, in document order."""
        snapshot = self.capabilities.snapshot
        violations: List[Violation] = []
        for index, device in enumerate(self.document.devices):
            violations.extend(validate(device, snapshot, index=index))
        return violations

    def check_violations(self) -> List[Violation]:
        """
        Validate and apply the configured policy: log a warning per
        violation, or raise when ``validation.block_on_violation`` is set.
        """
        violations = self.validate_all()
        if not violations:
            return violations
        if self.config.validation.block_on_violation:
            raise UnsupportedByCapabilitiesError(
                f"{len(violations)} device field(s) not supported by the hypervisor",
                violations=violations,
            )
        for violation in violations:
            logger.warning("Capability violation: {}", violation.message)
        return violations

    # Override editor

    def _current(self, target: Optional[int]):
        if target is None:
            return self.document
        if 0 <= target < len(self.document.devices):
            return self.document.devices[target]
        return None

    def export_for_edit(self, target: Optional[int] = None) -> EditBuffer:
        """Render a device (or the whole domain when ``target`` is None) to an edit buffer."""
        if target is not None:
            self._check_index(target)
        return self.editor.export(self._current(target), target)

    async def run_editor(self, buffer: EditBuffer) -> int:
        return await self.editor.run(buffer)

    def apply_edit(self, buffer: EditBuffer) -> EditOutcome:
        """
        Reimport the buffer; on ``applied`` replace the in-memory value.

        Conflicts are returned, never applied.
        """
        outcome = self.editor.reimport(buffer, self._current(buffer.target))
        if outcome.status is EditState.APPLIED:
            if buffer.target is None:
                self.document = outcome.edited
            else:
                self.set_device(buffer.target, outcome.edited)
        return outcome

    async def edit(self, target: Optional[int] = None) -> EditOutcome:
        """
        Export, run the editor once, and apply the result.

        A malformed edit or an editor that fails to start raises with the
        buffer left on disk and attached to the error as ``buffer``; the
        caller may run the editor on it again and must discard it when done.
        Any other failure discards the buffer.
        """
        buffer = self.export_for_edit(target)
        try:
            await self.run_editor(buffer)
            return self.apply_edit(buffer)
        except (MalformedXmlError, EditorLaunchFailedError) as e:
            e.buffer = buffer
            raise
        except BaseException:
            buffer.discard()
            raise

    # Backend

    async def refresh_capabilities(self, backend: BackendPort, connection, domain_ref: Optional[str] = None) -> CapabilitySnapshot:
        domain_ref = domain_ref or self.document.name
        if not domain_ref:
            raise EditSessionError("Domain has no name to fetch capabilities for")
        return await self.capabilities.refresh(backend, connection, domain_ref)

    async def save(self, backend: BackendPort, connection) -> DefineResult:
        """Validate per configuration, then define the domain through ``backend``."""
        if self.config.validation.validate_on_save:
            self.check_violations()
        result = await backend.define_domain(connection, self.document)
        logger.info("Saved domain {} ({})", result.name, result.uuid)
        return result
