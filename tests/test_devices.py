"""Tests for the device model."""

import pytest
from pydantic import TypeAdapter, ValidationError

from vmm_hardware.devices import (
    CharDevice,
    ControllerDevice,
    Device,
    DeviceKind,
    DiskDevice,
    DomainDocument,
    UnknownDevice,
    VideoDevice,
    device_diff,
)
from vmm_hardware.fields import RawExtra


class TestDeviceConstruction:
    """Construction never rejects odd values."""

    def test_out_of_range_values_are_representable(self):
        video = VideoDevice(model="not-a-real-model", heads="-7", vram="lots")
        assert video.model == "not-a-real-model"
        assert video.heads == "-7"

    def test_defaults(self):
        disk = DiskDevice()
        assert disk.kind is DeviceKind.DISK
        assert disk.address is None
        assert disk.alias is None
        assert disk.raw_extra == []
        assert disk.readonly is False

    def test_unknown_field_rejected(self):
        with pytest.raises(ValidationError):
            VideoDevice(colour="blue")

    def test_alias_is_read_only(self):
        disk = DiskDevice(alias="virtio-disk0")
        with pytest.raises(ValidationError):
            disk.alias = "other"

    def test_element_names(self):
        assert DiskDevice().element_name == "disk"
        assert ControllerDevice().element_name == "controller"
        assert CharDevice(device_type="console").element_name == "console"
        assert CharDevice().element_name == "serial"
        assert UnknownDevice(tag="graphics").element_name == "graphics"


class TestDeviceUnion:
    """Tests for the discriminated union."""

    def test_validate_by_kind(self):
        adapter = TypeAdapter(Device)
        device = adapter.validate_python({"kind": "video", "model": "qxl"})
        assert isinstance(device, VideoDevice)
        assert device.model == "qxl"

    def test_json_round_trip(self):
        adapter = TypeAdapter(Device)
        disk = DiskDevice(target_dev="vda", raw_extra=[RawExtra(kind="element", value="<x />")])
        assert adapter.validate_json(adapter.dump_json(disk)) == disk

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValidationError):
            TypeAdapter(Device).validate_python({"kind": "graphics"})


class TestDeviceDiff:
    """Tests for device_diff."""

    def test_no_change(self):
        assert device_diff(VideoDevice(model="qxl"), VideoDevice(model="qxl")) == []

    def test_changed_fields(self):
        before = VideoDevice(model="qxl", heads="1")
        after = VideoDevice(model="virtio", heads="2")
        assert device_diff(before, after) == ["model", "heads"]

    def test_raw_extra_order_matters(self):
        a = RawExtra(kind="attribute", name="a", value="1")
        b = RawExtra(kind="attribute", name="b", value="2", position=1)
        before = VideoDevice(raw_extra=[a, b])
        after = VideoDevice(raw_extra=[b, a])
        assert before != after
        assert device_diff(before, after) == ["raw_extra"]

    def test_kind_change(self):
        assert device_diff(VideoDevice(), DiskDevice()) == ["kind"]


class TestDomainDocument:
    """Tests for DomainDocument."""

    def test_devices_of(self):
        doc = DomainDocument(devices=[
            DiskDevice(target_dev="vda"),
            VideoDevice(model="qxl"),
            DiskDevice(target_dev="vdb"),
        ])
        assert [(i, d.target_dev) for i, d in doc.devices_of(DeviceKind.DISK)] == [(0, "vda"), (2, "vdb")]

    def test_devices_from_dicts(self):
        doc = DomainDocument(devices=[{"kind": "panic", "model": "isa"}])
        assert doc.devices[0].kind is DeviceKind.PANIC

    def test_describe(self):
        assert DiskDevice(device="cdrom", target_dev="sda").describe() == "cdrom sda"
        assert VideoDevice(model="qxl").describe() == "Video qxl"
        assert CharDevice(device_type="channel", target_name="org.qemu.guest_agent.0").describe() == (
            "channel org.qemu.guest_agent.0"
        )
        assert UnknownDevice(tag="hub").describe() == "<hub>"
