"""Shared fixtures: domain XML in canonical form, domain capabilities, editors."""

import shlex
import sys

import pytest

from vmm_hardware.config import Config, EditorConfig


# Written exactly as encode_domain emits it
CANONICAL_DOMAIN = """\
<domain xmlns:qemu="http://libvirt.org/schemas/domain/qemu/1.0" type="kvm" id="4">
  <name>demo</name>
  <uuid>c7a5fdbd-edaf-9455-926a-d65c16db1809</uuid>
  <description>Build server</description>
  <memory unit="KiB">2097152</memory>
  <currentMemory unit="KiB">2097152</currentMemory>
  <vcpu placement="static">2</vcpu>
  <os>
    <type arch="x86_64" machine="pc-q35-8.2">hvm</type>
    <loader readonly="yes" type="pflash">/usr/share/OVMF/OVMF_CODE.fd</loader>
    <boot dev="cdrom" />
    <boot dev="hd" />
  </os>
  <features>
    <acpi />
    <apic />
  </features>
  <clock offset="utc" />
  <on_poweroff>destroy</on_poweroff>
  <devices>
    <emulator>/usr/bin/qemu-system-x86_64</emulator>
    <disk type="file" device="disk">
      <driver name="qemu" type="qcow2" discard="unmap" />
      <source file="/var/lib/libvirt/images/demo.qcow2" index="2" />
      <backingStore />
      <target dev="vda" bus="virtio" />
      <alias name="virtio-disk0" />
      <address type="pci" domain="0x0000" bus="0x04" slot="0x00" function="0x0" />
    </disk>
    <disk type="file" device="cdrom">
      <driver name="qemu" type="raw" />
      <target dev="sda" bus="sata" />
      <readonly />
      <address type="drive" controller="0" bus="0" target="0" unit="0" />
    </disk>
    <controller type="usb" index="0" model="qemu-xhci" ports="15">
      <address type="pci" domain="0x0000" bus="0x02" slot="0x00" function="0x0" />
    </controller>
    <controller type="pci" index="1" model="pcie-root-port">
      <model name="pcie-root-port" />
      <target chassis="1" port="0x10" />
      <address type="pci" domain="0x0000" bus="0x00" slot="0x02" function="0x0" multifunction="on" />
    </controller>
    <interface type="network">
      <mac address="52:54:00:6b:3c:58" />
      <source network="default" />
      <model type="virtio" />
      <address type="pci" domain="0x0000" bus="0x01" slot="0x00" function="0x0" />
    </interface>
    <serial type="pty">
      <target type="isa-serial" port="0">
        <model name="isa-serial" />
      </target>
    </serial>
    <console type="pty">
      <target type="serial" port="0" />
    </console>
    <channel type="unix">
      <target type="virtio" name="org.qemu.guest_agent.0" />
      <address type="virtio-serial" controller="0" bus="0" port="1" />
    </channel>
    <input type="tablet" bus="usb">
      <address type="usb" bus="0" port="1" />
    </input>
    <input type="mouse" bus="ps2" />
    <!-- display -->
    <graphics type="spice" autoport="yes">
      <listen type="address" />
      <image compression="off" />
    </graphics>
    <sound model="ich9">
      <audio id="1" />
      <address type="pci" domain="0x0000" bus="0x00" slot="0x1b" function="0x0" />
    </sound>
    <video>
      <model type="qxl" ram="65536" vram="65536" vgamem="16384" heads="1" primary="yes" />
      <address type="pci" domain="0x0000" bus="0x00" slot="0x01" function="0x0" />
    </video>
    <hostdev mode="subsystem" type="usb" managed="yes">
      <source>
        <vendor id="0x046d" />
        <product id="0xc52b" />
      </source>
    </hostdev>
    <redirdev bus="usb" type="spicevmc" />
    <watchdog model="i6300esb" action="reset" />
    <memballoon model="virtio" />
    <rng model="virtio">
      <backend model="random">/dev/urandom</backend>
    </rng>
    <tpm model="tpm-crb">
      <backend type="emulator" version="2.0" />
    </tpm>
    <filesystem type="mount" accessmode="passthrough">
      <driver type="virtiofs" />
      <source dir="/srv/share" />
      <target dir="share" />
    </filesystem>
    <smartcard mode="passthrough" type="spicevmc" />
    <panic model="isa" />
    <vsock model="virtio">
      <cid auto="yes" address="3" />
    </vsock>
  </devices>
  <qemu:commandline>
    <qemu:arg value="-newarg" />
  </qemu:commandline>
</domain>
"""

SCENARIO_A_DOMAIN = """\
<domain type="kvm">
  <name>scenario-a</name>
  <memory unit="KiB">1048576</memory>
  <vcpu>1</vcpu>
  <devices>
    <disk type="file" device="disk">
      <source file="/var/lib/libvirt/images/a.qcow2" />
      <target dev="vda" bus="virtio" />
    </disk>
    <sound model="ich6">
      <custom-vendor-ext />
      <address type="pci" domain="0x0000" bus="0x00" slot="0x04" function="0x0" />
    </sound>
  </devices>
</domain>
"""

# Same content as SCENARIO_A_DOMAIN, hand written
LOOSE_DOMAIN = """<?xml version="1.0"?>
<domain type='kvm'>
    <name>scenario-a</name>
    <memory unit='KiB'>1048576</memory>
    <vcpu>1</vcpu>
    <devices>
        <disk type='file' device='disk'>
            <source file='/var/lib/libvirt/images/a.qcow2'/>
            <target dev='vda' bus='virtio'/>
        </disk>
        <sound model='ich6'><custom-vendor-ext/><address type='pci' domain='0x0000' bus='0x00' slot='0x04' function='0x0'/></sound>
    </devices>
</domain>
"""

DOMAIN_CAPABILITIES = """\
<domainCapabilities>
  <path>/usr/bin/qemu-system-x86_64</path>
  <domain>kvm</domain>
  <machine>pc-q35-8.2</machine>
  <arch>x86_64</arch>
  <vcpu max="255"/>
  <devices>
    <disk supported="yes">
      <enum name="diskDevice">
        <value>disk</value>
        <value>cdrom</value>
        <value>floppy</value>
        <value>lun</value>
      </enum>
      <enum name="bus">
        <value>ide</value>
        <value>scsi</value>
        <value>virtio</value>
        <value>usb</value>
        <value>sata</value>
      </enum>
      <enum name="model">
        <value>virtio</value>
        <value>virtio-transitional</value>
        <value>virtio-non-transitional</value>
      </enum>
    </disk>
    <graphics supported="yes">
      <enum name="type">
        <value>vnc</value>
        <value>spice</value>
      </enum>
    </graphics>
    <video supported="yes">
      <enum name="modelType">
        <value>vga</value>
        <value>cirrus</value>
        <value>virtio</value>
        <value>none</value>
        <value>bochs</value>
        <value>ramfb</value>
      </enum>
    </video>
    <hostdev supported="yes">
      <enum name="mode">
        <value>subsystem</value>
      </enum>
      <enum name="startupPolicy">
        <value>default</value>
        <value>mandatory</value>
      </enum>
      <enum name="subsysType">
        <value>usb</value>
        <value>pci</value>
        <value>scsi</value>
      </enum>
    </hostdev>
    <rng supported="yes">
      <enum name="model">
        <value>virtio</value>
      </enum>
      <enum name="backendModel">
        <value>random</value>
        <value>egd</value>
        <value>builtin</value>
      </enum>
    </rng>
    <filesystem supported="yes">
      <enum name="driverType">
        <value>path</value>
        <value>handle</value>
        <value>virtiofs</value>
      </enum>
    </filesystem>
    <tpm supported="yes">
      <enum name="model">
        <value>tpm-tis</value>
        <value>tpm-crb</value>
      </enum>
      <enum name="backendModel">
        <value>passthrough</value>
        <value>emulator</value>
      </enum>
      <enum name="backendVersion">
        <value>1.2</value>
        <value>2.0</value>
      </enum>
    </tpm>
    <redirdev supported="yes">
      <enum name="bus">
        <value>usb</value>
      </enum>
    </redirdev>
    <channel supported="yes">
      <enum name="type">
        <value>pty</value>
        <value>unix</value>
        <value>spicevmc</value>
      </enum>
    </channel>
    <crypto supported="no"/>
  </devices>
  <features>
    <gic supported="no"/>
    <vmcoreinfo supported="yes"/>
    <genid supported="yes"/>
    <sev supported="no"/>
  </features>
</domainCapabilities>
"""


def python_editor(code: str) -> str:
    """Editor command running ``code`` with the buffer path as sys.argv[1]."""
    return shlex.join([sys.executable, "-c", code])


NOOP_EDITOR = python_editor("import sys")


@pytest.fixture
def canonical_domain():
    return CANONICAL_DOMAIN


@pytest.fixture
def scenario_a_domain():
    return SCENARIO_A_DOMAIN


@pytest.fixture
def domcaps_xml():
    return DOMAIN_CAPABILITIES


@pytest.fixture
def editor_config(tmp_path):
    """Config whose editor is a no-op and whose buffers live in tmp_path."""
    config = Config()
    config.editor = EditorConfig(visual=NOOP_EDITOR, temp_dir=str(tmp_path), terminate_timeout=2.0)
    return config
