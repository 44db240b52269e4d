#!/usr/bin/env python3
"""
Device editing example for vmm-hardware.

This example loads a domain from libvirt, swaps its video model, validates
the result against the host's domain capabilities, opens the disk in the
user's editor, and defines the domain again.
"""

import asyncio
import sys

from vmm_hardware import (
    Config,
    DeviceKind,
    EditState,
    HardwareSession,
    VmmHardwareError,
    legal_values,
)
from vmm_hardware.logging import configure_logging
from vmm_hardware.libvirt_client import LibvirtBackend, LibvirtClient


async def main(domain_name: str):
    """Main example function."""
    print("🚀 VMM Hardware - Device Editing Example")
    print("=" * 50)

    config = Config.load()
    configure_logging(config)
    backend = LibvirtBackend()

    async with LibvirtClient(config) as client:
        # Example 1: Load the persistent definition
        print(f"\n📥 Example 1: Loading domain '{domain_name}'")
        domain = client.ensure_connected().lookupByName(domain_name)
        session = HardwareSession.from_xml(domain.XMLDesc(0), config=config)
        for index, device in enumerate(session.devices):
            print(f"  #{index:<2} {device.element_name:<12} {device.describe()}")

        # Example 2: Fetch what the hypervisor supports for this domain
        print("\n🔍 Example 2: Fetching domain capabilities")
        snapshot = await session.refresh_capabilities(backend, client)
        legal = legal_values(snapshot, DeviceKind.VIDEO, "model") or frozenset()
        print(f"  Legal video models: {', '.join(sorted(legal)) or '-'}")

        # Example 3: Change the video model and validate
        print("\n🎨 Example 3: Switching the video model to virtio")
        for index, video in session.find_devices(DeviceKind.VIDEO):
            session.set_device(index, video.model_copy(update={"model": "virtio"}))
        for violation in session.validate_all():
            print(f"  ⚠️  {violation.message}")

        # Example 4: Edit the first disk in $VISUAL / $EDITOR
        disks = session.find_devices(DeviceKind.DISK)
        if disks:
            print("\n📝 Example 4: Editing the first disk")
            outcome = await session.edit(disks[0][0])
            if outcome.status is EditState.APPLIED:
                print(f"  Changed fields: {', '.join(outcome.changed)}")
            else:
                print(f"  Edit {outcome.status.value}")

        # Example 5: Define the domain again
        print("\n💾 Example 5: Saving")
        result = await session.save(backend, client)
        print(f"  Defined {result.name} ({result.uuid})")


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print(f"usage: {sys.argv[0]} DOMAIN")
        sys.exit(2)
    try:
        asyncio.run(main(sys.argv[1]))
    except VmmHardwareError as e:
        print(f"❌ {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        print("\n👋 Interrupted")
