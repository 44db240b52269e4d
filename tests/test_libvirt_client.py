"""
测试 libvirt 适配器

测试范围：
- 连接生命周期
- 获取域能力
- 定义域及错误映射
"""

import pytest
from unittest.mock import MagicMock, patch

libvirt = pytest.importorskip("libvirt")

from conftest import CANONICAL_DOMAIN, DOMAIN_CAPABILITIES  # noqa: E402
from vmm_hardware.codec import decode_domain, encode_domain  # noqa: E402
from vmm_hardware.config import Config  # noqa: E402
from vmm_hardware.exceptions import (  # noqa: E402
    BackendUnavailableError,
    RejectedByHypervisorError,
    ResourceNotFoundError,
)
from vmm_hardware.libvirt_client import LibvirtBackend, LibvirtClient  # noqa: E402


def make_error(code, message):
    """构造带错误码的 libvirtError。"""
    error = libvirt.libvirtError(message)
    error.err = (code, 0, message, 2, "", "", "", 0, 0)
    return error


@pytest.fixture
def config():
    """创建测试配置对象。"""
    config = Config()
    config.libvirt.uri = "test:///default"
    return config


@pytest.fixture
def connected_client(config):
    """创建已连接（模拟）的 LibvirtClient。"""
    client = LibvirtClient(config)
    conn = MagicMock()
    conn.isAlive.return_value = 1
    client._connection = conn
    return client


class TestLibvirtClient:
    """测试连接管理。"""

    @pytest.mark.asyncio
    async def test_connect_read_write(self, config):
        with patch.object(libvirt, "open") as mock_open:
            async with LibvirtClient(config) as client:
                assert client.connected
            mock_open.assert_called_once_with("test:///default")
            mock_open.return_value.close.assert_called_once()
        assert not client.connected

    @pytest.mark.asyncio
    async def test_connect_readonly(self, config):
        config.libvirt.readonly = True
        with patch.object(libvirt, "openReadOnly") as mock_open:
            client = LibvirtClient(config)
            await client.connect()
            mock_open.assert_called_once_with("test:///default")

    @pytest.mark.asyncio
    async def test_connect_failure(self, config):
        with patch.object(libvirt, "open", side_effect=make_error(libvirt.VIR_ERR_NO_CONNECT, "no daemon")):
            client = LibvirtClient(config)
            with pytest.raises(BackendUnavailableError, match="Failed to connect"):
                await client.connect()

    def test_not_connected(self, config):
        with pytest.raises(BackendUnavailableError, match="Not connected"):
            LibvirtClient(config).ensure_connected()

    def test_dead_connection(self, connected_client):
        connected_client._connection.isAlive.return_value = 0
        with pytest.raises(BackendUnavailableError, match="connection lost"):
            connected_client.ensure_connected()
        assert not connected_client.connected


class TestFetchCapabilities:
    """测试获取域能力。"""

    @pytest.mark.asyncio
    async def test_fetch(self, connected_client):
        conn = connected_client._connection
        conn.lookupByName.return_value.XMLDesc.return_value = CANONICAL_DOMAIN
        conn.getDomainCapabilities.return_value = DOMAIN_CAPABILITIES

        snapshot = await LibvirtBackend().fetch_capabilities(connected_client, "demo")

        conn.lookupByName.assert_called_once_with("demo")
        conn.getDomainCapabilities.assert_called_once_with(
            "/usr/bin/qemu-system-x86_64", "x86_64", "pc-q35-8.2", "kvm", 0,
        )
        assert snapshot.arch == "x86_64"
        assert "virtio" in snapshot.device("video").enums["model"]

    @pytest.mark.asyncio
    async def test_domain_not_found(self, connected_client):
        connected_client._connection.lookupByName.side_effect = make_error(
            libvirt.VIR_ERR_NO_DOMAIN, "Domain not found: no domain with matching name 'ghost'",
        )
        with pytest.raises(ResourceNotFoundError):
            await LibvirtBackend().fetch_capabilities(connected_client, "ghost")

    @pytest.mark.asyncio
    async def test_connection_lost(self, connected_client):
        connected_client._connection.lookupByName.side_effect = make_error(
            libvirt.VIR_ERR_RPC, "End of file while reading data",
        )
        with pytest.raises(BackendUnavailableError):
            await LibvirtBackend().fetch_capabilities(connected_client, "demo")


class TestDefineDomain:
    """测试定义域。"""

    @pytest.mark.asyncio
    async def test_define(self, connected_client):
        conn = connected_client._connection
        conn.defineXML.return_value.name.return_value = "demo"
        conn.defineXML.return_value.UUIDString.return_value = "c7a5fdbd-edaf-9455-926a-d65c16db1809"
        document = decode_domain(CANONICAL_DOMAIN)

        result = await LibvirtBackend().define_domain(connected_client, document)

        conn.defineXML.assert_called_once_with(encode_domain(document))
        assert result.name == "demo"
        assert result.uuid == "c7a5fdbd-edaf-9455-926a-d65c16db1809"

    @pytest.mark.asyncio
    async def test_rejected_detail_verbatim(self, connected_client):
        message = "unsupported configuration: domain type 'kvm' is not supported"
        connected_client._connection.defineXML.side_effect = make_error(
            libvirt.VIR_ERR_CONFIG_UNSUPPORTED, message,
        )
        with pytest.raises(RejectedByHypervisorError) as exc_info:
            await LibvirtBackend().define_domain(connected_client, decode_domain(CANONICAL_DOMAIN))
        assert exc_info.value.detail == message

    @pytest.mark.asyncio
    async def test_connection_error_is_unavailable(self, connected_client):
        connected_client._connection.defineXML.side_effect = make_error(
            libvirt.VIR_ERR_SYSTEM_ERROR, "Cannot write data: Broken pipe",
        )
        with pytest.raises(BackendUnavailableError):
            await LibvirtBackend().define_domain(connected_client, decode_domain(CANONICAL_DOMAIN))
