"""
Libvirt adapter for the backend port.

``LibvirtClient`` owns the connection lifecycle; ``LibvirtBackend`` fetches
domain capabilities and defines domains through it, translating libvirt
errors into the project's error taxonomy.
"""

import asyncio
from typing import Optional

import libvirt
from libvirt import libvirtError

from .backend import BackendPort, DefineResult
from .capabilities import CapabilitySnapshot, parse_domain_capabilities
from .codec import decode_domain, encode_domain
from .config import Config
from .devices import DomainDocument
from .exceptions import (
    BackendUnavailableError,
    RejectedByHypervisorError,
    ResourceNotFoundError,
)
from .logging import get_logger

logger = get_logger(__name__)

# libvirt error codes that mean the connection itself is gone
CONNECTION_ERROR_CODES = frozenset({
    libvirt.VIR_ERR_NO_CONNECT,
    libvirt.VIR_ERR_INVALID_CONN,
    libvirt.VIR_ERR_RPC,
    libvirt.VIR_ERR_SYSTEM_ERROR,
})


def is_connection_error(error: libvirtError) -> bool:
    return error.get_error_code() in CONNECTION_ERROR_CODES


class LibvirtClient:
    """
    Libvirt connection with managed lifecycle.

    Opens read-only or read-write per configuration and keeps libvirt's
    default error printing off stderr.
    """

    def __init__(self, config: Config):
        """Initialize libvirt client with configuration."""
        self.config = config
        self._connection: Optional[libvirt.virConnect] = None
        self._lock = asyncio.Lock()

        # Set up libvirt error handler to prevent default stderr output
        libvirt.registerErrorHandler(self._libvirt_error_handler, None)

    def _libvirt_error_handler(self, ctx, err):
        """Custom libvirt error handler."""
        logger.debug(f"Libvirt error: {err}")

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()

    @property
    def connected(self) -> bool:
        return self._connection is not None

    async def connect(self) -> None:
        """Establish connection to libvirt."""
        async with self._lock:
            if self._connection is not None:
                return

            try:
                if self.config.libvirt.readonly:
                    self._connection = libvirt.openReadOnly(self.config.libvirt.uri)
                else:
                    self._connection = libvirt.open(self.config.libvirt.uri)

                logger.info(f"Connected to libvirt: {self.config.libvirt.uri}")

            except libvirtError as e:
                logger.error(f"Failed to connect to libvirt: {e}")
                raise BackendUnavailableError(
                    f"Failed to connect to libvirt: {e}",
                    details={"uri": self.config.libvirt.uri},
                ) from e

    async def disconnect(self) -> None:
        """Close connection to libvirt."""
        async with self._lock:
            if self._connection is not None:
                try:
                    self._connection.close()
                    logger.info("Disconnected from libvirt")
                except libvirtError as e:
                    logger.warning(f"Error closing libvirt connection: {e}")
                finally:
                    self._connection = None

    def ensure_connected(self) -> libvirt.virConnect:
        """Return the live connection or raise BackendUnavailableError."""
        if self._connection is None:
            raise BackendUnavailableError("Not connected to libvirt")

        try:
            alive = self._connection.isAlive()
        except libvirtError:
            alive = False
        if not alive:
            self._connection = None
            raise BackendUnavailableError("Libvirt connection lost")
        return self._connection


class LibvirtBackend(BackendPort):
    """``BackendPort`` over a ``LibvirtClient``."""

    async def fetch_capabilities(self, connection: LibvirtClient, domain_ref: str) -> CapabilitySnapshot:
        conn = connection.ensure_connected()

        try:
            domain = conn.lookupByName(domain_ref)
            xml = domain.XMLDesc(0)
        except libvirtError as e:
            if e.get_error_code() == libvirt.VIR_ERR_NO_DOMAIN:
                raise ResourceNotFoundError(f"Domain not found: {domain_ref}") from e
            if is_connection_error(e):
                raise BackendUnavailableError(f"Libvirt connection lost: {e}") from e
            raise BackendUnavailableError(f"Failed to read domain {domain_ref}: {e}") from e

        document = decode_domain(xml)
        os_config = document.os
        try:
            caps_xml = conn.getDomainCapabilities(
                document.emulator,
                os_config.arch if os_config else None,
                os_config.machine if os_config else None,
                document.domain_type,
                0,
            )
        except libvirtError as e:
            logger.error(f"Failed to get domain capabilities for {domain_ref}: {e}")
            raise BackendUnavailableError(f"Failed to get domain capabilities: {e}") from e

        snapshot = parse_domain_capabilities(caps_xml)
        logger.info(f"Fetched capabilities for domain: {domain_ref}")
        return snapshot

    async def define_domain(self, connection: LibvirtClient, document: DomainDocument) -> DefineResult:
        conn = connection.ensure_connected()
        xml = encode_domain(document)

        try:
            domain = conn.defineXML(xml)
        except libvirtError as e:
            if is_connection_error(e):
                raise BackendUnavailableError(f"Libvirt connection lost: {e}") from e
            detail = e.get_error_message() or str(e)
            logger.error(f"Hypervisor rejected domain {document.name}: {detail}")
            raise RejectedByHypervisorError(detail, details={"domain": document.name}) from e

        result = DefineResult(name=domain.name(), uuid=domain.UUIDString())
        logger.info(f"Defined persistent domain: {result.name}")
        return result
