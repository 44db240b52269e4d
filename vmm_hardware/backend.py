"""
Backend capability/define port.

The device editor only needs two things from a hypervisor connection: the
capability snapshot for a domain, and a way to (re)define a domain from a
document. ``BackendPort`` is that interface; ``libvirt_client.LibvirtBackend``
implements it over libvirt-python.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from pydantic import BaseModel, Field

from .capabilities import CapabilitySnapshot
from .devices import DomainDocument


class DefineResult(BaseModel):
    """Outcome of a successful define."""

    name: str = Field(description="Domain name as defined")
    uuid: Optional[str] = Field(default=None, description="Domain UUID")


class BackendPort(ABC):
    """Operations the hardware editor calls into the connection backend."""

    @abstractmethod
    async def fetch_capabilities(self, connection: Any, domain_ref: str) -> CapabilitySnapshot:
        """
        Fetch the capability snapshot for ``domain_ref``.

        Raises:
            BackendUnavailableError: if the connection is missing or lost
            ResourceNotFoundError: if the domain does not exist
        """

    @abstractmethod
    async def define_domain(self, connection: Any, document: DomainDocument) -> DefineResult:
        """
        Define or redefine a domain from ``document``.

        Raises:
            BackendUnavailableError: if the connection is missing or lost
            RejectedByHypervisorError: if the hypervisor refuses the definition
        """
