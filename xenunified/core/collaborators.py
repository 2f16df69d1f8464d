"""
External Collaborator Contracts
================================

Interfaces for the pieces the unified driver calls but does not own:

  - DomainConfigCodec: parse/format of native XM and s-expression configs
    and of canonical domain definition documents
  - PciDeviceManager: stub-driver bind/unbind and function reset of a
    PCI device

Implementations are injected into ``UnifiedDriver``. When one is absent,
the operations depending on it report ``UnsupportedOperationError``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from xenunified.core.domain import DomainDefinitionOptions, PciAddress

class DomainConfigCodec(ABC):
    """Native config and canonical definition conversion."""

    @abstractmethod
    def parse_xm(self, config: str, config_version: int, capabilities: Any) -> Any:
        """Parse an XM-format config file into a definition object."""
        ...

    @abstractmethod
    def domain_id_from_sxpr(self, config: str, config_version: int) -> int:
        """Extract the domain id from an s-expression (-1 when inactive)."""
        ...

    @abstractmethod
    def parse_sxpr(
        self,
        config: str,
        config_version: int,
        console_path: str | None,
        vnc_port: int,
    ) -> Any:
        """Parse an s-expression into a definition object."""
        ...

    @abstractmethod
    def parse_definition(
        self,
        document: str,
        capabilities: Any,
        options: DomainDefinitionOptions,
    ) -> Any:
        """Parse a canonical domain definition document."""
        ...

    @abstractmethod
    def format_definition(self, definition: Any) -> str:
        """Format a definition object as a canonical document."""
        ...

    @abstractmethod
    def format_xm(self, definition: Any, config_version: int) -> str:
        ...

    @abstractmethod
    def format_sxpr(self, definition: Any, config_version: int) -> str:
        ...

class PciDeviceManager(ABC):
    """PCI passthrough mechanics."""

    @abstractmethod
    def detach(self, address: PciAddress, stub_driver: str) -> None:
        """Unbind from the host driver and bind to ``stub_driver``."""
        ...

    @abstractmethod
    def reattach(self, address: PciAddress) -> None:
        """Return the device to its host driver."""
        ...

    @abstractmethod
    def reset(self, address: PciAddress) -> None:
        ...
