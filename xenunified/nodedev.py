"""
Node Device Operations
=======================

Detach, reattach and reset of PCI host devices for passthrough.

The device is identified by the (domain, bus, slot, function) address in
the first PCI capability of its descriptor. Stub-driver binding and
function reset are delegated to an injected ``PciDeviceManager``. A
device that is assigned to a running domain is never handed back to or
taken from the host.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from xenunified.core.collaborators import PciDeviceManager
from xenunified.core.domain import NodeDevice, PciAddress
from xenunified.core.exceptions import (
    InvalidArgumentError,
    OperationFailedError,
    OperationInvalidError,
)
from xenunified.core.types import PCI_STUB_DRIVER, BackendSlot
from xenunified.infra.runtime.backends import Capability
from xenunified.infra.runtime.router import RoutePolicy
from xenunified.infra.telemetry import get_logger
from xenunified.utils.flags import check_flags

if TYPE_CHECKING:
    from xenunified.connection import Connection

logger = get_logger(__name__)

def pci_address_of(device: NodeDevice) -> PciAddress:
    address = device.pci_address()
    if address is None:
        raise InvalidArgumentError(f"device {device.name} is not a PCI device")
    return address

class NodeDeviceOperations:
    """PCI passthrough entry points bound to one device manager."""

    def __init__(self, manager: PciDeviceManager):
        self._manager = manager

    def assigned_domain_id(self, connection: Connection, device: NodeDevice) -> int | None:
        """Id of the running domain the device is assigned to, if any."""
        domids = connection.list_domains()
        bdf = pci_address_of(device).bdf()
        session = connection.session
        policy = RoutePolicy.only(Capability.DOMAIN_GET_PCI_ID, BackendSlot.XENSTORE)

        with session.locked():
            for domid in domids:
                result = connection.router.try_chain(session, policy, domid, bdf)
                if result.ok and result.value is not None:
                    return domid
        return None

    def _refuse_if_assigned(
        self, operation: str, connection: Connection, device: NodeDevice
    ) -> None:
        domid = self.assigned_domain_id(connection, device)
        if domid is not None:
            raise OperationInvalidError(
                operation, f"Device {device.name} has been assigned to guest {domid}"
            )

    def detach(
        self,
        connection: Connection,
        device: NodeDevice,
        driver_name: str | None = None,
        flags: int = 0,
    ) -> None:
        check_flags("node_device_detach", flags)
        address = pci_address_of(device)
        if driver_name is not None:
            raise InvalidArgumentError(f"unknown driver name '{driver_name}'")
        self._refuse_if_assigned("node_device_detach", connection, device)

        self._run("node_device_detach", device, self._manager.detach, address, PCI_STUB_DRIVER)
        logger.info("node_device_detached", device=device.name, bdf=address.bdf())

    def reattach(self, connection: Connection, device: NodeDevice) -> None:
        address = pci_address_of(device)
        self._refuse_if_assigned("node_device_reattach", connection, device)

        self._run("node_device_reattach", device, self._manager.reattach, address)
        logger.info("node_device_reattached", device=device.name, bdf=address.bdf())

    def reset(self, device: NodeDevice) -> None:
        address = pci_address_of(device)
        self._run("node_device_reset", device, self._manager.reset, address)

    @staticmethod
    def _run(operation: str, device: NodeDevice, func, *args) -> None:
        try:
            func(*args)
        except OSError as exc:
            raise OperationFailedError(
                f"{operation} failed for {device.name}: {exc.strerror or exc}",
                operation=operation,
                original_error=exc,
                context={"device": device.name},
            ) from exc
