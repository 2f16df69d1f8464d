"""
Domain Value Objects
=====================

Plain data carried between the operation surface and the backends:
domain handles, node topology, virtual CPU introspection, statistics,
migration cookies and PCI addresses.

Backends construct these; the dispatcher only routes them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any
from uuid import UUID

class DomainRunState(IntEnum):
    """Coarse run state of a domain."""

    NOSTATE = 0
    RUNNING = 1
    BLOCKED = 2
    PAUSED = 3
    SHUTDOWN = 4
    SHUTOFF = 5
    CRASHED = 6
    PMSUSPENDED = 7

class VcpuState(IntEnum):
    OFFLINE = 0
    RUNNING = 1
    BLOCKED = 2

@dataclass(frozen=True, slots=True)
class Domain:
    """
    Handle to a domain known to the hypervisor or the config store.

    ``id`` is -1 for inactive (defined but not running) domains.
    """

    id: int
    name: str
    uuid: UUID

    @property
    def is_running(self) -> bool:
        return self.id != -1

@dataclass(frozen=True, slots=True)
class NodeInfo:
    """Host topology summary."""

    model: str
    memory_kib: int
    cpus: int
    mhz: int
    nodes: int
    sockets: int
    cores: int
    threads: int

    @property
    def max_cpus(self) -> int:
        return self.nodes * self.sockets * self.cores * self.threads

@dataclass(frozen=True, slots=True)
class DomainInfo:
    state: DomainRunState
    max_mem_kib: int
    memory_kib: int
    nr_virt_cpu: int
    cpu_time_ns: int

@dataclass(frozen=True, slots=True)
class DomainState:
    state: DomainRunState
    reason: int = 0

@dataclass(frozen=True, slots=True)
class VcpuInfo:
    """Per-virtual-CPU state plus the physical CPUs it may run on."""

    number: int
    state: VcpuState
    cpu_time_ns: int
    cpu: int
    usable_cpus: frozenset[int] = frozenset()

@dataclass(frozen=True, slots=True)
class SchedulerType:
    name: str
    nparams: int

@dataclass(frozen=True, slots=True)
class BlockStats:
    rd_req: int = -1
    rd_bytes: int = -1
    wr_req: int = -1
    wr_bytes: int = -1
    errs: int = -1

@dataclass(frozen=True, slots=True)
class InterfaceStats:
    rx_bytes: int = -1
    rx_packets: int = -1
    rx_errs: int = -1
    rx_drop: int = -1
    tx_bytes: int = -1
    tx_packets: int = -1
    tx_errs: int = -1
    tx_drop: int = -1

@dataclass(frozen=True, slots=True)
class MigrationCookie:
    """Output of the prepare phase, passed to perform."""

    cookie: bytes = b""
    uri_out: str | None = None

@dataclass(frozen=True, slots=True)
class CharDevice:
    """A console or serial character device of a running domain."""

    source_type: str
    path: str | None = None

    @property
    def is_pty(self) -> bool:
        return self.source_type == "pty"

@dataclass(frozen=True, slots=True)
class ConsoleDevices:
    consoles: tuple[CharDevice, ...] = ()
    serials: tuple[CharDevice, ...] = ()

    def default(self) -> CharDevice | None:
        """First console, else first serial port."""
        if self.consoles:
            return self.consoles[0]
        if self.serials:
            return self.serials[0]
        return None

@dataclass(frozen=True, slots=True)
class PciAddress:
    domain: int
    bus: int
    slot: int
    function: int

    def bdf(self) -> str:
        """Format as ``dddd:bb:ss.f``."""
        return f"{self.domain:04x}:{self.bus:02x}:{self.slot:02x}.{self.function:x}"

@dataclass(frozen=True, slots=True)
class NodeDeviceCapability:
    """One capability block of a parsed node device descriptor."""

    type: str
    data: dict[str, Any] = field(default_factory=dict)

@dataclass(frozen=True, slots=True)
class NodeDevice:
    """A host device as described by its descriptor document."""

    name: str
    capabilities: tuple[NodeDeviceCapability, ...] = ()

    def pci_address(self) -> PciAddress | None:
        """Address from the first ``pci`` capability, if any."""
        for cap in self.capabilities:
            if cap.type == "pci":
                return PciAddress(
                    domain=int(cap.data.get("domain", 0)),
                    bus=int(cap.data["bus"]),
                    slot=int(cap.data["slot"]),
                    function=int(cap.data["function"]),
                )
        return None

@dataclass(frozen=True, slots=True)
class DomainDefinitionOptions:
    """
    Per-connection schema helper for parsing domain definitions.

    Holds the Xen MAC prefix and the console post-parse rule: a console
    with no target type on a non-HVM guest targets the Xen console.
    """

    mac_prefix: tuple[int, int, int]

    @staticmethod
    def console_target_type(os_type: str, target_type: str | None) -> str | None:
        if target_type is None and os_type != "hvm":
            return "xen"
        return target_type
