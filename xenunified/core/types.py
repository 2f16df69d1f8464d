"""
Canonical Type Definitions
===========================

Single source of truth for shared enums and constants used across the
unified driver. All modules should import backend slots, operation flags
and protocol version constants from here.

This module defines:
- BackendSlot: fixed ordering of the five Xen sub-drivers
- VcpuFlag / DeviceModifyFlag / MigrationFlag: operation modifier bitmasks
- ConfigFormat: native configuration formats understood by conversion
- DomainEventId / LifecycleEvent: event subscription identifiers
- DriverFeature: optional driver features advertised to callers
- XEND_CONFIG_VERSION_*: negotiated daemon protocol versions
"""

from enum import IntEnum, IntFlag, StrEnum

__all__ = [
    "ALL_SLOTS",
    "BackendSlot",
    "ConfigFormat",
    "DeviceModifyFlag",
    "DomainEventId",
    "DriverFeature",
    "LEGACY_CONFIG_VERSION",
    "LifecycleEvent",
    "MigrationFlag",
    "SUPPORTED_FEATURES",
    "VcpuFlag",
    "XEN_MIGRATION_FLAGS",
    "is_legacy_config_version",
]

class BackendSlot(IntEnum):
    """Ordinal slot of each backend.

    The numeric value is the iteration order used by fallback dispatch:
    the hypervisor is always consulted first, the watcher last.
    """

    HYPERVISOR = 0  # low-level control plane
    XEND = 1        # daemon RPC
    XENSTORE = 2    # notification / key-value store
    XM = 3          # legacy file-backed config store
    INOTIFY = 4     # filesystem-change watcher

ALL_SLOTS: tuple[BackendSlot, ...] = tuple(BackendSlot)

class VcpuFlag(IntFlag):
    """Modifiers for virtual CPU count operations."""

    LIVE = 1
    CONFIG = 2
    MAXIMUM = 4

class DeviceModifyFlag(IntFlag):
    """Modifiers for device attach/detach/update."""

    CURRENT = 0
    LIVE = 1
    CONFIG = 2
    FORCE = 4

class MigrationFlag(IntFlag):
    """Migration modifiers. Only a subset is accepted by this driver."""

    LIVE = 1
    PEER2PEER = 2
    TUNNELLED = 4
    PERSIST_DEST = 8
    UNDEFINE_SOURCE = 16
    PAUSED = 32

XEN_MIGRATION_FLAGS = (
    MigrationFlag.LIVE
    | MigrationFlag.UNDEFINE_SOURCE
    | MigrationFlag.PAUSED
    | MigrationFlag.PERSIST_DEST
)

class ConfigFormat(StrEnum):
    """Native configuration formats for domain XML conversion."""

    XM = "xen-xm"
    SEXPR = "xen-sxpr"

class DomainEventId(IntEnum):
    """Event kinds a callback can subscribe to."""

    LIFECYCLE = 0
    REBOOT = 1
    RTC_CHANGE = 2
    WATCHDOG = 3
    IO_ERROR = 4
    GRAPHICS = 5

class LifecycleEvent(IntEnum):
    """Lifecycle event types delivered with DomainEventId.LIFECYCLE."""

    DEFINED = 0
    UNDEFINED = 1
    STARTED = 2
    SUSPENDED = 3
    RESUMED = 4
    STOPPED = 5

class DriverFeature(StrEnum):
    """Optional features a driver may advertise."""

    MIGRATION_V1 = "migration_v1"
    MIGRATION_V2 = "migration_v2"
    MIGRATION_V3 = "migration_v3"
    MIGRATION_DIRECT = "migration_direct"
    MIGRATION_P2P = "migration_p2p"

SUPPORTED_FEATURES: frozenset[DriverFeature] = frozenset(
    {DriverFeature.MIGRATION_V1, DriverFeature.MIGRATION_DIRECT}
)

# ── Daemon protocol versions ──────────────────────────────────────

XEND_CONFIG_VERSION_UNKNOWN = -1
XEND_CONFIG_VERSION_3_0_2 = 1
XEND_CONFIG_VERSION_3_0_3 = 2
XEND_CONFIG_VERSION_3_0_4 = 3
XEND_CONFIG_VERSION_3_1_0 = 4

LEGACY_CONFIG_VERSION = XEND_CONFIG_VERSION_3_0_3

def is_legacy_config_version(version: int) -> bool:
    """True when the daemon predates inactive domain management.

    Legacy daemons need the file-backed XM store for inactive domains.
    An unknown version (-1) is treated as legacy.
    """
    return version <= LEGACY_CONFIG_VERSION

DRIVER_TYPE = "Xen"
DEFAULT_TARGET = "xen:///"
ACCEPTED_SCHEMES: frozenset[str] = frozenset({"xen", "http"})
PRIMARY_SCHEME = "xen"
XEN_MAC_PREFIX: tuple[int, int, int] = (0x00, 0x16, 0x3E)
PCI_STUB_DRIVER = "pciback"
MAX_NATIVE_CONFIG_SIZE = 1024 * 65
