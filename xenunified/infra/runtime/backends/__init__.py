"""
Backend Protocol — Sub-Driver Contract and Registry
====================================================

Defines the contract every Xen sub-driver must satisfy to take part in
unified dispatch, the tagged result each handler returns, and the
process-wide registry mapping backend slots to their capability tables.

A backend is any object with ``open``/``close`` plus zero or more handler
methods named after ``Capability`` values. A capability the backend does
not define is simply absent from its descriptor: "not implemented" is a
first-class state, not a null check at each call site.

Handlers take the session as first argument and return an
``OperationResult``:
  - success(value)   — done, stop routing
  - decline(reason)  — cannot do it under current conditions, try next
  - failure(reason)  — attempted and failed
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass, field, replace
from enum import StrEnum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, ClassVar, Generic, TypeVar

from xenunified.core.exceptions import XenUnifiedException
from xenunified.core.types import BackendSlot

if TYPE_CHECKING:
    from xenunified.infra.runtime.session import Session

T = TypeVar("T")

class Capability(StrEnum):
    """Operations a backend may implement. Values are handler method names."""

    # Node / connection
    GET_VERSION = "get_version"
    GET_MAX_VCPUS = "get_max_vcpus"
    NODE_GET_INFO = "node_get_info"
    MAKE_CAPABILITIES = "make_capabilities"
    NODE_GET_CELLS_FREE_MEMORY = "node_get_cells_free_memory"
    LIST_DOMAINS = "list_domains"
    NUM_OF_DOMAINS = "num_of_domains"
    LIST_DEFINED_DOMAINS = "list_defined_domains"
    NUM_OF_DEFINED_DOMAINS = "num_of_defined_domains"

    # Domain lifecycle
    DOMAIN_CREATE_XML = "domain_create_xml"
    DOMAIN_LOOKUP_BY_ID = "domain_lookup_by_id"
    DOMAIN_LOOKUP_BY_UUID = "domain_lookup_by_uuid"
    DOMAIN_LOOKUP_BY_NAME = "domain_lookup_by_name"
    DOMAIN_SUSPEND = "domain_suspend"
    DOMAIN_RESUME = "domain_resume"
    DOMAIN_SHUTDOWN = "domain_shutdown"
    DOMAIN_REBOOT = "domain_reboot"
    DOMAIN_DESTROY = "domain_destroy"
    DOMAIN_SAVE = "domain_save"
    DOMAIN_RESTORE = "domain_restore"
    DOMAIN_CORE_DUMP = "domain_core_dump"
    DOMAIN_CREATE = "domain_create"
    DOMAIN_DEFINE_XML = "domain_define_xml"
    DOMAIN_UNDEFINE = "domain_undefine"
    DOMAIN_ATTACH_DEVICE = "domain_attach_device"
    DOMAIN_DETACH_DEVICE = "domain_detach_device"
    DOMAIN_UPDATE_DEVICE = "domain_update_device"
    DOMAIN_GET_AUTOSTART = "domain_get_autostart"
    DOMAIN_SET_AUTOSTART = "domain_set_autostart"
    DOMAIN_GET_CONSOLES = "domain_get_consoles"

    # Domain resources
    DOMAIN_GET_OS_TYPE = "domain_get_os_type"
    DOMAIN_GET_MAX_MEMORY = "domain_get_max_memory"
    DOMAIN_SET_MAX_MEMORY = "domain_set_max_memory"
    DOMAIN_SET_MEMORY = "domain_set_memory"
    DOMAIN_GET_INFO = "domain_get_info"
    DOMAIN_GET_STATE = "domain_get_state"
    DOMAIN_SET_VCPUS_FLAGS = "domain_set_vcpus_flags"
    DOMAIN_SET_VCPUS = "domain_set_vcpus"
    DOMAIN_GET_VCPUS_FLAGS = "domain_get_vcpus_flags"
    DOMAIN_GET_VCPU_MAX = "domain_get_vcpu_max"
    DOMAIN_PIN_VCPU = "domain_pin_vcpu"
    DOMAIN_GET_VCPUS = "domain_get_vcpus"
    DOMAIN_GET_XML_DESC = "domain_get_xml_desc"
    DOMAIN_GET_SCHEDULER_TYPE = "domain_get_scheduler_type"
    DOMAIN_GET_SCHEDULER_PARAMETERS = "domain_get_scheduler_parameters"
    DOMAIN_SET_SCHEDULER_PARAMETERS = "domain_set_scheduler_parameters"
    DOMAIN_BLOCK_STATS = "domain_block_stats"
    DOMAIN_INTERFACE_STATS = "domain_interface_stats"
    DOMAIN_BLOCK_PEEK = "domain_block_peek"

    # Migration
    DOMAIN_MIGRATE_PREPARE = "domain_migrate_prepare"
    DOMAIN_MIGRATE_PERFORM = "domain_migrate_perform"

    # Store lookups
    DOMAIN_GET_CONSOLE_PATH = "domain_get_console_path"
    DOMAIN_GET_VNC_PORT = "domain_get_vnc_port"
    DOMAIN_GET_PCI_ID = "domain_get_pci_id"

# ── Tagged results ─────────────────────────────────────────────────

class Outcome(StrEnum):
    SUCCESS = "success"
    SOFT_DECLINE = "soft_decline"
    HARD_FAILURE = "hard_failure"

@dataclass(frozen=True, slots=True)
class OperationResult(Generic[T]):
    """Outcome of one backend call."""

    outcome: Outcome
    value: T | None = None
    reason: str = ""
    error: BaseException | None = None
    backend: str = ""

    @classmethod
    def success(cls, value: T | None = None) -> OperationResult[T]:
        return cls(Outcome.SUCCESS, value=value)

    @classmethod
    def decline(cls, reason: str = "") -> OperationResult[T]:
        return cls(Outcome.SOFT_DECLINE, reason=reason)

    @classmethod
    def failure(
        cls, reason: str = "", error: BaseException | None = None
    ) -> OperationResult[T]:
        return cls(Outcome.HARD_FAILURE, reason=reason or str(error or ""), error=error)

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.SUCCESS

    @property
    def declined(self) -> bool:
        return self.outcome is Outcome.SOFT_DECLINE

    @property
    def failed(self) -> bool:
        return self.outcome is Outcome.HARD_FAILURE

@dataclass(frozen=True, slots=True)
class DaemonHandshake:
    """Success value of the daemon backend's open."""

    config_version: int
    unix_socket: bool = True

# ── Backend contract ───────────────────────────────────────────────

class XenBackend(ABC):
    """
    Abstract sub-driver.

    Subclasses set ``slot`` and ``name`` and add handler methods named
    after ``Capability`` values. ``open`` return values by slot:
      - XEND: success(DaemonHandshake)
      - XENSTORE: success(watch handle, or None when no watch was set up)
      - others: success()
    """

    slot: ClassVar[BackendSlot]
    name: ClassVar[str]

    @abstractmethod
    def open(
        self,
        session: Session,
        target: str,
        credentials: Any = None,
        flags: int = 0,
    ) -> OperationResult:
        """Activate this backend for a session."""
        ...

    @abstractmethod
    def close(self, session: Session) -> None:
        """Release everything ``open`` acquired for the session."""
        ...

Handler = Callable[..., OperationResult]

@dataclass(frozen=True)
class BackendDescriptor:
    """Identity plus capability table of one backend. Immutable."""

    slot: BackendSlot
    name: str
    open: Callable[..., OperationResult]
    close: Callable[..., None]
    handlers: Mapping[Capability, Handler] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "handlers", MappingProxyType(dict(self.handlers)))

    @classmethod
    def from_backend(cls, backend: XenBackend) -> BackendDescriptor:
        handlers: dict[Capability, Handler] = {}
        for capability in Capability:
            handler = getattr(backend, capability.value, None)
            if callable(handler):
                handlers[capability] = handler
        return cls(
            slot=backend.slot,
            name=backend.name,
            open=backend.open,
            close=backend.close,
            handlers=handlers,
        )

    def implements(self, capability: Capability) -> bool:
        return capability in self.handlers

    def invoke(
        self, capability: Capability, session: Session, *args: Any
    ) -> OperationResult:
        """Call a handler, turning driver errors into hard failures."""
        handler = self.handlers[capability]
        try:
            result = handler(session, *args)
        except XenUnifiedException as exc:
            result = OperationResult.failure(exc.detail, exc)
        if not isinstance(result, OperationResult):
            raise TypeError(
                f"{self.name}.{capability.value} returned {type(result).__name__}, "
                "expected OperationResult"
            )
        return replace(result, backend=self.name)

class BackendRegistry:
    """
    Fixed, ordered set of backend descriptors.

    Built once at startup; iteration is always in slot order.
    """

    def __init__(self, backends: Iterable[XenBackend | BackendDescriptor]):
        by_slot: dict[BackendSlot, BackendDescriptor] = {}
        for backend in backends:
            descriptor = (
                backend
                if isinstance(backend, BackendDescriptor)
                else BackendDescriptor.from_backend(backend)
            )
            if descriptor.slot in by_slot:
                raise ValueError(f"duplicate backend for slot {descriptor.slot.name}")
            by_slot[descriptor.slot] = descriptor
        self._descriptors: tuple[BackendDescriptor, ...] = tuple(
            by_slot[slot] for slot in sorted(by_slot)
        )
        self._by_slot = MappingProxyType(by_slot)

    def __iter__(self) -> Iterator[BackendDescriptor]:
        return iter(self._descriptors)

    def __len__(self) -> int:
        return len(self._descriptors)

    def __contains__(self, slot: object) -> bool:
        return slot in self._by_slot

    def get(self, slot: BackendSlot) -> BackendDescriptor | None:
        return self._by_slot.get(slot)

    def ordered(
        self,
        slots: Iterable[BackendSlot] | None = None,
        *,
        reverse: bool = False,
    ) -> list[BackendDescriptor]:
        """Descriptors for ``slots`` (all when None) in the given order."""
        if slots is None:
            chosen = list(self._descriptors)
        else:
            chosen = [self._by_slot[s] for s in slots if s in self._by_slot]
        if reverse:
            chosen.reverse()
        return chosen

    def implementers(self, capability: Capability) -> list[BackendDescriptor]:
        return [d for d in self._descriptors if d.implements(capability)]

__all__ = [
    "BackendDescriptor",
    "BackendRegistry",
    "Capability",
    "DaemonHandshake",
    "OperationResult",
    "Outcome",
    "XenBackend",
]
