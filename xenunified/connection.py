"""
Connection — Unified Operation Surface
=======================================

The object callers hold after a successful open. Every method validates
its parameters first, then hands the call to the operation router with
the fallback policy that operation needs:

  - owned by the daemon (save, restore, core dump, migration, lifecycle
    verbs): xend only, stop on failure
  - inactive-domain state (autostart, memory, info, state, XML): routed
    by daemon version to either the XM store or xend
  - queries and best-effort writes: every active backend in slot order,
    first success wins
  - scheduler parameter setters: every active backend in reverse order,
    so the hypervisor is consulted last

Managed-save images live in ``{save_dir}/{domain name}.save``.
"""

from __future__ import annotations

import functools
import os
import socket
from collections.abc import Callable, Iterable, Mapping
from pathlib import Path
from typing import Any, TypeVar
from uuid import UUID

from xenunified.core.collaborators import DomainConfigCodec
from xenunified.core.domain import (
    BlockStats,
    ConsoleDevices,
    Domain,
    DomainInfo,
    DomainState,
    InterfaceStats,
    MigrationCookie,
    NodeDevice,
    NodeInfo,
    SchedulerType,
    VcpuInfo,
)
from xenunified.core.exceptions import (
    ArgumentUnsupportedError,
    InvalidArgumentError,
    MigrationPersistError,
    NoDomainError,
    OperationFailedError,
    OperationInvalidError,
    UnsupportedOperationError,
    XenUnifiedException,
)
from xenunified.core.types import (
    DRIVER_TYPE,
    MAX_NATIVE_CONFIG_SIZE,
    SUPPORTED_FEATURES,
    XEN_MIGRATION_FLAGS,
    BackendSlot,
    ConfigFormat,
    DeviceModifyFlag,
    DomainEventId,
    DriverFeature,
    MigrationFlag,
    VcpuFlag,
)
from xenunified.infra.runtime.backends import Capability
from xenunified.infra.runtime.events import EventCallback, FreeCallback
from xenunified.infra.runtime.lifecycle import SessionOrchestrator
from xenunified.infra.runtime.router import (
    FailurePolicy,
    IterationOrder,
    OperationRouter,
    RoutePolicy,
    select_versioned_slot,
)
from xenunified.infra.runtime.session import Session, SessionState
from xenunified.infra.telemetry import get_logger, set_log_context
from xenunified.nodedev import NodeDeviceOperations
from xenunified.utils.cpumap import format_cpu_ranges
from xenunified.utils.flags import check_flags

logger = get_logger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

_VCPU_FLAGS = VcpuFlag.LIVE | VcpuFlag.CONFIG | VcpuFlag.MAXIMUM
_MAX_VCPUS = 0xFFFF

def _operation(func: F) -> F:
    """Require an open session and tag log records with the operation."""

    @functools.wraps(func)
    def wrapper(self: Connection, *args: Any, **kwargs: Any) -> Any:
        if self.session.state is not SessionState.ACTIVE:
            raise OperationInvalidError(func.__name__, "connection is not open")
        set_log_context(connection_id=self.session.id, operation=func.__name__)
        return func(self, *args, **kwargs)

    return wrapper  # type: ignore[return-value]

class Connection:
    """One open unified Xen connection."""

    def __init__(
        self,
        session: Session,
        router: OperationRouter,
        orchestrator: SessionOrchestrator,
        xend_domains_dir: Path,
        codec: DomainConfigCodec | None = None,
        node_devices: NodeDeviceOperations | None = None,
    ):
        self.session = session
        self._router = router
        self._orchestrator = orchestrator
        self._xend_domains_dir = xend_domains_dir
        self._codec = codec
        self._node_devices = node_devices

    def __enter__(self) -> Connection:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ── Connection ────────────────────────────────────────────────

    def close(self) -> None:
        self._orchestrator.close(self.session)

    @property
    def router(self) -> OperationRouter:
        return self._router

    @property
    def closed(self) -> bool:
        return self.session.state is SessionState.CLOSED

    def supports_feature(self, feature: DriverFeature | str) -> bool:
        return feature in SUPPORTED_FEATURES

    def get_type(self) -> str:
        return DRIVER_TYPE

    @_operation
    def get_version(self) -> int:
        return self._router.fallback(
            self.session, RoutePolicy.only(Capability.GET_VERSION, BackendSlot.HYPERVISOR)
        )

    def get_hostname(self) -> str:
        return socket.gethostname()

    def is_encrypted(self) -> bool:
        return False

    def is_secure(self) -> bool:
        """Every transport is local except xend over TCP."""
        return not (
            self.session.is_active(BackendSlot.XEND) and not self.session.daemon_unix_socket
        )

    def is_alive(self) -> bool:
        # xend reconnects for each request
        return True

    @_operation
    def get_max_vcpus(self, hv_type: str | None = None) -> int:
        if hv_type is not None and hv_type.lower() != DRIVER_TYPE.lower():
            raise InvalidArgumentError(f"get_max_vcpus: unknown type '{hv_type}'")
        return self._router.fallback(
            self.session,
            RoutePolicy.only(Capability.GET_MAX_VCPUS, BackendSlot.HYPERVISOR),
            hv_type,
        )

    @_operation
    def get_capabilities(self) -> Any:
        return self.session.capabilities

    @_operation
    def node_get_info(self) -> NodeInfo:
        return self._router.fallback(
            self.session, RoutePolicy.only(Capability.NODE_GET_INFO, BackendSlot.XEND)
        )

    @_operation
    def node_get_cells_free_memory(self, start_cell: int, max_cells: int) -> list[int]:
        return self._router.fallback(
            self.session,
            RoutePolicy.only(Capability.NODE_GET_CELLS_FREE_MEMORY, BackendSlot.HYPERVISOR),
            start_cell,
            max_cells,
        )

    @_operation
    def node_get_free_memory(self) -> int:
        """Free memory of the whole host in bytes; 0 when unavailable."""
        cells = self.node_get_cells_free_memory(-1, 1)
        if len(cells) != 1:
            return 0
        return cells[0]

    @_operation
    def list_domains(self) -> list[int]:
        return self._router.fallback(
            self.session, RoutePolicy.only(Capability.LIST_DOMAINS, BackendSlot.XENSTORE)
        )

    @_operation
    def num_of_domains(self) -> int:
        return self._router.fallback(
            self.session, RoutePolicy.only(Capability.NUM_OF_DOMAINS, BackendSlot.XENSTORE)
        )

    @_operation
    def list_defined_domains(self) -> list[str]:
        return self._router.fallback(
            self.session, RoutePolicy(Capability.LIST_DEFINED_DOMAINS)
        )

    @_operation
    def num_of_defined_domains(self) -> int:
        return self._router.fallback(
            self.session, RoutePolicy(Capability.NUM_OF_DEFINED_DOMAINS)
        )

    # ── Lookup ────────────────────────────────────────────────────

    def _lookup(self, policy: RoutePolicy, identity: Any) -> Domain:
        result = self._router.try_chain(self.session, policy, identity)
        if result.ok and result.value is not None:
            return result.value
        if result.failed and not isinstance(result.error, NoDomainError):
            self._router.resolve(policy.capability, result)
        raise NoDomainError(policy.capability.value, identity)

    @_operation
    def lookup_by_id(self, id: int) -> Domain:
        return self._lookup(
            RoutePolicy(
                Capability.DOMAIN_LOOKUP_BY_ID,
                candidates=(BackendSlot.HYPERVISOR,),
                accept=_found,
            ),
            id,
        )

    @_operation
    def lookup_by_uuid(self, uuid: UUID) -> Domain:
        """Running domains via the hypervisor, then the inactive-domain owner."""
        return self._lookup(self._uuid_lookup_policy(), uuid)

    def _uuid_lookup_policy(self) -> RoutePolicy:
        return RoutePolicy(
            Capability.DOMAIN_LOOKUP_BY_UUID,
            candidates=(
                BackendSlot.HYPERVISOR,
                select_versioned_slot(self.session.config_version),
            ),
            accept=_found,
        )

    @_operation
    def lookup_by_name(self, name: str) -> Domain:
        candidates = [BackendSlot.XEND]
        if self.session.is_legacy:
            # XM store knows inactive domains on legacy daemons
            candidates.append(BackendSlot.XM)
        return self._lookup(
            RoutePolicy(
                Capability.DOMAIN_LOOKUP_BY_NAME,
                candidates=tuple(candidates),
                accept=_found,
            ),
            name,
        )

    @_operation
    def is_active(self, domain: Domain) -> bool:
        # the id in the handle may be stale
        current = self._lookup(self._uuid_lookup_policy(), domain.uuid)
        return current.is_running

    @_operation
    def is_persistent(self, domain: Domain) -> bool:
        if self.session.is_active(BackendSlot.XM):
            result = self._router.try_chain(
                self.session,
                RoutePolicy.only(Capability.DOMAIN_LOOKUP_BY_UUID, BackendSlot.XM),
                domain.uuid,
            )
            return result.ok and result.value is not None

        current = self._lookup(
            RoutePolicy.only(Capability.DOMAIN_LOOKUP_BY_UUID, BackendSlot.XEND),
            domain.uuid,
        )
        if not current.is_running:
            return True
        # xend has no query for this; its config dir is the record
        return os.access(self._xend_domains_dir / str(domain.uuid), os.R_OK)

    def is_updated(self, domain: Domain) -> bool:
        return False

    # ── Lifecycle ─────────────────────────────────────────────────

    def _owned(self, capability: Capability, *args: Any) -> Any:
        return self._router.fallback(self.session, RoutePolicy.owned(capability), *args)

    @_operation
    def create_xml(self, xml: str, flags: int = 0) -> Domain:
        check_flags("create_xml", flags)
        return self._owned(Capability.DOMAIN_CREATE_XML, xml)

    @_operation
    def suspend(self, domain: Domain) -> None:
        self._owned(Capability.DOMAIN_SUSPEND, domain)

    @_operation
    def resume(self, domain: Domain) -> None:
        self._owned(Capability.DOMAIN_RESUME, domain)

    @_operation
    def shutdown(self, domain: Domain, flags: int = 0) -> None:
        check_flags("shutdown", flags)
        self._owned(Capability.DOMAIN_SHUTDOWN, domain)

    @_operation
    def reboot(self, domain: Domain, flags: int = 0) -> None:
        check_flags("reboot", flags)
        self._owned(Capability.DOMAIN_REBOOT, domain)

    @_operation
    def destroy(self, domain: Domain, flags: int = 0) -> None:
        check_flags("destroy", flags)
        self._owned(Capability.DOMAIN_DESTROY, domain)

    @_operation
    def save(
        self, domain: Domain, to: str | Path, dxml: str | None = None, flags: int = 0
    ) -> None:
        check_flags("save", flags)
        if dxml is not None:
            raise ArgumentUnsupportedError("save", "xml modification unsupported")
        self._owned(Capability.DOMAIN_SAVE, domain, str(to))

    @_operation
    def restore(self, source: str | Path, dxml: str | None = None, flags: int = 0) -> None:
        check_flags("restore", flags)
        if dxml is not None:
            raise ArgumentUnsupportedError("restore", "xml modification unsupported")
        self._owned(Capability.DOMAIN_RESTORE, str(source))

    @_operation
    def core_dump(self, domain: Domain, to: str | Path, flags: int = 0) -> None:
        self._owned(Capability.DOMAIN_CORE_DUMP, domain, str(to), flags)

    # ── Managed save ──────────────────────────────────────────────

    def managed_save_path(self, domain: Domain) -> Path:
        path = self.session.managed_save_path(domain.name)
        logger.debug("managed_save_image", path=str(path))
        return path

    @_operation
    def managed_save(self, domain: Domain, flags: int = 0) -> None:
        check_flags("managed_save", flags)
        self._owned(Capability.DOMAIN_SAVE, domain, str(self.managed_save_path(domain)))

    @_operation
    def has_managed_save_image(self, domain: Domain, flags: int = 0) -> bool:
        check_flags("has_managed_save_image", flags)
        return self.managed_save_path(domain).exists()

    @_operation
    def managed_save_remove(self, domain: Domain, flags: int = 0) -> None:
        check_flags("managed_save_remove", flags)
        path = self.managed_save_path(domain)
        try:
            path.unlink()
        except OSError as exc:
            raise OperationFailedError(
                f"Failed to remove managed save image '{path}': {exc.strerror}",
                operation="managed_save_remove",
                original_error=exc,
            ) from exc

    @_operation
    def create(self, domain: Domain, flags: int = 0) -> None:
        """Start a defined domain, resuming its managed-save image if one exists."""
        check_flags("create", flags)
        path = self.managed_save_path(domain)
        if path.exists():
            self._owned(Capability.DOMAIN_RESTORE, str(path))
            path.unlink(missing_ok=True)
            logger.info("managed_save_restored", domain=domain.name)
            return
        self._router.fallback(self.session, RoutePolicy(Capability.DOMAIN_CREATE), domain)

    # ── Definition ────────────────────────────────────────────────

    @_operation
    def define_xml(self, xml: str) -> Domain:
        return self._router.fallback(
            self.session, RoutePolicy(Capability.DOMAIN_DEFINE_XML), xml
        )

    @_operation
    def undefine(self, domain: Domain, flags: int = 0) -> None:
        check_flags("undefine", flags)
        self._router.fallback(self.session, RoutePolicy(Capability.DOMAIN_UNDEFINE), domain)

    def _legacy_device_flags(self) -> DeviceModifyFlag:
        # xend >= 3.0.4 cannot change live config without the persistent one
        flags = DeviceModifyFlag.LIVE
        if self.session.is_active(BackendSlot.XEND) and not self.session.is_legacy:
            flags |= DeviceModifyFlag.CONFIG
        return flags

    @_operation
    def attach_device(self, domain: Domain, xml: str) -> None:
        self.attach_device_flags(domain, xml, self._legacy_device_flags())

    @_operation
    def attach_device_flags(self, domain: Domain, xml: str, flags: int) -> None:
        self._router.fallback(
            self.session, RoutePolicy(Capability.DOMAIN_ATTACH_DEVICE), domain, xml, flags
        )

    @_operation
    def detach_device(self, domain: Domain, xml: str) -> None:
        self.detach_device_flags(domain, xml, self._legacy_device_flags())

    @_operation
    def detach_device_flags(self, domain: Domain, xml: str, flags: int) -> None:
        self._router.fallback(
            self.session, RoutePolicy(Capability.DOMAIN_DETACH_DEVICE), domain, xml, flags
        )

    @_operation
    def update_device_flags(self, domain: Domain, xml: str, flags: int) -> None:
        self._owned(Capability.DOMAIN_UPDATE_DEVICE, domain, xml, flags)

    @_operation
    def get_autostart(self, domain: Domain) -> bool:
        return self._router.exclusive(self.session, Capability.DOMAIN_GET_AUTOSTART, domain)

    @_operation
    def set_autostart(self, domain: Domain, autostart: bool) -> None:
        self._router.exclusive(
            self.session, Capability.DOMAIN_SET_AUTOSTART, domain, bool(autostart)
        )

    # ── Domain state ──────────────────────────────────────────────

    def _by_run_state(self, capability: Capability, domain: Domain, *args: Any) -> Any:
        """Running domains go to the hypervisor, inactive ones by version."""
        if domain.is_running:
            return self._router.fallback(
                self.session,
                RoutePolicy.only(capability, BackendSlot.HYPERVISOR),
                domain,
                *args,
            )
        return self._router.exclusive(self.session, capability, domain, *args)

    @_operation
    def get_os_type(self, domain: Domain) -> str:
        if not domain.is_running and self.session.is_legacy:
            raise OperationFailedError(
                "Unable to query OS type for inactive domain",
                operation="get_os_type",
            )
        return self._by_run_state(Capability.DOMAIN_GET_OS_TYPE, domain)

    @_operation
    def get_max_memory(self, domain: Domain) -> int:
        return self._by_run_state(Capability.DOMAIN_GET_MAX_MEMORY, domain)

    @_operation
    def set_max_memory(self, domain: Domain, memory_kib: int) -> None:
        if memory_kib <= 0:
            raise InvalidArgumentError(f"set_max_memory: invalid memory size {memory_kib}")
        self._by_run_state(Capability.DOMAIN_SET_MAX_MEMORY, domain, memory_kib)

    @_operation
    def set_memory(self, domain: Domain, memory_kib: int) -> None:
        if memory_kib <= 0:
            raise InvalidArgumentError(f"set_memory: invalid memory size {memory_kib}")
        slot = BackendSlot.XEND
        if not domain.is_running and self.session.is_legacy:
            slot = BackendSlot.XM
        self._router.fallback(
            self.session,
            RoutePolicy.only(Capability.DOMAIN_SET_MEMORY, slot),
            domain,
            memory_kib,
        )

    @_operation
    def get_info(self, domain: Domain) -> DomainInfo:
        return self._by_run_state(Capability.DOMAIN_GET_INFO, domain)

    @_operation
    def get_state(self, domain: Domain, flags: int = 0) -> DomainState:
        check_flags("get_state", flags)
        return self._by_run_state(Capability.DOMAIN_GET_STATE, domain)

    @_operation
    def get_xml_desc(self, domain: Domain, flags: int = 0) -> str:
        if not domain.is_running and self.session.is_legacy:
            if self.session.is_active(BackendSlot.XM):
                return self._router.fallback(
                    self.session,
                    RoutePolicy.only(Capability.DOMAIN_GET_XML_DESC, BackendSlot.XM),
                    domain,
                    flags,
                    None,
                )
        elif self.session.is_active(BackendSlot.XEND):
            with self.session.locked():
                cpus = self.used_cpus(domain)
            return self._router.fallback(
                self.session,
                RoutePolicy.only(Capability.DOMAIN_GET_XML_DESC, BackendSlot.XEND),
                domain,
                flags,
                cpus,
            )
        raise UnsupportedOperationError("get_xml_desc")

    def used_cpus(self, domain: Domain) -> str | None:
        """
        Physical CPUs any VCPU of the domain may run on, as a range string.

        Returns None when the domain may use every host CPU or when the
        set cannot be determined.
        """
        node_cpus = self.session.node_cpus
        if node_cpus <= 0:
            return None
        try:
            if self.domain_get_max_vcpus(domain) <= 0:
                return None
            vcpus = self.get_vcpus(domain)
        except XenUnifiedException as exc:
            logger.debug("used_cpus_unavailable", domain=domain.name, error=exc.error_code)
            return None

        used: set[int] = set()
        for vcpu in vcpus:
            used.update(cpu for cpu in vcpu.usable_cpus if cpu < node_cpus)
            if len(used) == node_cpus:
                return None
        return format_cpu_ranges(used)

    # ── Virtual CPUs ──────────────────────────────────────────────

    @_operation
    def set_vcpus_flags(self, domain: Domain, nvcpus: int, flags: int) -> None:
        check_flags("set_vcpus_flags", flags, _VCPU_FLAGS)
        flags = VcpuFlag(flags)
        if not flags & (VcpuFlag.LIVE | VcpuFlag.CONFIG) or (
            VcpuFlag.MAXIMUM in flags and VcpuFlag.LIVE in flags
        ):
            raise InvalidArgumentError(f"invalid flag combination: (0x{int(flags):x})")
        if not 0 < nvcpus <= _MAX_VCPUS:
            raise InvalidArgumentError(f"argument out of range: {nvcpus}")

        # daemon and config store first, the hypervisor as a last resort
        result = self._router.try_chain(
            self.session, self._config_first(Capability.DOMAIN_SET_VCPUS_FLAGS),
            domain, nvcpus, flags,
        )
        if not result.declined:
            self._router.resolve(Capability.DOMAIN_SET_VCPUS_FLAGS, result)
            return
        if flags == VcpuFlag.LIVE:
            self._router.fallback(
                self.session,
                RoutePolicy.only(Capability.DOMAIN_SET_VCPUS, BackendSlot.HYPERVISOR),
                domain,
                nvcpus,
            )
            return
        raise UnsupportedOperationError("set_vcpus_flags")

    @_operation
    def set_vcpus(self, domain: Domain, nvcpus: int) -> None:
        # live only on legacy daemons, live and persistent otherwise
        flags = VcpuFlag.LIVE
        if not self.session.is_legacy:
            flags |= VcpuFlag.CONFIG
        self.set_vcpus_flags(domain, nvcpus, flags)

    @_operation
    def get_vcpus_flags(self, domain: Domain, flags: int) -> int:
        check_flags("get_vcpus_flags", flags, _VCPU_FLAGS)
        flags = VcpuFlag(flags)
        result = self._router.try_chain(
            self.session, self._config_first(Capability.DOMAIN_GET_VCPUS_FLAGS),
            domain, flags,
        )
        if not result.declined:
            return self._router.resolve(Capability.DOMAIN_GET_VCPUS_FLAGS, result)
        if flags == VcpuFlag.CONFIG | VcpuFlag.MAXIMUM:
            return self._router.fallback(
                self.session,
                RoutePolicy.only(Capability.DOMAIN_GET_VCPU_MAX, BackendSlot.HYPERVISOR),
                domain,
            )
        raise UnsupportedOperationError("get_vcpus_flags")

    @_operation
    def domain_get_max_vcpus(self, domain: Domain) -> int:
        return self.get_vcpus_flags(domain, VcpuFlag.LIVE | VcpuFlag.MAXIMUM)

    @staticmethod
    def _config_first(capability: Capability) -> RoutePolicy:
        """xend, then the XM store; a hard failure from either is final."""
        return RoutePolicy(
            capability,
            candidates=(BackendSlot.XEND, BackendSlot.XM),
            on_failure=FailurePolicy.STOP,
        )

    @_operation
    def pin_vcpu(self, domain: Domain, vcpu: int, cpus: Iterable[int]) -> None:
        cpuset = frozenset(cpus)
        if vcpu < 0 or not cpuset or min(cpuset) < 0:
            raise InvalidArgumentError(f"pin_vcpu: invalid vcpu {vcpu} or cpu map")
        self._router.fan_out(self.session, Capability.DOMAIN_PIN_VCPU, domain, vcpu, cpuset)

    @_operation
    def get_vcpus(self, domain: Domain, maxinfo: int | None = None) -> list[VcpuInfo]:
        if maxinfo is not None and maxinfo <= 0:
            raise InvalidArgumentError(f"get_vcpus: invalid maxinfo {maxinfo}")
        return self._router.fan_out(
            self.session,
            Capability.DOMAIN_GET_VCPUS,
            domain,
            maxinfo,
            accept=bool,
        )

    # ── Scheduler ─────────────────────────────────────────────────

    @_operation
    def get_scheduler_type(self, domain: Domain) -> SchedulerType:
        return self._router.fallback(
            self.session, RoutePolicy(Capability.DOMAIN_GET_SCHEDULER_TYPE), domain
        )

    @_operation
    def get_scheduler_parameters(self, domain: Domain, flags: int = 0) -> dict[str, Any]:
        check_flags("get_scheduler_parameters", flags)
        return self._router.fallback(
            self.session, RoutePolicy(Capability.DOMAIN_GET_SCHEDULER_PARAMETERS), domain
        )

    @_operation
    def set_scheduler_parameters(
        self, domain: Domain, params: Mapping[str, Any], flags: int = 0
    ) -> None:
        check_flags("set_scheduler_parameters", flags)
        # hypervisor last: it gives the most useful error
        self._router.fallback(
            self.session,
            RoutePolicy(
                Capability.DOMAIN_SET_SCHEDULER_PARAMETERS, order=IterationOrder.REVERSE
            ),
            domain,
            dict(params),
        )

    # ── Statistics ────────────────────────────────────────────────

    @_operation
    def block_stats(self, domain: Domain, path: str) -> BlockStats:
        return self._router.fallback(
            self.session,
            RoutePolicy.only(Capability.DOMAIN_BLOCK_STATS, BackendSlot.HYPERVISOR),
            domain,
            path,
        )

    @_operation
    def interface_stats(self, domain: Domain, path: str) -> InterfaceStats:
        return self._router.fallback(
            self.session,
            RoutePolicy.only(Capability.DOMAIN_INTERFACE_STATS, BackendSlot.HYPERVISOR),
            domain,
            path,
        )

    @_operation
    def block_peek(
        self, domain: Domain, path: str, offset: int, size: int, flags: int = 0
    ) -> bytes:
        check_flags("block_peek", flags)
        if offset < 0 or size < 0:
            raise InvalidArgumentError(f"block_peek: invalid range {offset}+{size}")
        return self._router.fallback(
            self.session, self._config_first(Capability.DOMAIN_BLOCK_PEEK),
            domain, path, offset, size,
        )

    # ── Console ───────────────────────────────────────────────────

    @_operation
    def open_console(
        self, domain: Domain, dev_name: str | None = None, flags: int = 0
    ) -> str:
        """PTY path of the domain's default console."""
        check_flags("open_console", flags)
        if not domain.is_running:
            raise OperationInvalidError("open_console", "domain is not running")
        if dev_name is not None:
            raise ArgumentUnsupportedError(
                "open_console", "Named device aliases are not supported"
            )

        devices: ConsoleDevices = self._owned(Capability.DOMAIN_GET_CONSOLES, domain)
        chr_dev = devices.default()
        if chr_dev is None:
            raise OperationFailedError(
                "cannot find default console device", operation="open_console"
            )
        if not chr_dev.is_pty or not chr_dev.path:
            raise OperationFailedError(
                f"character device of {domain.name} is not using a PTY",
                operation="open_console",
            )
        return chr_dev.path

    # ── Native format conversion ──────────────────────────────────

    def _require_codec(self, operation: str) -> DomainConfigCodec:
        if self._codec is None:
            raise UnsupportedOperationError(operation, "no domain config codec configured")
        return self._codec

    @staticmethod
    def _native_format(fmt: str) -> ConfigFormat:
        try:
            return ConfigFormat(fmt)
        except ValueError:
            raise InvalidArgumentError(f"unsupported config type {fmt}") from None

    @_operation
    def domain_xml_from_native(self, fmt: str, config: str, flags: int = 0) -> str:
        check_flags("domain_xml_from_native", flags)
        native = self._native_format(fmt)
        codec = self._require_codec("domain_xml_from_native")
        version = self.session.config_version

        if native is ConfigFormat.XM:
            definition = codec.parse_xm(config, version, self.session.capabilities)
        else:
            domid = codec.domain_id_from_sxpr(config, version)
            with self.session.locked():
                tty = self._store_lookup(Capability.DOMAIN_GET_CONSOLE_PATH, domid)
                vnc_port = self._store_lookup(Capability.DOMAIN_GET_VNC_PORT, domid)
            definition = codec.parse_sxpr(
                config, version, tty, -1 if vnc_port is None else vnc_port
            )
        return codec.format_definition(definition)

    @_operation
    def domain_xml_to_native(self, fmt: str, xml: str, flags: int = 0) -> str:
        check_flags("domain_xml_to_native", flags)
        native = self._native_format(fmt)
        codec = self._require_codec("domain_xml_to_native")
        version = self.session.config_version

        definition = codec.parse_definition(
            xml, self.session.capabilities, self.session.definition_options
        )
        if native is ConfigFormat.SEXPR:
            return codec.format_sxpr(definition, version)

        output = codec.format_xm(definition, version)
        if len(output.encode("utf-8")) > MAX_NATIVE_CONFIG_SIZE:
            raise OperationFailedError(
                f"native config exceeds {MAX_NATIVE_CONFIG_SIZE} bytes",
                operation="domain_xml_to_native",
            )
        return output

    def _store_lookup(self, capability: Capability, domid: int) -> Any:
        result = self._router.try_chain(
            self.session, RoutePolicy.only(capability, BackendSlot.XENSTORE), domid
        )
        return result.value if result.ok else None

    # ── Migration ─────────────────────────────────────────────────

    @_operation
    def migrate_prepare(
        self,
        uri_in: str | None,
        flags: int = 0,
        dname: str | None = None,
        resource: int = 0,
    ) -> MigrationCookie:
        check_flags("migrate_prepare", flags, XEN_MIGRATION_FLAGS)
        return self._owned(
            Capability.DOMAIN_MIGRATE_PREPARE, uri_in, MigrationFlag(flags), dname, resource
        )

    @_operation
    def migrate_perform(
        self,
        domain: Domain,
        cookie: MigrationCookie,
        uri: str,
        flags: int = 0,
        dname: str | None = None,
        resource: int = 0,
    ) -> None:
        check_flags("migrate_perform", flags, XEN_MIGRATION_FLAGS)
        self._owned(
            Capability.DOMAIN_MIGRATE_PERFORM,
            domain,
            cookie,
            uri,
            MigrationFlag(flags),
            dname,
            resource,
        )

    @_operation
    def migrate_finish(
        self,
        dname: str,
        cookie: MigrationCookie | None = None,
        uri: str | None = None,
        flags: int = 0,
    ) -> Domain:
        """Look up the arrived domain, persisting it when PERSIST_DEST is set."""
        check_flags("migrate_finish", flags, XEN_MIGRATION_FLAGS)
        domain = self.lookup_by_name(dname)
        if not flags & MigrationFlag.PERSIST_DEST:
            return domain

        xml_result = self._router.try_chain(
            self.session,
            RoutePolicy.owned(Capability.DOMAIN_GET_XML_DESC),
            domain,
            0,
            None,
        )
        if not xml_result.ok or not xml_result.value:
            raise MigrationPersistError(
                "failed to get XML representation of migrated domain",
                dname,
                _as_exception(xml_result.error),
            )

        define_result = self._router.try_chain(
            self.session,
            RoutePolicy.owned(Capability.DOMAIN_DEFINE_XML),
            xml_result.value,
        )
        if not define_result.ok:
            raise MigrationPersistError(
                "failed to define domain on destination host",
                dname,
                _as_exception(define_result.error),
            )
        logger.info("migrated_domain_persisted", domain=dname)
        return domain

    # ── Events ────────────────────────────────────────────────────

    @_operation
    def domain_event_register(
        self,
        callback: EventCallback,
        opaque: Any = None,
        free: FreeCallback | None = None,
    ) -> int:
        return self.session.events.register(callback, opaque, free)

    @_operation
    def domain_event_deregister(self, callback: EventCallback) -> int:
        return self.session.events.deregister(callback)

    @_operation
    def domain_event_register_any(
        self,
        domain: Domain | None,
        event_id: DomainEventId,
        callback: EventCallback,
        opaque: Any = None,
        free: FreeCallback | None = None,
    ) -> int:
        return self.session.events.register_any(
            DomainEventId(event_id), callback, domain=domain, opaque=opaque, free=free
        )

    @_operation
    def domain_event_deregister_any(self, callback_id: int) -> int:
        return self.session.events.deregister_any(callback_id)

    # ── Node devices ──────────────────────────────────────────────

    def _require_node_devices(self, operation: str) -> NodeDeviceOperations:
        if self._node_devices is None:
            raise UnsupportedOperationError(operation, "no PCI device manager configured")
        return self._node_devices

    @_operation
    def node_device_detach(
        self, device: NodeDevice, driver_name: str | None = None, flags: int = 0
    ) -> None:
        self._require_node_devices("node_device_detach").detach(
            self, device, driver_name, flags
        )

    @_operation
    def node_device_reattach(self, device: NodeDevice) -> None:
        self._require_node_devices("node_device_reattach").reattach(self, device)

    @_operation
    def node_device_reset(self, device: NodeDevice) -> None:
        self._require_node_devices("node_device_reset").reset(device)

    def __repr__(self) -> str:
        return f"Connection({self.session!r})"

def _found(domain: Domain | None) -> bool:
    return domain is not None

def _as_exception(error: BaseException | None) -> Exception | None:
    return error if isinstance(error, Exception) else None
