"""Shared fakes for unified driver unit tests."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any
from uuid import UUID

import pytest

from xenunified.core.config import DriverSettings
from xenunified.core.domain import Domain, NodeInfo
from xenunified.core.hal import HostEnvironment
from xenunified.core.types import XEND_CONFIG_VERSION_3_0_4, BackendSlot
from xenunified.driver import UnifiedDriver
from xenunified.infra.runtime.backends import (
    BackendDescriptor,
    BackendRegistry,
    Capability,
    DaemonHandshake,
    OperationResult,
)
from xenunified.infra.telemetry import MetricsCollector

VM1 = Domain(id=3, name="vm1", uuid=UUID("6f1c1a8e-8d3b-4a6e-9a39-2f3a2b1c0d01"))
VM1_INACTIVE = Domain(id=-1, name="vm1", uuid=VM1.uuid)

NODE = NodeInfo(
    model="x86_64",
    memory_kib=16 * 1024 * 1024,
    cpus=8,
    mhz=2400,
    nodes=1,
    sockets=1,
    cores=4,
    threads=2,
)

class FakeHost(HostEnvironment):
    def __init__(self, hypervisor: bool = True, xend_alive: bool = True):
        self.hypervisor = hypervisor
        self.xend_alive = xend_alive

    def hypervisor_present(self) -> bool:
        return self.hypervisor

    def legacy_daemon_alive(self) -> bool:
        return self.xend_alive

class FakeBackend:
    """
    Scriptable backend.

    ``handlers`` maps a capability to a plain function of the handler
    arguments (without the session). Calls are recorded in ``calls`` and
    open/close events in the shared ``log``.
    """

    def __init__(
        self,
        slot: BackendSlot,
        open_result: OperationResult | None = None,
        handlers: dict[Capability, Callable[..., OperationResult]] | None = None,
        log: list | None = None,
    ):
        self.slot = slot
        self.name = slot.name.lower()
        self.open_result = open_result or OperationResult.success()
        self.handlers = dict(handlers or {})
        self.calls: list[tuple[Capability, tuple]] = []
        self.log = log if log is not None else []
        self.open_error: Exception | None = None
        self.close_error: Exception | None = None

    def open(self, session: Any, target: str, credentials: Any = None, flags: int = 0):
        self.log.append(("open", self.slot))
        if self.open_error is not None:
            raise self.open_error
        return self.open_result

    def close(self, session: Any) -> None:
        self.log.append(("close", self.slot))
        if self.close_error is not None:
            raise self.close_error

    def on(self, capability: Capability, func: Callable[..., OperationResult]) -> FakeBackend:
        self.handlers[capability] = func
        return self

    def called(self, capability: Capability) -> list[tuple]:
        return [args for cap, args in self.calls if cap == capability]

    def descriptor(self) -> BackendDescriptor:
        def bind(capability: Capability, func: Callable[..., OperationResult]):
            def handler(session: Any, *args: Any) -> OperationResult:
                self.calls.append((capability, args))
                return func(*args)

            return handler

        return BackendDescriptor(
            slot=self.slot,
            name=self.name,
            open=self.open,
            close=self.close,
            handlers={cap: bind(cap, fn) for cap, fn in self.handlers.items()},
        )

def ok(value: Any = None) -> Callable[..., OperationResult]:
    return lambda *args: OperationResult.success(value)

def decline(reason: str = "declined") -> Callable[..., OperationResult]:
    return lambda *args: OperationResult.decline(reason)

def fail(reason: str = "failed") -> Callable[..., OperationResult]:
    return lambda *args: OperationResult.failure(reason)

def make_backends(
    config_version: int = XEND_CONFIG_VERSION_3_0_4,
    watch: int | None = 7,
    log: list | None = None,
) -> dict[BackendSlot, FakeBackend]:
    """A complete, healthy set of backends for the given daemon version."""
    log = log if log is not None else []
    return {
        BackendSlot.HYPERVISOR: FakeBackend(
            BackendSlot.HYPERVISOR,
            handlers={Capability.MAKE_CAPABILITIES: ok("<capabilities/>")},
            log=log,
        ),
        BackendSlot.XEND: FakeBackend(
            BackendSlot.XEND,
            open_result=OperationResult.success(DaemonHandshake(config_version)),
            handlers={Capability.NODE_GET_INFO: ok(NODE)},
            log=log,
        ),
        BackendSlot.XENSTORE: FakeBackend(
            BackendSlot.XENSTORE, open_result=OperationResult.success(watch), log=log
        ),
        BackendSlot.XM: FakeBackend(BackendSlot.XM, log=log),
    }

def make_registry(backends: dict[BackendSlot, FakeBackend]) -> BackendRegistry:
    return BackendRegistry([b.descriptor() for b in backends.values()])

@pytest.fixture
def settings(tmp_path) -> DriverSettings:
    return DriverSettings(
        privileged=True,
        save_dir=tmp_path / "save",
        xend_domains_dir=tmp_path / "domains",
    )

@pytest.fixture
def metrics() -> MetricsCollector:
    return MetricsCollector()

@pytest.fixture
def open_connection(settings, metrics):
    """Factory: open a connection over the given fake backends."""
    opened = []

    def _open(backends: dict[BackendSlot, FakeBackend], **driver_kwargs: Any):
        driver = UnifiedDriver(
            make_registry(backends),
            settings,
            host=FakeHost(),
            metrics=metrics,
            **driver_kwargs,
        )
        conn = driver.open("xen:///")
        opened.append(conn)
        return conn

    yield _open
    for conn in opened:
        conn.close()
