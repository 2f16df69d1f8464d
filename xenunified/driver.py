"""
Unified Driver — Connection Entry Point
========================================

Gatekeeps and opens connections over a fixed backend registry.

Usage:
    registry = BackendRegistry([HypervisorBackend(), XendBackend(), ...])
    driver = UnifiedDriver(registry, DriverSettings.for_host())

    with driver.open("xen:///") as conn:
        dom = conn.lookup_by_name("vm1")
        conn.suspend(dom)

``open`` raises ``ConnectionDeclined`` when another driver should handle
the target, and ``InvalidTargetError`` when the target is for this driver
but malformed.
"""

from __future__ import annotations

from typing import Any

from xenunified.connection import Connection
from xenunified.core.collaborators import DomainConfigCodec, PciDeviceManager
from xenunified.core.config import DriverSettings, get_settings
from xenunified.core.exceptions import ConnectionDeclined, InvalidTargetError
from xenunified.core.hal import HostEnvironment, SystemHost
from xenunified.infra.runtime.backends import BackendRegistry
from xenunified.infra.runtime.lifecycle import SessionOrchestrator
from xenunified.infra.runtime.prober import CapabilityProber, ProbeDecision
from xenunified.infra.runtime.router import OperationRouter
from xenunified.infra.telemetry import MetricsCollector, get_logger, get_metrics, setup_logging
from xenunified.nodedev import NodeDeviceOperations

logger = get_logger(__name__)

class UnifiedDriver:
    """Process-wide driver object. Settings are fixed at construction."""

    def __init__(
        self,
        registry: BackendRegistry,
        settings: DriverSettings | None = None,
        host: HostEnvironment | None = None,
        codec: DomainConfigCodec | None = None,
        pci: PciDeviceManager | None = None,
        metrics: MetricsCollector | None = None,
    ):
        self.settings = settings or get_settings()
        setup_logging(
            level=self.settings.log_level,
            json_output=self.settings.json_logs,
            log_dir=self.settings.log_dir,
        )
        self.registry = registry
        self._host = host or SystemHost(
            self.settings.hypervisor_markers,
            self.settings.xend_binary,
            self.settings.xend_probe_timeout_s,
        )
        self._codec = codec
        self._node_devices = NodeDeviceOperations(pci) if pci is not None else None
        self._metrics = metrics or get_metrics()

        self.prober = CapabilityProber(self.settings, self._host)
        self.router = OperationRouter(registry, self._metrics)
        self.orchestrator = SessionOrchestrator(
            registry, self.settings, router=self.router, metrics=self._metrics
        )

    def open(
        self,
        target: str | None = None,
        credentials: Any = None,
        flags: int = 0,
    ) -> Connection:
        probe = self.prober.should_handle(target)
        if probe.decision is ProbeDecision.DECLINE:
            self._metrics.session_opens.labels(result="declined").inc()
            raise ConnectionDeclined(probe.reason)
        if probe.decision is ProbeDecision.ERROR:
            self._metrics.session_opens.labels(result="error").inc()
            raise InvalidTargetError(target or "", probe.reason)

        session = self.orchestrator.open(probe.target.raw, credentials, flags)
        return Connection(
            session,
            self.router,
            self.orchestrator,
            self.settings.xend_domains_dir,
            codec=self._codec,
            node_devices=self._node_devices,
        )
