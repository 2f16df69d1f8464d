"""
Runtime Layer — Sessions, Routing and Events
=============================================

Provides:
  - Backend contract, tagged results and the backend registry
  - Connection gatekeeping (capability prober)
  - Session open/close with reverse unwind (orchestrator)
  - Fallback and version-gated routing (operation router)
  - Domain event subscription hub and domain info tracker

Depends on: core, telemetry
Depended on by: connection, driver
"""

from xenunified.infra.runtime.backends import (
    BackendDescriptor,
    BackendRegistry,
    Capability,
    DaemonHandshake,
    OperationResult,
    Outcome,
    XenBackend,
)
from xenunified.infra.runtime.events import DomainEvent, EventHub
from xenunified.infra.runtime.lifecycle import SessionOrchestrator
from xenunified.infra.runtime.prober import (
    CapabilityProber,
    ConnectionTarget,
    ProbeDecision,
    ProbeResult,
)
from xenunified.infra.runtime.router import (
    FailurePolicy,
    IterationOrder,
    OperationRouter,
    RoutePolicy,
    select_versioned_slot,
)
from xenunified.infra.runtime.session import Session, SessionState
from xenunified.infra.runtime.tracker import DomainInfoEntry, DomainInfoTracker, TrackStatus

__all__ = [
    "BackendDescriptor",
    "BackendRegistry",
    "Capability",
    "CapabilityProber",
    "ConnectionTarget",
    "DaemonHandshake",
    "DomainEvent",
    "DomainInfoEntry",
    "DomainInfoTracker",
    "EventHub",
    "FailurePolicy",
    "IterationOrder",
    "OperationResult",
    "OperationRouter",
    "Outcome",
    "ProbeDecision",
    "ProbeResult",
    "RoutePolicy",
    "Session",
    "SessionOrchestrator",
    "SessionState",
    "TrackStatus",
    "XenBackend",
    "select_versioned_slot",
]
