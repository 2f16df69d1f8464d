"""
Operation Router — Backend Fallback Resolution
================================================

Routes each logical operation to the right subset of active backends and
resolves one final result from their tri-state outcomes.

Two patterns:

  Pattern A: priority fallback chain
    Candidates are tried in a fixed order. Success ends the chain,
    a decline moves on, a hard failure either stops the chain (STOP, for
    operations with a single authoritative owner) or is remembered while
    the chain moves on (CONTINUE, for queries and best-effort writes).

  Pattern B: version-gated exclusive routing
    Exactly one backend is legitimate for the negotiated daemon version:
    the XM store for legacy daemons, the daemon itself otherwise.

Soft declines never leave this module. Callers receive a value or one
typed error.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from xenunified.core.exceptions import (
    OperationFailedError,
    UnsupportedOperationError,
    XenUnifiedException,
)
from xenunified.core.types import BackendSlot, is_legacy_config_version
from xenunified.infra.runtime.backends import (
    BackendDescriptor,
    BackendRegistry,
    Capability,
    OperationResult,
)
from xenunified.infra.telemetry import MetricsCollector, get_logger, get_metrics, get_tracer

if TYPE_CHECKING:
    from xenunified.infra.runtime.session import Session

logger = get_logger(__name__)
tracer = get_tracer(__name__)

class FailurePolicy(StrEnum):
    """What a hard failure does to the rest of the chain."""

    CONTINUE = "continue"
    STOP = "stop"

class IterationOrder(StrEnum):
    FORWARD = "forward"
    REVERSE = "reverse"

@dataclass(frozen=True)
class RoutePolicy:
    """
    Per-operation fallback policy.

    ``candidates`` lists backend slots in priority order; None means every
    backend in slot order. ``accept`` can reject a successful value, which
    then counts as a decline (e.g. an empty VCPU list).
    """

    capability: Capability
    candidates: tuple[BackendSlot, ...] | None = None
    on_failure: FailurePolicy = FailurePolicy.CONTINUE
    order: IterationOrder = IterationOrder.FORWARD
    accept: Callable[[Any], bool] | None = None

    @classmethod
    def owned(
        cls, capability: Capability, owner: BackendSlot = BackendSlot.XEND
    ) -> RoutePolicy:
        """Single authoritative backend, stop on failure."""
        return cls(capability, candidates=(owner,), on_failure=FailurePolicy.STOP)

    @classmethod
    def only(cls, capability: Capability, slot: BackendSlot) -> RoutePolicy:
        return cls(capability, candidates=(slot,))

def select_versioned_slot(config_version: int) -> BackendSlot:
    """The one backend that owns inactive-domain state for a daemon version."""
    if is_legacy_config_version(config_version):
        return BackendSlot.XM
    return BackendSlot.XEND

class OperationRouter:
    """Stateless dispatcher over a backend registry."""

    def __init__(
        self,
        registry: BackendRegistry,
        metrics: MetricsCollector | None = None,
    ):
        self._registry = registry
        self._metrics = metrics or get_metrics()

    @property
    def registry(self) -> BackendRegistry:
        return self._registry

    # ── Candidate selection ───────────────────────────────────────

    def candidates(
        self, session: Session, policy: RoutePolicy
    ) -> list[BackendDescriptor]:
        """Active backends implementing the capability, in policy order."""
        ordered = self._registry.ordered(
            policy.candidates,
            reverse=policy.order is IterationOrder.REVERSE,
        )
        return [
            d
            for d in ordered
            if session.is_active(d.slot) and d.implements(policy.capability)
        ]

    # ── Pattern A ─────────────────────────────────────────────────

    def try_chain(
        self, session: Session, policy: RoutePolicy, *args: Any
    ) -> OperationResult:
        """
        Run the fallback chain and return the deciding result.

        Returns the first accepted success; under STOP, the first failure;
        otherwise the last failure seen, or a decline when nothing failed.
        """
        capability = policy.capability
        last_failure: OperationResult | None = None

        for descriptor in self.candidates(session, policy):
            result = descriptor.invoke(capability, session, *args)
            outcome = result.outcome.value

            if result.ok and policy.accept is not None and not policy.accept(result.value):
                outcome = "rejected"
                result = OperationResult.decline("result not accepted")

            self._metrics.dispatch_attempts.labels(
                capability=capability.value,
                backend=descriptor.name,
                outcome=outcome,
            ).inc()

            if result.ok:
                return result
            if result.declined:
                logger.debug(
                    "backend_declined",
                    capability=capability.value,
                    backend=descriptor.name,
                    reason=result.reason,
                )
                continue

            logger.debug(
                "backend_failed",
                capability=capability.value,
                backend=descriptor.name,
                reason=result.reason,
            )
            if policy.on_failure is FailurePolicy.STOP:
                return result
            last_failure = result

        if last_failure is not None:
            return last_failure
        return OperationResult.decline("no backend accepted the operation")

    def fallback(self, session: Session, policy: RoutePolicy, *args: Any) -> Any:
        """Pattern A: run the chain and return its value or raise."""
        capability = policy.capability.value
        with tracer.span(f"dispatch.{capability}", attributes={"session": session.id}):
            with self._metrics.time_dispatch(capability):
                result = self.try_chain(session, policy, *args)
            return self.resolve(policy.capability, result)

    def fan_out(
        self,
        session: Session,
        capability: Capability,
        *args: Any,
        accept: Callable[[Any], bool] | None = None,
    ) -> Any:
        """Array operations: every active implementer, first success wins."""
        return self.fallback(session, RoutePolicy(capability, accept=accept), *args)

    # ── Pattern B ─────────────────────────────────────────────────

    def exclusive(self, session: Session, capability: Capability, *args: Any) -> Any:
        """Route to the single backend owning the negotiated version."""
        slot = select_versioned_slot(session.config_version)
        descriptor = self._registry.get(slot)
        if (
            descriptor is None
            or not session.is_active(slot)
            or not descriptor.implements(capability)
        ):
            self._metrics.dispatch_unresolved.labels(
                capability=capability.value, error="NO_SUPPORT"
            ).inc()
            raise UnsupportedOperationError(
                capability.value,
                f"Operation '{capability.value}' is not supported by the "
                f"{slot.name.lower()} backend on this connection",
            )

        with tracer.span(
            f"dispatch.{capability.value}",
            attributes={"session": session.id, "backend": descriptor.name},
        ):
            with self._metrics.time_dispatch(capability.value):
                result = descriptor.invoke(capability, session, *args)
            self._metrics.dispatch_attempts.labels(
                capability=capability.value,
                backend=descriptor.name,
                outcome=result.outcome.value,
            ).inc()
            return self.resolve(capability, result)

    # ── Resolution ────────────────────────────────────────────────

    def resolve(self, capability: Capability, result: OperationResult) -> Any:
        """Turn a deciding result into a value or a caller-visible error."""
        if result.ok:
            return result.value

        if result.failed:
            error = result.error
            if isinstance(error, XenUnifiedException):
                self._count_unresolved(capability, error.error_code)
                raise error
            exc = OperationFailedError(
                detail=result.reason or f"{capability.value} failed",
                operation=capability.value,
                backend=result.backend or None,
                original_error=error if isinstance(error, Exception) else None,
            )
            self._count_unresolved(capability, exc.error_code)
            raise exc

        exc = UnsupportedOperationError(capability.value)
        self._count_unresolved(capability, exc.error_code)
        raise exc

    def _count_unresolved(self, capability: Capability, error_code: str) -> None:
        self._metrics.dispatch_unresolved.labels(
            capability=capability.value, error=error_code
        ).inc()
        logger.debug("dispatch_unresolved", capability=capability.value, error=error_code)
