"""
Event Subscription Hub
=======================

Registration of domain event callbacks and serialized delivery of queued
events for one session.

Availability:
  - Every registration call fails with ``UnsupportedOperationError`` unless
    the session's store watch was set up at open time.

Locking:
  - Bookkeeping (registrations and the pending queue) and delivery both run
    under the session lock, which is re-entrant: callers of ``dispatch`` may
    already hold it, and callbacks may deregister or touch the domain
    tracker. One lock means one acquisition order, and events reach
    callbacks in queue order.

Callbacks are matched by equality, so a bound method registered from one
attribute access is found again from another.
"""

from __future__ import annotations

import itertools
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from xenunified.core.domain import Domain
from xenunified.core.exceptions import InvalidArgumentError, UnsupportedOperationError
from xenunified.core.types import DomainEventId
from xenunified.infra.telemetry import get_logger
from xenunified.utils.lock_factory import LockType

logger = get_logger(__name__)

EventCallback = Callable[["DomainEvent", Any], None]
FreeCallback = Callable[[Any], None]

@dataclass(frozen=True, slots=True)
class DomainEvent:
    """A change notification about one domain."""

    domain: Domain
    event_id: DomainEventId = DomainEventId.LIFECYCLE
    event: int = 0
    detail: int = 0
    payload: dict[str, Any] = field(default_factory=dict)

@dataclass(slots=True)
class _Registration:
    callback_id: int
    callback: EventCallback
    event_id: DomainEventId
    domain_uuid: UUID | None = None
    opaque: Any = None
    free: FreeCallback | None = None
    legacy: bool = False

    def matches(self, event: DomainEvent) -> bool:
        if self.event_id != event.event_id:
            return False
        return self.domain_uuid is None or self.domain_uuid == event.domain.uuid

class EventHub:
    """Per-session domain event callback registry and dispatcher."""

    def __init__(self, lock: LockType, is_available: Callable[[], bool]):
        self._lock = lock
        self._is_available = is_available
        self._registrations: list[_Registration] = []
        self._pending: list[DomainEvent] = []
        self._ids = itertools.count(1)
        self._closed = False

    # ── Registration ──────────────────────────────────────────────

    def _require_available(self, operation: str) -> None:
        if not self._is_available():
            raise UnsupportedOperationError(
                operation, f"{operation}: domain events need an active store watch"
            )

    def register(
        self,
        callback: EventCallback,
        opaque: Any = None,
        free: FreeCallback | None = None,
    ) -> int:
        """Register a lifecycle callback keyed by callback identity."""
        with self._lock:
            self._require_available("domain_event_register")
            if any(r.legacy and r.callback == callback for r in self._registrations):
                raise InvalidArgumentError("event callback already registered")
            registration = _Registration(
                callback_id=next(self._ids),
                callback=callback,
                event_id=DomainEventId.LIFECYCLE,
                opaque=opaque,
                free=free,
                legacy=True,
            )
            self._registrations.append(registration)
            logger.debug("event_callback_registered", callback_id=registration.callback_id)
            return registration.callback_id

    def deregister(self, callback: EventCallback) -> int:
        """Remove a callback registered with ``register``.

        Returns the number of legacy callbacks still registered.
        """
        with self._lock:
            self._require_available("domain_event_deregister")
            registration = next(
                (r for r in self._registrations if r.legacy and r.callback == callback),
                None,
            )
            if registration is None:
                raise InvalidArgumentError("event callback was not registered")
            self._registrations.remove(registration)
            remaining = sum(1 for r in self._registrations if r.legacy)
        self._release(registration)
        return remaining

    def register_any(
        self,
        event_id: DomainEventId,
        callback: EventCallback,
        domain: Domain | None = None,
        opaque: Any = None,
        free: FreeCallback | None = None,
    ) -> int:
        """Register for one event kind, optionally filtered to one domain."""
        domain_uuid = domain.uuid if domain is not None else None
        with self._lock:
            self._require_available("domain_event_register_any")
            for r in self._registrations:
                if (
                    not r.legacy
                    and r.callback == callback
                    and r.event_id == event_id
                    and r.domain_uuid == domain_uuid
                ):
                    raise InvalidArgumentError(
                        f"event callback already registered for {event_id.name}"
                    )
            registration = _Registration(
                callback_id=next(self._ids),
                callback=callback,
                event_id=event_id,
                domain_uuid=domain_uuid,
                opaque=opaque,
                free=free,
            )
            self._registrations.append(registration)
            return registration.callback_id

    def deregister_any(self, callback_id: int) -> int:
        """Remove a registration by id. Returns remaining registrations for its kind."""
        with self._lock:
            self._require_available("domain_event_deregister_any")
            registration = next(
                (
                    r
                    for r in self._registrations
                    if not r.legacy and r.callback_id == callback_id
                ),
                None,
            )
            if registration is None:
                raise InvalidArgumentError(
                    f"could not find event callback {callback_id} for deletion"
                )
            self._registrations.remove(registration)
            remaining = sum(
                1 for r in self._registrations if r.event_id == registration.event_id
            )
        self._release(registration)
        return remaining

    # ── Dispatch ──────────────────────────────────────────────────

    def dispatch(self, event: DomainEvent) -> None:
        """Queue an event and deliver everything pending."""
        with self._lock:
            if self._closed:
                return
            self._pending.append(event)
        self.flush()

    def flush(self) -> int:
        """Deliver queued events in order. Returns the number delivered."""
        delivered = 0
        with self._lock:
            pending, self._pending = self._pending, []
            registrations = list(self._registrations)
            for event in pending:
                for registration in registrations:
                    if not registration.matches(event):
                        continue
                    try:
                        registration.callback(event, registration.opaque)
                    except Exception as exc:  # callback isolation
                        logger.error(
                            "event_callback_failed",
                            exc=exc,
                            callback_id=registration.callback_id,
                        )
                delivered += 1
        return delivered

    # ── Teardown ──────────────────────────────────────────────────

    def close(self) -> None:
        """Drop every registration and queued event."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            registrations, self._registrations = self._registrations, []
            self._pending.clear()
        for registration in registrations:
            self._release(registration)

    def _release(self, registration: _Registration) -> None:
        if registration.free is not None:
            registration.free(registration.opaque)

    @property
    def count(self) -> int:
        with self._lock:
            return len(self._registrations)
