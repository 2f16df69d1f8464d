"""
Session — Per-Connection Runtime State
=======================================

One Session exists per open connection. It owns:

  - the session lock (re-entrant; guards event bookkeeping, the domain
    tracker and the few cross-backend lookups that need consistency)
  - the activation vector: one flag per backend slot, true iff that
    backend's open succeeded and it has not since been closed
  - the negotiated daemon config version (-1 until the daemon opens)
  - the capabilities document and domain-definition options
  - the managed-save directory
  - the event hub, the domain info tracker and the store watch handle

The session is never handed to callers before every mandatory step of
open succeeded.
"""

from __future__ import annotations

import uuid
from collections.abc import Generator
from contextlib import contextmanager
from enum import StrEnum
from pathlib import Path
from typing import Any

from xenunified.core.domain import DomainDefinitionOptions
from xenunified.core.types import (
    ALL_SLOTS,
    XEND_CONFIG_VERSION_UNKNOWN,
    BackendSlot,
    is_legacy_config_version,
)
from xenunified.infra.runtime.events import EventHub
from xenunified.infra.runtime.tracker import DomainInfoTracker
from xenunified.utils.lock_factory import create_lock

INVALID_WATCH = -1

class SessionState(StrEnum):
    """Connection lifecycle states."""

    UNOPENED = "unopened"
    OPENING = "opening"
    ACTIVE = "active"
    FAILED = "failed"
    CLOSED = "closed"

class Session:
    """Runtime state of one unified connection."""

    def __init__(self, target: str, save_dir: Path):
        self.id = uuid.uuid4().hex[:12]
        self.target = target
        self.save_dir = save_dir
        self.state = SessionState.UNOPENED

        self.lock = create_lock()
        self._activated: dict[BackendSlot, bool] = {slot: False for slot in ALL_SLOTS}
        self._activation_order: list[BackendSlot] = []

        self.config_version: int = XEND_CONFIG_VERSION_UNKNOWN
        self.daemon_unix_socket: bool = True
        self.watch_handle: int = INVALID_WATCH

        self.node_cells: int = 0
        self.node_cpus: int = 0
        self.capabilities: Any = None
        self.definition_options: DomainDefinitionOptions | None = None

        self.events = EventHub(self.lock, is_available=self.has_watch)
        self.domains = DomainInfoTracker(self.lock)

    # ── Activation vector ─────────────────────────────────────────

    def is_active(self, slot: BackendSlot) -> bool:
        return self._activated[slot]

    def mark_active(self, slot: BackendSlot) -> None:
        if self._activated[slot]:
            raise RuntimeError(f"backend {slot.name} already active")
        self._activated[slot] = True
        self._activation_order.append(slot)

    def mark_closed(self, slot: BackendSlot) -> None:
        self._activated[slot] = False
        if slot in self._activation_order:
            self._activation_order.remove(slot)

    def active_slots(self) -> tuple[BackendSlot, ...]:
        """Active backends in activation order."""
        return tuple(self._activation_order)

    # ── Derived state ─────────────────────────────────────────────

    @property
    def is_legacy(self) -> bool:
        """True when inactive domains live in the XM file store."""
        return is_legacy_config_version(self.config_version)

    def has_watch(self) -> bool:
        return self.watch_handle != INVALID_WATCH

    def managed_save_path(self, domain_name: str) -> Path:
        return self.save_dir / f"{domain_name}.save"

    @contextmanager
    def locked(self) -> Generator[Session, None, None]:
        with self.lock:
            yield self

    def __repr__(self) -> str:
        active = ",".join(s.name.lower() for s in self._activation_order) or "-"
        return (
            f"Session(id={self.id}, target={self.target!r}, state={self.state}, "
            f"version={self.config_version}, active={active})"
        )
