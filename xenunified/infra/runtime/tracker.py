"""
Domain Info Tracker
====================

Small ordered collection of (id, name, uuid) triples used to reconcile
asynchronous store and watcher notifications with domains the session
already knows about.

The (name, uuid) pair is unique: adding an already-tracked pair is
rejected, never overwritten. Removal requires all three fields to match
and keeps the remaining entries in insertion order.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from enum import StrEnum
from uuid import UUID

from xenunified.infra.telemetry import get_logger
from xenunified.utils.lock_factory import LockType, create_lock

logger = get_logger(__name__)

class TrackStatus(StrEnum):
    OK = "ok"
    DUPLICATE = "duplicate"
    NOT_FOUND = "not_found"

@dataclass(frozen=True, slots=True)
class DomainInfoEntry:
    id: int
    name: str
    uuid: UUID

class DomainInfoTracker:
    """Insertion-ordered tracker; mutations take the owning session's lock."""

    def __init__(self, lock: LockType | None = None):
        self._lock = lock if lock is not None else create_lock()
        self._entries: list[DomainInfoEntry] = []

    def add(self, id: int, name: str, uuid: UUID) -> TrackStatus:
        with self._lock:
            for entry in self._entries:
                if entry.name == name and entry.uuid == uuid:
                    logger.debug("domain_already_tracked", domain=name, uuid=str(uuid))
                    return TrackStatus.DUPLICATE
            self._entries.append(DomainInfoEntry(id, name, uuid))
            return TrackStatus.OK

    def remove(self, id: int, name: str, uuid: UUID) -> TrackStatus:
        with self._lock:
            for index, entry in enumerate(self._entries):
                if entry.id == id and entry.name == name and entry.uuid == uuid:
                    del self._entries[index]
                    return TrackStatus.OK
            return TrackStatus.NOT_FOUND

    def find_by_id(self, id: int) -> DomainInfoEntry | None:
        with self._lock:
            return next((e for e in self._entries if e.id == id), None)

    def find_by_name(self, name: str) -> DomainInfoEntry | None:
        with self._lock:
            return next((e for e in self._entries if e.name == name), None)

    def find_by_uuid(self, uuid: UUID) -> DomainInfoEntry | None:
        with self._lock:
            return next((e for e in self._entries if e.uuid == uuid), None)

    def snapshot(self) -> tuple[DomainInfoEntry, ...]:
        with self._lock:
            return tuple(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[DomainInfoEntry]:
        return iter(self.snapshot())
