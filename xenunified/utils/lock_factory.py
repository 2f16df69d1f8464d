"""
Centralized lock factory for dependency injection.

Every session lock is created here so tests can observe or replace it
(e.g. with a recording lock to assert the event hub and domain tracker
take the session lock).

Usage:
    from xenunified.utils.lock_factory import create_lock

    self._lock = create_lock()

    # Override in tests:
    from xenunified.utils import lock_factory
    lock_factory.set_factory(RecordingLock)
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Union

# threading.Lock and threading.RLock are factory functions, not types.
LockType = Union[threading._RLock, "threading.Lock"]

# Session locks are re-entrant: the event hub and tracker take the lock
# internally and may be called by code that already holds it.
_factory: Callable[[], LockType] = threading.RLock

def create_lock() -> LockType:
    """Create a lock using the current factory.

    Returns a threading.RLock by default.
    """
    return _factory()

def set_factory(factory: Callable[[], LockType]) -> None:
    """Override the global lock factory."""
    global _factory
    _factory = factory

def reset_factory() -> None:
    """Restore the default lock factory (threading.RLock)."""
    global _factory
    _factory = threading.RLock
