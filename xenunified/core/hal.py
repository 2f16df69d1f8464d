"""
Host Abstraction Layer (HAL) — Hypervisor Presence Detection
=============================================================

Provides small, cached functions for the host checks the capability
prober needs:

  - is the current process privileged
  - does the host expose a Xen hypervisor marker
  - is the legacy Xen daemon alive

ALL host queries should go through this module so tests can substitute a
``HostEnvironment`` instead of touching the real machine:
    from xenunified.core.hal import HostEnvironment, SystemHost
"""

from __future__ import annotations

import functools
import os
import platform
import subprocess
from abc import ABC, abstractmethod
from collections.abc import Iterable
from pathlib import Path

from xenunified.infra.telemetry.logger import get_logger

logger = get_logger(__name__)

SOLARIS_MARKER_NAME = "domcaps"

# ── Cached primitives ──────────────────────────────────────────────

@functools.lru_cache(maxsize=1)
def is_privileged() -> bool:
    """True if the process runs with root privileges."""
    geteuid = getattr(os, "geteuid", None)
    return geteuid is not None and geteuid() == 0

@functools.lru_cache(maxsize=1)
def is_linux() -> bool:
    return platform.system() == "Linux"

@functools.lru_cache(maxsize=1)
def is_solaris() -> bool:
    return platform.system() in ("SunOS", "Solaris")

def hypervisor_marker_present(markers: Iterable[Path]) -> bool:
    """True if the marker for this platform shows a running Xen hypervisor.

    Linux checks that ``/proc/xen`` exists; Solaris checks that the domcaps
    device is openable for reading. Markers for other platforms are ignored.
    """
    for marker in markers:
        if marker.name == SOLARIS_MARKER_NAME:
            if is_solaris() and _readable(marker):
                return True
        elif is_linux() and marker.exists():
            return True
    return False

def _readable(path: Path) -> bool:
    try:
        with open(path, "rb"):
            return True
    except OSError:
        return False

def xend_status(binary: Path, timeout_s: float = 10.0) -> bool:
    """Run ``xend status`` synchronously; True when it exits 0."""
    try:
        completed = subprocess.run(
            [str(binary), "status"],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            timeout=timeout_s,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        logger.debug("xend_probe_failed", binary=str(binary), error=str(exc))
        return False
    return completed.returncode == 0

# ── Injectable host view ───────────────────────────────────────────

class HostEnvironment(ABC):
    """What the prober needs to know about the machine."""

    @abstractmethod
    def hypervisor_present(self) -> bool:
        """True if this host runs under a Xen hypervisor."""
        ...

    @abstractmethod
    def legacy_daemon_alive(self) -> bool:
        """True if the legacy Xen daemon reports itself running."""
        ...

class SystemHost(HostEnvironment):
    """HostEnvironment backed by the real filesystem and process table."""

    def __init__(
        self,
        markers: Iterable[Path],
        xend_binary: Path,
        xend_timeout_s: float = 10.0,
    ):
        self._markers = tuple(markers)
        self._xend_binary = xend_binary
        self._xend_timeout_s = xend_timeout_s

    def hypervisor_present(self) -> bool:
        return hypervisor_marker_present(self._markers)

    def legacy_daemon_alive(self) -> bool:
        return xend_status(self._xend_binary, self._xend_timeout_s)
