"""
Capability Prober — Connection Gatekeeper
==========================================

Decides whether the unified driver should accept a connection target at
all, before any backend is touched. Pure decision: the only side effect
is normalizing an absent target to ``xen:///``.

Rules, in order:
  1. Unprivileged process                        → DECLINE
  2. No target: no hypervisor on this host       → DECLINE
                otherwise target becomes xen:///
  3. Target given:
       no scheme / scheme not xen or http        → DECLINE
       path present and not "" or "/"            → ERROR
       xen scheme with a server                  → DECLINE (remote driver)
  4. libxl available and xend not running        → DECLINE
Otherwise ACCEPT.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from urllib.parse import urlsplit

from xenunified.core.config import DriverSettings
from xenunified.core.hal import HostEnvironment
from xenunified.core.types import ACCEPTED_SCHEMES, DEFAULT_TARGET, PRIMARY_SCHEME
from xenunified.infra.telemetry import get_logger

logger = get_logger(__name__)

class ProbeDecision(StrEnum):
    ACCEPT = "accept"
    DECLINE = "decline"
    ERROR = "error"

@dataclass(frozen=True, slots=True)
class ConnectionTarget:
    """Parsed connection URI."""

    raw: str
    scheme: str | None
    server: str | None
    path: str | None

    @classmethod
    def parse(cls, uri: str) -> ConnectionTarget:
        parts = urlsplit(uri)
        return cls(
            raw=uri,
            scheme=parts.scheme or None,
            server=parts.hostname or None,
            path=parts.path,
        )

@dataclass(frozen=True, slots=True)
class ProbeResult:
    decision: ProbeDecision
    target: ConnectionTarget | None = None
    reason: str = ""

    @property
    def accepted(self) -> bool:
        return self.decision is ProbeDecision.ACCEPT

class CapabilityProber:
    """Connection gate; settings are fixed at construction."""

    def __init__(self, settings: DriverSettings, host: HostEnvironment):
        self._settings = settings
        self._host = host

    def should_handle(self, target: str | ConnectionTarget | None) -> ProbeResult:
        if not self._settings.privileged:
            return self._decline("process is not privileged")

        if target is None:
            if not self._host.hypervisor_present():
                return self._decline("no Xen hypervisor on this host")
            parsed = ConnectionTarget.parse(DEFAULT_TARGET)
        else:
            parsed = (
                target
                if isinstance(target, ConnectionTarget)
                else ConnectionTarget.parse(target)
            )
            verdict = self._check_target(parsed)
            if verdict is not None:
                return verdict

        if self._settings.libxl_available and not self._host.legacy_daemon_alive():
            return self._decline("xend is not running and libxl is available", parsed)

        return ProbeResult(ProbeDecision.ACCEPT, parsed)

    def _check_target(self, target: ConnectionTarget) -> ProbeResult | None:
        if not target.scheme:
            return self._decline("target has no scheme", target)

        scheme = target.scheme.lower()
        if scheme not in ACCEPTED_SCHEMES:
            return self._decline(f"scheme '{target.scheme}' is not handled", target)

        if target.path and target.path != "/":
            logger.warning("unexpected_target_path", target=target.raw, path=target.path)
            return ProbeResult(
                ProbeDecision.ERROR,
                target,
                f"unexpected Xen URI path '{target.path}', try xen:///",
            )

        # http:// with a server is still ours; xen:// with a server is remote
        if scheme == PRIMARY_SCHEME and target.server:
            return self._decline("remote server specified", target)

        return None

    def _decline(
        self, reason: str, target: ConnectionTarget | None = None
    ) -> ProbeResult:
        logger.debug("connection_declined", reason=reason)
        return ProbeResult(ProbeDecision.DECLINE, target, reason)
