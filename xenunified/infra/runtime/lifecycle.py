"""
Session Orchestrator — Connection Open and Close
=================================================

Opens backends in dependency order, builds the per-connection session and
unwinds cleanly on partial failure.

Open sequence:
  1. hypervisor        always mandatory
  2. xend              always mandatory; negotiates the config version
  3. xm                mandatory only for legacy daemons, otherwise skipped
  4. xenstore          always mandatory; yields the event watch handle
  5. topology          node cell/cpu counts via xend (non-fatal)
  6. capabilities      built by the hypervisor backend (fatal)
  7. definition options
  8. inotify           only when enabled and registered (fatal)
  9. save directory    created on disk (fatal)

Failure at any fatal step closes every activated backend in strict reverse
activation order, each exactly once. No partially opened session is ever
returned.
"""

from __future__ import annotations

from typing import Any

from xenunified.core.config import DriverSettings
from xenunified.core.domain import DomainDefinitionOptions, NodeInfo
from xenunified.core.exceptions import (
    BackendOpenError,
    ResourceError,
    XenUnifiedException,
)
from xenunified.core.types import XEN_MAC_PREFIX, BackendSlot
from xenunified.infra.runtime.backends import (
    BackendRegistry,
    Capability,
    DaemonHandshake,
    OperationResult,
)
from xenunified.infra.runtime.router import OperationRouter, RoutePolicy
from xenunified.infra.runtime.session import INVALID_WATCH, Session, SessionState
from xenunified.infra.telemetry import (
    MetricsCollector,
    get_logger,
    get_metrics,
    get_tracer,
    set_log_context,
)

logger = get_logger(__name__)
tracer = get_tracer(__name__)

class SessionOrchestrator:
    """Builds and tears down sessions over a fixed backend registry."""

    def __init__(
        self,
        registry: BackendRegistry,
        settings: DriverSettings,
        router: OperationRouter | None = None,
        metrics: MetricsCollector | None = None,
    ):
        self._registry = registry
        self._settings = settings
        self._metrics = metrics or get_metrics()
        self._router = router or OperationRouter(registry, self._metrics)

    # ── Open ──────────────────────────────────────────────────────

    def open(
        self,
        target: str,
        credentials: Any = None,
        flags: int = 0,
    ) -> Session:
        session = Session(target, self._settings.save_dir)
        session.state = SessionState.OPENING
        set_log_context(connection_id=session.id)

        with tracer.span("lifecycle.open", attributes={"target": target}):
            try:
                self._open_backends(session, credentials, flags)
                self._initialize(session)
            except Exception as exc:
                logger.error("session_open_failed", exc=exc, target=target)
                self._unwind(session)
                session.state = SessionState.FAILED
                self._metrics.session_opens.labels(result="failed").inc()
                if isinstance(exc, XenUnifiedException):
                    raise
                raise ResourceError(f"Failed to open session: {exc}", exc) from exc

        session.state = SessionState.ACTIVE
        self._metrics.session_opens.labels(result="success").inc()
        logger.info(
            "session_opened",
            target=target,
            config_version=session.config_version,
            backends=[s.name.lower() for s in session.active_slots()],
        )
        return session

    def _open_backends(self, session: Session, credentials: Any, flags: int) -> None:
        self._activate(session, BackendSlot.HYPERVISOR, credentials, flags)

        handshake = self._activate(session, BackendSlot.XEND, credentials, flags).value
        if not isinstance(handshake, DaemonHandshake):
            raise BackendOpenError(
                "xend", f"open returned {type(handshake).__name__}, expected a handshake"
            )
        session.config_version = handshake.config_version
        session.daemon_unix_socket = handshake.unix_socket

        if session.is_legacy:
            self._activate(session, BackendSlot.XM, credentials, flags)
        else:
            logger.debug("backend_skipped", backend="xm", config_version=session.config_version)

        watch = self._activate(session, BackendSlot.XENSTORE, credentials, flags).value
        session.watch_handle = INVALID_WATCH if watch is None else int(watch)

    def _initialize(self, session: Session) -> None:
        result = self._router.try_chain(
            session, RoutePolicy.only(Capability.NODE_GET_INFO, BackendSlot.XEND)
        )
        if result.ok and isinstance(result.value, NodeInfo):
            session.node_cells = result.value.nodes
            session.node_cpus = result.value.cpus
        else:
            logger.warning("topology_unavailable", reason=result.reason)

        session.capabilities = self._router.fallback(
            session,
            RoutePolicy.owned(Capability.MAKE_CAPABILITIES, BackendSlot.HYPERVISOR),
        )
        session.definition_options = DomainDefinitionOptions(mac_prefix=XEN_MAC_PREFIX)

        if self._settings.inotify_enabled:
            if BackendSlot.INOTIFY in self._registry:
                self._activate(session, BackendSlot.INOTIFY, None, 0)
            else:
                logger.debug("backend_skipped", backend="inotify", reason="not registered")

        try:
            session.save_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ResourceError(
                f"Failed to create save dir '{session.save_dir}': {exc.strerror}", exc
            ) from exc

    def _activate(
        self,
        session: Session,
        slot: BackendSlot,
        credentials: Any,
        flags: int,
    ) -> OperationResult:
        descriptor = self._registry.get(slot)
        name = slot.name.lower()
        if descriptor is None:
            raise BackendOpenError(name, "backend is not registered")

        logger.debug("backend_opening", backend=descriptor.name)
        try:
            result = descriptor.open(session, session.target, credentials, flags)
        except XenUnifiedException as exc:
            raise BackendOpenError(descriptor.name, exc.detail, exc) from exc
        except Exception as exc:
            raise BackendOpenError(descriptor.name, str(exc) or type(exc).__name__, exc) from exc

        if not result.ok:
            raise BackendOpenError(
                descriptor.name,
                result.reason or "open declined",
                result.error if isinstance(result.error, Exception) else None,
            )
        session.mark_active(slot)
        logger.debug("backend_activated", backend=descriptor.name)
        return result

    # ── Close ─────────────────────────────────────────────────────

    def close(self, session: Session) -> None:
        """Close a session. Closing twice is a no-op."""
        if session.state is SessionState.CLOSED:
            logger.debug("session_already_closed", session_id=session.id)
            return
        with tracer.span("lifecycle.close", attributes={"session": session.id}):
            try:
                session.events.close()
            finally:
                self._unwind(session)
                session.domains.clear()
                session.capabilities = None
                session.state = SessionState.CLOSED
        logger.info("session_closed", session_id=session.id)

    def _unwind(self, session: Session) -> None:
        """Close activated backends in strict reverse activation order."""
        for slot in reversed(session.active_slots()):
            descriptor = self._registry.get(slot)
            session.mark_closed(slot)
            if descriptor is None:
                continue
            try:
                descriptor.close(session)
            except Exception as exc:  # keep unwinding the rest
                logger.error("backend_close_failed", exc=exc, backend=descriptor.name)
            self._metrics.backend_closes.labels(backend=descriptor.name).inc()
            logger.debug("backend_closed", backend=descriptor.name)
