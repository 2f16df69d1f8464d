"""
Telemetry Layer — Unified Observability
========================================

All other layers depend on this.

Provides:
  - Structured logging with connection/operation context
  - Tracing spans (OpenTelemetry API)
  - Dispatch and session metrics (Prometheus)

Usage:
    from xenunified.infra.telemetry import get_logger, get_metrics, get_tracer

    logger = get_logger(__name__)
    with get_tracer(__name__).span("dispatch.domain_get_info"):
        ...
"""

from xenunified.infra.telemetry.logger import (
    StructuredLogger,
    get_logger,
    set_log_context,
    setup_logging,
)
from xenunified.infra.telemetry.metrics import MetricsCollector, get_metrics
from xenunified.infra.telemetry.tracer import Tracer, get_tracer

__all__ = [
    "MetricsCollector",
    "StructuredLogger",
    "Tracer",
    "get_logger",
    "get_metrics",
    "get_tracer",
    "set_log_context",
    "setup_logging",
]
