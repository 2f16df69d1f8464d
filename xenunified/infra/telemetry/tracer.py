"""
Tracing — OpenTelemetry Spans
==============================

Span-based tracing around connection open/close and every dispatched
operation. Uses the OpenTelemetry API only; when no SDK provider has been
installed by the embedding process the global provider is a no-op, so
spans cost almost nothing.

Usage:
    from xenunified.infra.telemetry.tracer import get_tracer

    tracer = get_tracer(__name__)

    with tracer.span("dispatch.domain_suspend", attributes={"domain": "vm1"}) as span:
        result = call_backend()
        span.set_attribute("backend", "xend")
"""

from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace as otel_trace
from opentelemetry.trace import Status, StatusCode

from xenunified.core.exceptions import XenUnifiedException

class Tracer:
    """Thin wrapper giving every module the same span API."""

    def __init__(self, name: str):
        self._name = name
        self._tracer = otel_trace.get_tracer(name)

    @contextmanager
    def span(
        self,
        name: str,
        *,
        attributes: dict[str, Any] | None = None,
    ) -> Generator[Any, None, None]:
        """
        Create a traced span.

        Driver errors are recorded on the span and re-raised.
        """
        with self._tracer.start_as_current_span(name, attributes=attributes) as span:
            try:
                yield span
            except XenUnifiedException as exc:
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, exc.error_code))
                raise

_tracers: dict[str, Tracer] = {}

def get_tracer(name: str) -> Tracer:
    """Get or create a tracer for the given module."""
    if name not in _tracers:
        _tracers[name] = Tracer(name)
    return _tracers[name]
