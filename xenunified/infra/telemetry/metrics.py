"""
Metrics Collector — Prometheus Dispatch Metrics
================================================

Centralized metrics for the driver layers, registered on a package-local
registry so embedding processes choose whether to expose them.

Metric Naming Convention:
  - xenunified_{component}_{metric}_{unit}
  - e.g., xenunified_dispatch_attempts_total
"""

from __future__ import annotations

import time
from collections.abc import Generator
from contextlib import contextmanager

from prometheus_client import CollectorRegistry, Counter, Histogram

class MetricsCollector:
    """All driver metrics in one place."""

    def __init__(self, registry: CollectorRegistry | None = None):
        self.registry = registry or CollectorRegistry(auto_describe=True)

        self.dispatch_attempts = Counter(
            "xenunified_dispatch_attempts_total",
            "Backend handler invocations by outcome",
            ["capability", "backend", "outcome"],
            registry=self.registry,
        )
        self.dispatch_unresolved = Counter(
            "xenunified_dispatch_unresolved_total",
            "Operations no backend completed",
            ["capability", "error"],
            registry=self.registry,
        )
        self.dispatch_latency = Histogram(
            "xenunified_dispatch_latency_seconds",
            "Latency of resolved dispatches",
            ["capability"],
            buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0),
            registry=self.registry,
        )
        self.session_opens = Counter(
            "xenunified_session_opens_total",
            "Connection open attempts by result",
            ["result"],
            registry=self.registry,
        )
        self.backend_closes = Counter(
            "xenunified_backend_closes_total",
            "Backend close calls",
            ["backend"],
            registry=self.registry,
        )

    @contextmanager
    def time_dispatch(self, capability: str) -> Generator[None, None, None]:
        start = time.perf_counter()
        try:
            yield
        finally:
            self.dispatch_latency.labels(capability=capability).observe(
                time.perf_counter() - start
            )

_metrics: MetricsCollector | None = None

def get_metrics() -> MetricsCollector:
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics
