"""Prometheus metrics for vmimage."""

from __future__ import annotations

from prometheus_client import (
    Counter,
    Histogram,
    Info,
    start_http_server,
    REGISTRY,
    CollectorRegistry,
)


class MetricsRegistry:
    """Registry of all vmimage metrics."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        """Initialize metrics registry."""
        self._registry = registry or REGISTRY

        # Image operations
        self.image_operations_total = Counter(
            "image_operations_total",
            "Total image operations",
            ["backend", "operation", "status"],  # pull/push/prepare/..., success/error
            registry=self._registry,
        )

        self.image_operation_duration_seconds = Histogram(
            "image_operation_duration_seconds",
            "Image operation duration in seconds",
            ["backend", "operation"],
            buckets=(0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 900.0),
            registry=self._registry,
        )

        # Manager registry
        self.image_managers_total = Counter(
            "image_managers_total",
            "Backend manager constructions",
            ["backend", "status"],  # success, failed
            registry=self._registry,
        )

        # Server info
        self.info = Info(
            "vmimage",
            "vmimage information",
            registry=self._registry,
        )

    def record_operation(self, backend: str, operation: str, status: str, duration: float) -> None:
        """Record one finished image operation."""
        self.image_operations_total.labels(backend=backend, operation=operation, status=status).inc()
        self.image_operation_duration_seconds.labels(backend=backend, operation=operation).observe(duration)


def setup_metrics(port: int = 8091, registry: CollectorRegistry | None = None) -> MetricsRegistry:
    """Create the metrics registry and start the Prometheus endpoint."""
    from vmimage import __version__

    metrics = MetricsRegistry(registry)
    metrics.info.info({"version": __version__})
    start_http_server(port, registry=registry or REGISTRY)
    return metrics
