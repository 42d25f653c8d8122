"""Application bootstrap.

Builds the HTTP application from configuration with logging, tracing and
metrics set up.

Usage:
    uvicorn --factory vmimage.bootstrap:bootstrap --host 0.0.0.0 --port 8090
"""

from __future__ import annotations

from typing import Optional

from fastapi import FastAPI
from prometheus_client import CollectorRegistry

from vmimage.adapters.inbound.rest_api import create_app
from vmimage.application.service import ImageService
from vmimage.infrastructure.config import Config, get_config
from vmimage.infrastructure.container import build_container
from vmimage.infrastructure.logging import get_logger, setup_logging
from vmimage.infrastructure.metrics import MetricsRegistry, setup_metrics
from vmimage.infrastructure.tracing import setup_tracing


def bootstrap(
    config: Optional[Config] = None,
    collector_registry: Optional[CollectorRegistry] = None,
    serve_metrics: bool = True,
) -> FastAPI:
    """Create the configured application.

    Args:
        config: Configuration; loaded from the environment when omitted.
        collector_registry: Prometheus registry; the default one when omitted.
        serve_metrics: Start the Prometheus HTTP endpoint.

    Returns:
        FastAPI application over the default backend.

    Raises:
        ConfigError: If the default backend is misconfigured.
    """
    config = config or get_config()
    observability = config.observability
    setup_logging(observability.log_level, observability.log_format)
    setup_tracing(observability.otel_service_name, observability.otel_endpoint)

    if serve_metrics:
        metrics = setup_metrics(config.server.metrics_port, collector_registry)
    else:
        metrics = MetricsRegistry(collector_registry)

    container = build_container(config, metrics)
    service = container.resolve(ImageService)
    get_logger(__name__).info(
        "vmimage ready",
        backend=config.backend,
        port=config.server.port,
    )
    return create_app(service)
