"""OpenTelemetry distributed tracing integration.

This module provides OpenTelemetry instrumentation for eventnet, used to
trace requests to the hosted backend.

Key Features:
    - TracerProvider with service metadata (name, version, environment)
    - BatchSpanProcessor with OTLPSpanExporter when an endpoint is configured
    - ConsoleSpanExporter when tracing is enabled without an endpoint
    - Integration with logging.py contextvars (request_id, user_id, operation)

Usage:
    ```python
    from eventnet.telemetry import get_tracer, add_span_attributes

    tracer = get_tracer(__name__)

    with tracer.start_as_current_span("rest.select") as span:
        add_span_attributes(span, {"table": "events"})
    ```

Environment Variables:
    - OTEL_SERVICE_NAME: Service name for traces (default: "eventnet")

References:
    - OpenTelemetry Python Docs: https://opentelemetry.io/docs/languages/python/instrumentation/
"""

from __future__ import annotations

import os
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Status, StatusCode, Tracer
from opentelemetry.trace.span import Span

from eventnet import __version__
from eventnet.config import settings
from eventnet.logging import logger, operation_var, request_id_var, user_id_var

_tracer_provider: TracerProvider | None = None
_initialized: bool = False


def initialize_telemetry() -> None:
    """Initialize the global OpenTelemetry tracer provider.

    Idempotent. Exporters are attached only when ``settings.enable_tracing``
    is set: OTLP when ``settings.otlp_endpoint`` is configured, console
    otherwise. With tracing disabled the provider records nothing.

    Raises:
        ValueError: If the OTLP exporter cannot be created
    """
    global _tracer_provider, _initialized

    if _initialized:
        return

    service_name = os.getenv("OTEL_SERVICE_NAME", "eventnet")

    resource = Resource.create(
        {
            "service.name": service_name,
            "service.version": __version__,
            "deployment.environment": settings.environment.value,
        }
    )

    _tracer_provider = TracerProvider(resource=resource)

    if settings.enable_tracing and settings.otlp_endpoint:
        try:
            otlp_exporter = OTLPSpanExporter(endpoint=settings.otlp_endpoint)
            _tracer_provider.add_span_processor(BatchSpanProcessor(otlp_exporter))
        except Exception as e:
            logger.error(f"Failed to initialize OTLP exporter: {e}")
            raise ValueError(f"Invalid OTLP endpoint: {settings.otlp_endpoint}") from e
        logger.info(f"Initialized OTLP span exporter ({settings.otlp_endpoint})")
    elif settings.enable_tracing:
        _tracer_provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
        logger.debug("Initialized console span exporter")

    trace.set_tracer_provider(_tracer_provider)
    _initialized = True

    logger.debug(
        f"Telemetry initialized (service={service_name}, "
        f"tracing_enabled={settings.enable_tracing})"
    )


def get_tracer(name: str) -> Tracer:
    """Get a tracer for the given module, initializing telemetry on first use."""
    if not _initialized:
        initialize_telemetry()

    return trace.get_tracer(name)


def add_span_attributes(span: Span, attributes: dict[str, Any]) -> None:
    """Add multiple attributes to a span.

    None values are skipped; lists and dicts are stringified.
    """
    for key, value in attributes.items():
        if value is None:
            continue
        if isinstance(value, (list, dict)):
            value = str(value)
        span.set_attribute(key, value)


def record_exception_in_span(
    span: Span,
    exception: Exception,
    set_status: bool = True,
) -> None:
    """Record an exception in a span and optionally set error status."""
    span.record_exception(exception)
    if set_status:
        span.set_status(Status(StatusCode.ERROR, str(exception)))


def sync_logging_context_to_span(span: Span) -> None:
    """Copy request_id, user_id and operation from the logging context to a span."""
    add_span_attributes(
        span,
        {
            "request_id": request_id_var.get(None),
            "user_id": user_id_var.get(None),
            "operation": operation_var.get(None),
        },
    )


def shutdown_telemetry() -> None:
    """Shutdown the tracer provider and flush pending spans."""
    global _tracer_provider, _initialized

    if _tracer_provider and _initialized:
        _tracer_provider.shutdown()
        _initialized = False
        logger.info("Telemetry shut down")


__all__ = [
    "initialize_telemetry",
    "shutdown_telemetry",
    "get_tracer",
    "add_span_attributes",
    "record_exception_in_span",
    "sync_logging_context_to_span",
]
