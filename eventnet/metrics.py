"""Prometheus metrics collection and export.

This module provides Prometheus instrumentation for eventnet: store calls,
state transitions of the engine and the transcript poller.

Metric Types:
    Counters (always increase):
        - store_operations_total: Store calls by operation, table, status
        - errors_total: Errors by type and component
        - connection_transitions_total: Connection state changes by outcome
        - registrations_total: Registration changes by action
        - messages_sent_total: Messages appended to transcripts
        - transcript_polls_total: Transcript refreshes by outcome

    Gauges (can go up or down):
        - active_transcript_pollers: Poll loops currently running

    Histograms (track distributions):
        - store_operation_duration_seconds: Store call latency

Usage:
    ```python
    from eventnet.metrics import store_operations_total

    store_operations_total.labels(
        operation="select", table="events", status="success"
    ).inc()
    ```

References:
    - Prometheus Python Client: https://github.com/prometheus/client_python
    - Metric Types: https://prometheus.io/docs/tutorials/understanding_metric_types/
"""

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

# Custom registry: no default process/platform metrics
registry = CollectorRegistry()

# Covers local SQLite calls (sub-millisecond) up to slow network round trips
STORE_LATENCY_BUCKETS = (
    0.001,
    0.005,
    0.01,
    0.05,
    0.1,
    0.25,
    0.5,
    1.0,
    2.5,
    5.0,
    10.0,
)

# ========== COUNTER METRICS ==========

store_operations_total = Counter(
    "store_operations_total",
    "Total number of data store operations",
    labelnames=["operation", "table", "status"],
    registry=registry,
)
"""Store calls by operation (select, insert, update, delete, count), table and status."""

errors_total = Counter(
    "errors_total",
    "Total number of errors encountered",
    labelnames=["error_type", "component"],
    registry=registry,
)
"""Errors by exception class name and component (store, api, chat, ...)."""

connection_transitions_total = Counter(
    "connection_transitions_total",
    "Connection state changes",
    labelnames=["outcome"],
    registry=registry,
)
"""Connection changes: requested, accepted, rejected."""

registrations_total = Counter(
    "registrations_total",
    "Registration changes",
    labelnames=["action"],
    registry=registry,
)
"""Registration changes: registered, unregistered, attended."""

messages_sent_total = Counter(
    "messages_sent_total",
    "Messages appended to event transcripts",
    registry=registry,
)

transcript_polls_total = Counter(
    "transcript_polls_total",
    "Transcript refreshes by outcome",
    labelnames=["outcome"],
    registry=registry,
)
"""Refresh outcomes: delivered, stale, coalesced, error."""

# ========== GAUGE METRICS ==========

active_transcript_pollers = Gauge(
    "active_transcript_pollers",
    "Transcript poll loops currently running",
    registry=registry,
)

# ========== HISTOGRAM METRICS ==========

store_operation_duration_seconds = Histogram(
    "store_operation_duration_seconds",
    "Duration of data store operations in seconds",
    labelnames=["operation", "table"],
    buckets=STORE_LATENCY_BUCKETS,
    registry=registry,
)


@contextmanager
def track_store_operation(operation: str, table: str) -> Iterator[None]:
    """Count and time one store call.

    Example:
        ```python
        with track_store_operation("select", "events"):
            rows = repo.find_by(order=["date"])
        ```
    """
    start = time.perf_counter()
    try:
        yield
    except Exception as exc:
        store_operations_total.labels(operation=operation, table=table, status="error").inc()
        errors_total.labels(error_type=type(exc).__name__, component="store").inc()
        raise
    else:
        store_operations_total.labels(operation=operation, table=table, status="success").inc()
    finally:
        store_operation_duration_seconds.labels(operation=operation, table=table).observe(
            time.perf_counter() - start
        )


def generate_metrics_output() -> bytes:
    """Render all metrics in the Prometheus text exposition format."""
    return generate_latest(registry)


__all__ = [
    "registry",
    "store_operations_total",
    "errors_total",
    "connection_transitions_total",
    "registrations_total",
    "messages_sent_total",
    "transcript_polls_total",
    "active_transcript_pollers",
    "store_operation_duration_seconds",
    "track_store_operation",
    "generate_metrics_output",
]
