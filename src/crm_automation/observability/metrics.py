"""Prometheus metrics instrumentation for the automation core.

Provides:
- ``setup_metrics(app)``: Attach prometheus-fastapi-instrumentator to a FastAPI app,
  exposing ``/metrics`` with HTTP request duration/count plus the business metrics.
- ``AUTOMATION_EXECUTIONS``: Counter of recorded rule executions by outcome.
- ``WEBHOOK_DELIVERIES``: Counter of finished webhook deliveries by outcome.
- ``WEBHOOK_DELIVERY_ATTEMPTS``: Histogram of attempts used per delivery.
- ``DELIVERY_QUEUE_DEPTH``: Gauge of jobs waiting for a delivery worker.

Business metrics are updated where the events happen (not by polling the database).
"""

from __future__ import annotations

from fastapi import FastAPI
from prometheus_client import Counter, Gauge, Histogram
from prometheus_fastapi_instrumentator import Instrumentator

AUTOMATION_EXECUTIONS: Counter = Counter(
    "automation_executions_total",
    "Automation rule executions recorded, by outcome",
    ["outcome"],
)

WEBHOOK_DELIVERIES: Counter = Counter(
    "webhook_deliveries_total",
    "Webhook deliveries finished, by outcome",
    ["outcome"],
)

WEBHOOK_DELIVERY_ATTEMPTS: Histogram = Histogram(
    "webhook_delivery_attempts",
    "HTTP attempts used per webhook delivery",
    buckets=(1, 2, 3, 4, 6, 8, 11),
)

DELIVERY_QUEUE_DEPTH: Gauge = Gauge(
    "webhook_delivery_queue_depth",
    "Webhook delivery jobs waiting for a worker",
)


def setup_metrics(app: FastAPI) -> None:
    """Instrument *app* with Prometheus HTTP metrics and expose ``/metrics``.

    Excludes health/ready/metrics endpoints from instrumentation to avoid
    noise in dashboards.

    Args:
        app: The FastAPI application to instrument.
    """
    Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=True,
        excluded_handlers=["/health", "/ready", "/metrics"],
    ).instrument(app).expose(app, include_in_schema=False, should_gzip=True)
