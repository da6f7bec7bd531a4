"""Sentry SDK initialization and the structlog-sentry bridge."""

from __future__ import annotations

import logging

import sentry_sdk
import structlog
from sentry_sdk.integrations.logging import LoggingIntegration
from structlog_sentry import SentryProcessor


def init_sentry(dsn: str, environment: str = "development") -> None:
    """Initialize the Sentry SDK.  Does nothing when *dsn* is empty.

    Args:
        dsn: Sentry DSN string.  Empty string disables Sentry.
        environment: Reported environment name.
    """
    if not dsn:
        return

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=0.1,
        send_default_pii=False,
        # structlog-sentry reports errors; Sentry's own logging capture is off.
        integrations=[LoggingIntegration(event_level=None, level=None)],
    )


def get_sentry_processor() -> structlog.types.Processor:
    """Return a structlog processor forwarding ERROR events to Sentry.

    Place it after ``add_log_level`` and before the renderer.
    """
    return SentryProcessor(event_level=logging.ERROR)
