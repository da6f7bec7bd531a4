"""Signed, retried HTTP callback delivery.

The wire contract is fixed:

- Body: compact JSON ``{"eventType", "payload", "timestamp"}`` encoded once.
- ``X-Webhook-Signature``: lowercase hex HMAC-SHA256 of the raw body bytes
  using the subscription secret.  Computed over exactly the bytes sent.
- Success: HTTP status in ``[200, 300)``.

Failed attempts (non-2xx, network error, per-attempt timeout) raise
``DeliveryError`` inside a tenacity retry loop with exponential backoff that
never decreases and stops after ``retry_count`` extra attempts.  Only the
terminal attempt is reported back.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC
from typing import Any

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from crm_automation.domain.errors import DeliveryError
from crm_automation.domain.models import DeliveryOutcome, DeliveryTarget, DomainEvent

logger = structlog.get_logger()

SIGNATURE_HEADER = "X-Webhook-Signature"
EVENT_HEADER = "X-Webhook-Event"


def compute_signature(body: bytes, secret: str) -> str:
    """Compute the lowercase hex HMAC-SHA256 of *body* keyed by *secret*.

    Args:
        body: The raw request body bytes, exactly as transmitted.
        secret: The subscription signing secret.

    Returns:
        The hex digest placed in ``X-Webhook-Signature``.
    """
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, signature: str, secret: str) -> bool:
    """Check an ``X-Webhook-Signature`` value the way a subscriber should.

    Must be called with the raw body bytes, before any JSON parsing.
    """
    return hmac.compare_digest(compute_signature(body, secret), signature)


def build_body(event: DomainEvent) -> bytes:
    """Serialize *event* into the webhook wire body."""
    timestamp = event.occurred_at.astimezone(UTC).isoformat().replace("+00:00", "Z")
    document = {
        "eventType": event.type,
        "payload": event.payload,
        "timestamp": timestamp,
    }
    return json.dumps(document, separators=(",", ":"), default=str).encode("utf-8")


@dataclass
class _AttemptResult:
    """Measurements of one HTTP attempt."""

    status: int | None
    body: str | None
    elapsed_ms: int
    error: str | None

    @property
    def ok(self) -> bool:
        return self.status is not None and 200 <= self.status < 300


def _before_sleep_log(retry_state: RetryCallState) -> None:
    """Log a warning before each retry attempt."""
    exception = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "webhook_delivery_retry",
        attempt=retry_state.attempt_number,
        wait=retry_state.next_action.sleep if retry_state.next_action else 0,
        error=str(exception),
    )


class WebhookDeliveryClient:
    """Performs webhook deliveries over a shared ``httpx.AsyncClient``.

    Args:
        http_client: Client to send requests with.  One is created (and
            owned) when omitted.
        backoff_base: Delay in seconds before the first retry.
        backoff_max: Upper bound for any single retry delay.
        response_body_limit: Characters of response body kept in outcomes.
        user_agent: ``User-Agent`` header sent with every request.
        sleep: Awaitable used between retries (replaced in tests).
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        *,
        backoff_base: float = 1.0,
        backoff_max: float = 60.0,
        response_body_limit: int = 1000,
        user_agent: str = "CRM-Automation-Webhook/1.0",
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient()
        self._backoff_base = backoff_base
        self._backoff_max = max(backoff_max, backoff_base)
        self._body_limit = response_body_limit
        self._user_agent = user_agent
        self._sleep = sleep

    async def __aenter__(self) -> WebhookDeliveryClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    def backoff_delays(self, retry_count: int) -> list[float]:
        """Return the delays slept before each of *retry_count* retries."""
        return [
            min(self._backoff_max, self._backoff_base * 2 ** (n - 1))
            for n in range(1, retry_count + 1)
        ]

    def build_headers(self, target: DeliveryTarget, event: DomainEvent, body: bytes) -> dict[str, str]:
        """Assemble request headers, signing *body* when the target has a secret."""
        headers = {
            "Content-Type": "application/json",
            "User-Agent": self._user_agent,
            EVENT_HEADER: event.type,
            **target.headers,
        }
        if target.secret is not None and target.secret.get_secret_value():
            headers[SIGNATURE_HEADER] = compute_signature(body, target.secret.get_secret_value())
        return headers

    async def deliver(self, target: DeliveryTarget, event: DomainEvent) -> DeliveryOutcome:
        """Deliver *event* to *target*, retrying failed attempts.

        Never raises for delivery failures; the terminal attempt is described
        by the returned outcome.

        Args:
            target: Endpoint, method, secret, retry and timeout settings.
            event: The event to send.

        Returns:
            A ``DeliveryOutcome`` whose ``attempt_count`` is between 1 and
            ``target.retry_count + 1``.
        """
        body = build_body(event)
        headers = self.build_headers(target, event, body)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(target.retry_count + 1),
            wait=wait_exponential(multiplier=self._backoff_base, max=self._backoff_max),
            retry=retry_if_exception_type(DeliveryError),
            before_sleep=_before_sleep_log,
            sleep=self._sleep,
            reraise=True,
        )

        attempts = 0
        last = _AttemptResult(status=None, body=None, elapsed_ms=0, error="not attempted")
        try:
            async for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    last = await self._attempt(target, body, headers)
                    if not last.ok:
                        raise DeliveryError(last.error or "delivery failed", last.status, last.body)
        except DeliveryError:
            logger.warning(
                "webhook_delivery_failed",
                url=target.url,
                webhook_id=target.webhook_id,
                event_type=event.type,
                attempts=attempts,
                status=last.status,
                error=last.error,
            )
        else:
            logger.info(
                "webhook_delivered",
                url=target.url,
                webhook_id=target.webhook_id,
                event_type=event.type,
                attempts=attempts,
                status=last.status,
            )

        return DeliveryOutcome(
            attempt_count=max(attempts, 1),
            is_success=last.ok,
            response_status=last.status,
            response_time_ms=last.elapsed_ms,
            response_body=last.body,
            error_message=None if last.ok else last.error,
        )

    async def _attempt(
        self,
        target: DeliveryTarget,
        body: bytes,
        headers: dict[str, str],
    ) -> _AttemptResult:
        """Send one request bounded by the target's timeout."""
        started = time.perf_counter()
        try:
            response = await asyncio.wait_for(
                self._client.request(
                    target.method.value,
                    target.url,
                    content=body,
                    headers=headers,
                    timeout=target.timeout_seconds,
                ),
                timeout=target.timeout_seconds,
            )
        except (TimeoutError, httpx.TimeoutException):
            return _AttemptResult(
                status=None,
                body=None,
                elapsed_ms=_elapsed_ms(started),
                error=f"Timed out after {target.timeout_seconds}s",
            )
        except httpx.HTTPError as exc:
            return _AttemptResult(
                status=None,
                body=None,
                elapsed_ms=_elapsed_ms(started),
                error=f"No response received from webhook endpoint: {exc}",
            )

        elapsed = _elapsed_ms(started)
        text = response.text[: self._body_limit] if self._body_limit else ""
        error = None
        if not 200 <= response.status_code < 300:
            error = f"HTTP {response.status_code}: {response.reason_phrase}"
        return _AttemptResult(status=response.status_code, body=text, elapsed_ms=elapsed, error=error)


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)
