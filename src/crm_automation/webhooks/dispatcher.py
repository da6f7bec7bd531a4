"""Fan-out of domain events to webhook subscriptions over a worker pool.

Deliveries are queued on a bounded ``asyncio.Queue`` and executed by a fixed
number of worker tasks, so a burst of events never turns into an unbounded
number of concurrent HTTP calls.  Each delivery is independent: a failing or
raising delivery is logged and never affects its siblings.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

import structlog

from crm_automation.domain.errors import ConfigurationError
from crm_automation.domain.models import DeliveryTarget, DomainEvent, WebhookDeliveryLog
from crm_automation.observability.metrics import (
    DELIVERY_QUEUE_DEPTH,
    WEBHOOK_DELIVERIES,
    WEBHOOK_DELIVERY_ATTEMPTS,
)
from crm_automation.webhooks.delivery import WebhookDeliveryClient
from crm_automation.webhooks.events import is_registered, sample_payload
from crm_automation.webhooks.registry import WebhookRegistry

logger = structlog.get_logger()


@dataclass
class _DeliveryJob:
    target: DeliveryTarget
    event: DomainEvent
    done: asyncio.Future[WebhookDeliveryLog | None] = field(repr=False)


class WebhookDispatcher:
    """Delivers events to every matching active subscription.

    Args:
        registry: Source of subscriptions and sink for delivery logs.
        client: Performs the signed, retried HTTP calls.
        workers: Number of concurrent delivery workers.
        queue_size: Maximum number of queued deliveries; producers wait
            when the queue is full.
    """

    def __init__(
        self,
        registry: WebhookRegistry,
        client: WebhookDeliveryClient,
        *,
        workers: int = 8,
        queue_size: int = 1000,
    ) -> None:
        self._registry = registry
        self._client = client
        self._worker_count = workers
        self._queue: asyncio.Queue[_DeliveryJob] = asyncio.Queue(maxsize=queue_size)
        self._workers: list[asyncio.Task[None]] = []

    async def __aenter__(self) -> WebhookDispatcher:
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    @property
    def queue_depth(self) -> int:
        return self._queue.qsize()

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._workers)

    def start(self) -> None:
        """Spawn the worker tasks.  Must be called with a running event loop."""
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(n), name=f"webhook-worker-{n}")
            for n in range(self._worker_count)
        ]
        logger.info("delivery_pool_started", workers=self._worker_count)

    async def aclose(self, drain: bool = True) -> None:
        """Stop the workers, optionally waiting for queued deliveries first."""
        if drain and self._workers:
            await self._queue.join()
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("delivery_pool_stopped")

    async def dispatch(self, event: DomainEvent) -> list[WebhookDeliveryLog]:
        """Deliver *event* to every active subscription that listens to it.

        Returns:
            The delivery logs written, one per matching subscription whose
            delivery completed.
        """
        targets = await asyncio.to_thread(self._registry.list_matching, event.type)
        if not targets:
            return []

        logger.info("webhook_dispatch", event_type=event.type, subscriptions=len(targets))
        futures = [await self._submit(target, event) for target in targets]
        results = await asyncio.gather(*futures, return_exceptions=True)

        logs: list[WebhookDeliveryLog] = []
        for target, result in zip(targets, results, strict=True):
            if isinstance(result, BaseException):
                logger.error(
                    "webhook_delivery_crashed",
                    webhook_id=target.webhook_id,
                    event_type=event.type,
                    error=str(result),
                )
            elif result is not None:
                logs.append(result)
        return logs

    async def send_test(
        self,
        webhook_id: str,
        event_type: str,
        payload: dict[str, Any] | None = None,
    ) -> WebhookDeliveryLog | None:
        """Deliver a sample event to one subscription, active or not.

        Args:
            webhook_id: The subscription to test.
            event_type: A registered event type.
            payload: Payload to send; a representative sample when omitted.

        Returns:
            The delivery log of the test.

        Raises:
            WebhookNotFoundError: If *webhook_id* is unknown.
            ConfigurationError: If *event_type* is not registered.
        """
        event = DomainEvent(type=event_type, payload=payload or sample_payload(event_type))
        if not is_registered(event.type):
            raise ConfigurationError(f"eventType: invalid event type '{event_type}'")

        target = await asyncio.to_thread(self._registry.delivery_target, webhook_id)
        logger.info("webhook_test_requested", webhook_id=webhook_id, event_type=event.type)
        return await (await self._submit(target, event))

    async def _submit(
        self,
        target: DeliveryTarget,
        event: DomainEvent,
    ) -> asyncio.Future[WebhookDeliveryLog | None]:
        self.start()
        job = _DeliveryJob(target=target, event=event, done=asyncio.get_running_loop().create_future())
        await self._queue.put(job)
        DELIVERY_QUEUE_DEPTH.set(self._queue.qsize())
        return job.done

    async def _worker(self, number: int) -> None:
        while True:
            job = await self._queue.get()
            DELIVERY_QUEUE_DEPTH.set(self._queue.qsize())
            try:
                log = await self._deliver(job.target, job.event)
            except Exception as exc:
                logger.exception("webhook_worker_error", worker=number, webhook_id=job.target.webhook_id)
                if not job.done.done():
                    job.done.set_exception(exc)
            else:
                if not job.done.done():
                    job.done.set_result(log)
            finally:
                self._queue.task_done()

    async def _deliver(self, target: DeliveryTarget, event: DomainEvent) -> WebhookDeliveryLog | None:
        outcome = await self._client.deliver(target, event)
        WEBHOOK_DELIVERIES.labels(outcome="success" if outcome.is_success else "failed").inc()
        WEBHOOK_DELIVERY_ATTEMPTS.observe(outcome.attempt_count)
        if target.webhook_id is None:
            return None
        return await asyncio.to_thread(self._registry.record_delivery, target.webhook_id, event, outcome)
