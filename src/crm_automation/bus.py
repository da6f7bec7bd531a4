"""In-process event bus: the single entry point for domain events.

``publish`` validates the event type against the registry and schedules the
automation engine and the webhook dispatcher as two independent background
tasks.  The producer never waits for, nor sees failures from, either side.
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import Any

import structlog

from crm_automation.automation.engine import AutomationEngine
from crm_automation.domain.errors import ConfigurationError
from crm_automation.domain.models import AutomationExecution, AutomationRule, DomainEvent
from crm_automation.webhooks.dispatcher import WebhookDispatcher
from crm_automation.webhooks.events import AUTOMATION_COMPLETED, is_registered

logger = structlog.get_logger()


def completion_event(rule: AutomationRule, execution: AutomationExecution) -> DomainEvent:
    """Build the ``automation.completed`` event announcing *execution*."""
    return DomainEvent(
        type=AUTOMATION_COMPLETED,
        payload={
            "automationId": rule.id,
            "automationName": rule.name,
            "executionId": execution.id,
            "outcome": execution.outcome.value,
            "executionTimeMs": execution.execution_time_ms,
            "triggerEventId": execution.event.id,
            "triggerEventType": execution.event.type,
            "actionResults": [
                r.model_dump(mode="json", by_alias=True, exclude_none=True) for r in execution.action_results
            ],
            "errorMessage": execution.error_message,
        },
    )


class EventBus:
    """Fans each published event out to the engine and the dispatcher.

    Args:
        dispatcher: Delivers events to webhook subscriptions.
        engine: Runs automation rules.  Optional so the bus can be built
            before the engine, which needs :meth:`on_execution`.
    """

    def __init__(self, dispatcher: WebhookDispatcher, engine: AutomationEngine | None = None) -> None:
        self._dispatcher = dispatcher
        self._engine = engine
        self._tasks: set[asyncio.Task[Any]] = set()

    def attach_engine(self, engine: AutomationEngine) -> None:
        self._engine = engine

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def publish(self, event: DomainEvent) -> None:
        """Schedule processing of *event* and return immediately.

        Raises:
            ConfigurationError: If the event type is not registered.
        """
        if not is_registered(event.type):
            raise ConfigurationError(f"type: unknown event type '{event.type}'")

        logger.info("event_published", event_id=event.id, event_type=event.type)
        if self._engine is not None:
            self._spawn(self._engine.handle_event(event), "automation", event)
        self._spawn(self._dispatcher.dispatch(event), "webhooks", event)

    async def on_execution(self, rule: AutomationRule, execution: AutomationExecution) -> None:
        """Engine callback: announce the execution to webhook subscribers only.

        Completion events are not fed back into the engine.
        """
        event = completion_event(rule, execution)
        self._spawn(self._dispatcher.dispatch(event), "webhooks", event)

    async def drain(self) -> None:
        """Wait until every scheduled task, including ones spawned meanwhile, is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _spawn(self, coro: Coroutine[Any, Any, Any], consumer: str, event: DomainEvent) -> None:
        task = asyncio.create_task(coro, name=f"{consumer}:{event.type}:{event.id}")
        self._tasks.add(task)

        def _done(t: asyncio.Task[Any]) -> None:
            self._tasks.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                logger.error(
                    "event_consumer_failed",
                    consumer=consumer,
                    event_id=event.id,
                    event_type=event.type,
                    error=str(exc),
                )

        task.add_done_callback(_done)
