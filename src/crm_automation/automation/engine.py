"""Matches domain events against active rules and records their executions.

All rules matching one event read the same immutable snapshot and run
concurrently; the actions of one rule run in order.  A rule that blows up is
recorded as a ``failed`` execution and never disturbs the other rules.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence

import structlog

from crm_automation.automation.actions import ActionContext, ActionExecutor
from crm_automation.automation.conditions import MISSING, evaluate, resolve_path
from crm_automation.automation.store import RuleStore
from crm_automation.domain.errors import EngineFault
from crm_automation.domain.models import ActionResult, AutomationExecution, AutomationRule, DomainEvent
from crm_automation.domain.types import ExecutionOutcome, TriggerType, trigger_for_event
from crm_automation.observability.metrics import AUTOMATION_EXECUTIONS

logger = structlog.get_logger()

OnExecution = Callable[[AutomationRule, AutomationExecution], Awaitable[None]]

_MESSAGE_TEXT_PATHS = ("message.content", "content", "message.text", "text")


def outcome_of(results: Sequence[ActionResult]) -> ExecutionOutcome:
    """Summarize action results: all succeeded, some did, or none did."""
    succeeded = sum(1 for r in results if r.success)
    if succeeded == len(results):
        return ExecutionOutcome.SUCCESS
    if succeeded:
        return ExecutionOutcome.PARTIAL
    return ExecutionOutcome.FAILED


def matches_trigger_config(rule: AutomationRule, event: DomainEvent) -> bool:
    """Apply trigger-level filters from ``rule.trigger_config``.

    ``message_received`` rules may list ``keywords``; the message text must
    then contain at least one of them (case-insensitive).
    """
    if rule.trigger_type != TriggerType.MESSAGE_RECEIVED:
        return True
    keywords = [str(k).lower() for k in rule.trigger_config.get("keywords") or [] if str(k).strip()]
    if not keywords:
        return True

    for path in _MESSAGE_TEXT_PATHS:
        text = resolve_path(event.payload, path)
        if text is not MISSING and isinstance(text, str):
            lowered = text.lower()
            return any(k in lowered for k in keywords)
    return False


class AutomationEngine:
    """Runs active rules for incoming events.

    Args:
        store: Rule snapshots and the execution sink.
        executor: Runs each matched rule's actions.
        on_execution: Awaited after every recorded execution.
    """

    def __init__(
        self,
        store: RuleStore,
        executor: ActionExecutor,
        on_execution: OnExecution | None = None,
    ) -> None:
        self._store = store
        self._executor = executor
        self._on_execution = on_execution

    async def handle_event(self, event: DomainEvent) -> list[AutomationExecution]:
        """Evaluate every active rule bound to *event*'s trigger.

        Args:
            event: The incoming domain event.

        Returns:
            One execution per rule whose trigger and conditions matched.
        """
        trigger = trigger_for_event(event.type)
        if trigger is None:
            return []

        rules = await asyncio.to_thread(self._store.snapshot_active, trigger)
        if not rules:
            return []

        logger.info("automation_event_received", event_id=event.id, event_type=event.type, rules=len(rules))
        results = await asyncio.gather(
            *(self._run_rule(rule, event) for rule in rules),
            return_exceptions=True,
        )

        executions: list[AutomationExecution] = []
        for rule, result in zip(rules, results, strict=True):
            if isinstance(result, BaseException):
                logger.error("automation_execution_not_recorded", rule_id=rule.id, error=str(result))
            elif result is not None:
                executions.append(result)
        return executions

    async def _run_rule(self, rule: AutomationRule, event: DomainEvent) -> AutomationExecution | None:
        started = time.perf_counter()
        try:
            if not matches_trigger_config(rule, event) or not evaluate(event, rule.condition_group):
                return None
            results = await self._executor.execute_all(
                rule.actions,
                ActionContext(rule_id=rule.id, event=event),
            )
            execution = AutomationExecution(
                rule_id=rule.id,
                event=event,
                action_results=results,
                outcome=outcome_of(results),
                execution_time_ms=_elapsed_ms(started),
            )
        except Exception as exc:
            fault = EngineFault(rule.id, str(exc) or type(exc).__name__)
            logger.exception("automation_rule_fault", rule_id=rule.id, event_type=event.type)
            execution = AutomationExecution(
                rule_id=rule.id,
                event=event,
                outcome=ExecutionOutcome.FAILED,
                error_message=str(fault),
                execution_time_ms=_elapsed_ms(started),
            )

        updated = await asyncio.to_thread(self._store.record_execution, execution)
        if updated is None:
            return None

        AUTOMATION_EXECUTIONS.labels(outcome=execution.outcome.value).inc()
        logger.info(
            "automation_executed",
            rule_id=rule.id,
            execution_id=execution.id,
            outcome=execution.outcome.value,
            execution_time_ms=execution.execution_time_ms,
        )

        if self._on_execution is not None:
            try:
                await self._on_execution(updated, execution)
            except Exception:
                logger.exception("automation_callback_failed", rule_id=rule.id, execution_id=execution.id)
        return execution


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)
