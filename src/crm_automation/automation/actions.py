"""Action execution for matched automation rules.

Each action is parsed into its typed variant before anything is called, so a
missing required field produces a ``configuration`` failure without touching
any collaborator.  A rule's actions run strictly in order and a failing
action never stops the ones after it.

Collaborators (messaging, conversations, contacts, flows, email) live outside
this package and are reached through the small :class:`Collaborator`
protocol.  The ``webhook`` action is the exception: it goes straight to the
:class:`~crm_automation.webhooks.delivery.WebhookDeliveryClient` as a single,
unsigned, unlogged call.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from typing import Any, Protocol, runtime_checkable

import structlog
from pydantic import BaseModel

from crm_automation.automation.conditions import MISSING, resolve_path
from crm_automation.automation.validation import parse_action
from crm_automation.domain.errors import CollaboratorError, ConfigurationError, DeliveryError
from crm_automation.domain.models import (
    Action,
    ActionResult,
    ActionSpec,
    DeliveryTarget,
    DomainEvent,
    WebhookAction,
)
from crm_automation.domain.types import ActionType, ErrorKind
from crm_automation.webhooks.delivery import WebhookDeliveryClient

logger = structlog.get_logger()

_PLACEHOLDER = re.compile(r"\{\{\s*(\w+(?:\.\w+)*)\s*\}\}")


class CollaboratorResult(BaseModel):
    """What a collaborator reports back for one call."""

    success: bool
    detail: dict[str, Any] | None = None
    error: str | None = None


@runtime_checkable
class Collaborator(Protocol):
    """An external service that performs one family of actions."""

    async def execute(self, config: dict[str, Any]) -> CollaboratorResult: ...


class ActionContext(BaseModel):
    """Per-execution context handed to each action."""

    rule_id: str
    event: DomainEvent


def render_template(text: str, data: Mapping[str, Any]) -> str:
    """Replace ``{{dot.path}}`` placeholders with values from *data*.

    Unknown paths are left untouched so the recipient can see what failed to
    resolve.
    """

    def _sub(match: re.Match[str]) -> str:
        value = resolve_path(data, match.group(1))
        return match.group(0) if value is MISSING or value is None else str(value)

    return _PLACEHOLDER.sub(_sub, text)


def render_config(config: Mapping[str, Any], data: Mapping[str, Any]) -> dict[str, Any]:
    """Render placeholders in every string value of *config* (recursively)."""
    rendered: dict[str, Any] = {}
    for key, value in config.items():
        if isinstance(value, str):
            rendered[key] = render_template(value, data)
        elif isinstance(value, Mapping):
            rendered[key] = render_config(value, data)
        else:
            rendered[key] = value
    return rendered


class ActionExecutor:
    """Dispatches typed actions to collaborators.

    Args:
        collaborators: Service per action type.  Types without a collaborator
            fail with a ``collaborator`` error when executed.
        delivery_client: Used for ``webhook`` actions.
        webhook_timeout_seconds: Deadline of a ``webhook`` action call.
    """

    def __init__(
        self,
        collaborators: Mapping[ActionType, Collaborator],
        delivery_client: WebhookDeliveryClient | None = None,
        webhook_timeout_seconds: float = 30,
    ) -> None:
        self._collaborators = dict(collaborators)
        self._delivery_client = delivery_client
        self._webhook_timeout = webhook_timeout_seconds

    async def execute_all(
        self,
        specs: Sequence[ActionSpec],
        context: ActionContext,
    ) -> list[ActionResult]:
        """Run *specs* one after another, collecting every outcome."""
        results: list[ActionResult] = []
        for index, spec in enumerate(specs):
            result = await self.execute(spec, context, index=index)
            results.append(result)
        return results

    async def execute(
        self,
        spec: ActionSpec,
        context: ActionContext,
        index: int = 0,
    ) -> ActionResult:
        """Validate and run one action.

        Args:
            spec: The stored action.
            context: The rule and triggering event.
            index: Position within the rule, used in error messages.

        Returns:
            The action's outcome; never raises for action failures.
        """
        try:
            action = parse_action(spec, prefix=f"actions[{index}]")
        except ConfigurationError as exc:
            logger.warning(
                "action_configuration_invalid",
                rule_id=context.rule_id,
                action_type=spec.type,
                reasons=exc.reasons,
            )
            return ActionResult(
                action_type=spec.type,
                success=False,
                error=str(exc),
                error_kind=ErrorKind.CONFIGURATION,
            )

        try:
            detail = await self._dispatch(action, context)
        except CollaboratorError as exc:
            logger.warning(
                "action_failed",
                rule_id=context.rule_id,
                action_type=spec.type,
                error=str(exc),
            )
            return ActionResult(
                action_type=spec.type,
                success=False,
                error=str(exc),
                error_kind=ErrorKind.COLLABORATOR,
            )
        except DeliveryError as exc:
            logger.warning(
                "webhook_action_failed",
                rule_id=context.rule_id,
                status_code=exc.status_code,
                error=str(exc),
            )
            return ActionResult(
                action_type=spec.type,
                success=False,
                error=str(exc),
                error_kind=ErrorKind.DELIVERY,
            )
        except Exception as exc:
            logger.exception("action_raised", rule_id=context.rule_id, action_type=spec.type)
            return ActionResult(
                action_type=spec.type,
                success=False,
                error=str(exc) or type(exc).__name__,
                error_kind=ErrorKind.COLLABORATOR,
            )

        return ActionResult(action_type=spec.type, success=True, detail=detail)

    async def _dispatch(self, action: Action, context: ActionContext) -> dict[str, Any] | None:
        if isinstance(action, WebhookAction):
            return await self._call_webhook(action, context)
        return await self._call_collaborator(action, context)

    async def _call_collaborator(self, action: Action, context: ActionContext) -> dict[str, Any] | None:
        action_type = ActionType(action.type)
        collaborator = self._collaborators.get(action_type)
        if collaborator is None:
            raise CollaboratorError(f"No collaborator registered for '{action_type}'")

        payload = context.event.payload
        config = render_config(action.config.model_dump(by_alias=True, exclude_none=True, mode="json"), payload)
        # Target entity ids come from the event unless the action pins them.
        for key in ("conversationId", "contactId"):
            if key not in config and payload.get(key) is not None:
                config[key] = payload[key]
        config["actionType"] = action_type.value

        result = await collaborator.execute(config)
        if not result.success:
            raise CollaboratorError(result.error or f"{action_type} failed")
        return result.detail

    async def _call_webhook(self, action: WebhookAction, context: ActionContext) -> dict[str, Any]:
        if self._delivery_client is None:
            raise CollaboratorError("No delivery client configured for webhook actions")

        cfg = action.config
        target = DeliveryTarget(
            url=render_template(cfg.url, context.event.payload),
            method=cfg.method,
            headers=dict(cfg.headers),
            retry_count=0,
            timeout_seconds=self._webhook_timeout,
        )
        outcome = await self._delivery_client.deliver(target, context.event)
        if not outcome.is_success:
            raise DeliveryError(outcome.error_message or "webhook call failed", status_code=outcome.response_status)
        return {"responseStatus": outcome.response_status, "responseTimeMs": outcome.response_time_ms}
