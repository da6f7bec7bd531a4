"""Pydantic v2 models for rules, executions, events, and webhook deliveries.

All models serialize with camelCase aliases to match the console's JSON
contract and accept snake_case field names as well.
"""

from __future__ import annotations

import json
import uuid
from datetime import UTC, datetime
from typing import Annotated, Any, Generic, Literal, TypeVar

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    StringConstraints,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from crm_automation.domain.types import (
    ActionType,
    ConditionLogic,
    ConditionOperator,
    ErrorKind,
    ExecutionOutcome,
    HttpMethod,
    RuleStatus,
    TagTarget,
    TriggerType,
    normalize_event_type,
)

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]

T = TypeVar("T")


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(tz=UTC)


def new_id() -> str:
    """Return a fresh random identifier."""
    return uuid.uuid4().hex


class CamelModel(BaseModel):
    """Base model with camelCase aliases, accepting either naming on input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FrozenCamelModel(CamelModel):
    """Immutable variant used for snapshots handed to the engine and dispatcher."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class DomainEvent(FrozenCamelModel):
    """An event emitted by the platform, e.g. ``message.received``.

    Trigger-style aliases such as ``tag_added`` are normalized to their
    dotted event type.
    """

    id: str = Field(default_factory=new_id)
    type: NonEmptyStr
    payload: dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=utc_now)

    @field_validator("type")
    @classmethod
    def canonical_type(cls, v: str) -> str:
        """Normalize trigger aliases to dotted event types."""
        return normalize_event_type(v)


# ---------------------------------------------------------------------------
# Conditions
# ---------------------------------------------------------------------------


class Condition(FrozenCamelModel):
    """A single field/operator/value comparison against the event payload."""

    field: NonEmptyStr
    operator: ConditionOperator
    value: Any = None


class ConditionGroup(FrozenCamelModel):
    """Ordered conditions combined with AND or OR logic."""

    logic: ConditionLogic = ConditionLogic.AND
    conditions: list[Condition] = Field(default_factory=list)

    @field_validator("logic", mode="before")
    @classmethod
    def upper_logic(cls, v: object) -> object:
        if isinstance(v, str):
            return v.upper()
        return v


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


class ActionSpec(FrozenCamelModel):
    """An action as stored: a type tag plus an untyped config map.

    ``type`` is kept as a plain string so rows written before a schema change
    still load; they are rejected when parsed for execution instead.
    """

    type: NonEmptyStr
    config: dict[str, Any] = Field(default_factory=dict)


class SendMessageConfig(FrozenCamelModel):
    message: NonEmptyStr
    conversation_id: str | None = None


class AssignConversationConfig(FrozenCamelModel):
    agent_id: NonEmptyStr
    conversation_id: str | None = None


class TagConfig(FrozenCamelModel):
    tag_name: NonEmptyStr
    target: TagTarget = TagTarget.CONVERSATION
    conversation_id: str | None = None
    contact_id: str | None = None


class UpdateContactConfig(FrozenCamelModel):
    field_name: NonEmptyStr
    field_value: Any
    contact_id: str | None = None

    @field_validator("field_value")
    @classmethod
    def value_required(cls, v: Any) -> Any:
        if v is None or (isinstance(v, str) and not v.strip()):
            raise ValueError("fieldValue must not be empty")
        return v


class TriggerFlowConfig(FrozenCamelModel):
    flow_id: NonEmptyStr


class SendEmailConfig(FrozenCamelModel):
    to: NonEmptyStr
    subject: NonEmptyStr
    body: NonEmptyStr


class WebhookActionConfig(FrozenCamelModel):
    """Config of a one-shot webhook action.

    The console's action form submits ``headers`` as a JSON text area, so a
    JSON object string is accepted as well as a mapping.
    """

    url: NonEmptyStr
    method: HttpMethod = HttpMethod.POST
    headers: dict[str, str] = Field(default_factory=dict)

    @field_validator("url")
    @classmethod
    def http_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("url must start with http:// or https://")
        return v

    @field_validator("method", mode="before")
    @classmethod
    def upper_method(cls, v: object) -> object:
        if isinstance(v, str):
            return v.upper() or HttpMethod.POST
        return v

    @field_validator("headers", mode="before")
    @classmethod
    def parse_header_text(cls, v: object) -> object:
        if v is None or v == "":
            return {}
        if isinstance(v, str):
            try:
                parsed = json.loads(v)
            except json.JSONDecodeError as exc:
                raise ValueError("headers must be a JSON object") from exc
            if not isinstance(parsed, dict):
                raise ValueError("headers must be a JSON object")
            return {str(k): str(val) for k, val in parsed.items()}
        return v


class SendMessageAction(FrozenCamelModel):
    type: Literal["send_message"]
    config: SendMessageConfig


class AssignConversationAction(FrozenCamelModel):
    type: Literal["assign_conversation"]
    config: AssignConversationConfig


class AddTagAction(FrozenCamelModel):
    type: Literal["add_tag"]
    config: TagConfig


class RemoveTagAction(FrozenCamelModel):
    type: Literal["remove_tag"]
    config: TagConfig


class UpdateContactAction(FrozenCamelModel):
    type: Literal["update_contact"]
    config: UpdateContactConfig


class TriggerFlowAction(FrozenCamelModel):
    type: Literal["trigger_flow"]
    config: TriggerFlowConfig


class SendEmailAction(FrozenCamelModel):
    type: Literal["send_email"]
    config: SendEmailConfig


class WebhookAction(FrozenCamelModel):
    type: Literal["webhook"]
    config: WebhookActionConfig


Action = Annotated[
    SendMessageAction
    | AssignConversationAction
    | AddTagAction
    | RemoveTagAction
    | UpdateContactAction
    | TriggerFlowAction
    | SendEmailAction
    | WebhookAction,
    Field(discriminator="type"),
]


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


def _lift_conditions(data: Any) -> Any:
    """Accept the console's flat ``conditions`` list as a condition group."""
    if isinstance(data, dict) and "conditions" in data:
        if "conditionGroup" not in data and "condition_group" not in data:
            data = dict(data)
            data["conditionGroup"] = {
                "logic": data.pop("conditionLogic", ConditionLogic.AND),
                "conditions": data.pop("conditions") or [],
            }
    return data


class RuleDraft(CamelModel):
    """Input for creating an automation rule."""

    name: NonEmptyStr
    description: str | None = None
    trigger_type: TriggerType
    trigger_config: dict[str, Any] = Field(default_factory=dict)
    condition_group: ConditionGroup = Field(default_factory=ConditionGroup)
    actions: list[ActionSpec] = Field(default_factory=list)
    status: RuleStatus = RuleStatus.DRAFT

    @model_validator(mode="before")
    @classmethod
    def flat_conditions(cls, data: Any) -> Any:
        return _lift_conditions(data)


class RuleUpdate(CamelModel):
    """Partial update of an automation rule; unset fields are left unchanged."""

    name: NonEmptyStr | None = None
    description: str | None = None
    trigger_type: TriggerType | None = None
    trigger_config: dict[str, Any] | None = None
    condition_group: ConditionGroup | None = None
    actions: list[ActionSpec] | None = None
    status: RuleStatus | None = None

    @model_validator(mode="before")
    @classmethod
    def flat_conditions(cls, data: Any) -> Any:
        return _lift_conditions(data)


class AutomationRule(FrozenCamelModel):
    """A stored trigger -> conditions -> actions rule with its counters."""

    id: str
    name: str
    description: str | None = None
    trigger_type: TriggerType
    trigger_config: dict[str, Any] = Field(default_factory=dict)
    condition_group: ConditionGroup = Field(default_factory=ConditionGroup)
    actions: list[ActionSpec] = Field(default_factory=list)
    status: RuleStatus = RuleStatus.DRAFT
    execution_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    last_executed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class ActionResult(FrozenCamelModel):
    """Outcome of one action within a rule execution."""

    action_type: str
    success: bool
    error: str | None = None
    error_kind: ErrorKind | None = None
    detail: dict[str, Any] | None = None


class AutomationExecution(FrozenCamelModel):
    """Append-only record of one rule matching one event."""

    id: str = Field(default_factory=new_id)
    rule_id: str
    event: DomainEvent
    action_results: list[ActionResult] = Field(default_factory=list)
    outcome: ExecutionOutcome
    error_message: str | None = None
    execution_time_ms: int = 0
    created_at: datetime = Field(default_factory=utc_now)


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------


def _check_http_url(v: str) -> str:
    if not v.startswith(("http://", "https://")):
        raise ValueError("url must start with http:// or https://")
    return v


class WebhookCreate(CamelModel):
    """Input for registering a webhook subscription."""

    name: NonEmptyStr
    url: NonEmptyStr
    events: list[NonEmptyStr] = Field(min_length=1)
    secret: str | None = None
    method: HttpMethod = HttpMethod.POST
    retry_count: int = Field(default=3, ge=0, le=10)
    timeout_seconds: int = Field(default=30, ge=5, le=120)
    is_active: bool = True

    @field_validator("url")
    @classmethod
    def http_url(cls, v: str) -> str:
        return _check_http_url(v)


class WebhookUpdate(CamelModel):
    """Partial update of a webhook subscription. The secret is not updatable."""

    name: NonEmptyStr | None = None
    url: NonEmptyStr | None = None
    events: list[NonEmptyStr] | None = Field(default=None, min_length=1)
    method: HttpMethod | None = None
    retry_count: int | None = Field(default=None, ge=0, le=10)
    timeout_seconds: int | None = Field(default=None, ge=5, le=120)
    is_active: bool | None = None

    @field_validator("url")
    @classmethod
    def http_url(cls, v: str | None) -> str | None:
        return None if v is None else _check_http_url(v)


class WebhookSubscription(FrozenCamelModel):
    """Read view of a webhook subscription. Never carries the secret."""

    id: str
    name: str
    url: str
    events: list[str]
    method: HttpMethod = HttpMethod.POST
    retry_count: int
    timeout_seconds: int
    is_active: bool
    created_at: datetime
    updated_at: datetime
    last_triggered_at: datetime | None = None

    def matches(self, event_type: str) -> bool:
        """Return True if this subscription listens to *event_type*."""
        return "*" in self.events or event_type in self.events


class CreatedWebhook(CamelModel):
    """Creation / regeneration response: the only place the plaintext secret appears."""

    webhook: WebhookSubscription
    secret: str


class DeliveryTarget(FrozenCamelModel):
    """Everything the delivery client needs to call one endpoint."""

    url: str
    method: HttpMethod = HttpMethod.POST
    headers: dict[str, str] = Field(default_factory=dict)
    secret: SecretStr | None = None
    retry_count: int = Field(default=0, ge=0, le=10)
    timeout_seconds: float = Field(default=30, gt=0)
    webhook_id: str | None = None


class DeliveryOutcome(FrozenCamelModel):
    """Terminal result of one delivery attempt sequence."""

    attempt_count: int = Field(ge=1)
    is_success: bool
    response_status: int | None = None
    response_time_ms: int = 0
    response_body: str | None = None
    error_message: str | None = None


class WebhookDeliveryLog(FrozenCamelModel):
    """Append-only record of one delivery (all retries folded into one row)."""

    id: int
    webhook_id: str
    event_type: str
    payload: dict[str, Any]
    attempt_count: int
    is_success: bool
    response_status: int | None = None
    response_time_ms: int = 0
    response_body: str | None = None
    error_message: str | None = None
    created_at: datetime


class WebhookStats(FrozenCamelModel):
    """Rolling delivery aggregates for a webhook, derived from its logs."""

    total_deliveries: int = 0
    successful_deliveries: int = 0
    failed_deliveries: int = 0
    avg_response_time_ms: int = 0
    success_rate: float = 0.0
    last_triggered_at: datetime | None = None


class Page(CamelModel, Generic[T]):
    """One page of a paginated listing."""

    data: list[T]
    total: int
    page: int
    limit: int
    has_more: bool


__all__ = [
    "Action",
    "ActionResult",
    "ActionSpec",
    "ActionType",
    "AddTagAction",
    "AssignConversationAction",
    "AssignConversationConfig",
    "AutomationExecution",
    "AutomationRule",
    "Condition",
    "ConditionGroup",
    "CreatedWebhook",
    "DeliveryOutcome",
    "DeliveryTarget",
    "DomainEvent",
    "Page",
    "RemoveTagAction",
    "RuleDraft",
    "RuleUpdate",
    "SendEmailAction",
    "SendEmailConfig",
    "SendMessageAction",
    "SendMessageConfig",
    "TagConfig",
    "TriggerFlowAction",
    "TriggerFlowConfig",
    "UpdateContactAction",
    "UpdateContactConfig",
    "WebhookAction",
    "WebhookActionConfig",
    "WebhookCreate",
    "WebhookDeliveryLog",
    "WebhookStats",
    "WebhookSubscription",
    "WebhookUpdate",
    "new_id",
    "utc_now",
]
