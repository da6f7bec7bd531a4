"""Domain types, models, and errors for the automation core."""

from crm_automation.domain.errors import (
    AutomationCoreError,
    CollaboratorError,
    ConfigurationError,
    DeliveryError,
    EngineFault,
    InvalidTransitionError,
    NotFoundError,
    RuleNotFoundError,
    WebhookNotFoundError,
)
from crm_automation.domain.models import (
    ActionResult,
    ActionSpec,
    AutomationExecution,
    AutomationRule,
    Condition,
    ConditionGroup,
    CreatedWebhook,
    DeliveryOutcome,
    DeliveryTarget,
    DomainEvent,
    Page,
    RuleDraft,
    RuleUpdate,
    WebhookCreate,
    WebhookDeliveryLog,
    WebhookStats,
    WebhookSubscription,
    WebhookUpdate,
)
from crm_automation.domain.types import (
    TRIGGER_EVENT_TYPES,
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
    trigger_for_event,
)

__all__ = [
    "TRIGGER_EVENT_TYPES",
    "ActionResult",
    "ActionSpec",
    "ActionType",
    "AutomationCoreError",
    "AutomationExecution",
    "AutomationRule",
    "CollaboratorError",
    "Condition",
    "ConditionGroup",
    "ConditionLogic",
    "ConditionOperator",
    "ConfigurationError",
    "CreatedWebhook",
    "DeliveryError",
    "DeliveryOutcome",
    "DeliveryTarget",
    "DomainEvent",
    "EngineFault",
    "ErrorKind",
    "ExecutionOutcome",
    "HttpMethod",
    "InvalidTransitionError",
    "NotFoundError",
    "Page",
    "RuleDraft",
    "RuleNotFoundError",
    "RuleStatus",
    "RuleUpdate",
    "TagTarget",
    "TriggerType",
    "WebhookCreate",
    "WebhookDeliveryLog",
    "WebhookNotFoundError",
    "WebhookStats",
    "WebhookSubscription",
    "WebhookUpdate",
    "normalize_event_type",
    "trigger_for_event",
]
