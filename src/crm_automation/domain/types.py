"""Domain enumerations for automation rules, actions, and webhook deliveries."""

from enum import StrEnum


class TriggerType(StrEnum):
    """Event families an automation rule can be bound to."""

    MESSAGE_RECEIVED = "message_received"
    CONVERSATION_CREATED = "conversation_created"
    CONVERSATION_ASSIGNED = "conversation_assigned"
    TAG_ADDED = "tag_added"
    CONTACT_CREATED = "contact_created"
    CONTACT_UPDATED = "contact_updated"
    SCHEDULED = "scheduled"


class RuleStatus(StrEnum):
    """Lifecycle states of an automation rule."""

    DRAFT = "draft"
    ACTIVE = "active"
    INACTIVE = "inactive"


class ConditionLogic(StrEnum):
    """How the conditions of a group are combined."""

    AND = "AND"
    OR = "OR"


class ConditionOperator(StrEnum):
    """Comparison operators offered by the console's condition builder."""

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"


class ActionType(StrEnum):
    """Side effects an automation rule can perform."""

    SEND_MESSAGE = "send_message"
    ASSIGN_CONVERSATION = "assign_conversation"
    ADD_TAG = "add_tag"
    REMOVE_TAG = "remove_tag"
    UPDATE_CONTACT = "update_contact"
    TRIGGER_FLOW = "trigger_flow"
    SEND_EMAIL = "send_email"
    WEBHOOK = "webhook"


class TagTarget(StrEnum):
    """Entity a tag action applies to."""

    CONVERSATION = "conversation"
    CONTACT = "contact"


class HttpMethod(StrEnum):
    """HTTP methods allowed for outbound callbacks."""

    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"


class ExecutionOutcome(StrEnum):
    """Overall result of one rule execution."""

    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class ErrorKind(StrEnum):
    """Classification of a failed action.

    Rule-level faults are not action failures; they are reported on the
    execution's ``error_message``.
    """

    CONFIGURATION = "configuration"
    COLLABORATOR = "collaborator"
    DELIVERY = "delivery"


# Trigger type -> canonical dotted event type emitted by the platform.
TRIGGER_EVENT_TYPES: dict[TriggerType, str] = {
    TriggerType.MESSAGE_RECEIVED: "message.received",
    TriggerType.CONVERSATION_CREATED: "conversation.created",
    TriggerType.CONVERSATION_ASSIGNED: "conversation.assigned",
    TriggerType.TAG_ADDED: "tag.added",
    TriggerType.CONTACT_CREATED: "contact.created",
    TriggerType.CONTACT_UPDATED: "contact.updated",
    TriggerType.SCHEDULED: "schedule.triggered",
}

EVENT_TRIGGER_TYPES: dict[str, TriggerType] = {v: k for k, v in TRIGGER_EVENT_TYPES.items()}


def normalize_event_type(event_type: str) -> str:
    """Map a trigger-style alias (``tag_added``) to its dotted event type.

    Strings that are not trigger aliases are returned unchanged.

    Args:
        event_type: Raw event type from a producer.

    Returns:
        The canonical dotted event type.
    """
    try:
        return TRIGGER_EVENT_TYPES[TriggerType(event_type)]
    except ValueError:
        return event_type


def trigger_for_event(event_type: str) -> TriggerType | None:
    """Return the trigger type fired by *event_type*, or ``None``."""
    return EVENT_TRIGGER_TYPES.get(normalize_event_type(event_type))
