"""Registry of event types the platform emits and webhooks may subscribe to."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from crm_automation.domain.errors import ConfigurationError
from crm_automation.domain.models import utc_now

WILDCARD = "*"

AUTOMATION_COMPLETED = "automation.completed"

AVAILABLE_EVENTS: tuple[str, ...] = (
    "message.received",
    "message.sent",
    "message.delivered",
    "message.read",
    "message.failed",
    "conversation.created",
    "conversation.updated",
    "conversation.assigned",
    "conversation.resolved",
    "conversation.closed",
    "contact.created",
    "contact.updated",
    "tag.added",
    "tag.removed",
    "campaign.started",
    "campaign.completed",
    "campaign.failed",
    "flow.started",
    "flow.completed",
    "flow.failed",
    "automation.triggered",
    AUTOMATION_COMPLETED,
    "template.approved",
    "template.rejected",
    "schedule.triggered",
)

_REGISTERED = frozenset(AVAILABLE_EVENTS)


def get_available_events() -> list[str]:
    """Return every event type a webhook can subscribe to."""
    return list(AVAILABLE_EVENTS)


def is_registered(event_type: str) -> bool:
    return event_type in _REGISTERED


def validate_event_types(events: Iterable[str]) -> list[str]:
    """Check subscription event types against the registry.

    Duplicates are dropped while keeping the caller's order.

    Args:
        events: Requested event types; ``*`` subscribes to everything.

    Returns:
        The de-duplicated event list.

    Raises:
        ConfigurationError: If the list is empty or names unknown events.
    """
    unique = list(dict.fromkeys(events))
    if not unique:
        raise ConfigurationError("events: at least one event type is required")
    invalid = [e for e in unique if e != WILDCARD and e not in _REGISTERED]
    if invalid:
        raise ConfigurationError(
            f"events: invalid event types: {', '.join(invalid)}. "
            f"Available events: {', '.join(AVAILABLE_EVENTS)}"
        )
    return unique


def sample_payload(event_type: str) -> dict[str, Any]:
    """Build a representative payload for a test delivery of *event_type*."""
    timestamp = utc_now().isoformat()
    samples: dict[str, dict[str, Any]] = {
        "message.received": {
            "messageId": "msg_123456",
            "conversationId": "conv_123456",
            "contactId": "contact_123456",
            "direction": "inbound",
            "type": "text",
            "content": "Hello, this is a test message",
            "timestamp": timestamp,
        },
        "conversation.created": {
            "conversationId": "conv_123456",
            "contactId": "contact_123456",
            "status": "open",
            "timestamp": timestamp,
        },
        "campaign.completed": {
            "campaignId": "campaign_123456",
            "name": "Test Campaign",
            "totalRecipients": 100,
            "sentCount": 95,
            "deliveredCount": 90,
            "failedCount": 5,
            "timestamp": timestamp,
        },
        "flow.completed": {
            "flowId": "flow_123456",
            "executionId": "exec_123456",
            "contactId": "contact_123456",
            "status": "completed",
            "timestamp": timestamp,
        },
    }
    return samples.get(
        event_type,
        {
            "event": event_type,
            "message": "This is a test webhook payload",
            "timestamp": timestamp,
        },
    )
