"""Webhook subscriptions, signed delivery, fan-out, logs and stats."""

from crm_automation.webhooks.delivery import (
    EVENT_HEADER,
    SIGNATURE_HEADER,
    WebhookDeliveryClient,
    build_body,
    compute_signature,
    verify_signature,
)
from crm_automation.webhooks.dispatcher import WebhookDispatcher
from crm_automation.webhooks.events import (
    AVAILABLE_EVENTS,
    get_available_events,
    sample_payload,
    validate_event_types,
)
from crm_automation.webhooks.registry import WebhookRegistry
from crm_automation.webhooks.schema import init_webhook_tables
from crm_automation.webhooks.secrets import SecretCipher, build_cipher, generate_secret

__all__ = [
    "AVAILABLE_EVENTS",
    "EVENT_HEADER",
    "SIGNATURE_HEADER",
    "SecretCipher",
    "WebhookDeliveryClient",
    "WebhookDispatcher",
    "WebhookRegistry",
    "build_body",
    "build_cipher",
    "compute_signature",
    "generate_secret",
    "get_available_events",
    "init_webhook_tables",
    "sample_payload",
    "validate_event_types",
    "verify_signature",
]
