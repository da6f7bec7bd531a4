"""Webhook subscription endpoints, test deliveries, logs and stats."""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Query, Response

from crm_automation.api.deps import DispatcherDep, WebhookRegistryDep
from crm_automation.domain.models import (
    CamelModel,
    CreatedWebhook,
    NonEmptyStr,
    Page,
    WebhookCreate,
    WebhookDeliveryLog,
    WebhookStats,
    WebhookSubscription,
    WebhookUpdate,
)
from crm_automation.webhooks.events import get_available_events
from crm_automation.webhooks.registry import DEFAULT_LOG_LIMIT

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


class WebhookTestRequest(CamelModel):
    event_type: NonEmptyStr
    payload: dict[str, Any] | None = None


class WebhookTestResult(CamelModel):
    event_type: str
    payload: dict[str, Any]
    log: WebhookDeliveryLog | None = None


@router.post("", status_code=201)
def create_webhook(data: WebhookCreate, registry: WebhookRegistryDep) -> CreatedWebhook:
    return registry.create(data)


@router.get("")
def list_webhooks(
    registry: WebhookRegistryDep,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    is_active: Annotated[bool | None, Query(alias="isActive")] = None,
) -> Page[WebhookSubscription]:
    return registry.list_webhooks(page=page, limit=limit, is_active=is_active)


@router.get("/events")
def available_events() -> dict[str, list[str]]:
    return {"events": get_available_events()}


@router.get("/{webhook_id}")
def get_webhook(webhook_id: str, registry: WebhookRegistryDep) -> WebhookSubscription:
    return registry.get(webhook_id)


@router.patch("/{webhook_id}")
def update_webhook(webhook_id: str, changes: WebhookUpdate, registry: WebhookRegistryDep) -> WebhookSubscription:
    return registry.update(webhook_id, changes)


@router.delete("/{webhook_id}", status_code=204)
def delete_webhook(webhook_id: str, registry: WebhookRegistryDep) -> Response:
    registry.delete(webhook_id)
    return Response(status_code=204)


@router.post("/{webhook_id}/regenerate-secret")
def regenerate_secret(webhook_id: str, registry: WebhookRegistryDep) -> CreatedWebhook:
    return registry.regenerate_secret(webhook_id)


@router.post("/{webhook_id}/test")
async def send_test_delivery(
    webhook_id: str,
    body: WebhookTestRequest,
    dispatcher: DispatcherDep,
) -> WebhookTestResult:
    """Deliver a sample (or caller-supplied) payload and return its log."""
    log = await dispatcher.send_test(webhook_id, body.event_type, body.payload)
    return WebhookTestResult(
        event_type=body.event_type,
        payload=log.payload if log is not None else body.payload or {},
        log=log,
    )


@router.get("/{webhook_id}/logs")
def get_logs(
    webhook_id: str,
    registry: WebhookRegistryDep,
    limit: Annotated[int, Query(ge=1, le=500)] = DEFAULT_LOG_LIMIT,
) -> list[WebhookDeliveryLog]:
    return registry.get_logs(webhook_id, limit=limit)


@router.get("/{webhook_id}/stats")
def get_stats(webhook_id: str, registry: WebhookRegistryDep) -> WebhookStats:
    return registry.get_stats(webhook_id)
