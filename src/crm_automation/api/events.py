"""Ingestion endpoint through which platform services publish domain events."""

from __future__ import annotations

from fastapi import APIRouter

from crm_automation.api.deps import EventBusDep
from crm_automation.domain.models import DomainEvent

router = APIRouter(tags=["events"])


@router.post("/events", status_code=202)
async def publish_event(event: DomainEvent, bus: EventBusDep) -> dict[str, str]:
    """Accept an event for background processing.

    Returns as soon as the event is scheduled; rule executions and webhook
    deliveries are visible through their own endpoints.
    """
    bus.publish(event)
    return {"status": "accepted", "eventId": event.id, "eventType": event.type}
