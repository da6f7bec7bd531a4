"""Service lookups for route handlers.

Services are created once by ``initialize_services`` and stored on
``app.state.services``; handlers resolve them through these dependencies so
tests can swap in their own dict.
"""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import Depends, Request

from crm_automation.automation.store import RuleStore
from crm_automation.bus import EventBus
from crm_automation.webhooks.dispatcher import WebhookDispatcher
from crm_automation.webhooks.registry import WebhookRegistry


def _services(request: Request) -> dict[str, Any]:
    return request.app.state.services


def get_rule_store(request: Request) -> RuleStore:
    return _services(request)["rule_store"]


def get_webhook_registry(request: Request) -> WebhookRegistry:
    return _services(request)["webhook_registry"]


def get_dispatcher(request: Request) -> WebhookDispatcher:
    return _services(request)["dispatcher"]


def get_event_bus(request: Request) -> EventBus:
    return _services(request)["bus"]


RuleStoreDep = Annotated[RuleStore, Depends(get_rule_store)]
WebhookRegistryDep = Annotated[WebhookRegistry, Depends(get_webhook_registry)]
DispatcherDep = Annotated[WebhookDispatcher, Depends(get_dispatcher)]
EventBusDep = Annotated[EventBus, Depends(get_event_bus)]
