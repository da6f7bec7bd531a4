"""HTTP API: automation rules, webhook subscriptions and event ingestion."""

from fastapi import FastAPI

from crm_automation.api.automations import router as automations_router
from crm_automation.api.errors import register_error_handlers
from crm_automation.api.events import router as events_router
from crm_automation.api.webhooks import router as webhooks_router


def register_api(app: FastAPI) -> None:
    """Mount every router and the domain error handlers on *app*."""
    register_error_handlers(app)
    app.include_router(automations_router)
    app.include_router(webhooks_router)
    app.include_router(events_router)


__all__ = ["register_api"]
