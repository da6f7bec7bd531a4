"""Application entry point: the automation core behind a FastAPI server.

Configures:
- **structlog** with JSON rendering (production) or colored console (development)
- **SQLite** storage shared by the rule store and the webhook registry
- **Webhook delivery** client and worker pool, started and drained by the lifespan
- **Event bus** wiring the automation engine and the webhook dispatcher together
- **Observability**: request IDs, Prometheus metrics, optional Sentry
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator, Mapping
from contextlib import asynccontextmanager
from typing import Any

import httpx
import structlog
import uvicorn
from fastapi import FastAPI

from crm_automation.api import register_api
from crm_automation.automation.actions import ActionExecutor, Collaborator
from crm_automation.automation.collaborators import default_collaborators
from crm_automation.automation.engine import AutomationEngine
from crm_automation.automation.store import RuleStore
from crm_automation.bus import EventBus
from crm_automation.config import Settings, get_settings, validate_credentials
from crm_automation.domain.types import ActionType
from crm_automation.health import register_health_routes
from crm_automation.observability.metrics import setup_metrics
from crm_automation.observability.middleware import SERVICE_NAME, RequestIdMiddleware
from crm_automation.observability.sentry import get_sentry_processor, init_sentry
from crm_automation.storage import close_database, open_database
from crm_automation.webhooks.delivery import WebhookDeliveryClient
from crm_automation.webhooks.dispatcher import WebhookDispatcher
from crm_automation.webhooks.registry import WebhookRegistry
from crm_automation.webhooks.secrets import build_cipher

logger = structlog.get_logger()


def configure_logging(production: bool = False, sentry: bool = False) -> None:
    """Configure structlog for production (JSON) or development (console).

    Production mode: JSON rendering at INFO level.
    Development mode: colored console rendering at DEBUG level.

    Args:
        production: Enable production mode if ``True``.
        sentry: Forward ERROR events to Sentry.
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
    ]
    if sentry:
        shared_processors.append(get_sentry_processor())
    shared_processors += [
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if production:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
        log_level = logging.INFO
    else:
        renderer = structlog.dev.ConsoleRenderer()
        log_level = logging.DEBUG

    structlog.configure(
        processors=[*shared_processors, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.bind_contextvars(service=SERVICE_NAME)


def initialize_services(
    settings: Settings | None = None,
    *,
    collaborators: Mapping[ActionType, Collaborator] | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> dict[str, Any]:
    """Set up all shared services for the application.

    Opens the database, builds the secret cipher, rule store, webhook
    registry, delivery client, dispatcher, action executor, engine and event
    bus, and wires the engine's completion callback into the bus.

    Args:
        settings: Application settings.  If ``None``, ``get_settings()`` is used.
        collaborators: Services performing non-webhook actions.  Logging
            collaborators are used for any type not supplied.
        http_client: Client for webhook calls (tests pass a mock transport).

    Returns:
        A dict of initialized service instances keyed by name.
    """
    if settings is None:
        settings = get_settings()

    services: dict[str, Any] = {"settings": settings}

    conn = open_database(settings.database_path)
    services["db_conn"] = conn

    cipher = build_cipher(settings.secret_encryption_key.get_secret_value())
    rule_store = RuleStore(conn)
    registry = WebhookRegistry(conn, cipher)
    services["rule_store"] = rule_store
    services["webhook_registry"] = registry

    delivery_client = WebhookDeliveryClient(
        http_client,
        backoff_base=settings.webhook_backoff_base_seconds,
        backoff_max=settings.webhook_backoff_max_seconds,
        response_body_limit=settings.webhook_response_body_limit,
        user_agent=settings.webhook_user_agent,
    )
    services["delivery_client"] = delivery_client

    dispatcher = WebhookDispatcher(
        registry,
        delivery_client,
        workers=settings.delivery_workers,
        queue_size=settings.delivery_queue_size,
    )
    services["dispatcher"] = dispatcher

    wired = default_collaborators()
    wired.update(collaborators or {})
    executor = ActionExecutor(wired, delivery_client=delivery_client)

    bus = EventBus(dispatcher)
    engine = AutomationEngine(rule_store, executor, on_execution=bus.on_execution)
    bus.attach_engine(engine)
    services["engine"] = engine
    services["bus"] = bus

    logger.info(
        "services_initialized",
        database=str(settings.database_path),
        delivery_workers=settings.delivery_workers,
        collaborators=sorted(t.value for t in wired),
    )
    return services


async def shutdown_services(services: dict[str, Any]) -> None:
    """Drain pending events and deliveries, then release resources."""
    bus: EventBus | None = services.get("bus")
    if bus is not None:
        await bus.drain()

    dispatcher: WebhookDispatcher | None = services.get("dispatcher")
    if dispatcher is not None:
        await dispatcher.aclose()

    delivery_client: WebhookDeliveryClient | None = services.get("delivery_client")
    if delivery_client is not None:
        await delivery_client.aclose()

    conn = services.pop("db_conn", None)
    if conn is not None:
        close_database(conn)
        logger.info("database_closed")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Start the delivery pool on startup; drain and close everything on shutdown.

    Args:
        app: The FastAPI application instance.

    Yields:
        Control to the application.
    """
    services = app.state.services
    services["dispatcher"].start()
    logger.info("application_starting")
    yield
    await shutdown_services(services)
    logger.info("application_stopped")


def create_app(services: dict[str, Any]) -> FastAPI:
    """Create the FastAPI app with lifespan, API routers and observability.

    Args:
        services: The initialized services dict from ``initialize_services``.

    Returns:
        The configured FastAPI application.
    """
    fastapi_app = FastAPI(title="CRM Automation Core", lifespan=lifespan)
    fastapi_app.state.services = services
    fastapi_app.state.settings = services.get("settings") or get_settings()
    fastapi_app.add_middleware(RequestIdMiddleware)
    register_api(fastapi_app)
    register_health_routes(fastapi_app)
    setup_metrics(fastapi_app)
    return fastapi_app


async def main() -> None:
    """Main entry point: configure, build services and serve the API.

    1. Configure logging and Sentry
    2. Validate credentials
    3. Initialize services
    4. Run uvicorn until shutdown
    """
    settings = get_settings()
    configure_logging(production=settings.production, sentry=bool(settings.sentry_dsn))
    init_sentry(settings.sentry_dsn, environment="production" if settings.production else "development")
    logger.info("application_booting")

    validate_credentials(settings)

    services = initialize_services(settings)
    fastapi_app = create_app(services)

    config = uvicorn.Config(
        fastapi_app,
        host="0.0.0.0",
        port=settings.api_port,
        log_level="info",
    )
    server = uvicorn.Server(config)
    try:
        await server.serve()
    finally:
        if "db_conn" in services:
            await shutdown_services(services)


def run() -> None:
    """Console-script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
