"""Liveness and readiness probes.

``/ready`` answers 200 only when every registered check passes: the SQLite
connection responds to a query and the webhook delivery workers are alive.
Otherwise it answers 503 and names the failing checks.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = structlog.get_logger()

ReadinessCheck = Callable[[dict[str, Any]], Awaitable[bool]]


async def database_responds(services: dict[str, Any]) -> bool:
    conn = services.get("db_conn")
    if conn is None:
        return False
    try:
        await asyncio.to_thread(conn.execute, "SELECT 1")
    except Exception as exc:
        logger.warning("readiness_database_failed", error=str(exc))
        return False
    return True


async def delivery_pool_running(services: dict[str, Any]) -> bool:
    dispatcher = services.get("dispatcher")
    return dispatcher is not None and dispatcher.running


READINESS_CHECKS: dict[str, ReadinessCheck] = {
    "database": database_responds,
    "delivery_pool": delivery_pool_running,
}


def register_health_routes(app: FastAPI) -> None:
    """Register ``/health`` and ``/ready`` on *app*."""

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "healthy"}

    @app.get("/ready")
    async def ready(request: Request) -> JSONResponse:
        services: dict[str, Any] = request.app.state.services
        checks = {
            name: "ok" if await check(services) else "fail"
            for name, check in READINESS_CHECKS.items()
        }
        is_ready = all(result == "ok" for result in checks.values())
        return JSONResponse(
            content={"status": "ready" if is_ready else "not_ready", "checks": checks},
            status_code=200 if is_ready else 503,
        )
