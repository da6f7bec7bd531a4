"""Request tracing middleware.

Each request gets an ID, taken from the client's ``X-Request-ID`` header or
generated, which is echoed on the response and bound into structlog
contextvars.  API requests are logged once on completion with their status
and duration; probe and metrics endpoints are not.
"""

from __future__ import annotations

import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-ID"
SERVICE_NAME = "crm-automation"
UNLOGGED_PATHS = frozenset({"/health", "/ready", "/metrics"})

logger = structlog.get_logger()


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Bind a request ID for the request and log its completion."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id, service=SERVICE_NAME)

        started = time.monotonic()
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id

        if request.url.path not in UNLOGGED_PATHS:
            logger.info(
                "http_request",
                method=request.method,
                path=request.url.path,
                status=response.status_code,
                duration_ms=round((time.monotonic() - started) * 1000),
            )
        return response
