"""Map domain exceptions onto HTTP responses.

- ``ConfigurationError`` and request validation failures -> 400
- ``NotFoundError`` -> 404
- ``InvalidTransitionError`` -> 409
"""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from crm_automation.domain.errors import ConfigurationError, InvalidTransitionError, NotFoundError


def _validation_reasons(exc: RequestValidationError) -> list[str]:
    reasons: list[str] = []
    for err in exc.errors():
        # Skip the leading "body"/"query" segment.
        loc = [str(part) for part in err["loc"][1:]]
        reasons.append(f"{'.'.join(loc) or err['loc'][0]}: {err['msg']}")
    return reasons


async def _configuration_error(request: Request, exc: ConfigurationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc), "reasons": exc.reasons})


async def _request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    reasons = _validation_reasons(exc)
    return JSONResponse(status_code=400, content={"detail": "; ".join(reasons), "reasons": reasons})


async def _not_found(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


async def _invalid_transition(request: Request, exc: InvalidTransitionError) -> JSONResponse:
    return JSONResponse(
        status_code=409,
        content={
            "detail": str(exc),
            "currentStatus": exc.current_status.value,
            "targetStatus": exc.target_status.value,
        },
    )


def register_error_handlers(app: FastAPI) -> None:
    """Install the domain exception handlers on *app*."""
    app.add_exception_handler(ConfigurationError, _configuration_error)
    app.add_exception_handler(RequestValidationError, _request_validation_error)
    app.add_exception_handler(NotFoundError, _not_found)
    app.add_exception_handler(InvalidTransitionError, _invalid_transition)
