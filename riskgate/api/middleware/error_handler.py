"""Exception handling: domain errors map to fixed status codes."""

import structlog
from fastapi import Request
from fastapi.responses import JSONResponse

from riskgate.shared.errors import (
    ConcurrencyError,
    ConfigurationError,
    DependencyUnavailable,
    NotFoundError,
    RiskGateError,
    ValidationError,
)

logger = structlog.get_logger()

_STATUS_CODES: list[tuple[type[RiskGateError], int]] = [
    (ValidationError, 400),
    (NotFoundError, 404),
    (ConcurrencyError, 409),
    (ConfigurationError, 500),
    (DependencyUnavailable, 503),
]


def _error_body(error: str, message: str, request_id: str) -> dict:
    return {"error": error, "message": message, "request_id": request_id}


async def domain_exception_handler(request: Request, exc: RiskGateError) -> JSONResponse:
    request_id = getattr(request.state, "request_id", "unknown")
    status_code = next((code for cls, code in _STATUS_CODES if isinstance(exc, cls)), 500)

    if status_code >= 500:
        logger.error("domain_error", error_code=exc.code, error=str(exc), status_code=status_code)
    else:
        logger.warning("domain_error", error_code=exc.code, error=str(exc), status_code=status_code)

    return JSONResponse(
        status_code=status_code,
        content=_error_body(exc.code, str(exc), request_id),
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = getattr(request.state, "request_id", "unknown")

    if isinstance(exc, ValueError):
        logger.warning("bad_request", error=str(exc))
        body = _error_body("bad_request", str(exc), request_id)
        return JSONResponse(status_code=400, content=body)

    if isinstance(exc, PermissionError):
        logger.warning("forbidden", error=str(exc))
        return JSONResponse(status_code=403, content=_error_body("forbidden", str(exc), request_id))

    if isinstance(exc, LookupError):
        logger.warning("not_found", error=str(exc))
        return JSONResponse(status_code=404, content=_error_body("not_found", str(exc), request_id))

    logger.exception("unhandled_exception", error=str(exc))
    return JSONResponse(
        status_code=500,
        content=_error_body(
            "internal_server_error", "An unexpected error occurred", request_id
        ),
    )
