"""
Error responses.

Every failure leaves the service as ``{"success": false, "error": ..., "code": ...}``
plus any context fields the exception carries.
"""

from typing import Any, Dict

import structlog
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..core.exceptions import MachineDataException, StorageError

logger = structlog.get_logger(__name__)

AVAILABLE_ENDPOINTS = [
    "GET /health",
    "POST /api/machine-data",
    "GET /api/machine-data",
    "GET /api/machine-data/:machineId",
    "GET /api/stats",
    "DELETE /api/cleanup",
]


def error_body(message: str, code: str, **context: Any) -> Dict[str, Any]:
    return {"success": False, "error": message, "code": code, **context}


async def handle_service_error(request: Request, exc: MachineDataException) -> JSONResponse:
    """Known failures: client errors log at warning, storage failures at error."""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "Request failed",
        error=str(exc),
        error_code=exc.error_code,
        status_code=exc.status_code,
        path=request.url.path,
        method=request.method,
    )

    collector = getattr(request.app.state, "metrics", None)
    if collector is not None:
        if isinstance(exc, StorageError):
            collector.record_storage_error()
        elif request.method == "POST":
            collector.record_rejection(exc.error_code)

    headers = {}
    if exc.status_code == 429 and "retryAfter" in exc.details:
        headers["Retry-After"] = str(exc.details["retryAfter"])

    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(str(exc), exc.error_code, **exc.details),
        headers=headers,
    )


async def handle_invalid_parameters(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed query or path parameters are a 400, not FastAPI's default 422."""
    errors = jsonable_encoder(
        [{key: error.get(key) for key in ("loc", "msg", "type")} for error in exc.errors()]
    )
    logger.warning(
        "Invalid request parameters",
        path=request.url.path,
        method=request.method,
        errors=errors,
    )
    return JSONResponse(
        status_code=400,
        content=error_body("Invalid request parameters", "validation_error", details=errors),
    )


async def handle_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == 404:
        return JSONResponse(
            status_code=404,
            content=error_body(
                "Endpoint not found",
                "endpoint_not_found",
                availableEndpoints=AVAILABLE_ENDPOINTS,
            ),
        )

    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(str(exc.detail), "http_error"),
        headers=getattr(exc, "headers", None),
    )


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    # Internals never reach the caller
    logger.error(
        "Unexpected exception occurred",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
        method=request.method,
        exc_info=True,
    )
    return JSONResponse(
        status_code=500,
        content=error_body("Something went wrong on our end", "internal_server_error"),
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(MachineDataException, handle_service_error)
    app.add_exception_handler(RequestValidationError, handle_invalid_parameters)
    app.add_exception_handler(StarletteHTTPException, handle_http_error)
    app.add_exception_handler(Exception, handle_unexpected_error)
