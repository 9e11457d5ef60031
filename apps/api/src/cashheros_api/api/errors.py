"""Map service errors onto the ``{success: false, error}`` response envelope."""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.exceptions import HTTPException as StarletteHTTPException

from cashheros_api.core.errors import AccountLockedError, ServiceError, ValidationFailure

_HTTP_IDENTIFIERS = {
    400: "ValidationError",
    401: "Unauthorized",
    403: "Forbidden",
    404: "NotFound",
    405: "MethodNotAllowed",
}

# Request field names as the API spells them.
_FIELD_ALIASES = {
    "store_id": "store",
    "expiry_date": "expiryDate",
    "usage_limit": "usageLimit",
}


def _envelope(status_code: int, identifier: str, *, field: str | None = None, headers: dict | None = None) -> JSONResponse:
    body: dict[str, Any] = {"success": False, "error": identifier}
    if field:
        body["field"] = field
    return JSONResponse(status_code=status_code, content=body, headers=headers)


async def _service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.opt(exception=exc).error(
            "Request failed",
            path=request.url.path,
            method=request.method,
            error=exc.identifier,
        )
    field = exc.field if isinstance(exc, ValidationFailure) else None
    headers = None
    if isinstance(exc, AccountLockedError):
        headers = {"Retry-After": str(exc.retry_after_seconds)}
    return _envelope(exc.status_code, exc.identifier, field=field, headers=headers)


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    field = None
    if errors:
        location = [str(part) for part in errors[0].get("loc", ()) if part not in ("body", "query", "path")]
        if location:
            field = _FIELD_ALIASES.get(location[-1], location[-1])
    logger.info("Request validation failed", path=request.url.path, field=field)
    return _envelope(400, "ValidationError", field=field)


async def _http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    identifier = _HTTP_IDENTIFIERS.get(exc.status_code, "Unexpected" if exc.status_code >= 500 else "Error")
    return _envelope(exc.status_code, identifier, headers=getattr(exc, "headers", None))


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.opt(exception=exc).error("Unhandled error", path=request.url.path, method=request.method)
    return _envelope(500, "Unexpected")


def install_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ServiceError, _service_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, _http_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
