"""Request-scoped logging context and the ``X-Request-ID`` header."""

from __future__ import annotations

import re
import time
from uuid import uuid4

from fastapi import Request
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from cashheros_api.core.logging import bind_request_context, request_context

REQUEST_ID_HEADER = "X-Request-ID"
_ACCEPTED_REQUEST_ID = re.compile(r"^[A-Za-z0-9._-]{8,64}$")


def _request_id_from(request: Request) -> str:
    supplied = request.headers.get(REQUEST_ID_HEADER, "")
    if _ACCEPTED_REQUEST_ID.match(supplied):
        return supplied
    return uuid4().hex


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Tag every log line of a request with its id and echo the id back to the caller."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = _request_id_from(request)
        started = time.perf_counter()
        with request_context(request_id=request_id, method=request.method, path=request.url.path):
            response = await call_next(request)
            logger.info(
                "Request completed",
                status_code=response.status_code,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


async def bind_path_identifiers(request: Request) -> None:
    """Router dependency: copy ``*_id`` path parameters (coupon, store, transaction) into the log context."""

    bind_request_context(**{key: value for key, value in request.path_params.items() if key.endswith("_id")})


__all__ = ["REQUEST_ID_HEADER", "RequestContextMiddleware", "bind_path_identifiers"]
