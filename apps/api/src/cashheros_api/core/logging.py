"""Structured JSON logging with per-request context.

The gateway opens a request context for every HTTP request. Anything bound
into it (request id, the authenticated user, coupon or transaction ids taken
from the path) is attached to every log line emitted while that request is
being served, including lines from the engines, which never see the request.
"""

from __future__ import annotations

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from logging import LogRecord
from typing import Any, Dict, Iterator

from loguru import logger
from opentelemetry import trace

_STANDARD_LOG_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}

_request_context: ContextVar[Dict[str, Any] | None] = ContextVar("cashheros_request_context", default=None)


@contextmanager
def request_context(**fields: Any) -> Iterator[Dict[str, Any]]:
    """Scope a fresh logging context to the enclosed block."""

    context = {key: value for key, value in fields.items() if value is not None}
    token = _request_context.set(context)
    try:
        yield context
    finally:
        _request_context.reset(token)


def bind_request_context(**fields: Any) -> None:
    """Add fields to the current request context; a no-op outside one."""

    context = _request_context.get()
    if context is None:
        return
    context.update({key: str(value) for key, value in fields.items() if value is not None})


def _attach_request_context(record: Dict[str, Any]) -> None:
    context = _request_context.get()
    if not context:
        return
    extra = record["extra"]
    for key, value in context.items():
        # Fields passed at the call site win over request-wide ones.
        extra.setdefault(key, value)


class InterceptHandler(logging.Handler):
    """Route stdlib logging (uvicorn, sqlalchemy, alembic) into Loguru."""

    def emit(self, record: LogRecord) -> None:  # pragma: no cover - bridging glue
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        extra = {key: value for key, value in vars(record).items() if key not in _STANDARD_LOG_RECORD_ATTRS}
        message = record.getMessage().replace("{", "{{").replace("}", "}}")

        bound_logger = logger.bind(**extra) if extra else logger
        bound_logger.opt(depth=6, exception=record.exc_info).log(level, message)


def _render(message: "logger.Message", metadata: Dict[str, Any]) -> None:
    record = message.record
    payload: Dict[str, Any] = {
        "timestamp": record["time"].isoformat(),
        "level": record["level"].name.lower(),
        "message": record["message"],
        "logger": record["name"],
        **metadata,
    }

    span_context = trace.get_current_span().get_span_context()
    if span_context.is_valid:
        payload["trace_id"] = f"{span_context.trace_id:032x}"
        payload["span_id"] = f"{span_context.span_id:016x}"

    payload.update(record["extra"])

    if record["exception"] is not None:
        exc_type, exc_value, _ = record["exception"]
        payload["exception"] = {
            "type": exc_type.__name__ if exc_type else None,
            "value": str(exc_value) if exc_value else None,
        }

    sys.stdout.write(json.dumps(payload, default=str) + "\n")


def configure_logging(
    *,
    service_name: str,
    environment: str,
    version: str,
    level: str = "INFO",
) -> None:
    """Send Loguru and stdlib logging to stdout as one JSON object per line."""

    logger.remove()
    logger.configure(patcher=_attach_request_context)
    metadata = {"service": service_name, "environment": environment, "version": version}
    logger.add(
        lambda message: _render(message, metadata),
        level=level.upper(),
        backtrace=False,
        diagnose=False,
    )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


__all__ = [
    "bind_request_context",
    "configure_logging",
    "request_context",
]
