"""
Structured JSON logging for siso.

Every log line is one JSON object with ts, level, logger name and message,
plus request_id while a request is being handled. The request middleware
writes one summary line per request and feeds the HTTP metrics.
"""

import logging
import sys
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from pythonjsonlogger import jsonlogger

from siso.metrics import record_http_request

REQUEST_ID_HEADER = "X-Request-ID"
REQUEST_LOGGER = "siso.requests"

# Paths that are neither logged per request nor counted in HTTP metrics
QUIET_PATHS = frozenset({"/metrics", "/health/live"})

request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


class SisoJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter adding an ISO-8601 UTC timestamp, the level and request_id."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        log_record.setdefault("ts", _utc_timestamp())
        log_record["level"] = record.levelname
        log_record.setdefault("service", "siso")

        request_id = request_id_ctx.get()
        if request_id and "request_id" not in log_record:
            log_record["request_id"] = request_id


def _utc_timestamp() -> str:
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def setup_logging(log_level: str = "INFO") -> logging.Logger:
    """
    Route the root logger and uvicorn's loggers to a single JSON handler on stdout.

    Args:
        log_level: Logging level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(SisoJsonFormatter("%(ts)s %(level)s %(name)s %(message)s"))

    root = logging.getLogger()
    root.setLevel(log_level.upper())
    root.handlers = [handler]

    for name in ("uvicorn", "uvicorn.error"):
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers = [handler]
        uvicorn_logger.propagate = False

    # RequestLoggingMiddleware replaces the access log
    logging.getLogger("uvicorn.access").disabled = True

    return root


def _route_path(request: Request) -> str:
    # Route templates keep metric labels bounded (/messages/{message_id}/view)
    route = request.scope.get("route")
    return getattr(route, "path", request.url.path)


def _level_for(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Log every request as one JSON line and record HTTP metrics.

    A client supplied X-Request-ID is reused, otherwise a uuid4 is issued;
    either way it is echoed back in the response header.

    Log keys: method, path, route, status, latency_ms and whatever the
    route attached with log_request_data() (chat_id, message_id, result).
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id
        token = request_id_ctx.set(request_id)
        started = time.perf_counter()

        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = request_id

            if request.url.path in QUIET_PATHS:
                return response

            latency_seconds = time.perf_counter() - started
            route_path = _route_path(request)
            record_http_request(request.method, route_path, response.status_code, latency_seconds)

            log_data = {
                "method": request.method,
                "path": request.url.path,
                "route": route_path,
                "status": response.status_code,
                "latency_ms": round(latency_seconds * 1000, 2),
            }
            log_data.update(getattr(request.state, "log_data", {}))

            logging.getLogger(REQUEST_LOGGER).log(
                _level_for(response.status_code), "Request completed", extra=log_data
            )
            return response
        finally:
            request_id_ctx.reset(token)


def log_request_data(request: Request, **fields: Any) -> None:
    """
    Attach route-specific fields to the request log line.

    None values are skipped, so callers can pass optional ids unconditionally.

    Example:
        log_request_data(request, chat_id=chat_id, result="created")
    """
    data = getattr(request.state, "log_data", {})
    data.update({key: value for key, value in fields.items() if value is not None})
    request.state.log_data = data
