"""
Request middleware: correlation id, timing header, one access line per call.

Only the method and path are logged. Query strings and headers are not,
since bearer tokens travel in headers.
"""

from __future__ import annotations

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from rapidsafe.core.logging_config import set_request_context

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
PROCESS_TIME_HEADER = "X-Process-Time"

# Probes and docs are polled constantly; keep them out of the access log
_UNLOGGED_PREFIXES = ("/health", "/docs", "/redoc", "/openapi", "/favicon")


def _access_log(request: Request, status_code: int, duration_ms: float) -> None:
    path = request.url.path
    if path.startswith(_UNLOGGED_PREFIXES) and status_code < 500:
        return
    if status_code >= 500:
        level = logging.ERROR
    elif status_code >= 400:
        level = logging.WARNING
    else:
        level = logging.INFO
    logger.log(
        level,
        "%s %s → %d (%.1fms)",
        request.method, path, status_code, duration_ms,
        extra={"duration_ms": round(duration_ms, 2), "status_code": status_code, "endpoint": path},
    )


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Tags each request with an id (the caller's, or a fresh one)."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:16]
        set_request_context(
            request_id=request_id,
            client_ip=request.client.host if request.client else "unknown",
            endpoint=request.url.path,
            method=request.method,
        )
        started = time.perf_counter()
        try:
            try:
                response = await call_next(request)
            except Exception:
                _access_log(request, 500, (time.perf_counter() - started) * 1000)
                raise

            duration_ms = (time.perf_counter() - started) * 1000
            response.headers[REQUEST_ID_HEADER] = request_id
            response.headers[PROCESS_TIME_HEADER] = f"{duration_ms:.1f}ms"
            _access_log(request, response.status_code, duration_ms)
            return response
        finally:
            set_request_context()
