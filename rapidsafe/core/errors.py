"""
Backend error classes and the FastAPI handlers that render them.

Every failure an endpoint can produce leaves as the same envelope:

    {"error": {"code": "permission-denied", "message": "...", "status": 403}}

Codes: unauthenticated 401, permission-denied 403, not-found 404,
failed-precondition 409, invalid-argument 422, internal 500 (also used
for server misconfiguration).

Usage:
    from rapidsafe.core.errors import (
        RapidSafeError,
        InvalidArgumentError,
        PermissionDeniedError,
        register_error_handlers,
    )

    raise InvalidArgumentError("No emergency contacts found to notify.",
                               field="contacts")
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from rapidsafe.core.config import settings

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class RapidSafeError(Exception):
    """Base exception for all backend errors."""

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        *,
        status_code: int = 500,
        error_code: str = "internal",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}


class UnauthenticatedError(RapidSafeError):
    """No verified caller identity (401)."""

    def __init__(
        self,
        message: str = "The function must be called by an authenticated user.",
    ):
        super().__init__(
            message=message,
            status_code=401,
            error_code="unauthenticated",
        )


class PermissionDeniedError(RapidSafeError):
    """Caller identity does not own the target resource (403)."""

    def __init__(self, message: str, **details: Any):
        super().__init__(
            message=message,
            status_code=403,
            error_code="permission-denied",
            details=details,
        )


class InvalidArgumentError(RapidSafeError):
    """Request is well-formed but semantically invalid (422)."""

    def __init__(self, message: str, *, field: Optional[str] = None, **details: Any):
        d = {**details}
        if field:
            d["field"] = field
        super().__init__(
            message=message,
            status_code=422,
            error_code="invalid-argument",
            details=d,
        )


class NotFoundError(RapidSafeError):
    """Resource not found (404)."""

    def __init__(self, resource: str, **identifiers: Any):
        super().__init__(
            message=f"{resource} not found",
            status_code=404,
            error_code="not-found",
            details={"resource": resource, **identifiers},
        )


class FailedPreconditionError(RapidSafeError):
    """Operation not allowed in the resource's current state (409)."""

    def __init__(self, message: str, **details: Any):
        super().__init__(
            message=message,
            status_code=409,
            error_code="failed-precondition",
            details=details,
        )


class ServiceConfigurationError(RapidSafeError):
    """The server is misconfigured for the requested operation (500)."""

    def __init__(self, message: str, **details: Any):
        super().__init__(
            message=message,
            status_code=500,
            error_code="internal",
            details=details,
        )


# ═══════════════════════════════════════════════════════════════════════════
# Envelope + handlers
# ═══════════════════════════════════════════════════════════════════════════

def error_envelope(
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> JSONResponse:
    """
    {"error": {"code", "message", "status", "details"?, "path"?, "method"?}}

    ``path`` and ``method`` are only filled in outside production.
    """
    error: Dict[str, Any] = {"code": error_code, "message": message, "status": status_code}
    if details:
        error["details"] = details
    if request is not None and not settings.is_production:
        error.update(path=request.url.path, method=request.method)
    return JSONResponse(status_code=status_code, content={"error": error})


async def _on_rapidsafe_error(request: Request, exc: RapidSafeError) -> JSONResponse:
    # 4xx are expected outcomes of client input; only 5xx are errors here
    level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(level, "%s %s → %s: %s", request.method, request.url.path, exc.error_code, exc.message)
    return error_envelope(exc.status_code, exc.error_code, exc.message, exc.details, request)


async def _on_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = [
        {"field": ".".join(str(p) for p in e.get("loc", ()) if p != "body"), "problem": e.get("msg")}
        for e in exc.errors()
    ]
    logger.warning("Malformed request to %s: %s", request.url.path, problems)
    return error_envelope(
        422, "invalid-argument", "Request body failed validation",
        {"errors": problems}, request,
    )


async def _on_value_error(request: Request, exc: ValueError) -> JSONResponse:
    logger.warning("Rejected value on %s: %s", request.url.path, exc)
    return error_envelope(422, "invalid-argument", str(exc), request=request)


async def _on_unhandled(request: Request, exc: Exception) -> JSONResponse:
    logger.critical("Unhandled exception on %s", request.url.path, exc_info=exc)
    if settings.DEBUG:
        trace = traceback.format_exception(type(exc), exc, exc.__traceback__)
        return error_envelope(
            500, "internal", str(exc), {"traceback": "".join(trace).splitlines()}, request,
        )
    return error_envelope(500, "internal", "Internal server error", request=request)


def register_error_handlers(app: FastAPI) -> None:
    """Route every exception raised by an endpoint into the error envelope."""
    app.add_exception_handler(RapidSafeError, _on_rapidsafe_error)
    app.add_exception_handler(RequestValidationError, _on_validation_error)
    app.add_exception_handler(ValueError, _on_value_error)
    app.add_exception_handler(Exception, _on_unhandled)
