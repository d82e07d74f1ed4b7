"""
Centralised error handling — exception hierarchy + FastAPI handlers.

Provides:
    • Domain-specific exception classes
    • Consistent JSON error response format
    • Automatic logging of unhandled errors
    • Request context in error responses (non-production)

Only two error kinds ever reach the caller of the fan-out:

    invalid-argument   malformed report (missing id/category/coordinates)
    internal           user directory unreadable, or invocation timed out

Push delivery failures are absorbed into the DeliveryResult and never
surface here.

Usage:
    from backend.app.core.errors import (
        InvalidArgumentError,
        DirectoryUnavailableError,
        register_error_handlers,
    )

    raise InvalidArgumentError("Missing required emergency data", field="type")
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from backend.app.core.config import settings

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class NotificationServiceError(Exception):
    """Base exception for all application errors."""

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


class InvalidArgumentError(NotificationServiceError):
    """Report is missing required fields or carries malformed values (400)."""

    def __init__(self, message: str, *, field: Optional[str] = None, **details: Any):
        d = {**details}
        if field:
            d["field"] = field
        super().__init__(
            message=message,
            status_code=400,
            error_code="invalid-argument",
            details=d,
        )


class InternalError(NotificationServiceError):
    """Unrecoverable failure of the invocation (500)."""

    def __init__(self, message: str = "Failed to send notifications", **details: Any):
        super().__init__(
            message=message,
            status_code=500,
            error_code="internal",
            details=details,
        )


class DirectoryUnavailableError(InternalError):
    """The user directory could not be enumerated."""

    def __init__(self, message: str = "", **details: Any):
        super().__init__(
            f"User directory unavailable: {message}" if message
            else "User directory unavailable",
            **details,
        )


class NotificationTimeoutError(InternalError):
    """The fan-out did not complete within the invocation timeout."""

    def __init__(self, timeout_seconds: float, emergency_id: str = ""):
        super().__init__(
            f"Notification fan-out timed out after {timeout_seconds:.0f}s",
            timeout_seconds=timeout_seconds,
            emergency_id=emergency_id,
        )


class PushDeliveryError(NotificationServiceError):
    """A push transport call failed. Absorbed by the notifier, never returned to callers."""

    def __init__(self, channel: str, message: str = ""):
        super().__init__(
            message=f"Push delivery via {channel} failed: {message}",
            status_code=502,
            error_code="push-delivery-failed",
            details={"channel": channel},
        )


# ═══════════════════════════════════════════════════════════════════════════
# Error Response Builder
# ═══════════════════════════════════════════════════════════════════════════

def _build_error_response(
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> JSONResponse:
    """Build a consistent JSON error response."""
    body: Dict[str, Any] = {
        "error": {
            "code": error_code,
            "message": message,
            "status": status_code,
        }
    }

    if details:
        body["error"]["details"] = details

    # Include request path in non-production
    if request and not settings.is_production:
        body["error"]["path"] = str(request.url.path)
        body["error"]["method"] = request.method

    return JSONResponse(status_code=status_code, content=body)


# ═══════════════════════════════════════════════════════════════════════════
# FastAPI Exception Handlers
# ═══════════════════════════════════════════════════════════════════════════

def register_error_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the FastAPI app."""

    @app.exception_handler(NotificationServiceError)
    async def handle_service_error(request: Request, exc: NotificationServiceError):
        log = logger.warning if exc.status_code < 500 else logger.error
        log(
            "API Error [%s]: %s | details=%s",
            exc.error_code, exc.message, exc.details,
        )
        return _build_error_response(
            exc.status_code, exc.error_code, exc.message,
            exc.details, request,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        logger.warning("Request validation failed: %s", exc.errors())
        return _build_error_response(
            400, "invalid-argument", "Missing required emergency data",
            {"errors": [
                {"loc": list(e.get("loc", ())), "msg": e.get("msg", "")}
                for e in exc.errors()
            ]},
            request,
        )

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.critical(
            "Unhandled exception: %s\n%s",
            exc, traceback.format_exc(),
        )
        message = str(exc) if settings.DEBUG else "Internal server error"
        details = (
            {"traceback": traceback.format_exc().split("\n")}
            if settings.DEBUG else None
        )
        return _build_error_response(
            500, "internal", message, details, request,
        )
