"""
Centralised error handling — exception hierarchy + FastAPI handlers.

Provides:
    • Domain-specific exception classes raised by the dispatch core
    • Consistent JSON error response format
    • Automatic logging of unhandled errors

Usage:
    from guardian_backend.app.core.errors import (
        DispatchError,
        NotFoundError,
        ValidationError,
        ForbiddenError,
        InvalidTransitionError,
        UpstreamUnavailable,
        register_error_handlers,
    )

    raise NotFoundError("Alert", alert_id="ALR-0A1B2C3D4E5F")

Only ``register_error_handlers`` depends on FastAPI; the exception classes
are plain Python so the core never imports the web layer.
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class DispatchError(Exception):
    """Base exception for all application errors."""

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        *,
        status_code: int = 500,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}


class NotFoundError(DispatchError):
    """Resource not found (404)."""

    def __init__(self, resource: str, **identifiers: Any):
        details = {"resource": resource, **identifiers}
        super().__init__(
            message=f"{resource} not found",
            status_code=404,
            error_code="NOT_FOUND",
            details=details,
        )


class ValidationError(DispatchError):
    """Input validation failed (422)."""

    def __init__(self, message: str, *, field: Optional[str] = None, **details: Any):
        d = {**details}
        if field:
            d["field"] = field
        super().__init__(
            message=message,
            status_code=422,
            error_code="VALIDATION_ERROR",
            details=d,
        )


class ForbiddenError(DispatchError):
    """Caller may not touch this resource (403). Carries no details."""

    def __init__(self) -> None:
        super().__init__(
            message="not authorized",
            status_code=403,
            error_code="FORBIDDEN",
        )


class InvalidTransitionError(DispatchError):
    """Requested state change is not reachable from the current state (409)."""

    def __init__(self, current: str, requested: str, *, resource: str = "Alert"):
        super().__init__(
            message=f"{resource} cannot move from '{current}' to '{requested}'",
            status_code=409,
            error_code="INVALID_TRANSITION",
            details={"current": current, "requested": requested},
        )
        self.current = current
        self.requested = requested


class UpstreamUnavailable(DispatchError):
    """Geocoder or notifier call failed (502)."""

    def __init__(self, service: str, message: str = "", **details: Any):
        super().__init__(
            message=f"Upstream service '{service}' unavailable: {message}",
            status_code=502,
            error_code="UPSTREAM_UNAVAILABLE",
            details={"service": service, **details},
        )
        self.service = service


# ═══════════════════════════════════════════════════════════════════════════
# Error Response Builder
# ═══════════════════════════════════════════════════════════════════════════

def _build_error_response(
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
    include_request: bool = False,
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

    if request is not None and include_request:
        body["error"]["path"] = str(request.url.path)
        body["error"]["method"] = request.method

    return JSONResponse(status_code=status_code, content=body)


# ═══════════════════════════════════════════════════════════════════════════
# FastAPI Exception Handlers
# ═══════════════════════════════════════════════════════════════════════════

def register_error_handlers(app: FastAPI, *, debug: bool = False) -> None:
    """Register all exception handlers on the FastAPI app."""

    @app.exception_handler(DispatchError)
    async def handle_dispatch_error(request: Request, exc: DispatchError):
        log = logger.error if exc.status_code >= 500 else logger.info
        log(
            "API Error [%s]: %s | details=%s",
            exc.error_code, exc.message, exc.details,
        )
        return _build_error_response(
            exc.status_code, exc.error_code, exc.message,
            exc.details, request, include_request=debug,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        errors = [
            {"field": ".".join(str(p) for p in e.get("loc", ())), "message": e.get("msg", "")}
            for e in exc.errors()
        ]
        logger.info("Request validation failed: %s", errors)
        return _build_error_response(
            422, "VALIDATION_ERROR", "Request validation failed",
            {"errors": errors}, request, include_request=debug,
        )

    @app.exception_handler(ValueError)
    async def handle_value_error(request: Request, exc: ValueError):
        logger.warning("ValueError: %s", exc)
        return _build_error_response(
            422, "VALIDATION_ERROR", str(exc),
            request=request, include_request=debug,
        )

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.critical(
            "Unhandled exception: %s\n%s",
            exc, traceback.format_exc(),
        )
        message = str(exc) if debug else "Internal server error"
        details = (
            {"traceback": traceback.format_exc().split("\n")}
            if debug else None
        )
        return _build_error_response(
            500, "INTERNAL_ERROR", message, details,
            request, include_request=debug,
        )
