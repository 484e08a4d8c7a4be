"""Centralized exception handlers.

Every failure leaves the API in the same envelope::

    {
        "success": false,
        "error": "Listing not found",
        "code": "NOT_FOUND",
        "timestamp": "2025-01-01T00:00:00+00:00",
        "path": "/api/listings/...",
        "requestId": "...",
        "errors": [{"field": "...", "message": "..."}],   # validation only
        "retryAfter": 30                                   # 429 only
    }

:func:`register_exception_handlers` installs one handler per exception
family on the FastAPI application.  In production, 500 responses carry a
generic message and driver or Stripe error text is never echoed back.
"""

from __future__ import annotations

import re
from datetime import UTC, datetime
from typing import Any, Optional

import jwt
import stripe
import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from mc_exchange.config.settings import get_settings
from mc_exchange.core.exceptions import AppError, TooManyRequestsError, ValidationError
from mc_exchange.core.logging_config import request_id_var

logger = structlog.get_logger(__name__)

GENERIC_ERROR_MESSAGE = "An unexpected error occurred. Please try again later."

_UNIQUE_VIOLATION = "23505"
_FOREIGN_KEY_VIOLATION = "23503"
_KEY_FIELD_RE = re.compile(r"Key \(([^)]+)\)=")

_HTTP_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    402: "PAYMENT_REQUIRED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    413: "PAYLOAD_TOO_LARGE",
    429: "TOO_MANY_REQUESTS",
    503: "SERVICE_UNAVAILABLE",
}


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------


def error_response(
    request: Request,
    status_code: int,
    message: str,
    code: str,
    *,
    errors: Optional[list[dict[str, Any]]] = None,
    retry_after: Optional[int] = None,
) -> JSONResponse:
    """Build the error envelope for *request*."""
    body: dict[str, Any] = {
        "success": False,
        "error": message,
        "code": code,
        "timestamp": datetime.now(UTC).isoformat(),
        "path": request.url.path,
    }
    request_id = getattr(request.state, "request_id", None) or request_id_var.get()
    if request_id:
        body["requestId"] = request_id
    if errors:
        body["errors"] = errors
    headers = None
    if retry_after:
        body["retryAfter"] = retry_after
        headers = {"Retry-After": str(retry_after)}
    return JSONResponse(status_code=status_code, content=body, headers=headers)


def _field_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    errors = []
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        errors.append({"field": ".".join(location) or "body", "message": error.get("msg", "")})
    return errors


def _sqlstate(exc: DBAPIError) -> Optional[str]:
    orig = exc.orig
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if not exc.is_operational or exc.status_code >= 500:
        logger.error(
            "app_error",
            status_code=exc.status_code,
            code=exc.code,
            error=exc.message,
            exc_info=not exc.is_operational,
        )
    message = exc.message
    if exc.status_code == 500 and get_settings().is_production:
        message = GENERIC_ERROR_MESSAGE
    return error_response(
        request,
        exc.status_code,
        message,
        exc.code,
        errors=exc.errors if isinstance(exc, ValidationError) else None,
        retry_after=exc.retry_after if isinstance(exc, TooManyRequestsError) else None,
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    if any(error.get("type") == "json_invalid" for error in exc.errors()):
        return error_response(request, 400, "Invalid JSON in request body", "BAD_REQUEST")
    return error_response(
        request, 400, "Validation failed", "VALIDATION_ERROR", errors=_field_errors(exc)
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render Starlette/FastAPI ``HTTPException`` (routing and auth failures)."""
    if exc.status_code in (404, 405) and exc.detail in ("Not Found", "Method Not Allowed"):
        return error_response(
            request,
            404,
            f"Route {request.method} {request.url.path} not found",
            "ROUTE_NOT_FOUND",
        )
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    if exc.status_code == 401 and message == "Unauthorized":
        message = "Authentication required"
    return error_response(
        request, exc.status_code, message, _HTTP_CODES.get(exc.status_code, "HTTP_ERROR")
    )


async def integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    state = _sqlstate(exc)
    if state == _UNIQUE_VIOLATION:
        match = _KEY_FIELD_RE.search(str(exc.orig))
        field = match.group(1) if match else "field"
        return error_response(
            request, 409, f"A record with this {field} already exists", "CONFLICT"
        )
    if state == _FOREIGN_KEY_VIOLATION:
        return error_response(
            request, 400, "Invalid reference to related resource", "BAD_REQUEST"
        )
    return await database_error_handler(request, exc)


async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("database_error", error=str(exc), exc_info=exc)
    message = "Database error occurred" if get_settings().is_production else str(exc)
    return error_response(request, 500, message, "DATABASE_ERROR")


async def jwt_error_handler(request: Request, exc: jwt.PyJWTError) -> JSONResponse:
    if isinstance(exc, jwt.ExpiredSignatureError):
        return error_response(request, 401, "Authentication token has expired", "TOKEN_EXPIRED")
    logger.warning("invalid_jwt", client=request.client.host if request.client else None)
    return error_response(request, 401, "Invalid authentication token", "INVALID_TOKEN")


async def stripe_error_handler(request: Request, exc: stripe.StripeError) -> JSONResponse:
    logger.error("stripe_error", error=exc.user_message or str(exc), stripe_code=exc.code)
    status_code = exc.http_status or 400
    message = (
        "Payment processing error"
        if get_settings().is_production
        else (exc.user_message or str(exc) or "Payment processing error")
    )
    return error_response(request, status_code, message, "PAYMENT_ERROR")


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "unhandled_exception",
        method=request.method,
        path=request.url.path,
        exc_info=exc,
    )
    message = GENERIC_ERROR_MESSAGE if get_settings().is_production else str(exc) or "Internal server error"
    return error_response(request, 500, message, "INTERNAL_ERROR")


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


def register_exception_handlers(application: FastAPI) -> None:
    """Install every handler on *application*.

    More specific exception classes are matched first by Starlette, so the
    ``IntegrityError`` handler wins over the generic SQLAlchemy one.
    """
    application.add_exception_handler(AppError, app_error_handler)  # type: ignore[arg-type]
    application.add_exception_handler(RequestValidationError, request_validation_handler)  # type: ignore[arg-type]
    application.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
    application.add_exception_handler(IntegrityError, integrity_error_handler)  # type: ignore[arg-type]
    application.add_exception_handler(SQLAlchemyError, database_error_handler)  # type: ignore[arg-type]
    application.add_exception_handler(jwt.PyJWTError, jwt_error_handler)  # type: ignore[arg-type]
    application.add_exception_handler(stripe.StripeError, stripe_error_handler)  # type: ignore[arg-type]
    application.add_exception_handler(Exception, unhandled_exception_handler)
