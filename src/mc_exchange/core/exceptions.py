"""Application exception hierarchy for MC Exchange.

Services raise these; the handlers in ``api/error_handlers.py`` turn them
into the ``{success: false, error, code, ...}`` JSON envelope.  Each class
fixes its HTTP status and machine-readable ``code``.

Hierarchy::

    AppError
    ├── BadRequestError          400 BAD_REQUEST
    │   └── ValidationError      400 VALIDATION_ERROR  (errors: list[dict])
    ├── UnauthorizedError        401 UNAUTHORIZED
    ├── PaymentRequiredError     402 PAYMENT_REQUIRED
    ├── ForbiddenError           403 FORBIDDEN
    ├── NotFoundError            404 NOT_FOUND         (resource: str)
    ├── ConflictError            409 CONFLICT
    ├── TooManyRequestsError     429 TOO_MANY_REQUESTS (retry_after: int | None)
    ├── InternalServerError      500 INTERNAL_ERROR
    └── ServiceUnavailableError  503 SERVICE_UNAVAILABLE

``is_operational`` separates expected business failures (``True``) from
programming errors; only non-operational errors are logged with a traceback.
"""

from __future__ import annotations

from typing import Any


class AppError(Exception):
    """Base class for every error that maps onto an HTTP response.

    Args:
        message: Human-readable message returned as ``error``.
        status_code: HTTP status code.
        code: Stable machine-readable error code.
        is_operational: ``False`` for bugs and unexpected states.
    """

    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        code: str | None = None,
        *,
        is_operational: bool = True,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code
        self.is_operational = is_operational


# ---------------------------------------------------------------------------
# 4xx
# ---------------------------------------------------------------------------


class BadRequestError(AppError):
    """The request is well-formed but cannot be processed as given."""

    status_code = 400
    code = "BAD_REQUEST"

    def __init__(self, message: str = "Bad request") -> None:
        super().__init__(message)


class ValidationError(BadRequestError):
    """Input failed validation.

    Args:
        errors: Field-level problems, each ``{"field": ..., "message": ...}``.
        message: Summary message.
    """

    code = "VALIDATION_ERROR"

    def __init__(
        self,
        errors: list[dict[str, Any]] | None = None,
        message: str = "Validation failed",
    ) -> None:
        super().__init__(message)
        self.errors = errors or []


class UnauthorizedError(AppError):
    status_code = 401
    code = "UNAUTHORIZED"

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)


class PaymentRequiredError(AppError):
    status_code = 402
    code = "PAYMENT_REQUIRED"

    def __init__(self, message: str = "Payment required") -> None:
        super().__init__(message)


class ForbiddenError(AppError):
    status_code = 403
    code = "FORBIDDEN"

    def __init__(self, message: str = "Access denied") -> None:
        super().__init__(message)


class NotFoundError(AppError):
    """A referenced row does not exist.

    Args:
        resource: Name of the missing resource, e.g. ``"Listing"``.
    """

    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, resource: str = "Resource") -> None:
        super().__init__(f"{resource} not found")
        self.resource = resource


class ConflictError(AppError):
    status_code = 409
    code = "CONFLICT"

    def __init__(self, message: str = "Resource already exists") -> None:
        super().__init__(message)


class TooManyRequestsError(AppError):
    """A rate limit was exceeded.

    Args:
        message: Human-readable message.
        retry_after: Seconds until the caller may retry, if known.
    """

    status_code = 429
    code = "TOO_MANY_REQUESTS"

    def __init__(
        self,
        message: str = "Too many requests",
        retry_after: int | None = None,
    ) -> None:
        super().__init__(message)
        self.retry_after = retry_after


# ---------------------------------------------------------------------------
# 5xx
# ---------------------------------------------------------------------------


class InternalServerError(AppError):
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str = "Internal server error") -> None:
        super().__init__(message, is_operational=False)


class ServiceUnavailableError(AppError):
    """An upstream dependency (Stripe, FMCSA, Redis, ...) is not usable."""

    status_code = 503
    code = "SERVICE_UNAVAILABLE"

    def __init__(self, message: str = "Service temporarily unavailable") -> None:
        super().__init__(message)
