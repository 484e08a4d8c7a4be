"""Shared slowapi rate-limiter singleton and per-category limits.

Keeping the ``Limiter`` instance in its own module breaks the circular
import that would arise if route modules imported directly from ``main.py``
(which itself imports every route module).

Usage in route modules::

    from mc_exchange.api.limiter import AUTH_LIMIT, limiter

    @router.post("/login")
    @limiter.limit(AUTH_LIMIT)
    async def login(request: Request, ...):
        ...

The ``request`` parameter **must** be present in the route function
signature for slowapi to resolve the rate-limit key.

Clients are keyed by ``user:{id}`` when the request carries a valid bearer
token and by client IP otherwise.  Counters live in the storage named by
``RATE_LIMIT_STORAGE_URI`` (Redis in multi-worker deployments, in-memory
otherwise).
"""

from __future__ import annotations

import jwt
import structlog
from fastapi import Request
from fastapi.responses import JSONResponse
from fastapi_users.jwt import decode_jwt
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from mc_exchange.config.settings import get_settings

logger = structlog.get_logger(__name__)

_ACCESS_TOKEN_AUDIENCE = ["fastapi-users:auth"]

# ---------------------------------------------------------------------------
# Limits per endpoint category
# ---------------------------------------------------------------------------

_settings = get_settings()

GLOBAL_LIMIT = "1000 per 15 minutes" if _settings.is_development else "300 per 15 minutes"
AUTH_LIMIT = "100 per 15 minutes" if _settings.is_development else "20 per 15 minutes"
PASSWORD_RESET_LIMIT = "3 per hour"
FMCSA_LIMIT = "30 per minute"
UPLOAD_LIMIT = "10 per hour"
LISTING_CREATION_LIMIT = "5 per hour"
OFFER_LIMIT = "20 per hour"
MESSAGE_LIMIT = "60 per hour"
ADMIN_LIMIT = "200 per 15 minutes"
WEBHOOK_LIMIT = "100 per minute"


# ---------------------------------------------------------------------------
# Key function
# ---------------------------------------------------------------------------


def rate_limit_key(request: Request) -> str:
    """Return ``user:{id}`` for a valid bearer token, else the client IP."""
    authorization = request.headers.get("authorization", "")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() == "bearer" and token:
        try:
            payload = decode_jwt(token, get_settings().secret_key, _ACCESS_TOKEN_AUDIENCE)
        except jwt.PyJWTError:
            payload = {}
        if payload.get("sub"):
            return f"user:{payload['sub']}"
    return get_remote_address(request)


limiter: Limiter = Limiter(
    key_func=rate_limit_key,
    default_limits=[GLOBAL_LIMIT],
    storage_uri=_settings.rate_limit_storage_uri,
    in_memory_fallback_enabled=True,
)
"""Global rate-limiter instance.

The default limit is enforced on every route through ``SlowAPIMiddleware``
(registered in ``main.create_app()``); health endpoints are exempt.
Individual routes stack stricter category limits with ``@limiter.limit``.
"""


# ---------------------------------------------------------------------------
# 429 response
# ---------------------------------------------------------------------------


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Render the rate-limit envelope with a ``Retry-After`` header."""
    retry_after = exc.limit.limit.get_expiry()
    logger.warning(
        "rate_limit_exceeded",
        identifier=rate_limit_key(request),
        path=request.url.path,
        method=request.method,
        limit=str(exc.limit.limit),
    )
    return JSONResponse(
        status_code=429,
        content={
            "success": False,
            "error": "Too many requests",
            "message": "You have exceeded the rate limit. Please try again later.",
            "retryAfter": retry_after,
        },
        headers={"Retry-After": str(retry_after)},
    )
