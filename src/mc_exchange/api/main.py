"""FastAPI application factory and entry point.

Creates the application instance, registers middleware and exception
handlers, and mounts every ``/api/*`` router.

Usage::

    # Development server (from project root)
    uvicorn mc_exchange.api.main:app --reload

    # Production (Gunicorn + Uvicorn workers)
    gunicorn mc_exchange.api.main:app -k uvicorn.workers.UvicornWorker
"""

from __future__ import annotations

import time
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Callable

import structlog
from fastapi import Depends, FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from mc_exchange.api.error_handlers import register_exception_handlers
from mc_exchange.api.limiter import limiter, rate_limit_exceeded_handler
from mc_exchange.api.metrics import (
    get_metrics_response,
    http_request_duration_seconds,
    http_requests_total,
)
from mc_exchange.config.settings import get_public_config, get_settings, validate_config
from mc_exchange.core.admin_service import AdminService, get_admin_service
from mc_exchange.core.cache_service import close_cache
from mc_exchange.core.logging_config import configure_logging, request_id_var
from mc_exchange.core.schemas.common import ok

# ---------------------------------------------------------------------------
# Logging configuration: applied once at module import time so that log
# records emitted during app construction are captured correctly.
# The log level is re-applied inside create_app() after settings are loaded.
# ---------------------------------------------------------------------------

configure_logging("INFO")

logger = structlog.get_logger(__name__)

API_VERSION = "1.0.0"


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(application: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    logger.info(
        "application_startup",
        app_name=settings.app_name,
        environment=settings.environment,
        log_level=settings.log_level,
    )
    yield
    from mc_exchange.core.database import async_engine  # noqa: PLC0415

    await close_cache()
    await async_engine.dispose()
    logger.info("application_shutdown")


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app() -> FastAPI:
    """Build and configure the FastAPI application.

    Separated from the module-level ``app`` singleton so that tests can
    call ``create_app()`` with a patched settings environment.

    Raises:
        RuntimeError: Configuration errors were found in production.

    Returns:
        A fully configured ``FastAPI`` instance.
    """
    settings = get_settings()

    # Re-apply logging configuration with the correct level from settings.
    configure_logging(settings.log_level)

    errors, warnings = validate_config(settings)
    for warning in warnings:
        logger.warning("config_warning", detail=warning)
    for error in errors:
        logger.error("config_error", detail=error)
    if errors and settings.is_production:
        raise RuntimeError("Invalid production configuration: " + "; ".join(errors))

    application = FastAPI(
        title=f"{settings.app_name} API",
        description="Marketplace and escrow platform for motor-carrier authorities.",
        version=API_VERSION,
        debug=settings.debug,
        lifespan=lifespan,
        redirect_slashes=False,
    )

    # ---- Rate limiting ----------------------------------------------------

    application.state.limiter = limiter
    application.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)  # type: ignore[arg-type]
    application.add_middleware(SlowAPIMiddleware)

    # ---- Middleware --------------------------------------------------------

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )

    # ---- Request logging middleware ----------------------------------------

    @application.middleware("http")
    async def request_logging_middleware(
        request: Request, call_next: Callable
    ) -> Response:
        """Log every request with its status and duration.

        Reuses an incoming ``X-Request-ID`` or generates one, binds it to the
        structlog context, and echoes it on the response.
        """
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        request_id_var.set(request_id)
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        start = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
        finally:
            elapsed = time.perf_counter() - start
            route = request.scope.get("route")
            path_label = getattr(route, "path", "unmatched")
            http_requests_total.labels(
                method=request.method, path=path_label, status=str(status_code)
            ).inc()
            http_request_duration_seconds.labels(method=request.method, path=path_label).observe(
                elapsed
            )
            log_fn = logger.warning if status_code >= 400 else logger.info
            log_fn(
                "request_complete",
                status_code=status_code,
                elapsed_ms=round(elapsed * 1000, 2),
            )

        response.headers["X-Request-ID"] = request_id
        return response

    register_exception_handlers(application)

    # ---- Uploaded files ---------------------------------------------------

    upload_dir = Path(settings.upload_dir)
    upload_dir.mkdir(parents=True, exist_ok=True)
    application.mount("/uploads", StaticFiles(directory=upload_dir), name="uploads")

    # ---- API routers ------------------------------------------------------

    from mc_exchange.api.routes import (  # noqa: PLC0415
        admin,
        auth,
        consultations,
        credits,
        disputes,
        documents,
        health as health_routes,
        integrations,
        listings,
        messages,
        notifications,
        offers,
        seller,
        transactions,
        users,
        webhooks,
    )

    application.include_router(health_routes.router)
    application.include_router(auth.router, prefix="/api/auth", tags=["auth"])
    application.include_router(users.router, prefix="/api/users", tags=["users"])
    application.include_router(listings.router, prefix="/api/listings", tags=["listings"])
    application.include_router(offers.router, prefix="/api/offers", tags=["offers"])
    application.include_router(
        transactions.router, prefix="/api/transactions", tags=["transactions"]
    )
    application.include_router(credits.router, prefix="/api/credits", tags=["credits"])
    application.include_router(
        notifications.router, prefix="/api/notifications", tags=["notifications"]
    )
    application.include_router(messages.router, prefix="/api/messages", tags=["messages"])
    application.include_router(seller.router, prefix="/api/seller", tags=["seller"])
    application.include_router(documents.router, prefix="/api/documents", tags=["documents"])
    application.include_router(disputes.router, prefix="/api/disputes", tags=["disputes"])
    application.include_router(
        consultations.router, prefix="/api/consultations", tags=["consultations"]
    )
    application.include_router(admin.router, prefix="/api/admin", tags=["admin"])
    application.include_router(integrations.fmcsa_router, prefix="/api/fmcsa", tags=["fmcsa"])
    application.include_router(
        integrations.creditsafe_router, prefix="/api/admin/creditsafe", tags=["admin:creditsafe"]
    )
    application.include_router(
        integrations.facebook_router, prefix="/api/admin/facebook", tags=["admin:facebook"]
    )
    application.include_router(
        integrations.telegram_router, prefix="/api/admin/telegram", tags=["admin:telegram"]
    )
    application.include_router(
        integrations.leads_router, prefix="/api/admin-services", tags=["admin-services"]
    )
    application.include_router(webhooks.router, prefix="/api/webhooks", tags=["webhooks"])

    # ---- Public configuration ---------------------------------------------

    @application.get("/api/config", tags=["system"])
    @limiter.exempt
    async def public_config(request: Request) -> dict:
        """Non-secret configuration for the frontend."""
        return {"success": True, "config": get_public_config(settings)}

    @application.get("/api/settings/public", tags=["system"])
    async def public_settings(
        request: Request, service: AdminService = Depends(get_admin_service)
    ) -> dict:
        """Platform flags the frontend needs before sign-in."""
        return ok({"listingPaymentRequired": await service.is_listing_payment_required()})

    # ---- Prometheus -------------------------------------------------------

    if settings.metrics_enabled:

        @application.get("/metrics", include_in_schema=False)
        @limiter.exempt
        async def metrics(request: Request) -> Response:
            body, content_type = get_metrics_response()
            return Response(content=body, media_type=content_type)

    return application


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

app = create_app()
"""The FastAPI application instance.

This is the ASGI callable passed to Uvicorn / Gunicorn.
"""
