"""Stripe webhook receiver.

The raw request body is needed for signature verification, so the payload
is read from :class:`~fastapi.Request` instead of being parsed by FastAPI.
Unhandled event types are acknowledged with 200 so Stripe does not retry
them; handler failures return 500 so it does.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from mc_exchange.api.error_handlers import error_response
from mc_exchange.api.limiter import WEBHOOK_LIMIT, limiter
from mc_exchange.api.metrics import stripe_webhooks_total
from mc_exchange.core.exceptions import BadRequestError
from mc_exchange.core.integrations.stripe_gateway import get_stripe_gateway
from mc_exchange.core.webhook_service import StripeWebhookService, get_webhook_service

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.post("/stripe")
@limiter.limit(WEBHOOK_LIMIT)
async def stripe_webhook(
    request: Request,
    service: StripeWebhookService = Depends(get_webhook_service),
) -> JSONResponse:
    signature = request.headers.get("stripe-signature")
    if not signature:
        raise BadRequestError("Missing stripe-signature header")

    payload = await request.body()
    event = get_stripe_gateway().construct_event(payload, signature)
    event_type = event.get("type", "unknown")

    try:
        handled = await service.handle_event(event)
    except Exception:
        await service.session.rollback()
        stripe_webhooks_total.labels(event_type=event_type, outcome="error").inc()
        logger.exception("stripe_webhook_failed", event_type=event_type, event_id=event.get("id"))
        return error_response(request, 500, "Webhook handler error", "WEBHOOK_HANDLER_ERROR")

    outcome = "handled" if handled else "ignored"
    stripe_webhooks_total.labels(event_type=event_type, outcome=outcome).inc()
    return JSONResponse(content={"received": True})
