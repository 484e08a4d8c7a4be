"""Stripe payments gateway.

Wraps the official ``stripe`` SDK.  The SDK is synchronous, so every call
is pushed to a worker thread with :func:`asyncio.to_thread` to keep the
event loop free.  Amounts are passed in cents; use :func:`dollars_to_cents`
and :func:`cents_to_dollars` at the boundary.

When ``STRIPE_SECRET_KEY`` is not configured every operation raises
:class:`~mc_exchange.core.exceptions.ServiceUnavailableError`.  Stripe API
failures propagate as ``stripe.StripeError`` and are rendered by the
central error handler.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import UTC, datetime
from typing import Any, Optional

import stripe

from mc_exchange.config.settings import get_settings
from mc_exchange.core.exceptions import BadRequestError, ServiceUnavailableError

logger = logging.getLogger(__name__)


def dollars_to_cents(dollars: float) -> int:
    return int(round(float(dollars) * 100))


def cents_to_dollars(cents: int) -> float:
    return round(int(cents) / 100, 2)


class StripeGateway:
    """Thin async facade over the Stripe SDK.

    Args:
        api_key: Secret key; ``None`` reads ``STRIPE_SECRET_KEY``.
        webhook_secret: Endpoint secret; ``None`` reads
            ``STRIPE_WEBHOOK_SECRET``.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
    ) -> None:
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.stripe_secret_key
        self.webhook_secret = (
            webhook_secret if webhook_secret is not None else settings.stripe_webhook_secret
        )

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def _require(self) -> None:
        if not self.enabled:
            raise ServiceUnavailableError("Payment service not available")

    async def _call(self, fn: Any, **params: Any) -> Any:
        self._require()
        return await asyncio.to_thread(fn, api_key=self.api_key, **params)

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------

    async def create_customer(
        self,
        email: str,
        name: str,
        phone: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
    ) -> str:
        """Create a customer and return its id."""
        params: dict[str, Any] = {"email": email, "name": name, "metadata": metadata or {}}
        if phone:
            params["phone"] = phone
        customer = await self._call(stripe.Customer.create, **params)
        logger.info("stripe_customer_created", extra={"customer_id": customer.id})
        return customer.id

    # ------------------------------------------------------------------
    # Payment intents
    # ------------------------------------------------------------------

    async def create_payment_intent(
        self,
        amount_cents: int,
        *,
        customer_id: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
        description: Optional[str] = None,
        currency: str = "usd",
    ) -> dict[str, Any]:
        """Create a card payment intent.

        Returns:
            ``{"id", "client_secret", "status"}``.
        """
        params: dict[str, Any] = {
            "amount": amount_cents,
            "currency": currency,
            "metadata": metadata or {},
            "automatic_payment_methods": {"enabled": True},
        }
        if customer_id:
            params["customer"] = customer_id
        if description:
            params["description"] = description
        intent = await self._call(stripe.PaymentIntent.create, **params)
        logger.info(
            "stripe_payment_intent_created",
            extra={"payment_intent_id": intent.id, "amount": amount_cents},
        )
        return {"id": intent.id, "client_secret": intent.client_secret, "status": intent.status}

    # ------------------------------------------------------------------
    # Checkout sessions
    # ------------------------------------------------------------------

    async def create_payment_checkout(
        self,
        *,
        amount_cents: int,
        product_name: str,
        description: str,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
        customer_id: Optional[str] = None,
        customer_email: Optional[str] = None,
    ) -> dict[str, Any]:
        """Create a one-off ``mode=payment`` checkout session.

        Returns:
            ``{"id", "url"}``.
        """
        params: dict[str, Any] = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": [
                {
                    "price_data": {
                        "currency": "usd",
                        "product_data": {"name": product_name, "description": description},
                        "unit_amount": amount_cents,
                    },
                    "quantity": 1,
                }
            ],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
            "payment_intent_data": {"metadata": metadata},
        }
        if customer_id:
            params["customer"] = customer_id
        elif customer_email:
            params["customer_email"] = customer_email
        session = await self._call(stripe.checkout.Session.create, **params)
        logger.info(
            "stripe_checkout_created",
            extra={"session_id": session.id, "type": metadata.get("type")},
        )
        return {"id": session.id, "url": session.url}

    async def create_subscription_checkout(
        self,
        *,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
    ) -> dict[str, Any]:
        """Create a ``mode=subscription`` checkout session for a recurring price."""
        session = await self._call(
            stripe.checkout.Session.create,
            customer=customer_id,
            mode="subscription",
            payment_method_types=["card"],
            line_items=[{"price": price_id, "quantity": 1}],
            success_url=success_url,
            cancel_url=cancel_url,
            metadata=metadata,
            subscription_data={"metadata": metadata},
        )
        logger.info("stripe_subscription_checkout_created", extra={"session_id": session.id})
        return {"id": session.id, "url": session.url}

    # ------------------------------------------------------------------
    # Subscriptions & refunds
    # ------------------------------------------------------------------

    async def cancel_subscription(self, subscription_id: str, at_period_end: bool = True) -> None:
        if at_period_end:
            await self._call(
                stripe.Subscription.modify, id=subscription_id, cancel_at_period_end=True
            )
        else:
            await self._call(stripe.Subscription.cancel, subscription_exposed_id=subscription_id)
        logger.info(
            "stripe_subscription_cancelled",
            extra={"subscription_id": subscription_id, "at_period_end": at_period_end},
        )

    async def create_refund(
        self,
        payment_intent_id: str,
        amount_cents: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> str:
        """Refund a payment intent fully (or partially) and return the refund id."""
        params: dict[str, Any] = {"payment_intent": payment_intent_id}
        if amount_cents is not None:
            params["amount"] = amount_cents
        if reason:
            params["reason"] = reason
        refund = await self._call(stripe.Refund.create, **params)
        logger.info(
            "stripe_refund_created",
            extra={"refund_id": refund.id, "payment_intent_id": payment_intent_id},
        )
        return refund.id

    async def list_customer_charges(self, customer_id: str, limit: int = 25) -> list[dict[str, Any]]:
        """Most recent charges for a customer, amounts in dollars."""
        charges = await self._call(stripe.Charge.list, customer=customer_id, limit=limit)
        return [
            {
                "id": charge.id,
                "amount": cents_to_dollars(charge.amount),
                "amount_refunded": cents_to_dollars(charge.amount_refunded or 0),
                "currency": charge.currency,
                "status": charge.status,
                "description": charge.description,
                "receipt_url": charge.receipt_url,
                "created_at": datetime.fromtimestamp(charge.created, UTC),
            }
            for charge in charges.data
        ]

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def construct_event(self, payload: bytes, signature: str) -> dict[str, Any]:
        """Verify a webhook signature and return the decoded event.

        Raises:
            BadRequestError: Secret not configured or signature invalid.
        """
        if not self.webhook_secret:
            logger.error("stripe_webhook_secret_missing")
            raise BadRequestError("Invalid webhook signature")
        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except (stripe.SignatureVerificationError, ValueError) as exc:
            logger.warning("stripe_webhook_signature_invalid", extra={"error": str(exc)})
            raise BadRequestError("Invalid webhook signature") from exc
        return json.loads(payload)


_gateway: Optional[StripeGateway] = None


def get_stripe_gateway() -> StripeGateway:
    """Return the process-wide gateway built from settings."""
    global _gateway
    if _gateway is None:
        _gateway = StripeGateway()
    return _gateway
