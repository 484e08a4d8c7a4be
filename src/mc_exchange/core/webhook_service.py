"""Stripe webhook event dispatch.

``POST /api/webhooks/stripe`` verifies the signature and hands the decoded
event to :meth:`StripeWebhookService.handle_event`, which routes it by
``event["type"]`` and, for checkout sessions and payment intents, by
``metadata.type``:

==================================  ==========================================
Event                               Effect
==================================  ==========================================
checkout.session.completed          deposit / final_payment: complete the
                                    escrow payment; listing_fee: mark the
                                    listing paid; consultation: mark PAID;
                                    subscription: activate the plan
payment_intent.succeeded            credit_purchase: grant credits;
                                    subscription (no recurring price):
                                    activate the plan
payment_intent.payment_failed       fail the escrow payment, notify the user
customer.subscription.created       sync status of a known subscription
customer.subscription.updated       sync status and renewal date
customer.subscription.deleted       mark CANCELLED, notify the user
invoice.paid                        renewal credits (``subscription_cycle``)
invoice.payment_failed              mark PAST_DUE, notify the user
charge.refunded                     mark matching payments REFUNDED
charge.dispute.created              log and notify admins
==================================  ==========================================

Every handler is idempotent: Stripe retries deliveries, and the services
it calls ignore events whose effect is already recorded.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any, Awaitable, Callable, Optional

import structlog
from fastapi import Depends
from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mc_exchange.core.admin_alert_service import AdminAlertService
from mc_exchange.core.consultation_service import ConsultationService
from mc_exchange.core.credit_service import CreditService
from mc_exchange.core.database import get_db
from mc_exchange.core.integrations.stripe_gateway import (
    StripeGateway,
    cents_to_dollars,
    get_stripe_gateway,
)
from mc_exchange.core.listing_service import ListingService
from mc_exchange.core.models.credits import Subscription
from mc_exchange.core.models.enums import (
    NotificationType,
    PaymentStatus,
    UserRole,
    UserStatus,
)
from mc_exchange.core.models.transactions import Payment
from mc_exchange.core.models.users import User
from mc_exchange.core.notification_service import NotificationService
from mc_exchange.core.transaction_service import TransactionService

logger = structlog.get_logger(__name__)

Event = dict[str, Any]


def _timestamp(value: Optional[int]) -> Optional[datetime]:
    return datetime.fromtimestamp(value, UTC) if value else None


def _uuid(value: Optional[str]) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(value) if value else None
    except ValueError:
        return None


def _object_id(value: Any) -> Optional[str]:
    """Stripe expands some references to objects; return the bare id."""
    if isinstance(value, dict):
        return value.get("id")
    return value


class StripeWebhookService:
    """Applies verified Stripe events to the database.

    Args:
        session: Open async session shared by the delegated services.
        stripe_gateway: Gateway passed on to the delegated services.
    """

    def __init__(
        self,
        session: AsyncSession,
        stripe_gateway: Optional[StripeGateway] = None,
        alerts: Optional[AdminAlertService] = None,
    ) -> None:
        self.session = session
        self.stripe = stripe_gateway or get_stripe_gateway()
        self.alerts = alerts or AdminAlertService(session)
        self.notifications = NotificationService(session)
        self._handlers: dict[str, Callable[[dict[str, Any]], Awaitable[None]]] = {
            "checkout.session.completed": self._checkout_completed,
            "payment_intent.succeeded": self._payment_intent_succeeded,
            "payment_intent.payment_failed": self._payment_intent_failed,
            "customer.subscription.created": self._subscription_changed,
            "customer.subscription.updated": self._subscription_changed,
            "customer.subscription.deleted": self._subscription_deleted,
            "invoice.paid": self._invoice_paid,
            "invoice.payment_failed": self._invoice_payment_failed,
            "charge.refunded": self._charge_refunded,
            "charge.dispute.created": self._charge_dispute_created,
        }

    async def handle_event(self, event: Event) -> bool:
        """Dispatch *event*; returns ``False`` for unhandled event types."""
        event_type = event.get("type", "")
        handler = self._handlers.get(event_type)
        structlog.contextvars.bind_contextvars(stripe_event_id=event.get("id"))
        logger.info("stripe_webhook_received", event_type=event_type)
        if handler is None:
            logger.debug("stripe_webhook_unhandled", event_type=event_type)
            return False
        await handler(event["data"]["object"])
        return True

    # ------------------------------------------------------------------
    # Checkout & payment intents
    # ------------------------------------------------------------------

    async def _checkout_completed(self, session: dict[str, Any]) -> None:
        if session.get("payment_status") not in ("paid", "no_payment_required"):
            logger.info("checkout_not_paid", session_id=session.get("id"))
            return
        metadata = session.get("metadata") or {}
        kind = metadata.get("type")
        payment_intent_id = _object_id(session.get("payment_intent"))

        if kind in ("deposit", "final_payment"):
            payment_id = _uuid(metadata.get("paymentId"))
            if payment_id is None:
                logger.warning("checkout_missing_payment_id", session_id=session.get("id"))
                return
            await TransactionService(self.session, stripe_gateway=self.stripe).complete_card_payment(
                payment_id, stripe_payment_id=payment_intent_id
            )
        elif kind == "listing_fee":
            listing_id, seller_id = _uuid(metadata.get("listingId")), _uuid(metadata.get("sellerId"))
            if listing_id is None or seller_id is None:
                logger.warning("listing_fee_missing_metadata", metadata=metadata)
                return
            await ListingService(self.session, stripe_gateway=self.stripe).mark_listing_fee_paid(
                listing_id,
                seller_id,
                amount=cents_to_dollars(session.get("amount_total") or 0),
                stripe_payment_id=payment_intent_id,
            )
        elif kind == "consultation":
            await ConsultationService(
                self.session, stripe_gateway=self.stripe, alerts=self.alerts
            ).handle_payment_success(session["id"], payment_intent_id)
        elif kind == "subscription":
            await CreditService(self.session, stripe_gateway=self.stripe).handle_subscription_payment_success(
                _object_id(session.get("subscription")), metadata, payment_reference=session["id"]
            )
        else:
            logger.info("checkout_type_unhandled", type=kind)

    async def _payment_intent_succeeded(self, intent: dict[str, Any]) -> None:
        metadata = intent.get("metadata") or {}
        kind = metadata.get("type")
        credits = CreditService(self.session, stripe_gateway=self.stripe)
        if kind == "credit_purchase":
            await credits.handle_credit_purchase_success(intent["id"], metadata)
        elif kind == "subscription":
            # Plans without a recurring price are sold as a one-off intent.
            await credits.handle_subscription_payment_success(
                None, metadata, payment_reference=intent["id"]
            )
        else:
            # Checkout-created intents are settled by checkout.session.completed.
            logger.debug("payment_intent_ignored", type=kind, payment_intent_id=intent["id"])

    async def _payment_intent_failed(self, intent: dict[str, Any]) -> None:
        metadata = intent.get("metadata") or {}
        error = intent.get("last_payment_error") or {}
        reason = error.get("message") or "Payment failed"
        logger.warning(
            "payment_intent_failed",
            payment_intent_id=intent.get("id"),
            failure_code=error.get("code"),
        )
        payment_id = _uuid(metadata.get("paymentId"))
        if payment_id is not None:
            await TransactionService(self.session, stripe_gateway=self.stripe).fail_card_payment(
                payment_id, reason
            )
        user_id = _uuid(metadata.get("userId"))
        if user_id is not None and await self.session.get(User, user_id) is not None:
            self.notifications.add(
                user_id,
                NotificationType.PAYMENT,
                "Payment Failed",
                "Your payment could not be processed. Please try again or use a "
                "different payment method.",
                metadata={"paymentIntentId": intent.get("id")},
            )
            await self.session.commit()

    # ------------------------------------------------------------------
    # Subscriptions & invoices
    # ------------------------------------------------------------------

    async def _subscription_changed(self, subscription: dict[str, Any]) -> None:
        # Activation and credits come from checkout.session.completed; here we
        # only mirror Stripe's status onto a subscription we already know.
        await CreditService(self.session, stripe_gateway=self.stripe).handle_subscription_updated(
            subscription["id"],
            subscription.get("status", ""),
            _timestamp(subscription.get("current_period_end")),
        )

    async def _subscription_deleted(self, subscription: dict[str, Any]) -> None:
        updated = await CreditService(
            self.session, stripe_gateway=self.stripe
        ).handle_subscription_updated(subscription["id"], "canceled")
        if updated is None:
            return
        self.notifications.add(
            updated.user_id,
            NotificationType.PAYMENT,
            "Subscription Cancelled",
            "Your subscription has been cancelled. Credits you already received "
            "remain available.",
            link="/buyer/subscription",
        )
        await self.session.commit()

    async def _invoice_paid(self, invoice: dict[str, Any]) -> None:
        subscription_id = _object_id(invoice.get("subscription"))
        if not subscription_id or invoice.get("billing_reason") != "subscription_cycle":
            return
        period_end = None
        lines = (invoice.get("lines") or {}).get("data") or []
        if lines:
            period_end = _timestamp((lines[0].get("period") or {}).get("end"))
        await CreditService(self.session, stripe_gateway=self.stripe).handle_invoice_paid(
            subscription_id, period_end
        )

    async def _invoice_payment_failed(self, invoice: dict[str, Any]) -> None:
        subscription_id = _object_id(invoice.get("subscription"))
        if not subscription_id:
            return
        marked = await CreditService(
            self.session, stripe_gateway=self.stripe
        ).mark_subscription_past_due(subscription_id)
        if not marked:
            return
        user_id = (
            await self.session.execute(
                select(Subscription.user_id).where(Subscription.stripe_sub_id == subscription_id)
            )
        ).scalar_one()
        self.notifications.add(
            user_id,
            NotificationType.PAYMENT,
            "Payment Failed",
            "Your subscription payment failed. Please update your payment method "
            "to avoid service interruption.",
            link="/buyer/subscription",
        )
        await self.session.commit()

    # ------------------------------------------------------------------
    # Charges
    # ------------------------------------------------------------------

    async def _charge_refunded(self, charge: dict[str, Any]) -> None:
        payment_intent_id = _object_id(charge.get("payment_intent"))
        if not payment_intent_id:
            return
        result = await self.session.execute(
            update(Payment)
            .where(
                or_(
                    Payment.stripe_payment_id == payment_intent_id,
                    Payment.stripe_intent_id == payment_intent_id,
                ),
                Payment.status != PaymentStatus.REFUNDED,
            )
            .values(status=PaymentStatus.REFUNDED.value)
        )
        await self.session.commit()
        logger.info(
            "charge_refunded",
            payment_intent_id=payment_intent_id,
            amount=cents_to_dollars(charge.get("amount_refunded") or 0),
            payments=result.rowcount,
        )

    async def _charge_dispute_created(self, dispute: dict[str, Any]) -> None:
        amount = cents_to_dollars(dispute.get("amount") or 0)
        logger.warning(
            "charge_dispute_created",
            dispute_id=dispute.get("id"),
            charge_id=_object_id(dispute.get("charge")),
            reason=dispute.get("reason"),
            amount=amount,
        )
        admin_ids = (
            await self.session.execute(
                select(User.id).where(
                    User.role == UserRole.ADMIN, User.status == UserStatus.ACTIVE
                )
            )
        ).scalars().all()
        self.notifications.add_many(
            list(admin_ids),
            NotificationType.SYSTEM,
            "Card Payment Disputed",
            f"A cardholder disputed a ${amount:,.2f} charge ({dispute.get('reason') or 'unknown reason'}).",
            metadata={"disputeId": dispute.get("id")},
        )
        await self.session.commit()
        evidence = dispute.get("evidence") or {}
        await self.alerts.dispute(
            kind="Card Dispute",
            user_name=evidence.get("customer_name") or "Unknown cardholder",
            user_email=evidence.get("customer_email_address") or "",
            reason=f"${amount:,.2f} disputed: {dispute.get('reason') or 'unknown reason'}",
            reference=dispute.get("id"),
        )


# ---------------------------------------------------------------------------
# FastAPI dependency factory
# ---------------------------------------------------------------------------


async def get_webhook_service(session: AsyncSession = Depends(get_db)) -> StripeWebhookService:
    return StripeWebhookService(session=session)
