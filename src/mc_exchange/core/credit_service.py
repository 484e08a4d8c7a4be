"""Credit balances, credit purchases and subscription plans.

Balance formula
---------------
  available = users.total_credits - users.used_credits

Every change to either counter writes a ``credit_transactions`` row whose
``balance`` column is the available balance right after the change:

  - PURCHASE:  subscription activation, renewal or credit-pack purchase
  - USAGE:     a listing unlock (amount is negative)
  - BONUS:     credits granted by an administrator
  - REFUND:    used credits handed back by an administrator

Counter updates lock the user row (``SELECT ... FOR UPDATE``) so that two
concurrent unlocks cannot both spend the last credit.

Subscriptions are sold through Stripe Checkout when a recurring price id
is configured for the plan, and as a one-off payment intent otherwise.
Stripe-managed subscriptions are renewed by ``invoice.paid`` webhooks;
subscriptions without a Stripe id are renewed by the daily Celery job.
"""

from __future__ import annotations

import calendar
import uuid
from datetime import UTC, datetime
from typing import Any, Optional

import stripe
import structlog
from fastapi import Depends
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from mc_exchange.config.settings import get_settings
from mc_exchange.core.database import get_db
from mc_exchange.core.email_service import EmailService, get_email_service
from mc_exchange.core.exceptions import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ServiceUnavailableError,
)
from mc_exchange.core.integrations.stripe_gateway import (
    StripeGateway,
    dollars_to_cents,
    get_stripe_gateway,
)
from mc_exchange.core.models.credits import CreditTransaction, Subscription
from mc_exchange.core.models.enums import (
    CreditTransactionType,
    PaymentStatus,
    PaymentType,
    SubscriptionStatus,
)
from mc_exchange.core.models.transactions import Payment
from mc_exchange.core.models.users import User
from mc_exchange.core.pricing_service import PricingService

logger = structlog.get_logger(__name__)

STRIPE_SUBSCRIPTION_STATUS: dict[str, SubscriptionStatus] = {
    "active": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELLED,
    "unpaid": SubscriptionStatus.EXPIRED,
}


def add_months(moment: datetime, months: int) -> datetime:
    """Shift *moment* by whole months, clamping the day to the month length."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def next_renewal(moment: datetime, yearly: bool) -> datetime:
    return add_months(moment, 12 if yearly else 1)


class CreditService:
    """Credit ledger and subscription operations.

    Args:
        session: Open async session; each public write method commits once.
        stripe_gateway: Payments gateway; defaults to the shared instance.
        email: Email sender; defaults to the shared instance.
    """

    def __init__(
        self,
        session: AsyncSession,
        stripe_gateway: Optional[StripeGateway] = None,
        email: Optional[EmailService] = None,
    ) -> None:
        self.session = session
        self.stripe = stripe_gateway or get_stripe_gateway()
        self.email = email or get_email_service()
        self.pricing = PricingService(session)

    # ------------------------------------------------------------------
    # Balance
    # ------------------------------------------------------------------

    async def get_balance(self, user_id: uuid.UUID) -> dict[str, Any]:
        user = await self.session.get(User, user_id)
        if user is None:
            raise NotFoundError("User")
        subscription = (
            await self.session.execute(select(Subscription).where(Subscription.user_id == user_id))
        ).scalar_one_or_none()
        return {
            "total_credits": user.total_credits,
            "used_credits": user.used_credits,
            "available_credits": user.available_credits,
            "subscription": subscription,
        }

    async def get_history(
        self,
        user_id: uuid.UUID,
        *,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[CreditTransaction], int]:
        """Return one page of the credit ledger, newest first, and the total."""
        total = (
            await self.session.execute(
                select(func.count())
                .select_from(CreditTransaction)
                .where(CreditTransaction.user_id == user_id)
            )
        ).scalar_one()
        rows = (
            await self.session.execute(
                select(CreditTransaction)
                .where(CreditTransaction.user_id == user_id)
                .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
                .offset(offset)
                .limit(limit)
            )
        ).scalars().all()
        return list(rows), int(total)

    async def has_credits(self, user_id: uuid.UUID, required: int = 1) -> bool:
        user = await self.session.get(User, user_id)
        return user is not None and user.available_credits >= required

    async def use_credits(
        self,
        user_id: uuid.UUID,
        amount: int,
        description: str,
        reference: Optional[str] = None,
        *,
        commit: bool = True,
    ) -> CreditTransaction:
        """Spend *amount* credits.

        Args:
            commit: ``False`` lets a caller (listing unlock) fold the spend
                into its own database transaction.

        Raises:
            NotFoundError: Unknown user.
            ForbiddenError: Fewer than *amount* credits available.
        """
        user = await self._lock_user(user_id)
        if user.available_credits < amount:
            raise ForbiddenError("Insufficient credits")
        user.used_credits += amount
        entry = self._ledger(
            user,
            CreditTransactionType.USAGE,
            -amount,
            description,
            reference,
        )
        if commit:
            await self.session.commit()
        logger.info(
            "credits_used",
            user_id=str(user_id),
            amount=amount,
            balance=user.available_credits,
        )
        return entry

    # ------------------------------------------------------------------
    # Plans & subscriptions
    # ------------------------------------------------------------------

    async def get_subscription_plans(self) -> list[dict[str, Any]]:
        plans = []
        for plan in await self.pricing.get_plans():
            credits = plan.credits or 1
            plans.append(
                {
                    "id": plan.key,
                    "name": plan.name,
                    "credits": plan.credits,
                    "price_monthly": plan.price_monthly,
                    "price_yearly": plan.price_yearly,
                    "price_per_credit": round(plan.price_monthly / credits, 2),
                    "price_per_credit_yearly": round(plan.price_yearly / credits, 2),
                    "features": list(plan.features),
                }
            )
        return plans

    async def get_current_subscription(self, user_id: uuid.UUID) -> Optional[Subscription]:
        result = await self.session.execute(
            select(Subscription).where(Subscription.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def create_subscription_checkout(
        self,
        user_id: uuid.UUID,
        plan_key: str,
        is_yearly: bool,
    ) -> dict[str, Any]:
        """Start a subscription purchase.

        Returns:
            ``{"checkout_url", "session_id"}``; ``session_id`` is a payment
            intent id when the plan has no recurring Stripe price.

        Raises:
            ConflictError: The user already has an ACTIVE subscription.
            BadRequestError: Unknown plan.
        """
        user = await self.session.get(User, user_id)
        if user is None:
            raise NotFoundError("User")
        active = (
            await self.session.execute(
                select(Subscription.id).where(
                    Subscription.user_id == user_id,
                    Subscription.status == SubscriptionStatus.ACTIVE,
                )
            )
        ).first()
        if active is not None:
            raise ConflictError(
                "You already have an active subscription. Please cancel it first or upgrade."
            )
        plan = await self.pricing.get_plan(plan_key)
        if plan is None:
            raise BadRequestError("Invalid subscription plan")

        customer_id = await self.ensure_stripe_customer(user)
        metadata = {
            "type": "subscription",
            "userId": str(user.id),
            "plan": plan.key,
            "isYearly": str(is_yearly).lower(),
            "credits": str(plan.credits),
        }
        frontend = get_settings().frontend_url
        price_id = await self.pricing.get_stripe_price_id(plan.key, is_yearly)

        if not price_id:
            logger.warning("subscription_price_id_missing", plan=plan.key, yearly=is_yearly)
            price = plan.price_yearly if is_yearly else plan.price_monthly
            intent = await self.stripe.create_payment_intent(
                dollars_to_cents(price),
                customer_id=customer_id,
                metadata=metadata,
                description=f"{plan.name} {'yearly' if is_yearly else 'monthly'} subscription",
            )
            return {
                "checkout_url": (
                    f"{frontend}/checkout?payment_intent={intent['id']}"
                    f"&client_secret={intent['client_secret']}"
                ),
                "session_id": intent["id"],
                "payment_intent_id": intent["id"],
            }

        session = await self.stripe.create_subscription_checkout(
            customer_id=customer_id,
            price_id=price_id,
            success_url=f"{frontend}/buyer/subscription?success=true&session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{frontend}/buyer/subscription?cancelled=true",
            metadata=metadata,
        )
        logger.info(
            "subscription_checkout_created",
            user_id=str(user.id),
            plan=plan.key,
            yearly=is_yearly,
            session_id=session["id"],
        )
        return {"checkout_url": session["url"] or "", "session_id": session["id"]}

    async def handle_subscription_payment_success(
        self,
        stripe_subscription_id: Optional[str],
        metadata: dict[str, str],
        *,
        payment_reference: Optional[str] = None,
    ) -> Optional[Subscription]:
        """Activate (or re-activate) a subscription after payment.

        The plan credits are granted once per *payment_reference* (the
        checkout session or payment intent id, falling back to the Stripe
        subscription id); a replayed delivery returns ``None``.  Incomplete
        metadata is logged and ignored so that Stripe does not retry a
        webhook that can never succeed.
        """
        user_id, plan_key = metadata.get("userId"), metadata.get("plan")
        if not user_id or not plan_key:
            logger.error("subscription_webhook_missing_metadata", metadata=metadata)
            return None
        user = await self._lock_user(uuid.UUID(user_id), missing_ok=True)
        if user is None:
            logger.error("subscription_webhook_unknown_user", user_id=user_id)
            return None
        reference = payment_reference or stripe_subscription_id
        if reference is not None:
            already = (
                await self.session.execute(
                    select(Payment.id).where(
                        Payment.stripe_payment_id == reference,
                        Payment.type == PaymentType.SUBSCRIPTION,
                    )
                )
            ).first()
            if already is not None:
                logger.info("subscription_payment_already_processed", reference=reference)
                return None
        plan = await self.pricing.get_plan(plan_key)
        if plan is None:
            logger.error("subscription_webhook_invalid_plan", plan=plan_key)
            return None

        is_yearly = metadata.get("isYearly") == "true"
        price = plan.price_yearly if is_yearly else plan.price_monthly
        now = datetime.now(UTC)

        subscription = await self.get_current_subscription(user.id)
        if subscription is None:
            subscription = Subscription(user_id=user.id, start_date=now)
            self.session.add(subscription)
        subscription.plan = plan.key
        subscription.status = SubscriptionStatus.ACTIVE.value
        subscription.price_monthly = plan.price_monthly
        subscription.price_yearly = plan.price_yearly
        subscription.is_yearly = is_yearly
        subscription.credits_per_month = plan.credits
        subscription.credits_remaining = plan.credits
        subscription.start_date = now
        subscription.renewal_date = next_renewal(now, is_yearly)
        subscription.end_date = None
        subscription.cancelled_at = None
        subscription.stripe_sub_id = stripe_subscription_id
        subscription.stripe_customer_id = user.stripe_customer_id
        await self.session.flush()

        user.total_credits += plan.credits
        self._ledger(
            user,
            CreditTransactionType.PURCHASE,
            plan.credits,
            f"{plan.name} subscription - {plan.credits} credits",
            str(subscription.id),
        )
        self.session.add(
            Payment(
                user_id=user.id,
                type=PaymentType.SUBSCRIPTION.value,
                amount=price,
                status=PaymentStatus.COMPLETED.value,
                stripe_payment_id=reference,
                description=f"{plan.name} {'yearly' if is_yearly else 'monthly'} subscription",
                completed_at=now,
            )
        )
        await self.session.commit()
        logger.info(
            "subscription_activated",
            user_id=str(user.id),
            plan=plan.key,
            stripe_subscription_id=stripe_subscription_id,
            credits=plan.credits,
        )

        await self.email.send_payment_received(
            user.email,
            name=user.name,
            amount=price,
            description=f"{plan.name} Subscription",
            credits=plan.credits,
        )
        return subscription

    async def cancel_subscription(
        self,
        user_id: uuid.UUID,
        at_period_end: bool = True,
    ) -> Subscription:
        """Cancel the user's subscription.

        Stripe-managed subscriptions cancelled at period end stay ACTIVE
        until Stripe sends ``customer.subscription.deleted``; everything
        else becomes CANCELLED now.  Credits already granted remain usable.

        Raises:
            NotFoundError: The user never subscribed.
            BadRequestError: The subscription is not ACTIVE.
        """
        subscription = await self.get_current_subscription(user_id)
        if subscription is None:
            raise NotFoundError("Subscription")
        if subscription.status != SubscriptionStatus.ACTIVE:
            raise BadRequestError("No active subscription to cancel")

        if subscription.stripe_sub_id:
            try:
                await self.stripe.cancel_subscription(
                    subscription.stripe_sub_id, at_period_end=at_period_end
                )
            except (stripe.StripeError, ServiceUnavailableError):
                logger.error(
                    "stripe_subscription_cancel_failed",
                    user_id=str(user_id),
                    stripe_subscription_id=subscription.stripe_sub_id,
                    exc_info=True,
                )

        keeps_running = at_period_end and subscription.stripe_sub_id is not None
        if not keeps_running:
            subscription.status = SubscriptionStatus.CANCELLED.value
        subscription.cancelled_at = datetime.now(UTC)
        subscription.end_date = subscription.renewal_date
        await self.session.commit()
        logger.info("subscription_cancelled", user_id=str(user_id), at_period_end=at_period_end)
        return subscription

    async def handle_subscription_updated(
        self,
        stripe_subscription_id: str,
        status: str,
        current_period_end: Optional[datetime] = None,
    ) -> Optional[Subscription]:
        result = await self.session.execute(
            select(Subscription).where(Subscription.stripe_sub_id == stripe_subscription_id)
        )
        subscription = result.scalar_one_or_none()
        if subscription is None:
            logger.warning(
                "subscription_update_unknown", stripe_subscription_id=stripe_subscription_id
            )
            return None
        new_status = STRIPE_SUBSCRIPTION_STATUS.get(status)
        if new_status is not None:
            subscription.status = new_status.value
            if new_status == SubscriptionStatus.CANCELLED and subscription.cancelled_at is None:
                subscription.cancelled_at = datetime.now(UTC)
        if current_period_end is not None:
            subscription.renewal_date = current_period_end
        await self.session.commit()
        logger.info(
            "subscription_updated_from_stripe",
            subscription_id=str(subscription.id),
            status=subscription.status,
        )
        return subscription

    async def handle_invoice_paid(
        self,
        stripe_subscription_id: str,
        period_end: Optional[datetime] = None,
    ) -> bool:
        """Grant the monthly credits for a renewed Stripe subscription.

        The first invoice of a subscription is covered by the checkout
        activation, so only invoices for an already-started period count.
        """
        result = await self.session.execute(
            select(Subscription).where(Subscription.stripe_sub_id == stripe_subscription_id)
        )
        subscription = result.scalar_one_or_none()
        if subscription is None:
            return False
        now = datetime.now(UTC)
        if subscription.renewal_date is None or subscription.renewal_date > now:
            return False

        user = await self._lock_user(subscription.user_id)
        user.total_credits += subscription.credits_per_month
        subscription.credits_remaining = subscription.credits_per_month
        subscription.status = SubscriptionStatus.ACTIVE.value
        subscription.renewal_date = period_end or next_renewal(
            subscription.renewal_date, subscription.is_yearly
        )
        self._ledger(
            user,
            CreditTransactionType.PURCHASE,
            subscription.credits_per_month,
            "Subscription renewal",
            str(subscription.id),
        )
        await self.session.commit()
        logger.info("subscription_renewed_by_invoice", user_id=str(user.id))
        return True

    async def mark_subscription_past_due(self, stripe_subscription_id: str) -> bool:
        result = await self.session.execute(
            select(Subscription).where(Subscription.stripe_sub_id == stripe_subscription_id)
        )
        subscription = result.scalar_one_or_none()
        if subscription is None:
            return False
        subscription.status = SubscriptionStatus.PAST_DUE.value
        await self.session.commit()
        logger.warning("subscription_past_due", subscription_id=str(subscription.id))
        return True

    # ------------------------------------------------------------------
    # Credit packs
    # ------------------------------------------------------------------

    async def purchase_credits(self, user_id: uuid.UUID, pack_id: str) -> dict[str, Any]:
        """Create a payment intent for a credit pack.

        Raises:
            BadRequestError: Unknown pack id.
        """
        user = await self.session.get(User, user_id)
        if user is None:
            raise NotFoundError("User")
        pack = await self.pricing.get_credit_pack(pack_id)
        if pack is None:
            raise BadRequestError("Invalid credit pack")

        customer_id = await self.ensure_stripe_customer(user)
        intent = await self.stripe.create_payment_intent(
            dollars_to_cents(pack.price),
            customer_id=customer_id,
            metadata={
                "type": "credit_purchase",
                "userId": str(user.id),
                "packId": pack.key,
                "creditAmount": str(pack.credits),
                "amount": str(pack.price),
            },
            description=f"{pack.credits} credits",
        )
        logger.info(
            "credit_purchase_intent_created",
            user_id=str(user.id),
            pack=pack.key,
            payment_intent_id=intent["id"],
        )
        return {
            "client_secret": intent["client_secret"],
            "payment_intent_id": intent["id"],
            "amount": pack.price,
            "credits": pack.credits,
        }

    async def handle_credit_purchase_success(
        self,
        payment_intent_id: str,
        metadata: dict[str, str],
    ) -> bool:
        """Grant purchased credits once per payment intent."""
        user_id, credit_amount = metadata.get("userId"), metadata.get("creditAmount")
        if metadata.get("type") != "credit_purchase" or not user_id or not credit_amount:
            return False
        already = (
            await self.session.execute(
                select(Payment.id).where(
                    Payment.stripe_payment_id == payment_intent_id,
                    Payment.type == PaymentType.CREDIT_PURCHASE,
                )
            )
        ).first()
        if already is not None:
            logger.info("credit_purchase_already_processed", payment_intent_id=payment_intent_id)
            return False
        user = await self._lock_user(uuid.UUID(user_id), missing_ok=True)
        if user is None:
            logger.error("credit_purchase_unknown_user", user_id=user_id)
            return False

        credits = int(credit_amount)
        amount = float(metadata.get("amount") or 0)
        user.total_credits += credits
        self._ledger(
            user,
            CreditTransactionType.PURCHASE,
            credits,
            f"Purchased {credits} credits",
            payment_intent_id,
        )
        self.session.add(
            Payment(
                user_id=user.id,
                type=PaymentType.CREDIT_PURCHASE.value,
                amount=amount,
                status=PaymentStatus.COMPLETED.value,
                stripe_payment_id=payment_intent_id,
                stripe_intent_id=payment_intent_id,
                description=f"Credit purchase - {credits} credits",
                completed_at=datetime.now(UTC),
            )
        )
        await self.session.commit()
        logger.info("credit_purchase_completed", user_id=user_id, credits=credits)
        await self.email.send_payment_received(
            user.email,
            name=user.name,
            amount=amount,
            description=f"{credits} credits",
            credits=credits,
        )
        return True

    # ------------------------------------------------------------------
    # Admin operations
    # ------------------------------------------------------------------

    async def add_bonus_credits(
        self,
        user_id: uuid.UUID,
        amount: int,
        reason: str,
        admin_id: uuid.UUID,
    ) -> int:
        """Grant free credits; returns the new available balance."""
        user = await self._lock_user(user_id)
        user.total_credits += amount
        self._ledger(user, CreditTransactionType.BONUS, amount, reason, str(admin_id))
        await self.session.commit()
        logger.info(
            "bonus_credits_added",
            admin_id=str(admin_id),
            user_id=str(user_id),
            amount=amount,
            balance=user.available_credits,
        )
        return user.available_credits

    async def refund_credits(self, user_id: uuid.UUID, amount: int, reason: str) -> int:
        """Hand back used credits; returns the new available balance.

        Raises:
            ForbiddenError: The user has used fewer than *amount* credits.
        """
        user = await self._lock_user(user_id)
        if user.used_credits < amount:
            raise ForbiddenError("Not enough used credits to refund")
        user.used_credits -= amount
        self._ledger(user, CreditTransactionType.REFUND, amount, reason)
        await self.session.commit()
        logger.info("credits_refunded", user_id=str(user_id), amount=amount)
        return user.available_credits

    # ------------------------------------------------------------------
    # Scheduled operations
    # ------------------------------------------------------------------

    async def process_monthly_renewals(self) -> list[dict[str, Any]]:
        """Renew ACTIVE subscriptions without a Stripe id whose renewal is due."""
        now = datetime.now(UTC)
        due = (
            await self.session.execute(
                select(Subscription).where(
                    Subscription.status == SubscriptionStatus.ACTIVE,
                    Subscription.renewal_date <= now,
                    Subscription.stripe_sub_id.is_(None),
                )
            )
        ).scalars().all()

        results: list[dict[str, Any]] = []
        for subscription in due:
            user = await self._lock_user(subscription.user_id, missing_ok=True)
            if user is None:
                continue
            user.total_credits += subscription.credits_per_month
            subscription.credits_remaining = subscription.credits_per_month
            subscription.renewal_date = next_renewal(
                subscription.renewal_date or now, subscription.is_yearly
            )
            self._ledger(
                user,
                CreditTransactionType.PURCHASE,
                subscription.credits_per_month,
                "Subscription renewal",
                str(subscription.id),
            )
            await self.session.commit()
            results.append({"user_id": str(subscription.user_id), "success": True})
            logger.info(
                "manual_subscription_renewed",
                user_id=str(subscription.user_id),
                credits=subscription.credits_per_month,
            )
        return results

    async def process_expired_subscriptions(self) -> int:
        now = datetime.now(UTC)
        expired = (
            await self.session.execute(
                select(Subscription).where(
                    Subscription.status == SubscriptionStatus.CANCELLED,
                    Subscription.end_date <= now,
                )
            )
        ).scalars().all()
        for subscription in expired:
            subscription.status = SubscriptionStatus.EXPIRED.value
            logger.info(
                "subscription_expired",
                subscription_id=str(subscription.id),
                user_id=str(subscription.user_id),
            )
        await self.session.commit()
        return len(expired)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def ensure_stripe_customer(self, user: User) -> str:
        """Return the user's Stripe customer id, creating it when missing."""
        if user.stripe_customer_id:
            return user.stripe_customer_id
        user.stripe_customer_id = await self.stripe.create_customer(
            user.email, user.name, phone=user.phone, metadata={"userId": str(user.id)}
        )
        await self.session.commit()
        return user.stripe_customer_id

    async def _lock_user(self, user_id: uuid.UUID, *, missing_ok: bool = False) -> Optional[User]:
        result = await self.session.execute(
            select(User).where(User.id == user_id).with_for_update()
        )
        user = result.scalar_one_or_none()
        if user is None and not missing_ok:
            raise NotFoundError("User")
        return user

    def _ledger(
        self,
        user: User,
        type: CreditTransactionType,
        amount: int,
        description: str,
        reference: Optional[str] = None,
    ) -> CreditTransaction:
        entry = CreditTransaction(
            user_id=user.id,
            type=type.value,
            amount=amount,
            balance=user.available_credits,
            description=description,
            reference=reference,
        )
        self.session.add(entry)
        return entry


# ---------------------------------------------------------------------------
# FastAPI dependency factory
# ---------------------------------------------------------------------------


async def get_credit_service(
    session: AsyncSession = Depends(get_db),
) -> CreditService:
    """FastAPI dependency returning a :class:`CreditService` for the request.

    Usage in a route::

        @router.get("/credits/balance")
        async def balance(
            current_user: CurrentUser,
            credit_svc: CreditService = Depends(get_credit_service),
        ):
            return await credit_svc.get_balance(current_user.id)
    """
    return CreditService(session=session)
