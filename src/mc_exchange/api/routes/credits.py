"""Credit and subscription routes.

Plans and credit packs are public.  Balance, history, checkout and
cancellation act on the signed-in user; bonus and refund grants are admin
only and are counted in ``credit_transactions_total``.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import Field

from mc_exchange.api.dependencies import AdminUser, CurrentUser, Pages
from mc_exchange.api.metrics import credit_transactions_total
from mc_exchange.core.credit_service import CreditService, get_credit_service
from mc_exchange.core.models.enums import CreditTransactionType
from mc_exchange.core.schemas.common import CamelModel, Pagination, camelize, ok
from mc_exchange.core.schemas.credits import (
    BonusCreditsRequest,
    CheckoutResult,
    CreditBalance,
    CreditPackPurchaseRequest,
    CreditTransactionRead,
    PaymentIntentResult,
    RefundCreditsRequest,
    SubscriptionCheckoutRequest,
    SubscriptionRead,
)

router = APIRouter()


class CancelSubscriptionRequest(CamelModel):
    at_period_end: bool = Field(default=True)


# ---------------------------------------------------------------------------
# Catalogue
# ---------------------------------------------------------------------------


@router.get("/plans")
async def list_plans(service: CreditService = Depends(get_credit_service)) -> dict:
    return ok(camelize(await service.get_subscription_plans()))


@router.get("/packs")
async def list_packs(service: CreditService = Depends(get_credit_service)) -> dict:
    packs = await service.pricing.get_credit_packs()
    return ok([{"id": pack.key, "credits": pack.credits, "price": pack.price} for pack in packs])


# ---------------------------------------------------------------------------
# Balance & ledger
# ---------------------------------------------------------------------------


@router.get("/balance")
async def get_balance(user: CurrentUser, service: CreditService = Depends(get_credit_service)) -> dict:
    balance = await service.get_balance(user.id)
    subscription = balance.pop("subscription")
    data = CreditBalance.model_validate(balance).model_dump(mode="json", by_alias=True)
    data["subscription"] = (
        SubscriptionRead.model_validate(subscription).model_dump(mode="json", by_alias=True)
        if subscription is not None
        else None
    )
    return ok(data)


@router.get("/history")
async def get_history(
    user: CurrentUser,
    pages: Pages,
    service: CreditService = Depends(get_credit_service),
) -> dict:
    rows, total = await service.get_history(user.id, offset=pages.offset, limit=pages.limit)
    return ok(
        [CreditTransactionRead.model_validate(row) for row in rows],
        pagination=Pagination.build(pages.page, pages.limit, total),
    )


@router.get("/check")
async def check_credits(
    user: CurrentUser,
    required: int = Query(default=1, ge=1),
    service: CreditService = Depends(get_credit_service),
) -> dict:
    has_credits = await service.has_credits(user.id, required)
    return ok(
        {
            "hasCredits": has_credits,
            "required": required,
            "availableCredits": user.available_credits,
        }
    )


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------


@router.get("/subscription")
async def get_subscription(
    user: CurrentUser, service: CreditService = Depends(get_credit_service)
) -> dict:
    subscription = await service.get_current_subscription(user.id)
    if subscription is None:
        return ok(message="No active subscription")
    return ok(SubscriptionRead.model_validate(subscription))


@router.post("/subscribe")
async def subscribe(
    body: SubscriptionCheckoutRequest,
    user: CurrentUser,
    service: CreditService = Depends(get_credit_service),
) -> dict:
    """Open a Stripe Checkout session for a subscription plan."""
    result = await service.create_subscription_checkout(user.id, body.plan.value, body.is_yearly)
    return ok(CheckoutResult.model_validate(result))


@router.post("/cancel-subscription")
async def cancel_subscription(
    user: CurrentUser,
    body: Optional[CancelSubscriptionRequest] = None,
    service: CreditService = Depends(get_credit_service),
) -> dict:
    at_period_end = body.at_period_end if body is not None else True
    subscription = await service.cancel_subscription(user.id, at_period_end)
    message = (
        "Subscription will be cancelled at the end of the billing period"
        if at_period_end
        else "Subscription cancelled"
    )
    return ok(SubscriptionRead.model_validate(subscription), message=message)


# ---------------------------------------------------------------------------
# Credit packs
# ---------------------------------------------------------------------------


@router.post("/purchase")
async def purchase_credits(
    body: CreditPackPurchaseRequest,
    user: CurrentUser,
    service: CreditService = Depends(get_credit_service),
) -> dict:
    """Create a PaymentIntent for a credit pack; credits land via webhook."""
    result = await service.purchase_credits(user.id, body.pack_id)
    return ok(PaymentIntentResult.model_validate(result))


# ---------------------------------------------------------------------------
# Admin grants
# ---------------------------------------------------------------------------


@router.post("/bonus")
async def add_bonus_credits(
    body: BonusCreditsRequest,
    admin: AdminUser,
    service: CreditService = Depends(get_credit_service),
) -> dict:
    balance = await service.add_bonus_credits(body.user_id, body.amount, body.reason, admin.id)
    credit_transactions_total.labels(type=CreditTransactionType.BONUS.value).inc()
    return ok({"newBalance": balance}, message=f"Added {body.amount} bonus credits")


@router.post("/refund")
async def refund_credits(
    body: RefundCreditsRequest,
    admin: AdminUser,
    service: CreditService = Depends(get_credit_service),
) -> dict:
    balance = await service.refund_credits(body.user_id, body.amount, body.reason)
    credit_transactions_total.labels(type=CreditTransactionType.REFUND.value).inc()
    return ok({"newBalance": balance}, message=f"Refunded {body.amount} credits")
