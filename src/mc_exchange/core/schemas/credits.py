"""Schemas for credit balance, history, subscriptions and credit packs."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from pydantic import Field

from mc_exchange.core.models.enums import SubscriptionPlan
from mc_exchange.core.schemas.common import CamelModel


class CreditBalance(CamelModel):
    total_credits: int
    used_credits: int
    available_credits: int


class CreditTransactionRead(CamelModel):
    id: uuid.UUID
    type: str
    amount: int
    balance: int
    description: str
    reference: Optional[str] = None
    created_at: Optional[datetime] = None


class PlanRead(CamelModel):
    id: str
    name: str
    credits: int
    price_monthly: float
    price_yearly: float
    price_per_credit: float
    features: list[str] = Field(default_factory=list)


class SubscriptionCheckoutRequest(CamelModel):
    plan: SubscriptionPlan
    is_yearly: bool = False


class CheckoutResult(CamelModel):
    checkout_url: str
    session_id: Optional[str] = None
    payment_intent_id: Optional[str] = None
    amount: Optional[float] = None


class CreditPackPurchaseRequest(CamelModel):
    pack_id: str


class PaymentIntentResult(CamelModel):
    client_secret: Optional[str] = None
    payment_intent_id: str
    amount: float
    credits: int


class SubscriptionRead(CamelModel):
    id: uuid.UUID
    plan: str
    status: str
    price_monthly: float
    price_yearly: float
    is_yearly: bool
    credits_per_month: int
    credits_remaining: int
    start_date: datetime
    end_date: Optional[datetime] = None
    renewal_date: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None


class BonusCreditsRequest(CamelModel):
    user_id: uuid.UUID
    amount: int = Field(gt=0)
    reason: str = Field(min_length=1, max_length=500)


class RefundCreditsRequest(CamelModel):
    user_id: uuid.UUID
    amount: int = Field(gt=0)
    reason: str = Field(min_length=1, max_length=500)
