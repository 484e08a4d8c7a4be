"""Schemas for the seller's earnings and Stripe charge history."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from mc_exchange.core.schemas.common import CamelModel


class EarningRow(CamelModel):
    id: uuid.UUID
    mc_number: str
    listing_title: str
    buyer_name: str
    agreed_price: float
    platform_fee: float
    net_earnings: float
    completed_at: Optional[datetime] = None


class EarningsSummary(CamelModel):
    gross: float
    fees: float
    net: float


class ChargeRead(CamelModel):
    id: str
    amount: float
    amount_refunded: float = 0.0
    currency: str
    status: str
    description: Optional[str] = None
    receipt_url: Optional[str] = None
    created_at: datetime
