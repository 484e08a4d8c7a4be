"""Schemas for offers and counter-offers."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from pydantic import Field

from mc_exchange.core.schemas.common import CamelModel


class OfferCreate(CamelModel):
    listing_id: uuid.UUID
    amount: float = Field(gt=0)
    message: Optional[str] = Field(default=None, max_length=2000)
    expires_at: Optional[datetime] = None


class CounterOfferRequest(CamelModel):
    counter_amount: float = Field(gt=0)
    message: Optional[str] = Field(default=None, max_length=2000)


class OfferListingSummary(CamelModel):
    id: uuid.UUID
    mc_number: str
    title: str
    price: float
    status: str


class OfferRead(CamelModel):
    id: uuid.UUID
    amount: float
    message: Optional[str] = None
    status: str
    counter_amount: Optional[float] = None
    counter_message: Optional[str] = None
    counter_at: Optional[datetime] = None
    responded_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    listing_id: uuid.UUID
    buyer_id: uuid.UUID
    seller_id: uuid.UUID
    created_at: Optional[datetime] = None


class OfferDetail(OfferRead):
    """Offer with its listing; only for offers loaded with ``Offer.listing``."""

    listing: Optional[OfferListingSummary] = None
