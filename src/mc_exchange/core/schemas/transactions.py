"""Schemas for the escrow transaction room, payments and disputes."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from pydantic import Field

from mc_exchange.core.models.enums import (
    DisputeStatus,
    PaymentMethod,
    TransactionStatus,
)
from mc_exchange.core.schemas.common import CamelModel


class PartySummary(CamelModel):
    """A transaction party as seen by the viewer.

    Contact fields are ``None`` when the viewer is not yet entitled to them.
    """

    id: uuid.UUID
    name: str
    trust_score: int = 50
    verified: bool = False
    email: Optional[str] = None
    phone: Optional[str] = None
    company_name: Optional[str] = None


class TransactionRead(CamelModel):
    id: uuid.UUID
    status: str
    agreed_price: float
    deposit_amount: Optional[float] = None
    platform_fee: Optional[float] = None
    final_payment_amount: Optional[float] = None
    buyer_approved: bool = False
    buyer_approved_at: Optional[datetime] = None
    seller_approved: bool = False
    seller_approved_at: Optional[datetime] = None
    admin_approved: bool = False
    admin_approved_at: Optional[datetime] = None
    buyer_accepted_terms: bool = False
    seller_accepted_terms: bool = False
    deposit_paid_at: Optional[datetime] = None
    deposit_payment_method: Optional[str] = None
    final_paid_at: Optional[datetime] = None
    final_payment_method: Optional[str] = None
    dispute_reason: Optional[str] = None
    dispute_opened_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    listing_id: uuid.UUID
    offer_id: uuid.UUID
    buyer_id: uuid.UUID
    seller_id: uuid.UUID
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PaymentRead(CamelModel):
    id: uuid.UUID
    type: str
    amount: float
    status: str
    method: Optional[str] = None
    reference: Optional[str] = None
    description: Optional[str] = None
    transaction_id: Optional[uuid.UUID] = None
    user_id: uuid.UUID
    verified_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class TransactionListing(CamelModel):
    id: uuid.UUID
    mc_number: str
    dot_number: str
    title: str
    legal_name: str


class TransactionListItem(TransactionRead):
    """List row; only for transactions loaded with ``Transaction.listing``."""

    listing: Optional[TransactionListing] = None


class TransactionDetail(TransactionRead):
    user_role: str
    buyer: Optional[PartySummary] = None
    seller: Optional[PartySummary] = None
    listing: Optional[TransactionListing] = None
    payments: list[PaymentRead] = Field(default_factory=list)


class PaymentRequest(CamelModel):
    """Buyer-submitted deposit or final payment."""

    method: PaymentMethod
    reference: Optional[str] = Field(default=None, max_length=200)
    stripe_intent_id: Optional[str] = None


class VerifyPaymentRequest(CamelModel):
    payment_id: uuid.UUID


class MessageCreate(CamelModel):
    content: str = Field(min_length=1, max_length=5000)


class MessageRead(CamelModel):
    id: uuid.UUID
    content: str
    sender_role: str
    sender_id: uuid.UUID
    transaction_id: uuid.UUID
    created_at: Optional[datetime] = None


class TimelineRead(CamelModel):
    id: uuid.UUID
    status: str
    title: str
    description: Optional[str] = None
    actor_id: Optional[uuid.UUID] = None
    actor_role: Optional[str] = None
    created_at: Optional[datetime] = None


class ReasonRequest(CamelModel):
    reason: str = Field(min_length=1, max_length=2000)


class OptionalReasonRequest(CamelModel):
    reason: Optional[str] = Field(default=None, max_length=2000)


class NotesRequest(CamelModel):
    notes: Optional[str] = Field(default=None, max_length=5000)


class StatusUpdateRequest(CamelModel):
    status: TransactionStatus
    notes: Optional[str] = None


class AdminCreateTransactionRequest(CamelModel):
    listing_id: uuid.UUID
    buyer_id: uuid.UUID
    agreed_price: float = Field(gt=0)
    deposit_amount: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = None


class DisputeRead(CamelModel):
    id: uuid.UUID
    status: DisputeStatus
    reason: str
    previous_status: str
    resolution: Optional[str] = None
    resolved_at: Optional[datetime] = None
    opened_by: uuid.UUID
    transaction_id: uuid.UUID
    created_at: Optional[datetime] = None


class DisputeResolveRequest(CamelModel):
    resolution: str = Field(min_length=1, max_length=5000)
    status: DisputeStatus = DisputeStatus.RESOLVED
    restore_status: Optional[TransactionStatus] = None


class ReviewCreate(CamelModel):
    rating: int = Field(ge=1, le=5)
    comment: Optional[str] = Field(default=None, max_length=2000)


class ReviewRead(CamelModel):
    id: uuid.UUID
    rating: int
    comment: Optional[str] = None
    from_user_id: uuid.UUID
    to_user_id: uuid.UUID
    transaction_id: uuid.UUID
    created_at: Optional[datetime] = None
