"""Escrow transaction ORM models.

Covers:
- Transaction: the escrow record created when a seller accepts an offer.
- TransactionMessage: chat message between the parties (and admins).
- TransactionTimeline: human-readable audit trail of status changes.
- Payment: deposit, final payment, credit purchase, subscription or fee.
- Dispute: a complaint raised by a party; at most one OPEN per transaction.
- Review: rating left by one party for the other after completion.

Status progression (happy path)::

    AWAITING_DEPOSIT → DEPOSIT_RECEIVED → BUYER_APPROVED / SELLER_APPROVED
        → BOTH_APPROVED → PAYMENT_PENDING → PAYMENT_RECEIVED → COMPLETED

CANCELLED and DISPUTED are reachable from every non-terminal state.  Each
transition is guarded in the corresponding
:class:`~mc_exchange.core.transaction_service.TransactionService` method.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mc_exchange.core.models.base import (
    Base,
    TimestampMixin,
    UUIDPrimaryKeyMixin,
    money,
    timestamp,
)
from mc_exchange.core.models.enums import (
    DisputeStatus,
    PaymentStatus,
    TransactionStatus,
)

if TYPE_CHECKING:
    from mc_exchange.core.models.listings import Listing
    from mc_exchange.core.models.offers import Offer
    from mc_exchange.core.models.users import User


class Transaction(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Escrow workflow for the sale of one listing to one buyer."""

    __tablename__ = "transactions"

    status: Mapped[str] = mapped_column(
        sa.String(32),
        nullable=False,
        default=TransactionStatus.AWAITING_DEPOSIT.value,
        server_default=sa.text("'AWAITING_DEPOSIT'"),
        index=True,
    )

    # Amounts
    agreed_price: Mapped[float] = money()
    deposit_amount: Mapped[Optional[float]] = money(nullable=True)
    platform_fee: Mapped[Optional[float]] = money(nullable=True)
    final_payment_amount: Mapped[Optional[float]] = money(nullable=True)

    # Approvals
    buyer_approved: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=False, server_default=sa.text("false")
    )
    buyer_approved_at: Mapped[Optional[datetime]] = timestamp()
    seller_approved: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=False, server_default=sa.text("false")
    )
    seller_approved_at: Mapped[Optional[datetime]] = timestamp()
    admin_approved: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=False, server_default=sa.text("false")
    )
    admin_approved_at: Mapped[Optional[datetime]] = timestamp()
    buyer_accepted_terms: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=False, server_default=sa.text("false")
    )
    buyer_accepted_terms_at: Mapped[Optional[datetime]] = timestamp()
    seller_accepted_terms: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=False, server_default=sa.text("false")
    )
    seller_accepted_terms_at: Mapped[Optional[datetime]] = timestamp()

    # Payments
    deposit_paid_at: Mapped[Optional[datetime]] = timestamp()
    deposit_payment_method: Mapped[Optional[str]] = mapped_column(sa.String(20), nullable=True)
    deposit_payment_ref: Mapped[Optional[str]] = mapped_column(sa.String(200), nullable=True)
    final_paid_at: Mapped[Optional[datetime]] = timestamp()
    final_payment_method: Mapped[Optional[str]] = mapped_column(sa.String(20), nullable=True)
    final_payment_ref: Mapped[Optional[str]] = mapped_column(sa.String(200), nullable=True)

    # Escrow & dispute summary
    escrow_status: Mapped[Optional[str]] = mapped_column(sa.String(40), nullable=True)
    escrow_release_at: Mapped[Optional[datetime]] = timestamp()
    dispute_reason: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    dispute_opened_at: Mapped[Optional[datetime]] = timestamp()
    dispute_resolved_at: Mapped[Optional[datetime]] = timestamp()
    dispute_resolution: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)

    # Notes
    buyer_notes: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    seller_notes: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    admin_notes: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)

    completed_at: Mapped[Optional[datetime]] = timestamp()
    cancelled_at: Mapped[Optional[datetime]] = timestamp()

    listing_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("listings.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    offer_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("offers.id", ondelete="RESTRICT"),
        nullable=False,
        unique=True,
    )
    buyer_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    seller_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    admin_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    listing: Mapped[Listing] = relationship("Listing")
    offer: Mapped[Offer] = relationship("Offer", back_populates="transaction")
    buyer: Mapped[User] = relationship("User", foreign_keys=[buyer_id])
    seller: Mapped[User] = relationship("User", foreign_keys=[seller_id])

    def is_party(self, user_id: uuid.UUID) -> bool:
        """Return ``True`` when *user_id* is the buyer or the seller."""
        return user_id in (self.buyer_id, self.seller_id)

    def __repr__(self) -> str:
        return f"<Transaction id={self.id} status={self.status!r}>"


class TransactionMessage(UUIDPrimaryKeyMixin, Base):
    """A chat message inside a transaction room."""

    __tablename__ = "transaction_messages"

    content: Mapped[str] = mapped_column(sa.Text, nullable=False)
    sender_role: Mapped[str] = mapped_column(sa.String(20), nullable=False)
    sender_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    transaction_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("transactions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=sa.text("NOW()"),
    )


class TransactionTimeline(UUIDPrimaryKeyMixin, Base):
    """One audit entry in a transaction's history."""

    __tablename__ = "transaction_timeline"

    status: Mapped[str] = mapped_column(sa.String(32), nullable=False)
    title: Mapped[str] = mapped_column(sa.String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    actor_role: Mapped[Optional[str]] = mapped_column(sa.String(20), nullable=True)
    transaction_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("transactions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=sa.text("NOW()"),
    )


class Payment(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A money movement recorded by the platform.

    Stripe payments start PROCESSING and are completed by the webhook;
    manual methods (Zelle, wire, check) start PENDING and are completed when
    an admin verifies them.
    """

    __tablename__ = "payments"

    type: Mapped[str] = mapped_column(sa.String(32), nullable=False, index=True)
    amount: Mapped[float] = money()
    status: Mapped[str] = mapped_column(
        sa.String(20),
        nullable=False,
        default=PaymentStatus.PENDING.value,
        server_default=sa.text("'PENDING'"),
        index=True,
    )
    method: Mapped[Optional[str]] = mapped_column(sa.String(20), nullable=True)
    stripe_payment_id: Mapped[Optional[str]] = mapped_column(sa.String(200), nullable=True)
    stripe_intent_id: Mapped[Optional[str]] = mapped_column(
        sa.String(200), nullable=True, index=True
    )
    reference: Mapped[Optional[str]] = mapped_column(sa.String(200), nullable=True)
    verified_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    verified_at: Mapped[Optional[datetime]] = timestamp()
    description: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    metadata_: Mapped[Optional[dict]] = mapped_column(
        "metadata",
        JSONB,
        nullable=True,
        server_default=sa.text("'{}'"),
    )
    completed_at: Mapped[Optional[datetime]] = timestamp()
    transaction_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("transactions.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )


class Dispute(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A dispute raised by a transaction party.

    The partial unique index ``uq_disputes_open_per_transaction`` backs the
    service-level check that only one OPEN dispute exists per transaction.
    """

    __tablename__ = "disputes"
    __table_args__ = (
        sa.Index(
            "uq_disputes_open_per_transaction",
            "transaction_id",
            unique=True,
            postgresql_where=sa.text("status = 'OPEN'"),
        ),
    )

    status: Mapped[str] = mapped_column(
        sa.String(20),
        nullable=False,
        default=DisputeStatus.OPEN.value,
        server_default=sa.text("'OPEN'"),
        index=True,
    )
    reason: Mapped[str] = mapped_column(sa.Text, nullable=False)
    previous_status: Mapped[str] = mapped_column(sa.String(32), nullable=False)
    resolution: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    resolved_at: Mapped[Optional[datetime]] = timestamp()
    resolved_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    opened_by: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    transaction_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("transactions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )


class Review(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A 1–5 star rating from one transaction party to the other."""

    __tablename__ = "reviews"
    __table_args__ = (
        sa.UniqueConstraint(
            "from_user_id", "transaction_id", name="uq_reviews_author_transaction"
        ),
        sa.CheckConstraint("rating BETWEEN 1 AND 5", name="ck_reviews_rating_range"),
    )

    rating: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    comment: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    from_user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    to_user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    transaction_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("transactions.id", ondelete="CASCADE"),
        nullable=False,
    )
