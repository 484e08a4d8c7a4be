"""Listing ORM models.

Covers:
- Listing: an MC authority offered for sale, with FMCSA-derived carrier
  facts, insurance, Amazon Relay status and moderation state.
- Document: a file attached to a listing or transaction (insurance, UCC
  filing, bill of sale, ...) pending admin verification.
- SavedListing: a buyer's bookmark.
- UnlockedListing: a buyer paid credits to see the seller's contact details.
- PremiumRequest: a buyer asks the platform to broker a listing for them.

Status progression (happy path)::

    DRAFT → PENDING_REVIEW → ACTIVE → RESERVED → SOLD

Rejected listings return to REJECTED and may be resubmitted; a cancelled
transaction puts a RESERVED listing back to ACTIVE.
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
    AmazonRelayStatus,
    DocumentStatus,
    ListingStatus,
    ListingVisibility,
    PremiumRequestStatus,
    SafetyRating,
)

if TYPE_CHECKING:
    from mc_exchange.core.models.users import User


class Listing(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """An MC number listed for sale by a seller.

    ``cargo_types``, ``fmcsa_data``, ``authority_history`` and
    ``insurance_history`` are free-form JSONB snapshots captured from FMCSA
    at creation time.
    """

    __tablename__ = "listings"

    mc_number: Mapped[str] = mapped_column(sa.String(20), nullable=False, index=True)
    dot_number: Mapped[str] = mapped_column(sa.String(20), nullable=False, index=True)
    legal_name: Mapped[str] = mapped_column(sa.String(300), nullable=False)
    dba_name: Mapped[Optional[str]] = mapped_column(sa.String(300), nullable=True)
    title: Mapped[str] = mapped_column(sa.String(300), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    price: Mapped[float] = money()
    is_premium: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=False, server_default=sa.text("false")
    )
    status: Mapped[str] = mapped_column(
        sa.String(32),
        nullable=False,
        default=ListingStatus.DRAFT.value,
        server_default=sa.text("'DRAFT'"),
        index=True,
    )
    visibility: Mapped[str] = mapped_column(
        sa.String(20),
        nullable=False,
        default=ListingVisibility.PUBLIC.value,
        server_default=sa.text("'PUBLIC'"),
    )

    # Location
    city: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    state: Mapped[str] = mapped_column(sa.String(2), nullable=False, index=True)
    address: Mapped[Optional[str]] = mapped_column(sa.String(300), nullable=True)

    # Operations
    years_active: Mapped[int] = mapped_column(
        sa.Integer, nullable=False, default=0, server_default=sa.text("0")
    )
    fleet_size: Mapped[int] = mapped_column(
        sa.Integer, nullable=False, default=0, server_default=sa.text("0")
    )
    total_drivers: Mapped[int] = mapped_column(
        sa.Integer, nullable=False, default=0, server_default=sa.text("0")
    )

    # Safety & insurance
    safety_rating: Mapped[str] = mapped_column(
        sa.String(20),
        nullable=False,
        default=SafetyRating.NONE.value,
        server_default=sa.text("'NONE'"),
    )
    safer_score: Mapped[Optional[str]] = mapped_column(sa.String(20), nullable=True)
    insurance_on_file: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=False, server_default=sa.text("false")
    )
    bipd_coverage: Mapped[Optional[float]] = money(nullable=True)
    cargo_coverage: Mapped[Optional[float]] = money(nullable=True)
    bond_amount: Mapped[Optional[float]] = money(nullable=True)

    # Amazon & setup
    amazon_status: Mapped[str] = mapped_column(
        sa.String(20),
        nullable=False,
        default=AmazonRelayStatus.NONE.value,
        server_default=sa.text("'NONE'"),
    )
    amazon_relay_score: Mapped[Optional[str]] = mapped_column(sa.String(10), nullable=True)
    highway_setup: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=False, server_default=sa.text("false")
    )
    selling_with_email: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=False, server_default=sa.text("false")
    )
    selling_with_phone: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=False, server_default=sa.text("false")
    )
    contact_email: Mapped[Optional[str]] = mapped_column(sa.String(320), nullable=True)
    contact_phone: Mapped[Optional[str]] = mapped_column(sa.String(40), nullable=True)

    # FMCSA snapshots
    cargo_types: Mapped[Optional[list]] = mapped_column(JSONB, nullable=True)
    fmcsa_data: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)
    authority_history: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)
    insurance_history: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)

    # Stats
    views: Mapped[int] = mapped_column(
        sa.Integer, nullable=False, default=0, server_default=sa.text("0")
    )
    saves: Mapped[int] = mapped_column(
        sa.Integer, nullable=False, default=0, server_default=sa.text("0")
    )

    # Moderation
    listing_fee_paid: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=False, server_default=sa.text("false")
    )
    review_notes: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    reviewed_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    reviewed_at: Mapped[Optional[datetime]] = timestamp()
    published_at: Mapped[Optional[datetime]] = timestamp()
    sold_at: Mapped[Optional[datetime]] = timestamp()

    seller_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    seller: Mapped[User] = relationship(
        "User",
        foreign_keys=[seller_id],
        back_populates="listings",
    )
    documents: Mapped[list[Document]] = relationship(
        "Document",
        back_populates="listing",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Listing id={self.id} mc={self.mc_number!r} status={self.status!r}>"


class Document(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """An uploaded file attached to a listing and/or a transaction."""

    __tablename__ = "documents"

    type: Mapped[str] = mapped_column(sa.String(32), nullable=False)
    name: Mapped[str] = mapped_column(sa.String(300), nullable=False)
    url: Mapped[str] = mapped_column(sa.String(500), nullable=False)
    size: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    mime_type: Mapped[str] = mapped_column(sa.String(120), nullable=False)
    status: Mapped[str] = mapped_column(
        sa.String(20),
        nullable=False,
        default=DocumentStatus.PENDING.value,
        server_default=sa.text("'PENDING'"),
        index=True,
    )
    verified_at: Mapped[Optional[datetime]] = timestamp()
    verified_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    listing_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("listings.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    transaction_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("transactions.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    uploader_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    listing: Mapped[Optional[Listing]] = relationship("Listing", back_populates="documents")


class SavedListing(Base):
    """A buyer's bookmark on a listing; unique per (user, listing)."""

    __tablename__ = "saved_listings"
    __table_args__ = (
        sa.UniqueConstraint("user_id", "listing_id", name="uq_saved_listings_user_listing"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=sa.text("gen_random_uuid()"),
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    listing_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("listings.id", ondelete="CASCADE"),
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=sa.text("NOW()"),
    )

    listing: Mapped[Listing] = relationship("Listing")


class UnlockedListing(Base):
    """Records that a buyer spent credits to reveal a listing's seller contact."""

    __tablename__ = "unlocked_listings"
    __table_args__ = (
        sa.UniqueConstraint("user_id", "listing_id", name="uq_unlocked_listings_user_listing"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=sa.text("gen_random_uuid()"),
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    listing_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("listings.id", ondelete="CASCADE"),
        nullable=False,
    )
    credits_used: Mapped[int] = mapped_column(
        sa.Integer, nullable=False, default=1, server_default=sa.text("1")
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=sa.text("NOW()"),
    )

    listing: Mapped[Listing] = relationship("Listing")


class PremiumRequest(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A buyer's request for platform-brokered help on a listing."""

    __tablename__ = "premium_requests"
    __table_args__ = (
        sa.UniqueConstraint("buyer_id", "listing_id", name="uq_premium_requests_buyer_listing"),
    )

    status: Mapped[str] = mapped_column(
        sa.String(20),
        nullable=False,
        default=PremiumRequestStatus.PENDING.value,
        server_default=sa.text("'PENDING'"),
        index=True,
    )
    message: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    admin_notes: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    contacted_at: Mapped[Optional[datetime]] = timestamp()
    contacted_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    buyer_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    listing_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("listings.id", ondelete="CASCADE"),
        nullable=False,
    )

    buyer: Mapped[User] = relationship("User", foreign_keys=[buyer_id])
    listing: Mapped[Listing] = relationship("Listing")
