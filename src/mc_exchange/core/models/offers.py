"""Offer ORM model.

Status progression::

    PENDING ──accept──▶ ACCEPTED   (creates a Transaction)
       │  └──counter──▶ COUNTERED ──buyer accepts counter──▶ PENDING
       ├──reject──▶ REJECTED
       ├──withdraw──▶ WITHDRAWN
       └──(expires_at passes)──▶ EXPIRED

At most one PENDING or COUNTERED offer exists per (buyer, listing); this is
checked in :class:`~mc_exchange.core.offer_service.OfferService`.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mc_exchange.core.models.base import (
    Base,
    TimestampMixin,
    UUIDPrimaryKeyMixin,
    money,
    timestamp,
)
from mc_exchange.core.models.enums import OfferStatus

if TYPE_CHECKING:
    from mc_exchange.core.models.listings import Listing
    from mc_exchange.core.models.transactions import Transaction
    from mc_exchange.core.models.users import User


class Offer(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A buyer's price proposal on a listing."""

    __tablename__ = "offers"

    amount: Mapped[float] = money()
    message: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    status: Mapped[str] = mapped_column(
        sa.String(20),
        nullable=False,
        default=OfferStatus.PENDING.value,
        server_default=sa.text("'PENDING'"),
        index=True,
    )
    counter_amount: Mapped[Optional[float]] = money(nullable=True)
    counter_message: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    counter_at: Mapped[Optional[datetime]] = timestamp()
    responded_at: Mapped[Optional[datetime]] = timestamp()
    expires_at: Mapped[Optional[datetime]] = timestamp()

    listing_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("listings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    buyer_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    seller_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    listing: Mapped[Listing] = relationship("Listing")
    buyer: Mapped[User] = relationship("User", foreign_keys=[buyer_id])
    seller: Mapped[User] = relationship("User", foreign_keys=[seller_id])
    transaction: Mapped[Optional[Transaction]] = relationship(
        "Transaction",
        back_populates="offer",
        uselist=False,
    )

    def __repr__(self) -> str:
        return f"<Offer id={self.id} amount={self.amount} status={self.status!r}>"
