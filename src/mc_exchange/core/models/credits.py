"""Credit ledger and subscription ORM models.

Covers:
- CreditTransaction: audit row for every change to a user's credit counters.
- Subscription: a user's (single) subscription plan and renewal state.

The balance itself lives on ``users.total_credits`` / ``users.used_credits``;
``credit_transactions.balance`` records the available balance right after
the change for display in the history view.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mc_exchange.core.models.base import (
    Base,
    TimestampMixin,
    UUIDPrimaryKeyMixin,
    money,
    timestamp,
)
from mc_exchange.core.models.enums import SubscriptionStatus

if TYPE_CHECKING:
    from mc_exchange.core.models.users import User


class CreditTransaction(UUIDPrimaryKeyMixin, Base):
    """An immutable credit ledger entry.

    ``amount`` is signed: positive for purchases, bonuses and refunds,
    negative for usage.
    """

    __tablename__ = "credit_transactions"

    type: Mapped[str] = mapped_column(sa.String(20), nullable=False, index=True)
    amount: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    balance: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    description: Mapped[str] = mapped_column(sa.String(500), nullable=False)
    reference: Mapped[Optional[str]] = mapped_column(sa.String(200), nullable=True)
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=sa.text("NOW()"),
        index=True,
    )

    def __repr__(self) -> str:
        return (
            f"<CreditTransaction id={self.id} type={self.type!r} "
            f"amount={self.amount} balance={self.balance}>"
        )


class Subscription(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A user's subscription; one row per user, reused across re-subscriptions."""

    __tablename__ = "subscriptions"

    plan: Mapped[str] = mapped_column(sa.String(20), nullable=False)
    status: Mapped[str] = mapped_column(
        sa.String(20),
        nullable=False,
        default=SubscriptionStatus.ACTIVE.value,
        server_default=sa.text("'ACTIVE'"),
        index=True,
    )
    price_monthly: Mapped[float] = money()
    price_yearly: Mapped[float] = money()
    is_yearly: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=False, server_default=sa.text("false")
    )
    credits_per_month: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    credits_remaining: Mapped[int] = mapped_column(
        sa.Integer, nullable=False, default=0, server_default=sa.text("0")
    )
    stripe_sub_id: Mapped[Optional[str]] = mapped_column(
        sa.String(200), nullable=True, unique=True
    )
    stripe_customer_id: Mapped[Optional[str]] = mapped_column(sa.String(200), nullable=True)
    start_date: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    end_date: Mapped[Optional[datetime]] = timestamp()
    renewal_date: Mapped[Optional[datetime]] = timestamp()
    cancelled_at: Mapped[Optional[datetime]] = timestamp()
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    user: Mapped[User] = relationship("User", back_populates="subscription")

    def __repr__(self) -> str:
        return f"<Subscription user_id={self.user_id} plan={self.plan!r} status={self.status!r}>"
