"""Paid consultation booking ORM model.

Status progression::

    PENDING_PAYMENT → PAID → SCHEDULED → COMPLETED
                        └──────────────→ REFUNDED / CANCELLED
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from mc_exchange.core.models.base import (
    Base,
    TimestampMixin,
    UUIDPrimaryKeyMixin,
    money,
    timestamp,
)
from mc_exchange.core.models.enums import ConsultationStatus


class Consultation(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A public visitor's request for a paid expert consultation."""

    __tablename__ = "consultations"

    name: Mapped[str] = mapped_column(sa.String(200), nullable=False)
    email: Mapped[str] = mapped_column(sa.String(320), nullable=False, index=True)
    phone: Mapped[str] = mapped_column(sa.String(40), nullable=False)
    preferred_date: Mapped[str] = mapped_column(sa.String(20), nullable=False)
    preferred_time: Mapped[str] = mapped_column(sa.String(20), nullable=False)
    message: Mapped[str] = mapped_column(
        sa.Text, nullable=False, default="", server_default=sa.text("''")
    )
    status: Mapped[str] = mapped_column(
        sa.String(20),
        nullable=False,
        default=ConsultationStatus.PENDING_PAYMENT.value,
        server_default=sa.text("'PENDING_PAYMENT'"),
        index=True,
    )
    amount: Mapped[float] = money()
    stripe_session_id: Mapped[Optional[str]] = mapped_column(
        sa.String(200), nullable=True, unique=True
    )
    stripe_payment_intent_id: Mapped[Optional[str]] = mapped_column(
        sa.String(200), nullable=True
    )
    paid_at: Mapped[Optional[datetime]] = timestamp()
    scheduled_at: Mapped[Optional[datetime]] = timestamp()
    completed_at: Mapped[Optional[datetime]] = timestamp()
    contacted_at: Mapped[Optional[datetime]] = timestamp()
    contacted_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    admin_notes: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
