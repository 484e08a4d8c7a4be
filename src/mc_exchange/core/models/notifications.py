"""In-app notification ORM model."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column

from mc_exchange.core.models.base import Base, UUIDPrimaryKeyMixin, timestamp


class Notification(UUIDPrimaryKeyMixin, Base):
    """A message shown in a user's notification tray.

    ``link`` is a frontend-relative path (``/transaction/<id>``) and
    ``metadata`` carries ids the frontend needs to deep-link.
    """

    __tablename__ = "notifications"

    type: Mapped[str] = mapped_column(sa.String(20), nullable=False)
    title: Mapped[str] = mapped_column(sa.String(200), nullable=False)
    message: Mapped[str] = mapped_column(sa.Text, nullable=False)
    read: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=False, server_default=sa.text("false")
    )
    read_at: Mapped[Optional[datetime]] = timestamp()
    link: Mapped[Optional[str]] = mapped_column(sa.String(500), nullable=True)
    metadata_: Mapped[Optional[dict]] = mapped_column(
        "metadata",
        JSONB,
        nullable=True,
        server_default=sa.text("'{}'"),
    )
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
    )
