"""Direct messages between users.

Unlike :class:`~mc_exchange.core.models.transactions.TransactionMessage`,
these are not tied to a deal: a conversation is the set of messages
exchanged by two users, optionally about a listing.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mc_exchange.core.models.base import Base, UUIDPrimaryKeyMixin, timestamp
from mc_exchange.core.models.users import User


class Message(UUIDPrimaryKeyMixin, Base):
    """One direct message from ``sender_id`` to ``receiver_id``."""

    __tablename__ = "messages"
    __table_args__ = (
        sa.Index("ix_messages_sender_receiver", "sender_id", "receiver_id"),
        sa.Index("ix_messages_receiver_read", "receiver_id", "read"),
    )
    __mapper_args__ = {"eager_defaults": True}

    content: Mapped[str] = mapped_column(sa.Text, nullable=False)
    read: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=False, server_default=sa.text("false")
    )
    read_at: Mapped[Optional[datetime]] = timestamp()
    sender_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    receiver_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    listing_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("listings.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=sa.text("NOW()"),
        index=True,
    )

    sender: Mapped[User] = relationship("User", foreign_keys=[sender_id])
    receiver: Mapped[User] = relationship("User", foreign_keys=[receiver_id])

    def __repr__(self) -> str:
        return f"<Message id={self.id} sender={self.sender_id} receiver={self.receiver_id}>"
