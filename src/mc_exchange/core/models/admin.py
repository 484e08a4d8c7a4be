"""Admin audit log and platform settings ORM models.

Covers:
- AdminAction: one row per moderation action (approve listing, block user,
  verify seller, resolve dispute, ...).
- PlatformSetting: typed key/value overrides editable from the admin panel
  (pricing, social-media credentials, feature switches).
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column

from mc_exchange.core.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class AdminAction(UUIDPrimaryKeyMixin, Base):
    """Immutable audit record of an admin's moderation action."""

    __tablename__ = "admin_actions"

    action: Mapped[str] = mapped_column(sa.String(50), nullable=False, index=True)
    target_type: Mapped[str] = mapped_column(sa.String(30), nullable=False)
    target_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    metadata_: Mapped[Optional[dict]] = mapped_column(
        "metadata",
        JSONB,
        nullable=True,
        server_default=sa.text("'{}'"),
    )
    admin_id: Mapped[uuid.UUID] = mapped_column(
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


class PlatformSetting(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A typed platform setting.

    ``value`` is always stored as text; ``type`` (``string``, ``number``,
    ``boolean``, ``json``) tells readers how to parse it.
    """

    __tablename__ = "platform_settings"

    key: Mapped[str] = mapped_column(sa.String(100), nullable=False, unique=True)
    value: Mapped[str] = mapped_column(sa.Text, nullable=False)
    type: Mapped[str] = mapped_column(
        sa.String(20),
        nullable=False,
        default="string",
        server_default=sa.text("'string'"),
    )

    def __repr__(self) -> str:
        return f"<PlatformSetting key={self.key!r} type={self.type!r}>"
