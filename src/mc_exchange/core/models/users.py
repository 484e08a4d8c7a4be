"""User identity and token ORM models.

Covers:
- User: buyer, seller or admin account, including company details, trust
  score and the two credit counters (``total_credits`` / ``used_credits``).
- RefreshToken: hashed refresh-token store supporting rotation and revocation.
- PasswordResetToken: single-use reset token (hash only), valid for one hour.
- EmailVerificationToken: email confirmation token (hash only), valid 24 hours.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mc_exchange.core.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin, timestamp
from mc_exchange.core.models.enums import UserRole, UserStatus

if TYPE_CHECKING:
    from mc_exchange.core.models.credits import Subscription
    from mc_exchange.core.models.listings import Listing


class User(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A marketplace account.

    ``is_active``, ``is_superuser`` and ``is_verified`` are derived from
    ``status``, ``role`` and ``email_verified`` so that FastAPI-Users can
    resolve the current user without extra columns.
    """

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(
        sa.String(320),
        unique=True,
        nullable=False,
        index=True,
    )
    hashed_password: Mapped[str] = mapped_column(sa.String(1024), nullable=False)
    name: Mapped[str] = mapped_column(sa.String(200), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(sa.String(40), nullable=True)
    avatar: Mapped[Optional[str]] = mapped_column(sa.String(500), nullable=True)
    role: Mapped[str] = mapped_column(
        sa.String(20),
        nullable=False,
        default=UserRole.BUYER.value,
        server_default=sa.text("'BUYER'"),
    )
    status: Mapped[str] = mapped_column(
        sa.String(32),
        nullable=False,
        default=UserStatus.ACTIVE.value,
        server_default=sa.text("'ACTIVE'"),
        index=True,
    )

    # Verification & trust
    verified: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=False, server_default=sa.text("false")
    )
    verified_at: Mapped[Optional[datetime]] = timestamp()
    email_verified: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=False, server_default=sa.text("false")
    )
    trust_score: Mapped[int] = mapped_column(
        sa.Integer, nullable=False, default=50, server_default=sa.text("50")
    )
    member_since: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=sa.text("NOW()"),
    )
    last_login_at: Mapped[Optional[datetime]] = timestamp()

    # Company
    company_name: Mapped[Optional[str]] = mapped_column(sa.String(200), nullable=True)
    company_address: Mapped[Optional[str]] = mapped_column(sa.String(300), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(sa.String(100), nullable=True)
    state: Mapped[Optional[str]] = mapped_column(sa.String(2), nullable=True)
    zip_code: Mapped[Optional[str]] = mapped_column(sa.String(10), nullable=True)
    ein: Mapped[Optional[str]] = mapped_column(sa.String(20), nullable=True)

    # Seller verification
    seller_verified: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=False, server_default=sa.text("false")
    )
    seller_verified_at: Mapped[Optional[datetime]] = timestamp()

    # Credits
    total_credits: Mapped[int] = mapped_column(
        sa.Integer, nullable=False, default=0, server_default=sa.text("0")
    )
    used_credits: Mapped[int] = mapped_column(
        sa.Integer, nullable=False, default=0, server_default=sa.text("0")
    )

    stripe_customer_id: Mapped[Optional[str]] = mapped_column(
        sa.String(100), nullable=True, index=True
    )

    # Relationships
    refresh_tokens: Mapped[list[RefreshToken]] = relationship(
        "RefreshToken",
        back_populates="user",
        cascade="all, delete-orphan",
    )
    listings: Mapped[list[Listing]] = relationship(
        "Listing",
        foreign_keys="Listing.seller_id",
        back_populates="seller",
    )
    subscription: Mapped[Optional[Subscription]] = relationship(
        "Subscription",
        back_populates="user",
        uselist=False,
    )

    # ------------------------------------------------------------------
    # FastAPI-Users virtual fields
    # ------------------------------------------------------------------

    @property
    def is_active(self) -> bool:
        return self.status not in (UserStatus.BLOCKED, UserStatus.SUSPENDED)

    @property
    def is_superuser(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_verified(self) -> bool:
        return bool(self.email_verified)

    @property
    def available_credits(self) -> int:
        """Credits the user can still spend."""
        return (self.total_credits or 0) - (self.used_credits or 0)

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r} role={self.role!r}>"


class RefreshToken(Base):
    """A refresh token issued at login; only its SHA-256 hash is stored.

    Rows are deleted on logout and rotated (delete + insert) on refresh.
    """

    __tablename__ = "refresh_tokens"

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
    token_hash: Mapped[str] = mapped_column(
        sa.String(64),
        nullable=False,
        unique=True,
        index=True,
    )
    expires_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=sa.text("NOW()"),
    )

    user: Mapped[User] = relationship("User", back_populates="refresh_tokens")

    def __repr__(self) -> str:
        return f"<RefreshToken id={self.id} user_id={self.user_id}>"


class PasswordResetToken(Base):
    """One-hour, single-use password reset token (hash only)."""

    __tablename__ = "password_reset_tokens"

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
    token_hash: Mapped[str] = mapped_column(sa.String(64), nullable=False, unique=True)
    expires_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    used_at: Mapped[Optional[datetime]] = timestamp()
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=sa.text("NOW()"),
    )


class EmailVerificationToken(Base):
    """24-hour email verification token (hash only).

    ``email`` records the address being confirmed so that a later email
    change invalidates outstanding tokens.
    """

    __tablename__ = "email_verification_tokens"

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
    email: Mapped[str] = mapped_column(sa.String(320), nullable=False)
    token_hash: Mapped[str] = mapped_column(sa.String(64), nullable=False, unique=True)
    expires_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    verified_at: Mapped[Optional[datetime]] = timestamp()
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=sa.text("NOW()"),
    )
