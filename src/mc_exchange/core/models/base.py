"""SQLAlchemy declarative base and shared column mixins.

Provides:
- Base: the DeclarativeBase subclass every model inherits from
- UUIDPrimaryKeyMixin: ``id`` UUID primary key generated by PostgreSQL
- TimestampMixin: created_at / updated_at with server-side defaults
- money(): column factory for USD amounts
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Shared declarative base for all MC Exchange models."""

    type_annotation_map = {
        uuid.UUID: UUID(as_uuid=True),
    }


class UUIDPrimaryKeyMixin:
    """Adds a ``gen_random_uuid()`` primary key.

    The id is assigned in the constructor so that services can reference
    ``obj.id`` before the first flush (for example to build notification
    links).
    """

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=sa.text("gen_random_uuid()"),
    )

    def __init__(self, **kwargs: Any) -> None:
        kwargs.setdefault("id", uuid.uuid4())
        super().__init__(**kwargs)


class TimestampMixin:
    """Adds created_at and updated_at columns.

    The server default fires on INSERT; ``onupdate`` covers ORM updates.
    ``eager_defaults`` fetches both back with RETURNING so that reading
    them after a commit never triggers a lazy load on an async session.
    """

    __mapper_args__ = {"eager_defaults": True}

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=sa.text("NOW()"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=sa.text("NOW()"),
        onupdate=sa.text("NOW()"),
    )


def money(*, nullable: bool = False, default: float | None = None):  # noqa: ANN201
    """Return a ``NUMERIC(12, 2)`` column that reads back as ``float``."""
    kwargs: dict = {"nullable": nullable}
    if default is not None:
        kwargs["default"] = default
        kwargs["server_default"] = sa.text(str(default))
    return mapped_column(sa.Numeric(12, 2, asdecimal=False), **kwargs)


def timestamp(*, nullable: bool = True):  # noqa: ANN201
    """Return a timezone-aware ``TIMESTAMP`` column."""
    return mapped_column(TIMESTAMP(timezone=True), nullable=nullable)
