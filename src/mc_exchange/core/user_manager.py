"""FastAPI-Users integration: UserManager, database adapter and JWT strategy.

This module wires the ``User`` SQLAlchemy model into FastAPI-Users so that
the bearer-token dependency (``fastapi_users.current_user``) can resolve the
caller on every request.

Registration, login and password flows are implemented by
:class:`~mc_exchange.core.auth_service.AuthService` because they carry
marketplace rules (roles, account status, refresh-token rotation) that the
stock FastAPI-Users routers do not model.  FastAPI-Users is used for:

- access-token signing and verification (:func:`get_jwt_strategy`),
- password hashing (:data:`password_helper`),
- resolving the current user from ``Authorization: Bearer <token>``.

The adapter maps our domain fields to the interface FastAPI-Users expects:

- ``is_active``:    derived from ``status`` (BLOCKED and SUSPENDED are inactive)
- ``is_superuser``: derived from ``role == 'ADMIN'``
- ``is_verified``:  derived from ``email_verified``

Exports:
    password_helper: shared :class:`fastapi_users.password.PasswordHelper`.
    get_jwt_strategy: access-token strategy factory.
    McExchangeUserDatabase: SQLAlchemy adapter bridging our User model.
    UserManager: The FastAPI-Users manager class.
    get_user_db, get_user_manager: FastAPI dependencies.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator
from typing import Any, Optional

import structlog
from fastapi import Depends
from fastapi_users import BaseUserManager, UUIDIDMixin
from fastapi_users.authentication import JWTStrategy
from fastapi_users.db import SQLAlchemyUserDatabase
from fastapi_users.password import PasswordHelper
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from mc_exchange.config.settings import get_settings
from mc_exchange.core.database import get_db
from mc_exchange.core.models.users import User

logger = structlog.get_logger(__name__)

password_helper = PasswordHelper()
"""Argon2/bcrypt password hasher shared by the auth service and scripts."""

_VIRTUAL_FIELDS = ("is_active", "is_superuser", "is_verified")


# ---------------------------------------------------------------------------
# JWT strategy
# ---------------------------------------------------------------------------


def get_jwt_strategy() -> JWTStrategy:
    """Build the access-token ``JWTStrategy`` from application settings.

    Not cached so that a settings reload (e.g. in tests) picks up a fresh
    secret.

    Returns:
        A ``JWTStrategy`` signed with ``secret_key`` and living
        ``access_token_expire_minutes``.
    """
    settings = get_settings()
    return JWTStrategy(
        secret=settings.secret_key,
        lifetime_seconds=settings.access_token_expire_minutes * 60,
    )


# ---------------------------------------------------------------------------
# Custom SQLAlchemy user database adapter
# ---------------------------------------------------------------------------


class McExchangeUserDatabase(SQLAlchemyUserDatabase):
    """SQLAlchemy adapter that bridges our ``User`` model to FastAPI-Users.

    Email lookups are case-insensitive because addresses are stored
    lower-cased.  Write dicts are stripped of the virtual fields, which are
    read-only properties on the model.
    """

    async def get_by_email(self, email: str) -> Optional[User]:  # type: ignore[override]
        result = await self.session.execute(
            select(User).where(func.lower(User.email) == email.strip().lower())
        )
        return result.scalars().first()

    async def create(self, create_dict: dict[str, Any]) -> User:  # type: ignore[override]
        for name in _VIRTUAL_FIELDS:
            create_dict.pop(name, None)
        create_dict["email"] = create_dict["email"].lower()
        return await super().create(create_dict)

    async def update(self, user: User, update_dict: dict[str, Any]) -> User:  # type: ignore[override]
        for name in _VIRTUAL_FIELDS:
            update_dict.pop(name, None)
        return await super().update(user, update_dict)


# ---------------------------------------------------------------------------
# UserManager
# ---------------------------------------------------------------------------


class UserManager(UUIDIDMixin, BaseUserManager[User, uuid.UUID]):
    """FastAPI-Users UserManager used to resolve bearer tokens.

    The FastAPI-Users reset/verify token secrets are set for completeness;
    the marketplace issues its own single-use hashed tokens instead.
    """

    @property
    def reset_password_token_secret(self) -> str:
        return get_settings().secret_key

    @property
    def verification_token_secret(self) -> str:
        return get_settings().secret_key


# ---------------------------------------------------------------------------
# FastAPI dependency factories
# ---------------------------------------------------------------------------


async def get_user_db(
    session: AsyncSession = Depends(get_db),
) -> AsyncGenerator[McExchangeUserDatabase, None]:
    """Provide a ``McExchangeUserDatabase`` bound to the request session."""
    yield McExchangeUserDatabase(session, User)


async def get_user_manager(
    user_db: McExchangeUserDatabase = Depends(get_user_db),
) -> AsyncGenerator[UserManager, None]:
    """Provide a ``UserManager`` using the shared :data:`password_helper`."""
    yield UserManager(user_db, password_helper)
