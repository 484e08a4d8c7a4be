"""FastAPI dependency injection providers.

Provides reusable dependencies for authentication, role checks and
pagination.  Bearer-token resolution delegates to FastAPI-Users via the
``fastapi_users`` instance defined in ``api/auth_backend.py``.

Dependency hierarchy::

    get_optional_user    : returns None unless an ACTIVE user is signed in
    get_current_user     : requires a valid bearer token and an account
                            that is neither BLOCKED nor SUSPENDED
    require_role(*roles) : additionally requires one of *roles*
    require_admin / require_seller / require_buyer
"""

from __future__ import annotations

from typing import Annotated, Callable, Optional

from fastapi import Depends, Query

from mc_exchange.api.auth_backend import fastapi_users
from mc_exchange.core.exceptions import ForbiddenError
from mc_exchange.core.models.enums import UserRole, UserStatus
from mc_exchange.core.models.users import User
from mc_exchange.core.schemas.common import PageParams


# ---------------------------------------------------------------------------
# Internal helper
# ---------------------------------------------------------------------------


def _current_user_dep(*, active: bool, optional: bool):  # type: ignore[no-untyped-def]
    """Return a FastAPI-Users ``current_user`` callable dependency.

    Args:
        active: If ``True``, inactive users are treated as anonymous.
        optional: If ``True``, return ``None`` instead of raising 401.
    """
    return fastapi_users.current_user(active=active, optional=optional)


# ---------------------------------------------------------------------------
# Core auth dependencies
# ---------------------------------------------------------------------------


async def get_current_user(
    user: Annotated[User, Depends(_current_user_dep(active=False, optional=False))],
) -> User:
    """Require a valid bearer token for a usable account.

    Raises:
        HTTPException 401: No valid token (raised by FastAPI-Users).
        ForbiddenError: The account is blocked or suspended.
    """
    if user.status in (UserStatus.BLOCKED, UserStatus.SUSPENDED):
        raise ForbiddenError("Account is suspended or blocked.")
    return user


async def get_optional_user(
    user: Annotated[
        Optional[User],
        Depends(_current_user_dep(active=True, optional=True)),
    ],
) -> Optional[User]:
    """Return the signed-in active user, or ``None`` for anonymous callers.

    Used on public routes that personalise their answer (listing detail,
    browse) when a token is present.
    """
    return user


def require_role(*roles: UserRole) -> Callable:
    """Build a dependency that admits only users holding one of *roles*."""

    async def _dependency(user: Annotated[User, Depends(get_current_user)]) -> User:
        if user.role not in roles:
            raise ForbiddenError("Access denied. Insufficient permissions.")
        return user

    return _dependency


require_admin = require_role(UserRole.ADMIN)
require_seller = require_role(UserRole.SELLER, UserRole.ADMIN)
require_buyer = require_role(UserRole.BUYER, UserRole.ADMIN)

CurrentUser = Annotated[User, Depends(get_current_user)]
OptionalUser = Annotated[Optional[User], Depends(get_optional_user)]
AdminUser = Annotated[User, Depends(require_admin)]
SellerUser = Annotated[User, Depends(require_seller)]
BuyerUser = Annotated[User, Depends(require_buyer)]


# ---------------------------------------------------------------------------
# Pagination parameters
# ---------------------------------------------------------------------------


def get_page_params(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
) -> PageParams:
    """Parse ``?page=&limit=`` (1-based page, at most 100 rows)."""
    return PageParams(page=page, limit=limit)


Pages = Annotated[PageParams, Depends(get_page_params)]
