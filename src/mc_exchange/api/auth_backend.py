"""FastAPI-Users wiring for bearer-token authentication.

Access tokens are FastAPI-Users JWTs carried as ``Authorization: Bearer``
headers.  Refresh tokens are issued and rotated separately by
:class:`~mc_exchange.core.auth_service.AuthService`.

Exported names:
    bearer_backend: the bearer ``AuthenticationBackend``.
    fastapi_users: the ``FastAPIUsers`` instance used by
        ``api/dependencies.py`` to resolve the signed-in user.
"""

from __future__ import annotations

import uuid

from fastapi_users import FastAPIUsers
from fastapi_users.authentication import AuthenticationBackend, BearerTransport

from mc_exchange.core.models.users import User
from mc_exchange.core.user_manager import get_jwt_strategy, get_user_manager

bearer_transport = BearerTransport(tokenUrl="/api/auth/login")

bearer_backend: AuthenticationBackend = AuthenticationBackend(
    name="bearer",
    transport=bearer_transport,
    get_strategy=get_jwt_strategy,
)

fastapi_users: FastAPIUsers[User, uuid.UUID] = FastAPIUsers(
    get_user_manager,
    [bearer_backend],
)
