"""Authentication routes: registration, login, token rotation and password flows.

Access tokens are FastAPI-Users JWTs (see ``api/auth_backend.py``); refresh
tokens, email verification and password resets are handled by
:class:`~mc_exchange.core.auth_service.AuthService`.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request, status

from mc_exchange.api.dependencies import CurrentUser
from mc_exchange.api.limiter import AUTH_LIMIT, PASSWORD_RESET_LIMIT, limiter
from mc_exchange.core.auth_service import AuthService, get_auth_service
from mc_exchange.core.models.users import User
from mc_exchange.core.schemas.auth import (
    AuthResult,
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    RefreshRequest,
    RegisterRequest,
    ResetPasswordRequest,
    TokenPair,
    UserRead,
    VerifyEmailRequest,
)
from mc_exchange.core.schemas.common import ok

router = APIRouter()


def _auth_payload(user: User, tokens: TokenPair) -> AuthResult:
    return AuthResult(user=UserRead.model_validate(user), tokens=tokens)


# ---------------------------------------------------------------------------
# Registration & login
# ---------------------------------------------------------------------------


@router.post("/register", status_code=status.HTTP_201_CREATED)
@limiter.limit(AUTH_LIMIT)
async def register(
    request: Request,
    body: RegisterRequest,
    service: AuthService = Depends(get_auth_service),
) -> dict:
    result = await service.register(
        email=body.email,
        password=body.password,
        name=body.name,
        role=body.role,
        phone=body.phone,
        company_name=body.company_name,
    )
    return ok(
        _auth_payload(result.user, result.tokens),
        message="Registration successful. Please verify your email address.",
    )


@router.post("/login")
@limiter.limit(AUTH_LIMIT)
async def login(
    request: Request,
    body: LoginRequest,
    service: AuthService = Depends(get_auth_service),
) -> dict:
    result = await service.login(body.email, body.password)
    return ok(_auth_payload(result.user, result.tokens), message="Login successful")


@router.post("/refresh-token")
@limiter.limit(AUTH_LIMIT)
async def refresh_token(
    request: Request,
    body: RefreshRequest,
    service: AuthService = Depends(get_auth_service),
) -> dict:
    return ok(await service.refresh(body.refresh_token))


@router.post("/logout")
async def logout(
    body: Optional[RefreshRequest] = None,
    service: AuthService = Depends(get_auth_service),
) -> dict:
    """Revoke one refresh token; succeeds even when the token is unknown."""
    if body is not None:
        await service.logout(body.refresh_token)
    return ok(message="Logged out successfully")


@router.post("/logout-all")
async def logout_all(
    user: CurrentUser,
    service: AuthService = Depends(get_auth_service),
) -> dict:
    revoked = await service.logout_all(user.id)
    return ok({"revokedSessions": revoked}, message="Logged out from all devices")


@router.get("/me")
async def me(user: CurrentUser) -> dict:
    return ok(UserRead.model_validate(user))


# ---------------------------------------------------------------------------
# Email verification
# ---------------------------------------------------------------------------


@router.post("/verify-email")
@limiter.limit(AUTH_LIMIT)
async def verify_email(
    request: Request,
    body: VerifyEmailRequest,
    service: AuthService = Depends(get_auth_service),
) -> dict:
    return ok(message=await service.verify_email(body.token))


@router.post("/resend-verification")
@limiter.limit(PASSWORD_RESET_LIMIT)
async def resend_verification(
    request: Request,
    user: CurrentUser,
    service: AuthService = Depends(get_auth_service),
) -> dict:
    return ok(message=await service.resend_verification_email(user.id))


# ---------------------------------------------------------------------------
# Passwords
# ---------------------------------------------------------------------------


@router.post("/forgot-password")
@limiter.limit(PASSWORD_RESET_LIMIT)
async def forgot_password(
    request: Request,
    body: ForgotPasswordRequest,
    service: AuthService = Depends(get_auth_service),
) -> dict:
    return ok(message=await service.request_password_reset(body.email))


@router.post("/reset-password")
@limiter.limit(PASSWORD_RESET_LIMIT)
async def reset_password(
    request: Request,
    body: ResetPasswordRequest,
    service: AuthService = Depends(get_auth_service),
) -> dict:
    return ok(message=await service.reset_password(body.token, body.password))


@router.post("/change-password")
async def change_password(
    body: ChangePasswordRequest,
    user: CurrentUser,
    service: AuthService = Depends(get_auth_service),
) -> dict:
    message = await service.change_password(user.id, body.current_password, body.new_password)
    return ok(message=message)
