"""Schemas for registration, login, token refresh and account management."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from pydantic import EmailStr, Field, field_validator

from mc_exchange.core.models.enums import UserRole
from mc_exchange.core.schemas.common import CamelModel


class RegisterRequest(CamelModel):
    """Self-service sign-up payload.

    Admin accounts cannot be created through registration.
    """

    email: EmailStr
    password: str = Field(min_length=1)
    name: str = Field(min_length=1, max_length=200)
    phone: Optional[str] = Field(default=None, max_length=40)
    role: UserRole = UserRole.BUYER
    company_name: Optional[str] = Field(default=None, max_length=200)

    @field_validator("role")
    @classmethod
    def _no_admin_signup(cls, value: UserRole) -> UserRole:
        if value == UserRole.ADMIN:
            raise ValueError("role must be BUYER or SELLER")
        return value


class LoginRequest(CamelModel):
    email: EmailStr
    password: str


class RefreshRequest(CamelModel):
    refresh_token: str


class TokenPair(CamelModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class VerifyEmailRequest(CamelModel):
    token: str


class ForgotPasswordRequest(CamelModel):
    email: EmailStr


class ResetPasswordRequest(CamelModel):
    token: str
    password: str


class ChangePasswordRequest(CamelModel):
    current_password: str
    new_password: str


class UserRead(CamelModel):
    """The authenticated user's own profile."""

    id: uuid.UUID
    email: EmailStr
    name: str
    phone: Optional[str] = None
    avatar: Optional[str] = None
    role: str
    status: str
    verified: bool
    email_verified: bool
    trust_score: int
    member_since: Optional[datetime] = None
    last_login_at: Optional[datetime] = None
    company_name: Optional[str] = None
    company_address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    seller_verified: bool = False
    total_credits: int = 0
    used_credits: int = 0


class PublicUser(CamelModel):
    """What other marketplace participants may see about a user."""

    id: uuid.UUID
    name: str
    avatar: Optional[str] = None
    verified: bool = False
    trust_score: int = 50
    member_since: Optional[datetime] = None
    company_name: Optional[str] = None


class UserUpdate(CamelModel):
    """Fields a user may change on their own profile."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    phone: Optional[str] = Field(default=None, max_length=40)
    avatar: Optional[str] = Field(default=None, max_length=500)
    company_name: Optional[str] = Field(default=None, max_length=200)
    company_address: Optional[str] = Field(default=None, max_length=300)
    city: Optional[str] = Field(default=None, max_length=100)
    state: Optional[str] = Field(default=None, min_length=2, max_length=2)
    zip_code: Optional[str] = Field(default=None, max_length=10)
    ein: Optional[str] = Field(default=None, max_length=20)


class AuthResult(CamelModel):
    user: UserRead
    tokens: TokenPair
