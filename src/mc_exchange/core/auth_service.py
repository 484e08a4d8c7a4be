"""Account lifecycle: registration, login, token rotation and password flows.

Access tokens are FastAPI-Users JWTs (see
:func:`~mc_exchange.core.user_manager.get_jwt_strategy`).  Refresh tokens
are JWTs signed with a separate secret and audience; only the SHA-256 hash
of each issued refresh token is stored, and every refresh rotates it.

Email verification and password reset use opaque 32-byte hex tokens whose
hashes are stored in ``email_verification_tokens`` and
``password_reset_tokens``.  Plain tokens only ever appear in email links.
"""

from __future__ import annotations

import hashlib
import secrets
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Optional

import jwt
import stripe
import structlog
from fastapi import Depends
from fastapi_users.jwt import decode_jwt, generate_jwt
from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from mc_exchange.config.settings import get_settings
from mc_exchange.core.admin_alert_service import AdminAlertService
from mc_exchange.core.database import get_db
from mc_exchange.core.email_service import EmailService, get_email_service
from mc_exchange.core.exceptions import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    ServiceUnavailableError,
    TooManyRequestsError,
    UnauthorizedError,
)
from mc_exchange.core.integrations.stripe_gateway import StripeGateway, get_stripe_gateway
from mc_exchange.core.models.enums import UserRole, UserStatus
from mc_exchange.core.models.users import (
    EmailVerificationToken,
    PasswordResetToken,
    RefreshToken,
    User,
)
from mc_exchange.core.schemas.auth import TokenPair
from mc_exchange.core.user_manager import get_jwt_strategy, password_helper

logger = structlog.get_logger(__name__)

REFRESH_TOKEN_AUDIENCE = "mc-exchange:refresh"

PASSWORD_RESET_MESSAGE = (
    "If an account exists with this email, a password reset link will be sent."
)


def generate_token() -> str:
    """Return 32 random bytes as a 64-character hex string."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


@dataclass
class AuthResult:
    user: User
    tokens: TokenPair


class AuthService:
    """Authentication workflows over one async session.

    Args:
        session: Open async session; each public method commits once.
        email: Email sender; defaults to the shared service.
        stripe_gateway: Payments gateway used to create customers.
        alerts: Admin inbox alerts; defaults to one sharing *email*.
    """

    def __init__(
        self,
        session: AsyncSession,
        email: Optional[EmailService] = None,
        stripe_gateway: Optional[StripeGateway] = None,
        alerts: Optional[AdminAlertService] = None,
    ) -> None:
        self.session = session
        self.email = email or get_email_service()
        self.stripe = stripe_gateway or get_stripe_gateway()
        self.alerts = alerts or AdminAlertService(session, email=self.email)
        self.settings = get_settings()

    # ------------------------------------------------------------------
    # Registration & login
    # ------------------------------------------------------------------

    async def register(
        self,
        *,
        email: str,
        password: str,
        name: str,
        role: UserRole | str = UserRole.BUYER,
        phone: Optional[str] = None,
        company_name: Optional[str] = None,
    ) -> AuthResult:
        """Create an account and return it with a fresh token pair.

        Raises:
            ConflictError: The email address is already registered.
            BadRequestError: The password is too short.
        """
        email = email.strip().lower()
        if await self._get_by_email(email) is not None:
            raise ConflictError("Email already registered")
        self._check_password_length(password)

        user = User(
            email=email,
            hashed_password=password_helper.hash(password),
            name=name,
            role=str(role),
            phone=phone,
            company_name=company_name,
            status=UserStatus.ACTIVE.value,
            trust_score=50,
            total_credits=0,
            used_credits=0,
            email_verified=False,
        )
        self.session.add(user)
        await self.session.flush()

        verification_token = self._stage_verification_token(user)
        tokens = await self._issue_tokens(user)
        await self.session.commit()
        logger.info("user_registered", user_id=str(user.id), role=user.role)

        await self._ensure_stripe_customer(user)
        await self.email.send_welcome(user.email, name=user.name, role=user.role)
        await self.email.send_verification(
            user.email,
            name=user.name,
            verification_url=self._verification_url(verification_token),
        )
        await self.alerts.new_user(user)
        return AuthResult(user=user, tokens=tokens)

    async def login(self, email: str, password: str) -> AuthResult:
        """Check credentials and account status, then issue tokens.

        Raises:
            UnauthorizedError: Unknown email or wrong password.
            ForbiddenError: The account is blocked or suspended.
        """
        user = await self._get_by_email(email)
        if user is None:
            raise UnauthorizedError("Invalid email or password")
        verified, updated_hash = password_helper.verify_and_update(
            password, user.hashed_password
        )
        if not verified:
            raise UnauthorizedError("Invalid email or password")
        if user.status == UserStatus.BLOCKED:
            raise ForbiddenError("Your account has been blocked")
        if user.status == UserStatus.SUSPENDED:
            raise ForbiddenError("Your account has been suspended")

        if updated_hash is not None:
            user.hashed_password = updated_hash
        user.last_login_at = datetime.now(UTC)
        tokens = await self._issue_tokens(user)
        await self.session.commit()
        logger.info("user_logged_in", user_id=str(user.id))
        return AuthResult(user=user, tokens=tokens)

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------

    async def refresh(self, refresh_token: str) -> TokenPair:
        """Rotate a refresh token and return a new token pair.

        Raises:
            UnauthorizedError: Token malformed, unknown, expired, or its
                user no longer exists.
        """
        try:
            payload = decode_jwt(
                refresh_token,
                self.settings.effective_refresh_secret,
                [REFRESH_TOKEN_AUDIENCE],
            )
        except jwt.ExpiredSignatureError as exc:
            raise UnauthorizedError("Refresh token expired") from exc
        except jwt.PyJWTError as exc:
            raise UnauthorizedError("Invalid refresh token") from exc

        stored = (
            await self.session.execute(
                select(RefreshToken).where(RefreshToken.token_hash == hash_token(refresh_token))
            )
        ).scalar_one_or_none()
        if stored is None:
            raise UnauthorizedError("Invalid refresh token")
        if stored.expires_at < datetime.now(UTC):
            await self.session.delete(stored)
            await self.session.commit()
            raise UnauthorizedError("Refresh token expired")

        user = await self.session.get(User, uuid.UUID(payload["sub"]))
        if user is None:
            raise UnauthorizedError("User not found")

        await self.session.delete(stored)
        tokens = await self._issue_tokens(user)
        await self.session.commit()
        return tokens

    async def logout(self, refresh_token: str) -> None:
        """Revoke one refresh token; unknown tokens are ignored."""
        await self.session.execute(
            delete(RefreshToken).where(RefreshToken.token_hash == hash_token(refresh_token))
        )
        await self.session.commit()

    async def logout_all(self, user_id: uuid.UUID) -> int:
        count = await self.revoke_refresh_tokens(user_id)
        await self.session.commit()
        logger.info("user_logged_out_everywhere", user_id=str(user_id), revoked=count)
        return count

    async def revoke_refresh_tokens(self, user_id: uuid.UUID) -> int:
        """Delete every refresh token of *user_id* (caller commits)."""
        result = await self.session.execute(
            delete(RefreshToken).where(RefreshToken.user_id == user_id)
        )
        return int(result.rowcount or 0)

    # ------------------------------------------------------------------
    # Email verification
    # ------------------------------------------------------------------

    async def verify_email(self, token: str) -> str:
        record = (
            await self.session.execute(
                select(EmailVerificationToken).where(
                    EmailVerificationToken.token_hash == hash_token(token),
                    EmailVerificationToken.verified_at.is_(None),
                )
            )
        ).scalar_one_or_none()
        if record is None:
            raise BadRequestError("Invalid or expired verification token")
        if record.expires_at < datetime.now(UTC):
            raise BadRequestError("Verification token has expired. Please request a new one.")

        user = await self.session.get(User, record.user_id)
        if user is None:
            raise BadRequestError("Invalid or expired verification token")

        user.email_verified = True
        if user.status == UserStatus.PENDING_VERIFICATION:
            user.status = UserStatus.ACTIVE.value
        record.verified_at = datetime.now(UTC)
        await self.session.commit()
        logger.info("email_verified", user_id=str(user.id))
        return "Email verified successfully"

    async def resend_verification_email(self, user_id: uuid.UUID) -> str:
        """Issue a new verification token, at most once every few minutes.

        Raises:
            BadRequestError: The address is already verified.
            TooManyRequestsError: A token was issued inside the cool-down.
        """
        user = await self.session.get(User, user_id)
        if user is None:
            raise UnauthorizedError("User not found")
        if user.email_verified:
            raise BadRequestError("Email is already verified")

        cooldown = self.settings.verification_resend_cooldown_minutes
        latest = (
            await self.session.execute(
                select(func.max(EmailVerificationToken.created_at)).where(
                    EmailVerificationToken.user_id == user.id
                )
            )
        ).scalar_one_or_none()
        if latest is not None and latest > datetime.now(UTC) - timedelta(minutes=cooldown):
            raise TooManyRequestsError(
                f"Please wait {cooldown} minutes before requesting a new verification email",
                retry_after=cooldown * 60,
            )

        await self.session.execute(
            delete(EmailVerificationToken).where(
                EmailVerificationToken.user_id == user.id,
                EmailVerificationToken.verified_at.is_(None),
            )
        )
        token = self._stage_verification_token(user)
        await self.session.commit()
        await self.email.send_verification(
            user.email, name=user.name, verification_url=self._verification_url(token)
        )
        return "Verification email sent"

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    async def request_password_reset(self, email: str) -> str:
        """Email a reset link when the account exists.

        The same message is returned either way so that the endpoint cannot
        be used to discover registered addresses.
        """
        user = await self._get_by_email(email)
        if user is None:
            logger.info("password_reset_unknown_email")
            return PASSWORD_RESET_MESSAGE

        await self.session.execute(
            delete(PasswordResetToken).where(
                PasswordResetToken.user_id == user.id,
                PasswordResetToken.used_at.is_(None),
            )
        )
        token = generate_token()
        self.session.add(
            PasswordResetToken(
                user_id=user.id,
                token_hash=hash_token(token),
                expires_at=datetime.now(UTC)
                + timedelta(minutes=self.settings.password_reset_expire_minutes),
            )
        )
        await self.session.commit()
        await self.email.send_password_reset(
            user.email,
            name=user.name,
            reset_url=f"{self.settings.frontend_url}/reset-password?token={token}",
        )
        logger.info("password_reset_requested", user_id=str(user.id))
        return PASSWORD_RESET_MESSAGE

    async def reset_password(self, token: str, new_password: str) -> str:
        record = (
            await self.session.execute(
                select(PasswordResetToken).where(
                    PasswordResetToken.token_hash == hash_token(token),
                    PasswordResetToken.used_at.is_(None),
                )
            )
        ).scalar_one_or_none()
        if record is None:
            raise BadRequestError("Invalid or expired reset token")
        if record.expires_at < datetime.now(UTC):
            raise BadRequestError("Reset token has expired. Please request a new password reset.")
        self._check_password_length(new_password)

        user = await self.session.get(User, record.user_id)
        if user is None:
            raise BadRequestError("Invalid or expired reset token")

        user.hashed_password = password_helper.hash(new_password)
        record.used_at = datetime.now(UTC)
        await self.revoke_refresh_tokens(user.id)
        await self.session.commit()
        logger.info("password_reset_completed", user_id=str(user.id))
        return "Password reset successful. Please log in with your new password."

    async def change_password(
        self,
        user_id: uuid.UUID,
        current_password: str,
        new_password: str,
    ) -> str:
        user = await self.session.get(User, user_id)
        if user is None:
            raise UnauthorizedError("User not found")
        verified, _ = password_helper.verify_and_update(current_password, user.hashed_password)
        if not verified:
            raise UnauthorizedError("Current password is incorrect")
        if current_password == new_password:
            raise BadRequestError("New password must be different from current password")
        self._check_password_length(new_password)

        user.hashed_password = password_helper.hash(new_password)
        await self.revoke_refresh_tokens(user.id)
        await self.session.commit()
        logger.info("password_changed", user_id=str(user.id))
        return "Password changed successfully. Please log in again."

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def cleanup_expired_tokens(self) -> dict[str, int]:
        """Purge expired refresh tokens and spent or expired one-time tokens."""
        now = datetime.now(UTC)
        refresh = await self.session.execute(
            delete(RefreshToken).where(RefreshToken.expires_at < now)
        )
        reset = await self.session.execute(
            delete(PasswordResetToken).where(
                or_(PasswordResetToken.expires_at < now, PasswordResetToken.used_at.is_not(None))
            )
        )
        verification = await self.session.execute(
            delete(EmailVerificationToken).where(
                or_(
                    EmailVerificationToken.expires_at < now,
                    EmailVerificationToken.verified_at.is_not(None),
                )
            )
        )
        await self.session.commit()
        counts = {
            "refresh_tokens": int(refresh.rowcount or 0),
            "reset_tokens": int(reset.rowcount or 0),
            "verification_tokens": int(verification.rowcount or 0),
        }
        counts["deleted"] = sum(counts.values())
        logger.info("expired_tokens_cleaned", **counts)
        return counts

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _get_by_email(self, email: str) -> Optional[User]:
        result = await self.session.execute(
            select(User).where(func.lower(User.email) == email.strip().lower())
        )
        return result.scalar_one_or_none()

    def _check_password_length(self, password: str) -> None:
        min_length = self.settings.password_min_length
        if len(password) < min_length:
            raise BadRequestError(f"Password must be at least {min_length} characters")

    def _stage_verification_token(self, user: User) -> str:
        token = generate_token()
        self.session.add(
            EmailVerificationToken(
                user_id=user.id,
                email=user.email,
                token_hash=hash_token(token),
                expires_at=datetime.now(UTC)
                + timedelta(hours=self.settings.email_verification_expire_hours),
            )
        )
        return token

    def _verification_url(self, token: str) -> str:
        return f"{self.settings.frontend_url}/verify-email?token={token}"

    async def _issue_tokens(self, user: User) -> TokenPair:
        """Sign an access token and stage a hashed refresh token (caller commits)."""
        access_token = await get_jwt_strategy().write_token(user)
        lifetime = timedelta(days=self.settings.refresh_token_expire_days)
        refresh_token = generate_jwt(
            {
                "sub": str(user.id),
                "aud": REFRESH_TOKEN_AUDIENCE,
                "jti": secrets.token_hex(16),
            },
            self.settings.effective_refresh_secret,
            int(lifetime.total_seconds()),
        )
        self.session.add(
            RefreshToken(
                user_id=user.id,
                token_hash=hash_token(refresh_token),
                expires_at=datetime.now(UTC) + lifetime,
            )
        )
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=self.settings.access_token_expire_minutes * 60,
        )

    async def _ensure_stripe_customer(self, user: User) -> None:
        """Create the user's Stripe customer; failures never block signup."""
        if not self.stripe.enabled or user.stripe_customer_id:
            return
        try:
            user.stripe_customer_id = await self.stripe.create_customer(
                user.email,
                user.name,
                phone=user.phone,
                metadata={"userId": str(user.id), "role": user.role},
            )
            await self.session.commit()
        except (stripe.StripeError, ServiceUnavailableError):
            logger.warning("stripe_customer_creation_failed", user_id=str(user.id), exc_info=True)


# ---------------------------------------------------------------------------
# FastAPI dependency factory
# ---------------------------------------------------------------------------


async def get_auth_service(session: AsyncSession = Depends(get_db)) -> AuthService:
    return AuthService(session=session)
