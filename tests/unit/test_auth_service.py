"""Unit tests for AuthService registration and login.

The session is mocked, so these cover the checks made before anything is
written: duplicate emails, password rules, credential and account-status
checks, and the hashed refresh token staged with every token pair.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from mc_exchange.core.auth_service import AuthService, hash_token
from mc_exchange.core.exceptions import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    UnauthorizedError,
)
from mc_exchange.core.models.users import EmailVerificationToken, RefreshToken, User
from mc_exchange.core.user_manager import password_helper
from tests.factories import BlockedUserFactory, build_user
from tests.factories.users import TEST_PASSWORD
from tests.helpers import added_objects, query_result


@pytest.fixture
def email() -> MagicMock:
    sender = MagicMock()
    sender.send_welcome = AsyncMock(return_value=True)
    sender.send_verification = AsyncMock(return_value=True)
    return sender


@pytest.fixture
def alerts() -> MagicMock:
    admin_inbox = MagicMock()
    admin_inbox.new_user = AsyncMock(return_value=True)
    return admin_inbox


@pytest.fixture
def service(mock_session, email, alerts) -> AuthService:
    gateway = MagicMock()
    gateway.enabled = False
    return AuthService(mock_session, email=email, stripe_gateway=gateway, alerts=alerts)


class TestRegister:
    async def test_duplicate_email_is_a_conflict(self, service, mock_session, alerts) -> None:
        mock_session.execute.return_value = query_result(build_user(email="taken@example.com"))

        with pytest.raises(ConflictError, match="Email already registered"):
            await service.register(email="Taken@Example.com", password="Str0ngPass!", name="Dup")

        assert added_objects(mock_session, User) == []
        mock_session.commit.assert_not_awaited()
        alerts.new_user.assert_not_awaited()

    async def test_short_password_is_rejected(self, service, mock_session) -> None:
        mock_session.execute.return_value = query_result(None)

        with pytest.raises(BadRequestError, match="at least 8 characters"):
            await service.register(email="new@example.com", password="short", name="New")

    async def test_new_account_gets_tokens_and_verification(
        self, service, mock_session, email, alerts
    ) -> None:
        mock_session.execute.return_value = query_result(None)

        result = await service.register(
            email="  New.Seller@Example.com ",
            password="Str0ngPass!",
            name="New Seller",
            role="SELLER",
        )

        [user] = added_objects(mock_session, User)
        assert result.user is user
        assert user.email == "new.seller@example.com"
        assert user.role == "SELLER"
        assert user.email_verified is False
        assert password_helper.verify_and_update("Str0ngPass!", user.hashed_password)[0]
        [refresh] = added_objects(mock_session, RefreshToken)
        assert refresh.token_hash == hash_token(result.tokens.refresh_token)
        assert len(added_objects(mock_session, EmailVerificationToken)) == 1
        mock_session.commit.assert_awaited_once()
        email.send_welcome.assert_awaited_once()
        assert "/verify-email?token=" in email.send_verification.await_args.kwargs["verification_url"]
        alerts.new_user.assert_awaited_once_with(user)


class TestLogin:
    async def test_unknown_email(self, service, mock_session) -> None:
        mock_session.execute.return_value = query_result(None)

        with pytest.raises(UnauthorizedError, match="Invalid email or password"):
            await service.login("nobody@example.com", TEST_PASSWORD)

    async def test_wrong_password(self, service, mock_session) -> None:
        mock_session.execute.return_value = query_result(build_user())

        with pytest.raises(UnauthorizedError, match="Invalid email or password"):
            await service.login("user@example.com", "not-the-password")
        assert added_objects(mock_session, RefreshToken) == []

    async def test_blocked_account(self, service, mock_session) -> None:
        mock_session.execute.return_value = query_result(build_user(BlockedUserFactory))

        with pytest.raises(ForbiddenError, match="blocked"):
            await service.login("blocked@example.com", TEST_PASSWORD)
        mock_session.commit.assert_not_awaited()

    async def test_suspended_account(self, service, mock_session) -> None:
        mock_session.execute.return_value = query_result(build_user(status="SUSPENDED"))

        with pytest.raises(ForbiddenError, match="suspended"):
            await service.login("user@example.com", TEST_PASSWORD)

    async def test_successful_login(self, service, mock_session) -> None:
        user = build_user()
        mock_session.execute.return_value = query_result(user)

        result = await service.login(user.email, TEST_PASSWORD)

        assert result.user is user
        assert user.last_login_at is not None
        assert result.tokens.access_token
        assert len(added_objects(mock_session, RefreshToken)) == 1
        mock_session.commit.assert_awaited_once()
