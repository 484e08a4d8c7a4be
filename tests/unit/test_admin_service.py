"""Unit tests for AdminService account moderation."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from mc_exchange.core.admin_service import AdminService
from mc_exchange.core.exceptions import BadRequestError, NotFoundError
from mc_exchange.core.models.admin import AdminAction
from mc_exchange.core.models.enums import UserStatus
from mc_exchange.core.models.notifications import Notification
from tests.factories import AdminUserFactory, UserFactory, build_user
from tests.helpers import added_objects, query_result


@pytest.fixture
def admin():
    return build_user(AdminUserFactory)


@pytest.fixture
def email() -> MagicMock:
    sender = MagicMock()
    sender.send_account_blocked = AsyncMock(return_value=True)
    return sender


@pytest.fixture
def cache() -> MagicMock:
    redis_cache = MagicMock()
    redis_cache.invalidate_user = AsyncMock()
    return redis_cache


@pytest.fixture
def service(mock_session, email, cache) -> AdminService:
    return AdminService(mock_session, email=email, cache=cache)


class TestBlockUser:
    async def test_blocks_and_revokes_every_refresh_token(
        self, service, mock_session, email, cache, admin
    ) -> None:
        user = build_user()
        mock_session.get.return_value = user
        mock_session.execute.return_value = query_result(rowcount=2)

        await service.block_user(user.id, admin.id, "Spam listings")

        assert user.status == UserStatus.BLOCKED
        [statement] = [call.args[0] for call in mock_session.execute.await_args_list]
        assert statement.is_delete
        assert statement.table.name == "refresh_tokens"
        assert user.id in statement.compile().params.values()
        [action] = added_objects(mock_session, AdminAction)
        assert action.action == "BLOCK_USER"
        assert action.reason == "Spam listings"
        mock_session.commit.assert_awaited_once()
        cache.invalidate_user.assert_awaited_once_with(str(user.id))
        email.send_account_blocked.assert_awaited_once_with(
            user.email, name=user.name, reason="Spam listings"
        )

    async def test_admin_cannot_block_themselves(self, service, mock_session, admin) -> None:
        mock_session.get.return_value = admin

        with pytest.raises(BadRequestError, match="your own account"):
            await service.block_user(admin.id, admin.id, "Oops")

        assert admin.status == UserStatus.ACTIVE
        mock_session.execute.assert_not_awaited()

    async def test_unknown_user(self, service, mock_session, admin) -> None:
        mock_session.get.return_value = None

        with pytest.raises(NotFoundError):
            await service.block_user(admin.id, admin.id, "Gone")


class TestVerifySeller:
    async def test_marks_verified_and_adds_trust_bonus(
        self, service, mock_session, cache, admin
    ) -> None:
        seller = build_user(UserFactory, role="SELLER", trust_score=60)
        mock_session.get.return_value = seller

        await service.verify_seller(seller.id, admin.id)

        assert seller.seller_verified is True
        assert seller.verified is True
        assert seller.seller_verified_at is not None
        assert seller.trust_score == 80
        [action] = added_objects(mock_session, AdminAction)
        assert action.action == "VERIFY_SELLER"
        [notification] = added_objects(mock_session, Notification)
        assert notification.user_id == seller.id
        cache.invalidate_user.assert_awaited_once_with(str(seller.id))

    async def test_trust_score_is_capped(self, service, mock_session, admin) -> None:
        seller = build_user(UserFactory, role="SELLER", trust_score=95)
        mock_session.get.return_value = seller

        await service.verify_seller(seller.id, admin.id)

        assert seller.trust_score == 100

    async def test_already_verified(self, service, mock_session, admin) -> None:
        seller = build_user(UserFactory, role="SELLER", seller_verified=True)
        mock_session.get.return_value = seller

        with pytest.raises(BadRequestError, match="already verified"):
            await service.verify_seller(seller.id, admin.id)
        mock_session.commit.assert_not_awaited()
