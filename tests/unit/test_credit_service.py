"""Unit tests for CreditService.

Tests use a mocked AsyncSession so they run without any database
infrastructure.  They cover the balance formula, the ledger row written for
every counter change, credit-pack webhooks being applied once per payment
intent, and the scheduled subscription jobs.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from mc_exchange.config.pricing import CREDIT_PACKS, SUBSCRIPTION_PLANS
from mc_exchange.core.credit_service import CreditService, add_months, next_renewal
from mc_exchange.core.exceptions import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
)
from mc_exchange.core.models.credits import CreditTransaction, Subscription
from mc_exchange.core.models.enums import SubscriptionStatus
from mc_exchange.core.models.transactions import Payment
from tests.factories import build_user
from tests.helpers import added_objects, query_result


def _subscription(user_id: uuid.UUID, **overrides) -> Subscription:  # noqa: ANN003
    fields = {
        "user_id": user_id,
        "plan": "STARTER",
        "status": SubscriptionStatus.ACTIVE.value,
        "price_monthly": 99.0,
        "price_yearly": 950.0,
        "is_yearly": False,
        "credits_per_month": 4,
        "credits_remaining": 0,
        "stripe_sub_id": None,
        "start_date": datetime.now(UTC) - timedelta(days=31),
        "renewal_date": datetime.now(UTC) - timedelta(hours=1),
    }
    fields.update(overrides)
    return Subscription(**fields)


@pytest.fixture
def stripe_gateway() -> MagicMock:
    gateway = MagicMock()
    gateway.create_customer = AsyncMock(return_value="cus_test_1")
    gateway.create_payment_intent = AsyncMock(
        return_value={"id": "pi_test_1", "client_secret": "pi_test_1_secret"}
    )
    gateway.create_subscription_checkout = AsyncMock(
        return_value={"id": "cs_sub_1", "url": "https://checkout.stripe.com/c/cs_sub_1"}
    )
    gateway.cancel_subscription = AsyncMock()
    return gateway


@pytest.fixture
def email() -> MagicMock:
    sender = MagicMock()
    sender.send_payment_received = AsyncMock(return_value=True)
    return sender


@pytest.fixture
def service(mock_session, stripe_gateway, email) -> CreditService:
    svc = CreditService(mock_session, stripe_gateway=stripe_gateway, email=email)
    svc.pricing = MagicMock()
    svc.pricing.get_plan = AsyncMock(side_effect=lambda key: SUBSCRIPTION_PLANS.get(key))
    svc.pricing.get_credit_pack = AsyncMock(side_effect=lambda key: CREDIT_PACKS.get(key))
    svc.pricing.get_stripe_price_id = AsyncMock(return_value=None)
    return svc


# ---------------------------------------------------------------------------
# Date helpers
# ---------------------------------------------------------------------------


class TestAddMonths:
    def test_day_is_clamped_to_month_length(self) -> None:
        assert add_months(datetime(2024, 1, 31), 1) == datetime(2024, 2, 29)
        assert add_months(datetime(2023, 1, 31), 1) == datetime(2023, 2, 28)

    def test_year_rolls_over(self) -> None:
        assert add_months(datetime(2024, 11, 15), 3) == datetime(2025, 2, 15)

    def test_next_renewal_yearly(self) -> None:
        assert next_renewal(datetime(2024, 2, 29), yearly=True) == datetime(2025, 2, 28)
        assert next_renewal(datetime(2024, 5, 10), yearly=False) == datetime(2024, 6, 10)


# ---------------------------------------------------------------------------
# Balance and usage
# ---------------------------------------------------------------------------


class TestUseCredits:
    async def test_usage_writes_negative_ledger_entry(self, service, mock_session) -> None:
        user = build_user(total_credits=4, used_credits=1)
        mock_session.execute.return_value = query_result(user)

        entry = await service.use_credits(user.id, 1, "Unlocked MC-123456", "listing-1")

        assert user.used_credits == 2
        assert user.available_credits == 2
        assert entry.amount == -1
        assert entry.balance == 2
        assert entry.type == "USAGE"
        mock_session.commit.assert_awaited_once()

    async def test_insufficient_credits(self, service, mock_session) -> None:
        user = build_user(total_credits=2, used_credits=2)
        mock_session.execute.return_value = query_result(user)

        with pytest.raises(ForbiddenError, match="Insufficient credits"):
            await service.use_credits(user.id, 1, "Unlock")
        assert user.used_credits == 2
        assert added_objects(mock_session, CreditTransaction) == []

    async def test_commit_false_leaves_commit_to_caller(self, service, mock_session) -> None:
        user = build_user(total_credits=1, used_credits=0)
        mock_session.execute.return_value = query_result(user)

        await service.use_credits(user.id, 1, "Unlock", commit=False)

        mock_session.commit.assert_not_awaited()

    async def test_unknown_user(self, service, mock_session) -> None:
        mock_session.execute.return_value = query_result(None)

        with pytest.raises(NotFoundError):
            await service.use_credits(uuid.uuid4(), 1, "Unlock")

    async def test_get_balance(self, service, mock_session) -> None:
        user = build_user(total_credits=10, used_credits=3)
        mock_session.get.return_value = user
        mock_session.execute.return_value = query_result(None)

        balance = await service.get_balance(user.id)

        assert balance == {
            "total_credits": 10,
            "used_credits": 3,
            "available_credits": 7,
            "subscription": None,
        }


class TestAdminAdjustments:
    async def test_bonus_credits_increase_total(self, service, mock_session) -> None:
        user = build_user(total_credits=4, used_credits=4)
        mock_session.execute.return_value = query_result(user)

        balance = await service.add_bonus_credits(user.id, 3, "Goodwill", uuid.uuid4())

        assert balance == 3
        [entry] = added_objects(mock_session, CreditTransaction)
        assert entry.type == "BONUS"
        assert entry.balance == 3

    async def test_refund_cannot_exceed_used_credits(self, service, mock_session) -> None:
        user = build_user(total_credits=4, used_credits=1)
        mock_session.execute.return_value = query_result(user)

        with pytest.raises(ForbiddenError, match="Not enough used credits"):
            await service.refund_credits(user.id, 2, "Listing withdrawn")

    async def test_refund_returns_used_credits(self, service, mock_session) -> None:
        user = build_user(total_credits=4, used_credits=2)
        mock_session.execute.return_value = query_result(user)

        assert await service.refund_credits(user.id, 2, "Listing withdrawn") == 4
        assert user.used_credits == 0


# ---------------------------------------------------------------------------
# Credit packs
# ---------------------------------------------------------------------------


class TestCreditPacks:
    async def test_purchase_creates_customer_and_payment_intent(
        self, service, mock_session, stripe_gateway
    ) -> None:
        user = build_user()
        mock_session.get.return_value = user

        result = await service.purchase_credits(user.id, "pack_10")

        assert result == {
            "client_secret": "pi_test_1_secret",
            "payment_intent_id": "pi_test_1",
            "amount": 44.99,
            "credits": 10,
        }
        assert user.stripe_customer_id == "cus_test_1"
        args, kwargs = stripe_gateway.create_payment_intent.await_args
        assert args == (4499,)
        assert kwargs["metadata"]["creditAmount"] == "10"

    async def test_unknown_pack(self, service, mock_session) -> None:
        mock_session.get.return_value = build_user()

        with pytest.raises(BadRequestError, match="Invalid credit pack"):
            await service.purchase_credits(uuid.uuid4(), "pack_1000")

    async def test_webhook_grants_credits_once(self, service, mock_session, email) -> None:
        user = build_user(total_credits=1, used_credits=0)
        metadata = {
            "type": "credit_purchase",
            "userId": str(user.id),
            "creditAmount": "5",
            "amount": "24.99",
        }
        mock_session.execute.side_effect = [query_result(), query_result(user)]

        assert await service.handle_credit_purchase_success("pi_1", metadata) is True
        assert user.total_credits == 6
        [payment] = added_objects(mock_session, Payment)
        assert payment.stripe_payment_id == "pi_1"
        assert payment.amount == 24.99
        email.send_payment_received.assert_awaited_once()

        # A redelivered webhook finds the recorded payment and does nothing.
        mock_session.execute.side_effect = [query_result(rows=[(payment.id,)])]
        assert await service.handle_credit_purchase_success("pi_1", metadata) is False
        assert user.total_credits == 6

    async def test_webhook_for_other_payment_type_is_ignored(self, service, mock_session) -> None:
        metadata = {"type": "subscription", "userId": str(uuid.uuid4()), "creditAmount": "5"}

        assert await service.handle_credit_purchase_success("pi_2", metadata) is False
        mock_session.execute.assert_not_awaited()


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------


class TestSubscriptions:
    async def test_checkout_falls_back_to_payment_intent_without_price_id(
        self, service, mock_session, stripe_gateway
    ) -> None:
        user = build_user(stripe_customer_id="cus_existing")
        mock_session.get.return_value = user
        mock_session.execute.return_value = query_result()

        result = await service.create_subscription_checkout(user.id, "PROFESSIONAL", False)

        assert result["session_id"] == "pi_test_1"
        assert "payment_intent=pi_test_1" in result["checkout_url"]
        assert stripe_gateway.create_payment_intent.await_args.args == (19900,)
        stripe_gateway.create_customer.assert_not_awaited()

    async def test_checkout_uses_recurring_price_when_configured(
        self, service, mock_session, stripe_gateway
    ) -> None:
        user = build_user(stripe_customer_id="cus_existing")
        mock_session.get.return_value = user
        mock_session.execute.return_value = query_result()
        service.pricing.get_stripe_price_id = AsyncMock(return_value="price_pro_yearly")

        result = await service.create_subscription_checkout(user.id, "PROFESSIONAL", True)

        assert result == {
            "checkout_url": "https://checkout.stripe.com/c/cs_sub_1",
            "session_id": "cs_sub_1",
        }
        kwargs = stripe_gateway.create_subscription_checkout.await_args.kwargs
        assert kwargs["price_id"] == "price_pro_yearly"
        assert kwargs["metadata"]["isYearly"] == "true"

    async def test_second_active_subscription_is_a_conflict(self, service, mock_session) -> None:
        mock_session.get.return_value = build_user()
        mock_session.execute.return_value = query_result(rows=[(uuid.uuid4(),)])

        with pytest.raises(ConflictError):
            await service.create_subscription_checkout(uuid.uuid4(), "STARTER", False)

    async def test_activation_grants_plan_credits(self, service, mock_session, email) -> None:
        user = build_user(total_credits=0, used_credits=0)
        mock_session.execute.side_effect = [query_result(user), query_result(), query_result(None)]

        subscription = await service.handle_subscription_payment_success(
            "sub_1",
            {"userId": str(user.id), "plan": "ENTERPRISE", "isYearly": "false"},
            payment_reference="cs_sub_1",
        )

        assert subscription.status == SubscriptionStatus.ACTIVE
        assert subscription.credits_per_month == 25
        assert subscription.stripe_sub_id == "sub_1"
        assert user.total_credits == 25
        [payment] = added_objects(mock_session, Payment)
        assert payment.amount == 399.0
        assert payment.stripe_payment_id == "cs_sub_1"
        email.send_payment_received.assert_awaited_once()

    async def test_replayed_activation_grants_nothing(self, service, mock_session, email) -> None:
        user = build_user(total_credits=25, used_credits=0)
        mock_session.execute.side_effect = [
            query_result(user),
            query_result(rows=[(uuid.uuid4(),)]),
        ]

        result = await service.handle_subscription_payment_success(
            "sub_1",
            {"userId": str(user.id), "plan": "ENTERPRISE", "isYearly": "false"},
            payment_reference="cs_sub_1",
        )

        assert result is None
        assert user.total_credits == 25
        assert added_objects(mock_session, CreditTransaction) == []
        assert added_objects(mock_session, Payment) == []
        mock_session.commit.assert_not_awaited()
        email.send_payment_received.assert_not_awaited()

    async def test_replay_without_reference_is_keyed_by_subscription(
        self, service, mock_session
    ) -> None:
        user = build_user(total_credits=25, used_credits=0)
        mock_session.execute.side_effect = [
            query_result(user),
            query_result(rows=[(uuid.uuid4(),)]),
        ]

        assert (
            await service.handle_subscription_payment_success(
                "sub_1", {"userId": str(user.id), "plan": "ENTERPRISE"}
            )
            is None
        )
        guard = mock_session.execute.await_args_list[1].args[0]
        assert "sub_1" in guard.compile().params.values()

    async def test_activation_with_missing_metadata_is_ignored(self, service, mock_session) -> None:
        assert await service.handle_subscription_payment_success("sub_1", {"plan": "STARTER"}) is None
        mock_session.commit.assert_not_awaited()

    async def test_cancel_stripe_subscription_at_period_end_stays_active(
        self, service, mock_session, stripe_gateway
    ) -> None:
        subscription = _subscription(uuid.uuid4(), stripe_sub_id="sub_9")
        mock_session.execute.return_value = query_result(subscription)

        result = await service.cancel_subscription(subscription.user_id, at_period_end=True)

        stripe_gateway.cancel_subscription.assert_awaited_once_with("sub_9", at_period_end=True)
        assert result.status == SubscriptionStatus.ACTIVE
        assert result.cancelled_at is not None
        assert result.end_date == subscription.renewal_date

    async def test_cancel_manual_subscription_is_immediate(self, service, mock_session) -> None:
        subscription = _subscription(uuid.uuid4())
        mock_session.execute.return_value = query_result(subscription)

        result = await service.cancel_subscription(subscription.user_id)

        assert result.status == SubscriptionStatus.CANCELLED

    async def test_stripe_status_mapping(self, service, mock_session) -> None:
        subscription = _subscription(uuid.uuid4(), stripe_sub_id="sub_3")
        mock_session.execute.return_value = query_result(subscription)

        await service.handle_subscription_updated("sub_3", "past_due")

        assert subscription.status == SubscriptionStatus.PAST_DUE


# ---------------------------------------------------------------------------
# Scheduled jobs
# ---------------------------------------------------------------------------


class TestScheduledJobs:
    async def test_manual_renewal_tops_up_credits(self, service, mock_session) -> None:
        user = build_user(total_credits=4, used_credits=4)
        due_at = datetime.now(UTC) - timedelta(hours=1)
        subscription = _subscription(user.id, renewal_date=due_at)
        mock_session.execute.side_effect = [
            query_result(scalars=[subscription]),
            query_result(user),
        ]

        results = await service.process_monthly_renewals()

        assert results == [{"user_id": str(user.id), "success": True}]
        assert user.total_credits == 8
        assert subscription.credits_remaining == 4
        assert subscription.renewal_date == add_months(due_at, 1)

    async def test_cancelled_subscriptions_past_end_date_expire(self, service, mock_session) -> None:
        ended = [
            _subscription(uuid.uuid4(), status="CANCELLED", end_date=datetime.now(UTC))
            for _ in range(3)
        ]
        mock_session.execute.return_value = query_result(scalars=ended)

        assert await service.process_expired_subscriptions() == 3
        assert {s.status for s in ended} == {"EXPIRED"}
