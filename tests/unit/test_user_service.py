"""Unit tests for seller earnings and Stripe charge history in UserService."""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from mc_exchange.core.models.enums import TransactionStatus
from mc_exchange.core.user_service import UserService
from tests.factories import SellerUserFactory, build_listing, build_transaction, build_user
from tests.helpers import query_result


@pytest.fixture
def stripe_gateway() -> MagicMock:
    gateway = MagicMock()
    gateway.enabled = True
    gateway.list_customer_charges = AsyncMock(return_value=[{"id": "ch_1"}])
    return gateway


@pytest.fixture
def service(mock_session, stripe_gateway) -> UserService:
    return UserService(mock_session, cache=MagicMock(), stripe_gateway=stripe_gateway)


class TestSellerEarnings:
    async def test_rows_and_totals(self, service, mock_session) -> None:
        seller = build_user(SellerUserFactory)
        buyer = build_user(name="Bea Buyer")
        listing = build_listing(seller, mc_number="112233", title="Dry van authority")
        transaction = build_transaction(
            listing,
            buyer,
            seller,
            status=TransactionStatus.COMPLETED.value,
            agreed_price=40000.0,
            platform_fee=1200.0,
            completed_at=datetime(2026, 9, 1, tzinfo=UTC),
        )
        totals_result = query_result()
        totals_result.one.return_value = (100000.0, 3000.0)
        mock_session.execute.side_effect = [
            query_result(3),
            query_result(scalars=[transaction]),
            totals_result,
        ]

        rows, total, totals = await service.get_seller_earnings(seller.id, offset=0, limit=1)

        assert total == 3
        assert rows == [
            {
                "id": transaction.id,
                "mc_number": "112233",
                "listing_title": "Dry van authority",
                "buyer_name": "Bea Buyer",
                "agreed_price": 40000.0,
                "platform_fee": 1200.0,
                "net_earnings": 38800.0,
                "completed_at": datetime(2026, 9, 1, tzinfo=UTC),
            }
        ]
        assert totals == {"gross": 100000.0, "fees": 3000.0, "net": 97000.0}

    async def test_missing_fee_counts_as_zero(self, service, mock_session) -> None:
        seller = build_user(SellerUserFactory)
        transaction = build_transaction(
            build_listing(seller), build_user(), seller, agreed_price=5000.0, platform_fee=None
        )
        totals_result = query_result()
        totals_result.one.return_value = (5000.0, 0)
        mock_session.execute.side_effect = [
            query_result(1),
            query_result(scalars=[transaction]),
            totals_result,
        ]

        rows, _, totals = await service.get_seller_earnings(seller.id)

        assert rows[0]["net_earnings"] == 5000.0
        assert totals["net"] == 5000.0


class TestPaymentHistory:
    async def test_charges_for_stripe_customer(self, service, stripe_gateway) -> None:
        seller = build_user(SellerUserFactory, stripe_customer_id="cus_42")

        assert await service.get_payment_history(seller, limit=10) == [{"id": "ch_1"}]
        stripe_gateway.list_customer_charges.assert_awaited_once_with("cus_42", limit=10)

    async def test_no_customer_record(self, service, stripe_gateway) -> None:
        assert await service.get_payment_history(build_user(SellerUserFactory)) == []
        stripe_gateway.list_customer_charges.assert_not_awaited()
