"""Unit tests for OfferService.

Covers offer placement rules, seller responses, the counter-offer round
trip, and accept_offer opening the escrow transaction.  Platform fees are
patched to the static defaults so no settings rows are read.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from mc_exchange.config.pricing import PLATFORM_FEES
from mc_exchange.core.exceptions import ConflictError, ForbiddenError, NotFoundError
from mc_exchange.core.models.enums import ListingStatus, OfferStatus, TransactionStatus
from mc_exchange.core.models.notifications import Notification
from mc_exchange.core.models.offers import Offer
from mc_exchange.core.models.transactions import Transaction
from mc_exchange.core.offer_service import OfferService
from tests.factories import SellerUserFactory, build_listing, build_offer, build_user
from tests.helpers import added_objects, query_result


@pytest.fixture
def buyer():
    return build_user(name="Bea Buyer")


@pytest.fixture
def seller():
    return build_user(SellerUserFactory, name="Sam Seller")


@pytest.fixture
def listing(seller):
    return build_listing(seller, mc_number="765432", price=30000.0)


@pytest.fixture
def email() -> MagicMock:
    sender = MagicMock()
    sender.send_offer_received = AsyncMock(return_value=True)
    sender.send_offer_update = AsyncMock(return_value=True)
    return sender


@pytest.fixture
def service(mock_session, email, admin_alerts) -> OfferService:
    return OfferService(mock_session, email=email, alerts=admin_alerts)


@pytest.fixture
def static_fees():
    with patch("mc_exchange.core.offer_service.PricingService") as pricing_cls:
        pricing_cls.return_value.get_platform_fees = AsyncMock(return_value=PLATFORM_FEES)
        yield pricing_cls


# ---------------------------------------------------------------------------
# create_offer()
# ---------------------------------------------------------------------------


class TestCreateOffer:
    async def test_offer_on_active_listing_notifies_seller(
        self, service, mock_session, email, listing, buyer, seller
    ) -> None:
        mock_session.execute.side_effect = [query_result(listing), query_result()]

        offer = await service.create_offer(buyer, listing.id, 27500.0, "Cash ready")

        assert offer.status == OfferStatus.PENDING
        assert offer.seller_id == seller.id
        assert offer.expires_at > datetime.now(UTC) + timedelta(days=6)
        notifications = added_objects(mock_session, Notification)
        assert [n.user_id for n in notifications] == [seller.id]
        email.send_offer_received.assert_awaited_once()
        assert email.send_offer_received.await_args.args == (seller.email,)

    async def test_unknown_listing(self, service, mock_session, buyer) -> None:
        mock_session.execute.return_value = query_result(None)

        with pytest.raises(NotFoundError, match="Listing not found"):
            await service.create_offer(buyer, uuid.uuid4(), 1000.0)

    @pytest.mark.parametrize("status", ["DRAFT", "PENDING_REVIEW", "RESERVED", "SOLD"])
    async def test_listing_must_be_active(self, service, mock_session, listing, buyer, status) -> None:
        listing.status = status
        mock_session.execute.return_value = query_result(listing)

        with pytest.raises(ForbiddenError, match="not available for offers"):
            await service.create_offer(buyer, listing.id, 1000.0)

    async def test_seller_cannot_bid_on_own_listing(
        self, service, mock_session, listing, seller
    ) -> None:
        mock_session.execute.return_value = query_result(listing)

        with pytest.raises(ForbiddenError):
            await service.create_offer(seller, listing.id, 1000.0)

    async def test_one_open_offer_per_buyer_and_listing(
        self, service, mock_session, listing, buyer
    ) -> None:
        mock_session.execute.side_effect = [
            query_result(listing),
            query_result(rows=[(uuid.uuid4(),)]),
        ]

        with pytest.raises(ConflictError):
            await service.create_offer(buyer, listing.id, 1000.0)
        mock_session.commit.assert_not_awaited()


# ---------------------------------------------------------------------------
# accept_offer()
# ---------------------------------------------------------------------------


class TestAcceptOffer:
    async def test_accept_opens_transaction_and_reserves_listing(
        self, service, mock_session, email, listing, buyer, seller, static_fees, admin_alerts
    ) -> None:
        offer = build_offer(listing, buyer, amount=28000.0)
        mock_session.execute.side_effect = [query_result(offer), query_result(rowcount=2)]

        accepted, transaction = await service.accept_offer(offer.id, seller.id)

        assert accepted.status == OfferStatus.ACCEPTED
        assert accepted.responded_at is not None
        assert listing.status == ListingStatus.RESERVED
        assert transaction.status == TransactionStatus.AWAITING_DEPOSIT
        assert transaction.agreed_price == 28000.0
        assert transaction.deposit_amount == 2800.0
        assert transaction.platform_fee == 840.0
        assert transaction.offer_id == offer.id
        assert added_objects(mock_session, Transaction) == [transaction]
        # Second statement rejects the other open offers on the listing.
        assert mock_session.execute.await_count == 2
        mock_session.commit.assert_awaited_once()
        assert email.send_offer_update.await_args.kwargs["status"] == "accepted"
        admin_alerts.new_transaction.assert_awaited_once_with(
            transaction, mc_number="765432", buyer=buyer, seller=seller
        )

    async def test_countered_offer_is_accepted_at_counter_amount(
        self, service, mock_session, listing, buyer, seller, static_fees
    ) -> None:
        offer = build_offer(listing, buyer, amount=20000.0, status="COUNTERED", counter_amount=26000.0)
        mock_session.execute.side_effect = [query_result(offer), query_result()]

        _, transaction = await service.accept_offer(offer.id, seller.id)

        assert transaction.agreed_price == 26000.0

    async def test_deposit_is_clamped_to_minimum(
        self, service, mock_session, listing, buyer, seller, static_fees
    ) -> None:
        offer = build_offer(listing, buyer, amount=3000.0)
        mock_session.execute.side_effect = [query_result(offer), query_result()]

        _, transaction = await service.accept_offer(offer.id, seller.id)

        assert transaction.deposit_amount == 500.0

    async def test_only_the_seller_can_accept(self, service, mock_session, listing, buyer) -> None:
        offer = build_offer(listing, buyer)
        mock_session.execute.return_value = query_result(offer)

        with pytest.raises(ForbiddenError):
            await service.accept_offer(offer.id, buyer.id)

    @pytest.mark.parametrize("status", ["ACCEPTED", "REJECTED", "EXPIRED", "WITHDRAWN"])
    async def test_closed_offer_cannot_be_accepted(
        self, service, mock_session, listing, buyer, seller, status
    ) -> None:
        offer = build_offer(listing, buyer, status=status)
        mock_session.execute.return_value = query_result(offer)

        with pytest.raises(ForbiddenError, match="cannot be accepted"):
            await service.accept_offer(offer.id, seller.id)

    async def test_reserved_listing_blocks_acceptance(
        self, service, mock_session, listing, buyer, seller
    ) -> None:
        listing.status = ListingStatus.RESERVED.value
        offer = build_offer(listing, buyer)
        mock_session.execute.return_value = query_result(offer)

        with pytest.raises(ForbiddenError, match="not available"):
            await service.accept_offer(offer.id, seller.id)


# ---------------------------------------------------------------------------
# Counter offers and other responses
# ---------------------------------------------------------------------------


class TestResponses:
    async def test_counter_then_accept_counter_returns_to_pending(
        self, service, mock_session, listing, buyer, seller
    ) -> None:
        offer = build_offer(listing, buyer, amount=20000.0)
        mock_session.execute.return_value = query_result(offer)

        countered = await service.counter_offer(offer.id, seller.id, 24000.0, "Meet me here")
        assert countered.status == OfferStatus.COUNTERED
        assert countered.counter_amount == 24000.0

        accepted = await service.accept_counter_offer(offer.id, buyer.id)
        assert accepted.status == OfferStatus.PENDING
        assert accepted.amount == 24000.0

    async def test_only_pending_offers_can_be_countered(
        self, service, mock_session, listing, buyer, seller
    ) -> None:
        offer = build_offer(listing, buyer, status="COUNTERED", counter_amount=25000.0)
        mock_session.execute.return_value = query_result(offer)

        with pytest.raises(ForbiddenError, match="cannot be countered"):
            await service.counter_offer(offer.id, seller.id, 26000.0)

    async def test_accept_counter_without_counter_is_forbidden(
        self, service, mock_session, listing, buyer
    ) -> None:
        offer = build_offer(listing, buyer)
        mock_session.execute.return_value = query_result(offer)

        with pytest.raises(ForbiddenError, match="does not have a counter offer"):
            await service.accept_counter_offer(offer.id, buyer.id)

    async def test_reject_open_offer(self, service, mock_session, email, listing, buyer, seller) -> None:
        offer = build_offer(listing, buyer)
        mock_session.execute.return_value = query_result(offer)

        rejected = await service.reject_offer(offer.id, seller.id)

        assert rejected.status == OfferStatus.REJECTED
        assert email.send_offer_update.await_args.kwargs["status"] == "rejected"

    async def test_withdraw_is_buyer_only(self, service, mock_session, listing, buyer, seller) -> None:
        offer = build_offer(listing, buyer, status="COUNTERED", counter_amount=21000.0)
        mock_session.execute.return_value = query_result(offer)

        with pytest.raises(ForbiddenError):
            await service.withdraw_offer(offer.id, seller.id)

        withdrawn = await service.withdraw_offer(offer.id, buyer.id)
        assert withdrawn.status == OfferStatus.WITHDRAWN


# ---------------------------------------------------------------------------
# expire_stale_offers()
# ---------------------------------------------------------------------------


class TestExpireStaleOffers:
    async def test_stale_offers_are_expired_and_buyers_notified(
        self, service, mock_session, listing, buyer
    ) -> None:
        past = datetime.now(UTC) - timedelta(days=1)
        stale = [build_offer(listing, buyer, expires_at=past) for _ in range(2)]
        mock_session.execute.return_value = query_result(scalars=stale)

        count = await service.expire_stale_offers()

        assert count == 2
        assert all(offer.status == OfferStatus.EXPIRED for offer in stale)
        assert len(added_objects(mock_session, Notification)) == 2

    async def test_nothing_to_expire(self, service, mock_session) -> None:
        mock_session.execute.return_value = query_result(scalars=[])

        assert await service.expire_stale_offers() == 0
        assert added_objects(mock_session, Offer) == []
