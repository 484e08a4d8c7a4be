"""Unit tests for ListingService.unlock_listing.

``session.get`` returns the listing; ``execute`` is primed with the
existing-unlock lookup first and the locked user row second.
"""

from __future__ import annotations

import uuid
from unittest.mock import MagicMock

import pytest

from mc_exchange.core.exceptions import ForbiddenError, NotFoundError
from mc_exchange.core.listing_service import ListingService
from mc_exchange.core.models.credits import CreditTransaction
from mc_exchange.core.models.listings import UnlockedListing
from tests.factories import SellerUserFactory, build_listing, build_user
from tests.helpers import added_objects, query_result


@pytest.fixture
def listing():
    return build_listing(build_user(SellerUserFactory), mc_number="554433")


@pytest.fixture
def buyer():
    return build_user(total_credits=3, used_credits=1)


@pytest.fixture
def service(mock_session, listing) -> ListingService:
    mock_session.get.return_value = listing
    return ListingService(mock_session, cache=MagicMock(), stripe_gateway=MagicMock())


class TestUnlockListing:
    async def test_spends_one_credit(self, service, mock_session, listing, buyer) -> None:
        mock_session.execute.side_effect = [query_result(), query_result(buyer)]

        already = await service.unlock_listing(listing.id, buyer.id)

        assert already is False
        assert buyer.used_credits == 2
        [unlock] = added_objects(mock_session, UnlockedListing)
        assert unlock.listing_id == listing.id
        assert unlock.credits_used == 1
        [entry] = added_objects(mock_session, CreditTransaction)
        assert entry.type == "USAGE"
        assert entry.amount == -1
        assert entry.balance == 1
        assert "MC-554433" in entry.description
        mock_session.commit.assert_awaited_once()

    async def test_user_row_is_locked_before_the_balance_check(
        self, service, mock_session, listing, buyer
    ) -> None:
        mock_session.execute.side_effect = [query_result(), query_result(buyer)]

        await service.unlock_listing(listing.id, buyer.id)

        user_query = mock_session.execute.await_args_list[1].args[0]
        assert user_query._for_update_arg is not None

    async def test_re_unlock_is_free(self, service, mock_session, listing, buyer) -> None:
        mock_session.execute.side_effect = [query_result(rows=[(uuid.uuid4(),)])]

        already = await service.unlock_listing(listing.id, buyer.id)

        assert already is True
        assert buyer.used_credits == 1
        assert mock_session.execute.await_count == 1
        assert added_objects(mock_session, CreditTransaction) == []
        mock_session.commit.assert_not_awaited()

    async def test_no_credits_left(self, service, mock_session, listing) -> None:
        broke = build_user(total_credits=2, used_credits=2)
        mock_session.execute.side_effect = [query_result(), query_result(broke)]

        with pytest.raises(ForbiddenError, match="Insufficient credits"):
            await service.unlock_listing(listing.id, broke.id)

        assert broke.used_credits == 2
        assert added_objects(mock_session, UnlockedListing) == []
        mock_session.commit.assert_not_awaited()

    async def test_unknown_listing(self, service, mock_session, buyer) -> None:
        mock_session.get.return_value = None

        with pytest.raises(NotFoundError):
            await service.unlock_listing(uuid.uuid4(), buyer.id)
        mock_session.execute.assert_not_awaited()
