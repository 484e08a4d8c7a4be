"""Listing routes: public browse and detail, seller management, bookmarks,
credit unlocks and premium access requests.

Static paths (``/saved``, ``/my-listings``, ...) are declared before the
``/{listing_id}`` routes so that they are not captured as ids.
"""

from __future__ import annotations

import uuid
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query, Request, status

from mc_exchange.api.dependencies import BuyerUser, CurrentUser, OptionalUser, Pages, SellerUser
from mc_exchange.api.limiter import LISTING_CREATION_LIMIT, limiter
from mc_exchange.api.metrics import credit_transactions_total
from mc_exchange.core.listing_service import ListingService, get_listing_service
from mc_exchange.core.models.enums import CreditTransactionType, ListingStatus
from mc_exchange.core.schemas.common import Pagination, ok
from mc_exchange.core.schemas.credits import CheckoutResult
from mc_exchange.core.schemas.listings import (
    ListingCreate,
    ListingDetail,
    ListingFilters,
    ListingRead,
    ListingUpdate,
    PremiumRequestCreate,
    PremiumRequestRead,
    UnlockResult,
)

router = APIRouter()


def _page(rows: list, page: int, limit: int, total: int) -> dict:
    return ok(
        [ListingRead.model_validate(row) for row in rows],
        pagination=Pagination.build(page, limit, total),
    )


# ---------------------------------------------------------------------------
# Browse
# ---------------------------------------------------------------------------


@router.get("/")
async def browse_listings(
    filters: Annotated[ListingFilters, Query()],
    service: ListingService = Depends(get_listing_service),
) -> dict:
    """Public catalogue of ACTIVE, PUBLIC listings."""
    rows, total = await service.browse(filters)
    return _page(rows, filters.page, filters.limit, total)


@router.get("/search")
async def search_listings(
    filters: Annotated[ListingFilters, Query()],
    service: ListingService = Depends(get_listing_service),
) -> dict:
    rows, total = await service.browse(filters)
    return _page(rows, filters.page, filters.limit, total)


# ---------------------------------------------------------------------------
# Caller-specific collections
# ---------------------------------------------------------------------------


@router.get("/saved")
async def saved_listings(
    user: CurrentUser,
    pages: Pages,
    service: ListingService = Depends(get_listing_service),
) -> dict:
    rows, total = await service.get_saved_listings(user.id, offset=pages.offset, limit=pages.limit)
    return _page(rows, pages.page, pages.limit, total)


@router.get("/unlocked")
async def unlocked_listings(
    user: CurrentUser,
    pages: Pages,
    service: ListingService = Depends(get_listing_service),
) -> dict:
    rows, total = await service.get_unlocked_listings(
        user.id, offset=pages.offset, limit=pages.limit
    )
    return _page(rows, pages.page, pages.limit, total)


@router.get("/my-listings")
async def my_listings(
    seller: SellerUser,
    status_filter: Optional[ListingStatus] = Query(default=None, alias="status"),
    service: ListingService = Depends(get_listing_service),
) -> dict:
    rows = await service.get_seller_listings(seller.id, status_filter)
    return ok([ListingRead.model_validate(row) for row in rows])


@router.get("/premium-requests")
async def my_premium_requests(
    buyer: BuyerUser, service: ListingService = Depends(get_listing_service)
) -> dict:
    rows = await service.get_premium_requests(buyer.id)
    return ok([PremiumRequestRead.model_validate(row) for row in rows])


# ---------------------------------------------------------------------------
# Seller management
# ---------------------------------------------------------------------------


@router.post("/", status_code=status.HTTP_201_CREATED)
@limiter.limit(LISTING_CREATION_LIMIT)
async def create_listing(
    request: Request,
    body: ListingCreate,
    seller: SellerUser,
    service: ListingService = Depends(get_listing_service),
) -> dict:
    listing = await service.create_listing(seller.id, body)
    return ok(ListingRead.model_validate(listing), message="Listing created as draft")


@router.get("/{listing_id}")
async def get_listing(
    listing_id: uuid.UUID,
    viewer: OptionalUser,
    service: ListingService = Depends(get_listing_service),
) -> dict:
    """Listing detail; seller contact details only for unlocked viewers."""
    detail = await service.get_detail(listing_id, viewer.id if viewer else None)
    return ok(ListingDetail.model_validate(detail))


@router.put("/{listing_id}")
async def update_listing(
    listing_id: uuid.UUID,
    body: ListingUpdate,
    seller: SellerUser,
    service: ListingService = Depends(get_listing_service),
) -> dict:
    listing = await service.update_listing(listing_id, seller.id, body)
    return ok(ListingRead.model_validate(listing), message="Listing updated")


@router.post("/{listing_id}/submit")
async def submit_listing(
    listing_id: uuid.UUID,
    seller: SellerUser,
    service: ListingService = Depends(get_listing_service),
) -> dict:
    listing = await service.submit_for_review(listing_id, seller.id)
    return ok(ListingRead.model_validate(listing), message="Listing submitted for review")


@router.delete("/{listing_id}")
async def delete_listing(
    listing_id: uuid.UUID,
    seller: SellerUser,
    service: ListingService = Depends(get_listing_service),
) -> dict:
    await service.delete_listing(listing_id, seller.id)
    return ok(message="Listing deleted")


@router.post("/{listing_id}/fee-checkout")
async def listing_fee_checkout(
    listing_id: uuid.UUID,
    seller: SellerUser,
    service: ListingService = Depends(get_listing_service),
) -> dict:
    """Open a Stripe Checkout session for the listing fee."""
    result = await service.create_listing_fee_checkout(listing_id, seller)
    return ok(CheckoutResult.model_validate(result))


# ---------------------------------------------------------------------------
# Bookmarks
# ---------------------------------------------------------------------------


@router.post("/{listing_id}/save")
async def save_listing(
    listing_id: uuid.UUID,
    user: CurrentUser,
    service: ListingService = Depends(get_listing_service),
) -> dict:
    await service.save_listing(listing_id, user.id)
    return ok(message="Listing saved")


@router.delete("/{listing_id}/save")
async def unsave_listing(
    listing_id: uuid.UUID,
    user: CurrentUser,
    service: ListingService = Depends(get_listing_service),
) -> dict:
    await service.unsave_listing(listing_id, user.id)
    return ok(message="Listing removed from saved")


# ---------------------------------------------------------------------------
# Unlock & premium access
# ---------------------------------------------------------------------------


@router.post("/{listing_id}/unlock")
async def unlock_listing(
    listing_id: uuid.UUID,
    buyer: BuyerUser,
    service: ListingService = Depends(get_listing_service),
) -> dict:
    """Spend one credit to reveal the seller's contact details."""
    already_unlocked = await service.unlock_listing(listing_id, buyer.id)
    if not already_unlocked:
        credit_transactions_total.labels(type=CreditTransactionType.USAGE.value).inc()
    return ok(
        UnlockResult(already_unlocked=already_unlocked),
        message="Listing already unlocked" if already_unlocked else "Listing unlocked",
    )


@router.post("/{listing_id}/premium-request", status_code=status.HTTP_201_CREATED)
async def request_premium_access(
    listing_id: uuid.UUID,
    buyer: BuyerUser,
    body: Optional[PremiumRequestCreate] = None,
    service: ListingService = Depends(get_listing_service),
) -> dict:
    request_row = await service.create_premium_request(
        listing_id, buyer.id, body.message if body else None
    )
    return ok(
        PremiumRequestRead.model_validate(request_row),
        message="Your request has been sent. Our team will contact you shortly.",
    )
