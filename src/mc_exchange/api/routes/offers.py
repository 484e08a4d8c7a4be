"""Offer routes: buyer offers, seller responses and counter-offer handling.

Accepting an offer opens the escrow transaction; the response carries both
the updated offer and the new transaction.
"""

from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status

from mc_exchange.api.dependencies import AdminUser, BuyerUser, CurrentUser, SellerUser
from mc_exchange.api.limiter import OFFER_LIMIT, limiter
from mc_exchange.api.metrics import transactions_status_total
from mc_exchange.core.models.enums import OfferStatus
from mc_exchange.core.offer_service import OfferService, get_offer_service
from mc_exchange.core.schemas.common import ok
from mc_exchange.core.schemas.offers import (
    CounterOfferRequest,
    OfferCreate,
    OfferDetail,
    OfferRead,
)
from mc_exchange.core.schemas.transactions import TransactionRead

router = APIRouter()


# ---------------------------------------------------------------------------
# Buyer
# ---------------------------------------------------------------------------


@router.post("/", status_code=status.HTTP_201_CREATED)
@limiter.limit(OFFER_LIMIT)
async def create_offer(
    request: Request,
    body: OfferCreate,
    buyer: BuyerUser,
    service: OfferService = Depends(get_offer_service),
) -> dict:
    offer = await service.create_offer(
        buyer, body.listing_id, body.amount, body.message, body.expires_at
    )
    return ok(OfferRead.model_validate(offer), message="Offer submitted")


@router.get("/my-offers")
async def my_offers(
    buyer: BuyerUser,
    status_filter: Optional[OfferStatus] = Query(default=None, alias="status"),
    service: OfferService = Depends(get_offer_service),
) -> dict:
    rows = await service.list_buyer_offers(buyer.id, status_filter)
    return ok([OfferDetail.model_validate(row) for row in rows])


@router.post("/{offer_id}/accept-counter")
async def accept_counter(
    offer_id: uuid.UUID,
    buyer: BuyerUser,
    service: OfferService = Depends(get_offer_service),
) -> dict:
    offer = await service.accept_counter_offer(offer_id, buyer.id)
    return ok(OfferRead.model_validate(offer), message="Counter-offer accepted")


@router.post("/{offer_id}/withdraw")
async def withdraw(
    offer_id: uuid.UUID,
    buyer: BuyerUser,
    service: OfferService = Depends(get_offer_service),
) -> dict:
    offer = await service.withdraw_offer(offer_id, buyer.id)
    return ok(OfferRead.model_validate(offer), message="Offer withdrawn")


# ---------------------------------------------------------------------------
# Seller
# ---------------------------------------------------------------------------


@router.get("/received")
async def received_offers(
    seller: SellerUser,
    status_filter: Optional[OfferStatus] = Query(default=None, alias="status"),
    service: OfferService = Depends(get_offer_service),
) -> dict:
    rows = await service.list_seller_offers(seller.id, status_filter)
    return ok([OfferDetail.model_validate(row) for row in rows])


@router.post("/{offer_id}/accept")
async def accept(
    offer_id: uuid.UUID,
    seller: SellerUser,
    service: OfferService = Depends(get_offer_service),
) -> dict:
    """Accept the offer and open an escrow transaction for it."""
    offer, transaction = await service.accept_offer(offer_id, seller.id)
    transactions_status_total.labels(status=transaction.status).inc()
    return ok(
        {
            "offer": OfferRead.model_validate(offer),
            "transaction": TransactionRead.model_validate(transaction),
        },
        message="Offer accepted. A transaction has been opened.",
    )


@router.post("/{offer_id}/reject")
async def reject(
    offer_id: uuid.UUID,
    seller: SellerUser,
    service: OfferService = Depends(get_offer_service),
) -> dict:
    offer = await service.reject_offer(offer_id, seller.id)
    return ok(OfferRead.model_validate(offer), message="Offer rejected")


@router.post("/{offer_id}/counter")
async def counter(
    offer_id: uuid.UUID,
    body: CounterOfferRequest,
    seller: SellerUser,
    service: OfferService = Depends(get_offer_service),
) -> dict:
    offer = await service.counter_offer(offer_id, seller.id, body.counter_amount, body.message)
    return ok(OfferRead.model_validate(offer), message="Counter-offer sent")


# ---------------------------------------------------------------------------
# Shared / admin
# ---------------------------------------------------------------------------


@router.get("/listing/{listing_id}")
async def listing_offers(
    listing_id: uuid.UUID,
    admin: AdminUser,
    service: OfferService = Depends(get_offer_service),
) -> dict:
    rows = await service.list_listing_offers(listing_id)
    return ok([OfferDetail.model_validate(row) for row in rows])


@router.get("/{offer_id}")
async def get_offer(
    offer_id: uuid.UUID,
    user: CurrentUser,
    service: OfferService = Depends(get_offer_service),
) -> dict:
    offer = await service.get_offer(offer_id, user)
    return ok(OfferDetail.model_validate(offer))
