"""Seller-only views: completed-sale earnings and card payment history."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from mc_exchange.api.dependencies import Pages, SellerUser
from mc_exchange.core.schemas.common import Pagination, ok
from mc_exchange.core.schemas.seller import ChargeRead, EarningRow, EarningsSummary
from mc_exchange.core.user_service import UserService, get_user_service

router = APIRouter()


@router.get("/earnings")
async def earnings(
    seller: SellerUser,
    pages: Pages,
    service: UserService = Depends(get_user_service),
) -> dict:
    """Completed sales with gross, platform fees and net totals."""
    rows, total, totals = await service.get_seller_earnings(
        seller.id, offset=pages.offset, limit=pages.limit
    )
    body = ok(
        [EarningRow.model_validate(row) for row in rows],
        pagination=Pagination.build(pages.page, pages.limit, total),
    )
    body["totals"] = EarningsSummary.model_validate(totals).model_dump(by_alias=True)
    return body


@router.get("/payment-history")
async def payment_history(
    seller: SellerUser,
    limit: int = Query(default=25, ge=1, le=100),
    service: UserService = Depends(get_user_service),
) -> dict:
    """Charges Stripe recorded against the seller's customer account."""
    charges = await service.get_payment_history(seller, limit=limit)
    return ok([ChargeRead.model_validate(charge) for charge in charges])
