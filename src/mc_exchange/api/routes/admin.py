"""Admin moderation routes.

Every endpoint requires an ADMIN account and is limited by
``ADMIN_LIMIT``.  Moderation writes go through
:class:`~mc_exchange.core.admin_service.AdminService`, which records an
``AdminAction`` row for each of them.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Query, Request, status
from pydantic.alias_generators import to_snake

from mc_exchange.api.dependencies import AdminUser, Pages
from mc_exchange.api.limiter import ADMIN_LIMIT, limiter
from mc_exchange.api.metrics import transactions_status_total
from mc_exchange.core.admin_service import AdminService, get_admin_service
from mc_exchange.core.exceptions import BadRequestError, NotFoundError
from mc_exchange.core.listing_service import seller_summary
from mc_exchange.core.models.enums import (
    ListingStatus,
    OfferStatus,
    PremiumRequestStatus,
    TransactionStatus,
    UserRole,
    UserStatus,
)
from mc_exchange.core.models.listings import Listing
from mc_exchange.core.pricing_service import PricingConfig, PricingService
from mc_exchange.core.schemas.admin import (
    AdminActionRead,
    AdminUserRow,
    ApproveListingRequest,
    BlockUserRequest,
    BroadcastRequest,
    DashboardStats,
    PremiumRequestUpdate,
    RejectListingRequest,
    RevenueAnalytics,
    SettingsBulkUpdate,
)
from mc_exchange.core.schemas.common import Pagination, camelize, ok
from mc_exchange.core.schemas.credits import SubscriptionRead
from mc_exchange.core.schemas.listings import ListingDetail, ListingRead, PremiumRequestRead
from mc_exchange.core.schemas.offers import OfferDetail
from mc_exchange.core.schemas.transactions import (
    AdminCreateTransactionRequest,
    TransactionListItem,
    TransactionRead,
)
from mc_exchange.core.transaction_service import TransactionService, get_transaction_service

router = APIRouter()


def _paged(schema: Any, rows: list, pages: Any, total: int) -> dict:
    return ok(
        [schema.model_validate(row) for row in rows],
        pagination=Pagination.build(pages.page, pages.limit, total),
    )


def _pricing_payload(config: PricingConfig) -> dict[str, Any]:
    return {
        "plans": [camelize(asdict(plan)) for plan in config.plans.values()],
        "fees": camelize(asdict(config.fees)),
        "creditPacks": [
            {"id": pack.key, "credits": pack.credits, "price": pack.price}
            for pack in config.credit_packs.values()
        ],
    }


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------


@router.get("/dashboard")
@limiter.limit(ADMIN_LIMIT)
async def dashboard(
    request: Request, admin: AdminUser, service: AdminService = Depends(get_admin_service)
) -> dict:
    return ok(DashboardStats.model_validate(await service.get_dashboard_stats()))


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------


@router.get("/listings/pending")
@limiter.limit(ADMIN_LIMIT)
async def pending_listings(
    request: Request,
    admin: AdminUser,
    pages: Pages,
    service: AdminService = Depends(get_admin_service),
) -> dict:
    rows, total = await service.get_pending_listings(offset=pages.offset, limit=pages.limit)
    return _paged(ListingRead, rows, pages, total)


@router.get("/listings")
@limiter.limit(ADMIN_LIMIT)
async def all_listings(
    request: Request,
    admin: AdminUser,
    pages: Pages,
    search: Optional[str] = Query(default=None, max_length=200),
    status_filter: Optional[ListingStatus] = Query(default=None, alias="status"),
    is_premium: Optional[bool] = Query(default=None, alias="isPremium"),
    service: AdminService = Depends(get_admin_service),
) -> dict:
    rows, total = await service.get_all_listings(
        search=search,
        status=status_filter,
        is_premium=is_premium,
        offset=pages.offset,
        limit=pages.limit,
    )
    return _paged(ListingRead, rows, pages, total)


@router.get("/listings/{listing_id}")
@limiter.limit(ADMIN_LIMIT)
async def get_listing(
    request: Request,
    listing_id: uuid.UUID,
    admin: AdminUser,
    service: AdminService = Depends(get_admin_service),
) -> dict:
    listing = await service.get_listing(listing_id)
    detail = {
        column.key: getattr(listing, column.key) for column in Listing.__mapper__.column_attrs
    }
    detail.update(
        seller=seller_summary(listing.seller, reveal_contact=True),
        documents=[
            {"id": doc.id, "type": doc.type, "name": doc.name, "status": doc.status}
            for doc in listing.documents
        ],
        is_unlocked=True,
    )
    return ok(ListingDetail.model_validate(detail))


@router.put("/listings/{listing_id}")
@limiter.limit(ADMIN_LIMIT)
async def update_listing(
    request: Request,
    listing_id: uuid.UUID,
    admin: AdminUser,
    changes: dict[str, Any] = Body(...),
    service: AdminService = Depends(get_admin_service),
) -> dict:
    """Edit any listing field an admin may change; keys may be camelCase."""
    if not changes:
        raise BadRequestError("No fields to update")
    listing = await service.update_listing(
        listing_id, admin.id, {to_snake(key): value for key, value in changes.items()}
    )
    return ok(ListingRead.model_validate(listing), message="Listing updated")


@router.post("/listings/{listing_id}/approve")
@limiter.limit(ADMIN_LIMIT)
async def approve_listing(
    request: Request,
    listing_id: uuid.UUID,
    admin: AdminUser,
    body: Optional[ApproveListingRequest] = None,
    service: AdminService = Depends(get_admin_service),
) -> dict:
    body = body or ApproveListingRequest()
    listing = await service.approve_listing(
        listing_id, admin.id, notes=body.notes, price=body.price
    )
    return ok(ListingRead.model_validate(listing), message="Listing approved")


@router.post("/listings/{listing_id}/reject")
@limiter.limit(ADMIN_LIMIT)
async def reject_listing(
    request: Request,
    listing_id: uuid.UUID,
    body: RejectListingRequest,
    admin: AdminUser,
    service: AdminService = Depends(get_admin_service),
) -> dict:
    listing = await service.reject_listing(listing_id, admin.id, body.reason)
    return ok(ListingRead.model_validate(listing), message="Listing rejected")


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


@router.get("/users")
@limiter.limit(ADMIN_LIMIT)
async def list_users(
    request: Request,
    admin: AdminUser,
    pages: Pages,
    search: Optional[str] = Query(default=None, max_length=200),
    role: Optional[UserRole] = None,
    status_filter: Optional[UserStatus] = Query(default=None, alias="status"),
    service: AdminService = Depends(get_admin_service),
) -> dict:
    rows, total = await service.get_users(
        search=search, role=role, status=status_filter, offset=pages.offset, limit=pages.limit
    )
    return _paged(AdminUserRow, rows, pages, total)


@router.get("/users/{user_id}")
@limiter.limit(ADMIN_LIMIT)
async def user_details(
    request: Request,
    user_id: uuid.UUID,
    admin: AdminUser,
    service: AdminService = Depends(get_admin_service),
) -> dict:
    details = await service.get_user_details(user_id)
    subscription = details["subscription"]
    return ok(
        {
            "user": AdminUserRow.model_validate(details["user"]),
            "listings": [ListingRead.model_validate(row) for row in details["listings"]],
            "sentOffers": [OfferDetail.model_validate(row) for row in details["sent_offers"]],
            "receivedOffers": [
                OfferDetail.model_validate(row) for row in details["received_offers"]
            ],
            "subscription": (
                SubscriptionRead.model_validate(subscription) if subscription else None
            ),
            "counts": camelize(details["counts"]),
        }
    )


@router.post("/users/{user_id}/block")
@limiter.limit(ADMIN_LIMIT)
async def block_user(
    request: Request,
    user_id: uuid.UUID,
    body: BlockUserRequest,
    admin: AdminUser,
    service: AdminService = Depends(get_admin_service),
) -> dict:
    user = await service.block_user(user_id, admin.id, body.reason)
    return ok(AdminUserRow.model_validate(user), message="User blocked")


@router.post("/users/{user_id}/unblock")
@limiter.limit(ADMIN_LIMIT)
async def unblock_user(
    request: Request,
    user_id: uuid.UUID,
    admin: AdminUser,
    service: AdminService = Depends(get_admin_service),
) -> dict:
    user = await service.unblock_user(user_id, admin.id)
    return ok(AdminUserRow.model_validate(user), message="User unblocked")


@router.post("/users/{user_id}/verify-seller")
@limiter.limit(ADMIN_LIMIT)
async def verify_seller(
    request: Request,
    user_id: uuid.UUID,
    admin: AdminUser,
    service: AdminService = Depends(get_admin_service),
) -> dict:
    user = await service.verify_seller(user_id, admin.id)
    return ok(AdminUserRow.model_validate(user), message="Seller verified")


# ---------------------------------------------------------------------------
# Premium requests
# ---------------------------------------------------------------------------


@router.get("/premium-requests")
@limiter.limit(ADMIN_LIMIT)
async def premium_requests(
    request: Request,
    admin: AdminUser,
    pages: Pages,
    status_filter: Optional[PremiumRequestStatus] = Query(default=None, alias="status"),
    service: AdminService = Depends(get_admin_service),
) -> dict:
    rows, total = await service.get_premium_requests(
        status=status_filter, offset=pages.offset, limit=pages.limit
    )
    return _paged(PremiumRequestRead, rows, pages, total)


@router.put("/premium-requests/{request_id}")
@limiter.limit(ADMIN_LIMIT)
async def update_premium_request(
    request: Request,
    request_id: uuid.UUID,
    body: PremiumRequestUpdate,
    admin: AdminUser,
    service: AdminService = Depends(get_admin_service),
) -> dict:
    row = await service.update_premium_request(request_id, admin.id, body.status, body.notes)
    return ok(PremiumRequestRead.model_validate(row), message="Premium request updated")


# ---------------------------------------------------------------------------
# Transactions & offers
# ---------------------------------------------------------------------------


@router.get("/transactions")
@limiter.limit(ADMIN_LIMIT)
async def all_transactions(
    request: Request,
    admin: AdminUser,
    pages: Pages,
    status_filter: Optional[TransactionStatus] = Query(default=None, alias="status"),
    service: AdminService = Depends(get_admin_service),
) -> dict:
    rows, total = await service.get_all_transactions(
        status=status_filter, offset=pages.offset, limit=pages.limit
    )
    return _paged(TransactionListItem, rows, pages, total)


@router.post("/transactions", status_code=status.HTTP_201_CREATED)
@limiter.limit(ADMIN_LIMIT)
async def create_transaction(
    request: Request,
    body: AdminCreateTransactionRequest,
    admin: AdminUser,
    service: TransactionService = Depends(get_transaction_service),
) -> dict:
    """Open a transaction directly for a buyer, bypassing the offer flow."""
    transaction = await service.admin_create_transaction(
        admin.id,
        listing_id=body.listing_id,
        buyer_id=body.buyer_id,
        agreed_price=body.agreed_price,
        deposit_amount=body.deposit_amount,
        notes=body.notes,
    )
    transactions_status_total.labels(status=transaction.status).inc()
    return ok(TransactionRead.model_validate(transaction), message="Transaction created")


@router.get("/transactions/available-buyers")
@limiter.limit(ADMIN_LIMIT)
async def available_buyers(
    request: Request,
    admin: AdminUser,
    search: Optional[str] = Query(default=None, max_length=200),
    service: TransactionService = Depends(get_transaction_service),
) -> dict:
    rows = await service.get_available_buyers(search)
    return ok([AdminUserRow.model_validate(row) for row in rows])


@router.get("/transactions/available-listings")
@limiter.limit(ADMIN_LIMIT)
async def available_listings(
    request: Request,
    admin: AdminUser,
    search: Optional[str] = Query(default=None, max_length=200),
    service: TransactionService = Depends(get_transaction_service),
) -> dict:
    rows = await service.get_available_listings(search)
    return ok([ListingRead.model_validate(row) for row in rows])


@router.get("/offers")
@limiter.limit(ADMIN_LIMIT)
async def all_offers(
    request: Request,
    admin: AdminUser,
    pages: Pages,
    status_filter: Optional[OfferStatus] = Query(default=None, alias="status"),
    service: AdminService = Depends(get_admin_service),
) -> dict:
    rows, total = await service.get_all_offers(
        status=status_filter, offset=pages.offset, limit=pages.limit
    )
    return _paged(OfferDetail, rows, pages, total)


# ---------------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------------


@router.get("/actions")
@limiter.limit(ADMIN_LIMIT)
async def action_log(
    request: Request,
    admin: AdminUser,
    pages: Pages,
    admin_id: Optional[uuid.UUID] = Query(default=None, alias="adminId"),
    service: AdminService = Depends(get_admin_service),
) -> dict:
    rows, total = await service.get_action_log(
        admin_id=admin_id, offset=pages.offset, limit=pages.limit
    )
    return _paged(AdminActionRead, rows, pages, total)


# ---------------------------------------------------------------------------
# Settings & pricing
# ---------------------------------------------------------------------------


@router.get("/settings")
@limiter.limit(ADMIN_LIMIT)
async def get_settings(
    request: Request, admin: AdminUser, service: AdminService = Depends(get_admin_service)
) -> dict:
    """All platform settings as ``{key: typed value}``; keys stay snake_case."""
    return ok(await service.get_settings())


@router.get("/settings/{key}")
@limiter.limit(ADMIN_LIMIT)
async def get_setting(
    request: Request,
    key: str,
    admin: AdminUser,
    service: AdminService = Depends(get_admin_service),
) -> dict:
    setting = await service.get_setting(key)
    if setting is None:
        raise NotFoundError("Setting")
    return ok(setting)


@router.put("/settings")
@limiter.limit(ADMIN_LIMIT)
async def update_settings(
    request: Request,
    body: SettingsBulkUpdate,
    admin: AdminUser,
    service: AdminService = Depends(get_admin_service),
) -> dict:
    settings = await service.update_settings(
        admin.id, [(item.key, item.value, item.type) for item in body.settings]
    )
    return ok(settings, message="Settings updated")


@router.get("/pricing")
@limiter.limit(ADMIN_LIMIT)
async def get_pricing(
    request: Request, admin: AdminUser, service: AdminService = Depends(get_admin_service)
) -> dict:
    config = await PricingService(service.session).get_config()
    return ok(_pricing_payload(config))


@router.put("/pricing")
@limiter.limit(ADMIN_LIMIT)
async def update_pricing(
    request: Request,
    admin: AdminUser,
    updates: dict[str, Any] = Body(...),
    service: AdminService = Depends(get_admin_service),
) -> dict:
    """Override prices and fees with flat ``setting_key: value`` pairs."""
    if not updates:
        raise BadRequestError("No pricing values to update")
    config = await PricingService(service.session).update_config(updates)
    return ok(_pricing_payload(config), message="Pricing updated")


# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------


@router.get("/analytics/revenue")
@limiter.limit(ADMIN_LIMIT)
async def revenue_analytics(
    request: Request,
    admin: AdminUser,
    start_date: Optional[datetime] = Query(default=None, alias="startDate"),
    end_date: Optional[datetime] = Query(default=None, alias="endDate"),
    service: AdminService = Depends(get_admin_service),
) -> dict:
    data = await service.get_revenue_analytics(start_date, end_date)
    return ok(RevenueAnalytics.model_validate(data))


@router.get("/analytics/users")
@limiter.limit(ADMIN_LIMIT)
async def user_analytics(
    request: Request,
    admin: AdminUser,
    start_date: Optional[datetime] = Query(default=None, alias="startDate"),
    end_date: Optional[datetime] = Query(default=None, alias="endDate"),
    service: AdminService = Depends(get_admin_service),
) -> dict:
    return ok(camelize(await service.get_user_analytics(start_date, end_date)))


@router.get("/analytics/listings")
@limiter.limit(ADMIN_LIMIT)
async def listing_analytics(
    request: Request,
    admin: AdminUser,
    start_date: Optional[datetime] = Query(default=None, alias="startDate"),
    end_date: Optional[datetime] = Query(default=None, alias="endDate"),
    service: AdminService = Depends(get_admin_service),
) -> dict:
    return ok(camelize(await service.get_listing_analytics(start_date, end_date)))


# ---------------------------------------------------------------------------
# Broadcast
# ---------------------------------------------------------------------------


@router.post("/broadcast")
@limiter.limit(ADMIN_LIMIT)
async def broadcast(
    request: Request,
    body: BroadcastRequest,
    admin: AdminUser,
    service: AdminService = Depends(get_admin_service),
) -> dict:
    """Send an in-app notification to every active user, or to one role."""
    sent = await service.broadcast(
        admin.id, body.title, body.message, type=body.type, role=body.role, link=body.link
    )
    return ok({"recipientCount": sent}, message=f"Notification sent to {sent} users")
