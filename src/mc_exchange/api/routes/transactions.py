"""Escrow transaction routes.

Buyer and seller steps (terms, deposit, approvals, final payment), shared
actions (messages, cancel, dispute, review) and the admin verification
endpoints.  Every state change is counted in ``transactions_status_total``.
"""

from __future__ import annotations

import uuid
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, Request, status

from mc_exchange.api.dependencies import AdminUser, BuyerUser, CurrentUser, Pages, SellerUser
from mc_exchange.api.limiter import MESSAGE_LIMIT, limiter
from mc_exchange.api.metrics import transactions_status_total
from mc_exchange.core.models.enums import TransactionStatus
from mc_exchange.core.models.transactions import Transaction
from mc_exchange.core.schemas.common import Pagination, ok
from mc_exchange.core.schemas.transactions import (
    DisputeRead,
    MessageCreate,
    MessageRead,
    PaymentRead,
    PaymentRequest,
    ReasonRequest,
    ReviewCreate,
    ReviewRead,
    StatusUpdateRequest,
    TimelineRead,
    TransactionDetail,
    TransactionListItem,
    TransactionRead,
)
from mc_exchange.core.transaction_service import TransactionService, get_transaction_service
from mc_exchange.core.user_service import UserService, get_user_service

router = APIRouter()


def _changed(transaction: Transaction, message: str) -> dict:
    transactions_status_total.labels(status=transaction.status).inc()
    return ok(TransactionRead.model_validate(transaction), message=message)


def _payment_result(result: dict[str, Any], message: str) -> dict:
    return ok(
        {
            "payment": PaymentRead.model_validate(result["payment"]),
            "checkoutUrl": result.get("checkout_url"),
        },
        message=message,
    )


# ---------------------------------------------------------------------------
# Read
# ---------------------------------------------------------------------------


@router.get("/")
async def list_transactions(
    user: CurrentUser,
    pages: Pages,
    status_filter: Optional[TransactionStatus] = Query(default=None, alias="status"),
    service: TransactionService = Depends(get_transaction_service),
) -> dict:
    rows, total = await service.list_for_user(
        user, status=status_filter, offset=pages.offset, limit=pages.limit
    )
    return ok(
        [TransactionListItem.model_validate(row) for row in rows],
        pagination=Pagination.build(pages.page, pages.limit, total),
    )


@router.get("/{transaction_id}")
async def get_transaction(
    transaction_id: uuid.UUID,
    user: CurrentUser,
    service: TransactionService = Depends(get_transaction_service),
) -> dict:
    return ok(TransactionDetail.model_validate(await service.get(transaction_id, user)))


@router.get("/{transaction_id}/messages")
async def get_messages(
    transaction_id: uuid.UUID,
    user: CurrentUser,
    service: TransactionService = Depends(get_transaction_service),
) -> dict:
    rows = await service.get_messages(transaction_id, user)
    return ok([MessageRead.model_validate(row) for row in rows])


@router.get("/{transaction_id}/timeline")
async def get_timeline(
    transaction_id: uuid.UUID,
    user: CurrentUser,
    service: TransactionService = Depends(get_transaction_service),
) -> dict:
    rows = await service.get_timeline(transaction_id, user)
    return ok([TimelineRead.model_validate(row) for row in rows])


# ---------------------------------------------------------------------------
# Buyer
# ---------------------------------------------------------------------------


@router.post("/{transaction_id}/buyer/accept-terms")
async def buyer_accept_terms(
    transaction_id: uuid.UUID,
    buyer: BuyerUser,
    service: TransactionService = Depends(get_transaction_service),
) -> dict:
    transaction = await service.buyer_accept_terms(transaction_id, buyer.id)
    return ok(TransactionRead.model_validate(transaction), message="Terms accepted")


@router.post("/{transaction_id}/deposit")
async def pay_deposit(
    transaction_id: uuid.UUID,
    body: PaymentRequest,
    buyer: BuyerUser,
    service: TransactionService = Depends(get_transaction_service),
) -> dict:
    """Record the deposit; card payments return a Stripe Checkout URL."""
    result = await service.record_deposit(transaction_id, buyer.id, body.method, body.reference)
    return _payment_result(result, "Deposit submitted")


@router.post("/{transaction_id}/buyer/approve")
async def buyer_approve(
    transaction_id: uuid.UUID,
    buyer: BuyerUser,
    service: TransactionService = Depends(get_transaction_service),
) -> dict:
    return _changed(await service.buyer_approve(transaction_id, buyer.id), "Transaction approved")


@router.post("/{transaction_id}/final-payment")
async def pay_final(
    transaction_id: uuid.UUID,
    body: PaymentRequest,
    buyer: BuyerUser,
    service: TransactionService = Depends(get_transaction_service),
) -> dict:
    result = await service.record_final_payment(
        transaction_id, buyer.id, body.method, body.reference
    )
    return _payment_result(result, "Final payment submitted")


# ---------------------------------------------------------------------------
# Seller
# ---------------------------------------------------------------------------


@router.post("/{transaction_id}/seller/accept-terms")
async def seller_accept_terms(
    transaction_id: uuid.UUID,
    seller: SellerUser,
    service: TransactionService = Depends(get_transaction_service),
) -> dict:
    transaction = await service.seller_accept_terms(transaction_id, seller.id)
    return ok(TransactionRead.model_validate(transaction), message="Terms accepted")


@router.post("/{transaction_id}/seller/approve")
async def seller_approve(
    transaction_id: uuid.UUID,
    seller: SellerUser,
    service: TransactionService = Depends(get_transaction_service),
) -> dict:
    return _changed(
        await service.seller_approve(transaction_id, seller.id), "Transaction approved"
    )


# ---------------------------------------------------------------------------
# Shared
# ---------------------------------------------------------------------------


@router.post("/{transaction_id}/messages", status_code=status.HTTP_201_CREATED)
@limiter.limit(MESSAGE_LIMIT)
async def send_message(
    request: Request,
    transaction_id: uuid.UUID,
    body: MessageCreate,
    user: CurrentUser,
    service: TransactionService = Depends(get_transaction_service),
) -> dict:
    message = await service.send_message(transaction_id, user, body.content)
    return ok(MessageRead.model_validate(message))


@router.post("/{transaction_id}/cancel")
async def cancel_transaction(
    transaction_id: uuid.UUID,
    body: ReasonRequest,
    user: CurrentUser,
    service: TransactionService = Depends(get_transaction_service),
) -> dict:
    return _changed(
        await service.cancel(transaction_id, user, body.reason), "Transaction cancelled"
    )


@router.post("/{transaction_id}/dispute", status_code=status.HTTP_201_CREATED)
async def open_dispute(
    transaction_id: uuid.UUID,
    body: ReasonRequest,
    user: CurrentUser,
    service: TransactionService = Depends(get_transaction_service),
) -> dict:
    dispute = await service.open_dispute(transaction_id, user.id, body.reason)
    transactions_status_total.labels(status=TransactionStatus.DISPUTED.value).inc()
    return ok(DisputeRead.model_validate(dispute), message="Dispute opened")


@router.post("/{transaction_id}/review", status_code=status.HTTP_201_CREATED)
async def leave_review(
    transaction_id: uuid.UUID,
    body: ReviewCreate,
    user: CurrentUser,
    service: UserService = Depends(get_user_service),
) -> dict:
    review = await service.leave_review(transaction_id, user.id, body.rating, body.comment)
    return ok(ReviewRead.model_validate(review), message="Review submitted")


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


@router.post("/{transaction_id}/admin/verify-deposit/{payment_id}")
async def verify_deposit(
    transaction_id: uuid.UUID,
    payment_id: uuid.UUID,
    admin: AdminUser,
    service: TransactionService = Depends(get_transaction_service),
) -> dict:
    return _changed(
        await service.verify_deposit(transaction_id, admin.id, payment_id), "Deposit verified"
    )


@router.post("/{transaction_id}/admin/approve")
async def admin_approve(
    transaction_id: uuid.UUID,
    admin: AdminUser,
    service: TransactionService = Depends(get_transaction_service),
) -> dict:
    return _changed(
        await service.admin_approve(transaction_id, admin.id),
        "Transaction approved. Awaiting final payment.",
    )


@router.post("/{transaction_id}/admin/verify-payment/{payment_id}")
async def verify_final_payment(
    transaction_id: uuid.UUID,
    payment_id: uuid.UUID,
    admin: AdminUser,
    service: TransactionService = Depends(get_transaction_service),
) -> dict:
    return _changed(
        await service.verify_final_payment(transaction_id, admin.id, payment_id),
        "Payment verified",
    )


@router.put("/{transaction_id}/admin/status")
async def update_status(
    transaction_id: uuid.UUID,
    body: StatusUpdateRequest,
    admin: AdminUser,
    service: TransactionService = Depends(get_transaction_service),
) -> dict:
    return _changed(
        await service.update_status(transaction_id, admin.id, body.status, body.notes),
        "Status updated",
    )

