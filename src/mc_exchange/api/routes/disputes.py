"""Admin dispute queue: list, inspect and resolve transaction disputes.

Disputes are opened by a transaction party through
``POST /api/transactions/{id}/dispute``.
"""

from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query

from mc_exchange.api.dependencies import AdminUser, Pages
from mc_exchange.api.metrics import transactions_status_total
from mc_exchange.core.dispute_service import DisputeService, get_dispute_service
from mc_exchange.core.models.enums import DisputeStatus
from mc_exchange.core.schemas.common import Pagination, ok
from mc_exchange.core.schemas.transactions import DisputeRead, DisputeResolveRequest

router = APIRouter()


@router.get("/")
async def list_disputes(
    admin: AdminUser,
    pages: Pages,
    status_filter: Optional[DisputeStatus] = Query(default=None, alias="status"),
    service: DisputeService = Depends(get_dispute_service),
) -> dict:
    rows, total = await service.list(
        status=status_filter, offset=pages.offset, limit=pages.limit
    )
    return ok(
        [DisputeRead.model_validate(row) for row in rows],
        pagination=Pagination.build(pages.page, pages.limit, total),
    )


@router.get("/{dispute_id}")
async def get_dispute(
    dispute_id: uuid.UUID,
    admin: AdminUser,
    service: DisputeService = Depends(get_dispute_service),
) -> dict:
    return ok(DisputeRead.model_validate(await service.get(dispute_id)))


@router.post("/{dispute_id}/resolve")
async def resolve_dispute(
    dispute_id: uuid.UUID,
    body: DisputeResolveRequest,
    admin: AdminUser,
    service: DisputeService = Depends(get_dispute_service),
) -> dict:
    """Close the dispute and restore the transaction's previous status."""
    dispute = await service.resolve(
        dispute_id,
        admin.id,
        body.resolution,
        status=body.status,
        restore_status=body.restore_status,
    )
    restored = body.restore_status.value if body.restore_status else dispute.previous_status
    transactions_status_total.labels(status=restored).inc()
    return ok(DisputeRead.model_validate(dispute), message="Dispute resolved")
