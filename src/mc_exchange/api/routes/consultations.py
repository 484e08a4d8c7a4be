"""Paid consultation booking (public checkout) and the admin queue."""

from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from mc_exchange.api.dependencies import AdminUser, Pages
from mc_exchange.core.consultation_service import ConsultationService, get_consultation_service
from mc_exchange.core.models.enums import ConsultationStatus
from mc_exchange.core.schemas.common import Pagination, camelize, ok
from mc_exchange.core.schemas.misc import (
    ConsultationCreate,
    ConsultationRead,
    ConsultationStatusUpdate,
)

router = APIRouter()


@router.post("/checkout", status_code=status.HTTP_201_CREATED)
async def create_checkout(
    body: ConsultationCreate,
    service: ConsultationService = Depends(get_consultation_service),
) -> dict:
    """Book a consultation; the caller is redirected to Stripe Checkout."""
    return ok(camelize(await service.create_checkout(body)))


@router.get("/")
async def list_consultations(
    admin: AdminUser,
    pages: Pages,
    status_filter: Optional[ConsultationStatus] = Query(default=None, alias="status"),
    search: Optional[str] = Query(default=None, max_length=200),
    service: ConsultationService = Depends(get_consultation_service),
) -> dict:
    rows, total = await service.list(
        status=status_filter, search=search, offset=pages.offset, limit=pages.limit
    )
    return ok(
        [ConsultationRead.model_validate(row) for row in rows],
        pagination=Pagination.build(pages.page, pages.limit, total),
    )


@router.get("/stats")
async def consultation_stats(
    admin: AdminUser, service: ConsultationService = Depends(get_consultation_service)
) -> dict:
    return ok(camelize(await service.get_stats()))


@router.get("/{consultation_id}")
async def get_consultation(
    consultation_id: uuid.UUID,
    admin: AdminUser,
    service: ConsultationService = Depends(get_consultation_service),
) -> dict:
    return ok(ConsultationRead.model_validate(await service.get(consultation_id)))


@router.put("/{consultation_id}/status")
async def update_consultation_status(
    consultation_id: uuid.UUID,
    body: ConsultationStatusUpdate,
    admin: AdminUser,
    service: ConsultationService = Depends(get_consultation_service),
) -> dict:
    consultation = await service.update_status(
        consultation_id, admin.id, body.status, body.notes
    )
    return ok(ConsultationRead.model_validate(consultation), message="Consultation updated")


@router.post("/{consultation_id}/refund")
async def refund_consultation(
    consultation_id: uuid.UUID,
    admin: AdminUser,
    service: ConsultationService = Depends(get_consultation_service),
) -> dict:
    consultation = await service.refund(consultation_id, admin.id)
    return ok(ConsultationRead.model_validate(consultation), message="Consultation refunded")
