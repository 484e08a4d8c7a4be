"""Paid expert consultations.

A public visitor books a consultation, pays through Stripe Checkout at the
configured consultation fee, and the ``checkout.session.completed`` webhook
marks the booking PAID.  Admins schedule, complete and refund bookings.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any, Optional

import structlog
from fastapi import Depends
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from mc_exchange.config.settings import get_settings
from mc_exchange.core.admin_alert_service import AdminAlertService
from mc_exchange.core.admin_service import record_admin_action
from mc_exchange.core.database import get_db
from mc_exchange.core.exceptions import BadRequestError, NotFoundError
from mc_exchange.core.integrations.stripe_gateway import (
    StripeGateway,
    dollars_to_cents,
    get_stripe_gateway,
)
from mc_exchange.core.models.consultations import Consultation
from mc_exchange.core.models.enums import ConsultationStatus
from mc_exchange.core.pricing_service import PricingService
from mc_exchange.core.schemas.misc import ConsultationCreate

logger = structlog.get_logger(__name__)

_PAID_STATUSES = (
    ConsultationStatus.PAID,
    ConsultationStatus.SCHEDULED,
    ConsultationStatus.COMPLETED,
)


class ConsultationService:
    def __init__(
        self,
        session: AsyncSession,
        stripe_gateway: Optional[StripeGateway] = None,
        alerts: Optional[AdminAlertService] = None,
    ) -> None:
        self.session = session
        self.stripe = stripe_gateway or get_stripe_gateway()
        self.alerts = alerts or AdminAlertService(session)

    async def create_checkout(self, data: ConsultationCreate) -> dict[str, Any]:
        """Create a PENDING_PAYMENT booking and its Stripe Checkout session.

        Returns:
            ``{"checkout_url": str, "consultation_id": UUID}``.
        """
        fee = await PricingService(self.session).get_consultation_fee()
        consultation = Consultation(
            name=data.name,
            email=str(data.email).lower(),
            phone=data.phone,
            preferred_date=data.preferred_date,
            preferred_time=data.preferred_time,
            message=data.message or "",
            status=ConsultationStatus.PENDING_PAYMENT.value,
            amount=fee,
        )
        self.session.add(consultation)

        frontend = get_settings().frontend_url
        checkout = await self.stripe.create_payment_checkout(
            amount_cents=dollars_to_cents(fee),
            product_name="MC Authority Consultation",
            description=(
                "60-minute expert consultation. "
                f"Scheduled for {data.preferred_date} at {data.preferred_time}"
            ),
            success_url=f"{frontend}/consultation/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{frontend}/consultation/cancel",
            metadata={"type": "consultation", "consultationId": str(consultation.id)},
            customer_email=consultation.email,
        )
        consultation.stripe_session_id = checkout["id"]
        await self.session.commit()
        logger.info("consultation_booked", consultation_id=str(consultation.id), amount=fee)
        return {"checkout_url": checkout["url"], "consultation_id": consultation.id}

    async def handle_payment_success(
        self,
        session_id: str,
        payment_intent_id: Optional[str],
    ) -> bool:
        """Mark the booking behind checkout *session_id* as PAID and alert the admins.

        Returns ``False`` when no booking matches or it is already paid.
        """
        consultation = (
            await self.session.execute(
                select(Consultation)
                .where(Consultation.stripe_session_id == session_id)
                .with_for_update()
            )
        ).scalar_one_or_none()
        if consultation is None:
            logger.warning("consultation_not_found_for_session", session_id=session_id)
            return False
        if consultation.status != ConsultationStatus.PENDING_PAYMENT:
            return False
        consultation.status = ConsultationStatus.PAID.value
        consultation.stripe_payment_intent_id = payment_intent_id
        consultation.paid_at = datetime.now(UTC)
        await self.session.commit()
        logger.info("consultation_paid", consultation_id=str(consultation.id))
        await self.alerts.new_consultation(consultation)
        return True

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------

    async def list(
        self,
        *,
        status: Optional[ConsultationStatus] = None,
        search: Optional[str] = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[Consultation], int]:
        conditions: list[Any] = []
        if status is not None:
            conditions.append(Consultation.status == status)
        if search:
            pattern = f"%{search}%"
            conditions.append(
                or_(
                    Consultation.name.ilike(pattern),
                    Consultation.email.ilike(pattern),
                    Consultation.phone.ilike(pattern),
                )
            )
        total = (
            await self.session.execute(
                select(func.count()).select_from(Consultation).where(*conditions)
            )
        ).scalar_one()
        rows = await self.session.execute(
            select(Consultation)
            .where(*conditions)
            .order_by(Consultation.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(rows.scalars().all()), int(total)

    async def get(self, consultation_id: uuid.UUID) -> Consultation:
        consultation = await self.session.get(Consultation, consultation_id)
        if consultation is None:
            raise NotFoundError("Consultation")
        return consultation

    async def get_stats(self) -> dict[str, Any]:
        rows = await self.session.execute(
            select(Consultation.status, func.count(), func.coalesce(func.sum(Consultation.amount), 0))
            .group_by(Consultation.status)
        )
        counts: dict[str, int] = {}
        revenue = 0.0
        for status, count, amount in rows.all():
            counts[str(status)] = int(count)
            if status in _PAID_STATUSES:
                revenue += float(amount)
        return {
            "total": sum(counts.values()),
            "pending": counts.get(ConsultationStatus.PENDING_PAYMENT.value, 0),
            "paid": counts.get(ConsultationStatus.PAID.value, 0),
            "scheduled": counts.get(ConsultationStatus.SCHEDULED.value, 0),
            "completed": counts.get(ConsultationStatus.COMPLETED.value, 0),
            "total_revenue": round(revenue, 2),
        }

    async def update_status(
        self,
        consultation_id: uuid.UUID,
        admin_id: uuid.UUID,
        status: ConsultationStatus,
        notes: Optional[str] = None,
    ) -> Consultation:
        consultation = await self.get(consultation_id)
        now = datetime.now(UTC)
        consultation.status = status.value
        if status == ConsultationStatus.SCHEDULED:
            consultation.scheduled_at = now
            consultation.contacted_by = admin_id
            consultation.contacted_at = now
        elif status == ConsultationStatus.COMPLETED:
            consultation.completed_at = now
        if notes:
            consultation.admin_notes = notes
        await self.session.commit()
        logger.info(
            "consultation_status_updated",
            consultation_id=str(consultation.id),
            status=status.value,
        )
        return consultation

    async def refund(self, consultation_id: uuid.UUID, admin_id: uuid.UUID) -> Consultation:
        """Refund the full fee through Stripe and mark the booking REFUNDED."""
        consultation = await self.get(consultation_id)
        if consultation.status == ConsultationStatus.REFUNDED:
            raise BadRequestError("Consultation has already been refunded")
        if not consultation.stripe_payment_intent_id:
            raise BadRequestError("Consultation has no payment to refund")

        refund_id = await self.stripe.create_refund(
            consultation.stripe_payment_intent_id, reason="requested_by_customer"
        )
        stamp = f"Refunded by admin on {datetime.now(UTC).isoformat()}"
        consultation.status = ConsultationStatus.REFUNDED.value
        consultation.admin_notes = (
            f"{consultation.admin_notes}\n{stamp}" if consultation.admin_notes else stamp
        )
        record_admin_action(
            self.session,
            admin_id,
            "REFUND_CONSULTATION",
            "CONSULTATION",
            consultation.id,
            metadata={"refundId": refund_id, "amount": consultation.amount},
        )
        await self.session.commit()
        logger.info(
            "consultation_refunded",
            consultation_id=str(consultation.id),
            refund_id=refund_id,
        )
        return consultation


# ---------------------------------------------------------------------------
# FastAPI dependency factory
# ---------------------------------------------------------------------------


async def get_consultation_service(
    session: AsyncSession = Depends(get_db),
) -> ConsultationService:
    return ConsultationService(session=session)
