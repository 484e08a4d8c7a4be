"""Dispute review for admins.

Disputes are opened by a party through
:meth:`~mc_exchange.core.transaction_service.TransactionService.open_dispute`;
this module lists them and resolves them.  Resolving restores the
transaction to the status it had when the dispute was opened unless the
admin picks another one.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Optional

import structlog
from fastapi import Depends
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from mc_exchange.core.admin_service import record_admin_action
from mc_exchange.core.database import get_db
from mc_exchange.core.exceptions import BadRequestError, NotFoundError
from mc_exchange.core.models.enums import (
    DisputeStatus,
    ListingStatus,
    TransactionStatus,
    UserRole,
)
from mc_exchange.core.models.transactions import Dispute, Transaction
from mc_exchange.core.notification_service import NotificationService
from mc_exchange.core.transaction_service import (
    TERMINAL_STATUSES,
    add_timeline_entry,
    notify_parties,
)

logger = structlog.get_logger(__name__)


class DisputeService:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.notifications = NotificationService(session)

    async def list(
        self,
        *,
        status: Optional[DisputeStatus] = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[Dispute], int]:
        conditions = [Dispute.status == status] if status is not None else []
        total = (
            await self.session.execute(
                select(func.count()).select_from(Dispute).where(*conditions)
            )
        ).scalar_one()
        rows = await self.session.execute(
            select(Dispute)
            .where(*conditions)
            .order_by(Dispute.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(rows.scalars().all()), int(total)

    async def get(self, dispute_id: uuid.UUID) -> Dispute:
        dispute = await self.session.get(Dispute, dispute_id)
        if dispute is None:
            raise NotFoundError("Dispute")
        return dispute

    async def resolve(
        self,
        dispute_id: uuid.UUID,
        admin_id: uuid.UUID,
        resolution: str,
        *,
        status: DisputeStatus = DisputeStatus.RESOLVED,
        restore_status: Optional[TransactionStatus] = None,
    ) -> Dispute:
        """Close an OPEN dispute and put its transaction back in play.

        Args:
            dispute_id: Dispute to resolve.
            admin_id: Resolving admin.
            resolution: Free-text outcome shown to both parties.
            status: RESOLVED or CLOSED.
            restore_status: Transaction status to restore; defaults to the
                status recorded when the dispute was opened.

        Raises:
            NotFoundError: Unknown dispute.
            BadRequestError: Dispute is not OPEN, *status* is OPEN, or the
                transaction is already COMPLETED or CANCELLED.
        """
        dispute = (
            await self.session.execute(
                select(Dispute).where(Dispute.id == dispute_id).with_for_update()
            )
        ).scalar_one_or_none()
        if dispute is None:
            raise NotFoundError("Dispute")
        if dispute.status != DisputeStatus.OPEN:
            raise BadRequestError("This dispute has already been resolved")
        if status == DisputeStatus.OPEN:
            raise BadRequestError("A dispute cannot be resolved to OPEN")

        transaction = (
            await self.session.execute(
                select(Transaction)
                .where(Transaction.id == dispute.transaction_id)
                .options(selectinload(Transaction.listing))
                .with_for_update(of=Transaction)
            )
        ).scalar_one()
        if transaction.status in TERMINAL_STATUSES:
            raise BadRequestError(
                f"The transaction is already {transaction.status} and cannot be changed"
            )

        now = datetime.now(UTC)
        dispute.status = status.value
        dispute.resolution = resolution
        dispute.resolved_at = now
        dispute.resolved_by = admin_id

        target = restore_status or TransactionStatus(dispute.previous_status)
        transaction.status = target.value
        transaction.dispute_resolved_at = now
        transaction.dispute_resolution = resolution
        if target == TransactionStatus.CANCELLED:
            transaction.cancelled_at = now
            if transaction.listing.status == ListingStatus.RESERVED:
                transaction.listing.status = ListingStatus.ACTIVE.value
        elif target == TransactionStatus.COMPLETED:
            transaction.completed_at = now
            transaction.listing.status = ListingStatus.SOLD.value
            transaction.listing.sold_at = now

        add_timeline_entry(
            self.session,
            transaction,
            target,
            "Dispute Resolved",
            resolution,
            admin_id,
            UserRole.ADMIN.value,
        )
        record_admin_action(
            self.session,
            admin_id,
            "RESOLVE_DISPUTE",
            "Dispute",
            dispute.id,
            reason=resolution,
            metadata={"transactionId": str(transaction.id), "restoredStatus": target.value},
        )
        notify_parties(
            self.notifications,
            transaction,
            "Dispute Resolved",
            f"The dispute on MC-{transaction.listing.mc_number} was resolved: {resolution}",
        )
        await self.session.commit()
        logger.info(
            "dispute_resolved",
            dispute_id=str(dispute.id),
            transaction_id=str(transaction.id),
            restored_status=target.value,
            admin_id=str(admin_id),
        )
        return dispute


# ---------------------------------------------------------------------------
# FastAPI dependency factory
# ---------------------------------------------------------------------------


async def get_dispute_service(session: AsyncSession = Depends(get_db)) -> DisputeService:
    return DisputeService(session=session)
