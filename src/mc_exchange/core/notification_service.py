"""In-app notifications.

Other services call :meth:`NotificationService.add` (or :meth:`add_many`)
to stage notifications in *their* session so that the notification is
committed together with the state change it describes.  The read-side
methods used by ``/api/notifications`` commit on their own.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any, Optional

import structlog
from fastapi import Depends
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mc_exchange.core.database import get_db
from mc_exchange.core.exceptions import NotFoundError
from mc_exchange.core.models.enums import NotificationType
from mc_exchange.core.models.notifications import Notification

logger = structlog.get_logger(__name__)


class NotificationService:
    """Create, list and acknowledge notifications.

    Args:
        session: Open async session owned by the caller.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # ------------------------------------------------------------------
    # Staging (no commit)
    # ------------------------------------------------------------------

    def add(
        self,
        user_id: uuid.UUID,
        type: NotificationType | str,
        title: str,
        message: str,
        *,
        link: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Notification:
        notification = Notification(
            user_id=user_id,
            type=str(type),
            title=title,
            message=message,
            link=link,
            metadata_=metadata or {},
        )
        self.session.add(notification)
        return notification

    def add_many(
        self,
        user_ids: list[uuid.UUID],
        type: NotificationType | str,
        title: str,
        message: str,
        *,
        link: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> int:
        """Stage the same notification for several users; returns the count."""
        for user_id in user_ids:
            self.add(user_id, type, title, message, link=link, metadata=metadata)
        return len(user_ids)

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    async def list_for_user(
        self,
        user_id: uuid.UUID,
        *,
        offset: int = 0,
        limit: int = 20,
        unread_only: bool = False,
    ) -> tuple[list[Notification], int]:
        conditions = [Notification.user_id == user_id]
        if unread_only:
            conditions.append(Notification.read.is_(False))
        total = (
            await self.session.execute(
                select(func.count()).select_from(Notification).where(*conditions)
            )
        ).scalar_one()
        rows = (
            await self.session.execute(
                select(Notification)
                .where(*conditions)
                .order_by(Notification.created_at.desc())
                .offset(offset)
                .limit(limit)
            )
        ).scalars().all()
        return list(rows), int(total)

    async def unread_count(self, user_id: uuid.UUID) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(Notification)
            .where(Notification.user_id == user_id, Notification.read.is_(False))
        )
        return int(result.scalar_one())

    async def counts_by_type(self, user_id: uuid.UUID) -> dict[str, int]:
        """Unread notifications grouped by type."""
        result = await self.session.execute(
            select(Notification.type, func.count())
            .where(Notification.user_id == user_id, Notification.read.is_(False))
            .group_by(Notification.type)
        )
        return {row[0]: int(row[1]) for row in result.all()}

    # ------------------------------------------------------------------
    # Acknowledgement
    # ------------------------------------------------------------------

    async def mark_read(self, notification_id: uuid.UUID, user_id: uuid.UUID) -> Notification:
        notification = await self._get_owned(notification_id, user_id)
        if not notification.read:
            notification.read = True
            notification.read_at = datetime.now(UTC)
            await self.session.commit()
        return notification

    async def mark_all_read(self, user_id: uuid.UUID) -> int:
        result = await self.session.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.read.is_(False))
            .values(read=True, read_at=datetime.now(UTC))
        )
        await self.session.commit()
        return int(result.rowcount or 0)

    async def delete(self, notification_id: uuid.UUID, user_id: uuid.UUID) -> None:
        notification = await self._get_owned(notification_id, user_id)
        await self.session.delete(notification)
        await self.session.commit()

    async def clear_all(self, user_id: uuid.UUID) -> int:
        result = await self.session.execute(
            delete(Notification).where(Notification.user_id == user_id)
        )
        await self.session.commit()
        logger.info("notifications_cleared", user_id=str(user_id), count=result.rowcount)
        return int(result.rowcount or 0)

    async def _get_owned(self, notification_id: uuid.UUID, user_id: uuid.UUID) -> Notification:
        result = await self.session.execute(
            select(Notification).where(
                Notification.id == notification_id,
                Notification.user_id == user_id,
            )
        )
        notification = result.scalar_one_or_none()
        if notification is None:
            raise NotFoundError("Notification")
        return notification


# ---------------------------------------------------------------------------
# FastAPI dependency factory
# ---------------------------------------------------------------------------


async def get_notification_service(session: AsyncSession = Depends(get_db)) -> NotificationService:
    return NotificationService(session=session)
