"""In-app notification routes for the signed-in user."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query

from mc_exchange.api.dependencies import CurrentUser, Pages
from mc_exchange.core.notification_service import NotificationService, get_notification_service
from mc_exchange.core.schemas.common import Pagination, ok
from mc_exchange.core.schemas.misc import NotificationRead

router = APIRouter()


@router.get("/")
async def list_notifications(
    user: CurrentUser,
    pages: Pages,
    unread_only: bool = Query(default=False, alias="unreadOnly"),
    service: NotificationService = Depends(get_notification_service),
) -> dict:
    rows, total = await service.list_for_user(
        user.id, offset=pages.offset, limit=pages.limit, unread_only=unread_only
    )
    return ok(
        [NotificationRead.model_validate(row) for row in rows],
        pagination=Pagination.build(pages.page, pages.limit, total),
    )


@router.get("/unread-count")
async def unread_count(
    user: CurrentUser, service: NotificationService = Depends(get_notification_service)
) -> dict:
    return ok({"count": await service.unread_count(user.id)})


@router.get("/counts")
async def counts_by_type(
    user: CurrentUser, service: NotificationService = Depends(get_notification_service)
) -> dict:
    """Unread counts keyed by notification type (``OFFER``, ``TRANSACTION`` ...)."""
    counts = await service.counts_by_type(user.id)
    return ok({"total": sum(counts.values()), "byType": counts})


@router.put("/read-all")
async def mark_all_read(
    user: CurrentUser, service: NotificationService = Depends(get_notification_service)
) -> dict:
    updated = await service.mark_all_read(user.id)
    return ok({"updated": updated}, message="All notifications marked as read")


@router.delete("/clear")
async def clear_all(
    user: CurrentUser, service: NotificationService = Depends(get_notification_service)
) -> dict:
    deleted = await service.clear_all(user.id)
    return ok({"deleted": deleted}, message="Notifications cleared")


@router.put("/{notification_id}/read")
async def mark_read(
    notification_id: uuid.UUID,
    user: CurrentUser,
    service: NotificationService = Depends(get_notification_service),
) -> dict:
    notification = await service.mark_read(notification_id, user.id)
    return ok(NotificationRead.model_validate(notification))


@router.delete("/{notification_id}")
async def delete_notification(
    notification_id: uuid.UUID,
    user: CurrentUser,
    service: NotificationService = Depends(get_notification_service),
) -> dict:
    await service.delete(notification_id, user.id)
    return ok(message="Notification deleted")
