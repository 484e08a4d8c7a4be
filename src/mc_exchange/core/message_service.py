"""Direct messaging between users.

A conversation is every message exchanged by two users.  Sending a
message stages an in-app ``MESSAGE`` notification for the receiver and,
after the commit, emails the admin inbox about the inquiry.  Buyers can
also write to the platform itself through :meth:`MessageService.send_inquiry_to_admin`,
which routes the message to the longest-standing active admin.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any, Optional

import structlog
from fastapi import Depends
from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from mc_exchange.core.admin_alert_service import AdminAlertService
from mc_exchange.core.database import get_db
from mc_exchange.core.exceptions import ForbiddenError, NotFoundError
from mc_exchange.core.models.enums import NotificationType, UserRole, UserStatus
from mc_exchange.core.models.messages import Message
from mc_exchange.core.models.users import User
from mc_exchange.core.notification_service import NotificationService

logger = structlog.get_logger(__name__)

LAST_MESSAGE_PREVIEW_LENGTH = 100


class MessageService:
    """Send, list and acknowledge direct messages.

    Args:
        session: Open async session owned by the caller.
        alerts: Admin inbox alerts; defaults to one bound to *session*.
    """

    def __init__(self, session: AsyncSession, alerts: Optional[AdminAlertService] = None) -> None:
        self.session = session
        self.notifications = NotificationService(session)
        self.alerts = alerts or AdminAlertService(session)

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    async def get_conversations(self, user_id: uuid.UUID) -> list[dict[str, Any]]:
        """One entry per conversation partner, most recent conversation first."""
        messages = (
            await self.session.execute(
                select(Message)
                .where(or_(Message.sender_id == user_id, Message.receiver_id == user_id))
                .options(selectinload(Message.sender), selectinload(Message.receiver))
                .order_by(Message.created_at.desc())
            )
        ).scalars().all()
        unread = await self._unread_by_sender(user_id)

        conversations: dict[uuid.UUID, dict[str, Any]] = {}
        for message in messages:
            outgoing = message.sender_id == user_id
            partner = message.receiver if outgoing else message.sender
            if partner is None or partner.id in conversations:
                continue
            conversations[partner.id] = {
                "id": partner.id,
                "participant_id": partner.id,
                "participant_name": partner.name,
                "participant_avatar": partner.avatar,
                "last_message": message.content[:LAST_MESSAGE_PREVIEW_LENGTH],
                "last_message_at": message.created_at,
                "unread_count": unread.get(partner.id, 0),
                "listing_id": message.listing_id,
            }
        return list(conversations.values())

    async def get_messages(
        self,
        user_id: uuid.UUID,
        partner_id: uuid.UUID,
        *,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[Message], int]:
        """A page of the conversation in chronological order.

        The newest *limit* messages are selected first, so page one is the
        tail of the conversation.  Everything the partner sent is marked
        read.
        """
        between = or_(
            and_(Message.sender_id == user_id, Message.receiver_id == partner_id),
            and_(Message.sender_id == partner_id, Message.receiver_id == user_id),
        )
        total = (
            await self.session.execute(select(func.count()).select_from(Message).where(between))
        ).scalar_one()
        rows = (
            await self.session.execute(
                select(Message)
                .where(between)
                .options(selectinload(Message.sender))
                .order_by(Message.created_at.desc())
                .offset(offset)
                .limit(limit)
            )
        ).scalars().all()
        await self._mark_from_partner_read(user_id, partner_id)
        await self.session.commit()
        return list(reversed(rows)), int(total)

    async def get_unread_count(self, user_id: uuid.UUID) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(Message)
            .where(Message.receiver_id == user_id, Message.read.is_(False))
        )
        return int(result.scalar_one())

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    async def send_message(
        self,
        sender: User,
        receiver_id: uuid.UUID,
        content: str,
        listing_id: Optional[uuid.UUID] = None,
    ) -> Message:
        receiver = await self.session.get(User, receiver_id)
        if receiver is None:
            raise NotFoundError("User")
        if receiver.id == sender.id:
            raise ForbiddenError("Cannot send message to yourself")

        message = Message(
            sender_id=sender.id,
            receiver_id=receiver.id,
            content=content,
            listing_id=listing_id,
            read=False,
        )
        message.sender = sender
        self.session.add(message)
        self.notifications.add(
            receiver.id,
            NotificationType.MESSAGE,
            "New Message",
            f"You have a new message from {sender.name}",
            link=f"/messages/{sender.id}",
            metadata={"messageId": str(message.id), "senderId": str(sender.id)},
        )
        await self.session.commit()
        logger.info(
            "message_sent",
            message_id=str(message.id),
            sender_id=str(sender.id),
            receiver_id=str(receiver.id),
        )
        await self.alerts.new_inquiry(
            sender,
            content,
            f"Listing ID: {listing_id}" if listing_id else None,
        )
        return message

    async def send_inquiry_to_admin(
        self,
        buyer: User,
        content: str,
        *,
        listing_id: Optional[uuid.UUID] = None,
        contact_phone: Optional[str] = None,
    ) -> Message:
        """Route a buyer's question to the longest-standing active admin."""
        admin = (
            await self.session.execute(
                select(User)
                .where(User.role == UserRole.ADMIN, User.status == UserStatus.ACTIVE)
                .order_by(User.created_at.asc())
                .limit(1)
            )
        ).scalars().first()
        if admin is None:
            raise NotFoundError("Admin user")
        if contact_phone:
            content = f"Phone: {contact_phone}\n\n{content}"
        return await self.send_message(buyer, admin.id, content, listing_id)

    # ------------------------------------------------------------------
    # Acknowledgement & deletion
    # ------------------------------------------------------------------

    async def mark_as_read(self, message_id: uuid.UUID, user_id: uuid.UUID) -> Message:
        message = await self._get(message_id)
        if message.receiver_id != user_id:
            raise ForbiddenError("You can only mark your own messages as read")
        if not message.read:
            message.read = True
            message.read_at = datetime.now(UTC)
            await self.session.commit()
        return message

    async def mark_conversation_as_read(self, user_id: uuid.UUID, partner_id: uuid.UUID) -> int:
        updated = await self._mark_from_partner_read(user_id, partner_id)
        await self.session.commit()
        return updated

    async def delete_message(self, message_id: uuid.UUID, user_id: uuid.UUID) -> None:
        message = await self._get(message_id)
        if message.sender_id != user_id:
            raise ForbiddenError("You can only delete your own messages")
        await self.session.delete(message)
        await self.session.commit()
        logger.info("message_deleted", message_id=str(message_id), user_id=str(user_id))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _get(self, message_id: uuid.UUID) -> Message:
        message = await self.session.get(Message, message_id)
        if message is None:
            raise NotFoundError("Message")
        return message

    async def _unread_by_sender(self, user_id: uuid.UUID) -> dict[uuid.UUID, int]:
        result = await self.session.execute(
            select(Message.sender_id, func.count())
            .where(Message.receiver_id == user_id, Message.read.is_(False))
            .group_by(Message.sender_id)
        )
        return {row[0]: int(row[1]) for row in result.all()}

    async def _mark_from_partner_read(self, user_id: uuid.UUID, partner_id: uuid.UUID) -> int:
        result = await self.session.execute(
            update(Message)
            .where(
                Message.sender_id == partner_id,
                Message.receiver_id == user_id,
                Message.read.is_(False),
            )
            .values(read=True, read_at=datetime.now(UTC))
        )
        return int(result.rowcount or 0)


# ---------------------------------------------------------------------------
# FastAPI dependency factory
# ---------------------------------------------------------------------------


async def get_message_service(session: AsyncSession = Depends(get_db)) -> MessageService:
    return MessageService(session=session)
