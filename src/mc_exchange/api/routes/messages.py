"""Direct messaging routes for the signed-in user."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Request, status

from mc_exchange.api.dependencies import BuyerUser, CurrentUser, Pages
from mc_exchange.api.limiter import MESSAGE_LIMIT, limiter
from mc_exchange.core.message_service import MessageService, get_message_service
from mc_exchange.core.schemas.common import Pagination, ok
from mc_exchange.core.schemas.messages import (
    ConversationRead,
    DirectMessageCreate,
    DirectMessageRead,
    InquiryCreate,
)

router = APIRouter()


@router.get("/conversations")
async def list_conversations(
    user: CurrentUser, service: MessageService = Depends(get_message_service)
) -> dict:
    conversations = await service.get_conversations(user.id)
    return ok([ConversationRead.model_validate(row) for row in conversations])


@router.get("/conversations/{partner_id}")
async def conversation_messages(
    partner_id: uuid.UUID,
    user: CurrentUser,
    pages: Pages,
    service: MessageService = Depends(get_message_service),
) -> dict:
    """Messages exchanged with *partner_id*, oldest first; marks theirs read."""
    rows, total = await service.get_messages(
        user.id, partner_id, offset=pages.offset, limit=pages.limit
    )
    return ok(
        [DirectMessageRead.model_validate(row) for row in rows],
        pagination=Pagination.build(pages.page, pages.limit, total),
    )


@router.put("/conversations/{partner_id}/read")
async def mark_conversation_read(
    partner_id: uuid.UUID,
    user: CurrentUser,
    service: MessageService = Depends(get_message_service),
) -> dict:
    updated = await service.mark_conversation_as_read(user.id, partner_id)
    return ok({"updated": updated}, message="Conversation marked as read")


@router.get("/unread-count")
async def unread_count(
    user: CurrentUser, service: MessageService = Depends(get_message_service)
) -> dict:
    return ok({"count": await service.get_unread_count(user.id)})


@router.post("/inquiries", status_code=status.HTTP_201_CREATED)
@limiter.limit(MESSAGE_LIMIT)
async def send_inquiry(
    request: Request,
    body: InquiryCreate,
    buyer: BuyerUser,
    service: MessageService = Depends(get_message_service),
) -> dict:
    message = await service.send_inquiry_to_admin(
        buyer, body.content, listing_id=body.listing_id, contact_phone=body.contact_phone
    )
    return ok(DirectMessageRead.model_validate(message), message="Inquiry sent")


@router.post("/", status_code=status.HTTP_201_CREATED)
@limiter.limit(MESSAGE_LIMIT)
async def send_message(
    request: Request,
    body: DirectMessageCreate,
    user: CurrentUser,
    service: MessageService = Depends(get_message_service),
) -> dict:
    message = await service.send_message(user, body.receiver_id, body.content, body.listing_id)
    return ok(DirectMessageRead.model_validate(message), message="Message sent")


@router.put("/{message_id}/read")
async def mark_read(
    message_id: uuid.UUID,
    user: CurrentUser,
    service: MessageService = Depends(get_message_service),
) -> dict:
    message = await service.mark_as_read(message_id, user.id)
    return ok(DirectMessageRead.model_validate(message))


@router.delete("/{message_id}")
async def delete_message(
    message_id: uuid.UUID,
    user: CurrentUser,
    service: MessageService = Depends(get_message_service),
) -> dict:
    await service.delete_message(message_id, user.id)
    return ok(message="Message deleted")
