"""Schemas for direct messages and conversations."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from pydantic import Field

from mc_exchange.core.schemas.common import CamelModel


class DirectMessageCreate(CamelModel):
    receiver_id: uuid.UUID
    content: str = Field(min_length=1, max_length=5000)
    listing_id: Optional[uuid.UUID] = None


class InquiryCreate(CamelModel):
    """A buyer's question to the platform, optionally about a listing."""

    content: str = Field(min_length=1, max_length=5000)
    listing_id: Optional[uuid.UUID] = None
    contact_phone: Optional[str] = Field(default=None, max_length=40)


class MessageSender(CamelModel):
    id: uuid.UUID
    name: str
    avatar: Optional[str] = None


class DirectMessageRead(CamelModel):
    id: uuid.UUID
    sender_id: uuid.UUID
    receiver_id: uuid.UUID
    listing_id: Optional[uuid.UUID] = None
    content: str
    read: bool
    read_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    sender: Optional[MessageSender] = None


class ConversationRead(CamelModel):
    id: uuid.UUID
    participant_id: uuid.UUID
    participant_name: str
    participant_avatar: Optional[str] = None
    last_message: str
    last_message_at: Optional[datetime] = None
    unread_count: int = 0
    listing_id: Optional[uuid.UUID] = None
