"""Schemas for notifications, documents, consultations and integrations."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import EmailStr, Field

from mc_exchange.core.models.enums import ConsultationStatus, DocumentStatus
from mc_exchange.core.schemas.common import CamelModel

# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


class NotificationRead(CamelModel):
    id: uuid.UUID
    type: str
    title: str
    message: str
    read: bool
    read_at: Optional[datetime] = None
    link: Optional[str] = None
    metadata: Optional[dict[str, Any]] = Field(default=None, validation_alias="metadata_")
    created_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


class DocumentRead(CamelModel):
    id: uuid.UUID
    type: str
    name: str
    url: str
    size: int
    mime_type: str
    status: str
    verified_at: Optional[datetime] = None
    listing_id: Optional[uuid.UUID] = None
    transaction_id: Optional[uuid.UUID] = None
    uploader_id: uuid.UUID
    created_at: Optional[datetime] = None


class DocumentReview(CamelModel):
    status: Literal[DocumentStatus.VERIFIED, DocumentStatus.REJECTED]


# ---------------------------------------------------------------------------
# Consultations
# ---------------------------------------------------------------------------


class ConsultationCreate(CamelModel):
    name: str = Field(min_length=1, max_length=200)
    email: EmailStr
    phone: str = Field(min_length=5, max_length=40)
    preferred_date: str = Field(min_length=1, max_length=20)
    preferred_time: str = Field(min_length=1, max_length=20)
    message: Optional[str] = Field(default=None, max_length=5000)


class ConsultationRead(CamelModel):
    id: uuid.UUID
    name: str
    email: str
    phone: str
    preferred_date: str
    preferred_time: str
    message: str
    status: str
    amount: float
    paid_at: Optional[datetime] = None
    scheduled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    admin_notes: Optional[str] = None
    created_at: Optional[datetime] = None


class ConsultationStatusUpdate(CamelModel):
    status: ConsultationStatus
    notes: Optional[str] = Field(default=None, max_length=5000)


# ---------------------------------------------------------------------------
# Integrations
# ---------------------------------------------------------------------------


class SocialPostRequest(CamelModel):
    listing_id: uuid.UUID
    custom_message: Optional[str] = Field(default=None, max_length=5000)
    group: Literal["group1", "group2", "both"] = "group1"


class FacebookConfigUpdate(CamelModel):
    access_token: Optional[str] = None
    group1_id: Optional[str] = None
    group1_name: Optional[str] = None
    group2_id: Optional[str] = None
    group2_name: Optional[str] = None


class TelegramConfigUpdate(CamelModel):
    bot_token: Optional[str] = None
    channel_id: Optional[str] = None


class TelegramMessageRequest(CamelModel):
    message: str = Field(min_length=1, max_length=4096)


class CreditsafeLookupRequest(CamelModel):
    country: str = Field(default="US", min_length=2, max_length=2)
    name: Optional[str] = None
    reg_no: Optional[str] = None
    state: Optional[str] = None
    city: Optional[str] = None


class LeadCreate(CamelModel):
    """Lead form submitted from the public site."""

    name: str = Field(min_length=1, max_length=200)
    email: EmailStr
    phone: str = Field(min_length=5, max_length=40)
    company: Optional[str] = Field(default=None, max_length=200)
    fleet_size: Optional[str] = Field(default=None, max_length=50)
    service_type: Optional[str] = Field(default=None, max_length=100)
    message: Optional[str] = Field(default=None, max_length=5000)
