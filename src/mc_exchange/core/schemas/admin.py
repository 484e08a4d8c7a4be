"""Schemas for admin moderation, settings and analytics."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from pydantic import Field

from mc_exchange.core.models.enums import (
    NotificationType,
    PremiumRequestStatus,
    SettingType,
    UserRole,
)
from mc_exchange.core.schemas.common import CamelModel


class ApproveListingRequest(CamelModel):
    notes: Optional[str] = Field(default=None, max_length=2000)
    price: Optional[float] = Field(default=None, gt=0)


class RejectListingRequest(CamelModel):
    reason: str = Field(min_length=1, max_length=2000)


class BlockUserRequest(CamelModel):
    reason: str = Field(min_length=1, max_length=2000)


class PremiumRequestUpdate(CamelModel):
    status: PremiumRequestStatus
    notes: Optional[str] = Field(default=None, max_length=2000)


class SettingWrite(CamelModel):
    key: str = Field(min_length=1, max_length=100)
    value: str
    type: SettingType = SettingType.STRING


class SettingsBulkUpdate(CamelModel):
    settings: list[SettingWrite]


class BroadcastRequest(CamelModel):
    title: str = Field(min_length=1, max_length=200)
    message: str = Field(min_length=1, max_length=5000)
    type: NotificationType = NotificationType.SYSTEM
    role: Optional[UserRole] = None
    link: Optional[str] = None


class AdminUserRow(CamelModel):
    id: uuid.UUID
    email: str
    name: str
    role: str
    status: str
    verified: bool
    seller_verified: bool
    trust_score: int
    total_credits: int
    used_credits: int
    created_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None


class AdminActionRead(CamelModel):
    id: uuid.UUID
    action: str
    target_type: str
    target_id: uuid.UUID
    reason: Optional[str] = None
    admin_id: uuid.UUID
    created_at: Optional[datetime] = None


class DashboardStats(CamelModel):
    total_users: int
    total_sellers: int
    total_buyers: int
    active_users: int
    total_listings: int
    active_listings: int
    pending_listings: int
    sold_listings: int
    total_transactions: int
    active_transactions: int
    completed_transactions: int
    total_offers: int
    pending_offers: int
    premium_requests: int
    open_disputes: int
    total_revenue: float


class AnalyticsRange(CamelModel):
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class RevenueAnalytics(CamelModel):
    total_revenue: float
    total_volume: float
    transaction_count: int
    average_deal_size: float
    by_month: list[dict[str, Any]] = Field(default_factory=list)
