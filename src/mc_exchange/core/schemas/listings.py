"""Schemas for listing browse, detail, create and update."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import EmailStr, Field, field_validator

from mc_exchange.core.models.enums import (
    AmazonRelayStatus,
    ListingStatus,
    ListingVisibility,
    PremiumRequestStatus,
    SafetyRating,
)
from mc_exchange.core.schemas.common import CamelModel

SortOption = Literal["newest", "oldest", "price_asc", "price_desc", "years_active"]


class ListingFilters(CamelModel):
    """Query parameters accepted by ``GET /api/listings``."""

    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)
    search: Optional[str] = None
    min_price: Optional[float] = Field(default=None, ge=0)
    max_price: Optional[float] = Field(default=None, ge=0)
    state: Optional[str] = None
    safety_rating: Optional[str] = None
    amazon_status: Optional[str] = None
    verified: Optional[bool] = None
    premium: Optional[bool] = None
    highway_setup: Optional[bool] = None
    has_email: Optional[bool] = None
    has_phone: Optional[bool] = None
    min_years: Optional[int] = Field(default=None, ge=0)
    sort_by: SortOption = "newest"
    status: Optional[ListingStatus] = None
    seller_id: Optional[uuid.UUID] = None


class _ListingFields(CamelModel):
    title: str = Field(min_length=1, max_length=300)
    description: Optional[str] = None
    price: float = Field(gt=0)
    city: str = Field(min_length=1, max_length=100)
    state: str = Field(min_length=2, max_length=2)
    address: Optional[str] = None
    years_active: int = Field(default=0, ge=0)
    fleet_size: int = Field(default=0, ge=0)
    total_drivers: int = Field(default=0, ge=0)
    safety_rating: SafetyRating = SafetyRating.NONE
    insurance_on_file: bool = False
    bipd_coverage: Optional[float] = Field(default=None, ge=0)
    cargo_coverage: Optional[float] = Field(default=None, ge=0)
    bond_amount: Optional[float] = Field(default=None, ge=0)
    amazon_status: AmazonRelayStatus = AmazonRelayStatus.NONE
    amazon_relay_score: Optional[str] = None
    highway_setup: bool = False
    selling_with_email: bool = False
    selling_with_phone: bool = False
    contact_email: Optional[EmailStr] = None
    contact_phone: Optional[str] = None
    cargo_types: Optional[list[str]] = None
    visibility: ListingVisibility = ListingVisibility.PUBLIC
    is_premium: bool = False

    @field_validator("safety_rating", "amazon_status", "visibility", mode="before")
    @classmethod
    def _upper(cls, value: object) -> object:
        return value.upper() if isinstance(value, str) else value

    @field_validator("state")
    @classmethod
    def _state_upper(cls, value: str) -> str:
        return value.upper()


class ListingCreate(_ListingFields):
    mc_number: str = Field(min_length=1, max_length=20)
    dot_number: str = Field(min_length=1, max_length=20)
    legal_name: str = Field(min_length=1, max_length=300)
    dba_name: Optional[str] = Field(default=None, max_length=300)


class ListingUpdate(CamelModel):
    """Partial update; only provided fields are applied."""

    title: Optional[str] = Field(default=None, min_length=1, max_length=300)
    description: Optional[str] = None
    price: Optional[float] = Field(default=None, gt=0)
    city: Optional[str] = None
    state: Optional[str] = Field(default=None, min_length=2, max_length=2)
    years_active: Optional[int] = Field(default=None, ge=0)
    fleet_size: Optional[int] = Field(default=None, ge=0)
    total_drivers: Optional[int] = Field(default=None, ge=0)
    safety_rating: Optional[SafetyRating] = None
    insurance_on_file: Optional[bool] = None
    bipd_coverage: Optional[float] = None
    cargo_coverage: Optional[float] = None
    amazon_status: Optional[AmazonRelayStatus] = None
    amazon_relay_score: Optional[str] = None
    highway_setup: Optional[bool] = None
    selling_with_email: Optional[bool] = None
    selling_with_phone: Optional[bool] = None
    cargo_types: Optional[list[str]] = None
    visibility: Optional[ListingVisibility] = None
    is_premium: Optional[bool] = None

    @field_validator("safety_rating", "amazon_status", "visibility", "state", mode="before")
    @classmethod
    def _upper(cls, value: object) -> object:
        return value.upper() if isinstance(value, str) else value


class SellerSummary(CamelModel):
    id: uuid.UUID
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    verified: bool = False
    trust_score: int = 50
    avatar: Optional[str] = None
    member_since: Optional[datetime] = None
    company_name: Optional[str] = None


class ListingRead(CamelModel):
    id: uuid.UUID
    mc_number: str
    dot_number: str
    legal_name: str
    dba_name: Optional[str] = None
    title: str
    description: Optional[str] = None
    price: float
    is_premium: bool
    status: str
    visibility: str
    city: str
    state: str
    years_active: int
    fleet_size: int
    total_drivers: int
    safety_rating: str
    insurance_on_file: bool
    bipd_coverage: Optional[float] = None
    cargo_coverage: Optional[float] = None
    bond_amount: Optional[float] = None
    amazon_status: str
    amazon_relay_score: Optional[str] = None
    highway_setup: bool
    selling_with_email: bool
    selling_with_phone: bool
    cargo_types: Optional[list[str]] = None
    views: int
    saves: int
    listing_fee_paid: bool = False
    rejection_reason: Optional[str] = None
    published_at: Optional[datetime] = None
    seller_id: uuid.UUID
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ListingDetail(ListingRead):
    """Detail view with viewer-specific flags and a possibly-masked seller."""

    seller: Optional[SellerSummary] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    fmcsa_data: Optional[dict] = None
    is_unlocked: bool = False
    is_saved: bool = False
    is_owner: bool = False
    documents: list[dict[str, Any]] = Field(default_factory=list)


class UnlockResult(CamelModel):
    success: bool = True
    already_unlocked: bool


class PremiumRequestCreate(CamelModel):
    message: Optional[str] = Field(default=None, max_length=2000)


class PremiumRequestRead(CamelModel):
    id: uuid.UUID
    status: PremiumRequestStatus
    message: Optional[str] = None
    admin_notes: Optional[str] = None
    buyer_id: uuid.UUID
    listing_id: uuid.UUID
    created_at: Optional[datetime] = None
