"""Pydantic schemas for request/response validation.

Sub-modules:
    common      : CamelModel, Pagination, PageParams, ok()
    auth        : Register/Login/Refresh payloads, UserRead, PublicUser
    listings    : ListingFilters, ListingCreate/Update/Read/Detail
    offers      : OfferCreate, CounterOfferRequest, OfferRead
    transactions: TransactionRead/Detail, PaymentRequest, MessageCreate, Dispute*
    credits     : CreditBalance, PlanRead, checkout payloads, SubscriptionRead
    admin       : moderation payloads, DashboardStats, RevenueAnalytics
    misc        : notifications, documents, consultations, integrations
    messages    : DirectMessageCreate/Read, InquiryCreate, ConversationRead
    seller      : EarningRow, EarningsSummary, ChargeRead
"""

from __future__ import annotations
