"""Admin moderation, platform settings and analytics.

Every moderation action writes an :class:`AdminAction` row through
:func:`record_admin_action` in the same database transaction as the change
it records.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any, Optional

import structlog
from fastapi import Depends
from sqlalchemy import and_, delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from mc_exchange.core.cache_service import CacheService, get_cache
from mc_exchange.core.database import get_db
from mc_exchange.core.email_service import EmailService, get_email_service
from mc_exchange.core.exceptions import BadRequestError, NotFoundError
from mc_exchange.core.models.admin import AdminAction, PlatformSetting
from mc_exchange.core.models.credits import Subscription
from mc_exchange.core.models.enums import (
    DisputeStatus,
    ListingStatus,
    NotificationType,
    OfferStatus,
    PremiumRequestStatus,
    SettingType,
    TransactionStatus,
    UserRole,
    UserStatus,
)
from mc_exchange.core.models.listings import Listing, PremiumRequest
from mc_exchange.core.models.offers import Offer
from mc_exchange.core.models.transactions import Dispute, Transaction
from mc_exchange.core.models.users import RefreshToken, User
from mc_exchange.core.notification_service import NotificationService
from mc_exchange.core.pricing_service import clear_pricing_cache, coerce_setting

logger = structlog.get_logger(__name__)

VERIFIED_SELLER_TRUST_BONUS = 20
MAX_TRUST_SCORE = 100

# Listing columns an admin may edit directly.
ADMIN_EDITABLE_LISTING_FIELDS = frozenset(
    {
        "mc_number", "dot_number", "legal_name", "dba_name", "title", "description",
        "price", "city", "state", "address", "years_active", "fleet_size",
        "total_drivers", "safety_rating", "safer_score", "insurance_on_file",
        "bipd_coverage", "cargo_coverage", "bond_amount", "amazon_status",
        "amazon_relay_score", "highway_setup", "selling_with_email",
        "selling_with_phone", "contact_email", "contact_phone", "cargo_types",
        "review_notes", "status", "visibility", "is_premium",
    }
)


def record_admin_action(
    session: AsyncSession,
    admin_id: uuid.UUID,
    action: str,
    target_type: str,
    target_id: uuid.UUID,
    *,
    reason: Optional[str] = None,
    metadata: Optional[dict[str, Any]] = None,
) -> AdminAction:
    """Stage an audit row; the caller commits it with the change."""
    entry = AdminAction(
        admin_id=admin_id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        reason=reason,
        metadata_=metadata or {},
    )
    session.add(entry)
    return entry


class AdminService:
    """Back-office operations behind ``/api/admin``.

    Args:
        session: Open async session.
        email: Email sender for listing decisions and account blocks.
        cache: Redis cache; listing, user and settings entries are
            invalidated after edits.
    """

    def __init__(
        self,
        session: AsyncSession,
        email: Optional[EmailService] = None,
        cache: Optional[CacheService] = None,
    ) -> None:
        self.session = session
        self.email = email or get_email_service()
        self.cache = cache or get_cache()
        self.notifications = NotificationService(session)

    # ------------------------------------------------------------------
    # Dashboard
    # ------------------------------------------------------------------

    async def get_dashboard_stats(self) -> dict[str, Any]:
        async def count(model: Any, *conditions: Any) -> int:
            stmt = select(func.count()).select_from(model).where(*conditions)
            return int((await self.session.execute(stmt)).scalar_one())

        revenue = (
            await self.session.execute(
                select(func.coalesce(func.sum(Transaction.platform_fee), 0)).where(
                    Transaction.status == TransactionStatus.COMPLETED
                )
            )
        ).scalar_one()

        return {
            "total_users": await count(User),
            "total_sellers": await count(User, User.role == UserRole.SELLER),
            "total_buyers": await count(User, User.role == UserRole.BUYER),
            "active_users": await count(User, User.status == UserStatus.ACTIVE),
            "total_listings": await count(Listing),
            "active_listings": await count(Listing, Listing.status == ListingStatus.ACTIVE),
            "pending_listings": await count(
                Listing, Listing.status == ListingStatus.PENDING_REVIEW
            ),
            "sold_listings": await count(Listing, Listing.status == ListingStatus.SOLD),
            "total_transactions": await count(Transaction),
            "active_transactions": await count(
                Transaction,
                Transaction.status.not_in(
                    (TransactionStatus.COMPLETED, TransactionStatus.CANCELLED)
                ),
            ),
            "completed_transactions": await count(
                Transaction, Transaction.status == TransactionStatus.COMPLETED
            ),
            "total_offers": await count(Offer),
            "pending_offers": await count(Offer, Offer.status == OfferStatus.PENDING),
            "premium_requests": await count(
                PremiumRequest, PremiumRequest.status == PremiumRequestStatus.PENDING
            ),
            "open_disputes": await count(Dispute, Dispute.status == DisputeStatus.OPEN),
            "total_revenue": float(revenue or 0),
        }

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    async def get_pending_listings(
        self, *, offset: int = 0, limit: int = 20
    ) -> tuple[list[Listing], int]:
        """Oldest submissions first."""
        return await self._page(
            select(Listing)
            .where(Listing.status == ListingStatus.PENDING_REVIEW)
            .options(selectinload(Listing.seller))
            .order_by(Listing.created_at.asc()),
            offset,
            limit,
        )

    async def get_all_listings(
        self,
        *,
        search: Optional[str] = None,
        status: Optional[ListingStatus] = None,
        is_premium: Optional[bool] = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[Listing], int]:
        stmt = select(Listing).options(selectinload(Listing.seller))
        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(
                or_(
                    Listing.mc_number.ilike(pattern),
                    Listing.dot_number.ilike(pattern),
                    Listing.title.ilike(pattern),
                    Listing.legal_name.ilike(pattern),
                )
            )
        if status is not None:
            stmt = stmt.where(Listing.status == status)
        if is_premium is not None:
            stmt = stmt.where(Listing.is_premium.is_(is_premium))
        return await self._page(stmt.order_by(Listing.created_at.desc()), offset, limit)

    async def get_listing(self, listing_id: uuid.UUID) -> Listing:
        listing = (
            await self.session.execute(
                select(Listing)
                .where(Listing.id == listing_id)
                .options(selectinload(Listing.seller), selectinload(Listing.documents))
            )
        ).scalar_one_or_none()
        if listing is None:
            raise NotFoundError("Listing")
        return listing

    async def update_listing(
        self,
        listing_id: uuid.UUID,
        admin_id: uuid.UUID,
        changes: dict[str, Any],
    ) -> Listing:
        """Apply arbitrary field edits, including status and visibility."""
        listing = await self.get_listing(listing_id)
        unknown = set(changes) - ADMIN_EDITABLE_LISTING_FIELDS
        if unknown:
            raise BadRequestError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")
        for field, value in changes.items():
            if field in ("state", "safety_rating", "amazon_status", "status", "visibility"):
                value = str(value).upper() if value is not None else None
            setattr(listing, field, value)
        record_admin_action(
            self.session,
            admin_id,
            "UPDATE_LISTING",
            "LISTING",
            listing.id,
            metadata={"fields": sorted(changes)},
        )
        await self.session.commit()
        await self.cache.invalidate_listing(str(listing.id))
        logger.info("listing_updated_by_admin", listing_id=str(listing.id), fields=sorted(changes))
        return listing

    async def approve_listing(
        self,
        listing_id: uuid.UUID,
        admin_id: uuid.UUID,
        *,
        notes: Optional[str] = None,
        price: Optional[float] = None,
    ) -> Listing:
        """Publish a listing; an explicit *price* overrides the seller's ask."""
        listing = await self.get_listing(listing_id)
        if listing.status in (ListingStatus.SOLD, ListingStatus.RESERVED):
            raise BadRequestError("Cannot change the status of a sold or reserved listing")
        now = datetime.now(UTC)
        listing.status = ListingStatus.ACTIVE.value
        if price is not None:
            listing.price = price
        listing.reviewed_by = admin_id
        listing.reviewed_at = now
        listing.review_notes = notes
        listing.rejection_reason = None
        listing.published_at = now

        record_admin_action(
            self.session, admin_id, "APPROVE_LISTING", "LISTING", listing.id, reason=notes
        )
        self.notifications.add(
            listing.seller_id,
            NotificationType.VERIFICATION,
            "Listing Approved",
            f"Your listing MC-{listing.mc_number} has been approved and is now live.",
            link="/seller/listings",
        )
        await self.session.commit()
        await self.cache.invalidate_listing(str(listing.id))
        logger.info("listing_approved", listing_id=str(listing.id), admin_id=str(admin_id))
        await self.email.send_listing_status(
            listing.seller.email,
            name=listing.seller.name,
            mc_number=listing.mc_number,
            approved=True,
        )
        return listing

    async def reject_listing(
        self,
        listing_id: uuid.UUID,
        admin_id: uuid.UUID,
        reason: str,
    ) -> Listing:
        listing = await self.get_listing(listing_id)
        if listing.status in (ListingStatus.SOLD, ListingStatus.RESERVED):
            raise BadRequestError("Cannot change the status of a sold or reserved listing")
        listing.status = ListingStatus.REJECTED.value
        listing.reviewed_by = admin_id
        listing.reviewed_at = datetime.now(UTC)
        listing.rejection_reason = reason

        record_admin_action(
            self.session, admin_id, "REJECT_LISTING", "LISTING", listing.id, reason=reason
        )
        self.notifications.add(
            listing.seller_id,
            NotificationType.VERIFICATION,
            "Listing Rejected",
            f"Your listing MC-{listing.mc_number} was not approved. Reason: {reason}",
            link="/seller/listings",
        )
        await self.session.commit()
        await self.cache.invalidate_listing(str(listing.id))
        logger.info("listing_rejected", listing_id=str(listing.id), admin_id=str(admin_id))
        await self.email.send_listing_status(
            listing.seller.email,
            name=listing.seller.name,
            mc_number=listing.mc_number,
            approved=False,
            reason=reason,
        )
        return listing

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def get_users(
        self,
        *,
        search: Optional[str] = None,
        role: Optional[UserRole] = None,
        status: Optional[UserStatus] = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[User], int]:
        stmt = select(User)
        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(
                or_(
                    User.name.ilike(pattern),
                    User.email.ilike(pattern),
                    User.company_name.ilike(pattern),
                )
            )
        if role is not None:
            stmt = stmt.where(User.role == role)
        if status is not None:
            stmt = stmt.where(User.status == status)
        return await self._page(stmt.order_by(User.created_at.desc()), offset, limit)

    async def get_user_details(self, user_id: uuid.UUID) -> dict[str, Any]:
        """Return the user plus recent listings, offers, subscription and counts."""
        user = await self._get_user(user_id)

        async def recent(stmt: Any) -> list[Any]:
            return list((await self.session.execute(stmt.limit(10))).scalars().all())

        async def count(model: Any, *conditions: Any) -> int:
            stmt = select(func.count()).select_from(model).where(*conditions)
            return int((await self.session.execute(stmt)).scalar_one())

        listings = await recent(
            select(Listing).where(Listing.seller_id == user_id).order_by(Listing.created_at.desc())
        )
        sent_offers = await recent(
            select(Offer)
            .where(Offer.buyer_id == user_id)
            .options(selectinload(Offer.listing))
            .order_by(Offer.created_at.desc())
        )
        received_offers = await recent(
            select(Offer)
            .where(Offer.seller_id == user_id)
            .options(selectinload(Offer.listing))
            .order_by(Offer.created_at.desc())
        )
        subscription = (
            await self.session.execute(select(Subscription).where(Subscription.user_id == user_id))
        ).scalar_one_or_none()

        return {
            "user": user,
            "listings": listings,
            "sent_offers": sent_offers,
            "received_offers": received_offers,
            "subscription": subscription,
            "counts": {
                "listings": await count(Listing, Listing.seller_id == user_id),
                "sent_offers": await count(Offer, Offer.buyer_id == user_id),
                "received_offers": await count(Offer, Offer.seller_id == user_id),
                "buyer_transactions": await count(Transaction, Transaction.buyer_id == user_id),
                "seller_transactions": await count(Transaction, Transaction.seller_id == user_id),
            },
        }

    async def block_user(self, user_id: uuid.UUID, admin_id: uuid.UUID, reason: str) -> User:
        """Block an account and sign it out everywhere."""
        user = await self._get_user(user_id)
        if user.id == admin_id:
            raise BadRequestError("You cannot block your own account")
        user.status = UserStatus.BLOCKED.value
        await self.session.execute(
            delete(RefreshToken).where(RefreshToken.user_id == user_id)
        )
        record_admin_action(self.session, admin_id, "BLOCK_USER", "USER", user.id, reason=reason)
        await self.session.commit()
        await self.cache.invalidate_user(str(user.id))
        logger.warning("user_blocked", user_id=str(user.id), admin_id=str(admin_id))
        await self.email.send_account_blocked(user.email, name=user.name, reason=reason)
        return user

    async def unblock_user(self, user_id: uuid.UUID, admin_id: uuid.UUID) -> User:
        user = await self._get_user(user_id)
        user.status = UserStatus.ACTIVE.value
        record_admin_action(self.session, admin_id, "UNBLOCK_USER", "USER", user.id)
        await self.session.commit()
        await self.cache.invalidate_user(str(user.id))
        logger.info("user_unblocked", user_id=str(user.id), admin_id=str(admin_id))
        return user

    async def verify_seller(self, user_id: uuid.UUID, admin_id: uuid.UUID) -> User:
        user = await self._get_user(user_id)
        if user.seller_verified:
            raise BadRequestError("Seller is already verified")
        now = datetime.now(UTC)
        user.seller_verified = True
        user.seller_verified_at = now
        user.verified = True
        user.verified_at = now
        user.trust_score = min(MAX_TRUST_SCORE, user.trust_score + VERIFIED_SELLER_TRUST_BONUS)
        record_admin_action(self.session, admin_id, "VERIFY_SELLER", "USER", user.id)
        self.notifications.add(
            user.id,
            NotificationType.VERIFICATION,
            "Seller Verification Complete",
            "Congratulations! Your seller account has been verified.",
            link="/seller/dashboard",
        )
        await self.session.commit()
        await self.cache.invalidate_user(str(user.id))
        logger.info("seller_verified", user_id=str(user.id), trust_score=user.trust_score)
        return user

    # ------------------------------------------------------------------
    # Premium requests, transactions, offers, audit log
    # ------------------------------------------------------------------

    async def get_premium_requests(
        self,
        *,
        status: Optional[PremiumRequestStatus] = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[PremiumRequest], int]:
        stmt = select(PremiumRequest).options(
            selectinload(PremiumRequest.buyer),
            selectinload(PremiumRequest.listing).selectinload(Listing.seller),
        )
        if status is not None:
            stmt = stmt.where(PremiumRequest.status == status)
        return await self._page(stmt.order_by(PremiumRequest.created_at.desc()), offset, limit)

    async def update_premium_request(
        self,
        request_id: uuid.UUID,
        admin_id: uuid.UUID,
        status: PremiumRequestStatus,
        notes: Optional[str] = None,
    ) -> PremiumRequest:
        request = await self.session.get(PremiumRequest, request_id)
        if request is None:
            raise NotFoundError("Premium request")
        request.status = status.value
        if notes is not None:
            request.admin_notes = notes
        if status == PremiumRequestStatus.CONTACTED:
            request.contacted_at = datetime.now(UTC)
            request.contacted_by = admin_id
        record_admin_action(
            self.session,
            admin_id,
            "UPDATE_PREMIUM_REQUEST",
            "PREMIUM_REQUEST",
            request.id,
            reason=notes,
            metadata={"status": status.value},
        )
        await self.session.commit()
        return request

    async def get_all_transactions(
        self,
        *,
        status: Optional[TransactionStatus] = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[Transaction], int]:
        stmt = select(Transaction).options(
            selectinload(Transaction.listing),
            selectinload(Transaction.buyer),
            selectinload(Transaction.seller),
        )
        if status is not None:
            stmt = stmt.where(Transaction.status == status)
        return await self._page(stmt.order_by(Transaction.created_at.desc()), offset, limit)

    async def get_all_offers(
        self,
        *,
        status: Optional[OfferStatus] = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[Offer], int]:
        stmt = select(Offer).options(
            selectinload(Offer.listing),
            selectinload(Offer.buyer),
            selectinload(Offer.seller),
        )
        if status is not None:
            stmt = stmt.where(Offer.status == status)
        return await self._page(stmt.order_by(Offer.created_at.desc()), offset, limit)

    async def get_action_log(
        self,
        *,
        admin_id: Optional[uuid.UUID] = None,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[AdminAction], int]:
        stmt = select(AdminAction)
        if admin_id is not None:
            stmt = stmt.where(AdminAction.admin_id == admin_id)
        return await self._page(stmt.order_by(AdminAction.created_at.desc()), offset, limit)

    # ------------------------------------------------------------------
    # Platform settings
    # ------------------------------------------------------------------

    async def get_settings(self) -> dict[str, Any]:
        """Return every setting coerced to its declared type."""
        cached = await self.cache.get_cached_settings()
        if isinstance(cached, dict):
            return cached
        rows = (await self.session.execute(select(PlatformSetting))).scalars().all()
        settings = {row.key: coerce_setting(row.value, row.type) for row in rows}
        await self.cache.cache_settings(settings)
        return settings

    async def get_setting(self, key: str) -> Optional[dict[str, Any]]:
        row = (
            await self.session.execute(select(PlatformSetting).where(PlatformSetting.key == key))
        ).scalar_one_or_none()
        if row is None:
            return None
        return {"key": row.key, "value": coerce_setting(row.value, row.type), "type": row.type}

    async def is_listing_payment_required(self) -> bool:
        """Whether sellers must pay the listing fee before review (default on)."""
        value = (await self.get_settings()).get("listing_payment_required")
        return True if value is None else bool(value)

    async def update_settings(
        self,
        admin_id: uuid.UUID,
        settings: list[tuple[str, str, SettingType]],
    ) -> dict[str, Any]:
        """Upsert ``(key, value, type)`` triples and drop cached copies."""
        keys = [key for key, _, _ in settings]
        existing = {
            row.key: row
            for row in (
                await self.session.execute(
                    select(PlatformSetting).where(PlatformSetting.key.in_(keys))
                )
            ).scalars()
        }
        for key, value, setting_type in settings:
            row = existing.get(key)
            if row is None:
                self.session.add(PlatformSetting(key=key, value=value, type=setting_type.value))
            else:
                row.value = value
                row.type = setting_type.value
        record_admin_action(
            self.session,
            admin_id,
            "UPDATE_SETTINGS",
            "SETTINGS",
            admin_id,
            metadata={"keys": keys},
        )
        await self.session.commit()
        clear_pricing_cache()
        await self.cache.invalidate_settings()
        logger.info("platform_settings_updated", keys=keys, admin_id=str(admin_id))
        return await self.get_settings()

    # ------------------------------------------------------------------
    # Analytics
    # ------------------------------------------------------------------

    async def get_revenue_analytics(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> dict[str, Any]:
        """Platform fees and volume of completed deals, with a monthly breakdown."""
        conditions = [Transaction.status == TransactionStatus.COMPLETED]
        if start_date is not None:
            conditions.append(Transaction.completed_at >= start_date)
        if end_date is not None:
            conditions.append(Transaction.completed_at <= end_date)

        revenue, volume, count = (
            await self.session.execute(
                select(
                    func.coalesce(func.sum(Transaction.platform_fee), 0),
                    func.coalesce(func.sum(Transaction.agreed_price), 0),
                    func.count(Transaction.id),
                ).where(and_(*conditions))
            )
        ).one()

        month = func.date_trunc("month", Transaction.completed_at).label("month")
        monthly = await self.session.execute(
            select(
                month,
                func.coalesce(func.sum(Transaction.platform_fee), 0),
                func.coalesce(func.sum(Transaction.agreed_price), 0),
                func.count(Transaction.id),
            )
            .where(and_(*conditions))
            .group_by(month)
            .order_by(month)
        )
        by_month = [
            {
                "month": period.strftime("%Y-%m") if period else None,
                "revenue": float(month_revenue),
                "volume": float(month_volume),
                "count": int(month_count),
            }
            for period, month_revenue, month_volume, month_count in monthly.all()
        ]

        count = int(count)
        volume = float(volume)
        return {
            "total_revenue": float(revenue),
            "total_volume": volume,
            "transaction_count": count,
            "average_deal_size": round(volume / count, 2) if count else 0.0,
            "by_month": by_month,
        }

    async def get_user_analytics(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> dict[str, Any]:
        window = self._created_window(User, start_date, end_date)
        rows = await self.session.execute(
            select(User.role, func.count()).where(*window).group_by(User.role)
        )
        by_role = {str(role): int(n) for role, n in rows.all()}
        total = sum(by_role.values())
        verified = int(
            (
                await self.session.execute(
                    select(func.count()).select_from(User).where(*window, User.verified.is_(True))
                )
            ).scalar_one()
        )
        return {
            "total_users": total,
            "by_role": {
                "buyers": by_role.get(UserRole.BUYER.value, 0),
                "sellers": by_role.get(UserRole.SELLER.value, 0),
                "admins": by_role.get(UserRole.ADMIN.value, 0),
            },
            "verified_count": verified,
            "verification_rate": round(verified / total * 100, 2) if total else 0.0,
        }

    async def get_listing_analytics(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> dict[str, Any]:
        window = self._created_window(Listing, start_date, end_date)
        rows = await self.session.execute(
            select(Listing.status, func.count()).where(*window).group_by(Listing.status)
        )
        by_status = {str(status): int(n) for status, n in rows.all()}
        total = sum(by_status.values())
        premium, views, saves = (
            await self.session.execute(
                select(
                    func.count().filter(Listing.is_premium.is_(True)),
                    func.coalesce(func.sum(Listing.views), 0),
                    func.coalesce(func.sum(Listing.saves), 0),
                ).where(*window)
            )
        ).one()
        average_price = (
            await self.session.execute(
                select(func.avg(Listing.price)).where(
                    *window, Listing.status == ListingStatus.ACTIVE
                )
            )
        ).scalar_one()
        sold = by_status.get(ListingStatus.SOLD.value, 0)
        return {
            "total_listings": total,
            "by_status": {
                "active": by_status.get(ListingStatus.ACTIVE.value, 0),
                "pending": by_status.get(ListingStatus.PENDING_REVIEW.value, 0),
                "sold": sold,
            },
            "premium_count": int(premium),
            "premium_rate": round(int(premium) / total * 100, 2) if total else 0.0,
            "total_views": int(views),
            "total_saves": int(saves),
            "average_price": round(float(average_price or 0), 2),
            "conversion_rate": round(sold / total * 100, 2) if total else 0.0,
        }

    # ------------------------------------------------------------------
    # Broadcast
    # ------------------------------------------------------------------

    async def broadcast(
        self,
        admin_id: uuid.UUID,
        title: str,
        message: str,
        *,
        type: NotificationType = NotificationType.SYSTEM,
        role: Optional[UserRole] = None,
        link: Optional[str] = None,
    ) -> int:
        """Notify every active user, or every active user with *role*."""
        stmt = select(User.id).where(User.status == UserStatus.ACTIVE)
        if role is not None:
            stmt = stmt.where(User.role == role)
        recipients = list((await self.session.execute(stmt)).scalars().all())
        self.notifications.add_many(recipients, type, title, message, link=link)
        record_admin_action(
            self.session,
            admin_id,
            "BROADCAST_MESSAGE",
            "NOTIFICATION",
            admin_id,
            metadata={
                "title": title,
                "role": role.value if role else "ALL",
                "recipientCount": len(recipients),
            },
        )
        await self.session.commit()
        logger.info("broadcast_sent", admin_id=str(admin_id), recipients=len(recipients))
        return len(recipients)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _get_user(self, user_id: uuid.UUID) -> User:
        user = await self.session.get(User, user_id)
        if user is None:
            raise NotFoundError("User")
        return user

    async def _page(self, stmt: Any, offset: int, limit: int) -> tuple[list[Any], int]:
        total = (
            await self.session.execute(select(func.count()).select_from(stmt.order_by(None).subquery()))
        ).scalar_one()
        rows = await self.session.execute(stmt.offset(offset).limit(limit))
        return list(rows.scalars().all()), int(total)

    @staticmethod
    def _created_window(
        model: Any, start_date: Optional[datetime], end_date: Optional[datetime]
    ) -> list[Any]:
        conditions = []
        if start_date is not None:
            conditions.append(model.created_at >= start_date)
        if end_date is not None:
            conditions.append(model.created_at <= end_date)
        return conditions


# ---------------------------------------------------------------------------
# FastAPI dependency factory
# ---------------------------------------------------------------------------


async def get_admin_service(session: AsyncSession = Depends(get_db)) -> AdminService:
    return AdminService(session=session)
