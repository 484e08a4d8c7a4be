"""Profiles, public profiles, reviews, dashboards, seller earnings and trust scores.

Trust score formula (bounded to ``[0, MAX_SCORE]``)::

    BASE_SCORE
    + COMPLETED_DEALS   * completed transactions (as buyer or seller)
    + POSITIVE_REVIEW   * reviews rated 4 or 5
    + NEGATIVE_REVIEW   * reviews rated 1 or 2
    + VERIFIED_SELLER   if the seller is verified
    + ACCOUNT_AGE_MONTH * whole months since ``member_since``
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any, Optional

import structlog
from fastapi import Depends
from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from mc_exchange.config.pricing import TRUST_SCORE_WEIGHTS
from mc_exchange.core.cache_service import CacheKeys, CacheService, CacheTTL, get_cache
from mc_exchange.core.database import get_db
from mc_exchange.core.exceptions import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from mc_exchange.core.integrations.stripe_gateway import StripeGateway, get_stripe_gateway
from mc_exchange.core.models.enums import (
    ListingStatus,
    OfferStatus,
    TransactionStatus,
    UserRole,
    UserStatus,
)
from mc_exchange.core.models.listings import Listing, SavedListing, UnlockedListing
from mc_exchange.core.models.offers import Offer
from mc_exchange.core.models.transactions import Review, Transaction
from mc_exchange.core.models.users import RefreshToken, User

logger = structlog.get_logger(__name__)

_CLOSED_TRANSACTION_STATES = (TransactionStatus.COMPLETED.value, TransactionStatus.CANCELLED.value)


def calculate_trust_score(
    *,
    completed_deals: int,
    positive_reviews: int,
    negative_reviews: int,
    seller_verified: bool,
    account_age_months: int,
) -> int:
    """Combine activity signals into a 0–100 score."""
    weights = TRUST_SCORE_WEIGHTS
    score = (
        weights["BASE_SCORE"]
        + weights["COMPLETED_DEALS"] * completed_deals
        + weights["POSITIVE_REVIEW"] * positive_reviews
        + weights["NEGATIVE_REVIEW"] * negative_reviews
        + weights["ACCOUNT_AGE_MONTH"] * account_age_months
    )
    if seller_verified:
        score += weights["VERIFIED_SELLER"]
    return max(0, min(int(score), weights["MAX_SCORE"]))


def months_between(start: Optional[datetime], end: datetime) -> int:
    if start is None:
        return 0
    months = (end.year - start.year) * 12 + (end.month - start.month)
    if end.day < start.day:
        months -= 1
    return max(0, months)


class UserService:
    """Account-level reads and updates.

    Args:
        session: Open async session.
        cache: Redis cache; defaults to the process-wide instance.
        stripe_gateway: Used for the Stripe charge history.
    """

    def __init__(
        self,
        session: AsyncSession,
        cache: Optional[CacheService] = None,
        stripe_gateway: Optional[StripeGateway] = None,
    ) -> None:
        self.session = session
        self.cache = cache or get_cache()
        self.stripe = stripe_gateway or get_stripe_gateway()

    async def get_user(self, user_id: uuid.UUID) -> User:
        user = await self.session.get(User, user_id)
        if user is None:
            raise NotFoundError("User")
        return user

    # ------------------------------------------------------------------
    # Own profile
    # ------------------------------------------------------------------

    async def get_profile(self, user_id: uuid.UUID) -> tuple[User, dict[str, int]]:
        """Return the user and activity counters (cached per user)."""
        user = await self.get_user(user_id)
        cache_key = f"{CacheKeys.USER}{user_id}:stats"
        stats = await self.cache.get(cache_key)
        if stats is None:
            stats = await self._activity_counts(user_id)
            await self.cache.set(cache_key, stats, CacheTTL.MEDIUM)
        return user, stats

    async def update_profile(self, user_id: uuid.UUID, changes: dict[str, Any]) -> User:
        user = await self.get_user(user_id)
        for field, value in changes.items():
            setattr(user, field, value)
        await self.session.commit()
        await self.cache.invalidate_user(str(user_id))
        logger.info("profile_updated", user_id=str(user_id), fields=sorted(changes))
        return user

    async def update_avatar(self, user_id: uuid.UUID, avatar_url: str) -> User:
        return await self.update_profile(user_id, {"avatar": avatar_url})

    async def deactivate_account(self, user_id: uuid.UUID) -> None:
        """Suspend the account and sign it out everywhere."""
        user = await self.get_user(user_id)
        user.status = UserStatus.SUSPENDED.value
        await self.session.execute(delete(RefreshToken).where(RefreshToken.user_id == user_id))
        await self.session.commit()
        await self.cache.invalidate_user(str(user_id))
        logger.info("account_deactivated", user_id=str(user_id))

    # ------------------------------------------------------------------
    # Public views
    # ------------------------------------------------------------------

    async def get_public_profile(self, user_id: uuid.UUID) -> dict[str, Any]:
        user = await self.get_user(user_id)
        if user.status == UserStatus.BLOCKED:
            raise NotFoundError("User")
        completed = await self._count(
            select(func.count())
            .select_from(Transaction)
            .where(
                or_(Transaction.buyer_id == user_id, Transaction.seller_id == user_id),
                Transaction.status == TransactionStatus.COMPLETED,
            )
        )
        rating = (
            await self.session.execute(
                select(func.avg(Review.rating), func.count(Review.id)).where(
                    Review.to_user_id == user_id
                )
            )
        ).one()
        active_listings = await self._count(
            select(func.count())
            .select_from(Listing)
            .where(Listing.seller_id == user_id, Listing.status == ListingStatus.ACTIVE)
        )
        return {
            "user": user,
            "completed_deals": completed,
            "average_rating": round(float(rating[0]), 2) if rating[0] is not None else None,
            "review_count": int(rating[1]),
            "active_listings": active_listings,
        }

    async def get_user_reviews(
        self, user_id: uuid.UUID, *, offset: int = 0, limit: int = 10
    ) -> tuple[list[Review], int]:
        total = await self._count(
            select(func.count()).select_from(Review).where(Review.to_user_id == user_id)
        )
        rows = (
            await self.session.execute(
                select(Review)
                .where(Review.to_user_id == user_id)
                .order_by(Review.created_at.desc())
                .offset(offset)
                .limit(limit)
            )
        ).scalars().all()
        return list(rows), total

    async def get_user_listings(
        self, user_id: uuid.UUID, *, offset: int = 0, limit: int = 10
    ) -> tuple[list[Listing], int]:
        """Active public listings of a seller, newest first."""
        conditions = (Listing.seller_id == user_id, Listing.status == ListingStatus.ACTIVE)
        total = await self._count(select(func.count()).select_from(Listing).where(*conditions))
        rows = (
            await self.session.execute(
                select(Listing)
                .where(*conditions)
                .order_by(Listing.created_at.desc())
                .offset(offset)
                .limit(limit)
            )
        ).scalars().all()
        return list(rows), total

    # ------------------------------------------------------------------
    # Reviews & trust
    # ------------------------------------------------------------------

    async def leave_review(
        self,
        transaction_id: uuid.UUID,
        author_id: uuid.UUID,
        rating: int,
        comment: Optional[str] = None,
    ) -> Review:
        """Rate the counterparty of a completed transaction.

        Raises:
            NotFoundError: Unknown transaction.
            ForbiddenError: The author is not a party.
            BadRequestError: The transaction is not completed.
            ConflictError: The author already reviewed this transaction.
        """
        transaction = await self.session.get(Transaction, transaction_id)
        if transaction is None:
            raise NotFoundError("Transaction")
        if not transaction.is_party(author_id):
            raise ForbiddenError("Not authorized")
        if transaction.status != TransactionStatus.COMPLETED:
            raise BadRequestError("Reviews can only be left on completed transactions")
        existing = await self._count(
            select(func.count())
            .select_from(Review)
            .where(Review.transaction_id == transaction_id, Review.from_user_id == author_id)
        )
        if existing:
            raise ConflictError("You have already reviewed this transaction")

        target_id = (
            transaction.seller_id if author_id == transaction.buyer_id else transaction.buyer_id
        )
        review = Review(
            transaction_id=transaction_id,
            from_user_id=author_id,
            to_user_id=target_id,
            rating=rating,
            comment=comment,
        )
        self.session.add(review)
        await self.session.flush()
        await self.recalculate_trust_score(target_id, commit=False)
        await self.session.commit()
        return review

    async def recalculate_trust_score(self, user_id: uuid.UUID, *, commit: bool = True) -> int:
        user = await self.get_user(user_id)
        completed = await self._count(
            select(func.count())
            .select_from(Transaction)
            .where(
                or_(Transaction.buyer_id == user_id, Transaction.seller_id == user_id),
                Transaction.status == TransactionStatus.COMPLETED,
            )
        )
        positive = await self._count(
            select(func.count())
            .select_from(Review)
            .where(Review.to_user_id == user_id, Review.rating >= 4)
        )
        negative = await self._count(
            select(func.count())
            .select_from(Review)
            .where(Review.to_user_id == user_id, Review.rating <= 2)
        )
        user.trust_score = calculate_trust_score(
            completed_deals=completed,
            positive_reviews=positive,
            negative_reviews=negative,
            seller_verified=bool(user.seller_verified),
            account_age_months=months_between(user.member_since, datetime.now(UTC)),
        )
        if commit:
            await self.session.commit()
        return user.trust_score

    # ------------------------------------------------------------------
    # Dashboards
    # ------------------------------------------------------------------

    async def get_dashboard_stats(self, user: User) -> dict[str, Any]:
        if user.role == UserRole.BUYER:
            return await self._buyer_dashboard(user)
        if user.role == UserRole.SELLER:
            return await self._seller_dashboard(user.id)
        raise ForbiddenError("Invalid role")

    async def _buyer_dashboard(self, user: User) -> dict[str, Any]:
        user_id = user.id
        offers = select(func.count()).select_from(Offer).where(Offer.buyer_id == user_id)
        transactions = select(func.count()).select_from(Transaction).where(
            Transaction.buyer_id == user_id
        )
        return {
            "offers": {
                "total": await self._count(offers),
                "pending": await self._count(offers.where(Offer.status == OfferStatus.PENDING)),
                "accepted": await self._count(offers.where(Offer.status == OfferStatus.ACCEPTED)),
            },
            "transactions": {
                "active": await self._count(
                    transactions.where(Transaction.status.not_in(_CLOSED_TRANSACTION_STATES))
                ),
                "completed": await self._count(
                    transactions.where(Transaction.status == TransactionStatus.COMPLETED)
                ),
            },
            "savedListings": await self._count(
                select(func.count()).select_from(SavedListing).where(SavedListing.user_id == user_id)
            ),
            "unlockedListings": await self._count(
                select(func.count())
                .select_from(UnlockedListing)
                .where(UnlockedListing.user_id == user_id)
            ),
            "credits": {
                "total": user.total_credits,
                "used": user.used_credits,
                "available": user.available_credits,
            },
        }

    async def _seller_dashboard(self, user_id: uuid.UUID) -> dict[str, Any]:
        listings = select(func.count()).select_from(Listing).where(Listing.seller_id == user_id)
        offers = select(func.count()).select_from(Offer).where(Offer.seller_id == user_id)
        transactions = select(func.count()).select_from(Transaction).where(
            Transaction.seller_id == user_id
        )
        views, saves = (
            await self.session.execute(
                select(
                    func.coalesce(func.sum(Listing.views), 0),
                    func.coalesce(func.sum(Listing.saves), 0),
                ).where(Listing.seller_id == user_id)
            )
        ).one()
        earnings = (
            await self.session.execute(
                select(func.coalesce(func.sum(Transaction.agreed_price), 0)).where(
                    Transaction.seller_id == user_id,
                    Transaction.status == TransactionStatus.COMPLETED,
                )
            )
        ).scalar_one()
        return {
            "listings": {
                "total": await self._count(listings),
                "active": await self._count(listings.where(Listing.status == ListingStatus.ACTIVE)),
                "pending": await self._count(
                    listings.where(Listing.status == ListingStatus.PENDING_REVIEW)
                ),
                "sold": await self._count(listings.where(Listing.status == ListingStatus.SOLD)),
            },
            "offers": {
                "total": await self._count(offers),
                "pending": await self._count(offers.where(Offer.status == OfferStatus.PENDING)),
            },
            "transactions": {
                "active": await self._count(
                    transactions.where(Transaction.status.not_in(_CLOSED_TRANSACTION_STATES))
                ),
                "completed": await self._count(
                    transactions.where(Transaction.status == TransactionStatus.COMPLETED)
                ),
            },
            "analytics": {"totalViews": int(views), "totalSaves": int(saves)},
            "earnings": float(earnings),
        }

    # ------------------------------------------------------------------
    # Seller earnings & payment history
    # ------------------------------------------------------------------

    async def get_seller_earnings(
        self, seller_id: uuid.UUID, *, offset: int = 0, limit: int = 20
    ) -> tuple[list[dict[str, Any]], int, dict[str, float]]:
        """Completed sales, newest first, with lifetime totals.

        Returns:
            ``(rows, total, totals)`` where each row carries the listing,
            buyer name, price, platform fee and net earnings, and
            *totals* holds ``gross``, ``fees`` and ``net``.
        """
        conditions = (
            Transaction.seller_id == seller_id,
            Transaction.status == TransactionStatus.COMPLETED,
        )
        total = await self._count(select(func.count()).select_from(Transaction).where(*conditions))
        transactions = (
            await self.session.execute(
                select(Transaction)
                .where(*conditions)
                .options(selectinload(Transaction.listing), selectinload(Transaction.buyer))
                .order_by(Transaction.completed_at.desc())
                .offset(offset)
                .limit(limit)
            )
        ).scalars().all()
        gross, fees = (
            await self.session.execute(
                select(
                    func.coalesce(func.sum(Transaction.agreed_price), 0),
                    func.coalesce(func.sum(Transaction.platform_fee), 0),
                ).where(*conditions)
            )
        ).one()

        rows = [
            {
                "id": transaction.id,
                "mc_number": transaction.listing.mc_number,
                "listing_title": transaction.listing.title,
                "buyer_name": transaction.buyer.name,
                "agreed_price": float(transaction.agreed_price),
                "platform_fee": float(transaction.platform_fee or 0),
                "net_earnings": float(transaction.agreed_price) - float(transaction.platform_fee or 0),
                "completed_at": transaction.completed_at,
            }
            for transaction in transactions
        ]
        totals = {"gross": float(gross), "fees": float(fees), "net": float(gross) - float(fees)}
        return rows, total, totals

    async def get_payment_history(self, user: User, *, limit: int = 25) -> list[dict[str, Any]]:
        """Card charges Stripe holds for the user; empty without a customer record."""
        if not user.stripe_customer_id or not self.stripe.enabled:
            return []
        return await self.stripe.list_customer_charges(user.stripe_customer_id, limit=limit)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _count(self, stmt: Any) -> int:
        return int((await self.session.execute(stmt)).scalar_one() or 0)

    async def _activity_counts(self, user_id: uuid.UUID) -> dict[str, int]:
        return {
            "listingsCount": await self._count(
                select(func.count()).select_from(Listing).where(Listing.seller_id == user_id)
            ),
            "sentOffersCount": await self._count(
                select(func.count()).select_from(Offer).where(Offer.buyer_id == user_id)
            ),
            "receivedOffersCount": await self._count(
                select(func.count()).select_from(Offer).where(Offer.seller_id == user_id)
            ),
            "buyerTransactionsCount": await self._count(
                select(func.count()).select_from(Transaction).where(Transaction.buyer_id == user_id)
            ),
            "sellerTransactionsCount": await self._count(
                select(func.count())
                .select_from(Transaction)
                .where(Transaction.seller_id == user_id)
            ),
            "reviewsReceivedCount": await self._count(
                select(func.count()).select_from(Review).where(Review.to_user_id == user_id)
            ),
        }


# ---------------------------------------------------------------------------
# FastAPI dependency factory
# ---------------------------------------------------------------------------


async def get_user_service(session: AsyncSession = Depends(get_db)) -> UserService:
    return UserService(session=session)
