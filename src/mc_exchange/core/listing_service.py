"""Listing browse, detail, seller CRUD, bookmarks and credit unlocks.

Browse only returns ACTIVE + PUBLIC listings unless an explicit status filter
is passed.  The detail view masks the seller's email and phone unless the
viewer owns the listing or has unlocked it with a credit.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any, Optional

import structlog
from fastapi import Depends
from sqlalchemy import Select, delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from mc_exchange.config.pricing import LISTING_UNLOCK_COST
from mc_exchange.config.settings import get_settings
from mc_exchange.core.cache_service import CacheService, get_cache
from mc_exchange.core.database import get_db
from mc_exchange.core.exceptions import BadRequestError, ForbiddenError, NotFoundError
from mc_exchange.core.integrations.stripe_gateway import (
    StripeGateway,
    dollars_to_cents,
    get_stripe_gateway,
)
from mc_exchange.core.models.credits import CreditTransaction
from mc_exchange.core.models.enums import (
    CreditTransactionType,
    DocumentStatus,
    ListingStatus,
    ListingVisibility,
    NotificationType,
    PaymentStatus,
    PaymentType,
    PremiumRequestStatus,
)
from mc_exchange.core.models.listings import (
    Listing,
    PremiumRequest,
    SavedListing,
    UnlockedListing,
)
from mc_exchange.core.models.transactions import Payment
from mc_exchange.core.models.users import User
from mc_exchange.core.notification_service import NotificationService
from mc_exchange.core.pricing_service import PricingService
from mc_exchange.core.schemas.listings import ListingCreate, ListingFilters, ListingUpdate

logger = structlog.get_logger(__name__)

_LOCKED_STATUSES = (ListingStatus.SOLD, ListingStatus.RESERVED)
_OPEN_PREMIUM_STATUSES = (
    PremiumRequestStatus.PENDING,
    PremiumRequestStatus.CONTACTED,
    PremiumRequestStatus.IN_PROGRESS,
)

_SORT_ORDERS: dict[str, Any] = {
    "newest": Listing.created_at.desc(),
    "oldest": Listing.created_at.asc(),
    "price_asc": Listing.price.asc(),
    "price_desc": Listing.price.desc(),
    "years_active": Listing.years_active.desc(),
}


def seller_summary(seller: User, *, reveal_contact: bool) -> dict[str, Any]:
    """Seller block for a listing detail; contact fields only when revealed."""
    return {
        "id": seller.id,
        "name": seller.name,
        "email": seller.email if reveal_contact else None,
        "phone": seller.phone if reveal_contact else None,
        "verified": seller.verified,
        "trust_score": seller.trust_score,
        "avatar": seller.avatar,
        "member_since": seller.member_since,
        "company_name": seller.company_name,
    }


def build_browse_query(filters: ListingFilters) -> Select:
    """Translate browse filters into a ``SELECT`` over listings.

    Returns the unordered, unpaginated statement so that callers can derive
    both the count and the page from it.
    """
    stmt = select(Listing).where(
        Listing.status == (filters.status or ListingStatus.ACTIVE),
        Listing.visibility == ListingVisibility.PUBLIC,
    )
    if filters.search:
        pattern = f"%{filters.search}%"
        stmt = stmt.where(
            or_(
                Listing.mc_number.ilike(pattern),
                Listing.dot_number.ilike(pattern),
                Listing.title.ilike(pattern),
                Listing.legal_name.ilike(pattern),
                Listing.dba_name.ilike(pattern),
                Listing.state.ilike(pattern),
                Listing.city.ilike(pattern),
            )
        )
    if filters.min_price is not None:
        stmt = stmt.where(Listing.price >= filters.min_price)
    if filters.max_price is not None:
        stmt = stmt.where(Listing.price <= filters.max_price)
    if filters.state:
        stmt = stmt.where(Listing.state == filters.state.upper())
    if filters.safety_rating:
        stmt = stmt.where(Listing.safety_rating == filters.safety_rating.upper())
    if filters.amazon_status:
        stmt = stmt.where(Listing.amazon_status == filters.amazon_status.upper())
    if filters.premium is not None:
        stmt = stmt.where(Listing.is_premium.is_(filters.premium))
    if filters.highway_setup is not None:
        stmt = stmt.where(Listing.highway_setup.is_(filters.highway_setup))
    if filters.has_email is not None:
        stmt = stmt.where(Listing.selling_with_email.is_(filters.has_email))
    if filters.has_phone is not None:
        stmt = stmt.where(Listing.selling_with_phone.is_(filters.has_phone))
    if filters.min_years is not None:
        stmt = stmt.where(Listing.years_active >= filters.min_years)
    if filters.seller_id is not None:
        stmt = stmt.where(Listing.seller_id == filters.seller_id)
    if filters.verified is not None:
        stmt = stmt.join(User, Listing.seller_id == User.id).where(
            User.verified.is_(filters.verified)
        )
    return stmt


class ListingService:
    """Marketplace listing operations.

    Args:
        session: Open async session.
        cache: Redis cache used for listing detail invalidation.
        stripe_gateway: Gateway for listing-fee checkouts.
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

    # ------------------------------------------------------------------
    # Browse & detail
    # ------------------------------------------------------------------

    async def browse(self, filters: ListingFilters) -> tuple[list[Listing], int]:
        stmt = build_browse_query(filters)
        total = (
            await self.session.execute(select(func.count()).select_from(stmt.subquery()))
        ).scalar_one()
        rows = (
            await self.session.execute(
                stmt.options(selectinload(Listing.seller))
                .order_by(_SORT_ORDERS[filters.sort_by], Listing.id)
                .offset((filters.page - 1) * filters.limit)
                .limit(filters.limit)
            )
        ).scalars().all()
        return list(rows), int(total)

    async def get_listing(self, listing_id: uuid.UUID) -> Listing:
        listing = await self.session.get(Listing, listing_id)
        if listing is None:
            raise NotFoundError("Listing")
        return listing

    async def get_detail(
        self,
        listing_id: uuid.UUID,
        viewer_id: Optional[uuid.UUID] = None,
    ) -> dict[str, Any]:
        """Return the listing detail for *viewer_id* and count the view.

        The returned dict matches ``ListingDetail``: listing columns plus
        ``seller`` (masked), ``documents`` (verified only), ``is_unlocked``,
        ``is_saved`` and ``is_owner``.
        """
        result = await self.session.execute(
            select(Listing)
            .where(Listing.id == listing_id)
            .options(selectinload(Listing.seller), selectinload(Listing.documents))
        )
        listing = result.scalar_one_or_none()
        if listing is None:
            raise NotFoundError("Listing")

        listing.views += 1
        await self.session.commit()

        is_unlocked = is_saved = False
        if viewer_id is not None:
            is_unlocked = await self._exists(UnlockedListing, viewer_id, listing_id)
            is_saved = await self._exists(SavedListing, viewer_id, listing_id)
        is_owner = viewer_id is not None and viewer_id == listing.seller_id

        detail = {
            column.key: getattr(listing, column.key) for column in Listing.__mapper__.column_attrs
        }
        detail.update(
            seller=seller_summary(listing.seller, reveal_contact=is_unlocked or is_owner),
            documents=[
                {"id": doc.id, "type": doc.type, "name": doc.name, "status": doc.status}
                for doc in listing.documents
                if doc.status == DocumentStatus.VERIFIED
            ],
            is_unlocked=is_unlocked,
            is_saved=is_saved,
            is_owner=is_owner,
        )
        if not (is_unlocked or is_owner):
            detail["contact_email"] = None
            detail["contact_phone"] = None
        return detail

    # ------------------------------------------------------------------
    # Seller operations
    # ------------------------------------------------------------------

    async def create_listing(self, seller_id: uuid.UUID, data: ListingCreate) -> Listing:
        listing = Listing(
            seller_id=seller_id,
            status=ListingStatus.DRAFT.value,
            **data.model_dump(exclude_none=True, mode="json"),
        )
        self.session.add(listing)
        await self.session.commit()
        await self.session.refresh(listing)
        logger.info(
            "listing_created",
            listing_id=str(listing.id),
            seller_id=str(seller_id),
            mc_number=listing.mc_number,
        )
        return listing

    async def update_listing(
        self,
        listing_id: uuid.UUID,
        user_id: uuid.UUID,
        data: ListingUpdate,
    ) -> Listing:
        """Apply a partial update to the caller's own listing.

        Raises:
            NotFoundError: Unknown listing.
            ForbiddenError: Not the owner, or the listing is SOLD/RESERVED.
        """
        listing = await self.get_listing(listing_id)
        if listing.seller_id != user_id:
            raise ForbiddenError("You can only update your own listings")
        if listing.status in _LOCKED_STATUSES:
            raise ForbiddenError("Cannot update sold or reserved listings")
        for field, value in data.model_dump(exclude_unset=True, mode="json").items():
            if value is not None or field == "description":
                setattr(listing, field, value)
        await self.session.commit()
        await self.session.refresh(listing)
        await self.cache.invalidate_listing(str(listing_id))
        return listing

    async def submit_for_review(self, listing_id: uuid.UUID, user_id: uuid.UUID) -> Listing:
        listing = await self.get_listing(listing_id)
        if listing.seller_id != user_id:
            raise ForbiddenError("You can only submit your own listings")
        if listing.status not in (ListingStatus.DRAFT, ListingStatus.REJECTED):
            raise ForbiddenError("Only draft or rejected listings can be submitted for review")
        listing.status = ListingStatus.PENDING_REVIEW.value
        listing.rejection_reason = None
        await self.session.commit()
        logger.info("listing_submitted", listing_id=str(listing_id))
        return listing

    async def delete_listing(self, listing_id: uuid.UUID, user_id: uuid.UUID) -> None:
        listing = await self.get_listing(listing_id)
        if listing.seller_id != user_id:
            raise ForbiddenError("You can only delete your own listings")
        if listing.status in _LOCKED_STATUSES:
            raise ForbiddenError("Cannot delete sold or reserved listings")
        await self.session.delete(listing)
        await self.session.commit()
        await self.cache.invalidate_listing(str(listing_id))
        logger.info("listing_deleted", listing_id=str(listing_id), seller_id=str(user_id))

    # ------------------------------------------------------------------
    # Listing fee
    # ------------------------------------------------------------------

    async def create_listing_fee_checkout(
        self, listing_id: uuid.UUID, seller: User
    ) -> dict[str, Any]:
        """Open a Stripe Checkout for the listing fee of a DRAFT listing.

        Premium listings pay the premium fee.  The ``checkout.session.completed``
        webhook sets ``listing_fee_paid``.
        """
        listing = await self.get_listing(listing_id)
        if listing.seller_id != seller.id:
            raise ForbiddenError("You can only pay fees for your own listings")
        if listing.listing_fee_paid:
            raise BadRequestError("The listing fee has already been paid")
        if listing.status not in (ListingStatus.DRAFT, ListingStatus.REJECTED):
            raise BadRequestError("Listing fees are paid before the listing is submitted")

        fees = await PricingService(self.session).get_platform_fees()
        amount = fees.premium_listing_fee if listing.is_premium else fees.listing_fee
        frontend = get_settings().frontend_url
        checkout = await self.stripe.create_payment_checkout(
            amount_cents=dollars_to_cents(amount),
            product_name="MC Authority Listing Fee",
            description=f"Listing activation fee for MC #{listing.mc_number}",
            success_url=f"{frontend}/seller/listings?fee=paid&session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{frontend}/seller/listings?fee=cancelled",
            metadata={
                "type": "listing_fee",
                "listingId": str(listing.id),
                "sellerId": str(seller.id),
                "mcNumber": listing.mc_number,
            },
            customer_id=seller.stripe_customer_id,
            customer_email=None if seller.stripe_customer_id else seller.email,
        )
        logger.info(
            "listing_fee_checkout_created",
            listing_id=str(listing.id),
            amount=amount,
            session_id=checkout["id"],
        )
        return {"checkout_url": checkout["url"], "session_id": checkout["id"], "amount": amount}

    async def mark_listing_fee_paid(
        self,
        listing_id: uuid.UUID,
        seller_id: uuid.UUID,
        *,
        amount: float,
        stripe_payment_id: Optional[str],
    ) -> bool:
        """Record a paid listing fee; ``False`` if unknown or already paid."""
        listing = (
            await self.session.execute(
                select(Listing)
                .where(Listing.id == listing_id, Listing.seller_id == seller_id)
                .with_for_update()
            )
        ).scalar_one_or_none()
        if listing is None or listing.listing_fee_paid:
            logger.warning("listing_fee_not_applied", listing_id=str(listing_id))
            return False
        listing.listing_fee_paid = True
        self.session.add(
            Payment(
                user_id=seller_id,
                type=PaymentType.LISTING_FEE.value,
                amount=amount,
                status=PaymentStatus.COMPLETED.value,
                method="STRIPE",
                stripe_payment_id=stripe_payment_id,
                description=f"Listing fee for MC #{listing.mc_number}",
                metadata_={"listingId": str(listing.id)},
                completed_at=datetime.now(UTC),
            )
        )
        NotificationService(self.session).add(
            seller_id,
            NotificationType.SYSTEM,
            "Listing Fee Paid",
            f"Your listing fee for MC #{listing.mc_number} has been processed. "
            "You can now submit your listing for review.",
            link="/seller/listings",
        )
        await self.session.commit()
        logger.info("listing_fee_paid", listing_id=str(listing.id), amount=amount)
        return True

    async def get_seller_listings(
        self,
        seller_id: uuid.UUID,
        status: Optional[ListingStatus] = None,
    ) -> list[Listing]:
        stmt = select(Listing).where(Listing.seller_id == seller_id)
        if status is not None:
            stmt = stmt.where(Listing.status == status)
        rows = (await self.session.execute(stmt.order_by(Listing.created_at.desc()))).scalars()
        return list(rows.all())

    # ------------------------------------------------------------------
    # Bookmarks
    # ------------------------------------------------------------------

    async def save_listing(self, listing_id: uuid.UUID, user_id: uuid.UUID) -> None:
        """Bookmark a listing; saving twice is a no-op."""
        listing = await self.get_listing(listing_id)
        if await self._exists(SavedListing, user_id, listing_id):
            return
        self.session.add(SavedListing(user_id=user_id, listing_id=listing_id))
        listing.saves += 1
        await self.session.commit()

    async def unsave_listing(self, listing_id: uuid.UUID, user_id: uuid.UUID) -> None:
        listing = await self.get_listing(listing_id)
        result = await self.session.execute(
            delete(SavedListing).where(
                SavedListing.user_id == user_id,
                SavedListing.listing_id == listing_id,
            )
        )
        if result.rowcount:
            listing.saves = max(0, listing.saves - 1)
        await self.session.commit()

    async def get_saved_listings(
        self,
        user_id: uuid.UUID,
        *,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[Listing], int]:
        return await self._page_through(SavedListing, user_id, offset=offset, limit=limit)

    async def get_unlocked_listings(
        self,
        user_id: uuid.UUID,
        *,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[Listing], int]:
        return await self._page_through(UnlockedListing, user_id, offset=offset, limit=limit)

    # ------------------------------------------------------------------
    # Unlock & premium access
    # ------------------------------------------------------------------

    async def unlock_listing(self, listing_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        """Spend one credit to reveal the seller's contact details.

        The unlock row, the ``used_credits`` increment and the USAGE ledger
        row are written in one database transaction.

        Returns:
            ``True`` when the listing was already unlocked (no charge).

        Raises:
            NotFoundError: Unknown listing or user.
            ForbiddenError: No credit available.
        """
        listing = await self.get_listing(listing_id)
        if await self._exists(UnlockedListing, user_id, listing_id):
            return True

        user = (
            await self.session.execute(select(User).where(User.id == user_id).with_for_update())
        ).scalar_one_or_none()
        if user is None:
            raise NotFoundError("User")
        if user.available_credits < LISTING_UNLOCK_COST:
            raise ForbiddenError("Insufficient credits. Please purchase more credits.")

        self.session.add(
            UnlockedListing(
                user_id=user_id,
                listing_id=listing_id,
                credits_used=LISTING_UNLOCK_COST,
            )
        )
        user.used_credits += LISTING_UNLOCK_COST
        self.session.add(
            CreditTransaction(
                user_id=user_id,
                type=CreditTransactionType.USAGE.value,
                amount=-LISTING_UNLOCK_COST,
                balance=user.available_credits,
                description=f"Unlocked listing MC-{listing.mc_number}",
                reference=str(listing_id),
            )
        )
        await self.session.commit()
        logger.info(
            "listing_unlocked",
            listing_id=str(listing_id),
            user_id=str(user_id),
            balance=user.available_credits,
        )
        return False

    async def create_premium_request(
        self,
        listing_id: uuid.UUID,
        buyer_id: uuid.UUID,
        message: Optional[str] = None,
    ) -> PremiumRequest:
        """Ask the platform to broker access to a premium listing.

        A closed earlier request for the same listing is re-opened rather
        than duplicated.

        Raises:
            BadRequestError: Listing is not premium, already unlocked, or an
                open request exists.
        """
        listing = await self.get_listing(listing_id)
        if not listing.is_premium:
            raise BadRequestError("This listing is not premium. You can unlock it directly.")
        if await self._exists(UnlockedListing, buyer_id, listing_id):
            raise BadRequestError("You already have access to this listing")

        existing = (
            await self.session.execute(
                select(PremiumRequest).where(
                    PremiumRequest.buyer_id == buyer_id,
                    PremiumRequest.listing_id == listing_id,
                )
            )
        ).scalar_one_or_none()
        if existing is not None and existing.status in _OPEN_PREMIUM_STATUSES:
            raise BadRequestError("You already have a pending request for this listing")

        if existing is None:
            existing = PremiumRequest(buyer_id=buyer_id, listing_id=listing_id)
            self.session.add(existing)
        existing.status = PremiumRequestStatus.PENDING.value
        existing.message = message
        existing.admin_notes = None
        existing.contacted_at = None
        existing.contacted_by = None
        await self.session.commit()
        logger.info(
            "premium_request_created",
            buyer_id=str(buyer_id),
            listing_id=str(listing_id),
            request_id=str(existing.id),
        )
        return existing

    async def get_premium_requests(self, buyer_id: uuid.UUID) -> list[PremiumRequest]:
        rows = await self.session.execute(
            select(PremiumRequest)
            .where(PremiumRequest.buyer_id == buyer_id)
            .order_by(PremiumRequest.created_at.desc())
        )
        return list(rows.scalars().all())

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _exists(
        self,
        model: type[SavedListing] | type[UnlockedListing],
        user_id: uuid.UUID,
        listing_id: uuid.UUID,
    ) -> bool:
        result = await self.session.execute(
            select(model.id).where(model.user_id == user_id, model.listing_id == listing_id)
        )
        return result.first() is not None

    async def _page_through(
        self,
        model: type[SavedListing] | type[UnlockedListing],
        user_id: uuid.UUID,
        *,
        offset: int,
        limit: int,
    ) -> tuple[list[Listing], int]:
        total = (
            await self.session.execute(
                select(func.count()).select_from(model).where(model.user_id == user_id)
            )
        ).scalar_one()
        rows = (
            await self.session.execute(
                select(Listing)
                .join(model, model.listing_id == Listing.id)
                .where(model.user_id == user_id)
                .order_by(model.created_at.desc())
                .offset(offset)
                .limit(limit)
            )
        ).scalars().all()
        return list(rows), int(total)


# ---------------------------------------------------------------------------
# FastAPI dependency factory
# ---------------------------------------------------------------------------


async def get_listing_service(session: AsyncSession = Depends(get_db)) -> ListingService:
    return ListingService(session=session)
