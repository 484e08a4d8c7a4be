"""Offers and counter-offers on listings.

Accepting an offer is the only way a marketplace transaction starts: the
offer becomes ACCEPTED, a Transaction is created in AWAITING_DEPOSIT with
the deposit and platform fee computed from the current pricing, the listing
is RESERVED and every other open offer on it is REJECTED, all in a single
commit.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from typing import Optional

import structlog
from fastapi import Depends
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from mc_exchange.config.pricing import OFFER_DEFAULT_EXPIRY_DAYS
from mc_exchange.config.settings import get_settings
from mc_exchange.core.admin_alert_service import AdminAlertService
from mc_exchange.core.database import get_db
from mc_exchange.core.email_service import EmailService, get_email_service
from mc_exchange.core.exceptions import ConflictError, ForbiddenError, NotFoundError
from mc_exchange.core.models.enums import (
    ListingStatus,
    NotificationType,
    OfferStatus,
    TransactionStatus,
    UserRole,
)
from mc_exchange.core.models.listings import Listing
from mc_exchange.core.models.offers import Offer
from mc_exchange.core.models.transactions import Transaction, TransactionTimeline
from mc_exchange.core.models.users import User
from mc_exchange.core.notification_service import NotificationService
from mc_exchange.core.pricing_service import PricingService

logger = structlog.get_logger(__name__)

OPEN_OFFER_STATUSES = (OfferStatus.PENDING, OfferStatus.COUNTERED)


class OfferService:
    """Offer lifecycle operations.

    Args:
        session: Open async session.
        email: Email sender; defaults to the shared instance.
        alerts: Admin inbox alerts; told about every transaction opened here.
    """

    def __init__(
        self,
        session: AsyncSession,
        email: Optional[EmailService] = None,
        alerts: Optional[AdminAlertService] = None,
    ) -> None:
        self.session = session
        self.email = email or get_email_service()
        self.alerts = alerts or AdminAlertService(session, email=self.email)
        self.notifications = NotificationService(session)

    # ------------------------------------------------------------------
    # Create & read
    # ------------------------------------------------------------------

    async def create_offer(
        self,
        buyer: User,
        listing_id: uuid.UUID,
        amount: float,
        message: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> Offer:
        """Place an offer on an ACTIVE listing.

        Raises:
            NotFoundError: Unknown listing.
            ForbiddenError: Listing not ACTIVE, or the buyer owns it.
            ConflictError: The buyer already has an open offer on it.
        """
        result = await self.session.execute(
            select(Listing).where(Listing.id == listing_id).options(selectinload(Listing.seller))
        )
        listing = result.scalar_one_or_none()
        if listing is None:
            raise NotFoundError("Listing")
        if listing.status != ListingStatus.ACTIVE:
            raise ForbiddenError("This listing is not available for offers")
        if listing.seller_id == buyer.id:
            raise ForbiddenError("You cannot make an offer on your own listing")

        existing = await self.session.execute(
            select(Offer.id).where(
                Offer.listing_id == listing_id,
                Offer.buyer_id == buyer.id,
                Offer.status.in_(OPEN_OFFER_STATUSES),
            )
        )
        if existing.first() is not None:
            raise ConflictError("You already have a pending offer on this listing")

        offer = Offer(
            listing_id=listing_id,
            buyer_id=buyer.id,
            seller_id=listing.seller_id,
            amount=amount,
            message=message,
            status=OfferStatus.PENDING.value,
            expires_at=expires_at
            or datetime.now(UTC) + timedelta(days=OFFER_DEFAULT_EXPIRY_DAYS),
        )
        self.session.add(offer)
        self.notifications.add(
            listing.seller_id,
            NotificationType.OFFER,
            "New Offer Received",
            f"You received a ${amount:,.0f} offer on MC-{listing.mc_number}",
            link="/seller/offers",
            metadata={"offerId": str(offer.id), "listingId": str(listing.id)},
        )
        await self.session.commit()
        logger.info(
            "offer_created",
            offer_id=str(offer.id),
            listing_id=str(listing_id),
            buyer_id=str(buyer.id),
            amount=amount,
        )

        await self.email.send_offer_received(
            listing.seller.email,
            seller_name=listing.seller.name,
            buyer_name=buyer.name,
            mc_number=listing.mc_number,
            amount=amount,
            message=message,
        )
        return offer

    async def get_offer(self, offer_id: uuid.UUID, user: User) -> Offer:
        """Return an offer visible to its buyer, its seller or an admin."""
        offer = await self._load(offer_id)
        if user.id not in (offer.buyer_id, offer.seller_id) and user.role != UserRole.ADMIN:
            raise ForbiddenError("You do not have access to this offer")
        return offer

    async def list_buyer_offers(
        self,
        buyer_id: uuid.UUID,
        status: Optional[OfferStatus] = None,
    ) -> list[Offer]:
        return await self._list(Offer.buyer_id == buyer_id, status)

    async def list_seller_offers(
        self,
        seller_id: uuid.UUID,
        status: Optional[OfferStatus] = None,
    ) -> list[Offer]:
        return await self._list(Offer.seller_id == seller_id, status)

    async def list_listing_offers(self, listing_id: uuid.UUID) -> list[Offer]:
        return await self._list(Offer.listing_id == listing_id, None)

    # ------------------------------------------------------------------
    # Seller responses
    # ------------------------------------------------------------------

    async def accept_offer(
        self,
        offer_id: uuid.UUID,
        seller_id: uuid.UUID,
    ) -> tuple[Offer, Transaction]:
        """Accept an open offer and open the escrow transaction.

        The agreed price is the counter amount when one was made, else the
        offer amount.

        Raises:
            ForbiddenError: Not the seller, or the offer is not open.
        """
        offer = await self._load(offer_id, for_update=True)
        if offer.seller_id != seller_id:
            raise ForbiddenError("You can only accept offers on your own listings")
        if offer.status not in OPEN_OFFER_STATUSES:
            raise ForbiddenError("This offer cannot be accepted")
        if offer.listing.status != ListingStatus.ACTIVE:
            raise ForbiddenError("This listing is not available for offers")

        fees = await PricingService(self.session).get_platform_fees()
        agreed_price = float(offer.counter_amount or offer.amount)
        now = datetime.now(UTC)

        offer.status = OfferStatus.ACCEPTED.value
        offer.responded_at = now
        transaction = Transaction(
            offer_id=offer.id,
            listing_id=offer.listing_id,
            buyer_id=offer.buyer_id,
            seller_id=offer.seller_id,
            agreed_price=agreed_price,
            deposit_amount=fees.deposit_for(agreed_price),
            platform_fee=fees.platform_fee_for(agreed_price),
            status=TransactionStatus.AWAITING_DEPOSIT.value,
        )
        self.session.add(transaction)
        offer.listing.status = ListingStatus.RESERVED.value

        await self.session.execute(
            update(Offer)
            .where(
                Offer.listing_id == offer.listing_id,
                Offer.id != offer.id,
                Offer.status.in_(OPEN_OFFER_STATUSES),
            )
            .values(status=OfferStatus.REJECTED.value, responded_at=now)
        )
        self.session.add(
            TransactionTimeline(
                transaction_id=transaction.id,
                status=TransactionStatus.AWAITING_DEPOSIT.value,
                title="Transaction Created",
                description="Offer accepted. Awaiting deposit from buyer.",
                actor_id=seller_id,
                actor_role=UserRole.SELLER.value,
            )
        )
        self.notifications.add(
            offer.buyer_id,
            NotificationType.OFFER,
            "Offer Accepted!",
            f"Your offer on MC-{offer.listing.mc_number} has been accepted. "
            "Please proceed with the deposit.",
            link=f"/transaction/{transaction.id}",
            metadata={"transactionId": str(transaction.id)},
        )
        await self.session.commit()
        logger.info(
            "offer_accepted",
            offer_id=str(offer.id),
            transaction_id=str(transaction.id),
            agreed_price=agreed_price,
        )

        await self.email.send_offer_update(
            offer.buyer.email,
            name=offer.buyer.name,
            mc_number=offer.listing.mc_number,
            status="accepted",
            amount=agreed_price,
            action_url=f"{get_settings().frontend_url}/transaction/{transaction.id}",
        )
        await self.alerts.new_transaction(
            transaction,
            mc_number=offer.listing.mc_number,
            buyer=offer.buyer,
            seller=offer.seller,
        )
        return offer, transaction

    async def reject_offer(self, offer_id: uuid.UUID, seller_id: uuid.UUID) -> Offer:
        offer = await self._load(offer_id)
        if offer.seller_id != seller_id:
            raise ForbiddenError("You can only reject offers on your own listings")
        if offer.status not in OPEN_OFFER_STATUSES:
            raise ForbiddenError("This offer cannot be rejected")

        offer.status = OfferStatus.REJECTED.value
        offer.responded_at = datetime.now(UTC)
        self.notifications.add(
            offer.buyer_id,
            NotificationType.OFFER,
            "Offer Declined",
            f"Your offer on MC-{offer.listing.mc_number} has been declined.",
            link="/buyer/offers",
        )
        await self.session.commit()
        logger.info("offer_rejected", offer_id=str(offer.id))

        await self.email.send_offer_update(
            offer.buyer.email,
            name=offer.buyer.name,
            mc_number=offer.listing.mc_number,
            status="rejected",
            amount=offer.amount,
        )
        return offer

    async def counter_offer(
        self,
        offer_id: uuid.UUID,
        seller_id: uuid.UUID,
        counter_amount: float,
        message: Optional[str] = None,
    ) -> Offer:
        offer = await self._load(offer_id)
        if offer.seller_id != seller_id:
            raise ForbiddenError("You can only counter offers on your own listings")
        if offer.status != OfferStatus.PENDING:
            raise ForbiddenError("This offer cannot be countered")

        offer.status = OfferStatus.COUNTERED.value
        offer.counter_amount = counter_amount
        offer.counter_message = message
        offer.counter_at = datetime.now(UTC)
        self.notifications.add(
            offer.buyer_id,
            NotificationType.OFFER,
            "Counter Offer Received",
            f"The seller has countered your offer on MC-{offer.listing.mc_number} "
            f"with ${counter_amount:,.0f}",
            link="/buyer/offers",
            metadata={"offerId": str(offer.id), "counterAmount": counter_amount},
        )
        await self.session.commit()
        logger.info("offer_countered", offer_id=str(offer.id), counter_amount=counter_amount)

        await self.email.send_offer_update(
            offer.buyer.email,
            name=offer.buyer.name,
            mc_number=offer.listing.mc_number,
            status="countered",
            amount=offer.amount,
            counter_amount=counter_amount,
        )
        return offer

    # ------------------------------------------------------------------
    # Buyer responses
    # ------------------------------------------------------------------

    async def accept_counter_offer(self, offer_id: uuid.UUID, buyer_id: uuid.UUID) -> Offer:
        """Take the seller's counter; the offer returns to PENDING at that amount."""
        offer = await self._load(offer_id)
        if offer.buyer_id != buyer_id:
            raise ForbiddenError("You can only accept counter offers on your own offers")
        if offer.status != OfferStatus.COUNTERED or offer.counter_amount is None:
            raise ForbiddenError("This offer does not have a counter offer")

        offer.amount = offer.counter_amount
        offer.status = OfferStatus.PENDING.value
        offer.responded_at = datetime.now(UTC)
        self.notifications.add(
            offer.seller_id,
            NotificationType.OFFER,
            "Counter Offer Accepted",
            f"The buyer has accepted your counter offer on MC-{offer.listing.mc_number}. "
            "Please confirm to proceed.",
            link="/seller/offers",
        )
        await self.session.commit()
        logger.info("counter_offer_accepted", offer_id=str(offer.id))
        return offer

    async def withdraw_offer(self, offer_id: uuid.UUID, buyer_id: uuid.UUID) -> Offer:
        offer = await self._load(offer_id)
        if offer.buyer_id != buyer_id:
            raise ForbiddenError("You can only withdraw your own offers")
        if offer.status not in OPEN_OFFER_STATUSES:
            raise ForbiddenError("This offer cannot be withdrawn")

        offer.status = OfferStatus.WITHDRAWN.value
        offer.responded_at = datetime.now(UTC)
        await self.session.commit()
        logger.info("offer_withdrawn", offer_id=str(offer.id))
        return offer

    # ------------------------------------------------------------------
    # Scheduled
    # ------------------------------------------------------------------

    async def expire_stale_offers(self, now: Optional[datetime] = None) -> int:
        """Mark open offers whose ``expires_at`` has passed as EXPIRED."""
        now = now or datetime.now(UTC)
        stale = (
            await self.session.execute(
                select(Offer).where(
                    Offer.status.in_(OPEN_OFFER_STATUSES),
                    Offer.expires_at.is_not(None),
                    Offer.expires_at <= now,
                )
            )
        ).scalars().all()
        for offer in stale:
            offer.status = OfferStatus.EXPIRED.value
            offer.responded_at = now
            self.notifications.add(
                offer.buyer_id,
                NotificationType.OFFER,
                "Offer Expired",
                "One of your offers expired without a response.",
                link="/buyer/offers",
                metadata={"offerId": str(offer.id)},
            )
        await self.session.commit()
        if stale:
            logger.info("offers_expired", count=len(stale))
        return len(stale)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _load(self, offer_id: uuid.UUID, *, for_update: bool = False) -> Offer:
        stmt = (
            select(Offer)
            .where(Offer.id == offer_id)
            .options(
                selectinload(Offer.listing),
                selectinload(Offer.buyer),
                selectinload(Offer.seller),
            )
        )
        if for_update:
            stmt = stmt.with_for_update(of=Offer)
        offer = (await self.session.execute(stmt)).scalar_one_or_none()
        if offer is None:
            raise NotFoundError("Offer")
        return offer

    async def _list(self, condition, status: Optional[OfferStatus]) -> list[Offer]:  # noqa: ANN001
        stmt = select(Offer).where(condition).options(selectinload(Offer.listing))
        if status is not None:
            stmt = stmt.where(Offer.status == status)
        rows = await self.session.execute(stmt.order_by(Offer.created_at.desc()))
        return list(rows.scalars().all())


# ---------------------------------------------------------------------------
# FastAPI dependency factory
# ---------------------------------------------------------------------------


async def get_offer_service(session: AsyncSession = Depends(get_db)) -> OfferService:
    return OfferService(session=session)
