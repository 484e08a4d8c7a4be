"""Escrow transaction workflow.

Each public method is one guarded step: it re-reads the transaction row
(``SELECT ... FOR UPDATE``), checks the caller's role and the current status,
applies its update together with a timeline entry and notifications, and
commits once.  There is no central transition table.

Happy path::

    AWAITING_DEPOSIT ──deposit verified──▶ DEPOSIT_RECEIVED
        ──buyer / seller approve──▶ BUYER_APPROVED | SELLER_APPROVED
        ──other party approves──▶ BOTH_APPROVED
        ──admin approves──▶ PAYMENT_PENDING
        ──final payment verified──▶ COMPLETED (listing SOLD)

Any non-terminal transaction may be CANCELLED (the listing returns to
ACTIVE) or DISPUTED (see :mod:`mc_exchange.core.dispute_service`).

Contact details are hidden across the table: the seller does not see the
buyer's email and phone before the deposit is received, and the buyer does
not see the seller's before the final payment is received.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any, Optional

import structlog
from fastapi import Depends
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from mc_exchange.config.settings import get_settings
from mc_exchange.core.admin_alert_service import AdminAlertService
from mc_exchange.core.database import get_db
from mc_exchange.core.email_service import EmailService, get_email_service
from mc_exchange.core.exceptions import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
)
from mc_exchange.core.integrations.stripe_gateway import (
    StripeGateway,
    dollars_to_cents,
    get_stripe_gateway,
)
from mc_exchange.core.models.enums import (
    DisputeStatus,
    ListingStatus,
    NotificationType,
    OfferStatus,
    PaymentMethod,
    PaymentStatus,
    PaymentType,
    TransactionStatus,
    UserRole,
    UserStatus,
)
from mc_exchange.core.models.listings import Listing
from mc_exchange.core.models.offers import Offer
from mc_exchange.core.models.transactions import (
    Dispute,
    Payment,
    Transaction,
    TransactionMessage,
    TransactionTimeline,
)
from mc_exchange.core.models.users import User
from mc_exchange.core.notification_service import NotificationService
from mc_exchange.core.pricing_service import PricingService
from mc_exchange.core.user_service import UserService

logger = structlog.get_logger(__name__)

TERMINAL_STATUSES = (TransactionStatus.COMPLETED, TransactionStatus.CANCELLED)
BUYER_APPROVABLE = (
    TransactionStatus.DEPOSIT_RECEIVED,
    TransactionStatus.IN_REVIEW,
    TransactionStatus.SELLER_APPROVED,
)
SELLER_APPROVABLE = (
    TransactionStatus.DEPOSIT_RECEIVED,
    TransactionStatus.IN_REVIEW,
    TransactionStatus.BUYER_APPROVED,
)
_OPEN_PAYMENT_STATUSES = (PaymentStatus.PENDING, PaymentStatus.PROCESSING)


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def add_timeline_entry(
    session: AsyncSession,
    transaction: Transaction,
    status: TransactionStatus | str,
    title: str,
    description: Optional[str],
    actor_id: Optional[uuid.UUID],
    actor_role: Optional[str],
) -> TransactionTimeline:
    entry = TransactionTimeline(
        transaction_id=transaction.id,
        status=str(status),
        title=title,
        description=description,
        actor_id=actor_id,
        actor_role=actor_role,
    )
    session.add(entry)
    return entry


def notify_parties(
    notifications: NotificationService,
    transaction: Transaction,
    title: str,
    message: str,
    *,
    exclude: Optional[uuid.UUID] = None,
) -> None:
    """Stage a TRANSACTION notification for the buyer and the seller."""
    recipients = [
        user_id
        for user_id in (transaction.buyer_id, transaction.seller_id)
        if user_id != exclude
    ]
    notifications.add_many(
        recipients,
        NotificationType.TRANSACTION,
        title,
        message,
        link=f"/transaction/{transaction.id}",
        metadata={"transactionId": str(transaction.id)},
    )


def party_summary(user: User, *, reveal_contact: bool) -> dict[str, Any]:
    summary: dict[str, Any] = {
        "id": user.id,
        "name": user.name,
        "trust_score": user.trust_score,
        "verified": user.verified,
    }
    if reveal_contact:
        summary.update(email=user.email, phone=user.phone, company_name=user.company_name)
    return summary


def viewer_role(transaction: Transaction, user: User) -> str:
    """Return ``admin``, ``buyer`` or ``seller``; raise when *user* is none of them."""
    if user.role == UserRole.ADMIN:
        return "admin"
    if user.id == transaction.buyer_id:
        return "buyer"
    if user.id == transaction.seller_id:
        return "seller"
    raise ForbiddenError("You do not have access to this transaction")


class TransactionService:
    """Escrow workflow steps.

    Args:
        session: Open async session.
        stripe_gateway: Payments gateway for card deposits and final payments.
        email: Email sender for status updates.
        alerts: Admin inbox alerts for new transactions and disputes.
    """

    def __init__(
        self,
        session: AsyncSession,
        stripe_gateway: Optional[StripeGateway] = None,
        email: Optional[EmailService] = None,
        alerts: Optional[AdminAlertService] = None,
    ) -> None:
        self.session = session
        self.stripe = stripe_gateway or get_stripe_gateway()
        self.email = email or get_email_service()
        self.alerts = alerts or AdminAlertService(session, email=self.email)
        self.notifications = NotificationService(session)

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    async def get(self, transaction_id: uuid.UUID, user: User) -> dict[str, Any]:
        """Return the transaction as seen by *user*.

        Raises:
            NotFoundError: Unknown transaction.
            ForbiddenError: *user* is neither a party nor an admin.
        """
        transaction = await self._load(transaction_id, lock=False)
        role = viewer_role(transaction, user)
        status = transaction.status
        show_seller = role in ("admin", "seller") or status in (
            TransactionStatus.COMPLETED,
            TransactionStatus.PAYMENT_RECEIVED,
        )
        show_buyer = role in ("admin", "buyer") or status != TransactionStatus.AWAITING_DEPOSIT

        payments = (
            await self.session.execute(
                select(Payment)
                .where(Payment.transaction_id == transaction.id)
                .order_by(Payment.created_at.desc())
            )
        ).scalars().all()

        detail = {
            column.key: getattr(transaction, column.key)
            for column in Transaction.__mapper__.column_attrs
        }
        detail.update(
            user_role=role,
            buyer=party_summary(transaction.buyer, reveal_contact=show_buyer),
            seller=party_summary(transaction.seller, reveal_contact=show_seller),
            listing={
                "id": transaction.listing.id,
                "mc_number": transaction.listing.mc_number,
                "dot_number": transaction.listing.dot_number,
                "title": transaction.listing.title,
                "legal_name": transaction.listing.legal_name,
            },
            payments=list(payments),
        )
        return detail

    async def list_for_user(
        self,
        user: User,
        *,
        status: Optional[TransactionStatus] = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[Transaction], int]:
        """Buyers see their purchases, sellers their sales, admins everything."""
        conditions = []
        if user.role == UserRole.BUYER:
            conditions.append(Transaction.buyer_id == user.id)
        elif user.role == UserRole.SELLER:
            conditions.append(Transaction.seller_id == user.id)
        if status is not None:
            conditions.append(Transaction.status == status)

        total = (
            await self.session.execute(
                select(func.count()).select_from(Transaction).where(*conditions)
            )
        ).scalar_one()
        rows = (
            await self.session.execute(
                select(Transaction)
                .where(*conditions)
                .options(selectinload(Transaction.listing))
                .order_by(Transaction.created_at.desc())
                .offset(offset)
                .limit(limit)
            )
        ).scalars().all()
        return list(rows), int(total)

    async def get_messages(self, transaction_id: uuid.UUID, user: User) -> list[TransactionMessage]:
        transaction = await self._load(transaction_id, lock=False)
        viewer_role(transaction, user)
        rows = await self.session.execute(
            select(TransactionMessage)
            .where(TransactionMessage.transaction_id == transaction_id)
            .order_by(TransactionMessage.created_at.asc())
        )
        return list(rows.scalars().all())

    async def get_timeline(
        self, transaction_id: uuid.UUID, user: User
    ) -> list[TransactionTimeline]:
        transaction = await self._load(transaction_id, lock=False)
        viewer_role(transaction, user)
        rows = await self.session.execute(
            select(TransactionTimeline)
            .where(TransactionTimeline.transaction_id == transaction_id)
            .order_by(TransactionTimeline.created_at.asc())
        )
        return list(rows.scalars().all())

    # ------------------------------------------------------------------
    # Terms
    # ------------------------------------------------------------------

    async def buyer_accept_terms(self, transaction_id: uuid.UUID, buyer_id: uuid.UUID) -> Transaction:
        transaction = await self._load_as_party(transaction_id, buyer_id, UserRole.BUYER)
        if transaction.buyer_accepted_terms:
            raise ForbiddenError("Terms already accepted")
        transaction.buyer_accepted_terms = True
        transaction.buyer_accepted_terms_at = datetime.now(UTC)
        add_timeline_entry(
            self.session,
            transaction,
            transaction.status,
            "Buyer Accepted Terms",
            "Buyer has accepted the transaction terms and conditions",
            buyer_id,
            UserRole.BUYER.value,
        )
        await self.session.commit()
        return transaction

    async def seller_accept_terms(
        self, transaction_id: uuid.UUID, seller_id: uuid.UUID
    ) -> Transaction:
        transaction = await self._load_as_party(transaction_id, seller_id, UserRole.SELLER)
        if transaction.seller_accepted_terms:
            raise ForbiddenError("Terms already accepted")
        transaction.seller_accepted_terms = True
        transaction.seller_accepted_terms_at = datetime.now(UTC)
        add_timeline_entry(
            self.session,
            transaction,
            transaction.status,
            "Seller Accepted Terms",
            "Seller has accepted the transaction terms and conditions",
            seller_id,
            UserRole.SELLER.value,
        )
        await self.session.commit()
        return transaction

    # ------------------------------------------------------------------
    # Deposit
    # ------------------------------------------------------------------

    async def record_deposit(
        self,
        transaction_id: uuid.UUID,
        buyer_id: uuid.UUID,
        method: PaymentMethod,
        reference: Optional[str] = None,
    ) -> dict[str, Any]:
        """Record the buyer's deposit payment.

        Card payments open a Stripe Checkout session and are completed by
        the ``checkout.session.completed`` webhook; Zelle, wire and check
        payments wait for an admin to verify them.

        Returns:
            ``{"payment": Payment, "checkout_url": str | None}``.

        Raises:
            ForbiddenError: Caller is not the buyer, or no deposit is due.
            ConflictError: A deposit is already awaiting verification.
        """
        transaction = await self._load(transaction_id)
        if transaction.buyer_id != buyer_id:
            raise ForbiddenError("Only buyer can pay deposit")
        if transaction.status != TransactionStatus.AWAITING_DEPOSIT:
            raise ForbiddenError("Deposit already paid or not required")
        await self._ensure_no_open_payment(transaction, PaymentType.DEPOSIT)

        return await self._record_payment(
            transaction,
            PaymentType.DEPOSIT,
            float(transaction.deposit_amount or 0),
            method,
            reference,
            product_name="MC Authority Deposit",
            description=f"Refundable deposit for MC #{transaction.listing.mc_number} purchase",
            timeline_title="Deposit Submitted",
        )

    async def verify_deposit(
        self,
        transaction_id: uuid.UUID,
        admin_id: uuid.UUID,
        payment_id: uuid.UUID,
    ) -> Transaction:
        """Admin confirms a deposit; the transaction moves to DEPOSIT_RECEIVED."""
        transaction = await self._load(transaction_id)
        payment = await self._payment_for(transaction, payment_id, PaymentType.DEPOSIT)
        if transaction.status != TransactionStatus.AWAITING_DEPOSIT:
            raise ForbiddenError("Deposit already paid or not required")
        self._complete_payment(payment, verified_by=admin_id)
        self._apply_deposit(transaction, payment, admin_id, UserRole.ADMIN.value)
        await self.session.commit()
        logger.info(
            "deposit_verified",
            transaction_id=str(transaction.id),
            payment_id=str(payment.id),
            admin_id=str(admin_id),
        )
        await self._email_parties(
            transaction,
            "Deposit Confirmed",
            "The deposit has been verified. Transaction is now in review.",
        )
        return transaction

    # ------------------------------------------------------------------
    # Approvals
    # ------------------------------------------------------------------

    async def buyer_approve(self, transaction_id: uuid.UUID, buyer_id: uuid.UUID) -> Transaction:
        transaction = await self._load_as_party(transaction_id, buyer_id, UserRole.BUYER)
        if transaction.status not in BUYER_APPROVABLE:
            raise ForbiddenError("Transaction is not ready for buyer approval")
        new_status = (
            TransactionStatus.BOTH_APPROVED
            if transaction.seller_approved
            else TransactionStatus.BUYER_APPROVED
        )
        transaction.buyer_approved = True
        transaction.buyer_approved_at = datetime.now(UTC)
        transaction.status = new_status.value
        add_timeline_entry(
            self.session,
            transaction,
            new_status,
            "Buyer Approved",
            "Buyer has approved the transaction",
            buyer_id,
            UserRole.BUYER.value,
        )
        notify_parties(
            self.notifications,
            transaction,
            "Buyer Approved",
            "The buyer has approved the transaction.",
            exclude=buyer_id,
        )
        await self.session.commit()
        logger.info("buyer_approved", transaction_id=str(transaction.id), status=new_status.value)
        return transaction

    async def seller_approve(self, transaction_id: uuid.UUID, seller_id: uuid.UUID) -> Transaction:
        transaction = await self._load_as_party(transaction_id, seller_id, UserRole.SELLER)
        if transaction.status not in SELLER_APPROVABLE:
            raise ForbiddenError("Transaction is not ready for seller approval")
        new_status = (
            TransactionStatus.BOTH_APPROVED
            if transaction.buyer_approved
            else TransactionStatus.SELLER_APPROVED
        )
        transaction.seller_approved = True
        transaction.seller_approved_at = datetime.now(UTC)
        transaction.status = new_status.value
        add_timeline_entry(
            self.session,
            transaction,
            new_status,
            "Seller Approved",
            "Seller has approved the transaction",
            seller_id,
            UserRole.SELLER.value,
        )
        notify_parties(
            self.notifications,
            transaction,
            "Seller Approved",
            "The seller has approved the transaction.",
            exclude=seller_id,
        )
        await self.session.commit()
        logger.info("seller_approved", transaction_id=str(transaction.id), status=new_status.value)
        return transaction

    async def admin_approve(self, transaction_id: uuid.UUID, admin_id: uuid.UUID) -> Transaction:
        transaction = await self._load(transaction_id)
        if transaction.status != TransactionStatus.BOTH_APPROVED:
            raise ForbiddenError("Both parties must approve before admin review")
        transaction.admin_approved = True
        transaction.admin_approved_at = datetime.now(UTC)
        transaction.admin_id = admin_id
        transaction.final_payment_amount = self._final_amount(transaction)
        transaction.status = TransactionStatus.PAYMENT_PENDING.value
        add_timeline_entry(
            self.session,
            transaction,
            TransactionStatus.PAYMENT_PENDING,
            "Admin Approved - Payment Pending",
            "Admin has approved. Awaiting final payment from buyer.",
            admin_id,
            UserRole.ADMIN.value,
        )
        notify_parties(
            self.notifications,
            transaction,
            "Ready for Final Payment",
            "Transaction approved. Buyer can now submit final payment.",
        )
        await self.session.commit()
        logger.info("admin_approved", transaction_id=str(transaction.id), admin_id=str(admin_id))
        await self._email_parties(
            transaction,
            "Ready for Final Payment",
            "Transaction approved. Buyer can now submit final payment.",
        )
        return transaction

    # ------------------------------------------------------------------
    # Final payment
    # ------------------------------------------------------------------

    async def record_final_payment(
        self,
        transaction_id: uuid.UUID,
        buyer_id: uuid.UUID,
        method: PaymentMethod,
        reference: Optional[str] = None,
    ) -> dict[str, Any]:
        """Record the buyer's final payment (agreed price minus deposit)."""
        transaction = await self._load(transaction_id)
        if transaction.buyer_id != buyer_id:
            raise ForbiddenError("Only buyer can pay")
        if transaction.status != TransactionStatus.PAYMENT_PENDING:
            raise ForbiddenError("Transaction is not ready for final payment")
        await self._ensure_no_open_payment(transaction, PaymentType.FINAL_PAYMENT)

        return await self._record_payment(
            transaction,
            PaymentType.FINAL_PAYMENT,
            self._final_amount(transaction),
            method,
            reference,
            product_name="MC Authority Final Payment",
            description=f"Final payment for MC #{transaction.listing.mc_number}",
            timeline_title="Final Payment Submitted",
        )

    async def verify_final_payment(
        self,
        transaction_id: uuid.UUID,
        admin_id: uuid.UUID,
        payment_id: uuid.UUID,
    ) -> Transaction:
        """Admin confirms the final payment; the sale completes and the listing is SOLD."""
        transaction = await self._load(transaction_id)
        payment = await self._payment_for(transaction, payment_id, PaymentType.FINAL_PAYMENT)
        if transaction.status != TransactionStatus.PAYMENT_PENDING:
            raise ForbiddenError("Transaction is not ready for final payment")
        self._complete_payment(payment, verified_by=admin_id)
        await self._apply_final_payment(transaction, payment, admin_id, UserRole.ADMIN.value)
        await self.session.commit()
        logger.info(
            "transaction_completed",
            transaction_id=str(transaction.id),
            listing_id=str(transaction.listing_id),
            agreed_price=transaction.agreed_price,
        )
        await self._email_parties(
            transaction,
            "Transaction Completed!",
            "Congratulations! The MC authority transfer has been completed.",
        )
        return transaction

    async def complete_card_payment(
        self,
        payment_id: uuid.UUID,
        *,
        stripe_payment_id: Optional[str] = None,
    ) -> bool:
        """Complete a card deposit or final payment confirmed by Stripe.

        Returns ``False`` when the payment is unknown, already completed, or
        its transaction has moved on, so that webhook retries are harmless.
        """
        payment = await self.session.get(Payment, payment_id)
        if payment is None or payment.transaction_id is None:
            logger.warning("card_payment_unknown", payment_id=str(payment_id))
            return False
        if payment.status == PaymentStatus.COMPLETED:
            return False
        transaction = await self._load(payment.transaction_id)

        if payment.type == PaymentType.DEPOSIT:
            if transaction.status != TransactionStatus.AWAITING_DEPOSIT:
                return False
            self._complete_payment(payment, stripe_payment_id=stripe_payment_id)
            self._apply_deposit(transaction, payment, None, "SYSTEM")
            title, message = (
                "Deposit Confirmed",
                "The deposit has been received. Transaction is now in review.",
            )
        elif payment.type == PaymentType.FINAL_PAYMENT:
            if transaction.status != TransactionStatus.PAYMENT_PENDING:
                return False
            self._complete_payment(payment, stripe_payment_id=stripe_payment_id)
            await self._apply_final_payment(transaction, payment, None, "SYSTEM")
            title, message = (
                "Transaction Completed!",
                "Congratulations! The MC authority transfer has been completed.",
            )
        else:
            return False

        await self.session.commit()
        logger.info(
            "card_payment_completed",
            payment_id=str(payment.id),
            transaction_id=str(transaction.id),
            type=payment.type,
        )
        await self._email_parties(transaction, title, message)
        return True

    async def fail_card_payment(self, payment_id: uuid.UUID, reason: str) -> bool:
        payment = await self.session.get(Payment, payment_id)
        if payment is None or payment.status not in _OPEN_PAYMENT_STATUSES:
            return False
        payment.status = PaymentStatus.FAILED.value
        payment.failure_reason = reason
        await self.session.commit()
        logger.warning("card_payment_failed", payment_id=str(payment_id), reason=reason)
        return True

    # ------------------------------------------------------------------
    # Cancellation, disputes & messages
    # ------------------------------------------------------------------

    async def cancel(self, transaction_id: uuid.UUID, user: User, reason: str) -> Transaction:
        """Cancel a non-terminal transaction and put the listing back on sale.

        Open payments are marked FAILED.  Completed deposits are not refunded
        automatically; an admin refunds them from the payments dashboard.
        A party cannot cancel while a dispute is OPEN; an admin cancelling
        closes that dispute in the same database transaction.
        """
        transaction = await self._load(transaction_id)
        is_admin = user.role == UserRole.ADMIN
        if not is_admin and not transaction.is_party(user.id):
            raise ForbiddenError("You cannot cancel this transaction")
        if transaction.status in TERMINAL_STATUSES:
            raise ForbiddenError("This transaction cannot be cancelled")
        dispute = await self._find_open_dispute(transaction)
        if dispute is not None:
            if not is_admin:
                raise ForbiddenError("An open dispute must be resolved by an admin first")
            self._close_dispute(transaction, dispute, user.id, reason)

        now = datetime.now(UTC)
        transaction.status = TransactionStatus.CANCELLED.value
        transaction.cancelled_at = now
        transaction.admin_notes = reason
        if transaction.listing.status == ListingStatus.RESERVED:
            transaction.listing.status = ListingStatus.ACTIVE.value

        open_payments = (
            await self.session.execute(
                select(Payment).where(
                    Payment.transaction_id == transaction.id,
                    Payment.status.in_(_OPEN_PAYMENT_STATUSES),
                )
            )
        ).scalars().all()
        for payment in open_payments:
            payment.status = PaymentStatus.FAILED.value
            payment.failure_reason = "Transaction cancelled"

        role = UserRole.ADMIN if is_admin else self._party_role(transaction, user.id)
        add_timeline_entry(
            self.session,
            transaction,
            TransactionStatus.CANCELLED,
            "Transaction Cancelled",
            reason,
            user.id,
            role.value,
        )
        notify_parties(
            self.notifications,
            transaction,
            "Transaction Cancelled",
            f"The transaction for MC-{transaction.listing.mc_number} was cancelled: {reason}",
            exclude=user.id,
        )
        await self.session.commit()
        logger.info(
            "transaction_cancelled",
            transaction_id=str(transaction.id),
            cancelled_by=str(user.id),
        )
        return transaction

    async def open_dispute(
        self,
        transaction_id: uuid.UUID,
        user_id: uuid.UUID,
        reason: str,
    ) -> Dispute:
        """Open a dispute; the transaction becomes DISPUTED.

        Raises:
            ForbiddenError: Caller is not a party, or the transaction is final.
            ConflictError: A dispute is already OPEN on this transaction.
        """
        transaction = await self._load(transaction_id)
        if not transaction.is_party(user_id):
            raise ForbiddenError("You cannot open a dispute on this transaction")
        if transaction.status in TERMINAL_STATUSES:
            raise ForbiddenError("A dispute cannot be opened on this transaction")
        open_dispute = await self.session.execute(
            select(Dispute.id).where(
                Dispute.transaction_id == transaction.id,
                Dispute.status == DisputeStatus.OPEN,
            )
        )
        if open_dispute.first() is not None:
            raise ConflictError("A dispute is already open for this transaction")

        now = datetime.now(UTC)
        dispute = Dispute(
            transaction_id=transaction.id,
            opened_by=user_id,
            reason=reason,
            previous_status=transaction.status,
            status=DisputeStatus.OPEN.value,
        )
        self.session.add(dispute)
        transaction.status = TransactionStatus.DISPUTED.value
        transaction.dispute_reason = reason
        transaction.dispute_opened_at = now
        transaction.dispute_resolved_at = None
        transaction.dispute_resolution = None

        role = self._party_role(transaction, user_id)
        add_timeline_entry(
            self.session,
            transaction,
            TransactionStatus.DISPUTED,
            "Dispute Opened",
            reason,
            user_id,
            role.value,
        )
        notify_parties(
            self.notifications,
            transaction,
            "Dispute Opened",
            f"A dispute was opened on the transaction for MC-{transaction.listing.mc_number}.",
            exclude=user_id,
        )
        await self.session.commit()
        logger.warning(
            "dispute_opened",
            transaction_id=str(transaction.id),
            dispute_id=str(dispute.id),
            opened_by=str(user_id),
        )
        opener = transaction.buyer if user_id == transaction.buyer_id else transaction.seller
        await self.alerts.dispute(
            kind="Dispute Opened",
            user_name=opener.name,
            user_email=opener.email,
            reason=reason,
            reference=f"Transaction {transaction.id} (MC-{transaction.listing.mc_number})",
        )
        return dispute

    async def send_message(
        self,
        transaction_id: uuid.UUID,
        user: User,
        content: str,
    ) -> TransactionMessage:
        transaction = await self._load(transaction_id, lock=False)
        if not transaction.is_party(user.id) and user.role != UserRole.ADMIN:
            raise ForbiddenError("You cannot send messages in this transaction")

        message = TransactionMessage(
            transaction_id=transaction.id,
            sender_id=user.id,
            sender_role=user.role,
            content=content,
        )
        self.session.add(message)
        notify_parties(
            self.notifications,
            transaction,
            "New Message",
            f"{user.name} sent a message about MC-{transaction.listing.mc_number}.",
            exclude=user.id,
        )
        await self.session.commit()
        return message

    # ------------------------------------------------------------------
    # Admin operations
    # ------------------------------------------------------------------

    async def update_status(
        self,
        transaction_id: uuid.UUID,
        admin_id: uuid.UUID,
        status: TransactionStatus,
        notes: Optional[str] = None,
    ) -> Transaction:
        """Force a status; COMPLETED and CANCELLED also update the listing.

        Any OPEN dispute is closed with *notes* as its resolution unless the
        forced status is DISPUTED itself.
        """
        transaction = await self._load(transaction_id)
        if status != TransactionStatus.DISPUTED:
            dispute = await self._find_open_dispute(transaction)
            if dispute is not None:
                resolution = notes or f"Closed by status update to {status.value}"
                self._close_dispute(transaction, dispute, admin_id, resolution)
        now = datetime.now(UTC)
        transaction.status = status.value
        transaction.admin_notes = notes
        transaction.admin_id = admin_id
        if status == TransactionStatus.COMPLETED:
            transaction.completed_at = now
            transaction.listing.status = ListingStatus.SOLD.value
            transaction.listing.sold_at = now
        elif status == TransactionStatus.CANCELLED:
            transaction.cancelled_at = now
            if transaction.listing.status == ListingStatus.RESERVED:
                transaction.listing.status = ListingStatus.ACTIVE.value
        add_timeline_entry(
            self.session,
            transaction,
            status,
            f"Status Updated to {status.value}",
            notes or "Admin updated transaction status",
            admin_id,
            UserRole.ADMIN.value,
        )
        await self.session.commit()
        logger.info(
            "transaction_status_forced",
            transaction_id=str(transaction.id),
            status=status.value,
            admin_id=str(admin_id),
        )
        return transaction

    async def admin_create_transaction(
        self,
        admin_id: uuid.UUID,
        *,
        listing_id: uuid.UUID,
        buyer_id: uuid.UUID,
        agreed_price: float,
        deposit_amount: Optional[float] = None,
        notes: Optional[str] = None,
    ) -> Transaction:
        """Open a transaction directly, backed by a placeholder ACCEPTED offer."""
        listing = (
            await self.session.execute(
                select(Listing)
                .where(Listing.id == listing_id)
                .options(selectinload(Listing.seller))
                .with_for_update(of=Listing)
            )
        ).scalar_one_or_none()
        if listing is None:
            raise NotFoundError("Listing")
        if listing.status == ListingStatus.SOLD:
            raise BadRequestError("This listing has already been sold")
        if listing.status == ListingStatus.RESERVED:
            raise BadRequestError("This listing is already reserved in another transaction")
        buyer = await self.session.get(User, buyer_id)
        if buyer is None:
            raise NotFoundError("Buyer")
        if listing.seller_id == buyer_id:
            raise BadRequestError("Buyer cannot be the same as seller")

        fees = await PricingService(self.session).get_platform_fees()
        deposit = deposit_amount if deposit_amount else fees.deposit_for(agreed_price)
        now = datetime.now(UTC)

        offer = Offer(
            listing_id=listing.id,
            buyer_id=buyer_id,
            seller_id=listing.seller_id,
            amount=agreed_price,
            message=notes or "Transaction created by admin",
            status=OfferStatus.ACCEPTED.value,
            responded_at=now,
        )
        self.session.add(offer)
        transaction = Transaction(
            offer_id=offer.id,
            listing_id=listing.id,
            buyer_id=buyer_id,
            seller_id=listing.seller_id,
            admin_id=admin_id,
            agreed_price=agreed_price,
            deposit_amount=deposit,
            platform_fee=fees.platform_fee_for(agreed_price),
            final_payment_amount=round(agreed_price - deposit, 2),
            status=TransactionStatus.AWAITING_DEPOSIT.value,
            admin_notes=notes,
        )
        self.session.add(transaction)
        listing.status = ListingStatus.RESERVED.value

        add_timeline_entry(
            self.session,
            transaction,
            TransactionStatus.AWAITING_DEPOSIT,
            "Transaction Created by Admin",
            notes or "Admin initiated this transaction. Awaiting deposit from buyer.",
            admin_id,
            UserRole.ADMIN.value,
        )
        notify_parties(
            self.notifications,
            transaction,
            "New Transaction Created",
            f"Admin has created a transaction for MC-{listing.mc_number}. "
            "Please proceed with the deposit.",
        )
        await self.session.commit()
        logger.info(
            "transaction_created_by_admin",
            transaction_id=str(transaction.id),
            listing_id=str(listing.id),
            buyer_id=str(buyer_id),
            admin_id=str(admin_id),
        )
        await self.alerts.new_transaction(
            transaction, mc_number=listing.mc_number, buyer=buyer, seller=listing.seller
        )
        return transaction

    async def get_available_buyers(self, search: Optional[str] = None) -> list[User]:
        stmt = select(User).where(User.role == UserRole.BUYER, User.status == UserStatus.ACTIVE)
        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(or_(User.name.ilike(pattern), User.email.ilike(pattern)))
        rows = await self.session.execute(stmt.order_by(User.name.asc()).limit(20))
        return list(rows.scalars().all())

    async def get_available_listings(self, search: Optional[str] = None) -> list[Listing]:
        stmt = select(Listing).where(Listing.status == ListingStatus.ACTIVE)
        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(
                or_(
                    Listing.mc_number.ilike(pattern),
                    Listing.legal_name.ilike(pattern),
                    Listing.title.ilike(pattern),
                )
            )
        rows = await self.session.execute(
            stmt.options(selectinload(Listing.seller))
            .order_by(Listing.created_at.desc())
            .limit(20)
        )
        return list(rows.scalars().all())

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _load(self, transaction_id: uuid.UUID, *, lock: bool = True) -> Transaction:
        stmt = (
            select(Transaction)
            .where(Transaction.id == transaction_id)
            .options(
                selectinload(Transaction.listing),
                selectinload(Transaction.buyer),
                selectinload(Transaction.seller),
            )
        )
        if lock:
            stmt = stmt.with_for_update(of=Transaction)
        transaction = (await self.session.execute(stmt)).scalar_one_or_none()
        if transaction is None:
            raise NotFoundError("Transaction")
        return transaction

    async def _load_as_party(
        self,
        transaction_id: uuid.UUID,
        user_id: uuid.UUID,
        role: UserRole,
    ) -> Transaction:
        transaction = await self._load(transaction_id)
        expected = transaction.buyer_id if role == UserRole.BUYER else transaction.seller_id
        if expected != user_id:
            raise ForbiddenError("Not authorized")
        return transaction

    async def _find_open_dispute(self, transaction: Transaction) -> Optional[Dispute]:
        result = await self.session.execute(
            select(Dispute)
            .where(
                Dispute.transaction_id == transaction.id,
                Dispute.status == DisputeStatus.OPEN,
            )
            .with_for_update()
        )
        return result.scalars().first()

    @staticmethod
    def _close_dispute(
        transaction: Transaction, dispute: Dispute, admin_id: uuid.UUID, resolution: str
    ) -> None:
        now = datetime.now(UTC)
        dispute.status = DisputeStatus.CLOSED.value
        dispute.resolution = resolution
        dispute.resolved_at = now
        dispute.resolved_by = admin_id
        transaction.dispute_resolved_at = now
        transaction.dispute_resolution = resolution

    @staticmethod
    def _party_role(transaction: Transaction, user_id: uuid.UUID) -> UserRole:
        return UserRole.BUYER if transaction.buyer_id == user_id else UserRole.SELLER

    @staticmethod
    def _final_amount(transaction: Transaction) -> float:
        return round(float(transaction.agreed_price) - float(transaction.deposit_amount or 0), 2)

    async def _payment_for(
        self,
        transaction: Transaction,
        payment_id: uuid.UUID,
        expected_type: PaymentType,
    ) -> Payment:
        payment = await self.session.get(Payment, payment_id)
        if payment is None or payment.transaction_id != transaction.id:
            raise NotFoundError("Payment")
        if payment.type != expected_type:
            raise BadRequestError(f"Payment is not a {expected_type.value.lower().replace('_', ' ')}")
        if payment.status == PaymentStatus.COMPLETED:
            raise ConflictError("Payment already verified")
        return payment

    async def _ensure_no_open_payment(
        self, transaction: Transaction, payment_type: PaymentType
    ) -> None:
        result = await self.session.execute(
            select(Payment.id).where(
                Payment.transaction_id == transaction.id,
                Payment.type == payment_type,
                Payment.status.in_(_OPEN_PAYMENT_STATUSES),
            )
        )
        if result.first() is not None:
            raise ConflictError("A payment is already awaiting verification")

    async def _record_payment(
        self,
        transaction: Transaction,
        payment_type: PaymentType,
        amount: float,
        method: PaymentMethod,
        reference: Optional[str],
        *,
        product_name: str,
        description: str,
        timeline_title: str,
    ) -> dict[str, Any]:
        payment = Payment(
            transaction_id=transaction.id,
            user_id=transaction.buyer_id,
            type=payment_type.value,
            amount=amount,
            method=method.value,
            reference=reference,
            description=description,
            status=(
                PaymentStatus.PROCESSING.value
                if method == PaymentMethod.STRIPE
                else PaymentStatus.PENDING.value
            ),
        )
        self.session.add(payment)
        checkout_url: Optional[str] = None

        if method == PaymentMethod.STRIPE:
            frontend = get_settings().frontend_url
            session = await self.stripe.create_payment_checkout(
                amount_cents=dollars_to_cents(amount),
                product_name=product_name,
                description=description,
                success_url=f"{frontend}/transaction/{transaction.id}?payment=success",
                cancel_url=f"{frontend}/transaction/{transaction.id}?payment=cancelled",
                metadata={
                    "type": payment_type.value.lower(),
                    "paymentId": str(payment.id),
                    "transactionId": str(transaction.id),
                    "userId": str(transaction.buyer_id),
                },
                customer_id=transaction.buyer.stripe_customer_id,
                customer_email=transaction.buyer.email,
            )
            payment.metadata_ = {"checkoutSessionId": session["id"]}
            checkout_url = session["url"]
        else:
            add_timeline_entry(
                self.session,
                transaction,
                transaction.status,
                timeline_title,
                f"Buyer submitted {method.value} payment. Awaiting admin verification.",
                transaction.buyer_id,
                UserRole.BUYER.value,
            )

        await self.session.commit()
        logger.info(
            "payment_recorded",
            transaction_id=str(transaction.id),
            payment_id=str(payment.id),
            type=payment_type.value,
            method=method.value,
            amount=amount,
        )
        return {"payment": payment, "checkout_url": checkout_url}

    @staticmethod
    def _complete_payment(
        payment: Payment,
        *,
        verified_by: Optional[uuid.UUID] = None,
        stripe_payment_id: Optional[str] = None,
    ) -> None:
        now = datetime.now(UTC)
        payment.status = PaymentStatus.COMPLETED.value
        payment.completed_at = now
        if verified_by is not None:
            payment.verified_by = verified_by
            payment.verified_at = now
        if stripe_payment_id:
            payment.stripe_payment_id = stripe_payment_id
            payment.stripe_intent_id = stripe_payment_id

    def _apply_deposit(
        self,
        transaction: Transaction,
        payment: Payment,
        actor_id: Optional[uuid.UUID],
        actor_role: str,
    ) -> None:
        transaction.status = TransactionStatus.DEPOSIT_RECEIVED.value
        transaction.deposit_paid_at = datetime.now(UTC)
        transaction.deposit_payment_method = payment.method
        transaction.deposit_payment_ref = payment.reference or payment.stripe_payment_id
        if actor_role == UserRole.ADMIN:
            transaction.admin_id = actor_id
        add_timeline_entry(
            self.session,
            transaction,
            TransactionStatus.DEPOSIT_RECEIVED,
            "Deposit Verified",
            "Admin has verified the deposit payment"
            if actor_role == UserRole.ADMIN
            else "Card deposit payment received",
            actor_id,
            actor_role,
        )
        notify_parties(
            self.notifications,
            transaction,
            "Deposit Confirmed",
            "The deposit has been verified. Transaction is now in review.",
        )

    async def _apply_final_payment(
        self,
        transaction: Transaction,
        payment: Payment,
        actor_id: Optional[uuid.UUID],
        actor_role: str,
    ) -> None:
        now = datetime.now(UTC)
        transaction.status = TransactionStatus.COMPLETED.value
        transaction.final_paid_at = now
        transaction.final_payment_method = payment.method
        transaction.final_payment_ref = payment.reference or payment.stripe_payment_id
        transaction.completed_at = now
        transaction.listing.status = ListingStatus.SOLD.value
        transaction.listing.sold_at = now
        add_timeline_entry(
            self.session,
            transaction,
            TransactionStatus.COMPLETED,
            "Transaction Completed",
            "All payments verified. Transaction successfully completed.",
            actor_id,
            actor_role,
        )
        notify_parties(
            self.notifications,
            transaction,
            "Transaction Completed!",
            "Congratulations! The MC authority transfer has been completed.",
        )
        await self.session.flush()
        users = UserService(self.session)
        await users.recalculate_trust_score(transaction.buyer_id, commit=False)
        await users.recalculate_trust_score(transaction.seller_id, commit=False)

    async def _email_parties(self, transaction: Transaction, title: str, message: str) -> None:
        for party in (transaction.buyer, transaction.seller):
            await self.email.send_transaction_update(
                party.email,
                name=party.name,
                mc_number=transaction.listing.mc_number,
                title=title,
                message=message,
                transaction_id=str(transaction.id),
            )


# ---------------------------------------------------------------------------
# FastAPI dependency factory
# ---------------------------------------------------------------------------


async def get_transaction_service(
    session: AsyncSession = Depends(get_db),
) -> TransactionService:
    return TransactionService(session=session)
