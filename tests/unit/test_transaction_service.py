"""Unit tests for the escrow workflow in TransactionService.

Every test runs against a mocked AsyncSession: ``execute`` is primed with
one result per query the step issues, in order.  The first query of each
step is always the locking ``SELECT ... FOR UPDATE`` of the transaction.
"""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from mc_exchange.core.exceptions import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
)
from mc_exchange.core.models.enums import (
    DisputeStatus,
    ListingStatus,
    PaymentMethod,
    PaymentStatus,
    TransactionStatus,
    UserStatus,
)
from mc_exchange.core.models.transactions import Dispute, Payment, TransactionTimeline
from mc_exchange.core.transaction_service import TransactionService, viewer_role
from tests.factories import (
    AdminUserFactory,
    SellerUserFactory,
    build_listing,
    build_payment,
    build_transaction,
    build_user,
)
from tests.helpers import added_objects, query_result


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def buyer():
    return build_user()


@pytest.fixture
def seller():
    return build_user(SellerUserFactory)


@pytest.fixture
def admin():
    return build_user(AdminUserFactory)


@pytest.fixture
def listing(seller):
    return build_listing(seller, status=ListingStatus.RESERVED.value, mc_number="123456")


@pytest.fixture
def transaction(listing, buyer, seller):
    return build_transaction(listing, buyer, seller)


@pytest.fixture
def stripe_gateway() -> MagicMock:
    gateway = MagicMock()
    gateway.create_payment_checkout = AsyncMock(
        return_value={"id": "cs_test_123", "url": "https://checkout.stripe.com/c/cs_test_123"}
    )
    return gateway


@pytest.fixture
def email() -> MagicMock:
    sender = MagicMock()
    sender.send_transaction_update = AsyncMock(return_value=True)
    return sender


@pytest.fixture
def service(mock_session, stripe_gateway, email, admin_alerts) -> TransactionService:
    return TransactionService(
        mock_session, stripe_gateway=stripe_gateway, email=email, alerts=admin_alerts
    )


# ---------------------------------------------------------------------------
# viewer_role()
# ---------------------------------------------------------------------------


class TestViewerRole:
    def test_buyer_seller_and_admin_are_recognised(self, transaction, buyer, seller, admin) -> None:
        assert viewer_role(transaction, buyer) == "buyer"
        assert viewer_role(transaction, seller) == "seller"
        assert viewer_role(transaction, admin) == "admin"

    def test_outsider_is_rejected(self, transaction) -> None:
        with pytest.raises(ForbiddenError):
            viewer_role(transaction, build_user())


# ---------------------------------------------------------------------------
# Terms
# ---------------------------------------------------------------------------


class TestAcceptTerms:
    async def test_buyer_accepts_terms_once(self, service, mock_session, transaction, buyer) -> None:
        mock_session.execute.return_value = query_result(transaction)

        result = await service.buyer_accept_terms(transaction.id, buyer.id)

        assert result.buyer_accepted_terms is True
        assert result.buyer_accepted_terms_at is not None
        assert len(added_objects(mock_session, TransactionTimeline)) == 1
        mock_session.commit.assert_awaited_once()

    async def test_second_acceptance_is_forbidden(
        self, service, mock_session, transaction, buyer
    ) -> None:
        transaction.buyer_accepted_terms = True
        mock_session.execute.return_value = query_result(transaction)

        with pytest.raises(ForbiddenError, match="Terms already accepted"):
            await service.buyer_accept_terms(transaction.id, buyer.id)

    async def test_seller_cannot_accept_buyer_terms(
        self, service, mock_session, transaction, seller
    ) -> None:
        mock_session.execute.return_value = query_result(transaction)

        with pytest.raises(ForbiddenError):
            await service.buyer_accept_terms(transaction.id, seller.id)


# ---------------------------------------------------------------------------
# Deposit
# ---------------------------------------------------------------------------


class TestRecordDeposit:
    async def test_unknown_transaction_raises_not_found(self, service, mock_session) -> None:
        mock_session.execute.return_value = query_result(None)

        with pytest.raises(NotFoundError):
            await service.record_deposit(uuid.uuid4(), uuid.uuid4(), PaymentMethod.ZELLE)

    async def test_only_buyer_can_pay_deposit(
        self, service, mock_session, transaction, seller
    ) -> None:
        mock_session.execute.return_value = query_result(transaction)

        with pytest.raises(ForbiddenError, match="Only buyer can pay deposit"):
            await service.record_deposit(transaction.id, seller.id, PaymentMethod.ZELLE)

    async def test_deposit_not_due_after_it_was_received(
        self, service, mock_session, transaction, buyer
    ) -> None:
        transaction.status = TransactionStatus.DEPOSIT_RECEIVED.value
        mock_session.execute.return_value = query_result(transaction)

        with pytest.raises(ForbiddenError, match="Deposit already paid or not required"):
            await service.record_deposit(transaction.id, buyer.id, PaymentMethod.WIRE)

    async def test_pending_deposit_blocks_a_second_one(
        self, service, mock_session, transaction, buyer
    ) -> None:
        mock_session.execute.side_effect = [
            query_result(transaction),
            query_result(rows=[(uuid.uuid4(),)]),
        ]

        with pytest.raises(ConflictError):
            await service.record_deposit(transaction.id, buyer.id, PaymentMethod.ZELLE)

    async def test_manual_deposit_waits_for_verification(
        self, service, mock_session, stripe_gateway, transaction, buyer
    ) -> None:
        mock_session.execute.side_effect = [query_result(transaction), query_result()]

        result = await service.record_deposit(
            transaction.id, buyer.id, PaymentMethod.ZELLE, reference="ZL-1"
        )

        payment = result["payment"]
        assert result["checkout_url"] is None
        assert payment.status == PaymentStatus.PENDING
        assert payment.amount == 2200.0
        assert payment.reference == "ZL-1"
        assert len(added_objects(mock_session, TransactionTimeline)) == 1
        stripe_gateway.create_payment_checkout.assert_not_awaited()
        # Status only moves once an admin verifies the payment.
        assert transaction.status == TransactionStatus.AWAITING_DEPOSIT

    async def test_card_deposit_opens_checkout_session(
        self, service, mock_session, stripe_gateway, transaction, buyer
    ) -> None:
        mock_session.execute.side_effect = [query_result(transaction), query_result()]

        result = await service.record_deposit(transaction.id, buyer.id, PaymentMethod.STRIPE)

        payment = result["payment"]
        assert payment.status == PaymentStatus.PROCESSING
        assert payment.metadata_ == {"checkoutSessionId": "cs_test_123"}
        assert result["checkout_url"].startswith("https://checkout.stripe.com/")
        kwargs = stripe_gateway.create_payment_checkout.await_args.kwargs
        assert kwargs["amount_cents"] == 220000
        assert kwargs["metadata"]["type"] == "deposit"
        assert kwargs["metadata"]["paymentId"] == str(payment.id)


class TestVerifyDeposit:
    async def test_verified_deposit_moves_to_deposit_received(
        self, service, mock_session, email, transaction, admin
    ) -> None:
        payment = build_payment(transaction_id=transaction.id, user_id=transaction.buyer_id)
        mock_session.execute.return_value = query_result(transaction)
        mock_session.get.return_value = payment

        result = await service.verify_deposit(transaction.id, admin.id, payment.id)

        assert result.status == TransactionStatus.DEPOSIT_RECEIVED
        assert result.deposit_payment_method == "ZELLE"
        assert result.admin_id == admin.id
        assert payment.status == PaymentStatus.COMPLETED
        assert payment.verified_by == admin.id
        assert email.send_transaction_update.await_count == 2

    async def test_payment_of_another_transaction_is_not_found(
        self, service, mock_session, transaction, admin
    ) -> None:
        payment = build_payment(transaction_id=uuid.uuid4())
        mock_session.execute.return_value = query_result(transaction)
        mock_session.get.return_value = payment

        with pytest.raises(NotFoundError):
            await service.verify_deposit(transaction.id, admin.id, payment.id)

    async def test_final_payment_cannot_verify_deposit(
        self, service, mock_session, transaction, admin
    ) -> None:
        payment = build_payment(transaction_id=transaction.id, type="FINAL_PAYMENT")
        mock_session.execute.return_value = query_result(transaction)
        mock_session.get.return_value = payment

        with pytest.raises(BadRequestError):
            await service.verify_deposit(transaction.id, admin.id, payment.id)

    async def test_completed_payment_is_a_conflict(
        self, service, mock_session, transaction, admin
    ) -> None:
        payment = build_payment(transaction_id=transaction.id, status="COMPLETED")
        mock_session.execute.return_value = query_result(transaction)
        mock_session.get.return_value = payment

        with pytest.raises(ConflictError, match="Payment already verified"):
            await service.verify_deposit(transaction.id, admin.id, payment.id)


# ---------------------------------------------------------------------------
# Approvals
# ---------------------------------------------------------------------------


class TestApprovals:
    async def test_buyer_first_moves_to_buyer_approved(
        self, service, mock_session, transaction, buyer
    ) -> None:
        transaction.status = TransactionStatus.DEPOSIT_RECEIVED.value
        mock_session.execute.return_value = query_result(transaction)

        result = await service.buyer_approve(transaction.id, buyer.id)

        assert result.status == TransactionStatus.BUYER_APPROVED
        assert result.buyer_approved is True

    async def test_second_approval_moves_to_both_approved(
        self, service, mock_session, transaction, buyer
    ) -> None:
        transaction.status = TransactionStatus.SELLER_APPROVED.value
        transaction.seller_approved = True
        mock_session.execute.return_value = query_result(transaction)

        result = await service.buyer_approve(transaction.id, buyer.id)

        assert result.status == TransactionStatus.BOTH_APPROVED

    async def test_seller_after_buyer_moves_to_both_approved(
        self, service, mock_session, transaction, seller
    ) -> None:
        transaction.status = TransactionStatus.BUYER_APPROVED.value
        transaction.buyer_approved = True
        mock_session.execute.return_value = query_result(transaction)

        result = await service.seller_approve(transaction.id, seller.id)

        assert result.status == TransactionStatus.BOTH_APPROVED
        assert result.seller_approved is True

    async def test_approval_before_deposit_is_forbidden(
        self, service, mock_session, transaction, buyer
    ) -> None:
        mock_session.execute.return_value = query_result(transaction)

        with pytest.raises(ForbiddenError, match="not ready for buyer approval"):
            await service.buyer_approve(transaction.id, buyer.id)
        mock_session.commit.assert_not_awaited()

    async def test_admin_approval_sets_final_amount(
        self, service, mock_session, email, transaction, admin
    ) -> None:
        transaction.status = TransactionStatus.BOTH_APPROVED.value
        mock_session.execute.return_value = query_result(transaction)

        result = await service.admin_approve(transaction.id, admin.id)

        assert result.status == TransactionStatus.PAYMENT_PENDING
        assert result.final_payment_amount == 19800.0
        assert result.admin_approved is True
        assert email.send_transaction_update.await_count == 2

    async def test_admin_approval_requires_both_parties(
        self, service, mock_session, transaction, admin
    ) -> None:
        transaction.status = TransactionStatus.BUYER_APPROVED.value
        mock_session.execute.return_value = query_result(transaction)

        with pytest.raises(ForbiddenError, match="Both parties must approve"):
            await service.admin_approve(transaction.id, admin.id)


# ---------------------------------------------------------------------------
# Final payment
# ---------------------------------------------------------------------------


class TestFinalPayment:
    async def test_final_payment_requires_payment_pending(
        self, service, mock_session, transaction, buyer
    ) -> None:
        transaction.status = TransactionStatus.BOTH_APPROVED.value
        mock_session.execute.return_value = query_result(transaction)

        with pytest.raises(ForbiddenError, match="not ready for final payment"):
            await service.record_final_payment(transaction.id, buyer.id, PaymentMethod.WIRE)

    async def test_final_payment_amount_is_price_minus_deposit(
        self, service, mock_session, transaction, buyer
    ) -> None:
        transaction.status = TransactionStatus.PAYMENT_PENDING.value
        mock_session.execute.side_effect = [query_result(transaction), query_result()]

        result = await service.record_final_payment(transaction.id, buyer.id, PaymentMethod.WIRE)

        assert result["payment"].amount == 19800.0
        assert result["payment"].type == "FINAL_PAYMENT"

    async def test_verified_final_payment_completes_sale(
        self, service, mock_session, transaction, listing, admin
    ) -> None:
        transaction.status = TransactionStatus.PAYMENT_PENDING.value
        payment = build_payment(
            transaction_id=transaction.id, type="FINAL_PAYMENT", method="WIRE", amount=19800.0
        )
        mock_session.execute.return_value = query_result(transaction)
        mock_session.get.return_value = payment

        with patch("mc_exchange.core.transaction_service.UserService") as user_service_cls:
            user_service_cls.return_value.recalculate_trust_score = AsyncMock()
            result = await service.verify_final_payment(transaction.id, admin.id, payment.id)

        assert result.status == TransactionStatus.COMPLETED
        assert result.completed_at is not None
        assert listing.status == ListingStatus.SOLD
        assert listing.sold_at is not None
        # Both parties get their trust score refreshed.
        assert user_service_cls.return_value.recalculate_trust_score.await_count == 2


# ---------------------------------------------------------------------------
# Card payments confirmed by webhook
# ---------------------------------------------------------------------------


class TestCardPayments:
    async def test_completed_payment_is_ignored(self, service, mock_session) -> None:
        mock_session.get.return_value = build_payment(
            transaction_id=uuid.uuid4(), status="COMPLETED", method="STRIPE"
        )

        assert await service.complete_card_payment(uuid.uuid4()) is False
        mock_session.commit.assert_not_awaited()

    async def test_unknown_payment_is_ignored(self, service, mock_session) -> None:
        mock_session.get.return_value = None

        assert await service.complete_card_payment(uuid.uuid4()) is False

    async def test_card_deposit_completes(self, service, mock_session, transaction) -> None:
        payment = build_payment(
            transaction_id=transaction.id, status="PROCESSING", method="STRIPE", reference=None
        )
        mock_session.get.return_value = payment
        mock_session.execute.return_value = query_result(transaction)

        assert await service.complete_card_payment(payment.id, stripe_payment_id="pi_1") is True
        assert transaction.status == TransactionStatus.DEPOSIT_RECEIVED
        assert transaction.deposit_payment_ref == "pi_1"
        assert payment.stripe_payment_id == "pi_1"

    async def test_fail_card_payment(self, service, mock_session) -> None:
        payment = build_payment(status="PROCESSING", method="STRIPE")
        mock_session.get.return_value = payment

        assert await service.fail_card_payment(payment.id, "card_declined") is True
        assert payment.status == PaymentStatus.FAILED
        assert payment.failure_reason == "card_declined"


# ---------------------------------------------------------------------------
# Cancellation and disputes
# ---------------------------------------------------------------------------


class TestCancel:
    async def test_cancel_releases_listing_and_fails_open_payments(
        self, service, mock_session, transaction, listing, buyer
    ) -> None:
        open_payment = build_payment(transaction_id=transaction.id)
        mock_session.execute.side_effect = [
            query_result(transaction),
            query_result(),
            query_result(scalars=[open_payment]),
        ]

        result = await service.cancel(transaction.id, buyer, "Changed my mind")

        assert result.status == TransactionStatus.CANCELLED
        assert result.cancelled_at is not None
        assert listing.status == ListingStatus.ACTIVE
        assert open_payment.status == PaymentStatus.FAILED

    async def test_completed_transaction_cannot_be_cancelled(
        self, service, mock_session, transaction, admin
    ) -> None:
        transaction.status = TransactionStatus.COMPLETED.value
        mock_session.execute.return_value = query_result(transaction)

        with pytest.raises(ForbiddenError, match="cannot be cancelled"):
            await service.cancel(transaction.id, admin, "Too late")

    async def test_outsider_cannot_cancel(self, service, mock_session, transaction) -> None:
        mock_session.execute.return_value = query_result(transaction)

        with pytest.raises(ForbiddenError):
            await service.cancel(transaction.id, build_user(), "Not mine")


class TestOpenDispute:
    async def test_dispute_records_previous_status(
        self, service, mock_session, transaction, seller, admin_alerts
    ) -> None:
        transaction.status = TransactionStatus.BUYER_APPROVED.value
        mock_session.execute.side_effect = [query_result(transaction), query_result()]

        dispute = await service.open_dispute(transaction.id, seller.id, "Documents mismatch")

        assert isinstance(dispute, Dispute)
        assert dispute.previous_status == TransactionStatus.BUYER_APPROVED
        assert transaction.status == TransactionStatus.DISPUTED
        assert transaction.dispute_reason == "Documents mismatch"
        assert added_objects(mock_session, Dispute) == [dispute]
        alert = admin_alerts.dispute.await_args.kwargs
        assert alert["kind"] == "Dispute Opened"
        assert alert["user_email"] == seller.email
        assert alert["reason"] == "Documents mismatch"

    async def test_second_open_dispute_is_a_conflict(
        self, service, mock_session, transaction, buyer
    ) -> None:
        transaction.status = TransactionStatus.IN_REVIEW.value
        mock_session.execute.side_effect = [
            query_result(transaction),
            query_result(rows=[(uuid.uuid4(),)]),
        ]

        with pytest.raises(ConflictError):
            await service.open_dispute(transaction.id, buyer.id, "Again")

    async def test_no_payment_rows_are_touched(self, service, mock_session, transaction, buyer) -> None:
        mock_session.execute.side_effect = [query_result(transaction), query_result()]

        await service.open_dispute(transaction.id, buyer.id, "Seller unresponsive")

        assert added_objects(mock_session, Payment) == []


def _open_dispute(transaction, opened_by, previous_status=TransactionStatus.BUYER_APPROVED):
    return Dispute(
        transaction_id=transaction.id,
        opened_by=opened_by.id,
        reason="Documents mismatch",
        status=DisputeStatus.OPEN.value,
        previous_status=previous_status.value,
    )


def _bound_values(statement) -> list:
    values = []
    for value in statement.compile().params.values():
        values.extend(value if isinstance(value, (list, tuple)) else [value])
    return values


class TestCancelWithOpenDispute:
    async def test_party_cannot_cancel_while_dispute_is_open(
        self, service, mock_session, transaction, listing, seller
    ) -> None:
        transaction.status = TransactionStatus.DISPUTED.value
        dispute = _open_dispute(transaction, seller)
        mock_session.execute.side_effect = [query_result(transaction), query_result(dispute)]

        with pytest.raises(ForbiddenError, match="open dispute"):
            await service.cancel(transaction.id, seller, "Walking away")

        assert transaction.status == TransactionStatus.DISPUTED
        assert listing.status == ListingStatus.RESERVED
        assert dispute.status == DisputeStatus.OPEN
        mock_session.commit.assert_not_awaited()

    async def test_admin_cancel_closes_the_dispute(
        self, service, mock_session, transaction, listing, seller, admin
    ) -> None:
        transaction.status = TransactionStatus.DISPUTED.value
        dispute = _open_dispute(transaction, seller)
        mock_session.execute.side_effect = [
            query_result(transaction),
            query_result(dispute),
            query_result(scalars=[]),
        ]

        await service.cancel(transaction.id, admin, "Seller withdrew")

        assert transaction.status == TransactionStatus.CANCELLED
        assert listing.status == ListingStatus.ACTIVE
        assert dispute.status == DisputeStatus.CLOSED
        assert dispute.resolved_by == admin.id
        assert dispute.resolution == "Seller withdrew"
        assert transaction.dispute_resolution == "Seller withdrew"
        mock_session.commit.assert_awaited_once()


class TestUpdateStatus:
    async def test_forced_completion_closes_open_dispute(
        self, service, mock_session, transaction, listing, buyer, admin
    ) -> None:
        transaction.status = TransactionStatus.DISPUTED.value
        dispute = _open_dispute(transaction, buyer)
        mock_session.execute.side_effect = [query_result(transaction), query_result(dispute)]

        await service.update_status(transaction.id, admin.id, TransactionStatus.COMPLETED)

        assert transaction.status == TransactionStatus.COMPLETED
        assert listing.status == ListingStatus.SOLD
        assert dispute.status == DisputeStatus.CLOSED
        assert dispute.resolution == "Closed by status update to COMPLETED"

    async def test_forcing_disputed_leaves_disputes_alone(
        self, service, mock_session, transaction, admin
    ) -> None:
        mock_session.execute.return_value = query_result(transaction)

        await service.update_status(
            transaction.id, admin.id, TransactionStatus.DISPUTED, notes="Escalated by phone"
        )

        assert transaction.status == TransactionStatus.DISPUTED
        assert mock_session.execute.await_count == 1


class TestOpenPaymentGuard:
    async def test_card_checkout_in_progress_blocks_a_second_one(
        self, service, mock_session, stripe_gateway, transaction, buyer
    ) -> None:
        mock_session.execute.side_effect = [
            query_result(transaction),
            query_result(rows=[(uuid.uuid4(),)]),
        ]

        with pytest.raises(ConflictError):
            await service.record_deposit(transaction.id, buyer.id, PaymentMethod.STRIPE)

        stripe_gateway.create_payment_checkout.assert_not_awaited()
        assert added_objects(mock_session, Payment) == []
        guard = mock_session.execute.await_args_list[1].args[0]
        assert PaymentStatus.PROCESSING in _bound_values(guard)
        assert PaymentStatus.PENDING in _bound_values(guard)


class TestAdminPickers:
    async def test_available_buyers_are_active_only(self, service, mock_session) -> None:
        mock_session.execute.return_value = query_result(scalars=[])

        assert await service.get_available_buyers("casey") == []

        statement = mock_session.execute.await_args.args[0]
        assert UserStatus.ACTIVE in _bound_values(statement)

    async def test_available_listings_exclude_pending_review(self, service, mock_session) -> None:
        mock_session.execute.return_value = query_result(scalars=[])

        await service.get_available_listings()

        values = _bound_values(mock_session.execute.await_args.args[0])
        assert ListingStatus.ACTIVE in values
        assert ListingStatus.PENDING_REVIEW not in values
