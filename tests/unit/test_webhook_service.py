"""Unit tests for Stripe webhook dispatch in StripeWebhookService.

The delegated services are patched where the webhook module looks them up,
so these tests only assert the routing and argument mapping.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterator
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from mc_exchange.core.models.notifications import Notification
from mc_exchange.core.webhook_service import StripeWebhookService
from tests.factories import build_user
from tests.helpers import added_objects, query_result

_MODULE = "mc_exchange.core.webhook_service"


def _event(event_type: str, obj: dict) -> dict:
    return {"id": f"evt_{uuid.uuid4().hex[:12]}", "type": event_type, "data": {"object": obj}}


@pytest.fixture
def service(mock_session, admin_alerts) -> StripeWebhookService:
    return StripeWebhookService(mock_session, stripe_gateway=MagicMock(), alerts=admin_alerts)


@pytest.fixture
def transaction_service() -> Iterator[MagicMock]:
    with patch(f"{_MODULE}.TransactionService") as cls:
        cls.return_value.complete_card_payment = AsyncMock(return_value=True)
        cls.return_value.fail_card_payment = AsyncMock(return_value=True)
        yield cls.return_value


@pytest.fixture
def credit_service() -> Iterator[MagicMock]:
    with patch(f"{_MODULE}.CreditService") as cls:
        cls.return_value.handle_credit_purchase_success = AsyncMock(return_value=True)
        cls.return_value.handle_subscription_payment_success = AsyncMock()
        cls.return_value.handle_subscription_updated = AsyncMock()
        cls.return_value.handle_invoice_paid = AsyncMock(return_value=True)
        cls.return_value.mark_subscription_past_due = AsyncMock(return_value=True)
        yield cls.return_value


@pytest.fixture
def listing_service() -> Iterator[MagicMock]:
    with patch(f"{_MODULE}.ListingService") as cls:
        cls.return_value.mark_listing_fee_paid = AsyncMock()
        yield cls.return_value


@pytest.fixture
def consultation_service() -> Iterator[MagicMock]:
    with patch(f"{_MODULE}.ConsultationService") as cls:
        cls.return_value.handle_payment_success = AsyncMock()
        yield cls.return_value


class TestDispatch:
    async def test_unknown_event_type_is_not_handled(self, service, mock_session) -> None:
        handled = await service.handle_event(_event("customer.created", {"id": "cus_1"}))

        assert handled is False
        mock_session.commit.assert_not_awaited()

    async def test_unpaid_checkout_is_ignored(self, service, transaction_service) -> None:
        obj = {"id": "cs_1", "payment_status": "unpaid", "metadata": {"type": "deposit"}}

        assert await service.handle_event(_event("checkout.session.completed", obj)) is True
        transaction_service.complete_card_payment.assert_not_awaited()


class TestCheckoutCompleted:
    async def test_deposit_checkout_completes_payment(self, service, transaction_service) -> None:
        payment_id = uuid.uuid4()
        obj = {
            "id": "cs_1",
            "payment_status": "paid",
            "payment_intent": {"id": "pi_123", "object": "payment_intent"},
            "metadata": {"type": "deposit", "paymentId": str(payment_id)},
        }

        await service.handle_event(_event("checkout.session.completed", obj))

        transaction_service.complete_card_payment.assert_awaited_once_with(
            payment_id, stripe_payment_id="pi_123"
        )

    async def test_malformed_payment_id_is_skipped(self, service, transaction_service) -> None:
        obj = {
            "id": "cs_1",
            "payment_status": "paid",
            "metadata": {"type": "final_payment", "paymentId": "not-a-uuid"},
        }

        await service.handle_event(_event("checkout.session.completed", obj))

        transaction_service.complete_card_payment.assert_not_awaited()

    async def test_listing_fee_checkout_marks_listing_paid(self, service, listing_service) -> None:
        listing_id, seller_id = uuid.uuid4(), uuid.uuid4()
        obj = {
            "id": "cs_2",
            "payment_status": "paid",
            "payment_intent": "pi_fee",
            "amount_total": 4999,
            "metadata": {
                "type": "listing_fee",
                "listingId": str(listing_id),
                "sellerId": str(seller_id),
            },
        }

        await service.handle_event(_event("checkout.session.completed", obj))

        listing_service.mark_listing_fee_paid.assert_awaited_once_with(
            listing_id, seller_id, amount=49.99, stripe_payment_id="pi_fee"
        )

    async def test_consultation_checkout(self, service, consultation_service) -> None:
        obj = {
            "id": "cs_3",
            "payment_status": "paid",
            "payment_intent": "pi_c",
            "metadata": {"type": "consultation"},
        }

        await service.handle_event(_event("checkout.session.completed", obj))

        consultation_service.handle_payment_success.assert_awaited_once_with("cs_3", "pi_c")

    async def test_subscription_checkout_activates_plan(self, service, credit_service) -> None:
        metadata = {"type": "subscription", "userId": str(uuid.uuid4()), "plan": "STARTER"}
        obj = {
            "id": "cs_4",
            "payment_status": "paid",
            "subscription": "sub_42",
            "metadata": metadata,
        }

        await service.handle_event(_event("checkout.session.completed", obj))

        credit_service.handle_subscription_payment_success.assert_awaited_once_with(
            "sub_42", metadata, payment_reference="cs_4"
        )


class TestPaymentIntents:
    async def test_credit_purchase_intent(self, service, credit_service) -> None:
        metadata = {"type": "credit_purchase", "userId": str(uuid.uuid4()), "creditAmount": "5"}

        await service.handle_event(
            _event("payment_intent.succeeded", {"id": "pi_9", "metadata": metadata})
        )

        credit_service.handle_credit_purchase_success.assert_awaited_once_with("pi_9", metadata)

    async def test_one_off_subscription_intent_is_keyed_by_intent(self, service, credit_service) -> None:
        metadata = {"type": "subscription", "userId": str(uuid.uuid4()), "plan": "STARTER"}

        await service.handle_event(
            _event("payment_intent.succeeded", {"id": "pi_sub", "metadata": metadata})
        )

        credit_service.handle_subscription_payment_success.assert_awaited_once_with(
            None, metadata, payment_reference="pi_sub"
        )

    async def test_checkout_created_intent_is_ignored(self, service, credit_service) -> None:
        await service.handle_event(
            _event("payment_intent.succeeded", {"id": "pi_10", "metadata": {"type": "deposit"}})
        )

        credit_service.handle_credit_purchase_success.assert_not_awaited()
        credit_service.handle_subscription_payment_success.assert_not_awaited()

    async def test_failed_intent_fails_payment_and_notifies_user(
        self, service, mock_session, transaction_service
    ) -> None:
        user = build_user()
        payment_id = uuid.uuid4()
        mock_session.get.return_value = user
        obj = {
            "id": "pi_11",
            "metadata": {"paymentId": str(payment_id), "userId": str(user.id)},
            "last_payment_error": {"code": "card_declined", "message": "Your card was declined."},
        }

        await service.handle_event(_event("payment_intent.payment_failed", obj))

        transaction_service.fail_card_payment.assert_awaited_once_with(
            payment_id, "Your card was declined."
        )
        [notification] = added_objects(mock_session, Notification)
        assert notification.user_id == user.id
        assert notification.type == "PAYMENT"


class TestSubscriptionEvents:
    async def test_updated_subscription_syncs_status_and_period(
        self, service, credit_service
    ) -> None:
        obj = {"id": "sub_1", "status": "active", "current_period_end": 1735689600}

        await service.handle_event(_event("customer.subscription.updated", obj))

        credit_service.handle_subscription_updated.assert_awaited_once_with(
            "sub_1", "active", datetime(2025, 1, 1, tzinfo=UTC)
        )

    async def test_deleted_subscription_notifies_owner(
        self, service, mock_session, credit_service
    ) -> None:
        owner_id = uuid.uuid4()
        credit_service.handle_subscription_updated.return_value = MagicMock(user_id=owner_id)

        await service.handle_event(_event("customer.subscription.deleted", {"id": "sub_2"}))

        credit_service.handle_subscription_updated.assert_awaited_once_with("sub_2", "canceled")
        [notification] = added_objects(mock_session, Notification)
        assert notification.user_id == owner_id

    async def test_only_renewal_invoices_grant_credits(self, service, credit_service) -> None:
        await service.handle_event(
            _event("invoice.paid", {"subscription": "sub_3", "billing_reason": "subscription_create"})
        )
        credit_service.handle_invoice_paid.assert_not_awaited()

        invoice = {
            "subscription": "sub_3",
            "billing_reason": "subscription_cycle",
            "lines": {"data": [{"period": {"end": 1735689600}}]},
        }
        await service.handle_event(_event("invoice.paid", invoice))
        credit_service.handle_invoice_paid.assert_awaited_once_with(
            "sub_3", datetime(2025, 1, 1, tzinfo=UTC)
        )

    async def test_failed_invoice_marks_past_due(self, service, mock_session, credit_service) -> None:
        owner_id = uuid.uuid4()
        mock_session.execute.return_value = query_result(owner_id)

        await service.handle_event(_event("invoice.payment_failed", {"subscription": "sub_4"}))

        credit_service.mark_subscription_past_due.assert_awaited_once_with("sub_4")
        [notification] = added_objects(mock_session, Notification)
        assert notification.user_id == owner_id


class TestCharges:
    async def test_refund_marks_payments_refunded(self, service, mock_session) -> None:
        mock_session.execute.return_value = query_result(rowcount=1)

        await service.handle_event(
            _event("charge.refunded", {"payment_intent": "pi_5", "amount_refunded": 2499})
        )

        mock_session.execute.assert_awaited_once()
        mock_session.commit.assert_awaited_once()

    async def test_dispute_notifies_every_active_admin(self, service, mock_session) -> None:
        admin_ids = [uuid.uuid4(), uuid.uuid4()]
        mock_session.execute.return_value = query_result(scalars=admin_ids)

        await service.handle_event(
            _event("charge.dispute.created", {"id": "dp_1", "amount": 220000, "reason": "fraudulent"})
        )

        notifications = added_objects(mock_session, Notification)
        assert [n.user_id for n in notifications] == admin_ids
        assert "$2,200.00" in notifications[0].message

    async def test_dispute_emails_the_admin_inbox(self, service, mock_session, admin_alerts) -> None:
        mock_session.execute.return_value = query_result(scalars=[])

        await service.handle_event(
            _event(
                "charge.dispute.created",
                {
                    "id": "dp_2",
                    "amount": 5000,
                    "reason": "product_not_received",
                    "evidence": {"customer_name": "Cal Holder", "customer_email_address": "cal@example.com"},
                },
            )
        )

        admin_alerts.dispute.assert_awaited_once_with(
            kind="Card Dispute",
            user_name="Cal Holder",
            user_email="cal@example.com",
            reason="$50.00 disputed: product_not_received",
            reference="dp_2",
        )
