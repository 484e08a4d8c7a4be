"""Unit tests for ConsultationService: booking, payment webhook, refunds."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from mc_exchange.core.consultation_service import ConsultationService
from mc_exchange.core.exceptions import BadRequestError, NotFoundError
from mc_exchange.core.models.admin import AdminAction
from mc_exchange.core.models.consultations import Consultation
from mc_exchange.core.models.enums import ConsultationStatus
from mc_exchange.core.schemas.misc import ConsultationCreate
from tests.factories import AdminUserFactory, build_user
from tests.helpers import added_objects, query_result


def _consultation(**overrides) -> Consultation:
    fields = {
        "name": "Casey Carrier",
        "email": "casey@example.com",
        "phone": "555-0100",
        "preferred_date": "2026-11-02",
        "preferred_time": "10:00",
        "message": "",
        "status": ConsultationStatus.PAID.value,
        "amount": 99.0,
        "stripe_session_id": "cs_consult",
        "stripe_payment_intent_id": "pi_consult",
    }
    fields.update(overrides)
    return Consultation(**fields)


@pytest.fixture
def gateway() -> MagicMock:
    stripe = MagicMock()
    stripe.create_payment_checkout = AsyncMock(
        return_value={"id": "cs_new", "url": "https://checkout.stripe.test/cs_new"}
    )
    stripe.create_refund = AsyncMock(return_value="re_1")
    return stripe


@pytest.fixture
def service(mock_session, gateway, admin_alerts) -> ConsultationService:
    return ConsultationService(mock_session, stripe_gateway=gateway, alerts=admin_alerts)


@pytest.fixture
def admin():
    return build_user(AdminUserFactory)


class TestCreateCheckout:
    async def test_books_at_the_configured_fee(self, service, mock_session, gateway) -> None:
        data = ConsultationCreate(
            name="Casey Carrier",
            email="Casey@Example.com",
            phone="555-0100",
            preferred_date="2026-11-02",
            preferred_time="10:00",
        )
        with patch("mc_exchange.core.consultation_service.PricingService") as pricing_cls:
            pricing_cls.return_value.get_consultation_fee = AsyncMock(return_value=149.0)
            result = await service.create_checkout(data)

        [consultation] = added_objects(mock_session, Consultation)
        assert consultation.status == ConsultationStatus.PENDING_PAYMENT
        assert consultation.amount == 149.0
        assert consultation.email == "casey@example.com"
        assert consultation.stripe_session_id == "cs_new"
        assert result == {
            "checkout_url": "https://checkout.stripe.test/cs_new",
            "consultation_id": consultation.id,
        }
        kwargs = gateway.create_payment_checkout.await_args.kwargs
        assert kwargs["amount_cents"] == 14900
        assert kwargs["metadata"] == {
            "type": "consultation",
            "consultationId": str(consultation.id),
        }
        mock_session.commit.assert_awaited_once()


class TestHandlePaymentSuccess:
    async def test_marks_booking_paid(self, service, mock_session, admin_alerts) -> None:
        consultation = _consultation(
            status=ConsultationStatus.PENDING_PAYMENT.value, stripe_payment_intent_id=None
        )
        mock_session.execute.return_value = query_result(consultation)

        assert await service.handle_payment_success("cs_consult", "pi_9") is True

        assert consultation.status == ConsultationStatus.PAID
        assert consultation.stripe_payment_intent_id == "pi_9"
        assert consultation.paid_at is not None
        mock_session.commit.assert_awaited_once()
        admin_alerts.new_consultation.assert_awaited_once_with(consultation)

    async def test_replayed_webhook_is_a_no_op(self, service, mock_session, admin_alerts) -> None:
        consultation = _consultation(status=ConsultationStatus.SCHEDULED.value)
        mock_session.execute.return_value = query_result(consultation)

        assert await service.handle_payment_success("cs_consult", "pi_other") is False

        assert consultation.status == ConsultationStatus.SCHEDULED
        assert consultation.stripe_payment_intent_id == "pi_consult"
        mock_session.commit.assert_not_awaited()
        admin_alerts.new_consultation.assert_not_awaited()

    async def test_unknown_session(self, service, mock_session) -> None:
        mock_session.execute.return_value = query_result(None)

        assert await service.handle_payment_success("cs_missing", "pi_1") is False


class TestAdminActions:
    async def test_scheduling_records_the_contact(self, service, mock_session, admin) -> None:
        consultation = _consultation()
        mock_session.get.return_value = consultation

        await service.update_status(
            consultation.id, admin.id, ConsultationStatus.SCHEDULED, notes="Call booked"
        )

        assert consultation.status == ConsultationStatus.SCHEDULED
        assert consultation.contacted_by == admin.id
        assert consultation.scheduled_at is not None
        assert consultation.admin_notes == "Call booked"

    async def test_refund_goes_through_stripe(
        self, service, mock_session, gateway, admin
    ) -> None:
        consultation = _consultation(admin_notes="VIP")
        mock_session.get.return_value = consultation

        await service.refund(consultation.id, admin.id)

        gateway.create_refund.assert_awaited_once_with(
            "pi_consult", reason="requested_by_customer"
        )
        assert consultation.status == ConsultationStatus.REFUNDED
        assert consultation.admin_notes.startswith("VIP\nRefunded by admin on ")
        [action] = added_objects(mock_session, AdminAction)
        assert action.action == "REFUND_CONSULTATION"
        assert action.metadata_["refundId"] == "re_1"

    async def test_refund_twice(self, service, mock_session, gateway, admin) -> None:
        consultation = _consultation(status=ConsultationStatus.REFUNDED.value)
        mock_session.get.return_value = consultation

        with pytest.raises(BadRequestError, match="already been refunded"):
            await service.refund(consultation.id, admin.id)
        gateway.create_refund.assert_not_awaited()

    async def test_refund_without_payment(self, service, mock_session, gateway, admin) -> None:
        consultation = _consultation(
            status=ConsultationStatus.PENDING_PAYMENT.value, stripe_payment_intent_id=None
        )
        mock_session.get.return_value = consultation

        with pytest.raises(BadRequestError, match="no payment"):
            await service.refund(consultation.id, admin.id)
        gateway.create_refund.assert_not_awaited()

    async def test_unknown_consultation(self, service, mock_session, admin) -> None:
        mock_session.get.return_value = None

        with pytest.raises(NotFoundError):
            await service.refund(admin.id, admin.id)
