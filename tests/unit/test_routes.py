"""Route-level tests against the real application with a mocked database.

Services are replaced through ``app.dependency_overrides`` so these tests
only cover routing, authentication, role checks, request parsing and the
response envelope.
"""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from mc_exchange.api.dependencies import get_current_user
from mc_exchange.core.exceptions import BadRequestError, ForbiddenError
from mc_exchange.core.message_service import get_message_service
from mc_exchange.core.models.messages import Message
from mc_exchange.core.offer_service import get_offer_service
from mc_exchange.core.user_service import get_user_service
from mc_exchange.core.webhook_service import get_webhook_service
from tests.factories import (
    AdminUserFactory,
    BlockedUserFactory,
    SellerUserFactory,
    build_listing,
    build_offer,
    build_user,
)

_WEBHOOK_ROUTE = "mc_exchange.api.routes.webhooks"


# ---------------------------------------------------------------------------
# Health and routing
# ---------------------------------------------------------------------------


class TestHealth:
    async def test_liveness(self, client) -> None:
        response = await client.get("/api/health/live")

        assert response.status_code == 200
        assert response.json()["status"] == "alive"

    async def test_unknown_route_envelope(self, client) -> None:
        response = await client.get("/api/does-not-exist")

        assert response.status_code == 404
        body = response.json()
        assert body["success"] is False
        assert body["code"] == "ROUTE_NOT_FOUND"


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


class TestAuth:
    async def test_me_requires_token(self, client) -> None:
        response = await client.get("/api/auth/me")

        assert response.status_code == 401
        assert response.json()["success"] is False

    async def test_me_returns_camel_case_profile(self, client, login_as) -> None:
        user = login_as(build_user(name="Casey Buyer"))

        response = await client.get("/api/auth/me")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["id"] == str(user.id)
        assert data["name"] == "Casey Buyer"
        assert data["role"] == "BUYER"
        assert "hashedPassword" not in data

    async def test_register_rejects_admin_role(self, client) -> None:
        response = await client.post(
            "/api/auth/register",
            json={"email": "x@example.com", "password": "Password1!", "name": "X", "role": "ADMIN"},
        )

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"


# ---------------------------------------------------------------------------
# Offers
# ---------------------------------------------------------------------------


class TestOfferRoutes:
    @pytest.fixture
    def offer_service(self, app):
        service = MagicMock()
        app.dependency_overrides[get_offer_service] = lambda: service
        return service

    async def test_buyer_can_place_offer(self, client, login_as, offer_service) -> None:
        buyer = login_as(build_user())
        listing = build_listing(build_user(SellerUserFactory))
        offer = build_offer(listing, buyer, amount=21000.0)
        offer_service.create_offer = AsyncMock(return_value=offer)

        response = await client.post(
            "/api/offers/",
            json={"listingId": str(listing.id), "amount": 21000, "message": "Cash"},
        )

        assert response.status_code == 201
        body = response.json()
        assert body["message"] == "Offer submitted"
        assert body["data"]["amount"] == 21000.0
        assert body["data"]["listingId"] == str(listing.id)
        args = offer_service.create_offer.await_args.args
        assert args[0] is buyer
        assert args[1] == listing.id

    async def test_seller_cannot_place_offer(self, client, login_as, offer_service) -> None:
        login_as(build_user(SellerUserFactory))

        response = await client.post(
            "/api/offers/", json={"listingId": str(uuid.uuid4()), "amount": 1000}
        )

        assert response.status_code == 403
        assert response.json()["code"] == "FORBIDDEN"

    async def test_admin_passes_buyer_check(self, client, login_as, offer_service) -> None:
        admin = login_as(build_user(AdminUserFactory))
        offer_service.list_buyer_offers = AsyncMock(return_value=[])

        response = await client.get("/api/offers/my-offers")

        assert response.status_code == 200
        assert response.json()["data"] == []
        offer_service.list_buyer_offers.assert_awaited_once_with(admin.id, None)

    async def test_non_positive_amount_is_rejected(self, client, login_as, offer_service) -> None:
        login_as(build_user())

        response = await client.post(
            "/api/offers/", json={"listingId": str(uuid.uuid4()), "amount": 0}
        )

        assert response.status_code == 400
        assert response.json()["errors"][0]["field"] == "amount"


# ---------------------------------------------------------------------------
# Stripe webhook
# ---------------------------------------------------------------------------


class TestStripeWebhook:
    @pytest.fixture
    def gateway(self):
        gateway = MagicMock()
        gateway.construct_event.return_value = {
            "id": "evt_1",
            "type": "customer.created",
            "data": {"object": {}},
        }
        with patch(f"{_WEBHOOK_ROUTE}.get_stripe_gateway", return_value=gateway):
            yield gateway

    async def test_missing_signature(self, client, gateway) -> None:
        response = await client.post("/api/webhooks/stripe", content=b"{}")

        assert response.status_code == 400
        assert response.json()["error"] == "Missing stripe-signature header"
        gateway.construct_event.assert_not_called()

    async def test_bad_signature(self, client, gateway) -> None:
        gateway.construct_event.side_effect = BadRequestError("Invalid webhook signature")

        response = await client.post(
            "/api/webhooks/stripe", content=b"{}", headers={"stripe-signature": "t=1,v1=bad"}
        )

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid webhook signature"

    async def test_unhandled_event_is_acknowledged(self, client, gateway) -> None:
        response = await client.post(
            "/api/webhooks/stripe", content=b'{"id": "evt_1"}', headers={"stripe-signature": "sig"}
        )

        assert response.status_code == 200
        assert response.json() == {"received": True}
        assert gateway.construct_event.call_args.args == (b'{"id": "evt_1"}', "sig")

    async def test_handler_failure_returns_500(self, client, app, mock_session, gateway) -> None:
        service = MagicMock()
        service.session = mock_session
        service.handle_event = AsyncMock(side_effect=RuntimeError("db down"))
        app.dependency_overrides[get_webhook_service] = lambda: service

        response = await client.post(
            "/api/webhooks/stripe", content=b"{}", headers={"stripe-signature": "sig"}
        )

        assert response.status_code == 500
        assert response.json()["code"] == "WEBHOOK_HANDLER_ERROR"
        mock_session.rollback.assert_awaited_once()


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


class TestCurrentUserDependency:
    async def test_blocked_account_is_forbidden(self) -> None:
        with pytest.raises(ForbiddenError, match="suspended or blocked"):
            await get_current_user(build_user(BlockedUserFactory))

    async def test_active_account_passes(self) -> None:
        user = build_user()

        assert await get_current_user(user) is user


# ---------------------------------------------------------------------------
# Messages and seller views
# ---------------------------------------------------------------------------


class TestMessageRoutes:
    @pytest.fixture
    def message_service(self, app):
        service = MagicMock()
        app.dependency_overrides[get_message_service] = lambda: service
        return service

    async def test_send_message(self, client, login_as, message_service) -> None:
        sender = login_as(build_user())
        receiver_id = uuid.uuid4()
        message_service.send_message = AsyncMock(
            return_value=Message(
                sender_id=sender.id, receiver_id=receiver_id, content="Hi", read=False
            )
        )

        response = await client.post(
            "/api/messages/", json={"receiverId": str(receiver_id), "content": "Hi"}
        )

        assert response.status_code == 201
        assert response.json()["data"]["receiverId"] == str(receiver_id)
        message_service.send_message.assert_awaited_once_with(sender, receiver_id, "Hi", None)

    async def test_unread_count_is_not_taken_for_a_message_id(
        self, client, login_as, message_service
    ) -> None:
        login_as(build_user())
        message_service.get_unread_count = AsyncMock(return_value=3)

        response = await client.get("/api/messages/unread-count")

        assert response.status_code == 200
        assert response.json()["data"] == {"count": 3}

    async def test_sellers_cannot_send_inquiries(self, client, login_as, message_service) -> None:
        login_as(build_user(SellerUserFactory))

        response = await client.post("/api/messages/inquiries", json={"content": "Hello"})

        assert response.status_code == 403


class TestSellerRoutes:
    @pytest.fixture
    def user_service(self, app):
        service = MagicMock()
        app.dependency_overrides[get_user_service] = lambda: service
        return service

    async def test_earnings_envelope_carries_totals(self, client, login_as, user_service) -> None:
        login_as(build_user(SellerUserFactory))
        user_service.get_seller_earnings = AsyncMock(
            return_value=([], 0, {"gross": 10.0, "fees": 1.0, "net": 9.0})
        )

        response = await client.get("/api/seller/earnings")

        assert response.status_code == 200
        body = response.json()
        assert body["data"] == []
        assert body["totals"] == {"gross": 10.0, "fees": 1.0, "net": 9.0}

    async def test_buyers_are_refused(self, client, login_as, user_service) -> None:
        login_as(build_user())

        response = await client.get("/api/seller/payment-history")

        assert response.status_code == 403
