"""Unit tests for the marketing integrations (Telegram, Facebook, GoHighLevel).

Credentials come from ``platform_settings`` rows, so each test primes
``mock_session.execute`` with the key/value rows the client reads.  HTTP
calls are mocked with respx.
"""

from __future__ import annotations

import json

import httpx
import pytest
import respx

from mc_exchange.core.integrations.facebook import GRAPH_API_BASE, FacebookClient
from mc_exchange.core.integrations.ghl import GHL_API_BASE, GHLClient, LeadContact, build_contact_body
from mc_exchange.core.integrations.marketing import listing_promotion_text, mask_mc_number
from mc_exchange.core.integrations.provider_limiter import ProviderLimiter
from mc_exchange.core.integrations.telegram import TELEGRAM_API_BASE, TelegramClient
from tests.factories import build_listing
from tests.helpers import query_result


def _settings(mock_session, **values: str) -> None:
    mock_session.execute.return_value = query_result(rows=list(values.items()))


@pytest.fixture
def listing():
    return build_listing(mc_number="1234567", title="Clean Texas authority", price=32500.0)


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


class TestPromotionText:
    @pytest.mark.parametrize(
        ("mc_number", "expected"),
        [("1234567", "***567"), ("123", "***"), ("", "***")],
    )
    def test_mask_mc_number(self, mc_number: str, expected: str) -> None:
        assert mask_mc_number(mc_number) == expected

    def test_plain_text_never_shows_full_mc(self, listing) -> None:
        text = listing_promotion_text(listing, custom_message="Just listed")

        assert text.startswith("Just listed\n")
        assert "1234567" not in text
        assert "MC# ***567" in text
        assert "$32,500" in text
        assert f"/mc/{listing.id}" in text

    def test_html_variant_links_listing(self, listing) -> None:
        text = listing_promotion_text(listing, html=True, extra_lines=["🔍 Inspections: 4"])

        assert "<b>Clean Texas authority</b>" in text
        assert '<a href="' in text
        assert "🔍 Inspections: 4" in text


# ---------------------------------------------------------------------------
# Telegram
# ---------------------------------------------------------------------------


class TestTelegram:
    @pytest.fixture
    def telegram(self, mock_session) -> TelegramClient:
        return TelegramClient(mock_session, http_client=httpx.AsyncClient(), limiter=ProviderLimiter(None))

    async def test_send_message(self, telegram, mock_session) -> None:
        _settings(mock_session, telegram_bot_token="123:abc", telegram_channel_id="@mcx")
        with respx.mock:
            route = respx.post(f"{TELEGRAM_API_BASE}/bot123:abc/sendMessage").mock(
                return_value=httpx.Response(200, json={"ok": True, "result": {"message_id": 77}})
            )
            outcome = await telegram.send_message("hello")

        assert outcome == {"success": True, "message_id": 77}
        sent = json.loads(route.calls.last.request.content)
        assert sent["chat_id"] == "@mcx"
        assert sent["parse_mode"] == "HTML"

    async def test_not_configured(self, telegram, mock_session) -> None:
        _settings(mock_session, telegram_bot_token="123:abc")

        outcome = await telegram.send_message("hello")

        assert outcome["success"] is False
        assert "not configured" in outcome["error"]

    async def test_api_error_description_is_returned(self, telegram, mock_session) -> None:
        _settings(mock_session, telegram_bot_token="t", telegram_channel_id="c")
        with respx.mock:
            respx.post(f"{TELEGRAM_API_BASE}/bott/sendMessage").mock(
                return_value=httpx.Response(
                    400, json={"ok": False, "description": "Bad Request: chat not found"}
                )
            )
            outcome = await telegram.send_message("hello")

        assert outcome == {"success": False, "error": "Bad Request: chat not found"}

    async def test_connection_reports_bot_name(self, telegram, mock_session) -> None:
        _settings(mock_session, telegram_bot_token="t")
        with respx.mock:
            respx.get(f"{TELEGRAM_API_BASE}/bott/getMe").mock(
                return_value=httpx.Response(200, json={"ok": True, "result": {"username": "mcx_bot"}})
            )
            outcome = await telegram.test_connection()

        assert outcome == {"success": True, "bot_name": "mcx_bot"}


# ---------------------------------------------------------------------------
# Facebook
# ---------------------------------------------------------------------------


class TestFacebook:
    @pytest.fixture
    def facebook(self, mock_session) -> FacebookClient:
        return FacebookClient(mock_session, http_client=httpx.AsyncClient(), limiter=ProviderLimiter(None))

    async def test_post_listing_to_both_groups(self, facebook, mock_session, listing) -> None:
        _settings(
            mock_session,
            facebook_access_token="fb-token",
            facebook_group1_id="111",
            facebook_group2_id="222",
        )
        with respx.mock:
            group1 = respx.post(f"{GRAPH_API_BASE}/111/feed").mock(
                return_value=httpx.Response(200, json={"id": "111_1"})
            )
            respx.post(f"{GRAPH_API_BASE}/222/feed").mock(
                return_value=httpx.Response(200, json={"id": "222_1"})
            )
            outcome = await facebook.post_listing(listing, post_to_group2=True)

        assert outcome["success"] is True
        assert outcome["results"]["group1"] == {"success": True, "post_id": "111_1"}
        assert outcome["results"]["group2"]["post_id"] == "222_1"
        form = group1.calls.last.request.content.decode()
        assert "access_token=fb-token" in form

    async def test_failed_group_fails_the_post(self, facebook, mock_session, listing) -> None:
        _settings(
            mock_session,
            facebook_access_token="fb-token",
            facebook_group1_id="111",
            facebook_group2_id="222",
        )
        with respx.mock:
            respx.post(f"{GRAPH_API_BASE}/111/feed").mock(
                return_value=httpx.Response(200, json={"id": "111_1"})
            )
            respx.post(f"{GRAPH_API_BASE}/222/feed").mock(
                return_value=httpx.Response(
                    403, json={"error": {"message": "Permissions error"}}
                )
            )
            outcome = await facebook.post_listing(listing, post_to_group2=True)

        assert outcome["success"] is False
        assert outcome["results"]["group2"] == {"success": False, "error": "Permissions error"}

    async def test_selected_group_without_id_is_a_failure(self, facebook, mock_session, listing) -> None:
        _settings(mock_session, facebook_access_token="fb-token", facebook_group1_id="111")
        with respx.mock:
            respx.post(f"{GRAPH_API_BASE}/111/feed").mock(
                return_value=httpx.Response(200, json={"id": "111_1"})
            )
            outcome = await facebook.post_listing(listing, post_to_group2=True)

        assert outcome["success"] is False
        assert "group2" not in outcome["results"]

    async def test_status_and_default_group_names(self, facebook, mock_session) -> None:
        _settings(mock_session, facebook_access_token="fb-token", facebook_group1_id="111")

        assert await facebook.status() == {"configured": True, "group1": True, "group2": False}
        config = await facebook.get_config()
        assert config["group2_name"] == "Group 2"


# ---------------------------------------------------------------------------
# GoHighLevel
# ---------------------------------------------------------------------------


class TestGHL:
    @pytest.fixture
    def ghl(self, mock_session) -> GHLClient:
        return GHLClient(mock_session, http_client=httpx.AsyncClient(), limiter=ProviderLimiter(None))

    @pytest.fixture
    def lead(self) -> LeadContact:
        return LeadContact(
            name="Jordan Lee Carter",
            email="jordan@example.com",
            phone="+15555550100",
            company="Carter Freight",
            fleet_size="5",
        )

    def test_contact_body_splits_name(self, lead) -> None:
        body = build_contact_body(lead, "loc-1")

        assert body["firstName"] == "Jordan"
        assert body["lastName"] == "Lee Carter"
        assert body["companyName"] == "Carter Freight"
        assert body["source"] == "Website Form"
        assert body["tags"] == ["Website lead"]

    async def test_create_contact(self, ghl, mock_session, lead) -> None:
        _settings(mock_session, ghl_api_key="ghl-key", ghl_location_id="loc-1")
        with respx.mock:
            route = respx.post(f"{GHL_API_BASE}/contacts/").mock(
                return_value=httpx.Response(201, json={"contact": {"id": "ct_1"}})
            )
            contact_id = await ghl.create_contact(lead)

        assert contact_id == "ct_1"
        request = route.calls.last.request
        assert request.headers["Authorization"] == "Bearer ghl-key"
        assert request.headers["Version"] == "2021-07-28"

    async def test_duplicate_contact_returns_existing_id(self, ghl, mock_session, lead) -> None:
        _settings(mock_session, ghl_api_key="ghl-key", ghl_location_id="loc-1")
        with respx.mock:
            respx.post(f"{GHL_API_BASE}/contacts/").mock(
                return_value=httpx.Response(
                    400,
                    json={"message": "duplicate contact", "meta": {"contactId": "ct_existing"}},
                )
            )
            assert await ghl.create_contact(lead) == "ct_existing"

    async def test_failures_return_none(self, ghl, mock_session, lead) -> None:
        _settings(mock_session, ghl_api_key="ghl-key", ghl_location_id="loc-1")
        with respx.mock:
            respx.post(f"{GHL_API_BASE}/contacts/").mock(side_effect=httpx.ConnectError("down"))
            assert await ghl.create_contact(lead) is None

    async def test_unconfigured_makes_no_request(self, ghl, mock_session, lead) -> None:
        _settings(mock_session, ghl_api_key="ghl-key")
        with respx.mock:
            route = respx.post(f"{GHL_API_BASE}/contacts/")
            assert await ghl.create_contact(lead) is None

        assert not route.called
