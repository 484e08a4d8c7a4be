"""Unit tests for the FMCSA QCMobile client.

Tests cover:
- map_carrier() flattens the nested operation block and insurance figures
- map_basic() exceeds_threshold flag
- lookup_by_dot() / lookup_by_mc() parse recorded responses
- verify_mc() for active, inactive and unknown MC numbers
- every failure path (non-200, transport error, bad JSON, missing key) returns None
- get_carrier_snapshot() short-circuits when the carrier is unknown
- successful lookups are written to the cache and served from it

All HTTP calls are mocked with respx.  No network access is required.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
import respx

from mc_exchange.core.cache_service import CacheService
from mc_exchange.core.integrations.fmcsa import FMCSAClient, map_basic, map_carrier
from mc_exchange.core.integrations.provider_limiter import ProviderLimiter

FIXTURES_DIR = Path(__file__).parent.parent / "fixtures" / "api_responses" / "fmcsa"
BASE_URL = "https://mobile.fmcsa.dot.gov/qc/services"


def _load(name: str) -> dict[str, Any]:
    return json.loads((FIXTURES_DIR / name).read_text(encoding="utf-8"))


@pytest.fixture
def fmcsa_client() -> FMCSAClient:
    client = FMCSAClient(
        http_client=httpx.AsyncClient(),
        cache=CacheService(None),
        limiter=ProviderLimiter(None),
    )
    client.base_url = BASE_URL
    return client


# ---------------------------------------------------------------------------
# Mappers
# ---------------------------------------------------------------------------


class TestMappers:
    def test_map_carrier_flattens_recorded_carrier(self) -> None:
        raw = _load("carrier_by_dot.json")["content"]["carrier"]

        carrier = map_carrier(raw)

        assert carrier["dot_number"] == "3141592"
        assert carrier["legal_name"] == "LONE STAR HAULING LLC"
        assert carrier["dba_name"] is None
        assert carrier["carrier_operation"] == "Interstate"
        assert carrier["hq_state"] == "TX"
        assert carrier["insurance_on_file"] is True
        assert carrier["bipd_on_file"] == 750.0
        assert carrier["total_power_units"] == 3

    def test_map_carrier_defaults_for_sparse_record(self) -> None:
        carrier = map_carrier({"dotNumber": 1, "bipdInsuranceOnFile": "not-a-number"})

        assert carrier["carrier_operation"] == "Unknown"
        assert carrier["safety_rating"] == "None"
        assert carrier["insurance_on_file"] is False
        assert carrier["crash_total"] == 0

    def test_map_basic_threshold_flag(self) -> None:
        unsafe, maintenance = (map_basic(item) for item in _load("basics.json")["content"])

        assert unsafe["basic_name"] == "Unsafe Driving"
        assert unsafe["exceeds_threshold"] is False
        assert maintenance["exceeds_threshold"] is True
        assert maintenance["oos_rate"] == 22.2


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


class TestLookups:
    async def test_lookup_by_dot_sends_web_key(self, fmcsa_client: FMCSAClient) -> None:
        with respx.mock:
            route = respx.get(f"{BASE_URL}/carriers/3141592").mock(
                return_value=httpx.Response(200, json=_load("carrier_by_dot.json"))
            )
            carrier = await fmcsa_client.lookup_by_dot("3141592")

        assert carrier is not None
        assert carrier["legal_name"] == "LONE STAR HAULING LLC"
        assert route.calls.last.request.url.params["webKey"] == "test-fmcsa-key"

    async def test_lookup_by_mc_reads_first_docket_match(self, fmcsa_client: FMCSAClient) -> None:
        with respx.mock:
            respx.get(f"{BASE_URL}/carriers/docket-number/654321").mock(
                return_value=httpx.Response(200, json=_load("carrier_by_docket.json"))
            )
            carrier = await fmcsa_client.lookup_by_mc("654321")

        assert carrier is not None
        assert carrier["dot_number"] == "2718281"
        assert carrier["allowed_to_operate"] == "N"

    async def test_lookup_by_mc_empty_content(self, fmcsa_client: FMCSAClient) -> None:
        with respx.mock:
            respx.get(f"{BASE_URL}/carriers/docket-number/1").mock(
                return_value=httpx.Response(200, json={"content": []})
            )
            assert await fmcsa_client.lookup_by_mc("1") is None

    async def test_authority_accepts_list_content(self, fmcsa_client: FMCSAClient) -> None:
        body = {
            "content": [
                {
                    "carrierAuthority": {
                        "commonAuthorityStatus": "A",
                        "commonAuthorityGrantDate": "2019-05-01",
                    }
                }
            ]
        }
        with respx.mock:
            respx.get(f"{BASE_URL}/carriers/3141592/authority").mock(
                return_value=httpx.Response(200, json=body)
            )
            authority = await fmcsa_client.get_authority_history("3141592")

        assert authority is not None
        assert authority["common_authority_status"] == "A"
        assert authority["contract_authority_status"] == "N/A"

    async def test_sms_data_survives_missing_oos(self, fmcsa_client: FMCSAClient) -> None:
        with respx.mock:
            respx.get(f"{BASE_URL}/carriers/3141592/basics").mock(
                return_value=httpx.Response(200, json=_load("basics.json"))
            )
            respx.get(f"{BASE_URL}/carriers/3141592/oos").mock(return_value=httpx.Response(500))
            sms = await fmcsa_client.get_sms_data("3141592")

        assert sms is not None
        assert len(sms["basics"]) == 2
        assert sms["total_inspections"] == 0


# ---------------------------------------------------------------------------
# verify_mc()
# ---------------------------------------------------------------------------


class TestVerifyMc:
    async def test_active_carrier(self, fmcsa_client: FMCSAClient) -> None:
        body = _load("carrier_by_docket.json")
        body["content"][0]["carrier"]["allowedToOperate"] = "Y"
        with respx.mock:
            respx.get(f"{BASE_URL}/carriers/docket-number/654321").mock(
                return_value=httpx.Response(200, json=body)
            )
            result = await fmcsa_client.verify_mc("654321")

        assert result == {"valid": True, "active": True, "reason": None}

    async def test_inactive_carrier(self, fmcsa_client: FMCSAClient) -> None:
        with respx.mock:
            respx.get(f"{BASE_URL}/carriers/docket-number/654321").mock(
                return_value=httpx.Response(200, json=_load("carrier_by_docket.json"))
            )
            result = await fmcsa_client.verify_mc("654321")

        assert result["valid"] is True
        assert result["active"] is False
        assert result["reason"] == "Carrier is not allowed to operate"

    async def test_unknown_mc(self, fmcsa_client: FMCSAClient) -> None:
        with respx.mock:
            respx.get(f"{BASE_URL}/carriers/docket-number/999").mock(
                return_value=httpx.Response(404)
            )
            result = await fmcsa_client.verify_mc("999")

        assert result == {"valid": False, "active": False, "reason": "MC number not found"}


# ---------------------------------------------------------------------------
# Failure handling
# ---------------------------------------------------------------------------


class TestFailures:
    async def test_server_error_returns_none(self, fmcsa_client: FMCSAClient) -> None:
        with respx.mock:
            respx.get(f"{BASE_URL}/carriers/1").mock(return_value=httpx.Response(503))
            assert await fmcsa_client.lookup_by_dot("1") is None

    async def test_timeout_returns_none(self, fmcsa_client: FMCSAClient) -> None:
        with respx.mock:
            respx.get(f"{BASE_URL}/carriers/1").mock(side_effect=httpx.ReadTimeout("slow"))
            assert await fmcsa_client.lookup_by_dot("1") is None

    async def test_malformed_json_returns_none(self, fmcsa_client: FMCSAClient) -> None:
        with respx.mock:
            respx.get(f"{BASE_URL}/carriers/1").mock(
                return_value=httpx.Response(200, content=b"<html>maintenance</html>")
            )
            assert await fmcsa_client.lookup_by_dot("1") is None

    async def test_missing_api_key_skips_http(self, fmcsa_client: FMCSAClient) -> None:
        fmcsa_client.api_key = ""
        with respx.mock:
            route = respx.get(f"{BASE_URL}/carriers/1")
            assert await fmcsa_client.lookup_by_dot("1") is None

        assert not route.called

    async def test_snapshot_for_unknown_carrier(self, fmcsa_client: FMCSAClient) -> None:
        with respx.mock:
            respx.get(f"{BASE_URL}/carriers/docket-number/42").mock(
                return_value=httpx.Response(200, json={"content": []})
            )
            snapshot = await fmcsa_client.get_carrier_snapshot("42", kind="mc")

        assert snapshot == {"carrier": None, "authority": None, "insurance": None}


# ---------------------------------------------------------------------------
# Caching
# ---------------------------------------------------------------------------


class TestCaching:
    async def test_cached_carrier_skips_http(self) -> None:
        cache = MagicMock(spec=CacheService)
        cache.get_cached_fmcsa = AsyncMock(return_value={"dot_number": "7", "legal_name": "CACHED"})
        client = FMCSAClient(http_client=httpx.AsyncClient(), cache=cache, limiter=ProviderLimiter(None))

        with respx.mock:
            route = respx.get(url__regex=r".*/carriers/7$")
            carrier = await client.lookup_by_dot("7")

        assert carrier["legal_name"] == "CACHED"
        assert not route.called
        cache.get_cached_fmcsa.assert_awaited_once_with("7", "dot")

    async def test_successful_lookup_is_cached(self) -> None:
        cache = MagicMock(spec=CacheService)
        cache.get_cached_fmcsa = AsyncMock(return_value=None)
        cache.cache_fmcsa = AsyncMock()
        client = FMCSAClient(http_client=httpx.AsyncClient(), cache=cache, limiter=ProviderLimiter(None))
        client.base_url = BASE_URL

        with respx.mock:
            respx.get(f"{BASE_URL}/carriers/3141592").mock(
                return_value=httpx.Response(200, json=_load("carrier_by_dot.json"))
            )
            carrier = await client.lookup_by_dot("3141592")

        cache.cache_fmcsa.assert_awaited_once_with("3141592", "dot", carrier)
