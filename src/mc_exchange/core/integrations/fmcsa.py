"""FMCSA QCMobile API client.

Looks up motor carriers by USDOT or MC docket number and fetches their
authority, insurance, SMS BASICs and out-of-service summaries.

**Design notes**:

- Every lookup returns ``None`` on any failure (timeout, non-2xx, malformed
  body).  Carrier data is advisory; callers never fail a request because
  FMCSA is down.
- Successful carrier, authority and insurance lookups are cached in Redis
  for 24 hours under ``fmcsa:{kind}:{identifier}``.
- Calls pass through the shared provider limiter (``fmcsa`` quota).
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from typing import Any, Optional

import httpx
import structlog

from mc_exchange.config.settings import get_settings
from mc_exchange.core.cache_service import CacheService, get_cache
from mc_exchange.core.exceptions import TooManyRequestsError
from mc_exchange.core.integrations.provider_limiter import ProviderLimiter, get_provider_limiter

logger = structlog.get_logger(__name__)

FMCSA_TIMEOUT_SECONDS = 15.0


def _number(value: Any) -> float:
    if value is None:
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def map_carrier(raw: dict[str, Any]) -> dict[str, Any]:
    """Flatten a QCMobile ``carrier`` object into the fields listings use."""
    operation = raw.get("carrierOperation") or {}
    bipd_on_file = _number(raw.get("bipdInsuranceOnFile"))
    return {
        "dot_number": str(raw.get("dotNumber", "")),
        "legal_name": raw.get("legalName"),
        "dba_name": raw.get("dbaName") or None,
        "carrier_operation": operation.get("carrierOperationDesc") or "Unknown",
        "hq_city": raw.get("phyCity"),
        "hq_state": raw.get("phyState"),
        "physical_address": raw.get("phyStreet"),
        "phone": raw.get("phone") or "",
        "safety_rating": raw.get("safetyRating") or "None",
        "safety_rating_date": raw.get("safetyRatingDate") or None,
        "total_drivers": raw.get("totalDrivers") or 0,
        "total_power_units": raw.get("totalPowerUnits") or 0,
        "mcs150_date": raw.get("mcs150FormDate"),
        "allowed_to_operate": raw.get("allowedToOperate"),
        "bipd_required": _number(raw.get("bipdRequiredAmount")),
        "cargo_required": _number(raw.get("cargoRequiredAmount")),
        "bond_required": _number(raw.get("bondRequiredAmount")),
        "insurance_on_file": bipd_on_file > 0,
        "bipd_on_file": bipd_on_file,
        "cargo_on_file": _number(raw.get("cargoInsuranceOnFile")),
        "bond_on_file": _number(raw.get("bondInsuranceOnFile")),
        "common_authority_status": raw.get("commonAuthorityStatus"),
        "contract_authority_status": raw.get("contractAuthorityStatus"),
        "broker_authority_status": raw.get("brokerAuthorityStatus"),
        "driver_inspections": raw.get("driverInsp") or 0,
        "driver_oos_rate": raw.get("driverOosRate") or 0,
        "vehicle_inspections": raw.get("vehicleInsp") or 0,
        "vehicle_oos_rate": raw.get("vehicleOosRate") or 0,
        "crash_total": raw.get("crashTotal") or 0,
        "fatal_crashes": raw.get("fatalCrash") or 0,
        "injury_crashes": raw.get("injuryCrash") or 0,
        "tow_crashes": raw.get("towCrash") or 0,
    }


def map_authority(content: dict[str, Any]) -> dict[str, Any]:
    return {
        "common_authority_status": content.get("commonAuthorityStatus") or "N/A",
        "common_authority_grant_date": content.get("commonAuthorityGrantDate"),
        "common_authority_reinstated_date": content.get("commonAuthorityReinstatedDate"),
        "common_authority_revoked_date": content.get("commonAuthorityRevokedDate"),
        "contract_authority_status": content.get("contractAuthorityStatus") or "N/A",
        "contract_authority_grant_date": content.get("contractAuthorityGrantDate"),
        "broker_authority_status": content.get("brokerAuthorityStatus") or "N/A",
        "broker_authority_grant_date": content.get("brokerAuthorityGrantDate"),
        "application_date": content.get("applicationDt") or None,
        "grant_date": content.get("grantDt") or None,
        "effective_date": content.get("effectiveDt") or None,
        "revocation_date": content.get("revssnDt") or None,
    }


def map_insurance(item: dict[str, Any]) -> dict[str, Any]:
    return {
        "insurer_name": item.get("insurerName"),
        "policy_number": item.get("policyNumber"),
        "insurance_type": item.get("insuranceType"),
        "coverage_amount": _number(item.get("coverageAmount")),
        "effective_date": item.get("effectiveDate"),
        "cancellation_date": item.get("cancellationDate"),
        "status": item.get("status"),
    }


def map_basic(item: dict[str, Any]) -> dict[str, Any]:
    return {
        "basic_name": item.get("basBasicDesc") or "Unknown",
        "basic_code": item.get("basBasicCd") or "",
        "percentile": item.get("basMeasure") or 0,
        "total_inspections": item.get("basTotInsp") or 0,
        "total_violations": item.get("basTotViol") or 0,
        "oos_inspections": item.get("basOosInsp") or 0,
        "oos_rate": item.get("basOosRate") or 0,
        "threshold_percent": item.get("basThreshPct") or 0,
        "exceeds_threshold": item.get("basExceedFlag") == "Y",
    }


class FMCSAClient:
    """Carrier lookups against the FMCSA QCMobile web services.

    Args:
        http_client: Optional injected :class:`httpx.AsyncClient`.  Inject for
            testing.  If ``None``, a client is created per call.
        cache: Redis cache for 24-hour result caching.
        limiter: Provider limiter; ``fmcsa`` quota.
    """

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        cache: Optional[CacheService] = None,
        limiter: Optional[ProviderLimiter] = None,
    ) -> None:
        settings = get_settings()
        self.api_key = settings.fmcsa_api_key
        self.base_url = settings.fmcsa_base_url.rstrip("/")
        self._http_client = http_client
        self.cache = cache or get_cache()
        self.limiter = limiter or get_provider_limiter()

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def lookup_by_dot(self, dot_number: str) -> Optional[dict[str, Any]]:
        cached = await self.cache.get_cached_fmcsa(dot_number, "dot")
        if cached:
            return cached
        data = await self._get(f"/carriers/{dot_number}")
        carrier = ((data or {}).get("content") or {}).get("carrier")
        if not carrier:
            return None
        result = map_carrier(carrier)
        await self.cache.cache_fmcsa(dot_number, "dot", result)
        return result

    async def lookup_by_mc(self, mc_number: str) -> Optional[dict[str, Any]]:
        cached = await self.cache.get_cached_fmcsa(mc_number, "mc")
        if cached:
            return cached
        data = await self._get(f"/carriers/docket-number/{mc_number}")
        content = (data or {}).get("content")
        if not isinstance(content, list) or not content:
            logger.debug("fmcsa_mc_not_found", mc_number=mc_number)
            return None
        carrier = (content[0] or {}).get("carrier")
        if not carrier:
            return None
        result = map_carrier(carrier)
        await self.cache.cache_fmcsa(mc_number, "mc", result)
        return result

    async def get_authority_history(self, dot_number: str) -> Optional[dict[str, Any]]:
        cached = await self.cache.get_cached_fmcsa(dot_number, "authority")
        if cached:
            return cached
        data = await self._get(f"/carriers/{dot_number}/authority")
        content = (data or {}).get("content")
        if isinstance(content, list):
            content = (content[0] or {}).get("carrierAuthority") if content else None
        if not isinstance(content, dict):
            return None
        result = map_authority(content)
        await self.cache.cache_fmcsa(dot_number, "authority", result)
        return result

    async def get_insurance_history(self, dot_number: str) -> Optional[list[dict[str, Any]]]:
        cached = await self.cache.get_cached_fmcsa(dot_number, "insurance")
        if cached is not None:
            return cached
        data = await self._get(f"/carriers/{dot_number}/insurance")
        content = (data or {}).get("content")
        if not isinstance(content, list):
            return None
        result = [map_insurance(item) for item in content]
        await self.cache.cache_fmcsa(dot_number, "insurance", result)
        return result

    async def get_sms_data(self, dot_number: str) -> Optional[dict[str, Any]]:
        """BASIC percentiles plus inspection, out-of-service and crash totals."""
        basics_data, oos_data = await asyncio.gather(
            self._get(f"/carriers/{dot_number}/basics"),
            self._get(f"/carriers/{dot_number}/oos"),
        )
        if basics_data is None and oos_data is None:
            return None

        basics_content = (basics_data or {}).get("content")
        basics = [map_basic(item) for item in basics_content] if isinstance(basics_content, list) else []
        oos = (oos_data or {}).get("content") or {}
        if isinstance(oos, list):
            oos = oos[0] if oos else {}

        driver = oos.get("oosDriverInsp") or 0
        vehicle = oos.get("oosVehicleInsp") or 0
        return {
            "dot_number": dot_number,
            "total_inspections": oos.get("oosTotInsp") or driver + vehicle,
            "total_driver_inspections": driver,
            "total_vehicle_inspections": vehicle,
            "total_hazmat_inspections": oos.get("oosHazmatInsp") or 0,
            "total_iep_inspections": oos.get("oosIepInsp") or 0,
            "driver_oos_rate": oos.get("oosDriverOosRate") or 0,
            "vehicle_oos_rate": oos.get("oosVehicleOosRate") or 0,
            "driver_oos_inspections": oos.get("oosDriverOos") or 0,
            "vehicle_oos_inspections": oos.get("oosVehicleOos") or 0,
            "total_crashes": oos.get("oosTotCrashes") or 0,
            "fatal_crashes": oos.get("oosFatalCrashes") or 0,
            "injury_crashes": oos.get("oosInjCrashes") or 0,
            "tow_crashes": oos.get("oosTowCrashes") or 0,
            "basics": basics,
            "snapshot_date": datetime.now(UTC).date().isoformat(),
        }

    async def get_carrier_snapshot(
        self, identifier: str, kind: str = "DOT"
    ) -> dict[str, Any]:
        """Carrier record plus authority and insurance history.

        Args:
            identifier: DOT or MC number.
            kind: ``"DOT"`` or ``"MC"``.
        """
        if kind.upper() == "MC":
            carrier = await self.lookup_by_mc(identifier)
        else:
            carrier = await self.lookup_by_dot(identifier)
        if carrier is None:
            return {"carrier": None, "authority": None, "insurance": None}
        authority, insurance = await asyncio.gather(
            self.get_authority_history(carrier["dot_number"]),
            self.get_insurance_history(carrier["dot_number"]),
        )
        return {"carrier": carrier, "authority": authority, "insurance": insurance}

    async def verify_mc(self, mc_number: str) -> dict[str, Any]:
        carrier = await self.lookup_by_mc(mc_number)
        if carrier is None:
            return {"valid": False, "active": False, "reason": "MC number not found"}
        active = carrier.get("allowed_to_operate") == "Y"
        return {
            "valid": True,
            "active": active,
            "reason": None if active else "Carrier is not allowed to operate",
        }

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _build_http_client(self) -> httpx.AsyncClient:
        if self._http_client is not None:
            return self._http_client
        return httpx.AsyncClient(
            timeout=FMCSA_TIMEOUT_SECONDS,
            headers={"Accept": "application/json", "User-Agent": "MCExchange/1.0"},
        )

    async def _get(self, path: str) -> Optional[dict[str, Any]]:
        """GET ``{base_url}{path}``; ``None`` on any failure."""
        if not self.configured:
            logger.debug("fmcsa_not_configured")
            return None
        url = f"{self.base_url}{path}"
        try:
            await self.limiter.wait_for_slot("fmcsa")
            if self._http_client is not None:
                response = await self._http_client.get(url, params={"webKey": self.api_key})
            else:
                async with self._build_http_client() as client:
                    response = await client.get(url, params={"webKey": self.api_key})
            if response.status_code != 200:
                logger.warning("fmcsa_http_error", path=path, status=response.status_code)
                return None
            data = response.json()
            return data if isinstance(data, dict) else None
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("fmcsa_request_failed", path=path, error=str(exc))
            return None
        except TooManyRequestsError as exc:
            logger.warning("fmcsa_lookup_skipped", path=path, error=str(exc))
            return None


def get_fmcsa_client() -> FMCSAClient:
    return FMCSAClient()
