"""Creditsafe Connect API client.

Company search and credit reports for the businesses behind a listing,
used by admins during due diligence.

**Design notes**:

- Authentication is a username/password exchange for a bearer token.  The
  token is kept on the client instance for 55 minutes and refreshed 5
  minutes before that; a 401 drops it and the request is retried once.
- Unlike FMCSA lookups, Creditsafe failures raise: an admin asked for the
  report explicitly, so a silent ``None`` would be misleading.
- Calls pass through the shared provider limiter (``creditsafe`` quota).
"""

from __future__ import annotations

import time
from typing import Any, Optional
from urllib.parse import quote

import httpx
import structlog

from mc_exchange.config.settings import get_settings
from mc_exchange.core.exceptions import NotFoundError, ServiceUnavailableError
from mc_exchange.core.integrations.provider_limiter import ProviderLimiter, get_provider_limiter

logger = structlog.get_logger(__name__)

CREDITSAFE_TIMEOUT_SECONDS = 20.0
TOKEN_TTL_SECONDS = 55 * 60
TOKEN_BUFFER_SECONDS = 5 * 60


def summarize_report(report: dict[str, Any]) -> dict[str, Any]:
    """Pick the headline figures out of a full credit report."""
    basic = (report.get("companyIdentification") or {}).get("basicInformation") or {}
    rating = (report.get("creditScore") or {}).get("currentCreditRating") or {}
    credit_limit = rating.get("creditLimit") or {}
    statements = report.get("financialStatements") or []
    latest = statements[0] if statements else {}
    profit_and_loss = latest.get("profitAndLoss") or {}
    balance_sheet = latest.get("balanceSheet") or {}
    ccj = (report.get("negativeInformation") or {}).get("ccjSummary") or {}
    ccj_amount = ccj.get("totalAmount") or {}
    payment_data = report.get("paymentData") or {}
    employees = (
        (report.get("additionalInformation") or {}).get("employeeInformation") or {}
    ).get("numberOfEmployees")

    address = basic.get("contactAddress") or {}
    address_text = address.get("simpleValue") or ", ".join(
        part for part in (address.get("street"), address.get("city"), address.get("postCode")) if part
    )

    return {
        "business_name": basic.get("businessName") or basic.get("registeredCompanyName") or "N/A",
        "registration_number": basic.get("companyRegistrationNumber"),
        "status": (basic.get("companyStatus") or {}).get("status") or "Unknown",
        "country": basic.get("country") or "N/A",
        "address": address_text or "N/A",
        "telephone": basic.get("contactTelephone"),
        "website": basic.get("contactWebsite"),
        "principal_activity": (basic.get("principalActivity") or {}).get("description"),
        "credit_rating": rating.get("commonValue"),
        "credit_rating_description": rating.get("commonDescription"),
        "credit_limit": credit_limit.get("value"),
        "credit_limit_currency": credit_limit.get("currency"),
        "number_of_employees": employees,
        "dbt": payment_data.get("dbt"),
        "industry_dbt": payment_data.get("industryDBT"),
        "ccj_count": (ccj.get("numberOfExact") or 0) + (ccj.get("numberOfPossible") or 0),
        "ccj_total_amount": ccj_amount.get("value"),
        "ccj_currency": ccj_amount.get("currency"),
        "directors_count": len((report.get("directors") or {}).get("currentDirectors") or []),
        "latest_financials_date": latest.get("yearEndDate"),
        "revenue": profit_and_loss.get("revenue"),
        "profit_before_tax": profit_and_loss.get("profitBeforeTax"),
        "total_assets": balance_sheet.get("totalAssets"),
        "total_liabilities": balance_sheet.get("totalLiabilities"),
        "shareholders_equity": balance_sheet.get("totalShareholdersEquity"),
    }


class CreditsafeClient:
    """Authenticated access to the Creditsafe Connect REST API.

    Args:
        http_client: Optional injected :class:`httpx.AsyncClient`.  Inject for
            testing.  If ``None``, a client is created per call.
        limiter: Provider limiter; ``creditsafe`` quota.
    """

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        limiter: Optional[ProviderLimiter] = None,
    ) -> None:
        settings = get_settings()
        self.username = settings.creditsafe_username
        self.password = settings.creditsafe_password
        self.base_url = settings.creditsafe_base_url.rstrip("/")
        self._http_client = http_client
        self.limiter = limiter or get_provider_limiter()
        self._token: Optional[str] = None
        self._token_expires_at = 0.0

    @property
    def configured(self) -> bool:
        return bool(self.username and self.password)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def search_companies(
        self,
        *,
        countries: str,
        name: Optional[str] = None,
        reg_no: Optional[str] = None,
        vat_no: Optional[str] = None,
        post_code: Optional[str] = None,
        city: Optional[str] = None,
        state: Optional[str] = None,
        exact: Optional[bool] = None,
        page: Optional[int] = None,
        page_size: Optional[int] = None,
    ) -> dict[str, Any]:
        """Search companies.

        Args:
            countries: Comma-separated ISO-2 codes, e.g. ``"US"``.

        Returns:
            ``{"totalSize": int, "companies": [...]}`` as returned by Creditsafe.
        """
        params: dict[str, Any] = {"countries": countries}
        optional = {
            "name": name,
            "regNo": reg_no,
            "vatNo": vat_no,
            "postCode": post_code,
            "city": city,
            "province": state,
            "page": page,
            "pageSize": page_size,
        }
        params.update({key: value for key, value in optional.items() if value})
        if exact is not None:
            params["exact"] = "true" if exact else "false"
        return await self._request("GET", "/companies", params=params)

    async def get_credit_report(
        self,
        connect_id: str,
        *,
        language: Optional[str] = None,
        include_indicators: bool = False,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {}
        if language:
            params["language"] = language
        if include_indicators:
            params["includeIndicators"] = "true"
        data = await self._request("GET", f"/companies/{quote(connect_id, safe='')}", params=params)
        return data.get("report") or data

    async def get_company_assessment(self, connect_id: str) -> dict[str, Any]:
        report = await self.get_credit_report(connect_id, include_indicators=True)
        return {"company": report, "summary": summarize_report(report)}

    async def lookup_company(
        self,
        *,
        country: str,
        name: Optional[str] = None,
        reg_no: Optional[str] = None,
        state: Optional[str] = None,
        city: Optional[str] = None,
    ) -> dict[str, Any]:
        result = await self.search_companies(
            countries=country, name=name, reg_no=reg_no, state=state, city=city, page_size=10
        )
        return {
            "search_results": result.get("companies") or [],
            "total_results": result.get("totalSize") or 0,
        }

    async def get_access(self) -> dict[str, Any]:
        return await self._request("GET", "/access")

    async def health_check(self) -> dict[str, Any]:
        if not self.configured:
            return {
                "configured": False,
                "authenticated": False,
                "error": "Creditsafe credentials not configured",
            }
        try:
            await self._get_token()
        except ServiceUnavailableError as exc:
            return {"configured": True, "authenticated": False, "error": exc.message}
        return {"configured": True, "authenticated": True}

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _build_http_client(self) -> httpx.AsyncClient:
        if self._http_client is not None:
            return self._http_client
        return httpx.AsyncClient(
            timeout=CREDITSAFE_TIMEOUT_SECONDS,
            headers={"Accept": "application/json"},
        )

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            if self._http_client is not None:
                return await self._http_client.request(method, url, **kwargs)
            async with self._build_http_client() as client:
                return await client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            logger.error("creditsafe_request_failed", url=url, error=str(exc))
            raise ServiceUnavailableError("Creditsafe is unreachable") from exc

    async def _get_token(self) -> str:
        if self._token and time.monotonic() < self._token_expires_at - TOKEN_BUFFER_SECONDS:
            return self._token
        if not self.configured:
            raise ServiceUnavailableError("Creditsafe credentials not configured")

        response = await self._send(
            "POST",
            f"{self.base_url}/authenticate",
            json={"username": self.username, "password": self.password},
        )
        if response.status_code != 200:
            logger.error("creditsafe_auth_failed", status=response.status_code)
            raise ServiceUnavailableError(f"Creditsafe authentication failed: {response.status_code}")
        token = response.json().get("token")
        if not token:
            raise ServiceUnavailableError("Creditsafe authentication returned no token")
        self._token = token
        self._token_expires_at = time.monotonic() + TOKEN_TTL_SECONDS
        logger.debug("creditsafe_authenticated")
        return token

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict[str, Any]] = None,
        retry: bool = True,
    ) -> dict[str, Any]:
        token = await self._get_token()
        await self.limiter.wait_for_slot("creditsafe")
        response = await self._send(
            method,
            f"{self.base_url}{path}",
            params=params,
            headers={"Authorization": f"Bearer {token}"},
        )
        if response.status_code == 401 and retry:
            logger.debug("creditsafe_token_expired")
            self._token = None
            return await self._request(method, path, params=params, retry=False)
        if response.status_code == 404:
            raise NotFoundError("Company")
        if response.status_code >= 400:
            logger.error(
                "creditsafe_api_error",
                path=path,
                status=response.status_code,
                body=response.text[:500],
            )
            raise ServiceUnavailableError(f"Creditsafe API error: {response.status_code}")
        return response.json()


_client: Optional[CreditsafeClient] = None


def get_creditsafe_client() -> CreditsafeClient:
    """Process-wide client so the bearer token is shared between requests."""
    global _client
    if _client is None:
        _client = CreditsafeClient()
    return _client
