"""GoHighLevel (LeadConnector) CRM client.

Lead forms create a contact in the configured GHL location.  The API key
and location id are platform settings (``ghl_api_key``,
``ghl_location_id``).  A 400 response carrying ``meta.contactId`` means the
contact already exists; its id is returned as if it had been created.

Lead capture must never fail the form submission, so every failure is
logged and reported as ``None``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

import httpx
import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from mc_exchange.core.exceptions import TooManyRequestsError
from mc_exchange.core.integrations.marketing import load_integration_settings
from mc_exchange.core.integrations.provider_limiter import ProviderLimiter, get_provider_limiter

logger = structlog.get_logger(__name__)

GHL_API_BASE = "https://services.leadconnectorhq.com"
GHL_API_VERSION = "2021-07-28"
GHL_TIMEOUT_SECONDS = 15.0

GHL_SETTING_KEYS: dict[str, str] = {
    "api_key": "ghl_api_key",
    "location_id": "ghl_location_id",
}


@dataclass
class LeadContact:
    name: str
    email: str
    phone: str
    company: Optional[str] = None
    fleet_size: Optional[str] = None
    service_type: Optional[str] = None
    message: Optional[str] = None
    tag: str = "Website lead"


def build_contact_body(lead: LeadContact, location_id: str) -> dict[str, Any]:
    first_name, _, last_name = lead.name.strip().partition(" ")
    body: dict[str, Any] = {
        "firstName": first_name,
        "lastName": last_name.strip(),
        "email": lead.email,
        "phone": lead.phone,
        "locationId": location_id,
        "tags": [lead.tag],
    }
    if lead.company:
        body["companyName"] = lead.company
    if lead.fleet_size or lead.service_type or lead.message:
        body["source"] = "Website Form"
    return body


class GHLClient:
    def __init__(
        self,
        session: AsyncSession,
        http_client: Optional[httpx.AsyncClient] = None,
        limiter: Optional[ProviderLimiter] = None,
    ) -> None:
        self.session = session
        self._http_client = http_client
        self.limiter = limiter or get_provider_limiter()

    async def create_contact(self, lead: LeadContact) -> Optional[str]:
        """Create (or find) the contact for *lead*.

        Returns:
            The GHL contact id, or ``None`` when GHL is not configured or the
            call failed.
        """
        values = await load_integration_settings(self.session, GHL_SETTING_KEYS.values())
        api_key, location_id = values["ghl_api_key"], values["ghl_location_id"]
        if not api_key or not location_id:
            logger.warning("ghl_not_configured")
            return None

        headers = {
            "Authorization": f"Bearer {api_key}",
            "Version": GHL_API_VERSION,
            "Content-Type": "application/json",
        }
        body = build_contact_body(lead, location_id)
        try:
            await self.limiter.wait_for_slot("ghl")
            if self._http_client is not None:
                response = await self._http_client.post(
                    f"{GHL_API_BASE}/contacts/", json=body, headers=headers
                )
            else:
                async with httpx.AsyncClient(timeout=GHL_TIMEOUT_SECONDS) as client:
                    response = await client.post(
                        f"{GHL_API_BASE}/contacts/", json=body, headers=headers
                    )
            data = response.json()
        except (httpx.HTTPError, ValueError, TooManyRequestsError) as exc:
            logger.error("ghl_request_failed", error=str(exc))
            return None

        if response.is_success:
            contact_id = (data.get("contact") or {}).get("id")
            logger.info("ghl_contact_created", contact_id=contact_id, tag=lead.tag)
            return contact_id
        duplicate_id = (data.get("meta") or {}).get("contactId")
        if response.status_code == 400 and duplicate_id:
            logger.info("ghl_duplicate_contact", contact_id=duplicate_id)
            return duplicate_id
        logger.error("ghl_api_error", status=response.status_code, body=str(data)[:500])
        return None
