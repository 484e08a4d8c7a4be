"""Facebook Graph API client for sharing listings to groups.

**Design notes**:

- The page access token and the two target group ids are platform
  settings (``facebook_access_token``, ``facebook_group{1,2}_id`` and
  ``facebook_group{1,2}_name``).
- Posting never raises.  Each call returns ``{"success": bool, ...}`` so
  the admin UI can show per-group results.
"""

from __future__ import annotations

from typing import Any, Optional

import httpx
import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from mc_exchange.core.exceptions import TooManyRequestsError
from mc_exchange.core.integrations.marketing import (
    listing_promotion_text,
    listing_url,
    load_integration_settings,
    result,
)
from mc_exchange.core.integrations.provider_limiter import ProviderLimiter, get_provider_limiter
from mc_exchange.core.models.listings import Listing

logger = structlog.get_logger(__name__)

GRAPH_API_BASE = "https://graph.facebook.com/v18.0"
FACEBOOK_TIMEOUT_SECONDS = 15.0

# Config field -> platform setting key.
FACEBOOK_SETTING_KEYS: dict[str, str] = {
    "access_token": "facebook_access_token",
    "group1_id": "facebook_group1_id",
    "group1_name": "facebook_group1_name",
    "group2_id": "facebook_group2_id",
    "group2_name": "facebook_group2_name",
}


class FacebookClient:
    """Posts to the configured Facebook groups.

    Args:
        session: Session used to read the platform settings.
        http_client: Optional injected :class:`httpx.AsyncClient`.
        limiter: Provider limiter; ``facebook`` quota.
    """

    def __init__(
        self,
        session: AsyncSession,
        http_client: Optional[httpx.AsyncClient] = None,
        limiter: Optional[ProviderLimiter] = None,
    ) -> None:
        self.session = session
        self._http_client = http_client
        self.limiter = limiter or get_provider_limiter()

    async def get_config(self) -> dict[str, str]:
        values = await load_integration_settings(self.session, FACEBOOK_SETTING_KEYS.values())
        config = {field: values[key] for field, key in FACEBOOK_SETTING_KEYS.items()}
        config["group1_name"] = config["group1_name"] or "Group 1"
        config["group2_name"] = config["group2_name"] or "Group 2"
        return config

    async def status(self) -> dict[str, bool]:
        config = await self.get_config()
        token = bool(config["access_token"])
        return {
            "configured": token,
            "group1": token and bool(config["group1_id"]),
            "group2": token and bool(config["group2_id"]),
        }

    async def post_to_group(
        self,
        group_id: str,
        message: str,
        link: Optional[str] = None,
    ) -> dict[str, Any]:
        config = await self.get_config()
        if not config["access_token"]:
            return result(False, error="Facebook not configured. Please set access token in settings.")
        if not group_id:
            return result(False, error="Group ID is required.")

        form = {"message": message, "access_token": config["access_token"]}
        if link:
            form["link"] = link
        try:
            await self.limiter.wait_for_slot("facebook")
            data = await self._call("POST", f"{GRAPH_API_BASE}/{group_id}/feed", data=form)
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("facebook_post_failed", group_id=group_id, error=str(exc))
            return result(False, error=str(exc) or "Failed to connect to Facebook")
        except TooManyRequestsError as exc:
            return result(False, error=exc.message)

        if "error" in data:
            error = data["error"].get("message") or "Failed to post to Facebook group"
            logger.warning("facebook_api_error", group_id=group_id, error=error)
            return result(False, error=error)
        logger.info("facebook_post_created", group_id=group_id, post_id=data.get("id"))
        return result(True, post_id=data.get("id"))

    async def post_listing(
        self,
        listing: Listing,
        *,
        custom_message: Optional[str] = None,
        post_to_group1: bool = True,
        post_to_group2: bool = False,
    ) -> dict[str, Any]:
        """Share *listing* to the selected groups.

        Returns:
            ``{"success": bool, "results": {"group1": {...}, "group2": {...}}}``;
            success requires every selected group to succeed.
        """
        config = await self.get_config()
        message = listing_promotion_text(listing, custom_message=custom_message)
        url = listing_url(listing)

        results: dict[str, dict[str, Any]] = {}
        if post_to_group1 and config["group1_id"]:
            results["group1"] = await self.post_to_group(config["group1_id"], message, url)
        if post_to_group2 and config["group2_id"]:
            results["group2"] = await self.post_to_group(config["group2_id"], message, url)

        success = all(
            results.get(group, {}).get("success", False)
            for group, selected in (("group1", post_to_group1), ("group2", post_to_group2))
            if selected
        )
        return {"success": success, "results": results}

    async def test_connection(self) -> dict[str, Any]:
        config = await self.get_config()
        if not config["access_token"]:
            return result(False, error="Access token not configured")
        try:
            data = await self._call(
                "GET", f"{GRAPH_API_BASE}/me", params={"access_token": config["access_token"]}
            )
        except (httpx.HTTPError, ValueError) as exc:
            return result(False, error=str(exc) or "Failed to connect to Facebook")
        if "error" in data:
            return result(False, error=data["error"].get("message") or "Invalid access token")
        return result(True, user_name=data.get("name"))

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _build_http_client(self) -> httpx.AsyncClient:
        if self._http_client is not None:
            return self._http_client
        return httpx.AsyncClient(timeout=FACEBOOK_TIMEOUT_SECONDS)

    async def _call(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        if self._http_client is not None:
            response = await self._http_client.request(method, url, **kwargs)
        else:
            async with self._build_http_client() as client:
                response = await client.request(method, url, **kwargs)
        return response.json()
