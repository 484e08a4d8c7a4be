"""Telegram Bot API client for the listings channel.

The bot token and channel id are platform settings
(``telegram_bot_token``, ``telegram_channel_id``).  Like the Facebook
client, calls return ``{"success": bool, ...}`` instead of raising.
"""

from __future__ import annotations

from typing import Any, Optional

import httpx
import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from mc_exchange.core.exceptions import TooManyRequestsError
from mc_exchange.core.integrations.marketing import (
    listing_promotion_text,
    load_integration_settings,
    result,
)
from mc_exchange.core.integrations.provider_limiter import ProviderLimiter, get_provider_limiter
from mc_exchange.core.models.listings import Listing

logger = structlog.get_logger(__name__)

TELEGRAM_API_BASE = "https://api.telegram.org"
TELEGRAM_TIMEOUT_SECONDS = 15.0

TELEGRAM_SETTING_KEYS: dict[str, str] = {
    "bot_token": "telegram_bot_token",
    "channel_id": "telegram_channel_id",
}


class TelegramClient:
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
        values = await load_integration_settings(self.session, TELEGRAM_SETTING_KEYS.values())
        return {field: values[key] for field, key in TELEGRAM_SETTING_KEYS.items()}

    async def is_configured(self) -> bool:
        config = await self.get_config()
        return bool(config["bot_token"] and config["channel_id"])

    async def send_message(
        self,
        message: str,
        *,
        parse_mode: str = "HTML",
        disable_web_preview: bool = False,
    ) -> dict[str, Any]:
        """Post *message* to the configured channel."""
        config = await self.get_config()
        if not config["bot_token"] or not config["channel_id"]:
            return result(
                False,
                error="Telegram not configured. Please set bot token and channel ID in settings.",
            )
        payload = {
            "chat_id": config["channel_id"],
            "text": message,
            "parse_mode": parse_mode,
            "disable_web_page_preview": disable_web_preview,
        }
        try:
            await self.limiter.wait_for_slot("telegram")
            data = await self._call(config["bot_token"], "sendMessage", json=payload)
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("telegram_send_failed", error=str(exc))
            return result(False, error=str(exc) or "Failed to connect to Telegram")
        except TooManyRequestsError as exc:
            return result(False, error=exc.message)

        if not data.get("ok"):
            error = data.get("description") or "Failed to send message to Telegram"
            logger.warning("telegram_api_error", error=error)
            return result(False, error=error)
        message_id = (data.get("result") or {}).get("message_id")
        logger.info("telegram_message_sent", message_id=message_id)
        return result(True, message_id=message_id)

    async def send_listing_promotion(
        self,
        listing: Listing,
        custom_message: Optional[str] = None,
        total_inspections: Optional[int] = None,
    ) -> dict[str, Any]:
        extra = [f"🔍 Inspections: {total_inspections}"] if total_inspections is not None else None
        text = listing_promotion_text(
            listing, custom_message=custom_message, html=True, extra_lines=extra
        )
        return await self.send_message(text, parse_mode="HTML")

    async def test_connection(self) -> dict[str, Any]:
        config = await self.get_config()
        if not config["bot_token"]:
            return result(False, error="Bot token not configured")
        try:
            data = await self._call(config["bot_token"], "getMe")
        except (httpx.HTTPError, ValueError) as exc:
            return result(False, error=str(exc) or "Failed to connect to Telegram")
        if not data.get("ok"):
            return result(False, error=data.get("description") or "Invalid bot token")
        return result(True, bot_name=(data.get("result") or {}).get("username"))

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _build_http_client(self) -> httpx.AsyncClient:
        if self._http_client is not None:
            return self._http_client
        return httpx.AsyncClient(timeout=TELEGRAM_TIMEOUT_SECONDS)

    async def _call(self, token: str, method: str, **kwargs: Any) -> dict[str, Any]:
        url = f"{TELEGRAM_API_BASE}/bot{token}/{method}"
        http_method = "POST" if "json" in kwargs else "GET"
        if self._http_client is not None:
            response = await self._http_client.request(http_method, url, **kwargs)
        else:
            async with self._build_http_client() as client:
                response = await client.request(http_method, url, **kwargs)
        return response.json()
