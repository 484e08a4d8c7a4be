"""Transactional email over the Resend HTTP API.

Sends:
- welcome and email-verification messages after registration,
- password reset links,
- offer lifecycle messages (received, accepted, declined, countered),
- transaction status updates and payment receipts,
- listing moderation outcomes and account-blocked notices,
- platform-event alerts to the admin addresses kept in platform settings.

Bodies are rendered from the Jinja2 templates in
``mc_exchange/templates/email``.  When ``RESEND_API_KEY`` is not set every
send method no-ops and logs at ``DEBUG``; delivery failures are logged and
swallowed so that email never breaks the calling request.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

import httpx
import structlog
from jinja2 import Environment, FileSystemLoader, select_autoescape

from mc_exchange.config.settings import Settings, get_settings

logger = structlog.get_logger(__name__)
_stdlib_logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"

_TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates" / "email"


def _money(value: Any) -> str:
    return f"${float(value or 0):,.2f}"


@lru_cache(maxsize=1)
def _template_env() -> Environment:
    env = Environment(
        loader=FileSystemLoader(str(_TEMPLATES_DIR)),
        autoescape=select_autoescape(["html"]),
    )
    env.filters["money"] = _money
    return env


class EmailService:
    """Render and send emails through Resend.

    Args:
        settings: Application settings; defaults to the cached singleton.
        http_client: Optional injected :class:`httpx.AsyncClient` for testing.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._http_client = http_client

    def is_configured(self) -> bool:
        return bool(self._settings.resend_api_key)

    def render(self, template: str, **context: Any) -> str:
        """Render ``{template}.html`` with the shared platform context."""
        context.setdefault("app_name", self._settings.app_name)
        context.setdefault("frontend_url", self._settings.frontend_url)
        return _template_env().get_template(f"{template}.html").render(**context)

    # ------------------------------------------------------------------
    # Account emails
    # ------------------------------------------------------------------

    async def send_welcome(self, to: str, *, name: str, role: str) -> bool:
        return await self.send(
            to,
            f"Welcome to {self._settings.app_name}!",
            "welcome",
            name=name,
            role=role.title(),
        )

    async def send_verification(self, to: str, *, name: str, verification_url: str) -> bool:
        return await self.send(
            to,
            "Verify your email address",
            "verify_email",
            name=name,
            verification_url=verification_url,
            expires_in="24 hours",
        )

    async def send_password_reset(self, to: str, *, name: str, reset_url: str) -> bool:
        return await self.send(
            to,
            "Reset your password",
            "password_reset",
            name=name,
            reset_url=reset_url,
            expires_in="1 hour",
        )

    async def send_account_blocked(self, to: str, *, name: str, reason: str) -> bool:
        return await self.send(
            to,
            "Important: Your Account Has Been Blocked - Action Required",
            "account_blocked",
            name=name,
            reason=reason,
        )

    # ------------------------------------------------------------------
    # Marketplace emails
    # ------------------------------------------------------------------

    async def send_offer_received(
        self,
        to: str,
        *,
        seller_name: str,
        buyer_name: str,
        mc_number: str,
        amount: float,
        message: Optional[str] = None,
    ) -> bool:
        return await self.send(
            to,
            f"New offer on your MC listing - {mc_number}",
            "offer_received",
            seller_name=seller_name,
            buyer_name=buyer_name,
            mc_number=mc_number,
            amount=amount,
            message=message,
            action_url=f"{self._settings.frontend_url}/seller/offers",
        )

    async def send_offer_update(
        self,
        to: str,
        *,
        name: str,
        mc_number: str,
        status: str,
        amount: float,
        counter_amount: Optional[float] = None,
        action_url: Optional[str] = None,
    ) -> bool:
        """Tell a buyer their offer was accepted, declined or countered."""
        subjects = {
            "accepted": f"Your offer has been accepted! - {mc_number}",
            "countered": f"Counter offer received - {mc_number}",
        }
        return await self.send(
            to,
            subjects.get(status, f"Update on your offer - {mc_number}"),
            "offer_update",
            name=name,
            mc_number=mc_number,
            status=status,
            amount=amount,
            counter_amount=counter_amount,
            action_url=action_url or f"{self._settings.frontend_url}/buyer/offers",
        )

    async def send_transaction_update(
        self,
        to: str,
        *,
        name: str,
        mc_number: str,
        title: str,
        message: str,
        transaction_id: str,
    ) -> bool:
        return await self.send(
            to,
            f"Transaction Update - {mc_number}",
            "transaction_update",
            name=name,
            mc_number=mc_number,
            title=title,
            message=message,
            action_url=f"{self._settings.frontend_url}/transaction/{transaction_id}",
        )

    async def send_listing_status(
        self,
        to: str,
        *,
        name: str,
        mc_number: str,
        approved: bool,
        reason: Optional[str] = None,
    ) -> bool:
        subject = (
            f"Your listing has been approved! - {mc_number}"
            if approved
            else f"Update on your listing - {mc_number}"
        )
        return await self.send(
            to,
            subject,
            "listing_status",
            name=name,
            mc_number=mc_number,
            approved=approved,
            reason=reason,
        )

    async def send_payment_received(
        self,
        to: str,
        *,
        name: str,
        amount: float,
        description: str,
        credits: Optional[int] = None,
    ) -> bool:
        return await self.send(
            to,
            f"Payment Confirmed - {self._settings.app_name}",
            "payment_received",
            name=name,
            amount=amount,
            description=description,
            credits=credits,
        )

    # ------------------------------------------------------------------
    # Admin alerts
    # ------------------------------------------------------------------

    async def send_admin_alert(
        self,
        recipients: list[str],
        *,
        subject: str,
        heading: str,
        details: dict[str, str],
        action_url: str,
        body: Optional[str] = None,
    ) -> bool:
        """Send one platform-event alert to every admin address.

        Returns ``True`` when at least one delivery succeeded.
        """
        return await self.send_to_many(
            recipients,
            subject,
            "admin_alert",
            heading=heading,
            details=details,
            body=body,
            action_url=action_url,
        )

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def send_to_many(
        self, recipients: list[str], subject: str, template: str, **context: Any
    ) -> bool:
        """Deliver the same email to each recipient separately."""
        results = [await self.send(to, subject, template, **context) for to in recipients]
        return any(results)

    async def send(self, to: str, subject: str, template: str, **context: Any) -> bool:
        """Render *template* and deliver it; returns ``True`` on success."""
        if not self.is_configured():
            _stdlib_logger.debug(
                "email_service: RESEND_API_KEY not configured; skipping %s to %s",
                template,
                to,
            )
            return False

        html = self.render(template, **context)
        settings = self._settings
        payload = {
            "from": f"{settings.email_from_name} <{settings.email_from_address}>",
            "to": [to],
            "subject": subject,
            "html": html,
            "reply_to": settings.email_reply_to,
        }
        headers = {"Authorization": f"Bearer {settings.resend_api_key}"}
        try:
            if self._http_client is not None:
                response = await self._http_client.post(
                    RESEND_API_URL, json=payload, headers=headers
                )
            else:
                async with httpx.AsyncClient(timeout=15.0) as client:
                    response = await client.post(RESEND_API_URL, json=payload, headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            _stdlib_logger.warning(
                "email_service: failed to send %s to %s: %s", template, to, exc
            )
            return False

        logger.info("email_sent", template=template, recipient=to, id=response.json().get("id"))
        return True


@lru_cache(maxsize=1)
def get_email_service() -> EmailService:
    """Return the shared :class:`EmailService` (also usable as a dependency)."""
    return EmailService(settings=get_settings())
