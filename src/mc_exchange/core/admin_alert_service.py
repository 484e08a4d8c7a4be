"""Email alerts to the platform's admin inbox.

Admins list their addresses in the ``admin_notification_emails`` platform
setting (comma-separated) and switch each alert kind on or off with a
boolean setting:

- ``notify_new_users``
- ``notify_new_inquiries``
- ``notify_new_transactions``
- ``notify_disputes``
- ``notify_consultations``

A toggle that has never been saved counts as enabled.  Alerts are sent
after the triggering change is committed; a failure to read the settings
is logged and never reaches the caller.
"""

from __future__ import annotations

from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from mc_exchange.config.settings import get_settings
from mc_exchange.core.email_service import EmailService, get_email_service
from mc_exchange.core.models.admin import PlatformSetting
from mc_exchange.core.models.consultations import Consultation
from mc_exchange.core.models.transactions import Transaction
from mc_exchange.core.models.users import User

logger = structlog.get_logger(__name__)

ADMIN_EMAILS_KEY = "admin_notification_emails"
NOTIFY_NEW_USERS = "notify_new_users"
NOTIFY_NEW_INQUIRIES = "notify_new_inquiries"
NOTIFY_NEW_TRANSACTIONS = "notify_new_transactions"
NOTIFY_DISPUTES = "notify_disputes"
NOTIFY_CONSULTATIONS = "notify_consultations"

INQUIRY_PREVIEW_LENGTH = 200


def parse_admin_emails(value: str) -> list[str]:
    """Split the comma-separated setting, keeping entries that look like addresses."""
    return [part.strip() for part in value.split(",") if "@" in part.strip()]


def preview(text: str, length: int = INQUIRY_PREVIEW_LENGTH) -> str:
    return text if len(text) <= length else f"{text[:length]}..."


class AdminAlertService:
    """Send platform-event emails to the configured admin addresses.

    Args:
        session: Open async session; only read.
        email: Email sender; defaults to the shared instance.
    """

    def __init__(self, session: AsyncSession, email: Optional[EmailService] = None) -> None:
        self.session = session
        self.email = email or get_email_service()

    async def recipients(self, toggle_key: str) -> list[str]:
        """Admin addresses for an alert kind, or ``[]`` when it is switched off."""
        try:
            rows = await self.session.execute(
                select(PlatformSetting.key, PlatformSetting.value).where(
                    PlatformSetting.key.in_([ADMIN_EMAILS_KEY, toggle_key])
                )
            )
        except SQLAlchemyError:
            logger.exception("admin_alert_settings_unavailable", toggle=toggle_key)
            return []
        found = {key: value for key, value in rows.all()}
        if found.get(toggle_key, "true") != "true":
            return []
        return parse_admin_emails(found.get(ADMIN_EMAILS_KEY) or "")

    async def new_user(self, user: User) -> bool:
        registered = user.created_at or user.member_since
        return await self._send(
            NOTIFY_NEW_USERS,
            subject=f"New {str(user.role).title()} Registration - {user.name}",
            heading="New user registered",
            details={
                "Name": user.name,
                "Email": user.email,
                "Role": str(user.role).title(),
                "Registered": registered.strftime("%Y-%m-%d %H:%M UTC") if registered else "",
            },
            path="/admin/users",
        )

    async def new_inquiry(
        self,
        sender: User,
        content: str,
        listing_info: Optional[str] = None,
    ) -> bool:
        return await self._send(
            NOTIFY_NEW_INQUIRIES,
            subject=f"New Inquiry from {sender.name}",
            heading="New inquiry received",
            details={
                "From": sender.name,
                "Email": sender.email,
                "About": listing_info or "General inquiry",
            },
            body=preview(content),
            path="/admin/messages",
        )

    async def new_transaction(
        self,
        transaction: Transaction,
        *,
        mc_number: str,
        buyer: User,
        seller: User,
    ) -> bool:
        status = str(transaction.status).replace("_", " ")
        return await self._send(
            NOTIFY_NEW_TRANSACTIONS,
            subject=f"New Transaction - MC-{mc_number} ({status})",
            heading="New transaction opened",
            details={
                "Transaction": str(transaction.id),
                "MC Number": f"MC-{mc_number}",
                "Buyer": buyer.name,
                "Seller": seller.name,
                "Amount": f"${float(transaction.agreed_price):,.2f}",
                "Status": status,
            },
            path="/admin/transactions",
        )

    async def dispute(
        self,
        *,
        kind: str,
        user_name: str,
        user_email: str,
        reason: Optional[str] = None,
        reference: Optional[str] = None,
    ) -> bool:
        """Alert on a dispute.

        Args:
            kind: Short label such as ``"Dispute Opened"`` or
                ``"Card Dispute"``.
            user_name: Party the dispute concerns.
            user_email: Their address.
            reason: Free-text reason when one was given.
            reference: Transaction id or Stripe dispute id.
        """
        details = {"Type": kind, "User": user_name, "Email": user_email}
        if reference:
            details["Reference"] = reference
        return await self._send(
            NOTIFY_DISPUTES,
            subject=f"{kind} - {user_name}",
            heading=kind,
            details=details,
            body=reason,
            path="/admin/disputes",
        )

    async def new_consultation(self, consultation: Consultation) -> bool:
        return await self._send(
            NOTIFY_CONSULTATIONS,
            subject=f"New Consultation Request - {consultation.name}",
            heading="New consultation booked",
            details={
                "Name": consultation.name,
                "Email": consultation.email,
                "Phone": consultation.phone,
                "Preferred date": consultation.preferred_date,
                "Preferred time": consultation.preferred_time,
            },
            body=consultation.message or None,
            path="/admin/consultations",
        )

    async def _send(
        self,
        toggle_key: str,
        *,
        subject: str,
        heading: str,
        details: dict[str, str],
        path: str,
        body: Optional[str] = None,
    ) -> bool:
        recipients = await self.recipients(toggle_key)
        if not recipients:
            return False
        sent = await self.email.send_admin_alert(
            recipients,
            subject=subject,
            heading=heading,
            details=details,
            body=body,
            action_url=f"{get_settings().frontend_url}{path}",
        )
        logger.info("admin_alert_sent", alert=toggle_key, recipients=len(recipients), sent=sent)
        return sent
