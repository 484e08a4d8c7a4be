"""Third-party integration routes.

Five routers live here and are mounted separately by
:func:`mc_exchange.api.main.create_app`:

- ``fmcsa_router`` (``/api/fmcsa``): carrier lookups for signed-in users.
- ``creditsafe_router`` (``/api/admin/creditsafe``): company search and
  credit reports, admin only.
- ``facebook_router`` / ``telegram_router`` (``/api/admin/facebook``,
  ``/api/admin/telegram``): marketing channel configuration and listing
  promotion, admin only.
- ``leads_router`` (``/api/admin-services``): the public lead form, pushed
  into GoHighLevel.

FMCSA lookups return ``None`` when the carrier is unknown or the API is
down; those become 404 responses here.  Creditsafe failures surface as 503
from the client itself.
"""

from __future__ import annotations

from typing import Any, Literal, Optional

import structlog
from fastapi import APIRouter, Depends, Query, Request, status

from mc_exchange.api.dependencies import AdminUser, CurrentUser
from mc_exchange.api.limiter import ADMIN_LIMIT, FMCSA_LIMIT, limiter
from mc_exchange.core.admin_service import AdminService, get_admin_service
from mc_exchange.core.exceptions import BadRequestError, NotFoundError
from mc_exchange.core.integrations.creditsafe import get_creditsafe_client
from mc_exchange.core.integrations.facebook import FACEBOOK_SETTING_KEYS, FacebookClient
from mc_exchange.core.integrations.fmcsa import get_fmcsa_client
from mc_exchange.core.integrations.ghl import GHLClient, LeadContact
from mc_exchange.core.integrations.telegram import TELEGRAM_SETTING_KEYS, TelegramClient
from mc_exchange.core.models.enums import SettingType
from mc_exchange.core.schemas.common import camelize, ok
from mc_exchange.core.schemas.misc import (
    CreditsafeLookupRequest,
    FacebookConfigUpdate,
    LeadCreate,
    SocialPostRequest,
    TelegramConfigUpdate,
    TelegramMessageRequest,
)

logger = structlog.get_logger(__name__)

fmcsa_router = APIRouter()
creditsafe_router = APIRouter()
facebook_router = APIRouter()
telegram_router = APIRouter()
leads_router = APIRouter()


def _found(value: Optional[Any], what: str = "Carrier") -> Any:
    if value is None:
        raise NotFoundError(what)
    return value


def _setting_rows(
    keys: dict[str, str], changes: dict[str, Optional[str]]
) -> list[tuple[str, str, SettingType]]:
    rows = [
        (keys[field], value.strip(), SettingType.STRING)
        for field, value in changes.items()
        if value is not None
    ]
    if not rows:
        raise BadRequestError("No fields to update")
    return rows


# ---------------------------------------------------------------------------
# FMCSA
# ---------------------------------------------------------------------------


@fmcsa_router.get("/dot/{dot_number}")
@limiter.limit(FMCSA_LIMIT)
async def carrier_by_dot(request: Request, dot_number: str, user: CurrentUser) -> dict:
    return ok(camelize(_found(await get_fmcsa_client().lookup_by_dot(dot_number))))


@fmcsa_router.get("/mc/{mc_number}")
@limiter.limit(FMCSA_LIMIT)
async def carrier_by_mc(request: Request, mc_number: str, user: CurrentUser) -> dict:
    return ok(camelize(_found(await get_fmcsa_client().lookup_by_mc(mc_number))))


@fmcsa_router.get("/verify/{mc_number}")
@limiter.limit(FMCSA_LIMIT)
async def verify_mc(request: Request, mc_number: str, user: CurrentUser) -> dict:
    """Whether an MC number exists and is allowed to operate."""
    return ok(await get_fmcsa_client().verify_mc(mc_number))


@fmcsa_router.get("/snapshot/{identifier}")
@limiter.limit(FMCSA_LIMIT)
async def carrier_snapshot(
    request: Request,
    identifier: str,
    user: CurrentUser,
    kind: Literal["DOT", "MC"] = Query(default="DOT", alias="type"),
) -> dict:
    snapshot = await get_fmcsa_client().get_carrier_snapshot(identifier, kind)
    _found(snapshot["carrier"])
    return ok(camelize(snapshot))


@fmcsa_router.get("/{dot_number}/authority")
@limiter.limit(FMCSA_LIMIT)
async def authority_history(request: Request, dot_number: str, user: CurrentUser) -> dict:
    return ok(
        camelize(_found(await get_fmcsa_client().get_authority_history(dot_number), "Authority"))
    )


@fmcsa_router.get("/{dot_number}/insurance")
@limiter.limit(FMCSA_LIMIT)
async def insurance_history(request: Request, dot_number: str, user: CurrentUser) -> dict:
    history = _found(await get_fmcsa_client().get_insurance_history(dot_number), "Insurance")
    return ok([camelize(item) for item in history])


@fmcsa_router.get("/{dot_number}/sms")
@limiter.limit(FMCSA_LIMIT)
async def safety_data(request: Request, dot_number: str, user: CurrentUser) -> dict:
    """BASIC percentiles with inspection, out-of-service and crash totals."""
    return ok(camelize(_found(await get_fmcsa_client().get_sms_data(dot_number), "Safety data")))


# ---------------------------------------------------------------------------
# Creditsafe
# ---------------------------------------------------------------------------


@creditsafe_router.get("/status")
async def creditsafe_status(admin: AdminUser) -> dict:
    return ok(await get_creditsafe_client().health_check())


@creditsafe_router.post("/lookup")
@limiter.limit(ADMIN_LIMIT)
async def creditsafe_lookup(
    request: Request, body: CreditsafeLookupRequest, admin: AdminUser
) -> dict:
    if not body.name and not body.reg_no:
        raise BadRequestError("Company name or registration number is required")
    result = await get_creditsafe_client().lookup_company(
        country=body.country.upper(),
        name=body.name,
        reg_no=body.reg_no,
        state=body.state,
        city=body.city,
    )
    return ok(camelize(result))


@creditsafe_router.get("/companies")
@limiter.limit(ADMIN_LIMIT)
async def creditsafe_search(
    request: Request,
    admin: AdminUser,
    countries: str = Query(default="US"),
    name: Optional[str] = Query(default=None),
    reg_no: Optional[str] = Query(default=None, alias="regNo"),
    state: Optional[str] = Query(default=None),
    city: Optional[str] = Query(default=None),
    page: Optional[int] = Query(default=None, ge=1),
    page_size: Optional[int] = Query(default=None, ge=1, le=100, alias="pageSize"),
) -> dict:
    result = await get_creditsafe_client().search_companies(
        countries=countries,
        name=name,
        reg_no=reg_no,
        state=state,
        city=city,
        page=page,
        page_size=page_size,
    )
    return ok(result)


@creditsafe_router.get("/companies/{connect_id}")
@limiter.limit(ADMIN_LIMIT)
async def creditsafe_report(request: Request, connect_id: str, admin: AdminUser) -> dict:
    """Full credit report plus the condensed risk summary."""
    return ok(await get_creditsafe_client().get_company_assessment(connect_id))


# ---------------------------------------------------------------------------
# Facebook
# ---------------------------------------------------------------------------


@facebook_router.get("/config")
async def facebook_config(
    admin: AdminUser, service: AdminService = Depends(get_admin_service)
) -> dict:
    client = FacebookClient(service.session)
    config = await client.get_config()
    return ok(
        {
            "hasAccessToken": bool(config.pop("access_token")),
            **camelize(config),
            "status": await client.status(),
        }
    )


@facebook_router.put("/config")
async def update_facebook_config(
    body: FacebookConfigUpdate,
    admin: AdminUser,
    service: AdminService = Depends(get_admin_service),
) -> dict:
    rows = _setting_rows(FACEBOOK_SETTING_KEYS, body.model_dump(exclude_unset=True))
    await service.update_settings(admin.id, rows)
    status_info = await FacebookClient(service.session).status()
    return ok(status_info, message="Facebook settings updated")


@facebook_router.post("/test")
async def test_facebook(
    admin: AdminUser, service: AdminService = Depends(get_admin_service)
) -> dict:
    return ok(camelize(await FacebookClient(service.session).test_connection()))


@facebook_router.post("/post-listing")
@limiter.limit(ADMIN_LIMIT)
async def post_listing_to_facebook(
    request: Request,
    body: SocialPostRequest,
    admin: AdminUser,
    service: AdminService = Depends(get_admin_service),
) -> dict:
    listing = await service.get_listing(body.listing_id)
    result = await FacebookClient(service.session).post_listing(
        listing,
        custom_message=body.custom_message,
        post_to_group1=body.group in ("group1", "both"),
        post_to_group2=body.group in ("group2", "both"),
    )
    logger.info(
        "facebook_listing_shared",
        listing_id=str(listing.id),
        group=body.group,
        success=result["success"],
    )
    message = "Listing posted to Facebook" if result["success"] else "Facebook post failed"
    return ok(camelize(result), message=message)


# ---------------------------------------------------------------------------
# Telegram
# ---------------------------------------------------------------------------


@telegram_router.get("/config")
async def telegram_config(
    admin: AdminUser, service: AdminService = Depends(get_admin_service)
) -> dict:
    config = await TelegramClient(service.session).get_config()
    return ok(
        {
            "hasBotToken": bool(config["bot_token"]),
            "channelId": config["channel_id"],
            "configured": bool(config["bot_token"] and config["channel_id"]),
        }
    )


@telegram_router.put("/config")
async def update_telegram_config(
    body: TelegramConfigUpdate,
    admin: AdminUser,
    service: AdminService = Depends(get_admin_service),
) -> dict:
    rows = _setting_rows(TELEGRAM_SETTING_KEYS, body.model_dump(exclude_unset=True))
    await service.update_settings(admin.id, rows)
    configured = await TelegramClient(service.session).is_configured()
    return ok({"configured": configured}, message="Telegram settings updated")


@telegram_router.post("/test")
async def test_telegram(
    admin: AdminUser, service: AdminService = Depends(get_admin_service)
) -> dict:
    return ok(camelize(await TelegramClient(service.session).test_connection()))


@telegram_router.post("/send")
@limiter.limit(ADMIN_LIMIT)
async def send_telegram_message(
    request: Request,
    body: TelegramMessageRequest,
    admin: AdminUser,
    service: AdminService = Depends(get_admin_service),
) -> dict:
    result = await TelegramClient(service.session).send_message(body.message)
    return ok(camelize(result))


@telegram_router.post("/post-listing")
@limiter.limit(ADMIN_LIMIT)
async def post_listing_to_telegram(
    request: Request,
    body: SocialPostRequest,
    admin: AdminUser,
    service: AdminService = Depends(get_admin_service),
) -> dict:
    listing = await service.get_listing(body.listing_id)
    result = await TelegramClient(service.session).send_listing_promotion(
        listing, custom_message=body.custom_message
    )
    message = "Listing posted to Telegram" if result["success"] else "Telegram post failed"
    return ok(camelize(result), message=message)


# ---------------------------------------------------------------------------
# Leads
# ---------------------------------------------------------------------------


@leads_router.post("/leads", status_code=status.HTTP_201_CREATED)
@limiter.limit("10 per hour")
async def submit_lead(
    request: Request,
    body: LeadCreate,
    service: AdminService = Depends(get_admin_service),
) -> dict:
    """Public lead form.

    The lead is accepted even when GoHighLevel is unreachable or not
    configured; ``contactId`` is then ``None`` and the failure is logged by
    the client.
    """
    contact_id = await GHLClient(service.session).create_contact(
        LeadContact(
            name=body.name,
            email=str(body.email),
            phone=body.phone,
            company=body.company,
            fleet_size=body.fleet_size,
            service_type=body.service_type,
            message=body.message,
        )
    )
    logger.info("lead_submitted", contact_created=contact_id is not None)
    return ok({"contactId": contact_id}, message="Thank you! We will be in touch shortly.")

