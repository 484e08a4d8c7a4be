"""Periodic maintenance tasks driven by ``workers/beat_schedule.py``.

- ``process_monthly_renewals``: credit top-up for subscriptions that are not
  billed by Stripe.
- ``process_expired_subscriptions``: CANCELLED subscriptions past their end
  date become EXPIRED.
- ``cleanup_expired_tokens``: purge expired refresh tokens and spent
  password-reset and verification tokens.
- ``expire_stale_offers``: open offers past ``expires_at`` become EXPIRED.

All tasks are synchronous Celery tasks that bridge to the async services
via ``asyncio.run()``.  Each one catches every exception at the outermost
level, logs it, records an ``error`` outcome and does NOT re-raise; the
next Beat tick retries naturally.
"""

from __future__ import annotations

import asyncio
from typing import Any

import structlog

from mc_exchange.api.metrics import celery_tasks_total
from mc_exchange.workers._task_helpers import (
    run_expired_subscriptions,
    run_monthly_renewals,
    run_offer_expiry,
    run_token_cleanup,
)
from mc_exchange.workers.celery_app import celery_app

logger = structlog.get_logger(__name__)


def _record(task_name: str, status: str) -> None:
    celery_tasks_total.labels(task_name=task_name, status=status).inc()


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------


@celery_app.task(name="mc_exchange.workers.tasks.process_monthly_renewals")
def process_monthly_renewals() -> dict[str, Any]:
    """Renew manual subscriptions whose renewal date has passed.

    Returns:
        Dict with ``renewed`` count.
    """
    log = logger.bind(task="process_monthly_renewals")
    log.info("process_monthly_renewals: starting")
    try:
        results = asyncio.run(run_monthly_renewals())
    except Exception as exc:
        log.error("process_monthly_renewals: error", error=str(exc), exc_info=True)
        _record("process_monthly_renewals", "error")
        return {"error": str(exc), "renewed": 0}

    summary = {"renewed": len(results)}
    log.info("process_monthly_renewals: complete", **summary)
    _record("process_monthly_renewals", "success")
    return summary


@celery_app.task(name="mc_exchange.workers.tasks.process_expired_subscriptions")
def process_expired_subscriptions() -> dict[str, Any]:
    log = logger.bind(task="process_expired_subscriptions")
    log.info("process_expired_subscriptions: starting")
    try:
        expired = asyncio.run(run_expired_subscriptions())
    except Exception as exc:
        log.error("process_expired_subscriptions: error", error=str(exc), exc_info=True)
        _record("process_expired_subscriptions", "error")
        return {"error": str(exc), "expired": 0}

    log.info("process_expired_subscriptions: complete", expired=expired)
    _record("process_expired_subscriptions", "success")
    return {"expired": expired}


# ---------------------------------------------------------------------------
# Housekeeping
# ---------------------------------------------------------------------------


@celery_app.task(name="mc_exchange.workers.tasks.cleanup_expired_tokens")
def cleanup_expired_tokens() -> dict[str, Any]:
    """Delete expired or spent auth tokens.

    Returns:
        Per-table deletion counts as reported by
        :meth:`~mc_exchange.core.auth_service.AuthService.cleanup_expired_tokens`.
    """
    log = logger.bind(task="cleanup_expired_tokens")
    try:
        counts = asyncio.run(run_token_cleanup())
    except Exception as exc:
        log.error("cleanup_expired_tokens: error", error=str(exc), exc_info=True)
        _record("cleanup_expired_tokens", "error")
        return {"error": str(exc)}

    log.info("cleanup_expired_tokens: complete", **counts)
    _record("cleanup_expired_tokens", "success")
    return counts


@celery_app.task(name="mc_exchange.workers.tasks.expire_stale_offers")
def expire_stale_offers() -> dict[str, Any]:
    log = logger.bind(task="expire_stale_offers")
    try:
        expired = asyncio.run(run_offer_expiry())
    except Exception as exc:
        log.error("expire_stale_offers: error", error=str(exc), exc_info=True)
        _record("expire_stale_offers", "error")
        return {"error": str(exc), "expired": 0}

    if expired:
        log.info("expire_stale_offers: complete", expired=expired)
    _record("expire_stale_offers", "success")
    return {"expired": expired}
