"""Celery application for MC Exchange periodic jobs.

Only Beat-driven maintenance runs here: credit renewals, subscription
expiry, token cleanup and stale-offer expiry (see
:mod:`mc_exchange.workers.tasks`).  Everything runs in UTC so the daily
renewal window lines up with subscription period boundaries.

Start a worker and the scheduler with::

    celery -A mc_exchange.workers.celery_app worker --loglevel=info
    celery -A mc_exchange.workers.celery_app beat --loglevel=info
"""

from __future__ import annotations

import structlog
from celery import Celery
from celery.signals import task_postrun, worker_process_init
from dotenv import load_dotenv

load_dotenv()

from mc_exchange.config.settings import get_settings  # noqa: E402
from mc_exchange.core.logging_config import configure_logging  # noqa: E402
from mc_exchange.workers.beat_schedule import beat_schedule  # noqa: E402

settings = get_settings()
configure_logging(settings.log_level)
logger = structlog.get_logger(__name__)

celery_app = Celery(
    "mc_exchange",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["mc_exchange.workers.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # Renewals write ledger rows; a lost worker must not drop the job.
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    result_expires=3_600,
    task_soft_time_limit=300,
    task_time_limit=360,
    beat_schedule=beat_schedule,
)


def _reset_pool() -> None:
    from mc_exchange.core.database import async_engine  # noqa: PLC0415

    async_engine.sync_engine.dispose(close=False)


@worker_process_init.connect
def _on_worker_start(**_: object) -> None:
    """Drop connections inherited from the parent process after fork."""
    _reset_pool()


@task_postrun.connect
def _on_task_done(task_id: str | None = None, **_: object) -> None:
    """Each task runs in its own ``asyncio.run`` loop; asyncpg connections cannot outlive it."""
    try:
        _reset_pool()
    except Exception:  # noqa: BLE001
        logger.warning("engine_reset_failed", task_id=task_id, exc_info=True)
