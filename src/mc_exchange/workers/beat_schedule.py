"""Celery Beat periodic task schedule.

All times are UTC (configured in ``celery_app.py``).

Schedule overview:

+-------------------------------+------------------+-----------------------------+
| Task name                     | Schedule         | Purpose                     |
+===============================+==================+=============================+
| process_monthly_renewals      | 00:10 daily      | Top up manual subscriptions |
|                               |                  | whose renewal date passed.  |
+-------------------------------+------------------+-----------------------------+
| process_expired_subscriptions | 00:20 daily      | Move cancelled subscriptions|
|                               |                  | past their end date to      |
|                               |                  | EXPIRED.                    |
+-------------------------------+------------------+-----------------------------+
| cleanup_expired_tokens        | :05 every hour   | Purge expired refresh,      |
|                               |                  | reset and verify tokens.    |
+-------------------------------+------------------+-----------------------------+
| expire_stale_offers           | :35 every hour   | Expire open offers past     |
|                               |                  | their ``expires_at``.       |
+-------------------------------+------------------+-----------------------------+
"""

from __future__ import annotations

from celery.schedules import crontab

#: Applied to ``celery_app.conf.beat_schedule`` in ``celery_app.py``.
beat_schedule: dict[str, dict] = {  # type: ignore[type-arg]
    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------
    "process_monthly_renewals": {
        "task": "mc_exchange.workers.tasks.process_monthly_renewals",
        "schedule": crontab(hour=0, minute=10),
        "options": {"queue": "celery", "expires": 3_600},
    },
    "process_expired_subscriptions": {
        "task": "mc_exchange.workers.tasks.process_expired_subscriptions",
        "schedule": crontab(hour=0, minute=20),
        "options": {"queue": "celery", "expires": 3_600},
    },
    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------
    "cleanup_expired_tokens": {
        "task": "mc_exchange.workers.tasks.cleanup_expired_tokens",
        "schedule": crontab(minute=5),
        "options": {"queue": "celery", "expires": 1_800},
    },
    "expire_stale_offers": {
        "task": "mc_exchange.workers.tasks.expire_stale_offers",
        "schedule": crontab(minute=35),
        "options": {"queue": "celery", "expires": 1_800},
    },
}
