"""Unit tests for the Celery Beat tasks and their schedule.

Tasks are called directly (synchronously); the async helpers they bridge
to are patched with AsyncMocks, so no broker or database is needed.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from mc_exchange.workers import tasks
from mc_exchange.workers.beat_schedule import beat_schedule

_MODULE = "mc_exchange.workers.tasks"


class TestTasks:
    def test_monthly_renewals_summary(self) -> None:
        with patch(f"{_MODULE}.run_monthly_renewals", AsyncMock(return_value=[{}, {}])):
            assert tasks.process_monthly_renewals() == {"renewed": 2}

    def test_expired_subscriptions(self) -> None:
        with patch(f"{_MODULE}.run_expired_subscriptions", AsyncMock(return_value=1)):
            assert tasks.process_expired_subscriptions() == {"expired": 1}

    def test_token_cleanup_returns_counts(self) -> None:
        counts = {"refresh_tokens": 4}
        with patch(f"{_MODULE}.run_token_cleanup", AsyncMock(return_value=counts)):
            assert tasks.cleanup_expired_tokens() == counts

    def test_offer_expiry(self) -> None:
        with patch(f"{_MODULE}.run_offer_expiry", AsyncMock(return_value=0)):
            assert tasks.expire_stale_offers() == {"expired": 0}

    @pytest.mark.parametrize(
        ("task_name", "helper", "fallback"),
        [
            ("process_monthly_renewals", "run_monthly_renewals", {"renewed": 0}),
            ("process_expired_subscriptions", "run_expired_subscriptions", {"expired": 0}),
            ("cleanup_expired_tokens", "run_token_cleanup", {}),
            ("expire_stale_offers", "run_offer_expiry", {"expired": 0}),
        ],
    )
    def test_errors_are_reported_not_raised(self, task_name: str, helper: str, fallback: dict) -> None:
        failing = AsyncMock(side_effect=RuntimeError("db down"))
        with patch(f"{_MODULE}.{helper}", failing):
            result = getattr(tasks, task_name)()

        assert result == {"error": "db down", **fallback}


class TestBeatSchedule:
    def test_every_entry_points_at_a_registered_task(self) -> None:
        registered = tasks.celery_app.tasks
        for entry in beat_schedule.values():
            assert entry["task"] in registered

    def test_subscription_jobs_run_daily(self) -> None:
        schedule = beat_schedule["process_monthly_renewals"]["schedule"]

        assert schedule.hour == {0}
        assert schedule.minute == {10}
