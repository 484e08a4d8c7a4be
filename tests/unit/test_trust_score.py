"""Unit tests for the trust score formula and account-age helper."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from mc_exchange.core.user_service import calculate_trust_score, months_between


def _score(**overrides) -> int:
    signals = {
        "completed_deals": 0,
        "positive_reviews": 0,
        "negative_reviews": 0,
        "seller_verified": False,
        "account_age_months": 0,
    }
    signals.update(overrides)
    return calculate_trust_score(**signals)


class TestCalculateTrustScore:
    def test_new_account_starts_at_base(self) -> None:
        assert _score() == 50

    def test_signals_are_weighted(self) -> None:
        # 50 + 2*10 + 3*5 - 1*10 + 20 + 4
        assert _score(
            completed_deals=2,
            positive_reviews=3,
            negative_reviews=1,
            seller_verified=True,
            account_age_months=4,
        ) == 99

    @pytest.mark.parametrize(
        ("overrides", "expected"),
        [
            ({"completed_deals": 10}, 100),
            ({"negative_reviews": 9}, 0),
        ],
    )
    def test_score_is_clamped(self, overrides: dict, expected: int) -> None:
        assert _score(**overrides) == expected


class TestMonthsBetween:
    def test_partial_month_is_not_counted(self) -> None:
        start = datetime(2024, 1, 31, tzinfo=UTC)

        assert months_between(start, datetime(2024, 2, 29, tzinfo=UTC)) == 0
        assert months_between(start, datetime(2024, 3, 31, tzinfo=UTC)) == 2

    def test_missing_start(self) -> None:
        assert months_between(None, datetime.now(UTC)) == 0
