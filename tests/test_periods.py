"""Tests for reporting period bounds."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from market_pulse.common.types import EPOCH
from market_pulse.reputation.periods import Period, period_bounds

from conftest import START


def _utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


class TestPeriodBounds:
    def test_daily(self):
        assert period_bounds("daily", START) == (_utc(2026, 3, 4), START)

    def test_weekly_starts_on_sunday(self):
        start, end = period_bounds(Period.WEEKLY, START)
        assert start == _utc(2026, 3, 1)
        assert start.weekday() == 6
        assert end == START

    def test_weekly_on_a_sunday(self):
        sunday = _utc(2026, 3, 1, 9, 30)
        assert period_bounds("weekly", sunday)[0] == _utc(2026, 3, 1)

    def test_weekly_on_a_saturday(self):
        saturday = _utc(2026, 3, 7, 23, 59)
        assert period_bounds("weekly", saturday)[0] == _utc(2026, 3, 1)

    def test_monthly(self):
        assert period_bounds("monthly", START)[0] == _utc(2026, 3, 1)

    @pytest.mark.parametrize(
        "now, expected",
        [
            (_utc(2026, 2, 10), _utc(2026, 1, 1)),
            (_utc(2026, 5, 31), _utc(2026, 4, 1)),
            (_utc(2026, 8, 15), _utc(2026, 7, 1)),
            (_utc(2026, 12, 31, 23), _utc(2026, 10, 1)),
        ],
    )
    def test_quarterly(self, now, expected):
        assert period_bounds("quarterly", now)[0] == expected

    def test_yearly(self):
        assert period_bounds("yearly", START)[0] == _utc(2026, 1, 1)

    def test_all_time(self):
        assert period_bounds("all_time", START)[0] == EPOCH

    def test_naive_time_is_utc(self):
        start, end = period_bounds("daily", datetime(2026, 3, 4, 12, 0))
        assert start == _utc(2026, 3, 4)
        assert end.tzinfo is not None

    def test_unknown_period(self):
        with pytest.raises(ValueError):
            period_bounds("fortnightly", START)
