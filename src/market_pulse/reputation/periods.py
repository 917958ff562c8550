"""Reporting periods and their UTC bounds."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum

from market_pulse.common.types import EPOCH


class Period(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"
    ALL_TIME = "all_time"


def period_bounds(period: Period | str, now: datetime) -> tuple[datetime, datetime]:
    """Return the ``[start, end)`` window of ``period`` containing ``now``.

    Weeks start on Sunday. ``end`` is always ``now``.
    """
    period = Period(period)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)

    if period == Period.DAILY:
        start = midnight
    elif period == Period.WEEKLY:
        # Monday=0 ... Sunday=6
        start = midnight - timedelta(days=(midnight.weekday() + 1) % 7)
    elif period == Period.MONTHLY:
        start = midnight.replace(day=1)
    elif period == Period.QUARTERLY:
        first_month = (now.month - 1) // 3 * 3 + 1
        start = midnight.replace(month=first_month, day=1)
    elif period == Period.YEARLY:
        start = midnight.replace(month=1, day=1)
    else:
        start = EPOCH
    return start, now
