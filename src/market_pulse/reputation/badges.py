"""Badge rule table.

Badges are append-only: evaluation only ever returns types the trader does
not hold yet, so re-evaluating unchanged inputs awards nothing.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime

from market_pulse.common.types import utcnow
from market_pulse.reputation.models import Badge, TraderMetrics


@dataclass(frozen=True)
class BadgeRule:
    type: str
    name: str
    check: Callable[[TraderMetrics], bool]


BADGE_RULES: tuple[BadgeRule, ...] = (
    BadgeRule("verified_trader", "Verified Trader", lambda m: m.is_verified),
    BadgeRule("consistent_winner", "Consistent Winner", lambda m: m.win_rate >= 0.6 and m.total_trades >= 100),
    BadgeRule("risk_manager", "Risk Manager", lambda m: m.max_drawdown <= 10 and m.sharpe_ratio >= 1.5),
    BadgeRule("high_volume", "High Volume Trader", lambda m: m.total_trades >= 1000),
    BadgeRule(
        "community_leader", "Community Leader",
        lambda m: m.followers_count >= 1000 and m.positions_shared >= 100,
    ),
    BadgeRule("early_adopter", "Early Adopter", lambda m: m.account_age_days >= 365),
    BadgeRule("profitable_streak", "Profitable Streak", lambda m: m.total_pnl_percent >= 50),
    BadgeRule("low_drawdown", "Low Drawdown Master", lambda m: m.max_drawdown <= 5 and m.total_trades >= 50),
)

# Awarded by leaderboard rank, never by the rule table
RANK_BADGES = {
    "top_10": "Top 10 Trader",
    "top_100": "Top 100 Trader",
}


def evaluate_badges(
    metrics: TraderMetrics,
    existing_types: Iterable[str],
    now: datetime | None = None,
) -> list[Badge]:
    """Return newly earned badges in rule-table order."""
    held = set(existing_types)
    now = now or utcnow()
    return [
        Badge(type=rule.type, name=rule.name, awarded_at=now)
        for rule in BADGE_RULES
        if rule.type not in held and rule.check(metrics)
    ]


def rank_badge(rank: int) -> tuple[str, str] | None:
    """Badge type and name earned by a leaderboard rank, if any."""
    if 1 <= rank <= 10:
        return "top_10", RANK_BADGES["top_10"]
    if 11 <= rank <= 100:
        return "top_100", RANK_BADGES["top_100"]
    return None
