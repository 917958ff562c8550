"""Leaderboard data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from market_pulse.common.types import utcnow


class LeaderboardType(str, Enum):
    PNL = "pnl"
    PNL_PERCENT = "pnl_percent"
    SHARPE_RATIO = "sharpe_ratio"
    WIN_RATE = "win_rate"
    TOTAL_TRADES = "total_trades"
    FOLLOWERS = "followers"
    COPIERS = "copiers"
    REPUTATION = "reputation"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]


_DISPLAY_NAMES = {
    LeaderboardType.PNL: "Top P&L",
    LeaderboardType.PNL_PERCENT: "Top Returns",
    LeaderboardType.SHARPE_RATIO: "Best Risk-Adjusted",
    LeaderboardType.WIN_RATE: "Highest Win Rate",
    LeaderboardType.TOTAL_TRADES: "Most Active",
    LeaderboardType.FOLLOWERS: "Most Followed",
    LeaderboardType.COPIERS: "Most Copied",
    LeaderboardType.REPUTATION: "Top Reputation",
}

# Periods the scheduled run covers
LEADERBOARD_PERIODS = ("daily", "weekly", "monthly", "all_time")


@dataclass
class LeaderboardParticipant:
    """A trader's period statistics, as fetched for ranking."""

    user_id: str
    total_trades: int
    total_pnl: float = 0.0
    total_pnl_percent: float = 0.0
    sharpe_ratio: float = 0.0
    win_rate: float = 0.0
    followers_count: int = 0
    copier_count: int = 0
    reputation_score: float = 0.0


@dataclass
class LeaderboardEntry:
    rank: int
    user_id: str
    value: float
    previous_rank: int | None = None
    change: float | None = None
    change_percent: float | None = None


@dataclass
class LeaderboardSnapshot:
    leaderboard_type: LeaderboardType
    period: str
    period_start: datetime
    entries: list[LeaderboardEntry]
    total_participants: int
    asset_class: str | None = None
    min_qualifying_value: float | None = None
    calculated_at: datetime = field(default_factory=utcnow)

    @property
    def key(self) -> str:
        """Stable identity of the (type, period, asset class, period start) bucket."""
        parts = [self.leaderboard_type.value, self.period, self.asset_class or "all"]
        return "_".join(parts) + f"_{int(self.period_start.timestamp())}"
