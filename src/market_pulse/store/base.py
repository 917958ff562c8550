"""Persistence protocol consumed by the activity layer."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from market_pulse.leaderboard.models import LeaderboardParticipant, LeaderboardSnapshot, LeaderboardType
from market_pulse.reputation.models import Badge, ReputationScore, TraderMetrics, TraderPeriodStats
from market_pulse.signals.models import (
    CorrelationResult,
    MarketSnapshot,
    Position,
    Signal,
    TraderActivity,
    UserInsight,
)


class Store(Protocol):
    """Everything the workflows read and write, as black-box operations."""

    # -- markets -------------------------------------------------------

    async def fetch_active_markets(self) -> list[MarketSnapshot]:
        ...

    async def fetch_price_history(self, ticker: str, since: datetime) -> list[float]:
        """Prices for ``ticker`` recorded at or after ``since``, oldest first."""
        ...

    # -- trades and positions ------------------------------------------

    async def fetch_trades_since(self, since: datetime) -> list[TraderActivity]:
        ...

    async def fetch_user_trades(self, user_id: str, start: datetime, end: datetime) -> list[TraderActivity]:
        ...

    async def fetch_positions(self, user_id: str) -> list[Position]:
        ...

    async def fetch_active_users(self) -> list[str]:
        """Users holding at least one open position."""
        ...

    # -- signals -------------------------------------------------------

    async def store_signal(self, signal: Signal) -> int:
        ...

    async def fetch_signals_since(self, since: datetime, markets: list[str] | None = None) -> list[Signal]:
        """Unexpired signals created at or after ``since``, newest first."""
        ...

    async def expire_signals(self, before: datetime) -> int:
        ...

    async def upsert_correlation(self, result: CorrelationResult, calculated_at: datetime) -> bool:
        """Insert or update the record for a market pair; True when newly created."""
        ...

    async def store_insight(self, insight: UserInsight, created_at: datetime) -> int:
        ...

    # -- reputation ----------------------------------------------------

    async def fetch_trader_metrics(self, user_id: str) -> TraderMetrics | None:
        ...

    async def store_period_stats(self, stats: TraderPeriodStats) -> None:
        ...

    async def store_reputation(self, score: ReputationScore) -> None:
        ...

    async def fetch_badges(self, user_id: str) -> list[Badge]:
        ...

    async def award_badge(self, user_id: str, badge: Badge) -> bool:
        """Append a badge; False (and no write) when the user already holds the type."""
        ...

    # -- leaderboards --------------------------------------------------

    async def fetch_leaderboard_participants(
        self, start: datetime, end: datetime, asset_class: str | None, min_trades: int,
    ) -> list[LeaderboardParticipant]:
        ...

    async def fetch_latest_snapshot(
        self, leaderboard_type: LeaderboardType, period: str, asset_class: str | None,
    ) -> LeaderboardSnapshot | None:
        ...

    async def store_snapshot(self, snapshot: LeaderboardSnapshot) -> int:
        ...

    async def append_leaderboard_history(self, snapshot: LeaderboardSnapshot) -> int:
        ...

    # -- audit ---------------------------------------------------------

    async def record_audit(
        self, action: str, resource_type: str, resource_id: str, metadata: dict[str, Any], at: datetime,
    ) -> None:
        ...
