"""Activity implementations: every side effect a workflow performs.

Workflows reach these through ``ctx.activity_stub(...)``; the runtime wraps
each call with the activity executor (timeouts, heartbeats, retry) and
records its result in the execution history. Methods are therefore free to
be non-deterministic, but their arguments and results must be picklable.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from market_pulse.common.llm import InferenceClient
from market_pulse.config import get_settings
from market_pulse.leaderboard.models import LeaderboardParticipant, LeaderboardSnapshot, LeaderboardType
from market_pulse.notifications.base import Notifier, NullNotifier
from market_pulse.reputation.models import Badge, ReputationScore, TraderMetrics, TraderPeriodStats
from market_pulse.signals import extraction
from market_pulse.signals.formatters import format_telegram_insight, format_telegram_signal
from market_pulse.signals.models import (
    BehaviorClassification,
    CorrelationResult,
    EmailItem,
    MarketSnapshot,
    NewsItem,
    Position,
    SentimentAggregate,
    Signal,
    TraderActivity,
    UserInsight,
)
from market_pulse.store.base import Store

logger = logging.getLogger(__name__)


class Activities:
    """Activity methods bound to one store, inference client and notifier."""

    def __init__(
        self,
        store: Store,
        inference: InferenceClient | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        self.store = store
        self.inference = inference or InferenceClient()
        self.notifier = notifier or NullNotifier()

    # -- market data ---------------------------------------------------

    async def fetch_active_markets(self) -> list[MarketSnapshot]:
        markets = await self.store.fetch_active_markets()
        logger.info("Fetched %d active market(s)", len(markets))
        return markets

    async def fetch_recent_trades(self, since: datetime) -> list[TraderActivity]:
        return await self.store.fetch_trades_since(since)

    async def fetch_price_history(self, ticker: str, since: datetime) -> list[float]:
        return await self.store.fetch_price_history(ticker, since)

    async def fetch_correlation_pairs(self) -> list[tuple[str, str]]:
        pairs = []
        for pair in get_settings().correlation_pairs:
            left, _, right = pair.partition(":")
            pairs.append((left.strip(), right.strip()))
        return pairs

    # -- signals -------------------------------------------------------

    async def store_signal(self, signal: Signal) -> int:
        signal_id = await self.store.store_signal(signal)
        logger.info("Stored %s signal %d: %s", signal.severity.value, signal_id, signal.title)
        return signal_id

    async def expire_old_signals(self, before: datetime) -> int:
        count = await self.store.expire_signals(before)
        if count:
            logger.info("Expired %d signal(s) created before %s", count, before.isoformat())
        return count

    async def fetch_recent_signals(self, since: datetime, markets: list[str] | None = None) -> list[Signal]:
        return await self.store.fetch_signals_since(since, markets)

    async def upsert_correlation(self, result: CorrelationResult, calculated_at: datetime) -> bool:
        return await self.store.upsert_correlation(result, calculated_at)

    # -- inference -----------------------------------------------------

    async def extract_email_signal(self, item: EmailItem) -> Signal | None:
        return await extraction.extract_email_signal(self.inference, item)

    async def extract_news_signal(self, item: NewsItem) -> Signal | None:
        return await extraction.extract_news_signal(self.inference, item)

    async def enrich_anomalies(self, anomalies: list[Signal]) -> list[Signal]:
        return await extraction.enrich_anomalies(self.inference, anomalies)

    async def classify_trader_behavior(self, user_id: str, trades: list[TraderActivity]) -> BehaviorClassification:
        logger.debug("Classifying %d trade(s) for %s", len(trades), user_id)
        return await extraction.classify_trader_behavior(self.inference, trades)

    async def aggregate_sentiment(self, inputs: list[dict[str, Any]]) -> SentimentAggregate:
        return await extraction.aggregate_sentiment(self.inference, inputs)

    async def explain_correlation(self, result: CorrelationResult) -> str:
        return await extraction.explain_correlation(self.inference, result)

    async def generate_daily_insight(
        self,
        user_id: str,
        positions: list[Position],
        recent_signals: list[Signal],
        market_summary: str,
    ) -> UserInsight:
        return await extraction.generate_daily_insight(
            self.inference, user_id, positions, recent_signals, market_summary,
        )

    # -- users ---------------------------------------------------------

    async def fetch_active_users(self) -> list[str]:
        return await self.store.fetch_active_users()

    async def fetch_positions(self, user_id: str) -> list[Position]:
        return await self.store.fetch_positions(user_id)

    async def store_insight(self, insight: UserInsight, created_at: datetime) -> int:
        return await self.store.store_insight(insight, created_at)

    # -- reputation ----------------------------------------------------

    async def fetch_user_trades(self, user_id: str, start: datetime, end: datetime) -> list[TraderActivity]:
        return await self.store.fetch_user_trades(user_id, start, end)

    async def store_period_stats(self, stats: TraderPeriodStats) -> None:
        await self.store.store_period_stats(stats)

    async def fetch_trader_metrics(self, user_id: str) -> TraderMetrics | None:
        return await self.store.fetch_trader_metrics(user_id)

    async def store_reputation(self, score: ReputationScore) -> None:
        await self.store.store_reputation(score)
        logger.info("Reputation for %s: %d (%s)", score.user_id, score.overall_score, score.tier.value)

    async def fetch_badge_types(self, user_id: str) -> list[str]:
        return [b.type for b in await self.store.fetch_badges(user_id)]

    async def award_badge(self, user_id: str, badge: Badge) -> bool:
        awarded = await self.store.award_badge(user_id, badge)
        if awarded:
            logger.info("Awarded %s to %s", badge.type, user_id)
        return awarded

    # -- leaderboards --------------------------------------------------

    async def fetch_leaderboard_participants(
        self, start: datetime, end: datetime, asset_class: str | None, min_trades: int,
    ) -> list[LeaderboardParticipant]:
        return await self.store.fetch_leaderboard_participants(start, end, asset_class, min_trades)

    async def fetch_previous_snapshot(
        self, leaderboard_type: LeaderboardType, period: str, asset_class: str | None,
    ) -> LeaderboardSnapshot | None:
        return await self.store.fetch_latest_snapshot(leaderboard_type, period, asset_class)

    async def store_leaderboard_snapshot(self, snapshot: LeaderboardSnapshot) -> int:
        return await self.store.store_snapshot(snapshot)

    async def append_leaderboard_history(self, snapshot: LeaderboardSnapshot) -> int:
        return await self.store.append_leaderboard_history(snapshot)

    # -- notifications and audit ---------------------------------------

    async def notify_signal(self, user_id: str, signal: Signal) -> bool:
        return await self.notifier.notify(
            user_id, {"title": signal.title, "body": format_telegram_signal(signal)},
        )

    async def notify_insight(self, user_id: str, insight: UserInsight) -> bool:
        return await self.notifier.notify(
            user_id, {"title": insight.title, "body": format_telegram_insight(insight)},
        )

    async def record_audit_log(
        self,
        action: str,
        resource_type: str,
        resource_id: str,
        metadata: dict[str, Any],
        at: datetime,
    ) -> None:
        await self.store.record_audit(action, resource_type, resource_id, metadata, at)
