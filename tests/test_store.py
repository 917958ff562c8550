"""Tests for the SQLite store."""

from __future__ import annotations

from datetime import timedelta

import pytest

from market_pulse.leaderboard.models import LeaderboardEntry, LeaderboardSnapshot, LeaderboardType
from market_pulse.reputation.models import Badge
from market_pulse.signals.models import CorrelationResult, CorrelationStrength, Position

from conftest import START, make_metrics, make_signal, make_trade


class TestMarkets:
    @pytest.mark.asyncio
    async def test_first_tick_has_no_change(self, store):
        await store.record_market_tick("BTC", 100.0, 5000.0, at=START)
        (market,) = await store.fetch_active_markets()
        assert market.previous_price == 100.0
        assert market.previous_volume == 5000.0
        assert market.timestamp == START

    @pytest.mark.asyncio
    async def test_second_tick_keeps_previous(self, store):
        await store.record_market_tick("BTC", 100.0, 5000.0, at=START - timedelta(minutes=5))
        await store.record_market_tick("BTC", 110.0, 9000.0, at=START)
        (market,) = await store.fetch_active_markets()
        assert (market.price, market.previous_price) == (110.0, 100.0)
        assert (market.volume, market.previous_volume) == (9000.0, 5000.0)

    @pytest.mark.asyncio
    async def test_inactive_markets_excluded(self, store):
        await store.record_market_tick("BTC", 100.0, 1.0, at=START)
        await store.record_market_tick("ETH", 50.0, 1.0, at=START)
        await store.set_market_active("ETH", False)
        assert [m.ticker for m in await store.fetch_active_markets()] == ["BTC"]

    @pytest.mark.asyncio
    async def test_price_history_since(self, store):
        for i, price in enumerate([100.0, 101.0, 102.0]):
            await store.record_market_tick("BTC", price, 1.0, at=START - timedelta(hours=2 - i))
        assert await store.fetch_price_history("BTC", START - timedelta(hours=1)) == [101.0, 102.0]


class TestTradesAndPositions:
    @pytest.mark.asyncio
    async def test_trades_window(self, store):
        await store.record_trade(make_trade("alice", order_id="old", executed_at=START - timedelta(hours=2)))
        await store.record_trade(make_trade("alice", order_id="new", executed_at=START - timedelta(minutes=2)))
        await store.record_trade(make_trade("bob", order_id="b1", executed_at=START - timedelta(minutes=1)))

        recent = await store.fetch_trades_since(START - timedelta(minutes=5))
        assert [t.order_id for t in recent] == ["new", "b1"]
        user = await store.fetch_user_trades("alice", START - timedelta(days=1), START)
        assert [t.order_id for t in user] == ["old", "new"]

    @pytest.mark.asyncio
    async def test_zero_quantity_positions_excluded(self, store):
        await store.upsert_position("alice", Position("BTC", 1.0, 50.0))
        await store.upsert_position("alice", Position("ETH", 0.0, 0.0))
        await store.upsert_position("bob", Position("ETH", 0.0, 0.0))

        assert [p.symbol for p in await store.fetch_positions("alice")] == ["BTC"]
        assert await store.fetch_active_users() == ["alice"]


class TestSignals:
    @pytest.mark.asyncio
    async def test_round_trip(self, store):
        signal = make_signal(title="BTC breakout", markets=["BTC", "ETH"])
        signal.action_suggestion = "Tighten stops"
        signal_id = await store.store_signal(signal)
        assert signal_id > 0

        (loaded,) = await store.fetch_signals_since(START - timedelta(hours=1))
        assert loaded.title == "BTC breakout"
        assert loaded.related_markets == ["BTC", "ETH"]
        assert loaded.action_suggestion == "Tighten stops"
        assert loaded.created_at == START

    @pytest.mark.asyncio
    async def test_market_filter(self, store):
        await store.store_signal(make_signal(title="btc", markets=["BTC"]))
        await store.store_signal(make_signal(title="spy", markets=["SPY"]))
        found = await store.fetch_signals_since(START - timedelta(hours=1), ["SPY", "TLT"])
        assert [s.title for s in found] == ["spy"]

    @pytest.mark.asyncio
    async def test_expire(self, store):
        await store.store_signal(make_signal(title="stale", created_at=START - timedelta(hours=30)))
        await store.store_signal(make_signal(title="fresh"))

        assert await store.expire_signals(START - timedelta(hours=24)) == 1
        assert await store.expire_signals(START - timedelta(hours=24)) == 0
        found = await store.fetch_signals_since(START - timedelta(days=2))
        assert [s.title for s in found] == ["fresh"]


class TestCorrelations:
    @pytest.mark.asyncio
    async def test_upsert_reports_new(self, store):
        result = CorrelationResult("BTC", "ETH", 0.91, CorrelationStrength.VERY_STRONG, 24, "Crypto beta")
        assert await store.upsert_correlation(result, START) is True
        result.correlation = 0.5
        result.strength = CorrelationStrength.MODERATE
        assert await store.upsert_correlation(result, START) is False

        stored = await store.fetch_correlation("BTC", "ETH")
        assert stored["correlation"] == 0.5
        assert stored["strength"] == "moderate"
        assert stored["explanation"] == "Crypto beta"

    @pytest.mark.asyncio
    async def test_missing_pair(self, store):
        assert await store.fetch_correlation("BTC", "SPY") is None


class TestReputationStorage:
    @pytest.mark.asyncio
    async def test_metrics_round_trip(self, store):
        await store.upsert_trader_metrics(make_metrics("alice", win_rate=0.6, followers_count=12))
        metrics = await store.fetch_trader_metrics("alice")
        assert metrics.win_rate == 0.6
        assert metrics.followers_count == 12
        assert await store.fetch_trader_metrics("ghost") is None

    @pytest.mark.asyncio
    async def test_badge_awarded_once(self, store):
        badge = Badge(type="top_10", name="Top 10", awarded_at=START)
        assert await store.award_badge("alice", badge) is True
        assert await store.award_badge("alice", badge) is False
        assert [b.type for b in await store.fetch_badges("alice")] == ["top_10"]


class TestLeaderboardStorage:
    @pytest.mark.asyncio
    async def test_participants_aggregated(self, store):
        await store.upsert_trader_metrics(make_metrics("alice", followers_count=7, copier_count=2))
        await store.record_trade(make_trade("alice", order_id="a1", pnl=300.0))
        await store.record_trade(make_trade("alice", order_id="a2", pnl=-100.0))
        await store.record_trade(make_trade("bob", order_id="b1", pnl=50.0))

        participants = await store.fetch_leaderboard_participants(
            START - timedelta(days=1), START, asset_class=None, min_trades=2,
        )
        (alice,) = participants
        assert alice.user_id == "alice"
        assert alice.total_trades == 2
        assert alice.total_pnl == 200.0
        assert alice.total_pnl_percent == pytest.approx(2.0)
        assert alice.win_rate == 0.5
        assert (alice.followers_count, alice.copier_count) == (7, 2)
        assert alice.reputation_score == 0

    @pytest.mark.asyncio
    async def test_participants_window_excludes_end(self, store):
        await store.record_trade(make_trade("alice", order_id="a1", executed_at=START))
        participants = await store.fetch_leaderboard_participants(
            START - timedelta(days=1), START, asset_class=None, min_trades=1,
        )
        assert participants == []

    @pytest.mark.asyncio
    async def test_latest_snapshot_matches_null_asset_class(self, store):
        def snapshot(value, asset_class=None, calculated_at=START):
            return LeaderboardSnapshot(
                leaderboard_type=LeaderboardType.PNL,
                period="weekly",
                period_start=START - timedelta(days=3),
                entries=[LeaderboardEntry(rank=1, user_id="alice", value=value)],
                total_participants=1,
                asset_class=asset_class,
                min_qualifying_value=value,
                calculated_at=calculated_at,
            )

        await store.store_snapshot(snapshot(10.0, calculated_at=START - timedelta(hours=1)))
        await store.store_snapshot(snapshot(20.0))
        await store.store_snapshot(snapshot(99.0, asset_class="crypto"))

        latest = await store.fetch_latest_snapshot(LeaderboardType.PNL, "weekly", None)
        assert latest.entries[0].value == 20.0
        assert latest.asset_class is None
        crypto = await store.fetch_latest_snapshot(LeaderboardType.PNL, "weekly", "crypto")
        assert crypto.entries[0].value == 99.0
        assert await store.fetch_latest_snapshot(LeaderboardType.PNL, "daily", None) is None


class TestAuditLog:
    @pytest.mark.asyncio
    async def test_filter_and_metadata(self, store):
        await store.record_audit("monitor.started", "workflow", "wf-1", {"cycle": 1}, START)
        await store.record_audit("monitor.started", "workflow", "wf-2", {}, START)
        await store.record_audit("monitor.completed", "workflow", "wf-1", {"errors": []}, START)

        records = await store.fetch_audit_log("wf-1")
        assert [r["action"] for r in records] == ["monitor.started", "monitor.completed"]
        assert records[0]["metadata"] == {"cycle": 1}
        assert records[0]["actor"] == "system"
        assert len(await store.fetch_audit_log()) == 3
