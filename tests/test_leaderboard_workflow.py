"""Tests for the leaderboard workflows."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest

from market_pulse.leaderboard.models import LEADERBOARD_PERIODS, LeaderboardType
from market_pulse.runtime.errors import WorkflowFailedError
from market_pulse.workflows.leaderboard import (
    FullLeaderboardInput,
    FullLeaderboardWorkflow,
    LeaderboardInput,
    LeaderboardPhase,
    LeaderboardWorkflow,
    ScheduledLeaderboardWorkflow,
)

from conftest import START, make_trade


async def _seed_trades(store):
    await store.record_trade(make_trade("u1", order_id="t1", pnl=300.0))
    await store.record_trade(make_trade("u2", order_id="t2", pnl=100.0))
    await store.record_trade(make_trade("u3", order_id="t3", pnl=200.0))


def _pnl_input(**kwargs):
    return LeaderboardInput(LeaderboardType.PNL, "weekly", min_trades=1, **kwargs)


class TestLeaderboard:
    @pytest.mark.asyncio
    async def test_ranks_stores_and_awards(self, make_runtime, store):
        await _seed_trades(store)
        handle = await make_runtime().start(LeaderboardWorkflow, _pnl_input(), workflow_id="lb-pnl")
        status = await handle.result()

        assert status.status == LeaderboardPhase.COMPLETE
        assert status.total_participants == 3
        assert status.entries_count == 3
        assert status.badges_awarded == 3
        assert status.snapshot_id is not None

        snapshot = await store.fetch_latest_snapshot(LeaderboardType.PNL, "weekly", None)
        assert [(e.rank, e.user_id, e.value) for e in snapshot.entries] == [
            (1, "u1", 300.0), (2, "u3", 200.0), (3, "u2", 100.0),
        ]
        assert snapshot.min_qualifying_value == 100.0
        assert snapshot.calculated_at == START
        # Weeks start on Sunday
        assert snapshot.period_start == START.replace(day=1, hour=0)
        assert [b.type for b in await store.fetch_badges("u2")] == ["top_10"]

        actions = [r["action"] for r in await store.fetch_audit_log("lb-pnl")]
        assert actions == ["leaderboard.started", "leaderboard.completed"]

    @pytest.mark.asyncio
    async def test_second_snapshot_diffs_against_first(self, make_runtime, store):
        await _seed_trades(store)
        runtime = make_runtime()
        await (await runtime.start(LeaderboardWorkflow, _pnl_input())).result()

        await store.record_trade(make_trade("u2", order_id="t4", pnl=500.0, executed_at=START - timedelta(minutes=2)))
        status = await (await runtime.start(LeaderboardWorkflow, _pnl_input())).result()

        assert status.badges_awarded == 0
        snapshot = await store.fetch_latest_snapshot(LeaderboardType.PNL, "weekly", None)
        top = snapshot.entries[0]
        assert (top.user_id, top.rank, top.previous_rank) == ("u2", 1, 3)
        assert top.change == 500.0
        assert top.change_percent == pytest.approx(500.0)
        assert snapshot.entries[1].previous_rank == 1

    @pytest.mark.asyncio
    async def test_history_records_percentile(self, make_runtime, store):
        await _seed_trades(store)
        await (await make_runtime().start(LeaderboardWorkflow, _pnl_input())).result()

        (u1,) = await store.fetch_leaderboard_history("u1")
        (u2,) = await store.fetch_leaderboard_history("u2")
        assert u1["rank"] == 1
        assert u1["percentile"] == 100.0
        assert u2["percentile"] == pytest.approx(100 / 3)

    @pytest.mark.asyncio
    async def test_no_participants(self, make_runtime, store):
        status = await (await make_runtime().start(LeaderboardWorkflow, _pnl_input())).result()
        assert status.status == LeaderboardPhase.COMPLETE
        assert status.total_participants == 0
        assert status.snapshot_id is None
        assert await store.fetch_latest_snapshot(LeaderboardType.PNL, "weekly", None) is None

    @pytest.mark.asyncio
    async def test_min_trades_filters(self, make_runtime, store):
        await _seed_trades(store)
        await store.record_trade(make_trade("u3", order_id="t5", pnl=1.0))
        status = await (await make_runtime().start(
            LeaderboardWorkflow, LeaderboardInput(LeaderboardType.TOTAL_TRADES, "weekly", min_trades=2),
        )).result()
        assert status.total_participants == 1

    @pytest.mark.asyncio
    async def test_asset_class_filter(self, make_runtime, store):
        await _seed_trades(store)
        await store.record_trade(make_trade("u4", order_id="s1", pnl=900.0, asset_class="stocks"))
        await (await make_runtime().start(LeaderboardWorkflow, _pnl_input(asset_class="crypto"))).result()

        snapshot = await store.fetch_latest_snapshot(LeaderboardType.PNL, "weekly", "crypto")
        assert [e.user_id for e in snapshot.entries] == ["u1", "u3", "u2"]
        assert await store.fetch_latest_snapshot(LeaderboardType.PNL, "weekly", None) is None

    @pytest.mark.asyncio
    async def test_fetch_failure_fails_workflow(self, make_runtime, store):
        with patch.object(store, "fetch_leaderboard_participants", AsyncMock(side_effect=RuntimeError("db down"))):
            handle = await make_runtime().start(LeaderboardWorkflow, _pnl_input(), workflow_id="lb-fail")
            with pytest.raises(WorkflowFailedError):
                await handle.result()

        assert handle.query("status").status == LeaderboardPhase.FAILED
        records = await store.fetch_audit_log("lb-fail")
        assert records[-1]["action"] == "leaderboard.failed"
        assert records[-1]["metadata"]["errors"] == [{"item_id": "pnl", "message": "db down"}]


class TestFullLeaderboard:
    @pytest.mark.asyncio
    async def test_every_type_built(self, make_runtime, store, monkeypatch):
        monkeypatch.setenv("MARKET_PULSE_LEADERBOARD_MIN_TRADES", "1")
        await _seed_trades(store)
        handle = await make_runtime().start(
            FullLeaderboardWorkflow, FullLeaderboardInput("weekly"), workflow_id="lb-full",
        )
        status = await handle.result()

        assert status.status == "completed"
        assert status.completed == [t.value for t in LeaderboardType]
        assert status.failed == []
        for leaderboard_type in LeaderboardType:
            assert await store.fetch_latest_snapshot(leaderboard_type, "weekly", None) is not None
        child_actions = [r["action"] for r in await store.fetch_audit_log("lb-full/reputation")]
        assert child_actions == ["leaderboard.started", "leaderboard.completed"]

    @pytest.mark.asyncio
    async def test_child_failures_collected(self, make_runtime, store):
        with patch.object(store, "fetch_leaderboard_participants", AsyncMock(side_effect=RuntimeError("db down"))):
            status = await (await make_runtime().start(FullLeaderboardWorkflow, FullLeaderboardInput("daily"))).result()

        assert status.completed == []
        assert status.failed == [t.value for t in LeaderboardType]
        assert "db down" in status.errors[0]["message"]


class TestScheduledLeaderboard:
    @pytest.mark.asyncio
    async def test_all_periods(self, make_runtime, store):
        handle = await make_runtime().start(ScheduledLeaderboardWorkflow, workflow_id="lb-scheduled")
        status = await handle.result()

        assert status.status == "completed"
        assert status.periods_completed == list(LEADERBOARD_PERIODS)
        assert status.errors == []
        records = await store.fetch_audit_log("lb-scheduled")
        assert records[-1]["metadata"]["periods_completed"] == ["daily", "weekly", "monthly", "all_time"]
