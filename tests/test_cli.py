"""Tests for the Typer CLI."""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

from typer.testing import CliRunner

from market_pulse.cli import app
from market_pulse.common.types import utcnow
from market_pulse.store.sqlite import SqliteStore
from market_pulse.workflows.daily_insight import DailyInsightStatus, InsightPhase
from market_pulse.workflows.leaderboard import FullLeaderboardStatus
from market_pulse.workflows.reputation import BatchReputationStatus, ReputationPhase, ReputationStatus

from conftest import make_signal

runner = CliRunner()


def _mock_runtime() -> MagicMock:
    runtime = MagicMock()
    runtime.resume_all = AsyncMock(return_value=[])
    runtime.shutdown = AsyncMock()
    return runtime


def test_help_lists_commands():
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    for command in ("monitor", "extract-emails", "reputation", "leaderboards", "insights", "signals"):
        assert command in result.output


class TestSignalsCommand:
    def test_empty_table(self):
        result = runner.invoke(app, ["signals"])
        assert result.exit_code == 0
        assert "No active signals." in result.output

    def test_json_output(self):
        asyncio.run(SqliteStore().store_signal(make_signal(title="BTC breakout", created_at=utcnow())))
        result = runner.invoke(app, ["signals", "--output", "json"])
        assert result.exit_code == 0
        assert '"title": "BTC breakout"' in result.output

    def test_market_filter(self):
        asyncio.run(SqliteStore().store_signal(make_signal(title="ETH dump", markets=["ETH"], created_at=utcnow())))
        result = runner.invoke(app, ["signals", "--output", "json", "--market", "BTC"])
        assert result.exit_code == 0
        assert "ETH dump" not in result.output


class TestLeaderboardCommand:
    def test_unknown_type_exits(self):
        result = runner.invoke(app, ["leaderboard", "bogus"])
        assert result.exit_code == 1
        assert "Unknown leaderboard type" in result.output

    def test_leaderboards_single_period(self):
        status = FullLeaderboardStatus(period="weekly", status="completed", completed=["pnl", "win_rate"])
        with (
            patch("market_pulse.worker.build_runtime", return_value=_mock_runtime()),
            patch("market_pulse.worker.run_to_completion", AsyncMock(return_value=status)) as mock_run,
        ):
            result = runner.invoke(app, ["leaderboards", "--period", "weekly"])

        assert result.exit_code == 0
        assert "2 completed, 0 failed" in result.output
        assert mock_run.call_args.args[2].period == "weekly"


class TestBatchCommands:
    def test_non_list_file_exits(self, tmp_path):
        path = tmp_path / "emails.json"
        path.write_text(json.dumps({"id": "e1"}))
        result = runner.invoke(app, ["extract-emails", str(path)])
        assert result.exit_code == 1
        assert "JSON array" in result.output

    def test_missing_file_exits(self, tmp_path):
        result = runner.invoke(app, ["extract-news", str(tmp_path / "missing.json")])
        assert result.exit_code == 1


class TestReputationCommand:
    def test_single_user(self):
        status = ReputationStatus(
            user_id="alice",
            status=ReputationPhase.COMPLETED,
            periods_processed=["daily"],
            reputation_score=712,
            tier="gold",
            badges_awarded=["verified_trader"],
        )
        with (
            patch("market_pulse.worker.build_runtime", return_value=_mock_runtime()),
            patch("market_pulse.worker.run_to_completion", AsyncMock(return_value=status)),
        ):
            result = runner.invoke(app, ["reputation", "alice"])

        assert result.exit_code == 0
        assert "alice" in result.output
        assert "712 (gold)" in result.output
        assert "verified_trader" in result.output

    def test_single_user_failure_exits(self):
        with (
            patch("market_pulse.worker.build_runtime", return_value=_mock_runtime()),
            patch("market_pulse.worker.run_to_completion", AsyncMock(side_effect=RuntimeError("no metrics"))),
        ):
            result = runner.invoke(app, ["reputation", "ghost"])
        assert result.exit_code == 1
        assert "no metrics" in result.output

    def test_batch(self):
        status = BatchReputationStatus(
            status="completed", total=2, processed=2, successful=1, failed=1,
            errors=[{"item_id": "bob", "message": "No trader metrics for bob"}],
        )
        with (
            patch("market_pulse.worker.build_runtime", return_value=_mock_runtime()),
            patch("market_pulse.worker.run_to_completion", AsyncMock(return_value=status)),
        ):
            result = runner.invoke(app, ["reputation", "alice", "bob"])

        assert result.exit_code == 0
        assert "1 successful, 1 failed" in result.output
        assert "No trader metrics for bob" in result.output


class TestInsightsCommand:
    def test_runs_once_and_shuts_down(self):
        runtime = _mock_runtime()
        status = DailyInsightStatus(status=InsightPhase.COMPLETED, insights_generated=2, users_processed=2)
        with (
            patch("market_pulse.worker.build_runtime", return_value=runtime),
            patch("market_pulse.worker.run_to_completion", AsyncMock(return_value=status)) as mock_run,
        ):
            result = runner.invoke(app, ["insights"])

        assert result.exit_code == 0
        assert "2 insight(s) for 2 user(s)" in result.output
        workflow_input = mock_run.call_args.args[2]
        assert workflow_input.run_immediately and workflow_input.once
        runtime.shutdown.assert_awaited_once()
