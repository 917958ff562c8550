"""Daily insights: market-pair correlations and per-user portfolio narratives.

Each execution waits for the next occurrence of the configured UTC hour,
runs once, then continues as new. Failures are collected per pair and per
user; even a failed run schedules the next day.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from market_pulse.runtime.activity import INFERENCE_ACTIVITY, STANDARD_ACTIVITY
from market_pulse.runtime.context import WorkflowContext
from market_pulse.runtime.errors import ActivityError, NonDeterminismError
from market_pulse.runtime.workflow import Workflow, query
from market_pulse.signals.correlation import correlate
from market_pulse.signals.extraction import fallback_explanation
from market_pulse.signals.models import (
    CorrelationResult,
    CorrelationStrength,
    Position,
    Severity,
    Signal,
    SignalType,
)
from market_pulse.workflows.common import error_entry, try_audit

logger = logging.getLogger(__name__)

RESOURCE = "daily_insight"

INSIGHT_SETTINGS = ("insight_hour_utc", "correlation_history_hours", "recent_signal_hours")

# Recent signals passed to each insight request
MAX_SIGNALS_PER_INSIGHT = 10


def next_run_at(now: datetime, hour: int) -> datetime:
    """The next instant strictly after ``now`` whose UTC hour is ``hour``, on the hour."""
    target = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return target


def portfolio_summary(positions: list[Position], signals: list[Signal]) -> str:
    total_pnl = sum(p.pnl for p in positions)
    lines = [f"{len(positions)} open position(s), total P&L ${total_pnl:,.2f}."]
    if positions:
        best = max(positions, key=lambda p: p.pnl)
        worst = min(positions, key=lambda p: p.pnl)
        lines.append(f"Best: {best.symbol} (${best.pnl:,.2f}). Worst: {worst.symbol} (${worst.pnl:,.2f}).")
    urgent = sum(1 for s in signals if s.severity.is_urgent)
    lines.append(f"{len(signals)} recent signal(s) on held markets, {urgent} high or critical.")
    return " ".join(lines)


def correlation_signal(result: CorrelationResult, detected_at: datetime) -> Signal:
    label = result.strength.value.replace("_", " ")
    return Signal(
        type=SignalType.CORRELATION,
        source="correlation_engine",
        title=f"{label.title()} correlation: {result.market_a} / {result.market_b}",
        description=result.explanation or fallback_explanation(result),
        confidence=abs(result.correlation),
        severity=Severity.MEDIUM,
        related_markets=[result.market_a, result.market_b],
        time_horizon="short_term",
        raw_data={"correlation": result.correlation, "sample_size": result.sample_size},
        created_at=detected_at,
    )


class InsightPhase(str, Enum):
    WAITING = "waiting"
    CORRELATING = "correlating"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class DailyInsightInput:
    run_immediately: bool = False
    # Run a single day and return instead of continuing as new
    once: bool = False
    days_completed: int = 0


@dataclass
class DailyInsightStatus:
    status: InsightPhase = InsightPhase.WAITING
    next_run_at: datetime | None = None
    days_completed: int = 0
    correlations_computed: int = 0
    correlation_signals: int = 0
    users_processed: int = 0
    insights_generated: int = 0
    notifications_sent: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)


class DailyInsightWorkflow(Workflow):
    def __init__(self) -> None:
        super().__init__()
        self.state = DailyInsightStatus()

    @query("status")
    def status(self) -> DailyInsightStatus:
        return self.state

    async def run(self, ctx: WorkflowContext, input: DailyInsightInput | None) -> DailyInsightStatus:
        input = input or DailyInsightInput()
        settings = await ctx.settings(*INSIGHT_SETTINGS)
        self.state.days_completed = input.days_completed

        if not input.run_immediately:
            now = await ctx.now()
            self.state.next_run_at = next_run_at(now, settings["insight_hour_utc"])
            logger.info("%s: next run at %s", ctx.workflow_id, self.state.next_run_at.isoformat())
            await ctx.sleep_until(self.state.next_run_at)
            await ctx.checkpoint()
            if self.cancel_requested:
                return self.state

        started = await ctx.now()
        await try_audit(ctx, "daily_insight.started", RESOURCE, {"day": input.days_completed + 1})
        try:
            self.state.status = InsightPhase.CORRELATING
            await self._correlate(ctx, settings, started)
            self.state.status = InsightPhase.GENERATING
            await self._generate(ctx, settings, started)
        except NonDeterminismError:
            raise
        except Exception as exc:
            logger.error("%s: daily run failed: %s", ctx.workflow_id, exc)
            self.state.status = InsightPhase.FAILED
            self.state.errors.append(error_entry("daily_run", exc))
            await try_audit(ctx, "daily_insight.failed", RESOURCE, {"errors": list(self.state.errors)})
        else:
            self.state.status = InsightPhase.COMPLETED
            await try_audit(
                ctx, "daily_insight.completed", RESOURCE,
                {
                    "correlations_computed": self.state.correlations_computed,
                    "correlation_signals": self.state.correlation_signals,
                    "users_processed": self.state.users_processed,
                    "insights_generated": self.state.insights_generated,
                    "notifications_sent": self.state.notifications_sent,
                    "errors": list(self.state.errors),
                },
            )
        self.state.days_completed += 1

        if input.once or self.cancel_requested:
            return self.state
        ctx.continue_as_new(DailyInsightInput(days_completed=self.state.days_completed))

    async def _correlate(self, ctx: WorkflowContext, settings: dict[str, Any], started: datetime) -> None:
        acts = ctx.activity_stub(STANDARD_ACTIVITY)
        ai = ctx.activity_stub(INFERENCE_ACTIVITY)
        since = started - timedelta(hours=settings["correlation_history_hours"])

        for market_a, market_b in await acts.fetch_correlation_pairs():
            await ctx.checkpoint()
            if self.cancel_requested:
                return
            try:
                series_a = await acts.fetch_price_history(market_a, since)
                series_b = await acts.fetch_price_history(market_b, since)
                result = correlate(series_a, series_b, market_a, market_b)
                if result.strength != CorrelationStrength.WEAK:
                    try:
                        result.explanation = await ai.explain_correlation(result)
                    except ActivityError:
                        result.explanation = fallback_explanation(result)
                await acts.upsert_correlation(result, started)
                self.state.correlations_computed += 1
                if result.strength in (CorrelationStrength.STRONG, CorrelationStrength.VERY_STRONG):
                    await acts.store_signal(correlation_signal(result, started))
                    self.state.correlation_signals += 1
            except ActivityError as exc:
                self.state.errors.append(error_entry(f"{market_a}:{market_b}", exc))

    async def _generate(self, ctx: WorkflowContext, settings: dict[str, Any], started: datetime) -> None:
        acts = ctx.activity_stub(STANDARD_ACTIVITY)
        ai = ctx.activity_stub(INFERENCE_ACTIVITY)
        signals_since = started - timedelta(hours=settings["recent_signal_hours"])

        for user_id in await acts.fetch_active_users():
            await ctx.checkpoint()
            if self.cancel_requested:
                return
            try:
                positions = await acts.fetch_positions(user_id)
                if not positions:
                    continue
                self.state.users_processed += 1
                signals = await acts.fetch_recent_signals(signals_since, [p.symbol for p in positions])
                signals = signals[:MAX_SIGNALS_PER_INSIGHT]
                insight = await ai.generate_daily_insight(
                    user_id, positions, signals, portfolio_summary(positions, signals),
                )
                await acts.store_insight(insight, started)
                self.state.insights_generated += 1
                if insight.should_notify and await acts.notify_insight(user_id, insight):
                    self.state.notifications_sent += 1
            except ActivityError as exc:
                self.state.errors.append(error_entry(user_id, exc))
