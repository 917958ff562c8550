"""Cyclic market monitoring: anomalies, trader behavior, signal expiry.

One execution is one cycle. After the cycle the workflow sleeps for the
monitor interval and continues as new carrying only the cycle counter, so its
history never grows past a single cycle. A failing cycle is audited and the
next one is still scheduled.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from market_pulse.runtime.activity import INFERENCE_ACTIVITY, STANDARD_ACTIVITY
from market_pulse.runtime.context import WorkflowContext
from market_pulse.runtime.errors import ActivityError, NonDeterminismError
from market_pulse.runtime.workflow import Workflow, query
from market_pulse.signals.anomaly import detect_market_anomalies
from market_pulse.signals.models import BehaviorClassification, Severity, Signal, SignalType, TraderActivity
from market_pulse.workflows.common import error_entry, try_audit

logger = logging.getLogger(__name__)

RESOURCE = "market_monitor"

MONITOR_SETTINGS = (
    "monitor_interval_seconds",
    "trade_window_minutes",
    "signal_expiry_hours",
    "behavior_min_trades",
    "behavior_confidence_threshold",
)


class MonitorPhase(str, Enum):
    MONITORING = "monitoring"
    ANALYZING = "analyzing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class MonitorInput:
    cycle_count: int = 0
    interval_seconds: float | None = None
    enrich_anomalies: bool = True
    # Stop after this many cycles instead of running forever
    max_cycles: int | None = None


@dataclass
class MonitorStatus:
    cycle_id: str = ""
    cycle_count: int = 0
    status: MonitorPhase = MonitorPhase.MONITORING
    markets_analyzed: int = 0
    signals_generated: int = 0
    anomalies_detected: int = 0
    behaviors_flagged: int = 0
    cancelled: bool = False
    errors: list[dict[str, str]] = field(default_factory=list)


def behavior_signal(
    user_id: str, trades: list[TraderActivity], behavior: BehaviorClassification, detected_at: datetime,
) -> Signal:
    return Signal(
        type=SignalType.UNUSUAL_ACTIVITY,
        source="behavior_analysis",
        source_id=user_id,
        title=f"High-Risk Trading Pattern: {behavior.classification}",
        description=behavior.insights or f"Trader {user_id} shows a high-risk {behavior.classification} pattern",
        confidence=behavior.confidence,
        severity=Severity.HIGH,
        related_markets=sorted({t.symbol for t in trades}),
        time_horizon="short_term",
        confidence_factors=list(behavior.patterns),
        raw_data={"user_id": user_id, "trade_count": len(trades), "risk_level": behavior.risk_level},
        created_at=detected_at,
    )


class MarketMonitorWorkflow(Workflow):
    def __init__(self) -> None:
        super().__init__()
        self.state = MonitorStatus()

    @query("status")
    def status(self) -> MonitorStatus:
        return self.state

    async def run(self, ctx: WorkflowContext, input: MonitorInput | None) -> MonitorStatus:
        input = input or MonitorInput()
        settings = await ctx.settings(*MONITOR_SETTINGS)
        self.state.cycle_count = input.cycle_count + 1
        self.state.cycle_id = await ctx.new_id("cycle")
        started = await ctx.now()
        await try_audit(ctx, "market_monitor.cycle_started", RESOURCE, {"cycle": self.state.cycle_count})

        try:
            await self._cycle(ctx, input, settings, started)
        except NonDeterminismError:
            raise
        except Exception as exc:
            logger.error("%s: cycle %d failed: %s", ctx.workflow_id, self.state.cycle_count, exc)
            self.state.status = MonitorPhase.FAILED
            self.state.errors.append(error_entry(self.state.cycle_id, exc))
            await try_audit(
                ctx, "market_monitor.cycle_failed", RESOURCE,
                {"cycle": self.state.cycle_count, "errors": list(self.state.errors)},
            )
        else:
            self.state.status = MonitorPhase.COMPLETED
            await try_audit(
                ctx, "market_monitor.cycle_completed", RESOURCE,
                {
                    "cycle": self.state.cycle_count,
                    "markets_analyzed": self.state.markets_analyzed,
                    "signals_generated": self.state.signals_generated,
                    "anomalies_detected": self.state.anomalies_detected,
                    "behaviors_flagged": self.state.behaviors_flagged,
                    "errors": list(self.state.errors),
                },
            )

        if self.state.cancelled:
            return self.state
        if input.max_cycles is not None and self.state.cycle_count >= input.max_cycles:
            return self.state

        await ctx.sleep(input.interval_seconds or settings["monitor_interval_seconds"])
        await ctx.checkpoint()
        if self.cancel_requested:
            self.state.cancelled = True
            return self.state
        ctx.continue_as_new(
            MonitorInput(
                cycle_count=self.state.cycle_count,
                interval_seconds=input.interval_seconds,
                enrich_anomalies=input.enrich_anomalies,
                max_cycles=input.max_cycles,
            )
        )

    async def _cycle(
        self, ctx: WorkflowContext, input: MonitorInput, settings: dict[str, Any], started: datetime,
    ) -> None:
        acts = ctx.activity_stub(STANDARD_ACTIVITY)
        ai = ctx.activity_stub(INFERENCE_ACTIVITY)

        self.state.status = MonitorPhase.MONITORING
        markets = await acts.fetch_active_markets()
        trades = await acts.fetch_recent_trades(started - timedelta(minutes=settings["trade_window_minutes"]))

        self.state.status = MonitorPhase.ANALYZING
        anomalies: list[Signal] = []
        for market in markets:
            await ctx.checkpoint()
            if self.cancel_requested:
                self.state.cancelled = True
                break
            anomalies.extend(detect_market_anomalies(market, started))
            self.state.markets_analyzed += 1
        self.state.anomalies_detected = len(anomalies)

        if anomalies and input.enrich_anomalies:
            try:
                anomalies = await ai.enrich_anomalies(anomalies)
            except ActivityError as exc:
                self.state.errors.append(error_entry("anomaly_enrichment", exc))

        for anomaly in anomalies:
            await acts.store_signal(anomaly)
            self.state.signals_generated += 1

        by_trader: dict[str, list[TraderActivity]] = defaultdict(list)
        for trade in trades:
            by_trader[trade.user_id].append(trade)

        for user_id in sorted(by_trader):
            if self.state.cancelled:
                break
            await ctx.checkpoint()
            if self.cancel_requested:
                self.state.cancelled = True
                break
            user_trades = by_trader[user_id]
            if len(user_trades) < settings["behavior_min_trades"]:
                continue
            try:
                behavior = await ai.classify_trader_behavior(user_id, user_trades)
            except ActivityError as exc:
                self.state.errors.append(error_entry(user_id, exc))
                continue
            if behavior.risk_level == "high" and behavior.confidence > settings["behavior_confidence_threshold"]:
                await acts.store_signal(behavior_signal(user_id, user_trades, behavior, started))
                self.state.behaviors_flagged += 1
                self.state.signals_generated += 1

        await acts.expire_old_signals(started - timedelta(hours=settings["signal_expiry_hours"]))
