"""Trader reputation: per-period stats, reputation score, badge awards."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

from market_pulse.reputation.badges import evaluate_badges
from market_pulse.reputation.periods import Period, period_bounds
from market_pulse.reputation.scoring import compute_reputation
from market_pulse.reputation.stats import compute_period_stats
from market_pulse.runtime.activity import STANDARD_ACTIVITY
from market_pulse.runtime.context import WorkflowContext
from market_pulse.runtime.errors import NonDeterminismError, WorkflowError, WorkflowFailedError
from market_pulse.runtime.workflow import Workflow, query
from market_pulse.workflows.common import audit, error_entry, try_audit

logger = logging.getLogger(__name__)

RESOURCE = "trader_reputation"


class ReputationPhase(str, Enum):
    CALCULATING_STATS = "calculating_stats"
    CALCULATING_REPUTATION = "calculating_reputation"
    EVALUATING_BADGES = "evaluating_badges"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class ReputationInput:
    user_id: str
    periods: list[str] = field(default_factory=lambda: [p.value for p in Period])
    min_trades: int | None = None


@dataclass
class ReputationStatus:
    user_id: str = ""
    status: ReputationPhase = ReputationPhase.CALCULATING_STATS
    periods_processed: list[str] = field(default_factory=list)
    periods_skipped: list[str] = field(default_factory=list)
    reputation_score: int | None = None
    tier: str | None = None
    badges_awarded: list[str] = field(default_factory=list)
    errors: list[dict[str, str]] = field(default_factory=list)


class TraderReputationWorkflow(Workflow):
    def __init__(self) -> None:
        super().__init__()
        self.state = ReputationStatus()

    @query("status")
    def status(self) -> ReputationStatus:
        return self.state

    async def run(self, ctx: WorkflowContext, input: ReputationInput) -> ReputationStatus:
        self.state.user_id = input.user_id
        await audit(ctx, "trader_reputation.started", RESOURCE, {"user_id": input.user_id, "periods": input.periods})
        try:
            await self._calculate(ctx, input)
        except NonDeterminismError:
            raise
        except Exception as exc:
            phase_reached = self.state.status.value
            self.state.status = ReputationPhase.FAILED
            self.state.errors.append(error_entry(input.user_id, exc))
            await try_audit(
                ctx, "trader_reputation.failed", RESOURCE,
                {"user_id": input.user_id, "phase_reached": phase_reached, "errors": list(self.state.errors)},
            )
            raise

        self.state.status = ReputationPhase.COMPLETED
        await audit(
            ctx, "trader_reputation.completed", RESOURCE,
            {
                "user_id": input.user_id,
                "periods_processed": self.state.periods_processed,
                "periods_skipped": self.state.periods_skipped,
                "reputation_score": self.state.reputation_score,
                "tier": self.state.tier,
                "badges_awarded": self.state.badges_awarded,
            },
        )
        return self.state

    async def _calculate(self, ctx: WorkflowContext, input: ReputationInput) -> None:
        acts = ctx.activity_stub(STANDARD_ACTIVITY)
        settings = await ctx.settings("reputation_min_trades")
        min_trades = input.min_trades or settings["reputation_min_trades"]
        now = await ctx.now()

        self.state.status = ReputationPhase.CALCULATING_STATS
        for period in input.periods:
            await ctx.checkpoint()
            if self.cancel_requested:
                break
            start, end = period_bounds(period, now)
            trades = await acts.fetch_user_trades(input.user_id, start, end)
            if len(trades) < min_trades:
                logger.debug("%s: %s has %d trade(s), skipping", input.user_id, period, len(trades))
                self.state.periods_skipped.append(period)
                continue
            stats = compute_period_stats(input.user_id, Period(period).value, start, end, trades)
            await acts.store_period_stats(stats)
            self.state.periods_processed.append(period)

        self.state.status = ReputationPhase.CALCULATING_REPUTATION
        metrics = await acts.fetch_trader_metrics(input.user_id)
        if metrics is None:
            raise WorkflowError(f"No trader metrics for {input.user_id}")
        score = compute_reputation(metrics, now)
        await acts.store_reputation(score)
        self.state.reputation_score = score.overall_score
        self.state.tier = score.tier.value

        self.state.status = ReputationPhase.EVALUATING_BADGES
        existing = await acts.fetch_badge_types(input.user_id)
        for badge in evaluate_badges(metrics, existing, now):
            if await acts.award_badge(input.user_id, badge):
                self.state.badges_awarded.append(badge.type)


@dataclass
class BatchReputationInput:
    user_ids: list[str]
    periods: list[str] | None = None


@dataclass
class BatchReputationStatus:
    status: str = "running"
    total: int = 0
    processed: int = 0
    successful: int = 0
    failed: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)


class BatchReputationWorkflow(Workflow):
    """Runs ``TraderReputationWorkflow`` as a child for each user id in turn."""

    def __init__(self) -> None:
        super().__init__()
        self.state = BatchReputationStatus()

    @query("status")
    def status(self) -> BatchReputationStatus:
        return self.state

    async def run(self, ctx: WorkflowContext, input: BatchReputationInput) -> BatchReputationStatus:
        self.state.total = len(input.user_ids)
        await audit(ctx, "batch_reputation.started", "batch_reputation", {"total": self.state.total})

        for user_id in input.user_ids:
            await ctx.checkpoint()
            if self.cancel_requested:
                break
            child_input = ReputationInput(user_id=user_id)
            if input.periods is not None:
                child_input.periods = list(input.periods)
            try:
                await ctx.execute_child_workflow(
                    TraderReputationWorkflow, child_input, workflow_id=f"{ctx.workflow_id}/reputation-{user_id}",
                )
                self.state.successful += 1
            except WorkflowFailedError as exc:
                self.state.failed += 1
                self.state.errors.append(error_entry(user_id, exc.cause))
            self.state.processed += 1

        self.state.status = "completed"
        await audit(
            ctx, "batch_reputation.completed", "batch_reputation",
            {
                "processed": self.state.processed,
                "successful": self.state.successful,
                "failed": self.state.failed,
                "errors": list(self.state.errors),
            },
        )
        return self.state
