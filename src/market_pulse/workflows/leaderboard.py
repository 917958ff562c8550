"""Leaderboard snapshots: rank, diff against the previous snapshot, store, award."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

from market_pulse.leaderboard.models import LEADERBOARD_PERIODS, LeaderboardSnapshot, LeaderboardType
from market_pulse.leaderboard.ranking import diff_against_previous, rank_participants
from market_pulse.reputation.badges import rank_badge
from market_pulse.reputation.models import Badge
from market_pulse.reputation.periods import period_bounds
from market_pulse.runtime.activity import STANDARD_ACTIVITY
from market_pulse.runtime.context import WorkflowContext
from market_pulse.runtime.errors import NonDeterminismError, WorkflowFailedError
from market_pulse.runtime.workflow import Workflow, query
from market_pulse.workflows.common import audit, error_entry, try_audit

logger = logging.getLogger(__name__)

RESOURCE = "leaderboard"


class LeaderboardPhase(str, Enum):
    FETCHING = "fetching"
    SORTING = "sorting"
    COMPARING = "comparing"
    STORING = "storing"
    AWARDING = "awarding"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass
class LeaderboardInput:
    leaderboard_type: LeaderboardType
    period: str
    asset_class: str | None = None
    min_trades: int | None = None
    max_entries: int | None = None


@dataclass
class LeaderboardStatus:
    leaderboard_type: str = ""
    period: str = ""
    asset_class: str | None = None
    status: LeaderboardPhase = LeaderboardPhase.FETCHING
    total_participants: int = 0
    entries_count: int = 0
    snapshot_id: int | None = None
    badges_awarded: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)


class LeaderboardWorkflow(Workflow):
    def __init__(self) -> None:
        super().__init__()
        self.state = LeaderboardStatus()

    @query("status")
    def status(self) -> LeaderboardStatus:
        return self.state

    async def run(self, ctx: WorkflowContext, input: LeaderboardInput) -> LeaderboardStatus:
        leaderboard_type = LeaderboardType(input.leaderboard_type)
        self.state.leaderboard_type = leaderboard_type.value
        self.state.period = input.period
        self.state.asset_class = input.asset_class
        key = {"leaderboard_type": leaderboard_type.value, "period": input.period, "asset_class": input.asset_class}
        await audit(ctx, "leaderboard.started", RESOURCE, key)

        try:
            await self._build(ctx, input, leaderboard_type)
        except NonDeterminismError:
            raise
        except Exception as exc:
            self.state.status = LeaderboardPhase.FAILED
            self.state.errors.append(error_entry(leaderboard_type.value, exc))
            await try_audit(ctx, "leaderboard.failed", RESOURCE, {**key, "errors": list(self.state.errors)})
            raise

        self.state.status = LeaderboardPhase.COMPLETE
        await audit(
            ctx, "leaderboard.completed", RESOURCE,
            {
                **key,
                "total_participants": self.state.total_participants,
                "entries": self.state.entries_count,
                "badges_awarded": self.state.badges_awarded,
            },
        )
        return self.state

    async def _build(self, ctx: WorkflowContext, input: LeaderboardInput, leaderboard_type: LeaderboardType) -> None:
        settings = await ctx.settings("leaderboard_min_trades", "leaderboard_max_entries")
        acts = ctx.activity_stub(STANDARD_ACTIVITY)
        now = await ctx.now()
        start, end = period_bounds(input.period, now)

        self.state.status = LeaderboardPhase.FETCHING
        participants = await acts.fetch_leaderboard_participants(
            start, end, input.asset_class, input.min_trades or settings["leaderboard_min_trades"],
        )
        self.state.total_participants = len(participants)
        if not participants:
            logger.info("%s: no qualifying participants", ctx.workflow_id)
            return

        self.state.status = LeaderboardPhase.SORTING
        entries = rank_participants(
            participants, leaderboard_type, input.max_entries or settings["leaderboard_max_entries"],
        )

        self.state.status = LeaderboardPhase.COMPARING
        previous = await acts.fetch_previous_snapshot(leaderboard_type, input.period, input.asset_class)
        diff_against_previous(entries, previous)

        self.state.status = LeaderboardPhase.STORING
        snapshot = LeaderboardSnapshot(
            leaderboard_type=leaderboard_type,
            period=input.period,
            period_start=start,
            entries=entries,
            total_participants=len(participants),
            asset_class=input.asset_class,
            min_qualifying_value=entries[-1].value,
            calculated_at=now,
        )
        self.state.snapshot_id = await acts.store_leaderboard_snapshot(snapshot)
        await acts.append_leaderboard_history(snapshot)
        self.state.entries_count = len(entries)

        self.state.status = LeaderboardPhase.AWARDING
        for entry in entries:
            earned = rank_badge(entry.rank)
            if earned is None:
                break
            badge_type, badge_name = earned
            if await acts.award_badge(entry.user_id, Badge(type=badge_type, name=badge_name, awarded_at=now)):
                self.state.badges_awarded += 1


@dataclass
class FullLeaderboardInput:
    period: str
    asset_class: str | None = None


@dataclass
class FullLeaderboardStatus:
    period: str = ""
    status: str = "running"
    completed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    errors: list[dict[str, str]] = field(default_factory=list)


class FullLeaderboardWorkflow(Workflow):
    """All eight leaderboard types for one period, one after another."""

    def __init__(self) -> None:
        super().__init__()
        self.state = FullLeaderboardStatus()

    @query("status")
    def status(self) -> FullLeaderboardStatus:
        return self.state

    async def run(self, ctx: WorkflowContext, input: FullLeaderboardInput) -> FullLeaderboardStatus:
        self.state.period = input.period
        await audit(ctx, "full_leaderboard.started", RESOURCE, {"period": input.period})

        for leaderboard_type in LeaderboardType:
            await ctx.checkpoint()
            if self.cancel_requested:
                break
            try:
                await ctx.execute_child_workflow(
                    LeaderboardWorkflow,
                    LeaderboardInput(leaderboard_type, input.period, input.asset_class),
                    workflow_id=f"{ctx.workflow_id}/{leaderboard_type.value}",
                )
                self.state.completed.append(leaderboard_type.value)
            except WorkflowFailedError as exc:
                self.state.failed.append(leaderboard_type.value)
                self.state.errors.append(error_entry(leaderboard_type.value, exc.cause))

        self.state.status = "completed"
        await audit(
            ctx, "full_leaderboard.completed", RESOURCE,
            {"period": input.period, "completed": self.state.completed, "failed": self.state.failed},
        )
        return self.state


@dataclass
class ScheduledLeaderboardStatus:
    status: str = "running"
    periods_completed: list[str] = field(default_factory=list)
    errors: list[dict[str, str]] = field(default_factory=list)


class ScheduledLeaderboardWorkflow(Workflow):
    """The full leaderboard set for daily, weekly, monthly and all-time periods."""

    def __init__(self) -> None:
        super().__init__()
        self.state = ScheduledLeaderboardStatus()

    @query("status")
    def status(self) -> ScheduledLeaderboardStatus:
        return self.state

    async def run(self, ctx: WorkflowContext, input: str | None = None) -> ScheduledLeaderboardStatus:
        asset_class = input
        await audit(ctx, "scheduled_leaderboard.started", RESOURCE, {"periods": list(LEADERBOARD_PERIODS)})
        for period in LEADERBOARD_PERIODS:
            await ctx.checkpoint()
            if self.cancel_requested:
                break
            try:
                result = await ctx.execute_child_workflow(
                    FullLeaderboardWorkflow,
                    FullLeaderboardInput(period, asset_class),
                    workflow_id=f"{ctx.workflow_id}/{period}",
                )
            except WorkflowFailedError as exc:
                self.state.errors.append(error_entry(period, exc.cause))
                continue
            self.state.errors.extend(result.errors)
            self.state.periods_completed.append(period)

        self.state.status = "completed"
        await audit(
            ctx, "scheduled_leaderboard.completed", RESOURCE,
            {"periods_completed": self.state.periods_completed, "errors": list(self.state.errors)},
        )
        return self.state
