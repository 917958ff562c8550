"""Worker wiring: settings -> store, inference, notifier -> activities -> runtime.

Also owns the helpers the CLI uses to run a workflow to completion.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from market_pulse.activities import Activities
from market_pulse.common.llm import InferenceClient
from market_pulse.config import Settings, get_settings
from market_pulse.notifications.base import Notifier, NullNotifier
from market_pulse.notifications.telegram import TelegramNotifier
from market_pulse.runtime.clock import Clock
from market_pulse.runtime.engine import WorkflowHandle, WorkflowRuntime
from market_pulse.runtime.history import HistoryStore, InMemoryHistoryStore, SqliteHistoryStore
from market_pulse.runtime.workflow import Workflow
from market_pulse.store.sqlite import SqliteStore
from market_pulse.workflows.daily_insight import DailyInsightWorkflow
from market_pulse.workflows.leaderboard import (
    FullLeaderboardWorkflow,
    LeaderboardWorkflow,
    ScheduledLeaderboardWorkflow,
)
from market_pulse.workflows.market_monitor import MarketMonitorWorkflow
from market_pulse.workflows.reputation import BatchReputationWorkflow, TraderReputationWorkflow
from market_pulse.workflows.signal_batch import EmailBatchWorkflow, NewsBatchWorkflow

logger = logging.getLogger(__name__)

WORKFLOWS: tuple[type[Workflow], ...] = (
    MarketMonitorWorkflow,
    EmailBatchWorkflow,
    NewsBatchWorkflow,
    TraderReputationWorkflow,
    BatchReputationWorkflow,
    LeaderboardWorkflow,
    FullLeaderboardWorkflow,
    ScheduledLeaderboardWorkflow,
    DailyInsightWorkflow,
)


def build_notifier(settings: Settings) -> Notifier:
    if settings.telegram_enabled:
        return TelegramNotifier(settings.telegram_bot_token, settings.telegram_chat_id)
    return NullNotifier()


def build_history(settings: Settings) -> HistoryStore:
    if settings.history_db_path is not None:
        return SqliteHistoryStore(settings.history_db_path)
    return InMemoryHistoryStore()


def build_runtime(
    store: SqliteStore | None = None,
    inference: InferenceClient | None = None,
    notifier: Notifier | None = None,
    history: HistoryStore | None = None,
    clock: Clock | None = None,
) -> WorkflowRuntime:
    """Create a runtime with every workflow registered."""
    settings = get_settings()
    activities = Activities(
        store=store or SqliteStore(settings.db_path),
        inference=inference or InferenceClient(),
        notifier=notifier or build_notifier(settings),
    )
    runtime = WorkflowRuntime(
        activities,
        history=history or build_history(settings),
        clock=clock,
        max_concurrent_activities=settings.max_concurrent_activities,
        max_history_events=settings.max_history_events,
    )
    runtime.register(*WORKFLOWS)
    return runtime


async def run_to_completion(
    runtime: WorkflowRuntime,
    definition: type[Workflow] | str,
    input: Any = None,
    workflow_id: str | None = None,
    on_progress: Callable[[Any], None] | None = None,
    poll_interval: float = 1.0,
) -> Any:
    """Start a workflow (or attach to a resumed one) and wait for its result.

    ``on_progress`` receives the instance's status query result every
    ``poll_interval`` seconds while it runs.
    """
    handle: WorkflowHandle | None = runtime.find_running(workflow_id) if workflow_id else None
    if handle is None:
        handle = await runtime.start(definition, input, workflow_id=workflow_id)
    else:
        logger.info("Attached to resumed workflow %s", workflow_id)

    if on_progress is not None:
        while not handle.done:
            on_progress(handle.query("status"))
            await asyncio.sleep(poll_interval)
    return await handle.result()
