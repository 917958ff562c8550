"""Batch signal extraction over emails and news articles.

Each item gets exactly one inference call. A failing item is recorded in the
status error list and the batch moves on; only a failure outside the
per-item loop fails the batch.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Union

from market_pulse.common.types import utcnow
from market_pulse.runtime.activity import INFERENCE_ACTIVITY, STANDARD_ACTIVITY
from market_pulse.runtime.context import WorkflowContext
from market_pulse.runtime.errors import ActivityError, NonDeterminismError
from market_pulse.runtime.workflow import Workflow, query
from market_pulse.signals.models import (
    EmailItem,
    NewsItem,
    SentimentAggregate,
    Severity,
    Signal,
    SignalType,
)
from market_pulse.workflows.common import audit, error_entry, try_audit

logger = logging.getLogger(__name__)

# Sentiment aggregates must clear both bars to become a signal
SENTIMENT_SCORE_THRESHOLD = 0.5
SENTIMENT_CONFIDENCE_THRESHOLD = 0.6

# Recipient used when a batch is not tied to one user
BROADCAST = "broadcast"

BatchItem = Union[EmailItem, NewsItem]


class BatchPhase(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    AGGREGATING = "aggregating"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class BatchInput:
    items: list[BatchItem]
    aggregate_sentiment: bool = False
    user_id: str | None = None


@dataclass
class BatchStatus:
    batch_id: str = ""
    status: BatchPhase = BatchPhase.PENDING
    total: int = 0
    processed: int = 0
    signals_generated: int = 0
    signal_ids: list[int] = field(default_factory=list)
    sentiment: SentimentAggregate | None = None
    cancelled: bool = False
    errors: list[dict[str, str]] = field(default_factory=list)


def sentiment_signal(
    kind: str, aggregate: SentimentAggregate, item_count: int, detected_at: datetime | None = None,
) -> Signal | None:
    """Turn a strong, confident aggregate into a signal; None otherwise."""
    if abs(aggregate.sentiment_score) <= SENTIMENT_SCORE_THRESHOLD:
        return None
    if aggregate.confidence <= SENTIMENT_CONFIDENCE_THRESHOLD:
        return None
    return Signal(
        type=SignalType.SENTIMENT,
        source=f"{kind}_sentiment",
        title=f"Aggregate {kind} sentiment: {aggregate.overall_sentiment.value}",
        description=aggregate.summary,
        confidence=aggregate.confidence,
        severity=Severity.HIGH if abs(aggregate.sentiment_score) > 0.8 else Severity.MEDIUM,
        sentiment=aggregate.overall_sentiment,
        time_horizon="short_term",
        raw_data={"sentiment_score": aggregate.sentiment_score, "items": item_count},
        created_at=detected_at or utcnow(),
    )


class SignalBatchWorkflow(Workflow):
    """Shared batch loop; subclasses pick the extraction activity."""

    kind: ClassVar[str] = "item"
    extract_activity: ClassVar[str] = ""

    def __init__(self) -> None:
        super().__init__()
        self.state = BatchStatus()

    @query("status")
    def status(self) -> BatchStatus:
        return self.state

    @property
    def resource_type(self) -> str:
        return f"{self.kind}_batch"

    async def run(self, ctx: WorkflowContext, input: BatchInput) -> BatchStatus:
        self.state.batch_id = ctx.workflow_id
        self.state.total = len(input.items)
        await audit(ctx, f"{self.resource_type}.started", self.resource_type, {"total": self.state.total})

        try:
            await self._process(ctx, input)
        except NonDeterminismError:
            raise
        except Exception as exc:
            self.state.status = BatchPhase.FAILED
            self.state.errors.append(error_entry(self.state.batch_id, exc))
            await try_audit(
                ctx, f"{self.resource_type}.failed", self.resource_type, self._summary(),
            )
            raise

        self.state.status = BatchPhase.COMPLETED
        await audit(ctx, f"{self.resource_type}.completed", self.resource_type, self._summary())
        logger.info(
            "%s: %d/%d processed, %d signal(s), %d error(s)",
            ctx.workflow_id, self.state.processed, self.state.total,
            self.state.signals_generated, len(self.state.errors),
        )
        return self.state

    def _summary(self) -> dict[str, Any]:
        return {
            "total": self.state.total,
            "processed": self.state.processed,
            "signals_generated": self.state.signals_generated,
            "cancelled": self.state.cancelled,
            "errors": list(self.state.errors),
        }

    async def _process(self, ctx: WorkflowContext, input: BatchInput) -> None:
        recipient = input.user_id or BROADCAST
        succeeded: list[BatchItem] = []

        self.state.status = BatchPhase.PROCESSING
        for item in input.items:
            await ctx.checkpoint()
            if self.cancel_requested:
                self.state.cancelled = True
                break
            try:
                signal = await ctx.execute_activity(self.extract_activity, item, options=INFERENCE_ACTIVITY)
                if signal is not None:
                    await self._store(ctx, signal, recipient)
            except ActivityError as exc:
                logger.warning("%s: item %s failed: %s", ctx.workflow_id, item.item_id, exc)
                self.state.errors.append(error_entry(item.item_id, exc))
            else:
                # Counted only once its signal is stored
                self.state.processed += 1
                succeeded.append(item)

        if input.aggregate_sentiment and succeeded and not self.state.cancelled:
            self.state.status = BatchPhase.AGGREGATING
            await self._aggregate(ctx, succeeded, recipient)

    async def _store(self, ctx: WorkflowContext, signal: Signal, recipient: str) -> None:
        acts = ctx.activity_stub(STANDARD_ACTIVITY)
        signal_id = await acts.store_signal(signal)
        self.state.signal_ids.append(signal_id)
        self.state.signals_generated += 1
        if signal.severity.is_urgent:
            await acts.notify_signal(recipient, signal)

    async def _aggregate(self, ctx: WorkflowContext, items: list[BatchItem], recipient: str) -> None:
        inputs = [
            {"source": f"{self.kind}:{item.item_id}", "content": item.text, "weight": 1.0}
            for item in items
        ]
        try:
            aggregate = await ctx.activity_stub(INFERENCE_ACTIVITY).aggregate_sentiment(inputs)
            self.state.sentiment = aggregate
            signal = sentiment_signal(self.kind, aggregate, len(items), await ctx.now())
            if signal is not None:
                await self._store(ctx, signal, recipient)
        except ActivityError as exc:
            self.state.errors.append(error_entry("sentiment_aggregation", exc))


class EmailBatchWorkflow(SignalBatchWorkflow):
    kind = "email"
    extract_activity = "extract_email_signal"


class NewsBatchWorkflow(SignalBatchWorkflow):
    kind = "news"
    extract_activity = "extract_news_signal"
