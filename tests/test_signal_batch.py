"""Tests for the email and news batch extraction workflows."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest

from market_pulse.signals.models import EmailItem, NewsItem, Sentiment, SentimentAggregate, Severity, SignalType
from market_pulse.workflows.signal_batch import (
    BatchInput,
    BatchPhase,
    EmailBatchWorkflow,
    NewsBatchWorkflow,
    sentiment_signal,
)

from conftest import START, FakeInference

EMAILS = [
    EmailItem(email_id="e1", subject="Fed cuts", body="Surprise 50bp cut", sender="desk@example.com"),
    EmailItem(email_id="e2", subject="Lunch", body="Pizza at noon", sender="office@example.com"),
    EmailItem(email_id="e3", subject="Broken", body="This one times out", sender="noise@example.com"),
]


def _email_responder(aggregate=None):
    def respond(prompt):
        if prompt.startswith("Analyze and aggregate sentiment"):
            return aggregate
        if "Subject: Fed cuts" in prompt:
            return {"hasSignal": True, "title": "Rate cut", "severity": "high", "confidence": 0.9,
                    "relatedMarkets": ["SPY"]}
        if "Subject: Broken" in prompt:
            return RuntimeError("inference timeout")
        return {"hasSignal": False}

    return respond


class TestEmailBatch:
    @pytest.mark.asyncio
    async def test_item_failure_does_not_fail_batch(self, make_runtime, store, notifier):
        runtime = make_runtime(FakeInference(_email_responder()))
        handle = await runtime.start(EmailBatchWorkflow, BatchInput(items=EMAILS), workflow_id="emails-1")
        status = await handle.result()

        assert status.status == BatchPhase.COMPLETED
        assert status.batch_id == "emails-1"
        assert status.total == 3
        assert status.processed == 2
        assert status.signals_generated == 1
        assert len(status.signal_ids) == 1
        assert status.errors == [{"item_id": "e3", "message": "inference timeout"}]

        (signal,) = await store.fetch_signals_since(START - timedelta(hours=1))
        assert signal.title == "Rate cut"
        assert signal.source_id == "e1"
        # High severity goes out to everyone when no user is given
        assert [user for user, _ in notifier.sent] == ["broadcast"]
        assert notifier.sent[0][1]["title"] == "Rate cut"

    @pytest.mark.asyncio
    async def test_notifies_requesting_user(self, make_runtime, notifier):
        runtime = make_runtime(FakeInference(_email_responder()))
        handle = await runtime.start(EmailBatchWorkflow, BatchInput(items=EMAILS[:1], user_id="alice"))
        await handle.result()
        assert [user for user, _ in notifier.sent] == ["alice"]

    @pytest.mark.asyncio
    async def test_medium_signal_not_notified(self, make_runtime, notifier):
        inference = FakeInference(lambda prompt: {"hasSignal": True, "title": "Minor", "severity": "medium"})
        handle = await make_runtime(inference).start(EmailBatchWorkflow, BatchInput(items=EMAILS[:1]))
        status = await handle.result()
        assert status.signals_generated == 1
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_strong_sentiment_becomes_signal(self, make_runtime, store):
        aggregate = {"overallSentiment": "bullish", "sentimentScore": 0.85, "confidence": 0.8, "summary": "Risk on"}
        inference = FakeInference(_email_responder(aggregate))
        handle = await make_runtime(inference).start(
            EmailBatchWorkflow, BatchInput(items=EMAILS, aggregate_sentiment=True),
        )
        status = await handle.result()

        assert status.sentiment.overall_sentiment == Sentiment.BULLISH
        assert status.signals_generated == 2
        aggregate_prompt = inference.prompts[-1]
        assert "[email:e1]" in aggregate_prompt
        assert "[email:e2]" in aggregate_prompt
        # Only items that were extracted feed the aggregate
        assert "email:e3" not in aggregate_prompt

        stored = await store.fetch_signals_since(START - timedelta(hours=1))
        sentiment = [s for s in stored if s.type == SignalType.SENTIMENT]
        assert len(sentiment) == 1
        assert sentiment[0].source == "email_sentiment"
        assert sentiment[0].severity == Severity.HIGH
        assert sentiment[0].created_at == START

    @pytest.mark.asyncio
    async def test_weak_sentiment_makes_no_signal(self, make_runtime):
        aggregate = {"overallSentiment": "bullish", "sentimentScore": 0.3, "confidence": 0.9}
        handle = await make_runtime(FakeInference(_email_responder(aggregate))).start(
            EmailBatchWorkflow, BatchInput(items=EMAILS[:2], aggregate_sentiment=True),
        )
        status = await handle.result()
        assert status.sentiment.sentiment_score == 0.3
        assert status.signals_generated == 1

    @pytest.mark.asyncio
    async def test_cancel_before_processing(self, make_runtime, store):
        inference = FakeInference(_email_responder())
        handle = await make_runtime(inference).start(
            EmailBatchWorkflow, BatchInput(items=EMAILS, aggregate_sentiment=True), workflow_id="emails-cancel",
        )
        handle.cancel()
        status = await handle.result()

        assert status.cancelled
        assert status.processed == 0
        assert status.status == BatchPhase.COMPLETED
        assert inference.prompts == []
        actions = [r["action"] for r in await store.fetch_audit_log("emails-cancel")]
        assert actions == ["email_batch.started", "email_batch.completed"]

    @pytest.mark.asyncio
    async def test_audit_trail(self, make_runtime, store):
        handle = await make_runtime(FakeInference(_email_responder())).start(
            EmailBatchWorkflow, BatchInput(items=EMAILS), workflow_id="emails-audit",
        )
        await handle.result()
        records = await store.fetch_audit_log("emails-audit")
        assert [r["action"] for r in records] == ["email_batch.started", "email_batch.completed"]
        assert records[0]["resource_type"] == "email_batch"
        assert records[1]["metadata"]["processed"] == 2
        assert records[1]["metadata"]["errors"] == [{"item_id": "e3", "message": "inference timeout"}]

    @pytest.mark.asyncio
    async def test_second_item_failure(self, make_runtime):
        def respond(prompt):
            if "Subject: Lunch" in prompt:
                return RuntimeError("inference timeout")
            return {"hasSignal": False}

        handle = await make_runtime(FakeInference(respond)).start(EmailBatchWorkflow, BatchInput(items=EMAILS))
        status = await handle.result()

        assert status.status == BatchPhase.COMPLETED
        assert status.processed == 2
        assert status.errors == [{"item_id": "e2", "message": "inference timeout"}]

    @pytest.mark.asyncio
    async def test_cancel_mid_batch(self, make_runtime, store):
        handles = []

        def respond(prompt):
            if prompt.startswith("Analyze and aggregate sentiment"):
                return {"overallSentiment": "bullish", "sentimentScore": 0.9, "confidence": 0.9}
            if "Subject: Fed cuts" in prompt:
                handles[0].cancel()
            return _email_responder()(prompt)

        inference = FakeInference(respond)
        handle = await make_runtime(inference).start(
            EmailBatchWorkflow, BatchInput(items=EMAILS, aggregate_sentiment=True), workflow_id="emails-mid",
        )
        handles.append(handle)
        status = await handle.result()

        assert status.cancelled
        assert status.status == BatchPhase.COMPLETED
        assert status.processed == 1
        assert status.signals_generated == 1
        assert status.sentiment is None
        assert len(inference.prompts) == 1
        actions = [r["action"] for r in await store.fetch_audit_log("emails-mid")]
        assert actions == ["email_batch.started", "email_batch.completed"]

    @pytest.mark.asyncio
    async def test_store_failure_not_counted_as_processed(self, make_runtime, store, notifier):
        handle = await make_runtime(FakeInference(_email_responder())).start(
            EmailBatchWorkflow, BatchInput(items=EMAILS[:2]),
        )
        with patch.object(store, "store_signal", AsyncMock(side_effect=RuntimeError("db down"))):
            status = await handle.result()

        assert status.status == BatchPhase.COMPLETED
        assert status.processed == 1
        assert status.signals_generated == 0
        assert status.errors == [{"item_id": "e1", "message": "db down"}]
        assert notifier.sent == []


class TestNewsBatch:
    @pytest.mark.asyncio
    async def test_news_signals(self, make_runtime, store):
        items = [NewsItem(news_id="n1", title="ETF approved", content="SEC approves spot ETF", source="wire")]
        inference = FakeInference(lambda prompt: {
            "hasCorrelation": True, "title": "ETF approval", "severity": "low", "relatedMarkets": ["BTC"],
        })
        handle = await make_runtime(inference).start(NewsBatchWorkflow, BatchInput(items=items), workflow_id="news-1")
        status = await handle.result()

        assert status.processed == 1
        (signal,) = await store.fetch_signals_since(START - timedelta(hours=1))
        assert signal.source == "news_feed"
        assert signal.type == SignalType.NEWS
        actions = [r["action"] for r in await store.fetch_audit_log("news-1")]
        assert actions == ["news_batch.started", "news_batch.completed"]


class TestSentimentSignal:
    def _aggregate(self, score, confidence, sentiment=Sentiment.BULLISH):
        return SentimentAggregate(overall_sentiment=sentiment, sentiment_score=score, confidence=confidence)

    def test_score_must_exceed_threshold(self):
        assert sentiment_signal("email", self._aggregate(0.5, 0.9), 3) is None

    def test_confidence_must_exceed_threshold(self):
        assert sentiment_signal("email", self._aggregate(0.9, 0.6), 3) is None

    def test_medium(self):
        signal = sentiment_signal("news", self._aggregate(0.6, 0.7), 4, START)
        assert signal.severity == Severity.MEDIUM
        assert signal.source == "news_sentiment"
        assert signal.raw_data == {"sentiment_score": 0.6, "items": 4}
        assert signal.created_at == START

    def test_bearish_high(self):
        signal = sentiment_signal("email", self._aggregate(-0.9, 0.7, Sentiment.BEARISH), 2)
        assert signal.severity == Severity.HIGH
        assert signal.title == "Aggregate email sentiment: bearish"
