"""Inference-backed signal extraction, classification and narrative generation.

Every function here makes one inference call and parses a JSON answer.
Malformed or missing answers degrade to "no signal" or a neutral default;
only transient transport errors propagate (so the activity layer retries).
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, TypeVar

import anthropic

from market_pulse.common.llm import TRANSIENT_ERRORS, InferenceClient
from market_pulse.runtime.activity import heartbeat
from market_pulse.signals.models import (
    BehaviorClassification,
    CorrelationResult,
    EmailItem,
    InsightPriority,
    NewsItem,
    Position,
    Sentiment,
    SentimentAggregate,
    Severity,
    Signal,
    SignalType,
    TraderActivity,
    UserInsight,
)

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=Enum)


def _enum(value: Any, enum_cls: type[E], default: E | None) -> E | None:
    try:
        return enum_cls(value)
    except ValueError:
        return default


def _unit(value: Any, default: float) -> float:
    """Coerce to a float in [0, 1]."""
    try:
        return max(0.0, min(1.0, float(value)))
    except (TypeError, ValueError):
        return default


def _float_or_none(value: Any) -> float | None:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v is not None]


_EMAIL_PROMPT = """You are a financial signal detection AI. Analyze this email for trading-relevant signals.

EMAIL:
Subject: {subject}
From: {sender}
Body: {body}
{triage}
Analyze for market-moving information, sentiment, specific asset mentions,
time-sensitive opportunities and risk indicators.

If NO significant trading signal is found, respond with: {{"hasSignal": false}}

If a signal IS found, respond in JSON:
{{"hasSignal": true, "title": "...", "description": "...", "confidence": 0.0-1.0,
"severity": "low" | "medium" | "high" | "critical", "relatedMarkets": ["TICKER"],
"sentiment": "bullish" | "bearish" | "neutral", "priceImpact": number,
"timeHorizon": "immediate" | "short_term" | "long_term",
"actionSuggestion": "...", "confidenceFactors": ["..."]}}"""


async def extract_email_signal(client: InferenceClient, item: EmailItem) -> Signal | None:
    heartbeat("extracting email signal")
    triage = ""
    if item.triage:
        tickers = ", ".join(item.triage.get("related_tickers", []))
        triage = (
            f"\nPrevious triage: Priority={item.triage.get('priority')}, "
            f"Category={item.triage.get('category')}, Tickers={tickers}\n"
        )
    parsed = await client.infer_json(
        _EMAIL_PROMPT.format(subject=item.subject, sender=item.sender, body=item.body, triage=triage)
    )
    if not isinstance(parsed, dict) or not parsed.get("hasSignal"):
        return None

    fallback_markets = (item.triage or {}).get("related_tickers", [])
    return Signal(
        type=SignalType.EMAIL,
        source="email_triage",
        source_id=item.email_id,
        title=str(parsed.get("title") or "Email Signal Detected"),
        description=str(parsed.get("description") or ""),
        confidence=_unit(parsed.get("confidence"), 0.5),
        severity=_enum(parsed.get("severity"), Severity, Severity.MEDIUM),
        related_markets=_str_list(parsed.get("relatedMarkets")) or list(fallback_markets),
        sentiment=_enum(parsed.get("sentiment"), Sentiment, None),
        price_impact=_float_or_none(parsed.get("priceImpact")),
        time_horizon=parsed.get("timeHorizon"),
        action_suggestion=parsed.get("actionSuggestion"),
        ai_analysis=parsed.get("description"),
        confidence_factors=_str_list(parsed.get("confidenceFactors")),
        raw_data={"email_id": item.email_id, "subject": item.subject},
    )


_NEWS_PROMPT = """You are a market correlation AI. Analyze this news article and identify which markets/assets it may impact.

NEWS ARTICLE:
Title: {title}
Source: {source}
Published: {published_at}
Categories: {categories}

Content:
{content}

Respond in JSON:
{{"hasCorrelation": true/false, "title": "...", "description": "...", "confidence": 0.0-1.0,
"severity": "low" | "medium" | "high" | "critical", "relatedMarkets": ["MARKET"],
"relatedPredictionEvents": ["event_ticker"], "sentiment": "bullish" | "bearish" | "neutral",
"priceImpact": number, "timeHorizon": "immediate" | "short_term" | "long_term",
"correlationExplanation": "...", "confidenceFactors": ["..."]}}"""


async def extract_news_signal(client: InferenceClient, item: NewsItem) -> Signal | None:
    heartbeat("correlating news to markets")
    parsed = await client.infer_json(
        _NEWS_PROMPT.format(
            title=item.title,
            source=item.source,
            published_at=item.published_at,
            categories=", ".join(item.categories),
            content=item.content,
        )
    )
    if not isinstance(parsed, dict) or not parsed.get("hasCorrelation"):
        return None

    markets = _str_list(parsed.get("relatedMarkets"))
    return Signal(
        type=SignalType.NEWS,
        source="news_feed",
        source_id=item.news_id,
        title=str(parsed.get("title") or "News Market Correlation"),
        description=str(parsed.get("description") or ""),
        confidence=_unit(parsed.get("confidence"), 0.5),
        severity=_enum(parsed.get("severity"), Severity, Severity.MEDIUM),
        related_markets=markets,
        related_events=_str_list(parsed.get("relatedPredictionEvents")),
        sentiment=_enum(parsed.get("sentiment"), Sentiment, None),
        price_impact=_float_or_none(parsed.get("priceImpact")),
        time_horizon=parsed.get("timeHorizon"),
        action_suggestion=f"Review impact on: {', '.join(markets)}" if markets else None,
        ai_analysis=parsed.get("correlationExplanation"),
        confidence_factors=_str_list(parsed.get("confidenceFactors")),
        raw_data={"news_id": item.news_id, "title": item.title, "source": item.source},
    )


async def enrich_anomalies(client: InferenceClient, anomalies: list[Signal]) -> list[Signal]:
    """Attach a likely cause and suggested action to each anomaly.

    Returns the anomalies unchanged when the answer cannot be used.
    """
    if not anomalies:
        return anomalies
    heartbeat("enriching anomalies")
    lines = "\n".join(
        f"- {a.title}: {a.description} (Sentiment: {a.sentiment.value if a.sentiment else 'n/a'}, "
        f"Impact: {a.price_impact}%)"
        for a in anomalies
    )
    prompt = (
        "Analyze these detected market anomalies and provide insights:\n\n"
        f"ANOMALIES:\n{lines}\n\n"
        "For each anomaly give the likely cause, implications and a recommended action.\n"
        'Respond as a JSON array: [{"ticker": "TICKER", "analysis": "...", "actionSuggestion": "..."}]'
    )
    parsed = await client.infer_json(prompt)
    if not isinstance(parsed, list):
        return anomalies
    for analysis in parsed:
        if not isinstance(analysis, dict):
            continue
        ticker = analysis.get("ticker")
        for anomaly in anomalies:
            if ticker in anomaly.related_markets:
                anomaly.ai_analysis = analysis.get("analysis")
                anomaly.action_suggestion = analysis.get("actionSuggestion")
                break
    return anomalies


_BEHAVIOR_PROMPT = """Analyze this trader's recent activity and classify their behavior pattern.

TRADING ACTIVITY:
{lines}

Classify the trader as one of: day_trader, swing_trader, position_trader, scalper,
momentum_trader, contrarian, diversified, speculator. Identify key patterns,
the risk level (low/medium/high) and actionable insights.

Respond in JSON:
{{"classification": "trader_type", "confidence": 0.0-1.0, "patterns": ["..."],
"riskLevel": "low" | "medium" | "high", "insights": "..."}}"""


async def classify_trader_behavior(
    client: InferenceClient, activities: list[TraderActivity],
) -> BehaviorClassification:
    heartbeat("classifying behavior")
    lines = "\n".join(
        f"- {a.executed_at.isoformat()}: {a.side.upper()} {a.quantity} {a.symbol} @ ${a.price}"
        for a in activities
    )
    parsed = await client.infer_json(_BEHAVIOR_PROMPT.format(lines=lines))
    if not isinstance(parsed, dict):
        return BehaviorClassification(insights="Unable to classify trading behavior")
    risk = str(parsed.get("riskLevel") or "medium")
    return BehaviorClassification(
        classification=str(parsed.get("classification") or "unknown"),
        confidence=_unit(parsed.get("confidence"), 0.5),
        patterns=_str_list(parsed.get("patterns")),
        risk_level=risk if risk in ("low", "medium", "high") else "medium",
        insights=str(parsed.get("insights") or ""),
    )


async def aggregate_sentiment(
    client: InferenceClient, inputs: list[dict[str, Any]],
) -> SentimentAggregate:
    """Aggregate sentiment over ``[{"source", "content", "weight"}]`` inputs."""
    heartbeat("aggregating sentiment")
    sources = "\n\n".join(
        f"[{i['source']}] (weight: {i.get('weight', 1.0)})\n{str(i['content'])[:500]}" for i in inputs
    )
    prompt = (
        "Analyze and aggregate sentiment from these multiple sources:\n\n"
        f"SOURCES:\n{sources}\n\n"
        "Respond in JSON:\n"
        '{"overallSentiment": "bullish" | "bearish" | "neutral", "sentimentScore": -1.0 to 1.0, '
        '"confidence": 0.0-1.0, "breakdown": [{"source": "...", "sentiment": "...", "score": 0}], '
        '"summary": "..."}'
    )
    parsed = await client.infer_json(prompt)
    if not isinstance(parsed, dict):
        return SentimentAggregate(summary="Unable to aggregate sentiment")
    try:
        score = max(-1.0, min(1.0, float(parsed.get("sentimentScore", 0.0))))
    except (TypeError, ValueError):
        score = 0.0
    breakdown = parsed.get("breakdown")
    return SentimentAggregate(
        overall_sentiment=_enum(parsed.get("overallSentiment"), Sentiment, Sentiment.NEUTRAL),
        sentiment_score=score,
        confidence=_unit(parsed.get("confidence"), 0.5),
        breakdown=[b for b in breakdown if isinstance(b, dict)] if isinstance(breakdown, list) else [],
        summary=str(parsed.get("summary") or ""),
    )


def fallback_explanation(result: CorrelationResult) -> str:
    return (
        f"{result.market_a} and {result.market_b} show a {result.strength.value} "
        f"correlation of {result.correlation}."
    )


async def explain_correlation(
    client: InferenceClient, result: CorrelationResult, context_a: str = "", context_b: str = "",
) -> str:
    """Short natural-language explanation; falls back to a templated sentence."""
    heartbeat("explaining correlation")
    prompt = (
        "Explain the correlation between these two markets:\n\n"
        f"Market A: {result.market_a}\nContext: {context_a}\n\n"
        f"Market B: {result.market_b}\nContext: {context_b}\n\n"
        f"Correlation coefficient: {result.correlation}\n"
        f"Strength: {result.strength.value}\nSample size: {result.sample_size}\n\n"
        "In 2-3 sentences: why these markets might be correlated, what drives the "
        "relationship, and whether it is expected or surprising."
    )
    try:
        text = await client.infer(prompt, max_tokens=512)
    except TRANSIENT_ERRORS:
        raise
    except (anthropic.APIError, ValueError) as exc:
        logger.warning("Correlation explanation unavailable: %s", exc)
        return fallback_explanation(result)
    return text.strip() or fallback_explanation(result)


def _fallback_insight(user_id: str, positions: list[Position]) -> UserInsight:
    return UserInsight(
        user_id=user_id,
        insight_type="daily_digest",
        title="Daily Portfolio Summary",
        content="Unable to generate personalized insight at this time.",
        confidence=0.0,
        priority=InsightPriority.LOW,
        related_markets=[p.symbol for p in positions],
    )


async def generate_daily_insight(
    client: InferenceClient,
    user_id: str,
    positions: list[Position],
    recent_signals: list[Signal],
    market_summary: str,
) -> UserInsight:
    heartbeat("generating insight")
    portfolio = "\n".join(f"- {p.symbol}: {p.quantity} units, P&L: ${p.pnl:.2f}" for p in positions)
    signals = "\n".join(f"- [{s.severity.value}] {s.title}: {s.description}" for s in recent_signals)
    prompt = (
        "Generate a personalized daily trading insight for this user.\n\n"
        f"USER PORTFOLIO:\n{portfolio}\n\nRECENT SIGNALS:\n{signals or '- none'}\n\n"
        f"MARKET SUMMARY:\n{market_summary}\n\n"
        "Include a portfolio performance summary, key market events affecting the positions, "
        "actionable recommendations and risk alerts.\n\n"
        "Respond in JSON:\n"
        '{"title": "...", "content": "...", "summary": "...", '
        '"priority": "low" | "medium" | "high" | "urgent", "confidence": 0.0-1.0, '
        '"actionItems": ["..."]}'
    )
    parsed = await client.infer_json(prompt)
    if not isinstance(parsed, dict):
        return _fallback_insight(user_id, positions)
    return UserInsight(
        user_id=user_id,
        insight_type="daily_digest",
        title=str(parsed.get("title") or "Daily Portfolio Summary"),
        content=str(parsed.get("content") or ""),
        summary=parsed.get("summary"),
        confidence=_unit(parsed.get("confidence"), 0.7),
        priority=_enum(parsed.get("priority"), InsightPriority, InsightPriority.MEDIUM),
        related_signals=[s.source_id for s in recent_signals if s.source_id],
        related_markets=[p.symbol for p in positions],
        action_items=_str_list(parsed.get("actionItems")),
    )
