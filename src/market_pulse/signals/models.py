"""Signal data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from market_pulse.common.types import parse_iso, utcnow


class SignalType(str, Enum):
    EMAIL = "email"
    NEWS = "news"
    MARKET = "market"
    SOCIAL = "social"
    ON_CHAIN = "on_chain"
    SENTIMENT = "sentiment"
    UNUSUAL_ACTIVITY = "unusual_activity"
    CORRELATION = "correlation"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def is_urgent(self) -> bool:
        return self in (Severity.HIGH, Severity.CRITICAL)


class Sentiment(str, Enum):
    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"


class CorrelationStrength(str, Enum):
    WEAK = "weak"
    MODERATE = "moderate"
    STRONG = "strong"
    VERY_STRONG = "very_strong"


@dataclass
class Signal:
    """A detected, actionable observation about a market or trader.

    Attributes:
        type: What produced the signal
        source: Detector or feed name (e.g. "market_monitor", "email_triage")
        title: Short headline
        description: Human-readable detail
        confidence: 0-1
        severity: low / medium / high / critical
        source_id: Id of the email, article or trader the signal came from
        related_markets: Tickers the signal concerns
        related_events: Prediction-market event tickers
        sentiment: Directional read, if any
        price_impact: Observed or estimated percentage move
        time_horizon: "immediate", "short_term" or "long_term"
        action_suggestion: Suggested next step
        ai_analysis: Inference-generated explanation
        confidence_factors: Reasons behind the confidence score
        raw_data: Input the signal was derived from
        created_at: When the signal was detected
    """

    type: SignalType
    source: str
    title: str
    description: str
    confidence: float
    severity: Severity
    source_id: str | None = None
    related_markets: list[str] = field(default_factory=list)
    related_events: list[str] = field(default_factory=list)
    sentiment: Sentiment | None = None
    price_impact: float | None = None
    time_horizon: str | None = None
    action_suggestion: str | None = None
    ai_analysis: str | None = None
    confidence_factors: list[str] = field(default_factory=list)
    raw_data: Any = None
    created_at: datetime = field(default_factory=utcnow)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Signal:
        sentiment = data.get("sentiment")
        return cls(
            type=SignalType(data["type"]),
            source=data["source"],
            title=data["title"],
            description=data.get("description", ""),
            confidence=float(data.get("confidence", 0.0)),
            severity=Severity(data["severity"]),
            source_id=data.get("source_id"),
            related_markets=list(data.get("related_markets") or []),
            related_events=list(data.get("related_events") or []),
            sentiment=Sentiment(sentiment) if sentiment else None,
            price_impact=data.get("price_impact"),
            time_horizon=data.get("time_horizon"),
            action_suggestion=data.get("action_suggestion"),
            ai_analysis=data.get("ai_analysis"),
            confidence_factors=list(data.get("confidence_factors") or []),
            raw_data=data.get("raw_data"),
            created_at=parse_iso(data.get("created_at")) or utcnow(),
        )


@dataclass
class EmailItem:
    email_id: str
    subject: str
    body: str
    sender: str
    # Earlier triage output: {"priority", "category", "related_tickers"}
    triage: dict[str, Any] | None = None

    @property
    def item_id(self) -> str:
        return self.email_id

    @property
    def text(self) -> str:
        return f"{self.subject}\n{self.body}"


@dataclass
class NewsItem:
    news_id: str
    title: str
    content: str
    source: str
    published_at: str = ""
    categories: list[str] = field(default_factory=list)

    @property
    def item_id(self) -> str:
        return self.news_id

    @property
    def text(self) -> str:
        return f"{self.title}\n{self.content}"


@dataclass
class MarketSnapshot:
    """Latest and previous price/volume for one market."""

    ticker: str
    price: float
    previous_price: float
    volume: float
    previous_volume: float
    open_interest: float | None = None
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class TraderActivity:
    """One executed order."""

    user_id: str
    order_id: str
    symbol: str
    side: str  # "buy" or "sell"
    quantity: float
    price: float
    executed_at: datetime
    pnl: float | None = None
    asset_class: str | None = None


@dataclass
class CorrelationResult:
    market_a: str
    market_b: str
    correlation: float
    strength: CorrelationStrength
    sample_size: int
    explanation: str | None = None


@dataclass
class BehaviorClassification:
    classification: str = "unknown"
    confidence: float = 0.0
    patterns: list[str] = field(default_factory=list)
    risk_level: str = "medium"
    insights: str = ""


@dataclass
class SentimentAggregate:
    overall_sentiment: Sentiment = Sentiment.NEUTRAL
    sentiment_score: float = 0.0  # -1 (very bearish) to 1 (very bullish)
    confidence: float = 0.0
    breakdown: list[dict[str, Any]] = field(default_factory=list)
    summary: str = ""


@dataclass
class Position:
    symbol: str
    quantity: float
    pnl: float


class InsightPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


@dataclass
class UserInsight:
    user_id: str
    insight_type: str
    title: str
    content: str
    confidence: float
    priority: InsightPriority
    summary: str | None = None
    related_signals: list[str] = field(default_factory=list)
    related_markets: list[str] = field(default_factory=list)
    action_items: list[str] = field(default_factory=list)

    @property
    def should_notify(self) -> bool:
        return self.priority in (InsightPriority.HIGH, InsightPriority.URGENT)
