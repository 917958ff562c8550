"""Price and volume anomaly detection."""

from __future__ import annotations

from datetime import datetime

from market_pulse.common.types import utcnow
from market_pulse.signals.models import MarketSnapshot, Sentiment, Severity, Signal, SignalType

# A move must strictly exceed these to be flagged
PRICE_MOVE_THRESHOLD_PCT = 5.0
VOLUME_SPIKE_THRESHOLD_PCT = 100.0


def percent_change(current: float, previous: float) -> float | None:
    """Percentage change from ``previous`` to ``current``; None when undefined."""
    if previous == 0:
        return None
    return (current - previous) / previous * 100.0


def price_severity(abs_change_pct: float) -> Severity:
    if abs_change_pct > 20:
        return Severity.CRITICAL
    if abs_change_pct > 10:
        return Severity.HIGH
    return Severity.MEDIUM


def volume_severity(change_pct: float) -> Severity:
    if change_pct > 500:
        return Severity.HIGH
    if change_pct > 200:
        return Severity.MEDIUM
    return Severity.LOW


def detect_market_anomalies(market: MarketSnapshot, detected_at: datetime | None = None) -> list[Signal]:
    """Classify one market's price and volume moves.

    Price and volume are judged independently, so one market can yield zero,
    one or two signals.
    """
    detected_at = detected_at or utcnow()
    signals: list[Signal] = []
    raw = {
        "ticker": market.ticker,
        "price": market.price,
        "previous_price": market.previous_price,
        "volume": market.volume,
        "previous_volume": market.previous_volume,
    }

    price_change = percent_change(market.price, market.previous_price)
    if price_change is not None and abs(price_change) > PRICE_MOVE_THRESHOLD_PCT:
        signals.append(
            Signal(
                type=SignalType.UNUSUAL_ACTIVITY,
                source="market_monitor",
                title=f"Significant Price Movement: {market.ticker}",
                description=f"{market.ticker} has moved {price_change:.2f}% in the monitored period",
                confidence=min(abs(price_change) / 20.0, 1.0),
                severity=price_severity(abs(price_change)),
                related_markets=[market.ticker],
                sentiment=Sentiment.BULLISH if price_change > 0 else Sentiment.BEARISH,
                price_impact=price_change,
                time_horizon="immediate",
                raw_data=raw,
                created_at=detected_at,
            )
        )

    volume_change = percent_change(market.volume, market.previous_volume)
    if volume_change is not None and volume_change > VOLUME_SPIKE_THRESHOLD_PCT:
        signals.append(
            Signal(
                type=SignalType.UNUSUAL_ACTIVITY,
                source="volume_monitor",
                title=f"Volume Spike: {market.ticker}",
                description=f"{market.ticker} volume increased {volume_change:.0f}%",
                confidence=min(volume_change / 500.0, 1.0),
                severity=volume_severity(volume_change),
                related_markets=[market.ticker],
                sentiment=Sentiment.NEUTRAL,
                time_horizon="immediate",
                raw_data=raw,
                created_at=detected_at,
            )
        )

    return signals


def detect_anomalies(markets: list[MarketSnapshot], detected_at: datetime | None = None) -> list[Signal]:
    """Run ``detect_market_anomalies`` over every market, preserving order."""
    signals: list[Signal] = []
    for market in markets:
        signals.extend(detect_market_anomalies(market, detected_at))
    return signals
