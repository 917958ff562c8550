"""Pearson correlation between two market price series."""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np

from market_pulse.signals.models import CorrelationResult, CorrelationStrength


def classify_strength(correlation: float) -> CorrelationStrength:
    """Map |r| into strength bands: >0.8 very strong, >0.6 strong, >0.4 moderate."""
    magnitude = abs(correlation)
    if magnitude > 0.8:
        return CorrelationStrength.VERY_STRONG
    if magnitude > 0.6:
        return CorrelationStrength.STRONG
    if magnitude > 0.4:
        return CorrelationStrength.MODERATE
    return CorrelationStrength.WEAK


def pearson(series_a: Sequence[float], series_b: Sequence[float]) -> float:
    """Pearson r over the first min(len) aligned points.

    Returns 0.0 with fewer than two points or when either series is constant.
    """
    n = min(len(series_a), len(series_b))
    if n < 2:
        return 0.0
    a = np.asarray(series_a[:n], dtype=float)
    b = np.asarray(series_b[:n], dtype=float)
    da = a - a.mean()
    db = b - b.mean()
    denom = float(np.sum(da * da) * np.sum(db * db))
    if denom <= 0:
        return 0.0
    r = float(np.sum(da * db) / np.sqrt(denom))
    return max(-1.0, min(1.0, r))


def correlate(
    series_a: Sequence[float],
    series_b: Sequence[float],
    market_a: str = "unknown",
    market_b: str = "unknown",
) -> CorrelationResult:
    """Correlate two price series and classify the strength.

    The coefficient is rounded to three decimals.
    """
    n = min(len(series_a), len(series_b))
    if n < 2:
        return CorrelationResult(
            market_a=market_a,
            market_b=market_b,
            correlation=0.0,
            strength=CorrelationStrength.WEAK,
            sample_size=n,
        )
    r = round(pearson(series_a, series_b), 3)
    return CorrelationResult(
        market_a=market_a,
        market_b=market_b,
        correlation=r,
        strength=classify_strength(r),
        sample_size=n,
    )
