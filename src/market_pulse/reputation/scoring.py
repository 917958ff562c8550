"""Reputation scoring.

The overall score (0-1000) is a weighted blend of six component scores, each
on a 0-100 scale:

    performance      25%   win rate, total return, Sharpe
    consistency      20%   volatility, trading frequency, trade count
    risk management  20%   drawdown, Sortino, Sharpe
    transparency     10%   verification, shared positions, comments
    social           10%   followers and copiers (log scale)
    longevity        15%   account age, active trading days

A separate fraud risk score (0-100, lower is better) flags alerts and
implausible performance.
"""

from __future__ import annotations

import math
from datetime import datetime

from market_pulse.common.types import utcnow
from market_pulse.reputation.models import ComponentScores, ReputationScore, ReputationTier, TraderMetrics

WEIGHTS = {
    "performance": 0.25,
    "consistency": 0.20,
    "risk_management": 0.20,
    "transparency": 0.10,
    "social": 0.10,
    "longevity": 0.15,
}

# Highest threshold first
TIER_THRESHOLDS = [
    (950, ReputationTier.LEGEND),
    (800, ReputationTier.DIAMOND),
    (600, ReputationTier.PLATINUM),
    (400, ReputationTier.GOLD),
    (200, ReputationTier.SILVER),
    (0, ReputationTier.BRONZE),
]


def _ratio_points(ratio: float, cap: float = 30.0) -> float:
    """Ratios of 2 or more earn the full cap."""
    return min(cap, max(0.0, ratio * 15))


def performance_score(m: TraderMetrics) -> float:
    score = min(30.0, m.win_rate * 50)
    score += min(40.0, max(0.0, m.total_pnl_percent) * 0.4)
    score += _ratio_points(m.sharpe_ratio)
    return min(100.0, score)


def consistency_score(m: TraderMetrics) -> float:
    score = max(0.0, 50 - m.volatility * 2)
    score += min(25.0, m.trading_days / 10)
    score += min(25.0, m.total_trades / 40)
    return min(100.0, score)


def risk_management_score(m: TraderMetrics) -> float:
    # 0% drawdown earns 40 points, 50% earns none
    score = max(0.0, 40 - m.max_drawdown * 0.8)
    score += _ratio_points(m.sortino_ratio)
    score += _ratio_points(m.sharpe_ratio)
    return min(100.0, score)


def transparency_score(m: TraderMetrics) -> float:
    score = 40.0 if m.is_verified else 0.0
    score += min(30.0, m.positions_shared / 3)
    score += min(30.0, m.comments_count / 10)
    return min(100.0, score)


def social_score(m: TraderMetrics) -> float:
    score = min(50.0, math.log10(m.followers_count + 1) * 16.67)
    score += min(50.0, math.log10(m.copier_count + 1) * 25)
    return min(100.0, score)


def longevity_score(m: TraderMetrics) -> float:
    # Two years of account age and 500 trading days each earn 50
    score = min(50.0, m.account_age_days / 14.6)
    score += min(50.0, m.trading_days / 10)
    return min(100.0, score)


def fraud_risk_score(m: TraderMetrics) -> float:
    risk = m.fraud_alert_count * 20 + m.suspicious_activity_count * 5
    if m.win_rate > 0.8 and m.total_trades > 100:
        risk += 15
    if m.max_drawdown < 2 and m.total_pnl_percent > 100:
        risk += 10
    return float(min(100, risk))


def determine_tier(overall: int) -> ReputationTier:
    for threshold, tier in TIER_THRESHOLDS:
        if overall >= threshold:
            return tier
    return ReputationTier.BRONZE


def compute_reputation(metrics: TraderMetrics, calculated_at: datetime | None = None) -> ReputationScore:
    components = ComponentScores(
        performance=performance_score(metrics),
        consistency=consistency_score(metrics),
        risk_management=risk_management_score(metrics),
        transparency=transparency_score(metrics),
        social=social_score(metrics),
        longevity=longevity_score(metrics),
    )
    weighted = sum(getattr(components, name) * weight for name, weight in WEIGHTS.items())
    overall = round(weighted * 10)
    return ReputationScore(
        user_id=metrics.user_id,
        overall_score=overall,
        components=components,
        tier=determine_tier(overall),
        fraud_risk_score=fraud_risk_score(metrics),
        calculated_at=calculated_at or utcnow(),
    )
