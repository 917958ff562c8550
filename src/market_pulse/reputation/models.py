"""Reputation data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from market_pulse.common.types import utcnow


class ReputationTier(str, Enum):
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"
    DIAMOND = "diamond"
    LEGEND = "legend"


@dataclass
class TraderMetrics:
    """Aggregate trading statistics for one trader, owned by the store.

    Percentages (max_drawdown, total_pnl_percent, volatility) are in percent,
    win_rate is a 0-1 fraction.
    """

    user_id: str
    win_rate: float = 0.0
    sharpe_ratio: float = 0.0
    sortino_ratio: float = 0.0
    max_drawdown: float = 0.0
    total_trades: int = 0
    total_pnl_percent: float = 0.0
    volatility: float = 0.0
    followers_count: int = 0
    copier_count: int = 0
    account_age_days: int = 0
    trading_days: int = 0
    positions_shared: int = 0
    comments_count: int = 0
    fraud_alert_count: int = 0
    suspicious_activity_count: int = 0
    is_verified: bool = False


@dataclass
class TraderPeriodStats:
    user_id: str
    period: str
    period_start: datetime
    period_end: datetime
    total_trades: int
    winning_trades: int
    losing_trades: int
    win_rate: float
    total_pnl: float
    avg_pnl: float
    sharpe_ratio: float
    max_drawdown: float
    best_trade: float
    worst_trade: float


@dataclass
class ComponentScores:
    performance: float
    consistency: float
    risk_management: float
    transparency: float
    social: float
    longevity: float


@dataclass
class ReputationScore:
    user_id: str
    overall_score: int
    components: ComponentScores
    tier: ReputationTier
    fraud_risk_score: float
    calculated_at: datetime = field(default_factory=utcnow)


@dataclass
class Badge:
    type: str
    name: str
    awarded_at: datetime = field(default_factory=utcnow)
