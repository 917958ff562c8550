"""Per-period trading statistics computed from executed trades."""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime

import numpy as np

from market_pulse.reputation.models import TraderPeriodStats
from market_pulse.signals.models import TraderActivity

# Equity the drawdown curve starts from
STARTING_EQUITY = 10_000.0
TRADING_DAYS_PER_YEAR = 252


def daily_pnl(trades: list[TraderActivity]) -> list[float]:
    """Sum realised P&L per UTC calendar day, oldest day first."""
    by_day: dict[str, float] = defaultdict(float)
    for t in trades:
        by_day[t.executed_at.date().isoformat()] += t.pnl or 0.0
    return [by_day[day] for day in sorted(by_day)]


def sharpe_ratio(daily_returns: list[float], risk_free_rate: float = 0.0) -> float:
    """Annualised Sharpe ratio of a daily return series.

    Returns 0.0 with fewer than two days or zero deviation.
    """
    if len(daily_returns) < 2:
        return 0.0
    returns = np.asarray(daily_returns, dtype=float)
    std = float(returns.std(ddof=1))
    if std == 0:
        return 0.0
    annual_return = float(returns.mean()) * TRADING_DAYS_PER_YEAR
    annual_std = std * np.sqrt(TRADING_DAYS_PER_YEAR)
    return float((annual_return - risk_free_rate) / annual_std)


def max_drawdown(trades: list[TraderActivity], starting_equity: float = STARTING_EQUITY) -> float:
    """Largest peak-to-trough decline of the equity curve, in percent."""
    if not trades:
        return 0.0
    ordered = sorted(trades, key=lambda t: t.executed_at)
    equity = starting_equity + np.cumsum([t.pnl or 0.0 for t in ordered])
    peaks = np.maximum.accumulate(np.concatenate(([starting_equity], equity)))[1:]
    drawdowns = np.where(peaks > 0, (peaks - equity) / peaks * 100.0, 0.0)
    return round(float(max(drawdowns.max(), 0.0)), 2)


def compute_period_stats(
    user_id: str,
    period: str,
    period_start: datetime,
    period_end: datetime,
    trades: list[TraderActivity],
) -> TraderPeriodStats:
    pnls = np.asarray([t.pnl or 0.0 for t in trades], dtype=float)
    n = len(trades)
    wins = int((pnls > 0).sum()) if n else 0
    losses = int((pnls < 0).sum()) if n else 0
    total = float(pnls.sum()) if n else 0.0

    return TraderPeriodStats(
        user_id=user_id,
        period=period,
        period_start=period_start,
        period_end=period_end,
        total_trades=n,
        winning_trades=wins,
        losing_trades=losses,
        win_rate=wins / n if n else 0.0,
        total_pnl=round(total, 2),
        avg_pnl=round(total / n, 2) if n else 0.0,
        sharpe_ratio=round(sharpe_ratio(daily_pnl(trades)), 3),
        max_drawdown=max_drawdown(trades),
        best_trade=float(pnls.max()) if n else 0.0,
        worst_trade=float(pnls.min()) if n else 0.0,
    )
