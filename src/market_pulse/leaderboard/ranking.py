"""Leaderboard ranking and snapshot diffing."""

from __future__ import annotations

from market_pulse.leaderboard.models import (
    LeaderboardEntry,
    LeaderboardParticipant,
    LeaderboardSnapshot,
    LeaderboardType,
)

_METRIC_ATTRS = {
    LeaderboardType.PNL: "total_pnl",
    LeaderboardType.PNL_PERCENT: "total_pnl_percent",
    LeaderboardType.SHARPE_RATIO: "sharpe_ratio",
    LeaderboardType.WIN_RATE: "win_rate",
    LeaderboardType.TOTAL_TRADES: "total_trades",
    LeaderboardType.FOLLOWERS: "followers_count",
    LeaderboardType.COPIERS: "copier_count",
    LeaderboardType.REPUTATION: "reputation_score",
}


def metric_value(participant: LeaderboardParticipant, leaderboard_type: LeaderboardType) -> float:
    return float(getattr(participant, _METRIC_ATTRS[LeaderboardType(leaderboard_type)]))


def rank_participants(
    participants: list[LeaderboardParticipant],
    leaderboard_type: LeaderboardType,
    max_entries: int = 100,
) -> list[LeaderboardEntry]:
    """Sort by metric descending, ties by ascending user id, and assign ranks from 1."""
    ordered = sorted(participants, key=lambda p: (-metric_value(p, leaderboard_type), p.user_id))
    return [
        LeaderboardEntry(rank=i, user_id=p.user_id, value=metric_value(p, leaderboard_type))
        for i, p in enumerate(ordered[:max_entries], start=1)
    ]


def diff_against_previous(
    entries: list[LeaderboardEntry],
    previous: LeaderboardSnapshot | None,
) -> list[LeaderboardEntry]:
    """Fill ``previous_rank``, ``change`` and ``change_percent`` in place.

    ``change_percent`` stays None when the user has no prior entry or the
    prior value was zero.
    """
    prior = {e.user_id: e for e in previous.entries} if previous else {}
    for entry in entries:
        before = prior.get(entry.user_id)
        if before is None:
            continue
        entry.previous_rank = before.rank
        entry.change = entry.value - before.value
        if before.value != 0:
            entry.change_percent = (entry.value - before.value) / abs(before.value) * 100
    return entries


def percentile(rank: int, total_participants: int) -> float:
    """Share of participants at or below ``rank``, in percent (rank 1 -> 100)."""
    if total_participants <= 0:
        return 0.0
    return (total_participants - rank + 1) / total_participants * 100
