"""Tests for the badge rule table and rank badges."""

from __future__ import annotations

from market_pulse.reputation.badges import BADGE_RULES, evaluate_badges, rank_badge

from conftest import START, make_metrics


def _types(badges):
    return [b.type for b in badges]


class TestEvaluateBadges:
    def test_nothing_earned(self):
        m = make_metrics(max_drawdown=30)
        assert evaluate_badges(m, [], START) == []

    def test_rule_table_order(self):
        m = make_metrics(
            is_verified=True,
            win_rate=0.65,
            total_trades=1200,
            max_drawdown=4,
            sharpe_ratio=2.0,
            account_age_days=400,
        )
        assert _types(evaluate_badges(m, [], START)) == [
            "verified_trader",
            "consistent_winner",
            "risk_manager",
            "high_volume",
            "early_adopter",
            "low_drawdown",
        ]

    def test_held_badges_are_not_reawarded(self):
        m = make_metrics(is_verified=True, account_age_days=400, max_drawdown=30)
        earned = evaluate_badges(m, ["verified_trader"], START)
        assert _types(earned) == ["early_adopter"]

    def test_reevaluation_is_empty(self):
        m = make_metrics(is_verified=True, total_pnl_percent=75, max_drawdown=30)
        first = evaluate_badges(m, [], START)
        again = evaluate_badges(m, _types(first), START)
        assert _types(first) == ["verified_trader", "profitable_streak"]
        assert again == []

    def test_community_leader_needs_both(self):
        m = make_metrics(followers_count=5000, positions_shared=10, max_drawdown=30)
        assert evaluate_badges(m, [], START) == []
        m.positions_shared = 100
        assert _types(evaluate_badges(m, [], START)) == ["community_leader"]

    def test_awarded_at_and_names(self):
        m = make_metrics(is_verified=True, max_drawdown=30)
        badge = evaluate_badges(m, [], START)[0]
        assert badge.name == "Verified Trader"
        assert badge.awarded_at == START

    def test_eight_rules(self):
        assert len(BADGE_RULES) == 8
        assert len({r.type for r in BADGE_RULES}) == 8


class TestRankBadge:
    def test_top_10(self):
        assert rank_badge(1) == ("top_10", "Top 10 Trader")
        assert rank_badge(10) == ("top_10", "Top 10 Trader")

    def test_top_100(self):
        assert rank_badge(11) == ("top_100", "Top 100 Trader")
        assert rank_badge(100) == ("top_100", "Top 100 Trader")

    def test_outside_top_100(self):
        assert rank_badge(101) is None
        assert rank_badge(0) is None
