"""Tests for signal output formatters: Rich table and JSON."""

from __future__ import annotations

import io
import json
from datetime import datetime

import pytest
from rich.console import Console

from market_pulse.signals.formatters import format_json, format_table, signal_to_dict
from market_pulse.signals.models import Sentiment, Severity

from conftest import START, make_signal


@pytest.fixture
def multiple_signals():
    """Mixed severities and confidences for testing sort order."""
    return [
        make_signal(title="Medium confident", severity=Severity.MEDIUM, confidence=0.9, markets=["ETH"]),
        make_signal(title="Critical", severity=Severity.CRITICAL, confidence=0.6, markets=["BTC"]),
        make_signal(title="High weak", severity=Severity.HIGH, confidence=0.55, markets=["SPY"]),
        make_signal(title="High strong", severity=Severity.HIGH, confidence=0.95, markets=["TLT"]),
        make_signal(title="Low", severity=Severity.LOW, confidence=0.99, markets=[]),
    ]


class TestFormatJson:
    def test_json_valid(self):
        data = json.loads(format_json([make_signal()]))
        assert isinstance(data, list)
        assert len(data) == 1

    def test_json_fields(self):
        signal = make_signal(title="BTC breakout", confidence=0.85, markets=["BTC"])
        signal.sentiment = Sentiment.BULLISH
        signal.price_impact = 7.5
        entry = json.loads(format_json([signal]))[0]
        assert entry["title"] == "BTC breakout"
        assert entry["type"] == "market"
        assert entry["severity"] == "medium"
        assert entry["confidence"] == 0.85
        assert entry["related_markets"] == ["BTC"]
        assert entry["sentiment"] == "bullish"
        assert entry["price_impact"] == 7.5

    def test_json_sorted_by_severity_then_confidence(self, multiple_signals):
        data = json.loads(format_json(multiple_signals))
        assert [d["title"] for d in data] == ["Critical", "High strong", "High weak", "Medium confident", "Low"]

    def test_json_empty_list(self):
        assert json.loads(format_json([])) == []

    def test_json_timestamp_iso(self):
        data = json.loads(format_json([make_signal()]))
        assert datetime.fromisoformat(data[0]["created_at"]) == START

    def test_signal_to_dict_without_sentiment(self):
        assert signal_to_dict(make_signal())["sentiment"] is None


class TestFormatTable:
    def test_table_title(self):
        """Rich table rendering should not raise."""
        console = Console(file=io.StringIO(), width=200)
        format_table([make_signal()], console, now=START)
        output = console.file.getvalue()
        assert "Market Pulse Signals" in output
        assert "Generated at 2026-03-04 12:00 UTC" in output

    def test_table_empty_signals(self):
        """Empty signal list should show 'no signals' message."""
        console = Console(file=io.StringIO())
        format_table([], console)
        assert "No active signals." in console.file.getvalue()

    def test_table_contains_data(self, multiple_signals):
        console = Console(file=io.StringIO(), width=200)
        format_table(multiple_signals, console)
        output = console.file.getvalue()
        assert "critical" in output
        assert "High strong" in output
        assert "95%" in output
        assert "5 signal(s) total" in output

    def test_table_rows_ordered(self, multiple_signals):
        console = Console(file=io.StringIO(), width=200)
        format_table(multiple_signals, console)
        output = console.file.getvalue()
        assert output.index("Critical") < output.index("High strong") < output.index("Low")
