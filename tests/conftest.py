"""Shared test fixtures."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import pytest

from market_pulse.reputation.models import TraderMetrics
from market_pulse.runtime.clock import TimeSkippingClock
from market_pulse.runtime.history import InMemoryHistoryStore
from market_pulse.signals.models import Severity, Signal, SignalType, TraderActivity
from market_pulse.store.sqlite import SqliteStore
from market_pulse.worker import build_runtime

# A Wednesday, noon UTC
START = datetime(2026, 3, 4, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _isolated_settings(tmp_path, monkeypatch):
    """Point every Settings() at a throwaway database and disable outbound channels."""
    monkeypatch.setenv("MARKET_PULSE_DB_PATH", str(tmp_path / "market_pulse.db"))
    monkeypatch.setenv("MARKET_PULSE_ANTHROPIC_API_KEY", "")
    monkeypatch.setenv("MARKET_PULSE_TELEGRAM_ENABLED", "false")
    monkeypatch.delenv("MARKET_PULSE_HISTORY_DB_PATH", raising=False)
    monkeypatch.delenv("MARKET_PULSE_CORRELATION_PAIRS", raising=False)


class FakeInference:
    """Scripted stand-in for ``InferenceClient``.

    ``respond(prompt)`` returns the answer for each call; returning an
    exception instance raises it instead.
    """

    enabled = True

    def __init__(self, respond: Callable[[str], Any] | None = None) -> None:
        self._respond = respond or (lambda prompt: None)
        self.prompts: list[str] = []

    async def _answer(self, prompt: str) -> Any:
        self.prompts.append(prompt)
        answer = self._respond(prompt)
        if isinstance(answer, BaseException):
            raise answer
        return answer

    async def infer(self, prompt: str, system: str = "", max_tokens: int = 1024) -> str:
        return await self._answer(prompt)

    async def infer_json(self, prompt: str, system: str = "", max_tokens: int = 1024) -> Any:
        return await self._answer(prompt)


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple[str, dict[str, Any]]] = []

    async def notify(self, user_id: str, payload: dict[str, Any]) -> bool:
        self.sent.append((user_id, payload))
        return True


@pytest.fixture
def store(tmp_path):
    return SqliteStore(tmp_path / "test.db")


@pytest.fixture
def clock():
    return TimeSkippingClock(START)


@pytest.fixture
def history():
    return InMemoryHistoryStore()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def make_runtime(store, clock, history, notifier):
    """Factory for a fully wired runtime backed by the test store and virtual clock."""

    def _make(inference: FakeInference | None = None):
        return build_runtime(
            store=store,
            inference=inference or FakeInference(),
            notifier=notifier,
            history=history,
            clock=clock,
        )

    return _make


async def wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> None:
    """Spin the event loop until ``predicate()`` holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


def make_trade(
    user_id: str = "alice",
    order_id: str = "o1",
    symbol: str = "BTC",
    pnl: float | None = 10.0,
    executed_at: datetime | None = None,
    asset_class: str | None = "crypto",
) -> TraderActivity:
    return TraderActivity(
        user_id=user_id,
        order_id=order_id,
        symbol=symbol,
        side="buy",
        quantity=1.0,
        price=100.0,
        executed_at=executed_at or START - timedelta(minutes=1),
        pnl=pnl,
        asset_class=asset_class,
    )


def make_signal(
    title: str = "Test signal",
    severity: Severity = Severity.MEDIUM,
    confidence: float = 0.7,
    markets: list[str] | None = None,
    created_at: datetime | None = None,
) -> Signal:
    return Signal(
        type=SignalType.MARKET,
        source="test",
        title=title,
        description="Test description",
        confidence=confidence,
        severity=severity,
        related_markets=markets if markets is not None else ["BTC"],
        created_at=created_at or START,
    )


def make_metrics(user_id: str = "alice", **overrides: Any) -> TraderMetrics:
    return TraderMetrics(user_id=user_id, **overrides)
