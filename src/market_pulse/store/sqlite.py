"""SQLite store (via aiosqlite) for markets, trades, signals, reputation and leaderboards."""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite

from market_pulse.common.types import dumps, parse_iso, utcnow
from market_pulse.config import get_settings
from market_pulse.leaderboard.models import (
    LeaderboardEntry,
    LeaderboardParticipant,
    LeaderboardSnapshot,
    LeaderboardType,
)
from market_pulse.leaderboard.ranking import percentile
from market_pulse.reputation.models import Badge, ReputationScore, TraderMetrics, TraderPeriodStats
from market_pulse.reputation.stats import STARTING_EQUITY, daily_pnl, sharpe_ratio
from market_pulse.signals.models import (
    CorrelationResult,
    MarketSnapshot,
    Position,
    Signal,
    TraderActivity,
    UserInsight,
)

logger = logging.getLogger(__name__)

_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS markets (
        ticker TEXT PRIMARY KEY,
        price REAL NOT NULL,
        previous_price REAL NOT NULL,
        volume REAL NOT NULL,
        previous_volume REAL NOT NULL,
        open_interest REAL,
        active INTEGER NOT NULL DEFAULT 1,
        updated_at TEXT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS market_history (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        ticker TEXT NOT NULL,
        price REAL NOT NULL,
        volume REAL NOT NULL,
        recorded_at TEXT NOT NULL
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_market_history_ticker ON market_history(ticker, recorded_at);",
    """
    CREATE TABLE IF NOT EXISTS trades (
        order_id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        symbol TEXT NOT NULL,
        side TEXT NOT NULL,
        quantity REAL NOT NULL,
        price REAL NOT NULL,
        pnl REAL,
        asset_class TEXT,
        executed_at TEXT NOT NULL
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_trades_user ON trades(user_id, executed_at);",
    """
    CREATE TABLE IF NOT EXISTS positions (
        user_id TEXT NOT NULL,
        symbol TEXT NOT NULL,
        quantity REAL NOT NULL,
        pnl REAL NOT NULL,
        PRIMARY KEY (user_id, symbol)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS traders (
        user_id TEXT PRIMARY KEY,
        metrics TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS trader_stats (
        user_id TEXT NOT NULL,
        period TEXT NOT NULL,
        period_start TEXT NOT NULL,
        data TEXT NOT NULL,
        PRIMARY KEY (user_id, period, period_start)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS signals (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        type TEXT NOT NULL,
        source TEXT NOT NULL,
        source_id TEXT,
        title TEXT NOT NULL,
        severity TEXT NOT NULL,
        confidence REAL NOT NULL,
        markets TEXT NOT NULL,
        data TEXT NOT NULL,
        expired INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_signals_created ON signals(created_at);",
    """
    CREATE TABLE IF NOT EXISTS correlations (
        market_a TEXT NOT NULL,
        market_b TEXT NOT NULL,
        correlation REAL NOT NULL,
        strength TEXT NOT NULL,
        sample_size INTEGER NOT NULL,
        explanation TEXT,
        calculated_at TEXT NOT NULL,
        PRIMARY KEY (market_a, market_b)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS insights (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        insight_type TEXT NOT NULL,
        title TEXT NOT NULL,
        priority TEXT NOT NULL,
        data TEXT NOT NULL,
        created_at TEXT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS reputation_scores (
        user_id TEXT PRIMARY KEY,
        overall_score INTEGER NOT NULL,
        tier TEXT NOT NULL,
        fraud_risk_score REAL NOT NULL,
        components TEXT NOT NULL,
        calculated_at TEXT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS badges (
        user_id TEXT NOT NULL,
        badge_type TEXT NOT NULL,
        name TEXT NOT NULL,
        awarded_at TEXT NOT NULL,
        PRIMARY KEY (user_id, badge_type)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS leaderboard_snapshots (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        snapshot_key TEXT NOT NULL,
        leaderboard_type TEXT NOT NULL,
        period TEXT NOT NULL,
        asset_class TEXT,
        period_start TEXT NOT NULL,
        total_participants INTEGER NOT NULL,
        min_qualifying_value REAL,
        entries TEXT NOT NULL,
        calculated_at TEXT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS leaderboard_history (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        leaderboard_type TEXT NOT NULL,
        period TEXT NOT NULL,
        asset_class TEXT,
        rank INTEGER NOT NULL,
        value REAL NOT NULL,
        percentile REAL NOT NULL,
        recorded_at TEXT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS audit_log (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        action TEXT NOT NULL,
        resource_type TEXT NOT NULL,
        resource_id TEXT NOT NULL,
        actor TEXT NOT NULL,
        metadata TEXT NOT NULL,
        created_at TEXT NOT NULL
    );
    """,
]


def _row_to_trade(row: aiosqlite.Row) -> TraderActivity:
    return TraderActivity(
        user_id=row["user_id"],
        order_id=row["order_id"],
        symbol=row["symbol"],
        side=row["side"],
        quantity=row["quantity"],
        price=row["price"],
        executed_at=parse_iso(row["executed_at"]) or utcnow(),
        pnl=row["pnl"],
        asset_class=row["asset_class"],
    )


class SqliteStore:
    """Default ``Store`` implementation.

    Opens a short-lived connection per operation; the schema is created on
    first use.
    """

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path or get_settings().db_path
        self._ready = False

    async def _ensure_db(self) -> None:
        if self._ready:
            return
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(str(self._db_path)) as db:
            for statement in _SCHEMA:
                await db.execute(statement)
            await db.commit()
        self._ready = True

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[aiosqlite.Connection]:
        await self._ensure_db()
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            yield db

    # -- ingestion -----------------------------------------------------

    async def record_market_tick(
        self,
        ticker: str,
        price: float,
        volume: float,
        at: datetime | None = None,
        open_interest: float | None = None,
    ) -> None:
        """Record a new price/volume observation; the prior one becomes ``previous``."""
        at = at or utcnow()
        async with self._connect() as db:
            cursor = await db.execute("SELECT price, volume FROM markets WHERE ticker = ?", (ticker,))
            row = await cursor.fetchone()
            prev_price, prev_volume = (row["price"], row["volume"]) if row else (price, volume)
            await db.execute(
                """INSERT OR REPLACE INTO markets
                   (ticker, price, previous_price, volume, previous_volume, open_interest, active, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, 1, ?)""",
                (ticker, price, prev_price, volume, prev_volume, open_interest, at.isoformat()),
            )
            await db.execute(
                "INSERT INTO market_history (ticker, price, volume, recorded_at) VALUES (?, ?, ?, ?)",
                (ticker, price, volume, at.isoformat()),
            )
            await db.commit()

    async def set_market_active(self, ticker: str, active: bool) -> None:
        async with self._connect() as db:
            await db.execute("UPDATE markets SET active = ? WHERE ticker = ?", (int(active), ticker))
            await db.commit()

    async def record_trade(self, trade: TraderActivity) -> None:
        async with self._connect() as db:
            await db.execute(
                """INSERT OR REPLACE INTO trades
                   (order_id, user_id, symbol, side, quantity, price, pnl, asset_class, executed_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    trade.order_id,
                    trade.user_id,
                    trade.symbol,
                    trade.side,
                    trade.quantity,
                    trade.price,
                    trade.pnl,
                    trade.asset_class,
                    trade.executed_at.isoformat(),
                ),
            )
            await db.commit()

    async def upsert_position(self, user_id: str, position: Position) -> None:
        async with self._connect() as db:
            await db.execute(
                "INSERT OR REPLACE INTO positions (user_id, symbol, quantity, pnl) VALUES (?, ?, ?, ?)",
                (user_id, position.symbol, position.quantity, position.pnl),
            )
            await db.commit()

    async def upsert_trader_metrics(self, metrics: TraderMetrics) -> None:
        async with self._connect() as db:
            await db.execute(
                "INSERT OR REPLACE INTO traders (user_id, metrics, updated_at) VALUES (?, ?, ?)",
                (metrics.user_id, dumps(metrics), utcnow().isoformat()),
            )
            await db.commit()

    # -- markets -------------------------------------------------------

    async def fetch_active_markets(self) -> list[MarketSnapshot]:
        async with self._connect() as db:
            cursor = await db.execute("SELECT * FROM markets WHERE active = 1 ORDER BY ticker")
            rows = await cursor.fetchall()
        return [
            MarketSnapshot(
                ticker=row["ticker"],
                price=row["price"],
                previous_price=row["previous_price"],
                volume=row["volume"],
                previous_volume=row["previous_volume"],
                open_interest=row["open_interest"],
                timestamp=parse_iso(row["updated_at"]) or utcnow(),
            )
            for row in rows
        ]

    async def fetch_price_history(self, ticker: str, since: datetime) -> list[float]:
        async with self._connect() as db:
            cursor = await db.execute(
                """SELECT price FROM market_history
                   WHERE ticker = ? AND recorded_at >= ?
                   ORDER BY recorded_at, id""",
                (ticker, since.isoformat()),
            )
            rows = await cursor.fetchall()
        return [row["price"] for row in rows]

    # -- trades and positions ------------------------------------------

    async def fetch_trades_since(self, since: datetime) -> list[TraderActivity]:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT * FROM trades WHERE executed_at >= ? ORDER BY executed_at", (since.isoformat(),),
            )
            rows = await cursor.fetchall()
        return [_row_to_trade(row) for row in rows]

    async def fetch_user_trades(self, user_id: str, start: datetime, end: datetime) -> list[TraderActivity]:
        async with self._connect() as db:
            cursor = await db.execute(
                """SELECT * FROM trades
                   WHERE user_id = ? AND executed_at >= ? AND executed_at < ?
                   ORDER BY executed_at""",
                (user_id, start.isoformat(), end.isoformat()),
            )
            rows = await cursor.fetchall()
        return [_row_to_trade(row) for row in rows]

    async def fetch_positions(self, user_id: str) -> list[Position]:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT * FROM positions WHERE user_id = ? AND quantity != 0 ORDER BY symbol", (user_id,),
            )
            rows = await cursor.fetchall()
        return [Position(symbol=row["symbol"], quantity=row["quantity"], pnl=row["pnl"]) for row in rows]

    async def fetch_active_users(self) -> list[str]:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT DISTINCT user_id FROM positions WHERE quantity != 0 ORDER BY user_id"
            )
            rows = await cursor.fetchall()
        return [row["user_id"] for row in rows]

    # -- signals -------------------------------------------------------

    async def store_signal(self, signal: Signal) -> int:
        async with self._connect() as db:
            cursor = await db.execute(
                """INSERT INTO signals
                   (type, source, source_id, title, severity, confidence, markets, data, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    signal.type.value,
                    signal.source,
                    signal.source_id,
                    signal.title,
                    signal.severity.value,
                    signal.confidence,
                    ",".join(signal.related_markets),
                    dumps(signal),
                    signal.created_at.isoformat(),
                ),
            )
            await db.commit()
            return cursor.lastrowid

    async def fetch_signals_since(self, since: datetime, markets: list[str] | None = None) -> list[Signal]:
        async with self._connect() as db:
            cursor = await db.execute(
                """SELECT data FROM signals
                   WHERE expired = 0 AND created_at >= ?
                   ORDER BY created_at DESC, id DESC""",
                (since.isoformat(),),
            )
            rows = await cursor.fetchall()
        signals = [Signal.from_dict(json.loads(row["data"])) for row in rows]
        if markets is not None:
            wanted = set(markets)
            signals = [s for s in signals if wanted.intersection(s.related_markets)]
        return signals

    async def expire_signals(self, before: datetime) -> int:
        async with self._connect() as db:
            cursor = await db.execute(
                "UPDATE signals SET expired = 1 WHERE expired = 0 AND created_at < ?", (before.isoformat(),),
            )
            await db.commit()
            return cursor.rowcount

    async def upsert_correlation(self, result: CorrelationResult, calculated_at: datetime) -> bool:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT 1 FROM correlations WHERE market_a = ? AND market_b = ?",
                (result.market_a, result.market_b),
            )
            exists = await cursor.fetchone() is not None
            await db.execute(
                """INSERT OR REPLACE INTO correlations
                   (market_a, market_b, correlation, strength, sample_size, explanation, calculated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (
                    result.market_a,
                    result.market_b,
                    result.correlation,
                    result.strength.value,
                    result.sample_size,
                    result.explanation,
                    calculated_at.isoformat(),
                ),
            )
            await db.commit()
        return not exists

    async def fetch_correlation(self, market_a: str, market_b: str) -> dict[str, Any] | None:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT * FROM correlations WHERE market_a = ? AND market_b = ?", (market_a, market_b),
            )
            row = await cursor.fetchone()
        return dict(row) if row else None

    async def store_insight(self, insight: UserInsight, created_at: datetime) -> int:
        async with self._connect() as db:
            cursor = await db.execute(
                """INSERT INTO insights (user_id, insight_type, title, priority, data, created_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    insight.user_id,
                    insight.insight_type,
                    insight.title,
                    insight.priority.value,
                    dumps(insight),
                    created_at.isoformat(),
                ),
            )
            await db.commit()
            return cursor.lastrowid

    async def fetch_insights(self, user_id: str, limit: int = 10) -> list[dict[str, Any]]:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT data FROM insights WHERE user_id = ? ORDER BY created_at DESC, id DESC LIMIT ?",
                (user_id, limit),
            )
            rows = await cursor.fetchall()
        return [json.loads(row["data"]) for row in rows]

    # -- reputation ----------------------------------------------------

    async def fetch_trader_metrics(self, user_id: str) -> TraderMetrics | None:
        async with self._connect() as db:
            cursor = await db.execute("SELECT metrics FROM traders WHERE user_id = ?", (user_id,))
            row = await cursor.fetchone()
        if row is None:
            return None
        return TraderMetrics(**json.loads(row["metrics"]))

    async def store_period_stats(self, stats: TraderPeriodStats) -> None:
        async with self._connect() as db:
            await db.execute(
                """INSERT OR REPLACE INTO trader_stats (user_id, period, period_start, data)
                   VALUES (?, ?, ?, ?)""",
                (stats.user_id, stats.period, stats.period_start.isoformat(), dumps(stats)),
            )
            await db.commit()

    async def fetch_period_stats(self, user_id: str) -> list[dict[str, Any]]:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT data FROM trader_stats WHERE user_id = ? ORDER BY period", (user_id,),
            )
            rows = await cursor.fetchall()
        return [json.loads(row["data"]) for row in rows]

    async def store_reputation(self, score: ReputationScore) -> None:
        async with self._connect() as db:
            await db.execute(
                """INSERT OR REPLACE INTO reputation_scores
                   (user_id, overall_score, tier, fraud_risk_score, components, calculated_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    score.user_id,
                    score.overall_score,
                    score.tier.value,
                    score.fraud_risk_score,
                    dumps(score.components),
                    score.calculated_at.isoformat(),
                ),
            )
            await db.commit()

    async def fetch_reputation(self, user_id: str) -> dict[str, Any] | None:
        async with self._connect() as db:
            cursor = await db.execute("SELECT * FROM reputation_scores WHERE user_id = ?", (user_id,))
            row = await cursor.fetchone()
        if row is None:
            return None
        record = dict(row)
        record["components"] = json.loads(record["components"])
        return record

    async def fetch_badges(self, user_id: str) -> list[Badge]:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT * FROM badges WHERE user_id = ? ORDER BY awarded_at, badge_type", (user_id,),
            )
            rows = await cursor.fetchall()
        return [
            Badge(type=row["badge_type"], name=row["name"], awarded_at=parse_iso(row["awarded_at"]) or utcnow())
            for row in rows
        ]

    async def award_badge(self, user_id: str, badge: Badge) -> bool:
        async with self._connect() as db:
            cursor = await db.execute(
                "INSERT OR IGNORE INTO badges (user_id, badge_type, name, awarded_at) VALUES (?, ?, ?, ?)",
                (user_id, badge.type, badge.name, badge.awarded_at.isoformat()),
            )
            await db.commit()
            return cursor.rowcount == 1

    # -- leaderboards --------------------------------------------------

    async def fetch_leaderboard_participants(
        self, start: datetime, end: datetime, asset_class: str | None, min_trades: int,
    ) -> list[LeaderboardParticipant]:
        """Aggregate each trader's trades in ``[start, end)`` into ranking inputs."""
        query = "SELECT * FROM trades WHERE executed_at >= ? AND executed_at < ?"
        params: list[Any] = [start.isoformat(), end.isoformat()]
        if asset_class:
            query += " AND asset_class = ?"
            params.append(asset_class)

        async with self._connect() as db:
            cursor = await db.execute(query, params)
            trade_rows = await cursor.fetchall()
            cursor = await db.execute("SELECT user_id, metrics FROM traders")
            metrics = {row["user_id"]: json.loads(row["metrics"]) for row in await cursor.fetchall()}
            cursor = await db.execute("SELECT user_id, overall_score FROM reputation_scores")
            reputation = {row["user_id"]: row["overall_score"] for row in await cursor.fetchall()}

        by_user: dict[str, list[TraderActivity]] = defaultdict(list)
        for row in trade_rows:
            by_user[row["user_id"]].append(_row_to_trade(row))

        participants = []
        for user_id, trades in by_user.items():
            if len(trades) < min_trades:
                continue
            pnls = [t.pnl or 0.0 for t in trades]
            total = sum(pnls)
            info = metrics.get(user_id, {})
            participants.append(
                LeaderboardParticipant(
                    user_id=user_id,
                    total_trades=len(trades),
                    total_pnl=total,
                    total_pnl_percent=total / STARTING_EQUITY * 100,
                    sharpe_ratio=sharpe_ratio(daily_pnl(trades)),
                    win_rate=sum(1 for p in pnls if p > 0) / len(trades),
                    followers_count=info.get("followers_count", 0),
                    copier_count=info.get("copier_count", 0),
                    reputation_score=reputation.get(user_id, 0),
                )
            )
        return participants

    async def fetch_latest_snapshot(
        self, leaderboard_type: LeaderboardType, period: str, asset_class: str | None,
    ) -> LeaderboardSnapshot | None:
        async with self._connect() as db:
            cursor = await db.execute(
                """SELECT * FROM leaderboard_snapshots
                   WHERE leaderboard_type = ? AND period = ? AND asset_class IS ?
                   ORDER BY calculated_at DESC, id DESC LIMIT 1""",
                (LeaderboardType(leaderboard_type).value, period, asset_class),
            )
            row = await cursor.fetchone()
        if row is None:
            return None
        return LeaderboardSnapshot(
            leaderboard_type=LeaderboardType(row["leaderboard_type"]),
            period=row["period"],
            period_start=parse_iso(row["period_start"]) or utcnow(),
            entries=[LeaderboardEntry(**e) for e in json.loads(row["entries"])],
            total_participants=row["total_participants"],
            asset_class=row["asset_class"],
            min_qualifying_value=row["min_qualifying_value"],
            calculated_at=parse_iso(row["calculated_at"]) or utcnow(),
        )

    async def store_snapshot(self, snapshot: LeaderboardSnapshot) -> int:
        async with self._connect() as db:
            cursor = await db.execute(
                """INSERT INTO leaderboard_snapshots
                   (snapshot_key, leaderboard_type, period, asset_class, period_start,
                    total_participants, min_qualifying_value, entries, calculated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    snapshot.key,
                    snapshot.leaderboard_type.value,
                    snapshot.period,
                    snapshot.asset_class,
                    snapshot.period_start.isoformat(),
                    snapshot.total_participants,
                    snapshot.min_qualifying_value,
                    dumps(snapshot.entries),
                    snapshot.calculated_at.isoformat(),
                ),
            )
            await db.commit()
            return cursor.lastrowid

    async def append_leaderboard_history(self, snapshot: LeaderboardSnapshot) -> int:
        rows = [
            (
                e.user_id,
                snapshot.leaderboard_type.value,
                snapshot.period,
                snapshot.asset_class,
                e.rank,
                e.value,
                percentile(e.rank, snapshot.total_participants),
                snapshot.calculated_at.isoformat(),
            )
            for e in snapshot.entries
        ]
        async with self._connect() as db:
            await db.executemany(
                """INSERT INTO leaderboard_history
                   (user_id, leaderboard_type, period, asset_class, rank, value, percentile, recorded_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                rows,
            )
            await db.commit()
        return len(rows)

    async def fetch_leaderboard_history(self, user_id: str) -> list[dict[str, Any]]:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT * FROM leaderboard_history WHERE user_id = ? ORDER BY recorded_at, id", (user_id,),
            )
            rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    # -- audit ---------------------------------------------------------

    async def record_audit(
        self,
        action: str,
        resource_type: str,
        resource_id: str,
        metadata: dict[str, Any],
        at: datetime,
        actor: str = "system",
    ) -> None:
        async with self._connect() as db:
            await db.execute(
                """INSERT INTO audit_log (action, resource_type, resource_id, actor, metadata, created_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (action, resource_type, resource_id, actor, dumps(metadata), at.isoformat()),
            )
            await db.commit()
        logger.debug("Audit %s %s/%s", action, resource_type, resource_id)

    async def fetch_audit_log(self, resource_id: str | None = None, limit: int = 100) -> list[dict[str, Any]]:
        query = "SELECT * FROM audit_log"
        params: list[Any] = []
        if resource_id is not None:
            query += " WHERE resource_id = ?"
            params.append(resource_id)
        query += " ORDER BY id LIMIT ?"
        params.append(limit)
        async with self._connect() as db:
            cursor = await db.execute(query, params)
            rows = await cursor.fetchall()
        records = []
        for row in rows:
            record = dict(row)
            record["metadata"] = json.loads(record["metadata"])
            records.append(record)
        return records
