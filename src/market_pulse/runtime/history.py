"""Execution history: the event log that makes workflows replayable.

Each command a workflow issues through its context (activity call, timer,
timestamp, id, signal delivery, child workflow) is appended as a numbered
event. Resuming a run replays those events in order instead of re-executing
their side effects. Continue-as-new deletes a run's events, which is what
keeps indefinitely repeating workflows bounded.
"""

from __future__ import annotations

import pickle
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Protocol

import aiosqlite

from market_pulse.common.types import parse_iso, utcnow


class EventKind(str, Enum):
    ACTIVITY_COMPLETED = "activity_completed"
    ACTIVITY_FAILED = "activity_failed"
    SIDE_EFFECT = "side_effect"
    TIMER_STARTED = "timer_started"
    SIGNAL_RECEIVED = "signal_received"
    CHILD_COMPLETED = "child_completed"
    CHILD_FAILED = "child_failed"


class ExecutionStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CONTINUED_AS_NEW = "continued_as_new"
    TERMINATED = "terminated"


@dataclass
class HistoryEvent:
    seq: int
    kind: EventKind
    name: str
    payload: Any = None
    recorded_at: datetime = field(default_factory=utcnow)


@dataclass
class ExecutionRecord:
    workflow_id: str
    run_id: str
    workflow_type: str
    input: Any
    status: ExecutionStatus = ExecutionStatus.RUNNING
    run_count: int = 1
    started_at: datetime = field(default_factory=utcnow)


class HistoryStore(Protocol):
    async def save_execution(self, record: ExecutionRecord) -> None:
        ...

    async def set_status(self, run_id: str, status: ExecutionStatus) -> None:
        ...

    async def append_event(self, run_id: str, event: HistoryEvent) -> None:
        ...

    async def load_events(self, run_id: str) -> list[HistoryEvent]:
        ...

    async def continue_as_new(self, previous_run_id: str, record: ExecutionRecord) -> None:
        """Open ``record`` and retire ``previous_run_id`` (status and events) as one write."""
        ...

    async def open_executions(self) -> list[ExecutionRecord]:
        ...


class InMemoryHistoryStore:
    """Process-local history. Executions do not survive a restart."""

    def __init__(self) -> None:
        self.executions: dict[str, ExecutionRecord] = {}
        self.events: dict[str, list[HistoryEvent]] = {}

    async def save_execution(self, record: ExecutionRecord) -> None:
        self.executions[record.run_id] = record
        self.events.setdefault(record.run_id, [])

    async def set_status(self, run_id: str, status: ExecutionStatus) -> None:
        if run_id in self.executions:
            self.executions[run_id].status = status

    async def append_event(self, run_id: str, event: HistoryEvent) -> None:
        self.events.setdefault(run_id, []).append(event)

    async def load_events(self, run_id: str) -> list[HistoryEvent]:
        return list(self.events.get(run_id, []))

    async def continue_as_new(self, previous_run_id: str, record: ExecutionRecord) -> None:
        self.executions[record.run_id] = record
        self.events.setdefault(record.run_id, [])
        if previous_run_id in self.executions:
            self.executions[previous_run_id].status = ExecutionStatus.CONTINUED_AS_NEW
        self.events.pop(previous_run_id, None)

    async def open_executions(self) -> list[ExecutionRecord]:
        return [r for r in self.executions.values() if r.status == ExecutionStatus.RUNNING]


_CREATE_EXECUTIONS = """
CREATE TABLE IF NOT EXISTS workflow_executions (
    run_id TEXT PRIMARY KEY,
    workflow_id TEXT NOT NULL,
    workflow_type TEXT NOT NULL,
    input BLOB,
    status TEXT NOT NULL,
    run_count INTEGER NOT NULL,
    started_at TEXT NOT NULL
);
"""

_CREATE_EVENTS = """
CREATE TABLE IF NOT EXISTS workflow_events (
    run_id TEXT NOT NULL,
    seq INTEGER NOT NULL,
    kind TEXT NOT NULL,
    name TEXT NOT NULL,
    payload BLOB,
    recorded_at TEXT NOT NULL,
    PRIMARY KEY (run_id, seq)
);
"""


class SqliteHistoryStore:
    """Durable history in SQLite (via aiosqlite).

    Payloads are pickled, so activity results may be any picklable value
    (dataclasses, enums, datetimes).
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._ready = False

    async def _ensure_db(self) -> None:
        if self._ready:
            return
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(_CREATE_EXECUTIONS)
            await db.execute(_CREATE_EVENTS)
            await db.commit()
        self._ready = True

    @staticmethod
    async def _insert_execution(db: aiosqlite.Connection, record: ExecutionRecord) -> None:
        await db.execute(
            """INSERT OR REPLACE INTO workflow_executions
               (run_id, workflow_id, workflow_type, input, status, run_count, started_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (
                record.run_id,
                record.workflow_id,
                record.workflow_type,
                pickle.dumps(record.input),
                record.status.value,
                record.run_count,
                record.started_at.isoformat(),
            ),
        )

    async def save_execution(self, record: ExecutionRecord) -> None:
        await self._ensure_db()
        async with aiosqlite.connect(str(self._db_path)) as db:
            await self._insert_execution(db, record)
            await db.commit()

    async def continue_as_new(self, previous_run_id: str, record: ExecutionRecord) -> None:
        await self._ensure_db()
        async with aiosqlite.connect(str(self._db_path)) as db:
            try:
                await self._insert_execution(db, record)
                await db.execute(
                    "UPDATE workflow_executions SET status = ? WHERE run_id = ?",
                    (ExecutionStatus.CONTINUED_AS_NEW.value, previous_run_id),
                )
                await db.execute("DELETE FROM workflow_events WHERE run_id = ?", (previous_run_id,))
                await db.commit()
            except Exception:
                await db.rollback()
                raise

    async def set_status(self, run_id: str, status: ExecutionStatus) -> None:
        await self._ensure_db()
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(
                "UPDATE workflow_executions SET status = ? WHERE run_id = ?",
                (status.value, run_id),
            )
            await db.commit()

    async def append_event(self, run_id: str, event: HistoryEvent) -> None:
        await self._ensure_db()
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(
                """INSERT INTO workflow_events (run_id, seq, kind, name, payload, recorded_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    run_id,
                    event.seq,
                    event.kind.value,
                    event.name,
                    pickle.dumps(event.payload),
                    event.recorded_at.isoformat(),
                ),
            )
            await db.commit()

    async def load_events(self, run_id: str) -> list[HistoryEvent]:
        await self._ensure_db()
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT * FROM workflow_events WHERE run_id = ? ORDER BY seq", (run_id,),
            )
            rows = await cursor.fetchall()
        return [
            HistoryEvent(
                seq=row["seq"],
                kind=EventKind(row["kind"]),
                name=row["name"],
                payload=pickle.loads(row["payload"]),
                recorded_at=parse_iso(row["recorded_at"]) or utcnow(),
            )
            for row in rows
        ]

    async def open_executions(self) -> list[ExecutionRecord]:
        await self._ensure_db()
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT * FROM workflow_executions WHERE status = ? ORDER BY started_at",
                (ExecutionStatus.RUNNING.value,),
            )
            rows = await cursor.fetchall()
        return [
            ExecutionRecord(
                workflow_id=row["workflow_id"],
                run_id=row["run_id"],
                workflow_type=row["workflow_type"],
                input=pickle.loads(row["input"]),
                status=ExecutionStatus(row["status"]),
                run_count=row["run_count"],
                started_at=parse_iso(row["started_at"]) or utcnow(),
            )
            for row in rows
        ]
