"""Per-execution workflow context: the only door to non-determinism."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Callable, NoReturn

from market_pulse.config import get_settings
from market_pulse.runtime.activity import STANDARD_ACTIVITY, ActivityOptions, run_activity
from market_pulse.runtime.errors import (
    ActivityError,
    ContinueAsNew,
    NonDeterminismError,
    WorkflowError,
    WorkflowFailedError,
)
from market_pulse.runtime.history import EventKind, HistoryEvent

if TYPE_CHECKING:
    from market_pulse.runtime.engine import WorkflowHandle, WorkflowRuntime
    from market_pulse.runtime.workflow import Workflow

logger = logging.getLogger(__name__)


class ActivityStub:
    """Attribute access proxy: ``stub.store_signal(sig)`` runs the activity."""

    def __init__(self, ctx: WorkflowContext, options: ActivityOptions) -> None:
        self._ctx = ctx
        self._options = options

    def __getattr__(self, name: str) -> Callable[..., Any]:
        if name.startswith("_"):
            raise AttributeError(name)

        async def call(*args: Any) -> Any:
            return await self._ctx.execute_activity(name, *args, options=self._options)

        call.__name__ = name
        return call


class WorkflowContext:
    def __init__(
        self,
        runtime: WorkflowRuntime,
        handle: WorkflowHandle,
        run_id: str,
        recorded: list[HistoryEvent],
    ) -> None:
        self._runtime = runtime
        self._handle = handle
        self._run_id = run_id
        self._recorded = {event.seq: event for event in recorded}
        self._replay_until = max(self._recorded, default=-1) + 1
        self._seq = 0
        self._event_count = len(recorded)

    @property
    def workflow_id(self) -> str:
        return self._handle.workflow_id

    @property
    def run_id(self) -> str:
        return self._run_id

    @property
    def run_count(self) -> int:
        return self._handle.run_count

    @property
    def is_replaying(self) -> bool:
        return self._seq < self._replay_until

    # -- history -------------------------------------------------------

    def _take_seq(self) -> int:
        seq = self._seq
        self._seq += 1
        return seq

    def _replayed(self, seq: int, kinds: tuple[EventKind, ...], name: str) -> HistoryEvent | None:
        event = self._recorded.get(seq)
        if event is None:
            return None
        if event.kind not in kinds or event.name != name:
            raise NonDeterminismError(
                f"{self.workflow_id}: event {seq} is {event.kind.value}:{event.name}, "
                f"workflow issued {kinds[0].value}:{name}"
            )
        return event

    async def _append(self, seq: int, kind: EventKind, name: str, payload: Any) -> None:
        event = HistoryEvent(seq=seq, kind=kind, name=name, payload=payload, recorded_at=self._runtime.clock.now())
        await self._runtime.history.append_event(self._run_id, event)
        self._event_count += 1
        if self._event_count == self._runtime.max_history_events:
            logger.warning(
                "%s: history reached %d events; long-running loops should continue as new",
                self.workflow_id, self._event_count,
            )

    # -- signals -------------------------------------------------------

    async def checkpoint(self) -> None:
        """Deliver queued signals to the workflow.

        Called automatically before every activity, timer and child workflow.
        During replay only the signals recorded at this position are re-applied.
        """
        instance = self._handle.instance
        while True:
            event = self._recorded.get(self._seq)
            if event is None or event.kind != EventKind.SIGNAL_RECEIVED:
                break
            self._seq += 1
            instance.handle_signal(event.name, event.payload)
        if self.is_replaying:
            return
        while self._handle.pending_signals:
            name, payload = self._handle.pending_signals.popleft()
            await self._append(self._take_seq(), EventKind.SIGNAL_RECEIVED, name, payload)
            instance.handle_signal(name, payload)

    # -- commands ------------------------------------------------------

    def activity_stub(self, options: ActivityOptions = STANDARD_ACTIVITY) -> ActivityStub:
        return ActivityStub(self, options)

    async def execute_activity(self, name: str, *args: Any, options: ActivityOptions = STANDARD_ACTIVITY) -> Any:
        await self.checkpoint()
        seq = self._take_seq()
        event = self._replayed(seq, (EventKind.ACTIVITY_COMPLETED, EventKind.ACTIVITY_FAILED), name)
        if event is not None:
            if event.kind == EventKind.ACTIVITY_FAILED:
                raise ActivityError(**event.payload)
            return event.payload

        fn = getattr(self._runtime.activities, name, None)
        if fn is None:
            raise WorkflowError(f"No activity named {name!r} is registered")

        try:
            result = await run_activity(
                fn,
                *args,
                options=options,
                name=name,
                sleep=self._runtime.clock.sleep,
                slots=self._runtime.activity_slots,
            )
        except ActivityError as exc:
            await self._append(
                seq,
                EventKind.ACTIVITY_FAILED,
                name,
                {"activity": exc.activity, "attempts": exc.attempts, "message": exc.cause_message},
            )
            raise
        await self._append(seq, EventKind.ACTIVITY_COMPLETED, name, result)
        return result

    async def _side_effect(self, name: str, fn: Callable[[], Any]) -> Any:
        seq = self._take_seq()
        event = self._replayed(seq, (EventKind.SIDE_EFFECT,), name)
        if event is not None:
            return event.payload
        value = fn()
        await self._append(seq, EventKind.SIDE_EFFECT, name, value)
        return value

    async def now(self) -> datetime:
        """Current time, recorded so replays see the same value."""
        return await self._side_effect("now", self._runtime.clock.now)

    async def new_id(self, prefix: str) -> str:
        return await self._side_effect("new_id", lambda: f"{prefix}_{uuid.uuid4().hex[:12]}")

    async def settings(self, *names: str) -> dict[str, Any]:
        """Read configuration values, recorded so a resumed run sees the values it started with."""
        return await self._side_effect("settings", lambda: get_settings().model_dump(include=set(names)))

    async def sleep(self, seconds: float) -> None:
        await self._timer("sleep", lambda: self._runtime.clock.now() + timedelta(seconds=seconds))

    async def sleep_until(self, when: datetime) -> None:
        await self._timer("sleep_until", lambda: when)

    async def _timer(self, name: str, fire_at: Callable[[], datetime]) -> None:
        await self.checkpoint()
        seq = self._take_seq()
        event = self._replayed(seq, (EventKind.TIMER_STARTED,), name)
        if event is not None:
            target = event.payload
        else:
            target = fire_at()
            await self._append(seq, EventKind.TIMER_STARTED, name, target)
        remaining = (target - self._runtime.clock.now()).total_seconds()
        if remaining > 0:
            await self._runtime.clock.sleep(remaining)

    async def execute_child_workflow(
        self,
        definition: type[Workflow],
        input: Any = None,
        workflow_id: str | None = None,
    ) -> Any:
        """Start a child workflow and wait for its result.

        Raises WorkflowFailedError when the child fails.
        """
        await self.checkpoint()
        seq = self._take_seq()
        event = self._replayed(seq, (EventKind.CHILD_COMPLETED, EventKind.CHILD_FAILED), definition.name)
        if event is not None:
            if event.kind == EventKind.CHILD_FAILED:
                raise WorkflowFailedError(event.payload["workflow_id"], WorkflowError(event.payload["message"]))
            return event.payload

        child_id = workflow_id or f"{self.workflow_id}/{definition.name}-{seq}"
        handle = self._runtime.find_running(child_id)
        if handle is None:
            handle = await self._runtime.start(definition, input, workflow_id=child_id)
        try:
            result = await handle.result()
        except WorkflowError as exc:
            await self._append(
                seq, EventKind.CHILD_FAILED, definition.name,
                {"workflow_id": child_id, "message": str(exc)},
            )
            raise WorkflowFailedError(child_id, exc) from exc
        await self._append(seq, EventKind.CHILD_COMPLETED, definition.name, result)
        return result

    def continue_as_new(self, carry: Any) -> NoReturn:
        raise ContinueAsNew(carry)
