"""Workflow runtime: starts, drives, queries, signals and resumes workflow instances."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import deque
from typing import Any

from market_pulse.config import get_settings
from market_pulse.runtime.clock import Clock, SystemClock
from market_pulse.runtime.context import WorkflowContext
from market_pulse.runtime.errors import (
    ContinueAsNew,
    WorkflowError,
    WorkflowFailedError,
    WorkflowNotFoundError,
    WorkflowTerminatedError,
)
from market_pulse.runtime.history import (
    ExecutionRecord,
    ExecutionStatus,
    HistoryStore,
    InMemoryHistoryStore,
)
from market_pulse.runtime.workflow import Workflow

logger = logging.getLogger(__name__)


class WorkflowHandle:
    """External view of one workflow instance across all of its runs."""

    def __init__(self, runtime: WorkflowRuntime, workflow_id: str, definition: type[Workflow], input: Any) -> None:
        self._runtime = runtime
        self.workflow_id = workflow_id
        self.definition = definition
        self.input = input
        self.run_id: str | None = None
        self.run_count = 0
        self.execution_status = ExecutionStatus.RUNNING
        self.instance: Workflow = definition()
        self.pending_signals: deque[tuple[str, Any]] = deque()
        self._task: asyncio.Task | None = None
        self._result: Any = None
        self._error: BaseException | None = None

    def query(self, name: str = "status") -> Any:
        """Synchronously read the instance's current state; never blocks."""
        return self.instance.handle_query(name)

    def signal(self, name: str, payload: Any = None) -> None:
        """Queue a signal; the instance sees it at its next check-point."""
        if self.execution_status != ExecutionStatus.RUNNING:
            logger.warning(
                "Signal %r to %s ignored: instance is %s", name, self.workflow_id, self.execution_status.value,
            )
            return
        self.pending_signals.append((name, payload))

    def cancel(self) -> None:
        self.signal("cancel")

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    async def result(self) -> Any:
        """Wait for the instance to finish and return its result."""
        if self._task is None:
            raise WorkflowError(f"{self.workflow_id} has not been started")
        await asyncio.wait({self._task})
        if not self._task.cancelled() and self._task.exception() is not None:
            raise WorkflowFailedError(self.workflow_id, self._task.exception())
        if self.execution_status == ExecutionStatus.FAILED:
            raise WorkflowFailedError(self.workflow_id, self._error or WorkflowError("unknown failure"))
        if self.execution_status == ExecutionStatus.TERMINATED:
            raise WorkflowTerminatedError(f"{self.workflow_id} was terminated")
        return self._result

    async def terminate(self) -> None:
        """Stop the instance immediately, mid-activity if need be."""
        if self._task is None or self._task.done():
            return
        self._task.cancel()
        await asyncio.wait({self._task})
        if self.run_id is not None:
            await self._runtime.history.set_status(self.run_id, ExecutionStatus.TERMINATED)

    def describe(self) -> dict[str, Any]:
        return {
            "workflow_id": self.workflow_id,
            "workflow_type": self.definition.name,
            "run_id": self.run_id,
            "run_count": self.run_count,
            "execution_status": self.execution_status.value,
        }


class WorkflowRuntime:
    """Runs many workflow instances concurrently on one event loop.

    Each instance is an asyncio task; suspension (timers, awaiting activities)
    holds no thread. Activity attempts across all instances share a bounded
    pool of slots.
    """

    def __init__(
        self,
        activities: object,
        history: HistoryStore | None = None,
        clock: Clock | None = None,
        max_concurrent_activities: int | None = None,
        max_history_events: int | None = None,
    ) -> None:
        settings = get_settings()
        self.activities = activities
        self.history: HistoryStore = history or InMemoryHistoryStore()
        self.clock: Clock = clock or SystemClock()
        self.activity_slots = asyncio.Semaphore(
            max_concurrent_activities or settings.max_concurrent_activities
        )
        self.max_history_events = max_history_events or settings.max_history_events
        self._definitions: dict[str, type[Workflow]] = {}
        self._handles: dict[str, WorkflowHandle] = {}

    def register(self, *definitions: type[Workflow]) -> None:
        for definition in definitions:
            self._definitions[definition.name] = definition

    def _resolve(self, definition: type[Workflow] | str) -> type[Workflow]:
        if isinstance(definition, str):
            try:
                return self._definitions[definition]
            except KeyError:
                raise WorkflowNotFoundError(f"Unknown workflow type {definition!r}") from None
        self.register(definition)
        return definition

    async def start(
        self,
        definition: type[Workflow] | str,
        input: Any = None,
        workflow_id: str | None = None,
    ) -> WorkflowHandle:
        definition = self._resolve(definition)
        workflow_id = workflow_id or f"{definition.name}-{uuid.uuid4().hex[:12]}"
        existing = self._handles.get(workflow_id)
        if existing is not None and not existing.done:
            raise WorkflowError(f"Workflow {workflow_id} is already running")

        handle = WorkflowHandle(self, workflow_id, definition, input)
        self._handles[workflow_id] = handle
        handle._task = asyncio.create_task(self._drive(handle, None), name=workflow_id)
        logger.info("Started %s (%s)", definition.name, workflow_id)
        return handle

    def get_handle(self, workflow_id: str) -> WorkflowHandle:
        try:
            return self._handles[workflow_id]
        except KeyError:
            raise WorkflowNotFoundError(f"Unknown workflow id {workflow_id!r}") from None

    def find_running(self, workflow_id: str) -> WorkflowHandle | None:
        handle = self._handles.get(workflow_id)
        if handle is None or handle.done:
            return None
        return handle

    async def resume_all(self) -> list[WorkflowHandle]:
        """Restart every execution the history store still marks as running.

        Recorded events are replayed, so completed activities are not re-run.
        """
        resumed: list[WorkflowHandle] = []
        for record in await self.history.open_executions():
            if record.workflow_id in self._handles:
                continue
            definition = self._resolve(record.workflow_type)
            handle = WorkflowHandle(self, record.workflow_id, definition, record.input)
            handle.run_count = record.run_count
            self._handles[record.workflow_id] = handle
            handle._task = asyncio.create_task(self._drive(handle, record), name=record.workflow_id)
            logger.info("Resumed %s (%s) run %s", record.workflow_type, record.workflow_id, record.run_id)
            resumed.append(handle)
        return resumed

    async def shutdown(self) -> None:
        """Stop all running instances. Their history stays open for ``resume_all``."""
        running = [h for h in self._handles.values() if not h.done]
        for handle in running:
            if handle._task is not None:
                handle._task.cancel()
        await asyncio.gather(*(h._task for h in running if h._task is not None), return_exceptions=True)

    def _record(self, handle: WorkflowHandle, input: Any, run_count: int) -> ExecutionRecord:
        return ExecutionRecord(
            workflow_id=handle.workflow_id,
            run_id=uuid.uuid4().hex,
            workflow_type=handle.definition.name,
            input=input,
            run_count=run_count,
            started_at=self.clock.now(),
        )

    async def _drive(self, handle: WorkflowHandle, resume: ExecutionRecord | None) -> None:
        try:
            await self._run_instance(handle, resume)
        except asyncio.CancelledError:
            handle.execution_status = ExecutionStatus.TERMINATED
            logger.info("%s terminated", handle.workflow_id)
            raise
        except Exception as exc:
            # History store failure; the open run stays RUNNING for resume_all
            handle.execution_status = ExecutionStatus.FAILED
            if handle._error is None:
                handle._error = exc
            logger.error("%s: history store failure: %s", handle.workflow_id, exc)

    async def _run_instance(self, handle: WorkflowHandle, resume: ExecutionRecord | None) -> None:
        if resume is not None:
            run_id = resume.run_id
            recorded = await self.history.load_events(run_id)
        else:
            record = self._record(handle, handle.input, handle.run_count + 1)
            await self.history.save_execution(record)
            handle.run_count = record.run_count
            run_id = record.run_id
            recorded = []

        first = True
        while True:
            handle.run_id = run_id
            if not first:
                handle.instance = handle.definition()
            first = False
            ctx = WorkflowContext(self, handle, run_id, recorded)

            try:
                result = await handle.instance.run(ctx, handle.input)
            except ContinueAsNew as exc:
                next_run = self._record(handle, exc.carry, handle.run_count + 1)
                await self.history.continue_as_new(run_id, next_run)
                logger.info("%s continued as new after run %d", handle.workflow_id, handle.run_count)
                handle.input = next_run.input
                handle.run_count = next_run.run_count
                run_id = next_run.run_id
                recorded = []
                continue
            except Exception as exc:
                handle.execution_status = ExecutionStatus.FAILED
                handle._error = exc
                logger.error("%s failed: %s", handle.workflow_id, exc)
                await self.history.set_status(run_id, ExecutionStatus.FAILED)
                return

            handle.execution_status = ExecutionStatus.COMPLETED
            handle._result = result
            await self.history.set_status(run_id, ExecutionStatus.COMPLETED)
            logger.info("%s completed", handle.workflow_id)
            return
