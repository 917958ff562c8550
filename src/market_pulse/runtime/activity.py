"""Activity executor: timeouts, heartbeats and retry for non-deterministic work.

Every piece of I/O a workflow performs (store reads and writes, inference
calls, notifications) runs through ``run_activity``. A single attempt is
bounded by ``start_to_close_timeout``; when ``heartbeat_timeout`` is set the
attempt also fails as soon as the activity goes quiet for that long. Failed
attempts are retried with exponential backoff via tenacity until the policy
is exhausted, at which point ``ActivityError`` is raised to the workflow.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from market_pulse.runtime.errors import ActivityError, ActivityHeartbeatTimeout, ActivityTimeout

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff policy; intervals are in seconds."""

    initial_interval: float = 1.0
    backoff_coefficient: float = 2.0
    maximum_attempts: int = 3
    maximum_interval: float = 30.0
    non_retryable_errors: tuple[type[BaseException], ...] = ()

    def __post_init__(self) -> None:
        if self.maximum_attempts < 1:
            raise ValueError(f"maximum_attempts must be >= 1, got {self.maximum_attempts}")
        if self.backoff_coefficient < 1.0:
            raise ValueError(f"backoff_coefficient must be >= 1, got {self.backoff_coefficient}")


@dataclass(frozen=True)
class ActivityOptions:
    start_to_close_timeout: float = 30.0
    heartbeat_timeout: float | None = None
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)


# Store reads/writes, notifications, audit records
STANDARD_ACTIVITY = ActivityOptions(
    start_to_close_timeout=30.0,
    retry_policy=RetryPolicy(initial_interval=1.0, backoff_coefficient=2.0, maximum_attempts=3, maximum_interval=30.0),
)

# Inference calls: slower, and expected to heartbeat
INFERENCE_ACTIVITY = ActivityOptions(
    start_to_close_timeout=120.0,
    heartbeat_timeout=30.0,
    retry_policy=RetryPolicy(initial_interval=5.0, backoff_coefficient=2.0, maximum_attempts=3, maximum_interval=30.0),
)


@dataclass
class ActivityInfo:
    name: str
    attempt: int
    last_heartbeat: float = 0.0
    heartbeat_details: tuple[Any, ...] = ()


_current_activity: ContextVar[ActivityInfo | None] = ContextVar("current_activity", default=None)


def heartbeat(*details: Any) -> None:
    """Report liveness from inside an activity. No-op when called elsewhere."""
    info = _current_activity.get()
    if info is None:
        return
    info.last_heartbeat = asyncio.get_running_loop().time()
    info.heartbeat_details = details


def activity_info() -> ActivityInfo:
    info = _current_activity.get()
    if info is None:
        raise RuntimeError("Not running inside an activity")
    return info


async def _invoke(fn: Callable[..., Any], args: tuple[Any, ...]) -> Any:
    result = fn(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


async def _run_attempt(
    fn: Callable[..., Any],
    args: tuple[Any, ...],
    options: ActivityOptions,
    info: ActivityInfo,
) -> Any:
    loop = asyncio.get_running_loop()
    info.last_heartbeat = loop.time()

    # The task copies the current context, so the activity sees its own info.
    token = _current_activity.set(info)
    try:
        task = asyncio.ensure_future(_invoke(fn, args))
    finally:
        _current_activity.reset(token)

    deadline = loop.time() + options.start_to_close_timeout
    try:
        while True:
            now = loop.time()
            wait_for = deadline - now
            if wait_for <= 0:
                raise ActivityTimeout(
                    f"{info.name} exceeded start-to-close timeout of {options.start_to_close_timeout}s"
                )
            if options.heartbeat_timeout is not None:
                quiet_for = now - info.last_heartbeat
                if quiet_for >= options.heartbeat_timeout:
                    raise ActivityHeartbeatTimeout(
                        f"{info.name} missed heartbeat for {quiet_for:.1f}s "
                        f"(timeout {options.heartbeat_timeout}s)"
                    )
                wait_for = min(wait_for, options.heartbeat_timeout - quiet_for)

            done, _ = await asyncio.wait({task}, timeout=wait_for)
            if done:
                return task.result()
    finally:
        if not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)


async def run_activity(
    fn: Callable[..., Any],
    *args: Any,
    options: ActivityOptions = STANDARD_ACTIVITY,
    name: str | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    slots: asyncio.Semaphore | None = None,
) -> Any:
    """Run ``fn(*args)`` under ``options``.

    Args:
        fn: Coroutine function (or plain function) doing the work.
        options: Timeouts and retry policy.
        name: Name used in logs and errors; defaults to ``fn.__name__``.
        sleep: Backoff sleep, injectable so tests can skip time.
        slots: Optional semaphore bounding concurrent attempts across workflows.
            Held only while an attempt runs, never across backoff sleeps.

    Raises:
        ActivityError: when attempts are exhausted or the error is non-retryable.
    """
    name = name or getattr(fn, "__name__", repr(fn))
    policy = options.retry_policy

    def _should_retry(exc: BaseException) -> bool:
        return isinstance(exc, Exception) and not isinstance(exc, policy.non_retryable_errors)

    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.maximum_attempts),
        wait=wait_exponential(
            multiplier=policy.initial_interval,
            exp_base=policy.backoff_coefficient,
            max=policy.maximum_interval,
        ),
        retry=retry_if_exception(_should_retry),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        sleep=sleep,
        reraise=True,
    )

    attempt_number = 0
    try:
        async for attempt in retrying:
            with attempt:
                attempt_number = attempt.retry_state.attempt_number
                info = ActivityInfo(name=name, attempt=attempt_number)
                if slots is None:
                    return await _run_attempt(fn, args, options, info)
                async with slots:
                    return await _run_attempt(fn, args, options, info)
    except Exception as exc:
        logger.error("Activity %s failed after %d attempt(s): %s", name, attempt_number, exc)
        raise ActivityError(name, attempt_number, str(exc) or type(exc).__name__) from exc
    raise ActivityError(name, attempt_number, "no attempt was made")
