"""Workflow definition base class and handler decorators."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable, ClassVar, TypeVar

from market_pulse.runtime.errors import WorkflowError

if TYPE_CHECKING:
    from market_pulse.runtime.context import WorkflowContext

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


def query(name: str) -> Callable[[F], F]:
    """Mark a method as the handler for a synchronous status query."""

    def decorator(fn: F) -> F:
        fn.__workflow_query__ = name  # type: ignore[attr-defined]
        return fn

    return decorator


def signal(name: str) -> Callable[[F], F]:
    """Mark a method as the handler for an asynchronous signal."""

    def decorator(fn: F) -> F:
        fn.__workflow_signal__ = name  # type: ignore[attr-defined]
        return fn

    return decorator


class Workflow:
    """Base class for workflow definitions.

    A fresh instance is created for every execution (including each
    continue-as-new run), so instance attributes are per-run state. ``run``
    must be deterministic: anything that touches time, randomness or I/O goes
    through the ``WorkflowContext``.

    Every workflow accepts a ``cancel`` signal; loops check
    ``cancel_requested`` at their check-points.
    """

    name: ClassVar[str] = "Workflow"
    _query_handlers: ClassVar[dict[str, str]] = {}
    _signal_handlers: ClassVar[dict[str, str]] = {}

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        if "name" not in cls.__dict__:
            cls.name = cls.__name__
        queries: dict[str, str] = {}
        signals: dict[str, str] = {}
        for klass in reversed(cls.__mro__):
            for attr, value in vars(klass).items():
                query_name = getattr(value, "__workflow_query__", None)
                if query_name:
                    queries[query_name] = attr
                signal_name = getattr(value, "__workflow_signal__", None)
                if signal_name:
                    signals[signal_name] = attr
        cls._query_handlers = queries
        cls._signal_handlers = signals

    def __init__(self) -> None:
        self.cancel_requested = False

    async def run(self, ctx: WorkflowContext, input: Any) -> Any:
        raise NotImplementedError

    @signal("cancel")
    def _on_cancel(self, payload: Any = None) -> None:
        logger.info("%s: cancellation requested", self.name)
        self.cancel_requested = True

    def handle_query(self, name: str) -> Any:
        attr = self._query_handlers.get(name)
        if attr is None:
            raise WorkflowError(f"{self.name} has no query handler named {name!r}")
        return getattr(self, attr)()

    def handle_signal(self, name: str, payload: Any) -> None:
        attr = self._signal_handlers.get(name)
        if attr is None:
            logger.warning("%s: dropping unknown signal %r", self.name, name)
            return
        getattr(self, attr)(payload)
