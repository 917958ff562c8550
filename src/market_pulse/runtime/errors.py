"""Exception types raised by the workflow runtime."""

from __future__ import annotations


class WorkflowError(Exception):
    """Base class for runtime errors."""


class ActivityError(WorkflowError):
    """An activity failed terminally: retries exhausted or the error was non-retryable."""

    def __init__(self, activity: str, attempts: int, message: str) -> None:
        super().__init__(f"Activity {activity!r} failed after {attempts} attempt(s): {message}")
        self.activity = activity
        self.attempts = attempts
        self.cause_message = message

    def __reduce__(self):
        return (type(self), (self.activity, self.attempts, self.cause_message))


class ActivityTimeout(WorkflowError):
    """A single activity attempt exceeded its start-to-close timeout."""


class ActivityHeartbeatTimeout(ActivityTimeout):
    """A single activity attempt stopped heartbeating."""


class WorkflowFailedError(WorkflowError):
    """Raised by ``WorkflowHandle.result()`` when the instance failed."""

    def __init__(self, workflow_id: str, cause: BaseException) -> None:
        super().__init__(f"Workflow {workflow_id} failed: {cause}")
        self.workflow_id = workflow_id
        self.cause = cause


class WorkflowTerminatedError(WorkflowError):
    """Raised by ``WorkflowHandle.result()`` when the instance was terminated."""


class WorkflowNotFoundError(WorkflowError):
    """Unknown workflow id or workflow type."""


class NonDeterminismError(WorkflowError):
    """Replayed history does not match the commands the workflow issued."""


class ContinueAsNew(BaseException):
    """Control flow: end this execution and start a fresh one with ``carry`` as input.

    Derives from BaseException so ``except Exception`` blocks inside workflow
    code do not swallow it.
    """

    def __init__(self, carry: object) -> None:
        super().__init__("continue as new")
        self.carry = carry
