"""Helpers shared by the workflow definitions."""

from __future__ import annotations

import logging
from typing import Any

from market_pulse.runtime.activity import STANDARD_ACTIVITY
from market_pulse.runtime.context import WorkflowContext
from market_pulse.runtime.errors import ActivityError

logger = logging.getLogger(__name__)


async def audit(ctx: WorkflowContext, action: str, resource_type: str, metadata: dict[str, Any]) -> None:
    """Write one audit record for this workflow instance."""
    at = await ctx.now()
    metadata = {"run_count": ctx.run_count, **metadata}
    await ctx.activity_stub(STANDARD_ACTIVITY).record_audit_log(action, resource_type, ctx.workflow_id, metadata, at)


async def try_audit(ctx: WorkflowContext, action: str, resource_type: str, metadata: dict[str, Any]) -> None:
    """Write an audit record; if the write fails, log it instead of raising."""
    try:
        await audit(ctx, action, resource_type, metadata)
    except ActivityError as exc:
        logger.error("%s: could not record %s audit entry: %s", ctx.workflow_id, action, exc)


def error_entry(item_id: str, exc: BaseException) -> dict[str, str]:
    message = exc.cause_message if isinstance(exc, ActivityError) else str(exc)
    return {"item_id": item_id, "message": message or type(exc).__name__}
