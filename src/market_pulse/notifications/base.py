"""Notifier protocol."""

from __future__ import annotations

from typing import Any, Protocol


class Notifier(Protocol):
    """Push delivery seam.

    Implementations are best-effort: they return False on failure and never
    raise.
    """

    async def notify(self, user_id: str, payload: dict[str, Any]) -> bool:
        ...


class NullNotifier:
    """Drops every notification; used when no channel is configured."""

    async def notify(self, user_id: str, payload: dict[str, Any]) -> bool:
        return False
