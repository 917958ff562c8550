"""Telegram Bot API notifications for urgent signals and daily insights."""

from __future__ import annotations

import logging
from typing import Any

from market_pulse.common.http import HttpClient
from market_pulse.config import get_settings

logger = logging.getLogger(__name__)


class TelegramNotifier:
    """Send notifications via the Telegram Bot API.

    All errors are logged but never raised; a failed notification must not
    fail the workflow that sent it.
    """

    def __init__(
        self,
        bot_token: str | None = None,
        chat_id: str | None = None,
    ) -> None:
        settings = get_settings()
        self._bot_token = bot_token or settings.telegram_bot_token
        self._chat_id = chat_id or settings.telegram_chat_id
        self._client: HttpClient | None = None

    @property
    def enabled(self) -> bool:
        return bool(self._bot_token and self._chat_id)

    def _get_client(self) -> HttpClient:
        if self._client is None:
            self._client = HttpClient(base_url="https://api.telegram.org")
        return self._client

    async def send_message(self, text: str, parse_mode: str = "Markdown") -> bool:
        """Send a message. Returns True if it was delivered."""
        if not self.enabled:
            logger.debug("Telegram not configured, skipping message")
            return False

        try:
            await self._get_client().post_json(
                f"/bot{self._bot_token}/sendMessage",
                {"chat_id": self._chat_id, "text": text, "parse_mode": parse_mode},
            )
            return True
        except Exception:
            logger.warning("Failed to send Telegram message", exc_info=True)
            return False

    async def notify(self, user_id: str, payload: dict[str, Any]) -> bool:
        """Deliver a ``{"title", "body"}`` payload addressed to ``user_id``."""
        title = payload.get("title", "Market Pulse")
        body = payload.get("body", "")
        text = f"*{title}*\n\n{body}" if body else f"*{title}*"
        sent = await self.send_message(text)
        if sent:
            logger.info("Notified %s: %s", user_id, title)
        return sent

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
