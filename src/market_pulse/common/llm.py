"""Thin wrapper around the Anthropic SDK used for every inference call."""

from __future__ import annotations

import json
import logging
import re
from typing import Any

import anthropic

from market_pulse.config import get_settings

logger = logging.getLogger(__name__)

# Errors worth retrying at the activity level; everything else degrades to "no result".
TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    anthropic.APIConnectionError,
    anthropic.RateLimitError,
    anthropic.InternalServerError,
)

_JSON_BLOCK = re.compile(r"(\{.*\}|\[.*\])", re.DOTALL)


class InferenceClient:
    """Request/response access to the inference service."""

    def __init__(self, api_key: str | None = None, model: str | None = None) -> None:
        settings = get_settings()
        self._api_key = api_key if api_key is not None else settings.anthropic_api_key
        self._model = model or settings.inference_model

    @property
    def enabled(self) -> bool:
        return bool(self._api_key)

    async def infer(self, prompt: str, system: str = "", max_tokens: int = 1024) -> str:
        """Send a prompt and return the text response.

        Raises ValueError when the service returns no content.
        """
        async with anthropic.AsyncAnthropic(api_key=self._api_key) as client:
            kwargs: dict[str, Any] = {
                "model": self._model,
                "max_tokens": max_tokens,
                "messages": [{"role": "user", "content": prompt}],
            }
            if system:
                kwargs["system"] = system
            message = await client.messages.create(**kwargs)
            if not message.content:
                raise ValueError("Inference service returned empty content")
            return message.content[0].text

    async def infer_json(self, prompt: str, system: str = "", max_tokens: int = 1024) -> Any | None:
        """Send a prompt expecting JSON back.

        Returns the decoded value, or None when the response is malformed or the
        service rejects the request. Transient errors propagate so the calling
        activity can retry them.
        """
        try:
            text = await self.infer(prompt, system=system, max_tokens=max_tokens)
        except TRANSIENT_ERRORS:
            raise
        except anthropic.APIError as exc:
            logger.warning("Inference API error: %s", exc)
            return None
        except ValueError as exc:
            logger.warning("Inference returned no content: %s", exc)
            return None
        return parse_json_response(text)


def parse_json_response(text: str) -> Any | None:
    """Extract the first JSON object or array from a model response.

    Handles markdown code fences and surrounding prose. Returns None on failure.
    """
    if not text:
        return None
    match = _JSON_BLOCK.search(text)
    if not match:
        logger.debug("No JSON found in inference response: %s", text[:80])
        return None
    try:
        return json.loads(match.group())
    except json.JSONDecodeError as exc:
        logger.warning("Inference returned invalid JSON: %s", exc)
        return None
