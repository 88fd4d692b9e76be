"""
Anthropic Provider
==================

Extraction via the Messages API.
"""

import logging
from typing import Tuple

from hybridkb.errors import InvalidExtractionResponseError, ProviderNotAvailableError
from hybridkb.kag.providers.base import SYSTEM_PROMPT, ExtractionProvider

logger = logging.getLogger(__name__)

ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"


class AnthropicProvider(ExtractionProvider):
    """Anthropic Messages API extraction."""

    def __init__(
        self,
        api_key: str,
        model: str = "claude-3-5-haiku-latest",
        timeout_s: float = 60.0,
        max_tokens: int = 2048,
        url: str = ANTHROPIC_URL,
    ):
        if not api_key:
            raise ProviderNotAvailableError("anthropic", "ANTHROPIC_API_KEY not set")
        super().__init__(model=model, timeout_s=timeout_s)
        self.api_key = api_key
        self.max_tokens = max_tokens
        self.url = url

    @property
    def name(self) -> str:
        return "anthropic"

    async def is_available(self) -> bool:
        # No health endpoint; a configured key is the best cheap signal
        return bool(self.api_key)

    async def _complete(self, prompt: str) -> Tuple[str, int]:
        payload = {
            "model": self.model,
            "system": SYSTEM_PROMPT,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": self.max_tokens,
        }
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "Content-Type": "application/json",
        }
        data = await self._post_json(self.url, payload, headers)

        text = next(
            (block.get("text", "") for block in data.get("content") or [] if block.get("type") == "text"),
            "",
        )
        if not text:
            raise InvalidExtractionResponseError("no text content in Anthropic response")

        usage = data.get("usage", {})
        tokens = int(usage.get("input_tokens", 0)) + int(usage.get("output_tokens", 0))
        return text, tokens
