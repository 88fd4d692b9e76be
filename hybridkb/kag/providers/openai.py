"""
OpenAI Provider
===============

Extraction via an OpenAI-compatible ``/chat/completions`` endpoint.
"""

import logging
from typing import Dict, Tuple

import aiohttp

from hybridkb.errors import InvalidExtractionResponseError, ProviderNotAvailableError
from hybridkb.kag.providers.base import SYSTEM_PROMPT, ExtractionProvider

logger = logging.getLogger(__name__)


class OpenAIProvider(ExtractionProvider):
    """OpenAI (or compatible) chat completion extraction."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        base_url: str = "https://api.openai.com/v1",
        timeout_s: float = 60.0,
        temperature: float = 0.1,
        max_tokens: int = 2048,
    ):
        if not api_key:
            raise ProviderNotAvailableError("openai", "OPENAI_API_KEY not set")
        super().__init__(model=model, timeout_s=timeout_s)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.temperature = temperature
        self.max_tokens = max_tokens

    @property
    def name(self) -> str:
        return "openai"

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def is_available(self) -> bool:
        session = await self._get_session()
        try:
            async with session.get(f"{self.base_url}/models", headers=self._headers()) as response:
                return response.status == 200
        except (aiohttp.ClientError, TimeoutError) as e:
            logger.debug(f"OpenAI not reachable: {e}")
            return False

    async def _complete(self, prompt: str) -> Tuple[str, int]:
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "response_format": {"type": "json_object"},
        }
        data = await self._post_json(f"{self.base_url}/chat/completions", payload, self._headers())

        if "choices" not in data or not data["choices"]:
            raise InvalidExtractionResponseError("no choices in OpenAI response")

        completion = data["choices"][0].get("message", {}).get("content") or ""
        tokens = int(data.get("usage", {}).get("total_tokens", 0))
        return completion, tokens
