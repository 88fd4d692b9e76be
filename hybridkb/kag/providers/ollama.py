"""
Ollama Provider
===============

Local extraction via Ollama's ``/api/generate`` (non-streaming).

The model is kept loaded between calls (``keep_alive``); ``warm_up``
triggers the first load so the first real chunk does not pay for it.
"""

import logging
from typing import Tuple

import aiohttp

from hybridkb.errors import InvalidExtractionResponseError
from hybridkb.kag.models import ExtractionRequest
from hybridkb.kag.providers.base import ExtractionProvider

logger = logging.getLogger(__name__)


class OllamaProvider(ExtractionProvider):
    """
    Ollama-backed extraction.

    Example:
        provider = OllamaProvider(host="http://localhost:11434")
        if await provider.is_available():
            await provider.warm_up()
            response = await provider.extract(ExtractionRequest(content=text))
    """

    def __init__(
        self,
        host: str = "http://localhost:11434",
        model: str = "mistral:7b-instruct-q4_K_M",
        keep_alive: str = "30m",
        timeout_s: float = 300.0,
        temperature: float = 0.1,
        num_predict: int = 2048,
    ):
        super().__init__(model=model, timeout_s=timeout_s)
        self.host = host.rstrip("/")
        self.keep_alive = keep_alive
        self.temperature = temperature
        self.num_predict = num_predict

    @property
    def name(self) -> str:
        return "ollama"

    async def is_available(self) -> bool:
        session = await self._get_session()
        try:
            async with session.get(f"{self.host}/api/version") as response:
                return response.status == 200
        except (aiohttp.ClientError, TimeoutError) as e:
            logger.debug(f"Ollama not reachable at {self.host}: {e}")
            return False

    async def _complete(self, prompt: str) -> Tuple[str, int]:
        payload = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "keep_alive": self.keep_alive,
            "options": {
                "temperature": self.temperature,
                "num_predict": self.num_predict,
            },
        }
        data = await self._post_json(f"{self.host}/api/generate", payload)
        completion = data.get("response")
        if not isinstance(completion, str):
            raise InvalidExtractionResponseError("missing 'response' field")
        tokens = int(data.get("prompt_eval_count") or 0) + int(data.get("eval_count") or 0)
        return completion, tokens

    async def warm_up(self) -> None:
        """Load the model with a minimal extraction."""
        logger.info(f"Warming up Ollama model {self.model}")
        await self.extract(ExtractionRequest(
            content="System warmup test.",
            max_entities=1,
            max_relations=1,
            confidence_threshold=0.9,
        ))
