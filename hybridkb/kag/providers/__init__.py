"""
Extraction Providers
====================

Closed set of LLM backends for entity extraction, chosen by configuration.

Components:
- OllamaProvider: local models via Ollama (default)
- OpenAIProvider: OpenAI-compatible chat completions
- AnthropicProvider: Anthropic Messages API

Example:
    from hybridkb.kag.config import ExtractionConfig
    from hybridkb.kag.providers import create_provider

    provider = create_provider(ExtractionConfig())
    response = await provider.extract(ExtractionRequest(content=chunk.content))
"""

from hybridkb.errors import InvalidProviderError
from hybridkb.kag.config import ExtractionConfig
from hybridkb.kag.providers.anthropic import AnthropicProvider
from hybridkb.kag.providers.base import ExtractionProvider, parse_extraction_response
from hybridkb.kag.providers.ollama import OllamaProvider
from hybridkb.kag.providers.openai import OpenAIProvider


def create_provider(config: ExtractionConfig) -> ExtractionProvider:
    """
    Build the provider named by ``config.provider``.

    Raises:
        InvalidProviderError: unknown provider
        ProviderNotAvailableError: cloud provider without an API key
    """
    if config.provider == "ollama":
        return OllamaProvider(
            host=config.ollama_host,
            model=config.ollama_model,
            keep_alive=config.ollama_keep_alive,
            timeout_s=config.timeout_s,
        )
    if config.provider == "openai":
        return OpenAIProvider(
            api_key=config.openai_api_key,
            model=config.openai_model,
            base_url=config.openai_base_url,
            timeout_s=config.timeout_s,
        )
    if config.provider == "anthropic":
        return AnthropicProvider(
            api_key=config.anthropic_api_key,
            model=config.anthropic_model,
            timeout_s=config.timeout_s,
        )
    raise InvalidProviderError(config.provider)


__all__ = [
    "ExtractionProvider",
    "OllamaProvider",
    "OpenAIProvider",
    "AnthropicProvider",
    "create_provider",
    "parse_extraction_response",
]
