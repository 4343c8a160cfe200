"""Reasoning provider abstraction layer.

Supports:
- Any OpenAI-compatible chat completions endpoint (NVIDIA NIM by default)
- Amazon Bedrock (Converse API)

Usage:
    from services.llm_providers import get_llm_provider

    provider = get_llm_provider()  # Returns provider based on settings.llm_provider
"""

from config import get_settings
from services.llm_providers.base import BaseLLMProvider


def get_llm_provider() -> BaseLLMProvider:
    """Factory: return the configured LLM provider."""
    settings = get_settings()

    if settings.llm_provider == "bedrock":
        from services.llm_providers.bedrock import BedrockLLMProvider

        return BedrockLLMProvider()

    from services.llm_providers.openai_compat import OpenAICompatibleLLMProvider

    return OpenAICompatibleLLMProvider()


__all__ = [
    "BaseLLMProvider",
    "get_llm_provider",
]
