"""Mock implementations for testing."""

from .llm_mock import MockLLMClient, MockLLMProvider

__all__ = [
    "MockLLMClient",
    "MockLLMProvider",
]
