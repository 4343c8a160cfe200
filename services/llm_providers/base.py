"""Abstract base class for reasoning providers."""

from abc import ABC, abstractmethod


class BaseLLMProvider(ABC):
    """Abstract base for LLM providers (OpenAI-compatible endpoints, Amazon Bedrock)."""

    @abstractmethod
    async def generate(
        self,
        messages: list[dict],
        temperature: float = 0.6,
        max_tokens: int = 4096,
    ) -> tuple[str, dict]:
        """Generate a completion.

        Args:
            messages: List of {"role": "...", "content": "..."} dicts.
                Multi-turn conversations pass the full history.
            temperature: Sampling temperature.
            max_tokens: Max tokens to generate.

        Returns:
            Tuple of (generated_text, usage_dict).
            usage_dict should contain: {"prompt_tokens": int, "completion_tokens": int, "total_tokens": int}
        """
        ...

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Return the model identifier for logging."""
        ...
