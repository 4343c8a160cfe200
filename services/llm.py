"""LLM client with retry logic, request size validation, and multi-turn chat handles.

Every transport or provider failure that survives the retry budget surfaces as
ProviderUnavailableError, so callers only ever see the engine's own error
taxonomy.
"""

import asyncio
import random
import re

from botocore.exceptions import ClientError
from openai import APIConnectionError, APIStatusError, APITimeoutError

from config import Settings, get_settings
from models.errors import ProviderUnavailableError, StateError, ValidationError
from services.llm_providers import BaseLLMProvider, get_llm_provider
from utils.logging import get_logger

logger = get_logger(__name__)


def strip_thinking_tags(text: str) -> str:
    """Remove <think>...</think> tags from model output.

    Handles <think>, <think attr>, <thinking> and unclosed tags (removed from
    the opening tag to the end of the string).
    """
    if not text:
        return text

    patterns = [
        r"<think\b[^>]*>.*?</think>\s*",
        r"<thinking\b[^>]*>.*?</thinking>\s*",
    ]
    for pattern in patterns:
        text = re.sub(pattern, "", text, flags=re.DOTALL | re.IGNORECASE)

    # \Z (not $) so re.DOTALL doesn't stop at \n
    unclosed_patterns = [
        r"<think\b[^>]*>.*\Z",
        r"<thinking\b[^>]*>.*\Z",
    ]
    for pattern in unclosed_patterns:
        text = re.sub(pattern, "", text, flags=re.DOTALL | re.IGNORECASE)

    return text.strip()


# HTTP status codes that should trigger a retry
RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
BEDROCK_RETRYABLE_CODES = {
    "ThrottlingException",
    "ServiceUnavailableException",
    "InternalServerException",
}

# Overhead tokens for message formatting (role labels, special tokens, etc.)
MESSAGE_OVERHEAD_TOKENS = 10


class PromptTooLargeError(ValidationError):
    """Raised when the prompt exceeds the maximum allowed token count."""

    def __init__(self, estimated_tokens: int, max_tokens: int):
        self.estimated_tokens = estimated_tokens
        self.max_tokens = max_tokens
        super().__init__(
            f"Prompt too large: estimated {estimated_tokens} tokens, "
            f"max allowed is {max_tokens} tokens",
            details={"estimated_tokens": estimated_tokens, "max_tokens": max_tokens},
        )


def estimate_tokens(text: str) -> int:
    """Rough token estimate: ~4 characters per token for English text."""
    if not text:
        return 0
    return len(text) // 4 + 1


def estimate_messages_tokens(messages: list[dict]) -> int:
    return sum(
        estimate_tokens(msg.get("content", "")) + MESSAGE_OVERHEAD_TOKENS
        for msg in messages
    )


class ChatHandle:
    """Provider-side conversation state for one multi-turn exchange.

    The history only grows when a turn succeeds: a failed or cancelled send
    leaves it exactly as it was, so the next send replays a consistent
    conversation.
    """

    def __init__(
        self,
        client: "LLMClient",
        system_prompt: str,
        temperature: float,
        max_tokens: int,
        max_history_turns: int,
    ):
        self._client = client
        self.system_prompt = system_prompt
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.max_history_turns = max_history_turns
        self.history: list[dict] = []
        self.closed = False

    def _build_messages(self, text: str) -> list[dict]:
        # Keep whole user/assistant pairs when trimming
        history = self.history[-(self.max_history_turns * 2):] if self.max_history_turns else self.history
        return [
            {"role": "system", "content": self.system_prompt},
            *history,
            {"role": "user", "content": text},
        ]

    async def send(self, text: str) -> str:
        if self.closed:
            raise StateError("Chat handle is closed")

        reply = await self._client.complete(
            self._build_messages(text),
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            operation="chat",
        )

        if self.closed:
            # Closed while the request was in flight; the reply belongs to nobody
            raise StateError("Chat handle was closed while a reply was pending")

        self.history.append({"role": "user", "content": text})
        self.history.append({"role": "assistant", "content": reply})
        return reply

    def close(self) -> None:
        self.closed = True
        self.history.clear()


class LLMClient:
    """LLM client with retry logic and size validation.

    Features:
    - Exponential backoff with jitter for transient failures
    - Retries on connection errors, timeouts and 429/5xx status codes
    - Thinking tag stripping from model output
    - Request size validation to prevent oversized prompts
    - Token usage logging
    - Stateful chat handles for multi-turn conversations
    """

    def __init__(
        self,
        provider: BaseLLMProvider | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.provider = provider or get_llm_provider()
        self.model = self.provider.model_name

    def _validate_prompt_size(self, messages: list[dict]) -> int:
        """Validate that the request fits the configured prompt budget.

        Raises:
            PromptTooLargeError: If estimated tokens exceed the limit
        """
        max_prompt_tokens = self.settings.max_prompt_tokens
        estimated_tokens = estimate_messages_tokens(messages)

        if estimated_tokens > max_prompt_tokens:
            logger.error(
                f"Prompt size validation failed: estimated {estimated_tokens} tokens "
                f"exceeds max {max_prompt_tokens} tokens"
            )
            raise PromptTooLargeError(estimated_tokens, max_prompt_tokens)

        if estimated_tokens > max_prompt_tokens * self.settings.prompt_warning_threshold:
            logger.warning(
                f"Prompt size approaching limit: estimated {estimated_tokens} tokens "
                f"({estimated_tokens / max_prompt_tokens * 100:.1f}% of {max_prompt_tokens} max)"
            )

        return estimated_tokens

    def _calculate_backoff(self, attempt: int) -> float:
        """Exponential backoff (base * 2^attempt, capped) plus 0-1s jitter."""
        exponential = min(
            self.settings.llm_retry_base_delay * (2**attempt),
            self.settings.llm_retry_max_delay,
        )
        return exponential + random.uniform(0, 1)

    def _is_retryable_error(self, error: Exception) -> bool:
        """Check if an error is transient and should be retried."""
        if isinstance(
            error, (TimeoutError, ConnectionError, APIConnectionError, APITimeoutError)
        ):
            return True

        if isinstance(error, APIStatusError):
            return error.status_code in RETRYABLE_STATUS_CODES

        # Bedrock/boto3 errors
        if isinstance(error, ClientError):
            code = error.response.get("Error", {}).get("Code", "")
            return code in BEDROCK_RETRYABLE_CODES

        return False

    def _log_token_usage(self, usage: dict | None, operation: str) -> None:
        if not usage:
            logger.debug("Token usage not available in response")
            return

        prompt_tokens = usage.get("prompt_tokens", 0) or 0
        completion_tokens = usage.get("completion_tokens", 0) or 0
        logger.info(
            "LLM token usage",
            extra={
                "token_usage": {
                    "model": self.model,
                    "operation": operation,
                    "prompt_tokens": prompt_tokens,
                    "completion_tokens": completion_tokens,
                    "total_tokens": usage.get("total_tokens", 0)
                    or prompt_tokens + completion_tokens,
                }
            },
        )

    async def complete(
        self,
        messages: list[dict],
        temperature: float = 0.6,
        max_tokens: int = 4096,
        max_retries: int | None = None,
        operation: str = "generate",
    ) -> str:
        """Send a message list to the provider with retries.

        Returns:
            The generated text with thinking tags stripped

        Raises:
            PromptTooLargeError: If the request exceeds the prompt budget
            ProviderUnavailableError: If the provider fails permanently or
                retries are exhausted
        """
        if max_retries is None:
            max_retries = self.settings.llm_max_retries

        self._validate_prompt_size(messages)

        for attempt in range(max_retries + 1):
            try:
                text, usage = await self.provider.generate(
                    messages=messages,
                    temperature=temperature,
                    max_tokens=max_tokens,
                )
                self._log_token_usage(usage, operation)
                return strip_thinking_tags(text)

            except Exception as e:
                if not self._is_retryable_error(e):
                    logger.error(
                        f"Non-retryable error on {operation} with {self.model}: "
                        f"{type(e).__name__}: {e}"
                    )
                    raise ProviderUnavailableError(
                        f"Reasoning provider rejected the request: {type(e).__name__}",
                        provider=self.model,
                    ) from e

                if attempt >= max_retries:
                    logger.error(
                        f"{operation} with {self.model} failed after {max_retries + 1} attempts. "
                        f"Last error: {type(e).__name__}: {e}"
                    )
                    raise ProviderUnavailableError(
                        f"Reasoning provider unavailable after {max_retries + 1} attempts",
                        provider=self.model,
                    ) from e

                backoff = self._calculate_backoff(attempt)
                logger.warning(
                    f"Retryable error on attempt {attempt + 1}/{max_retries + 1} with {self.model}: "
                    f"{type(e).__name__}: {e}. Retrying in {backoff:.2f}s"
                )
                await asyncio.sleep(backoff)

        raise ProviderUnavailableError("Unexpected state in LLM retry loop", provider=self.model)

    async def generate(
        self,
        prompt: str,
        system_prompt: str = "",
        temperature: float = 0.6,
        max_tokens: int = 4096,
        max_retries: int | None = None,
        operation: str = "generate",
    ) -> str:
        """Generate a single-shot completion for a prompt."""
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        return await self.complete(
            messages,
            temperature=temperature,
            max_tokens=max_tokens,
            max_retries=max_retries,
            operation=operation,
        )

    def open_chat(
        self,
        system_prompt: str,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> ChatHandle:
        """Open a multi-turn conversation primed with a system prompt."""
        return ChatHandle(
            self,
            system_prompt=system_prompt,
            temperature=self.settings.simulation_temperature if temperature is None else temperature,
            max_tokens=max_tokens or self.settings.simulation_max_tokens,
            max_history_turns=self.settings.simulation_history_turns,
        )


# Singleton instance
_llm_client: LLMClient | None = None


def get_llm_client() -> LLMClient:
    """Get the LLM client singleton."""
    global _llm_client
    if _llm_client is None:
        _llm_client = LLMClient()
    return _llm_client
