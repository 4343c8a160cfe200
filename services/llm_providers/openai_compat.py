"""OpenAI-compatible chat completions provider (NVIDIA NIM by default)."""

from openai import AsyncOpenAI

from config import get_settings
from services.llm_providers.base import BaseLLMProvider


class OpenAICompatibleLLMProvider(BaseLLMProvider):
    """LLM provider for any endpoint speaking the OpenAI chat completions API."""

    def __init__(self, model: str | None = None, client: AsyncOpenAI | None = None):
        settings = get_settings()
        self.client = client or AsyncOpenAI(
            base_url=settings.llm_base_url,
            api_key=settings.get_llm_api_key(),
        )
        self._model = model or settings.llm_model

    @property
    def model_name(self) -> str:
        return self._model

    async def generate(
        self,
        messages: list[dict],
        temperature: float = 0.6,
        max_tokens: int = 4096,
    ) -> tuple[str, dict]:
        response = await self.client.chat.completions.create(
            model=self._model,
            messages=messages,
            temperature=temperature,
            top_p=0.95,
            max_tokens=max_tokens,
        )

        content = response.choices[0].message.content or ""
        usage = {}
        if response.usage:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens or 0,
                "completion_tokens": response.usage.completion_tokens or 0,
                "total_tokens": response.usage.total_tokens or 0,
            }

        return content, usage
