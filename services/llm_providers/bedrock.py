"""Amazon Bedrock provider using the Converse API.

boto3 is synchronous, so every call runs in a worker thread. AWS credentials
come from the usual chain (env vars, ~/.aws/credentials, or an IAM role).
"""

import asyncio

from config import get_settings
from services.llm_providers.base import BaseLLMProvider
from utils.logging import get_logger

logger = get_logger(__name__)


def to_bedrock_messages(messages: list[dict]) -> tuple[list[dict], list[dict]]:
    """Split chat messages into Converse ``system`` blocks and turns.

    Converse rejects two consecutive turns from the same role, so adjacent
    same-role messages are merged into one turn with several text blocks.
    """
    system_blocks: list[dict] = []
    turns: list[dict] = []

    for message in messages:
        block = {"text": message.get("content", "")}
        if message["role"] == "system":
            system_blocks.append(block)
        elif turns and turns[-1]["role"] == message["role"]:
            turns[-1]["content"].append(block)
        else:
            turns.append({"role": message["role"], "content": [block]})

    return system_blocks, turns


class BedrockLLMProvider(BaseLLMProvider):
    """Reasoning provider backed by Bedrock Converse."""

    def __init__(self, model_id: str | None = None, region: str | None = None, client=None):
        settings = get_settings()
        self._model_id = model_id or settings.bedrock_model_id
        self._region = region or settings.aws_region
        self._client = client

    def _get_client(self):
        if self._client is None:
            # boto3 import is heavy; only pay for it when Bedrock is selected
            import boto3

            self._client = boto3.client("bedrock-runtime", region_name=self._region)
        return self._client

    @property
    def model_name(self) -> str:
        return self._model_id

    async def generate(
        self,
        messages: list[dict],
        temperature: float = 0.6,
        max_tokens: int = 4096,
    ) -> tuple[str, dict]:
        system_blocks, turns = to_bedrock_messages(messages)
        request = {
            "modelId": self._model_id,
            "messages": turns,
            "inferenceConfig": {
                "temperature": temperature,
                "maxTokens": max_tokens,
                "topP": 0.95,
            },
        }
        if system_blocks:
            request["system"] = system_blocks

        response = await asyncio.to_thread(self._get_client().converse, **request)

        if response.get("stopReason") == "max_tokens":
            logger.warning(
                "Bedrock reply truncated at max_tokens",
                extra={"model": self._model_id, "max_tokens": max_tokens},
            )

        blocks = response.get("output", {}).get("message", {}).get("content", [])
        text = "".join(block["text"] for block in blocks if "text" in block)

        usage = response.get("usage", {})
        return text, {
            "prompt_tokens": usage.get("inputTokens", 0),
            "completion_tokens": usage.get("outputTokens", 0),
            "total_tokens": usage.get("totalTokens", 0),
        }
