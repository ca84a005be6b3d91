"""OpenAI model handle using the Chat Completions API."""

import json
import logging
import os
from typing import Any

from ...types.types import ApiStreamTextChunk, ApiStreamUsageChunk, ModelInfo
from .base import ModelHandle, register_provider

logger = logging.getLogger(__name__)

DEFAULT_OPENAI_MODEL = "gpt-4o"


def _flatten_content(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text") or "")
            elif isinstance(block, str):
                parts.append(block)
            else:
                parts.append(json.dumps(block))
        return "\n".join(parts)
    return json.dumps(content)


@register_provider("openai")
class OpenAIHandle(ModelHandle):
    """OpenAI handle for streaming chat completions."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        context_window: int = 128_000,
        max_tokens: int | None = None,
        input_price: float | None = None,
        output_price: float | None = None,
    ):
        """
        Initialize OpenAI handle.

        Args:
            api_key: OpenAI API key. If not provided, uses OPENAI_API_KEY env var.
            base_url: Optional base URL for the API. If not provided, defaults to OpenAI's URL.
                     Useful for Azure OpenAI or other OpenAI-compatible endpoints.
            model: Model id. If not provided, uses OPENAI_MODEL env var or a default.
            context_window: Context window of the model in tokens
            max_tokens: Output token limit for each request
            input_price: USD per million input tokens, used to report cost
            output_price: USD per million output tokens, used to report cost
        """
        # Import OpenAI SDK only when this provider is used (lazy loading)
        try:
            from openai import AsyncOpenAI
        except ImportError:
            raise ImportError(
                "OpenAI SDK not installed. Install it with: pip install contextkeep[openai]"
            ) from None

        self.api_key = api_key or os.getenv("OPENAI_API_KEY")
        if not self.api_key:
            raise ValueError(
                "OpenAI API key not provided. Set OPENAI_API_KEY environment variable "
                "or pass api_key parameter."
            )

        self.base_url = base_url or os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
        self.model_info = ModelInfo(
            id=model or os.getenv("OPENAI_MODEL", DEFAULT_OPENAI_MODEL),
            context_window=context_window,
            max_tokens=max_tokens,
            input_price=input_price,
            output_price=output_price,
        )
        self.client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url)

    def get_model(self) -> ModelInfo:
        return self.model_info

    async def create_message(self, system_prompt: str, messages: list[dict[str, Any]]):
        processed_messages: list[dict[str, Any]] = []
        if system_prompt:
            processed_messages.append({"role": "system", "content": system_prompt})
        for msg in messages:
            processed_messages.append(
                {"role": msg.get("role"), "content": _flatten_content(msg.get("content", ""))}
            )

        request_params: dict[str, Any] = {
            "model": self.model_info.id,
            "messages": processed_messages,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if self.model_info.max_tokens is not None:
            request_params["max_tokens"] = self.model_info.max_tokens

        input_tokens = 0
        output_tokens = 0
        try:
            stream = await self.client.chat.completions.create(**request_params)
            async for chunk in stream:
                if chunk.choices and len(chunk.choices) > 0:
                    delta = chunk.choices[0].delta
                    if delta.content:
                        yield ApiStreamTextChunk(text=delta.content)
                if chunk.usage:
                    input_tokens = chunk.usage.prompt_tokens or 0
                    output_tokens = chunk.usage.completion_tokens or 0
        except Exception as e:
            raise RuntimeError(f"OpenAI Chat Completions streaming failed: {str(e)}") from e

        yield ApiStreamUsageChunk(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_cost=self.calculate_cost(input_tokens, output_tokens),
        )
