"""Anthropic model handle."""

import logging
import os
from typing import Any

from ...types.types import ApiStreamTextChunk, ApiStreamUsageChunk, ModelInfo
from .base import ModelHandle, register_provider

logger = logging.getLogger(__name__)

DEFAULT_ANTHROPIC_MODEL = "claude-sonnet-4-5"
DEFAULT_MAX_TOKENS = 8192


def _to_anthropic_messages(messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Anthropic requires alternating roles; merge consecutive same-role turns."""
    merged: list[dict[str, Any]] = []
    for msg in messages:
        content = msg.get("content", "")
        if merged and merged[-1]["role"] == msg.get("role"):
            previous = merged[-1]["content"]
            merged[-1]["content"] = _as_blocks(previous) + _as_blocks(content)
        else:
            merged.append({"role": msg.get("role"), "content": content})
    return merged


def _as_blocks(content: Any) -> list[dict[str, Any]]:
    if isinstance(content, list):
        return list(content)
    return [{"type": "text", "text": content if isinstance(content, str) else str(content)}]


@register_provider("anthropic")
class AnthropicHandle(ModelHandle):
    """Anthropic handle using the Messages API."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        context_window: int = 200_000,
        max_tokens: int | None = None,
        input_price: float | None = None,
        output_price: float | None = None,
    ):
        """
        Initialize Anthropic handle.

        Args:
            api_key: Anthropic API key. If not provided, uses ANTHROPIC_API_KEY env var.
            model: Model id. If not provided, uses ANTHROPIC_MODEL env var or a default.
            context_window: Context window of the model in tokens
            max_tokens: Output token limit for each request
            input_price: USD per million input tokens, used to report cost
            output_price: USD per million output tokens, used to report cost
        """
        # Import Anthropic SDK only when this provider is used (lazy loading)
        try:
            from anthropic import AsyncAnthropic
        except ImportError:
            raise ImportError(
                "Anthropic SDK not installed. Install it with: pip install 'contextkeep[anthropic]'"
            ) from None

        self.api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        if not self.api_key:
            raise ValueError(
                "Anthropic API key not provided. Set ANTHROPIC_API_KEY "
                "environment variable or pass api_key parameter."
            )

        self.model_info = ModelInfo(
            id=model or os.getenv("ANTHROPIC_MODEL", DEFAULT_ANTHROPIC_MODEL),
            context_window=context_window,
            max_tokens=max_tokens,
            input_price=input_price,
            output_price=output_price,
        )
        self.client = AsyncAnthropic(api_key=self.api_key)

    def get_model(self) -> ModelInfo:
        return self.model_info

    async def create_message(self, system_prompt: str, messages: list[dict[str, Any]]):
        request_params: dict[str, Any] = {
            "model": self.model_info.id,
            "messages": _to_anthropic_messages(messages),
            "max_tokens": self.model_info.max_tokens or DEFAULT_MAX_TOKENS,
            "stream": True,
        }
        if system_prompt:
            request_params["system"] = system_prompt

        input_tokens = 0
        output_tokens = 0
        try:
            stream = await self.client.messages.create(**request_params)
            async for event in stream:
                event_type = event.type
                if event_type == "message_start":
                    usage = getattr(event.message, "usage", None)
                    if usage is not None:
                        input_tokens = (
                            (usage.input_tokens or 0)
                            + (getattr(usage, "cache_read_input_tokens", None) or 0)
                            + (getattr(usage, "cache_creation_input_tokens", None) or 0)
                        )
                elif event_type == "content_block_start":
                    block = event.content_block
                    if getattr(block, "type", None) == "text" and block.text:
                        yield ApiStreamTextChunk(text=block.text)
                elif event_type == "content_block_delta":
                    delta = event.delta
                    if getattr(delta, "type", None) == "text_delta" and delta.text:
                        yield ApiStreamTextChunk(text=delta.text)
                elif event_type == "message_delta":
                    usage = getattr(event, "usage", None)
                    if usage is not None and usage.output_tokens is not None:
                        output_tokens = usage.output_tokens
        except Exception as e:
            raise RuntimeError(f"Anthropic Messages API streaming failed: {str(e)}") from e

        yield ApiStreamUsageChunk(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_cost=self.calculate_cost(input_tokens, output_tokens),
        )

    async def count_tokens(self, content: list[Any]) -> int:
        """Count tokens with the provider's counter, falling back to the heuristic."""
        try:
            response = await self.client.messages.count_tokens(
                model=self.model_info.id,
                messages=[{"role": "user", "content": _content_blocks(content)}],
            )
            return response.input_tokens
        except Exception as e:
            logger.debug("Anthropic token counting failed, using estimate: %s", e)
            return await super().count_tokens(content)


def _content_blocks(content: list[Any]) -> list[dict[str, Any]]:
    blocks: list[dict[str, Any]] = []
    for item in content:
        if isinstance(item, dict) and "role" in item:
            blocks.extend(_as_blocks(item.get("content", "")))
        elif isinstance(item, dict):
            blocks.append(item)
        else:
            blocks.append({"type": "text", "text": str(item)})
    return blocks or [{"type": "text", "text": ""}]
