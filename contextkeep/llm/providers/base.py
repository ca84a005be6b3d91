"""Base class for model handles.

A model handle is the only way the context engine talks to a language model:
it streams a reply for a system prompt plus messages, and counts tokens.
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Any

from ...types.types import ApiStreamChunk, ModelInfo

# Provider registry - providers register themselves here
_PROVIDER_REGISTRY: dict[str, type["ModelHandle"]] = {}


def register_provider(name: str):
    """
    Decorator to register a model handle class.

    Usage:
        @register_provider("anthropic")
        class AnthropicHandle(ModelHandle):
            ...

    Args:
        name: Provider name (e.g., "openai", "anthropic")

    Returns:
        Decorator function
    """

    def decorator(cls: type["ModelHandle"]) -> type["ModelHandle"]:
        _PROVIDER_REGISTRY[name.lower()] = cls
        return cls

    return decorator


class ModelHandle(ABC):
    """Base class for model handles."""

    @abstractmethod
    def create_message(
        self,
        system_prompt: str,
        messages: list[dict[str, Any]],
    ) -> AsyncIterator[ApiStreamChunk]:
        """
        Stream a reply from the model.

        Args:
            system_prompt: System prompt for the request
            messages: Provider-format messages with 'role' and 'content' keys

        Yields:
            ApiStreamTextChunk for generated text and ApiStreamUsageChunk for usage
        """

    @abstractmethod
    def get_model(self) -> ModelInfo:
        """Describe the model behind this handle."""

    async def count_tokens(self, content: list[Any]) -> int:
        """
        Count tokens for a list of content blocks or messages.

        The default implementation uses the ~4 chars/token heuristic.
        Handles whose provider exposes an exact counter should override it.
        """
        from ...memory.tokens import estimate_content_tokens

        return estimate_content_tokens(content)

    def calculate_cost(self, input_tokens: int, output_tokens: int) -> float | None:
        """Price a call from token usage when the model info carries prices."""
        info = self.get_model()
        if info.input_price is None and info.output_price is None:
            return None
        return (
            (info.input_price or 0.0) * input_tokens + (info.output_price or 0.0) * output_tokens
        ) / 1_000_000


def can_create_messages(handle: Any) -> bool:
    """True when ``handle`` exposes a callable ``create_message``."""
    return handle is not None and callable(getattr(handle, "create_message", None))


def get_provider(provider_name: str, **kwargs) -> ModelHandle:
    """
    Get a model handle by provider name from the registry.

    Providers are dynamically imported when requested. If a provider's SDK is not
    installed, a helpful error message will be raised.

    Args:
        provider_name: Name of the provider ("openai", "anthropic")
        **kwargs: Provider-specific initialization parameters

    Returns:
        ModelHandle instance

    Raises:
        ValueError: If the provider is not found or not supported
        ImportError: If the provider's SDK is not installed
    """
    provider_name_lower = provider_name.lower()

    # Check if already registered
    provider_class = _PROVIDER_REGISTRY.get(provider_name_lower)
    if provider_class:
        return provider_class(**kwargs)

    provider_modules = {
        "anthropic": ".anthropic",
        "openai": ".openai",
    }

    module_path = provider_modules.get(provider_name_lower)
    if not module_path:
        available = ", ".join(sorted(provider_modules.keys()))
        raise ValueError(
            f"Unknown LLM provider: {provider_name}. "
            f"Supported providers: {available}. "
            f"To use a provider, install it with: pip install contextkeep[{provider_name_lower}]"
        )

    # Importing the module triggers the @register_provider decorator
    try:
        if provider_name_lower == "anthropic":
            from . import anthropic  # noqa: F401
        elif provider_name_lower == "openai":
            from . import openai  # noqa: F401
    except ImportError as e:
        raise ImportError(
            f"Failed to import {provider_name} provider. "
            f"Install the required SDK with: pip install contextkeep[{provider_name_lower}]"
        ) from e

    provider_class = _PROVIDER_REGISTRY.get(provider_name_lower)
    if not provider_class:
        raise ValueError(
            f"Provider {provider_name} was imported but not registered. "
            f"This is likely a bug in the provider implementation."
        )

    return provider_class(**kwargs)
