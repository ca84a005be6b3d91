"""Model capability consumed by the context engine."""

from .providers import ModelHandle, can_create_messages, get_provider, register_provider

__all__ = [
    "ModelHandle",
    "can_create_messages",
    "get_provider",
    "register_provider",
]
