"""Model handle implementations."""

from .base import ModelHandle, can_create_messages, get_provider, register_provider

__all__ = ["ModelHandle", "can_create_messages", "get_provider", "register_provider"]
