"""Token estimation utilities.

Uses a simple heuristic: ~4 characters per token. Model handles that cannot
ask their provider for an exact count fall back to these.
"""

from __future__ import annotations

import json
import math
from typing import Any


def estimate_tokens(text: str) -> int:
    """Estimate token count for a string using the ~4 chars/token heuristic."""
    return math.ceil(len(text) / 4)


def estimate_content_tokens(content: Any) -> int:
    """Estimate token count for message content (string or content blocks)."""
    if content is None:
        return 0
    if isinstance(content, str):
        return estimate_tokens(content)
    if isinstance(content, list):
        total = 0
        for block in content:
            if isinstance(block, dict) and block.get("type") == "text":
                total += estimate_tokens(block.get("text") or "")
            elif isinstance(block, str):
                total += estimate_tokens(block)
            else:
                total += _estimate_json_tokens(block)
        return total
    return _estimate_json_tokens(content)


def estimate_message_tokens(message: dict) -> int:
    """Estimate token count for a single conversation message."""
    return estimate_content_tokens(message.get("content"))


def estimate_messages_tokens(messages: list[dict]) -> int:
    """Estimate total token count for an array of conversation messages."""
    total = 0
    for msg in messages:
        total += estimate_message_tokens(msg)
    return total


def _estimate_json_tokens(value: Any) -> int:
    try:
        return estimate_tokens(json.dumps(value))
    except (TypeError, ValueError):
        return 0
