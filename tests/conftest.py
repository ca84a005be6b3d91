"""Shared pytest configuration and fixtures."""

from unittest.mock import MagicMock

import pytest

from contextkeep.llm.providers.base import ModelHandle
from contextkeep.types.types import ApiMessage, ApiStreamTextChunk, ApiStreamUsageChunk, ModelInfo


class FakeHandle(ModelHandle):
    """Model handle that replays scripted replies.

    Each reply is ``(text, output_tokens, cost)``; ``count_tokens`` returns a
    fixed value so context sizes are predictable.
    """

    def __init__(self, replies=None, token_count=100, context_window=100_000, max_tokens=None):
        self.replies = list(replies or [])
        self.token_count = token_count
        self.context_window = context_window
        self.max_tokens = max_tokens
        self.calls = []
        self.count_calls = []

    async def create_message(self, system_prompt, messages):
        self.calls.append({"system_prompt": system_prompt, "messages": messages})
        text, output_tokens, cost = self.replies.pop(0) if self.replies else ("", 0, 0.0)
        if text:
            yield ApiStreamTextChunk(text=text)
        yield ApiStreamUsageChunk(input_tokens=100, output_tokens=output_tokens, total_cost=cost)

    async def count_tokens(self, content):
        self.count_calls.append(content)
        return self.token_count

    def get_model(self):
        return ModelInfo(
            id="fake-model", context_window=self.context_window, max_tokens=self.max_tokens
        )


def make_messages(count, start_ts=1000, step=100):
    """Alternating user/assistant log with evenly spaced timestamps."""
    return [
        ApiMessage(
            role="user" if i % 2 == 0 else "assistant",
            content=f"message {i}",
            ts=start_ts + i * step,
        )
        for i in range(count)
    ]


@pytest.fixture
def fake_handle():
    """Handle that returns a 50-token summary and counts 100 tokens."""
    return FakeHandle(replies=[("This is a summary", 50, 0.05)])


@pytest.fixture
def seven_messages():
    return make_messages(7)


@pytest.fixture
def task_dir(tmp_path):
    path = tmp_path / "task-1"
    path.mkdir()
    return path


@pytest.fixture
def mock_tracer():
    """Mock OpenTelemetry tracer."""
    tracer = MagicMock()
    span = MagicMock()
    span.__enter__ = MagicMock(return_value=span)
    span.__exit__ = MagicMock(return_value=False)
    tracer.start_as_current_span = MagicMock(return_value=span)
    return tracer
