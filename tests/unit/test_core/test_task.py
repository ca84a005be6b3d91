"""Unit tests for contextkeep.core.task module."""

import json
from unittest.mock import patch

import pytest
from conftest import FakeHandle, make_messages

from contextkeep.core.task import HISTORY_FILENAME, TaskHistory
from contextkeep.memory.condense import ERROR_CONTEXT_GREW
from contextkeep.memory.journal import JournalWriteError, read_journal
from contextkeep.memory.types import CondenseConfig


def make_history(task_dir=None, handle=None, count=7, **config):
    history = TaskHistory(
        "task-1",
        task_dir=task_dir,
        api_handler=handle or FakeHandle(replies=[("This is a summary", 50, 0.05)]),
        system_prompt="System prompt",
        config=CondenseConfig(**config),
    )
    for message in make_messages(count):
        history.add_message(message.role, message.content, ts=message.ts)
    return history


def visible_ts(history):
    return [m.ts for m in history.effective_messages()]


class TestAddMessage:
    """Tests for TaskHistory.add_message."""

    def test_assigns_increasing_timestamps(self):
        history = TaskHistory("task-1")
        first = history.add_message("user", "hi")
        second = history.add_message("assistant", "hello")
        assert second.ts > first.ts

    def test_timestamp_after_future_ts(self):
        history = TaskHistory("task-1")
        history.add_message("user", "hi", ts=10**15)
        assert history.add_message("assistant", "hello").ts == 10**15 + 1

    def test_rejects_out_of_order_ts(self):
        history = TaskHistory("task-1")
        history.add_message("user", "hi", ts=2000)
        with pytest.raises(ValueError):
            history.add_message("assistant", "hello", ts=2000)

    def test_messages_is_a_copy(self):
        history = make_history()
        history.messages.clear()
        assert len(history.messages) == 7


class TestPersistence:
    """Tests for TaskHistory.load and TaskHistory.save."""

    @pytest.mark.asyncio
    async def test_round_trip(self, task_dir):
        history = make_history(task_dir)
        await history.save()

        loaded = TaskHistory("task-1", task_dir=task_dir)
        messages = await loaded.load()
        assert messages == history.messages

    @pytest.mark.asyncio
    async def test_missing_file_loads_empty(self, task_dir):
        assert await TaskHistory("task-1", task_dir=task_dir).load() == []

    @pytest.mark.asyncio
    async def test_saved_format_omits_unset_fields(self, task_dir):
        history = make_history(task_dir, count=1)
        await history.save()

        data = json.loads((task_dir / HISTORY_FILENAME).read_text())
        assert data == [
            {
                "role": "user",
                "content": "message 0",
                "ts": 1000,
                "is_summary": False,
                "is_truncation_marker": False,
            }
        ]

    @pytest.mark.asyncio
    async def test_corrupt_file_raises(self, task_dir, caplog):
        (task_dir / HISTORY_FILENAME).write_text("[{")
        with pytest.raises(ValueError):
            await TaskHistory("task-1", task_dir=task_dir).load()
        assert "Failed to load message log" in caplog.text


class TestPrepareRequest:
    """Tests for TaskHistory.prepare_request."""

    @pytest.mark.asyncio
    async def test_below_limits(self, task_dir):
        history = make_history(task_dir)
        request = await history.prepare_request(total_tokens=1000)

        assert request[0] == {"role": "user", "content": "message 0"}
        assert len(request) == 7
        assert history.last_result.prev_context_tokens == 1100

    @pytest.mark.asyncio
    async def test_auto_condense_adopted_and_saved(self, task_dir):
        history = make_history(task_dir, auto_condense_context_percent=50)
        request = await history.prepare_request(total_tokens=60_000)

        assert len(request) == 5
        assert request[1] == {"role": "assistant", "content": "This is a summary"}
        assert history.last_result.condense_id is not None

        reloaded = TaskHistory("task-1", task_dir=task_dir)
        assert len(await reloaded.load()) == 8
        journal = await read_journal(task_dir)
        assert journal.entries[0].type == "auto"

    @pytest.mark.asyncio
    async def test_truncation_when_condense_disabled(self, task_dir):
        history = make_history(task_dir, auto_condense_context=False)
        request = await history.prepare_request(total_tokens=95_000, max_tokens=8192)

        assert history.last_result.truncation_id is not None
        assert len(request) < 7
        assert await read_journal(task_dir) is None

    @pytest.mark.asyncio
    async def test_journal_failure_keeps_condensed_log(self, task_dir):
        history = make_history(task_dir, auto_condense_context_percent=50)
        with patch(
            "contextkeep.memory.condense.append_journal_entry",
            side_effect=JournalWriteError("journal.json", "disk full"),
        ):
            with pytest.raises(JournalWriteError):
                await history.prepare_request(total_tokens=60_000)

        assert len(history.messages) == 8
        assert history.last_result.condense_id is not None


class TestCondenseContext:
    """Tests for TaskHistory.condense_context."""

    @pytest.mark.asyncio
    async def test_manual_condense(self, task_dir):
        history = make_history(task_dir)
        result = await history.condense_context(prev_context_tokens=1000)

        assert result.error is None
        assert len(history.messages) == 8
        assert len(visible_ts(history)) == 5
        journal = await read_journal(task_dir)
        assert journal.entries[0].type == "manual"

    @pytest.mark.asyncio
    async def test_failure_leaves_log_untouched(self, task_dir):
        history = make_history(task_dir)
        before = history.messages

        # The estimated context is far smaller than the summary would be
        result = await history.condense_context()

        assert result.error == ERROR_CONTEXT_GREW
        assert history.messages == before


class TestHandleContextWindowExceeded:
    """Tests for TaskHistory.handle_context_window_exceeded."""

    @pytest.mark.asyncio
    async def test_forces_truncation(self, task_dir):
        history = make_history(task_dir, count=9, auto_condense_context=False)
        result = await history.handle_context_window_exceeded(total_tokens=1000)

        assert result.truncation_id is not None
        assert visible_ts(history)[0] == 1000
        assert visible_ts(history)[2:] == [1700, 1800]


class TestRecovery:
    """Tests for rewind, restore and drop_condensed."""

    async def condensed(self, task_dir):
        history = make_history(task_dir)
        result = await history.condense_context(prev_context_tokens=1000)
        return history, history.messages[4].ts, result

    @pytest.mark.asyncio
    async def test_rewind_before_summary_unhides(self, task_dir):
        history, summary_ts, _ = await self.condensed(task_dir)

        await history.rewind_to(summary_ts)

        assert visible_ts(history) == [1000, 1100, 1200, 1300]
        assert all(m.condense_parent is None for m in history.messages)

    @pytest.mark.asyncio
    async def test_rewind_keeps_earlier_summary(self, task_dir):
        history, summary_ts, _ = await self.condensed(task_dir)

        await history.rewind_to(1500)

        assert visible_ts(history) == [1000, summary_ts, 1400]

    @pytest.mark.asyncio
    async def test_rewind_persists(self, task_dir):
        history, summary_ts, _ = await self.condensed(task_dir)
        await history.rewind_to(1200)

        reloaded = TaskHistory("task-1", task_dir=task_dir)
        assert [m.ts for m in await reloaded.load()] == [1000, 1100]

    @pytest.mark.asyncio
    async def test_drop_condensed(self, task_dir):
        history, summary_ts, _ = await self.condensed(task_dir)

        assert await history.drop_condensed() == 3
        assert [m.ts for m in history.messages] == [1000, summary_ts, 1400, 1500, 1600]

    @pytest.mark.asyncio
    async def test_drop_condensed_requires_journal(self):
        history = make_history()
        assert await history.drop_condensed() == 0

    @pytest.mark.asyncio
    async def test_drop_condensed_keeps_unjournaled_messages(self, task_dir):
        history = make_history(task_dir)
        with patch(
            "contextkeep.memory.condense.append_journal_entry",
            side_effect=JournalWriteError("journal.json", "disk full"),
        ):
            with pytest.raises(JournalWriteError):
                await history.condense_context(prev_context_tokens=1000)

        assert await history.drop_condensed() == 0
        await history.save()

        reloaded = TaskHistory("task-1", task_dir=task_dir)
        stored_ts = [m.ts for m in await reloaded.load()]
        assert len(stored_ts) == 8
        assert {1100, 1200, 1300} <= set(stored_ts)

    @pytest.mark.asyncio
    async def test_rewind_after_drop_restores_from_journal(self, task_dir):
        history, summary_ts, _ = await self.condensed(task_dir)
        await history.drop_condensed()

        await history.rewind_to(summary_ts)

        assert visible_ts(history) == [1000, 1100, 1200, 1300]

    @pytest.mark.asyncio
    async def test_rewind_into_dropped_span(self, task_dir):
        history, _, _ = await self.condensed(task_dir)
        await history.drop_condensed()

        await history.rewind_to(1200)

        assert visible_ts(history) == [1000, 1100]

    @pytest.mark.asyncio
    async def test_restore_rehides_behind_active_summary(self, task_dir):
        history, summary_ts, result = await self.condensed(task_dir)
        await history.drop_condensed()

        assert await history.restore(1200) is True

        assert [m.ts for m in history.messages] == [1000, 1100, 1200, 1300, summary_ts, 1400, 1500, 1600]
        restored = next(m for m in history.messages if m.ts == 1200)
        assert restored.condense_parent == result.condense_id
        assert visible_ts(history) == [1000, summary_ts, 1400, 1500, 1600]

    @pytest.mark.asyncio
    async def test_restore_present_message(self, task_dir):
        history, _, _ = await self.condensed(task_dir)
        assert await history.restore(1200) is False

    @pytest.mark.asyncio
    async def test_restore_without_journal(self):
        history = make_history()
        assert await history.restore(1200) is False
