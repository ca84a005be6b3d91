"""Unit tests for contextkeep.memory.markers module."""

import re

import pytest
from conftest import make_messages

from contextkeep.memory.markers import (
    SUMMARY_CONTINUATION_PROMPT,
    build_summary_message,
    build_truncation_marker,
    clean_orphaned_parents,
    generate_condense_id,
    generate_truncation_id,
    get_active_condense_ids,
    get_active_truncation_ids,
    get_effective_history,
    get_messages_since_last_summary,
    mark_condensed,
    mark_truncated,
    remove_summary,
    remove_truncation_marker,
    rewind_to_timestamp,
    timestamp_between,
)
from contextkeep.types.types import ApiMessage


def condensed_log():
    """m0, m1*, m2*, summary, m3, m4 with m1 and m2 hidden by condense-a."""
    messages = make_messages(5)
    tagged = mark_condensed(messages[1:3], "condense-a")
    summary = build_summary_message("summary", "condense-a", 1250)
    return [messages[0], *tagged, summary, *messages[3:]]


class TestIds:
    """Tests for id generation."""

    def test_condense_id_format(self):
        assert re.match(r"^condense-\d+-[a-z0-9]+$", generate_condense_id())

    def test_truncation_id_format(self):
        assert re.match(r"^truncation-\d+-[a-z0-9]+$", generate_truncation_id())

    def test_ids_are_fresh(self):
        assert len({generate_condense_id() for _ in range(50)}) == 50


class TestTimestampBetween:
    """Tests for timestamp_between function."""

    def test_prefers_integer(self):
        assert timestamp_between(1000, 1100) == 1099

    def test_adjacent_integers_use_midpoint(self):
        assert timestamp_between(1000, 1001) == 1000.5

    def test_fractional_neighbours(self):
        ts = timestamp_between(1000.5, 1001)
        assert 1000.5 < ts < 1001

    def test_fractional_after(self):
        assert timestamp_between(998, 1000.5) == 1000

    def test_missing_before(self):
        assert timestamp_between(None, 1000) == 999

    def test_missing_after(self):
        assert timestamp_between(1000.5, None) == 1001

    def test_out_of_order(self):
        with pytest.raises(ValueError):
            timestamp_between(1000, 1000)


class TestMarking:
    """Tests for tagging and marker construction."""

    def test_mark_condensed_returns_copies(self):
        messages = make_messages(3)
        tagged = mark_condensed(messages, "condense-a")
        assert all(m.condense_parent == "condense-a" for m in tagged)
        assert all(m.condense_parent is None for m in messages)

    def test_mark_does_not_retag(self):
        messages = mark_truncated(make_messages(2), "truncation-a")
        tagged = mark_condensed(messages, "condense-b")
        assert all(m.truncation_parent == "truncation-a" for m in tagged)
        assert all(m.condense_parent is None for m in tagged)

    def test_summary_message(self):
        summary = build_summary_message("text", "condense-a", 1050)
        assert summary.role == "assistant"
        assert summary.is_summary
        assert summary.condense_id == "condense-a"

    def test_truncation_marker(self):
        marker = build_truncation_marker("truncation-a", 4, 1050)
        assert marker.role == "user"
        assert marker.is_truncation_marker
        assert marker.content == "[Sliding window truncation: 4 messages hidden to reduce context]"


class TestEffectiveHistory:
    """Tests for the effective-history filter."""

    def test_hides_condensed_messages(self):
        effective = get_effective_history(condensed_log())
        assert [m.ts for m in effective] == [1000, 1250, 1300, 1400]

    def test_hides_truncated_messages(self):
        messages = make_messages(5)
        log = [
            messages[0],
            *mark_truncated(messages[1:3], "truncation-a"),
            build_truncation_marker("truncation-a", 2, 1250),
            *messages[3:],
        ]
        assert [m.ts for m in get_effective_history(log)] == [1000, 1250, 1300, 1400]

    def test_active_ids(self):
        log = condensed_log()
        log.append(build_truncation_marker("truncation-a", 0, 2000))
        assert get_active_condense_ids(log) == {"condense-a"}
        assert get_active_truncation_ids(log) == {"truncation-a"}

    def test_orphaned_pointers_pass_through(self):
        log = mark_condensed(make_messages(3), "condense-gone")
        assert get_effective_history(log) == log

    def test_clean_orphaned_parents(self):
        log = [*mark_condensed(make_messages(2), "condense-gone"), *condensed_log()[1:]]
        cleaned = clean_orphaned_parents(log)
        assert cleaned[0].condense_parent is None
        assert cleaned[1].condense_parent is None
        assert cleaned[2].condense_parent == "condense-a"
        assert log[0].condense_parent == "condense-gone"

    def test_remove_summary_restores_visibility(self):
        remaining = remove_summary(condensed_log(), "condense-a")
        assert [m.ts for m in remaining] == [1000, 1100, 1200, 1300, 1400]
        assert all(m.condense_parent is None for m in remaining)
        assert get_effective_history(remaining) == remaining

    def test_remove_truncation_marker(self):
        messages = make_messages(3)
        log = [
            messages[0],
            *mark_truncated(messages[1:2], "truncation-a"),
            build_truncation_marker("truncation-a", 1, 1150),
            messages[2],
        ]
        remaining = remove_truncation_marker(log, "truncation-a")
        assert [m.ts for m in remaining] == [1000, 1100, 1200]
        assert remaining[1].truncation_parent is None

    def test_rewind_before_summary(self):
        remaining = rewind_to_timestamp(condensed_log(), 1250)
        assert [m.ts for m in remaining] == [1000, 1100, 1200]
        assert all(m.condense_parent is None for m in remaining)

    def test_rewind_keeps_summary_before_target(self):
        remaining = rewind_to_timestamp(condensed_log(), 1400)
        assert [m.ts for m in get_effective_history(remaining)] == [1000, 1250, 1300]


class TestGetMessagesSinceLastSummary:
    """Tests for get_messages_since_last_summary function."""

    def test_without_summary_returns_all(self):
        messages = make_messages(3)
        assert get_messages_since_last_summary(messages) == messages

    def test_empty(self):
        assert get_messages_since_last_summary([]) == []

    def test_prefixes_continuation(self):
        messages = [
            ApiMessage(role="user", content="Hello", ts=1),
            ApiMessage(role="assistant", content="Hi there", ts=2),
            ApiMessage(role="assistant", content="Summary of conversation", ts=3, is_summary=True),
            ApiMessage(role="user", content="How are you?", ts=4),
        ]
        result = get_messages_since_last_summary(messages)
        assert len(result) == 3
        assert result[0].role == "user"
        assert result[0].content == SUMMARY_CONTINUATION_PROMPT
        assert result[0].ts == 0
        assert result[1:] == messages[2:]

    def test_uses_latest_summary(self):
        messages = [
            ApiMessage(role="user", content="Hello", ts=1),
            ApiMessage(role="assistant", content="First summary", ts=2, is_summary=True),
            ApiMessage(role="user", content="How are you?", ts=3),
            ApiMessage(role="assistant", content="Second summary", ts=4, is_summary=True),
            ApiMessage(role="user", content="What's new?", ts=5),
        ]
        result = get_messages_since_last_summary(messages)
        assert [m.content for m in result[1:]] == ["Second summary", "What's new?"]
