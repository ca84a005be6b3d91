"""Non-destructive marking of condensed and truncated messages.

Nothing is deleted from the stored log. A message that was condensed or
truncated away carries a pointer (``condense_parent`` / ``truncation_parent``)
to the summary or marker that superseded it. The effective history sent to the
model is derived on every read by hiding messages whose pointer targets a
summary or marker that is still present; pointers to anything no longer
present are orphans and pass through.
"""

from __future__ import annotations

import math
import random
import string
import time
from collections.abc import Iterable

from ..types.types import ApiMessage

SUMMARY_CONTINUATION_PROMPT = "Please continue from the following summary:"
TRUNCATION_MARKER_TEMPLATE = "[Sliding window truncation: {count} messages hidden to reduce context]"

_ID_ALPHABET = string.ascii_lowercase + string.digits


def _event_id(prefix: str) -> str:
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"{prefix}-{int(time.time() * 1000)}-{suffix}"


def generate_condense_id() -> str:
    """Fresh id for one condense event, e.g. ``condense-1718000000000-k3j9x0a1b``."""
    return _event_id("condense")


def generate_truncation_id() -> str:
    """Fresh id for one sliding-window truncation event."""
    return _event_id("truncation")


def timestamp_between(before: int | float | None, after: int | float | None) -> int | float:
    """Pick a timestamp strictly between two neighbours.

    Prefers an integer; falls back to the fractional midpoint when the
    neighbours are adjacent integers.
    """
    if before is None and after is None:
        return int(time.time() * 1000)
    if before is None:
        return after - 1
    if after is None:
        return math.floor(before) + 1
    if after <= before:
        raise ValueError(f"Timestamps out of order: {before} >= {after}")
    candidate = math.floor(after) - 1 if after == math.floor(after) else math.floor(after)
    if before < candidate < after:
        return candidate
    return (before + after) / 2


# -- Marker construction ------------------------------------------------------


def build_summary_message(summary: str, condense_id: str, ts: int | float) -> ApiMessage:
    """Build the assistant message that stands in for a condensed span."""
    return ApiMessage(
        role="assistant",
        content=summary,
        ts=ts,
        is_summary=True,
        condense_id=condense_id,
    )


def build_truncation_marker(truncation_id: str, hidden_count: int, ts: int | float) -> ApiMessage:
    """Build the sentinel that stands in for a truncated span."""
    return ApiMessage(
        role="user",
        content=TRUNCATION_MARKER_TEMPLATE.format(count=hidden_count),
        ts=ts,
        is_truncation_marker=True,
        truncation_id=truncation_id,
    )


def mark_condensed(messages: Iterable[ApiMessage], condense_id: str) -> list[ApiMessage]:
    """Return copies tagged with ``condense_parent``; already-tagged messages are left as is."""
    return [
        m if _is_marked(m) else m.model_copy(update={"condense_parent": condense_id})
        for m in messages
    ]


def mark_truncated(messages: Iterable[ApiMessage], truncation_id: str) -> list[ApiMessage]:
    """Return copies tagged with ``truncation_parent``; already-tagged messages are left as is."""
    return [
        m if _is_marked(m) else m.model_copy(update={"truncation_parent": truncation_id})
        for m in messages
    ]


def _is_marked(message: ApiMessage) -> bool:
    return message.condense_parent is not None or message.truncation_parent is not None


# -- Effective history --------------------------------------------------------


def get_active_condense_ids(messages: Iterable[ApiMessage]) -> set[str]:
    """Ids of summaries currently present in the log."""
    return {m.condense_id for m in messages if m.is_summary and m.condense_id}


def get_active_truncation_ids(messages: Iterable[ApiMessage]) -> set[str]:
    """Ids of truncation markers currently present in the log."""
    return {m.truncation_id for m in messages if m.is_truncation_marker and m.truncation_id}


def is_hidden(message: ApiMessage, active_condense_ids: set[str], active_truncation_ids: set[str]) -> bool:
    """True when the message is superseded by a summary or marker that is still present."""
    if message.condense_parent and message.condense_parent in active_condense_ids:
        return True
    if message.truncation_parent and message.truncation_parent in active_truncation_ids:
        return True
    return False


def get_effective_history(messages: list[ApiMessage]) -> list[ApiMessage]:
    """The subset of the stored log that should be sent to the model now."""
    active_condense_ids = get_active_condense_ids(messages)
    active_truncation_ids = get_active_truncation_ids(messages)
    return [m for m in messages if not is_hidden(m, active_condense_ids, active_truncation_ids)]


def clean_orphaned_parents(messages: list[ApiMessage]) -> list[ApiMessage]:
    """Clear parent pointers whose summary or marker is gone.

    Returns a new list; messages that need no change are shared, the rest are copies.
    """
    active_condense_ids = get_active_condense_ids(messages)
    active_truncation_ids = get_active_truncation_ids(messages)
    cleaned = []
    for m in messages:
        update = {}
        if m.condense_parent and m.condense_parent not in active_condense_ids:
            update["condense_parent"] = None
        if m.truncation_parent and m.truncation_parent not in active_truncation_ids:
            update["truncation_parent"] = None
        cleaned.append(m.model_copy(update=update) if update else m)
    return cleaned


def remove_summary(messages: list[ApiMessage], condense_id: str) -> list[ApiMessage]:
    """Roll back one condense event: drop its summary and un-hide what it replaced."""
    remaining = [m for m in messages if not (m.is_summary and m.condense_id == condense_id)]
    return clean_orphaned_parents(remaining)


def remove_truncation_marker(messages: list[ApiMessage], truncation_id: str) -> list[ApiMessage]:
    """Roll back one truncation event: drop its marker and un-hide what it replaced."""
    remaining = [
        m for m in messages if not (m.is_truncation_marker and m.truncation_id == truncation_id)
    ]
    return clean_orphaned_parents(remaining)


def rewind_to_timestamp(messages: list[ApiMessage], ts: int | float) -> list[ApiMessage]:
    """Keep only messages strictly older than ``ts``, then repair orphaned pointers."""
    remaining = [m for m in messages if m.ts is not None and m.ts < ts]
    return clean_orphaned_parents(remaining)


def get_messages_since_last_summary(messages: list[ApiMessage]) -> list[ApiMessage]:
    """Messages from the latest summary onward, prefixed with a continuation request.

    Without any summary the list is returned unchanged.
    """
    last_summary_index = -1
    for i in range(len(messages) - 1, -1, -1):
        if messages[i].is_summary:
            last_summary_index = i
            break

    if last_summary_index == -1:
        return messages

    continuation = ApiMessage(role="user", content=SUMMARY_CONTINUATION_PROMPT, ts=0)
    return [continuation, *messages[last_summary_index:]]
