"""Condense journal: durable record of every message removed by condensing.

One JSON document per task directory, ``{"version": 1, "entries": [...]}``.
Entries are appended and never rewritten; the file itself is always replaced
whole. Sliding-window truncation is deliberately not journaled.
"""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Literal

from pydantic import ValidationError

from ..types.types import ApiMessage
from ..utils.storage import StorageError, read_json_async, safe_write_json_async
from .types import CondenseJournal, CondenseJournalEntry, JournalBoundary

if TYPE_CHECKING:
    from .types import SummarizeResponse

logger = logging.getLogger(__name__)

JOURNAL_FILENAME = "condense_journal.json"
JOURNAL_VERSION = 1


class JournalWriteError(StorageError):
    """Raised when a journal entry could not be persisted.

    ``response`` carries the condense result that was computed before the
    write failed, so callers can keep the in-memory log consistent.
    """

    def __init__(
        self,
        path: str | os.PathLike,
        reason: str | None = None,
        response: SummarizeResponse | None = None,
    ):
        super().__init__(path, reason)
        self.response = response


def get_journal_path(task_dir: str | os.PathLike) -> str:
    """Path to the condense journal file for a task."""
    return os.path.join(task_dir, JOURNAL_FILENAME)


async def read_journal(task_dir: str | os.PathLike) -> CondenseJournal | None:
    """Read the condense journal.

    Returns None when the journal does not exist yet, or when it cannot be
    read or parsed (logged). A version mismatch is logged but the journal is
    still returned.
    """
    journal_path = get_journal_path(task_dir)
    try:
        data = await read_json_async(journal_path)
    except (OSError, ValueError) as e:
        logger.error("Error reading condense journal %s: %s", journal_path, e)
        return None

    if data is None:
        return None

    try:
        journal = CondenseJournal.model_validate(data)
    except ValidationError as e:
        logger.error("Malformed condense journal %s: %s", journal_path, e)
        return None

    if journal.version != JOURNAL_VERSION:
        logger.warning(
            "Condense journal version mismatch: expected %s, got %s",
            JOURNAL_VERSION,
            journal.version,
        )

    return journal


async def write_journal(task_dir: str | os.PathLike, journal: CondenseJournal) -> None:
    """Overwrite the journal file with ``journal``.

    Raises:
        JournalWriteError: If the file could not be written.
    """
    journal_path = get_journal_path(task_dir)
    try:
        await safe_write_json_async(journal_path, journal)
    except StorageError as e:
        logger.error("Failed to write condense journal %s: %s", journal_path, e.reason)
        raise JournalWriteError(journal_path, e.reason) from e


async def append_journal_entry(task_dir: str | os.PathLike, entry: CondenseJournalEntry) -> None:
    """Append ``entry`` to the task's journal (read, append, rewrite whole)."""
    journal = await read_journal(task_dir)
    if journal is None:
        journal = CondenseJournal(version=JOURNAL_VERSION)
    await write_journal(task_dir, journal.with_entry(entry))


def create_journal_entry(
    removed_messages: list[ApiMessage],
    first_kept_message: ApiMessage | None,
    last_kept_message: ApiMessage | None,
    summary_message: ApiMessage | None,
    type: Literal["manual", "auto"] = "manual",
) -> CondenseJournalEntry:
    """Create a journal entry from a condense operation."""
    return CondenseJournalEntry(
        removed=list(removed_messages),
        boundary=JournalBoundary(
            first_kept_ts=first_kept_message.ts if first_kept_message else None,
            last_kept_ts=last_kept_message.ts if last_kept_message else None,
            summary_ts=summary_message.ts if summary_message else None,
        ),
        type=type,
    )


def find_removed_messages(
    original_messages: list[ApiMessage], condensed_messages: list[ApiMessage]
) -> list[ApiMessage]:
    """Messages of ``original_messages`` whose timestamp is absent from ``condensed_messages``.

    Messages without a timestamp are never reported.
    """
    condensed_ts = {m.ts for m in condensed_messages if m.ts is not None}
    return [m for m in original_messages if m.ts and m.ts not in condensed_ts]


async def restore_messages_for_timestamp(
    task_dir: str | os.PathLike,
    current_messages: list[ApiMessage],
    target_ts: int | float,
) -> list[ApiMessage] | None:
    """Make ``target_ts`` available again by restoring messages from the journal.

    Journal entries are walked newest to oldest. Every entry that removed the
    target contributes all of its removed messages that are not already
    present; the walk stops as soon as the target has been restored.

    Args:
        task_dir: Directory holding the task's journal
        current_messages: Messages currently in memory (not mutated)
        target_ts: Timestamp that must be present afterwards

    Returns:
        A new list sorted by timestamp, or None when the target is already
        present or cannot be found in the journal.
    """
    if any(m.ts == target_ts for m in current_messages):
        return None

    journal = await read_journal(task_dir)
    if journal is None or not journal.entries:
        return None

    current_ts = {m.ts for m in current_messages if m.ts is not None}
    to_restore: list[ApiMessage] = []
    found = False

    for entry in reversed(journal.entries):
        if not any(m.ts == target_ts for m in entry.removed):
            continue

        for msg in entry.removed:
            if msg.ts and msg.ts not in current_ts:
                to_restore.append(msg)
                current_ts.add(msg.ts)
                if msg.ts == target_ts:
                    found = True

        if found:
            break

    if not found:
        return None

    merged = [*current_messages, *to_restore]
    merged.sort(key=lambda m: m.ts or 0)
    logger.info("Restored %d messages from condense journal for ts=%s", len(to_restore), target_ts)
    return merged
