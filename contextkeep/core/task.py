"""The message log for one task.

``TaskHistory`` owns the stored log, persists it next to the condense journal
and runs the context-management flow before each model request.
"""

from __future__ import annotations

import logging
import os
import time
from typing import Any, Literal

from ..memory.condense import summarize_conversation
from ..memory.journal import JournalWriteError, read_journal, restore_messages_for_timestamp
from ..memory.markers import (
    get_active_condense_ids,
    get_effective_history,
    rewind_to_timestamp,
)
from ..memory.sliding_window import reduce_context_after_overflow, truncate_conversation_if_needed
from ..memory.tokens import estimate_messages_tokens, estimate_tokens
from ..memory.types import (
    CondenseConfig,
    CondenseJournal,
    SummarizeResponse,
    TruncateResponse,
    normalize_condense_config,
)
from ..types.types import ApiMessage
from ..utils.storage import read_json_async, safe_write_json_async

logger = logging.getLogger(__name__)

HISTORY_FILENAME = "api_conversation_history.json"


def get_history_path(task_dir: str | os.PathLike) -> str:
    """Path to the stored message log for a task."""
    return os.path.join(task_dir, HISTORY_FILENAME)


class TaskHistory:
    """Stored conversation log of one task.

    The stored log keeps every message, including the ones hidden by a summary
    or truncation marker. ``effective_messages()`` is what goes to the model.
    Journaling is enabled when ``task_dir`` is set.

    Example:
        history = TaskHistory("task-1", task_dir="./tasks/task-1", api_handler=handle)
        await history.load()
        history.add_message("user", "Refactor the parser")
        request = await history.prepare_request(total_tokens=12_000)
    """

    def __init__(
        self,
        task_id: str,
        task_dir: str | os.PathLike | None = None,
        api_handler: Any = None,
        condensing_api_handler: Any = None,
        system_prompt: str = "",
        config: CondenseConfig | None = None,
    ):
        self.task_id = task_id
        self.task_dir = task_dir
        self.api_handler = api_handler
        self.condensing_api_handler = condensing_api_handler
        self.system_prompt = system_prompt
        self.config = normalize_condense_config(config)
        self.last_result: TruncateResponse | SummarizeResponse | None = None
        self._messages: list[ApiMessage] = []

    @property
    def messages(self) -> list[ApiMessage]:
        """Copy of the full stored log."""
        return list(self._messages)

    def effective_messages(self) -> list[ApiMessage]:
        return get_effective_history(self._messages)

    def add_message(
        self,
        role: Literal["user", "assistant"],
        content: Any,
        ts: int | float | None = None,
    ) -> ApiMessage:
        """Append a turn. Timestamps are strictly increasing in stored order.

        Raises:
            ValueError: If an explicit ``ts`` is not newer than the last message.
        """
        last_ts = self._messages[-1].ts if self._messages else None
        if ts is None:
            ts = int(time.time() * 1000)
            if last_ts is not None and ts <= last_ts:
                ts = int(last_ts) + 1
        elif last_ts is not None and ts <= last_ts:
            raise ValueError(f"Message ts {ts} must be greater than the last ts {last_ts}")

        message = ApiMessage(role=role, content=content, ts=ts)
        self._messages.append(message)
        return message

    # -- Persistence ----------------------------------------------------------

    async def load(self) -> list[ApiMessage]:
        """Load the stored log from disk. A missing file loads as empty."""
        if self.task_dir is None:
            return self.messages
        path = get_history_path(self.task_dir)
        try:
            data = await read_json_async(path)
            self._messages = [ApiMessage.model_validate(m) for m in data or []]
        except Exception as e:
            logger.error("Failed to load message log %s: %s", path, e)
            raise
        return self.messages

    async def save(self) -> None:
        """Overwrite the stored log on disk. No-op without a task directory."""
        if self.task_dir is None:
            return
        await safe_write_json_async(
            get_history_path(self.task_dir),
            [m.model_dump(mode="json", exclude_none=True) for m in self._messages],
        )

    async def _adopt(self, messages: list[ApiMessage]) -> None:
        self._messages = list(messages)
        await self.save()

    # -- Context management ---------------------------------------------------

    def _context_window(self, context_window: int | None, max_tokens: int | None):
        if context_window is None or max_tokens is None:
            info = self.api_handler.get_model()
            context_window = context_window or info.context_window
            max_tokens = max_tokens if max_tokens is not None else info.max_tokens
        return context_window, max_tokens

    async def prepare_request(
        self,
        total_tokens: int,
        context_window: int | None = None,
        max_tokens: int | None = None,
    ) -> list[dict[str, Any]]:
        """Fit the log into the context window and return the messages to send.

        ``total_tokens`` is the context size reported for the previous request.
        The outcome is kept in ``last_result``.
        """
        context_window, max_tokens = self._context_window(context_window, max_tokens)
        try:
            result = await truncate_conversation_if_needed(
                self._messages,
                total_tokens=total_tokens,
                context_window=context_window,
                max_tokens=max_tokens,
                api_handler=self.api_handler,
                auto_condense_context=self.config.auto_condense_context,
                auto_condense_context_percent=self.config.auto_condense_context_percent,
                system_prompt=self.system_prompt,
                task_id=self.task_id,
                custom_condensing_prompt=self.config.custom_condensing_prompt,
                condensing_api_handler=self.condensing_api_handler,
                profile_thresholds=self.config.profile_thresholds,
                current_profile_id=self.config.current_profile_id,
                task_dir=self.task_dir,
                minimum_condense_tokens=self.config.minimum_condense_tokens,
                truncation_fraction=self.config.truncation_fraction,
            )
        except JournalWriteError as e:
            await self._adopt_after_journal_failure(e)
            raise

        if result.error:
            logger.info("Context condensing skipped for task %s: %s", self.task_id, result.error)
        self.last_result = result
        await self._adopt(result.messages)
        return [m.to_api_dict() for m in self.effective_messages()]

    async def handle_context_window_exceeded(
        self,
        total_tokens: int,
        context_window: int | None = None,
        max_tokens: int | None = None,
    ) -> TruncateResponse:
        """Shrink the log after the provider rejected a request as too large."""
        context_window, max_tokens = self._context_window(context_window, max_tokens)
        try:
            result = await reduce_context_after_overflow(
                self._messages,
                total_tokens=total_tokens,
                context_window=context_window,
                max_tokens=max_tokens,
                api_handler=self.api_handler,
                auto_condense_context=self.config.auto_condense_context,
                system_prompt=self.system_prompt,
                task_id=self.task_id,
                custom_condensing_prompt=self.config.custom_condensing_prompt,
                condensing_api_handler=self.condensing_api_handler,
                task_dir=self.task_dir,
                minimum_condense_tokens=self.config.minimum_condense_tokens,
            )
        except JournalWriteError as e:
            await self._adopt_after_journal_failure(e)
            raise

        self.last_result = result
        await self._adopt(result.messages)
        return result

    async def condense_context(
        self,
        is_automatic: bool = False,
        prev_context_tokens: int | None = None,
    ) -> SummarizeResponse:
        """Condense the log now, regardless of thresholds.

        Without ``prev_context_tokens`` the current context size is estimated
        from the system prompt and the effective history.
        """
        if prev_context_tokens is None:
            prev_context_tokens = estimate_tokens(self.system_prompt) + estimate_messages_tokens(
                [m.to_api_dict() for m in self.effective_messages()]
            )

        try:
            result = await summarize_conversation(
                self._messages,
                self.api_handler,
                self.system_prompt,
                self.task_id,
                prev_context_tokens,
                is_automatic=is_automatic,
                custom_condensing_prompt=self.config.custom_condensing_prompt,
                condensing_api_handler=self.condensing_api_handler,
                minimum_condense_tokens=self.config.minimum_condense_tokens,
                task_dir=self.task_dir,
            )
        except JournalWriteError as e:
            await self._adopt_after_journal_failure(e)
            raise

        self.last_result = result
        if result.error:
            logger.info("Condensing declined for task %s: %s", self.task_id, result.error)
        else:
            await self._adopt(result.messages)
        return result

    async def _adopt_after_journal_failure(self, error: JournalWriteError) -> None:
        # The condense result is valid in memory even though its journal entry is not
        if error.response is None:
            return
        logger.error(
            "Condense journal write failed for task %s; keeping condensed log in memory",
            self.task_id,
        )
        self.last_result = error.response
        self._messages = list(error.response.messages)

    # -- Recovery -------------------------------------------------------------

    async def restore(self, ts: int | float) -> bool:
        """Bring a condensed-away message back into the stored log.

        Restored messages are hidden again behind the summary that replaced
        them when that summary, or a later one that condensed it, is still
        present.

        Returns:
            True if messages were restored.
        """
        if self.task_dir is None:
            return False
        restored = await restore_messages_for_timestamp(self.task_dir, self._messages, ts)
        if restored is None:
            return False

        journal = await read_journal(self.task_dir)
        if journal is not None:
            restored = _rehide_restored(restored, self._messages, journal)
        await self._adopt(restored)
        return True

    async def rewind_to(self, ts: int | float) -> list[ApiMessage]:
        """Drop every message at or after ``ts``.

        Summaries and markers created after ``ts`` go with it; whatever they
        hid becomes visible again, restored from the journal where it was
        dropped from the working set.
        """
        if self.task_dir is not None:
            if not any(m.ts == ts for m in self._messages):
                restored = await restore_messages_for_timestamp(self.task_dir, self._messages, ts)
                if restored is not None:
                    self._messages = restored
            await self._restore_dropped_before(ts)

        await self._adopt(rewind_to_timestamp(self._messages, ts))
        logger.info("Rewound task %s to ts=%s (%d messages kept)", self.task_id, ts, len(self._messages))
        return self.messages

    async def _restore_dropped_before(self, ts: int | float) -> None:
        journal = await read_journal(self.task_dir)
        if journal is None:
            return
        present = {m.ts for m in self._messages if m.ts is not None}
        restored: list[ApiMessage] = []
        for entry in journal.entries:
            summary_ts = entry.boundary.summary_ts
            if summary_ts is None or summary_ts < ts:
                continue
            for m in entry.removed:
                if m.ts is not None and m.ts < ts and m.ts not in present:
                    restored.append(m)
                    present.add(m.ts)
        if restored:
            self._messages = sorted([*self._messages, *restored], key=lambda m: m.ts or 0)

    async def drop_condensed(self) -> int:
        """Remove messages hidden by an active summary from the working set.

        A message is only dropped once a journal entry holds a copy of it, so
        a condense whose journal write failed keeps its messages in the log.
        Truncated messages are never dropped.

        Returns:
            Number of messages dropped.
        """
        if self.task_dir is None:
            logger.warning("Not dropping condensed messages for task %s: journaling is disabled", self.task_id)
            return 0
        journal = await read_journal(self.task_dir)
        journaled = {m.ts for entry in (journal.entries if journal else []) for m in entry.removed}
        active = get_active_condense_ids(self._messages)
        kept = [
            m
            for m in self._messages
            if not (m.condense_parent and m.condense_parent in active and m.ts in journaled)
        ]
        dropped = len(self._messages) - len(kept)
        if dropped < sum(1 for m in self._messages if m.condense_parent in active):
            logger.warning(
                "Keeping condensed messages without a journal copy for task %s", self.task_id
            )
        self._messages = kept
        return dropped


def _rehide_restored(
    merged: list[ApiMessage], previous: list[ApiMessage], journal: CondenseJournal
) -> list[ApiMessage]:
    """Tag newly restored messages with the summary that currently stands in for them."""
    previous_ts = {m.ts for m in previous}
    summaries_by_ts = {m.ts: m.condense_id for m in merged if m.is_summary and m.condense_id}

    # Journal entry that removed each message ts, newest wins
    removed_by: dict[Any, Any] = {}
    for entry in journal.entries:
        for m in entry.removed:
            removed_by[m.ts] = entry.boundary.summary_ts

    def covering_summary(ts: int | float | None) -> str | None:
        seen: set[Any] = set()
        summary_ts = removed_by.get(ts)
        while summary_ts is not None and summary_ts not in seen:
            if summary_ts in summaries_by_ts:
                return summaries_by_ts[summary_ts]
            seen.add(summary_ts)
            summary_ts = removed_by.get(summary_ts)
        return None

    rehidden = []
    for m in merged:
        if m.ts not in previous_ts and m.condense_parent is None:
            condense_id = covering_summary(m.ts)
            if condense_id:
                m = m.model_copy(update={"condense_parent": condense_id})
        rehidden.append(m)
    return rehidden
