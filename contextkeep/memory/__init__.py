"""Memory module - condensing, truncation and the condense journal."""

from .condense import (
    EXPANSION_PROMPT,
    N_MESSAGES_TO_KEEP,
    SUMMARY_PROMPT,
    ExpansionPhase,
    ExpansionState,
    SummaryAttempt,
    advance_expansion,
    summarize_conversation,
)
from .journal import (
    JournalWriteError,
    append_journal_entry,
    create_journal_entry,
    find_removed_messages,
    read_journal,
    restore_messages_for_timestamp,
    write_journal,
)
from .markers import (
    clean_orphaned_parents,
    generate_condense_id,
    generate_truncation_id,
    get_effective_history,
    get_messages_since_last_summary,
    remove_summary,
    remove_truncation_marker,
    rewind_to_timestamp,
)
from .sliding_window import (
    FORCED_CONTEXT_REDUCTION_PERCENT,
    reduce_context_after_overflow,
    truncate_conversation,
    truncate_conversation_if_needed,
)
from .tokens import estimate_message_tokens, estimate_messages_tokens, estimate_tokens
from .types import (
    CondenseConfig,
    CondenseJournal,
    CondenseJournalEntry,
    JournalBoundary,
    NormalizedCondenseConfig,
    SummarizeResponse,
    TruncateResponse,
    normalize_condense_config,
)

__all__ = [
    "CondenseConfig",
    "CondenseJournal",
    "CondenseJournalEntry",
    "JournalBoundary",
    "NormalizedCondenseConfig",
    "SummarizeResponse",
    "TruncateResponse",
    "EXPANSION_PROMPT",
    "FORCED_CONTEXT_REDUCTION_PERCENT",
    "N_MESSAGES_TO_KEEP",
    "SUMMARY_PROMPT",
    "ExpansionPhase",
    "ExpansionState",
    "JournalWriteError",
    "SummaryAttempt",
    "advance_expansion",
    "append_journal_entry",
    "clean_orphaned_parents",
    "create_journal_entry",
    "estimate_message_tokens",
    "estimate_messages_tokens",
    "estimate_tokens",
    "find_removed_messages",
    "generate_condense_id",
    "generate_truncation_id",
    "get_effective_history",
    "get_messages_since_last_summary",
    "normalize_condense_config",
    "read_journal",
    "reduce_context_after_overflow",
    "remove_summary",
    "remove_truncation_marker",
    "restore_messages_for_timestamp",
    "rewind_to_timestamp",
    "summarize_conversation",
    "truncate_conversation",
    "truncate_conversation_if_needed",
    "write_journal",
]
