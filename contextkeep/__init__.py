__version__ = "0.1.0"

from .core.task import TaskHistory
from .llm import ModelHandle, can_create_messages, get_provider, register_provider
from .memory import (
    CondenseConfig,
    CondenseJournal,
    CondenseJournalEntry,
    JournalWriteError,
    SummarizeResponse,
    TruncateResponse,
    get_effective_history,
    read_journal,
    reduce_context_after_overflow,
    restore_messages_for_timestamp,
    summarize_conversation,
    truncate_conversation,
    truncate_conversation_if_needed,
)
from .types import ApiMessage, ApiStreamTextChunk, ApiStreamUsageChunk, ModelInfo
from .utils import ContextKeepError, StorageError

__all__ = [
    "__version__",
    # Core
    "TaskHistory",
    # Types
    "ApiMessage",
    "ApiStreamTextChunk",
    "ApiStreamUsageChunk",
    "ModelInfo",
    # Models
    "ModelHandle",
    "can_create_messages",
    "get_provider",
    "register_provider",
    # Memory
    "CondenseConfig",
    "CondenseJournal",
    "CondenseJournalEntry",
    "SummarizeResponse",
    "TruncateResponse",
    "get_effective_history",
    "read_journal",
    "reduce_context_after_overflow",
    "restore_messages_for_timestamp",
    "summarize_conversation",
    "truncate_conversation",
    "truncate_conversation_if_needed",
    # Errors
    "ContextKeepError",
    "StorageError",
    "JournalWriteError",
]
