"""Types for context condensing, truncation and the condense journal.

Two eviction paths:
- Condensing: older messages are replaced by an LLM summary and journaled
- Sliding-window truncation: older messages are hidden behind a marker, no journal
"""

from __future__ import annotations

import time
from typing import Literal

from pydantic import BaseModel, Field

from ..types.types import ApiMessage
from ..utils.config import _config


class CondenseConfig(BaseModel):
    """User-facing context management configuration."""

    auto_condense_context: bool | None = None
    auto_condense_context_percent: int | None = None
    minimum_condense_tokens: int | None = None
    truncation_fraction: float | None = None
    custom_condensing_prompt: str | None = None
    profile_thresholds: dict[str, int] | None = None
    current_profile_id: str | None = None


class NormalizedCondenseConfig(BaseModel):
    """Internal - all fields resolved to concrete values."""

    auto_condense_context: bool
    auto_condense_context_percent: int
    minimum_condense_tokens: int | None
    truncation_fraction: float
    custom_condensing_prompt: str | None
    profile_thresholds: dict[str, int]
    current_profile_id: str


class SummarizeResponse(BaseModel):
    """Result from summarize_conversation."""

    messages: list[ApiMessage]
    summary: str = ""
    cost: float = 0.0
    new_context_tokens: int | None = None
    error: str | None = None
    condense_id: str | None = None


class TruncateResponse(BaseModel):
    """Result from truncate_conversation_if_needed."""

    messages: list[ApiMessage]
    summary: str = ""
    cost: float = 0.0
    prev_context_tokens: int
    new_context_tokens: int | None = None
    error: str | None = None
    condense_id: str | None = None
    truncation_id: str | None = None


class JournalBoundary(BaseModel):
    """Timestamps around a condense operation, for humans and debugging."""

    first_kept_ts: int | float | None = None
    last_kept_ts: int | float | None = None
    summary_ts: int | float | None = None


class CondenseJournalEntry(BaseModel):
    """One durable record of a condense operation."""

    removed: list[ApiMessage]
    boundary: JournalBoundary = Field(default_factory=JournalBoundary)
    created_at: int = Field(default_factory=lambda: int(time.time() * 1000))
    type: Literal["manual", "auto"] = "manual"


class CondenseJournal(BaseModel):
    """The complete journal for one task. Entries are only ever appended."""

    version: int = 1
    entries: list[CondenseJournalEntry] = Field(default_factory=list)

    def with_entry(self, entry: CondenseJournalEntry) -> CondenseJournal:
        """Return a new journal with ``entry`` appended."""
        return CondenseJournal(version=self.version, entries=[*self.entries, entry])


def normalize_condense_config(config: CondenseConfig | None = None) -> NormalizedCondenseConfig:
    """Resolve every unset field from the environment-derived defaults."""
    config = config or CondenseConfig()
    return NormalizedCondenseConfig(
        auto_condense_context=(
            config.auto_condense_context
            if config.auto_condense_context is not None
            else _config["auto_condense_context"]
        ),
        auto_condense_context_percent=(
            config.auto_condense_context_percent
            if config.auto_condense_context_percent is not None
            else _config["auto_condense_context_percent"]
        ),
        minimum_condense_tokens=(
            config.minimum_condense_tokens
            if config.minimum_condense_tokens is not None
            else _config["minimum_condense_tokens"]
        ),
        truncation_fraction=(
            config.truncation_fraction
            if config.truncation_fraction is not None
            else _config["truncation_fraction"]
        ),
        custom_condensing_prompt=config.custom_condensing_prompt,
        profile_thresholds=config.profile_thresholds or {},
        current_profile_id=config.current_profile_id or "default",
    )
