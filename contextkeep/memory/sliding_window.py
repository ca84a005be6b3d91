"""Sliding-window truncation and the per-request context-management flow.

Before each model call the condensing policy is consulted first; when it
declines or fails and the hard token budget is exceeded, the oldest visible
messages are hidden behind a truncation marker. Truncation is never journaled.
"""

from __future__ import annotations

import logging
import math
import os
from typing import Any

from ..features.telemetry import capture_sliding_window_truncation
from ..types.types import ApiMessage
from .condense import summarize_conversation
from .markers import (
    build_truncation_marker,
    clean_orphaned_parents,
    generate_truncation_id,
    get_effective_history,
    timestamp_between,
)
from .types import TruncateResponse

logger = logging.getLogger(__name__)

TOKEN_BUFFER_PERCENTAGE = 0.1
DEFAULT_TRUNCATION_FRACTION = 0.5
FORCED_TRUNCATION_FRACTION = 0.75
FORCED_CONTEXT_REDUCTION_PERCENT = 75
MIN_CONDENSE_THRESHOLD = 5
MAX_CONDENSE_THRESHOLD = 100
DEFAULT_MAX_TOKENS_RESERVED = 8192


async def estimate_token_count(content: Any, api_handler: Any) -> int:
    """Count tokens for a list of content blocks with the handle's counter."""
    if not content:
        return 0
    return await api_handler.count_tokens(content)


def truncate_conversation(
    messages: list[ApiMessage], frac_to_remove: float, task_id: str
) -> tuple[list[ApiMessage], str | None]:
    """Hide a fraction of the oldest visible messages behind a marker.

    The first visible message is always kept and an even number of messages
    is removed so user/assistant pairing survives. Hidden messages stay in the
    stored log, tagged with ``truncation_parent``.

    Returns:
        The new stored log and the truncation id, or the unchanged log and
        None when there is nothing to remove.
    """
    if not 0 <= frac_to_remove <= 1:
        raise ValueError(f"frac_to_remove must be within [0, 1], got {frac_to_remove}")

    capture_sliding_window_truncation(task_id)

    stored = clean_orphaned_parents(messages)
    effective = get_effective_history(stored)

    raw = math.floor((len(effective) - 1) * frac_to_remove) if effective else 0
    to_remove = raw - (raw % 2)
    if to_remove <= 0:
        return list(messages), None

    removed = effective[1 : 1 + to_remove]
    removed_ids = {id(m) for m in removed}
    truncation_id = generate_truncation_id()

    if 1 + to_remove < len(effective):
        next_visible = effective[1 + to_remove]
        insert_at = next(i for i, m in enumerate(stored) if m is next_visible)
        next_ts = next_visible.ts
    else:
        insert_at = len(stored)
        next_ts = None
    previous_ts = stored[insert_at - 1].ts if insert_at > 0 else None

    marker = build_truncation_marker(
        truncation_id, len(removed), timestamp_between(previous_ts, next_ts)
    )

    truncated = [
        m.model_copy(update={"truncation_parent": truncation_id}) if id(m) in removed_ids else m
        for m in stored
    ]
    truncated.insert(insert_at, marker)

    logger.info(
        "Sliding window hid %d of %d visible messages for task %s",
        len(removed),
        len(effective),
        task_id,
    )
    return truncated, truncation_id


def _resolve_threshold(
    auto_condense_context_percent: int,
    profile_thresholds: dict[str, int] | None,
    current_profile_id: str,
) -> int:
    profile_threshold = (profile_thresholds or {}).get(current_profile_id)
    if profile_threshold is None or profile_threshold == -1:
        return auto_condense_context_percent
    if MIN_CONDENSE_THRESHOLD <= profile_threshold <= MAX_CONDENSE_THRESHOLD:
        return profile_threshold
    logger.warning(
        "Invalid profile threshold %s for profile %s. Using global default of %s%%",
        profile_threshold,
        current_profile_id,
        auto_condense_context_percent,
    )
    return auto_condense_context_percent


async def truncate_conversation_if_needed(
    messages: list[ApiMessage],
    total_tokens: int,
    context_window: int,
    max_tokens: int | None,
    api_handler: Any,
    auto_condense_context: bool,
    auto_condense_context_percent: int,
    system_prompt: str,
    task_id: str,
    custom_condensing_prompt: str | None = None,
    condensing_api_handler: Any = None,
    profile_thresholds: dict[str, int] | None = None,
    current_profile_id: str = "default",
    task_dir: str | os.PathLike | None = None,
    minimum_condense_tokens: int | None = None,
    truncation_fraction: float = DEFAULT_TRUNCATION_FRACTION,
) -> TruncateResponse:
    """Decide how to fit the conversation into the context window.

    ``total_tokens`` is the size of the last request; the pending last
    message is counted on top of it.
    """
    last_message_tokens = 0
    if messages:
        content = messages[-1].content
        blocks = content if isinstance(content, list) else [{"type": "text", "text": content}]
        if content:
            last_message_tokens = await estimate_token_count(blocks, api_handler)
    prev_context_tokens = total_tokens + last_message_tokens

    reserved_tokens = max_tokens or DEFAULT_MAX_TOKENS_RESERVED
    allowed_tokens = context_window * (1 - TOKEN_BUFFER_PERCENTAGE) - reserved_tokens

    threshold = _resolve_threshold(
        auto_condense_context_percent, profile_thresholds, current_profile_id
    )

    error = None
    cost = 0.0
    if auto_condense_context:
        context_percent = (100 * prev_context_tokens) / context_window
        if context_percent >= threshold or prev_context_tokens > allowed_tokens:
            result = await summarize_conversation(
                messages,
                api_handler,
                system_prompt,
                task_id,
                prev_context_tokens,
                is_automatic=True,
                custom_condensing_prompt=custom_condensing_prompt,
                condensing_api_handler=condensing_api_handler,
                minimum_condense_tokens=minimum_condense_tokens,
                task_dir=task_dir,
            )
            if not result.error:
                return TruncateResponse(
                    messages=result.messages,
                    summary=result.summary,
                    cost=result.cost,
                    prev_context_tokens=prev_context_tokens,
                    new_context_tokens=result.new_context_tokens,
                    condense_id=result.condense_id,
                )
            error = result.error
            cost = result.cost

    if prev_context_tokens > allowed_tokens:
        truncated, truncation_id = truncate_conversation(messages, truncation_fraction, task_id)
        return TruncateResponse(
            messages=truncated,
            cost=cost,
            prev_context_tokens=prev_context_tokens,
            error=error,
            truncation_id=truncation_id,
        )

    return TruncateResponse(
        messages=list(messages),
        cost=cost,
        prev_context_tokens=prev_context_tokens,
        error=error,
    )


async def reduce_context_after_overflow(
    messages: list[ApiMessage],
    total_tokens: int,
    context_window: int,
    max_tokens: int | None,
    api_handler: Any,
    auto_condense_context: bool,
    system_prompt: str,
    task_id: str,
    custom_condensing_prompt: str | None = None,
    condensing_api_handler: Any = None,
    task_dir: str | os.PathLike | None = None,
    minimum_condense_tokens: int | None = None,
) -> TruncateResponse:
    """React to a provider rejecting the request as too large.

    Condensing (when enabled) runs with the threshold forced to
    ``FORCED_CONTEXT_REDUCTION_PERCENT``; otherwise, or when it fails,
    ``FORCED_TRUNCATION_FRACTION`` of the visible history is truncated
    regardless of the configured fraction or the token estimate.
    """
    logger.warning(
        "Context window exceeded for task %s, forcing context reduction to %s%%",
        task_id,
        FORCED_CONTEXT_REDUCTION_PERCENT,
    )
    result = await truncate_conversation_if_needed(
        messages,
        total_tokens=total_tokens,
        context_window=context_window,
        max_tokens=max_tokens,
        api_handler=api_handler,
        auto_condense_context=auto_condense_context,
        auto_condense_context_percent=FORCED_CONTEXT_REDUCTION_PERCENT,
        system_prompt=system_prompt,
        task_id=task_id,
        custom_condensing_prompt=custom_condensing_prompt,
        condensing_api_handler=condensing_api_handler,
        task_dir=task_dir,
        minimum_condense_tokens=minimum_condense_tokens,
        truncation_fraction=FORCED_TRUNCATION_FRACTION,
    )
    if result.condense_id or result.truncation_id:
        return result

    # The estimate fit but the provider still rejected the request
    truncated, truncation_id = truncate_conversation(
        messages, FORCED_TRUNCATION_FRACTION, task_id
    )
    return result.model_copy(update={"messages": truncated, "truncation_id": truncation_id})
