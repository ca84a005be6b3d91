"""Core context condensing logic.

Replaces the older part of the effective history with one LLM-generated
summary message, keeping the first message and the last N messages verbatim.
Condensed messages stay in the stored log, tagged with the summary's
``condense_id``, and are copied into the condense journal so they can be
restored later.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any

from ..features.telemetry import capture_context_condensed
from ..llm.providers.base import can_create_messages
from ..types.types import ApiMessage
from .journal import JournalWriteError, append_journal_entry, create_journal_entry
from .markers import (
    build_summary_message,
    clean_orphaned_parents,
    generate_condense_id,
    get_effective_history,
    get_messages_since_last_summary,
    timestamp_between,
)
from .types import SummarizeResponse

logger = logging.getLogger(__name__)

# -- Constants ----------------------------------------------------------------

N_MESSAGES_TO_KEEP = 3
MAX_EXPANSION_ITERATIONS = 5

SUMMARY_PROMPT = """\
Your task is to create a detailed summary of the conversation so far, paying close attention to the user's explicit requests and your previous actions.
This summary should be thorough in capturing technical details, code patterns, and architectural decisions that would be essential for continuing with the conversation and supporting any continuing tasks.

Your summary should be structured as follows:
Context: The context to continue the conversation with. If applicable based on the current task, this should include:
  1. Previous Conversation: High level details about what was discussed throughout the entire conversation with the user. This should be written to allow someone to be able to follow the general overarching conversation flow.
  2. Current Work: Describe in detail what was being worked on prior to this request to summarize the conversation. Pay special attention to the more recent messages in the conversation.
  3. Key Technical Concepts: List all important technical concepts, technologies, coding conventions, and frameworks discussed, which might be relevant for continuing with this work.
  4. Relevant Files and Code: If applicable, enumerate specific files and code sections examined, modified, or created for the task continuation. Pay special attention to the most recent messages and changes.
  5. Problem Solving: Document problems solved thus far and any ongoing troubleshooting efforts.
  6. Pending Tasks and Next Steps: Outline all pending tasks that you have explicitly been asked to work on, as well as list the next steps you will take for all outstanding work, if applicable. Include code snippets where they add clarity. For any next steps, include direct quotes from the most recent conversation showing exactly what task you were working on and where you left off. This should be verbatim to ensure there's no information loss in context between tasks.

Output only the summary of the conversation so far, without any additional commentary or explanation.
"""

SUMMARY_REQUEST = "Summarize the conversation so far, as described in the prompt instructions."

EXPANSION_PROMPT = (
    "The current summary has {current} tokens, but we need at least {target} tokens. "
    "Expand the summary with more detail from the conversation: include file names, "
    "code snippets, decisions and the exact state of pending work. "
    "Output only the expanded summary."
)

ERROR_NOT_ENOUGH_MESSAGES = "Not enough messages to condense the context."
ERROR_CONDENSED_RECENTLY = "The context was condensed recently; skipping condensing."
ERROR_HANDLER_INVALID = "No model handle capable of generating a summary is available."
ERROR_EMPTY_SUMMARY = "Condensing failed: the model returned an empty summary."
ERROR_CONTEXT_GREW = "Condensing did not reduce the context size; keeping the original messages."
ERROR_CONDENSE_FAILED = "Condensing failed: {error}"


# -- Expansion state machine --------------------------------------------------


class ExpansionPhase(str, Enum):
    INITIAL = "initial"
    EXPANDING = "expanding"
    ACCEPTED = "accepted"
    REVERTED = "reverted"
    FAILED = "failed"


@dataclass(frozen=True)
class SummaryAttempt:
    """One model call's contribution."""

    summary: str
    cost: float = 0.0
    output_tokens: int = 0
    new_context_tokens: int = 0


@dataclass(frozen=True)
class ExpansionState:
    """Where the summarize/expand loop stands.

    ``best`` is the summary that would be committed if the loop stopped now.
    ``cost`` covers the attempts that led to ``best``; ``spent`` covers every
    attempt, including discarded ones.
    """

    phase: ExpansionPhase = ExpansionPhase.INITIAL
    iteration: int = 0
    best: SummaryAttempt | None = None
    cost: float = 0.0
    spent: float = 0.0
    error: str | None = None

    @property
    def done(self) -> bool:
        return self.phase in (
            ExpansionPhase.ACCEPTED,
            ExpansionPhase.REVERTED,
            ExpansionPhase.FAILED,
        )


def advance_expansion(
    state: ExpansionState,
    attempt: SummaryAttempt,
    *,
    prev_context_tokens: int,
    minimum_tokens: int | None = None,
    max_iterations: int = MAX_EXPANSION_ITERATIONS,
) -> ExpansionState:
    """Fold one attempt into the loop state. Pure; never calls the model.

    - The first attempt fails the loop when empty, otherwise becomes ``best``.
    - An expansion attempt that is empty, or that would not save any tokens,
      is discarded and the loop stops on the previous best summary.
    - While ``best`` is below ``minimum_tokens`` and iterations remain, the
      loop asks for another expansion.
    """
    spent = state.spent + attempt.cost

    if state.phase is ExpansionPhase.INITIAL:
        if not attempt.summary:
            return replace(
                state,
                phase=ExpansionPhase.FAILED,
                cost=state.cost + attempt.cost,
                spent=spent,
                error=ERROR_EMPTY_SUMMARY,
            )
        best, cost = attempt, attempt.cost
    elif state.phase is ExpansionPhase.EXPANDING:
        if not attempt.summary or attempt.new_context_tokens >= prev_context_tokens:
            return replace(state, phase=ExpansionPhase.REVERTED, spent=spent)
        best, cost = attempt, state.cost + attempt.cost
    else:
        raise ValueError(f"Cannot advance a finished expansion ({state.phase.value})")

    below_minimum = (
        minimum_tokens is not None
        and best.new_context_tokens < minimum_tokens
        and best.new_context_tokens < prev_context_tokens
    )
    if below_minimum and state.iteration < max_iterations:
        return ExpansionState(
            phase=ExpansionPhase.EXPANDING,
            iteration=state.iteration + 1,
            best=best,
            cost=cost,
            spent=spent,
        )
    return ExpansionState(
        phase=ExpansionPhase.ACCEPTED,
        iteration=state.iteration,
        best=best,
        cost=cost,
        spent=spent,
    )


# -- Helpers ------------------------------------------------------------------


def _chunk_field(chunk: Any, name: str) -> Any:
    if isinstance(chunk, dict):
        return chunk.get(name)
    return getattr(chunk, name, None)


def _content_to_blocks(content: Any) -> list[Any]:
    if isinstance(content, list):
        return list(content)
    if isinstance(content, str):
        return [{"type": "text", "text": content}]
    try:
        return [{"type": "text", "text": json.dumps(content)}]
    except (TypeError, ValueError):
        return [{"type": "text", "text": str(content)}]


async def _stream_summary(
    handler: Any, system_prompt: str, messages: list[dict[str, Any]]
) -> tuple[str, int, float]:
    """Consume one streamed reply. Returns (summary, output_tokens, cost)."""
    summary = ""
    output_tokens: int | None = None
    cost = 0.0
    async for chunk in handler.create_message(system_prompt, messages):
        chunk_type = _chunk_field(chunk, "type")
        if chunk_type == "text":
            summary += _chunk_field(chunk, "text") or ""
        elif chunk_type == "usage":
            if output_tokens is None:
                output_tokens = _chunk_field(chunk, "output_tokens") or 0
            cost += _chunk_field(chunk, "total_cost") or 0.0
    return summary.strip(), output_tokens or 0, cost


async def _count_context_tokens(
    token_handler: Any,
    system_prompt: str,
    summary: str,
    output_tokens: int,
    keep_messages: list[ApiMessage],
) -> int:
    """Size of the context that would follow a commit of ``summary``."""
    blocks: list[Any] = []
    if system_prompt:
        blocks.append({"type": "text", "text": system_prompt})
    if not output_tokens:
        blocks.append({"type": "text", "text": summary})
    for message in keep_messages:
        blocks.extend(_content_to_blocks(message.content))
    return output_tokens + await token_handler.count_tokens(blocks)


def _failure(
    messages: list[ApiMessage], error: str, cost: float = 0.0
) -> SummarizeResponse:
    return SummarizeResponse(messages=messages, summary="", cost=cost, error=error)


# -- Main function ------------------------------------------------------------


async def summarize_conversation(
    messages: list[ApiMessage],
    api_handler: Any,
    system_prompt: str,
    task_id: str,
    prev_context_tokens: int,
    is_automatic: bool = False,
    custom_condensing_prompt: str | None = None,
    condensing_api_handler: Any = None,
    minimum_condense_tokens: int | None = None,
    *,
    task_dir: str | os.PathLike | None = None,
) -> SummarizeResponse:
    """Condense the conversation into a summary message.

    1. Check eligibility: enough history, new messages since the last
       summary, and a handle that can generate
    2. Ask the model to summarize everything since the last summary
    3. Expand the summary while it is below ``minimum_condense_tokens``,
       reverting any expansion that would not save tokens
    4. Fail unless the new context is smaller than ``prev_context_tokens``
    5. Splice the summary in before the kept tail, tag condensed messages with
       its ``condense_id`` and journal them when ``task_dir`` is given

    Every failure returns the original ``messages`` with ``error`` set; this
    function only raises for a failed journal write (``JournalWriteError``)
    or cancellation.
    """
    used_custom_prompt = bool(custom_condensing_prompt and custom_condensing_prompt.strip())
    capture_context_condensed(
        task_id,
        is_automatic,
        used_custom_prompt=used_custom_prompt,
        used_custom_api_handler=condensing_api_handler is not None,
    )

    stored = clean_orphaned_parents(messages)
    effective = get_effective_history(stored)
    keep_messages = effective[-N_MESSAGES_TO_KEEP:]
    messages_to_summarize = get_messages_since_last_summary(effective[:-N_MESSAGES_TO_KEEP])

    if len(messages_to_summarize) <= 1:
        return _failure(messages, ERROR_NOT_ENOUGH_MESSAGES)

    # Do not condense again right after a condense
    if any(m.is_summary for m in keep_messages) or (
        len(effective) > N_MESSAGES_TO_KEEP and effective[-N_MESSAGES_TO_KEEP - 1].is_summary
    ):
        return _failure(messages, ERROR_CONDENSED_RECENTLY)

    handler = api_handler
    if condensing_api_handler is not None:
        if can_create_messages(condensing_api_handler):
            handler = condensing_api_handler
        else:
            logger.warning(
                "Chosen API handler for condensing does not support message creation "
                "or is invalid, falling back to main API handler."
            )
    if not can_create_messages(handler):
        logger.error(
            "Main API handler is also invalid for condensing. Cannot proceed. (task %s)", task_id
        )
        return _failure(messages, ERROR_HANDLER_INVALID)

    token_handler = api_handler if callable(getattr(api_handler, "count_tokens", None)) else handler

    prompt = custom_condensing_prompt if used_custom_prompt else SUMMARY_PROMPT
    request_messages = [m.to_api_dict() for m in messages_to_summarize]
    request_messages.append({"role": "user", "content": SUMMARY_REQUEST})

    state = ExpansionState()
    try:
        while not state.done:
            if state.phase is ExpansionPhase.INITIAL:
                attempt_messages = request_messages
            else:
                attempt_messages = [
                    *request_messages,
                    {"role": "assistant", "content": state.best.summary},
                    {
                        "role": "user",
                        "content": EXPANSION_PROMPT.format(
                            current=state.best.new_context_tokens,
                            target=minimum_condense_tokens,
                        ),
                    },
                ]

            summary, output_tokens, cost = await _stream_summary(
                handler, prompt, attempt_messages
            )
            new_context_tokens = 0
            if summary:
                new_context_tokens = await _count_context_tokens(
                    token_handler, system_prompt, summary, output_tokens, keep_messages
                )

            state = advance_expansion(
                state,
                SummaryAttempt(
                    summary=summary,
                    cost=cost,
                    output_tokens=output_tokens,
                    new_context_tokens=new_context_tokens,
                ),
                prev_context_tokens=prev_context_tokens,
                minimum_tokens=minimum_condense_tokens,
            )
            if state.phase is ExpansionPhase.REVERTED:
                logger.info(
                    "Discarded summary expansion %d for task %s; keeping previous summary",
                    state.iteration,
                    task_id,
                )
    except Exception as e:
        logger.warning("Error condensing context for task %s: %s", task_id, e, exc_info=True)
        return _failure(messages, ERROR_CONDENSE_FAILED.format(error=e), cost=state.spent)

    if state.phase is ExpansionPhase.FAILED:
        return _failure(messages, state.error or ERROR_EMPTY_SUMMARY, cost=state.spent)

    best = state.best
    if best.new_context_tokens >= prev_context_tokens:
        return _failure(messages, ERROR_CONTEXT_GREW, cost=state.spent)

    # Commit: summary goes right before the kept tail
    condense_id = generate_condense_id()
    first_kept = keep_messages[0]
    kept_index = next(i for i, m in enumerate(stored) if m is first_kept)
    previous_ts = stored[kept_index - 1].ts if kept_index > 0 else None
    summary_message = build_summary_message(
        best.summary, condense_id, timestamp_between(previous_ts, first_kept.ts)
    )

    removed = effective[1:-N_MESSAGES_TO_KEEP]
    removed_ids = {id(m) for m in removed}
    new_messages = [
        m.model_copy(update={"condense_parent": condense_id}) if id(m) in removed_ids else m
        for m in stored[:kept_index]
    ]
    new_messages.append(summary_message)
    new_messages.extend(stored[kept_index:])

    response = SummarizeResponse(
        messages=new_messages,
        summary=best.summary,
        cost=state.cost,
        new_context_tokens=best.new_context_tokens,
        condense_id=condense_id,
    )

    logger.info(
        "Condensed %d messages for task %s (%d -> %d tokens)",
        len(removed),
        task_id,
        prev_context_tokens,
        best.new_context_tokens,
    )

    if task_dir is not None:
        entry = create_journal_entry(
            removed,
            first_kept_message=first_kept,
            last_kept_message=keep_messages[-1],
            summary_message=summary_message,
            type="auto" if is_automatic else "manual",
        )
        try:
            await append_journal_entry(task_dir, entry)
        except JournalWriteError as e:
            e.response = response
            raise

    return response
