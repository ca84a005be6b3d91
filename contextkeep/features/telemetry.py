"""OpenTelemetry events for context condensing and truncation.

Emission is fire-and-forget: nothing here may interrupt the conversation, so
failures are logged and dropped.
"""

import logging
import os

from opentelemetry import trace

logger = logging.getLogger(__name__)

# Global state
_tracer = None


def get_tracer():
    """Get or create the tracer used for context-management events."""
    global _tracer
    if _tracer is None:
        if os.getenv("CONTEXTKEEP_OTEL_ENABLED", "true").lower() != "true":
            _tracer = trace.NoOpTracer()
        else:
            service_name = os.getenv("CONTEXTKEEP_OTEL_SERVICE_NAME", "contextkeep")
            _tracer = trace.get_tracer(service_name)
    return _tracer


def _emit(span_name: str, attributes: dict) -> None:
    try:
        with get_tracer().start_as_current_span(span_name) as span:
            span.set_attributes(attributes)
    except Exception as e:
        logger.debug("Dropping telemetry event %s: %s", span_name, e)


def capture_context_condensed(
    task_id: str,
    is_automatic: bool,
    used_custom_prompt: bool = False,
    used_custom_api_handler: bool = False,
) -> None:
    """Record one condensation attempt."""
    _emit(
        "contextkeep.context_condensed",
        {
            "contextkeep.task_id": task_id,
            "contextkeep.condense.is_automatic": is_automatic,
            "contextkeep.condense.used_custom_prompt": used_custom_prompt,
            "contextkeep.condense.used_custom_api_handler": used_custom_api_handler,
        },
    )


def capture_sliding_window_truncation(task_id: str) -> None:
    """Record one sliding-window truncation."""
    _emit(
        "contextkeep.sliding_window_truncation",
        {"contextkeep.task_id": task_id},
    )
