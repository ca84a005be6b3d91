from .telemetry import capture_context_condensed, capture_sliding_window_truncation

__all__ = [
    "capture_context_condensed",
    "capture_sliding_window_truncation",
]
