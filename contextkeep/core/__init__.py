"""Core module - the per-task message log."""

from .task import HISTORY_FILENAME, TaskHistory, get_history_path

__all__ = ["HISTORY_FILENAME", "TaskHistory", "get_history_path"]
