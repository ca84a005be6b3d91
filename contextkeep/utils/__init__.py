"""Utility functions for contextkeep."""

from .config import get_config, get_task_dir
from .storage import (
    ContextKeepError,
    StorageError,
    read_json,
    read_json_async,
    safe_write_json,
    safe_write_json_async,
)

__all__ = [
    "ContextKeepError",
    "StorageError",
    "get_config",
    "get_task_dir",
    "read_json",
    "read_json_async",
    "safe_write_json",
    "safe_write_json_async",
]
