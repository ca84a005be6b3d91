"""Whole-value JSON blob storage.

Every write serializes the full document to a temp file in the target
directory and renames it over the destination, so readers never observe a
partially written file.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class ContextKeepError(Exception):
    """Base class for errors raised by contextkeep."""


class StorageError(ContextKeepError):
    """Raised when a blob cannot be written durably."""

    def __init__(self, path: str | os.PathLike, reason: str | None = None):
        self.path = str(path)
        self.reason = reason
        message = f"Failed to write {self.path}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


def safe_write_json(path: str | os.PathLike, data: Any) -> None:
    """Atomically overwrite ``path`` with the JSON form of ``data``.

    Raises:
        StorageError: If the document cannot be serialized or written.
    """
    p = Path(path)
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json")

    tmp_path: Path | None = None
    try:
        payload = json.dumps(data, indent=2, ensure_ascii=False)
        p.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_str = tempfile.mkstemp(dir=p.parent, prefix=f".{p.stem}_", suffix=".tmp")
        tmp_path = Path(tmp_str)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, p)
        tmp_path = None
    except (OSError, TypeError, ValueError) as e:
        raise StorageError(p, str(e)) from e
    finally:
        if tmp_path is not None and tmp_path.exists():
            try:
                tmp_path.unlink()
            except OSError:
                logger.debug("Could not remove temp file %s", tmp_path)


def read_json(path: str | os.PathLike) -> Any | None:
    """Read a JSON document. Returns None when the file does not exist.

    Other I/O and decoding errors propagate to the caller.
    """
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        return None


async def safe_write_json_async(path: str | os.PathLike, data: Any) -> None:
    """Run :func:`safe_write_json` off the event loop."""
    await asyncio.to_thread(safe_write_json, path, data)


async def read_json_async(path: str | os.PathLike) -> Any | None:
    """Run :func:`read_json` off the event loop."""
    return await asyncio.to_thread(read_json, path)
