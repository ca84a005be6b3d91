"""Environment-backed defaults for context management."""

import logging
import os

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int | None) -> int | None:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r", name, value)
        return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r", name, value)
        return default


# Global configuration
_config = {
    "auto_condense_context": _env_bool("CONTEXTKEEP_AUTO_CONDENSE", True),
    "auto_condense_context_percent": _env_int("CONTEXTKEEP_AUTO_CONDENSE_PERCENT", 100),
    "minimum_condense_tokens": _env_int("CONTEXTKEEP_MINIMUM_CONDENSE_TOKENS", None),
    "truncation_fraction": _env_float("CONTEXTKEEP_TRUNCATION_FRACTION", 0.5),
    "tasks_dir": os.getenv("CONTEXTKEEP_TASKS_DIR", "./tasks"),
}


def get_config() -> dict:
    """Return a copy of the environment-derived defaults."""
    return dict(_config)


def get_task_dir(task_id: str, tasks_dir: str | None = None) -> str:
    """Directory holding one task's message log and journal."""
    return os.path.join(tasks_dir or _config["tasks_dir"], task_id)
