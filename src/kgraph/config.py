"""Runtime tunables for kgraph, read from the environment.

    KGRAPH_BUSY_TIMEOUT_MS      SQLite busy timeout (default 5000)
    KGRAPH_CHECKPOINT_TRIGGERS  comma-separated shell substrings that mark a checkpoint
    KGRAPH_DOC_FILES            comma-separated filename suffixes split into doc sections
    KGRAPH_CAPTURE_ON_READ      1 to capture doc sections on first read as well
    KGRAPH_LOG_LEVEL            logging level name (default INFO)
"""

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

DEFAULT_CHECKPOINT_TRIGGERS = ("git log", "git diff", "git status", "git show")
DEFAULT_DOC_FILES = ("README.md", "ARCHITECTURE.md")
DEFAULT_BUSY_TIMEOUT_MS = 5000

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass(frozen=True)
class KGraphConfig:
    """What to capture and how long to wait on a locked store."""

    busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS
    checkpoint_triggers: tuple[str, ...] = DEFAULT_CHECKPOINT_TRIGGERS
    doc_files: tuple[str, ...] = DEFAULT_DOC_FILES
    capture_docs_on_read: bool = False
    log_level: str = "INFO"


def _split_list(value: Optional[str], default: tuple[str, ...]) -> tuple[str, ...]:
    if value is None:
        return default
    items = tuple(part.strip() for part in value.split(",") if part.strip())
    return items or default


def _parse_bool(value: Optional[str], default: bool) -> bool:
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_config(env: Optional[Mapping[str, str]] = None) -> KGraphConfig:
    """Build a KGraphConfig from environment variables.

    Raises:
        ValueError: If KGRAPH_BUSY_TIMEOUT_MS is not a non-negative integer.
    """
    env = os.environ if env is None else env

    raw_timeout = env.get("KGRAPH_BUSY_TIMEOUT_MS")
    busy_timeout = DEFAULT_BUSY_TIMEOUT_MS
    if raw_timeout:
        try:
            busy_timeout = int(raw_timeout)
        except ValueError:
            raise ValueError(f"KGRAPH_BUSY_TIMEOUT_MS must be an integer, got {raw_timeout!r}") from None
        if busy_timeout < 0:
            raise ValueError("KGRAPH_BUSY_TIMEOUT_MS must be >= 0")

    return KGraphConfig(
        busy_timeout_ms=busy_timeout,
        checkpoint_triggers=_split_list(env.get("KGRAPH_CHECKPOINT_TRIGGERS"), DEFAULT_CHECKPOINT_TRIGGERS),
        doc_files=_split_list(env.get("KGRAPH_DOC_FILES"), DEFAULT_DOC_FILES),
        capture_docs_on_read=_parse_bool(env.get("KGRAPH_CAPTURE_ON_READ"), False),
        log_level=(env.get("KGRAPH_LOG_LEVEL") or "INFO").upper(),
    )


def setup_logging(config: KGraphConfig, stream=None) -> None:
    """Configure root logging for an entry point."""
    level = getattr(logging, config.log_level, logging.INFO)
    if stream is None:
        logging.basicConfig(level=level, format=LOG_FORMAT)
    else:
        logging.basicConfig(level=level, format=LOG_FORMAT, stream=stream)
