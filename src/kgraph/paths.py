"""Centralized data paths for kgraph.

One SQLite file holds every project's graph; rows are partitioned by
project path. An env var override is supported for custom installations.

Resolution order:
  1. KGRAPH_DB env var (full path to .db file)
  2. ~/.local/share/kgraph/knowledge.db
"""

import os
from pathlib import Path

_CANONICAL_DB_PATH = Path.home() / ".local" / "share" / "kgraph" / "knowledge.db"


def get_db_path() -> Path:
    """Resolve the kgraph database path.

    Checks KGRAPH_DB env var first, then falls back to the canonical
    location under ~/.local/share.
    """
    env = os.environ.get("KGRAPH_DB")
    if env:
        return Path(env)

    # Ensure parent dir exists for fresh installs
    _CANONICAL_DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    return _CANONICAL_DB_PATH

