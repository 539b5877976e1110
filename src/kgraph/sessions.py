"""Session lifecycle and cross-session continuity.

A SessionContext is the only in-memory session state. The host drives it
through three signals:

    Idle --created--> Active --compacted--> Active --deleted--> Idle

The session row itself is written lazily, on the first summarize call.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from .graph_store import GraphStore, SessionRecord, new_id, safe_json_loads, utc_now

logger = logging.getLogger(__name__)

RECENT_SESSION_LIMIT = 5
RECENT_ENTITY_LIMIT = 10


@dataclass
class SessionContext:
    """The current session for one project scope, held by its owner."""

    project_path: str
    session_id: str | None = None
    started_at: str | None = None

    @property
    def active(self) -> bool:
        return self.session_id is not None


@dataclass
class ContinuityContext:
    """What a new session should know about the last one."""

    project_path: str
    days_since_last: int | None = None
    last_summary: str | None = None
    last_decisions: str | None = None
    recent_entities: list[tuple[str, str]] = field(default_factory=list)

    def format(self) -> str:
        """Render as the markdown block injected into a new session."""
        message = f"Project: {self.project_path}"

        if self.days_since_last is not None:
            message += f"\n\nLast session: {self.days_since_last} day(s) ago"
            if self.last_summary:
                message += f"\nLast summary: {self.last_summary}"
            if self.last_decisions:
                message += f"\nKey decisions made: {self.last_decisions}"

        if self.recent_entities:
            message += "\n\nRecent entities tracked:"
            for entity_type, name in self.recent_entities:
                message += f"\n  - [{entity_type}] {name}"

        return f"## Project Knowledge Context\n{message}"


@dataclass
class SessionOutcome:
    """Final output of an ended session."""

    session_id: str
    summary: str | None = None
    decisions: str | None = None


def _parse_timestamp(value: str) -> datetime | None:
    try:
        parsed = datetime.fromisoformat(value)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def days_since(timestamp: str | None, now: datetime | None = None) -> int:
    """Whole days elapsed since an ISO timestamp (0 when unparseable)."""
    parsed = _parse_timestamp(timestamp) if timestamp else None
    if parsed is None:
        return 0
    now = now or datetime.now(timezone.utc)
    return max(0, (now - parsed).days)


def start_session(store: GraphStore, ctx: SessionContext) -> ContinuityContext:
    """Mint a new session id and build the continuity context for it."""
    ctx.session_id = new_id()
    ctx.started_at = utc_now()
    logger.info("Session %s started for %s", ctx.session_id[:8], ctx.project_path)

    result = ContinuityContext(project_path=ctx.project_path)
    recent = store.recent_sessions(ctx.project_path, limit=RECENT_SESSION_LIMIT)
    if not recent:
        return result

    last = recent[0]
    result.days_since_last = days_since(last.start_time)
    result.last_summary = last.summary
    result.last_decisions = last.key_decisions
    result.recent_entities = [
        (e.type, e.name) for e in store.recent_entities(ctx.project_path, limit=RECENT_ENTITY_LIMIT)
    ]
    return result


def compact_session(store: GraphStore, ctx: SessionContext) -> list[str]:
    """Re-surface the current session's summary after the host truncates history.

    Returns an empty list when nothing has been stored for this session yet.
    """
    if not ctx.session_id:
        return []
    session = store.get_session(ctx.session_id)
    if session is None:
        return []
    return [
        f"## Previous Session Summary\n{session.summary or 'No summary available'}",
        f"## Key Decisions\n{session.key_decisions or 'No decisions recorded'}",
    ]


def end_session(store: GraphStore, ctx: SessionContext) -> SessionOutcome | None:
    """Stamp end_time on the current session and return its final summary.

    The context always returns to Idle. Returns None when there was no
    active session or no stored row for it.
    """
    session_id = ctx.session_id
    ctx.session_id = None
    ctx.started_at = None
    if not session_id:
        return None

    session = store.end_session(session_id)
    if session is None:
        logger.debug("Session %s ended without a stored row", session_id[:8])
        return None

    outcome = SessionOutcome(session_id=session_id)
    context: Any = safe_json_loads(session.context, None)
    if isinstance(context, dict):
        outcome.summary = context.get("summary")
        outcome.decisions = context.get("decisions")
    logger.info("Session %s ended", session_id[:8])
    return outcome


def summarize(
    store: GraphStore,
    ctx: SessionContext,
    summary: str | None,
    decisions: str | None,
    files: str | None,
    project_path: str | None = None,
) -> str:
    """Upsert the current session's summary, minting a session id if Idle.

    ``project_path`` overrides the context's scope for the inserted row.
    """
    if not ctx.session_id:
        ctx.session_id = new_id()
        ctx.started_at = utc_now()

    store.upsert_session(
        session_id=ctx.session_id,
        project_path=project_path or ctx.project_path,
        summary=summary,
        key_decisions=decisions,
        files_modified=files,
        context=json.dumps({"summary": summary, "decisions": decisions}),
        start_time=ctx.started_at,
    )
    return ctx.session_id


def list_sessions(store: GraphStore, project_path: str, limit: int = 10) -> list[SessionRecord]:
    return store.recent_sessions(project_path, limit=limit)


def decode_files(session: SessionRecord) -> list:
    """files_modified as a list; anything undecodable or non-list becomes []."""
    files = safe_json_loads(session.files_modified, [])
    return files if isinstance(files, list) else []
