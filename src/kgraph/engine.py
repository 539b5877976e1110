"""Query façade: the operations the host exposes as tools.

Each function takes the store and the ambient project path and returns a
plain dict shaped for the caller:

- search / add_entity / connect / export_graph     graph reads and writes
- list_sessions / summarize_session                session history
- record_decision / ask                            decision log and recall
- stats                                            per-project counts

Hard failures (unresolved or ambiguous identifiers) propagate as
exceptions from graph_store; everything else returns a payload.
"""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from typing import Any

from . import sessions as session_tracker
from .graph_store import Entity, GraphStore, Relationship, safe_json_loads
from .sessions import SessionContext

logger = logging.getLogger(__name__)

SEARCH_CONTENT_LIMIT = 500
DECISION_ECHO_LIMIT = 100
ASK_DECISION_LIMIT = 5
ASK_DOC_LIMIT = 5
ASK_DOC_CONTENT_LIMIT = 500


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _node(entity: Entity) -> dict[str, Any]:
    return {"id": entity.id, "label": entity.name, "type": entity.type, "metadata": entity.metadata}


def _edge(rel: Relationship) -> dict[str, Any]:
    return {"id": rel.id, "source": rel.source_name, "target": rel.target_name, "type": rel.relationship_type}


def search(
    store: GraphStore,
    project_path: str,
    query: str,
    entity_type: str | None = None,
    limit: int = 10,
) -> dict[str, Any]:
    """Substring search over entity names and content, newest first."""
    results = store.search_entities(project_path, query, entity_type=entity_type, limit=limit)
    return {
        "query": query,
        "count": len(results),
        "results": [
            {
                "id": r.id,
                "type": r.type,
                "name": r.name,
                "content": r.content[:SEARCH_CONTENT_LIMIT] if r.content is not None else None,
                "metadata": r.metadata,
                "updated": r.updated_at,
            }
            for r in results
        ],
    }


def add_entity(
    store: GraphStore,
    project_path: str,
    name: str,
    entity_type: str,
    content: str,
    metadata: str | None = None,
) -> dict[str, Any]:
    entity = store.add_entity(project_path, name, entity_type, content, metadata or None)
    logger.debug("Added %s entity %s", entity_type, name)
    return {"success": True, "entityId": entity.id, "name": name, "type": entity_type}


def connect(
    store: GraphStore,
    project_path: str,
    source: str,
    target: str,
    relationship: str,
    metadata: str | None = None,
) -> dict[str, Any]:
    """Link two entities by id or name.

    Raises:
        EntityNotFoundError: Naming the side(s) that did not resolve.
        AmbiguousEntityError: A side matched several entities.
    """
    rel = store.connect(project_path, source, target, relationship, metadata=metadata)
    return {"success": True, "relationshipId": rel.id, "from": source, "to": target, "type": relationship}


def export_graph(
    store: GraphStore,
    project_path: str,
    entity_type: str | None = None,
    depth: int = 1,
    root: str | None = None,
) -> dict[str, Any]:
    """Nodes and edges for visualization.

    Without a root the whole project graph is returned. With a root,
    the breadth-first neighborhood up to ``depth`` hops.
    """
    if root:
        nodes, edges = store.neighborhood(project_path, root, depth=depth, entity_type=entity_type)
    else:
        nodes, edges = store.project_graph(project_path, entity_type=entity_type)
    return {"nodes": [_node(n) for n in nodes], "edges": [_edge(e) for e in edges]}


def list_sessions(store: GraphStore, project_path: str, limit: int = 10) -> dict[str, Any]:
    rows = session_tracker.list_sessions(store, project_path, limit=limit)
    return {
        "count": len(rows),
        "sessions": [
            {
                "id": s.id,
                "startTime": s.start_time,
                "endTime": s.end_time,
                "summary": s.summary,
                "keyDecisions": s.key_decisions,
                "filesModified": session_tracker.decode_files(s),
            }
            for s in rows
        ],
    }


def record_decision(
    store: GraphStore,
    project_path: str,
    decision: str,
    rationale: str,
    alternatives: str | None = None,
) -> dict[str, Any]:
    """Store a decision as a JSON-bodied entity with a timestamp name."""
    content = json.dumps(
        {
            "decision": decision,
            "rationale": rationale,
            "alternatives": alternatives,
            "recordedAt": _now_iso(),
        }
    )
    entity = store.add_entity(project_path, f"decision-{int(time.time() * 1000)}", "decision", content)
    return {"success": True, "decisionId": entity.id, "decision": decision[:DECISION_ECHO_LIMIT]}


def summarize_session(
    store: GraphStore,
    ctx: SessionContext,
    summary: str,
    decisions: str,
    files: str,
    project_path: str | None = None,
) -> dict[str, Any]:
    session_id = session_tracker.summarize(store, ctx, summary, decisions, files, project_path=project_path)
    return {"success": True, "sessionId": session_id}


def format_decision(content: str | None) -> str:
    """One bullet for a decision entity; raw content when it is not a JSON record."""
    parsed = safe_json_loads(content, None)
    if isinstance(parsed, dict) and "decision" in parsed:
        return f"- {parsed.get('decision')}: {parsed.get('rationale') or ''}".rstrip()
    return f"- {content or ''}"


def ask(store: GraphStore, project_path: str, question: str) -> dict[str, Any]:
    """Log the question, then return recent decisions and documentation.

    Recency is the only relevance signal; the question text is not matched
    against anything.
    """
    store.log_query(project_path, question)

    decisions = store.recent_entities(project_path, limit=ASK_DECISION_LIMIT, entity_type="decision")
    docs = store.recent_entities(project_path, limit=ASK_DOC_LIMIT, entity_type="documentation")

    parts: list[str] = []
    if decisions:
        parts.append("## Architectural Decisions")
        parts.extend(format_decision(d.content) for d in decisions)
    if docs:
        parts.append("## Documentation")
        for d in docs:
            parts.append(f"### {d.name}")
            parts.append((d.content or "")[:ASK_DOC_CONTENT_LIMIT])

    return {
        "question": question,
        "relevantContext": "\n".join(parts),
        "searchQuery": question,
        "timestamp": _now_iso(),
    }


def stats(store: GraphStore, project_path: str) -> dict[str, Any]:
    counts = store.get_stats(project_path)
    return {
        "projectPath": project_path,
        "entities": counts["entities"],
        "entityTypes": counts["entity_types"],
        "relationships": counts["relationships"],
        "sessions": counts["sessions"],
        "queries": counts["queries"],
    }
