"""SQLite-backed knowledge graph store.

Holds the four tables that make up a project's memory:

- entities       named, typed knowledge records
- relationships  directed, typed edges between entities
- sessions       one row per summarized unit of work
- queries        append-only audit log of questions asked

Every read and write is scoped by project path. No query ever crosses
project scope.
"""

import json
import logging
import uuid
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import apsw
import apsw.bestpractice

# Apply APSW best practices
apsw.bestpractice.apply(apsw.bestpractice.recommended)

logger = logging.getLogger(__name__)

_ENTITY_COLUMNS = "id, type, name, content, metadata, project_path, created_at, updated_at"
_SESSION_COLUMNS = "id, project_path, start_time, end_time, summary, key_decisions, files_modified, context"


# ── Exceptions ──────────────────────────────────────────────────


class GraphStoreError(Exception):
    """Base exception for knowledge graph storage."""


class StorageInitError(GraphStoreError):
    """The store could not be opened or initialized. There is no degraded mode."""


class EntityNotFoundError(GraphStoreError, LookupError):
    """One or more entity identifiers did not resolve within the project."""

    def __init__(self, identifiers: List[str]):
        self.identifiers = list(identifiers)
        super().__init__(f"Could not find entities: {', '.join(self.identifiers)}")


class AmbiguousEntityError(GraphStoreError, LookupError):
    """An identifier matched more than one entity at the same resolution tier."""

    def __init__(self, identifier: str, candidates: List["Entity"]):
        self.identifier = identifier
        self.candidates = list(candidates)
        names = ", ".join(f"{c.name} [{c.type}] ({c.id})" for c in self.candidates[:5])
        super().__init__(f"Identifier '{identifier}' matches {len(self.candidates)} entities: {names}")


# ── Records ─────────────────────────────────────────────────────


@dataclass
class Entity:
    id: str
    type: str
    name: str
    content: Optional[str]
    metadata: Optional[str]
    project_path: str
    created_at: str
    updated_at: str


@dataclass
class Relationship:
    id: str
    source_id: str
    target_id: str
    relationship_type: str
    metadata: Optional[str]
    project_path: str
    created_at: str
    source_name: Optional[str] = None
    target_name: Optional[str] = None


@dataclass
class SessionRecord:
    id: str
    project_path: str
    start_time: Optional[str]
    end_time: Optional[str]
    summary: Optional[str]
    key_decisions: Optional[str]
    files_modified: Optional[str]
    context: Optional[str]


def _entity_from_row(row: tuple) -> Entity:
    return Entity(*row)


def _session_from_row(row: tuple) -> SessionRecord:
    return SessionRecord(*row)


def utc_now() -> str:
    """Current UTC time as an ISO-8601 string with microseconds."""
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    return str(uuid.uuid4())


def safe_json_loads(value: Any, default: Any) -> Any:
    """Decode a JSON text column, returning ``default`` on None or invalid JSON.

    Each call site picks its own fallback: the raw string, an empty list,
    or None.
    """
    if not value:
        return default
    try:
        return json.loads(value)
    except (json.JSONDecodeError, TypeError) as e:
        logger.debug("Falling back on undecodable JSON (%s): %.80r", e, value)
        return default


def _like_pattern(text: str) -> str:
    """Build a LIKE substring pattern that matches % and _ literally."""
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class GraphStore:
    """Entity/relationship graph plus session history in one SQLite file."""

    def __init__(self, db_path: Path, busy_timeout_ms: int = 5000):
        self.db_path = Path(db_path)
        self.busy_timeout_ms = busy_timeout_ms
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._init_db()
        except (apsw.Error, OSError) as e:
            raise StorageInitError(f"Cannot open knowledge store at {self.db_path}: {e}") from e

    def _init_db(self) -> None:
        """Open the connection and create tables/indexes if absent."""
        self.conn = apsw.Connection(str(self.db_path))
        cursor = self.conn.cursor()

        # A locked file blocks for at most this long, then raises BusyError.
        cursor.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout_ms)}")
        cursor.execute("PRAGMA foreign_keys = ON")

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS entities (
                id TEXT PRIMARY KEY,
                type TEXT NOT NULL,
                name TEXT NOT NULL,
                content TEXT,
                metadata TEXT,
                project_path TEXT,
                created_at TEXT,
                updated_at TEXT
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS relationships (
                id TEXT PRIMARY KEY,
                source_id TEXT NOT NULL,
                target_id TEXT NOT NULL,
                relationship_type TEXT NOT NULL,
                metadata TEXT,
                project_path TEXT,
                created_at TEXT,
                FOREIGN KEY (source_id) REFERENCES entities(id),
                FOREIGN KEY (target_id) REFERENCES entities(id)
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS sessions (
                id TEXT PRIMARY KEY,
                project_path TEXT NOT NULL,
                start_time TEXT,
                end_time TEXT,
                summary TEXT,
                key_decisions TEXT,
                files_modified TEXT,
                context TEXT
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS queries (
                id TEXT PRIMARY KEY,
                project_path TEXT NOT NULL,
                query_text TEXT NOT NULL,
                result_summary TEXT,
                timestamp TEXT
            )
        """)

        for idx, table, col in [
            ("idx_entities_type", "entities", "type"),
            ("idx_entities_project", "entities", "project_path"),
            ("idx_sessions_project", "sessions", "project_path"),
            ("idx_relationships_source", "relationships", "source_id"),
            ("idx_relationships_target", "relationships", "target_id"),
        ]:
            cursor.execute(f"CREATE INDEX IF NOT EXISTS {idx} ON {table}({col})")

    # ── Entities ────────────────────────────────────────────────

    def add_entity(
        self,
        project_path: str,
        name: str,
        entity_type: str,
        content: Optional[str],
        metadata: Optional[str] = None,
    ) -> Entity:
        """Insert a new entity. Always inserts; identical names yield distinct rows."""
        now = utc_now()
        entity = Entity(
            id=new_id(),
            type=entity_type,
            name=name,
            content=content,
            metadata=metadata,
            project_path=project_path,
            created_at=now,
            updated_at=now,
        )
        self.conn.cursor().execute(
            f"INSERT INTO entities ({_ENTITY_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                entity.id,
                entity.type,
                entity.name,
                entity.content,
                entity.metadata,
                entity.project_path,
                entity.created_at,
                entity.updated_at,
            ),
        )
        return entity

    def get_entity(self, entity_id: str) -> Optional[Entity]:
        rows = list(self.conn.cursor().execute(f"SELECT {_ENTITY_COLUMNS} FROM entities WHERE id = ?", (entity_id,)))
        return _entity_from_row(rows[0]) if rows else None

    def get_entity_by_name(self, project_path: str, name: str) -> Optional[Entity]:
        """Exact-name lookup within a project; most recently updated wins."""
        rows = list(
            self.conn.cursor().execute(
                f"""
                SELECT {_ENTITY_COLUMNS} FROM entities
                WHERE project_path = ? AND name = ?
                ORDER BY updated_at DESC, rowid DESC
                LIMIT 1
                """,
                (project_path, name),
            )
        )
        return _entity_from_row(rows[0]) if rows else None

    def touch_entity(self, entity_id: str) -> str:
        """Refresh updated_at on an entity and return the new timestamp."""
        now = utc_now()
        self.conn.cursor().execute("UPDATE entities SET updated_at = ? WHERE id = ?", (now, entity_id))
        return now

    def get_or_touch(self, project_path: str, name: str) -> Optional[Entity]:
        """Look up by exact name; refresh updated_at if found, else return None."""
        entity = self.get_entity_by_name(project_path, name)
        if entity is None:
            return None
        entity.updated_at = self.touch_entity(entity.id)
        return entity

    def insert_if_absent(
        self,
        project_path: str,
        name: str,
        entity_type: str,
        content: Optional[str],
    ) -> Tuple[Entity, bool]:
        """Insert unless an entity with this exact name exists. Returns (entity, created)."""
        existing = self.get_entity_by_name(project_path, name)
        if existing is not None:
            return existing, False
        return self.add_entity(project_path, name, entity_type, content), True

    def has_content(self, project_path: str, entity_type: str, content: str) -> bool:
        """Whether an entity of this type already holds exactly this content."""
        rows = list(
            self.conn.cursor().execute(
                "SELECT 1 FROM entities WHERE project_path = ? AND type = ? AND content = ? LIMIT 1",
                (project_path, entity_type, content),
            )
        )
        return bool(rows)

    def search_entities(
        self,
        project_path: str,
        query: str,
        entity_type: Optional[str] = None,
        limit: int = 10,
    ) -> List[Entity]:
        """Case-insensitive substring search on name or content, newest first."""
        if limit < 1:
            return []

        pattern = _like_pattern(query)
        where_clauses = [
            "project_path = ?",
            "(name LIKE ? ESCAPE '\\' OR content LIKE ? ESCAPE '\\')",
        ]
        params: list = [project_path, pattern, pattern]

        if entity_type:
            where_clauses.append("type = ?")
            params.append(entity_type)

        params.append(limit)

        rows = self.conn.cursor().execute(
            f"""
            SELECT {_ENTITY_COLUMNS} FROM entities
            WHERE {" AND ".join(where_clauses)}
            ORDER BY updated_at DESC, rowid DESC
            LIMIT ?
            """,
            params,
        )
        return [_entity_from_row(row) for row in rows]

    def recent_entities(
        self,
        project_path: str,
        limit: int = 10,
        entity_type: Optional[str] = None,
    ) -> List[Entity]:
        """Most recently updated entities in a project."""
        where_clauses = ["project_path = ?"]
        params: list = [project_path]
        if entity_type:
            where_clauses.append("type = ?")
            params.append(entity_type)
        params.append(limit)

        rows = self.conn.cursor().execute(
            f"""
            SELECT {_ENTITY_COLUMNS} FROM entities
            WHERE {" AND ".join(where_clauses)}
            ORDER BY updated_at DESC, rowid DESC
            LIMIT ?
            """,
            params,
        )
        return [_entity_from_row(row) for row in rows]

    def resolve_entity(self, project_path: str, identifier: str) -> Entity:
        """Resolve an id or name to exactly one entity.

        Tiers, first non-empty tier wins: exact id, exact name,
        case-insensitive name substring.

        Raises:
            EntityNotFoundError: No tier matched.
            AmbiguousEntityError: The winning tier matched several entities.
        """
        cursor = self.conn.cursor()
        tiers = [
            ("id = ?", identifier),
            ("name = ?", identifier),
            ("name LIKE ? ESCAPE '\\'", _like_pattern(identifier)),
        ]
        for clause, value in tiers:
            rows = list(
                cursor.execute(
                    f"""
                    SELECT {_ENTITY_COLUMNS} FROM entities
                    WHERE project_path = ? AND {clause}
                    ORDER BY updated_at DESC, rowid DESC
                    """,
                    (project_path, value),
                )
            )
            if len(rows) == 1:
                return _entity_from_row(rows[0])
            if rows:
                raise AmbiguousEntityError(identifier, [_entity_from_row(r) for r in rows])
        raise EntityNotFoundError([identifier])

    # ── Relationships ───────────────────────────────────────────

    def connect(
        self,
        project_path: str,
        source: str,
        target: str,
        relationship_type: str,
        metadata: Optional[str] = None,
    ) -> Relationship:
        """Create a directed edge between two resolved entities.

        Raises:
            EntityNotFoundError: Naming every side that did not resolve.
            AmbiguousEntityError: A side matched more than one entity.
        """
        resolved: Dict[str, Entity] = {}
        missing: List[str] = []
        for side, identifier in (("source", source), ("target", target)):
            try:
                resolved[side] = self.resolve_entity(project_path, identifier)
            except EntityNotFoundError:
                missing.append(identifier)
        if missing:
            raise EntityNotFoundError(missing)

        rel = Relationship(
            id=new_id(),
            source_id=resolved["source"].id,
            target_id=resolved["target"].id,
            relationship_type=relationship_type,
            metadata=metadata,
            project_path=project_path,
            created_at=utc_now(),
            source_name=resolved["source"].name,
            target_name=resolved["target"].name,
        )
        self.conn.cursor().execute(
            """
            INSERT INTO relationships
            (id, source_id, target_id, relationship_type, metadata, project_path, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                rel.id,
                rel.source_id,
                rel.target_id,
                rel.relationship_type,
                rel.metadata,
                rel.project_path,
                rel.created_at,
            ),
        )
        return rel

    def _project_edges(self, project_path: str) -> List[Relationship]:
        """All edges whose endpoints both live in the project, with names joined."""
        rows = self.conn.cursor().execute(
            """
            SELECT r.id, r.source_id, r.target_id, r.relationship_type, r.metadata,
                   r.project_path, r.created_at, s.name, t.name
            FROM relationships r
            JOIN entities s ON r.source_id = s.id AND s.project_path = r.project_path
            JOIN entities t ON r.target_id = t.id AND t.project_path = r.project_path
            WHERE r.project_path = ?
            ORDER BY r.created_at, r.rowid
            """,
            (project_path,),
        )
        return [Relationship(*row) for row in rows]

    def project_graph(
        self,
        project_path: str,
        entity_type: Optional[str] = None,
    ) -> Tuple[List[Entity], List[Relationship]]:
        """Every entity (optionally type-filtered) and every edge in scope.

        Edges are not filtered by entity_type, so under a type filter an
        edge can reference a node that is absent from the node list.
        """
        where_clauses = ["project_path = ?"]
        params: list = [project_path]
        if entity_type:
            where_clauses.append("type = ?")
            params.append(entity_type)

        rows = self.conn.cursor().execute(
            f"""
            SELECT {_ENTITY_COLUMNS} FROM entities
            WHERE {" AND ".join(where_clauses)}
            ORDER BY created_at, rowid
            """,
            params,
        )
        nodes = [_entity_from_row(row) for row in rows]
        return nodes, self._project_edges(project_path)

    def neighborhood(
        self,
        project_path: str,
        root: str,
        depth: int = 1,
        entity_type: Optional[str] = None,
    ) -> Tuple[List[Entity], List[Relationship]]:
        """Breadth-first expansion from ``root`` over edges in either direction.

        Returns entities within ``depth`` hops and every edge whose both
        endpoints were reached. The type filter never drops the root.
        """
        depth = max(1, depth)
        root_entity = self.resolve_entity(project_path, root)
        edges = self._project_edges(project_path)

        adjacency: Dict[str, List[str]] = {}
        for edge in edges:
            adjacency.setdefault(edge.source_id, []).append(edge.target_id)
            adjacency.setdefault(edge.target_id, []).append(edge.source_id)

        hops = {root_entity.id: 0}
        queue = deque([root_entity.id])
        while queue:
            current = queue.popleft()
            if hops[current] >= depth:
                continue
            for neighbor in adjacency.get(current, []):
                if neighbor not in hops:
                    hops[neighbor] = hops[current] + 1
                    queue.append(neighbor)

        nodes = []
        for entity_id in hops:
            entity = root_entity if entity_id == root_entity.id else self.get_entity(entity_id)
            if entity is None:
                continue
            if entity_type and entity.type != entity_type and entity.id != root_entity.id:
                continue
            nodes.append(entity)

        reached = set(hops)
        kept_edges = [e for e in edges if e.source_id in reached and e.target_id in reached]
        return nodes, kept_edges

    # ── Sessions ────────────────────────────────────────────────

    def upsert_session(
        self,
        session_id: str,
        project_path: str,
        summary: Optional[str],
        key_decisions: Optional[str],
        files_modified: Optional[str],
        context: Optional[str],
        start_time: Optional[str] = None,
    ) -> None:
        """Insert a session row, or update its summary fields if the id exists."""
        self.conn.cursor().execute(
            """
            INSERT INTO sessions
            (id, project_path, start_time, summary, key_decisions, files_modified, context)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                summary = excluded.summary,
                key_decisions = excluded.key_decisions,
                files_modified = excluded.files_modified,
                context = excluded.context
            """,
            (
                session_id,
                project_path,
                start_time or utc_now(),
                summary,
                key_decisions,
                files_modified,
                context,
            ),
        )

    def get_session(self, session_id: str) -> Optional[SessionRecord]:
        rows = list(self.conn.cursor().execute(f"SELECT {_SESSION_COLUMNS} FROM sessions WHERE id = ?", (session_id,)))
        return _session_from_row(rows[0]) if rows else None

    def recent_sessions(self, project_path: str, limit: int = 10) -> List[SessionRecord]:
        rows = self.conn.cursor().execute(
            f"""
            SELECT {_SESSION_COLUMNS} FROM sessions
            WHERE project_path = ?
            ORDER BY start_time DESC, rowid DESC
            LIMIT ?
            """,
            (project_path, limit),
        )
        return [_session_from_row(row) for row in rows]

    def end_session(self, session_id: str) -> Optional[SessionRecord]:
        """Stamp end_time on a session row. Returns the updated row, or None."""
        self.conn.cursor().execute("UPDATE sessions SET end_time = ? WHERE id = ?", (utc_now(), session_id))
        return self.get_session(session_id)

    # ── Queries (audit log) ─────────────────────────────────────

    def log_query(self, project_path: str, query_text: str, result_summary: Optional[str] = None) -> str:
        query_id = new_id()
        self.conn.cursor().execute(
            """
            INSERT INTO queries (id, project_path, query_text, result_summary, timestamp)
            VALUES (?, ?, ?, ?, ?)
            """,
            (query_id, project_path, query_text, result_summary, utc_now()),
        )
        return query_id

    # ── Stats ───────────────────────────────────────────────────

    def get_stats(self, project_path: str) -> Dict[str, Any]:
        """Row counts for one project."""
        cursor = self.conn.cursor()
        by_type = {
            row[0]: row[1]
            for row in cursor.execute(
                """
                SELECT type, COUNT(*) FROM entities
                WHERE project_path = ?
                GROUP BY type ORDER BY COUNT(*) DESC, type
                """,
                (project_path,),
            )
        }

        def _count(table: str) -> int:
            return list(cursor.execute(f"SELECT COUNT(*) FROM {table} WHERE project_path = ?", (project_path,)))[0][0]

        return {
            "entities": sum(by_type.values()),
            "entity_types": by_type,
            "relationships": _count("relationships"),
            "sessions": _count("sessions"),
            "queries": _count("queries"),
        }

    def close(self) -> None:
        """Close the database connection."""
        if hasattr(self, "conn"):
            self.conn.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
