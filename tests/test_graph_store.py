"""Tests for GraphStore: schema, entities, identifier resolution, relationships."""

import pytest

from kgraph.graph_store import (
    AmbiguousEntityError,
    EntityNotFoundError,
    GraphStore,
    StorageInitError,
    safe_json_loads,
)


# ── Schema ──────────────────────────────────────────────────────


class TestSchema:
    """Tables and indexes are created once and never clobbered."""

    def test_tables_created(self, store):
        cursor = store.conn.cursor()
        tables = {row[0] for row in cursor.execute("SELECT name FROM sqlite_master WHERE type='table'")}
        assert {"entities", "relationships", "sessions", "queries"} <= tables

    def test_indexes_created(self, store):
        cursor = store.conn.cursor()
        indexes = {row[0] for row in cursor.execute("SELECT name FROM sqlite_master WHERE type='index'")}
        assert {
            "idx_entities_type",
            "idx_entities_project",
            "idx_sessions_project",
            "idx_relationships_source",
            "idx_relationships_target",
        } <= indexes

    def test_reopen_keeps_data(self, tmp_path, project):
        """Initializing against an existing file is idempotent."""
        db_path = tmp_path / "knowledge.db"
        with GraphStore(db_path) as first:
            first.add_entity(project, "UserService", "component", "Handles auth")

        with GraphStore(db_path) as second:
            found = second.search_entities(project, "UserService")
            assert len(found) == 1
            assert found[0].content == "Handles auth"

    def test_unopenable_path_is_fatal(self, tmp_path):
        """A directory where the db file should be cannot be opened."""
        blocker = tmp_path / "not-a-file.db"
        blocker.mkdir()
        with pytest.raises(StorageInitError):
            GraphStore(blocker)


# ── Entities ────────────────────────────────────────────────────


class TestEntities:
    def test_add_returns_entity_with_id(self, store, project):
        entity = store.add_entity(project, "UserService", "component", "Handles auth")
        assert entity.id
        assert entity.created_at == entity.updated_at
        assert store.get_entity(entity.id) == entity

    def test_add_same_name_twice_creates_two_rows(self, store, project):
        """Explicit adds never dedup."""
        a = store.add_entity(project, "Cache", "component", "v1")
        b = store.add_entity(project, "Cache", "component", "v2")
        assert a.id != b.id
        assert len(store.search_entities(project, "Cache")) == 2

    def test_metadata_stored_verbatim(self, store, project):
        raw = '{"owner": "team-auth",  "tier":1}'
        store.add_entity(project, "AuthGateway", "component", "edge", metadata=raw)
        [found] = store.search_entities(project, "AuthGateway")
        assert found.metadata == raw

    def test_get_or_touch_refreshes_updated_at(self, store, clock, project):
        entity = store.add_entity(project, "src/app.ts", "typescript", "export {}")
        touched = store.get_or_touch(project, "src/app.ts")
        assert touched.id == entity.id
        assert touched.updated_at > entity.updated_at
        assert touched.content == entity.content

    def test_get_or_touch_absent(self, store, project):
        assert store.get_or_touch(project, "missing.ts") is None

    def test_insert_if_absent(self, store, project):
        first, created = store.insert_if_absent(project, "Setup", "documentation", "## Setup")
        again, created_again = store.insert_if_absent(project, "Setup", "documentation", "## Setup v2")
        assert created is True
        assert created_again is False
        assert again.id == first.id


class TestSearch:
    def test_matches_name_or_content_case_insensitive(self, store, project):
        store.add_entity(project, "UserService", "component", "Handles auth")
        store.add_entity(project, "Database", "component", "Postgres store for USERS")
        store.add_entity(project, "Logger", "component", "structured logs")

        names = {e.name for e in store.search_entities(project, "user")}
        assert names == {"UserService", "Database"}

    def test_ordered_by_updated_desc_and_limited(self, store, clock, project):
        for i in range(5):
            store.add_entity(project, f"Widget{i}", "component", "ui widget")
        store.get_or_touch(project, "Widget1")

        results = store.search_entities(project, "widget", limit=3)
        assert [e.name for e in results] == ["Widget1", "Widget4", "Widget3"]
        stamps = [e.updated_at for e in results]
        assert stamps == sorted(stamps, reverse=True)

    def test_type_filter(self, store, project):
        store.add_entity(project, "Retry policy", "pattern", "exponential backoff")
        store.add_entity(project, "RetryClient", "component", "wraps httpx")
        results = store.search_entities(project, "retry", entity_type="pattern")
        assert [e.name for e in results] == ["Retry policy"]

    def test_wildcards_match_literally(self, store, project):
        store.add_entity(project, "progress_bar", "component", "")
        store.add_entity(project, "progressXbar", "component", "")
        store.add_entity(project, "discount", "concept", "100% off")
        assert [e.name for e in store.search_entities(project, "progress_bar")] == ["progress_bar"]
        assert [e.name for e in store.search_entities(project, "100%")] == ["discount"]

    def test_scoped_to_project(self, store, project, other_project):
        store.add_entity(project, "Billing", "component", "")
        store.add_entity(other_project, "Billing", "component", "")
        assert len(store.search_entities(project, "Billing")) == 1

    def test_zero_limit(self, store, project):
        store.add_entity(project, "Anything", "concept", "")
        assert store.search_entities(project, "Any", limit=0) == []


# ── Identifier resolution ───────────────────────────────────────


class TestResolveEntity:
    def test_by_id(self, store, project):
        entity = store.add_entity(project, "UserService", "component", "")
        assert store.resolve_entity(project, entity.id).id == entity.id

    def test_by_exact_name_beats_substring(self, store, project):
        """'User' exactly named wins over 'UserService' containing it."""
        store.add_entity(project, "UserService", "component", "")
        user = store.add_entity(project, "User", "concept", "")
        assert store.resolve_entity(project, "User").id == user.id

    def test_by_unique_substring(self, store, project):
        service = store.add_entity(project, "UserService", "component", "")
        store.add_entity(project, "Database", "component", "")
        assert store.resolve_entity(project, "userserv").id == service.id

    def test_ambiguous_substring_raises_with_candidates(self, store, project):
        store.add_entity(project, "UserService", "component", "")
        store.add_entity(project, "UserRepository", "component", "")
        with pytest.raises(AmbiguousEntityError) as exc:
            store.resolve_entity(project, "User")
        assert exc.value.identifier == "User"
        assert {c.name for c in exc.value.candidates} == {"UserService", "UserRepository"}

    def test_duplicate_exact_names_are_ambiguous(self, store, project):
        store.add_entity(project, "Cache", "component", "v1")
        store.add_entity(project, "Cache", "component", "v2")
        with pytest.raises(AmbiguousEntityError):
            store.resolve_entity(project, "Cache")

    def test_not_found(self, store, project):
        with pytest.raises(EntityNotFoundError) as exc:
            store.resolve_entity(project, "Ghost")
        assert exc.value.identifiers == ["Ghost"]

    def test_never_crosses_project(self, store, project, other_project):
        other = store.add_entity(other_project, "UserService", "component", "")
        with pytest.raises(EntityNotFoundError):
            store.resolve_entity(project, other.id)


# ── Relationships ───────────────────────────────────────────────


class TestConnect:
    def test_creates_edge(self, store, project):
        store.add_entity(project, "UserService", "component", "Handles auth")
        store.add_entity(project, "Database", "component", "Postgres store")
        rel = store.connect(project, "UserService", "Database", "depends_on")
        assert rel.source_name == "UserService"
        assert rel.target_name == "Database"
        assert rel.relationship_type == "depends_on"

    def test_missing_target_named(self, store, project):
        store.add_entity(project, "UserService", "component", "")
        with pytest.raises(EntityNotFoundError) as exc:
            store.connect(project, "UserService", "Redis", "depends_on")
        assert exc.value.identifiers == ["Redis"]
        assert "Redis" in str(exc.value)

    def test_both_sides_missing_named(self, store, project):
        with pytest.raises(EntityNotFoundError) as exc:
            store.connect(project, "Foo", "Bar", "related_to")
        assert exc.value.identifiers == ["Foo", "Bar"]

    def test_cycles_and_duplicates_allowed(self, store, project):
        store.add_entity(project, "A", "concept", "")
        store.add_entity(project, "B", "concept", "")
        store.connect(project, "A", "B", "related_to")
        store.connect(project, "A", "B", "related_to")
        store.connect(project, "B", "A", "related_to")
        _, edges = store.project_graph(project)
        assert len(edges) == 3


class TestProjectGraph:
    def test_type_filter_keeps_all_edges(self, store, project):
        """Nodes are filtered by type; edges are not."""
        store.add_entity(project, "UserService", "component", "")
        store.add_entity(project, "Use JWT", "concept", "")
        store.connect(project, "UserService", "Use JWT", "implements")

        nodes, edges = store.project_graph(project, entity_type="component")
        assert [n.name for n in nodes] == ["UserService"]
        assert len(edges) == 1
        assert edges[0].target_name == "Use JWT"

    def test_other_project_edges_excluded(self, store, project, other_project):
        store.add_entity(other_project, "X", "concept", "")
        store.add_entity(other_project, "Y", "concept", "")
        store.connect(other_project, "X", "Y", "related_to")
        nodes, edges = store.project_graph(project)
        assert nodes == []
        assert edges == []


class TestNeighborhood:
    @pytest.fixture
    def chain(self, store, project):
        """A -> B -> C, plus an isolated D."""
        for name in ("A", "B", "C"):
            store.add_entity(project, name, "component", "")
        store.add_entity(project, "D", "concept", "")
        store.connect(project, "A", "B", "depends_on")
        store.connect(project, "B", "C", "depends_on")
        return store

    def test_depth_one(self, chain, project):
        nodes, edges = chain.neighborhood(project, "A", depth=1)
        assert {n.name for n in nodes} == {"A", "B"}
        assert [(e.source_name, e.target_name) for e in edges] == [("A", "B")]

    def test_depth_two(self, chain, project):
        nodes, edges = chain.neighborhood(project, "A", depth=2)
        assert {n.name for n in nodes} == {"A", "B", "C"}
        assert len(edges) == 2

    def test_follows_edges_backwards(self, chain, project):
        nodes, _ = chain.neighborhood(project, "C", depth=1)
        assert {n.name for n in nodes} == {"B", "C"}

    def test_isolated_root(self, chain, project):
        nodes, edges = chain.neighborhood(project, "D", depth=3)
        assert [n.name for n in nodes] == ["D"]
        assert edges == []

    def test_missing_root(self, chain, project):
        with pytest.raises(EntityNotFoundError):
            chain.neighborhood(project, "Nope", depth=1)


# ── Helpers ─────────────────────────────────────────────────────


class TestSafeJsonLoads:
    def test_valid(self):
        assert safe_json_loads('["a.py"]', []) == ["a.py"]

    def test_invalid_returns_default(self):
        assert safe_json_loads("not json", []) == []
        assert safe_json_loads("{broken", None) is None

    def test_empty_returns_default(self):
        assert safe_json_loads(None, "raw") == "raw"
        assert safe_json_loads("", []) == []


class TestStats:
    def test_counts(self, store, project):
        store.add_entity(project, "A", "component", "")
        store.add_entity(project, "B", "component", "")
        store.add_entity(project, "C", "concept", "")
        store.connect(project, "A", "B", "depends_on")
        store.log_query(project, "what is A?")
        stats = store.get_stats(project)
        assert stats["entities"] == 3
        assert stats["entity_types"] == {"component": 2, "concept": 1}
        assert stats["relationships"] == 1
        assert stats["sessions"] == 0
        assert stats["queries"] == 1
