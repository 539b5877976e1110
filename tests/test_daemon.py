"""Tests for the FastAPI host bridge."""

import pytest
from fastapi.testclient import TestClient

import kgraph.daemon as daemon


@pytest.fixture
def client(plugin):
    """TestClient over an injected plugin; the lifespan leaves it alone."""
    daemon.plugin = plugin
    with TestClient(daemon.app) as c:
        yield c
    daemon.plugin = None


class TestHealth:
    def test_healthy(self, client, project):
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["project"] == project
        assert body["session"] is None

    def test_tools_listed(self, client):
        assert "knowledge_ask" in client.get("/tools").json()["tools"]


class TestEvents:
    def test_session_created(self, client):
        resp = client.post("/events/session.created")
        assert resp.status_code == 200
        assert resp.json()["context"][0].startswith("## Project Knowledge Context")
        assert client.get("/health").json()["session"] is not None

    def test_tool_event(self, client, store, project):
        resp = client.post(
            "/events/tool.execute.after",
            json={"tool": "read", "args": {"filePath": "src/app.ts"}, "result": "code"},
        )
        assert resp.status_code == 200
        assert store.get_entity_by_name(project, "src/app.ts") is not None

    def test_unknown_event(self, client):
        assert client.post("/events/nope").status_code == 400


class TestTools:
    def test_add_and_search(self, client):
        resp = client.post(
            "/tools/knowledge_add_entity",
            json={"arguments": {"name": "UserService", "type": "component", "content": "auth"}},
        )
        assert resp.status_code == 200
        hits = client.post("/tools/knowledge_search", json={"arguments": {"query": "user"}}).json()
        assert hits["count"] == 1

    def test_connect_not_found(self, client):
        resp = client.post(
            "/tools/knowledge_connect",
            json={"arguments": {"source": "A", "target": "B", "relationship": "uses"}},
        )
        assert resp.status_code == 404
        assert resp.json()["detail"]["unresolved"] == ["A", "B"]

    def test_connect_ambiguous(self, client):
        for name in ("UserService", "UserRepository", "Database"):
            client.post(
                "/tools/knowledge_add_entity",
                json={"arguments": {"name": name, "type": "component", "content": ""}},
            )
        resp = client.post(
            "/tools/knowledge_connect",
            json={"arguments": {"source": "User", "target": "Database", "relationship": "uses"}},
        )
        assert resp.status_code == 409
        assert len(resp.json()["detail"]["candidates"]) == 2

    def test_unknown_tool(self, client):
        assert client.post("/tools/knowledge_nope").status_code == 400

    def test_stats(self, client, project):
        assert client.get("/stats").json()["projectPath"] == project


def test_not_initialized():
    """Without the lifespan the endpoints report 503."""
    daemon.plugin = None
    client = TestClient(daemon.app)
    assert client.get("/health").json() == {"status": "starting"}
    assert client.get("/stats").status_code == 503
