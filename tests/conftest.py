"""Shared test fixtures for kgraph tests."""

import itertools
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from kgraph.config import KGraphConfig
from kgraph.graph_store import GraphStore
from kgraph.plugin import KnowledgeGraphPlugin

PROJECT = "/work/acme-api"
OTHER_PROJECT = "/work/other-repo"


@pytest.fixture
def project() -> str:
    return PROJECT


@pytest.fixture
def other_project() -> str:
    return OTHER_PROJECT


@pytest.fixture
def store(tmp_path):
    """Fresh GraphStore in a temp directory."""
    s = GraphStore(tmp_path / "knowledge.db")
    yield s
    s.close()


@pytest.fixture
def clock():
    """Strictly increasing timestamps for every write, one second apart."""
    start = datetime(2026, 3, 1, 9, 0, 0, tzinfo=timezone.utc)
    ticks = (start + timedelta(seconds=i) for i in itertools.count())
    with patch("kgraph.graph_store.utc_now", side_effect=lambda: next(ticks).isoformat()):
        yield


@pytest.fixture
def plugin(store):
    """Plugin bound to PROJECT with default config."""
    return KnowledgeGraphPlugin(store, project_path=PROJECT, config=KGraphConfig())
