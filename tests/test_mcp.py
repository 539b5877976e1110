"""Tests for the MCP tool surface."""

import asyncio
import json
from unittest.mock import patch

import pytest

from kgraph.mcp import call_tool, list_tools
from kgraph.plugin import TOOL_NAMES


@pytest.fixture
def mcp_plugin(plugin):
    with patch("kgraph.mcp._plugin", plugin):
        yield plugin


def _run(name, arguments):
    return asyncio.run(call_tool(name, arguments))


class TestListTools:
    def test_names_match_plugin(self):
        tools = asyncio.run(list_tools())
        assert [t.name for t in tools] == list(TOOL_NAMES)

    def test_summarize_schema_requires_all_fields(self):
        tools = {t.name: t for t in asyncio.run(list_tools())}
        schema = tools["knowledge_summarize_session"].inputSchema
        assert schema["required"] == ["summary", "decisions", "files"]

    def test_read_only_hints(self):
        tools = {t.name: t for t in asyncio.run(list_tools())}
        assert tools["knowledge_search"].annotations.readOnlyHint is True
        assert tools["knowledge_connect"].annotations.readOnlyHint is False


class TestCallTool:
    def test_success_returns_json_and_structured(self, mcp_plugin):
        content, structured = _run(
            "knowledge_add_entity", {"name": "UserService", "type": "component", "content": "auth"}
        )
        assert structured["success"] is True
        assert json.loads(content[0].text) == structured

    def test_not_found_is_error_result(self, mcp_plugin):
        result = _run("knowledge_connect", {"source": "A", "target": "B", "relationship": "uses"})
        assert result.isError is True
        assert result.content[0].text.startswith("Not found:")

    def test_validation_error(self, mcp_plugin):
        result = _run("knowledge_search", {})
        assert result.isError is True
        assert "Validation error" in result.content[0].text
