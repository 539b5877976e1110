"""kgraph MCP Server - Model Context Protocol interface to the knowledge graph."""

import asyncio
import json
import logging
import os
import sys
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import (
    CallToolResult,
    TextContent,
    Tool,
    ToolAnnotations,
)

from ..config import load_config, setup_logging
from ..graph_store import AmbiguousEntityError, EntityNotFoundError, GraphStore
from ..paths import get_db_path
from ..plugin import KnowledgeGraphPlugin, resolve_project_path

logger = logging.getLogger(__name__)

# Create MCP server
server = Server("kgraph")

# Lazy-loaded global
_plugin = None


def _get_plugin() -> KnowledgeGraphPlugin:
    global _plugin
    if _plugin is None:
        config = load_config()
        store = GraphStore(get_db_path(), busy_timeout_ms=config.busy_timeout_ms)
        project = resolve_project_path(directory=os.environ.get("KGRAPH_PROJECT"))
        _plugin = KnowledgeGraphPlugin(store, project_path=project, config=config)
    return _plugin


_READ_ONLY = ToolAnnotations(
    readOnlyHint=True,
    destructiveHint=False,
    idempotentHint=True,
    openWorldHint=False,
)

_WRITE = ToolAnnotations(
    readOnlyHint=False,
    destructiveHint=False,
    idempotentHint=False,
    openWorldHint=False,
)


def _error_result(message: str) -> CallToolResult:
    """Return a CallToolResult with isError=True."""
    return CallToolResult(content=[TextContent(type="text", text=message)], isError=True)


_STRING = {"type": "string"}


@server.list_tools()
async def list_tools() -> list[Tool]:
    """List available tools."""
    return [
        Tool(
            name="knowledge_search",
            title="Search Project Knowledge",
            description="""Search the project knowledge base for information.

Matches the query as a case-insensitive substring of entity names and content, newest first.
Returns: `query`, `count`, and `results[]` with `id`, `type`, `name`, `content` (max 500 chars), `metadata`, `updated`.""",
            annotations=_READ_ONLY,
            inputSchema={
                "type": "object",
                "properties": {
                    "query": {**_STRING, "description": "Search query"},
                    "type": {**_STRING, "description": "Filter by entity type (optional)"},
                    "limit": {
                        "type": "integer",
                        "default": 10,
                        "minimum": 1,
                        "maximum": 100,
                        "description": "Max results (default: 10)",
                    },
                },
                "required": ["query"],
            },
        ),
        Tool(
            name="knowledge_add_entity",
            title="Add Entity",
            description="Add a new entity to the knowledge graph. Repeated names create distinct entities.",
            annotations=_WRITE,
            inputSchema={
                "type": "object",
                "properties": {
                    "name": {**_STRING, "description": "Entity name"},
                    "type": {
                        **_STRING,
                        "description": "Entity type (architecture, decision, pattern, component, concept)",
                    },
                    "content": {**_STRING, "description": "Entity content/details"},
                    "metadata": {**_STRING, "description": "JSON metadata (optional), stored verbatim"},
                },
                "required": ["name", "type", "content"],
            },
        ),
        Tool(
            name="knowledge_connect",
            title="Connect Entities",
            description="""Create a relationship between two entities.

Source and target accept an entity id, an exact name, or a unique name fragment.
Fails if either side is missing or if a fragment matches several entities.""",
            annotations=_WRITE,
            inputSchema={
                "type": "object",
                "properties": {
                    "source": {**_STRING, "description": "Source entity ID or name"},
                    "target": {**_STRING, "description": "Target entity ID or name"},
                    "relationship": {
                        **_STRING,
                        "description": "Relationship type (depends_on, implements, contains, related_to)",
                    },
                },
                "required": ["source", "target", "relationship"],
            },
        ),
        Tool(
            name="knowledge_graph",
            title="Export Knowledge Graph",
            description="""Get the knowledge graph as nodes and edges for visualization.

Without `root` the whole project graph is returned. With `root`, only entities within `depth` hops of it.""",
            annotations=_READ_ONLY,
            inputSchema={
                "type": "object",
                "properties": {
                    "entityType": {**_STRING, "description": "Filter nodes by entity type (optional)"},
                    "depth": {"type": "integer", "default": 1, "minimum": 1, "description": "Relationship depth (default: 1)"},
                    "root": {**_STRING, "description": "Entity ID or name to expand from (optional)"},
                },
            },
        ),
        Tool(
            name="knowledge_sessions",
            title="Session History",
            description="Get past session history with summaries, most recent first.",
            annotations=_READ_ONLY,
            inputSchema={
                "type": "object",
                "properties": {
                    "limit": {"type": "integer", "default": 10, "minimum": 1, "description": "Number of sessions (default: 10)"},
                },
            },
        ),
        Tool(
            name="knowledge_record_decision",
            title="Record Decision",
            description="Record a key architectural or design decision.",
            annotations=_WRITE,
            inputSchema={
                "type": "object",
                "properties": {
                    "decision": {**_STRING, "description": "The decision made"},
                    "rationale": {**_STRING, "description": "Why this decision was made"},
                    "alternatives": {**_STRING, "description": "Alternatives considered (optional)"},
                },
                "required": ["decision", "rationale"],
            },
        ),
        Tool(
            name="knowledge_summarize_session",
            title="Summarize Session",
            description="Store a summary of the current session. Calling again updates the same session.",
            annotations=_WRITE,
            inputSchema={
                "type": "object",
                "properties": {
                    "summary": {**_STRING, "description": "Session summary"},
                    "decisions": {**_STRING, "description": "Key decisions made"},
                    "files": {**_STRING, "description": "JSON array of files modified"},
                },
                "required": ["summary", "decisions", "files"],
            },
        ),
        Tool(
            name="knowledge_ask",
            title="Ask About Project",
            description="""Ask a question about the project and get relevant context.

Returns the most recent decisions and documentation sections. The question is logged but not used for ranking.""",
            annotations=_WRITE,
            inputSchema={
                "type": "object",
                "properties": {
                    "question": {**_STRING, "description": "Question about the project"},
                },
                "required": ["question"],
            },
        ),
        Tool(
            name="knowledge_stats",
            title="Knowledge Stats",
            description="Counts of entities (by type), relationships, sessions and questions for this project.",
            annotations=_READ_ONLY,
            inputSchema={"type": "object", "properties": {}},
        ),
    ]


@server.call_tool()
async def call_tool(name: str, arguments: dict[str, Any]):
    """Handle tool calls."""
    try:
        plugin = _get_plugin()
        result = plugin.call_tool(name, arguments or {})
    except EntityNotFoundError as e:
        return _error_result(f"Not found: {e}")
    except AmbiguousEntityError as e:
        return _error_result(f"Ambiguous: {e}. Retry with an entity id.")
    except ValueError as e:
        return _error_result(f"Validation error: {e}")
    except Exception as e:
        logger.exception("Tool %s failed", name)
        return _error_result(f"{name} error: {e}")

    return ([TextContent(type="text", text=json.dumps(result, indent=2))], result)


def serve():
    """Start the MCP server using stdio.

    MCP uses stdin/stdout for communication; logs go to stderr.
    """
    setup_logging(load_config(), stream=sys.stderr)

    async def main():
        async with stdio_server() as (read_stream, write_stream):
            await server.run(read_stream, write_stream, server.create_initialization_options())

    asyncio.run(main())


if __name__ == "__main__":
    serve()
