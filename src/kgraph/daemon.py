"""FastAPI host bridge: lifecycle events and tool calls over HTTP.

A host that cannot load Python in-process posts its lifecycle signals to
/events/{event} and its tool calls to /tools/{name}. One plugin instance
(one store connection, one session context) serves every request.
"""

import logging
import os
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, Optional

import uvicorn
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from .config import load_config, setup_logging
from .graph_store import AmbiguousEntityError, EntityNotFoundError, GraphStore
from .paths import get_db_path
from .plugin import TOOL_NAMES, KnowledgeGraphPlugin, resolve_project_path

logger = logging.getLogger(__name__)

DEFAULT_PORT = 8765

# Global state
plugin: Optional[KnowledgeGraphPlugin] = None


class EventRequest(BaseModel):
    """Payload of a host lifecycle event."""

    filePath: Optional[str] = None
    tool: Optional[str] = None
    args: Dict[str, Any] = Field(default_factory=dict)
    result: Any = None


class ToolRequest(BaseModel):
    """A tool call, optionally rescoped to another project."""

    arguments: Dict[str, Any] = Field(default_factory=dict)
    directory: Optional[str] = None
    worktree: Optional[str] = None


class HookResponse(BaseModel):
    context: list[str] = []
    summary: Optional[str] = None
    decisions: Optional[str] = None


def _open_plugin(db_path: Optional[Path] = None, project_path: Optional[str] = None) -> KnowledgeGraphPlugin:
    config = load_config()
    store = GraphStore(db_path or get_db_path(), busy_timeout_ms=config.busy_timeout_ms)
    project = project_path or resolve_project_path(directory=os.environ.get("KGRAPH_PROJECT"))
    return KnowledgeGraphPlugin(store, project_path=project, config=config)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the store on startup unless a plugin was installed already."""
    global plugin

    if plugin is not None:
        yield
        return

    logger.info("Starting kgraph daemon...")
    plugin = _open_plugin()
    logger.info("Knowledge store ready for %s", plugin.project_path)

    yield

    logger.info("Shutting down kgraph daemon...")
    if plugin:
        plugin.close()
        plugin = None


app = FastAPI(
    title="kgraph Daemon",
    description="Host bridge for the project knowledge graph",
    version="0.3.0",
    lifespan=lifespan,
)


def _require_plugin() -> KnowledgeGraphPlugin:
    if not plugin:
        raise HTTPException(status_code=503, detail="Knowledge store not initialized")
    return plugin


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    if not plugin:
        return {"status": "starting"}
    return {"status": "healthy", "project": plugin.project_path, "session": plugin.session.session_id}


@app.get("/stats")
async def get_stats():
    """Counts for the daemon's project."""
    return _require_plugin().call_tool("knowledge_stats")


@app.get("/tools")
async def list_tools():
    return {"tools": list(TOOL_NAMES)}


@app.post("/events/{event}", response_model=HookResponse)
async def post_event(event: str, request: Optional[EventRequest] = None):
    """Receive a host lifecycle signal."""
    current = _require_plugin()
    payload = request.model_dump() if request else {}
    try:
        output = current.handle_event(event, payload)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return HookResponse(**output.to_dict())


@app.post("/tools/{name}")
async def post_tool(name: str, request: Optional[ToolRequest] = None):
    """Run a tool call and return its payload."""
    current = _require_plugin()
    request = request or ToolRequest()
    try:
        return current.call_tool(
            name,
            request.arguments,
            directory=request.directory,
            worktree=request.worktree,
        )
    except EntityNotFoundError as e:
        raise HTTPException(status_code=404, detail={"error": str(e), "unresolved": e.identifiers})
    except AmbiguousEntityError as e:
        raise HTTPException(
            status_code=409,
            detail={
                "error": str(e),
                "candidates": [{"id": c.id, "name": c.name, "type": c.type} for c in e.candidates],
            },
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


def run(host: str = "127.0.0.1", port: int = DEFAULT_PORT) -> None:
    """Serve the bridge with uvicorn until interrupted."""
    config = uvicorn.Config(app, host=host, port=port, log_level="info", access_log=False)
    server = uvicorn.Server(config)
    try:
        server.run()
    except KeyboardInterrupt:
        logger.info("Daemon stopped by user")


def main():
    """Main daemon entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="kgraph host bridge daemon")
    parser.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help=f"HTTP port (default: {DEFAULT_PORT})")
    args = parser.parse_args()

    setup_logging(load_config())

    try:
        run(args.host, args.port)
    except Exception as e:
        logger.error("Daemon failed: %s", e)
        sys.exit(1)


if __name__ == "__main__":
    main()
