"""The knowledge-graph plugin as a host sees it.

One instance owns one GraphStore connection, one project scope and one
SessionContext. Lifecycle hooks and tool calls all go through it, and a
lock keeps them from touching the connection concurrently.
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass, field
from typing import Any, Callable

from . import engine
from . import sessions as session_tracker
from .capture import AutoCapture
from .config import KGraphConfig
from .graph_store import GraphStore
from .sessions import SessionContext

logger = logging.getLogger(__name__)

# Tool names as registered with the host
TOOL_NAMES = (
    "knowledge_search",
    "knowledge_add_entity",
    "knowledge_connect",
    "knowledge_graph",
    "knowledge_sessions",
    "knowledge_record_decision",
    "knowledge_summarize_session",
    "knowledge_ask",
    "knowledge_stats",
)


def resolve_project_path(worktree: str | None = None, directory: str | None = None) -> str:
    """Project scope: worktree, else directory, else the current directory."""
    if worktree:
        return worktree
    return directory or os.getcwd()


@dataclass
class HookOutput:
    """What a lifecycle hook hands back to the host."""

    context: list[str] = field(default_factory=list)
    summary: str | None = None
    decisions: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"context": self.context}
        if self.summary is not None:
            out["summary"] = self.summary
        if self.decisions is not None:
            out["decisions"] = self.decisions
        return out


def _int_arg(arguments: dict[str, Any], key: str, default: int) -> int:
    value = arguments.get(key)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"'{key}' must be an integer, got {value!r}") from None


def _require(arguments: dict[str, Any], *keys: str) -> None:
    missing = [k for k in keys if arguments.get(k) is None]
    if missing:
        raise ValueError(f"Missing required argument(s): {', '.join(missing)}")


class KnowledgeGraphPlugin:
    """Lifecycle hooks plus tool dispatch over one knowledge store."""

    def __init__(
        self,
        store: GraphStore,
        project_path: str | None = None,
        config: KGraphConfig | None = None,
    ):
        self.store = store
        self.config = config or KGraphConfig()
        self.project_path = project_path or resolve_project_path()
        self.session = SessionContext(project_path=self.project_path)
        self.capture = AutoCapture(store, self.config)
        self._lock = threading.RLock()
        self._tools: dict[str, Callable[[str, dict[str, Any]], dict[str, Any]]] = {
            "knowledge_search": self._tool_search,
            "knowledge_add_entity": self._tool_add_entity,
            "knowledge_connect": self._tool_connect,
            "knowledge_graph": self._tool_graph,
            "knowledge_sessions": self._tool_sessions,
            "knowledge_record_decision": self._tool_record_decision,
            "knowledge_summarize_session": self._tool_summarize_session,
            "knowledge_ask": self._tool_ask,
            "knowledge_stats": self._tool_stats,
        }

    # ── Lifecycle hooks ─────────────────────────────────────────

    def on_session_created(self) -> HookOutput:
        with self._lock:
            continuity = session_tracker.start_session(self.store, self.session)
            return HookOutput(context=[continuity.format()])

    def on_session_compacted(self) -> HookOutput:
        with self._lock:
            return HookOutput(context=session_tracker.compact_session(self.store, self.session))

    def on_session_deleted(self) -> HookOutput:
        with self._lock:
            outcome = session_tracker.end_session(self.store, self.session)
            if outcome is None:
                return HookOutput()
            return HookOutput(summary=outcome.summary, decisions=outcome.decisions)

    def on_file_edited(self, file_path: str) -> HookOutput:
        with self._lock:
            self.capture.on_file_edited(self.project_path, file_path)
            return HookOutput()

    def on_tool_execute_after(self, tool: str, args: dict[str, Any] | None, result: Any) -> HookOutput:
        with self._lock:
            self.capture.handle_tool_event(self.project_path, tool, args, result)
            return HookOutput()

    def handle_event(self, event: str, payload: dict[str, Any] | None = None) -> HookOutput:
        """Dispatch a host lifecycle event by its wire name."""
        payload = payload or {}
        if event == "session.created":
            return self.on_session_created()
        if event == "session.compacted":
            return self.on_session_compacted()
        if event == "session.deleted":
            return self.on_session_deleted()
        if event == "file.edited":
            _require(payload, "filePath")
            return self.on_file_edited(payload["filePath"])
        if event == "tool.execute.after":
            _require(payload, "tool")
            return self.on_tool_execute_after(payload["tool"], payload.get("args"), payload.get("result"))
        raise ValueError(f"Unknown event: {event}")

    # ── Tools ───────────────────────────────────────────────────

    def call_tool(
        self,
        name: str,
        arguments: dict[str, Any] | None = None,
        directory: str | None = None,
        worktree: str | None = None,
    ) -> dict[str, Any]:
        """Run a host tool by name.

        ``directory`` / ``worktree`` override the instance's project scope
        for this call only.

        Raises:
            ValueError: Unknown tool or invalid arguments.
            EntityNotFoundError, AmbiguousEntityError: From connect/graph.
        """
        handler = self._tools.get(name)
        if handler is None:
            raise ValueError(f"Unknown tool: {name}")
        project_path = resolve_project_path(worktree, directory) if (worktree or directory) else self.project_path
        with self._lock:
            return handler(project_path, arguments or {})

    def _tool_search(self, project_path: str, args: dict[str, Any]) -> dict[str, Any]:
        _require(args, "query")
        return engine.search(
            self.store,
            project_path,
            args["query"],
            entity_type=args.get("type") or None,
            limit=_int_arg(args, "limit", 10),
        )

    def _tool_add_entity(self, project_path: str, args: dict[str, Any]) -> dict[str, Any]:
        _require(args, "name", "type", "content")
        return engine.add_entity(
            self.store, project_path, args["name"], args["type"], args["content"], args.get("metadata")
        )

    def _tool_connect(self, project_path: str, args: dict[str, Any]) -> dict[str, Any]:
        _require(args, "source", "target", "relationship")
        return engine.connect(
            self.store, project_path, args["source"], args["target"], args["relationship"], args.get("metadata")
        )

    def _tool_graph(self, project_path: str, args: dict[str, Any]) -> dict[str, Any]:
        return engine.export_graph(
            self.store,
            project_path,
            entity_type=args.get("entityType") or None,
            depth=_int_arg(args, "depth", 1),
            root=args.get("root") or None,
        )

    def _tool_sessions(self, project_path: str, args: dict[str, Any]) -> dict[str, Any]:
        return engine.list_sessions(self.store, project_path, limit=_int_arg(args, "limit", 10))

    def _tool_record_decision(self, project_path: str, args: dict[str, Any]) -> dict[str, Any]:
        _require(args, "decision", "rationale")
        return engine.record_decision(
            self.store, project_path, args["decision"], args["rationale"], args.get("alternatives")
        )

    def _tool_summarize_session(self, project_path: str, args: dict[str, Any]) -> dict[str, Any]:
        _require(args, "summary", "decisions", "files")
        return engine.summarize_session(
            self.store,
            self.session,
            args["summary"],
            args["decisions"],
            args["files"],
            project_path=project_path,
        )

    def _tool_ask(self, project_path: str, args: dict[str, Any]) -> dict[str, Any]:
        _require(args, "question")
        return engine.ask(self.store, project_path, args["question"])

    def _tool_stats(self, project_path: str, args: dict[str, Any]) -> dict[str, Any]:
        return engine.stats(self.store, project_path)

    def close(self) -> None:
        with self._lock:
            self.store.close()
