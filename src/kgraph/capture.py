"""Auto-capture: derive entities from what the agent is already doing.

Two host signals feed this module:

- a read tool succeeded  -> the file becomes an entity (once per path)
- a shell command ran    -> if it matches a checkpoint trigger, scan the
                            most recent entities for "decision:" markers
                            and for doc-file sections

Usage:
    from kgraph.capture import AutoCapture
    capture = AutoCapture(store, config)
    capture.handle_tool_event(project_path, "read", {"filePath": "src/app.ts"}, text)
"""

import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from .config import KGraphConfig
from .graph_store import Entity, GraphStore

logger = logging.getLogger(__name__)

FILE_CONTENT_LIMIT = 1000
CHECKPOINT_SCAN_LIMIT = 5
DECISION_MARKER = "decision:"
SECTION_PREFIX = "## "
SECTION_MAX_LINES = 10

_EXTENSION_TYPES = {
    ".ts": "typescript",
    ".tsx": "typescript",
    ".js": "javascript",
    ".jsx": "javascript",
    ".json": "config",
}


@dataclass
class CaptureResult:
    """What one capture pass added."""

    files: int = 0
    decisions: int = 0
    sections: int = 0

    @property
    def total(self) -> int:
        return self.files + self.decisions + self.sections


def classify_file(file_path: str) -> str:
    """Entity type for a file, by extension."""
    _, ext = os.path.splitext(file_path)
    return _EXTENSION_TYPES.get(ext.lower(), "file")


def normalize_path(file_path: str) -> str:
    return os.path.normpath(file_path)


def extract_decision_windows(content: str) -> List[str]:
    """Lines around each "decision:" marker: two before, the marker line, two after."""
    lines = content.split("\n")
    windows = []
    for i, line in enumerate(lines):
        if DECISION_MARKER in line:
            windows.append("\n".join(lines[max(0, i - 2) : i + 3]))
    return windows


def split_sections(content: str) -> List[Tuple[str, str]]:
    """Split markdown on h2 headers into (header, section) pairs.

    A section is the header line plus following lines, at most
    SECTION_MAX_LINES in total.
    """
    lines = content.split("\n")
    sections = []
    for i, line in enumerate(lines):
        if line.startswith(SECTION_PREFIX):
            header = line[len(SECTION_PREFIX) :].strip()
            if not header:
                continue
            sections.append((header, "\n".join(lines[i : i + SECTION_MAX_LINES])))
    return sections


class AutoCapture:
    """Turns host tool activity into entities."""

    def __init__(self, store: GraphStore, config: Optional[KGraphConfig] = None):
        self.store = store
        self.config = config or KGraphConfig()

    def is_checkpoint(self, command: str) -> bool:
        return any(trigger in command for trigger in self.config.checkpoint_triggers)

    def is_doc_file(self, name: str) -> bool:
        return any(name.endswith(suffix) for suffix in self.config.doc_files)

    def handle_tool_event(
        self,
        project_path: str,
        tool: str,
        args: Optional[Dict[str, Any]],
        result: Any,
    ) -> CaptureResult:
        """Dispatch a tool-execute-after payload. Failed or unknown tools are ignored."""
        args = args or {}
        if not result:
            return CaptureResult()

        if tool == "read":
            file_path = args.get("filePath")
            if file_path:
                return self.on_file_read(project_path, file_path, str(result))
        elif tool == "bash":
            command = args.get("command") or ""
            if command:
                return self.on_shell_command(project_path, command)
        return CaptureResult()

    def on_file_read(self, project_path: str, file_path: str, content: str) -> CaptureResult:
        """Record a read file once; later reads only refresh updated_at."""
        result = CaptureResult()
        name = normalize_path(file_path)

        existing = self.store.get_or_touch(project_path, name)
        if existing is None:
            entity_type = classify_file(file_path)
            existing = self.store.add_entity(project_path, name, entity_type, content[:FILE_CONTENT_LIMIT])
            result.files = 1
            logger.debug("Captured %s as %s", name, entity_type)

        if self.config.capture_docs_on_read and self.is_doc_file(name):
            result.sections += self._capture_sections(project_path, existing)
        return result

    def on_file_edited(self, project_path: str, file_path: str) -> bool:
        """Refresh updated_at for a known file. Returns False if the file was never captured."""
        return self.store.get_or_touch(project_path, normalize_path(file_path)) is not None

    def on_shell_command(self, project_path: str, command: str) -> CaptureResult:
        """On a checkpoint command, mine recent entities for decisions and doc sections."""
        result = CaptureResult()
        if not self.is_checkpoint(command):
            return result

        entities = self.store.recent_entities(project_path, limit=CHECKPOINT_SCAN_LIMIT)
        with self.store.conn:
            for entity in entities:
                result.decisions += self._capture_decisions(project_path, entity)
                if self.is_doc_file(entity.name):
                    result.sections += self._capture_sections(project_path, entity)

        if result.total:
            logger.info(
                "Checkpoint '%s' captured %d decisions, %d sections",
                command[:40],
                result.decisions,
                result.sections,
            )
        return result

    def _capture_decisions(self, project_path: str, entity: Entity) -> int:
        # Captured windows are never mined again.
        if entity.type == "decision" or not entity.content or DECISION_MARKER not in entity.content:
            return 0
        added = 0
        stamp = int(time.time() * 1000)
        for n, window in enumerate(extract_decision_windows(entity.content)):
            if self.store.has_content(project_path, "decision", window):
                continue
            _, created = self.store.insert_if_absent(
                project_path, f"decision-{stamp}-{entity.id[:8]}-{n}", "decision", window
            )
            added += int(created)
        return added

    def _capture_sections(self, project_path: str, entity: Entity) -> int:
        if not entity.content:
            return 0
        added = 0
        for header, section in split_sections(entity.content):
            _, created = self.store.insert_if_absent(project_path, header, "documentation", section)
            added += int(created)
        return added
