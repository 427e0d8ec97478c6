"""
imagegen_core - Workflow Graph Store
====================================

Named workflow templates persisted as ``<name>.json`` in one directory.

The file content is the canonical representation (the pipeline's API
format), so a template saved here can be posted to the pipeline as-is.
Saves go through a temp file plus ``os.replace`` so readers never observe
a half-written template. Concurrent saves to one name are last-writer-wins.
"""

from __future__ import annotations

import contextlib
import json
import os
import tempfile
from pathlib import Path

from .config import get_settings
from .exceptions import ValidationError, WorkflowNotFoundError, WorkflowParseError
from .graph import WorkflowGraph
from .logging_config import get_logger
from .validation import validate_workflow_name

logger = get_logger(__name__)

__all__ = ["WorkflowStore", "WORKFLOW_SUFFIX"]

WORKFLOW_SUFFIX = ".json"


class WorkflowStore:
    """
    Load/save/list/delete workflow templates by name.

    Usage:
        store = WorkflowStore("~/.config/imagegen/workflows")
        store.save("portrait", graph)
        graph = store.load("portrait")
    """

    def __init__(self, directory: str | Path | None = None):
        if directory is None:
            directory = get_settings().storage.workflows_dir
        self.directory = Path(directory).expanduser()

    def path_for(self, name: str) -> Path:
        """File path for ``name`` (validated)."""
        name = validate_workflow_name(name)
        return self.directory / f"{name}{WORKFLOW_SUFFIX}"

    def list(self) -> list[str]:
        """Stored names, lexicographically sorted. Missing directory means none."""
        if not self.directory.is_dir():
            return []
        return sorted(
            p.stem
            for p in self.directory.iterdir()
            if p.suffix == WORKFLOW_SUFFIX and p.is_file() and not p.name.startswith(".")
        )

    def exists(self, name: str) -> bool:
        return self.path_for(name).is_file()

    def read_raw(self, name: str) -> str:
        """Raw file text for ``name``."""
        path = self.path_for(name)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise WorkflowNotFoundError(name)

    def load(self, name: str) -> WorkflowGraph:
        """
        Load a template.

        Raises:
            WorkflowNotFoundError: no such name
            WorkflowParseError: content is not JSON or not a valid graph
        """
        text = self.read_raw(name)
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise WorkflowParseError(
                f"Workflow '{name}' is not valid JSON: {e.msg} (line {e.lineno})", source=name
            )
        return WorkflowGraph.from_dict(data, source=name)

    def save(self, name: str, graph: WorkflowGraph) -> Path:
        """Atomically write ``graph`` under ``name``, replacing any existing file."""
        path = self.path_for(name)
        self.directory.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(graph.to_dict(), indent=2, ensure_ascii=False) + "\n"

        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{path.stem}.", suffix=".tmp", dir=str(self.directory)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_name, path)
        except BaseException:
            with contextlib.suppress(OSError):
                os.unlink(tmp_name)
            raise

        logger.debug("Workflow saved", extra={"workflow": name, "path": str(path)})
        return path

    def delete(self, name: str):
        """
        Remove a template.

        Raises:
            WorkflowNotFoundError: no such name
        """
        path = self.path_for(name)
        try:
            path.unlink()
        except FileNotFoundError:
            raise WorkflowNotFoundError(name)
        logger.info("Workflow deleted", extra={"workflow": name})

    def resolve_name(self, name: str | None = None, default: str | None = None) -> str:
        """
        Pick the workflow to use.

        ``name`` if given (must exist), else ``default`` if it exists, else the
        first stored name.

        Raises:
            WorkflowNotFoundError: ``name`` is unknown, or nothing is stored
        """
        if name:
            if not self.exists(name):
                raise WorkflowNotFoundError(name, suggestions=self._suggest_names())
            return validate_workflow_name(name)
        if default:
            try:
                if self.exists(default):
                    return validate_workflow_name(default)
            except ValidationError:
                logger.warning("Ignoring invalid default workflow name", extra={"workflow": default})
        names = self.list()
        if not names:
            raise WorkflowNotFoundError(
                message=f"No workflows found in {self.directory}",
                suggestions=["Import a workflow exported with 'Save (API Format)' first"],
            )
        return names[0]

    def _suggest_names(self) -> list[str]:
        names = self.list()
        if not names:
            return ["No workflows are stored yet; import one first"]
        return [f"Available workflows: {', '.join(names)}"]
