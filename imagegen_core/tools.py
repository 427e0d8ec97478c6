"""
imagegen_core - Tool-Facing Operations
======================================

The operations an assistant calls: list, view, import, modify and delete
workflow templates, and generate images. Each returns a small report object
with a ``to_text()`` rendering; failures raise ``ImageGenError`` subclasses.

Usage:
    tools = ImageTools()
    print(tools.list_workflows_text())
    report = tools.modify_workflow("3", "steps", "30", name="portrait")
    result = await tools.generate_image(prompt="a red fox", backend="local")
"""

import json
from dataclasses import dataclass
from typing import Any

from .config import Settings, get_settings
from .detection import NodeMap, WorkflowSummary, describe_editable, detect, summarize
from .exceptions import (
    ValidationError,
    WorkflowNotFoundError,
    WorkflowParseError,
)
from .graph import WorkflowGraph
from .logging_config import get_logger
from .models import Backend, GenerationResult, ProgressCallback, build_request
from .orchestrator import Orchestrator
from .validation import parse_json_value, validate_import_path, validate_workflow_name
from .workflow_store import WorkflowStore

logger = get_logger(__name__)

__all__ = [
    "ImageTools",
    "WorkflowListing",
    "ImportReport",
    "ModifyReport",
]


def _json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False)


@dataclass
class WorkflowListing:
    name: str
    is_default: bool
    summary: WorkflowSummary | None = None
    error: str | None = None


@dataclass
class ImportReport:
    name: str
    overwritten: bool
    node_map: NodeMap
    summary: WorkflowSummary
    is_first: bool = False

    def to_text(self) -> str:
        nm, s = self.node_map, self.summary
        lines = [
            f"Workflow \"{self.name}\" {'updated' if self.overwritten else 'imported'}.",
            "",
            "Detected nodes:",
        ]
        if nm.positive_prompt:
            lines.append(f"  Prompt injection: Node #{nm.positive_prompt}")
        else:
            lines.append(
                "  Prompt injection: not detected; view the workflow to find the text node "
                "and modify it to set the prompt before generating"
            )
        if nm.load_images:
            lines.append(f"  Reference images: Node #{', #'.join(nm.load_images)}")
        if nm.sampler:
            lines.append(f"  Sampler: Node #{nm.sampler}")
        if nm.checkpoint:
            lines.append(f"  Checkpoint: {s.checkpoint or 'Node #' + nm.checkpoint}")
        if nm.output:
            lines.append(f"  Output: Node #{nm.output}")
        lines += ["", f"Summary: {s.describe()}"]
        if self.is_first:
            lines += ["", "This is the first workflow; it will be used by default for local generation."]
        return "\n".join(lines)


@dataclass
class ModifyReport:
    name: str
    node_id: str
    kind: str
    field: str
    old_value: Any
    new_value: Any

    def to_text(self) -> str:
        return (
            f'Modified workflow "{self.name}":\n\n'
            f"Node #{self.node_id} ({self.kind})\n"
            f"  {self.field}: {_json(self.old_value)} -> {_json(self.new_value)}"
        )


@dataclass
class _Resolved:
    name: str
    graph: WorkflowGraph


class ImageTools:
    """Tool operations over one store and one orchestrator."""

    def __init__(
        self,
        settings: Settings | None = None,
        store: WorkflowStore | None = None,
        orchestrator: Orchestrator | None = None,
    ):
        self.settings = settings or get_settings()
        self.store = store or WorkflowStore(self.settings.storage.workflows_dir)
        self._orchestrator = orchestrator

    @property
    def orchestrator(self) -> Orchestrator:
        if self._orchestrator is None:
            self._orchestrator = Orchestrator(self.settings, store=self.store)
        return self._orchestrator

    @property
    def default_workflow(self) -> str | None:
        return self.settings.local.default_workflow

    def _resolve(self, name: str | None) -> _Resolved:
        resolved = self.store.resolve_name(name, self.default_workflow)
        return _Resolved(resolved, self.store.load(resolved))

    # -------------------------------------------------------------------------
    # listWorkflows
    # -------------------------------------------------------------------------

    def list_workflows(self) -> list[WorkflowListing]:
        """All stored templates with a summary; unreadable ones carry ``error``."""
        names = self.store.list()
        default = self.default_workflow if self.default_workflow in names else None
        if default is None and names:
            default = names[0]

        listings = []
        for name in names:
            try:
                summary = summarize(self.store.load(name))
                listings.append(WorkflowListing(name, name == default, summary))
            except WorkflowParseError as e:
                listings.append(WorkflowListing(name, name == default, error=e.message))
        return listings

    def list_workflows_text(self) -> str:
        listings = self.list_workflows()
        if not listings:
            return (
                "No workflows saved yet.\n\n"
                "To add one:\n"
                "1. Build a workflow in the pipeline's web UI\n"
                "2. Export it with 'Save (API Format)'\n"
                "3. Import the exported JSON file with import_workflow"
            )
        blocks = []
        for i, item in enumerate(listings, 1):
            marker = " (default)" if item.is_default else ""
            if item.summary is None:
                blocks.append(f"{i}. {item.name}{marker} (error reading workflow: {item.error})")
            else:
                blocks.append(f"{i}. {item.name}{marker}\n   {item.summary.describe()}")
        return "Saved workflows:\n\n" + "\n\n".join(blocks)

    # -------------------------------------------------------------------------
    # viewWorkflow
    # -------------------------------------------------------------------------

    def view_workflow(self, name: str | None = None) -> str:
        resolved = self._resolve(name)
        return f"Workflow: {resolved.name}\n\n## Editable parameters\n\n{describe_editable(resolved.graph)}"

    # -------------------------------------------------------------------------
    # importWorkflow
    # -------------------------------------------------------------------------

    def import_workflow(self, file_path: str, name: str | None = None) -> ImportReport:
        """
        Import an API-format workflow JSON file.

        Raises:
            ValidationError: unreadable file, invalid JSON, or not a workflow graph
        """
        path = validate_import_path(file_path)
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ValidationError(f'Cannot read file "{path}": {e}', cause=e)
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise WorkflowParseError(
                f"File is not valid JSON: {e.msg} (line {e.lineno})", source=str(path)
            )
        graph = WorkflowGraph.from_dict(data, source=str(path))

        save_name = validate_workflow_name(name or path.stem or "workflow")
        is_first = not self.store.list()
        overwritten = self.store.exists(save_name)
        self.store.save(save_name, graph)

        node_map = detect(graph)
        logger.info(
            "Workflow imported",
            extra={"workflow": save_name, "overwritten": overwritten, "nodes": len(graph)},
        )
        return ImportReport(save_name, overwritten, node_map, summarize(graph, node_map), is_first)

    # -------------------------------------------------------------------------
    # modifyWorkflow
    # -------------------------------------------------------------------------

    def modify_workflow(
        self,
        node_id: str,
        input_field: str,
        json_value: str,
        name: str | None = None,
    ) -> ModifyReport:
        """
        Set one input of one node, persisting the template.

        Raises:
            ValidationError: unknown node or input, or ``json_value`` not valid JSON
            WorkflowNotFoundError: unknown workflow name
        """
        if not node_id or not input_field or json_value is None:
            raise ValidationError(
                "modify requires a node id, an input field and a JSON value "
                '(e.g. node "3", input "steps", value "30")'
            )
        resolved = self._resolve(name)
        node_id = str(node_id)
        node = resolved.graph.get(node_id)
        if node is None:
            raise ValidationError(
                f'Node #{node_id} not found in workflow "{resolved.name}"',
                details={"workflow": resolved.name, "node_id": node_id},
                suggestions=["View the workflow to see the available node ids"],
            )
        if input_field not in node.inputs:
            available = list(node.editable_inputs())
            raise ValidationError(
                f'Input "{input_field}" not found in Node #{node_id} ({node.kind})',
                details={"available_inputs": available},
                suggestions=[f"Available inputs: {', '.join(available) or '(none)'}"],
            )

        new_value = parse_json_value(json_value, field=input_field)
        old_value = node.inputs[input_field].to_json()
        node.set_input(input_field, new_value)
        self.store.save(resolved.name, resolved.graph)

        logger.info(
            "Workflow modified",
            extra={"workflow": resolved.name, "node_id": node_id, "input": input_field},
        )
        return ModifyReport(resolved.name, node_id, node.kind, input_field, old_value, new_value)

    # -------------------------------------------------------------------------
    # deleteWorkflow
    # -------------------------------------------------------------------------

    def delete_workflow(self, name: str) -> str:
        if not name:
            raise ValidationError("A workflow name is required to delete")
        if not self.store.exists(name):
            raise WorkflowNotFoundError(name)
        self.store.delete(name)
        return f'Workflow "{name}" deleted.'

    # -------------------------------------------------------------------------
    # generateImage
    # -------------------------------------------------------------------------

    async def generate_image(
        self,
        prompt: str,
        *,
        model: str | None = None,
        size: str | None = None,
        aspect_ratio: str | None = None,
        quality: str | None = None,
        reference_images: list[str] | None = None,
        negative_prompt: str | None = None,
        backend: Backend | str | None = None,
        workflow: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> GenerationResult:
        request = build_request(
            prompt=prompt,
            model=model,
            size=size,
            aspect_ratio=aspect_ratio,
            quality=quality,
            reference_images=reference_images,
            negative_prompt=negative_prompt,
            backend=backend,
            workflow=workflow,
        )
        return await self.orchestrator.generate(request, on_progress)

    async def list_checkpoints(self) -> list[str]:
        """Checkpoint names known to the local pipeline."""
        local = self.orchestrator.backends.get(Backend.LOCAL)
        if local is None:
            return []
        return await local.list_checkpoints()

    async def aclose(self):
        if self._orchestrator is not None:
            await self._orchestrator.aclose()
