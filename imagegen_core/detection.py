"""
imagegen_core - Node Detector
=============================

Best-effort role detection over a workflow graph with no fixed schema.

Roles are found by ordered ``(predicate, ...)`` rules, first match wins, in
the graph's own key order:

1. sampler          - kind contains "sampler"
2. prompt nodes     - the sampler's ``positive``/``negative`` edge targets,
                      accepted only if they carry a literal string ``text``
3. prompt fallback  - first node with a non-empty literal string ``text``
4. reference images - every kind containing "loadimage"
5. checkpoint       - kind contains "checkpoint"
6. latent/size      - kind contains "latentimage" or "emptylatent"
7. output           - kind contains "saveimage" or "previewimage"

Detection never raises. Missing roles stay ``None``.
"""

import json
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from .graph import EdgeRef, Node, WorkflowGraph

__all__ = [
    "NodeMap",
    "WorkflowSummary",
    "detect",
    "summarize",
    "describe_editable",
    "calculate_size",
    "kind_contains",
    "ASPECT_RATIOS",
]

NodePredicate = Callable[[str, Node], bool]


def kind_contains(*needles: str) -> NodePredicate:
    """Predicate: node kind contains any of ``needles`` (case-insensitive)."""
    lowered = tuple(n.lower() for n in needles)

    def predicate(node_id: str, node: Node) -> bool:
        kind = node.kind.lower()
        return any(n in kind for n in lowered)

    return predicate


def _has_prompt_text(node_id: str, node: Node) -> bool:
    text = node.literal("text")
    return isinstance(text, str) and bool(text.strip())


SAMPLER_RULE = kind_contains("sampler")
LOAD_IMAGE_RULE = kind_contains("loadimage")
PROMPT_FALLBACK_RULE = _has_prompt_text

# (NodeMap field, predicate) for the single-node roles after prompt detection
SINGLE_ROLE_RULES: list[tuple[str, NodePredicate]] = [
    ("checkpoint", kind_contains("checkpoint")),
    ("latent_image", kind_contains("latentimage", "emptylatent")),
    ("output", kind_contains("saveimage", "previewimage")),
]


@dataclass
class NodeMap:
    """Node ids by role. Derived from a graph, never persisted."""

    positive_prompt: str | None = None
    negative_prompt: str | None = None
    sampler: str | None = None
    checkpoint: str | None = None
    latent_image: str | None = None
    output: str | None = None
    load_images: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "positive_prompt": self.positive_prompt,
            "negative_prompt": self.negative_prompt,
            "sampler": self.sampler,
            "checkpoint": self.checkpoint,
            "latent_image": self.latent_image,
            "output": self.output,
            "load_images": list(self.load_images),
        }


def _first_match(graph: WorkflowGraph, predicate: NodePredicate) -> str | None:
    for node_id, node in graph.items():
        if predicate(node_id, node):
            return node_id
    return None


def _follow_prompt_edge(graph: WorkflowGraph, sampler: Node, input_name: str) -> str | None:
    ref = sampler.inputs.get(input_name)
    if not isinstance(ref, EdgeRef):
        return None
    target = graph.get(ref.node_id)
    if target is not None and isinstance(target.literal("text"), str):
        return ref.node_id
    return None


def detect(graph: WorkflowGraph) -> NodeMap:
    """Locate the prompt, reference-image, sampler, checkpoint, latent and output nodes."""
    result = NodeMap()

    result.sampler = _first_match(graph, SAMPLER_RULE)
    if result.sampler is not None:
        sampler = graph[result.sampler]
        result.positive_prompt = _follow_prompt_edge(graph, sampler, "positive")
        result.negative_prompt = _follow_prompt_edge(graph, sampler, "negative")

    if result.positive_prompt is None:
        result.positive_prompt = _first_match(graph, PROMPT_FALLBACK_RULE)

    result.load_images = [
        node_id for node_id, node in graph.items() if LOAD_IMAGE_RULE(node_id, node)
    ]

    for role, predicate in SINGLE_ROLE_RULES:
        setattr(result, role, _first_match(graph, predicate))

    return result


# =============================================================================
# SUMMARY
# =============================================================================


@dataclass
class WorkflowSummary:
    """Headline settings of a template, read off the detected nodes."""

    node_count: int
    checkpoint: str | None = None
    steps: Any = None
    cfg: Any = None
    sampler: str | None = None
    scheduler: str | None = None
    width: Any = None
    height: Any = None

    def describe(self) -> str:
        """One-line description, e.g. ``sdxl.safetensors | 20 steps | cfg 7 | 1024x1024``."""
        parts = []
        if self.checkpoint:
            parts.append(str(self.checkpoint))
        if self.steps is not None:
            parts.append(f"{self.steps} steps")
        if self.cfg is not None:
            parts.append(f"cfg {self.cfg}")
        if self.sampler:
            sampler = str(self.sampler)
            if self.scheduler:
                sampler += f"/{self.scheduler}"
            parts.append(sampler)
        if self.width is not None and self.height is not None:
            parts.append(f"{self.width}x{self.height}")
        parts.append(f"{self.node_count} nodes")
        return " | ".join(parts)


def summarize(graph: WorkflowGraph, node_map: NodeMap | None = None) -> WorkflowSummary:
    """Read headline literals off the detected nodes; missing fields stay ``None``."""
    node_map = node_map or detect(graph)
    summary = WorkflowSummary(node_count=len(graph))

    checkpoint = graph.get(node_map.checkpoint)
    if checkpoint is not None:
        summary.checkpoint = checkpoint.literal("ckpt_name")

    sampler = graph.get(node_map.sampler)
    if sampler is not None:
        summary.steps = sampler.literal("steps")
        summary.cfg = sampler.literal("cfg")
        summary.sampler = sampler.literal("sampler_name")
        summary.scheduler = sampler.literal("scheduler")

    latent = graph.get(node_map.latent_image)
    if latent is not None:
        summary.width = latent.literal("width")
        summary.height = latent.literal("height")

    return summary


# =============================================================================
# EDITABLE VIEW
# =============================================================================

PROMPT_MARKER = "<- prompt is injected here at generation"
REFERENCE_MARKER = "<- reference image is injected here"


def describe_editable(graph: WorkflowGraph, node_map: NodeMap | None = None) -> str:
    """
    Human-readable listing of every node and its literal (editable) inputs.

    Edge inputs are left out since they are wiring, not settings.
    """
    node_map = node_map or detect(graph)
    reference_ids = set(node_map.load_images)
    lines = []

    for node_id, node in graph.items():
        header = f"Node #{node_id} ({node.kind})"
        if node.title and node.title != node.kind:
            header += f" - {node.title}"
        if node_id == node_map.positive_prompt:
            header += f"  {PROMPT_MARKER}"
        elif node_id in reference_ids:
            header += f"  {REFERENCE_MARKER}"
        lines.append(header)

        for field_name, value in node.editable_inputs().items():
            rendered = json.dumps(value, ensure_ascii=False)
            if len(rendered) > 120:
                rendered = rendered[:117] + "..."
            lines.append(f"  {field_name}: {rendered}")
        lines.append("")

    lines.append(
        "To change a value, modify the workflow with a node id, an input field "
        'and a JSON value (e.g. node "3", input "steps", value "30").'
    )
    return "\n".join(lines)


# =============================================================================
# ASPECT RATIO SIZING
# =============================================================================

ASPECT_RATIOS: dict[str, tuple[int, int]] = {
    "1:1": (1, 1),
    "3:4": (3, 4),
    "4:3": (4, 3),
    "16:9": (16, 9),
    "9:16": (9, 16),
}


def calculate_size(aspect_ratio: str | None, width: int, height: int) -> tuple[int, int]:
    """
    Resize ``width`` x ``height`` to ``aspect_ratio`` keeping the pixel count.

    Both sides are rounded to multiples of 8. Unknown ratios return the
    input size unchanged.
    """
    ratio = ASPECT_RATIOS.get((aspect_ratio or "").strip())
    if ratio is None or width <= 0 or height <= 0:
        return width, height
    rw, rh = ratio
    pixels = width * height
    new_height = (pixels * rh / rw) ** 0.5
    new_width = new_height * rw / rh
    return max(8, round(new_width / 8) * 8), max(8, round(new_height / 8) * 8)
