"""
imagegen_core - Workflow Graph Model
====================================

In-memory form of a node-graph template in the pipeline's API format:

    {
      "3": {"class_type": "KSampler", "inputs": {"positive": ["5", 0], "steps": 20}},
      "5": {"class_type": "CLIPTextEncode", "inputs": {"text": "a cat"},
            "_meta": {"title": "Positive"}}
    }

Every input value is parsed once into either a ``LiteralValue`` or an
``EdgeRef`` (a link to another node's output). The discriminator is a
two-element list of ``[str, number]``; nothing else is an edge.
"""

import copy
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any, Union

from .exceptions import WorkflowParseError

__all__ = [
    "LiteralValue",
    "EdgeRef",
    "InputValue",
    "parse_input_value",
    "is_edge_reference",
    "Node",
    "WorkflowGraph",
]


@dataclass(frozen=True)
class LiteralValue:
    """A literal input value (any JSON value)."""

    value: Any

    def to_json(self) -> Any:
        return self.value


@dataclass(frozen=True)
class EdgeRef:
    """Reference to output ``slot`` of node ``node_id``."""

    node_id: str
    slot: int | float

    def to_json(self) -> list:
        return [self.node_id, self.slot]


InputValue = Union[LiteralValue, EdgeRef]


def is_edge_reference(raw: Any) -> bool:
    """True for ``[str, number]`` (bools are not numbers here)."""
    return (
        isinstance(raw, list)
        and len(raw) == 2
        and isinstance(raw[0], str)
        and isinstance(raw[1], (int, float))
        and not isinstance(raw[1], bool)
    )


def parse_input_value(raw: Any) -> InputValue:
    """Classify a raw JSON input value."""
    if is_edge_reference(raw):
        return EdgeRef(raw[0], raw[1])
    return LiteralValue(raw)


@dataclass
class Node:
    """One operator node: its kind, its inputs and optional display metadata."""

    kind: str
    inputs: dict[str, InputValue] = field(default_factory=dict)
    meta: dict[str, Any] | None = None

    @property
    def title(self) -> str | None:
        if self.meta and isinstance(self.meta.get("title"), str):
            return self.meta["title"]
        return None

    def literal(self, name: str, default: Any = None) -> Any:
        """Raw value of literal input ``name``, ``default`` if absent or an edge."""
        value = self.inputs.get(name)
        if isinstance(value, LiteralValue):
            return value.value
        return default

    def set_literal(self, name: str, value: Any):
        self.inputs[name] = LiteralValue(value)

    def set_input(self, name: str, raw: Any) -> InputValue:
        """Set ``name`` from a raw JSON value, classifying it like the loader does."""
        parsed = parse_input_value(raw)
        self.inputs[name] = parsed
        return parsed

    def editable_inputs(self) -> dict[str, Any]:
        """Literal inputs only, as raw values."""
        return {k: v.value for k, v in self.inputs.items() if isinstance(v, LiteralValue)}

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "class_type": self.kind,
            "inputs": {k: v.to_json() for k, v in self.inputs.items()},
        }
        if self.meta is not None:
            data["_meta"] = copy.deepcopy(self.meta)
        return data

    @classmethod
    def from_dict(cls, node_id: str, data: Any) -> "Node":
        if not isinstance(data, dict):
            raise WorkflowParseError(f"Node {node_id!r} is not an object")
        kind = data.get("class_type")
        if not isinstance(kind, str):
            raise WorkflowParseError(f"Node {node_id!r} has no string class_type")
        raw_inputs = data.get("inputs", {})
        if raw_inputs is None:
            raw_inputs = {}
        if not isinstance(raw_inputs, dict):
            raise WorkflowParseError(f"Node {node_id!r} inputs must be an object")
        meta = data.get("_meta")
        if meta is not None and not isinstance(meta, dict):
            raise WorkflowParseError(f"Node {node_id!r} _meta must be an object")
        inputs = {str(k): parse_input_value(v) for k, v in raw_inputs.items()}
        return cls(kind=kind, inputs=inputs, meta=copy.deepcopy(meta))


@dataclass
class WorkflowGraph:
    """
    Ordered mapping of node id to ``Node``.

    Iteration order is the key order of the source document; the node
    detector depends on it.
    """

    nodes: dict[str, Node] = field(default_factory=dict)

    def __iter__(self) -> Iterator[str]:
        return iter(self.nodes)

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self.nodes

    def __getitem__(self, node_id: str) -> Node:
        return self.nodes[node_id]

    def get(self, node_id: str | None) -> Node | None:
        if node_id is None:
            return None
        return self.nodes.get(node_id)

    def items(self):
        return self.nodes.items()

    def copy(self) -> "WorkflowGraph":
        """Deep copy; mutating the copy never touches this graph."""
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        return {node_id: node.to_dict() for node_id, node in self.nodes.items()}

    @classmethod
    def from_dict(cls, data: Any, source: str | None = None) -> "WorkflowGraph":
        """
        Build a graph from the parsed JSON document.

        Raises:
            WorkflowParseError: not an object, empty, or a malformed node
        """
        if not isinstance(data, dict):
            raise WorkflowParseError(
                f"Workflow must be a JSON object, got {type(data).__name__}", source=source
            )
        if not data:
            raise WorkflowParseError("Workflow has no nodes", source=source)
        try:
            nodes = {str(node_id): Node.from_dict(str(node_id), raw) for node_id, raw in data.items()}
        except WorkflowParseError as e:
            if source:
                e.add_context("source", source)
            raise
        return cls(nodes=nodes)
