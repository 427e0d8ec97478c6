"""
Tests for the workflow graph store.
"""

import json
from typing import get_type_hints
from unittest.mock import patch

import pytest

from imagegen_core.exceptions import (
    InvalidParameterError,
    WorkflowNotFoundError,
    WorkflowParseError,
)
from imagegen_core.graph import WorkflowGraph
from imagegen_core.workflow_store import WorkflowStore

from .conftest import SCENARIO_GRAPH, TXT2IMG_GRAPH


class TestSaveLoad:
    """Persistence round trip and file format."""

    def test_save_then_load(self, store, txt2img_graph):
        store.save("portrait", txt2img_graph)
        assert store.load("portrait").to_dict() == TXT2IMG_GRAPH

    def test_file_is_pretty_printed_api_format(self, store, scenario_graph):
        path = store.save("scenario", scenario_graph)
        text = path.read_text(encoding="utf-8")
        assert path.name == "scenario.json"
        assert text.endswith("\n")
        assert '\n  "3": {' in text
        assert json.loads(text) == SCENARIO_GRAPH

    def test_save_creates_directory(self, store, scenario_graph):
        assert not store.directory.exists()
        store.save("first", scenario_graph)
        assert store.directory.is_dir()

    def test_save_overwrites(self, store, scenario_graph):
        store.save("wf", scenario_graph)
        scenario_graph["3"].set_literal("steps", 40)
        store.save("wf", scenario_graph)
        assert store.load("wf")["3"].literal("steps") == 40

    def test_failed_write_leaves_original_intact(self, store, scenario_graph):
        store.save("wf", scenario_graph)
        scenario_graph["3"].set_literal("steps", 99)
        with patch("imagegen_core.workflow_store.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                store.save("wf", scenario_graph)
        assert store.load("wf")["3"].literal("steps") == 20
        # No temp files left behind
        assert [p.name for p in store.directory.iterdir()] == ["wf.json"]

    def test_unicode_is_kept(self, store):
        graph = WorkflowGraph.from_dict({"1": {"class_type": "CLIPTextEncode", "inputs": {"text": "東京の夜"}}})
        path = store.save("tokyo", graph)
        assert "東京の夜" in path.read_text(encoding="utf-8")


class TestLoadErrors:
    """Missing and corrupt templates."""

    def test_missing(self, store):
        with pytest.raises(WorkflowNotFoundError, match="ghost"):
            store.load("ghost")

    def test_invalid_json(self, store):
        store.directory.mkdir(parents=True)
        (store.directory / "broken.json").write_text("{not json", encoding="utf-8")
        with pytest.raises(WorkflowParseError):
            store.load("broken")

    def test_not_a_graph(self, store):
        store.directory.mkdir(parents=True)
        (store.directory / "list.json").write_text("[1, 2]", encoding="utf-8")
        with pytest.raises(WorkflowParseError):
            store.load("list")

    @pytest.mark.parametrize("name", ["../etc/passwd", "a/b", ".hidden", "", "c:evil"])
    def test_unsafe_names_rejected(self, store, name):
        with pytest.raises(InvalidParameterError):
            store.load(name)


class TestListDelete:
    """Listing and deletion."""

    def test_list_missing_directory(self, store):
        assert store.list() == []

    def test_list_is_sorted_and_filtered(self, store, scenario_graph):
        for name in ("zeta", "alpha", "Mid"):
            store.save(name, scenario_graph)
        (store.directory / "notes.txt").write_text("x", encoding="utf-8")
        (store.directory / ".partial.json").write_text("{}", encoding="utf-8")
        assert store.list() == ["Mid", "alpha", "zeta"]

    def test_list_method_does_not_shadow_builtin_in_annotations(self):
        assert get_type_hints(WorkflowStore.list)["return"] == list[str]
        assert get_type_hints(WorkflowStore._suggest_names)["return"] == list[str]

    def test_delete(self, store, scenario_graph):
        store.save("wf", scenario_graph)
        store.delete("wf")
        assert not store.exists("wf")
        assert store.list() == []

    def test_delete_missing(self, store):
        with pytest.raises(WorkflowNotFoundError):
            store.delete("ghost")


class TestResolveName:
    """Explicit name, then configured default, then first stored."""

    def test_nothing_stored(self, store):
        with pytest.raises(WorkflowNotFoundError, match="No workflows"):
            store.resolve_name()

    def test_explicit_name(self, store, scenario_graph):
        store.save("a", scenario_graph)
        store.save("b", scenario_graph)
        assert store.resolve_name("b", default="a") == "b"

    def test_explicit_unknown_name(self, store, scenario_graph):
        store.save("a", scenario_graph)
        with pytest.raises(WorkflowNotFoundError) as exc_info:
            store.resolve_name("ghost")
        assert any("a" in s for s in exc_info.value.suggestions)

    def test_default_used_when_present(self, store, scenario_graph):
        store.save("a", scenario_graph)
        store.save("b", scenario_graph)
        assert store.resolve_name(None, default="b") == "b"

    def test_missing_default_falls_back_to_first(self, store, scenario_graph):
        store.save("b", scenario_graph)
        store.save("a", scenario_graph)
        assert store.resolve_name(None, default="ghost") == "a"

    def test_invalid_default_is_ignored(self, store, scenario_graph):
        store.save("a", scenario_graph)
        assert store.resolve_name(None, default="../x") == "a"
