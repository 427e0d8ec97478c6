"""
Tests for the tool-facing workflow operations.
"""

import json

import pytest

from imagegen_core.exceptions import (
    InvalidParameterError,
    ValidationError,
    WorkflowNotFoundError,
    WorkflowParseError,
)
from imagegen_core.models import Backend, GenerationResult
from imagegen_core.orchestrator import Orchestrator
from imagegen_core.tools import ImageTools

from .conftest import IMG2IMG_GRAPH, PNG_BYTES, SCENARIO_GRAPH, TXT2IMG_GRAPH


@pytest.fixture
def tools(settings, store):
    return ImageTools(settings, store)


@pytest.fixture
def workflow_file(tmp_path):
    def write(name, data):
        path = tmp_path / "downloads" / name
        path.parent.mkdir(exist_ok=True)
        path.write_text(data if isinstance(data, str) else json.dumps(data), encoding="utf-8")
        return path

    return write


class TestImport:
    def test_import_first_workflow(self, tools, workflow_file):
        path = workflow_file("portrait_api.json", TXT2IMG_GRAPH)
        report = tools.import_workflow(str(path))
        assert report.name == "portrait_api"
        assert report.is_first
        assert not report.overwritten
        assert report.node_map.positive_prompt == "6"
        assert report.summary.steps == 25
        assert tools.store.load("portrait_api").to_dict() == TXT2IMG_GRAPH

        text = report.to_text()
        assert 'Workflow "portrait_api" imported.' in text
        assert "Prompt injection: Node #6" in text
        assert "used by default" in text

    def test_import_with_name_and_overwrite(self, tools, workflow_file):
        path = workflow_file("a.json", SCENARIO_GRAPH)
        tools.import_workflow(str(path), name="scenario")
        report = tools.import_workflow(str(path), name="scenario")
        assert report.overwritten
        assert not report.is_first
        assert "updated" in report.to_text()

    def test_import_reports_reference_nodes(self, tools, workflow_file):
        report = tools.import_workflow(str(workflow_file("img2img.json", IMG2IMG_GRAPH)))
        assert "Reference images: Node #10, #11" in report.to_text()

    def test_import_without_prompt_node(self, tools, workflow_file):
        path = workflow_file("bare.json", {"1": {"class_type": "VAEDecode", "inputs": {}}})
        assert "not detected" in tools.import_workflow(str(path)).to_text()

    def test_invalid_json(self, tools, workflow_file):
        with pytest.raises(WorkflowParseError):
            tools.import_workflow(str(workflow_file("bad.json", "{nope")))

    @pytest.mark.parametrize("data", [[], {}, "just a string"])
    def test_not_a_graph(self, tools, workflow_file, data):
        with pytest.raises(ValidationError):
            tools.import_workflow(str(workflow_file("bad.json", data)))

    def test_missing_file(self, tools, tmp_path):
        with pytest.raises(ValidationError):
            tools.import_workflow(str(tmp_path / "nope.json"))

    def test_bad_target_name(self, tools, workflow_file):
        with pytest.raises(InvalidParameterError):
            tools.import_workflow(str(workflow_file("a.json", SCENARIO_GRAPH)), name="../x")
        assert tools.store.list() == []


class TestModify:
    """The modify scenario and its failure modes."""

    @pytest.fixture
    def scenario(self, tools, scenario_graph):
        tools.store.save("scenario", scenario_graph)
        return tools

    def test_set_steps(self, scenario):
        report = scenario.modify_workflow("3", "steps", "30", name="scenario")
        assert (report.old_value, report.new_value) == (20, 30)
        assert report.kind == "KSampler"
        assert "steps: 20 -> 30" in report.to_text()
        assert scenario.store.load("scenario")["3"].literal("steps") == 30

    def test_invalid_json_rejected(self, scenario):
        with pytest.raises(ValidationError):
            scenario.modify_workflow("3", "steps", "not-a-number", name="scenario")
        assert scenario.store.load("scenario")["3"].literal("steps") == 20

    def test_json_string_accepted(self, scenario):
        report = scenario.modify_workflow("3", "steps", '"not-a-number"', name="scenario")
        assert report.new_value == "not-a-number"
        assert scenario.store.load("scenario")["3"].literal("steps") == "not-a-number"

    def test_uses_default_workflow(self, scenario):
        report = scenario.modify_workflow("5", "text", '"a castle"')
        assert report.name == "scenario"
        assert report.old_value == "old"

    def test_edge_value_is_rewired(self, scenario):
        scenario.modify_workflow("3", "positive", '["5", 1]', name="scenario")
        stored = json.loads(scenario.store.read_raw("scenario"))
        assert stored["3"]["inputs"]["positive"] == ["5", 1]

    def test_unknown_node(self, scenario):
        with pytest.raises(ValidationError, match="Node #42 not found"):
            scenario.modify_workflow("42", "steps", "30", name="scenario")

    def test_unknown_input_lists_available(self, scenario):
        with pytest.raises(ValidationError) as exc_info:
            scenario.modify_workflow("3", "cfg", "7", name="scenario")
        assert exc_info.value.details["available_inputs"] == ["steps"]

    def test_unknown_workflow(self, scenario):
        with pytest.raises(WorkflowNotFoundError):
            scenario.modify_workflow("3", "steps", "30", name="ghost")

    def test_missing_arguments(self, scenario):
        with pytest.raises(ValidationError):
            scenario.modify_workflow("", "steps", "30")


class TestListViewDelete:
    def test_empty_list_gives_setup_instructions(self, tools):
        assert tools.list_workflows() == []
        assert "Save (API Format)" in tools.list_workflows_text()

    def test_list_marks_default(self, tools, settings, scenario_graph, txt2img_graph):
        tools.store.save("a", scenario_graph)
        tools.store.save("b", txt2img_graph)
        listings = tools.list_workflows()
        assert [(item.name, item.is_default) for item in listings] == [("a", True), ("b", False)]

        settings.local.default_workflow = "b"
        assert [item.is_default for item in tools.list_workflows()] == [False, True]
        text = tools.list_workflows_text()
        assert "2. b (default)" in text
        assert "sdxl_base.safetensors" in text

    def test_list_survives_corrupt_file(self, tools, scenario_graph):
        tools.store.save("good", scenario_graph)
        (tools.store.directory / "bad.json").write_text("{", encoding="utf-8")
        listings = {item.name: item for item in tools.list_workflows()}
        assert listings["bad"].summary is None
        assert listings["bad"].error
        assert listings["good"].summary.steps == 20
        assert "error reading workflow" in tools.list_workflows_text()

    def test_view(self, tools, txt2img_graph):
        tools.store.save("sdxl", txt2img_graph)
        text = tools.view_workflow()
        assert text.startswith("Workflow: sdxl")
        assert "Node #3 (KSampler)" in text

    def test_view_nothing_stored(self, tools):
        with pytest.raises(WorkflowNotFoundError):
            tools.view_workflow()

    def test_delete(self, tools, scenario_graph):
        tools.store.save("scenario", scenario_graph)
        assert tools.delete_workflow("scenario") == 'Workflow "scenario" deleted.'
        assert tools.store.list() == []

    def test_delete_missing(self, tools):
        with pytest.raises(WorkflowNotFoundError):
            tools.delete_workflow("ghost")


class RecordingOrchestrator(Orchestrator):
    def __init__(self, settings):
        super().__init__(settings, backends={})
        self.requests = []

    async def generate(self, request, on_progress=None):
        self.requests.append(request)
        return GenerationResult(image_bytes=PNG_BYTES, mime_type="image/png", backend=request.backend)


class TestGenerateImage:
    @pytest.mark.asyncio
    async def test_builds_request(self, settings, store):
        orchestrator = RecordingOrchestrator(settings)
        tools = ImageTools(settings, store, orchestrator)
        await tools.generate_image(
            "a red fox", backend="local", workflow="portrait", reference_images=["https://x.test/a.png"]
        )
        (request,) = orchestrator.requests
        assert request.prompt == "a red fox"
        assert request.backend is Backend.LOCAL
        assert request.workflow == "portrait"
        assert request.reference_images == ("https://x.test/a.png",)

    @pytest.mark.asyncio
    async def test_invalid_request_never_reaches_orchestrator(self, settings, store):
        orchestrator = RecordingOrchestrator(settings)
        tools = ImageTools(settings, store, orchestrator)
        with pytest.raises(ValidationError):
            await tools.generate_image("   ")
        assert orchestrator.requests == []

    @pytest.mark.asyncio
    async def test_list_checkpoints_without_local_backend(self, settings, store):
        tools = ImageTools(settings, store, RecordingOrchestrator(settings))
        assert await tools.list_checkpoints() == []
