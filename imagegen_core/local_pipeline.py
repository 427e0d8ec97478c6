"""
imagegen_core - Local Pipeline Backend
======================================

Runs stored workflow templates on a local ComfyUI-style server.

HTTP API used:
    GET  /                      liveness probe
    POST /upload/image          multipart upload -> {name, subfolder, type}
    GET  /models/checkpoints    checkpoint names
    POST /prompt                {prompt: graph, client_id} -> {prompt_id, node_errors?}
    GET  /history/{prompt_id}   {prompt_id: {status, outputs}}
    GET  /view                  raw image bytes

A run never touches the stored template: it works on a deep copy, so a
concurrent modify can only make the run use a slightly stale template.
"""

import asyncio
import re
import time
import uuid
from typing import Any

import httpx

from .backends import ImageBackend
from .config import Settings, get_settings
from .detection import NodeMap, calculate_size, detect
from .exceptions import (
    GenerationFailedError,
    GenerationTimeoutError,
    NetworkError,
    NodeError,
    NoOutputError,
    UpstreamRejectedError,
)
from .graph import WorkflowGraph
from .http_client import AsyncHttpClient, ensure_ok
from .logging_config import get_logger
from .models import Backend, GenerationRequest, GenerationResult, ProgressCallback, ProgressReporter
from .retry import run_with_deadline
from .workflow_store import WorkflowStore

logger = get_logger(__name__)

__all__ = [
    "LocalPipelineClient",
    "LocalPipelineBackend",
    "PreparedWorkflow",
    "NO_LOAD_IMAGE_WARNING",
    "NO_PROMPT_NODE_WARNING",
]

NO_LOAD_IMAGE_WARNING = (
    "The workflow has no LoadImage nodes, so reference images were not applied. "
    "Import a workflow that includes LoadImage nodes (e.g. an img2img workflow) "
    "to use reference images with the local pipeline."
)
NO_PROMPT_NODE_WARNING = (
    "No prompt node was detected in the workflow, so it was submitted unchanged. "
    "Set the prompt text with a workflow modify before generating."
)

_URL_IMAGE_EXT = re.compile(r"\.(jpe?g|png|webp|gif)(\?|$)", re.IGNORECASE)


# =============================================================================
# HTTP CLIENT
# =============================================================================


class LocalPipelineClient:
    """
    Async client for the local pipeline's HTTP API.

    Usage:
        async with LocalPipelineClient("http://localhost:8188") as client:
            if await client.check_connection():
                prompt_id = (await client.queue_prompt(graph))["prompt_id"]
    """

    def __init__(
        self,
        base_url: str | None = None,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings or get_settings()
        self.config = self.settings.local
        self.base_url = (base_url or self.config.url).rstrip("/")
        self.client_id = str(uuid.uuid4())
        self.http = AsyncHttpClient(
            base_url=self.base_url, transport=transport, settings=self.settings
        )

    async def check_connection(self, timeout: float | None = None) -> bool:
        """True if ``GET /`` answers with a 2xx within the probe timeout."""
        try:
            response = await self.http.get("/", timeout=timeout or self.config.probe_timeout)
        except NetworkError as e:
            logger.debug(f"Local pipeline probe failed: {e.message}")
            return False
        return response.is_success

    async def upload_image(self, data: bytes, filename: str, overwrite: bool = True) -> str:
        """Upload an image to the pipeline's input store; returns the stored name."""
        endpoint = "POST /upload/image"
        response = ensure_ok(
            await self.http.post(
                "/upload/image",
                files={"image": (filename, data)},
                data={"overwrite": "true" if overwrite else "false"},
            ),
            endpoint,
        )
        info = self.http.json(response, endpoint)
        name = info.get("name") if isinstance(info, dict) else None
        if not name:
            raise UpstreamRejectedError(
                endpoint, response.status_code, response.text, message=f"{endpoint} returned no name"
            )
        subfolder = info.get("subfolder") or ""
        return f"{subfolder}/{name}" if subfolder else name

    async def list_checkpoints(self) -> list[str]:
        """Checkpoint names, or ``[]`` if the pipeline cannot be asked."""
        try:
            response = ensure_ok(await self.http.get("/models/checkpoints"), "GET /models/checkpoints")
            data = self.http.json(response, "GET /models/checkpoints")
        except (NetworkError, UpstreamRejectedError) as e:
            logger.warning(f"Could not list checkpoints: {e.message}")
            return []
        return [str(n) for n in data] if isinstance(data, list) else []

    async def queue_prompt(self, graph: WorkflowGraph) -> dict[str, Any]:
        """
        Submit a graph.

        Raises:
            UpstreamRejectedError: non-2xx response (body kept verbatim)
            NodeError: response carries non-empty ``node_errors``
        """
        endpoint = "POST /prompt"
        response = await self.http.post(
            "/prompt",
            json={"prompt": graph.to_dict(), "client_id": self.client_id},
            timeout=self.config.timeout_queue,
        )
        if not response.is_success:
            node_errors = _node_errors_from(response)
            if node_errors:
                raise NodeError(node_errors, details={"status_code": response.status_code})
        ensure_ok(response, endpoint)

        data = self.http.json(response, endpoint)
        if not isinstance(data, dict):
            data = {}
        node_errors = data.get("node_errors")
        if node_errors:
            raise NodeError(node_errors)
        if not data.get("prompt_id"):
            raise UpstreamRejectedError(
                endpoint, response.status_code, response.text, message=f"{endpoint} returned no prompt_id"
            )
        return data

    async def get_history(self, prompt_id: str) -> dict[str, Any] | None:
        """History entry for ``prompt_id``, ``None`` while the server has none."""
        endpoint = f"GET /history/{prompt_id}"
        response = ensure_ok(await self.http.get(f"/history/{prompt_id}"), endpoint)
        data = self.http.json(response, endpoint)
        if isinstance(data, dict):
            entry = data.get(prompt_id)
            if isinstance(entry, dict):
                return entry
        return None

    async def get_image(
        self, filename: str, subfolder: str = "", folder_type: str = "output"
    ) -> tuple[bytes, str | None]:
        """Download an output image via ``/view``."""
        return await self.http.fetch_bytes(
            "/view",
            params={"filename": filename, "subfolder": subfolder, "type": folder_type},
            timeout=self.config.timeout_image,
        )

    async def fetch_url(self, url: str) -> tuple[bytes, str | None]:
        """Download an arbitrary URL (reference images)."""
        return await self.http.fetch_bytes(url)

    async def aclose(self):
        await self.http.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
        return False


def _node_errors_from(response: httpx.Response) -> dict | None:
    try:
        data = response.json()
    except ValueError:
        return None
    if isinstance(data, dict) and isinstance(data.get("node_errors"), dict):
        return data["node_errors"] or None
    return None


# =============================================================================
# BACKEND
# =============================================================================


class PreparedWorkflow:
    """The private copy of a template that will be submitted, plus what was done to it."""

    def __init__(self, name: str, graph: WorkflowGraph, node_map: NodeMap):
        self.name = name
        self.graph = graph
        self.node_map = node_map
        self.warnings: list[str] = []
        self.injected_references: list[str] = []


class LocalPipelineBackend(ImageBackend):
    """Adapter that turns a request into a run of a stored workflow template."""

    backend = Backend.LOCAL

    def __init__(
        self,
        store: WorkflowStore | None = None,
        settings: Settings | None = None,
        client: LocalPipelineClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings or get_settings()
        self.config = self.settings.local
        self.store = store or WorkflowStore(self.settings.storage.workflows_dir)
        self.client = client or LocalPipelineClient(settings=self.settings, transport=transport)

    def is_configured(self) -> bool:
        return bool(self.store.list())

    def resolve_workflow(self, name: str | None) -> str:
        return self.store.resolve_name(name, self.config.default_workflow)

    async def prepare(self, name: str, request: GenerationRequest) -> PreparedWorkflow:
        """Copy the template and inject prompt, reference images and size."""
        graph = self.store.load(name).copy()
        node_map = detect(graph)
        prepared = PreparedWorkflow(name, graph, node_map)

        prompt_node = graph.get(node_map.positive_prompt)
        if prompt_node is not None:
            prompt_node.set_literal("text", request.prompt)
        else:
            prepared.warnings.append(NO_PROMPT_NODE_WARNING)
            logger.warning("No prompt node detected", extra={"workflow": name})

        negative_node = graph.get(node_map.negative_prompt)
        if request.negative_prompt and negative_node is not None:
            negative_node.set_literal("text", request.negative_prompt)

        if request.reference_images:
            await self._inject_references(prepared, list(request.reference_images))

        if self.config.apply_aspect_ratio and request.aspect_ratio:
            self._apply_aspect_ratio(prepared, request.aspect_ratio)

        return prepared

    async def _inject_references(self, prepared: PreparedWorkflow, urls: list[str]):
        load_nodes = prepared.node_map.load_images
        if not load_nodes:
            prepared.warnings.append(NO_LOAD_IMAGE_WARNING)
            logger.warning(
                "Reference images requested but workflow has no LoadImage nodes",
                extra={"workflow": prepared.name, "requested": len(urls)},
            )
            return

        count = min(len(urls), len(load_nodes))
        stamp = int(time.time() * 1000)
        for i in range(count):
            url, node_id = urls[i], load_nodes[i]
            data, _ = await self.client.fetch_url(url)
            match = _URL_IMAGE_EXT.search(url)
            ext = match.group(1).lower() if match else "png"
            uploaded = await self.client.upload_image(data, f"ref_{stamp}_{i}.{ext}")
            prepared.graph[node_id].set_literal("image", uploaded)
            prepared.injected_references.append(node_id)

        if len(urls) > count:
            logger.info(
                "Dropped extra reference images",
                extra={"workflow": prepared.name, "requested": len(urls), "used": count},
            )

    def _apply_aspect_ratio(self, prepared: PreparedWorkflow, aspect_ratio: str):
        latent = prepared.graph.get(prepared.node_map.latent_image)
        if latent is None:
            return
        width, height = latent.literal("width"), latent.literal("height")
        if not isinstance(width, int) or not isinstance(height, int) or isinstance(width, bool):
            return
        new_width, new_height = calculate_size(aspect_ratio, width, height)
        latent.set_literal("width", new_width)
        latent.set_literal("height", new_height)

    async def _wait_for_completion(self, prompt_id: str, progress: ProgressReporter) -> dict:
        while True:
            await asyncio.sleep(self.config.poll_interval)
            await progress.update()
            try:
                entry = await self.client.get_history(prompt_id)
            except (NetworkError, UpstreamRejectedError) as e:
                logger.warning(
                    f"History poll failed, retrying: {e.message}", extra={"prompt_id": prompt_id}
                )
                continue
            if entry is None:
                continue

            status = entry.get("status")
            if not isinstance(status, dict):
                status = {}
            if status.get("status_str") == "error":
                raise GenerationFailedError(
                    "Local pipeline reported the run as failed",
                    reason=_execution_error(status),
                    generation_id=prompt_id,
                )
            if status.get("completed") or status.get("status_str") == "success":
                return entry

    @staticmethod
    def select_output_image(entry: dict, output_node: str | None) -> dict | None:
        """
        Pick the image to return from a finished run.

        The detected output node wins when it produced images; otherwise the
        first output with images, in the order the server reported them.
        """
        outputs = entry.get("outputs") or {}
        if not isinstance(outputs, dict):
            return None
        ordered = list(outputs.items())
        if output_node is not None and output_node in outputs:
            ordered.sort(key=lambda item: item[0] != output_node)
        for _, output in ordered:
            images = output.get("images") if isinstance(output, dict) else None
            if images and isinstance(images[0], dict) and images[0].get("filename"):
                return images[0]
        return None

    async def generate(
        self, request: GenerationRequest, on_progress: ProgressCallback | None = None
    ) -> GenerationResult:
        # Name resolution needs no network; fail fast if nothing is stored
        name = self.resolve_workflow(request.workflow)

        if not await self.client.check_connection():
            raise NetworkError(
                f"Local pipeline is not reachable at {self.client.base_url}",
                url=self.client.base_url,
                suggestions=["Start the local pipeline server", "Check IMAGEGEN_LOCAL__URL"],
            )

        progress = ProgressReporter(
            on_progress,
            interval=self.settings.generation.progress_interval,
            callback_timeout=self.settings.generation.progress_callback_timeout,
        )
        prepared = await self.prepare(name, request)

        queued = await self.client.queue_prompt(prepared.graph)
        prompt_id = str(queued["prompt_id"])
        logger.info(
            "Workflow queued",
            extra={
                "workflow": name,
                "prompt_id": prompt_id,
                "references": len(prepared.injected_references),
            },
        )
        await progress.notify(f"Submitted workflow '{name}' to the local pipeline...")

        deadline = self.settings.generation.deadline
        entry = await run_with_deadline(
            self._wait_for_completion(prompt_id, progress),
            deadline,
            lambda: GenerationTimeoutError(
                f"Local pipeline generation timed out after {deadline:g}s",
                timeout=deadline,
                generation_id=prompt_id,
            ),
        )

        image = self.select_output_image(entry, prepared.node_map.output)
        if image is None:
            raise NoOutputError(
                "Local pipeline run completed without output images", generation_id=prompt_id
            )

        image_bytes, content_type = await self.client.get_image(
            image["filename"], image.get("subfolder", ""), image.get("type", "output")
        )
        return GenerationResult(
            image_bytes=image_bytes,
            mime_type=content_type or "image/png",
            warnings=list(prepared.warnings),
            backend=self.name,
            workflow=name,
        )

    async def list_checkpoints(self) -> list[str]:
        return await self.client.list_checkpoints()

    async def aclose(self):
        await self.client.aclose()


def _execution_error(status: dict) -> str | None:
    messages = status.get("messages")
    for message in messages if isinstance(messages, list) else []:
        if (
            isinstance(message, list)
            and len(message) == 2
            and message[0] == "execution_error"
            and isinstance(message[1], dict)
        ):
            detail = message[1]
            node = detail.get("node_type") or detail.get("node_id")
            text = detail.get("exception_message") or "execution error"
            return f"{node}: {text}" if node else str(text)
    return None
