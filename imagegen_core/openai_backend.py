"""
imagegen_core - OpenAI-Compatible Backend
=========================================

Single request/response against an OpenAI-compatible images API.

Without reference images:  POST {base}/images/generations  (JSON)
With reference images:     POST {base}/images/edits        (multipart, image[])

The response carries ``data[0].b64_json`` or ``data[0].url``. Any non-2xx
status surfaces the upstream body verbatim inside ``UpstreamRejectedError``.
"""

import base64
import binascii

import httpx

from .backends import ImageBackend
from .config import Settings, get_settings
from .exceptions import NoOutputError, UpstreamRejectedError
from .http_client import AsyncHttpClient, ensure_ok
from .logging_config import get_logger
from .models import Backend, GenerationRequest, GenerationResult, ProgressCallback, ProgressReporter
from .outputs import extension_for_mime, mime_from_filename, sniff_mime_type

logger = get_logger(__name__)

__all__ = ["OpenAIBackend"]

GENERATIONS_PATH = "/images/generations"
EDITS_PATH = "/images/edits"


class OpenAIBackend(ImageBackend):
    """Adapter for OpenAI-compatible image endpoints."""

    backend = Backend.OPENAI

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings or get_settings()
        self.config = self.settings.openai
        self._transport = transport
        self._http: AsyncHttpClient | None = None
        self._downloads: AsyncHttpClient | None = None

    def is_configured(self) -> bool:
        return self.config.is_configured

    @property
    def http(self) -> AsyncHttpClient:
        if self._http is None:
            key = self.config.api_key.get_secret_value() if self.config.api_key else ""
            self._http = AsyncHttpClient(
                base_url=self.config.base_url,
                timeout=self.config.timeout,
                headers={"Authorization": f"Bearer {key}"},
                transport=self._transport,
                settings=self.settings,
            )
        return self._http

    @property
    def downloads(self) -> AsyncHttpClient:
        """Client for reference images and ``data[0].url``. Never sends the API key."""
        if self._downloads is None:
            self._downloads = AsyncHttpClient(
                timeout=self.config.timeout, transport=self._transport, settings=self.settings
            )
        return self._downloads

    @staticmethod
    def build_prompt(request: GenerationRequest) -> str:
        # The images API has no negative prompt field
        if request.negative_prompt:
            return f"{request.prompt}\n\nAvoid: {request.negative_prompt}"
        return request.prompt

    def _common_fields(self, request: GenerationRequest) -> dict[str, str]:
        fields = {
            "model": request.model or self.config.model,
            "prompt": self.build_prompt(request),
        }
        if request.size:
            fields["size"] = request.size
        if request.quality:
            fields["quality"] = request.quality
        return fields

    async def _create(self, request: GenerationRequest) -> dict:
        body: dict = {**self._common_fields(request), "n": 1}
        endpoint = f"POST {GENERATIONS_PATH}"
        response = ensure_ok(await self.http.post(GENERATIONS_PATH, json=body), endpoint)
        return self.http.json(response, endpoint)

    async def _edit(self, request: GenerationRequest) -> dict:
        files = []
        for i, url in enumerate(request.reference_images):
            data, content_type = await self.downloads.fetch_bytes(url)
            mime = content_type or sniff_mime_type(data, default=mime_from_filename(url))
            files.append(("image[]", (f"reference_{i}.{extension_for_mime(mime)}", data, mime)))

        endpoint = f"POST {EDITS_PATH}"
        response = ensure_ok(
            await self.http.post(EDITS_PATH, data=self._common_fields(request), files=files),
            endpoint,
        )
        return self.http.json(response, endpoint)

    async def _decode(self, payload: dict) -> tuple[bytes, str | None]:
        items = payload.get("data") if isinstance(payload, dict) else None
        if not items or not isinstance(items, list) or not isinstance(items[0], dict):
            raise NoOutputError("Images API response has no data")
        item = items[0]

        if isinstance(item.get("b64_json"), str):
            try:
                return base64.b64decode(item["b64_json"]), None
            except (binascii.Error, ValueError) as e:
                raise UpstreamRejectedError(
                    f"POST {GENERATIONS_PATH}",
                    None,
                    message=f"Images API returned undecodable b64_json: {e}",
                )
        if isinstance(item.get("url"), str):
            return await self.downloads.fetch_bytes(item["url"])
        raise NoOutputError("Images API response has neither b64_json nor url")

    async def generate(
        self, request: GenerationRequest, on_progress: ProgressCallback | None = None
    ) -> GenerationResult:
        progress = ProgressReporter(
            on_progress,
            interval=self.settings.generation.progress_interval,
            callback_timeout=self.settings.generation.progress_callback_timeout,
        )
        await progress.notify("Sending request to the images API...")

        if request.reference_images:
            payload = await self._edit(request)
        else:
            payload = await self._create(request)

        image_bytes, content_type = await self._decode(payload)
        mime_type = sniff_mime_type(image_bytes, default=content_type or "image/png")

        logger.info(
            "OpenAI-compatible generation complete",
            extra={"size_bytes": len(image_bytes), "references": len(request.reference_images)},
        )
        return GenerationResult(
            image_bytes=image_bytes,
            mime_type=mime_type,
            backend=self.name,
            model=request.model or self.config.model,
        )

    async def aclose(self):
        for client in (self._http, self._downloads):
            if client is not None:
                await client.aclose()
        self._http = self._downloads = None
