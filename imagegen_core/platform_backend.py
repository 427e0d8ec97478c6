"""
imagegen_core - Hosted Platform Backend
=======================================

Submit a generation, then poll its status until ``completed`` or ``failed``.

Submit:  POST {base_url}{submit_path}
         {"prompt", "modelId"?, "aspectRatio", "referenceImages"?}
         -> {"generationId": "..."}
Status:  GET  {base_url}{status_path}
         -> {"status": "pending"|"completed"|"failed", "imageUrl"?, "error"?}
"""

import asyncio

import httpx

from .backends import ImageBackend
from .config import Settings, get_settings
from .exceptions import (
    GenerationFailedError,
    GenerationTimeoutError,
    NetworkError,
    NoOutputError,
    UpstreamRejectedError,
)
from .http_client import AsyncHttpClient, ensure_ok
from .logging_config import get_logger
from .models import Backend, GenerationRequest, GenerationResult, ProgressCallback, ProgressReporter
from .retry import run_with_deadline

logger = get_logger(__name__)

__all__ = ["PlatformBackend"]

STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"


class PlatformBackend(ImageBackend):
    """Adapter for the hosted generation platform."""

    backend = Backend.PLATFORM

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings or get_settings()
        self.config = self.settings.platform
        self._transport = transport
        self._http: AsyncHttpClient | None = None
        self._downloads: AsyncHttpClient | None = None

    def is_configured(self) -> bool:
        return self.config.is_configured

    @property
    def http(self) -> AsyncHttpClient:
        if self._http is None:
            token = self.config.api_token.get_secret_value() if self.config.api_token else ""
            self._http = AsyncHttpClient(
                base_url=self.config.base_url or "",
                timeout=self.config.timeout,
                headers={"Authorization": f"Bearer {token}"},
                transport=self._transport,
                settings=self.settings,
            )
        return self._http

    @property
    def downloads(self) -> AsyncHttpClient:
        """Client for the CDN links in ``imageUrl``. Carries no credentials."""
        if self._downloads is None:
            self._downloads = AsyncHttpClient(
                timeout=self.config.timeout, transport=self._transport, settings=self.settings
            )
        return self._downloads

    async def submit(self, request: GenerationRequest) -> str:
        """Submit one generation and return its id. Never retried."""
        body: dict = {
            "prompt": request.prompt,
            "aspectRatio": request.aspect_ratio or self.config.default_aspect_ratio,
        }
        model = request.model or self.config.default_model
        if model:
            body["modelId"] = model
        if request.reference_images:
            body["referenceImages"] = list(request.reference_images)

        endpoint = f"POST {self.config.submit_path}"
        response = ensure_ok(await self.http.post(self.config.submit_path, json=body), endpoint)
        data = self.http.json(response, endpoint)
        generation_id = None
        if isinstance(data, dict):
            generation_id = data.get("generationId") or data.get("id")
        if not generation_id:
            raise UpstreamRejectedError(
                endpoint,
                response.status_code,
                response.text,
                message=f"{endpoint} returned no generation id: {response.text[:200]}",
            )
        logger.info("Platform generation submitted", extra={"generation_id": generation_id})
        return str(generation_id)

    async def get_status(self, generation_id: str) -> dict:
        path = self.config.status_path.format(generation_id=generation_id)
        endpoint = f"GET {path}"
        response = ensure_ok(await self.http.get(path), endpoint)
        data = self.http.json(response, endpoint)
        return data if isinstance(data, dict) else {}

    async def _poll(self, generation_id: str, progress: ProgressReporter) -> dict:
        while True:
            await asyncio.sleep(self.config.poll_interval)
            try:
                status = await self.get_status(generation_id)
            except (NetworkError, UpstreamRejectedError) as e:
                if isinstance(e, UpstreamRejectedError) and (e.status_code or 500) < 500:
                    raise
                # Transient; the deadline bounds how long we keep trying
                logger.warning(
                    f"Status poll failed, retrying: {e.message}",
                    extra={"generation_id": generation_id},
                )
                await progress.update()
                continue

            state = str(status.get("status", "")).lower()
            if state == STATUS_COMPLETED:
                return status
            if state == STATUS_FAILED:
                reason = status.get("error") or "unknown error"
                raise GenerationFailedError(
                    "Platform reported the generation as failed",
                    reason=str(reason),
                    generation_id=generation_id,
                )
            await progress.update()

    async def generate(
        self, request: GenerationRequest, on_progress: ProgressCallback | None = None
    ) -> GenerationResult:
        progress = ProgressReporter(
            on_progress,
            interval=self.settings.generation.progress_interval,
            callback_timeout=self.settings.generation.progress_callback_timeout,
        )
        generation_id = await self.submit(request)
        await progress.notify(f"Generation submitted ({generation_id}), waiting for result...")

        deadline = self.settings.generation.deadline
        status = await run_with_deadline(
            self._poll(generation_id, progress),
            deadline,
            lambda: GenerationTimeoutError(timeout=deadline, generation_id=generation_id),
        )

        image_url = status.get("imageUrl")
        if not image_url:
            raise NoOutputError(
                "Platform reported completion without an image URL", generation_id=generation_id
            )

        image_bytes, content_type = await self.downloads.fetch_bytes(image_url)
        return GenerationResult(
            image_bytes=image_bytes,
            mime_type=content_type or "image/jpeg",
            backend=self.name,
            model=request.model or self.config.default_model,
            image_url=image_url,
        )

    async def aclose(self):
        for client in (self._http, self._downloads):
            if client is not None:
                await client.aclose()
        self._http = self._downloads = None
