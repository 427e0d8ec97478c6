"""
imagegen_core - Generation Orchestrator
=======================================

Resolves the backend, takes an admission permit, runs the adapter, saves the
image and classifies failures.

Usage:
    async with Orchestrator() as orchestrator:
        result = await orchestrator.generate(build_request(prompt="a red fox"))
        print(result.saved_path, result.warnings)
"""

import uuid

from .admission import AdmissionController
from .backends import ImageBackend
from .config import Settings, get_settings
from .error_guidance import apply_guidance
from .exceptions import NotAvailableError, NotConfiguredError, PersistenceWarning
from .local_pipeline import LocalPipelineBackend
from .logging_config import LogContext, get_logger, log_timing
from .models import Backend, GenerationRequest, GenerationResult, ProgressCallback
from .openai_backend import OpenAIBackend
from .outputs import ImageSaver
from .platform_backend import PlatformBackend
from .workflow_store import WorkflowStore

logger = get_logger(__name__)

__all__ = ["Orchestrator", "BACKEND_PREFERENCE"]

BACKEND_PREFERENCE = (Backend.PLATFORM, Backend.OPENAI, Backend.LOCAL)


class Orchestrator:
    """
    Entry point for image generation.

    Everything is injectable so tests can use fresh pools, temp directories
    and fake transports.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        store: WorkflowStore | None = None,
        admission: AdmissionController | None = None,
        backends: dict[Backend, ImageBackend] | None = None,
        saver: ImageSaver | None = None,
    ):
        self.settings = settings or get_settings()
        self.store = store or WorkflowStore(self.settings.storage.workflows_dir)
        self.admission = admission or AdmissionController.from_settings(self.settings)
        if backends is None:
            backends = {
                Backend.PLATFORM: PlatformBackend(self.settings),
                Backend.OPENAI: OpenAIBackend(self.settings),
                Backend.LOCAL: LocalPipelineBackend(self.store, self.settings),
            }
        self.backends = backends
        if saver is None and self.settings.storage.save_outputs:
            saver = ImageSaver(self.settings.storage.output_dir)
        self.saver = saver

    # -------------------------------------------------------------------------
    # Backend resolution
    # -------------------------------------------------------------------------

    def configured_backends(self) -> list[Backend]:
        """Configured backends in preference order."""
        return [
            b for b in BACKEND_PREFERENCE if b in self.backends and self.backends[b].is_configured()
        ]

    def resolve_backend(self, requested: Backend | str | None = None) -> ImageBackend:
        """
        Pick the backend for a request.

        Raises:
            NotConfiguredError: nothing is configured
            NotAvailableError: ``requested`` is not configured
        """
        available = self.configured_backends()
        if not available:
            raise NotConfiguredError()

        if requested is not None:
            requested = Backend(requested)
            if requested not in available:
                raise NotAvailableError(requested.value, [b.value for b in available])
            return self.backends[requested]

        default = self.settings.generation.default_backend
        if default and Backend(default) in available:
            return self.backends[Backend(default)]
        return self.backends[available[0]]

    # -------------------------------------------------------------------------
    # Generation
    # -------------------------------------------------------------------------

    async def generate(
        self, request: GenerationRequest, on_progress: ProgressCallback | None = None
    ) -> GenerationResult:
        """
        Run one generation end to end.

        Raises:
            ImageGenError: classified, with ``category`` set and a hint in ``suggestions``
        """
        request_id = f"gen-{uuid.uuid4().hex[:8]}"
        with LogContext(request_id):
            try:
                backend = self.resolve_backend(request.backend)
                logger.info(
                    "Generation requested",
                    extra={"backend": backend.name, "pool": backend.pool, "workflow": request.workflow},
                )
                with log_timing(logger, "generate", backend=backend.name):
                    async with self.admission.permit(backend.pool):
                        result = await backend.generate(request, on_progress)
            except Exception as e:
                error = apply_guidance(e)
                error.request_id = error.request_id or request_id
                logger.warning(
                    f"Generation failed: {error.message}",
                    extra={
                        "code": error.code,
                        "category": error.category.value if error.category else None,
                    },
                )
                if error is e:
                    raise
                raise error from e

            self._persist(result)
            return result

    def _persist(self, result: GenerationResult):
        if self.saver is None:
            return
        try:
            path = self.saver.save(result.image_bytes, result.mime_type)
        except OSError as e:
            warning = PersistenceWarning(path=str(self.saver.output_dir), cause=e)
            logger.warning(warning.developer_message)
            result.warnings.append(warning.message)
            return
        result.saved_path = str(path)
        logger.info("Image saved", extra={"path": result.saved_path})

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def aclose(self):
        for backend in self.backends.values():
            await backend.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
        return False
