"""
imagegen_core - Backend Adapter Contract
========================================

All three adapters (platform, OpenAI-compatible, local pipeline) implement
``ImageBackend``. The orchestrator only ever talks to this interface.
"""

from abc import ABC, abstractmethod

from .models import Backend, GenerationRequest, GenerationResult, ProgressCallback

__all__ = ["ImageBackend"]


class ImageBackend(ABC):
    """
    One generation backend.

    ``generate`` either returns a result or raises an ``ImageGenError``. The
    progress callback is optional; adapters wrap it in ``ProgressReporter``
    so it can never block or fail a generation.
    """

    backend: Backend

    @property
    def name(self) -> str:
        return self.backend.value

    @property
    def pool(self) -> str:
        return self.backend.pool

    @abstractmethod
    def is_configured(self) -> bool:
        """True when this backend has what it needs to accept work."""

    @abstractmethod
    async def generate(
        self, request: GenerationRequest, on_progress: ProgressCallback | None = None
    ) -> GenerationResult:
        """Run one generation to completion."""

    async def aclose(self):
        """Release network resources."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(configured={self.is_configured()})"
