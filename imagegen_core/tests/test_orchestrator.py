"""
Tests for backend resolution, admission, persistence and error classification.
"""

import asyncio
from pathlib import Path
from unittest.mock import patch

import httpx
import pytest

from imagegen_core.admission import AdmissionController
from imagegen_core.backends import ImageBackend
from imagegen_core.error_guidance import GUIDANCE, ErrorCategory
from imagegen_core.exceptions import (
    GenerationFailedError,
    GenerationTimeoutError,
    NotAvailableError,
    NotConfiguredError,
    UpstreamRejectedError,
)
from imagegen_core.local_pipeline import LocalPipelineBackend
from imagegen_core.logging_config import get_request_id
from imagegen_core.models import Backend, GenerationResult, build_request
from imagegen_core.orchestrator import Orchestrator
from imagegen_core.outputs import ImageSaver

from .conftest import PNG_BYTES


class FakeBackend(ImageBackend):
    """Scriptable adapter that records concurrency."""

    def __init__(self, backend, configured=True, delay=0.0, error=None):
        self.backend = backend
        self.configured = configured
        self.delay = delay
        self.error = error
        self.calls = 0
        self.active = 0
        self.peak = 0
        self.request_ids = []
        self.closed = False

    def is_configured(self):
        return self.configured

    async def generate(self, request, on_progress=None):
        self.calls += 1
        self.active += 1
        self.peak = max(self.peak, self.active)
        self.request_ids.append(get_request_id())
        try:
            await asyncio.sleep(self.delay)
            if self.error is not None:
                raise self.error
            return GenerationResult(image_bytes=PNG_BYTES, mime_type="image/png", backend=self.name)
        finally:
            self.active -= 1

    async def aclose(self):
        self.closed = True


def _orchestrator(settings, **backends):
    mapping = {Backend(name): b for name, b in backends.items()}
    return Orchestrator(settings, backends=mapping, admission=AdmissionController.from_settings(settings))


class TestResolveBackend:
    def test_nothing_configured(self, settings):
        orchestrator = _orchestrator(
            settings,
            platform=FakeBackend(Backend.PLATFORM, configured=False),
            local=FakeBackend(Backend.LOCAL, configured=False),
        )
        with pytest.raises(NotConfiguredError):
            orchestrator.resolve_backend()

    def test_requested_but_unconfigured(self, settings):
        orchestrator = _orchestrator(
            settings,
            openai=FakeBackend(Backend.OPENAI),
            local=FakeBackend(Backend.LOCAL, configured=False),
        )
        with pytest.raises(NotAvailableError) as exc_info:
            orchestrator.resolve_backend("local")
        assert exc_info.value.available == ["openai"]

    def test_preference_order(self, settings):
        orchestrator = _orchestrator(
            settings,
            local=FakeBackend(Backend.LOCAL),
            openai=FakeBackend(Backend.OPENAI),
            platform=FakeBackend(Backend.PLATFORM),
        )
        assert orchestrator.configured_backends() == [Backend.PLATFORM, Backend.OPENAI, Backend.LOCAL]
        assert orchestrator.resolve_backend().backend is Backend.PLATFORM
        assert orchestrator.resolve_backend(Backend.LOCAL).backend is Backend.LOCAL

    def test_configured_default(self, settings):
        settings.generation.default_backend = "local"
        orchestrator = _orchestrator(
            settings, openai=FakeBackend(Backend.OPENAI), local=FakeBackend(Backend.LOCAL)
        )
        assert orchestrator.resolve_backend().backend is Backend.LOCAL

    def test_unconfigured_default_is_skipped(self, settings):
        settings.generation.default_backend = "platform"
        orchestrator = _orchestrator(
            settings,
            platform=FakeBackend(Backend.PLATFORM, configured=False),
            local=FakeBackend(Backend.LOCAL),
        )
        assert orchestrator.resolve_backend().backend is Backend.LOCAL

    def test_local_with_zero_templates_is_not_available(self, settings, store):
        fake_transport = httpx.MockTransport(lambda r: pytest.fail(f"unexpected request {r.url}"))
        local = LocalPipelineBackend(store, settings, transport=fake_transport)
        orchestrator = _orchestrator(settings, openai=FakeBackend(Backend.OPENAI), local=local)
        with pytest.raises(NotAvailableError):
            orchestrator.resolve_backend("local")


class TestGenerate:
    @pytest.mark.asyncio
    async def test_result_saved(self, settings):
        orchestrator = _orchestrator(settings, openai=FakeBackend(Backend.OPENAI))
        result = await orchestrator.generate(build_request(prompt="fox"))
        assert result.saved_path is not None
        saved = Path(result.saved_path)
        assert saved.parent == settings.storage.output_dir
        assert saved.read_bytes() == PNG_BYTES
        assert saved.suffix == ".png"

    @pytest.mark.asyncio
    async def test_save_disabled(self, settings):
        settings.storage.save_outputs = False
        orchestrator = _orchestrator(settings, openai=FakeBackend(Backend.OPENAI))
        result = await orchestrator.generate(build_request(prompt="fox"))
        assert result.saved_path is None

    @pytest.mark.asyncio
    async def test_persistence_failure_is_a_warning(self, settings):
        orchestrator = _orchestrator(settings, openai=FakeBackend(Backend.OPENAI))
        with patch.object(ImageSaver, "save", side_effect=PermissionError("read-only")):
            result = await orchestrator.generate(build_request(prompt="fox"))
        assert result.image_bytes == PNG_BYTES
        assert result.saved_path is None
        assert len(result.warnings) == 1
        assert "read-only" in result.warnings[0]

    @pytest.mark.asyncio
    async def test_request_id_bound_during_generation(self, settings):
        backend = FakeBackend(Backend.OPENAI)
        orchestrator = _orchestrator(settings, openai=backend)
        await orchestrator.generate(build_request(prompt="fox"))
        assert backend.request_ids[0].startswith("gen-")
        assert get_request_id() is None

    @pytest.mark.asyncio
    async def test_local_runs_serially(self, settings):
        local = FakeBackend(Backend.LOCAL, delay=0.02)
        orchestrator = _orchestrator(settings, local=local)
        await asyncio.gather(*(orchestrator.generate(build_request(prompt=f"p{i}")) for i in range(4)))
        assert local.calls == 4
        assert local.peak == 1

    @pytest.mark.asyncio
    async def test_remote_capped_at_four(self, settings):
        platform = FakeBackend(Backend.PLATFORM, delay=0.02)
        openai = FakeBackend(Backend.OPENAI, delay=0.02)
        orchestrator = _orchestrator(settings, platform=platform, openai=openai)

        async def run(i):
            backend = "platform" if i % 2 else "openai"
            return await orchestrator.generate(build_request(prompt=f"p{i}", backend=backend))

        peak = 0

        async def watch():
            nonlocal peak
            for _ in range(20):
                peak = max(peak, platform.active + openai.active)
                await asyncio.sleep(0.005)

        await asyncio.gather(watch(), *(run(i) for i in range(10)))
        assert platform.calls + openai.calls == 10
        assert peak <= 4
        assert orchestrator.admission.status()["remote"]["in_use"] == 0

    @pytest.mark.asyncio
    async def test_local_does_not_block_remote(self, settings):
        local = FakeBackend(Backend.LOCAL, delay=0.5)
        openai = FakeBackend(Backend.OPENAI)
        orchestrator = _orchestrator(settings, local=local, openai=openai)
        slow = asyncio.create_task(orchestrator.generate(build_request(prompt="slow", backend="local")))
        await asyncio.sleep(0.01)
        await asyncio.wait_for(orchestrator.generate(build_request(prompt="fast", backend="openai")), timeout=0.3)
        await slow


class TestFailures:
    @pytest.mark.asyncio
    async def test_error_classified_and_permit_released(self, settings):
        error = UpstreamRejectedError("POST /api/generate", 400, "Content policy violation")
        orchestrator = _orchestrator(settings, platform=FakeBackend(Backend.PLATFORM, error=error))
        with pytest.raises(UpstreamRejectedError) as exc_info:
            await orchestrator.generate(build_request(prompt="fox"))
        raised = exc_info.value
        assert raised is error
        assert raised.category is ErrorCategory.CONTENT_SAFETY
        assert GUIDANCE[ErrorCategory.CONTENT_SAFETY] in raised.suggestions
        assert raised.request_id.startswith("gen-")
        assert orchestrator.admission.status()["remote"]["in_use"] == 0

    @pytest.mark.asyncio
    async def test_timeout_classified(self, settings):
        orchestrator = _orchestrator(
            settings, local=FakeBackend(Backend.LOCAL, error=GenerationTimeoutError(timeout=300))
        )
        with pytest.raises(GenerationTimeoutError) as exc_info:
            await orchestrator.generate(build_request(prompt="fox"))
        assert exc_info.value.category is ErrorCategory.TIMEOUT
        assert orchestrator.admission.status()["local"]["in_use"] == 0

    @pytest.mark.asyncio
    async def test_foreign_exception_wrapped(self, settings):
        orchestrator = _orchestrator(
            settings, openai=FakeBackend(Backend.OPENAI, error=RuntimeError("unexpected"))
        )
        with pytest.raises(GenerationFailedError) as exc_info:
            await orchestrator.generate(build_request(prompt="fox"))
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert exc_info.value.category is ErrorCategory.UNKNOWN

    @pytest.mark.asyncio
    async def test_not_configured_is_classified(self, settings):
        orchestrator = _orchestrator(settings, openai=FakeBackend(Backend.OPENAI, configured=False))
        with pytest.raises(NotConfiguredError) as exc_info:
            await orchestrator.generate(build_request(prompt="fox"))
        assert exc_info.value.category is not None

    @pytest.mark.asyncio
    async def test_cancelled_generation_releases_permit(self, settings):
        local = FakeBackend(Backend.LOCAL, delay=10)
        orchestrator = _orchestrator(settings, local=local)
        task = asyncio.create_task(orchestrator.generate(build_request(prompt="fox")))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert orchestrator.admission.status()["local"]["in_use"] == 0


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_aclose_closes_backends(self, settings):
        openai = FakeBackend(Backend.OPENAI)
        async with _orchestrator(settings, openai=openai):
            pass
        assert openai.closed
