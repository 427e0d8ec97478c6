"""
imagegen_core - Request and Result Models
=========================================

``GenerationRequest`` is a pydantic model: every tool-facing call is
validated once, at the boundary, and adapters receive clean values.
"""

import asyncio
import inspect
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .admission import LOCAL_POOL, REMOTE_POOL
from .exceptions import InvalidParameterError, InvalidPromptError
from .logging_config import get_logger
from .validation import (
    DANGEROUS_CHARS,
    MAX_PROMPT_LENGTH,
    validate_prompt,
    validate_reference_url,
    validate_workflow_name,
)

logger = get_logger(__name__)

__all__ = [
    "Backend",
    "GenerationRequest",
    "GenerationResult",
    "ProgressCallback",
    "ProgressReporter",
    "build_request",
]


class Backend(str, Enum):
    """The three interchangeable generation backends, in preference order."""

    PLATFORM = "platform"
    OPENAI = "openai"
    LOCAL = "local"

    @property
    def pool(self) -> str:
        """Admission pool this backend draws from."""
        return LOCAL_POOL if self is Backend.LOCAL else REMOTE_POOL


class GenerationRequest(BaseModel):
    """Validated generation request."""

    model_config = ConfigDict(
        str_strip_whitespace=True,
        extra="forbid",
        frozen=True,
    )

    prompt: str = Field(..., min_length=1, max_length=MAX_PROMPT_LENGTH)
    model: str | None = None
    size: str | None = Field(default=None, description="WIDTHxHEIGHT, e.g. 1024x1024")
    aspect_ratio: str | None = Field(default=None, description="e.g. 1:1, 16:9")
    quality: str | None = None
    reference_images: tuple[str, ...] = ()
    negative_prompt: str | None = Field(default=None, max_length=5000)
    backend: Backend | None = None
    workflow: str | None = None

    @field_validator("prompt", mode="before")
    @classmethod
    def _clean_prompt(cls, v):
        return validate_prompt(v) if isinstance(v, str) else v

    @field_validator("negative_prompt", mode="before")
    @classmethod
    def _strip_dangerous(cls, v):
        if isinstance(v, str):
            for char in DANGEROUS_CHARS:
                v = v.replace(char, "")
        return v

    @field_validator("model", "size", "aspect_ratio", "quality", "negative_prompt", "workflow")
    @classmethod
    def _empty_is_none(cls, v: str | None) -> str | None:
        return v or None

    @field_validator("size")
    @classmethod
    def _check_size(cls, v: str | None) -> str | None:
        if v is None or v == "auto":
            return v
        width, sep, height = v.lower().partition("x")
        if not sep or not width.isdigit() or not height.isdigit():
            raise ValueError("size must look like 1024x1024")
        return f"{int(width)}x{int(height)}"

    @field_validator("reference_images", mode="before")
    @classmethod
    def _check_references(cls, v):
        if v is None:
            return ()
        if isinstance(v, str):
            v = [v]
        return tuple(validate_reference_url(url) for url in v)

    @field_validator("workflow")
    @classmethod
    def _check_workflow(cls, v: str | None) -> str | None:
        return validate_workflow_name(v) if v else None


def build_request(**fields) -> GenerationRequest:
    """
    Construct a ``GenerationRequest``, turning pydantic errors into ``ValidationError``.

    Unset (``None``) fields are dropped so defaults apply. Checks that raise
    ``ValidationError`` themselves (prompts, reference URLs, workflow names) pass
    through unchanged.
    """
    fields = {k: v for k, v in fields.items() if v is not None}
    try:
        return GenerationRequest(**fields)
    except PydanticValidationError as e:
        errors = e.errors()
        first = errors[0] if errors else {}
        loc = ".".join(str(p) for p in first.get("loc", ())) or "request"
        message = first.get("msg", "invalid request")
        if loc == "prompt":
            raise InvalidPromptError(f"Invalid prompt: {message}") from e
        raise InvalidParameterError(
            loc,
            first.get("input"),
            message,
            details={"errors": [f"{'.'.join(map(str, err['loc']))}: {err['msg']}" for err in errors]},
        ) from e


@dataclass
class GenerationResult:
    """Image bytes plus anything the caller should be told about the run."""

    image_bytes: bytes
    mime_type: str
    warnings: list[str] = field(default_factory=list)
    backend: str | None = None
    model: str | None = None
    workflow: str | None = None
    image_url: str | None = None
    saved_path: str | None = None

    @property
    def size_bytes(self) -> int:
        return len(self.image_bytes)


# =============================================================================
# PROGRESS
# =============================================================================

ProgressCallback = Callable[[float, str], Union[None, Awaitable[None]]]


class ProgressReporter:
    """
    Rate-limited, failure-proof wrapper around a progress callback.

    ``update`` forwards to the callback at most once per ``interval`` seconds
    of elapsed wait; ``notify`` always forwards. Any exception raised by the
    callback is logged and dropped, and async callbacks are cut off after
    ``callback_timeout`` seconds.
    """

    def __init__(
        self,
        callback: ProgressCallback | None,
        interval: float = 15.0,
        callback_timeout: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.callback = callback
        self.interval = interval
        self.callback_timeout = callback_timeout
        self._clock = clock
        self._started = clock()
        self._last_report: float | None = None

    @property
    def elapsed(self) -> float:
        return self._clock() - self._started

    async def notify(self, message: str):
        """Report immediately (submission notices)."""
        await self._invoke(self.elapsed, message)

    async def update(self, message: str | None = None):
        """Report liveness if ``interval`` has passed since the last periodic report."""
        elapsed = self.elapsed
        last = self._last_report if self._last_report is not None else 0.0
        if elapsed - last < self.interval:
            return
        self._last_report = elapsed
        await self._invoke(elapsed, message or f"Still generating... {int(elapsed)}s elapsed")

    async def _invoke(self, elapsed: float, message: str):
        if self.callback is None:
            return
        try:
            outcome = self.callback(elapsed, message)
            if inspect.isawaitable(outcome):
                await asyncio.wait_for(outcome, timeout=self.callback_timeout)
        except asyncio.TimeoutError:
            logger.warning("Progress callback timed out", extra={"elapsed": round(elapsed, 1)})
        except Exception as e:
            logger.warning(
                f"Progress callback failed: {type(e).__name__}: {e}",
                extra={"elapsed": round(elapsed, 1)},
            )
