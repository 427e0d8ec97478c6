"""
imagegen_core - Exception Hierarchy
===================================

Every failure the orchestration core can produce is an ``ImageGenError``.
Each carries:
- a technical ``message`` (used for logs and for guidance classification)
- a short ``user_message`` for display
- structured ``details`` and recovery ``suggestions``
- a ``category`` assigned by the orchestrator once the error is classified

Usage:
    from imagegen_core.exceptions import ImageGenError, NotConfiguredError

    try:
        result = await orchestrator.generate(request)
    except ImageGenError as e:
        print(e.user_message)
        for hint in e.suggestions:
            print(f"Try: {hint}")
        logger.error(e.developer_message)
"""

import os
from enum import Enum
from typing import Any

__all__ = [
    "ErrorLevel",
    "VerbosityLevel",
    "set_verbosity",
    "get_verbosity",
    # Base
    "ImageGenError",
    # Backend selection
    "NotConfiguredError",
    "NotAvailableError",
    # Validation
    "ValidationError",
    "InvalidPromptError",
    "InvalidParameterError",
    "WorkflowParseError",
    # Store
    "WorkflowNotFoundError",
    # Upstream / transport
    "UpstreamRejectedError",
    "NetworkError",
    # Generation
    "GenerationError",
    "NodeError",
    "GenerationTimeoutError",
    "GenerationFailedError",
    "NoOutputError",
    # Non-fatal
    "PersistenceWarning",
    # Utilities
    "format_error_for_user",
]


# =============================================================================
# ERROR LEVELS AND VERBOSITY
# =============================================================================


class ErrorLevel(Enum):
    """Error severity levels for filtering and display."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"  # Recoverable, reported alongside a result
    ERROR = "error"  # Operation failed
    CRITICAL = "critical"


class VerbosityLevel(Enum):
    """
    Output verbosity for different audiences.

    CASUAL: short message suitable for an assistant reply
    DEVELOPER: full technical details with code and context
    """

    CASUAL = "casual"
    DEVELOPER = "developer"


_current_verbosity: VerbosityLevel | None = None


def _get_verbosity() -> VerbosityLevel:
    if _current_verbosity is not None:
        return _current_verbosity
    level = os.environ.get("IMAGEGEN_VERBOSITY", "casual").lower()
    try:
        return VerbosityLevel(level)
    except ValueError:
        return VerbosityLevel.CASUAL


def set_verbosity(level: VerbosityLevel | None):
    """Set the global verbosity level (``None`` falls back to the environment)."""
    global _current_verbosity
    _current_verbosity = level


def get_verbosity() -> VerbosityLevel:
    """Get the current verbosity level."""
    return _get_verbosity()


# =============================================================================
# BASE EXCEPTION
# =============================================================================


class ImageGenError(Exception):
    """
    Base exception for all imagegen_core errors.

    Attributes:
        message: Technical error message (classification runs on this text)
        user_message: Short explanation for the end user
        code: Error code for programmatic handling
        details: Dict with additional context (endpoint, status code, ...)
        suggestions: Recovery hints, the orchestrator appends one per category
        category: Guidance category once classified, ``None`` before
        level: Error severity level
    """

    _default_user_message = "An error occurred"
    _default_suggestions: list[str] = []
    _default_code = "IMAGEGEN_ERROR"

    def __init__(
        self,
        message: str,
        *,
        user_message: str | None = None,
        code: str | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
        suggestions: list[str] | None = None,
        level: ErrorLevel = ErrorLevel.ERROR,
        request_id: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self._user_message = user_message
        self.code = code or self._default_code
        self.details = details or {}
        self.cause = cause
        self._suggestions = list(suggestions) if suggestions is not None else None
        self.level = level
        self.request_id = request_id
        self.category = None

        if request_id:
            self.details["request_id"] = request_id
        if cause:
            self.__cause__ = cause

    @property
    def user_message(self) -> str:
        """Get user-friendly message."""
        return self._user_message or self._default_user_message

    @property
    def developer_message(self) -> str:
        """Get full technical message (for logs/debugging)."""
        prefix = f"[{self.code}:{self.request_id}]" if self.request_id else f"[{self.code}]"
        msg = f"{prefix} {self.message}"
        extra = {k: v for k, v in self.details.items() if k != "request_id"}
        if extra:
            msg += " (" + ", ".join(f"{k}={v}" for k, v in extra.items()) + ")"
        if self.cause:
            msg += f" [caused by: {type(self.cause).__name__}: {self.cause}]"
        return msg

    @property
    def suggestions(self) -> list[str]:
        """Get recovery suggestions."""
        if self._suggestions is None:
            return list(self._default_suggestions)
        return self._suggestions

    def get_message(self, verbosity: VerbosityLevel | None = None) -> str:
        level = verbosity or _get_verbosity()
        if level == VerbosityLevel.DEVELOPER:
            return self.developer_message
        return self.user_message

    def add_context(self, key: str, value: Any) -> "ImageGenError":
        """Add context information (chainable)."""
        self.details[key] = value
        return self

    def add_suggestion(self, suggestion: str) -> "ImageGenError":
        """Add a recovery suggestion (chainable)."""
        if self._suggestions is None:
            self._suggestions = list(self._default_suggestions)
        if suggestion not in self._suggestions:
            self._suggestions.append(suggestion)
        return self

    def to_dict(self, include_internal: bool = True) -> dict[str, Any]:
        """Convert exception to a JSON-serializable dictionary."""
        result: dict[str, Any] = {
            "error": True,
            "code": self.code,
            "message": self.user_message,
            "suggestions": self.suggestions,
        }
        if self.category is not None:
            result["category"] = getattr(self.category, "value", self.category)
        if self.request_id:
            result["request_id"] = self.request_id
        if include_internal:
            result["details"] = self.details
            result["developer_message"] = self.developer_message
            if self.cause:
                result["cause"] = str(self.cause)
        return result

    def __str__(self) -> str:
        return self.developer_message


# =============================================================================
# BACKEND SELECTION
# =============================================================================


class NotConfiguredError(ImageGenError):
    """No generation backend is configured at all."""

    _default_user_message = "No image generation backend is configured"
    _default_code = "NOT_CONFIGURED"
    _default_suggestions = [
        "Set IMAGEGEN_PLATFORM__API_TOKEN and IMAGEGEN_PLATFORM__BASE_URL for the hosted platform",
        "Set IMAGEGEN_OPENAI__API_KEY for an OpenAI-compatible API",
        "Import a workflow template to use the local pipeline",
    ]

    def __init__(self, message: str = "No image generation backend is configured", **kwargs):
        super().__init__(message, **kwargs)


class NotAvailableError(ImageGenError):
    """An explicitly requested backend is not configured."""

    _default_user_message = "The requested backend is not available"
    _default_code = "NOT_AVAILABLE"

    def __init__(
        self,
        backend: str,
        available: list[str] | None = None,
        message: str | None = None,
        **kwargs,
    ):
        available = available or []
        msg = message or f"Backend '{backend}' is not configured"
        if available and not message:
            msg += f"; available: {', '.join(available)}"
        details = kwargs.pop("details", {})
        details["backend"] = backend
        details["available"] = available
        super().__init__(msg, details=details, **kwargs)
        self.backend = backend
        self.available = available


# =============================================================================
# VALIDATION ERRORS
# =============================================================================


class ValidationError(ImageGenError):
    """Malformed input: bad template, missing node or field, bad JSON value."""

    _default_user_message = "Invalid input"
    _default_code = "VALIDATION_ERROR"


class InvalidPromptError(ValidationError):
    """Prompt is invalid or empty."""

    _default_user_message = "Please enter a valid prompt"
    _default_code = "INVALID_PROMPT"
    _default_suggestions = ["Describe the image you want, e.g. 'a sunset over mountains'"]

    def __init__(self, message: str = "Invalid or empty prompt", **kwargs):
        super().__init__(message, **kwargs)


class InvalidParameterError(ValidationError):
    """Parameter value is invalid."""

    _default_code = "INVALID_PARAMETER"

    def __init__(
        self,
        parameter: str,
        value: Any,
        reason: str | None = None,
        allowed_values: list | None = None,
        **kwargs,
    ):
        msg = f"Invalid value for '{parameter}': {value!r}"
        if reason:
            msg += f" ({reason})"

        details = kwargs.pop("details", {})
        details["parameter"] = parameter
        if reason:
            details["reason"] = reason
        if allowed_values:
            details["allowed_values"] = allowed_values

        user_msg = f"Invalid {parameter}"
        if allowed_values:
            user_msg += f". Choose from: {', '.join(str(v) for v in allowed_values[:8])}"
        kwargs.setdefault("user_message", user_msg)
        super().__init__(msg, details=details, **kwargs)
        self.parameter = parameter


class WorkflowParseError(ValidationError):
    """Stored or imported content is not a valid workflow graph."""

    _default_user_message = "The workflow file is not a valid workflow graph"
    _default_code = "WORKFLOW_PARSE_ERROR"
    _default_suggestions = [
        "Export the workflow from the pipeline UI using 'Save (API Format)'",
    ]

    def __init__(self, message: str = "Invalid workflow graph", source: str | None = None, **kwargs):
        details = kwargs.pop("details", {})
        if source:
            details["source"] = source
        super().__init__(message, details=details, **kwargs)


# =============================================================================
# STORE ERRORS
# =============================================================================


class WorkflowNotFoundError(ImageGenError):
    """Unknown workflow name, or no workflows stored at all."""

    _default_user_message = "Workflow not found"
    _default_code = "WORKFLOW_NOT_FOUND"

    def __init__(self, name: str | None = None, message: str | None = None, **kwargs):
        if message is None:
            message = f"Workflow not found: {name}" if name else "No workflows are stored"
        details = kwargs.pop("details", {})
        if name:
            details["workflow"] = name
        super().__init__(message, details=details, **kwargs)
        self.name = name


# =============================================================================
# UPSTREAM AND TRANSPORT ERRORS
# =============================================================================


class UpstreamRejectedError(ImageGenError):
    """A backend answered with a 4xx/5xx status. The body is kept verbatim."""

    _default_user_message = "The image service rejected the request"
    _default_code = "UPSTREAM_REJECTED"

    def __init__(
        self,
        endpoint: str,
        status_code: int | None = None,
        body: str = "",
        message: str | None = None,
        **kwargs,
    ):
        if message is None:
            status = f" {status_code}" if status_code is not None else ""
            message = f"{endpoint} returned{status}: {body}".rstrip(": ")
        details = kwargs.pop("details", {})
        details["endpoint"] = endpoint
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(message, details=details, **kwargs)
        self.endpoint = endpoint
        self.status_code = status_code
        self.body = body


class NetworkError(ImageGenError):
    """Transport-level failure: refused connection, DNS, reset, read timeout."""

    _default_user_message = "Could not reach the image service"
    _default_code = "NETWORK_ERROR"

    def __init__(self, message: str = "network error", url: str | None = None, **kwargs):
        if "network" not in message.lower():
            message = f"network error: {message}"
        details = kwargs.pop("details", {})
        if url:
            details["url"] = url
        super().__init__(message, details=details, **kwargs)
        self.url = url


# =============================================================================
# GENERATION ERRORS
# =============================================================================


class GenerationError(ImageGenError):
    """Base class for failures reported while a generation runs."""

    _default_user_message = "Generation failed"
    _default_code = "GENERATION_ERROR"


class NodeError(GenerationError):
    """The local pipeline rejected the submitted graph with per-node errors."""

    _default_user_message = "The local pipeline rejected the workflow"
    _default_code = "NODE_ERROR"

    def __init__(self, node_errors: dict[str, Any], message: str | None = None, **kwargs):
        if message is None:
            parts = []
            for node_id, err in node_errors.items():
                if isinstance(err, dict):
                    reasons = [
                        e.get("message", str(e)) if isinstance(e, dict) else str(e)
                        for e in err.get("errors", [])
                    ]
                    kind = err.get("class_type", "?")
                    parts.append(f"#{node_id} ({kind}): {'; '.join(reasons) or 'error'}")
                else:
                    parts.append(f"#{node_id}: {err}")
            message = "Local pipeline node errors: " + ", ".join(parts)
        details = kwargs.pop("details", {})
        details["node_ids"] = list(node_errors)
        super().__init__(message, details=details, **kwargs)
        self.node_errors = node_errors


class GenerationTimeoutError(GenerationError):
    """No terminal status was reported before the deadline."""

    _default_user_message = "Generation took too long"
    _default_code = "GENERATION_TIMEOUT"

    def __init__(
        self,
        message: str | None = None,
        timeout: float | None = None,
        generation_id: str | None = None,
        **kwargs,
    ):
        if message is None:
            message = "Generation timed out"
            if timeout:
                message += f" after {timeout:g}s"
        details = kwargs.pop("details", {})
        if timeout:
            details["timeout_seconds"] = timeout
        if generation_id:
            details["generation_id"] = generation_id
        super().__init__(message, details=details, **kwargs)
        self.timeout = timeout
        self.generation_id = generation_id


class GenerationFailedError(GenerationError):
    """The backend reported the run as failed."""

    _default_user_message = "Generation failed"
    _default_code = "GENERATION_FAILED"

    def __init__(
        self,
        message: str = "Generation failed",
        reason: str | None = None,
        generation_id: str | None = None,
        **kwargs,
    ):
        if reason and reason not in message:
            message = f"{message}: {reason}"
        details = kwargs.pop("details", {})
        if reason:
            details["reason"] = reason
        if generation_id:
            details["generation_id"] = generation_id
        super().__init__(message, details=details, **kwargs)
        self.reason = reason


class NoOutputError(GenerationError):
    """The run completed without any image."""

    _default_user_message = "No image was generated"
    _default_code = "NO_OUTPUT"
    _default_suggestions = ["Check that the workflow has a SaveImage or PreviewImage node"]

    def __init__(
        self,
        message: str = "Generation completed without an image",
        generation_id: str | None = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if generation_id:
            details["generation_id"] = generation_id
        super().__init__(message, details=details, **kwargs)


# =============================================================================
# NON-FATAL
# =============================================================================


class PersistenceWarning(ImageGenError):
    """Saving the generated image locally failed. Logged, never raised."""

    _default_user_message = "The image could not be saved locally"
    _default_code = "PERSISTENCE_WARNING"

    def __init__(self, path: str | None = None, cause: Exception | None = None, **kwargs):
        message = "Could not save image locally"
        if cause is not None:
            message += f": {cause}"
        details = kwargs.pop("details", {})
        if path:
            details["path"] = path
        kwargs.setdefault("level", ErrorLevel.WARNING)
        super().__init__(message, details=details, cause=cause, **kwargs)


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def format_error_for_user(error: Exception, verbosity: VerbosityLevel | None = None) -> str:
    """
    Format any exception for display.

    Args:
        error: The exception to format
        verbosity: Output verbosity level

    Returns:
        Message with suggestions appended, one per line
    """
    level = verbosity or _get_verbosity()

    if not isinstance(error, ImageGenError):
        if level == VerbosityLevel.DEVELOPER:
            return f"{type(error).__name__}: {error}"
        return f"Error: {type(error).__name__}"

    text = error.get_message(level)
    if level == VerbosityLevel.CASUAL and error.user_message != error.message:
        text = f"{text}: {error.message}"
    for hint in error.suggestions:
        text += f"\n- {hint}"
    return text
