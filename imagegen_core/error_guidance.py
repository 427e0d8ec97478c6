"""
imagegen_core - Error Guidance
==============================

Maps a failure's message text to a user-guidance category with one
remediation hint. Backends do not share structured error codes, so this is
substring matching over an ordered rule list: first match wins, and an
unexpected upstream phrasing may land in the wrong category.
"""

from collections.abc import Callable
from enum import Enum

from .exceptions import GenerationFailedError, ImageGenError

__all__ = [
    "ErrorCategory",
    "CLASSIFICATION_RULES",
    "GUIDANCE",
    "classify_message",
    "classify_error",
    "apply_guidance",
]


class ErrorCategory(str, Enum):
    CONTENT_SAFETY = "content_safety"
    INSUFFICIENT_CREDITS = "insufficient_credits"
    TIMEOUT = "timeout"
    INVALID_MODEL = "invalid_model"
    INVALID_RATIO = "invalid_ratio"
    EXPIRED_CREDENTIAL = "expired_credential"
    NETWORK = "network"
    LOCAL_PIPELINE = "local_pipeline_node_error"
    UNKNOWN = "unknown"


MessagePredicate = Callable[[str], bool]


def _any_of(*needles: str) -> MessagePredicate:
    return lambda text: any(n in text for n in needles)


def _all_of(*predicates: MessagePredicate) -> MessagePredicate:
    return lambda text: all(p(text) for p in predicates)


# Order matters: "content policy timeout" is a content-safety failure.
CLASSIFICATION_RULES: list[tuple[MessagePredicate, ErrorCategory]] = [
    (_any_of("safety", "policy", "flagged", "content"), ErrorCategory.CONTENT_SAFETY),
    (_any_of("credit", "insufficient", "402"), ErrorCategory.INSUFFICIENT_CREDITS),
    (_any_of("timed out", "timeout"), ErrorCategory.TIMEOUT),
    (_all_of(_any_of("model"), _any_of("invalid", "inactive")), ErrorCategory.INVALID_MODEL),
    (_all_of(_any_of("ratio"), _any_of("not supported")), ErrorCategory.INVALID_RATIO),
    (_all_of(_any_of("token"), _any_of("invalid", "expired")), ErrorCategory.EXPIRED_CREDENTIAL),
    (
        _any_of("econnrefused", "fetch failed", "network", "connection"),
        ErrorCategory.NETWORK,
    ),
    (
        _any_of("comfyui", "local pipeline", "node_errors", "node error"),
        ErrorCategory.LOCAL_PIPELINE,
    ),
]

GUIDANCE: dict[ErrorCategory, str] = {
    ErrorCategory.CONTENT_SAFETY: (
        "The prompt was blocked by a content safety filter. Rephrase it without "
        "sensitive or explicit wording."
    ),
    ErrorCategory.INSUFFICIENT_CREDITS: (
        "The account has run out of credits. Top up the account or switch to another backend."
    ),
    ErrorCategory.TIMEOUT: (
        "The generation took too long. The service may be busy; try again in a moment "
        "or use a faster model."
    ),
    ErrorCategory.INVALID_MODEL: (
        "The selected model is invalid or no longer active. Pick another model or omit "
        "the model to use the default."
    ),
    ErrorCategory.INVALID_RATIO: (
        "This aspect ratio is not supported by the selected model. Try 1:1, 3:4, 4:3, "
        "16:9 or 9:16."
    ),
    ErrorCategory.EXPIRED_CREDENTIAL: (
        "The API token is invalid or expired. Update the credential in the configuration."
    ),
    ErrorCategory.NETWORK: (
        "The image service could not be reached. Check the network connection and that "
        "the service URL is correct and running."
    ),
    ErrorCategory.LOCAL_PIPELINE: (
        "The local pipeline rejected the workflow. Check that the models and custom nodes "
        "it references are installed, and view the workflow to verify node settings."
    ),
    ErrorCategory.UNKNOWN: "Try again, or try a different backend or prompt.",
}


def classify_message(message: str) -> ErrorCategory:
    """First matching category for ``message`` (case-insensitive)."""
    text = (message or "").lower()
    for predicate, category in CLASSIFICATION_RULES:
        if predicate(text):
            return category
    return ErrorCategory.UNKNOWN


def classify_error(error: BaseException) -> ErrorCategory:
    message = error.message if isinstance(error, ImageGenError) else str(error)
    return classify_message(message)


def apply_guidance(error: BaseException) -> ImageGenError:
    """
    Classify ``error`` and attach its category and hint.

    Non-``ImageGenError`` exceptions are wrapped in ``GenerationFailedError``
    first. Returns the error to raise.
    """
    if not isinstance(error, ImageGenError):
        wrapped = GenerationFailedError(
            f"Unexpected error: {type(error).__name__}: {error}", cause=error
        )
        error = wrapped
    category = classify_error(error)
    error.category = category
    error.add_suggestion(GUIDANCE[category])
    return error
