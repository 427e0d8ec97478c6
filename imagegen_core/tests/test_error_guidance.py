"""
Tests for error classification and the exception hierarchy.
"""

import pytest

from imagegen_core.error_guidance import (
    GUIDANCE,
    ErrorCategory,
    apply_guidance,
    classify_error,
    classify_message,
)
from imagegen_core.exceptions import (
    GenerationFailedError,
    GenerationTimeoutError,
    ImageGenError,
    NetworkError,
    NodeError,
    NotAvailableError,
    UpstreamRejectedError,
    VerbosityLevel,
    WorkflowNotFoundError,
    format_error_for_user,
)


class TestClassifyMessage:
    @pytest.mark.parametrize(
        "message, category",
        [
            ("Request was flagged by the safety system", ErrorCategory.CONTENT_SAFETY),
            ("Your request violates our content policy", ErrorCategory.CONTENT_SAFETY),
            ("402 Payment Required", ErrorCategory.INSUFFICIENT_CREDITS),
            ("Insufficient credits remaining", ErrorCategory.INSUFFICIENT_CREDITS),
            ("Generation timed out after 300s", ErrorCategory.TIMEOUT),
            ("upstream TIMEOUT", ErrorCategory.TIMEOUT),
            ("Model 'xl-9' is invalid", ErrorCategory.INVALID_MODEL),
            ("model is inactive", ErrorCategory.INVALID_MODEL),
            ("Aspect ratio 7:3 not supported", ErrorCategory.INVALID_RATIO),
            ("API token expired", ErrorCategory.EXPIRED_CREDENTIAL),
            ("invalid token", ErrorCategory.EXPIRED_CREDENTIAL),
            ("connect ECONNREFUSED 127.0.0.1:8188", ErrorCategory.NETWORK),
            ("fetch failed", ErrorCategory.NETWORK),
            ("Connection refused", ErrorCategory.NETWORK),
            ("ComfyUI returned node_errors", ErrorCategory.LOCAL_PIPELINE),
            ("Local pipeline node errors: #4 (CheckpointLoaderSimple): missing", ErrorCategory.LOCAL_PIPELINE),
            ("something odd happened", ErrorCategory.UNKNOWN),
            ("", ErrorCategory.UNKNOWN),
        ],
    )
    def test_categories(self, message, category):
        assert classify_message(message) is category

    def test_first_rule_wins(self):
        assert classify_message("content policy timeout") is ErrorCategory.CONTENT_SAFETY
        assert classify_message("timeout while loading model: invalid") is ErrorCategory.TIMEOUT

    def test_model_alone_is_not_invalid_model(self):
        assert classify_message("model loaded") is ErrorCategory.UNKNOWN

    def test_every_category_has_one_hint(self):
        assert set(GUIDANCE) == set(ErrorCategory)


class TestClassifyError:
    def test_timeout_error(self):
        assert classify_error(GenerationTimeoutError(timeout=300)) is ErrorCategory.TIMEOUT

    def test_network_error(self):
        assert classify_error(NetworkError("refused", url="http://x")) is ErrorCategory.NETWORK

    def test_node_error(self):
        error = NodeError({"4": {"class_type": "CheckpointLoaderSimple", "errors": [{"message": "not found"}]}})
        assert "#4 (CheckpointLoaderSimple): not found" in error.message
        assert classify_error(error) is ErrorCategory.LOCAL_PIPELINE

    def test_plain_exception(self):
        assert classify_error(ValueError("network down")) is ErrorCategory.NETWORK


class TestApplyGuidance:
    def test_sets_category_and_hint(self):
        error = UpstreamRejectedError("POST /api/generate", 402, '{"error": "insufficient credits"}')
        result = apply_guidance(error)
        assert result is error
        assert error.category is ErrorCategory.INSUFFICIENT_CREDITS
        assert error.suggestions[-1] == GUIDANCE[ErrorCategory.INSUFFICIENT_CREDITS]
        assert error.to_dict()["category"] == "insufficient_credits"

    def test_hint_added_once(self):
        error = GenerationTimeoutError(timeout=1)
        apply_guidance(error)
        apply_guidance(error)
        assert error.suggestions.count(GUIDANCE[ErrorCategory.TIMEOUT]) == 1

    def test_wraps_foreign_exceptions(self):
        original = KeyError("imageUrl")
        result = apply_guidance(original)
        assert isinstance(result, GenerationFailedError)
        assert result.cause is original
        assert result.category is ErrorCategory.UNKNOWN


class TestExceptions:
    """Messages and user-facing formatting."""

    def test_upstream_body_kept_verbatim(self):
        error = UpstreamRejectedError("POST /images/generations", 400, '{"error":{"message":"bad size"}}')
        assert error.message == 'POST /images/generations returned 400: {"error":{"message":"bad size"}}'
        assert error.details["status_code"] == 400

    def test_not_available_lists_backends(self):
        error = NotAvailableError("local", ["platform", "openai"])
        assert "available: platform, openai" in error.message

    def test_workflow_not_found_messages(self):
        assert WorkflowNotFoundError("portrait").message == "Workflow not found: portrait"
        assert WorkflowNotFoundError().message == "No workflows are stored"

    def test_network_prefix(self):
        assert NetworkError("refused").message == "network error: refused"
        assert NetworkError("network unreachable").message == "network unreachable"

    def test_failed_reason_appended(self):
        error = GenerationFailedError("Platform reported the generation as failed", reason="NSFW")
        assert error.message.endswith(": NSFW")
        assert error.reason == "NSFW"

    def test_format_for_user(self):
        error = WorkflowNotFoundError("ghost", suggestions=["Available workflows: a"])
        casual = format_error_for_user(error, VerbosityLevel.CASUAL)
        assert casual.startswith("Workflow not found: Workflow not found: ghost")
        assert casual.endswith("- Available workflows: a")
        developer = format_error_for_user(error, VerbosityLevel.DEVELOPER)
        assert developer.startswith("[WORKFLOW_NOT_FOUND] Workflow not found: ghost")

    def test_format_foreign_exception(self):
        assert format_error_for_user(ValueError("x"), VerbosityLevel.CASUAL) == "Error: ValueError"

    def test_base_is_exception(self):
        assert issubclass(ImageGenError, Exception)
        assert not issubclass(ImageGenError, ValueError)
