"""
imagegen_core - Image Generation Orchestration Core
===================================================

Generate images through one of three interchangeable backends:

- platform: a hosted generation platform (submit, then poll)
- openai:   an OpenAI-compatible images API (single call)
- local:    a local ComfyUI-style node-graph pipeline running stored workflow templates

Features:
- FIFO admission pools per backend class (remote: 4, local: 1)
- Workflow template store with schema-free node role detection
- Bounded waits (300s deadline) with rate-limited progress callbacks
- Error classification with one remediation hint per category
- Structured logging, pydantic-settings configuration

Usage:
    from imagegen_core import ImageTools

    tools = ImageTools()
    tools.import_workflow("~/Downloads/portrait_api.json", name="portrait")
    result = await tools.generate_image("a lighthouse at dusk", backend="local")
    print(result.saved_path, result.warnings)
"""

from .config import (
    Settings,
    get_settings,
    reload_settings,
)

from .exceptions import (
    ImageGenError,
    NotConfiguredError,
    NotAvailableError,
    ValidationError,
    InvalidPromptError,
    InvalidParameterError,
    WorkflowParseError,
    WorkflowNotFoundError,
    UpstreamRejectedError,
    NetworkError,
    GenerationError,
    NodeError,
    GenerationTimeoutError,
    GenerationFailedError,
    NoOutputError,
    PersistenceWarning,
    ErrorLevel,
    VerbosityLevel,
    format_error_for_user,
    set_verbosity,
    get_verbosity,
)

from .logging_config import (
    get_logger,
    set_log_level,
    LogContext,
    log_timing,
)

from .admission import AdmissionController, PermitPool
from .graph import EdgeRef, LiteralValue, Node, WorkflowGraph
from .workflow_store import WorkflowStore
from .detection import NodeMap, WorkflowSummary, detect, summarize, describe_editable
from .models import (
    Backend,
    GenerationRequest,
    GenerationResult,
    ProgressReporter,
    build_request,
)
from .error_guidance import ErrorCategory, classify_message
from .platform_backend import PlatformBackend
from .openai_backend import OpenAIBackend
from .local_pipeline import LocalPipelineBackend, LocalPipelineClient
from .orchestrator import Orchestrator
from .tools import ImageTools

__version__ = "1.0.0"

__all__ = [
    "__version__",
    # Config
    "Settings",
    "get_settings",
    "reload_settings",
    # Exceptions
    "ImageGenError",
    "NotConfiguredError",
    "NotAvailableError",
    "ValidationError",
    "InvalidPromptError",
    "InvalidParameterError",
    "WorkflowParseError",
    "WorkflowNotFoundError",
    "UpstreamRejectedError",
    "NetworkError",
    "GenerationError",
    "NodeError",
    "GenerationTimeoutError",
    "GenerationFailedError",
    "NoOutputError",
    "PersistenceWarning",
    "ErrorLevel",
    "VerbosityLevel",
    "format_error_for_user",
    "set_verbosity",
    "get_verbosity",
    # Logging
    "get_logger",
    "set_log_level",
    "LogContext",
    "log_timing",
    # Core
    "AdmissionController",
    "PermitPool",
    "EdgeRef",
    "LiteralValue",
    "Node",
    "WorkflowGraph",
    "WorkflowStore",
    "NodeMap",
    "WorkflowSummary",
    "detect",
    "summarize",
    "describe_editable",
    "Backend",
    "GenerationRequest",
    "GenerationResult",
    "ProgressReporter",
    "build_request",
    "ErrorCategory",
    "classify_message",
    # Backends
    "PlatformBackend",
    "OpenAIBackend",
    "LocalPipelineBackend",
    "LocalPipelineClient",
    # Entry points
    "Orchestrator",
    "ImageTools",
]
