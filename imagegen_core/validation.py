"""
imagegen_core - Input Validation
================================

Validation helpers for the tool-facing operations:
- prompt cleanup and length bounds
- workflow names (they become file names in the store)
- reference image URLs
- JSON values supplied to ``modify_workflow``
- file paths supplied to ``import_workflow``

All failures raise ``ValidationError`` subclasses from ``exceptions``.
"""

import json
import re
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

from .exceptions import InvalidParameterError, InvalidPromptError, ValidationError
from .logging_config import get_logger

logger = get_logger(__name__)

__all__ = [
    "validate_prompt",
    "validate_workflow_name",
    "validate_reference_url",
    "validate_import_path",
    "parse_json_value",
    "DANGEROUS_CHARS",
    "PATH_TRAVERSAL_PATTERNS",
    "MAX_PROMPT_LENGTH",
    "MAX_WORKFLOW_NAME_LENGTH",
]

MAX_PROMPT_LENGTH = 10000
MAX_WORKFLOW_NAME_LENGTH = 128

# Characters stripped from prompts before they reach a backend
DANGEROUS_CHARS = [
    "\x00",  # Null byte
    "\x1b",  # Escape
]

PATH_TRAVERSAL_PATTERNS = [
    r"\.\./",
    r"\.\.\\",
    r"%2e%2e",
    r"%252e",
    r"\.\.%2f",
    r"\.\.%5c",
]

_WORKFLOW_NAME_FORBIDDEN = re.compile(r"[/\\:\x00-\x1f]")


# =============================================================================
# PROMPTS
# =============================================================================


def validate_prompt(prompt: str | None, *, max_length: int = MAX_PROMPT_LENGTH) -> str:
    """
    Strip and clean a prompt.

    Raises:
        InvalidPromptError: empty after stripping, or longer than ``max_length``
    """
    if prompt is None or not isinstance(prompt, str):
        raise InvalidPromptError("Prompt cannot be empty")

    for char in DANGEROUS_CHARS:
        prompt = prompt.replace(char, "")
    prompt = prompt.strip()

    if not prompt:
        raise InvalidPromptError("Prompt cannot be empty")
    if len(prompt) > max_length:
        raise InvalidPromptError(f"Prompt too long (maximum {max_length} characters)")
    return prompt


# =============================================================================
# NAMES, URLS, PATHS
# =============================================================================


def validate_workflow_name(name: str | None) -> str:
    """
    Check a workflow name is safe to use as a file stem.

    Raises:
        InvalidParameterError: empty, too long, hidden, or containing path parts
    """
    if name is None or not isinstance(name, str) or not name.strip():
        raise InvalidParameterError("workflow", name, "name cannot be empty")
    name = name.strip()
    if len(name) > MAX_WORKFLOW_NAME_LENGTH:
        raise InvalidParameterError(
            "workflow", name[:40] + "...", f"at most {MAX_WORKFLOW_NAME_LENGTH} characters"
        )
    for pattern in PATH_TRAVERSAL_PATTERNS:
        if re.search(pattern, name, re.IGNORECASE):
            logger.warning("Path traversal attempt in workflow name", extra={"workflow": name})
            raise InvalidParameterError("workflow", name, "path traversal is not allowed")
    if name.startswith(".") or _WORKFLOW_NAME_FORBIDDEN.search(name):
        raise InvalidParameterError(
            "workflow", name, "use letters, digits, spaces, '-', '_' or '.' (not leading)"
        )
    return name


def validate_reference_url(url: str) -> str:
    """Reference images must be absolute http(s) URLs."""
    if not isinstance(url, str) or not url.strip():
        raise InvalidParameterError("reference_images", url, "URL cannot be empty")
    url = url.strip()
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise InvalidParameterError("reference_images", url, "must be an http(s) URL")
    return url


def validate_import_path(file_path: str | None) -> Path:
    """
    Expand ``~`` and check the file exists.

    Raises:
        ValidationError: empty path, missing file, or a directory
    """
    if not file_path or not str(file_path).strip():
        raise ValidationError("A file path is required to import a workflow")
    path = Path(str(file_path).strip()).expanduser()
    if not path.exists():
        raise ValidationError(f"File not found: {path}", details={"path": str(path)})
    if not path.is_file():
        raise ValidationError(f"Not a file: {path}", details={"path": str(path)})
    return path


# =============================================================================
# JSON VALUES
# =============================================================================


def parse_json_value(text: str, field: str = "value") -> Any:
    """
    Parse a JSON-encoded input value.

    ``"30"`` gives ``30``; ``"\\"euler\\""`` gives ``"euler"``. Bare words are
    not JSON and are rejected.

    Raises:
        InvalidParameterError: ``text`` is not valid JSON
    """
    if not isinstance(text, str):
        raise InvalidParameterError(field, text, "value must be a JSON-encoded string")
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise InvalidParameterError(
            field,
            text,
            f"not valid JSON: {e.msg}",
            suggestions=[
                'Numbers as-is: 30',
                'Strings in double quotes: "euler"',
                "Booleans: true / false",
            ],
        )
