"""Input validation for API bodies and CLI arguments.

Centralised validation rules so the web layer and the CLI share the same
constraints. All validators raise ``ValidationError`` (a ``ValueError``).
"""

from __future__ import annotations

from typing import Any

from .errors import ValidationError
from .models import GitHubIssue, SessionStatus

# ---------------------------------------------------------------------------
# String length limits
# ---------------------------------------------------------------------------

MAX_DIRECTORY = 4096
MAX_SUMMARY = 2000
MAX_TASK_TEXT = 500
MAX_SOURCE = 50
MAX_ISSUE_URL = 500
MAX_GITHUB_ISSUES = 50


# ---------------------------------------------------------------------------
# Validators — all raise ValidationError on failure
# ---------------------------------------------------------------------------


def require_field(body: dict[str, Any], name: str) -> Any:
    """Return ``body[name]``, rejecting missing, null and empty values."""
    value = body.get(name)
    if value is None or value == "":
        raise ValidationError(f"{name} is required")
    return value


def validate_string_length(value: Any, field: str, max_len: int) -> str:
    """Validate value is a non-empty string within the length limit."""
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    if not value.strip():
        raise ValidationError(f"{field} cannot be empty")
    if len(value) > max_len:
        raise ValidationError(f"{field} too long ({len(value)} chars, max {max_len})")
    return value


def validate_optional_string(value: Any, field: str, max_len: int) -> str | None:
    """Validate optional string — None and "" are allowed, length is still checked."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    if len(value) > max_len:
        raise ValidationError(f"{field} too long ({len(value)} chars, max {max_len})")
    return value


def validate_directory(value: Any) -> str:
    """Validate a session directory (absolute path)."""
    directory = validate_string_length(value, "directory", MAX_DIRECTORY)
    if not directory.startswith("/"):
        raise ValidationError(f"directory must be an absolute path (got '{directory}')")
    return directory


def validate_status(value: Any) -> SessionStatus | None:
    """Validate an optional session status."""
    if value is None:
        return None
    try:
        return SessionStatus(value)
    except ValueError as e:
        raise ValidationError(
            f"Invalid status '{value}'. Must be one of: {sorted(s.value for s in SessionStatus)}"
        ) from e


def validate_github_issues(value: Any) -> list[GitHubIssue] | None:
    """Validate that issues is a list of {number, url?} objects."""
    if value is None:
        return None
    if not isinstance(value, list):
        raise ValidationError("githubIssues must be a JSON array")
    if len(value) > MAX_GITHUB_ISSUES:
        raise ValidationError(
            f"Too many githubIssues ({len(value)}, max {MAX_GITHUB_ISSUES})"
        )
    issues = []
    for i, entry in enumerate(value):
        if not isinstance(entry, dict):
            raise ValidationError(f"githubIssues entry {i} must be an object")
        number = entry.get("number")
        if isinstance(number, bool) or not isinstance(number, int) or number < 1:
            raise ValidationError(f"githubIssues entry {i} must have a positive integer 'number'")
        url = validate_optional_string(entry.get("url"), f"githubIssues[{i}].url", MAX_ISSUE_URL)
        issues.append(GitHubIssue(number=number, url=url or None))
    return issues


def validate_optional_bool(value: Any, field: str) -> bool | None:
    if value is None:
        return None
    if not isinstance(value, bool):
        raise ValidationError(f"{field} must be a boolean")
    return value


def validate_port(port: int) -> int:
    """Validate TCP port number."""
    if port < 1 or port > 65535:
        raise ValidationError(f"Port must be 1-65535 (got {port})")
    return port


def validate_positive_number(value: float, field: str) -> float:
    if value <= 0:
        raise ValidationError(f"{field} must be positive (got {value})")
    return value
