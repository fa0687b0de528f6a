"""Shared result records for the structural validators."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

ERROR_PENALTY = 10
WARNING_PENALTY = 3


class IssueSeverity(str, Enum):
    """Severity of a validation issue."""

    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass
class ValidationIssue:
    """A single finding from a validator."""

    severity: IssueSeverity
    code: str  # Stable identifier (e.g. MISSING_REQUIRED_CTE)
    message: str
    line: int | None = None
    column: int | None = None
    suggestion: str | None = None
    context: str | None = None


@dataclass
class ValidationResult:
    """Outcome of validating generated code. Never blocks generation."""

    valid: bool
    score: int
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)


def compute_score(error_count: int, warning_count: int) -> int:
    """Compliance score clamped to [0, 100]."""
    return max(0, 100 - ERROR_PENALTY * error_count - WARNING_PENALTY * warning_count)


def build_result(
    errors: list[ValidationIssue],
    warnings: list[ValidationIssue],
    suggestions: list[str] | None = None,
    metadata: dict[str, Any] | None = None,
) -> ValidationResult:
    return ValidationResult(
        valid=not errors,
        score=compute_score(len(errors), len(warnings)),
        errors=errors,
        warnings=warnings,
        suggestions=suggestions or [],
        metadata=metadata or {},
    )


def error(code: str, message: str, **kwargs: Any) -> ValidationIssue:
    return ValidationIssue(IssueSeverity.ERROR, code, message, **kwargs)


def warning(code: str, message: str, **kwargs: Any) -> ValidationIssue:
    return ValidationIssue(IssueSeverity.WARNING, code, message, **kwargs)
