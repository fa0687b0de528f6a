"""CQL Validator Service.

Local, offline structural checks over CQL library text.

Features:
- Comment- and string-aware delimiter scan with line/column tracking
- Library structure checks (library, using, context)
- Per-line checks for empty identifiers, define colons and common typos
- Warnings for placeholder definitions and unused value sets
- Metadata extraction (library name, version, definition and value set counts)
- Single-expression validation for override snippets
"""

from dataclasses import dataclass
import logging
import re
import threading
from typing import Any

from measure_compiler.schemas.codegen import ValidationConfig
from measure_compiler.services.validation import (
    ValidationIssue,
    ValidationResult,
    build_result,
    error,
    warning,
)

logger = logging.getLogger(__name__)

LIBRARY_PATTERN = re.compile(r"library\s+(\w+)(?:\s+version\s+'([^']+)')?")
USING_PATTERN = re.compile(r"using\s+FHIR\s+version\s+'[^']+'")
CONTEXT_PATTERN = re.compile(r"context\s+(Patient|Unfiltered|Population)")
DEFINE_NO_COLON = re.compile(r'^\s*define\s+"[^"]+"\s*$')
EMPTY_DEFINITION = re.compile(r'define\s+"([^"]+)":\s*\n\s*true\s*$', re.MULTILINE)
VALUESET_DECLARATION = re.compile(r'valueset\s+"([^"]+)":')

TYPO_PATTERNS = [
    (re.compile(r"\bexsits\b", re.IGNORECASE), "Typo: 'exsits'", "Did you mean 'exists'?"),
    (re.compile(r"\bwehre\b", re.IGNORECASE), "Typo: 'wehre'", "Did you mean 'where'?"),
    (re.compile(r"\binteval\b", re.IGNORECASE), "Typo: 'inteval'", "Did you mean 'Interval'?"),
    (re.compile(r"\bpatinet\b", re.IGNORECASE), "Typo: 'patinet'", "Did you mean 'Patient'?"),
]

VALID_EXPRESSION_STARTS = [
    re.compile(r"^exists\s*\("),
    re.compile(r"^not\s*\("),
    re.compile(r"^Count\s*\("),
    re.compile(r"^\[.+\]"),
    re.compile(r'^".+"$'),
    re.compile(r"^true$", re.IGNORECASE),
    re.compile(r"^false$", re.IGNORECASE),
    re.compile(r"^null$", re.IGNORECASE),
    re.compile(r"^\d+$"),
    re.compile(r"^Patient\."),
    re.compile(r"^AgeIn"),
    re.compile(r"^\("),
    re.compile(r"^/\*"),
    re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$"),
]


@dataclass
class _Position:
    line: int
    column: int


def scan_delimiters(code: str) -> list[ValidationIssue]:
    """Check parentheses, brackets, quotes and block comments.

    Comments and string literals are skipped; a backslash escapes the
    next quote character.
    """
    issues: list[ValidationIssue] = []
    parens: list[_Position] = []
    brackets: list[_Position] = []
    string_char: str | None = None
    line, column = 1, 0
    i = 0
    length = len(code)

    while i < length:
        char = code[i]
        next_char = code[i + 1] if i + 1 < length else ""

        if char == "\n":
            line += 1
            column = 0
            i += 1
            continue
        column += 1

        if string_char is not None:
            if char == "\\":
                i += 2
                column += 1
                continue
            if char == string_char:
                string_char = None
            i += 1
            continue

        if char == "/" and next_char == "/":
            end = code.find("\n", i)
            i = length if end == -1 else end
            continue

        if char == "/" and next_char == "*":
            end = code.find("*/", i + 2)
            if end == -1:
                issues.append(error("SYNTAX_ERROR", "Unclosed block comment", line=line, column=column))
                break
            skipped = code[i:end + 2]
            newlines = skipped.count("\n")
            if newlines:
                line += newlines
                column = len(skipped) - skipped.rfind("\n") - 1
            else:
                column += len(skipped) - 1
            i = end + 2
            continue

        if char in ('"', "'"):
            string_char = char
        elif char == "(":
            parens.append(_Position(line, column))
        elif char == ")":
            if parens:
                parens.pop()
            else:
                issues.append(error(
                    "UNBALANCED_PARENS", "Unexpected closing parenthesis", line=line, column=column
                ))
        elif char == "[":
            brackets.append(_Position(line, column))
        elif char == "]":
            if brackets:
                brackets.pop()
            else:
                issues.append(error(
                    "UNBALANCED_BRACKETS", "Unexpected closing bracket", line=line, column=column
                ))
        i += 1

    if string_char is not None:
        issues.append(error(
            "UNBALANCED_QUOTES", f"Unclosed string literal (started with {string_char})"
        ))
    for position in parens:
        issues.append(error(
            "UNBALANCED_PARENS", "Unclosed parenthesis", line=position.line, column=position.column
        ))
    for position in brackets:
        issues.append(error(
            "UNBALANCED_BRACKETS", "Unclosed bracket", line=position.line, column=position.column
        ))
    return issues


class CQLValidatorService:
    """Structural validator for generated or hand-edited CQL."""

    def __init__(self):
        self._validation_count = 0
        logger.info("CQLValidatorService initialized")

    def validate(self, code: str, config: ValidationConfig | None = None) -> ValidationResult:
        """Validate a complete CQL library.

        Args:
            code: CQL library text
            config: Shared validation options; no CQL check depends on them

        Returns:
            ValidationResult with score, issues and library metadata
        """
        lines = code.split("\n")
        errors = scan_delimiters(code)
        errors.extend(self._check_structure(code))
        errors.extend(self._check_lines(lines))
        warnings = self._check_potential_issues(code)

        result = build_result(errors, warnings, metadata=self.extract_metadata(code))
        self._validation_count += 1
        logger.debug(
            f"CQL validation: score={result.score}, {len(errors)} errors, {len(warnings)} warnings"
        )
        return result

    def validate_expression(self, expression: str) -> ValidationResult:
        """Validate a single CQL expression rather than a full library."""
        errors = scan_delimiters(expression)
        warnings: list[ValidationIssue] = []
        trimmed = expression.strip()

        if not trimmed:
            errors.append(error("INVALID_EXPRESSION", "Expression cannot be empty"))
        elif not errors and not any(p.search(trimmed) for p in VALID_EXPRESSION_STARTS):
            warnings.append(warning(
                "DEPRECATED_SYNTAX",
                "Expression may not be valid CQL syntax",
                context=trimmed[:50],
            ))

        self._validation_count += 1
        return build_result(errors, warnings)

    def _check_structure(self, code: str) -> list[ValidationIssue]:
        issues = []
        if not LIBRARY_PATTERN.search(code):
            issues.append(error(
                "MISSING_LIBRARY",
                "Missing library declaration",
                suggestion="Add 'library LibraryName version '1.0.0'' at the start of your CQL",
            ))
        if not USING_PATTERN.search(code):
            issues.append(error(
                "MISSING_USING",
                "Missing FHIR using declaration",
                suggestion="Add 'using FHIR version '4.0.1'' after the library declaration",
            ))
        if not CONTEXT_PATTERN.search(code):
            issues.append(error(
                "MISSING_CONTEXT",
                "Missing context declaration",
                suggestion="Add 'context Patient' before your definitions",
            ))
        return issues

    def _check_lines(self, lines: list[str]) -> list[ValidationIssue]:
        issues = []
        for index, line in enumerate(lines):
            line_number = index + 1
            stripped = line.strip()
            if stripped.startswith("//") or stripped.startswith("/*") or stripped.startswith("*"):
                continue

            if '""' in line:
                issues.append(error(
                    "INVALID_IDENTIFIER",
                    "Empty quoted identifier",
                    line=line_number,
                    column=line.index('""') + 1,
                    context=stripped,
                ))

            if DEFINE_NO_COLON.match(line) and index < len(lines) - 1:
                if not lines[index + 1].strip().startswith(":"):
                    issues.append(error(
                        "SYNTAX_ERROR",
                        "Missing colon after define statement",
                        line=line_number,
                        suggestion="Add a colon after the definition name",
                    ))

            for pattern, message, suggestion in TYPO_PATTERNS:
                match = pattern.search(line)
                if match:
                    issues.append(error(
                        "SYNTAX_ERROR",
                        message,
                        line=line_number,
                        column=match.start() + 1,
                        suggestion=suggestion,
                        context=stripped,
                    ))
        return issues

    def _check_potential_issues(self, code: str) -> list[ValidationIssue]:
        issues = []
        for match in EMPTY_DEFINITION.finditer(code):
            issues.append(warning(
                "EMPTY_DEFINITION",
                f'Definition "{match.group(1)}" always returns true - may be a placeholder',
                line=code.count("\n", 0, match.start()) + 1,
            ))

        for name in VALUESET_DECLARATION.findall(code):
            if code.count(f'"{name}"') <= 1:
                issues.append(warning(
                    "UNUSED_VALUESET",
                    f'Value set "{name}" is declared but never referenced',
                ))
        return issues

    def extract_metadata(self, code: str) -> dict[str, Any]:
        library = LIBRARY_PATTERN.search(code)
        return {
            "library_name": library.group(1) if library else None,
            "version": library.group(2) if library else None,
            "definition_count": len(re.findall(r'^define\s+"', code, re.MULTILINE)),
            "value_set_count": len(re.findall(r'^valueset\s+"', code, re.MULTILINE)),
        }

    def get_stats(self) -> dict[str, Any]:
        """Get service statistics."""
        return {"validation_count": self._validation_count}


# Module-level singleton
_service_instance: CQLValidatorService | None = None
_service_lock = threading.Lock()


def get_cql_validator_service() -> CQLValidatorService:
    """Get singleton instance of CQLValidatorService."""
    global _service_instance
    if _service_instance is None:
        with _service_lock:
            if _service_instance is None:
                _service_instance = CQLValidatorService()
    return _service_instance


def reset_cql_validator_service() -> None:
    """Reset the singleton instance (for testing)."""
    global _service_instance
    with _service_lock:
        _service_instance = None
