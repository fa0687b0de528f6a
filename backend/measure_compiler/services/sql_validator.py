"""Synapse SQL Validator Service.

Validates that T-SQL text follows the measure script conventions:
- CTE structure (ONT, DEMOG, PRED_*, population CTEs)
- Ontology joins and concept-name columns in DEMOG
- Standard predicate output columns
- Synapse date functions only
- Population scoping and safe statement patterns

Checks are pattern based and never parse SQL in general.
"""

from dataclasses import dataclass, field
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

REQUIRED_CTES = ("ONT", "DEMOG")

SYSTEM_CTES = {
    "ONT",
    "DEMOG",
    "MEASURE_RESULT",
    "INITIAL_POPULATION",
    "DENOMINATOR",
    "NUMERATOR",
    "DENOM_EXCLUSION",
    "DENOM_EXCEPTION",
    "NUM_EXCLUSION",
}

POPULATION_CTE_NAMES = (
    "INITIAL_POPULATION",
    "DENOMINATOR",
    "NUMERATOR",
    "DENOM_EXCLUSION",
    "DENOM_EXCEPTION",
    "NUM_EXCLUSION",
)

REQUIRED_PREDICATE_COLUMNS = ("population_id", "empi_id", "data_model")

CTE_PATTERN = re.compile(r"\b([A-Z_][A-Z0-9_]*)\s+as\s*\(", re.IGNORECASE)
VIEW_HEADER = re.compile(r"^\s*create\s+or\s+alter\s+view\s+\S+\s+as\s+with\b", re.IGNORECASE)
POPULATION_LITERAL = re.compile(r"population_id\s*=\s*'([^']*)'", re.IGNORECASE)
NON_SYNAPSE_SYNTAX = re.compile(r"interval\s+'|\bAGE\s*\(|current_date\s*\(\s*\)", re.IGNORECASE)

DROP_STATEMENT = r"\bdrop\s+(?:table|view|database|schema|procedure|function|index|user|login)\b"

DANGEROUS_PATTERNS = [
    re.compile(r";\s*drop\s+", re.IGNORECASE),
    re.compile(r";\s*delete\s+", re.IGNORECASE),
    re.compile(r";\s*update\s+", re.IGNORECASE),
    re.compile(r";\s*insert\s+", re.IGNORECASE),
    re.compile(r"--.*" + DROP_STATEMENT, re.IGNORECASE),
    re.compile(r"/\*.*" + DROP_STATEMENT + r".*\*/", re.IGNORECASE),
]

# Generated marker lines carry free-text element descriptions
COMPONENT_MARKER_LINE = re.compile(r"^[ \t]*-- \[component:[^\]\n]*\][^\n]*$", re.MULTILINE)


@dataclass
class CteAnalysis:
    """Descriptive CTE inventory and dependency graph."""

    total: int = 0
    names: list[str] = field(default_factory=list)
    predicates: list[str] = field(default_factory=list)
    populations: list[str] = field(default_factory=list)
    dependencies: dict[str, list[str]] = field(default_factory=dict)


@dataclass
class ColumnAnalysis:
    """Best-effort extraction of selected columns and conditions."""

    select_columns: dict[str, list[str]] = field(default_factory=dict)
    join_conditions: list[str] = field(default_factory=list)
    filter_conditions: list[str] = field(default_factory=list)


@dataclass
class DetailedValidationResult:
    result: ValidationResult
    cte_analysis: CteAnalysis
    column_analysis: ColumnAnalysis


# ============================================================================
# Text helpers
# ============================================================================


def strip_comments(sql: str) -> str:
    """Remove -- and /* */ comments outside string literals."""
    out: list[str] = []
    i = 0
    in_string = False
    length = len(sql)
    while i < length:
        char = sql[i]
        if in_string:
            out.append(char)
            if char == "'":
                in_string = False
            i += 1
            continue
        if char == "'":
            in_string = True
            out.append(char)
            i += 1
        elif sql.startswith("--", i):
            end = sql.find("\n", i)
            i = length if end == -1 else end
        elif sql.startswith("/*", i):
            end = sql.find("*/", i + 2)
            skipped = sql[i:] if end == -1 else sql[i:end + 2]
            out.append("\n" * skipped.count("\n"))
            i = length if end == -1 else end + 2
        else:
            out.append(char)
            i += 1
    return "".join(out)


def blank_string_literals(sql: str) -> str:
    """Empty every closed string literal, leaving comments in place."""
    out: list[str] = []
    i = 0
    length = len(sql)
    while i < length:
        if sql.startswith("--", i):
            end = sql.find("\n", i)
            end = length if end == -1 else end
        elif sql.startswith("/*", i):
            end = sql.find("*/", i + 2)
            end = length if end == -1 else end + 2
        elif sql[i] == "'":
            end = sql.find("'", i + 1)
            if end == -1:
                out.append(sql[i:])
                break
            out.append("''")
            i = end + 1
            continue
        else:
            end = i + 1
        out.append(sql[i:end])
        i = end
    return "".join(out)


def find_ctes(sql: str) -> list[tuple[str, int]]:
    """(name, position of opening parenthesis) for every CTE definition."""
    return [(m.group(1).upper(), m.end() - 1) for m in CTE_PATTERN.finditer(sql)]


def extract_body(sql: str, open_index: int) -> str:
    """Text between a parenthesis and its balanced close (string-aware)."""
    depth = 0
    in_string = False
    for index in range(open_index, len(sql)):
        char = sql[index]
        if in_string:
            if char == "'":
                in_string = False
            continue
        if char == "'":
            in_string = True
        elif char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth == 0:
                return sql[open_index + 1:index]
    return sql[open_index + 1:]


def cte_bodies(sql: str) -> dict[str, str]:
    bodies: dict[str, str] = {}
    for name, open_index in find_ctes(sql):
        bodies.setdefault(name, extract_body(sql, open_index))
    return bodies


def _select_clause(body: str) -> str | None:
    match = re.match(r"\s*select\b(.*?)\bfrom\b", body, re.IGNORECASE | re.DOTALL)
    return match.group(1) if match else None


def _split_columns(select_clause: str) -> list[str]:
    """Split a select list on top-level commas."""
    columns: list[str] = []
    depth = 0
    current: list[str] = []
    for char in select_clause:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        if char == "," and depth == 0:
            columns.append("".join(current))
            current = []
        else:
            current.append(char)
    columns.append("".join(current))
    return [column.strip() for column in columns if column.strip()]


# ============================================================================
# Validator
# ============================================================================


class SqlValidatorService:
    """Structural validator for Synapse measure scripts."""

    def __init__(self):
        self._validation_count = 0
        logger.info("SqlValidatorService initialized")

    def validate(self, sql: str, config: ValidationConfig | None = None) -> ValidationResult:
        """Validate SQL text against the measure script conventions.

        Args:
            sql: SQL script text
            config: Dialect and expected population id

        Returns:
            ValidationResult; score = 100 - 10 per error - 3 per warning
        """
        config = config or ValidationConfig()
        errors: list[ValidationIssue] = []
        warnings: list[ValidationIssue] = []
        suggestions: list[str] = []

        code = strip_comments(sql)
        bodies = cte_bodies(code)

        self._check_required_ctes(code, errors)
        self._check_structure(code, errors, warnings)
        self._check_naming(code, warnings, suggestions)
        self._check_predicate_columns(bodies, warnings)
        self._check_dialect(code, warnings)
        self._check_population_id(code, config.population_id, errors, warnings)
        self._check_ontology_joins(bodies, warnings)
        self._check_safety(sql, code, errors, warnings)
        self._check_syntax(sql, errors)

        result = build_result(errors, warnings, suggestions)
        self._validation_count += 1
        logger.debug(
            f"SQL validation: score={result.score}, {len(errors)} errors, {len(warnings)} warnings"
        )
        return result

    def validate_detailed(
        self, sql: str, config: ValidationConfig | None = None
    ) -> DetailedValidationResult:
        """Validate and additionally describe CTEs, columns and conditions."""
        code = strip_comments(sql)
        return DetailedValidationResult(
            result=self.validate(sql, config),
            cte_analysis=self.analyze_ctes(code),
            column_analysis=self.analyze_columns(code),
        )

    # ------------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------------

    def _check_required_ctes(self, code: str, errors: list[ValidationIssue]) -> None:
        for cte in REQUIRED_CTES:
            if not re.search(rf"\b{cte}\s+as\s*\(", code, re.IGNORECASE):
                errors.append(error(
                    "MISSING_REQUIRED_CTE",
                    f"Missing required CTE: {cte}",
                    suggestion=f"Add the {cte} CTE following the measure script conventions",
                ))

    def _check_structure(
        self, code: str, errors: list[ValidationIssue], warnings: list[ValidationIssue]
    ) -> None:
        stripped = code.strip()
        starts_with_cte = stripped.lower().startswith("with") or VIEW_HEADER.match(stripped)
        if not starts_with_cte:
            errors.append(error(
                "INVALID_CTE_STRUCTURE",
                "SQL must use CTE structure starting with WITH clause",
                suggestion='Restructure query to use "with CTEName as (...)" pattern',
            ))

        ont = re.search(r"\bONT\s+as\s*\(", code, re.IGNORECASE)
        demog = re.search(r"\bDEMOG\s+as\s*\(", code, re.IGNORECASE)
        if ont and demog and demog.start() < ont.start():
            warnings.append(warning(
                "CTE_ORDER",
                "ONT CTE should be defined before DEMOG CTE",
                suggestion="Reorder CTEs: ONT -> DEMOG -> PRED_*",
            ))

    def _check_naming(
        self, code: str, warnings: list[ValidationIssue], suggestions: list[str]
    ) -> None:
        predicate_count = 0
        for name, _ in find_ctes(code):
            if name in SYSTEM_CTES:
                continue
            if name.startswith("PRED_"):
                predicate_count += 1
                continue
            warnings.append(warning(
                "PREDICATE_NAMING",
                f'CTE "{name}" does not follow PRED_ naming convention',
                suggestion=f"Rename to PRED_{name} for consistency",
            ))
        if predicate_count == 0:
            suggestions.append("Consider adding PRED_* CTEs for clinical criteria")

    def _check_predicate_columns(
        self, bodies: dict[str, str], warnings: list[ValidationIssue]
    ) -> None:
        for name, body in bodies.items():
            if not name.startswith("PRED_"):
                continue
            select_clause = _select_clause(body)
            if select_clause is None:
                continue
            lowered = select_clause.lower()
            for column in REQUIRED_PREDICATE_COLUMNS:
                if column not in lowered:
                    warnings.append(warning(
                        "MISSING_PREDICATE_COLUMN",
                        f"Predicate {name} may be missing required column: {column}",
                        suggestion=f"Ensure predicate SELECT includes {column}",
                    ))

    def _check_dialect(self, code: str, warnings: list[ValidationIssue]) -> None:
        if NON_SYNAPSE_SYNTAX.search(code):
            warnings.append(warning(
                "DIALECT_MISMATCH",
                "SQL contains non-Synapse syntax",
                suggestion="Use Synapse/T-SQL functions: DATEDIFF(), DATEADD(), GETDATE()",
            ))
        if re.search(r"\bcurrent_date\b", code, re.IGNORECASE) and "GETDATE()" not in code:
            warnings.append(warning(
                "SYNAPSE_SYNTAX",
                "Use GETDATE() instead of current_date for T-SQL compatibility",
                suggestion='Change "current_date" to "GETDATE()"',
            ))

    def _check_population_id(
        self,
        code: str,
        population_id: str,
        errors: list[ValidationIssue],
        warnings: list[ValidationIssue],
    ) -> None:
        if "population_id" not in code.lower():
            errors.append(error(
                "MISSING_POPULATION_FILTER",
                "SQL does not filter by population_id",
                suggestion="Add population_id filter to all CTEs for data isolation",
            ))
            return

        if _is_placeholder(population_id):
            return

        literals = POPULATION_LITERAL.findall(code)
        mismatched = [
            literal for literal in literals
            if literal != population_id and not _is_placeholder(literal)
        ]
        if population_id not in code or mismatched:
            warnings.append(warning(
                "POPULATION_ID_MISMATCH",
                "Configured population_id not found in generated SQL",
                suggestion="Verify population_id filter matches configuration",
                context=mismatched[0] if mismatched else None,
            ))

    def _check_ontology_joins(
        self, bodies: dict[str, str], warnings: list[ValidationIssue]
    ) -> None:
        demog_body = bodies.get("DEMOG")
        if demog_body is None:
            return
        lowered = demog_body.lower()
        if not re.search(r"left\s+join\s+ont\b", lowered):
            warnings.append(warning(
                "MISSING_ONT_JOINS",
                "DEMOG CTE should include LEFT JOINs to ONT for concept resolution",
                suggestion="Add LEFT JOIN ONT aliases (GENDO, STATEO, etc.) for terminology normalization",
            ))
        if "concept_name" not in lowered:
            warnings.append(warning(
                "MISSING_CONCEPT_NAMES",
                "DEMOG CTE should select concept_name columns for normalized terminology",
                suggestion="Include columns like gender_concept_name, state_concept_name, etc.",
            ))

    def _check_safety(
        self,
        sql: str,
        code: str,
        errors: list[ValidationIssue],
        warnings: list[ValidationIssue],
    ) -> None:
        scanned = blank_string_literals(COMPONENT_MARKER_LINE.sub("", sql))
        if any(pattern.search(scanned) for pattern in DANGEROUS_PATTERNS):
            errors.append(error(
                "POTENTIAL_SQL_INJECTION",
                "SQL contains potentially dangerous patterns",
                suggestion="Review SQL for injection vulnerabilities",
            ))

        if re.search(r"(?<!')\$\{[^}]*\}", code):
            warnings.append(warning(
                "UNQUOTED_PARAMETER",
                "Template parameters should be properly quoted",
                suggestion="Ensure string parameters are wrapped in single quotes",
            ))

    def _check_syntax(self, sql: str, errors: list[ValidationIssue]) -> None:
        """Balanced parentheses and quotes, skipping comments and strings."""
        depth = 0
        line = 1
        quote_line: int | None = None
        i = 0
        length = len(sql)
        while i < length:
            char = sql[i]
            if char == "\n":
                line += 1
                i += 1
                continue
            if quote_line is not None:
                if char == "'":
                    if sql.startswith("''", i):
                        i += 2
                        continue
                    quote_line = None
                i += 1
                continue
            if sql.startswith("--", i):
                end = sql.find("\n", i)
                i = length if end == -1 else end
                continue
            if sql.startswith("/*", i):
                end = sql.find("*/", i + 2)
                skipped = sql[i:] if end == -1 else sql[i:end + 2]
                line += skipped.count("\n")
                i = length if end == -1 else end + 2
                continue
            if char == "'":
                quote_line = line
            elif char == "(":
                depth += 1
            elif char == ")":
                depth -= 1
                if depth < 0:
                    errors.append(error(
                        "UNBALANCED_PARENS", "Unexpected closing parenthesis", line=line
                    ))
                    depth = 0
            i += 1

        if depth > 0:
            errors.append(error("UNBALANCED_PARENS", f"{depth} unclosed parenthesis(es)"))
        if quote_line is not None:
            errors.append(error(
                "UNBALANCED_QUOTES",
                "Unbalanced single quotes detected",
                line=quote_line,
                suggestion="Check for unclosed string literals",
            ))

    # ------------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------------

    def analyze_ctes(self, code: str) -> CteAnalysis:
        analysis = CteAnalysis()
        bodies = cte_bodies(code)
        for name, _ in find_ctes(code):
            if name in analysis.names:
                continue
            analysis.names.append(name)
            if name.startswith("PRED_"):
                analysis.predicates.append(name)
            elif name in POPULATION_CTE_NAMES:
                analysis.populations.append(name)

        for name in analysis.names:
            body = bodies.get(name, "")
            analysis.dependencies[name] = [
                other for other in analysis.names
                if other != name and re.search(rf"\b{other}\b", body, re.IGNORECASE)
            ]
        analysis.total = len(analysis.names)
        return analysis

    def analyze_columns(self, code: str) -> ColumnAnalysis:
        analysis = ColumnAnalysis()
        for name, body in cte_bodies(code).items():
            select_clause = _select_clause(body)
            if select_clause is None:
                continue
            columns = []
            for column in _split_columns(re.sub(r"^\s*distinct\b", "", select_clause, flags=re.IGNORECASE)):
                alias = re.search(r"\bas\s+([a-z_][a-z0-9_]*)\s*$", column, re.IGNORECASE)
                columns.append(alias.group(1) if alias else column.split(".")[-1])
            analysis.select_columns[name] = columns

        join_pattern = re.compile(
            r"\bon\s+(.*?)(?=\bleft\s+join|\binner\s+join|\bright\s+join|\bwhere\b|\bgroup\s+by|\)|$)",
            re.IGNORECASE | re.DOTALL,
        )
        analysis.join_conditions = [m.group(1).strip() for m in join_pattern.finditer(code)]

        where_pattern = re.compile(
            r"\bwhere\s+(.*?)(?=\bgroup\s+by|\border\s+by|\bunion\b|\bintersect\b|\bexcept\b|\)\s*(?:,|$)|;|$)",
            re.IGNORECASE | re.DOTALL,
        )
        analysis.filter_conditions = [m.group(1).strip() for m in where_pattern.finditer(code)]
        return analysis

    def get_stats(self) -> dict[str, Any]:
        """Get service statistics."""
        return {"validation_count": self._validation_count}


def _is_placeholder(value: str) -> bool:
    return "${" in value or "POPULATION_ID" in value


# Module-level singleton
_service_instance: SqlValidatorService | None = None
_service_lock = threading.Lock()


def get_sql_validator_service() -> SqlValidatorService:
    """Get singleton instance of SqlValidatorService."""
    global _service_instance
    if _service_instance is None:
        with _service_lock:
            if _service_instance is None:
                _service_instance = SqlValidatorService()
    return _service_instance


def reset_sql_validator_service() -> None:
    """Reset the singleton instance (for testing)."""
    global _service_instance
    with _service_lock:
        _service_instance = None
