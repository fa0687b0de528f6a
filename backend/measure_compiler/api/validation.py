"""Validation API Endpoints.

Offline structural checks for generated or hand-edited code:
- Validate: CQL library or Synapse SQL script
- Detailed: SQL validation plus CTE and column analysis
- Expression: a single CQL expression (override snippets)
"""

from typing import Any

from fastapi import APIRouter
from pydantic import BaseModel, ConfigDict, Field

from measure_compiler.api.dependencies import CompilerDep
from measure_compiler.core.audit import AuditAction, log_audit
from measure_compiler.schemas.base import OutputFormat
from measure_compiler.schemas.codegen import ValidationConfig
from measure_compiler.services.validation import IssueSeverity, ValidationResult

router = APIRouter(prefix="/validation", tags=["Validation"])


# ============================================================================
# Request/Response Models
# ============================================================================


class ValidateRequest(BaseModel):
    """Code to validate."""

    format: OutputFormat = Field(..., description="Format of the code")
    code: str = Field(..., description="Code text")
    config: ValidationConfig | None = Field(None, description="SQL validation options")


class DetailedValidateRequest(BaseModel):
    """SQL to validate with analysis."""

    code: str = Field(..., description="Synapse SQL script")
    config: ValidationConfig | None = Field(None, description="SQL validation options")


class ExpressionRequest(BaseModel):
    expression: str = Field(..., description="Single CQL expression")


class ValidationIssueResponse(BaseModel):
    """One validator finding."""

    model_config = ConfigDict(from_attributes=True)

    severity: IssueSeverity
    code: str = Field(..., description="Stable issue code (e.g. MISSING_REQUIRED_CTE)")
    message: str
    line: int | None = None
    column: int | None = None
    suggestion: str | None = None
    context: str | None = None


class ValidationResponse(BaseModel):
    """Validation outcome with a 0-100 compliance score."""

    model_config = ConfigDict(from_attributes=True)

    valid: bool = Field(..., description="True when there are no errors")
    score: int = Field(..., ge=0, le=100, description="Compliance score")
    errors: list[ValidationIssueResponse] = Field(default_factory=list)
    warnings: list[ValidationIssueResponse] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class CteAnalysisResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total: int
    names: list[str]
    predicates: list[str]
    populations: list[str]
    dependencies: dict[str, list[str]]


class ColumnAnalysisResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    select_columns: dict[str, list[str]]
    join_conditions: list[str]
    filter_conditions: list[str]


class DetailedValidationResponse(BaseModel):
    """SQL validation outcome plus structural analysis."""

    model_config = ConfigDict(from_attributes=True)

    result: ValidationResponse
    cte_analysis: CteAnalysisResponse
    column_analysis: ColumnAnalysisResponse


def _audit_validation(output_format: OutputFormat, result: ValidationResult) -> None:
    log_audit(
        AuditAction.VALIDATE,
        resource_type="code",
        output_format=output_format.value,
        details={
            "score": result.score,
            "errors": len(result.errors),
            "warnings": len(result.warnings),
        },
    )


# ============================================================================
# Endpoints
# ============================================================================


@router.post(
    "/validate",
    response_model=ValidationResponse,
    summary="Validate code",
    description="Run offline structural checks on CQL or Synapse SQL.",
)
def validate(request: ValidateRequest, compiler: CompilerDep) -> ValidationResponse:
    result = compiler.validate(request.format, request.code, request.config)
    _audit_validation(request.format, result)
    return ValidationResponse.model_validate(result)


@router.post(
    "/validate/detailed",
    response_model=DetailedValidationResponse,
    summary="Validate SQL with analysis",
    description="Validate Synapse SQL and describe its CTEs, columns and conditions.",
)
def validate_detailed(
    request: DetailedValidateRequest, compiler: CompilerDep
) -> DetailedValidationResponse:
    detailed = compiler.validate_detailed(request.code, request.config)
    _audit_validation(OutputFormat.SYNAPSE_SQL, detailed.result)
    return DetailedValidationResponse.model_validate(detailed)


@router.post(
    "/expression",
    response_model=ValidationResponse,
    summary="Validate a CQL expression",
    description="Check a single CQL expression, e.g. the body of a manual override.",
)
def validate_expression(request: ExpressionRequest, compiler: CompilerDep) -> ValidationResponse:
    result = compiler.validate_expression(request.expression)
    return ValidationResponse.model_validate(result)
