"""Code Generation API Endpoints.

Compiles a measure criteria tree into executable code:
- Generate: one output format (CQL or Synapse SQL)
- Generate all: every supported format in one call

Locked manual overrides for the measure are merged into the output.
"""

from dataclasses import asdict
from datetime import datetime
import logging
from typing import Any

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from measure_compiler.api.dependencies import CompilerDep
from measure_compiler.core.audit import AuditAction, log_audit
from measure_compiler.schemas.base import OutputFormat
from measure_compiler.schemas.codegen import GenerationConfig
from measure_compiler.schemas.ums import Measure
from measure_compiler.services.generation import GenerationResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/codegen", tags=["Code Generation"])


# ============================================================================
# Request/Response Models
# ============================================================================


class GenerateRequest(BaseModel):
    """Request to generate code for one format."""

    format: OutputFormat = Field(..., description="Output format (cql, synapse-sql)")
    measure: Measure = Field(..., description="Measure criteria tree")
    config: GenerationConfig | None = Field(None, description="Generation options")
    strict: bool = Field(
        default=False,
        description="Respond with 400 instead of a success=false result when generation fails",
    )


class GenerateAllRequest(BaseModel):
    """Request to generate every supported format."""

    measure: Measure = Field(..., description="Measure criteria tree")
    config: GenerationConfig | None = Field(None, description="Generation options")


class GenerationResponse(BaseModel):
    """Generated code with diagnostics."""

    success: bool = Field(..., description="Whether code was produced")
    format: OutputFormat = Field(..., description="Output format")
    code: str = Field("", description="Generated code (empty on failure)")
    errors: list[str] = Field(default_factory=list, description="Fatal problems")
    warnings: list[str] = Field(default_factory=list, description="Non-fatal problems")
    metadata: dict[str, Any] | None = Field(None, description="Format-specific summary")
    overrides_applied: int = Field(0, description="Manual overrides merged into the code")
    generated_at: datetime = Field(..., description="Generation timestamp (UTC)")


class GenerateAllResponse(BaseModel):
    """Generated code for every format."""

    measure_id: str = Field(..., description="Measure identifier")
    results: dict[OutputFormat, GenerationResponse] = Field(..., description="Results by format")


def to_generation_response(result: GenerationResult) -> GenerationResponse:
    return GenerationResponse(
        success=result.success,
        format=result.output_format,
        code=result.code,
        errors=result.errors,
        warnings=result.warnings,
        metadata=asdict(result.metadata) if result.metadata is not None else None,
        overrides_applied=result.overrides_applied,
        generated_at=result.generated_at,
    )


def _audit_generation(measure: Measure, result: GenerationResult) -> None:
    log_audit(
        AuditAction.GENERATE,
        resource_type="measure",
        resource_id=measure.id or None,
        measure_id=measure.id or None,
        output_format=result.output_format.value,
        details={
            "warnings": len(result.warnings),
            "errors": len(result.errors),
            "overrides_applied": result.overrides_applied,
        },
        success=result.success,
    )


# ============================================================================
# Endpoints
# ============================================================================


@router.post(
    "/generate",
    response_model=GenerationResponse,
    summary="Generate code for a measure",
    description="Compile a measure criteria tree to CQL or Synapse SQL.",
)
def generate(request: GenerateRequest, compiler: CompilerDep) -> GenerationResponse:
    """Generate code for one output format.

    Raises:
        HTTPException: 400 if generation fails and strict mode is requested
    """
    result = compiler.generate(request.format, request.measure, request.config)
    _audit_generation(request.measure, result)

    if not result.success and request.strict:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": "Generation failed", "errors": result.errors},
        )
    return to_generation_response(result)


@router.post(
    "/generate/all",
    response_model=GenerateAllResponse,
    summary="Generate every format",
    description="Compile a measure to CQL and Synapse SQL in one call.",
)
def generate_all(request: GenerateAllRequest, compiler: CompilerDep) -> GenerateAllResponse:
    results = compiler.generate_all(request.measure, request.config)
    for result in results.values():
        _audit_generation(request.measure, result)

    return GenerateAllResponse(
        measure_id=request.measure.id,
        results={
            output_format: to_generation_response(result)
            for output_format, result in results.items()
        },
    )
