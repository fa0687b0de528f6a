"""Measure Diff API Endpoint.

Compares two versions of a measure and returns a structured diff plus a
human-readable report.
"""

from fastapi import APIRouter
from pydantic import BaseModel, ConfigDict, Field

from measure_compiler.api.dependencies import CompilerDep
from measure_compiler.core.audit import AuditAction, log_audit
from measure_compiler.schemas.base import DiffChangeType
from measure_compiler.schemas.ums import DataElement, Measure
from measure_compiler.services.measure_diff import format_diff_summary

router = APIRouter(prefix="/diff", tags=["Diff"])


class DiffRequest(BaseModel):
    """Two measure snapshots to compare."""

    old: Measure = Field(..., description="Previous version")
    new: Measure = Field(..., description="Current version")
    include_code_diff: bool = Field(False, description="Also diff the generated CQL")


class ValueSetDiffResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    change_type: DiffChangeType
    name_changed: bool
    oid_changed: bool
    old_oid: str | None = None
    new_oid: str | None = None
    codes_added: int = 0
    codes_removed: int = 0


class ElementDiffResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    change_type: DiffChangeType
    element_id: str
    old_element: DataElement | None = None
    new_element: DataElement | None = None
    changes: list[str] = Field(default_factory=list)
    value_set_diff: ValueSetDiffResponse | None = None


class PopulationDiffResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    change_type: DiffChangeType
    population_type: str
    old_narrative: str | None = None
    new_narrative: str | None = None


class MetadataDiffResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    field: str
    old_value: str | None = None
    new_value: str | None = None
    change_type: DiffChangeType


class DiffSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    elements_added: int
    elements_removed: int
    elements_modified: int
    value_sets_changed: int
    populations_changed: int
    metadata_changed: int
    total_changes: int


class DiffResponse(BaseModel):
    """Structured comparison with a rendered report."""

    model_config = ConfigDict(from_attributes=True)

    old_measure_id: str
    new_measure_id: str
    old_version: str
    new_version: str
    summary: DiffSummaryResponse
    metadata_changes: list[MetadataDiffResponse] = Field(default_factory=list)
    population_changes: list[PopulationDiffResponse] = Field(default_factory=list)
    element_changes: list[ElementDiffResponse] = Field(default_factory=list)
    code_diff: list[str] | None = None
    report: str = Field("", description="Human-readable summary")


@router.post(
    "",
    response_model=DiffResponse,
    summary="Compare two measure versions",
    description="Element, value set, population and metadata changes between two snapshots.",
)
def diff_measures(request: DiffRequest, compiler: CompilerDep) -> DiffResponse:
    result = compiler.diff(request.old, request.new, request.include_code_diff)
    log_audit(
        AuditAction.DIFF,
        resource_type="measure",
        resource_id=request.new.id or None,
        measure_id=request.new.id or None,
        details={"total_changes": result.summary.total_changes},
    )

    response = DiffResponse.model_validate(result)
    response.report = format_diff_summary(result)
    return response
