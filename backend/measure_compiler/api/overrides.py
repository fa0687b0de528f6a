"""Code Override API Endpoints.

Manual edits to generated code, per (measure, component, format):
- Save: replace a component's code and lock it (edit note required)
- Note: append a note to an existing override
- Revert: unlock so generated code is used again (notes kept)
- List overrides for a measure and note history for a component
"""

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field

from measure_compiler.api.dependencies import OverrideStoreDep
from measure_compiler.schemas.base import ChangeType, OutputFormat

router = APIRouter(prefix="/overrides", tags=["Overrides"])


# ============================================================================
# Request/Response Models
# ============================================================================


class SaveOverrideRequest(BaseModel):
    """Manual code edit for one component."""

    measure_id: str = Field(..., description="Measure owning the component")
    component_id: str = Field(..., description="Data element id")
    format: OutputFormat = Field(..., description="Format of the edited code")
    code: str = Field(..., description="Replacement code")
    note: str = Field(..., description="Why the edit was made")
    original_generated_code: str = Field("", description="Generated code being replaced")
    change_type: ChangeType | None = Field(None, description="Classification of the edit")
    author: str = Field("user", description="Who made the edit")


class OverrideNoteRequest(BaseModel):
    """Note appended to an existing override."""

    measure_id: str
    component_id: str
    format: OutputFormat
    note: str = Field(..., description="Note text")
    change_type: ChangeType | None = None
    author: str = "user"


class RevertOverrideRequest(BaseModel):
    """Revert a component to generated code."""

    measure_id: str
    component_id: str
    format: OutputFormat | None = Field(
        None, description="Format to revert; every format when omitted"
    )
    author: str | None = None


class EditNoteResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    timestamp: datetime
    author: str
    content: str
    format: OutputFormat
    change_type: ChangeType | None = None
    previous_code: str | None = None


class CodeOverrideResponse(BaseModel):
    """Stored override with its note history."""

    model_config = ConfigDict(from_attributes=True)

    measure_id: str
    component_id: str
    format: OutputFormat
    code: str
    is_locked: bool
    created_at: datetime
    updated_at: datetime
    original_generated_code: str
    notes: list[EditNoteResponse] = Field(default_factory=list)


class OverrideOperationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    success: bool
    override: CodeOverrideResponse | None = None
    errors: list[str] = Field(default_factory=list)


class RevertResponse(BaseModel):
    success: bool = True
    reverted: int = Field(..., description="Number of overrides unlocked")


# ============================================================================
# Endpoints
# ============================================================================


@router.post(
    "",
    response_model=OverrideOperationResponse,
    summary="Save a manual override",
    description="Replace a component's generated code and lock it against regeneration.",
)
def save_override(request: SaveOverrideRequest, store: OverrideStoreDep) -> OverrideOperationResponse:
    """Save an override.

    Raises:
        HTTPException: 400 if the note is too short or identifiers are missing
    """
    result = store.save(
        request.measure_id,
        request.component_id,
        request.format,
        request.code,
        request.note,
        request.original_generated_code,
        change_type=request.change_type,
        author=request.author,
    )
    if not result.success:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.errors)
    return OverrideOperationResponse.model_validate(result)


@router.post(
    "/note",
    response_model=OverrideOperationResponse,
    summary="Add an edit note",
)
def add_note(request: OverrideNoteRequest, store: OverrideStoreDep) -> OverrideOperationResponse:
    """Append a note to an existing override.

    Raises:
        HTTPException: 404 if no override exists, 400 if the note is too short
    """
    if store.get(request.measure_id, request.component_id, request.format) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No override for {request.measure_id}/{request.component_id} ({request.format.value})",
        )
    result = store.add_note(
        request.measure_id,
        request.component_id,
        request.format,
        request.note,
        change_type=request.change_type,
        author=request.author,
    )
    if not result.success:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.errors)
    return OverrideOperationResponse.model_validate(result)


@router.post(
    "/revert",
    response_model=RevertResponse,
    summary="Revert to generated code",
    description="Unlock an override. Idempotent; notes are kept for audit.",
)
def revert_override(request: RevertOverrideRequest, store: OverrideStoreDep) -> RevertResponse:
    if request.format is None:
        reverted = store.revert_all(request.measure_id, request.component_id, request.author)
        return RevertResponse(reverted=reverted)

    existing = store.get(request.measure_id, request.component_id, request.format)
    store.revert(request.measure_id, request.component_id, request.format, request.author)
    return RevertResponse(reverted=1 if existing is not None and existing.is_locked else 0)


@router.get(
    "/{measure_id}",
    response_model=list[CodeOverrideResponse],
    summary="List locked overrides for a measure",
)
def list_overrides(
    measure_id: str,
    store: OverrideStoreDep,
    format: Annotated[OutputFormat | None, Query(description="Restrict to one format")] = None,
) -> list[CodeOverrideResponse]:
    return [
        CodeOverrideResponse.model_validate(override)
        for override in store.get_overrides_for_measure(measure_id, format)
    ]


@router.get(
    "/{measure_id}/components/{component_id}/notes",
    response_model=list[EditNoteResponse],
    summary="Edit note history for a component",
    description="Notes across every format, newest first.",
)
def list_notes(measure_id: str, component_id: str, store: OverrideStoreDep) -> list[EditNoteResponse]:
    return [
        EditNoteResponse.model_validate(note)
        for note in store.get_all_notes(component_id, measure_id)
    ]
