"""Universal Measure Specification (UMS) schemas.

The UMS is the canonical tree model of a clinical quality measure:
- Measure: metadata, global constraints, populations and value sets
- Population: one fixed sub-group with a root LogicalClause
- LogicalClause: AND/OR/NOT over child clauses and data elements
- DataElement: a typed clinical criterion (leaf)

Clause children form an explicit tagged union on the ``kind`` field.
"""

from datetime import date
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, model_validator

from measure_compiler.schemas.base import (
    Comparator,
    ConfidenceLevel,
    DataElementType,
    Gender,
    LogicalOperator,
    PopulationType,
    ReviewStatus,
    TimeUnit,
    TimingOperator,
)


class CodeReference(BaseModel):
    """A single code within a value set."""

    code: str = Field(..., min_length=1, description="Code value")
    system: str = Field(..., description="Code system name (LOINC, SNOMEDCT, ICD10CM, ...)")
    display: str | None = Field(None, description="Human-readable display")


class ValueSetReference(BaseModel):
    """A named collection of codes representing a clinical concept."""

    id: str | None = Field(None, description="Measure-scoped identifier")
    name: str = Field(..., description="Value set name used in generated code")
    oid: str | None = Field(None, description="VSAC OID")
    url: str | None = Field(None, description="Canonical URL (overrides OID-derived URL)")
    codes: list[CodeReference] = Field(default_factory=list)
    confidence: ConfidenceLevel = ConfidenceLevel.MEDIUM
    verified: bool = False


class TimingConstraint(BaseModel):
    """When a criterion must occur.

    Window form: within / before end of / after start of with value + unit.
    Age-based form: before age with value + unit counted from birth date.
    """

    operator: TimingOperator = TimingOperator.DURING
    value: int | None = Field(None, ge=0)
    unit: TimeUnit | None = None
    description: str | None = None


class QuantityRequirement(BaseModel):
    """How many qualifying events are required.

    Either comparator + value, or a min/max range.
    """

    comparator: Comparator | None = None
    value: int | None = Field(None, ge=0)
    min: int | None = Field(None, ge=0)
    max: int | None = Field(None, ge=0)

    @model_validator(mode="after")
    def check_single_form(self) -> "QuantityRequirement":
        has_comparison = self.comparator is not None or self.value is not None
        has_range = self.min is not None or self.max is not None
        if has_comparison and has_range:
            raise ValueError("Use either comparator/value or min/max, not both")
        if has_comparison and (self.comparator is None or self.value is None):
            raise ValueError("comparator and value must be given together")
        if not has_comparison and not has_range:
            raise ValueError("Quantity requirement needs comparator/value or min/max")
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError("min must not exceed max")
        return self


class Thresholds(BaseModel):
    """Numeric thresholds (age for demographics, result value for observations)."""

    age_min: int | None = Field(None, ge=0)
    age_max: int | None = Field(None, ge=0)
    value_min: float | None = None
    value_max: float | None = None
    unit: str | None = None


class DataElement(BaseModel):
    """A typed clinical criterion (tree leaf)."""

    kind: Literal["element"] = "element"
    id: str = Field(..., min_length=1, description="Component identifier")
    type: DataElementType
    description: str = ""
    value_set: ValueSetReference | None = Field(None, description="Inline value set")
    value_set_id: str | None = Field(
        None, description="Reference to a measure-level value set by id or OID"
    )
    gender: Gender | None = None
    thresholds: Thresholds | None = None
    timing: TimingConstraint | None = None
    quantity: QuantityRequirement | None = None
    negation: bool = False
    confidence: ConfidenceLevel = ConfidenceLevel.MEDIUM
    review_status: ReviewStatus = ReviewStatus.PENDING


class LogicalClause(BaseModel):
    """A boolean node over child clauses and data elements (tree branch)."""

    kind: Literal["clause"] = "clause"
    id: str | None = None
    operator: LogicalOperator = LogicalOperator.AND
    children: list["Criterion"] = Field(default_factory=list)


Criterion = Annotated[Union[LogicalClause, DataElement], Field(discriminator="kind")]

LogicalClause.model_rebuild()


class Population(BaseModel):
    """One measure sub-group with its criteria tree."""

    id: str | None = None
    type: PopulationType
    narrative: str = ""
    review_status: ReviewStatus = ReviewStatus.PENDING
    criteria: LogicalClause = Field(default_factory=LogicalClause)


class AgeRange(BaseModel):
    """Inclusive age bounds in years."""

    min: int = Field(0, ge=0)
    max: int = Field(999, ge=0)


class GlobalConstraints(BaseModel):
    """Constraints applying to every population."""

    age_range: AgeRange | None = None
    gender: Gender | None = None


class MeasurementPeriod(BaseModel):
    """Inclusive measurement period bounds."""

    start: date
    end: date


class Measure(BaseModel):
    """A complete measure aggregate, supplied by value to every operation."""

    id: str = ""
    title: str = ""
    version: str = "1.0.0"
    steward: str | None = None
    program: str | None = None
    measure_type: str = "process"
    scoring: str = "proportion"
    status: str | None = None
    description: str | None = None
    measurement_period: MeasurementPeriod | None = None
    global_constraints: GlobalConstraints | None = None
    populations: list[Population] = Field(default_factory=list)
    value_sets: list[ValueSetReference] = Field(default_factory=list)
