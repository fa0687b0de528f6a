"""Pydantic schemas for Measure Compiler."""

from measure_compiler.schemas.base import (
    ChangeType,
    Comparator,
    ConfidenceLevel,
    DataElementType,
    DiffChangeType,
    Gender,
    LogicalOperator,
    OutputFormat,
    PopulationType,
    ReviewStatus,
    SqlDialect,
    TimeUnit,
    TimingOperator,
)
from measure_compiler.schemas.codegen import GenerationConfig, ValidationConfig
from measure_compiler.schemas.ums import (
    AgeRange,
    CodeReference,
    Criterion,
    DataElement,
    GlobalConstraints,
    LogicalClause,
    Measure,
    MeasurementPeriod,
    Population,
    QuantityRequirement,
    Thresholds,
    TimingConstraint,
    ValueSetReference,
)

__all__ = [
    # Enums
    "ChangeType",
    "Comparator",
    "ConfidenceLevel",
    "DataElementType",
    "DiffChangeType",
    "Gender",
    "LogicalOperator",
    "OutputFormat",
    "PopulationType",
    "ReviewStatus",
    "SqlDialect",
    "TimeUnit",
    "TimingOperator",
    # Config
    "GenerationConfig",
    "ValidationConfig",
    # UMS
    "AgeRange",
    "CodeReference",
    "Criterion",
    "DataElement",
    "GlobalConstraints",
    "LogicalClause",
    "Measure",
    "MeasurementPeriod",
    "Population",
    "QuantityRequirement",
    "Thresholds",
    "TimingConstraint",
    "ValueSetReference",
]
