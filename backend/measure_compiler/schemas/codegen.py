"""Configuration schemas shared by generators and validators."""

from pydantic import BaseModel, Field

from measure_compiler.core.config import settings
from measure_compiler.schemas.base import SqlDialect
from measure_compiler.schemas.ums import MeasurementPeriod


class GenerationConfig(BaseModel):
    """Options recognized by the code generators."""

    dialect: SqlDialect = Field(
        default=SqlDialect(settings.default_sql_dialect),
        description="SQL dialect (single supported dialect)",
    )
    population_id: str = Field(
        default=settings.default_population_id,
        description="Population id literal or parameter placeholder",
    )
    measurement_period: MeasurementPeriod | None = Field(
        default=None,
        description="Overrides the measure's own measurement period",
    )
    ontology_contexts: list[str] | None = Field(
        default=None,
        description="Terminology contexts for the ONT CTE (derived from data models when unset)",
    )
    include_comments: bool = Field(
        default=settings.include_sql_comments,
        description="Emit header and section comments in SQL output",
    )
    exclude_snapshots_and_archives: bool = Field(
        default=True,
        description="Filter SNAPSHOT/ARCHIVE populations out of every row source",
    )


class ValidationConfig(BaseModel):
    """Options recognized by the structural validators."""

    dialect: SqlDialect = SqlDialect.SYNAPSE
    population_id: str = settings.default_population_id
