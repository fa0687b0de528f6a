"""Result records shared by the code generators."""

from dataclasses import dataclass, field
from datetime import UTC, date, datetime

from measure_compiler.core.config import settings
from measure_compiler.schemas.base import OutputFormat
from measure_compiler.schemas.codegen import GenerationConfig
from measure_compiler.schemas.ums import Measure

TRUE_LITERAL = "true"
FALSE_LITERAL = "false"


@dataclass
class CqlMetadata:
    """Summary of a generated CQL library."""

    library_name: str
    version: str
    population_count: int
    value_set_count: int
    definition_count: int


@dataclass
class SqlMetadata:
    """Summary of a generated SQL script."""

    predicate_count: int
    data_models_used: list[str] = field(default_factory=list)
    estimated_complexity: str = "low"  # low, medium, high
    ontology_contexts: list[str] = field(default_factory=list)


@dataclass
class GenerationResult:
    """Outcome of a generate call. Never raised, always returned."""

    success: bool
    output_format: OutputFormat
    code: str = ""
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    metadata: CqlMetadata | SqlMetadata | None = None
    overrides_applied: int = 0
    generated_at: datetime = field(default_factory=lambda: datetime.now(UTC))


def resolve_measurement_period(
    measure: Measure, config: GenerationConfig | None = None
) -> tuple[date, date]:
    """Measurement period bounds: request override, then measure, then default year."""
    if config is not None and config.measurement_period is not None:
        return config.measurement_period.start, config.measurement_period.end
    if measure.measurement_period is not None:
        return measure.measurement_period.start, measure.measurement_period.end
    return (
        date.fromisoformat(settings.default_measurement_period_start),
        date.fromisoformat(settings.default_measurement_period_end),
    )


def check_measure_preconditions(measure: Measure) -> list[str]:
    """Required-field checks shared by both generators."""
    errors: list[str] = []
    if not measure.id or not measure.id.strip():
        errors.append("Measure ID is required")
    if not measure.populations:
        errors.append("At least one population definition is required")
    return errors
