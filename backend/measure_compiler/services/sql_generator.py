"""Synapse SQL Generator Service.

Compiles a Universal Measure Specification tree into a CTE-based T-SQL
script wrapped in persisted views.

Features:
- ONT and DEMOG base CTEs with derived or configured ontology contexts
- One PRED_* CTE per data element, preceded by its component marker
- PRED_GROUP_* CTEs for nested clauses (DEMOG membership tests)
- Population CTEs and membership/result views separated by GO
- Quantity requirements as grouped membership tests
- Complexity estimate from predicate and data model counts
"""

from dataclasses import dataclass, field
from datetime import UTC, date, datetime
import logging
import threading
from typing import Any, assert_never

from measure_compiler.core.config import settings
from measure_compiler.schemas.base import (
    DataElementType,
    Gender,
    LogicalOperator,
    OutputFormat,
    PopulationType,
    TimingOperator,
)
from measure_compiler.schemas.codegen import GenerationConfig
from measure_compiler.schemas.ums import Criterion, DataElement, LogicalClause, Measure
from measure_compiler.services import sql_templates as templates
from measure_compiler.services.component_markers import sql_marker_line
from measure_compiler.services.generation import (
    TRUE_LITERAL,
    GenerationResult,
    SqlMetadata,
    check_measure_preconditions,
    resolve_measurement_period,
)
from measure_compiler.services.measure_tree import (
    component_description,
    find_population,
    iter_measure_elements,
    resolve_value_set,
)

logger = logging.getLogger(__name__)

EMPTY_SET_CONDITION = "1 = 0"

# Population CTE name per population type, in emission order
POPULATION_CTE_NAMES: dict[PopulationType, str] = {
    PopulationType.INITIAL_POPULATION: "INITIAL_POPULATION",
    PopulationType.DENOMINATOR: "DENOMINATOR",
    PopulationType.DENOMINATOR_EXCLUSION: "DENOM_EXCLUSION",
    PopulationType.DENOMINATOR_EXCEPTION: "DENOM_EXCEPTION",
    PopulationType.NUMERATOR: "NUMERATOR",
    PopulationType.NUMERATOR_EXCLUSION: "NUM_EXCLUSION",
}


def estimate_complexity(predicate_count: int, model_count: int) -> str:
    """Bucket a script by predicate and data model counts."""
    if predicate_count <= 3 and model_count <= 2:
        return "low"
    if predicate_count <= 8 and model_count <= 4:
        return "medium"
    return "high"


@dataclass
class SqlBuildContext:
    """Resolved options for one generation pass."""

    population_id: str
    period: tuple[date, date]
    exclude_snapshots: bool


@dataclass
class _PredicateState:
    ctes: list[str] = field(default_factory=list)
    counters: dict[str, int] = field(default_factory=dict)
    data_models: list[str] = field(default_factory=list)
    global_demographic_alias: str | None = None


# ============================================================================
# Predicate Builder
# ============================================================================


class SqlPredicateBuilder:
    """Walks criteria trees, emitting PRED_* CTEs and membership conditions.

    Conditions are expressed over ``DEMOG D``. A condition equal to
    TRUE_LITERAL means "no constraint" and is dropped by the parent.
    """

    def __init__(self, measure: Measure, context: SqlBuildContext):
        self.measure = measure
        self.context = context
        self.warnings: list[str] = []
        self._state = _PredicateState()

    @property
    def predicate_ctes(self) -> list[str]:
        return self._state.ctes

    @property
    def data_models_used(self) -> list[str]:
        return self._state.data_models

    @property
    def global_demographic_alias(self) -> str | None:
        return self._state.global_demographic_alias

    def _next_alias(self, prefix: str) -> str:
        count = self._state.counters.get(prefix, 0) + 1
        self._state.counters[prefix] = count
        return f"PRED_{prefix}_{count}"

    def _use_model(self, name: str) -> None:
        if name not in self._state.data_models:
            self._state.data_models.append(name)

    def _scope(self, alias: str) -> list[str]:
        return templates.population_scope_filters(
            alias, self.context.population_id, self.context.exclude_snapshots
        )

    # ------------------------------------------------------------------------
    # Demographics
    # ------------------------------------------------------------------------

    def add_global_constraints(self) -> None:
        """Emit the measure-wide demographic CTE when constraints exist."""
        constraints = self.measure.global_constraints
        if constraints is None:
            return
        conditions = []
        if constraints.age_range is not None:
            conditions.append(f"D.age_in_years >= {constraints.age_range.min}")
            conditions.append(f"D.age_in_years <= {constraints.age_range.max}")
        if constraints.gender is not None and constraints.gender != Gender.ALL:
            conditions.append(_gender_condition(constraints.gender))
        if not conditions:
            return

        alias = self._next_alias("DEMOG")
        self._use_model("Demographics")
        self._state.global_demographic_alias = alias
        self._state.ctes.append(
            templates.predicate_cte(
                alias,
                "-- Global demographic constraints",
                templates.demographic_select("Global demographic constraints"),
                "DEMOG D",
                conditions,
            )
        )

    def _demographic_alias(self, element: DataElement, description: str) -> str:
        conditions = []
        if element.gender is not None and element.gender != Gender.ALL:
            conditions.append(_gender_condition(element.gender))
        thresholds = element.thresholds
        if thresholds is not None:
            if thresholds.age_min is not None:
                conditions.append(f"D.age_in_years >= {thresholds.age_min}")
            if thresholds.age_max is not None:
                conditions.append(f"D.age_in_years <= {thresholds.age_max}")

        if not conditions and self._state.global_demographic_alias is not None:
            return self._state.global_demographic_alias

        alias = self._next_alias("DEMOG")
        self._use_model("Demographics")
        self._state.ctes.append(
            templates.predicate_cte(
                alias,
                sql_marker_line(element.id, templates.sql_comment_text(description)),
                templates.demographic_select(description),
                "DEMOG D",
                conditions,
            )
        )
        return alias

    # ------------------------------------------------------------------------
    # Clinical predicates
    # ------------------------------------------------------------------------

    def _clinical_alias(self, element: DataElement, description: str) -> str | None:
        model = templates.DATA_MODELS.get(element.type)
        if model is None:
            self.warnings.append(
                f'Unsupported criterion type "{element.type.value}" for "{description}"'
            )
            return None

        a = model.alias
        conditions = self._scope(a)
        marker = sql_marker_line(element.id, templates.sql_comment_text(description))

        value_set = resolve_value_set(element, self.measure)
        if value_set is not None and value_set.oid:
            conditions.append(templates.value_set_condition(model, value_set.oid))
        elif value_set is not None and value_set.codes:
            conditions.append(
                templates.explicit_codes_condition(model, [code.code for code in value_set.codes])
            )
        else:
            self.warnings.append(f'No value set or codes defined for "{description}"')
            marker += (
                f'\n-- WARNING: No value set or codes defined for '
                f'"{templates.sql_comment_text(description)}"'
            )

        thresholds = element.thresholds
        if model.value_column and thresholds is not None:
            if thresholds.value_min is not None:
                conditions.append(f"{a}.{model.value_column} >= {thresholds.value_min:g}")
            if thresholds.value_max is not None:
                conditions.append(f"{a}.{model.value_column} <= {thresholds.value_max:g}")

        from_clause = f"{model.table} {a}"
        timing_conditions, needs_demog = self._timing_conditions(element, model, description)
        if needs_demog:
            from_clause += f"\n  inner join DEMOG D\n    on D.empi_id = {a}.empi_id"
        conditions.extend(timing_conditions)

        alias = self._next_alias(model.prefix)
        self._use_model(model.name)
        self._state.ctes.append(
            templates.predicate_cte(
                alias,
                marker,
                templates.clinical_select(model, description),
                from_clause,
                conditions,
            )
        )
        return alias

    def _timing_conditions(
        self, element: DataElement, model: templates.SqlDataModel, description: str
    ) -> tuple[list[str], bool]:
        column = f"{model.alias}.{model.start_column}"
        start, end = (templates.sql_date(bound) for bound in self.context.period)
        during = [f"{column} >= {start}", f"{column} <= {end}"]
        timing = element.timing

        if timing is None or timing.operator == TimingOperator.DURING:
            return during, False

        if timing.value is None or timing.unit is None:
            self.warnings.append(
                f'Timing "{timing.operator.value}" for "{description}" has no value/unit; '
                "defaulted to the Measurement Period"
            )
            return during, False

        unit = templates.DATEADD_UNITS[timing.unit]
        if timing.operator in (TimingOperator.WITHIN, TimingOperator.BEFORE_END_OF):
            return [
                f"{column} >= DATEADD({unit}, -{timing.value}, {end})",
                f"{column} <= {end}",
            ], False
        if timing.operator == TimingOperator.AFTER_START_OF:
            return [
                f"{column} >= {start}",
                f"{column} <= DATEADD({unit}, {timing.value}, {start})",
            ], False
        if timing.operator == TimingOperator.BEFORE_AGE:
            return [f"{column} < DATEADD({unit}, {timing.value}, D.birth_date)"], True
        assert_never(timing.operator)

    # ------------------------------------------------------------------------
    # Tree walk
    # ------------------------------------------------------------------------

    def clause_condition(self, clause: LogicalClause) -> str:
        """Membership condition for a clause; children reducing to true are left out."""
        parts: list[str] = []
        for child in clause.children:
            condition = self._criterion_condition(child)
            if condition != TRUE_LITERAL:
                parts.append(condition)

        if not parts:
            return TRUE_LITERAL

        if clause.operator == LogicalOperator.NOT:
            if len(clause.children) > 1:
                label = clause.id or "unnamed clause"
                self.warnings.append(
                    f'NOT clause "{label}" has {len(clause.children)} children; '
                    "only the first is negated"
                )
            return f"not ({parts[0]})"

        joiner = "\n    or " if clause.operator == LogicalOperator.OR else "\n    and "
        return joiner.join(f"({part})" if "\n" in part else part for part in parts)

    def _criterion_condition(self, node: Criterion) -> str:
        if isinstance(node, LogicalClause):
            return self._group_condition(node)
        elif isinstance(node, DataElement):
            return self.element_condition(node)
        else:
            assert_never(node)

    def _group_condition(self, clause: LogicalClause) -> str:
        condition = self.clause_condition(clause)
        if condition == TRUE_LITERAL:
            return TRUE_LITERAL

        alias = self._next_alias("GROUP")
        description = f"{clause.id or 'Nested'} {clause.operator.value} group"
        self._state.ctes.append(
            templates.predicate_cte(
                alias,
                f"-- {templates.sql_comment_text(description)}",
                templates.group_select(description),
                "DEMOG D",
                [f"({condition})"] if "\n" in condition else [condition],
            )
        )
        return templates.membership_test(alias)

    def element_condition(self, element: DataElement) -> str:
        """Emit the predicate CTE for an element and return its membership test."""
        description = component_description(element, self.measure)
        if element.type == DataElementType.DEMOGRAPHIC:
            alias = self._demographic_alias(element, description)
        else:
            alias = self._clinical_alias(element, description)
        if alias is None:
            return TRUE_LITERAL
        return templates.membership_test(alias, element.negation, _having_clause(element))


def _gender_condition(gender: Gender) -> str:
    concepts = ", ".join(templates.sql_string(c) for c in templates.GENDER_CONCEPTS[gender.value])
    return f"D.gender_concept_name in ({concepts})"


def _having_clause(element: DataElement) -> str | None:
    quantity = element.quantity
    if quantity is None:
        return None
    if quantity.comparator is not None and quantity.value is not None:
        return f"count(distinct identifier) {quantity.comparator.value} {quantity.value}"
    low = quantity.min if quantity.min is not None else 0
    if quantity.max is None:
        return f"count(distinct identifier) >= {low}"
    return f"count(distinct identifier) between {low} and {quantity.max}"


# ============================================================================
# Generator Service
# ============================================================================


class SqlGeneratorService:
    """Generates Synapse T-SQL scripts from UMS measures."""

    def __init__(self):
        self._generated_count = 0
        self._failed_count = 0
        logger.info("SqlGeneratorService initialized")

    def generate(self, measure: Measure, config: GenerationConfig | None = None) -> GenerationResult:
        """Generate the population membership script and result views.

        Args:
            measure: Measure aggregate to compile
            config: Dialect, population id, period and ontology contexts

        Returns:
            GenerationResult with code and SqlMetadata, or errors and no code
        """
        config = config or GenerationConfig()
        errors = check_measure_preconditions(measure)
        if errors:
            self._failed_count += 1
            logger.warning(f"SQL generation rejected for measure '{measure.id}': {errors}")
            return GenerationResult(
                success=False, output_format=OutputFormat.SYNAPSE_SQL, errors=errors
            )

        try:
            context = SqlBuildContext(
                population_id=config.population_id,
                period=resolve_measurement_period(measure, config),
                exclude_snapshots=config.exclude_snapshots_and_archives,
            )
            builder = SqlPredicateBuilder(measure, context)
            builder.add_global_constraints()
            population_ctes = self._population_ctes(measure, builder)

            contexts = self._ontology_contexts(measure, builder, config)
            code = self._assemble(measure, config, context, builder, population_ctes, contexts)
        except Exception as e:
            self._failed_count += 1
            logger.exception(f"SQL generation failed for measure '{measure.id}'")
            return GenerationResult(
                success=False,
                output_format=OutputFormat.SYNAPSE_SQL,
                errors=[f"SQL generation failed: {e}"],
            )

        warnings = list(builder.warnings)
        if next(iter_measure_elements(measure), None) is None:
            warnings.insert(0, "No clinical criteria found - generating demographics-only query")

        predicate_count = len(builder.predicate_ctes)
        metadata = SqlMetadata(
            predicate_count=predicate_count,
            data_models_used=list(builder.data_models_used),
            estimated_complexity=estimate_complexity(
                predicate_count, len(builder.data_models_used)
            ),
            ontology_contexts=contexts,
        )
        self._generated_count += 1
        logger.info(
            f"Generated SQL for measure {measure.id}: {predicate_count} predicates, "
            f"complexity {metadata.estimated_complexity}, {len(warnings)} warnings"
        )
        return GenerationResult(
            success=True,
            output_format=OutputFormat.SYNAPSE_SQL,
            code=code,
            warnings=warnings,
            metadata=metadata,
        )

    def _population_ctes(self, measure: Measure, builder: SqlPredicateBuilder) -> list[str]:
        ctes: list[str] = []
        for population_type, name in POPULATION_CTE_NAMES.items():
            population = find_population(measure, population_type)
            condition = (
                builder.clause_condition(population.criteria)
                if population is not None
                else TRUE_LITERAL
            )
            has_criteria = condition != TRUE_LITERAL

            if population_type == PopulationType.INITIAL_POPULATION:
                if population is None:
                    builder.warnings.append("No Initial Population defined; using all of DEMOG")
                if builder.global_demographic_alias is not None:
                    # measure-wide age/gender limits always bound the Initial Population
                    membership = templates.membership_test(builder.global_demographic_alias)
                    condition = f"{membership}\n    and ({condition})" if has_criteria else membership
                    has_criteria = True
                ctes.append(templates.population_cte(name, condition if has_criteria else None))
            elif population_type == PopulationType.DENOMINATOR:
                if has_criteria:
                    ctes.append(templates.population_cte(
                        name,
                        f"D.empi_id in (select empi_id from INITIAL_POPULATION)\n    and ({condition})",
                    ))
                else:
                    ctes.append(templates.population_cte(name, None, source="INITIAL_POPULATION D"))
            else:
                if population_type == PopulationType.NUMERATOR and not has_criteria:
                    builder.warnings.append("No numerator criteria defined in measure specification")
                ctes.append(
                    templates.population_cte(name, condition if has_criteria else EMPTY_SET_CONDITION)
                )
        return ctes

    def _ontology_contexts(
        self, measure: Measure, builder: SqlPredicateBuilder, config: GenerationConfig
    ) -> list[str]:
        if config.ontology_contexts:
            return list(config.ontology_contexts)
        contexts = [settings.base_ontology_context]
        for model in templates.DATA_MODELS.values():
            if model.name in builder.data_models_used and model.ontology_context not in contexts:
                contexts.append(model.ontology_context)
        return contexts

    def _assemble(
        self,
        measure: Measure,
        config: GenerationConfig,
        context: SqlBuildContext,
        builder: SqlPredicateBuilder,
        population_ctes: list[str],
        contexts: list[str],
    ) -> str:
        ctes = [
            templates.ontology_cte(contexts, context.exclude_snapshots),
            templates.demographics_cte(context.population_id, context.exclude_snapshots),
            *builder.predicate_ctes,
        ]
        population_section = ",\n".join(population_ctes)
        if config.include_comments:
            population_section = "--\n-- Population definitions\n" + population_section

        membership_body = (
            "with "
            + ",\n--\n".join(ctes)
            + ",\n"
            + population_section
            + "\n"
            + templates.membership_select()
        )

        parts = []
        if config.include_comments:
            parts.append(
                templates.header_comment(
                    measure.id,
                    measure.title,
                    context.population_id,
                    config.dialect.value,
                    context.period,
                    datetime.now(UTC).isoformat(),
                )
            )
        parts.append(
            templates.create_view(
                templates.view_name(measure.id, "PopulationMembership"), membership_body
            )
        )
        parts.extend(templates.population_views(measure.id))
        return "\n".join(parts)

    def get_stats(self) -> dict[str, Any]:
        """Get service statistics."""
        return {
            "generated_count": self._generated_count,
            "failed_count": self._failed_count,
        }


# Module-level singleton
_service_instance: SqlGeneratorService | None = None
_service_lock = threading.Lock()


def get_sql_generator_service() -> SqlGeneratorService:
    """Get singleton instance of SqlGeneratorService."""
    global _service_instance
    if _service_instance is None:
        with _service_lock:
            if _service_instance is None:
                _service_instance = SqlGeneratorService()
    return _service_instance


def reset_sql_generator_service() -> None:
    """Reset the singleton instance (for testing)."""
    global _service_instance
    with _service_lock:
        _service_instance = None
