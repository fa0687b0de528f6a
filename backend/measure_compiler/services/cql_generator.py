"""CQL Generator Service.

Compiles a Universal Measure Specification tree into a CQL library
targeting FHIR 4.0.1 / QI-Core.

Features:
- Fixed preamble (library, using, includes, code systems)
- Value set declarations with OID-derived URLs and dual-channel warnings
- Measurement Period parameter (measure period or default calendar year)
- Helper definitions (age, gender, qualifying encounters, hospice)
- Measure-family boilerplate from the BoilerplateRegistry
- Population definitions in fixed order
- Recursive, order-preserving tree-to-expression translation
- Component marker comments around every data element expression
"""

from dataclasses import dataclass
from datetime import UTC, datetime
import logging
import re
import threading
from typing import Any, assert_never

from measure_compiler.core.config import settings
from measure_compiler.schemas.base import (
    Comparator,
    DataElementType,
    Gender,
    LogicalOperator,
    OutputFormat,
    PopulationType,
    TimeUnit,
    TimingOperator,
)
from measure_compiler.schemas.codegen import GenerationConfig
from measure_compiler.schemas.ums import (
    Criterion,
    DataElement,
    LogicalClause,
    Measure,
    Population,
    ValueSetReference,
)
from measure_compiler.services.component_markers import wrap_cql_component
from measure_compiler.services.generation import (
    FALSE_LITERAL,
    TRUE_LITERAL,
    CqlMetadata,
    GenerationResult,
    check_measure_preconditions,
    resolve_measurement_period,
)
from measure_compiler.services.measure_boilerplate import (
    BoilerplateRegistry,
    get_boilerplate_registry,
)
from measure_compiler.services.measure_tree import (
    collect_value_sets,
    component_description,
    find_population,
    has_element_type,
    resolve_value_set,
)

logger = logging.getLogger(__name__)

GENERATOR_NAME = "Measure Compiler CQL Generator v0.1.0"

INCLUDES = [
    "include FHIRHelpers version '4.0.1' called FHIRHelpers",
    "include QICoreCommon version '2.0.0' called QICoreCommon",
    "include MATGlobalCommonFunctions version '7.0.000' called Global",
    "include SupplementalDataElements version '3.4.000' called SDE",
    "include Hospice version '6.9.000' called Hospice",
]

CODE_SYSTEMS = {
    "LOINC": "http://loinc.org",
    "SNOMEDCT": "http://snomed.info/sct",
    "ICD10CM": "http://hl7.org/fhir/sid/icd-10-cm",
    "CPT": "http://www.ama-assn.org/go/cpt",
    "HCPCS": "https://www.cms.gov/Medicare/Coding/HCPCSReleaseCodeSets",
    "RxNorm": "http://www.nlm.nih.gov/research/umls/rxnorm",
    "CVX": "http://hl7.org/fhir/sid/cvx",
}

QUALIFYING_ENCOUNTER_DEFINITION = '''define "Qualifying Encounter During Measurement Period":
  ( [Encounter: "Office Visit"]
    union [Encounter: "Annual Wellness Visit"]
    union [Encounter: "Preventive Care Services Established Office Visit, 18 and Up"]
    union [Encounter: "Home Healthcare Services"]
    union [Encounter: "Online Assessments"]
    union [Encounter: "Telephone Visits"]
  ) Encounter
    where Encounter.status = 'finished'
      and Encounter.period during "Measurement Period"'''

SUPPLEMENTAL_DATA = '''// Supplemental Data Elements
define "SDE Ethnicity":
  SDE."SDE Ethnicity"

define "SDE Payer":
  SDE."SDE Payer"

define "SDE Race":
  SDE."SDE Race"

define "SDE Sex":
  SDE."SDE Sex"
'''

_DEFINE_PATTERN = re.compile(r'^define\s+"', re.MULTILINE)


@dataclass(frozen=True)
class CqlResource:
    """QI-Core retrieve template for one data element type."""

    resource: str  # Retrieve keyword (e.g. "Procedure")
    alias: str  # Query alias
    status_conditions: tuple[str, ...]  # Filters applied to every retrieve
    timing_attribute: str  # Attribute compared against the timing window


RESOURCE_TEMPLATES: dict[DataElementType, CqlResource] = {
    DataElementType.DIAGNOSIS: CqlResource(
        "Condition", "C", ('C.clinicalStatus ~ QICoreCommon."active"',), "onset"
    ),
    DataElementType.ENCOUNTER: CqlResource(
        "Encounter", "E", ("E.status = 'finished'",), "period"
    ),
    DataElementType.PROCEDURE: CqlResource(
        "Procedure", "P", ("P.status = 'completed'",), "performed"
    ),
    DataElementType.OBSERVATION: CqlResource(
        "Observation",
        "O",
        ("O.status in { 'final', 'amended', 'corrected' }", "O.value is not null"),
        "effective",
    ),
    DataElementType.ASSESSMENT: CqlResource(
        "Observation",
        "O",
        ("O.status in { 'final', 'amended', 'corrected' }", "O.value is not null"),
        "effective",
    ),
    DataElementType.MEDICATION: CqlResource(
        "MedicationRequest", "M", ("M.status in { 'active', 'completed' }",), "authoredOn"
    ),
    DataElementType.IMMUNIZATION: CqlResource(
        "Immunization", "I", ("I.status = 'completed'",), "occurrence"
    ),
}


def sanitize_library_name(measure_id: str) -> str:
    """CQL library identifier: alphanumerics only, never leading with a digit."""
    name = re.sub(r"[^a-zA-Z0-9]", "", measure_id)
    if name and name[0].isdigit():
        name = f"_{name}"
    return name


def sanitize_identifier(name: str) -> str:
    """Escape a name for use inside a quoted CQL identifier."""
    return name.replace('"', '\\"').strip()


def _comment_safe(text: str) -> str:
    return text.replace("*/", "* /")


def _unit_text(value: int, unit: TimeUnit) -> str:
    return unit.value[:-1] if value == 1 else unit.value


def _placeholder_operands(placeholders: tuple[tuple[str, str], ...], literal: str) -> list[str]:
    return [
        wrap_cql_component(component_id, f"{comment}\n  {literal}")
        for component_id, comment in placeholders
    ]


# ============================================================================
# Expression Builder
# ============================================================================


@dataclass(frozen=True)
class CqlFragment:
    """A translated subtree.

    ``expression`` is None when the subtree adds no constraint; the
    placeholder leaves it reduced from are kept as (component id, warning
    comment) pairs so their markers can still be rendered.
    """

    expression: str | None
    placeholders: tuple[tuple[str, str], ...] = ()


class CqlExpressionBuilder:
    """Recursive tree-to-expression translation for one measure.

    Collects structured warnings while it walks; the walk is sequential
    and follows child order. Leaves that cannot be translated add no
    constraint: inside a join they are rendered with the operator's
    neutral literal and a NOT over nothing but such leaves reduces away.
    """

    def __init__(self, measure: Measure):
        self.measure = measure
        self.warnings: list[str] = []

    def render(self, fragment: CqlFragment, neutral: str = TRUE_LITERAL) -> str:
        """Expression text, with ``neutral`` standing in for a fragment without one."""
        if fragment.expression is not None:
            return fragment.expression
        if not fragment.placeholders:
            return neutral
        joiner = " or " if neutral == FALSE_LITERAL else " and "
        return joiner.join(_placeholder_operands(fragment.placeholders, neutral))

    def clause_fragment(self, clause: LogicalClause) -> CqlFragment:
        items = [self._criterion_fragment(child) for child in clause.children]
        if all(item.expression is None for item in items):
            return CqlFragment(None, tuple(p for item in items for p in item.placeholders))

        if clause.operator == LogicalOperator.NOT:
            if len(clause.children) > 1:
                label = clause.id or "unnamed clause"
                self.warnings.append(
                    f'NOT clause "{label}" has {len(clause.children)} children; '
                    "only the first is negated"
                )
            negated = next(item for item in items if item.expression is not None)
            operands = [f"not ({negated.expression})"]
            for item in items:
                operands.extend(_placeholder_operands(item.placeholders, TRUE_LITERAL))
            return CqlFragment(" and ".join(operands))

        neutral = FALSE_LITERAL if clause.operator == LogicalOperator.OR else TRUE_LITERAL
        operands = []
        for item in items:
            if item.expression is not None:
                operands.append(item.expression)
            else:
                operands.extend(_placeholder_operands(item.placeholders, neutral))
        joiner = " or " if clause.operator == LogicalOperator.OR else " and "
        return CqlFragment(joiner.join(operands))

    def _criterion_fragment(self, node: Criterion) -> CqlFragment:
        if isinstance(node, LogicalClause):
            nested = self.clause_fragment(node)
            if nested.expression is None:
                return nested
            return CqlFragment(f"({nested.expression})")
        elif isinstance(node, DataElement):
            return self.element_fragment(node)
        else:
            assert_never(node)

    def element_fragment(self, element: DataElement) -> CqlFragment:
        """Translate a data element leaf, wrapped in its component markers."""
        if element.type == DataElementType.DEMOGRAPHIC:
            expression = self._demographic_expression(element)
        else:
            placeholder = self._clinical_placeholder(element)
            if placeholder is not None:
                return CqlFragment(None, ((element.id, placeholder),))
            expression = self._clinical_expression(element)

        if element.negation:
            expression = f"not ({expression})"
        return CqlFragment(wrap_cql_component(element.id, expression))

    def _clinical_placeholder(self, element: DataElement) -> str | None:
        """Warning comment for a clinical leaf that cannot be translated."""
        description = component_description(element, self.measure)
        if element.type not in RESOURCE_TEMPLATES:
            self.warnings.append(
                f'Unsupported criterion type "{element.type.value}" for "{description}"'
            )
            return (
                f'/* WARNING: Unsupported criterion type "{element.type.value}" '
                f'for "{_comment_safe(description)}" */'
            )
        if resolve_value_set(element, self.measure) is None:
            self.warnings.append(f'No value set defined for "{description}"')
            return f'/* WARNING: No value set defined for "{_comment_safe(description)}" */'
        return None

    def _clinical_expression(self, element: DataElement) -> str:
        description = component_description(element, self.measure)
        resource = RESOURCE_TEMPLATES[element.type]
        value_set = resolve_value_set(element, self.measure)

        conditions = list(resource.status_conditions)
        conditions.extend(self._value_conditions(element, resource))
        conditions.append(self._timing_condition(element, resource, description))

        where = "\n        and ".join(conditions)
        retrieve = (
            f'[{resource.resource}: "{sanitize_identifier(value_set.name)}"] {resource.alias}\n'
            f"      where {where}"
        )

        if element.quantity is not None:
            return self._count_expression(retrieve, element)
        return f"exists ({retrieve})"

    def _value_conditions(self, element: DataElement, resource: CqlResource) -> list[str]:
        thresholds = element.thresholds
        if thresholds is None or resource.resource != "Observation":
            return []
        conditions = []
        if thresholds.value_min is not None:
            conditions.append(f"{resource.alias}.value >= {_format_number(thresholds.value_min, thresholds.unit)}")
        if thresholds.value_max is not None:
            conditions.append(f"{resource.alias}.value <= {_format_number(thresholds.value_max, thresholds.unit)}")
        return conditions

    def _timing_condition(
        self, element: DataElement, resource: CqlResource, description: str
    ) -> str:
        attribute = f"{resource.alias}.{resource.timing_attribute}"
        default = f'{attribute} during "Measurement Period"'
        timing = element.timing

        if timing is None or timing.operator == TimingOperator.DURING:
            return default

        if timing.value is None or timing.unit is None:
            self.warnings.append(
                f'Timing "{timing.operator.value}" for "{description}" has no value/unit; '
                "defaulted to the Measurement Period"
            )
            return default

        amount = f"{timing.value} {_unit_text(timing.value, timing.unit)}"
        if timing.operator in (TimingOperator.WITHIN, TimingOperator.BEFORE_END_OF):
            return f'{attribute} ends {amount} or less before end of "Measurement Period"'
        if timing.operator == TimingOperator.AFTER_START_OF:
            return f'{attribute} starts {amount} or less after start of "Measurement Period"'
        if timing.operator == TimingOperator.BEFORE_AGE:
            return f"{attribute} before (Patient.birthDate + {amount})"
        assert_never(timing.operator)

    def _count_expression(self, retrieve: str, element: DataElement) -> str:
        quantity = element.quantity
        if quantity.comparator is not None and quantity.value is not None:
            return f"Count({retrieve}) {quantity.comparator.value} {quantity.value}"
        low = quantity.min if quantity.min is not None else 0
        if quantity.max is None:
            return f"Count({retrieve}) >= {low}"
        return f"Count({retrieve}) in Interval[{low}, {quantity.max}]"

    def _demographic_expression(self, element: DataElement) -> str:
        if element.gender is not None and element.gender != Gender.ALL:
            return f"Patient.gender = '{element.gender.value}'"

        thresholds = element.thresholds
        if thresholds is not None and (thresholds.age_min is not None or thresholds.age_max is not None):
            low = thresholds.age_min if thresholds.age_min is not None else 0
            high = thresholds.age_max if thresholds.age_max is not None else 999
            return f'AgeInYearsAt(date from end of "Measurement Period") in Interval[{low}, {high}]'

        constraints = self.measure.global_constraints
        if constraints is None or constraints.age_range is None:
            self.warnings.append(
                f'Demographic criterion "{component_description(element, self.measure)}" '
                'references "Patient Age Valid" but the measure has no age range'
            )
        return '"Patient Age Valid"'


def _format_number(value: float, unit: str | None) -> str:
    text = f"{value:g}"
    return f"{text} '{unit}'" if unit else text


# ============================================================================
# Generator Service
# ============================================================================


class CQLGeneratorService:
    """Generates CQL libraries from UMS measures."""

    def __init__(self, registry: BoilerplateRegistry | None = None):
        self._registry = registry or get_boilerplate_registry()
        self._generated_count = 0
        self._failed_count = 0
        logger.info("CQLGeneratorService initialized")

    @property
    def registry(self) -> BoilerplateRegistry:
        return self._registry

    def generate(self, measure: Measure, config: GenerationConfig | None = None) -> GenerationResult:
        """Generate a complete CQL library.

        Args:
            measure: Measure aggregate to compile
            config: Generation options (only measurement_period applies to CQL)

        Returns:
            GenerationResult with code and CqlMetadata, or errors and no code
        """
        errors = check_measure_preconditions(measure)
        library_name = sanitize_library_name(measure.id or "")
        if not errors and not library_name:
            errors.append("Measure ID must contain at least one letter or digit")
        if errors:
            self._failed_count += 1
            logger.warning(f"CQL generation rejected for measure '{measure.id}': {errors}")
            return GenerationResult(success=False, output_format=OutputFormat.CQL, errors=errors)

        try:
            builder = CqlExpressionBuilder(measure)
            value_set_warnings: list[str] = []
            version = measure.version or "1.0.0"
            value_sets = collect_value_sets(measure)

            sections = [
                self._header(measure, library_name, version),
                self._value_set_declarations(value_sets, value_set_warnings),
                self._parameters(measure, config),
                self._helper_definitions(measure),
                self._population_definitions(measure, builder),
                SUPPLEMENTAL_DATA,
            ]
            code = "\n".join(sections)
        except Exception as e:
            self._failed_count += 1
            logger.exception(f"CQL generation failed for measure '{measure.id}'")
            return GenerationResult(
                success=False,
                output_format=OutputFormat.CQL,
                errors=[f"CQL generation failed: {e}"],
            )

        warnings = value_set_warnings + builder.warnings
        metadata = CqlMetadata(
            library_name=library_name,
            version=version,
            population_count=len(measure.populations),
            value_set_count=len(value_sets),
            definition_count=len(_DEFINE_PATTERN.findall(code)),
        )
        self._generated_count += 1
        logger.info(
            f"Generated CQL library {library_name}: {metadata.definition_count} definitions, "
            f"{len(warnings)} warnings"
        )
        return GenerationResult(
            success=True,
            output_format=OutputFormat.CQL,
            code=code,
            warnings=warnings,
            metadata=metadata,
        )

    # ------------------------------------------------------------------------
    # Sections
    # ------------------------------------------------------------------------

    def _header(self, measure: Measure, library_name: str, version: str) -> str:
        lines = [
            "/*",
            f" * Library: {library_name}",
            f" * Title: {_comment_safe(measure.title)}",
            f" * Measure ID: {_comment_safe(measure.id)}",
            f" * Version: {version}",
            f" * Steward: {_comment_safe(measure.steward or 'Not specified')}",
            f" * Type: {measure.measure_type or 'process'}",
            f" * Scoring: {measure.scoring or 'proportion'}",
            " *",
            f" * Description: {_comment_safe(measure.description or 'No description provided')}",
            " *",
            f" * Generated: {datetime.now(UTC).isoformat()}",
            f" * Generator: {GENERATOR_NAME}",
            " */",
            "",
            f"library {library_name} version '{version}'",
            "",
            f"using FHIR version '{settings.fhir_version}'",
            "",
            *INCLUDES,
            "",
            "// Code Systems",
        ]
        lines.extend(f"codesystem \"{name}\": '{url}'" for name, url in CODE_SYSTEMS.items())
        lines.append("")
        return "\n".join(lines)

    def _value_set_declarations(
        self, value_sets: list[ValueSetReference], warnings: list[str]
    ) -> str:
        if not value_sets:
            return "// No value sets defined\n"

        lines = ["// Value Sets"]
        for value_set in value_sets:
            name = sanitize_identifier(value_set.name)
            url = value_set.url or (
                f"{settings.terminology_service_url}{value_set.oid}" if value_set.oid else None
            )
            if url is None:
                lines.append(f"// valueset \"{name}\": 'OID_NOT_SPECIFIED'")
                warnings.append(f'Value set "{value_set.name}" has no OID or URL specified')
                continue

            lines.append(f"valueset \"{name}\": '{url}'")
            if not value_set.codes:
                lines.append(
                    f'  /* WARNING: Value set "{_comment_safe(value_set.name)}" has no codes defined '
                    "- may need expansion */"
                )
                warnings.append(f'Value set "{value_set.name}" has no codes defined')

        lines.append("")
        return "\n".join(lines)

    def _parameters(self, measure: Measure, config: GenerationConfig | None) -> str:
        start, end = resolve_measurement_period(measure, config)
        return (
            "// Parameters\n"
            'parameter "Measurement Period" Interval<DateTime>\n'
            f"  default Interval[@{start.isoformat()}T00:00:00.0, @{end.isoformat()}T23:59:59.999]\n"
            "\n"
            "context Patient\n"
        )

    def _helper_definitions(self, measure: Measure) -> str:
        blocks: list[str] = []
        constraints = measure.global_constraints

        if constraints is not None and constraints.age_range is not None:
            age_range = constraints.age_range
            blocks.append(
                'define "Age at End of Measurement Period":\n'
                '  AgeInYearsAt(date from end of "Measurement Period")'
            )
            blocks.append(
                'define "Patient Age Valid":\n'
                f'  "Age at End of Measurement Period" in Interval[{age_range.min}, {age_range.max}]'
            )

        if constraints is not None and constraints.gender not in (None, Gender.ALL):
            blocks.append(
                'define "Patient Gender Valid":\n'
                f"  Patient.gender = '{constraints.gender.value}'"
            )

        if has_element_type(measure, DataElementType.ENCOUNTER):
            blocks.append(QUALIFYING_ENCOUNTER_DEFINITION)

        blocks.append('define "Has Hospice Services":\n  Hospice."Has Hospice Services"')

        for bundle in self._registry.match(measure):
            blocks.append(f"// {bundle.label}\n{bundle.definitions}")

        return "// Helper Definitions\n\n" + "\n\n".join(blocks) + "\n"

    def _population_definitions(self, measure: Measure, builder: CqlExpressionBuilder) -> str:
        blocks: list[str] = []

        initial = find_population(measure, PopulationType.INITIAL_POPULATION)
        blocks.append(self._initial_population_block(measure, initial, builder))

        blocks.append(self._denominator_block(measure, builder))
        blocks.append(self._exclusion_block(measure, builder))

        exception = find_population(measure, PopulationType.DENOMINATOR_EXCEPTION)
        if exception is not None:
            blocks.append(
                self._population_block(exception, "Denominator Exception", builder, FALSE_LITERAL)
            )

        blocks.append(self._numerator_block(measure, builder))

        numerator_exclusion = find_population(measure, PopulationType.NUMERATOR_EXCLUSION)
        if numerator_exclusion is not None:
            blocks.append(
                self._population_block(
                    numerator_exclusion, "Numerator Exclusion", builder, FALSE_LITERAL
                )
            )

        return "// Population Definitions\n\n" + "\n\n".join(blocks) + "\n"

    def _narrative_comment(self, name: str, narrative: str) -> str:
        limit = settings.narrative_max_length
        text = narrative[:limit] + ("..." if len(narrative) > limit else "")
        return f"/*\n * {name}\n * {_comment_safe(text)}\n */\n"

    def _initial_population_block(
        self, measure: Measure, population: Population | None, builder: CqlExpressionBuilder
    ) -> str:
        """Initial Population, bounded by the global age and gender helpers."""
        constraints = measure.global_constraints
        bounds = []
        if constraints is not None and constraints.age_range is not None:
            bounds.append('"Patient Age Valid"')
        if constraints is not None and constraints.gender not in (None, Gender.ALL):
            bounds.append('"Patient Gender Valid"')

        comment = ""
        if population is None:
            builder.warnings.append("No Initial Population defined; defaulting to true")
            fragment = CqlFragment(None)
        else:
            if population.narrative:
                comment = self._narrative_comment("Initial Population", population.narrative)
            fragment = builder.clause_fragment(population.criteria)

        if not bounds:
            expression = builder.render(fragment)
        elif fragment.expression is None and not fragment.placeholders:
            expression = " and ".join(bounds)
        else:
            expression = "\n    and ".join([*bounds, f"({builder.render(fragment)})"])
        return f'{comment}define "Initial Population":\n  {expression}'

    def _population_block(
        self,
        population: Population,
        name: str,
        builder: CqlExpressionBuilder,
        empty: str = TRUE_LITERAL,
    ) -> str:
        """Define one population; ``empty`` is emitted when it adds no constraint."""
        comment = self._narrative_comment(name, population.narrative) if population.narrative else ""
        expression = builder.render(builder.clause_fragment(population.criteria), empty)
        return f'{comment}define "{name}":\n  {expression}'

    def _denominator_block(self, measure: Measure, builder: CqlExpressionBuilder) -> str:
        population = find_population(measure, PopulationType.DENOMINATOR)
        if population is not None and population.criteria.children:
            return self._population_block(population, "Denominator", builder)
        return (
            self._narrative_comment("Denominator", "Equals Initial Population")
            + 'define "Denominator":\n  "Initial Population"'
        )

    def _exclusion_block(self, measure: Measure, builder: CqlExpressionBuilder) -> str:
        population = find_population(measure, PopulationType.DENOMINATOR_EXCLUSION)
        narrative = population.narrative if population and population.narrative else (
            "Patients meeting exclusion criteria"
        )

        terms = ['"Has Hospice Services"']
        for bundle in self._registry.match(measure):
            terms.extend(bundle.exclusions)

        if population is not None and population.criteria.children:
            custom = builder.clause_fragment(population.criteria)
            if custom.expression is not None:
                terms.append(f"({custom.expression})")
            else:
                terms.extend(_placeholder_operands(custom.placeholders, FALSE_LITERAL))

        return (
            self._narrative_comment("Denominator Exclusion", narrative)
            + 'define "Denominator Exclusion":\n  '
            + "\n    or ".join(terms)
        )

    def _numerator_block(self, measure: Measure, builder: CqlExpressionBuilder) -> str:
        population = find_population(measure, PopulationType.NUMERATOR)
        narrative = population.narrative if population and population.narrative else (
            "Patients meeting numerator criteria"
        )
        header = self._narrative_comment("Numerator", narrative) + 'define "Numerator":\n'

        fixed = self._registry.numerator_for(measure)
        if fixed is not None:
            return header + fixed

        if population is not None and population.criteria.children:
            # untranslatable leaves alone leave the numerator empty
            return header + "  " + builder.render(
                builder.clause_fragment(population.criteria), FALSE_LITERAL
            )

        builder.warnings.append("No numerator criteria defined in measure specification")
        return (
            header
            + "  /* WARNING: No numerator criteria defined in measure specification */\n"
            + f"  {TRUE_LITERAL}"
        )

    def get_stats(self) -> dict[str, Any]:
        """Get service statistics."""
        return {
            "generated_count": self._generated_count,
            "failed_count": self._failed_count,
            "boilerplate_bundles": len(self._registry.bundles),
        }


# Module-level singleton
_service_instance: CQLGeneratorService | None = None
_service_lock = threading.Lock()


def get_cql_generator_service() -> CQLGeneratorService:
    """Get singleton instance of CQLGeneratorService."""
    global _service_instance
    if _service_instance is None:
        with _service_lock:
            if _service_instance is None:
                _service_instance = CQLGeneratorService()
    return _service_instance


def reset_cql_generator_service() -> None:
    """Reset the singleton instance (for testing)."""
    global _service_instance
    with _service_lock:
        _service_instance = None
