"""T-SQL templates for Synapse measure scripts.

The script follows a fixed CTE convention:
- ONT: ontology/terminology contexts
- DEMOG: demographics base joined to ONT by role aliases
- PRED_*: one predicate CTE per clinical criterion or nested group
- Population CTEs combining predicates by DEMOG membership
- CREATE OR ALTER VIEW statements separated by GO

Only Synapse date functions (DATEADD, DATEDIFF, GETDATE, CAST AS DATE)
are emitted.
"""

from dataclasses import dataclass
from datetime import date
import re

from measure_compiler.schemas.base import DataElementType, TimeUnit

STANDARD_COLUMNS = (
    "population_id",
    "empi_id",
    "data_model",
    "identifier",
    "clinical_start_date",
    "clinical_end_date",
    "description",
)

POPULATION_CTES = (
    "INITIAL_POPULATION",
    "DENOMINATOR",
    "DENOM_EXCLUSION",
    "DENOM_EXCEPTION",
    "NUMERATOR",
    "NUM_EXCLUSION",
)

VIEW_SCHEMA = "measure"


@dataclass(frozen=True)
class SqlDataModel:
    """Row source for one clinical data model."""

    name: str  # data_model column value
    prefix: str  # PRED_<prefix>_<n>
    table: str
    alias: str
    id_column: str
    code_column: str
    start_column: str
    end_column: str | None
    ontology_context: str
    value_column: str | None = None  # Numeric result value


DATA_MODELS: dict[DataElementType, SqlDataModel] = {
    DataElementType.DIAGNOSIS: SqlDataModel(
        "Condition", "COND", "ph_f_condition", "C", "condition_id",
        "condition_code", "effective_date", None, "HEALTHE INTENT Conditions",
    ),
    DataElementType.OBSERVATION: SqlDataModel(
        "Result", "RESULT", "ph_f_result", "R", "result_id",
        "result_code", "service_date", None, "HEALTHE INTENT Results",
        value_column="numeric_value",
    ),
    DataElementType.ASSESSMENT: SqlDataModel(
        "Result", "RESULT", "ph_f_result", "R", "result_id",
        "result_code", "service_date", None, "HEALTHE INTENT Results",
        value_column="numeric_value",
    ),
    DataElementType.PROCEDURE: SqlDataModel(
        "Procedure", "PROC", "ph_f_procedure", "PR", "procedure_id",
        "procedure_code", "performed_date", None, "HEALTHE INTENT Procedures",
    ),
    DataElementType.MEDICATION: SqlDataModel(
        "Medication", "MED", "ph_f_medication", "M", "medication_id",
        "medication_code", "effective_date", "end_date", "HEALTHE INTENT Medications",
    ),
    DataElementType.IMMUNIZATION: SqlDataModel(
        "Immunization", "IMMUN", "ph_f_immunization", "I", "immunization_id",
        "immunization_code", "administration_date", None, "HEALTHE INTENT Immunizations",
    ),
    DataElementType.ENCOUNTER: SqlDataModel(
        "Encounter", "ENC", "ph_f_encounter", "E", "encounter_id",
        "encounter_type_code", "service_date", "discharge_date", "HEALTHE INTENT Encounters",
    ),
}

DATEADD_UNITS = {
    TimeUnit.DAYS: "day",
    TimeUnit.WEEKS: "week",
    TimeUnit.MONTHS: "month",
    TimeUnit.YEARS: "year",
}

GENDER_CONCEPTS = {
    "male": ("FHIR Male", "FHIR Male Gender Identity"),
    "female": ("FHIR Female", "FHIR Female Gender Identity"),
}


def sql_string(value: str) -> str:
    """Quote a value as a T-SQL string literal."""
    return "'" + value.replace("'", "''") + "'"


def sql_comment_text(value: str) -> str:
    """Collapse a value onto one line for use in a -- comment."""
    return re.sub(r"\s+", " ", value).strip()


def view_name(measure_id: str, suffix: str) -> str:
    safe_id = re.sub(r"[^A-Za-z0-9]", "_", measure_id)
    return f"[{VIEW_SCHEMA}].[{safe_id}_{suffix}]"


def sql_date(value: date) -> str:
    return f"CAST('{value.isoformat()}' AS DATE)"


def population_scope_filters(alias: str, population_id: str, exclude_snapshots: bool) -> list[str]:
    """Population scoping conditions applied to every row source."""
    filters = [f"{alias}.population_id = {sql_string(population_id)}"]
    if exclude_snapshots:
        filters.append(f"{alias}.population_id not like '%SNAPSHOT%'")
        filters.append(f"{alias}.population_id not like '%ARCHIVE%'")
    return filters


# ============================================================================
# Header and base CTEs
# ============================================================================


def header_comment(
    measure_id: str,
    title: str,
    population_id: str,
    dialect: str,
    period: tuple[date, date],
    generated_at: str,
) -> str:
    rule = "-- " + "=" * 76
    return "\n".join([
        rule,
        f"-- Measure: {sql_comment_text(measure_id)} {sql_comment_text(title)}".rstrip(),
        f"-- Population ID: {population_id}",
        f"-- Dialect: {dialect}",
        f"-- Measurement Period: {period[0].isoformat()} to {period[1].isoformat()}",
        f"-- Generated: {generated_at}",
        rule,
        "",
    ])


def ontology_cte(contexts: list[str], exclude_snapshots: bool) -> str:
    context_list = ",\n        ".join(sql_string(context) for context in contexts)
    exclusions = (
        "O.population_id not like '%SNAPSHOT%'\n"
        "    and O.population_id not like '%ARCHIVE%'\n"
        "    and "
        if exclude_snapshots
        else ""
    )
    return f"""-- Retrieve necessary terminology contexts and concepts.
ONT as (
  select distinct
    O.*
  from ph_d_ontology O
  where
    {exclusions}(
      O.context_name in (
        {context_list}
      )
    )
)"""


def demographics_cte(population_id: str, exclude_snapshots: bool) -> str:
    scope = "\n    and ".join(population_scope_filters("P", population_id, exclude_snapshots))
    return f"""--
-- Retrieve demographics for all persons along with relevant terminology concepts.
DEMOG as (
  select
    P.population_id
    , P.empi_id
    , P.gender_coding_system_id
    , P.gender_code
    , GENDO.concept_name as gender_concept_name
    , P.birth_date
    , DATEDIFF(YEAR, P.birth_date, GETDATE())
      - CASE WHEN FORMAT(GETDATE(), 'MMdd') < FORMAT(P.birth_date, 'MMdd') THEN 1 ELSE 0 END as age_in_years
    , P.deceased
    , P.deceased_dt_tm
    , P.postal_cd as raw_postal_cd
    , STATEO.concept_name as state_concept_name
    , CO.concept_name as country_concept_name
    , MSO.concept_name as marital_status_concept_name
    , EO.concept_name as ethnicity_concept_name
    , RACEO.concept_name as race_concept_name
    , RO.concept_name as religion_concept_name
  from ph_d_person P
  left join ONT GENDO
    on P.gender_coding_system_id = GENDO.code_system_id
    and P.gender_code = GENDO.code_oid
    and GENDO.concept_class_name = 'Gender'
  left join ONT STATEO
    on P.state_coding_system_id = STATEO.code_system_id
    and P.state_code = STATEO.code_oid
    and STATEO.concept_class_name = 'Environment'
  left join ONT CO
    on P.country_coding_system_id = CO.code_system_id
    and P.country_code = CO.code_oid
    and CO.concept_class_name = 'Unspecified'
  left join ph_d_person_demographics PD
    on P.empi_id = PD.empi_id
    and P.population_id = PD.population_id
  left join ONT MSO
    on PD.marital_coding_system_id = MSO.code_system_id
    and PD.marital_status_code = MSO.code_oid
    and MSO.concept_class_name = 'Marital Status'
  left join ONT EO
    on PD.ethnicity_coding_system_id = EO.code_system_id
    and PD.ethnicity_code = EO.code_oid
    and EO.concept_class_name in ('Race', 'Ethnicity')
  left join ONT RO
    on PD.religion_coding_system_id = RO.code_system_id
    and PD.religion_code = RO.code_oid
    and RO.concept_class_name = 'Unspecified'
  left join ph_d_person_race RD
    on RD.empi_id = P.empi_id
    and RD.population_id = P.population_id
  left join ONT RACEO
    on RD.race_coding_system_id = RACEO.code_system_id
    and RD.race_code = RACEO.code_oid
    and RACEO.concept_class_name in ('Race', 'Ethnicity')
  where
    -- PARAMETER: Use appropriate HDI population_id.
    {scope}
)"""


# ============================================================================
# Predicate CTEs
# ============================================================================


def predicate_cte(
    alias: str,
    marker: str | None,
    select_columns: list[str],
    from_clause: str,
    conditions: list[str],
) -> str:
    """A PRED_* CTE selecting the standard column set.

    Args:
        alias: CTE name
        marker: Leading comment line (component marker or description)
        select_columns: Expressions in STANDARD_COLUMNS order
        from_clause: Row source with alias and joins
        conditions: Where conditions joined with and
    """
    columns = "\n    , ".join(
        f"{expression} as {name}" if not expression.endswith(f".{name}") else expression
        for expression, name in zip(select_columns, STANDARD_COLUMNS)
    )
    where = "\n    and ".join(conditions) if conditions else "1=1"
    prefix = f"{marker}\n" if marker else ""
    return f"""{prefix}{alias} as (
  select distinct
    {columns}
  from {from_clause}
  where
    {where}
)"""


def demographic_select(description: str | None) -> list[str]:
    return [
        "D.population_id",
        "D.empi_id",
        "'Demographics'",
        "null",
        "null",
        "null",
        sql_string(description) if description else "null",
    ]


def clinical_select(model: SqlDataModel, description: str | None) -> list[str]:
    a = model.alias
    return [
        f"{a}.population_id",
        f"{a}.empi_id",
        sql_string(model.name),
        f"{a}.{model.id_column}",
        f"{a}.{model.start_column}",
        f"{a}.{model.end_column}" if model.end_column else "null",
        sql_string(description) if description else "null",
    ]


def group_select(description: str) -> list[str]:
    return [
        "D.population_id",
        "D.empi_id",
        "'Group'",
        "null",
        "null",
        "null",
        sql_string(description),
    ]


def value_set_condition(model: SqlDataModel, oid: str) -> str:
    return f"""exists (
      select 1 from valueset_codes VS
      where VS.valueset_oid = {sql_string(oid)}
        and VS.code = {model.alias}.{model.code_column}
    )"""


def explicit_codes_condition(model: SqlDataModel, codes: list[str]) -> str:
    code_list = ", ".join(sql_string(code) for code in codes)
    return f"{model.alias}.{model.code_column} in ({code_list})"


def membership_test(alias: str, negated: bool = False, having: str | None = None) -> str:
    """Condition testing DEMOG D membership in a predicate CTE."""
    operator = "not in" if negated else "in"
    subquery = f"select empi_id from {alias}"
    if having:
        subquery += f" group by empi_id having {having}"
    return f"D.empi_id {operator} ({subquery})"


# ============================================================================
# Population CTEs and views
# ============================================================================


def population_cte(name: str, condition: str | None, source: str = "DEMOG D") -> str:
    where = f"\n  where\n    {condition}" if condition else ""
    return f"""{name} as (
  select distinct
    D.population_id
    , D.empi_id
  from {source}{where}
)"""


def membership_select() -> str:
    return """select
  D.population_id
  , D.empi_id
  , case when IP.empi_id is not null then 1 else 0 end as in_initial_population
  , case when DEN.empi_id is not null then 1 else 0 end as in_denominator
  , case when DEX.empi_id is not null then 1 else 0 end as in_denominator_exclusion
  , case when DEXC.empi_id is not null then 1 else 0 end as in_denominator_exception
  , case when NUM.empi_id is not null then 1 else 0 end as in_numerator
  , case when NEX.empi_id is not null then 1 else 0 end as in_numerator_exclusion
from DEMOG D
left join INITIAL_POPULATION IP
  on IP.empi_id = D.empi_id
left join DENOMINATOR DEN
  on DEN.empi_id = D.empi_id
left join DENOM_EXCLUSION DEX
  on DEX.empi_id = D.empi_id
left join DENOM_EXCEPTION DEXC
  on DEXC.empi_id = D.empi_id
left join NUMERATOR NUM
  on NUM.empi_id = D.empi_id
left join NUM_EXCLUSION NEX
  on NEX.empi_id = D.empi_id"""


def create_view(name: str, body: str) -> str:
    return f"CREATE OR ALTER VIEW {name} AS\n{body};\nGO\n"


def population_views(measure_id: str) -> list[str]:
    """Views layered on the membership view, in dependency order."""
    membership = view_name(measure_id, "PopulationMembership")
    exclusions = view_name(measure_id, "DenominatorExclusions")
    numerator = view_name(measure_id, "Numerator")

    initial_population = f"""select
  M.population_id
  , M.empi_id
from {membership} M
where M.in_initial_population = 1"""

    denominator_exclusions = f"""select
  M.population_id
  , M.empi_id
  , case when M.in_denominator_exclusion = 1 then 'Exclusion' else 'Exception' end as exclusion_reason
from {membership} M
where M.in_denominator = 1
  and (M.in_denominator_exclusion = 1 or M.in_denominator_exception = 1)"""

    numerator_body = f"""select
  M.population_id
  , M.empi_id
from {membership} M
where M.in_denominator = 1
  and M.in_numerator = 1
  and M.in_numerator_exclusion = 0"""

    results = f"""select
  M.population_id
  , M.empi_id
  , case when ex.empi_id is not null then 1 else 0 end as is_excluded
  , case when num.empi_id is not null then 1 else 0 end as numerator_met
  , case
      when ex.empi_id is not null then 'Excluded'
      when num.empi_id is not null then 'Performance Met'
      else 'Performance Not Met'
    end as measure_status
from {membership} M
left join {exclusions} ex
  on ex.empi_id = M.empi_id
left join {numerator} num
  on num.empi_id = M.empi_id
  AND ex.empi_id IS NULL
where M.in_denominator = 1"""

    return [
        create_view(view_name(measure_id, "InitialPopulation"), initial_population),
        create_view(exclusions, denominator_exclusions),
        create_view(numerator, numerator_body),
        create_view(view_name(measure_id, "Results"), results),
    ]
