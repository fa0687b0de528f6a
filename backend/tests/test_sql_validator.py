"""Tests for Synapse SQL Validator Service."""

import pytest

from measure_compiler.schemas import GenerationConfig, ValidationConfig
from measure_compiler.services.sql_generator import SqlGeneratorService
from measure_compiler.services.sql_validator import (
    SqlValidatorService,
    blank_string_literals,
    get_sql_validator_service,
    reset_sql_validator_service,
    strip_comments,
)

VALID_SQL = """with ONT as (
  select distinct O.* from ph_d_ontology O where O.population_id = '${POPULATION_ID}'
),
DEMOG as (
  select P.population_id, P.empi_id, GENDO.concept_name as gender_concept_name
  from ph_d_person P
  left join ONT GENDO on P.gender_code = GENDO.code_oid
  where P.population_id = '${POPULATION_ID}'
),
PRED_ENC_1 as (
  select E.population_id, E.empi_id, 'Encounter' as data_model
  from ph_f_encounter E
  where E.population_id = '${POPULATION_ID}'
)
select * from DEMOG D where D.empi_id in (select empi_id from PRED_ENC_1)"""


def codes(result) -> list[str]:
    return [issue.code for issue in result.errors + result.warnings]


class TestServiceInit:
    """Test service initialization."""

    def test_singleton_pattern(self):
        """Test singleton pattern works."""
        reset_sql_validator_service()
        assert get_sql_validator_service() is get_sql_validator_service()

    def test_singleton_reset(self):
        """Test singleton can be reset."""
        service1 = get_sql_validator_service()
        reset_sql_validator_service()
        assert get_sql_validator_service() is not service1


# ============================================================================
# Structure Tests
# ============================================================================


class TestStructure:
    """Test CTE structure checks."""

    @pytest.fixture(autouse=True)
    def setup(self):
        """Set up test fixtures."""
        self.service = SqlValidatorService()

    def test_valid_script(self):
        """Test a conventional script passes with a full score."""
        result = self.service.validate(VALID_SQL)
        assert result.valid is True
        assert result.score == 100
        assert result.errors == []
        assert result.warnings == []

    def test_generated_script_valid(self, diabetes_measure):
        """Test generated SQL has no structural errors."""
        code = SqlGeneratorService().generate(diabetes_measure).code
        result = self.service.validate(code)
        assert result.valid is True
        assert result.errors == []

    def test_missing_ont(self):
        """Test removing ONT is an error and lowers the score."""
        result = self.service.validate(VALID_SQL.replace("with ONT as", "with TERMS as"))
        assert result.valid is False
        assert result.errors[0].code == "MISSING_REQUIRED_CTE"
        assert result.errors[0].message == "Missing required CTE: ONT"
        assert result.score <= 90

    def test_missing_ont_in_generated_script(self, diabetes_measure):
        code = SqlGeneratorService().generate(diabetes_measure).code
        result = self.service.validate(code.replace("\nONT as (", "\nTERMS as ("))
        assert "MISSING_REQUIRED_CTE" in codes(result)
        assert result.score <= 90

    def test_not_cte_structure(self):
        """Test scripts must start with WITH or a view header."""
        result = self.service.validate("select 1 from somewhere")
        assert {
            "INVALID_CTE_STRUCTURE",
            "MISSING_REQUIRED_CTE",
            "MISSING_POPULATION_FILTER",
        } <= set(codes(result))

    def test_cte_order(self):
        """Test DEMOG before ONT is a warning."""
        sql = """with DEMOG as (
  select P.population_id, P.empi_id, GENDO.concept_name as gender_concept_name
  from ph_d_person P
  left join ONT GENDO on P.gender_code = GENDO.code_oid
),
ONT as (
  select O.* from ph_d_ontology O where O.population_id = '${POPULATION_ID}'
)
select * from DEMOG"""
        result = self.service.validate(sql)
        assert result.valid is True
        assert "CTE_ORDER" in codes(result)

    def test_predicate_naming(self):
        """Test non-system CTEs should use the PRED_ prefix."""
        sql = VALID_SQL.replace("PRED_ENC_1", "ENCOUNTERS")
        result = self.service.validate(sql)
        assert codes(result) == ["PREDICATE_NAMING"]
        assert result.warnings[0].suggestion == "Rename to PRED_ENCOUNTERS for consistency"

    def test_no_predicates_suggestion(self):
        result = self.service.validate(VALID_SQL.replace("PRED_ENC_1", "NUMERATOR"))
        assert "Consider adding PRED_* CTEs for clinical criteria" in result.suggestions

    def test_missing_predicate_columns(self):
        """Test predicates without the standard columns warn per column."""
        sql = VALID_SQL.replace(
            "select E.population_id, E.empi_id, 'Encounter' as data_model",
            "select E.empi_id",
        )
        result = self.service.validate(sql)
        messages = [issue.message for issue in result.warnings]
        assert "Predicate PRED_ENC_1 may be missing required column: population_id" in messages
        assert "Predicate PRED_ENC_1 may be missing required column: data_model" in messages

    def test_missing_ont_joins(self):
        """Test DEMOG without ONT joins and concept names warns."""
        sql = VALID_SQL.replace(
            "  left join ONT GENDO on P.gender_code = GENDO.code_oid\n", ""
        ).replace(", GENDO.concept_name as gender_concept_name", "")
        result = self.service.validate(sql)
        assert {"MISSING_ONT_JOINS", "MISSING_CONCEPT_NAMES"} <= set(codes(result))


# ============================================================================
# Dialect, Population and Safety Tests
# ============================================================================


class TestContentChecks:
    """Test dialect, population id, safety and syntax checks."""

    @pytest.fixture(autouse=True)
    def setup(self):
        """Set up test fixtures."""
        self.service = SqlValidatorService()

    def test_non_synapse_syntax(self):
        """Test non-Synapse date syntax is flagged."""
        sql = VALID_SQL.replace(
            "where E.population_id", "where E.service_date > current_date() and E.population_id"
        )
        result = self.service.validate(sql)
        assert "DIALECT_MISMATCH" in codes(result)
        assert "SYNAPSE_SYNTAX" in codes(result)

    def test_placeholder_skips_mismatch(self):
        """Test the default placeholder does not trigger a mismatch."""
        result = self.service.validate(VALID_SQL, ValidationConfig())
        assert "POPULATION_ID_MISMATCH" not in codes(result)

    def test_population_id_missing(self):
        """Test a configured population id absent from the SQL warns."""
        result = self.service.validate(VALID_SQL, ValidationConfig(population_id="POP-1"))
        assert "POPULATION_ID_MISMATCH" in codes(result)

    def test_population_id_match(self, diabetes_measure):
        """Test SQL generated for a population id validates against it."""
        code = SqlGeneratorService().generate(
            diabetes_measure, GenerationConfig(population_id="POP-1")
        ).code
        result = self.service.validate(code, ValidationConfig(population_id="POP-1"))
        assert "POPULATION_ID_MISMATCH" not in codes(result)

    def test_population_id_mismatch_context(self, diabetes_measure):
        """Test a different literal is reported with context."""
        code = SqlGeneratorService().generate(
            diabetes_measure, GenerationConfig(population_id="POP-1")
        ).code
        result = self.service.validate(code, ValidationConfig(population_id="POP-2"))
        mismatch = [issue for issue in result.warnings if issue.code == "POPULATION_ID_MISMATCH"]
        assert len(mismatch) == 1
        assert mismatch[0].context == "POP-1"

    def test_no_population_filter(self):
        result = self.service.validate("with ONT as (select 1 as x), DEMOG as (select 2 as y) select 1")
        assert "MISSING_POPULATION_FILTER" in [issue.code for issue in result.errors]

    def test_dangerous_statement(self):
        """Test chained destructive statements are errors."""
        result = self.service.validate(VALID_SQL + "; drop table ph_d_person")
        assert "POTENTIAL_SQL_INJECTION" in [issue.code for issue in result.errors]

    def test_description_mentioning_drop_is_safe(self, diabetes_measure):
        """Test element descriptions in marker comments are not treated as statements."""
        diabetes_measure.populations[0].criteria.children[1].description = "Foot drop; drop foot"
        code = SqlGeneratorService().generate(diabetes_measure).code
        assert "-- [component:ip-diabetes] Foot drop; drop foot\n" in code
        result = self.service.validate(code)
        assert "POTENTIAL_SQL_INJECTION" not in codes(result)
        assert result.valid is True

    def test_commented_drop_statement(self):
        """Test a drop statement hidden in a comment is still an error."""
        result = self.service.validate(VALID_SQL + "\n-- then drop table ph_d_person")
        assert "POTENTIAL_SQL_INJECTION" in [issue.code for issue in result.errors]

    def test_unquoted_parameter(self):
        """Test unquoted template parameters warn."""
        sql = VALID_SQL.replace(
            "where E.population_id = '${POPULATION_ID}'",
            "where E.population_id = ${POPULATION_ID}",
        )
        result = self.service.validate(sql)
        assert "UNQUOTED_PARAMETER" in codes(result)

    def test_parameter_in_comment_ignored(self):
        result = self.service.validate("-- Population ID: ${POPULATION_ID}\n" + VALID_SQL)
        assert "UNQUOTED_PARAMETER" not in codes(result)

    def test_unclosed_parenthesis(self):
        """Test unclosed parentheses are counted."""
        result = self.service.validate(VALID_SQL + " and (1 = 1")
        assert any(issue.message == "1 unclosed parenthesis(es)" for issue in result.errors)

    def test_unexpected_closing_parenthesis(self):
        result = self.service.validate(VALID_SQL + ")")
        assert any(issue.message == "Unexpected closing parenthesis" for issue in result.errors)

    def test_unbalanced_quote(self):
        """Test an unclosed string literal reports its line."""
        result = self.service.validate(VALID_SQL + "\nand D.gender = 'F")
        quotes = [issue for issue in result.errors if issue.code == "UNBALANCED_QUOTES"]
        assert len(quotes) == 1
        assert quotes[0].line == 16

    def test_escaped_quote_balanced(self):
        result = self.service.validate(VALID_SQL + " and D.name = 'O''Brien'")
        assert result.valid is True

    def test_score_lowered_per_issue(self):
        """Test each issue costs points and the score never goes negative."""
        base = self.service.validate(VALID_SQL)
        worse = self.service.validate(VALID_SQL.replace("with ONT as", "with TERMS as"))
        assert worse.score < base.score
        garbage = self.service.validate(")))))))))))) '" + "; drop table x")
        assert garbage.score >= 0


# ============================================================================
# Detailed Analysis Tests
# ============================================================================


class TestDetailedValidation:
    """Test CTE and column analysis."""

    @pytest.fixture(autouse=True)
    def setup(self):
        """Set up test fixtures."""
        self.service = SqlValidatorService()

    def test_cte_analysis(self):
        """Test CTE inventory and dependencies."""
        detailed = self.service.validate_detailed(VALID_SQL)
        analysis = detailed.cte_analysis
        assert detailed.result.valid is True
        assert analysis.total == 3
        assert analysis.names == ["ONT", "DEMOG", "PRED_ENC_1"]
        assert analysis.predicates == ["PRED_ENC_1"]
        assert analysis.populations == []
        assert analysis.dependencies["DEMOG"] == ["ONT"]
        assert analysis.dependencies["PRED_ENC_1"] == []

    def test_column_analysis(self):
        """Test selected columns and join conditions are extracted."""
        analysis = self.service.validate_detailed(VALID_SQL).column_analysis
        assert analysis.select_columns["DEMOG"] == ["population_id", "empi_id", "gender_concept_name"]
        assert analysis.select_columns["PRED_ENC_1"] == ["population_id", "empi_id", "data_model"]
        assert "P.gender_code = GENDO.code_oid" in analysis.join_conditions
        assert analysis.filter_conditions

    def test_generated_script_analysis(self, diabetes_measure):
        """Test population CTEs are recognized in generated SQL."""
        code = SqlGeneratorService().generate(diabetes_measure).code
        analysis = self.service.validate_detailed(code).cte_analysis
        assert "INITIAL_POPULATION" in analysis.populations
        assert "NUMERATOR" in analysis.populations
        assert "PRED_COND_1" in analysis.predicates
        assert "PRED_COND_1" in analysis.dependencies["INITIAL_POPULATION"]

    def test_strip_comments_keeps_strings(self):
        """Test comment markers inside strings are preserved."""
        assert strip_comments("select '--x' -- note\n/* block */from t") == "select '--x' \nfrom t"

    def test_blank_string_literals_keeps_comments(self):
        """Test string contents are emptied while comments survive."""
        sql = "select 'a; drop b' as x -- it's\nfrom t where y = 'open"
        assert blank_string_literals(sql) == "select '' as x -- it's\nfrom t where y = 'open"
