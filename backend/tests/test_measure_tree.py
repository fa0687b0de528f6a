"""Tests for criteria tree traversal helpers."""

from conftest import clause, element
from measure_compiler.schemas import (
    DataElementType,
    LogicalOperator,
    Measure,
    PopulationType,
    ValueSetReference,
)
from measure_compiler.services.measure_tree import (
    collect_value_sets,
    component_description,
    describe_component,
    find_element,
    find_population,
    has_element_type,
    iter_elements,
    iter_measure_elements,
    resolve_value_set,
)


class TestTraversal:
    """Test tree walks."""

    def test_depth_first_child_order(self):
        """Test elements come back depth-first in child order."""
        tree = clause(
            LogicalOperator.AND,
            element("a", DataElementType.DIAGNOSIS),
            clause(
                LogicalOperator.OR,
                element("b", DataElementType.PROCEDURE),
                clause(LogicalOperator.NOT, element("c", DataElementType.ENCOUNTER)),
            ),
            element("d", DataElementType.MEDICATION),
        )
        assert [e.id for e in iter_elements(tree)] == ["a", "b", "c", "d"]

    def test_measure_elements_by_population(self, diabetes_measure):
        pairs = list(iter_measure_elements(diabetes_measure))
        assert pairs[0][0].type == PopulationType.INITIAL_POPULATION
        assert [e.id for _, e in pairs] == [
            "ip-age",
            "ip-diabetes",
            "ip-visit",
            "dex-palliative",
            "num-retinal",
            "num-retinal-result",
        ]

    def test_find_population(self, diabetes_measure):
        assert find_population(diabetes_measure, PopulationType.NUMERATOR).narrative == (
            "Patients with a retinal exam"
        )
        assert find_population(diabetes_measure, PopulationType.NUMERATOR_EXCLUSION) is None

    def test_has_element_type(self, diabetes_measure):
        assert has_element_type(diabetes_measure, DataElementType.OBSERVATION) is True
        assert has_element_type(diabetes_measure, DataElementType.IMMUNIZATION) is False

    def test_find_element(self, diabetes_measure):
        assert find_element(diabetes_measure, "ip-visit").description == "Office visit"
        assert find_element(diabetes_measure, "missing") is None


class TestValueSetResolution:
    """Test value set lookup and collection."""

    def test_resolve_by_id(self, diabetes_measure):
        ip_visit = find_element(diabetes_measure, "ip-visit")
        assert resolve_value_set(ip_visit, diabetes_measure).name == "Office Visit"

    def test_resolve_by_oid(self, diabetes_measure):
        """Test value_set_id falls back to matching OIDs."""
        ref = element(
            "x", DataElementType.DIAGNOSIS, value_set_id="2.16.840.1.113883.3.464.1003.103.12.1001"
        )
        assert resolve_value_set(ref, diabetes_measure).name == "Diabetes"

    def test_inline_wins(self, diabetes_measure):
        inline = ValueSetReference(name="Inline")
        ref = element("x", DataElementType.DIAGNOSIS, value_set=inline, value_set_id="vs-diabetes")
        assert resolve_value_set(ref, diabetes_measure) is inline

    def test_unresolved(self, diabetes_measure):
        assert resolve_value_set(element("x", DataElementType.DIAGNOSIS), diabetes_measure) is None
        ref = element("x", DataElementType.DIAGNOSIS, value_set_id="vs-unknown")
        assert resolve_value_set(ref, diabetes_measure) is None

    def test_collect_value_sets_dedups_inline(self, diabetes_measure):
        """Test inline value sets are appended once after measure-level ones."""
        names = [vs.name for vs in collect_value_sets(diabetes_measure)]
        assert names == [
            "Diabetes",
            "Office Visit",
            "Retinal or Dilated Eye Exam",
            "Palliative Care Intervention",
        ]

    def test_collect_skips_inline_duplicate_of_measure_set(self, diabetes_measure):
        diabetes_measure.populations[0].criteria.children.append(
            element(
                "dup",
                DataElementType.DIAGNOSIS,
                value_set=ValueSetReference(
                    name="Diabetes copy", oid="2.16.840.1.113883.3.464.1003.103.12.1001"
                ),
            )
        )
        assert len(collect_value_sets(diabetes_measure)) == 4


class TestDescriptions:
    """Test component naming fallbacks."""

    def test_description_first(self, diabetes_measure):
        assert describe_component(diabetes_measure, "ip-diabetes") == "Diabetes diagnosis"

    def test_value_set_name_fallback(self, diabetes_measure):
        ref = element("x", DataElementType.DIAGNOSIS, value_set_id="vs-office")
        assert component_description(ref, diabetes_measure) == "Office Visit"

    def test_id_fallback(self):
        assert component_description(element("x", DataElementType.DIAGNOSIS)) == "x"
        assert describe_component(Measure(), "unknown-component") == "unknown-component"
