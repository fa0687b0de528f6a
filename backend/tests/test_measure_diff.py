"""Tests for Measure Diff Service."""

from datetime import date

import pytest

from conftest import RETINAL_EXAM_OID, element
from measure_compiler.schemas import (
    CodeReference,
    DataElementType,
    DiffChangeType,
    Measure,
    MeasurementPeriod,
    PopulationType,
    ValueSetReference,
)
from measure_compiler.services.measure_diff import (
    MeasureDiffService,
    compare_value_sets,
    format_diff_summary,
    get_measure_diff_service,
    reset_measure_diff_service,
)


class TestServiceInit:
    """Test service initialization."""

    def test_singleton_pattern(self):
        """Test singleton pattern works."""
        reset_measure_diff_service()
        assert get_measure_diff_service() is get_measure_diff_service()

    def test_singleton_reset(self):
        service1 = get_measure_diff_service()
        reset_measure_diff_service()
        assert get_measure_diff_service() is not service1


# ============================================================================
# Value Set Comparison Tests
# ============================================================================


class TestCompareValueSets:
    """Test value set comparison."""

    def test_both_missing(self):
        assert compare_value_sets(None, None) is None

    def test_identical(self):
        value_set = ValueSetReference(name="Diabetes", oid="1.2.3")
        assert compare_value_sets(value_set, value_set.model_copy(deep=True)) is None

    def test_added_and_removed(self):
        value_set = ValueSetReference(
            name="Diabetes", oid="1.2.3", codes=[CodeReference(code="E11.9", system="ICD10CM")]
        )
        added = compare_value_sets(None, value_set)
        assert added.change_type == DiffChangeType.ADDED
        assert added.codes_added == 1
        removed = compare_value_sets(value_set, None)
        assert removed.change_type == DiffChangeType.REMOVED
        assert removed.old_oid == "1.2.3"

    def test_codes_compared_by_system_and_code(self):
        """Test the same code in another system counts as a change."""
        old = ValueSetReference(name="A", codes=[CodeReference(code="100", system="CPT")])
        new = ValueSetReference(name="A", codes=[CodeReference(code="100", system="HCPCS")])
        diff = compare_value_sets(old, new)
        assert diff.codes_added == 1
        assert diff.codes_removed == 1
        assert diff.oid_changed is False


# ============================================================================
# Measure Comparison Tests
# ============================================================================


class TestCompare:
    """Test measure comparison."""

    @pytest.fixture(autouse=True)
    def setup(self, diabetes_measure):
        """Set up test fixtures."""
        self.service = MeasureDiffService()
        self.old = diabetes_measure
        self.new = diabetes_measure.model_copy(deep=True)

    def test_identical_measures(self):
        """Test identical measures produce no changes."""
        result = self.service.compare(self.old, self.new)
        assert result.summary.total_changes == 0
        assert result.element_changes == []
        assert result.metadata_changes == []
        assert result.population_changes == []
        assert result.code_diff is None

    def test_single_added_element(self):
        """Test one added element is exactly one change."""
        self.new.populations[3].criteria.children.append(
            element("num-extra", DataElementType.ENCOUNTER, "Follow-up visit")
        )
        result = self.service.compare(self.old, self.new)
        assert result.summary.total_changes == 1
        assert result.summary.elements_added == 1
        change = result.element_changes[0]
        assert change.change_type == DiffChangeType.ADDED
        assert change.element_id == "num-extra"
        assert change.changes == ["Element added"]
        assert change.value_set_diff is None

    def test_removed_element(self):
        del self.new.populations[0].criteria.children[2]
        result = self.service.compare(self.old, self.new)
        assert result.summary.elements_removed == 1
        assert result.summary.value_sets_changed == 1
        assert result.element_changes[0].element_id == "ip-visit"
        assert result.element_changes[0].change_type == DiffChangeType.REMOVED

    def test_value_set_oid_change(self):
        """Test an OID change is reported on every element using the value set."""
        self.new.value_sets[2].oid = "2.16.840.1.999"
        result = self.service.compare(self.old, self.new)
        assert [change.element_id for change in result.element_changes] == [
            "num-retinal",
            "num-retinal-result",
        ]
        assert result.summary.elements_modified == 2
        assert result.summary.value_sets_changed == 2
        assert (
            f"Value set OID changed: {RETINAL_EXAM_OID} → 2.16.840.1.999"
            in result.element_changes[0].changes
        )

    def test_code_additions(self):
        self.new.value_sets[0].codes.append(CodeReference(code="E11.65", system="ICD10CM"))
        result = self.service.compare(self.old, self.new)
        assert len(result.element_changes) == 1
        change = result.element_changes[0]
        assert change.element_id == "ip-diabetes"
        assert change.changes == ["1 codes added"]
        assert change.value_set_diff.codes_added == 1

    def test_element_attribute_changes(self):
        """Test type, negation and timing edits are itemized."""
        retinal = self.new.populations[3].criteria.children[0]
        retinal.negation = True
        retinal.timing = None
        result = self.service.compare(self.old, self.new)
        changes = result.element_changes[0].changes
        assert "Negation changed: False → True" in changes
        assert "Timing changed" in changes

    def test_metadata_changes(self):
        """Test metadata fields are classified added, removed or modified."""
        self.new.version = "13.0.0"
        self.new.status = "active"
        self.new.steward = None
        self.new.measurement_period = MeasurementPeriod(start=date(2026, 1, 1), end=date(2026, 12, 31))

        result = self.service.compare(self.old, self.new)
        changes = {change.field: change for change in result.metadata_changes}

        assert changes["version"].change_type == DiffChangeType.MODIFIED
        assert changes["status"].change_type == DiffChangeType.ADDED
        assert changes["steward"].change_type == DiffChangeType.REMOVED
        assert changes["measurement_period"].new_value == "2026-01-01 to 2026-12-31"
        assert result.summary.metadata_changed == 4
        assert result.new_version == "13.0.0"

    def test_population_changes(self):
        """Test narrative edits and removed populations."""
        self.new.populations[0].narrative = "Revised population"
        self.new.populations = [
            population
            for population in self.new.populations
            if population.type != PopulationType.DENOMINATOR_EXCLUSION
        ]
        result = self.service.compare(self.old, self.new)
        changes = {change.population_type: change for change in result.population_changes}
        assert changes["initial_population"].change_type == DiffChangeType.MODIFIED
        assert changes["initial_population"].new_narrative == "Revised population"
        assert changes["denominator_exclusion"].change_type == DiffChangeType.REMOVED
        # The removed population's element counts as well
        assert result.summary.elements_removed == 1
        assert result.summary.total_changes == 3


# ============================================================================
# Code Diff and Report Tests
# ============================================================================


class TestCodeDiffAndReport:
    """Test generated code diff and report formatting."""

    @pytest.fixture(autouse=True)
    def setup(self, diabetes_measure):
        """Set up test fixtures."""
        self.service = MeasureDiffService()
        self.old = diabetes_measure
        self.new = diabetes_measure.model_copy(deep=True)
        self.new.version = "13.0.0"

    def test_code_diff_ignores_timestamp(self):
        """Test the generated-at line never shows up in the diff."""
        result = self.service.compare(self.old, self.new, include_code_diff=True)
        assert result.code_diff
        assert result.code_diff[0] == "--- CMS131v12 v12.0.0"
        assert result.code_diff[1] == "+++ CMS131v12 v13.0.0"
        assert not any("Generated:" in line for line in result.code_diff)

    def test_code_diff_keeps_lines_mentioning_generated(self):
        """Test only the header timestamp is ignored, not text that mentions it."""
        self.new.description = "Generated: nightly from the registry"
        diff = self.service.code_diff(self.old, self.new)
        assert "+ * Description: Generated: nightly from the registry" in diff
        assert "- * Description: Patients with diabetes who had a retinal eye exam" in diff
        assert not any(line.startswith(("+ * Generated: ", "- * Generated: ")) for line in diff)

    def test_code_diff_identical(self):
        assert self.service.code_diff(self.old, self.old.model_copy(deep=True)) == []

    def test_code_diff_skipped_on_failure(self):
        assert self.service.code_diff(Measure(), Measure()) is None

    def test_format_summary(self):
        """Test the report lists the summary and each change."""
        self.new.populations[3].criteria.children.append(
            element("num-extra", DataElementType.ENCOUNTER, "Follow-up visit")
        )
        report = format_diff_summary(self.service.compare(self.old, self.new))
        lines = report.splitlines()
        assert lines[0] == "Measure Comparison: CMS131v12 (12.0.0) → CMS131v12 (13.0.0)"
        assert "  Total Changes: 2" in lines
        assert '  version: "12.0.0" → "13.0.0"' in lines
        assert "  [ADDED] Follow-up visit" in lines
        assert "    - Element added" in lines

    def test_format_summary_without_changes(self):
        report = format_diff_summary(self.service.compare(self.old, self.old))
        assert "Element Changes:" not in report
        assert "  Total Changes: 0" in report
