"""Measure Compiler facade.

Single entry point over the generators, validators, override store and
diff engine. Callers supply the override store; the compiler keeps no
global state of its own.
"""

import logging
from typing import Any

from measure_compiler.schemas.base import ChangeType, OutputFormat
from measure_compiler.schemas.codegen import GenerationConfig, ValidationConfig
from measure_compiler.schemas.ums import Measure
from measure_compiler.services.code_overrides import (
    CodeOverride,
    EditNote,
    OverrideOperationResult,
    OverrideStore,
)
from measure_compiler.services.cql_generator import CQLGeneratorService
from measure_compiler.services.cql_validator import CQLValidatorService
from measure_compiler.services.generation import GenerationResult
from measure_compiler.services.measure_boilerplate import BoilerplateRegistry
from measure_compiler.services.measure_diff import DiffResult, MeasureDiffService
from measure_compiler.services.override_injector import apply_overrides
from measure_compiler.services.sql_generator import SqlGeneratorService
from measure_compiler.services.sql_validator import DetailedValidationResult, SqlValidatorService
from measure_compiler.services.validation import ValidationResult

logger = logging.getLogger(__name__)


class MeasureCompiler:
    """Compiles measures to CQL and Synapse SQL with manual overrides merged in."""

    def __init__(self, override_store: OverrideStore, registry: BoilerplateRegistry | None = None):
        self.override_store = override_store
        self.cql_generator = CQLGeneratorService(registry)
        self.sql_generator = SqlGeneratorService()
        self.cql_validator = CQLValidatorService()
        self.sql_validator = SqlValidatorService()
        self.diff_service = MeasureDiffService(self.cql_generator)
        logger.info("MeasureCompiler initialized")

    # ------------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------------

    def generate(
        self,
        output_format: OutputFormat,
        measure: Measure,
        config: GenerationConfig | None = None,
    ) -> GenerationResult:
        """Generate code for one format and merge the measure's locked overrides.

        Args:
            output_format: CQL or Synapse SQL
            measure: Measure criteria tree
            config: Generation options (population id, period, contexts)

        Returns:
            GenerationResult with overrides_applied set
        """
        if output_format == OutputFormat.CQL:
            result = self.cql_generator.generate(measure, config)
        else:
            result = self.sql_generator.generate(measure, config)

        if not result.success:
            return result

        injection = apply_overrides(result.code, measure, output_format, self.override_store)
        result.code = injection.code
        result.overrides_applied = injection.count
        for component_id in injection.appended:
            result.warnings.append(
                f"Override for component {component_id} has no matching anchor; appended at end"
            )
        return result

    def generate_all(
        self, measure: Measure, config: GenerationConfig | None = None
    ) -> dict[OutputFormat, GenerationResult]:
        """Generate every supported format."""
        return {
            output_format: self.generate(output_format, measure, config)
            for output_format in OutputFormat
        }

    # ------------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------------

    def validate(
        self,
        output_format: OutputFormat,
        code: str,
        config: ValidationConfig | None = None,
    ) -> ValidationResult:
        if output_format == OutputFormat.CQL:
            return self.cql_validator.validate(code, config)
        return self.sql_validator.validate(code, config)

    def validate_detailed(
        self, code: str, config: ValidationConfig | None = None
    ) -> DetailedValidationResult:
        """SQL validation plus CTE and column analysis."""
        return self.sql_validator.validate_detailed(code, config)

    def validate_expression(self, expression: str) -> ValidationResult:
        return self.cql_validator.validate_expression(expression)

    # ------------------------------------------------------------------------
    # Overrides
    # ------------------------------------------------------------------------

    def save_override(
        self,
        measure_id: str,
        component_id: str,
        output_format: OutputFormat,
        code: str,
        note: str,
        original_generated_code: str,
        change_type: ChangeType | None = None,
        author: str = "user",
    ) -> OverrideOperationResult:
        return self.override_store.save(
            measure_id,
            component_id,
            output_format,
            code,
            note,
            original_generated_code,
            change_type=change_type,
            author=author,
        )

    def add_override_note(
        self,
        measure_id: str,
        component_id: str,
        output_format: OutputFormat,
        note: str,
        change_type: ChangeType | None = None,
        author: str = "user",
    ) -> OverrideOperationResult:
        return self.override_store.add_note(
            measure_id, component_id, output_format, note, change_type=change_type, author=author
        )

    def revert_override(
        self,
        measure_id: str,
        component_id: str,
        output_format: OutputFormat,
        author: str | None = None,
    ) -> OverrideOperationResult:
        return self.override_store.revert(measure_id, component_id, output_format, author)

    def get_overrides_for_measure(
        self, measure_id: str, output_format: OutputFormat | None = None
    ) -> list[CodeOverride]:
        return self.override_store.get_overrides_for_measure(measure_id, output_format)

    def get_all_notes(self, component_id: str, measure_id: str | None = None) -> list[EditNote]:
        return self.override_store.get_all_notes(component_id, measure_id)

    # ------------------------------------------------------------------------
    # Diff
    # ------------------------------------------------------------------------

    def diff(self, old: Measure, new: Measure, include_code_diff: bool = False) -> DiffResult:
        return self.diff_service.compare(old, new, include_code_diff)

    def get_stats(self) -> dict[str, Any]:
        """Get statistics across the wrapped services."""
        return {
            "cql_generator": self.cql_generator.get_stats(),
            "sql_generator": self.sql_generator.get_stats(),
            "cql_validator": self.cql_validator.get_stats(),
            "sql_validator": self.sql_validator.get_stats(),
            "overrides": self.override_store.get_stats(),
        }
