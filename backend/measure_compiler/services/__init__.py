"""Services for Measure Compiler.

Services implement the compilation logic:
- CQLGeneratorService: Measure tree to CQL library
- SqlGeneratorService: Measure tree to Synapse SQL views
- CQLValidatorService / SqlValidatorService: Offline structural checks
- OverrideStore: Manual code edits with edit notes
- MeasureDiffService: Version-to-version comparison
- MeasureCompiler: Facade over all of the above
"""

from measure_compiler.services.code_overrides import (
    CodeOverride,
    EditNote,
    OverrideOperationResult,
    OverrideStore,
)
from measure_compiler.services.cql_generator import (
    CQLGeneratorService,
    get_cql_generator_service,
    reset_cql_generator_service,
)
from measure_compiler.services.cql_validator import (
    CQLValidatorService,
    get_cql_validator_service,
    reset_cql_validator_service,
)
from measure_compiler.services.generation import CqlMetadata, GenerationResult, SqlMetadata
from measure_compiler.services.measure_boilerplate import (
    BoilerplateBundle,
    BoilerplateRegistry,
    get_boilerplate_registry,
    reset_boilerplate_registry,
)
from measure_compiler.services.measure_compiler import MeasureCompiler
from measure_compiler.services.measure_diff import (
    DiffResult,
    MeasureDiffService,
    format_diff_summary,
    get_measure_diff_service,
    reset_measure_diff_service,
)
from measure_compiler.services.override_injector import (
    InjectionResult,
    apply_overrides,
    inject_overrides,
)
from measure_compiler.services.sql_generator import (
    SqlGeneratorService,
    get_sql_generator_service,
    reset_sql_generator_service,
)
from measure_compiler.services.sql_validator import (
    DetailedValidationResult,
    SqlValidatorService,
    get_sql_validator_service,
    reset_sql_validator_service,
)
from measure_compiler.services.validation import IssueSeverity, ValidationIssue, ValidationResult

__all__ = [
    # Generation
    "CQLGeneratorService",
    "CqlMetadata",
    "GenerationResult",
    "SqlGeneratorService",
    "SqlMetadata",
    "get_cql_generator_service",
    "get_sql_generator_service",
    "reset_cql_generator_service",
    "reset_sql_generator_service",
    # Boilerplate
    "BoilerplateBundle",
    "BoilerplateRegistry",
    "get_boilerplate_registry",
    "reset_boilerplate_registry",
    # Validation
    "CQLValidatorService",
    "DetailedValidationResult",
    "IssueSeverity",
    "SqlValidatorService",
    "ValidationIssue",
    "ValidationResult",
    "get_cql_validator_service",
    "get_sql_validator_service",
    "reset_cql_validator_service",
    "reset_sql_validator_service",
    # Overrides
    "CodeOverride",
    "EditNote",
    "InjectionResult",
    "OverrideOperationResult",
    "OverrideStore",
    "apply_overrides",
    "inject_overrides",
    # Diff
    "DiffResult",
    "MeasureDiffService",
    "format_diff_summary",
    "get_measure_diff_service",
    "reset_measure_diff_service",
    # Facade
    "MeasureCompiler",
]
