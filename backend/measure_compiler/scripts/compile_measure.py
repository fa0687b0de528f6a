"""Compile a measure JSON file to CQL and/or Synapse SQL.

Usage:
    # CQL to stdout
    measure-compile --measure cms130.json --format cql

    # Synapse SQL for a specific population, with validation report
    measure-compile --measure cms130.json --format synapse-sql --population-id POP123 --validate

    # Both formats, written next to each other (cms130.cql, cms130.sql)
    measure-compile --measure cms130.json --format all --output out/cms130
"""

import argparse
import logging
import sys
from collections.abc import Sequence
from pathlib import Path

from pydantic import ValidationError

from measure_compiler.schemas.base import OutputFormat
from measure_compiler.schemas.codegen import GenerationConfig, ValidationConfig
from measure_compiler.schemas.ums import Measure
from measure_compiler.services.code_overrides import OverrideStore
from measure_compiler.services.generation import GenerationResult
from measure_compiler.services.measure_compiler import MeasureCompiler

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

FORMAT_CHOICES = [output_format.value for output_format in OutputFormat] + ["all"]
FILE_SUFFIXES = {OutputFormat.CQL: ".cql", OutputFormat.SYNAPSE_SQL: ".sql"}


def load_measure(path: Path) -> Measure:
    """Parse a measure criteria tree from a JSON file."""
    return Measure.model_validate_json(path.read_text(encoding="utf-8"))


def report_validation(
    compiler: MeasureCompiler,
    result: GenerationResult,
    config: ValidationConfig,
) -> None:
    validation = compiler.validate(result.output_format, result.code, config)
    print(
        f"[{result.output_format.value}] validation score {validation.score}/100 "
        f"({len(validation.errors)} errors, {len(validation.warnings)} warnings)",
        file=sys.stderr,
    )
    for issue in validation.errors + validation.warnings:
        location = f" line {issue.line}" if issue.line else ""
        print(f"  {issue.severity.value.upper()} {issue.code}{location}: {issue.message}", file=sys.stderr)


def write_output(result: GenerationResult, output: Path | None, multiple: bool) -> None:
    if output is None:
        sys.stdout.write(result.code)
        if not result.code.endswith("\n"):
            sys.stdout.write("\n")
        return

    target = output.with_suffix(FILE_SUFFIXES[result.output_format]) if multiple else output
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(result.code, encoding="utf-8")
    logger.info(f"Wrote {result.output_format.value} to {target}")


def compile_measure(
    measure: Measure,
    formats: list[OutputFormat],
    config: GenerationConfig,
    output: Path | None = None,
    validate: bool = False,
) -> int:
    """Generate each requested format. Returns the process exit code."""
    compiler = MeasureCompiler(OverrideStore())
    validation_config = ValidationConfig(population_id=config.population_id)
    exit_code = 0

    for output_format in formats:
        result = compiler.generate(output_format, measure, config)
        for message in result.warnings:
            logger.warning(f"[{output_format.value}] {message}")
        if not result.success:
            for message in result.errors:
                logger.error(f"[{output_format.value}] {message}")
            exit_code = 1
            continue

        write_output(result, output, multiple=len(formats) > 1)
        if validate:
            report_validation(compiler, result, validation_config)

    return exit_code


def main(argv: Sequence[str] | None = None) -> None:
    """Main entry point for the script."""
    parser = argparse.ArgumentParser(
        description="Compile a clinical quality measure to CQL and/or Synapse SQL"
    )
    parser.add_argument(
        "--measure",
        type=Path,
        required=True,
        help="Path to the measure JSON file",
    )
    parser.add_argument(
        "--format",
        choices=FORMAT_CHOICES,
        default="all",
        help="Output format (default: all)",
    )
    parser.add_argument(
        "--population-id",
        default=None,
        help="Population id literal for SQL (default: parameter placeholder)",
    )
    parser.add_argument(
        "--validate",
        action="store_true",
        help="Print the validator score and issues for each generated format",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Output file (with --format all, used as the stem for .cql and .sql files)",
    )

    args = parser.parse_args(argv)

    try:
        measure = load_measure(args.measure)
    except (OSError, ValidationError) as e:
        logger.error(f"Failed to load measure from {args.measure}: {e}")
        sys.exit(1)

    formats = list(OutputFormat) if args.format == "all" else [OutputFormat(args.format)]
    config = GenerationConfig()
    if args.population_id:
        config = config.model_copy(update={"population_id": args.population_id})

    sys.exit(compile_measure(measure, formats, config, args.output, args.validate))


if __name__ == "__main__":
    main()
