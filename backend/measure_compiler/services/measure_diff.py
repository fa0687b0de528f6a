"""Measure Diff Service.

Compares two versions of a measure (e.g. year over year) and produces
a structured diff:
- Added, removed and modified data elements (matched by element id)
- Value set changes (OID changes, code additions and removals)
- Population changes by type
- Top-level metadata changes
- Optional line diff of the generated CQL
"""

from dataclasses import dataclass, field
import difflib
import logging
import re
import threading
from typing import Any

from measure_compiler.schemas.base import DiffChangeType
from measure_compiler.schemas.ums import DataElement, Measure, ValueSetReference
from measure_compiler.services.cql_generator import CQLGeneratorService
from measure_compiler.services.measure_tree import iter_measure_elements, resolve_value_set

logger = logging.getLogger(__name__)

METADATA_FIELDS = (
    "id",
    "title",
    "version",
    "steward",
    "status",
    "description",
    "measurement_period",
)

# Header timestamp of a generated CQL library
GENERATED_AT_LINE = re.compile(r"^ \* Generated: ")


@dataclass
class ValueSetDiff:
    change_type: DiffChangeType
    name_changed: bool
    oid_changed: bool
    old_oid: str | None = None
    new_oid: str | None = None
    codes_added: int = 0
    codes_removed: int = 0


@dataclass
class ElementDiff:
    change_type: DiffChangeType
    element_id: str
    old_element: DataElement | None = None
    new_element: DataElement | None = None
    changes: list[str] = field(default_factory=list)
    value_set_diff: ValueSetDiff | None = None


@dataclass
class PopulationDiff:
    change_type: DiffChangeType
    population_type: str
    old_narrative: str | None = None
    new_narrative: str | None = None


@dataclass
class MetadataDiff:
    field: str
    old_value: str | None
    new_value: str | None
    change_type: DiffChangeType


@dataclass
class DiffSummary:
    elements_added: int = 0
    elements_removed: int = 0
    elements_modified: int = 0
    value_sets_changed: int = 0
    populations_changed: int = 0
    metadata_changed: int = 0
    total_changes: int = 0


@dataclass
class DiffResult:
    """Structured comparison of two measure snapshots."""

    old_measure_id: str
    new_measure_id: str
    old_version: str
    new_version: str
    summary: DiffSummary
    metadata_changes: list[MetadataDiff] = field(default_factory=list)
    population_changes: list[PopulationDiff] = field(default_factory=list)
    element_changes: list[ElementDiff] = field(default_factory=list)
    code_diff: list[str] | None = None


def _code_keys(value_set: ValueSetReference) -> set[str]:
    return {f"{code.system}|{code.code}" for code in value_set.codes}


def compare_value_sets(
    old: ValueSetReference | None, new: ValueSetReference | None
) -> ValueSetDiff | None:
    """Compare two value set references; None when nothing changed."""
    if old is None and new is None:
        return None
    if old is None:
        return ValueSetDiff(
            DiffChangeType.ADDED, True, True, new_oid=new.oid, codes_added=len(new.codes)
        )
    if new is None:
        return ValueSetDiff(
            DiffChangeType.REMOVED, True, True, old_oid=old.oid, codes_removed=len(old.codes)
        )

    old_codes, new_codes = _code_keys(old), _code_keys(new)
    diff = ValueSetDiff(
        DiffChangeType.MODIFIED,
        name_changed=old.name != new.name,
        oid_changed=old.oid != new.oid,
        old_oid=old.oid,
        new_oid=new.oid,
        codes_added=len(new_codes - old_codes),
        codes_removed=len(old_codes - new_codes),
    )
    if not (diff.name_changed or diff.oid_changed or diff.codes_added or diff.codes_removed):
        return None
    return diff


def _dump(model: Any) -> Any:
    return model.model_dump(mode="json") if model is not None else None


class MeasureDiffService:
    """Compares measure versions."""

    def __init__(self, cql_generator: CQLGeneratorService | None = None):
        self._cql_generator = cql_generator
        logger.info("MeasureDiffService initialized")

    def compare(
        self, old: Measure, new: Measure, include_code_diff: bool = False
    ) -> DiffResult:
        """Compare two measure snapshots.

        Args:
            old: Previous version
            new: Current version
            include_code_diff: Also diff the generated CQL text

        Returns:
            DiffResult with summary and itemized changes
        """
        summary = DiffSummary()
        element_changes = self._compare_elements(old, new, summary)
        metadata_changes = self._compare_metadata(old, new)
        population_changes = self._compare_populations(old, new)

        summary.metadata_changed = len(metadata_changes)
        summary.populations_changed = len(population_changes)
        summary.total_changes = (
            len(element_changes) + len(metadata_changes) + len(population_changes)
        )

        result = DiffResult(
            old_measure_id=old.id,
            new_measure_id=new.id,
            old_version=old.version or "unknown",
            new_version=new.version or "unknown",
            summary=summary,
            metadata_changes=metadata_changes,
            population_changes=population_changes,
            element_changes=element_changes,
        )
        if include_code_diff:
            result.code_diff = self.code_diff(old, new)

        logger.info(
            f"Compared {old.id} v{old.version} -> {new.id} v{new.version}: "
            f"{summary.total_changes} changes"
        )
        return result

    def _compare_elements(
        self, old: Measure, new: Measure, summary: DiffSummary
    ) -> list[ElementDiff]:
        old_elements = {element.id: element for _, element in iter_measure_elements(old)}
        new_elements = {element.id: element for _, element in iter_measure_elements(new)}
        keys = list(old_elements) + [key for key in new_elements if key not in old_elements]

        changes: list[ElementDiff] = []
        for key in keys:
            old_element = old_elements.get(key)
            new_element = new_elements.get(key)
            old_vs = resolve_value_set(old_element, old) if old_element else None
            new_vs = resolve_value_set(new_element, new) if new_element else None
            value_set_diff = compare_value_sets(old_vs, new_vs)

            if old_element is None:
                diff = ElementDiff(
                    DiffChangeType.ADDED, key, new_element=new_element,
                    changes=["Element added"], value_set_diff=value_set_diff,
                )
                summary.elements_added += 1
            elif new_element is None:
                diff = ElementDiff(
                    DiffChangeType.REMOVED, key, old_element=old_element,
                    changes=["Element removed"], value_set_diff=value_set_diff,
                )
                summary.elements_removed += 1
            else:
                items = self._element_changes(old_element, new_element, value_set_diff)
                if not items:
                    continue
                diff = ElementDiff(
                    DiffChangeType.MODIFIED, key, old_element, new_element,
                    changes=items, value_set_diff=value_set_diff,
                )
                summary.elements_modified += 1

            if value_set_diff is not None:
                summary.value_sets_changed += 1
            changes.append(diff)
        return changes

    def _element_changes(
        self, old: DataElement, new: DataElement, value_set_diff: ValueSetDiff | None
    ) -> list[str]:
        changes = []
        if old.type != new.type:
            changes.append(f"Type changed: {old.type.value} → {new.type.value}")
        if old.description != new.description:
            changes.append("Description changed")
        if old.negation != new.negation:
            changes.append(f"Negation changed: {old.negation} → {new.negation}")
        if value_set_diff is not None:
            if value_set_diff.name_changed:
                changes.append("Value set changed")
            if value_set_diff.oid_changed:
                changes.append(
                    f"Value set OID changed: {value_set_diff.old_oid} → {value_set_diff.new_oid}"
                )
            if value_set_diff.codes_added:
                changes.append(f"{value_set_diff.codes_added} codes added")
            if value_set_diff.codes_removed:
                changes.append(f"{value_set_diff.codes_removed} codes removed")
        if _dump(old.timing) != _dump(new.timing):
            changes.append("Timing changed")
        if _dump(old.quantity) != _dump(new.quantity):
            changes.append("Quantity changed")
        if _dump(old.thresholds) != _dump(new.thresholds):
            changes.append("Thresholds changed")
        return changes

    def _compare_metadata(self, old: Measure, new: Measure) -> list[MetadataDiff]:
        changes = []
        for name in METADATA_FIELDS:
            old_value = _metadata_text(getattr(old, name))
            new_value = _metadata_text(getattr(new, name))
            if old_value == new_value:
                continue
            if not old_value:
                change_type = DiffChangeType.ADDED
            elif not new_value:
                change_type = DiffChangeType.REMOVED
            else:
                change_type = DiffChangeType.MODIFIED
            changes.append(MetadataDiff(name, old_value, new_value, change_type))
        return changes

    def _compare_populations(self, old: Measure, new: Measure) -> list[PopulationDiff]:
        old_populations = {population.type: population for population in old.populations}
        new_populations = {population.type: population for population in new.populations}
        types = list(old_populations) + [t for t in new_populations if t not in old_populations]

        changes = []
        for population_type in types:
            old_population = old_populations.get(population_type)
            new_population = new_populations.get(population_type)
            if old_population is None:
                changes.append(PopulationDiff(
                    DiffChangeType.ADDED, population_type.value,
                    new_narrative=new_population.narrative,
                ))
            elif new_population is None:
                changes.append(PopulationDiff(
                    DiffChangeType.REMOVED, population_type.value,
                    old_narrative=old_population.narrative,
                ))
            elif old_population.narrative != new_population.narrative:
                changes.append(PopulationDiff(
                    DiffChangeType.MODIFIED, population_type.value,
                    old_population.narrative, new_population.narrative,
                ))
        return changes

    def code_diff(self, old: Measure, new: Measure) -> list[str] | None:
        """Unified diff of the generated CQL, ignoring the timestamp line."""
        generator = self._cql_generator or CQLGeneratorService()
        old_result = generator.generate(old)
        new_result = generator.generate(new)
        if not old_result.success or not new_result.success:
            logger.warning("Skipping code diff: CQL generation failed for one of the measures")
            return None

        def _lines(code: str) -> list[str]:
            return [line for line in code.splitlines() if not GENERATED_AT_LINE.match(line)]

        return list(difflib.unified_diff(
            _lines(old_result.code),
            _lines(new_result.code),
            fromfile=f"{old.id} v{old.version}",
            tofile=f"{new.id} v{new.version}",
            lineterm="",
        ))


def _metadata_text(value: Any) -> str | None:
    if value is None:
        return None
    if hasattr(value, "start") and hasattr(value, "end"):
        return f"{value.start.isoformat()} to {value.end.isoformat()}"
    return str(value)


def format_diff_summary(diff: DiffResult) -> str:
    """Human-readable report of a diff."""
    summary = diff.summary
    lines = [
        f"Measure Comparison: {diff.old_measure_id} ({diff.old_version}) → "
        f"{diff.new_measure_id} ({diff.new_version})",
        "",
        "Summary:",
        f"  Total Changes: {summary.total_changes}",
        f"  Elements Added: {summary.elements_added}",
        f"  Elements Removed: {summary.elements_removed}",
        f"  Elements Modified: {summary.elements_modified}",
        f"  Value Sets Changed: {summary.value_sets_changed}",
        f"  Populations Changed: {summary.populations_changed}",
        f"  Metadata Changed: {summary.metadata_changed}",
    ]

    if diff.metadata_changes:
        lines.extend(["", "Metadata Changes:"])
        for change in diff.metadata_changes:
            lines.append(
                f'  {change.field}: "{change.old_value or "(none)"}" → "{change.new_value or "(none)"}"'
            )

    if diff.population_changes:
        lines.extend(["", "Population Changes:"])
        for change in diff.population_changes:
            lines.append(f"  [{change.change_type.value.upper()}] {change.population_type}")

    if diff.element_changes:
        lines.extend(["", "Element Changes:"])
        for change in diff.element_changes:
            element = change.new_element or change.old_element
            description = (element.description if element else "") or change.element_id
            label = description[:50] + ("..." if len(description) > 50 else "")
            lines.append(f"  [{change.change_type.value.upper()}] {label}")
            lines.extend(f"    - {detail}" for detail in change.changes)

    return "\n".join(lines)


# Module-level singleton
_service_instance: MeasureDiffService | None = None
_service_lock = threading.Lock()


def get_measure_diff_service() -> MeasureDiffService:
    """Get singleton instance of MeasureDiffService."""
    global _service_instance
    if _service_instance is None:
        with _service_lock:
            if _service_instance is None:
                _service_instance = MeasureDiffService()
    return _service_instance


def reset_measure_diff_service() -> None:
    """Reset the singleton instance (for testing)."""
    global _service_instance
    with _service_lock:
        _service_instance = None
