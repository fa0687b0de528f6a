"""Override Injector.

Merges locked manual overrides into freshly generated code.

Anchor search order per override:
1. Component marker emitted by the generator
2. Component description (CQL define block, SQL commented CTE)
3. Appended at the end under an "OVERRIDE for:" banner

An override is never dropped. A summary banner listing every applied
override is prepended when at least one was applied.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
import logging
import re

from measure_compiler.schemas.base import OutputFormat
from measure_compiler.schemas.ums import Measure
from measure_compiler.services.code_overrides import CodeOverride, EditNote, OverrideStore
from measure_compiler.services.component_markers import (
    cql_close_marker,
    cql_open_marker,
    sql_marker_prefix,
)
from measure_compiler.services.measure_tree import describe_component
from measure_compiler.services.sql_templates import sql_comment_text
from measure_compiler.services.sql_validator import extract_body

logger = logging.getLogger(__name__)

BANNER_RULE = "========================================"


@dataclass
class InjectionResult:
    """Generated code with overrides merged in."""

    code: str
    applied: list[str] = field(default_factory=list)  # Component ids, in application order
    appended: list[str] = field(default_factory=list)  # Component ids with no anchor found

    @property
    def count(self) -> int:
        return len(self.applied)


def comment_prefix(output_format: OutputFormat) -> str:
    return "//" if output_format == OutputFormat.CQL else "--"


def format_note_comment(note: EditNote, output_format: OutputFormat) -> str:
    """Render an edit note as a single-line comment."""
    label = f" [{note.change_type.value}]" if note.change_type else ""
    timestamp = note.timestamp.strftime("%Y-%m-%d %H:%M UTC")
    content = " ".join(note.content.split())
    return f"{comment_prefix(output_format)} EDIT NOTE{label} ({timestamp}): {content}"


def override_block(override: CodeOverride) -> str:
    """Notes as comments, the [OVERRIDDEN] marker, then the code verbatim."""
    prefix = comment_prefix(override.format)
    lines = [format_note_comment(note, override.format) for note in override.notes]
    lines.append(f"{prefix} [OVERRIDDEN]")
    lines.append(override.code)
    return "\n".join(lines)


def override_banner(
    entries: list[tuple[str, CodeOverride]], output_format: OutputFormat
) -> str:
    prefix = comment_prefix(output_format)
    lines = [
        f"{prefix} {BANNER_RULE}",
        f"{prefix} MANUAL OVERRIDES APPLIED: {len(entries)} component(s)",
        f"{prefix} {BANNER_RULE}",
    ]
    for description, override in entries:
        lines.append(prefix)
        lines.append(f"{prefix} [OVERRIDE] {' '.join(description.split())}")
        lines.extend(format_note_comment(note, output_format) for note in override.notes)
    lines.append(f"{prefix} {BANNER_RULE}")
    lines.append("")
    return "\n".join(lines) + "\n"


# ============================================================================
# Anchors
# ============================================================================


def _replace_cql_marker(code: str, override: CodeOverride) -> str | None:
    open_marker = cql_open_marker(override.component_id)
    close_marker = cql_close_marker(override.component_id)
    pattern = re.compile(re.escape(open_marker) + r".*?" + re.escape(close_marker), re.DOTALL)
    if not pattern.search(code):
        return None
    block = f"{open_marker}\n{override_block(override)}\n{close_marker}"
    return pattern.sub(lambda _: block, code)


def _replace_cql_definition(code: str, override: CodeOverride, description: str) -> str | None:
    pattern = re.compile(
        r'(define\s+"' + re.escape(description) + r'"\s*:)(.*?)(?=\n\s*\n|\ndefine\s|\Z)',
        re.DOTALL,
    )
    match = pattern.search(code)
    if match is None:
        return None
    replacement = f"{match.group(1)}\n{override_block(override)}"
    return code[:match.start()] + replacement + code[match.end():]


def _replace_sql_cte_after(code: str, anchor_end: int, override: CodeOverride) -> str | None:
    cte = re.compile(r"\b[A-Za-z_][A-Za-z0-9_]*\s+as\s*\(", re.IGNORECASE).search(code, anchor_end)
    if cte is None:
        return None
    open_index = cte.end() - 1
    body = extract_body(code, open_index)
    close_index = open_index + 1 + len(body)
    return f"{code[:open_index + 1]}\n{override_block(override)}\n{code[close_index:]}"


def _replace_sql_marker(code: str, override: CodeOverride) -> str | None:
    pattern = re.compile(r"^" + re.escape(sql_marker_prefix(override.component_id)) + r".*$", re.MULTILINE)
    match = pattern.search(code)
    if match is None:
        return None
    return _replace_sql_cte_after(code, match.end(), override)


def _replace_sql_description(code: str, override: CodeOverride, description: str) -> str | None:
    pattern = re.compile(
        r"^--\s*" + re.escape(sql_comment_text(description)) + r"\s*$", re.MULTILINE
    )
    match = pattern.search(code)
    if match is None:
        return None
    return _replace_sql_cte_after(code, match.end(), override)


def _append(code: str, override: CodeOverride, description: str) -> str:
    prefix = comment_prefix(override.format)
    return (
        f"{code}\n\n{prefix} {BANNER_RULE}\n"
        f"{prefix} OVERRIDE for: {' '.join(description.split())}\n"
        f"{prefix} {BANNER_RULE}\n"
        f"{override_block(override)}"
    )


AnchorFn = Callable[[str, CodeOverride], str | None]
DescriptionAnchorFn = Callable[[str, CodeOverride, str], str | None]

_ANCHORS: dict[OutputFormat, tuple[AnchorFn, DescriptionAnchorFn]] = {
    OutputFormat.CQL: (_replace_cql_marker, _replace_cql_definition),
    OutputFormat.SYNAPSE_SQL: (_replace_sql_marker, _replace_sql_description),
}


# ============================================================================
# Injection
# ============================================================================


def inject_overrides(
    code: str, measure: Measure, overrides: list[CodeOverride], output_format: OutputFormat
) -> InjectionResult:
    """Merge the given overrides into generated code for one format."""
    marker_anchor, description_anchor = _ANCHORS[output_format]
    result = InjectionResult(code=code)
    entries: list[tuple[str, CodeOverride]] = []

    for override in overrides:
        if override.format != output_format or override.measure_id != measure.id:
            continue
        description = describe_component(measure, override.component_id)

        updated = marker_anchor(result.code, override)
        if updated is None:
            updated = description_anchor(result.code, override, description)
        if updated is None:
            logger.warning(
                f"No anchor found for override {override.measure_id}/{override.component_id} "
                f"({output_format.value}); appending at end of document"
            )
            updated = _append(result.code, override, description)
            result.appended.append(override.component_id)

        result.code = updated
        result.applied.append(override.component_id)
        entries.append((description, override))

    if entries:
        result.code = override_banner(entries, output_format) + result.code
        logger.info(
            f"Applied {len(entries)} override(s) to {output_format.value} for measure {measure.id}"
        )
    return result


def apply_overrides(
    code: str, measure: Measure, output_format: OutputFormat, store: OverrideStore
) -> InjectionResult:
    """Merge every locked override of the measure from the store.

    Overrides are looked up by the exact (measure id, format) pair.
    """
    overrides = store.get_overrides_for_measure(measure.id, output_format)
    return inject_overrides(code, measure, overrides, output_format)
