"""Code Override Store.

Holds manually edited code per (measure, component, output format) with
an append-only history of edit notes.

Features:
- Compound-key lookup; overrides never cross measure boundaries
- Whole-record replacement under a lock (records are immutable)
- Minimum-length edit notes on every save
- Idempotent revert that keeps the note history
- Notes across formats for one component, newest first
- Audit event for every mutation, including rejected saves

The store is passed explicitly to the compiler and the API; there is no
module-level instance.
"""

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
import logging
import threading
from typing import Any
import uuid

from measure_compiler.core.audit import AuditAction, log_override_change
from measure_compiler.core.config import settings
from measure_compiler.schemas.base import ChangeType, OutputFormat

logger = logging.getLogger(__name__)

OverrideKey = tuple[str, str, OutputFormat]


@dataclass(frozen=True)
class EditNote:
    """Reviewer note explaining a manual edit."""

    id: str
    timestamp: datetime
    author: str
    content: str
    format: OutputFormat
    change_type: ChangeType | None = None
    previous_code: str | None = None  # Code replaced by the edit


@dataclass(frozen=True)
class CodeOverride:
    """Manually edited code for one component in one output format."""

    measure_id: str
    component_id: str
    format: OutputFormat
    code: str
    is_locked: bool
    created_at: datetime
    updated_at: datetime
    original_generated_code: str  # Generated code at the time of the first locked save
    notes: tuple[EditNote, ...] = ()

    @property
    def key(self) -> OverrideKey:
        return (self.measure_id, self.component_id, self.format)


@dataclass
class OverrideOperationResult:
    """Outcome of a store mutation. Rejections are returned, never raised."""

    success: bool
    override: CodeOverride | None = None
    errors: list[str] = field(default_factory=list)


class OverrideStore:
    """In-memory store of code overrides keyed by (measure, component, format)."""

    def __init__(self, min_note_length: int | None = None):
        self._overrides: dict[OverrideKey, CodeOverride] = {}
        self._lock = threading.Lock()
        self.min_note_length = (
            min_note_length if min_note_length is not None else settings.override_note_min_length
        )
        logger.info("OverrideStore initialized")

    def _check_note(self, note: str) -> str | None:
        if len(note.strip()) < self.min_note_length:
            return f"Edit note must be at least {self.min_note_length} characters"
        return None

    def _reject(
        self,
        action: AuditAction,
        measure_id: str,
        component_id: str,
        output_format: OutputFormat,
        reason: str,
        author: str | None,
    ) -> OverrideOperationResult:
        logger.warning(
            f"Override {action.value} rejected for {measure_id}/{component_id} "
            f"({output_format.value}): {reason}"
        )
        log_override_change(
            action,
            measure_id=measure_id,
            component_id=component_id,
            output_format=output_format.value,
            user_id=author,
            success=False,
            reason=reason,
        )
        return OverrideOperationResult(success=False, errors=[reason])

    # ------------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------------

    def save(
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
        """Save edited code for a component and lock it.

        Args:
            measure_id: Measure owning the component
            component_id: Data element id
            output_format: Format the code is written in
            code: Replacement code
            note: Reason for the edit (minimum length enforced)
            original_generated_code: Generated code being replaced
            change_type: Optional classification of the edit
            author: Who made the edit

        Returns:
            OverrideOperationResult with the new record on success
        """
        reason = None
        if not measure_id or not component_id:
            reason = "Measure ID and component ID are required"
        else:
            reason = self._check_note(note)
        if reason:
            return self._reject(
                AuditAction.OVERRIDE_SAVE, measure_id, component_id, output_format, reason, author
            )

        key = (measure_id, component_id, output_format)
        now = datetime.now(UTC)
        with self._lock:
            existing = self._overrides.get(key)
            if existing is not None and existing.is_locked:
                original = existing.original_generated_code
                previous_code = existing.code
            else:
                original = original_generated_code
                previous_code = original_generated_code

            new_note = EditNote(
                id=str(uuid.uuid4()),
                timestamp=now,
                author=author,
                content=note.strip(),
                format=output_format,
                change_type=change_type,
                previous_code=previous_code,
            )
            override = CodeOverride(
                measure_id=measure_id,
                component_id=component_id,
                format=output_format,
                code=code,
                is_locked=True,
                created_at=existing.created_at if existing else now,
                updated_at=now,
                original_generated_code=original,
                notes=(existing.notes if existing else ()) + (new_note,),
            )
            self._overrides[key] = override

        logger.info(
            f"Saved override for {measure_id}/{component_id} ({output_format.value}), "
            f"{len(override.notes)} notes"
        )
        log_override_change(
            AuditAction.OVERRIDE_SAVE,
            measure_id=measure_id,
            component_id=component_id,
            output_format=output_format.value,
            user_id=author,
            note_count=len(override.notes),
        )
        return OverrideOperationResult(success=True, override=override)

    def add_note(
        self,
        measure_id: str,
        component_id: str,
        output_format: OutputFormat,
        note: str,
        change_type: ChangeType | None = None,
        author: str = "user",
    ) -> OverrideOperationResult:
        """Append a note to an existing override without changing its code."""
        reason = self._check_note(note)
        if reason:
            return self._reject(
                AuditAction.OVERRIDE_NOTE, measure_id, component_id, output_format, reason, author
            )

        key = (measure_id, component_id, output_format)
        with self._lock:
            existing = self._overrides.get(key)
            if existing is not None:
                new_note = EditNote(
                    id=str(uuid.uuid4()),
                    timestamp=datetime.now(UTC),
                    author=author,
                    content=note.strip(),
                    format=output_format,
                    change_type=change_type,
                )
                override = replace(
                    existing,
                    notes=existing.notes + (new_note,),
                    updated_at=new_note.timestamp,
                )
                self._overrides[key] = override

        if existing is None:
            return self._reject(
                AuditAction.OVERRIDE_NOTE,
                measure_id,
                component_id,
                output_format,
                f"No override exists for {measure_id}/{component_id} ({output_format.value})",
                author,
            )

        log_override_change(
            AuditAction.OVERRIDE_NOTE,
            measure_id=measure_id,
            component_id=component_id,
            output_format=output_format.value,
            user_id=author,
            note_count=len(override.notes),
        )
        return OverrideOperationResult(success=True, override=override)

    def revert(
        self,
        measure_id: str,
        component_id: str,
        output_format: OutputFormat,
        author: str | None = None,
    ) -> OverrideOperationResult:
        """Unlock an override so generated code is used again.

        Idempotent. Notes are kept for audit.
        """
        key = (measure_id, component_id, output_format)
        with self._lock:
            existing = self._overrides.get(key)
            if existing is None:
                return OverrideOperationResult(success=True)
            override = existing
            if existing.is_locked:
                override = replace(existing, is_locked=False, updated_at=datetime.now(UTC))
                self._overrides[key] = override

        if existing.is_locked:
            logger.info(f"Reverted override for {measure_id}/{component_id} ({output_format.value})")
            log_override_change(
                AuditAction.OVERRIDE_REVERT,
                measure_id=measure_id,
                component_id=component_id,
                output_format=output_format.value,
                user_id=author,
                note_count=len(override.notes),
            )
        return OverrideOperationResult(success=True, override=override)

    def revert_all(self, measure_id: str, component_id: str, author: str | None = None) -> int:
        """Revert a component in every format. Returns how many were unlocked."""
        reverted = 0
        for output_format in OutputFormat:
            existing = self.get(measure_id, component_id, output_format)
            if existing is not None and existing.is_locked:
                self.revert(measure_id, component_id, output_format, author)
                reverted += 1
        return reverted

    def clear(self) -> None:
        """Remove every override (for testing)."""
        with self._lock:
            self._overrides.clear()

    # ------------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------------

    def get(
        self, measure_id: str, component_id: str, output_format: OutputFormat
    ) -> CodeOverride | None:
        return self._overrides.get((measure_id, component_id, output_format))

    def get_overrides_for_measure(
        self, measure_id: str, output_format: OutputFormat | None = None
    ) -> list[CodeOverride]:
        """Locked overrides for a measure, in save order."""
        with self._lock:
            overrides = list(self._overrides.values())
        return [
            override for override in overrides
            if override.measure_id == measure_id
            and override.is_locked
            and (output_format is None or override.format == output_format)
        ]

    def get_all_notes(self, component_id: str, measure_id: str | None = None) -> list[EditNote]:
        """Every note for a component across formats, newest first."""
        with self._lock:
            overrides = list(self._overrides.values())
        notes = [
            note
            for override in overrides
            if override.component_id == component_id
            and (measure_id is None or override.measure_id == measure_id)
            for note in override.notes
        ]
        return sorted(reversed(notes), key=lambda note: note.timestamp, reverse=True)

    def get_stats(self) -> dict[str, Any]:
        """Get store statistics."""
        with self._lock:
            overrides = list(self._overrides.values())
        return {
            "total_overrides": len(overrides),
            "locked_overrides": sum(1 for override in overrides if override.is_locked),
            "total_notes": sum(len(override.notes) for override in overrides),
            "measures": len({override.measure_id for override in overrides}),
        }
