"""Tests for Code Override Store."""

import logging

import pytest

from measure_compiler.schemas import ChangeType, OutputFormat
from measure_compiler.services.code_overrides import OverrideStore

CQL = OutputFormat.CQL
SQL = OutputFormat.SYNAPSE_SQL
NOTE = "Adjusted lookback to 10 years per steward guidance"


class TestSave:
    """Test saving overrides."""

    @pytest.fixture(autouse=True)
    def setup(self):
        """Set up test fixtures."""
        self.store = OverrideStore()

    def test_save_locks_override(self):
        """Test a successful save stores a locked record with one note."""
        result = self.store.save("M1", "num-1", CQL, "true", NOTE, "generated", ChangeType.TIMING, "alice")
        assert result.success is True
        assert result.errors == []
        override = result.override
        assert override.is_locked is True
        assert override.code == "true"
        assert override.original_generated_code == "generated"
        assert override.key == ("M1", "num-1", CQL)
        assert len(override.notes) == 1
        note = override.notes[0]
        assert note.content == NOTE
        assert note.author == "alice"
        assert note.change_type == ChangeType.TIMING
        assert note.format == CQL
        assert note.previous_code == "generated"

    def test_short_note_rejected(self):
        """Test notes shorter than the minimum are rejected and nothing is stored."""
        result = self.store.save("M1", "num-1", CQL, "true", "too short", "generated")
        assert result.success is False
        assert result.errors == ["Edit note must be at least 10 characters"]
        assert self.store.get("M1", "num-1", CQL) is None

    def test_note_length_ignores_whitespace(self):
        result = self.store.save("M1", "num-1", CQL, "true", "   abc      ", "generated")
        assert result.success is False

    def test_custom_minimum_note_length(self):
        store = OverrideStore(min_note_length=3)
        assert store.save("M1", "num-1", CQL, "true", "abc", "generated").success is True

    def test_missing_ids_rejected(self):
        result = self.store.save("", "num-1", CQL, "true", NOTE, "generated")
        assert result.success is False
        assert result.errors == ["Measure ID and component ID are required"]

    def test_resave_keeps_original_and_appends_note(self):
        """Test saving twice keeps the first original and grows the history."""
        self.store.save("M1", "num-1", CQL, "first edit", NOTE, "generated v1")
        result = self.store.save(
            "M1", "num-1", CQL, "second edit", "Second adjustment after review", "first edit"
        )
        override = result.override
        assert override.code == "second edit"
        assert override.original_generated_code == "generated v1"
        assert [note.content for note in override.notes] == [NOTE, "Second adjustment after review"]
        assert override.notes[1].previous_code == "first edit"

    def test_resave_keeps_created_at(self):
        first = self.store.save("M1", "num-1", CQL, "a", NOTE, "g").override
        second = self.store.save("M1", "num-1", CQL, "b", NOTE, "g").override
        assert second.created_at == first.created_at
        assert second.updated_at >= first.updated_at

    def test_formats_are_independent(self):
        """Test the same component can be overridden per format."""
        self.store.save("M1", "num-1", CQL, "cql code", NOTE, "g")
        self.store.save("M1", "num-1", SQL, "sql code", NOTE, "g")
        assert self.store.get("M1", "num-1", CQL).code == "cql code"
        assert self.store.get("M1", "num-1", SQL).code == "sql code"


class TestAddNote:
    """Test appending notes."""

    @pytest.fixture(autouse=True)
    def setup(self):
        """Set up test fixtures."""
        self.store = OverrideStore()
        self.store.save("M1", "num-1", CQL, "true", NOTE, "generated")

    def test_add_note_keeps_code(self):
        """Test notes are appended without changing the code."""
        result = self.store.add_note("M1", "num-1", CQL, "Confirmed with clinical lead", ChangeType.OTHER)
        assert result.success is True
        assert result.override.code == "true"
        assert len(result.override.notes) == 2
        assert result.override.notes[-1].previous_code is None

    def test_add_note_without_override(self):
        """Test adding a note to a missing override is rejected."""
        result = self.store.add_note("M1", "missing", CQL, "Confirmed with clinical lead")
        assert result.success is False
        assert result.errors == ["No override exists for M1/missing (cql)"]

    def test_add_short_note(self):
        result = self.store.add_note("M1", "num-1", CQL, "ok")
        assert result.success is False
        assert len(self.store.get("M1", "num-1", CQL).notes) == 1


class TestRevert:
    """Test reverting overrides."""

    @pytest.fixture(autouse=True)
    def setup(self):
        """Set up test fixtures."""
        self.store = OverrideStore()
        self.store.save("M1", "num-1", CQL, "edited", NOTE, "generated")

    def test_revert_unlocks_and_keeps_notes(self):
        """Test revert unlocks the record but keeps its history."""
        result = self.store.revert("M1", "num-1", CQL)
        assert result.success is True
        assert result.override.is_locked is False
        assert len(result.override.notes) == 1
        assert self.store.get_overrides_for_measure("M1") == []

    def test_revert_is_idempotent(self):
        """Test reverting twice leaves the same state."""
        first = self.store.revert("M1", "num-1", CQL).override
        second = self.store.revert("M1", "num-1", CQL).override
        assert second == first

    def test_revert_missing_override(self):
        result = self.store.revert("M1", "missing", CQL)
        assert result.success is True
        assert result.override is None

    def test_resave_after_revert_relocks(self):
        """Test saving after a revert uses the new original and keeps old notes."""
        self.store.revert("M1", "num-1", CQL)
        result = self.store.save("M1", "num-1", CQL, "edited again", "Reapplied after regeneration", "generated v2")
        override = result.override
        assert override.is_locked is True
        assert override.original_generated_code == "generated v2"
        assert len(override.notes) == 2

    def test_revert_all_formats(self):
        """Test reverting a component across every format."""
        self.store.save("M1", "num-1", SQL, "edited sql", NOTE, "generated sql")
        assert self.store.revert_all("M1", "num-1") == 2
        assert self.store.revert_all("M1", "num-1") == 0
        assert self.store.get("M1", "num-1", SQL).is_locked is False


class TestReads:
    """Test lookups and note listings."""

    @pytest.fixture(autouse=True)
    def setup(self):
        """Set up test fixtures."""
        self.store = OverrideStore()

    def test_overrides_isolated_by_measure(self):
        """Test overrides never leak across measures."""
        self.store.save("M1", "num-1", CQL, "m1 code", NOTE, "g")
        self.store.save("M2", "num-1", CQL, "m2 code", NOTE, "g")
        m1 = self.store.get_overrides_for_measure("M1")
        assert [override.code for override in m1] == ["m1 code"]

    def test_filter_by_format(self):
        self.store.save("M1", "num-1", CQL, "cql", NOTE, "g")
        self.store.save("M1", "num-2", SQL, "sql", NOTE, "g")
        assert [o.component_id for o in self.store.get_overrides_for_measure("M1", SQL)] == ["num-2"]
        assert len(self.store.get_overrides_for_measure("M1")) == 2

    def test_all_notes_newest_first(self):
        """Test notes across formats are listed newest first."""
        self.store.save("M1", "num-1", CQL, "cql", "First note for the CQL edit", "g")
        self.store.save("M1", "num-1", SQL, "sql", "Second note for the SQL edit", "g")
        self.store.add_note("M1", "num-1", CQL, "Third note added afterwards")
        notes = self.store.get_all_notes("num-1")
        assert [note.content for note in notes] == [
            "Third note added afterwards",
            "Second note for the SQL edit",
            "First note for the CQL edit",
        ]
        assert {note.format for note in notes} == {CQL, SQL}

    def test_all_notes_filtered_by_measure(self):
        self.store.save("M1", "num-1", CQL, "a", "Note on the first measure", "g")
        self.store.save("M2", "num-1", CQL, "b", "Note on the second measure", "g")
        notes = self.store.get_all_notes("num-1", measure_id="M2")
        assert [note.content for note in notes] == ["Note on the second measure"]

    def test_stats(self):
        self.store.save("M1", "num-1", CQL, "a", NOTE, "g")
        self.store.save("M2", "num-1", CQL, "b", NOTE, "g")
        self.store.revert("M2", "num-1", CQL)
        assert self.store.get_stats() == {
            "total_overrides": 2,
            "locked_overrides": 1,
            "total_notes": 2,
            "measures": 2,
        }

    def test_clear(self):
        self.store.save("M1", "num-1", CQL, "a", NOTE, "g")
        self.store.clear()
        assert self.store.get_stats()["total_overrides"] == 0


class TestAuditTrail:
    """Test every mutation is audited."""

    @pytest.fixture(autouse=True)
    def setup(self):
        """Set up test fixtures."""
        self.store = OverrideStore()

    def audit_messages(self, caplog) -> list[str]:
        return [record.getMessage() for record in caplog.records if record.name == "audit"]

    def test_save_and_revert_audited(self, caplog):
        with caplog.at_level(logging.INFO, logger="audit"):
            self.store.save("M1", "num-1", CQL, "a", NOTE, "g")
            self.store.revert("M1", "num-1", CQL)
            self.store.revert("M1", "num-1", CQL)
        messages = self.audit_messages(caplog)
        assert len(messages) == 2
        assert messages[0].startswith("AUDIT: override_save code_override/M1:num-1:cql")
        assert messages[1].startswith("AUDIT: override_revert")

    def test_rejected_save_audited(self, caplog):
        """Test rejected saves are audited as failures."""
        with caplog.at_level(logging.INFO, logger="audit"):
            self.store.save("M1", "num-1", CQL, "a", "short", "g")
        records = [record for record in caplog.records if record.name == "audit"]
        assert len(records) == 1
        assert records[0].levelno == logging.WARNING
        assert records[0].audit_event["details"]["reason"] == "Edit note must be at least 10 characters"
