"""Tests for history entries: listing, protection and deletion."""
import pytest

from notestore.exceptions import (
    ErrorCode,
    HistoryNotFoundError,
    NoteNotFoundError,
    ValidationError,
)
from notestore.services.note_service import NoteService
from tests.helpers import append_text, create_text_note


@pytest.fixture
def edited_note(note_service):
    """A note with two history entries: 'draft' then 'final'."""
    note = create_text_note(note_service, "draft")
    append_text(note_service, note.id, "final")
    return note


class TestListing:
    """Tests for getHistory and noteHistories."""

    def test_one_entry_per_mutation_oldest_first(self, note_service, edited_note):
        histories = note_service.note_histories(edited_note.id)
        assert [h.contents for h in histories] == ["draft", "final"]
        assert all(h.note_id == edited_note.id for h in histories)
        assert histories[0].id < histories[1].id

    def test_get_history(self, note_service, edited_note):
        first = note_service.note_histories(edited_note.id)[0]
        assert note_service.get_history(first.id) == first

    def test_get_missing_history(self, note_service):
        with pytest.raises(HistoryNotFoundError):
            note_service.get_history("00000077")

    def test_short_listing_truncates_contents(self, engine):
        service = NoteService(engine=engine, capacity=10_000, title_limit=10)
        note = create_text_note(service, "x" * 50)
        short = service.note_histories(note.id, short=True)
        assert short[0].contents == "x" * 10
        full = service.note_histories(note.id)
        assert full[0].contents == "x" * 50

    def test_histories_of_missing_note(self, note_service):
        with pytest.raises(NoteNotFoundError):
            note_service.note_histories("00000099")


class TestProtection:
    """Tests for protected entries."""

    def test_bulk_delete_keeps_protected_entry(self, note_service, edited_note):
        protected, unprotected = note_service.note_histories(edited_note.id)
        note_service.set_history_protected(protected.id, True)

        assert note_service.delete_note_history(edited_note.id) == 1

        remaining = note_service.note_histories(edited_note.id)
        assert [h.id for h in remaining] == [protected.id]
        assert remaining[0].protected is True
        # The note itself is untouched
        assert note_service.reconstruct(edited_note.id) == "final"

    def test_bulk_delete_without_protection_clears_all(self, note_service, edited_note):
        assert note_service.delete_note_history(edited_note.id) == 2
        assert note_service.note_histories(edited_note.id) == []

    def test_history_count_after_bulk_delete(self, note_service, edited_note):
        """The count returned by append reflects surviving entries."""
        note_service.delete_note_history(edited_note.id)
        assert append_text(note_service, edited_note.id, "again") == 1

    def test_unprotect(self, note_service, edited_note):
        entry = note_service.note_histories(edited_note.id)[0]
        note_service.set_history_protected(entry.id, True)
        updated = note_service.set_history_protected(entry.id, False)
        assert updated.protected is False

    def test_protect_missing_entry(self, note_service):
        with pytest.raises(HistoryNotFoundError):
            note_service.set_history_protected("00000055", True)


class TestSingleDeletion:
    """Tests for deleteHistory."""

    def test_delete_unprotected_entry(self, note_service, edited_note):
        first, second = note_service.note_histories(edited_note.id)
        note_service.delete_history(first.id)
        assert [h.id for h in note_service.note_histories(edited_note.id)] == [second.id]

    def test_protected_entry_rejected(self, note_service, edited_note):
        entry = note_service.note_histories(edited_note.id)[0]
        note_service.set_history_protected(entry.id, True)
        with pytest.raises(ValidationError) as exc_info:
            note_service.delete_history(entry.id)
        assert exc_info.value.code == ErrorCode.HISTORY_PROTECTED
        assert len(note_service.note_histories(edited_note.id)) == 2
