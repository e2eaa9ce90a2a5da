"""Tests for the tag index, tag search and tag groups."""
import pytest

from notestore.exceptions import ErrorCode, TagGroupNotFoundError, ValidationError
from notestore.services.note_service import NoteService
from tests.helpers import append_text, create_text_note


def _ids(notes):
    return {note.id for note in notes}


class TestTagSearch:
    """Tests for byTag, byTagPrefix and searchTagGroup."""

    def test_search_tag_group_is_conjunctive(self, note_service):
        only_a = create_text_note(note_service, "1", tags=["a"])
        a_b = create_text_note(note_service, "2", tags=["a", "b"])
        a_b_c = create_text_note(note_service, "3", tags=["a", "b", "c"])
        only_b = create_text_note(note_service, "4", tags=["b"])

        result = _ids(note_service.search_tag_group(["a", "b"]))
        assert result == {a_b.id, a_b_c.id}
        assert only_a.id not in result
        assert only_b.id not in result

    def test_single_tag_group_matches_by_tag(self, note_service):
        create_text_note(note_service, "1", tags=["a"])
        create_text_note(note_service, "2", tags=["a", "b"])
        create_text_note(note_service, "3", tags=["c"])
        assert _ids(note_service.search_tag_group(["a"])) == _ids(note_service.by_tag("a"))
        assert len(note_service.by_tag("a")) == 2

    def test_unknown_tag_matches_nothing(self, note_service):
        create_text_note(note_service, "1", tags=["a"])
        assert note_service.search_tag_group(["a", "missing"]) == []
        assert note_service.by_tag("missing") == []

    def test_empty_tag_list_rejected(self, note_service):
        with pytest.raises(ValidationError) as exc_info:
            note_service.search_tag_group([" "])
        assert exc_info.value.code == ErrorCode.TAGS_REQUIRED

    def test_soft_deleted_notes_excluded(self, note_service):
        live = create_text_note(note_service, "1", tags=["t"])
        gone = create_text_note(note_service, "2", tags=["t"])
        note_service.set_deleted(gone.id, True)
        assert _ids(note_service.by_tag("t")) == {live.id}
        assert _ids(note_service.search_tag_group(["t"])) == {live.id}

    def test_prefix_search(self, note_service):
        dash = create_text_note(note_service, "1", tags=["project-a"])
        under = create_text_note(note_service, "2", tags=["project_b"])
        create_text_note(note_service, "3", tags=["other"])

        assert _ids(note_service.by_tag_prefix("project")) == {dash.id, under.id}
        assert _ids(note_service.by_tag_prefix("project-")) == {dash.id}
        # "_" is literal, not a single-character wildcard
        assert _ids(note_service.by_tag_prefix("project_")) == {under.id}

    def test_prefix_matches_note_once(self, note_service):
        note = create_text_note(note_service, "1", tags=["lang-py", "lang-go"])
        assert [n.id for n in note_service.by_tag_prefix("lang-")] == [note.id]


class TestTagListing:
    """Tests for allTags and allTagsByDate."""

    def test_all_tags_distinct_and_sorted(self, note_service):
        create_text_note(note_service, "1", tags=["b", "a"])
        create_text_note(note_service, "2", tags=["c", "a"])
        assert note_service.all_tags() == ["a", "b", "c"]

    def test_all_tags_skips_deleted_notes(self, note_service):
        create_text_note(note_service, "1", tags=["kept"])
        gone = create_text_note(note_service, "2", tags=["hidden"])
        note_service.set_deleted(gone.id, True)
        assert note_service.all_tags() == ["kept"]

    def test_all_tags_by_date(self, note_service):
        older = create_text_note(note_service, "1", tags=["alpha"])
        create_text_note(note_service, "2", tags=["beta"])
        assert note_service.all_tags_by_date() == ["beta", "alpha"]

        append_text(note_service, older.id, "1 edited")
        assert note_service.all_tags_by_date() == ["alpha", "beta"]


class TestTagEdits:
    """Tests for renameTag and deleteTag."""

    def test_rename_collapses_duplicates(self, note_service):
        plain = create_text_note(note_service, "1", tags=["draft"])
        both1 = create_text_note(note_service, "2", tags=["draft", "published"])
        both2 = create_text_note(note_service, "3", tags=["draft", "published", "x"])

        assert note_service.rename_tag("draft", "published") == 3

        for note_id in (plain.id, both1.id, both2.id):
            tags = note_service.get_note(note_id).tags
            assert tags.count("published") == 1
            assert "draft" not in tags
        assert note_service.get_note(both2.id).tags == ["published", "x"]

    def test_rename_includes_deleted_and_keeps_timestamps(self, note_service):
        note = create_text_note(note_service, "1", tags=["old"])
        note_service.set_deleted(note.id, True)
        before = note_service.get_note(note.id).updated_at

        note_service.rename_tag("old", "new")

        after = note_service.get_note(note.id)
        assert after.tags == ["new"]
        assert after.updated_at == before

    def test_rename_to_same_name(self, note_service):
        create_text_note(note_service, "1", tags=["same"])
        assert note_service.rename_tag("same", "same") == 1
        assert note_service.all_tags() == ["same"]

    def test_rename_requires_names(self, note_service):
        with pytest.raises(ValidationError):
            note_service.rename_tag("", "new")

    def test_delete_tag_keeps_notes(self, note_service):
        note = create_text_note(note_service, "1", tags=["gone", "stays"])
        other = create_text_note(note_service, "2", tags=["gone"])

        assert note_service.delete_tag("gone") == 2

        assert note_service.get_note(note.id).tags == ["stays"]
        assert note_service.get_note(other.id).tags == []
        assert len(note_service.all_notes()) == 2


class TestTitleSearch:
    """Tests for searchTitle."""

    def test_case_insensitive_by_default(self, note_service):
        note = create_text_note(note_service, "Shopping List\nmilk")
        assert _ids(note_service.search_title("shopping")) == {note.id}
        assert _ids(note_service.search_title("LIST")) == {note.id}

    def test_case_sensitive_override(self, note_service):
        note = create_text_note(note_service, "Shopping List")
        assert note_service.search_title("shopping", case_sensitive=True) == []
        assert _ids(note_service.search_title("List", case_sensitive=True)) == {note.id}

    def test_configured_case_sensitivity(self, engine):
        service = NoteService(engine=engine, capacity=1000, case_sensitive=True)
        create_text_note(service, "Upper")
        assert service.search_title("upper") == []
        assert len(service.search_title("upper", case_sensitive=False)) == 1

    def test_wildcards_are_literal(self, note_service):
        percent = create_text_note(note_service, "100% done")
        create_text_note(note_service, "1000 done")
        assert _ids(note_service.search_title("100%")) == {percent.id}
        assert _ids(note_service.search_title("100%", case_sensitive=True)) == {percent.id}

    def test_non_ascii_titles_fold_case(self, note_service):
        eclair = create_text_note(note_service, "Éclair recipe")
        uber = create_text_note(note_service, "Über notes")
        assert _ids(note_service.search_title("Éclair")) == {eclair.id}
        assert _ids(note_service.search_title("éclair")) == {eclair.id}
        assert _ids(note_service.search_title("ÜBER")) == {uber.id}
        assert _ids(note_service.search_title("Éclair", case_sensitive=True)) == {eclair.id}
        assert note_service.search_title("éclair", case_sensitive=True) == []

    def test_casefold_matches_sharp_s(self, note_service):
        note = create_text_note(note_service, "Straße map")
        assert _ids(note_service.search_title("STRASSE")) == {note.id}

    def test_deleted_notes_excluded(self, note_service):
        note = create_text_note(note_service, "secret plan")
        note_service.set_deleted(note.id, True)
        assert note_service.search_title("plan") == []

    def test_empty_pattern_rejected(self, note_service):
        with pytest.raises(ValidationError):
            note_service.search_title("  ")


class TestTagGroups:
    """Tests for tag group CRUD and pruning."""

    def test_save_and_list(self, note_service):
        group = note_service.save_tag_group(["b", "a"])
        assert group.tags == ["a", "b"]
        assert group.protected is False
        assert note_service.all_tag_groups() == [group]

    def test_same_tag_set_reuses_group(self, note_service):
        first = note_service.save_tag_group(["a", "b"])
        second = note_service.save_tag_group([" b", "a", "a"])
        assert second.id == first.id
        assert second.updated_at >= first.updated_at
        assert len(note_service.all_tag_groups()) == 1

    def test_ids_come_from_shared_allocator(self, note_service):
        note = create_text_note(note_service, "x")
        group = note_service.save_tag_group(["t"])
        assert group.id > note.id

    def test_empty_tags_rejected(self, note_service):
        with pytest.raises(ValidationError) as exc_info:
            note_service.save_tag_group(["", "  "])
        assert exc_info.value.code == ErrorCode.TAGS_REQUIRED

    def test_pruning_skips_protected_groups(self, engine):
        service = NoteService(engine=engine, capacity=1000, tag_group_limit=2)
        g1 = service.save_tag_group(["one"])
        g2 = service.save_tag_group(["two"])
        service.set_tag_group_protected(g1.id, True)
        g3 = service.save_tag_group(["three"])

        remaining = {g.id for g in service.all_tag_groups()}
        assert remaining == {g1.id, g3.id}
        assert g2.id not in remaining

    def test_delete_tag_group(self, note_service):
        group = note_service.save_tag_group(["a"])
        note_service.delete_tag_group(group.id)
        assert note_service.all_tag_groups() == []
        with pytest.raises(TagGroupNotFoundError):
            note_service.get_tag_group(group.id)

    def test_delete_missing_group(self, note_service):
        with pytest.raises(TagGroupNotFoundError):
            note_service.delete_tag_group("0000ABCD")

    def test_set_protected(self, note_service):
        group = note_service.save_tag_group(["a"])
        assert note_service.set_tag_group_protected(group.id, True).protected is True
        assert note_service.get_tag_group(group.id).protected is True

    def test_note_mutations_never_create_groups(self, note_service):
        note = create_text_note(note_service, "x", tags=["a", "b"])
        note_service.update_tags(note.id, ["c"])
        assert note_service.all_tag_groups() == []
