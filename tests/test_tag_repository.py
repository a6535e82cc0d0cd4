"""Tests for TagRepository."""
import pytest

from shelfnote.exceptions import DuplicateNameError, ErrorCode, NotFoundError
from shelfnote.models.schema import MarkCreate, MarkType, NoteUpdate, Tag, TagUpdate


class TestTagCreate:
    """Tests for TagRepository.create()."""

    def test_create_tag(self, tag_repository, clock):
        start = clock.current
        tag = tag_repository.create("work", color="#336699")

        assert tag.id == "id000001"
        assert tag.name == "work"
        assert tag.color == "#336699"
        assert tag.note_count == 0
        assert tag.created_at == tag.updated_at == start

    def test_duplicate_name_rejected(self, tag_repository):
        first = tag_repository.create("work")

        with pytest.raises(DuplicateNameError) as exc_info:
            tag_repository.create("work")

        assert exc_info.value.code == ErrorCode.DUPLICATE_NAME
        assert exc_info.value.existing_id == first.id
        assert [t.name for t in tag_repository.list()] == ["work"]

    def test_names_are_case_sensitive(self, tag_repository):
        tag_repository.create("Work")
        tag_repository.create("work")

        assert [t.name for t in tag_repository.list()] == ["Work", "work"]


class TestTagUpdate:
    """Tests for TagRepository.update()."""

    def test_rename(self, tag_repository, clock):
        tag = tag_repository.create("draft")

        updated = tag_repository.update(tag.id, TagUpdate(name="final"))

        assert updated.name == "final"
        assert updated.created_at == tag.created_at
        assert updated.updated_at > tag.updated_at

    def test_rename_to_other_tags_name_rejected(self, tag_repository):
        tag_repository.create("a")
        b = tag_repository.create("b")

        with pytest.raises(DuplicateNameError):
            tag_repository.update(b.id, TagUpdate(name="a"))

        assert tag_repository.get(b.id).name == "b"

    def test_keep_own_name(self, tag_repository):
        tag = tag_repository.create("same")

        updated = tag_repository.update(tag.id, TagUpdate(name="same", color="#000000"))

        assert updated.name == "same"
        assert updated.color == "#000000"

    def test_color_only_keeps_name(self, tag_repository):
        tag = tag_repository.create("keep", color="#111111")

        updated = tag_repository.update(tag.id, TagUpdate(color=None))

        assert updated.name == "keep"
        assert updated.color is None

    def test_update_missing_tag(self, tag_repository):
        with pytest.raises(NotFoundError) as exc_info:
            tag_repository.update("nope", TagUpdate(name="x"))

        assert exc_info.value.code == ErrorCode.NOT_FOUND


class TestTagQueries:
    """Tests for list(), get() and the usage projections."""

    def test_list_ordered_by_name_with_search(self, tag_repository):
        for name in ["zeta", "alpha", "beta", "alphabet"]:
            tag_repository.create(name)

        assert [t.name for t in tag_repository.list()] == ["alpha", "alphabet", "beta", "zeta"]
        assert [t.name for t in tag_repository.list(search="alpha")] == ["alpha", "alphabet"]
        assert len(tag_repository.list(search="  ")) == 4

    def test_get_missing(self, tag_repository):
        with pytest.raises(NotFoundError):
            tag_repository.get("missing")

    def test_note_count(self, tag_repository, make_note):
        t1 = tag_repository.create("t1")
        t2 = tag_repository.create("t2")
        make_note(tag_ids=[t1.id, t2.id])
        make_note(tag_ids=[t1.id])

        assert tag_repository.get(t1.id).note_count == 2
        assert tag_repository.get(t2.id).note_count == 1

    def test_find_unused(self, tag_repository, make_note):
        used = tag_repository.create("used")
        idle_b = tag_repository.create("idle-b")
        idle_a = tag_repository.create("idle-a")
        make_note(tag_ids=[used.id])

        unused = tag_repository.find_unused()

        assert [t.id for t in unused] == [idle_b.id, idle_a.id]
        assert all(t.note_count == 0 for t in unused)

    def test_find_most_used(self, tag_repository, make_note):
        rare = tag_repository.create("rare")
        tie_first = tag_repository.create("tie-first")
        tie_second = tag_repository.create("tie-second")
        top = tag_repository.create("top")
        tag_repository.create("never")

        make_note(tag_ids=[top.id, tie_first.id, tie_second.id, rare.id])
        make_note(tag_ids=[top.id, tie_first.id, tie_second.id])
        make_note(tag_ids=[top.id])

        most_used = tag_repository.find_most_used(10)

        assert [t.id for t in most_used] == [top.id, tie_first.id, tie_second.id, rare.id]
        assert [t.note_count for t in most_used] == [3, 2, 2, 1]
        assert [t.id for t in tag_repository.find_most_used(2)] == [top.id, tie_first.id]
        assert tag_repository.find_most_used(0) == []

    def test_counts_follow_tag_rewrite(self, tag_repository, note_repository, make_note):
        t1 = tag_repository.create("t1")
        t2 = tag_repository.create("t2")
        note = make_note(tag_ids=[t1.id])

        note_repository.update(note.id, NoteUpdate(tag_ids=[t2.id]))

        assert tag_repository.get(t1.id).note_count == 0
        assert [t.id for t in tag_repository.find_most_used(5)] == [t2.id]


class TestTagDelete:
    """Tests for TagRepository.delete()."""

    def test_delete_detaches_from_notes(self, tag_repository, note_repository, make_note):
        doomed = tag_repository.create("doomed")
        kept = tag_repository.create("kept")
        note = make_note(tag_ids=[doomed.id, kept.id])

        result = tag_repository.delete(doomed.id)

        assert result.id == doomed.id
        assert not tag_repository.exists(doomed.id)
        assert note_repository.get(note.id).tag_ids == [kept.id]

    def test_delete_removes_marks(self, tag_repository, mark_repository):
        tag = tag_repository.create("scans")
        mark = mark_repository.create(MarkCreate(tag_id=tag.id, type=MarkType.SCAN))

        tag_repository.delete(tag.id)

        assert not mark_repository.exists(mark.id)
        assert mark_repository.list_all(include_deleted=True) == []

    def test_delete_missing(self, tag_repository):
        with pytest.raises(NotFoundError):
            tag_repository.delete("missing")


class TestTagCleanup:
    """Tests for TagRepository.cleanup_unused()."""

    def test_cleanup_removes_only_unused(self, tag_repository, make_note):
        used = tag_repository.create("used")
        tag_repository.create("idle1")
        tag_repository.create("idle2")
        make_note(tag_ids=[used.id])

        result = tag_repository.cleanup_unused()

        assert result.deleted_count == 2
        assert sorted(t.name for t in result.deleted_tags) == ["idle1", "idle2"]
        assert result.errors == []
        assert [t.name for t in tag_repository.list()] == ["used"]

    def test_cleanup_with_nothing_to_do(self, tag_repository):
        result = tag_repository.cleanup_unused()

        assert result.deleted_count == 0
        assert result.deleted_tags == []

    def test_cleanup_reports_tag_that_became_used(self, tag_repository, make_note, monkeypatch):
        idle = tag_repository.create("idle")
        busy = tag_repository.create("busy")
        make_note(tag_ids=[busy.id])
        stale = [tag_repository.get(idle.id), Tag(**busy.model_dump())]
        monkeypatch.setattr(tag_repository, "find_unused", lambda: stale)

        result = tag_repository.cleanup_unused()

        assert result.deleted_count == 1
        assert [t.id for t in result.deleted_tags] == [idle.id]
        assert len(result.errors) == 1
        assert result.errors[0].tag_id == busy.id
        assert tag_repository.exists(busy.id)
