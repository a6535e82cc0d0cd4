"""Tests for FolderRepository."""
import pytest
from sqlalchemy import update

from shelfnote.exceptions import (
    CycleDetectedError,
    ErrorCode,
    HasChildrenError,
    HasNotesError,
    InvalidParentError,
    NotDeletedError,
    NotFoundError,
)
from shelfnote.models.db_models import DBFolder
from shelfnote.models.schema import FolderCreate, FolderUpdate, NoteUpdate


def _set_parent(stores, folder_id, parent_id):
    """Write a parent link directly, bypassing the repository checks."""
    with stores.context.transaction("test") as session:
        session.execute(update(DBFolder).where(DBFolder.id == folder_id).values(parent_id=parent_id))


class TestFolderCreate:
    """Tests for FolderRepository.create()."""

    def test_create_root_folder(self, folder_repository):
        folder = folder_repository.create(FolderCreate(name="Work", color="blue", icon="W"))

        assert folder.name == "Work"
        assert folder.parent_id is None
        assert folder.color == "blue"
        assert folder.icon == "W"
        assert folder.is_deleted is False
        assert folder.sort_order == 0
        assert folder.note_count == 0
        assert folder.created_at == folder.updated_at

    def test_create_child_folder(self, folder_repository, make_folder):
        parent = make_folder("Work")

        child = folder_repository.create(FolderCreate(name="Projects", parent_id=parent.id))

        assert child.parent_id == parent.id

    def test_missing_parent_rejected(self, folder_repository):
        with pytest.raises(InvalidParentError) as exc_info:
            folder_repository.create(FolderCreate(name="Orphan", parent_id="missing"))

        assert exc_info.value.code == ErrorCode.INVALID_PARENT
        assert folder_repository.list() == []

    def test_deleted_parent_rejected(self, folder_repository, make_folder):
        parent = make_folder("Old")
        folder_repository.soft_delete(parent.id)

        with pytest.raises(InvalidParentError):
            folder_repository.create(FolderCreate(name="Child", parent_id=parent.id))


class TestFolderList:
    """Tests for FolderRepository.list() and get()."""

    def test_list_ordered_by_sort_order(self, folder_repository, make_folder):
        a = make_folder("A")
        b = make_folder("B")
        c = make_folder("C")
        folder_repository.update(a.id, FolderUpdate(sort_order=2))
        folder_repository.update(b.id, FolderUpdate(sort_order=1))

        assert [f.id for f in folder_repository.list()] == [c.id, b.id, a.id]

    def test_note_count_ignores_deleted_notes(self, folder_repository, note_repository,
                                              make_folder, make_note):
        folder = make_folder("Inbox")
        make_note(folder_id=folder.id)
        gone = make_note(folder_id=folder.id)
        note_repository.soft_delete(gone.id)

        assert folder_repository.get(folder.id).note_count == 1
        assert folder_repository.list()[0].note_count == 1

    def test_deleted_folders_hidden_by_default(self, folder_repository, make_folder):
        make_folder("Live")
        gone = make_folder("Gone")
        folder_repository.soft_delete(gone.id)

        assert [f.name for f in folder_repository.list()] == ["Live"]
        assert {f.name for f in folder_repository.list(include_deleted=True)} == {"Live", "Gone"}
        assert folder_repository.get(gone.id).is_deleted is True

    def test_get_missing(self, folder_repository):
        with pytest.raises(NotFoundError):
            folder_repository.get("missing")


class TestFolderUpdate:
    """Tests for FolderRepository.update() and move()."""

    def test_rename_keeps_parent(self, folder_repository, make_folder):
        parent = make_folder("Parent")
        child = make_folder("Child", parent.id)

        updated = folder_repository.update(child.id, FolderUpdate(name="Renamed"))

        assert updated.name == "Renamed"
        assert updated.parent_id == parent.id
        assert updated.updated_at > child.updated_at

    def test_reparent_into_own_descendant_rejected(self, folder_repository, make_folder):
        work = make_folder("Work")
        projects = make_folder("Projects", work.id)

        with pytest.raises(CycleDetectedError) as exc_info:
            folder_repository.update(work.id, FolderUpdate(parent_id=projects.id))

        assert exc_info.value.code == ErrorCode.CYCLE_DETECTED
        assert folder_repository.get(work.id).parent_id is None

    def test_deep_descendant_rejected(self, folder_repository, make_folder):
        a = make_folder("A")
        b = make_folder("B", a.id)
        c = make_folder("C", b.id)
        d = make_folder("D", c.id)

        with pytest.raises(CycleDetectedError):
            folder_repository.move(a.id, d.id)

    def test_own_parent_rejected(self, folder_repository, make_folder):
        folder = make_folder("Self")

        with pytest.raises(CycleDetectedError):
            folder_repository.update(folder.id, FolderUpdate(parent_id=folder.id))

    def test_reparent_to_deleted_folder_rejected(self, folder_repository, make_folder):
        target = make_folder("Target")
        folder = make_folder("Folder")
        folder_repository.soft_delete(target.id)

        with pytest.raises(InvalidParentError):
            folder_repository.move(folder.id, target.id)

    def test_move_between_parents_and_to_root(self, folder_repository, make_folder):
        a = make_folder("A")
        b = make_folder("B")
        child = make_folder("Child", a.id)

        assert folder_repository.move(child.id, b.id).parent_id == b.id
        assert folder_repository.move(child.id, None).parent_id is None

    def test_update_deleted_folder_rejected(self, folder_repository, make_folder):
        folder = make_folder("Gone")
        folder_repository.soft_delete(folder.id)

        with pytest.raises(NotFoundError):
            folder_repository.update(folder.id, FolderUpdate(name="Back"))

    def test_cycle_checks(self, folder_repository, make_folder):
        a = make_folder("A")
        b = make_folder("B", a.id)
        other = make_folder("Other")

        assert folder_repository.would_create_cycle(a.id, a.id) is True
        assert folder_repository.would_create_cycle(a.id, b.id) is True
        assert folder_repository.would_create_cycle(b.id, a.id) is False
        assert folder_repository.would_create_cycle(a.id, other.id) is False

    def test_cycle_walk_stops_on_corrupt_chain(self, folder_repository, stores, make_folder):
        x = make_folder("X")
        y = make_folder("Y", x.id)
        z = make_folder("Z")
        _set_parent(stores, x.id, y.id)

        assert folder_repository.would_create_cycle(z.id, x.id) is True

    def test_is_valid_parent(self, folder_repository, make_folder):
        live = make_folder("Live")
        gone = make_folder("Gone")
        folder_repository.soft_delete(gone.id)

        assert folder_repository.is_valid_parent(live.id) is True
        assert folder_repository.is_valid_parent(gone.id) is False
        assert folder_repository.is_valid_parent("missing") is False


class TestFolderDelete:
    """Tests for soft_delete(), restore() and permanent_delete()."""

    def test_soft_delete_with_live_child(self, folder_repository, make_folder):
        parent = make_folder("Parent")
        child = make_folder("Child", parent.id)

        with pytest.raises(HasChildrenError) as exc_info:
            folder_repository.soft_delete(parent.id)

        assert exc_info.value.code == ErrorCode.HAS_CHILDREN
        assert exc_info.value.child_ids == [child.id]
        assert folder_repository.get(parent.id).is_deleted is False

    def test_soft_delete_blocked_by_notes_until_notes_deleted(
        self, folder_repository, note_repository, make_folder, make_note
    ):
        a = make_folder("A")
        note = make_note(folder_id=a.id)

        with pytest.raises(HasNotesError) as exc_info:
            folder_repository.soft_delete(a.id)
        assert exc_info.value.note_count == 1

        note_repository.soft_delete(note.id)
        result = folder_repository.soft_delete(a.id)

        assert result.id == a.id
        assert folder_repository.get(a.id).is_deleted is True

    def test_soft_delete_after_children_deleted(self, folder_repository, make_folder):
        parent = make_folder("Parent")
        child = make_folder("Child", parent.id)
        folder_repository.soft_delete(child.id)

        folder_repository.soft_delete(parent.id)

        assert folder_repository.get(parent.id).is_deleted is True

    def test_restore(self, folder_repository, make_folder):
        parent = make_folder("Parent")
        child = make_folder("Child", parent.id)
        folder_repository.soft_delete(child.id)

        restored = folder_repository.restore(child.id)

        assert restored.is_deleted is False
        assert restored.parent_id == parent.id

    def test_restore_not_deleted(self, folder_repository, make_folder):
        folder = make_folder("Live")

        with pytest.raises(NotDeletedError) as exc_info:
            folder_repository.restore(folder.id)

        assert exc_info.value.code == ErrorCode.NOT_DELETED

    def test_restore_under_deleted_parent_goes_to_root(self, folder_repository, make_folder):
        parent = make_folder("Parent")
        child = make_folder("Child", parent.id)
        folder_repository.soft_delete(child.id)
        folder_repository.soft_delete(parent.id)

        restored = folder_repository.restore(child.id)

        assert restored.parent_id is None
        assert restored.is_deleted is False

    def test_round_trip_only_changes_flag_and_timestamp(self, folder_repository, make_folder):
        folder = make_folder("Trip")

        folder_repository.soft_delete(folder.id)
        restored = folder_repository.restore(folder.id)

        assert restored.model_dump(exclude={"updated_at"}) == folder.model_dump(exclude={"updated_at"})
        assert restored.updated_at > folder.updated_at

    def test_permanent_delete_guards_leave_state_unchanged(
        self, folder_repository, note_repository, make_folder, make_note
    ):
        parent = make_folder("Parent")
        child = make_folder("Child", parent.id)
        note = make_note(folder_id=parent.id)

        with pytest.raises(HasChildrenError):
            folder_repository.permanent_delete(parent.id)

        folder_repository.move(child.id, None)
        with pytest.raises(HasNotesError):
            folder_repository.permanent_delete(parent.id)

        assert folder_repository.get(parent.id).note_count == 1
        assert note_repository.get(note.id).folder_id == parent.id

    def test_permanent_delete(self, folder_repository, note_repository, make_folder, make_note):
        parent = make_folder("Parent")
        deleted_child = make_folder("Old child", parent.id)
        trashed = make_note(folder_id=parent.id)
        folder_repository.soft_delete(deleted_child.id)
        note_repository.soft_delete(trashed.id)

        result = folder_repository.permanent_delete(parent.id)

        assert result.id == parent.id
        assert not folder_repository.exists(parent.id)
        assert not folder_repository.exists(deleted_child.id)
        assert note_repository.get(trashed.id, include_deleted=True).folder_id is None

    def test_permanent_delete_blocked_by_live_note_in_deleted_subfolder(
        self, folder_repository, note_repository, make_folder, make_note
    ):
        parent = make_folder("Parent")
        child = make_folder("Child", parent.id)
        note = make_note(folder_id=child.id)
        note_repository.soft_delete(note.id)
        folder_repository.soft_delete(child.id)
        note_repository.restore(note.id)

        with pytest.raises(HasNotesError):
            folder_repository.permanent_delete(child.id)
        with pytest.raises(HasNotesError) as exc_info:
            folder_repository.permanent_delete(parent.id)

        assert exc_info.value.folder_id == parent.id
        assert exc_info.value.note_count == 1
        assert folder_repository.exists(parent.id)
        assert folder_repository.exists(child.id)
        assert note_repository.get(note.id).folder_id == child.id

    def test_permanent_delete_reaches_whole_deleted_subtree(
        self, folder_repository, note_repository, make_folder, make_note
    ):
        top = make_folder("Top")
        middle = make_folder("Middle", top.id)
        bottom = make_folder("Bottom", middle.id)
        trashed = make_note(folder_id=bottom.id)
        note_repository.soft_delete(trashed.id)
        for folder in (bottom, middle):
            folder_repository.soft_delete(folder.id)

        folder_repository.permanent_delete(top.id)

        assert not folder_repository.exists(middle.id)
        assert not folder_repository.exists(bottom.id)
        assert note_repository.get(trashed.id, include_deleted=True).folder_id is None

    def test_permanent_delete_missing(self, folder_repository):
        with pytest.raises(NotFoundError):
            folder_repository.permanent_delete("missing")


class TestFolderTree:
    """Tests for get_folder_tree(), get_ancestor_ids() and get_path()."""

    def test_tree_nesting(self, folder_repository, make_folder):
        work = make_folder("Work")
        projects = make_folder("Projects", work.id)
        make_folder("Alpha", projects.id)
        home = make_folder("Home")

        tree = folder_repository.get_folder_tree()

        assert [n.name for n in tree] == ["Work", "Home"]
        assert [n.name for n in tree[0].children] == ["Projects"]
        assert [n.name for n in tree[0].children[0].children] == ["Alpha"]
        assert tree[1].id == home.id
        assert tree[1].children == []

    def test_tree_excludes_deleted_and_promotes_orphans(self, folder_repository, stores, make_folder):
        gone = make_folder("Gone")
        folder_repository.soft_delete(gone.id)
        orphan = make_folder("Orphan")
        _set_parent(stores, orphan.id, gone.id)

        tree = folder_repository.get_folder_tree()

        assert [n.id for n in tree] == [orphan.id]

    def test_ancestor_ids_nearest_first(self, folder_repository, make_folder):
        a = make_folder("A")
        b = make_folder("B", a.id)
        c = make_folder("C", b.id)

        assert folder_repository.get_ancestor_ids(c.id) == [b.id, a.id]
        assert folder_repository.get_ancestor_ids(a.id) == []

    def test_ancestor_walk_detects_stored_cycle(self, folder_repository, stores, make_folder):
        a = make_folder("A")
        b = make_folder("B", a.id)
        _set_parent(stores, a.id, b.id)

        with pytest.raises(CycleDetectedError):
            folder_repository.get_ancestor_ids(b.id)

    def test_path_from_root(self, folder_repository, make_folder):
        a = make_folder("A")
        b = make_folder("B", a.id)
        c = make_folder("C", b.id)

        assert [f.name for f in folder_repository.get_path(c.id)] == ["A", "B", "C"]

    def test_has_children_and_notes(self, folder_repository, note_repository, make_folder, make_note):
        parent = make_folder("Parent")
        assert folder_repository.has_children(parent.id) is False
        assert folder_repository.has_notes(parent.id) is False

        make_folder("Child", parent.id)
        note = make_note(folder_id=parent.id)
        assert folder_repository.has_children(parent.id) is True
        assert folder_repository.has_notes(parent.id) is True

        note_repository.update(note.id, NoteUpdate(folder_id=None))
        assert folder_repository.has_notes(parent.id) is False
