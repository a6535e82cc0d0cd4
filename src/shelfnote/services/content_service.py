"""Service layer for Shelfnote operations.

Validates input, then hands it to the stores. The stores enforce the
cross-entity rules (acyclic folders, delete guards, unique tag names) on
their own; this layer only rejects malformed values before they get there.
"""
import logging
from typing import Any, Dict, List, Optional

from shelfnote.config import config
from shelfnote.exceptions import ShelfnoteError
from shelfnote.models.schema import (
    BatchFailure,
    BatchResult,
    CleanupResult,
    ClearTrashResult,
    DeleteResult,
    Folder,
    FolderCreate,
    FolderTreeNode,
    FolderUpdate,
    Mark,
    MarkCreate,
    MarkType,
    MarkUpdate,
    Note,
    NoteCreate,
    NoteFilter,
    NoteUpdate,
    Tag,
    TagUpdate,
)
from shelfnote.observability import traced
from shelfnote.storage.stores import Stores
from shelfnote.validation import (
    FieldValidator,
    batch_ids_validator,
    folder_validator,
    mark_validator,
    note_validator,
    tag_validator,
)

logger = logging.getLogger(__name__)

MARK_TYPES = [t.value for t in MarkType]


def _changes(**fields: Any) -> Dict[str, Any]:
    """Keep the fields a caller actually passed (None means unchanged)."""
    return {k: v for k, v in fields.items() if v is not None}


def _blank_to_none(changes: Dict[str, Any], *names: str) -> None:
    """An empty string clears an optional reference or hint."""
    for name in names:
        if changes.get(name) == "":
            changes[name] = None


class ContentService:
    """Operation contract over the four stores.

    Update methods treat ``None`` as "leave unchanged"; an empty string
    clears optional fields such as a note's folder or a folder's parent.
    """

    def __init__(self, stores: Stores):
        """Initialize the service.

        Args:
            stores: Repository bundle opened at process start.
        """
        self.stores = stores

    # ------------------------------------------------------------------
    # Folders
    # ------------------------------------------------------------------

    @traced()
    def list_folders(self, include_deleted: bool = False) -> List[Folder]:
        return self.stores.folders.list(include_deleted=include_deleted)

    @traced()
    def get_folder(self, folder_id: str) -> Folder:
        return self.stores.folders.get(folder_id)

    @traced()
    def create_folder(
        self,
        name: str,
        parent_id: Optional[str] = None,
        color: Optional[str] = None,
        icon: Optional[str] = None,
    ) -> Folder:
        """Create a folder at the root or under ``parent_id``."""
        data = {"name": name, "parent_id": parent_id or None, "color": color, "icon": icon}
        folder_validator(data).validate_or_raise()
        return self.stores.folders.create(FolderCreate(**data))

    @traced()
    def update_folder(
        self,
        folder_id: str,
        name: Optional[str] = None,
        parent_id: Optional[str] = None,
        color: Optional[str] = None,
        icon: Optional[str] = None,
        sort_order: Optional[int] = None,
    ) -> Folder:
        """Update a folder; ``parent_id=""`` moves it to the root."""
        changes = _changes(name=name, parent_id=parent_id, color=color, icon=icon,
                           sort_order=sort_order)
        _blank_to_none(changes, "parent_id", "color", "icon")
        folder_validator(changes, partial=True).validate_or_raise()
        return self.stores.folders.update(folder_id, FolderUpdate(**changes))

    @traced()
    def move_folder(self, folder_id: str, new_parent_id: Optional[str] = None) -> Folder:
        """Reparent a folder; no parent (or "") moves it to the root."""
        return self.stores.folders.move(folder_id, new_parent_id or None)

    @traced()
    def soft_delete_folder(self, folder_id: str) -> DeleteResult:
        return self.stores.folders.soft_delete(folder_id)

    @traced()
    def restore_folder(self, folder_id: str) -> Folder:
        return self.stores.folders.restore(folder_id)

    @traced()
    def permanent_delete_folder(self, folder_id: str) -> DeleteResult:
        return self.stores.folders.permanent_delete(folder_id)

    @traced()
    def get_folder_tree(self) -> List[FolderTreeNode]:
        return self.stores.folders.get_folder_tree()

    @traced()
    def get_folder_path(self, folder_id: str) -> List[Folder]:
        """Folders from the root down to ``folder_id``."""
        return self.stores.folders.get_path(folder_id)

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------

    @traced()
    def list_notes(
        self,
        folder_id: Optional[str] = None,
        search: Optional[str] = None,
        favorites_only: bool = False,
        include_deleted: bool = False,
    ) -> List[Note]:
        """List notes, optionally narrowed to a folder, a search text or favorites."""
        return self.stores.notes.list(NoteFilter(
            folder_id=folder_id or None,
            search=search,
            favorites_only=favorites_only,
            include_deleted=include_deleted,
        ))

    @traced()
    def search_notes(self, query: str, folder_id: Optional[str] = None) -> List[Note]:
        """Live notes whose title or content contains ``query``."""
        return self.stores.notes.list(NoteFilter(folder_id=folder_id or None, search=query))

    @traced()
    def list_favorite_notes(self) -> List[Note]:
        return self.stores.notes.list(NoteFilter(favorites_only=True))

    @traced()
    def list_deleted_notes(self) -> List[Note]:
        """Notes currently in the trash."""
        return self.stores.notes.list(NoteFilter(deleted_only=True))

    @traced()
    def get_note(self, note_id: str, include_deleted: bool = False) -> Note:
        return self.stores.notes.get(note_id, include_deleted=include_deleted)

    @traced()
    def create_note(
        self,
        title: str,
        content: str = "",
        folder_id: Optional[str] = None,
        tag_ids: Optional[List[str]] = None,
    ) -> Note:
        """Create a note, optionally filed in a folder and tagged."""
        data = {
            "title": title,
            "content": content or "",
            "folder_id": folder_id or None,
            "tag_ids": list(tag_ids or []),
        }
        note_validator(data).validate_or_raise()
        return self.stores.notes.create(NoteCreate(**data))

    @traced()
    def update_note(
        self,
        note_id: str,
        title: Optional[str] = None,
        content: Optional[str] = None,
        folder_id: Optional[str] = None,
        tag_ids: Optional[List[str]] = None,
        is_favorite: Optional[bool] = None,
    ) -> Note:
        """Update a note.

        ``folder_id=""`` unfiles the note; ``tag_ids`` replaces the whole tag
        set (an empty list removes every tag).
        """
        changes = _changes(title=title, content=content, folder_id=folder_id,
                           tag_ids=tag_ids, is_favorite=is_favorite)
        _blank_to_none(changes, "folder_id")
        note_validator(changes, partial=True).validate_or_raise()
        return self.stores.notes.update(note_id, NoteUpdate(**changes))

    @traced()
    def soft_delete_note(self, note_id: str) -> DeleteResult:
        return self.stores.notes.soft_delete(note_id)

    @traced()
    def restore_note(self, note_id: str) -> Note:
        return self.stores.notes.restore(note_id)

    @traced()
    def permanent_delete_note(self, note_id: str) -> DeleteResult:
        return self.stores.notes.permanent_delete(note_id)

    @traced()
    def toggle_favorite(self, note_id: str) -> Note:
        return self.stores.notes.toggle_favorite(note_id)

    @traced()
    def batch_soft_delete_notes(self, note_ids: List[str]) -> BatchResult:
        """Move several notes to the trash, one transaction per note."""
        return self._run_batch(note_ids, self.stores.notes.soft_delete, "soft delete")

    @traced()
    def batch_restore_notes(self, note_ids: List[str]) -> BatchResult:
        """Restore several notes from the trash, one transaction per note."""
        return self._run_batch(note_ids, self.stores.notes.restore, "restore")

    def _run_batch(self, ids: List[str], operation, label: str) -> BatchResult:
        batch_ids_validator(ids).validate_or_raise()

        result = BatchResult()
        for item_id in ids:
            try:
                operation(item_id)
            except ShelfnoteError as e:
                result.failed += 1
                result.errors.append(BatchFailure(id=item_id, error=e.message))
            else:
                result.successful += 1
                result.succeeded_ids.append(item_id)

        logger.info(f"Batch {label}: {result.successful} succeeded, {result.failed} failed")
        return result

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------

    @traced()
    def list_tags(self, search: Optional[str] = None) -> List[Tag]:
        return self.stores.tags.list(search=search)

    @traced()
    def get_tag(self, tag_id: str) -> Tag:
        return self.stores.tags.get(tag_id)

    @traced()
    def create_tag(self, name: str, color: Optional[str] = None) -> Tag:
        data = {"name": name, "color": color or None}
        tag_validator(data).validate_or_raise()
        return self.stores.tags.create(name, color=data["color"])

    @traced()
    def update_tag(self, tag_id: str, name: Optional[str] = None,
                   color: Optional[str] = None) -> Tag:
        """Rename or recolor a tag; ``color=""`` clears the color."""
        changes = _changes(name=name, color=color)
        _blank_to_none(changes, "color")
        tag_validator(changes, partial=True).validate_or_raise()
        return self.stores.tags.update(tag_id, TagUpdate(**changes))

    @traced()
    def delete_tag(self, tag_id: str) -> DeleteResult:
        """Delete a tag, detaching it from every note and removing its marks."""
        return self.stores.tags.delete(tag_id)

    @traced()
    def find_unused_tags(self) -> List[Tag]:
        return self.stores.tags.find_unused()

    @traced()
    def find_most_used_tags(self, limit: Optional[int] = None) -> List[Tag]:
        if limit is None:
            limit = config.most_used_default_limit
        FieldValidator("limit", limit).number_range(min_value=1).validate_or_raise()
        return self.stores.tags.find_most_used(limit)

    @traced()
    def cleanup_unused_tags(self) -> CleanupResult:
        return self.stores.tags.cleanup_unused()

    # ------------------------------------------------------------------
    # Marks
    # ------------------------------------------------------------------

    @traced()
    def list_marks(self, tag_id: Optional[str] = None,
                   include_deleted: bool = False) -> List[Mark]:
        """Marks of one tag (live only), or of every tag."""
        if tag_id:
            return self.stores.marks.list_by_tag(tag_id)
        return self.stores.marks.list_all(include_deleted=include_deleted)

    @traced()
    def list_mark_trash(self) -> List[Mark]:
        return self.stores.marks.list_trash()

    @traced()
    def get_mark(self, mark_id: str) -> Mark:
        return self.stores.marks.get(mark_id)

    @traced()
    def create_mark(
        self,
        tag_id: str,
        type: str,
        content: Optional[str] = None,
        url: Optional[str] = None,
        desc: Optional[str] = None,
    ) -> Mark:
        """Create a mark of the given type under a tag."""
        data = {"tag_id": tag_id, "type": type, "content": content, "url": url, "desc": desc}
        self._validate_mark(data, partial=False)
        return self.stores.marks.create(MarkCreate(**data))

    @traced()
    def update_mark(
        self,
        mark_id: str,
        tag_id: Optional[str] = None,
        type: Optional[str] = None,
        content: Optional[str] = None,
        url: Optional[str] = None,
        desc: Optional[str] = None,
    ) -> Mark:
        """Update a mark; "" clears ``content``, ``url`` or ``desc``."""
        changes = _changes(tag_id=tag_id, type=type, content=content, url=url, desc=desc)
        _blank_to_none(changes, "content", "url", "desc")
        self._validate_mark(changes, partial=True)
        return self.stores.marks.update(mark_id, MarkUpdate(**changes))

    @traced()
    def soft_delete_mark(self, mark_id: str) -> DeleteResult:
        return self.stores.marks.soft_delete(mark_id)

    @traced()
    def restore_mark(self, mark_id: str) -> Mark:
        return self.stores.marks.restore(mark_id)

    @traced()
    def permanent_delete_mark(self, mark_id: str) -> DeleteResult:
        return self.stores.marks.permanent_delete(mark_id)

    @traced()
    def clear_mark_trash(self) -> ClearTrashResult:
        return self.stores.marks.clear_trash()

    def _validate_mark(self, data: Dict[str, Any], partial: bool) -> None:
        batch = mark_validator(data, partial=partial)
        if data.get("type") is not None:
            batch.add(
                FieldValidator("type", data["type"]).custom(
                    lambda v: v in MARK_TYPES,
                    f"type must be one of: {', '.join(MARK_TYPES)}",
                )
            )
        batch.validate_or_raise()


