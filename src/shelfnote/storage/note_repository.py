"""Repository for note storage and retrieval."""
import logging
from typing import Dict, Iterable, List, Optional

from sqlalchemy import delete, insert, select, true
from sqlalchemy.orm import Session

from shelfnote.exceptions import NotDeletedError, NotFoundError
from shelfnote.models.db_models import DBFolder, DBNote, DBTag, note_tags
from shelfnote.models.schema import (
    DeleteResult,
    Note,
    NoteCreate,
    NoteFilter,
    NoteUpdate,
    ensure_timezone_aware,
)
from shelfnote.storage import predicates
from shelfnote.storage.base import StoreContext, exists, require

logger = logging.getLogger(__name__)


class NoteRepository:
    """Repository for notes and their tag associations.

    A note's tag set lives in the ``note_tags`` join table and is always
    rewritten as a whole: on update every join row of the note is deleted
    and the new set inserted in the same transaction.
    """

    def __init__(self, context: StoreContext):
        self.context = context

    def list(self, note_filter: Optional[NoteFilter] = None) -> List[Note]:
        """List notes matching a filter, most recently updated first.

        Args:
            note_filter: Folder, search text, favorites and trash criteria.
                Without a filter every live note is returned.
        """
        note_filter = note_filter or NoteFilter()
        if note_filter.deleted_only:
            deleted = predicates.Predicate(DBNote.is_deleted == true())
        elif note_filter.include_deleted:
            deleted = None
        else:
            deleted = predicates.exclude_soft_deleted(DBNote.is_deleted)

        condition = predicates.combine_all(
            deleted,
            predicates.equals(DBNote.folder_id, note_filter.folder_id)
            if note_filter.folder_id else None,
            predicates.substring([DBNote.title, DBNote.content], note_filter.search),
            predicates.Predicate(DBNote.is_favorite == true())
            if note_filter.favorites_only else None,
        )

        with self.context.transaction("list_notes") as session:
            query = predicates.apply(select(DBNote), condition).order_by(
                DBNote.updated_at.desc(), DBNote.id.desc()
            )
            rows = session.scalars(query).all()
            tag_map = self._tag_ids_for(session, [r.id for r in rows])
            return [self._to_model(r, tag_map.get(r.id, [])) for r in rows]

    def get(self, id: str, include_deleted: bool = False) -> Note:
        """Get a note by ID.

        Raises:
            NotFoundError: If the note does not exist, or is deleted and
                ``include_deleted`` is False.
        """
        with self.context.transaction("get_note") as session:
            db_note = require(session, DBNote, id, "note")
            if db_note.is_deleted and not include_deleted:
                raise NotFoundError("note", id, f"Note '{id}' is deleted")
            return self._load(session, db_note)

    def create(self, data: NoteCreate) -> Note:
        """Create a note and attach its tags in one batch.

        Raises:
            NotFoundError: If the folder or one of the tags does not exist
                (a deleted folder counts as missing).
        """
        tag_ids = _unique(data.tag_ids)
        with self.context.transaction("create_note") as session:
            if data.folder_id is not None:
                self._check_folder(session, data.folder_id)
            self._check_tags(session, tag_ids)

            now = self.context.now()
            db_note = DBNote(
                id=self.context.new_id(),
                title=data.title,
                content=data.content,
                folder_id=data.folder_id,
                is_favorite=False,
                is_deleted=False,
                created_at=now,
                updated_at=now,
            )
            session.add(db_note)
            session.flush()
            self._insert_tags(session, db_note.id, tag_ids)

            logger.info(f"Created note: {db_note.id} ({len(tag_ids)} tag(s))")
            return self._load(session, db_note)

    def update(self, id: str, data: NoteUpdate) -> Note:
        """Update a live note.

        When ``tag_ids`` is set the note's tag set is replaced entirely.

        Raises:
            NotFoundError: If the note is missing or deleted, or if a new
                folder or tag reference does not resolve.
        """
        changes = data.model_dump(exclude_unset=True)
        with self.context.transaction("update_note") as session:
            db_note = self._require_live(session, id)

            if changes.get("folder_id") is not None:
                self._check_folder(session, changes["folder_id"])
            if "folder_id" in changes:
                db_note.folder_id = changes["folder_id"]
            for field_name in ("title", "content", "is_favorite"):
                if changes.get(field_name) is not None:
                    setattr(db_note, field_name, changes[field_name])

            if "tag_ids" in changes:
                tag_ids = _unique(changes["tag_ids"])
                self._check_tags(session, tag_ids)
                session.execute(delete(note_tags).where(note_tags.c.note_id == id))
                self._insert_tags(session, id, tag_ids)

            db_note.updated_at = self.context.now()
            session.flush()

            logger.info(f"Updated note: {id}")
            return self._load(session, db_note)

    def soft_delete(self, id: str) -> DeleteResult:
        """Move a note to the trash; its tag associations are kept.

        Raises:
            NotFoundError: If the note does not exist.
        """
        with self.context.transaction("soft_delete_note") as session:
            db_note = require(session, DBNote, id, "note")
            db_note.is_deleted = True
            db_note.updated_at = self.context.now()

            logger.info(f"Soft-deleted note: {id}")
            return DeleteResult(id=id)

    def restore(self, id: str) -> Note:
        """Bring a note back from the trash.

        The folder reference is kept as is, even if that folder is itself
        deleted.

        Raises:
            NotFoundError: If the note does not exist.
            NotDeletedError: If the note is not deleted.
        """
        with self.context.transaction("restore_note") as session:
            db_note = require(session, DBNote, id, "note")
            if not db_note.is_deleted:
                raise NotDeletedError("note", id)

            db_note.is_deleted = False
            db_note.updated_at = self.context.now()
            session.flush()

            logger.info(f"Restored note: {id}")
            return self._load(session, db_note)

    def permanent_delete(self, id: str) -> DeleteResult:
        """Physically remove a note and its tag associations.

        Raises:
            NotFoundError: If the note does not exist.
        """
        with self.context.transaction("permanent_delete_note") as session:
            require(session, DBNote, id, "note")
            detached = session.execute(
                delete(note_tags).where(note_tags.c.note_id == id)
            ).rowcount
            session.execute(delete(DBNote).where(DBNote.id == id))

            logger.info(f"Permanently deleted note: {id} ({detached} tag link(s))")
            return DeleteResult(id=id)

    def toggle_favorite(self, id: str) -> Note:
        """Flip the favorite flag of a live note.

        Raises:
            NotFoundError: If the note is missing or deleted.
        """
        with self.context.transaction("toggle_favorite") as session:
            db_note = self._require_live(session, id)
            db_note.is_favorite = not db_note.is_favorite
            db_note.updated_at = self.context.now()
            session.flush()

            logger.info(f"Note {id} favorite={db_note.is_favorite}")
            return self._load(session, db_note)

    def exists(self, id: str) -> bool:
        """Check if a note exists."""
        with self.context.transaction("note_exists") as session:
            return exists(session, DBNote, id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_live(self, session: Session, id: str) -> DBNote:
        db_note = require(session, DBNote, id, "note")
        if db_note.is_deleted:
            raise NotFoundError("note", id, f"Note '{id}' is deleted")
        return db_note

    def _check_folder(self, session: Session, folder_id: str) -> None:
        db_folder = require(session, DBFolder, folder_id, "folder")
        if db_folder.is_deleted:
            raise NotFoundError("folder", folder_id, f"Folder '{folder_id}' is deleted")

    def _check_tags(self, session: Session, tag_ids: List[str]) -> None:
        if not tag_ids:
            return
        found = set(session.scalars(select(DBTag.id).where(DBTag.id.in_(tag_ids))).all())
        for tag_id in tag_ids:
            if tag_id not in found:
                raise NotFoundError("tag", tag_id)

    def _insert_tags(self, session: Session, note_id: str, tag_ids: List[str]) -> None:
        if not tag_ids:
            return
        session.execute(
            insert(note_tags),
            [{"note_id": note_id, "tag_id": tag_id} for tag_id in tag_ids],
        )

    def _tag_ids_for(self, session: Session, note_ids: List[str]) -> Dict[str, List[str]]:
        if not note_ids:
            return {}
        result: Dict[str, List[str]] = {}
        rows = session.execute(
            select(note_tags.c.note_id, note_tags.c.tag_id)
            .where(note_tags.c.note_id.in_(note_ids))
            .order_by(note_tags.c.note_id, note_tags.c.tag_id)
        ).all()
        for note_id, tag_id in rows:
            result.setdefault(note_id, []).append(tag_id)
        return result

    def _load(self, session: Session, db_note: DBNote) -> Note:
        tag_ids = self._tag_ids_for(session, [db_note.id]).get(db_note.id, [])
        return self._to_model(db_note, tag_ids)

    @staticmethod
    def _to_model(db_note: DBNote, tag_ids: List[str]) -> Note:
        return Note(
            id=db_note.id,
            title=db_note.title,
            content=db_note.content or "",
            folder_id=db_note.folder_id,
            is_favorite=bool(db_note.is_favorite),
            is_deleted=bool(db_note.is_deleted),
            created_at=ensure_timezone_aware(db_note.created_at),
            updated_at=ensure_timezone_aware(db_note.updated_at),
            tag_ids=list(tag_ids),
        )


def _unique(values: Iterable[str]) -> List[str]:
    seen: List[str] = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return seen
