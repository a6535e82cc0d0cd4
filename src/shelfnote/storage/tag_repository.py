"""Repository for tag storage and retrieval."""
import logging
from typing import List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from shelfnote.exceptions import DuplicateNameError, ShelfnoteError, TagInUseError
from shelfnote.models.db_models import DBMark, DBTag, note_tags
from shelfnote.models.schema import (
    CleanupFailure,
    CleanupResult,
    DeleteResult,
    Tag,
    TagUpdate,
    ensure_timezone_aware,
)
from shelfnote.storage import predicates
from shelfnote.storage.base import StoreContext, exists, require

logger = logging.getLogger(__name__)


class TagRepository:
    """Repository for managing tags.

    Tags have no soft-delete stage: deleting one detaches it from every note
    and removes its marks in the same transaction.
    """

    def __init__(self, context: StoreContext):
        """Initialize the tag repository.

        Args:
            context: Shared session factory, clock and id allocator.
        """
        self.context = context

    def list(self, search: Optional[str] = None) -> List[Tag]:
        """Get all tags ordered by name, each with its note count.

        Args:
            search: Optional substring the tag name must contain.

        Returns:
            List of Tag objects.
        """
        with self.context.transaction("list_tags") as session:
            query = predicates.apply(
                self._select_with_counts(),
                predicates.substring(DBTag.name, search),
            ).order_by(DBTag.name)
            return [self._to_model(tag, count) for tag, count in session.execute(query).all()]

    def get(self, id: str) -> Tag:
        """Get a tag by ID.

        Raises:
            NotFoundError: If no tag has this ID.
        """
        with self.context.transaction("get_tag") as session:
            return self._load(session, id)

    def create(self, name: str, color: Optional[str] = None) -> Tag:
        """Create a new tag.

        Args:
            name: Tag name, unique across all tags (case-sensitive).
            color: Optional hex color.

        Returns:
            The created Tag.

        Raises:
            DuplicateNameError: If a tag with the same name already exists.
        """
        with self.context.transaction("create_tag") as session:
            self._ensure_name_available(session, name)

            now = self.context.now()
            db_tag = DBTag(
                id=self.context.new_id(),
                name=name,
                color=color,
                created_at=now,
                updated_at=now,
            )
            session.add(db_tag)
            self._flush_unique(session, name)

            logger.info(f"Created tag: {db_tag.id} ({name})")
            return self._to_model(db_tag, 0)

    def update(self, id: str, data: TagUpdate) -> Tag:
        """Update a tag's name and/or color.

        Raises:
            NotFoundError: If no tag has this ID.
            DuplicateNameError: If the new name belongs to another tag.
        """
        changes = data.model_dump(exclude_unset=True)
        with self.context.transaction("update_tag") as session:
            db_tag = require(session, DBTag, id, "tag")

            if "name" in changes and changes["name"] != db_tag.name:
                self._ensure_name_available(session, changes["name"], exclude_id=id)
                db_tag.name = changes["name"]
            if "color" in changes:
                db_tag.color = changes["color"]
            db_tag.updated_at = self.context.now()
            self._flush_unique(session, db_tag.name)

            logger.info(f"Updated tag: {id}")
            return self._load(session, id)

    def delete(self, id: str) -> DeleteResult:
        """Delete a tag, its note associations and its marks.

        Not guarded by usage: notes that carried the tag simply lose it.

        Raises:
            NotFoundError: If no tag has this ID.
        """
        with self.context.transaction("delete_tag") as session:
            self._delete_row(session, id)
            return DeleteResult(id=id)

    def find_unused(self) -> List[Tag]:
        """Get tags that are not attached to any note."""
        with self.context.transaction("find_unused_tags") as session:
            usage = func.count(note_tags.c.note_id)
            query = (
                self._select_with_counts()
                .having(usage == 0)
                .order_by(DBTag.created_at, DBTag.id)
            )
            return [self._to_model(tag, count) for tag, count in session.execute(query).all()]

    def find_most_used(self, limit: int = 10) -> List[Tag]:
        """Get the most used tags.

        Only tags attached to at least one note are returned, ordered by
        usage descending; ties keep insertion order.

        Args:
            limit: Maximum number of tags to return.
        """
        if limit <= 0:
            return []
        with self.context.transaction("find_most_used_tags") as session:
            usage = func.count(note_tags.c.note_id)
            query = (
                self._select_with_counts()
                .having(usage > 0)
                .order_by(usage.desc(), DBTag.created_at, DBTag.id)
                .limit(limit)
            )
            return [self._to_model(tag, count) for tag, count in session.execute(query).all()]

    def cleanup_unused(self) -> CleanupResult:
        """Delete every tag that is not attached to any note.

        Each tag is removed in its own transaction and re-checked first, so
        a tag that picked up a note in the meantime is reported in
        ``errors`` instead of being deleted. Failures never abort the run.
        """
        result = CleanupResult()
        for tag in self.find_unused():
            try:
                with self.context.transaction("cleanup_unused_tags") as session:
                    count = self._usage_count(session, tag.id)
                    if count > 0:
                        raise TagInUseError(tag.id, count)
                    self._delete_row(session, tag.id)
                result.deleted_tags.append(tag)
            except ShelfnoteError as e:
                logger.warning(f"Could not remove unused tag {tag.id} ({tag.name}): {e}")
                result.errors.append(
                    CleanupFailure(tag_id=tag.id, name=tag.name, error=e.message)
                )

        result.deleted_count = len(result.deleted_tags)
        logger.info(
            f"Unused tag cleanup: {result.deleted_count} deleted, "
            f"{len(result.errors)} failed"
        )
        return result

    def exists(self, id: str) -> bool:
        """Check if a tag exists."""
        with self.context.transaction("tag_exists") as session:
            return exists(session, DBTag, id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _select_with_counts(self):
        return (
            select(DBTag, func.count(note_tags.c.note_id))
            .select_from(DBTag)
            .outerjoin(note_tags, DBTag.id == note_tags.c.tag_id)
            .group_by(DBTag.id)
        )

    def _load(self, session: Session, id: str) -> Tag:
        require(session, DBTag, id, "tag")
        tag, count = session.execute(
            predicates.apply(self._select_with_counts(), predicates.equals(DBTag.id, id))
        ).one()
        return self._to_model(tag, count)

    def _usage_count(self, session: Session, tag_id: str) -> int:
        return session.scalar(
            select(func.count()).select_from(note_tags).where(note_tags.c.tag_id == tag_id)
        ) or 0

    def _ensure_name_available(self, session: Session, name: str,
                               exclude_id: Optional[str] = None) -> None:
        condition = predicates.combine_all(
            predicates.equals(DBTag.name, name),
            predicates.Predicate(DBTag.id != exclude_id) if exclude_id else None,
        )
        existing = session.scalar(predicates.apply(select(DBTag.id), condition).limit(1))
        if existing is not None:
            raise DuplicateNameError(name, existing_id=existing)

    def _flush_unique(self, session: Session, name: str) -> None:
        # The unique index still backs the pre-check against concurrent writers
        try:
            session.flush()
        except IntegrityError as e:
            raise DuplicateNameError(name) from e

    def _delete_row(self, session: Session, id: str) -> None:
        require(session, DBTag, id, "tag")
        detached = session.execute(delete(note_tags).where(note_tags.c.tag_id == id)).rowcount
        marks = session.execute(
            delete(DBMark)
            .where(DBMark.tag_id == id)
            .execution_options(synchronize_session=False)
        ).rowcount
        session.execute(delete(DBTag).where(DBTag.id == id))
        logger.info(
            f"Deleted tag: {id} (detached from {detached} note(s), removed {marks} mark(s))"
        )

    @staticmethod
    def _to_model(db_tag: DBTag, note_count: int) -> Tag:
        return Tag(
            id=db_tag.id,
            name=db_tag.name,
            color=db_tag.color,
            created_at=ensure_timezone_aware(db_tag.created_at),
            updated_at=ensure_timezone_aware(db_tag.updated_at),
            note_count=note_count or 0,
        )
