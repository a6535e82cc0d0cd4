"""Repository for tag-scoped marks and their recycle bin."""
import logging
from typing import List

from sqlalchemy import delete, select, true
from sqlalchemy.orm import Session

from shelfnote.exceptions import NotDeletedError
from shelfnote.models.db_models import DBMark, DBTag
from shelfnote.models.schema import (
    ClearTrashResult,
    DeleteResult,
    Mark,
    MarkCreate,
    MarkType,
    MarkUpdate,
    ensure_timezone_aware,
)
from shelfnote.storage import predicates
from shelfnote.storage.base import StoreContext, exists, require

logger = logging.getLogger(__name__)


class MarkRepository:
    """Repository for marks.

    Marks go through two deletion stages: ``soft_delete`` moves one to the
    recycle bin, ``permanent_delete`` or ``clear_trash`` removes it for good.
    """

    def __init__(self, context: StoreContext):
        self.context = context

    def list_by_tag(self, tag_id: str) -> List[Mark]:
        """Get the live marks of a tag in creation order."""
        condition = predicates.combine_all(
            predicates.equals(DBMark.tag_id, tag_id),
            predicates.exclude_soft_deleted(DBMark.deleted),
        )
        with self.context.transaction("list_marks_by_tag") as session:
            return self._fetch(session, condition)

    def list_all(self, include_deleted: bool = False) -> List[Mark]:
        """Get every mark in creation order.

        Args:
            include_deleted: Also return marks in the recycle bin.
        """
        condition = None if include_deleted else predicates.exclude_soft_deleted(DBMark.deleted)
        with self.context.transaction("list_marks") as session:
            return self._fetch(session, condition)

    def list_trash(self) -> List[Mark]:
        """Get the marks currently in the recycle bin."""
        condition = predicates.Predicate(DBMark.deleted == true())
        with self.context.transaction("list_mark_trash") as session:
            return self._fetch(session, condition)

    def get(self, id: str) -> Mark:
        """Get a mark by ID, whether or not it is in the recycle bin.

        Raises:
            NotFoundError: If no mark has this ID.
        """
        with self.context.transaction("get_mark") as session:
            return self._to_model(require(session, DBMark, id, "mark"))

    def create(self, data: MarkCreate) -> Mark:
        """Create a mark under an existing tag.

        Raises:
            NotFoundError: If the tag does not exist.
        """
        with self.context.transaction("create_mark") as session:
            require(session, DBTag, data.tag_id, "tag")

            db_mark = DBMark(
                id=self.context.new_id(),
                tag_id=data.tag_id,
                type=MarkType(data.type).value,
                content=data.content,
                url=data.url,
                desc=data.desc,
                deleted=False,
                created_at=self.context.now(),
            )
            session.add(db_mark)
            session.flush()

            logger.info(f"Created {db_mark.type} mark: {db_mark.id} (tag {data.tag_id})")
            return self._to_model(db_mark)

    def update(self, id: str, data: MarkUpdate) -> Mark:
        """Update a mark's tag, type or payload.

        Raises:
            NotFoundError: If the mark, or the new tag, does not exist.
        """
        changes = data.model_dump(exclude_unset=True)
        with self.context.transaction("update_mark") as session:
            db_mark = require(session, DBMark, id, "mark")

            if changes.get("tag_id") is not None:
                require(session, DBTag, changes["tag_id"], "tag")
                db_mark.tag_id = changes["tag_id"]
            if changes.get("type") is not None:
                db_mark.type = MarkType(changes["type"]).value
            # Payload fields may be cleared with an explicit None
            for field_name in ("content", "url", "desc"):
                if field_name in changes:
                    setattr(db_mark, field_name, changes[field_name])
            session.flush()

            logger.info(f"Updated mark: {id}")
            return self._to_model(db_mark)

    def soft_delete(self, id: str) -> DeleteResult:
        """Move a mark to the recycle bin.

        Raises:
            NotFoundError: If no mark has this ID.
        """
        with self.context.transaction("soft_delete_mark") as session:
            db_mark = require(session, DBMark, id, "mark")
            db_mark.deleted = True

            logger.info(f"Moved mark to trash: {id}")
            return DeleteResult(id=id)

    def restore(self, id: str) -> Mark:
        """Take a mark out of the recycle bin.

        Raises:
            NotFoundError: If no mark has this ID.
            NotDeletedError: If the mark is not in the recycle bin.
        """
        with self.context.transaction("restore_mark") as session:
            db_mark = require(session, DBMark, id, "mark")
            if not db_mark.deleted:
                raise NotDeletedError("mark", id)
            db_mark.deleted = False
            session.flush()

            logger.info(f"Restored mark: {id}")
            return self._to_model(db_mark)

    def permanent_delete(self, id: str) -> DeleteResult:
        """Physically remove a mark.

        Raises:
            NotFoundError: If no mark has this ID.
        """
        with self.context.transaction("permanent_delete_mark") as session:
            require(session, DBMark, id, "mark")
            session.execute(delete(DBMark).where(DBMark.id == id))

            logger.info(f"Permanently deleted mark: {id}")
            return DeleteResult(id=id)

    def clear_trash(self) -> ClearTrashResult:
        """Permanently remove every mark in the recycle bin."""
        with self.context.transaction("clear_mark_trash") as session:
            deleted = session.execute(
                delete(DBMark)
                .where(DBMark.deleted == true())
                .execution_options(synchronize_session=False)
            ).rowcount or 0

            if deleted:
                logger.info(f"Cleared mark trash: {deleted} mark(s) removed")
            return ClearTrashResult(deleted_count=deleted)

    def exists(self, id: str) -> bool:
        """Check if a mark exists."""
        with self.context.transaction("mark_exists") as session:
            return exists(session, DBMark, id)

    def _fetch(self, session: Session, condition) -> List[Mark]:
        query = predicates.apply(select(DBMark), condition).order_by(
            DBMark.created_at, DBMark.id
        )
        return [self._to_model(m) for m in session.scalars(query).all()]

    @staticmethod
    def _to_model(db_mark: DBMark) -> Mark:
        return Mark(
            id=db_mark.id,
            tag_id=db_mark.tag_id,
            type=MarkType(db_mark.type),
            content=db_mark.content,
            url=db_mark.url,
            desc=db_mark.desc,
            deleted=bool(db_mark.deleted),
            created_at=ensure_timezone_aware(db_mark.created_at),
        )
