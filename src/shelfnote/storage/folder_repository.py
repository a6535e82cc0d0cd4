"""Repository for folder storage and retrieval."""
import logging
from typing import Dict, List, Optional

from sqlalchemy import and_, delete, false, func, select
from sqlalchemy.orm import Session

from shelfnote.exceptions import (
    CycleDetectedError,
    HasChildrenError,
    HasNotesError,
    InvalidParentError,
    NotDeletedError,
    NotFoundError,
)
from shelfnote.models.db_models import DBFolder, DBNote
from shelfnote.models.schema import (
    DeleteResult,
    Folder,
    FolderCreate,
    FolderTreeNode,
    FolderUpdate,
    ensure_timezone_aware,
)
from shelfnote.storage import predicates
from shelfnote.storage.base import StoreContext, exists, require

logger = logging.getLogger(__name__)


class FolderRepository:
    """Repository for the folder hierarchy.

    Keeps the parent graph acyclic, only attaches live folders to live
    parents, and refuses to delete folders that still hold live sub-folders
    or notes. Every check runs in the same transaction as the write it
    guards.
    """

    def __init__(self, context: StoreContext):
        """Initialize the repository.

        Args:
            context: Shared session factory, clock and id allocator.
        """
        self.context = context

    def list(self, include_deleted: bool = False) -> List[Folder]:
        """Get folders ordered by sort order, each with its live note count.

        Args:
            include_deleted: Also return soft-deleted folders.
        """
        with self.context.transaction("list_folders") as session:
            condition = None if include_deleted else predicates.exclude_soft_deleted(
                DBFolder.is_deleted
            )
            query = predicates.apply(self._select_with_counts(), condition).order_by(
                DBFolder.sort_order, DBFolder.created_at, DBFolder.id
            )
            return [self._to_model(f, count) for f, count in session.execute(query).all()]

    def get(self, id: str) -> Folder:
        """Get a folder by ID, deleted or not.

        Raises:
            NotFoundError: If no folder has this ID.
        """
        with self.context.transaction("get_folder") as session:
            return self._load(session, id)

    def create(self, data: FolderCreate) -> Folder:
        """Create a new folder at the root or under a live parent.

        Raises:
            InvalidParentError: If the parent is missing or soft-deleted.
        """
        with self.context.transaction("create_folder") as session:
            if data.parent_id is not None and not self._is_valid_parent(session, data.parent_id):
                raise InvalidParentError(data.parent_id)

            now = self.context.now()
            db_folder = DBFolder(
                id=self.context.new_id(),
                name=data.name,
                parent_id=data.parent_id,
                color=data.color,
                icon=data.icon,
                is_deleted=False,
                sort_order=0,
                created_at=now,
                updated_at=now,
            )
            session.add(db_folder)
            session.flush()

            logger.info(f"Created folder: {db_folder.id} ({data.name})")
            return self._to_model(db_folder, 0)

    def update(self, id: str, data: FolderUpdate) -> Folder:
        """Update a live folder.

        When ``parent_id`` changes, the new parent must be a live folder and
        must not be the folder itself or one of its descendants.

        Raises:
            NotFoundError: If the folder is missing or soft-deleted.
            InvalidParentError: If the new parent is missing or soft-deleted.
            CycleDetectedError: If the move would create a cycle.
        """
        changes = data.model_dump(exclude_unset=True)
        with self.context.transaction("update_folder") as session:
            db_folder = self._require_live(session, id)

            if "parent_id" in changes and changes["parent_id"] != db_folder.parent_id:
                self._check_reparent(session, id, changes["parent_id"])

            for field_name, value in changes.items():
                if field_name == "name" and value is None:
                    continue
                if field_name == "sort_order" and value is None:
                    continue
                setattr(db_folder, field_name, value)
            db_folder.updated_at = self.context.now()
            session.flush()

            logger.info(f"Updated folder: {id} ({', '.join(changes) or 'touch'})")
            return self._load(session, id)

    def move(self, id: str, new_parent_id: Optional[str]) -> Folder:
        """Move a folder under another folder, or to the root with None."""
        return self.update(id, FolderUpdate(parent_id=new_parent_id))

    def soft_delete(self, id: str) -> DeleteResult:
        """Move a folder to the recycle bin.

        Raises:
            NotFoundError: If the folder does not exist.
            HasChildrenError: If it has live sub-folders.
            HasNotesError: If live notes reference it.
        """
        with self.context.transaction("soft_delete_folder") as session:
            db_folder = require(session, DBFolder, id, "folder")
            self._check_empty(session, id)

            db_folder.is_deleted = True
            db_folder.updated_at = self.context.now()

            logger.info(f"Soft-deleted folder: {id}")
            return DeleteResult(id=id)

    def restore(self, id: str) -> Folder:
        """Bring a folder back from the recycle bin.

        If its parent is gone or still deleted the folder is restored at the
        root instead of failing.

        Raises:
            NotFoundError: If the folder does not exist.
            NotDeletedError: If the folder is not deleted.
        """
        with self.context.transaction("restore_folder") as session:
            db_folder = require(session, DBFolder, id, "folder")
            if not db_folder.is_deleted:
                raise NotDeletedError("folder", id)

            if db_folder.parent_id is not None and not self._is_valid_parent(
                session, db_folder.parent_id
            ):
                logger.warning(
                    f"Parent {db_folder.parent_id} of folder {id} is unavailable, "
                    "restoring to root"
                )
                db_folder.parent_id = None

            db_folder.is_deleted = False
            db_folder.updated_at = self.context.now()
            session.flush()

            logger.info(f"Restored folder: {id}")
            return self._load(session, id)

    def permanent_delete(self, id: str) -> DeleteResult:
        """Physically remove a folder.

        Soft-deleted sub-folders are removed with it and soft-deleted notes
        that pointed into the removed subtree become unfiled.

        Raises:
            NotFoundError: If the folder does not exist.
            HasChildrenError: If any folder below it is live.
            HasNotesError: If live notes reference it or any folder below it.
        """
        with self.context.transaction("permanent_delete_folder") as session:
            require(session, DBFolder, id, "folder")
            self._check_empty(session, id)
            self._check_subtree_empty(session, id)

            session.execute(delete(DBFolder).where(DBFolder.id == id))

            logger.info(f"Permanently deleted folder: {id}")
            return DeleteResult(id=id)

    def get_folder_tree(self) -> List[FolderTreeNode]:
        """Get live folders as a tree.

        A folder whose parent is missing or deleted is listed as a root.

        Returns:
            Root nodes with nested children, siblings in sort order.
        """
        folders = self.list()

        # First pass: one node per folder
        by_id: Dict[str, FolderTreeNode] = {
            f.id: FolderTreeNode(**f.model_dump()) for f in folders
        }
        roots: List[FolderTreeNode] = []

        # Second pass: attach to parents
        for f in folders:
            node = by_id[f.id]
            if f.parent_id and f.parent_id in by_id:
                by_id[f.parent_id].children.append(node)
            else:
                if f.parent_id:
                    logger.debug(f"Folder {f.id} has unavailable parent {f.parent_id}, shown at root")
                roots.append(node)

        return roots

    def get_ancestor_ids(self, id: str) -> List[str]:
        """Get the ids of a folder's ancestors, nearest parent first.

        Raises:
            NotFoundError: If the folder does not exist.
            CycleDetectedError: If stored parent links loop back on themselves.
        """
        with self.context.transaction("get_ancestor_ids") as session:
            require(session, DBFolder, id, "folder")
            return self._ancestor_ids(session, id)

    def get_path(self, id: str) -> List[Folder]:
        """Get the folders from the root down to (and including) this one."""
        with self.context.transaction("get_folder_path") as session:
            current = self._load(session, id)
            path = [current]
            for ancestor_id in self._ancestor_ids(session, id):
                path.append(self._load(session, ancestor_id))
            path.reverse()
            return path

    def would_create_cycle(self, folder_id: str, new_parent_id: str) -> bool:
        """Check whether putting folder_id under new_parent_id would loop."""
        with self.context.transaction("would_create_cycle") as session:
            return self._would_create_cycle(session, folder_id, new_parent_id)

    def is_valid_parent(self, parent_id: str) -> bool:
        """Check that a folder exists and is not deleted."""
        with self.context.transaction("is_valid_parent") as session:
            return self._is_valid_parent(session, parent_id)

    def has_children(self, id: str) -> bool:
        """Check whether a folder has live sub-folders."""
        with self.context.transaction("folder_has_children") as session:
            return bool(self._live_child_ids(session, id))

    def has_notes(self, id: str) -> bool:
        """Check whether live notes reference a folder."""
        with self.context.transaction("folder_has_notes") as session:
            return self._live_note_count(session, id) > 0

    def exists(self, id: str) -> bool:
        """Check if a folder exists."""
        with self.context.transaction("folder_exists") as session:
            return exists(session, DBFolder, id)

    # ------------------------------------------------------------------
    # Helpers (all run inside the caller's transaction)
    # ------------------------------------------------------------------

    def _select_with_counts(self):
        return (
            select(DBFolder, func.count(DBNote.id))
            .select_from(DBFolder)
            .outerjoin(
                DBNote,
                and_(DBNote.folder_id == DBFolder.id, DBNote.is_deleted == false()),
            )
            .group_by(DBFolder.id)
        )

    def _load(self, session: Session, id: str) -> Folder:
        row = session.execute(
            predicates.apply(self._select_with_counts(), predicates.equals(DBFolder.id, id))
        ).one_or_none()
        if row is None:
            raise NotFoundError("folder", id)
        folder, count = row
        return self._to_model(folder, count)

    def _require_live(self, session: Session, id: str) -> DBFolder:
        db_folder = require(session, DBFolder, id, "folder")
        if db_folder.is_deleted:
            raise NotFoundError("folder", id, f"Folder '{id}' is deleted")
        return db_folder

    def _is_valid_parent(self, session: Session, parent_id: str) -> bool:
        condition = predicates.combine_all(
            predicates.equals(DBFolder.id, parent_id),
            predicates.exclude_soft_deleted(DBFolder.is_deleted),
        )
        return session.scalar(
            predicates.apply(select(DBFolder.id), condition).limit(1)
        ) is not None

    def _check_reparent(self, session: Session, id: str, new_parent_id: Optional[str]) -> None:
        if new_parent_id is None:
            return
        if new_parent_id == id:
            raise CycleDetectedError(
                id, new_parent_id, f"Folder '{id}' cannot be its own parent"
            )
        if not self._is_valid_parent(session, new_parent_id):
            raise InvalidParentError(new_parent_id, folder_id=id)
        if self._would_create_cycle(session, id, new_parent_id):
            raise CycleDetectedError(id, new_parent_id)

    def _would_create_cycle(self, session: Session, folder_id: str, new_parent_id: str) -> bool:
        if folder_id == new_parent_id:
            return True

        # Walk up from the prospective parent; reaching folder_id means the
        # parent is one of its descendants. A repeat visit means the stored
        # data already loops.
        visited = set()
        current: Optional[str] = new_parent_id
        while current:
            if current == folder_id or current in visited:
                return True
            visited.add(current)
            current = session.scalar(
                select(DBFolder.parent_id).where(DBFolder.id == current)
            )
        return False

    def _ancestor_ids(self, session: Session, id: str) -> List[str]:
        ancestors: List[str] = []
        visited = {id}
        current = id
        while True:
            parent_id = session.scalar(
                select(DBFolder.parent_id).where(DBFolder.id == current)
            )
            if not parent_id:
                break
            if parent_id in visited:
                logger.error(f"Parent chain of folder {id} loops at {parent_id}")
                raise CycleDetectedError(
                    id, parent_id, f"Parent chain of folder '{id}' contains a cycle"
                )
            visited.add(parent_id)
            ancestors.append(parent_id)
            current = parent_id
        return ancestors

    def _live_child_ids(self, session: Session, id: str) -> List[str]:
        condition = predicates.combine_all(
            predicates.equals(DBFolder.parent_id, id),
            predicates.exclude_soft_deleted(DBFolder.is_deleted),
        )
        return list(session.scalars(predicates.apply(select(DBFolder.id), condition)).all())

    def _live_note_count(self, session: Session, id: str) -> int:
        condition = predicates.combine_all(
            predicates.equals(DBNote.folder_id, id),
            predicates.exclude_soft_deleted(DBNote.is_deleted),
        )
        return session.scalar(
            predicates.apply(select(func.count(DBNote.id)), condition)
        ) or 0

    def _check_empty(self, session: Session, id: str) -> None:
        child_ids = self._live_child_ids(session, id)
        if child_ids:
            raise HasChildrenError(id, child_ids)
        note_count = self._live_note_count(session, id)
        if note_count:
            raise HasNotesError(id, note_count)

    def _descendant_ids(self, session: Session, id: str) -> List[str]:
        found: List[str] = []
        seen = {id}
        frontier = [id]
        while frontier:
            child_ids = session.scalars(
                select(DBFolder.id).where(DBFolder.parent_id.in_(frontier))
            ).all()
            frontier = [c for c in child_ids if c not in seen]
            seen.update(frontier)
            found.extend(frontier)
        return found

    def _check_subtree_empty(self, session: Session, id: str) -> None:
        # The delete cascades through every descendant, deleted or not
        descendant_ids = self._descendant_ids(session, id)
        if not descendant_ids:
            return
        live_ids = list(session.scalars(
            select(DBFolder.id).where(
                DBFolder.id.in_(descendant_ids), DBFolder.is_deleted == false()
            )
        ).all())
        if live_ids:
            raise HasChildrenError(id, live_ids)
        note_count = session.scalar(
            select(func.count(DBNote.id)).where(
                DBNote.folder_id.in_(descendant_ids), DBNote.is_deleted == false()
            )
        ) or 0
        if note_count:
            raise HasNotesError(id, note_count)

    @staticmethod
    def _to_model(db_folder: DBFolder, note_count: int) -> Folder:
        return Folder(
            id=db_folder.id,
            name=db_folder.name,
            parent_id=db_folder.parent_id,
            color=db_folder.color,
            icon=db_folder.icon,
            is_deleted=bool(db_folder.is_deleted),
            sort_order=db_folder.sort_order or 0,
            created_at=ensure_timezone_aware(db_folder.created_at),
            updated_at=ensure_timezone_aware(db_folder.updated_at),
            note_count=note_count or 0,
        )
