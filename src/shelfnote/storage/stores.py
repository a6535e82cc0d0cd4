"""Explicit store handles built once at process start.

Consumers receive a ``Stores`` bundle by reference instead of looking
repositories up in a global registry.
"""
import datetime
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy.engine import Engine

from shelfnote.models.db_models import get_session_factory, init_db, reset_db
from shelfnote.models.schema import generate_id, utc_now
from shelfnote.storage.base import StoreContext
from shelfnote.storage.folder_repository import FolderRepository
from shelfnote.storage.mark_repository import MarkRepository
from shelfnote.storage.note_repository import NoteRepository
from shelfnote.storage.tag_repository import TagRepository

logger = logging.getLogger(__name__)


@dataclass
class Stores:
    """The four repositories of one database, sharing a StoreContext."""

    engine: Engine
    context: StoreContext
    tags: TagRepository
    folders: FolderRepository
    notes: NoteRepository
    marks: MarkRepository

    def reset(self) -> None:
        """Drop and recreate every table."""
        reset_db(self.engine)

    def close(self) -> None:
        """Release every pooled connection."""
        self.engine.dispose()
        logger.debug(f"Closed stores for {self.engine.url}")


def open_stores(
    engine: Optional[Engine] = None,
    clock: Optional[Callable[[], datetime.datetime]] = None,
    id_factory: Optional[Callable[[], str]] = None,
) -> Stores:
    """Build the repositories for a database.

    Args:
        engine: Engine to use; the configured database is initialized when
            omitted.
        clock: Timestamp source, UTC wall clock by default.
        id_factory: Surrogate id allocator, ``generate_id`` by default.
    """
    if engine is None:
        engine = init_db()
    context = StoreContext(
        session_factory=get_session_factory(engine),
        clock=clock or utc_now,
        id_factory=id_factory or generate_id,
    )
    return Stores(
        engine=engine,
        context=context,
        tags=TagRepository(context),
        folders=FolderRepository(context),
        notes=NoteRepository(context),
        marks=MarkRepository(context),
    )
