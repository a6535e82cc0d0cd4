"""Shared primitives used by every repository.

Repositories receive a StoreContext instead of inheriting from a base class:
it carries the session factory, the clock and the id allocator, and the
module-level helpers below work on whatever session the caller is in.
"""
import datetime
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Type

from sqlalchemy import exists as sql_exists, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from shelfnote.exceptions import NotFoundError, ShelfnoteError, StorageError
from shelfnote.models.schema import generate_id, utc_now

logger = logging.getLogger(__name__)


@dataclass
class StoreContext:
    """Collaborators shared by all repositories of one store."""

    session_factory: sessionmaker
    clock: Callable[[], datetime.datetime] = field(default=utc_now)
    id_factory: Callable[[], str] = field(default=generate_id)

    def now(self) -> datetime.datetime:
        """Current timestamp from the injected clock."""
        return self.clock()

    def new_id(self) -> str:
        """Allocate a fresh surrogate id."""
        return self.id_factory()

    @contextmanager
    def transaction(self, operation: str = "write") -> Iterator[Session]:
        """Run a unit of work atomically.

        Commits when the block exits normally. Any exception rolls back every
        statement of the block; domain errors propagate unchanged while
        engine failures are wrapped in StorageError.
        """
        try:
            with self.session_factory.begin() as session:
                yield session
        except ShelfnoteError:
            raise
        except (IntegrityError, OperationalError) as e:
            logger.error(f"Storage failure during {operation}: {e}")
            raise StorageError(
                f"Storage engine failed during {operation}",
                operation=operation,
                original_error=e,
            ) from e


def exists(session: Session, model: Type[Any], entity_id: str) -> bool:
    """Check whether a row with the given primary key exists."""
    return bool(
        session.scalar(select(sql_exists().where(model.id == entity_id)))
    )


def require(session: Session, model: Type[Any], entity_id: str, entity: str) -> Any:
    """Load a row by primary key or raise NotFoundError.

    Args:
        session: Active session.
        model: ORM model class.
        entity_id: Primary key to look up.
        entity: Entity name used in the error ("folder", "note", ...).
    """
    row = session.get(model, entity_id)
    if row is None:
        raise NotFoundError(entity, entity_id)
    return row
