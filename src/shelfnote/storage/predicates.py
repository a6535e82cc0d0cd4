"""Composable filter predicates for list queries.

Repositories build their WHERE clauses from these helpers instead of
handling SQLAlchemy expressions directly, so filters stay reusable and an
empty filter means "no WHERE clause at all".
"""
from dataclasses import dataclass
from typing import Any, Optional, Sequence, Union

from sqlalchemy import and_, false, or_
from sqlalchemy.sql import Select
from sqlalchemy.sql.elements import ColumnElement

from shelfnote.utils import escape_like_pattern

Field = Any


@dataclass(frozen=True)
class Predicate:
    """An opaque, combinable filter condition."""

    clause: ColumnElement

    def __and__(self, other: "Predicate") -> "Predicate":
        return Predicate(and_(self.clause, other.clause))

    def __or__(self, other: "Predicate") -> "Predicate":
        return Predicate(or_(self.clause, other.clause))


def equals(field: Field, value: Any) -> Predicate:
    """Match rows whose field equals value (``None`` matches NULL)."""
    if value is None:
        return Predicate(field.is_(None))
    return Predicate(field == value)


def substring(fields: Union[Field, Sequence[Field]], text: Optional[str]) -> Optional[Predicate]:
    """Match rows where any of the fields contains text.

    Returns None (no predicate) when text is empty or whitespace-only, so a
    blank search box never filters anything out. Wildcards in text are
    escaped and match literally.
    """
    if text is None or not text.strip():
        return None
    if not isinstance(fields, (list, tuple)):
        fields = [fields]
    if not fields:
        return None

    pattern = f"%{escape_like_pattern(text)}%"
    clauses = [field.like(pattern, escape="\\") for field in fields]
    if len(clauses) == 1:
        return Predicate(clauses[0])
    return Predicate(or_(*clauses))


def exclude_soft_deleted(field: Field) -> Predicate:
    """Match rows whose soft-delete flag is false."""
    return Predicate(field == false())


def combine_all(*predicates: Optional[Predicate]) -> Optional[Predicate]:
    """AND together every predicate that is not None.

    Returns None for zero predicates and the predicate itself (unchanged)
    when only one is left.
    """
    valid = [p for p in predicates if p is not None]
    if not valid:
        return None
    if len(valid) == 1:
        return valid[0]
    return Predicate(and_(*(p.clause for p in valid)))


def apply(query: Select, predicate: Optional[Predicate]) -> Select:
    """Attach a predicate to a select; a None predicate leaves it untouched."""
    if predicate is None:
        return query
    return query.where(predicate.clause)
