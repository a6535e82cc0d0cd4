"""Data models for the Shelfnote content store."""

import datetime
import os
import threading
from datetime import timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime.

    Returns:
        Current time with UTC timezone info attached.
    """
    return datetime.datetime.now(timezone.utc)


def ensure_timezone_aware(dt_value: Optional[datetime.datetime]) -> datetime.datetime:
    """Ensure a datetime is timezone-aware, treating naive datetimes as UTC.

    SQLite hands timestamps back without tzinfo, so every value read from the
    database goes through here before it reaches a model.

    Args:
        dt_value: A datetime that may or may not have timezone info.

    Returns:
        The same datetime with UTC timezone if it was naive, otherwise unchanged.
    """
    if dt_value is None:
        return utc_now()
    if dt_value.tzinfo is None:
        return dt_value.replace(tzinfo=timezone.utc)
    return dt_value


# Thread-safe counter for uniqueness (seeded from PID for cross-process safety)
_id_lock = threading.Lock()
_EPOCH = datetime.datetime(1970, 1, 1, tzinfo=timezone.utc)
_last_timestamp = 0
_counter = (
    os.getpid() * 7
) % 1_000_000  # PID-based seed prevents multiprocess collisions


def generate_id() -> str:
    """Generate a timestamp-based surrogate ID with guaranteed uniqueness.

    Returns:
        A string in format "YYYYMMDDTHHMMSSsssssscccccc" where:
        - YYYYMMDD is the date
        - T is the ISO 8601 date/time separator
        - HHMMSS is the time (hours, minutes, seconds)
        - ssssss is the 6-digit microsecond component
        - cccccc is a 6-digit counter for same-microsecond uniqueness

    IDs sort in allocation order within a process, which the tag usage
    projection relies on to break ties by insertion order.
    """
    global _last_timestamp, _counter

    with _id_lock:
        now = utc_now()
        current_timestamp = (now - _EPOCH) // datetime.timedelta(microseconds=1)

        # If multiple IDs generated in same microsecond, increment counter
        if current_timestamp <= _last_timestamp:
            _counter += 1
            # Counter exhausted: borrow the next microsecond so order holds
            if _counter >= 1_000_000:
                _last_timestamp += 1
                _counter = 0
        else:
            _last_timestamp = current_timestamp
            _counter = (
                os.getpid() * 7
            ) % 1_000_000  # Re-seed from PID on new microsecond

        now = _EPOCH + datetime.timedelta(microseconds=_last_timestamp)
        date_time = now.strftime("%Y%m%dT%H%M%S")
        microseconds = now.microsecond

        return f"{date_time}{microseconds:06d}{_counter:06d}"


class MarkType(str, Enum):
    """Kinds of payload a mark can carry."""

    TEXT = "text"
    IMAGE = "image"
    LINK = "link"
    FILE = "file"
    SCAN = "scan"


# ---------------------------------------------------------------------------
# Entities returned by the stores
# ---------------------------------------------------------------------------


class Folder(BaseModel):
    """A folder in the hierarchy."""

    id: str = Field(..., description="Unique ID of the folder")
    name: str = Field(..., description="Display name (1-100 characters)")
    parent_id: Optional[str] = Field(
        default=None, description="Parent folder ID, None for a root folder"
    )
    color: Optional[str] = Field(default=None, description="Display color hint")
    icon: Optional[str] = Field(default=None, description="Display icon hint")
    is_deleted: bool = Field(default=False, description="Soft-delete flag")
    sort_order: int = Field(default=0, description="Ordering among siblings")
    created_at: datetime.datetime = Field(default_factory=utc_now)
    updated_at: datetime.datetime = Field(default_factory=utc_now)
    note_count: int = Field(
        default=0, description="Number of non-deleted notes in the folder"
    )

    model_config = {"extra": "forbid"}


class FolderTreeNode(Folder):
    """A folder with its nested sub-folders, as assembled by the tree view."""

    children: List["FolderTreeNode"] = Field(default_factory=list)


FolderTreeNode.model_rebuild()


class Note(BaseModel):
    """A note, with the ids of the tags attached to it."""

    id: str = Field(..., description="Unique ID of the note")
    title: str = Field(..., description="Title of the note")
    content: str = Field(default="", description="Body of the note")
    folder_id: Optional[str] = Field(
        default=None, description="Folder holding the note, None for unfiled"
    )
    is_favorite: bool = Field(default=False)
    is_deleted: bool = Field(default=False)
    created_at: datetime.datetime = Field(default_factory=utc_now)
    updated_at: datetime.datetime = Field(default_factory=utc_now)
    tag_ids: List[str] = Field(
        default_factory=list, description="Tags attached through the join table"
    )

    model_config = {"extra": "forbid"}


class Tag(BaseModel):
    """A tag for categorizing notes."""

    id: str = Field(..., description="Unique ID of the tag")
    name: str = Field(..., description="Tag name, unique across all tags")
    color: Optional[str] = Field(default=None, description="Hex color such as #FF0000")
    created_at: datetime.datetime = Field(default_factory=utc_now)
    updated_at: datetime.datetime = Field(default_factory=utc_now)
    note_count: int = Field(
        default=0, description="Number of notes the tag is attached to"
    )

    model_config = {"extra": "forbid"}

    def __str__(self) -> str:
        """Return string representation of tag."""
        return self.name


class Mark(BaseModel):
    """A typed record scoped to a tag."""

    id: str = Field(..., description="Unique ID of the mark")
    tag_id: str = Field(..., description="Tag the mark belongs to")
    type: MarkType = Field(..., description="Payload kind")
    content: Optional[str] = None
    url: Optional[str] = None
    desc: Optional[str] = None
    deleted: bool = Field(default=False, description="True while in the recycle bin")
    created_at: datetime.datetime = Field(default_factory=utc_now)

    model_config = {"extra": "forbid"}


# ---------------------------------------------------------------------------
# Inputs accepted by the stores
#
# Update models are partial: only the fields a caller actually sets are
# applied (see ``model_fields_set``), so an explicit ``None`` is different
# from "leave unchanged".
# ---------------------------------------------------------------------------


class FolderCreate(BaseModel):
    """Fields for a new folder."""

    name: str
    parent_id: Optional[str] = None
    color: Optional[str] = None
    icon: Optional[str] = None

    model_config = {"extra": "forbid"}


class FolderUpdate(BaseModel):
    """Partial update of a folder; ``parent_id=None`` moves it to the root."""

    name: Optional[str] = None
    parent_id: Optional[str] = None
    color: Optional[str] = None
    icon: Optional[str] = None
    sort_order: Optional[int] = None

    model_config = {"extra": "forbid"}


class NoteCreate(BaseModel):
    """Fields for a new note."""

    title: str
    content: str = ""
    folder_id: Optional[str] = None
    tag_ids: List[str] = Field(default_factory=list)

    model_config = {"extra": "forbid"}


class NoteUpdate(BaseModel):
    """Partial update of a note.

    When ``tag_ids`` is set, the note's whole tag set is replaced by it.
    """

    title: Optional[str] = None
    content: Optional[str] = None
    folder_id: Optional[str] = None
    tag_ids: Optional[List[str]] = None
    is_favorite: Optional[bool] = None

    model_config = {"extra": "forbid"}

    @field_validator("tag_ids")
    @classmethod
    def validate_tag_ids(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        """A tag set may be emptied but not nulled."""
        if v is None:
            raise ValueError("tag_ids cannot be null; pass an empty list to clear tags")
        return v


class NoteFilter(BaseModel):
    """Criteria for listing notes."""

    folder_id: Optional[str] = None
    search: Optional[str] = None
    favorites_only: bool = False
    include_deleted: bool = False
    deleted_only: bool = False

    model_config = {"extra": "forbid"}


class TagUpdate(BaseModel):
    """Partial update of a tag."""

    name: Optional[str] = None
    color: Optional[str] = None

    model_config = {"extra": "forbid"}

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            raise ValueError("Tag name cannot be null")
        return v


class MarkCreate(BaseModel):
    """Fields for a new mark."""

    tag_id: str
    type: MarkType
    content: Optional[str] = None
    url: Optional[str] = None
    desc: Optional[str] = None

    model_config = {"extra": "forbid"}


class MarkUpdate(BaseModel):
    """Partial update of a mark."""

    tag_id: Optional[str] = None
    type: Optional[MarkType] = None
    content: Optional[str] = None
    url: Optional[str] = None
    desc: Optional[str] = None

    model_config = {"extra": "forbid"}


# ---------------------------------------------------------------------------
# Operation results
# ---------------------------------------------------------------------------


class DeleteResult(BaseModel):
    """Id-only acknowledgement returned by delete operations."""

    id: str

    model_config = {"frozen": True}


class CleanupFailure(BaseModel):
    """A tag the unused-tag cleanup could not remove."""

    tag_id: str
    name: str
    error: str


class CleanupResult(BaseModel):
    """Outcome of removing every unused tag."""

    deleted_count: int = 0
    deleted_tags: List[Tag] = Field(default_factory=list)
    errors: List[CleanupFailure] = Field(default_factory=list)


class ClearTrashResult(BaseModel):
    """Outcome of emptying the mark recycle bin."""

    deleted_count: int = 0


class BatchFailure(BaseModel):
    """One item of a batch operation that failed."""

    id: str
    error: str


class BatchResult(BaseModel):
    """Per-item outcome of a batch operation."""

    successful: int = 0
    failed: int = 0
    succeeded_ids: List[str] = Field(default_factory=list)
    errors: List[BatchFailure] = Field(default_factory=list)
