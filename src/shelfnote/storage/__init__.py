"""Storage layer for the Shelfnote content store."""

from shelfnote.storage.base import StoreContext
from shelfnote.storage.folder_repository import FolderRepository
from shelfnote.storage.mark_repository import MarkRepository
from shelfnote.storage.note_repository import NoteRepository
from shelfnote.storage.stores import Stores, open_stores
from shelfnote.storage.tag_repository import TagRepository

__all__ = [
    "StoreContext",
    "FolderRepository",
    "NoteRepository",
    "TagRepository",
    "MarkRepository",
    "Stores",
    "open_stores",
]
