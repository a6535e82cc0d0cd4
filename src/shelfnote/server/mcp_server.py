"""MCP server implementation for the Shelfnote content store."""

import json
import logging
import uuid
from typing import Any, Optional

from mcp.server.fastmcp import FastMCP
from pydantic import BaseModel

from shelfnote.config import config
from shelfnote.exceptions import ShelfnoteError
from shelfnote.observability import metrics, timed_operation
from shelfnote.services.content_service import ContentService
from shelfnote.storage.stores import Stores, open_stores
from shelfnote.utils import parse_id_list

logger = logging.getLogger(__name__)


def _to_json(value: Any) -> str:
    """Render models (or lists of models) as indented JSON."""
    if isinstance(value, BaseModel):
        data = value.model_dump(mode="json")
    elif isinstance(value, list):
        data = [v.model_dump(mode="json") if isinstance(v, BaseModel) else v for v in value]
    else:
        data = value
    return json.dumps(data, indent=2, ensure_ascii=False)


class ShelfnoteMcpServer:
    """MCP server exposing folders, notes, tags and marks as tools."""

    def __init__(self, stores: Optional[Stores] = None):
        """Initialize the MCP server.

        Args:
            stores: Repository bundle to serve. Opened on the configured
                database when None.
        """
        self.mcp = FastMCP(config.server_name)
        self.stores = stores if stores is not None else open_stores()
        self.service = ContentService(self.stores)
        self._register_tools()
        logger.info(f"Shelfnote MCP server initialized ({self.stores.engine.url})")

    def run(self) -> None:
        """Serve over stdio until the client disconnects."""
        try:
            self.mcp.run()
        finally:
            metrics.save_metrics()
            self.stores.close()

    def format_error_response(self, error: Exception) -> str:
        """Format an error response in a consistent way.

        Domain errors keep their code and message since they describe the
        caller's input; anything else is logged in full and reported with a
        reference id only.
        """
        error_id = str(uuid.uuid4())[:8]

        if isinstance(error, ShelfnoteError):
            logger.warning(
                f"[{error.code.name}] [{error_id}]: {error.message}",
                extra={"error_details": error.details},
            )
            return f"Error: [{error.code.name}] {error.message}"
        elif isinstance(error, ValueError):
            logger.error(f"Invalid input [{error_id}]: {error}")
            return f"Error: Invalid input (ref: {error_id})"
        else:
            logger.error(f"Unexpected error [{error_id}]: {error}", exc_info=True)
            return f"Error: An unexpected error occurred (ref: {error_id})"

    def _register_tools(self) -> None:
        """Register MCP tools."""
        self._register_folder_tools()
        self._register_note_tools()
        self._register_tag_tools()
        self._register_mark_tools()

        @self.mcp.tool(name="shelf_status")
        def shelf_status() -> str:
            """Show server identity, entity counts and operation metrics."""
            with timed_operation("shelf_status"):
                try:
                    status = {
                        "server": config.server_name,
                        "version": config.server_version,
                        "folders": len(self.service.list_folders()),
                        "notes": len(self.service.list_notes()),
                        "notes_in_trash": len(self.service.list_deleted_notes()),
                        "tags": len(self.service.list_tags()),
                        "marks": len(self.service.list_marks()),
                        "marks_in_trash": len(self.service.list_mark_trash()),
                        "metrics": metrics.get_summary(),
                    }
                    return _to_json(status)
                except Exception as e:
                    return self.format_error_response(e)

    def _register_folder_tools(self) -> None:
        @self.mcp.tool(name="shelf_list_folders")
        def shelf_list_folders(include_deleted: bool = False) -> str:
            """List folders in sort order with their note counts.
            Args:
                include_deleted: Also list folders in the recycle bin
            """
            with timed_operation("shelf_list_folders") as op:
                try:
                    folders = self.service.list_folders(include_deleted=include_deleted)
                    op["result_count"] = len(folders)
                    return _to_json(folders)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="shelf_get_folder")
        def shelf_get_folder(folder_id: str) -> str:
            """Get one folder by ID.
            Args:
                folder_id: ID of the folder
            """
            with timed_operation("shelf_get_folder", folder_id=folder_id):
                try:
                    return _to_json(self.service.get_folder(folder_id))
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="shelf_create_folder")
        def shelf_create_folder(
            name: str,
            parent_id: Optional[str] = None,
            color: Optional[str] = None,
            icon: Optional[str] = None,
        ) -> str:
            """Create a folder.
            Args:
                name: Folder name (1-100 characters)
                parent_id: ID of the parent folder; omit for a root folder
                color: Optional display color
                icon: Optional display icon
            """
            with timed_operation("shelf_create_folder", name=name[:30]) as op:
                try:
                    folder = self.service.create_folder(
                        name=name, parent_id=parent_id, color=color, icon=icon
                    )
                    op["folder_id"] = folder.id
                    return _to_json(folder)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="shelf_update_folder")
        def shelf_update_folder(
            folder_id: str,
            name: Optional[str] = None,
            parent_id: Optional[str] = None,
            color: Optional[str] = None,
            icon: Optional[str] = None,
            sort_order: Optional[int] = None,
        ) -> str:
            """Update a folder. Omitted fields are left unchanged.
            Args:
                folder_id: ID of the folder
                name: New name
                parent_id: New parent ID; an empty string moves the folder to the root
                color: New color; an empty string clears it
                icon: New icon; an empty string clears it
                sort_order: New position among siblings
            """
            with timed_operation("shelf_update_folder", folder_id=folder_id):
                try:
                    folder = self.service.update_folder(
                        folder_id,
                        name=name,
                        parent_id=parent_id,
                        color=color,
                        icon=icon,
                        sort_order=sort_order,
                    )
                    return _to_json(folder)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="shelf_move_folder")
        def shelf_move_folder(folder_id: str, new_parent_id: Optional[str] = None) -> str:
            """Move a folder under another folder, or to the root.
            Args:
                folder_id: ID of the folder to move
                new_parent_id: ID of the new parent; omit to move to the root
            """
            with timed_operation("shelf_move_folder", folder_id=folder_id):
                try:
                    return _to_json(self.service.move_folder(folder_id, new_parent_id))
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="shelf_delete_folder")
        def shelf_delete_folder(folder_id: str, permanent: bool = False) -> str:
            """Delete an empty folder.
            Args:
                folder_id: ID of the folder
                permanent: Remove it for good instead of moving it to the recycle bin
            """
            with timed_operation("shelf_delete_folder", folder_id=folder_id, permanent=permanent):
                try:
                    if permanent:
                        result = self.service.permanent_delete_folder(folder_id)
                        return f"Folder permanently deleted: {result.id}"
                    result = self.service.soft_delete_folder(folder_id)
                    return f"Folder moved to recycle bin: {result.id}"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="shelf_restore_folder")
        def shelf_restore_folder(folder_id: str) -> str:
            """Restore a folder from the recycle bin.
            Args:
                folder_id: ID of the folder
            """
            with timed_operation("shelf_restore_folder", folder_id=folder_id):
                try:
                    return _to_json(self.service.restore_folder(folder_id))
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="shelf_folder_tree")
        def shelf_folder_tree() -> str:
            """Show live folders as a nested tree."""
            with timed_operation("shelf_folder_tree") as op:
                try:
                    tree = self.service.get_folder_tree()
                    op["root_count"] = len(tree)
                    return _to_json(tree)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="shelf_folder_path")
        def shelf_folder_path(folder_id: str) -> str:
            """Show the folders from the root down to a folder.
            Args:
                folder_id: ID of the folder
            """
            with timed_operation("shelf_folder_path", folder_id=folder_id):
                try:
                    path = self.service.get_folder_path(folder_id)
                    return " / ".join(f.name for f in path)
                except Exception as e:
                    return self.format_error_response(e)

    def _register_note_tools(self) -> None:
        @self.mcp.tool(name="shelf_list_notes")
        def shelf_list_notes(
            folder_id: Optional[str] = None,
            search: Optional[str] = None,
            favorites_only: bool = False,
            include_deleted: bool = False,
        ) -> str:
            """List notes, most recently updated first.
            Args:
                folder_id: Only notes in this folder
                search: Only notes whose title or content contains this text
                favorites_only: Only favorite notes
                include_deleted: Also list notes in the trash
            """
            with timed_operation("shelf_list_notes") as op:
                try:
                    notes = self.service.list_notes(
                        folder_id=folder_id,
                        search=search,
                        favorites_only=favorites_only,
                        include_deleted=include_deleted,
                    )
                    op["result_count"] = len(notes)
                    return _to_json(notes)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="shelf_list_deleted_notes")
        def shelf_list_deleted_notes() -> str:
            """List the notes in the trash."""
            with timed_operation("shelf_list_deleted_notes") as op:
                try:
                    notes = self.service.list_deleted_notes()
                    op["result_count"] = len(notes)
                    return _to_json(notes)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="shelf_get_note")
        def shelf_get_note(note_id: str, include_deleted: bool = False) -> str:
            """Get one note by ID.
            Args:
                note_id: ID of the note
                include_deleted: Also find the note if it is in the trash
            """
            with timed_operation("shelf_get_note", note_id=note_id):
                try:
                    return _to_json(self.service.get_note(note_id, include_deleted=include_deleted))
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="shelf_create_note")
        def shelf_create_note(
            title: str,
            content: str = "",
            folder_id: Optional[str] = None,
            tag_ids: Optional[str] = None,
        ) -> str:
            """Create a note.
            Args:
                title: Note title (1-200 characters)
                content: Note body
                folder_id: Folder to file the note in; omit for an unfiled note
                tag_ids: Comma-separated tag IDs
            """
            with timed_operation("shelf_create_note", title=title[:30]) as op:
                try:
                    note = self.service.create_note(
                        title=title,
                        content=content,
                        folder_id=folder_id,
                        tag_ids=parse_id_list(tag_ids) if tag_ids else [],
                    )
                    op["note_id"] = note.id
                    return _to_json(note)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="shelf_update_note")
        def shelf_update_note(
            note_id: str,
            title: Optional[str] = None,
            content: Optional[str] = None,
            folder_id: Optional[str] = None,
            tag_ids: Optional[str] = None,
        ) -> str:
            """Update a note. Omitted fields are left unchanged.
            Args:
                note_id: ID of the note
                title: New title
                content: New body
                folder_id: New folder; an empty string unfiles the note
                tag_ids: Comma-separated tag IDs replacing the current set; an
                    empty string removes every tag
            """
            with timed_operation("shelf_update_note", note_id=note_id):
                try:
                    note = self.service.update_note(
                        note_id,
                        title=title,
                        content=content,
                        folder_id=folder_id,
                        tag_ids=parse_id_list(tag_ids) if tag_ids is not None else None,
                    )
                    return _to_json(note)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="shelf_delete_note")
        def shelf_delete_note(note_id: str, permanent: bool = False) -> str:
            """Delete a note.
            Args:
                note_id: ID of the note
                permanent: Remove it for good instead of moving it to the trash
            """
            with timed_operation("shelf_delete_note", note_id=note_id, permanent=permanent):
                try:
                    if permanent:
                        result = self.service.permanent_delete_note(note_id)
                        return f"Note permanently deleted: {result.id}"
                    result = self.service.soft_delete_note(note_id)
                    return f"Note moved to trash: {result.id}"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="shelf_restore_note")
        def shelf_restore_note(note_id: str) -> str:
            """Restore a note from the trash.
            Args:
                note_id: ID of the note
            """
            with timed_operation("shelf_restore_note", note_id=note_id):
                try:
                    return _to_json(self.service.restore_note(note_id))
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="shelf_toggle_favorite")
        def shelf_toggle_favorite(note_id: str) -> str:
            """Mark a note as favorite, or unmark it.
            Args:
                note_id: ID of the note
            """
            with timed_operation("shelf_toggle_favorite", note_id=note_id):
                try:
                    note = self.service.toggle_favorite(note_id)
                    state = "added to" if note.is_favorite else "removed from"
                    return f"Note {note.id} {state} favorites"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="shelf_batch_delete_notes")
        def shelf_batch_delete_notes(note_ids: str) -> str:
            """Move several notes to the trash.
            Args:
                note_ids: Comma-separated note IDs (1-100)
            """
            with timed_operation("shelf_batch_delete_notes") as op:
                try:
                    result = self.service.batch_soft_delete_notes(parse_id_list(note_ids))
                    op["failed"] = result.failed
                    return _to_json(result)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="shelf_batch_restore_notes")
        def shelf_batch_restore_notes(note_ids: str) -> str:
            """Restore several notes from the trash.
            Args:
                note_ids: Comma-separated note IDs (1-100)
            """
            with timed_operation("shelf_batch_restore_notes") as op:
                try:
                    result = self.service.batch_restore_notes(parse_id_list(note_ids))
                    op["failed"] = result.failed
                    return _to_json(result)
                except Exception as e:
                    return self.format_error_response(e)

    def _register_tag_tools(self) -> None:
        @self.mcp.tool(name="shelf_list_tags")
        def shelf_list_tags(search: Optional[str] = None) -> str:
            """List tags by name with their note counts.
            Args:
                search: Only tags whose name contains this text
            """
            with timed_operation("shelf_list_tags") as op:
                try:
                    tags = self.service.list_tags(search=search)
                    op["result_count"] = len(tags)
                    return _to_json(tags)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="shelf_get_tag")
        def shelf_get_tag(tag_id: str) -> str:
            """Get one tag by ID.
            Args:
                tag_id: ID of the tag
            """
            with timed_operation("shelf_get_tag", tag_id=tag_id):
                try:
                    return _to_json(self.service.get_tag(tag_id))
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="shelf_create_tag")
        def shelf_create_tag(name: str, color: Optional[str] = None) -> str:
            """Create a tag.
            Args:
                name: Unique tag name (1-50 characters)
                color: Optional hex color such as #FF0000
            """
            with timed_operation("shelf_create_tag", name=name[:30]) as op:
                try:
                    tag = self.service.create_tag(name=name, color=color)
                    op["tag_id"] = tag.id
                    return _to_json(tag)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="shelf_update_tag")
        def shelf_update_tag(
            tag_id: str, name: Optional[str] = None, color: Optional[str] = None
        ) -> str:
            """Rename or recolor a tag.
            Args:
                tag_id: ID of the tag
                name: New unique name
                color: New hex color; an empty string clears it
            """
            with timed_operation("shelf_update_tag", tag_id=tag_id):
                try:
                    return _to_json(self.service.update_tag(tag_id, name=name, color=color))
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="shelf_delete_tag")
        def shelf_delete_tag(tag_id: str) -> str:
            """Delete a tag. Notes lose the tag and the tag's marks are removed.
            Args:
                tag_id: ID of the tag
            """
            with timed_operation("shelf_delete_tag", tag_id=tag_id):
                try:
                    result = self.service.delete_tag(tag_id)
                    return f"Tag deleted: {result.id}"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="shelf_unused_tags")
        def shelf_unused_tags() -> str:
            """List tags not attached to any note."""
            with timed_operation("shelf_unused_tags") as op:
                try:
                    tags = self.service.find_unused_tags()
                    op["result_count"] = len(tags)
                    return _to_json(tags)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="shelf_most_used_tags")
        def shelf_most_used_tags(limit: Optional[int] = None) -> str:
            """List the most used tags.
            Args:
                limit: Maximum number of tags (defaults to the configured limit)
            """
            with timed_operation("shelf_most_used_tags") as op:
                try:
                    tags = self.service.find_most_used_tags(limit=limit)
                    op["result_count"] = len(tags)
                    return _to_json(tags)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="shelf_cleanup_tags")
        def shelf_cleanup_tags() -> str:
            """Delete every tag that is not attached to any note."""
            with timed_operation("shelf_cleanup_tags") as op:
                try:
                    result = self.service.cleanup_unused_tags()
                    op["deleted_count"] = result.deleted_count
                    return _to_json(result)
                except Exception as e:
                    return self.format_error_response(e)

    def _register_mark_tools(self) -> None:
        @self.mcp.tool(name="shelf_list_marks")
        def shelf_list_marks(tag_id: Optional[str] = None, include_deleted: bool = False) -> str:
            """List marks in creation order.
            Args:
                tag_id: Only the live marks of this tag
                include_deleted: Also list marks in the recycle bin (ignored with tag_id)
            """
            with timed_operation("shelf_list_marks") as op:
                try:
                    marks = self.service.list_marks(tag_id=tag_id, include_deleted=include_deleted)
                    op["result_count"] = len(marks)
                    return _to_json(marks)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="shelf_get_mark")
        def shelf_get_mark(mark_id: str) -> str:
            """Get one mark by ID.
            Args:
                mark_id: ID of the mark
            """
            with timed_operation("shelf_get_mark", mark_id=mark_id):
                try:
                    return _to_json(self.service.get_mark(mark_id))
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="shelf_create_mark")
        def shelf_create_mark(
            tag_id: str,
            type: str,
            content: Optional[str] = None,
            url: Optional[str] = None,
            desc: Optional[str] = None,
        ) -> str:
            """Create a mark under a tag.
            Args:
                tag_id: ID of the tag
                type: One of text, image, link, file, scan
                content: Payload text
                url: Payload location
                desc: Short description (up to 500 characters)
            """
            with timed_operation("shelf_create_mark", tag_id=tag_id) as op:
                try:
                    mark = self.service.create_mark(
                        tag_id=tag_id, type=type.lower(), content=content, url=url, desc=desc
                    )
                    op["mark_id"] = mark.id
                    return _to_json(mark)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="shelf_update_mark")
        def shelf_update_mark(
            mark_id: str,
            tag_id: Optional[str] = None,
            type: Optional[str] = None,
            content: Optional[str] = None,
            url: Optional[str] = None,
            desc: Optional[str] = None,
        ) -> str:
            """Update a mark. Omitted fields are left unchanged.
            Args:
                mark_id: ID of the mark
                tag_id: Move the mark to another tag
                type: New type
                content: New payload text; an empty string clears it
                url: New payload location; an empty string clears it
                desc: New description; an empty string clears it
            """
            with timed_operation("shelf_update_mark", mark_id=mark_id):
                try:
                    mark = self.service.update_mark(
                        mark_id,
                        tag_id=tag_id,
                        type=type.lower() if type else None,
                        content=content,
                        url=url,
                        desc=desc,
                    )
                    return _to_json(mark)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="shelf_delete_mark")
        def shelf_delete_mark(mark_id: str, permanent: bool = False) -> str:
            """Delete a mark.
            Args:
                mark_id: ID of the mark
                permanent: Remove it for good instead of moving it to the recycle bin
            """
            with timed_operation("shelf_delete_mark", mark_id=mark_id, permanent=permanent):
                try:
                    if permanent:
                        result = self.service.permanent_delete_mark(mark_id)
                        return f"Mark permanently deleted: {result.id}"
                    result = self.service.soft_delete_mark(mark_id)
                    return f"Mark moved to recycle bin: {result.id}"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="shelf_restore_mark")
        def shelf_restore_mark(mark_id: str) -> str:
            """Restore a mark from the recycle bin.
            Args:
                mark_id: ID of the mark
            """
            with timed_operation("shelf_restore_mark", mark_id=mark_id):
                try:
                    return _to_json(self.service.restore_mark(mark_id))
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="shelf_list_mark_trash")
        def shelf_list_mark_trash() -> str:
            """List the marks in the recycle bin."""
            with timed_operation("shelf_list_mark_trash") as op:
                try:
                    marks = self.service.list_mark_trash()
                    op["result_count"] = len(marks)
                    return _to_json(marks)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="shelf_clear_mark_trash")
        def shelf_clear_mark_trash() -> str:
            """Permanently remove every mark in the recycle bin."""
            with timed_operation("shelf_clear_mark_trash") as op:
                try:
                    result = self.service.clear_mark_trash()
                    op["deleted_count"] = result.deleted_count
                    return f"Removed {result.deleted_count} mark(s) from the recycle bin"
                except Exception as e:
                    return self.format_error_response(e)
