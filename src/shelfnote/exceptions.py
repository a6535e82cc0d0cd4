"""Custom exceptions for the Shelfnote content store.

Every store operation either succeeds or raises exactly one of the errors
below. Each carries a machine-readable ErrorCode so callers can tell the
failure kinds apart without parsing messages.
"""
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCode(Enum):
    """Error codes for machine-readable error identification."""

    # Lookup errors (1xxx)
    NOT_FOUND = 1001

    # Integrity errors (2xxx)
    DUPLICATE_NAME = 2001
    INVALID_PARENT = 2002
    CYCLE_DETECTED = 2003
    HAS_CHILDREN = 2004
    HAS_NOTES = 2005
    TAG_IN_USE = 2006

    # Lifecycle errors (3xxx)
    NOT_DELETED = 3001

    # Storage errors (4xxx)
    STORAGE_READ_FAILED = 4001
    STORAGE_WRITE_FAILED = 4002

    # Validation errors (7xxx)
    VALIDATION_FAILED = 7001


class ShelfnoteError(Exception):
    """Base exception for all Shelfnote errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for serialization."""
        return {
            "error": self.__class__.__name__,
            "code": self.code.value,
            "code_name": self.code.name,
            "message": self.message,
            "details": self.details
        }

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"[{self.code.name}] {self.message} ({detail_str})"
        return f"[{self.code.name}] {self.message}"


class NotFoundError(ShelfnoteError):
    """Raised when an id does not resolve to an existing row."""

    def __init__(self, entity: str, entity_id: str, message: Optional[str] = None):
        super().__init__(
            message or f"{entity.capitalize()} with ID '{entity_id}' not found",
            code=ErrorCode.NOT_FOUND,
            details={"entity": entity, "id": entity_id}
        )
        self.entity = entity
        self.entity_id = entity_id


class DuplicateNameError(ShelfnoteError):
    """Raised when a tag name collides with an existing tag."""

    def __init__(self, name: str, existing_id: Optional[str] = None):
        details: Dict[str, Any] = {"name": name}
        if existing_id:
            details["existing_id"] = existing_id
        super().__init__(
            f"A tag named '{name}' already exists",
            code=ErrorCode.DUPLICATE_NAME,
            details=details
        )
        self.name = name
        self.existing_id = existing_id


class InvalidParentError(ShelfnoteError):
    """Raised when a folder parent is missing or soft-deleted."""

    def __init__(self, parent_id: str, folder_id: Optional[str] = None):
        details: Dict[str, Any] = {"parent_id": parent_id}
        if folder_id:
            details["folder_id"] = folder_id
        super().__init__(
            f"Parent folder '{parent_id}' does not exist or has been deleted",
            code=ErrorCode.INVALID_PARENT,
            details=details
        )
        self.parent_id = parent_id
        self.folder_id = folder_id


class CycleDetectedError(ShelfnoteError):
    """Raised when a folder move would make a folder its own ancestor."""

    def __init__(self, folder_id: str, parent_id: Optional[str] = None,
                 message: Optional[str] = None):
        details: Dict[str, Any] = {"folder_id": folder_id}
        if parent_id:
            details["parent_id"] = parent_id
        super().__init__(
            message or (
                f"Moving folder '{folder_id}' under '{parent_id}' "
                "would create a circular reference"
            ),
            code=ErrorCode.CYCLE_DETECTED,
            details=details
        )
        self.folder_id = folder_id
        self.parent_id = parent_id


class HasChildrenError(ShelfnoteError):
    """Raised when deleting a folder that still has live sub-folders."""

    def __init__(self, folder_id: str, child_ids: Optional[List[str]] = None):
        details: Dict[str, Any] = {"folder_id": folder_id}
        if child_ids:
            details["child_ids"] = child_ids[:10]  # Truncate for safety
        super().__init__(
            f"Cannot delete folder '{folder_id}': it contains sub-folders. "
            "Delete or move them first.",
            code=ErrorCode.HAS_CHILDREN,
            details=details
        )
        self.folder_id = folder_id
        self.child_ids: List[str] = list(child_ids) if child_ids else []


class HasNotesError(ShelfnoteError):
    """Raised when deleting a folder that still holds live notes."""

    def __init__(self, folder_id: str, note_count: int = 0):
        super().__init__(
            f"Cannot delete folder '{folder_id}': {note_count} note(s) belong to it. "
            "Delete or move them first.",
            code=ErrorCode.HAS_NOTES,
            details={"folder_id": folder_id, "note_count": note_count}
        )
        self.folder_id = folder_id
        self.note_count = note_count


class TagInUseError(ShelfnoteError):
    """Raised when an unused-tag cleanup finds the tag attached to notes again."""

    def __init__(self, tag_id: str, note_count: int):
        super().__init__(
            f"Tag '{tag_id}' is attached to {note_count} note(s)",
            code=ErrorCode.TAG_IN_USE,
            details={"tag_id": tag_id, "note_count": note_count}
        )
        self.tag_id = tag_id
        self.note_count = note_count


class NotDeletedError(ShelfnoteError):
    """Raised when restoring an entity that is not in the recycle bin."""

    def __init__(self, entity: str, entity_id: str):
        super().__init__(
            f"{entity.capitalize()} '{entity_id}' is not deleted, nothing to restore",
            code=ErrorCode.NOT_DELETED,
            details={"entity": entity, "id": entity_id}
        )
        self.entity = entity
        self.entity_id = entity_id


class ValidationFailedError(ShelfnoteError):
    """Raised when input fails one or more validation rules.

    Attributes:
        violations: Every (field, message) pair collected by the validators,
            in the order the rules ran.
    """

    def __init__(self, violations: List[Any], message: Optional[str] = None):
        self.violations = list(violations)
        fields = []
        for violation in self.violations:
            if violation.field not in fields:
                fields.append(violation.field)
        super().__init__(
            message or "; ".join(v.message for v in self.violations) or "Validation failed",
            code=ErrorCode.VALIDATION_FAILED,
            details={"fields": fields, "violation_count": len(self.violations)}
        )

    def messages_for(self, field: str) -> List[str]:
        """Return the violation messages recorded against one field."""
        return [v.message for v in self.violations if v.field == field]


class StorageError(ShelfnoteError):
    """Raised when the storage engine reports a failure."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        code: ErrorCode = ErrorCode.STORAGE_WRITE_FAILED,
        original_error: Optional[Exception] = None
    ):
        details: Dict[str, Any] = {}
        if operation:
            details["operation"] = operation
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.original_error = original_error
