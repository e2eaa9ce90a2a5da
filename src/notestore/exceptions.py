"""Custom exceptions for the note storage engine.

Every engine failure is a NoteStoreError carrying an ErrorKind discriminant
(what kind of failure) and an ErrorCode (which specific failure), so callers
can branch on ``err.kind`` instead of on exception types.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(Enum):
    """Coarse failure categories exposed to callers."""

    NOT_FOUND = "not_found"
    CAPACITY_EXCEEDED = "capacity_exceeded"
    VALIDATION = "validation"
    STORE_CORRUPTION = "store_corruption"
    STORAGE = "storage"


class ErrorCode(Enum):
    """Error codes for machine-readable error identification."""

    # Not found errors (1xxx)
    NOTE_NOT_FOUND = 1001
    HISTORY_NOT_FOUND = 1002
    TAG_GROUP_NOT_FOUND = 1003

    # Capacity errors (2xxx)
    CAPACITY_EXCEEDED = 2001

    # Storage errors (4xxx)
    STORAGE_READ_FAILED = 4001
    STORAGE_WRITE_FAILED = 4002
    ID_SPACE_EXHAUSTED = 4003
    EXPORT_FAILED = 4004
    IMPORT_FAILED = 4005

    # Corruption errors (45xx)
    METADATA_MISSING = 4501
    CURRENT_ID_CORRUPTED = 4502
    TOTAL_SIZE_CORRUPTED = 4503
    CAPACITY_CORRUPTED = 4504
    PATCH_LOG_CORRUPTED = 4505

    # Validation errors (7xxx)
    VALIDATION_FAILED = 7001
    TAGS_REQUIRED = 7003
    PATCH_INVALID = 7004
    INVALID_NOTE_TYPE = 7005
    NOTE_ALREADY_EXISTS = 7006
    HISTORY_PROTECTED = 7007
    INVALID_VERSION = 7008


class NoteStoreError(Exception):
    """Base exception for all engine errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """

    kind: ErrorKind = ErrorKind.STORAGE

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for serialization."""
        return {
            "error": self.__class__.__name__,
            "kind": self.kind.value,
            "code": self.code.value,
            "code_name": self.code.name,
            "message": self.message,
            "details": self.details,
        }

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"[{self.code.name}] {self.message} ({detail_str})"
        return f"[{self.code.name}] {self.message}"


class NotFoundError(NoteStoreError):
    """Raised when an ID does not resolve to a stored record."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, message: str, record_id: str, code: ErrorCode):
        super().__init__(message, code=code, details={"id": record_id})
        self.record_id = record_id


class NoteNotFoundError(NotFoundError):
    """Raised when a note cannot be found."""

    def __init__(self, note_id: str, message: Optional[str] = None):
        super().__init__(
            message or f"Note with ID '{note_id}' not found",
            note_id,
            code=ErrorCode.NOTE_NOT_FOUND,
        )
        self.note_id = note_id


class HistoryNotFoundError(NotFoundError):
    """Raised when a history entry cannot be found."""

    def __init__(self, history_id: str):
        super().__init__(
            f"History entry with ID '{history_id}' not found",
            history_id,
            code=ErrorCode.HISTORY_NOT_FOUND,
        )
        self.history_id = history_id


class TagGroupNotFoundError(NotFoundError):
    """Raised when a tag group cannot be found."""

    def __init__(self, group_id: str):
        super().__init__(
            f"Tag group with ID '{group_id}' not found",
            group_id,
            code=ErrorCode.TAG_GROUP_NOT_FOUND,
        )
        self.group_id = group_id


class CapacityExceededError(NoteStoreError):
    """Raised when a mutation would push the total size past capacity."""

    kind = ErrorKind.CAPACITY_EXCEEDED

    def __init__(self, total_size: int, addition: int, capacity: int):
        super().__init__(
            "Database capacity exceeded",
            code=ErrorCode.CAPACITY_EXCEEDED,
            details={
                "total_size": total_size,
                "addition": addition,
                "capacity": capacity,
            },
        )
        self.total_size = total_size
        self.addition = addition
        self.capacity = capacity


class ValidationError(NoteStoreError):
    """Raised for caller input that fails validation."""

    kind = ErrorKind.VALIDATION

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
    ):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)[:100]  # Truncate for safety

        super().__init__(message, code=code, details=details)
        self.field = field
        self.value = value


class StorageError(NoteStoreError):
    """Raised for storage/persistence errors."""

    kind = ErrorKind.STORAGE

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        code: ErrorCode = ErrorCode.STORAGE_READ_FAILED,
        original_error: Optional[Exception] = None,
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.original_error = original_error


class StoreCorruptionError(NoteStoreError):
    """Raised when persisted engine state cannot be decoded.

    This is fatal: the affected operation is aborted and the error is never
    retried or swallowed.
    """

    kind = ErrorKind.STORE_CORRUPTION

    def __init__(
        self,
        message: str,
        key: Optional[str] = None,
        value: Optional[Any] = None,
        code: ErrorCode = ErrorCode.METADATA_MISSING,
    ):
        details = {}
        if key:
            details["key"] = key
        if value is not None:
            details["value"] = str(value)[:100]

        super().__init__(message, code=code, details=details)
        self.key = key
        self.value = value
