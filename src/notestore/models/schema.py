"""Data models for the note storage engine."""

import datetime
import re
import string
from datetime import timezone
from enum import Enum
from typing import List

from pydantic import BaseModel, Field, field_validator

# IDs are fixed-width upper-case base-36 strings, so lexicographic order
# matches numeric order.
ID_WIDTH = 8
ID_ALPHABET = string.digits + string.ascii_uppercase
ID_PATTERN = re.compile(rf"^[0-9A-Z]{{{ID_WIDTH}}}$")
MAX_ID_VALUE = 36**ID_WIDTH - 1

# Value the ID counter is seeded with; the first issued ID is its successor.
FIRST_ID = "0" * ID_WIDTH


def encode_id(value: int) -> str:
    """Encode a non-negative integer as a fixed-width base-36 ID.

    Raises:
        ValueError: If the value does not fit in ID_WIDTH characters.
    """
    if value < 0 or value > MAX_ID_VALUE:
        raise ValueError(f"ID value out of range: {value}")
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(ID_ALPHABET[rem])
    return "".join(reversed(digits)).rjust(ID_WIDTH, "0")


def decode_id(value: str) -> int:
    """Decode an ID string back to its integer value.

    Raises:
        ValueError: If the string is not a well-formed ID.
    """
    if not isinstance(value, str) or not ID_PATTERN.match(value):
        raise ValueError(f"Malformed ID: {value!r}")
    return int(value, 36)


def validate_id(value: str, field_name: str = "ID") -> str:
    """Validate that a value is a well-formed engine ID."""
    if not ID_PATTERN.match(value):
        raise ValueError(
            f"{field_name} must be {ID_WIDTH} characters of 0-9 or A-Z, got {value!r}"
        )
    return value


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.datetime.now(timezone.utc)


def ensure_timezone_aware(dt_value: datetime.datetime) -> datetime.datetime:
    """Ensure a datetime is timezone-aware, treating naive datetimes as UTC.

    SQLite drops timezone info on storage, so values read back from the
    database are naive and are assumed to be UTC.
    """
    if dt_value is None:
        return utc_now()
    if dt_value.tzinfo is None:
        return dt_value.replace(tzinfo=timezone.utc)
    return dt_value


class NoteType(str, Enum):
    """Kinds of note content."""

    PLAINTEXT = "plaintext"
    MARKDOWN = "markdown"


class Note(BaseModel):
    """A note stored as an ordered log of patches.

    The content is never stored directly: folding ``patches`` in order over
    the empty string rebuilds it. ``size`` caches the UTF-8 byte length of
    that content as of the last mutation.
    """

    id: str = Field(..., description="Monotonic, lexicographically sortable ID")
    note_type: NoteType = Field(default=NoteType.PLAINTEXT, description="Content kind")
    patches: List[str] = Field(
        default_factory=list, description="Patch log, oldest first"
    )
    title: str = Field(default="", description="Length-capped title")
    tags: List[str] = Field(default_factory=list, description="Sorted tag names")
    deleted: bool = Field(default=False, description="Soft-deleted flag")
    size: int = Field(default=0, ge=0, description="Content size in bytes")
    created_at: datetime.datetime = Field(
        default_factory=utc_now, description="When the note was created (UTC)"
    )
    updated_at: datetime.datetime = Field(
        default_factory=utc_now, description="When the note was last updated (UTC)"
    )

    model_config = {"validate_assignment": True, "extra": "forbid"}

    @field_validator("id")
    @classmethod
    def validate_note_id(cls, v: str) -> str:
        return validate_id(v, "Note ID")

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v: List[str]) -> List[str]:
        """Keep tags as a sorted set."""
        return sorted(set(v))

    @property
    def version(self) -> int:
        """Number of patches applied so far."""
        return len(self.patches)


class HistoryEntry(BaseModel):
    """Snapshot of a note's content after one mutation."""

    id: str = Field(..., description="History entry ID")
    note_id: str = Field(..., description="Owning note ID")
    contents: str = Field(default="", description="Content snapshot")
    protected: bool = Field(default=False, description="Survives bulk deletion")
    created_at: datetime.datetime = Field(
        default_factory=utc_now, description="When the snapshot was taken (UTC)"
    )

    model_config = {"validate_assignment": True, "extra": "forbid"}

    @field_validator("id", "note_id")
    @classmethod
    def validate_ids(cls, v: str) -> str:
        return validate_id(v)


class TagGroup(BaseModel):
    """A saved set of tags used as a search filter."""

    id: str = Field(..., description="Tag group ID")
    tags: List[str] = Field(..., min_length=1, description="Sorted tag names")
    protected: bool = Field(default=False, description="Exempt from pruning")
    created_at: datetime.datetime = Field(
        default_factory=utc_now, description="When the group was created (UTC)"
    )
    updated_at: datetime.datetime = Field(
        default_factory=utc_now, description="When the group was last saved (UTC)"
    )

    model_config = {"validate_assignment": True, "extra": "forbid"}

    @field_validator("id")
    @classmethod
    def validate_group_id(cls, v: str) -> str:
        return validate_id(v, "Tag group ID")

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v: List[str]) -> List[str]:
        return sorted(set(v))


class StoreMetadata(BaseModel):
    """Snapshot of the singleton metadata record."""

    current_id: str
    total_size: int
    capacity: int

    model_config = {"frozen": True}


class StoreSize(BaseModel):
    """Total stored bytes against the capacity ceiling."""

    total_size: int
    capacity: int

    model_config = {"frozen": True}

    @property
    def available(self) -> int:
        return max(self.capacity - self.total_size, 0)
