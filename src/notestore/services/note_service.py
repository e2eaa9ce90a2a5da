"""Service layer: the engine facade used by transport-layer callers.

Validates caller input, takes the write serializer around every mutation
and times each operation. Reads go straight to the repositories without
the gate.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import pydantic
from sqlalchemy.engine import Engine

from notestore.config import config
from notestore.exceptions import ErrorCode, StorageError, ValidationError
from notestore.models.db_models import get_session_factory, init_db
from notestore.models.schema import HistoryEntry, Note, NoteType, StoreSize, TagGroup
from notestore.observability import timed_operation, traced
from notestore.storage.history_repository import HistoryRepository
from notestore.storage.metadata_repository import MetadataRepository
from notestore.storage.note_repository import NoteRepository
from notestore.storage.patches import make_patch
from notestore.storage.tag_repository import TagRepository
from notestore.storage.write_serializer import WriteSerializer, write_serializer
from notestore.utils import normalize_tags

logger = logging.getLogger(__name__)


def _require_text(value: Any, field: str, code: ErrorCode = ErrorCode.VALIDATION_FAILED) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required", field=field, code=code)
    return value


def _require_patch(patch: Any) -> str:
    # The empty string is a valid patch; only a missing one is rejected.
    if not isinstance(patch, str):
        raise ValidationError(
            "Patch is required", field="patch", code=ErrorCode.PATCH_INVALID
        )
    return patch


def _require_tags(tags: Optional[Iterable[str]]) -> List[str]:
    normalized = normalize_tags(tags or [])
    if not normalized:
        raise ValidationError(
            "At least one tag is required", field="tags", code=ErrorCode.TAGS_REQUIRED
        )
    return normalized


class NoteService:
    """Versioned, capacity-bounded note storage engine.

    One instance owns one database. Construction creates the tables if
    needed, seeds the ID counter and size accumulator if absent and
    records the configured capacity.
    """

    def __init__(
        self,
        engine: Optional[Engine] = None,
        db_url: Optional[str] = None,
        capacity: Optional[int] = None,
        title_limit: Optional[int] = None,
        tag_group_limit: Optional[int] = None,
        case_sensitive: Optional[bool] = None,
        serializer: Optional[WriteSerializer] = None,
    ):
        """Initialize the service.

        Args:
            engine: Pre-configured SQLAlchemy engine. Created with
                ``init_db(db_url)`` if None.
            db_url: Database URL, used only when ``engine`` is None.
            capacity: Byte ceiling. Defaults to config.database_capacity.
            title_limit: Title byte budget. Defaults to config.
            tag_group_limit: Tag group pruning threshold. Defaults to config.
            case_sensitive: Default title search policy. Defaults to config.
            serializer: Write gate. Defaults to the process-wide one.
        """
        self.engine = engine if engine is not None else init_db(db_url)
        self.serializer = serializer or write_serializer
        session_factory = get_session_factory(self.engine)

        self.metadata = MetadataRepository(self.engine, session_factory)
        self.histories = HistoryRepository(
            self.engine, self.metadata, session_factory, title_limit=title_limit
        )
        self.notes = NoteRepository(
            self.engine,
            self.metadata,
            self.histories,
            session_factory,
            title_limit=title_limit,
        )
        self.tags = TagRepository(
            self.engine,
            self.metadata,
            session_factory,
            tag_group_limit=tag_group_limit,
            case_sensitive=case_sensitive,
        )

        with self.serializer:
            self.metadata.initialize(
                config.database_capacity if capacity is None else capacity
            )

    # =========================================================================
    # Patch/version store
    # =========================================================================

    @staticmethod
    def make_patch(old: str, new: str) -> str:
        """Build the patch that turns ``old`` into ``new``."""
        return make_patch(old, new)

    @traced("create_note")
    def create_note(
        self,
        note_type: Union[str, NoteType],
        patch: str,
        title: Optional[str] = None,
        tags: Optional[List[str]] = None,
    ) -> Note:
        """Create a note whose first patch turns empty content into its text.

        Args:
            note_type: Content kind (``plaintext`` or ``markdown``).
            patch: Patch text applied to the empty string.
            title: Title; derived from the content when omitted.
            tags: Tag names; stripped, blanks dropped, duplicates collapsed.

        Returns:
            The created Note.
        """
        _require_patch(patch)
        with self.serializer:
            return self.notes.create_note(
                note_type, patch, title=title, tags=normalize_tags(tags or [])
            )

    @traced("append_patch")
    def append_patch(self, note_id: str, patch: str, title: Optional[str] = None) -> int:
        """Append a patch to a note and return its history count."""
        _require_text(note_id, "note_id")
        _require_patch(patch)
        with self.serializer:
            return self.notes.append_patch(note_id, patch, title=title)

    @traced("reconstruct")
    def reconstruct(self, note_id: str) -> str:
        return self.notes.reconstruct(note_id)

    @traced("reconstruct_at")
    def reconstruct_at(self, note_id: str, version: int) -> str:
        return self.notes.reconstruct_at(note_id, version)

    @traced("get_note")
    def get_note(self, note_id: str) -> Note:
        return self.notes.get_by_id(note_id)

    @traced("change_type")
    def change_type(self, note_id: str, note_type: Union[str, NoteType]) -> Note:
        with self.serializer:
            return self.notes.change_type(note_id, note_type)

    @traced("update_tags")
    def update_tags(self, note_id: str, tags: Optional[List[str]]) -> Note:
        with self.serializer:
            return self.notes.update_tags(note_id, normalize_tags(tags or []))

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @traced("set_deleted")
    def set_deleted(self, note_id: str, deleted: bool) -> Note:
        with self.serializer:
            return self.notes.set_deleted(note_id, deleted)

    @traced("delete_forever")
    def delete_forever(self, note_id: str) -> int:
        """Purge a note irreversibly; returns the bytes freed."""
        with self.serializer:
            return self.notes.delete_forever(note_id)

    @traced("all_notes")
    def all_notes(self) -> List[Note]:
        return self.notes.all_notes()

    @traced("all_deleted_notes")
    def all_deleted_notes(self) -> List[Note]:
        return self.notes.all_deleted_notes()

    @traced("all_notes_with_deleted")
    def all_notes_with_deleted(self) -> List[Note]:
        return self.notes.all_notes_with_deleted()

    # =========================================================================
    # History
    # =========================================================================

    @traced("get_history")
    def get_history(self, history_id: str) -> HistoryEntry:
        return self.histories.get_history(history_id)

    @traced("note_histories")
    def note_histories(self, note_id: str, short: bool = False) -> List[HistoryEntry]:
        return self.histories.note_histories(note_id, short=short)

    @traced("set_history_protected")
    def set_history_protected(self, history_id: str, protected: bool) -> HistoryEntry:
        with self.serializer:
            return self.histories.set_history_protected(history_id, protected)

    @traced("delete_history")
    def delete_history(self, history_id: str) -> None:
        with self.serializer:
            self.histories.delete_history(history_id)

    @traced("delete_note_history")
    def delete_note_history(self, note_id: str) -> int:
        """Delete a note's unprotected history entries; returns the count."""
        with self.serializer:
            return self.histories.delete_note_history(note_id)

    # =========================================================================
    # Tag index and search
    # =========================================================================

    @traced("by_tag")
    def by_tag(self, tag_name: str) -> List[Note]:
        return self.tags.by_tag(_require_text(tag_name, "tag").strip())

    @traced("by_tag_prefix")
    def by_tag_prefix(self, prefix: str) -> List[Note]:
        return self.tags.by_tag_prefix(_require_text(prefix, "prefix").strip())

    @traced("all_tags")
    def all_tags(self) -> List[str]:
        return self.tags.all_tags()

    @traced("all_tags_by_date")
    def all_tags_by_date(self) -> List[str]:
        return self.tags.all_tags_by_date()

    @traced("search_tag_group")
    def search_tag_group(self, tags: List[str]) -> List[Note]:
        """Notes carrying every one of ``tags``."""
        return self.tags.search_tag_group(_require_tags(tags))

    @traced("search_title")
    def search_title(self, pattern: str, case_sensitive: Optional[bool] = None) -> List[Note]:
        _require_text(pattern, "pattern")
        return self.tags.search_title(pattern, case_sensitive=case_sensitive)

    @traced("rename_tag")
    def rename_tag(self, old_name: str, new_name: str) -> int:
        """Rename a tag on every note; returns how many notes carried it."""
        old_name = _require_text(old_name, "old_name").strip()
        new_name = _require_text(new_name, "new_name").strip()
        with self.serializer:
            return self.tags.rename_tag(old_name, new_name)

    @traced("delete_tag")
    def delete_tag(self, tag_name: str) -> int:
        tag_name = _require_text(tag_name, "tag").strip()
        with self.serializer:
            return self.tags.delete_tag(tag_name)

    # =========================================================================
    # Tag groups
    # =========================================================================

    @traced("save_tag_group")
    def save_tag_group(self, tags: List[str]) -> TagGroup:
        normalized = _require_tags(tags)
        with self.serializer:
            return self.tags.save_tag_group(normalized)

    @traced("get_tag_group")
    def get_tag_group(self, group_id: str) -> TagGroup:
        return self.tags.get_tag_group(group_id)

    @traced("delete_tag_group")
    def delete_tag_group(self, group_id: str) -> None:
        with self.serializer:
            self.tags.delete_tag_group(group_id)

    @traced("set_tag_group_protected")
    def set_tag_group_protected(self, group_id: str, protected: bool) -> TagGroup:
        with self.serializer:
            return self.tags.set_tag_group_protected(group_id, protected)

    @traced("all_tag_groups")
    def all_tag_groups(self) -> List[TagGroup]:
        return self.tags.all_tag_groups()

    # =========================================================================
    # Capacity
    # =========================================================================

    @traced("get_size")
    def get_size(self) -> StoreSize:
        """Total stored bytes and the capacity ceiling."""
        return self.metadata.get_size()

    @traced("recount_total_size")
    def recount_total_size(self) -> Dict[str, Any]:
        """Verify the size invariant and repair it if it drifted."""
        with self.serializer:
            return self.notes.recount_total_size()

    # =========================================================================
    # Export / import
    # =========================================================================

    def export_notes(self, path: Optional[Union[str, Path]] = None) -> List[Dict[str, Any]]:
        """Write every note, soft-deleted ones included, as a JSON array.

        The file is written atomically with owner-only permissions.

        Args:
            path: Target file. Defaults to config.get_export_path().

        Returns:
            The exported note dictionaries.
        """
        target = Path(path) if path else config.get_export_path()
        with timed_operation("export_notes", path=target) as op:
            data = [note.model_dump(mode="json") for note in self.all_notes_with_deleted()]
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                temp_file = target.with_suffix(target.suffix + ".tmp")
                with open(temp_file, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2, ensure_ascii=False)
                os.chmod(temp_file, 0o600)
                temp_file.replace(target)
            except OSError as e:
                raise StorageError(
                    f"Failed to export notes to {target}",
                    operation="export_notes",
                    code=ErrorCode.EXPORT_FAILED,
                    original_error=e,
                ) from e
            op["result_count"] = len(data)
        logger.info(f"Exported {len(data)} notes to {target}")
        return data

    def import_notes(self, path: Optional[Union[str, Path]] = None) -> int:
        """Load notes written by ``export_notes`` into this store.

        The whole file is one transaction: a duplicate ID, an invalid patch
        log or a capacity overflow leaves the store unchanged.

        Returns:
            Number of notes imported.
        """
        source = Path(path) if path else config.get_export_path()
        with timed_operation("import_notes", path=source) as op:
            try:
                with open(source, "r", encoding="utf-8") as f:
                    raw = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                raise StorageError(
                    f"Failed to read notes from {source}",
                    operation="import_notes",
                    code=ErrorCode.IMPORT_FAILED,
                    original_error=e,
                ) from e
            if not isinstance(raw, list):
                raise ValidationError(
                    "Import document must be a JSON array of notes",
                    field="document",
                )
            try:
                notes = [Note.model_validate(item) for item in raw]
            except pydantic.ValidationError as e:
                raise ValidationError(
                    f"Invalid note in import document: {e.error_count()} errors",
                    field="document",
                    value=str(e),
                ) from e

            with self.serializer:
                count = self.notes.import_notes(notes)
            op["result_count"] = count
        return count
