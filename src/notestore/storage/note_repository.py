"""Repository for versioned notes: patch log, titles and lifecycle.

A note's content is never stored. Each note owns an append-only log of
patches, and its content is rebuilt by folding that log over the empty
string. Every mutation that grows stored content passes the capacity check
first and adjusts the size accumulator last, inside the same transaction.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional, Union

from sqlalchemy import select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, selectinload, sessionmaker

from notestore.config import config
from notestore.exceptions import (
    ErrorCode,
    NoteNotFoundError,
    ValidationError,
)
from notestore.models.db_models import DBNote, DBNoteTag, DBPatch
from notestore.models.schema import (
    Note,
    NoteType,
    decode_id,
    ensure_timezone_aware,
    utc_now,
)
from notestore.storage.base import Repository
from notestore.storage.history_repository import HistoryRepository
from notestore.storage.metadata_repository import MetadataRepository
from notestore.storage.patches import (
    INITIAL_CONTENT,
    apply_caller_patch,
    byte_size,
    fold_patches,
)
from notestore.utils import head_limit, normalize_tags

logger = logging.getLogger(__name__)


def _coerce_note_type(note_type: Union[str, NoteType]) -> NoteType:
    try:
        return NoteType(note_type)
    except ValueError:
        raise ValidationError(
            f"Unknown note type: {note_type!r}",
            field="note_type",
            value=note_type,
            code=ErrorCode.INVALID_NOTE_TYPE,
        )


class NoteRepository(Repository):
    """Patch/version store and lifecycle manager for notes.

    Mutating methods expect the caller to hold the write serializer; each
    one runs in a single transaction, so a failure leaves no partial rows
    behind (note, patches, tags, history and metadata roll back together).
    """

    def __init__(
        self,
        engine: Engine,
        metadata: MetadataRepository,
        histories: HistoryRepository,
        session_factory: Optional[sessionmaker] = None,
        title_limit: Optional[int] = None,
    ):
        super().__init__(engine, session_factory)
        self.metadata = metadata
        self.histories = histories
        self.title_limit = config.note_title_limit if title_limit is None else title_limit

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _to_model(db_note: DBNote) -> Note:
        return Note(
            id=db_note.id,
            note_type=NoteType(db_note.note_type),
            patches=[p.patch for p in db_note.patches],
            title=db_note.title,
            tags=[t.name for t in db_note.tags],
            deleted=db_note.deleted,
            size=db_note.size,
            created_at=ensure_timezone_aware(db_note.created_at),
            updated_at=ensure_timezone_aware(db_note.updated_at),
        )

    @staticmethod
    def _get_db_note(session: Session, note_id: str) -> DBNote:
        db_note = session.get(DBNote, note_id)
        if db_note is None:
            raise NoteNotFoundError(note_id)
        return db_note

    def make_title(self, title: Optional[str], content: str) -> str:
        """Title for a note: the caller's, or the head of the content.

        A derived title is the first non-blank line of the content. Either
        way the result fits the title byte budget.
        """
        if title and title.strip():
            return head_limit(title.strip(), self.title_limit)
        for line in content.strip().splitlines():
            if line.strip():
                return head_limit(line.strip(), self.title_limit)
        return ""

    @staticmethod
    def _list_query(deleted: Optional[bool]):
        query = select(DBNote).options(
            selectinload(DBNote.patches), selectinload(DBNote.tags)
        )
        if deleted is not None:
            query = query.where(DBNote.deleted.is_(deleted))
        return query.order_by(DBNote.updated_at.desc(), DBNote.id.desc())

    def _list(self, operation: str, deleted: Optional[bool]) -> List[Note]:
        with self.reading(operation) as session:
            db_notes = session.scalars(self._list_query(deleted)).all()
            return [self._to_model(db_note) for db_note in db_notes]

    # ------------------------------------------------------------------
    # Patch/version store
    # ------------------------------------------------------------------

    def create_note(
        self,
        note_type: Union[str, NoteType],
        patch: str,
        title: Optional[str] = None,
        tags: Iterable[str] = (),
    ) -> Note:
        """Create a note from its first patch.

        Order of writes: capacity check, ID allocation, note with its first
        patch and tags, first history entry, size adjustment.

        Raises:
            ValidationError: If the type is unknown or the patch does not
                apply to empty content.
            CapacityExceededError: If the content does not fit.
        """
        kind = _coerce_note_type(note_type)
        content = apply_caller_patch(INITIAL_CONTENT, patch)
        size = byte_size(content)

        with self.transaction("create_note") as session:
            self.metadata.check_total_size(session, size)
            note_id = self.metadata.next_id(session)
            now = utc_now()
            db_note = DBNote(
                id=note_id,
                note_type=kind.value,
                title=self.make_title(title, content),
                deleted=False,
                size=size,
                created_at=now,
                updated_at=now,
            )
            db_note.patches = [DBPatch(seq=1, patch=patch)]
            db_note.tags = [DBNoteTag(name=name) for name in sorted(set(tags))]
            session.add(db_note)
            session.flush()

            self.histories.record(session, note_id, content)
            self.metadata.adjust_total_size(session, size)
            note = self._to_model(db_note)

        logger.info(f"Created note {note.id} ({size} bytes)")
        return note

    def append_patch(
        self, note_id: str, patch: str, title: Optional[str] = None
    ) -> int:
        """Append a patch to a note's log and snapshot the result.

        The capacity check covers only the net growth of the content; a
        patch that shrinks or keeps the size is never rejected for space.
        An empty patch is accepted and still records a history entry.

        With ``title=None`` the stored title is kept; a blank title or an
        untitled note takes its title from the new content.

        Returns:
            Number of history entries the note has afterwards.

        Raises:
            NoteNotFoundError: If the note does not exist.
            ValidationError: If the patch does not apply.
            CapacityExceededError: If the growth does not fit.
        """
        with self.transaction("append_patch") as session:
            db_note = self._get_db_note(session, note_id)
            old_content = fold_patches([p.patch for p in db_note.patches], note_id)
            new_content = apply_caller_patch(old_content, patch)
            new_size = byte_size(new_content)
            delta = new_size - db_note.size

            if delta > 0:
                self.metadata.check_total_size(session, delta)

            db_note.patches.append(DBPatch(seq=len(db_note.patches) + 1, patch=patch))
            if title is not None or not db_note.title:
                db_note.title = self.make_title(title, new_content)
            db_note.size = new_size
            db_note.updated_at = utc_now()
            session.flush()

            self.histories.record(session, note_id, new_content)
            if delta:
                self.metadata.adjust_total_size(session, delta)
            count = self.histories.count_for_note(session, note_id)

        logger.debug(f"Appended patch to note {note_id} (delta {delta} bytes)")
        return count

    def reconstruct(self, note_id: str) -> str:
        """Rebuild the current content of a note.

        Raises:
            NoteNotFoundError: If the note does not exist.
            StoreCorruptionError: If a stored patch no longer applies.
        """
        with self.reading("reconstruct") as session:
            db_note = self._get_db_note(session, note_id)
            patches = [p.patch for p in db_note.patches]
        return fold_patches(patches, note_id)

    def reconstruct_at(self, note_id: str, version: int) -> str:
        """Rebuild a note's content after its first ``version`` patches.

        Raises:
            NoteNotFoundError: If the note does not exist.
            ValidationError: If ``version`` is not between 1 and the
                number of patches.
        """
        with self.reading("reconstruct_at") as session:
            db_note = self._get_db_note(session, note_id)
            patches = [p.patch for p in db_note.patches]
        if not 1 <= version <= len(patches):
            raise ValidationError(
                f"Version must be between 1 and {len(patches)}",
                field="version",
                value=version,
                code=ErrorCode.INVALID_VERSION,
            )
        return fold_patches(patches[:version], note_id)

    def get_by_id(self, note_id: str) -> Note:
        """Get a note, deleted or not.

        Raises:
            NoteNotFoundError: If the note does not exist.
        """
        with self.reading("get_note") as session:
            return self._to_model(self._get_db_note(session, note_id))

    def change_type(self, note_id: str, note_type: Union[str, NoteType]) -> Note:
        """Change a note's content kind. Size accounting is unaffected."""
        kind = _coerce_note_type(note_type)
        with self.transaction("change_type") as session:
            db_note = self._get_db_note(session, note_id)
            db_note.note_type = kind.value
            db_note.updated_at = utc_now()
            session.flush()
            return self._to_model(db_note)

    def update_tags(self, note_id: str, tags: Iterable[str]) -> Note:
        """Replace a note's tag set. Size accounting is unaffected."""
        wanted = set(tags)
        with self.transaction("update_tags") as session:
            db_note = self._get_db_note(session, note_id)
            db_note.tags = [t for t in db_note.tags if t.name in wanted]
            current = {t.name for t in db_note.tags}
            for name in sorted(wanted - current):
                db_note.tags.append(DBNoteTag(name=name))
            db_note.updated_at = utc_now()
            session.flush()
            return self._to_model(db_note)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def set_deleted(self, note_id: str, deleted: bool) -> Note:
        """Soft-delete or restore a note.

        Soft-deleted notes keep counting against capacity.
        """
        with self.transaction("set_deleted") as session:
            db_note = self._get_db_note(session, note_id)
            db_note.deleted = deleted
            db_note.updated_at = utc_now()
            session.flush()
            note = self._to_model(db_note)
        logger.info(f"Note {note_id} {'deleted' if deleted else 'restored'}")
        return note

    def delete_forever(self, note_id: str) -> int:
        """Purge a note with its patches, tags and history entries.

        Returns:
            The number of bytes freed.
        """
        with self.transaction("delete_forever") as session:
            db_note = self._get_db_note(session, note_id)
            freed = db_note.size
            session.delete(db_note)
            session.flush()
            self.metadata.adjust_total_size(session, -freed)
        logger.info(f"Purged note {note_id}, freed {freed} bytes")
        return freed

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    def all_notes(self) -> List[Note]:
        """Active notes, most recently updated first."""
        return self._list("all_notes", deleted=False)

    def all_deleted_notes(self) -> List[Note]:
        """Soft-deleted notes, most recently updated first."""
        return self._list("all_deleted_notes", deleted=True)

    def all_notes_with_deleted(self) -> List[Note]:
        return self._list("all_notes_with_deleted", deleted=None)

    # ------------------------------------------------------------------
    # Import and verification
    # ------------------------------------------------------------------

    def import_notes(self, notes: List[Note]) -> int:
        """Re-insert exported notes as if they were freshly created.

        IDs, types, patches, tags, deleted flags and timestamps are kept.
        Sizes and titles are recomputed from the rebuilt content, one
        history entry per note is recorded and the ID counter is moved past
        the highest imported ID. All notes go in one transaction: any
        failure leaves the store as it was.

        Raises:
            ValidationError: If an ID already exists or a patch log does not
                apply.
            CapacityExceededError: If the combined size does not fit.
        """
        prepared = []
        seen = set()
        for note in notes:
            if note.id in seen:
                raise ValidationError(
                    f"Note ID '{note.id}' appears twice in the import",
                    field="id",
                    value=note.id,
                    code=ErrorCode.NOTE_ALREADY_EXISTS,
                )
            seen.add(note.id)
            content = INITIAL_CONTENT
            for patch in note.patches:
                content = apply_caller_patch(content, patch)
            prepared.append((note, content))

        total_addition = sum(byte_size(content) for _, content in prepared)

        with self.transaction("import_notes") as session:
            for note, _ in prepared:
                if session.get(DBNote, note.id) is not None:
                    raise ValidationError(
                        f"Note ID '{note.id}' already exists",
                        field="id",
                        value=note.id,
                        code=ErrorCode.NOTE_ALREADY_EXISTS,
                    )
            self.metadata.check_total_size(session, total_addition)

            for note, content in prepared:
                db_note = DBNote(
                    id=note.id,
                    note_type=note.note_type.value,
                    title=self.make_title(note.title, content),
                    deleted=note.deleted,
                    size=byte_size(content),
                    created_at=note.created_at,
                    updated_at=note.updated_at,
                )
                db_note.patches = [
                    DBPatch(seq=seq, patch=patch)
                    for seq, patch in enumerate(note.patches, start=1)
                ]
                db_note.tags = [DBNoteTag(name=name) for name in normalize_tags(note.tags)]
                session.add(db_note)
                session.flush()
                self.histories.record(session, note.id, content)

            if prepared:
                highest = max((note.id for note, _ in prepared), key=decode_id)
                self.metadata.bump_current_id(session, highest)
            self.metadata.adjust_total_size(session, total_addition)

        logger.info(f"Imported {len(prepared)} notes ({total_addition} bytes)")
        return len(prepared)

    def recount_total_size(self) -> Dict[str, Any]:
        """Rebuild every note and repair cached sizes and the accumulator.

        Returns:
            ``before`` and ``after`` totals plus the IDs of notes whose
            cached size was wrong.
        """
        with self.transaction("recount_total_size") as session:
            before = self.metadata.get_total_size(session)
            db_notes = session.scalars(self._list_query(deleted=None)).all()
            total = 0
            corrected = []
            for db_note in db_notes:
                size = byte_size(
                    fold_patches([p.patch for p in db_note.patches], db_note.id)
                )
                if size != db_note.size:
                    corrected.append(db_note.id)
                    db_note.size = size
                total += size
            self.metadata.set_total_size(session, total)

        if before != total or corrected:
            logger.warning(
                f"Size accounting repaired: total {before} -> {total}, "
                f"{len(corrected)} notes corrected"
            )
        return {"before": before, "after": total, "corrected_notes": sorted(corrected)}
