"""Repository for note history snapshots."""
import logging
from typing import List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from notestore.config import config
from notestore.exceptions import (
    ErrorCode,
    HistoryNotFoundError,
    NoteNotFoundError,
    ValidationError,
)
from notestore.models.db_models import DBHistory, DBNote
from notestore.models.schema import HistoryEntry, ensure_timezone_aware, utc_now
from notestore.storage.base import Repository
from notestore.storage.metadata_repository import MetadataRepository
from notestore.utils import head_limit

logger = logging.getLogger(__name__)


class HistoryRepository(Repository):
    """Stores one content snapshot per note mutation.

    Entries are written by the note repository inside the mutating
    operation's own session (see ``record``); everything else here is
    listing, protection and deletion.
    """

    def __init__(
        self,
        engine: Engine,
        metadata: MetadataRepository,
        session_factory: Optional[sessionmaker] = None,
        title_limit: Optional[int] = None,
    ):
        super().__init__(engine, session_factory)
        self.metadata = metadata
        self.title_limit = config.note_title_limit if title_limit is None else title_limit

    @staticmethod
    def _to_model(db_history: DBHistory) -> HistoryEntry:
        return HistoryEntry(
            id=db_history.id,
            note_id=db_history.note_id,
            contents=db_history.contents,
            protected=db_history.protected,
            created_at=ensure_timezone_aware(db_history.created_at),
        )

    def record(self, session: Session, note_id: str, contents: str) -> DBHistory:
        """Add a snapshot of ``contents`` for ``note_id`` to ``session``.

        The entry's ID comes from the shared allocator. Nothing is committed.
        """
        db_history = DBHistory(
            id=self.metadata.next_id(session),
            note_id=note_id,
            contents=contents,
            protected=False,
            created_at=utc_now(),
        )
        session.add(db_history)
        session.flush()
        return db_history

    @staticmethod
    def count_for_note(session: Session, note_id: str) -> int:
        return session.scalar(
            select(func.count(DBHistory.id)).where(DBHistory.note_id == note_id)
        ) or 0

    def get_history(self, history_id: str) -> HistoryEntry:
        """Get one history entry.

        Raises:
            HistoryNotFoundError: If no entry has this ID.
        """
        with self.reading("get_history") as session:
            db_history = session.get(DBHistory, history_id)
            if db_history is None:
                raise HistoryNotFoundError(history_id)
            return self._to_model(db_history)

    def note_histories(self, note_id: str, short: bool = False) -> List[HistoryEntry]:
        """List a note's history entries, oldest first.

        With ``short`` each entry's contents are cut to the title budget,
        which is all a history listing needs to show.

        Raises:
            NoteNotFoundError: If the note does not exist.
        """
        with self.reading("note_histories") as session:
            if session.get(DBNote, note_id) is None:
                raise NoteNotFoundError(note_id)
            rows = session.scalars(
                select(DBHistory)
                .where(DBHistory.note_id == note_id)
                .order_by(DBHistory.id)
            ).all()
            entries = [self._to_model(row) for row in rows]

        if short:
            for entry in entries:
                entry.contents = head_limit(entry.contents, self.title_limit)
        return entries

    def set_history_protected(self, history_id: str, protected: bool) -> HistoryEntry:
        """Toggle the protected flag of a history entry.

        Raises:
            HistoryNotFoundError: If no entry has this ID.
        """
        with self.transaction("set_history_protected") as session:
            db_history = session.get(DBHistory, history_id)
            if db_history is None:
                raise HistoryNotFoundError(history_id)
            db_history.protected = protected
            session.flush()
            return self._to_model(db_history)

    def delete_history(self, history_id: str) -> None:
        """Delete a single unprotected history entry.

        Raises:
            HistoryNotFoundError: If no entry has this ID.
            ValidationError: If the entry is protected.
        """
        with self.transaction("delete_history") as session:
            db_history = session.get(DBHistory, history_id)
            if db_history is None:
                raise HistoryNotFoundError(history_id)
            if db_history.protected:
                raise ValidationError(
                    f"History entry '{history_id}' is protected",
                    field="history_id",
                    value=history_id,
                    code=ErrorCode.HISTORY_PROTECTED,
                )
            session.delete(db_history)

    def delete_note_history(self, note_id: str) -> int:
        """Delete every unprotected history entry of a note.

        Protected entries are skipped. The note itself is untouched.

        Returns:
            Number of entries deleted.

        Raises:
            NoteNotFoundError: If the note does not exist.
        """
        with self.transaction("delete_note_history") as session:
            if session.get(DBNote, note_id) is None:
                raise NoteNotFoundError(note_id)
            result = session.execute(
                delete(DBHistory)
                .where(DBHistory.note_id == note_id)
                .where(DBHistory.protected.is_(False))
                .execution_options(synchronize_session=False)
            )
            deleted = result.rowcount or 0
        logger.info(f"Deleted {deleted} history entries of note {note_id}")
        return deleted
