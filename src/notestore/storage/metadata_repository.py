"""Engine-wide metadata: ID allocation and capacity accounting.

All state lives in one key-value table. The session-taking methods never
commit; they join the transaction of the logical operation that calls them,
so an ID bump or size adjustment is only kept if the whole operation is.
"""
import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from notestore.exceptions import (
    CapacityExceededError,
    ErrorCode,
    StorageError,
    StoreCorruptionError,
    ValidationError,
)
from notestore.models.db_models import DBMetadata
from notestore.models.schema import (
    FIRST_ID,
    MAX_ID_VALUE,
    StoreMetadata,
    StoreSize,
    decode_id,
    encode_id,
)
from notestore.storage.base import Repository

logger = logging.getLogger(__name__)

CURRENT_ID_KEY = "current-id"
TOTAL_SIZE_KEY = "total-size"
CAPACITY_KEY = "capacity"

_CORRUPTION_CODES = {
    CURRENT_ID_KEY: ErrorCode.CURRENT_ID_CORRUPTED,
    TOTAL_SIZE_KEY: ErrorCode.TOTAL_SIZE_CORRUPTED,
    CAPACITY_KEY: ErrorCode.CAPACITY_CORRUPTED,
}


class MetadataRepository(Repository):
    """ID allocator and capacity accountant bound to one database.

    Created once per engine instance; ``initialize`` seeds missing records
    and fixes the capacity for the lifetime of the process.
    """

    # ------------------------------------------------------------------
    # Raw record access
    # ------------------------------------------------------------------

    @staticmethod
    def _get_raw(session: Session, key: str) -> Optional[str]:
        return session.scalar(select(DBMetadata.value).where(DBMetadata.key == key))

    @staticmethod
    def _set_raw(session: Session, key: str, value: str) -> None:
        record = session.get(DBMetadata, key)
        if record is None:
            session.add(DBMetadata(key=key, value=value))
        else:
            record.value = value
        session.flush()

    def _get_int(self, session: Session, key: str) -> int:
        raw = self._get_raw(session, key)
        if raw is None:
            raise StoreCorruptionError(
                f"Metadata record '{key}' is missing",
                key=key,
                code=ErrorCode.METADATA_MISSING,
            )
        try:
            value = int(raw)
        except (TypeError, ValueError):
            logger.critical(f"Undecodable metadata {key}={raw!r}")
            raise StoreCorruptionError(
                f"Metadata record '{key}' is not an integer",
                key=key,
                value=raw,
                code=_CORRUPTION_CODES[key],
            )
        if value < 0:
            raise StoreCorruptionError(
                f"Metadata record '{key}' is negative",
                key=key,
                value=raw,
                code=_CORRUPTION_CODES[key],
            )
        return value

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    def initialize(self, capacity: int) -> StoreMetadata:
        """Seed the ID counter and size accumulator if absent, set capacity.

        Existing counter and size values are validated but never reset.

        Raises:
            ValidationError: If capacity is negative.
            StoreCorruptionError: If an existing record is undecodable.
        """
        if capacity < 0:
            raise ValidationError(
                "Capacity must not be negative", field="capacity", value=capacity
            )
        with self.transaction("initialize_metadata") as session:
            if self._get_raw(session, CURRENT_ID_KEY) is None:
                self._set_raw(session, CURRENT_ID_KEY, FIRST_ID)
                logger.info(f"Seeded ID counter with {FIRST_ID}")
            else:
                self.get_current_id(session)

            if self._get_raw(session, TOTAL_SIZE_KEY) is None:
                self._set_raw(session, TOTAL_SIZE_KEY, "0")
            else:
                self._get_int(session, TOTAL_SIZE_KEY)

            self._set_raw(session, CAPACITY_KEY, str(capacity))
            snapshot = self.get_metadata(session)
        logger.info(f"Store metadata: {snapshot}")
        return snapshot

    # ------------------------------------------------------------------
    # ID allocator
    # ------------------------------------------------------------------

    def get_current_id(self, session: Session) -> str:
        """Read the last issued ID.

        Raises:
            StoreCorruptionError: If the counter is missing or undecodable.
        """
        raw = self._get_raw(session, CURRENT_ID_KEY)
        if raw is None:
            raise StoreCorruptionError(
                "ID counter is missing",
                key=CURRENT_ID_KEY,
                code=ErrorCode.METADATA_MISSING,
            )
        try:
            decode_id(raw)
        except ValueError:
            logger.critical(f"Undecodable ID counter {raw!r}")
            raise StoreCorruptionError(
                "ID counter is not a valid ID",
                key=CURRENT_ID_KEY,
                value=raw,
                code=ErrorCode.CURRENT_ID_CORRUPTED,
            )
        return raw

    def next_id(self, session: Session) -> str:
        """Issue the successor of the current ID and persist it.

        Raises:
            StoreCorruptionError: If the counter is undecodable.
            StorageError: If the ID space is exhausted.
        """
        current = decode_id(self.get_current_id(session))
        if current >= MAX_ID_VALUE:
            raise StorageError(
                "ID space exhausted",
                operation="next_id",
                code=ErrorCode.ID_SPACE_EXHAUSTED,
            )
        next_id = encode_id(current + 1)
        self._set_raw(session, CURRENT_ID_KEY, next_id)
        return next_id

    def bump_current_id(self, session: Session, seen_id: str) -> None:
        """Move the counter to ``seen_id`` if it is ahead of the counter.

        Keeps imported IDs from being issued again. Never moves backward.
        """
        if decode_id(seen_id) > decode_id(self.get_current_id(session)):
            self._set_raw(session, CURRENT_ID_KEY, seen_id)

    # ------------------------------------------------------------------
    # Capacity accountant
    # ------------------------------------------------------------------

    def get_total_size(self, session: Session) -> int:
        return self._get_int(session, TOTAL_SIZE_KEY)

    def get_capacity(self, session: Session) -> int:
        return self._get_int(session, CAPACITY_KEY)

    def check_total_size(self, session: Session, addition: int) -> None:
        """Reject an addition that would take the total past capacity.

        ``total + addition == capacity`` is accepted.

        Raises:
            CapacityExceededError: If the ceiling would be exceeded.
        """
        total = self.get_total_size(session)
        capacity = self.get_capacity(session)
        if total + addition > capacity:
            logger.info(
                f"Capacity check failed: total={total} addition={addition} "
                f"capacity={capacity}"
            )
            raise CapacityExceededError(total, addition, capacity)

    def adjust_total_size(self, session: Session, delta: int) -> int:
        """Add ``delta`` (negative for deletions) to the total size.

        Returns:
            The new total size.
        """
        total = self.get_total_size(session) + delta
        if total < 0:
            raise StoreCorruptionError(
                "Total size would become negative",
                key=TOTAL_SIZE_KEY,
                value=total,
                code=ErrorCode.TOTAL_SIZE_CORRUPTED,
            )
        self._set_raw(session, TOTAL_SIZE_KEY, str(total))
        return total

    def set_total_size(self, session: Session, total: int) -> None:
        """Overwrite the accumulator (used by recount)."""
        self._set_raw(session, TOTAL_SIZE_KEY, str(total))

    # ------------------------------------------------------------------
    # Read-only snapshots
    # ------------------------------------------------------------------

    def get_metadata(self, session: Optional[Session] = None) -> StoreMetadata:
        """Snapshot of all metadata records."""
        if session is None:
            with self.reading("get_metadata") as own_session:
                return self.get_metadata(own_session)
        return StoreMetadata(
            current_id=self.get_current_id(session),
            total_size=self.get_total_size(session),
            capacity=self.get_capacity(session),
        )

    def get_size(self) -> StoreSize:
        """Current total size and capacity."""
        with self.reading("get_size") as session:
            return StoreSize(
                total_size=self.get_total_size(session),
                capacity=self.get_capacity(session),
            )
