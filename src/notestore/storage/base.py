"""Shared session handling for the storage repositories."""
import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from notestore.exceptions import ErrorCode, StorageError
from notestore.models.db_models import get_session_factory

logger = logging.getLogger(__name__)


class Repository:
    """Base class for repositories bound to one SQLAlchemy engine.

    Every logical operation gets exactly one session. Mutations go through
    ``transaction``, which commits once at the end; an exception anywhere
    inside the block rolls back every row the operation touched.
    """

    def __init__(self, engine: Engine, session_factory: Optional[sessionmaker] = None):
        self.engine = engine
        self.session_factory = session_factory or get_session_factory(engine)

    @contextmanager
    def transaction(self, operation: str) -> Iterator[Session]:
        """Session for one atomic mutation, committed on normal exit.

        Raises:
            StorageError: If the database layer fails. Engine errors raised
                inside the block propagate unchanged.
        """
        try:
            with self.session_factory() as session:
                yield session
                session.commit()
        except SQLAlchemyError as e:
            logger.error(f"{operation} failed in the database layer: {e}")
            raise StorageError(
                f"Failed to {operation.replace('_', ' ')}",
                operation=operation,
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            ) from e

    @contextmanager
    def reading(self, operation: str) -> Iterator[Session]:
        """Session for a read-only operation; never committed."""
        try:
            with self.session_factory() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(f"{operation} failed in the database layer: {e}")
            raise StorageError(
                f"Failed to {operation.replace('_', ' ')}",
                operation=operation,
                code=ErrorCode.STORAGE_READ_FAILED,
                original_error=e,
            ) from e
