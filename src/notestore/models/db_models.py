"""SQLAlchemy database models for the note storage engine."""
import datetime
from typing import Optional

from sqlalchemy import (Boolean, Column, DateTime, ForeignKey, Index, Integer,
                        String, Text, create_engine, event)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from notestore.config import config
from notestore.models.schema import NoteType

# Create base class for SQLAlchemy models
Base = declarative_base()


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


# SQL name of the Unicode case folding function registered on each connection
CASEFOLD_FUNCTION = "casefold"


def _casefold(value: Optional[str]) -> Optional[str]:
    return value.casefold() if value is not None else None


class DBNote(Base):
    """Database model for a note."""
    __tablename__ = "notes"
    id = Column(String(16), primary_key=True, index=True)
    note_type = Column(String(20), default=NoteType.PLAINTEXT.value, nullable=False)
    title = Column(String(1024), nullable=False, default="", index=True)
    deleted = Column(Boolean, nullable=False, default=False, index=True)
    size = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, nullable=False, index=True)

    # Relationships
    patches = relationship(
        "DBPatch",
        order_by="DBPatch.seq",
        back_populates="note",
        cascade="all, delete-orphan",
    )
    tags = relationship(
        "DBNoteTag",
        back_populates="note",
        cascade="all, delete-orphan",
    )
    histories = relationship(
        "DBHistory",
        back_populates="note",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        """Return string representation of note."""
        return f"<Note(id='{self.id}', title='{self.title}')>"


class DBPatch(Base):
    """One entry of a note's append-only patch log."""
    __tablename__ = "note_patches"
    note_id = Column(
        String(16), ForeignKey("notes.id", ondelete="CASCADE"), primary_key=True
    )
    seq = Column(Integer, primary_key=True)
    patch = Column(Text, nullable=False, default="")

    note = relationship("DBNote", back_populates="patches")

    def __repr__(self) -> str:
        return f"<Patch(note_id='{self.note_id}', seq={self.seq})>"


class DBNoteTag(Base):
    """A plain tag string attached to a note.

    The composite primary key keeps each note's tag set free of duplicates.
    """
    __tablename__ = "note_tags"
    note_id = Column(
        String(16), ForeignKey("notes.id", ondelete="CASCADE"), primary_key=True
    )
    name = Column(String(255), primary_key=True)

    note = relationship("DBNote", back_populates="tags")

    __table_args__ = (Index("ix_note_tags_name", "name"),)

    def __repr__(self) -> str:
        return f"<NoteTag(note_id='{self.note_id}', name='{self.name}')>"


class DBHistory(Base):
    """Database model for a history snapshot."""
    __tablename__ = "histories"
    id = Column(String(16), primary_key=True)
    note_id = Column(
        String(16),
        ForeignKey("notes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    contents = Column(Text, nullable=False, default="")
    protected = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=_now, nullable=False)

    note = relationship("DBNote", back_populates="histories")

    def __repr__(self) -> str:
        return f"<History(id='{self.id}', note_id='{self.note_id}')>"


class DBTagGroup(Base):
    """Database model for a saved tag group."""
    __tablename__ = "tag_groups"
    id = Column(String(16), primary_key=True)
    tags_json = Column(Text, nullable=False)
    protected = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, nullable=False)

    def __repr__(self) -> str:
        return f"<TagGroup(id='{self.id}', tags={self.tags_json})>"


class DBMetadata(Base):
    """Key-value record of engine-wide state (ID counter, sizes)."""
    __tablename__ = "store_metadata"
    key = Column(String(64), primary_key=True)
    value = Column(Text, nullable=False)

    def __repr__(self) -> str:
        return f"<Metadata(key='{self.key}', value='{self.value}')>"


def init_db(db_url: Optional[str] = None) -> Engine:
    """Initialize the database with hardened configuration.

    Applies SQLite settings for crash resilience:
    - WAL (Write-Ahead Logging) mode for atomic writes
    - NORMAL synchronous mode (good balance of safety vs speed)
    - Foreign keys on, so purging a note cascades to its rows
    - QueuePool for connection reuse with size limits
    - a ``casefold()`` SQL function for Unicode-aware title search

    Args:
        db_url: SQLAlchemy URL. Defaults to config.get_db_url().

    Returns:
        The configured engine with all tables created.
    """
    url = db_url or config.get_db_url()

    if ":memory:" in url:
        # One shared connection, otherwise every checkout sees an empty database
        engine = create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        # SQLite is single-writer, so a small pool is ideal
        engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=5,
            max_overflow=10,
            pool_timeout=30,
            pool_recycle=3600,
            pool_pre_ping=True,
            connect_args={"check_same_thread": False},
        )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA cache_size=-64000")  # 64MB cache
        cursor.close()
        dbapi_connection.create_function(
            CASEFOLD_FUNCTION, 1, _casefold, deterministic=True
        )

    Base.metadata.create_all(engine)
    return engine


def get_session_factory(engine: Engine) -> sessionmaker:
    """Get a session factory for the database."""
    return sessionmaker(bind=engine, expire_on_commit=False)
