"""Storage layer for the note storage engine."""

from notestore.storage.base import Repository
from notestore.storage.history_repository import HistoryRepository
from notestore.storage.metadata_repository import MetadataRepository
from notestore.storage.note_repository import NoteRepository
from notestore.storage.tag_repository import TagRepository
from notestore.storage.write_serializer import WriteSerializer, write_serializer

__all__ = [
    "Repository",
    "HistoryRepository",
    "MetadataRepository",
    "NoteRepository",
    "TagRepository",
    "WriteSerializer",
    "write_serializer",
]
