"""Configuration module for the note storage engine."""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from notestore import __version__

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config, lives alongside the default data directory
_USER_ENV = Path.home() / ".notestore" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)

_DEFAULT_CAPACITY = 100 * 1024 * 1024  # 100 MiB

# Smallest title budget that still fits one 4-byte UTF-8 character twice
_MIN_TITLE_LIMIT = 8


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


class NoteStoreConfig(BaseModel):
    """Configuration for the note storage engine."""

    # Base directory for the project
    base_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("NOTESTORE_BASE_DIR", "."))
    )
    # Database configuration
    database_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("NOTESTORE_DATABASE_PATH", "data/db/notestore.db")
        )
    )
    # Flat JSON document written by export and read by import
    export_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("NOTESTORE_EXPORT_PATH", "data/export/notes.json")
        )
    )
    # Hard ceiling on the summed byte size of all note contents
    database_capacity: int = Field(
        default_factory=lambda: int(
            os.getenv("NOTESTORE_DATABASE_CAPACITY", str(_DEFAULT_CAPACITY))
        )
    )
    # Byte budget for titles (caller-supplied or derived from content)
    note_title_limit: int = Field(
        default_factory=lambda: int(os.getenv("NOTESTORE_NOTE_TITLE_LIMIT", "200"))
    )
    # Unprotected tag groups beyond this count are pruned oldest first
    tag_group_limit: int = Field(
        default_factory=lambda: int(os.getenv("NOTESTORE_TAG_GROUP_LIMIT", "50"))
    )
    title_search_case_sensitive: bool = Field(
        default_factory=lambda: _env_bool(
            "NOTESTORE_TITLE_SEARCH_CASE_SENSITIVE", "false"
        )
    )
    # Logging
    log_dir: Optional[Path] = Field(
        default_factory=lambda: (
            Path(os.getenv("NOTESTORE_LOG_DIR"))
            if os.getenv("NOTESTORE_LOG_DIR")
            else None
        )
    )
    server_version: str = Field(default=__version__)

    model_config = {"validate_assignment": True}

    @model_validator(mode="after")
    def _validate_limits(self) -> "NoteStoreConfig":
        """Reject limits the engine cannot work with."""
        if self.database_capacity <= 0:
            raise ValueError("database_capacity must be > 0")
        if self.note_title_limit < _MIN_TITLE_LIMIT:
            raise ValueError(f"note_title_limit must be >= {_MIN_TITLE_LIMIT}")
        if self.tag_group_limit < 1:
            raise ValueError("tag_group_limit must be >= 1")
        return self

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on base_dir."""
        if path.is_absolute():
            return path
        return self.base_dir / path

    def get_db_url(self) -> str:
        """Get the database URL for SQLite."""
        db_path = self.get_absolute_path(self.database_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{db_path}"

    def get_export_path(self) -> Path:
        """Get the absolute export path, creating its directory."""
        export_path = self.get_absolute_path(self.export_path)
        export_path.parent.mkdir(parents=True, exist_ok=True)
        return export_path


# Create a global config instance
config = NoteStoreConfig()
