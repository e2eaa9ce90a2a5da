"""Common test fixtures for the note storage engine."""

import tempfile
from pathlib import Path

import pytest

from notestore.config import config
from notestore.models.db_models import init_db
from notestore.services.note_service import NoteService


@pytest.fixture
def temp_dirs():
    """Create temporary directories for the database and exports."""
    with tempfile.TemporaryDirectory() as data_dir:
        with tempfile.TemporaryDirectory() as db_dir:
            yield Path(data_dir), Path(db_dir)


@pytest.fixture
def test_config(temp_dirs, monkeypatch):
    """Configure with test paths (auto-restored even on crash)."""
    data_dir, db_dir = temp_dirs
    monkeypatch.setattr(config, "base_dir", data_dir)
    monkeypatch.setattr(config, "database_path", db_dir / "test_notestore.db")
    monkeypatch.setattr(config, "export_path", data_dir / "export" / "notes.json")
    monkeypatch.setattr(config, "log_dir", data_dir / "logs")
    yield config


@pytest.fixture
def engine(test_config):
    """File-backed SQLite engine with all tables created."""
    engine = init_db(test_config.get_db_url())
    yield engine
    engine.dispose()


@pytest.fixture
def note_service(engine):
    """NoteService with a roomy capacity."""
    yield NoteService(engine=engine, capacity=1024 * 1024)


@pytest.fixture
def small_service(engine):
    """NoteService with a 10-byte capacity."""
    yield NoteService(engine=engine, capacity=10)
