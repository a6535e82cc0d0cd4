"""Common test fixtures for the Shelfnote content store."""

import tempfile
from pathlib import Path

import pytest

from shelfnote.config import config
from shelfnote.models.db_models import init_db
from shelfnote.models.schema import FolderCreate, NoteCreate
from shelfnote.observability import metrics
from shelfnote.services.content_service import ContentService
from shelfnote.storage.stores import open_stores
from tests.fakes import FakeClock, SequentialIds


@pytest.fixture
def temp_dir():
    """Create a temporary directory for database and log files."""
    with tempfile.TemporaryDirectory() as tmp:
        yield Path(tmp)


@pytest.fixture
def test_config(temp_dir, monkeypatch):
    """Point the global config at temporary paths (auto-restored)."""
    monkeypatch.setattr(config, "base_dir", temp_dir)
    monkeypatch.setattr(config, "database_path", temp_dir / "test_shelfnote.db")
    monkeypatch.setattr(config, "log_dir", temp_dir / "logs")
    monkeypatch.setattr(config, "in_memory_db", False)
    monkeypatch.setattr(config, "log_level", config.log_level)
    yield config


@pytest.fixture
def engine():
    """A fresh in-memory database with the full schema."""
    engine = init_db("sqlite://")
    yield engine
    engine.dispose()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ids():
    return SequentialIds()


@pytest.fixture
def stores(engine, clock, ids):
    """Repository bundle over the in-memory database."""
    bundle = open_stores(engine, clock=clock, id_factory=ids)
    yield bundle
    bundle.close()


@pytest.fixture
def tag_repository(stores):
    return stores.tags


@pytest.fixture
def folder_repository(stores):
    return stores.folders


@pytest.fixture
def note_repository(stores):
    return stores.notes


@pytest.fixture
def mark_repository(stores):
    return stores.marks


@pytest.fixture
def service(stores):
    """Create a test ContentService."""
    return ContentService(stores)


@pytest.fixture(autouse=True)
def _reset_metrics():
    """Keep the global metrics collector isolated between tests."""
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def make_folder(folder_repository):
    """Factory creating folders by name."""
    def _make(name, parent_id=None):
        return folder_repository.create(FolderCreate(name=name, parent_id=parent_id))
    return _make


@pytest.fixture
def make_note(note_repository):
    """Factory creating notes with optional folder and tags."""
    def _make(title="Note", content="", folder_id=None, tag_ids=None):
        return note_repository.create(NoteCreate(
            title=title, content=content, folder_id=folder_id, tag_ids=tag_ids or []
        ))
    return _make
