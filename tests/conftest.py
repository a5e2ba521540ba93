"""Shared test fixtures and configuration."""

import os
from pathlib import Path
import sys

import pytest


REPO_ROOT = Path(__file__).resolve().parents[1]
SRC = REPO_ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


# Complete test environment that overrides every bridge setting
TEST_ENV = {
    "SEARCH_BRIDGE_LOG_LEVEL": "info",
    "SEARCH_BRIDGE_LOG_JSON": "false",
    "SEARCH_BRIDGE_CALLBACK_FAILURE_LOG_LEVEL": "warning",
    "SEARCH_BRIDGE_DEFAULT_BACKEND": "auto",
    "SEARCH_BRIDGE_SQLITE_CACHE_SIZE_KB": "2048",
    "SEARCH_BRIDGE_SQLITE_MMAP_SIZE_BYTES": "0",
    "SEARCH_BRIDGE_LOCK_RETRY_TIMEOUT_MS": "0",
    "SEARCH_BRIDGE_MAX_REGISTRATIONS": "64",
}


# Set environment variables immediately when conftest.py is loaded
for key, value in TEST_ENV.items():
    os.environ[key] = value

from search_bridge import Document, TermGenerator, WritableDatabase
from search_bridge.config import reset_settings


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Set test defaults and drop cached settings around each test."""
    for key, value in TEST_ENV.items():
        monkeypatch.setenv(key, value)
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def memory_db():
    """An empty in-memory writable database."""
    return WritableDatabase()


@pytest.fixture
def index_text():
    """Index ``text`` into a new document and return it."""

    def _index(text, data=None, values=None, termgen=None):
        tg = termgen or TermGenerator()
        doc = Document()
        tg.set_document(doc)
        tg.index_text(text)
        doc.set_data(data if data is not None else text)
        for slot, value in (values or {}).items():
            doc.set_value(slot, value)
        return doc

    return _index


@pytest.fixture
def fox_db(memory_db, index_text):
    """Five small documents with a numeric value in slot 0 and a colour in slot 1."""
    texts = [
        ("the quick brown fox jumps over the lazy dog", 10, "red"),
        ("a fox in the henhouse", 20, "blue"),
        ("lazy afternoons and lazy dogs", 30, "red"),
        ("brown bread with brown butter", 40, "green"),
        ("nothing to see here", 50, "red"),
    ]
    for text, number, colour in texts:
        memory_db.add_document(index_text(text, values={0: number, 1: colour}))
    memory_db.commit()
    return memory_db
