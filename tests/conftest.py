"""
Shared pytest fixtures for odinsource tests.

Provides temporary stores and small fake PDF files so tests never touch
the user's real catalog.
"""

from pathlib import Path

import pytest

from odinsource.api import Catalog
from odinsource.database import Database
from odinsource.document_store import DocumentStore
from odinsource.query import QueryEngine
from odinsource.tag_registry import TagRegistry


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Keep environment-derived paths inside the test's tmp dir."""
    monkeypatch.setenv("ODINSOURCE_STORE_PATH", str(tmp_path / "env-store"))
    monkeypatch.delenv("ODINSOURCE_VERBOSE", raising=False)


@pytest.fixture
def make_pdf(tmp_path):
    """Factory writing a fake PDF with the given body; returns its path."""
    src_dir = tmp_path / "src"
    src_dir.mkdir()

    def _make(name: str, body: str | bytes | None = None) -> Path:
        if body is None:
            body = f"content of {name}"
        if isinstance(body, str):
            body = body.encode("utf-8")
        path = src_dir / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"%PDF-1.4\n" + body)
        return path

    return _make


@pytest.fixture
def db():
    """In-memory database."""
    database = Database(":memory:")
    yield database
    database.close()


@pytest.fixture
def registry(db):
    return TagRegistry(db)


@pytest.fixture
def store(db, registry, tmp_path):
    """DocumentStore keeping copies under tmp_path/documents."""
    return DocumentStore(db, registry, documents_dir=tmp_path / "documents")


@pytest.fixture
def engine(store):
    return QueryEngine(store)


@pytest.fixture
def catalog(tmp_path):
    """A Catalog on a fresh store directory."""
    cat = Catalog(tmp_path / "store")
    yield cat
    cat.close()
