"""
Pytest configuration and fixtures for the back-office import tests.

Every test runs against a private in-memory SQLite database and an in-memory
file source, so no external services are needed.
"""

import io
import os

# Tests never bootstrap the configured database; each fixture builds its own.
os.environ.setdefault("SKIP_DB_INIT", "1")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("STORAGE_PROVIDER", "local")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from backoffice.db.store import SqlTargetStore
from backoffice.domain.imports.jobs import ImportJobTracker
from backoffice.integrations.storage import SourceFileError


class InMemoryFileSource:
    """File source holding staged files in a dict."""

    def __init__(self):
        self.files = {}

    def add(self, reference: str, content: bytes) -> str:
        self.files[reference] = content
        return reference

    def open_file(self, reference: str):
        try:
            return io.BytesIO(self.files[reference])
        except KeyError:
            raise SourceFileError(f"File not found: {reference}")

    def stage_file(self, file_content: bytes, file_name: str, folder: str = "imports"):
        reference = f"{folder}/{len(self.files) + 1}_{file_name}"
        self.files[reference] = file_content
        return {"file_reference": reference, "file_name": file_name, "etag": None, "size": len(file_content)}


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine):
    target_store = SqlTargetStore(engine)
    target_store.ensure_tables()
    return target_store


@pytest.fixture
def file_source():
    return InMemoryFileSource()


@pytest.fixture
def tracker(store, file_source):
    job_tracker = ImportJobTracker(store, file_source, max_workers=2, progress_every=2, queue_size=5)
    yield job_tracker
    job_tracker.shutdown(wait=True)