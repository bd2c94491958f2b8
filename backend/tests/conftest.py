import os

# Settings are read at import time; point them at SQLite before anything loads.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")

import pytest
from sqlalchemy.orm import sessionmaker

from archive_ingest.core.policy import IngestPolicy
from archive_ingest.db.base import Base
from archive_ingest.db.session import build_engine
from archive_ingest.services import batches, import_files, imports


@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite so separate connections see the same data."""
    engine = build_engine(f"sqlite:///{tmp_path / 'ingest.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def policy():
    return IngestPolicy()


@pytest.fixture
def make_batch(session):
    def _make(**kwargs):
        return batches.create_batch(session, **kwargs)

    return _make


@pytest.fixture
def make_import(session):
    def _make(batch=None, label=None):
        return imports.create_import(
            session, batch_id=batch.id if batch is not None else None, label=label
        )

    return _make


@pytest.fixture
def add_files(session):
    """Register ``count`` files with distinct digests on an import."""

    def _add(owner, count, start=0, **kwargs):
        return [
            import_files.register_file(
                session,
                import_id=owner.id,
                path=f"/archive/box-{start + n:04d}.tif",
                sha256=f"{start + n:064x}",
                size_bytes=1024 * (start + n + 1),
                **kwargs,
            )
            for n in range(count)
        ]

    return _add
