"""Translate driver failures into the opaque StorageError."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy.exc import SQLAlchemyError

from archive_ingest.core.errors import StorageError

logger = logging.getLogger(__name__)


@contextmanager
def storage_guard(action: str) -> Iterator[None]:
    """Log full database detail, surface only StorageError to the caller."""
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error(f"Database error {action}: {exc}", exc_info=True)
        raise StorageError() from exc
