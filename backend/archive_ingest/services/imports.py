"""Import sessions: the logical owner of files and attempts."""

from __future__ import annotations

import logging

from sqlalchemy import delete, exists, select, update
from sqlalchemy.orm import Session

from archive_ingest.core.errors import ConflictingState, NotFound
from archive_ingest.core.policy import IngestPolicy
from archive_ingest.db.base import utcnow
from archive_ingest.db.guard import storage_guard
from archive_ingest.db.models import Batch, FileStatus, Import, ImportAttempt, ImportFile
from archive_ingest.services import aggregator
from archive_ingest.services.file_states import ATTEMPT_ACTIVE
from archive_ingest.utils.validators import validate_uuid

logger = logging.getLogger(__name__)


def create_import(
    session: Session,
    *,
    batch_id: str | None = None,
    label: str | None = None,
) -> Import:
    if batch_id is not None:
        batch_id = validate_uuid(batch_id, "batch_id")
        if session.get(Batch, batch_id) is None:
            raise NotFound("Batch", batch_id)

    record = Import(batch_id=batch_id, label=label)
    with storage_guard("creating import"):
        session.add(record)
        session.flush()
    logger.info(f"Created import {record.id} (batch {batch_id})")
    return record


def get_import(session: Session, import_id: str, *, for_update: bool = False) -> Import:
    import_id = validate_uuid(import_id, "import_id")
    with storage_guard(f"fetching import {import_id}"):
        record = session.get(
            Import, import_id, populate_existing=True, with_for_update=for_update or None
        )
    if record is None:
        raise NotFound("Import", import_id)
    return record


def cancel_import(session: Session, import_id: str) -> Import:
    """Stop handing out this import's files. In-flight work may finish."""
    record = get_import(session, import_id)
    if record.cancelled_at is None:
        with storage_guard(f"cancelling import {import_id}"):
            session.execute(
                update(Import)
                .where(Import.id == record.id, Import.cancelled_at.is_(None))
                .values(cancelled_at=utcnow())
                .execution_options(synchronize_session=False)
            )
        logger.info(f"Cancelled import {record.id}")
    return get_import(session, record.id)


def delete_import(session: Session, import_id: str, policy: IngestPolicy) -> None:
    """Delete an import with its files and attempts (database cascade)."""
    record = get_import(session, import_id)

    with storage_guard(f"deleting import {record.id}"):
        busy_file = session.scalar(
            select(
                exists().where(
                    ImportFile.import_id == record.id,
                    ImportFile.status == int(FileStatus.PROCESSING),
                )
            )
        )
        if busy_file:
            raise ConflictingState(f"Import {record.id} has files being processed")

        busy_attempt = session.scalar(
            select(
                exists().where(
                    ImportAttempt.import_id == record.id,
                    ImportAttempt.status.in_([int(s) for s in ATTEMPT_ACTIVE]),
                )
            )
        )
        if busy_attempt:
            raise ConflictingState(f"Import {record.id} has an attempt in progress")

        batch_ids = session.scalars(
            select(ImportFile.batch_id)
            .where(ImportFile.import_id == record.id, ImportFile.batch_id.is_not(None))
            .distinct()
        ).all()
        session.execute(delete(Import).where(Import.id == record.id))

    for batch_id in batch_ids:
        aggregator.recompute_counters(session, batch_id, policy)
    logger.info(f"Deleted import {record.id}")
