"""File records: registration, lookup and status transitions.

Every transition is a single conditional UPDATE tagged with the statuses it
may start from, so two workers racing on the same row cannot both win and a
refused transition leaves the row untouched.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.orm import Session

from archive_ingest.core.errors import (
    ConflictingState,
    InvalidTransition,
    NotFound,
    ValidationError,
)
from archive_ingest.core.policy import IngestPolicy
from archive_ingest.db.base import utcnow
from archive_ingest.db.guard import storage_guard
from archive_ingest.db.models import Batch, BatchStatus, FileStatus, Import, ImportFile
from archive_ingest.services import aggregator
from archive_ingest.services.file_states import (
    FILE_INGESTED,
    FILE_TERMINAL,
    FILE_TRANSITIONS,
    sources_for,
    status_name,
)
from archive_ingest.utils.validators import (
    clip_message,
    sha256_from_hex,
    validate_file_fields,
    validate_file_update,
    validate_pagination,
    validate_status_code,
    validate_uuid,
)

logger = logging.getLogger(__name__)


def register_file(
    session: Session,
    *,
    import_id: str,
    path: str,
    sha256: str,
    size_bytes: int | None = None,
    batch_id: str | None = None,
) -> ImportFile:
    """Record a discovered file as PENDING.

    When the file belongs to a batch (explicitly or through its import) the
    batch's discovered counter moves in the same transaction.
    """
    clean_path, digest, size_bytes = validate_file_fields(path, sha256, size_bytes)
    import_id = validate_uuid(import_id, "import_id")
    if batch_id is not None:
        batch_id = validate_uuid(batch_id, "batch_id")

    with storage_guard(f"registering file for import {import_id}"):
        owner = session.get(Import, import_id)
    if owner is None:
        raise NotFound("Import", import_id)
    batch_id = batch_id or owner.batch_id

    if batch_id is not None:
        if session.get(Batch, batch_id) is None:
            raise NotFound("Batch", batch_id)
        aggregator.record_discovered(session, batch_id)

    record = ImportFile(
        import_id=import_id,
        batch_id=batch_id,
        path=clean_path,
        size_bytes=size_bytes,
        sha256=digest,
        status=int(FileStatus.PENDING),
        attempt_count=0,
    )
    with storage_guard(f"registering file for import {import_id}"):
        session.add(record)
        session.flush()
    logger.info(f"Registered file {record.id} ({clean_path}) for import {import_id}")
    return record


def get_file(session: Session, file_id: int) -> ImportFile:
    with storage_guard(f"fetching file {file_id}"):
        record = session.get(ImportFile, file_id, populate_existing=True)
    if record is None:
        raise NotFound("ImportFile", file_id)
    return record


def list_files(
    session: Session,
    *,
    import_id: str | None = None,
    batch_id: str | None = None,
    status: int | None = None,
    sha256: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[ImportFile], int]:
    """Return one page of files, newest first, plus the matching total."""
    page, limit = validate_pagination(page, limit)
    filters = []
    if import_id is not None:
        filters.append(ImportFile.import_id == validate_uuid(import_id, "import_id"))
    if batch_id is not None:
        filters.append(ImportFile.batch_id == validate_uuid(batch_id, "batch_id"))
    if status is not None:
        filters.append(ImportFile.status == int(validate_status_code(status, FileStatus)))
    if sha256 is not None:
        filters.append(ImportFile.sha256 == sha256_from_hex(sha256))

    with storage_guard("listing files"):
        total = session.scalar(select(func.count(ImportFile.id)).where(*filters)) or 0
        items = session.scalars(
            select(ImportFile)
            .where(*filters)
            .order_by(ImportFile.created_at.desc(), ImportFile.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()
    return list(items), total


def _transition(
    session: Session,
    file_id: int,
    target: FileStatus,
    values: dict[str, Any] | None = None,
    *,
    extra_where: tuple = (),
    idempotent: bool = False,
) -> tuple[ImportFile, bool]:
    """Compare-and-set ``file_id`` into ``target``.

    Returns the refreshed record and whether this call changed it.
    """
    sources = [int(s) for s in sources_for(FILE_TRANSITIONS, target)]
    with storage_guard(f"moving file {file_id} to {target.name}"):
        result = session.execute(
            update(ImportFile)
            .where(ImportFile.id == file_id, ImportFile.status.in_(sources), *extra_where)
            .values(status=int(target), updated_at=utcnow(), **(values or {}))
            .execution_options(synchronize_session=False)
        )
        record = session.get(ImportFile, file_id, populate_existing=True)

    if record is None:
        raise NotFound("ImportFile", file_id)
    if result.rowcount:
        logger.info(f"File {file_id} -> {target.name}")
        return record, True
    if idempotent and record.status == target:
        return record, False
    raise InvalidTransition(
        "ImportFile", file_id, status_name(FileStatus, record.status), target.name
    )


def _after_terminal(
    session: Session, record: ImportFile, policy: IngestPolicy | None
) -> None:
    if record.batch_id is None:
        return
    if record.status in FILE_INGESTED:
        aggregator.record_ingested(session, record.batch_id)
    if policy is not None and policy.rollup_on_transition:
        aggregator.rollup_status(session, record.batch_id, policy)


def enqueue_file(session: Session, file_id: int) -> ImportFile:
    record, _ = _transition(session, file_id, FileStatus.QUEUED)
    return record


def mark_ingested(
    session: Session, file_id: int, policy: IngestPolicy | None = None
) -> ImportFile:
    """PROCESSING -> INGESTED. Repeating it on an INGESTED file is a no-op."""
    record, changed = _transition(
        session,
        file_id,
        FileStatus.INGESTED,
        {"ingested_at": utcnow()},
        idempotent=True,
    )
    if changed:
        _after_terminal(session, record, policy)
    return record


def mark_failed(
    session: Session, file_id: int, message: str, policy: IngestPolicy | None = None
) -> ImportFile:
    if not message or not message.strip():
        raise ValidationError("is required when marking a file failed", field="message")
    record, _ = _transition(
        session,
        file_id,
        FileStatus.FAILED,
        {
            "last_error": clip_message(message),
            "attempt_count": ImportFile.attempt_count + 1,
        },
    )
    logger.warning(f"File {file_id} failed (attempt {record.attempt_count}): {message}")
    _after_terminal(session, record, policy)
    return record


def mark_skipped_dedup(
    session: Session, file_id: int, policy: IngestPolicy | None = None
) -> ImportFile:
    record, _ = _transition(
        session, file_id, FileStatus.SKIPPED_DEDUP, {"ingested_at": utcnow()}
    )
    _after_terminal(session, record, policy)
    return record


def mark_quarantined(
    session: Session, file_id: int, reason: str, policy: IngestPolicy | None = None
) -> ImportFile:
    """Irreversibly reject the file."""
    if not reason or not reason.strip():
        raise ValidationError("is required when quarantining a file", field="reason")
    record, _ = _transition(
        session, file_id, FileStatus.QUARANTINED, {"last_error": clip_message(reason)}
    )
    logger.warning(f"File {file_id} quarantined: {reason}")
    _after_terminal(session, record, policy)
    return record


def retry_file(session: Session, file_id: int) -> ImportFile:
    """FAILED -> PROCESSING. attempt_count already counts the failure."""
    record = get_file(session, file_id)
    owner = session.get(Import, record.import_id, populate_existing=True)
    if owner is not None and owner.cancelled_at is not None:
        raise ConflictingState(f"Import {record.import_id} is cancelled")
    if record.batch_id is not None:
        batch = session.get(Batch, record.batch_id, populate_existing=True)
        if batch is not None and batch.status == BatchStatus.CANCELLED:
            raise ConflictingState(f"Batch {record.batch_id} is cancelled")

    record, _ = _transition(
        session,
        file_id,
        FileStatus.PROCESSING,
        extra_where=(ImportFile.status == int(FileStatus.FAILED),),
    )
    return record


def heartbeat(session: Session, file_id: int) -> ImportFile:
    """Signal that a PROCESSING file is still making progress."""
    with storage_guard(f"recording heartbeat for file {file_id}"):
        result = session.execute(
            update(ImportFile)
            .where(
                ImportFile.id == file_id,
                ImportFile.status == int(FileStatus.PROCESSING),
            )
            .values(updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
    record = get_file(session, file_id)
    if not result.rowcount:
        raise InvalidTransition(
            "ImportFile", file_id, status_name(FileStatus, record.status), "PROCESSING"
        )
    return record


def find_duplicate(
    session: Session, record: ImportFile, policy: IngestPolicy
) -> ImportFile | None:
    """Oldest INGESTED file sharing ``record``'s hash inside the dedup scope."""
    conditions = [
        ImportFile.sha256 == record.sha256,
        ImportFile.status == int(FileStatus.INGESTED),
        ImportFile.id != record.id,
    ]
    if policy.dedup_scope == "import":
        conditions.append(ImportFile.import_id == record.import_id)
    with storage_guard(f"looking up duplicates of file {record.id}"):
        return session.scalars(
            select(ImportFile)
            .where(and_(*conditions))
            .order_by(ImportFile.ingested_at, ImportFile.id)
            .limit(1)
        ).first()


def resolve_duplicate(
    session: Session, file_id: int, policy: IngestPolicy
) -> ImportFile | None:
    """Skip a PROCESSING file whose content is already ingested.

    Returns the earlier copy when the file was skipped, ``None`` when it is
    not a duplicate and should be ingested normally.
    """
    record = get_file(session, file_id)
    if record.status != FileStatus.PROCESSING:
        raise InvalidTransition(
            "ImportFile",
            file_id,
            status_name(FileStatus, record.status),
            FileStatus.SKIPPED_DEDUP.name,
        )
    original = find_duplicate(session, record, policy)
    if original is None:
        return None
    mark_skipped_dedup(session, file_id, policy)
    logger.info(f"File {file_id} duplicates file {original.id}; skipped")
    return original


def delete_file(session: Session, file_id: int) -> None:
    """Delete a file record; refused while it is being processed."""
    record = get_file(session, file_id)
    observed = record.status
    if observed == FileStatus.PROCESSING:
        raise ConflictingState(f"ImportFile {file_id} is being processed")

    batch_id = record.batch_id
    with storage_guard(f"deleting file {file_id}"):
        result = session.execute(
            delete(ImportFile)
            .where(ImportFile.id == file_id, ImportFile.status == observed)
            .execution_options(synchronize_session=False)
        )
    if not result.rowcount:
        raise ConflictingState(f"ImportFile {file_id} changed while being deleted")

    session.expunge(record)
    if batch_id is not None:
        aggregator.record_removed(session, batch_id, observed in FILE_INGESTED)
    logger.info(f"Deleted file {file_id}")


def update_file(
    session: Session,
    file_id: int,
    *,
    path: str | None = None,
    size_bytes: int | None = None,
) -> ImportFile:
    """Correct the path or size of a file that has not reached a final state."""
    record = get_file(session, file_id)
    values = validate_file_update(path=path, size_bytes=size_bytes)
    if record.status in FILE_TERMINAL:
        raise ConflictingState(
            f"ImportFile {file_id} is {status_name(FileStatus, record.status)}; it is read-only"
        )

    with storage_guard(f"updating file {file_id}"):
        result = session.execute(
            update(ImportFile)
            .where(
                ImportFile.id == file_id,
                ImportFile.status.notin_([int(s) for s in FILE_TERMINAL]),
            )
            .values(updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
    record = get_file(session, file_id)
    if not result.rowcount:
        raise ConflictingState(
            f"ImportFile {file_id} is {status_name(FileStatus, record.status)}; it is read-only"
        )
    logger.info(f"Updated file {file_id}: {', '.join(sorted(values))}")
    return record
