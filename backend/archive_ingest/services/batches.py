"""Batch registration, lookup, manifest updates, cancellation and deletion."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.orm import Session

from archive_ingest.core.errors import (
    ConflictingState,
    IngestError,
    InvalidTransition,
    NotFound,
    ValidationError,
)
from archive_ingest.core.policy import IngestPolicy
from archive_ingest.db.base import utcnow
from archive_ingest.db.guard import storage_guard
from archive_ingest.db.models import Batch, BatchStatus, Import
from archive_ingest.services import aggregator
from archive_ingest.services.file_states import BATCH_TERMINAL, BATCH_TRANSITIONS, sources_for
from archive_ingest.utils.validators import (
    sha256_from_hex,
    validate_batch_fields,
    validate_pagination,
    validate_status_code,
    validate_uuid,
)

logger = logging.getLogger(__name__)

_TERMINAL_CODES = [int(s) for s in BATCH_TERMINAL]


def create_batch(
    session: Session,
    *,
    source_system: str | None = None,
    created_by: str | None = None,
    manifest_sha256: str | None = None,
    file_count_expected: int | None = None,
    meta: dict[str, Any] | None = None,
) -> Batch:
    """Register a new PENDING batch."""
    validate_batch_fields(source_system, created_by, file_count_expected)
    manifest = (
        sha256_from_hex(manifest_sha256, field="manifest_sha256")
        if manifest_sha256 is not None
        else None
    )

    batch = Batch(
        source_system=source_system,
        created_by=created_by,
        manifest_sha256=manifest,
        file_count_expected=file_count_expected,
        meta=meta,
        status=int(BatchStatus.PENDING),
        file_count_discovered=0,
        file_count_ingested=0,
    )
    with storage_guard("creating batch"):
        session.add(batch)
        session.flush()
    logger.info(f"Created batch {batch.id} expecting {file_count_expected} files")
    return batch


def get_batch(session: Session, batch_id: str) -> Batch:
    batch_id = validate_uuid(batch_id, "batch_id")
    with storage_guard(f"fetching batch {batch_id}"):
        batch = session.get(Batch, batch_id, populate_existing=True)
    if batch is None:
        raise NotFound("Batch", batch_id)
    return batch


def list_batches(
    session: Session,
    *,
    status: int | None = None,
    source_system: str | None = None,
    created_by: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[Batch], int]:
    """Return one page of batches, newest first, plus the matching total."""
    page, limit = validate_pagination(page, limit)
    filters = []
    if status is not None:
        filters.append(Batch.status == int(validate_status_code(status, BatchStatus)))
    if source_system:
        filters.append(Batch.source_system == source_system)
    if created_by:
        filters.append(Batch.created_by == created_by)

    with storage_guard("listing batches"):
        total = session.scalar(select(func.count(Batch.id)).where(*filters)) or 0
        items = session.scalars(
            select(Batch)
            .where(*filters)
            .order_by(Batch.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()
    return list(items), total


def cancel_batch(session: Session, batch_id: str) -> Batch:
    """Cancel a batch and stop new claims for every import processing it.

    Files already PROCESSING are left to finish.
    """
    batch_id = validate_uuid(batch_id, "batch_id")
    sources = [int(s) for s in sources_for(BATCH_TRANSITIONS, BatchStatus.CANCELLED)]
    now = utcnow()
    with storage_guard(f"cancelling batch {batch_id}"):
        result = session.execute(
            update(Batch)
            .where(Batch.id == batch_id, Batch.status.in_(sources))
            .values(status=int(BatchStatus.CANCELLED), updated_at=now)
            .execution_options(synchronize_session=False)
        )
        batch = session.get(Batch, batch_id, populate_existing=True)
        if batch is None:
            raise NotFound("Batch", batch_id)
        if not result.rowcount and batch.status != BatchStatus.CANCELLED:
            raise InvalidTransition(
                "Batch", batch_id, BatchStatus(batch.status).name, "CANCELLED"
            )
        session.execute(
            update(Import)
            .where(Import.batch_id == batch_id, Import.cancelled_at.is_(None))
            .values(cancelled_at=now)
            .execution_options(synchronize_session=False)
        )

    if result.rowcount:
        logger.info(f"Cancelled batch {batch_id}")
    return batch


def _update_refusal(
    batch: Batch, file_count_expected: int | None, manifest: bytes | None
) -> IngestError | None:
    if batch.status in _TERMINAL_CODES:
        return ConflictingState(
            f"Batch {batch.id} is {BatchStatus(batch.status).name}; it is read-only"
        )
    if file_count_expected is not None:
        if batch.file_count_expected not in (None, file_count_expected):
            return ConflictingState(
                f"Batch {batch.id} already expects {batch.file_count_expected} files"
            )
        if file_count_expected < batch.file_count_discovered:
            return ValidationError(
                f"must be at least the {batch.file_count_discovered} files already discovered",
                field="file_count_expected",
            )
    if manifest is not None and batch.manifest_sha256 not in (None, manifest):
        return ConflictingState(f"Batch {batch.id} already has a different manifest")
    return None


def update_batch(
    session: Session,
    batch_id: str,
    *,
    file_count_expected: int | None = None,
    manifest_sha256: str | None = None,
    source_system: str | None = None,
    created_by: str | None = None,
    meta: dict[str, Any] | None = None,
    policy: IngestPolicy | None = None,
) -> Batch:
    """Fill in batch details once the manifest has been parsed.

    ``file_count_expected`` and ``manifest_sha256`` can each be set once;
    sending the stored value again is accepted. Terminal batches are read-only.
    Setting the expected count re-runs the status rollup, since a batch with an
    unknown count cannot complete by default.
    """
    batch = get_batch(session, batch_id)
    validate_batch_fields(source_system, created_by, file_count_expected)
    manifest = (
        sha256_from_hex(manifest_sha256, field="manifest_sha256")
        if manifest_sha256 is not None
        else None
    )

    values: dict[str, Any] = {}
    conditions = [Batch.id == batch.id, Batch.status.notin_(_TERMINAL_CODES)]
    if file_count_expected is not None:
        values["file_count_expected"] = file_count_expected
        conditions.append(
            or_(
                Batch.file_count_expected.is_(None),
                Batch.file_count_expected == file_count_expected,
            )
        )
        conditions.append(Batch.file_count_discovered <= file_count_expected)
    if manifest is not None:
        values["manifest_sha256"] = manifest
        conditions.append(
            or_(Batch.manifest_sha256.is_(None), Batch.manifest_sha256 == manifest)
        )
    for field, value in (
        ("source_system", source_system),
        ("created_by", created_by),
        ("meta", meta),
    ):
        if value is not None:
            values[field] = value
    if not values:
        raise ValidationError("nothing to update")

    refusal = _update_refusal(batch, file_count_expected, manifest)
    if refusal is not None:
        raise refusal

    with storage_guard(f"updating batch {batch.id}"):
        result = session.execute(
            update(Batch)
            .where(*conditions)
            .values(updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
    if not result.rowcount:
        current = get_batch(session, batch.id)
        raise _update_refusal(current, file_count_expected, manifest) or ConflictingState(
            f"Batch {batch.id} changed while being updated"
        )

    logger.info(f"Updated batch {batch.id}: {', '.join(sorted(values))}")
    if file_count_expected is not None and policy is not None and policy.rollup_on_transition:
        return aggregator.rollup_status(session, batch.id, policy)
    return get_batch(session, batch.id)


def delete_batch(session: Session, batch_id: str) -> None:
    """Delete a finished batch; its imports and files stay, detached from it."""
    batch = get_batch(session, batch_id)
    with storage_guard(f"deleting batch {batch.id}"):
        result = session.execute(
            delete(Batch)
            .where(Batch.id == batch.id, Batch.status.in_(_TERMINAL_CODES))
            .execution_options(synchronize_session=False)
        )
    if not result.rowcount:
        current = get_batch(session, batch.id)
        raise ConflictingState(
            f"Batch {batch.id} is {BatchStatus(current.status).name}; "
            "only finished batches can be deleted"
        )
    session.expunge(batch)
    logger.info(f"Deleted batch {batch.id}")
