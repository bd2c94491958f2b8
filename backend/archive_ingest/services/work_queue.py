"""Work queue over import_files: claim, list, stats and stall recovery.

The queue is the non-terminal slice of ``import_files`` for one import, served
by the partial index ``ix_import_files_queue``. Claiming is safe across any
number of worker processes: candidate rows are locked with SKIP LOCKED where
the database supports it, and each row is then moved with a compare-and-set on
the status it was observed in. Rows lost to another claimant are skipped, never
waited on.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import and_, exists, func, or_, select, text, update
from sqlalchemy.orm import Session

from archive_ingest.core.errors import ValidationError
from archive_ingest.core.policy import IngestPolicy
from archive_ingest.db.base import utcnow
from archive_ingest.db.guard import storage_guard
from archive_ingest.db.models import Batch, BatchStatus, FileStatus, Import, ImportFile
from archive_ingest.db.models.import_file import QUEUE_PREDICATE
from archive_ingest.db.models.status_codes import CLAIMABLE_STATUSES, QUEUE_STATUSES
from archive_ingest.services import aggregator
from archive_ingest.services.imports import get_import
from archive_ingest.utils.validators import clip_message

logger = logging.getLogger(__name__)

MAX_CLAIM = 500


def _claimable_filter(import_id: str, policy: IngestPolicy):
    claimable = ImportFile.status.in_([int(s) for s in CLAIMABLE_STATUSES])
    if policy.auto_retry_failed:
        claimable = or_(
            claimable,
            and_(
                ImportFile.status == int(FileStatus.FAILED),
                ImportFile.attempt_count <= policy.retry_ceiling,
            ),
        )
    else:
        # FAILED rows are outside the queue index
        claimable = and_(text(QUEUE_PREDICATE), claimable)
    batch_cancelled = exists().where(
        Batch.id == ImportFile.batch_id,
        Batch.status == int(BatchStatus.CANCELLED),
    )
    return and_(ImportFile.import_id == import_id, claimable, ~batch_cancelled)


def _claims_halted(session: Session, owner: Import) -> bool:
    if owner.cancelled_at is not None:
        return True
    if owner.batch_id is not None:
        batch = session.get(Batch, owner.batch_id, populate_existing=True)
        if batch is not None and batch.status == BatchStatus.CANCELLED:
            return True
    return False


def _compare_and_claim(session: Session, file_id: int, observed: int) -> bool:
    result = session.execute(
        update(ImportFile)
        .where(ImportFile.id == file_id, ImportFile.status == observed)
        .values(status=int(FileStatus.PROCESSING), updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return bool(result.rowcount)


def claim_next(
    session: Session, import_id: str, limit: int, policy: IngestPolicy
) -> list[ImportFile]:
    """Move up to ``limit`` claimable files into PROCESSING and return them.

    Returns fewer (possibly none) when other workers got there first, when the
    queue is short, or when the import or its batch is cancelled.
    """
    if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= MAX_CLAIM:
        raise ValidationError(f"must be between 1 and {MAX_CLAIM}", field="limit")
    owner = get_import(session, import_id)
    import_id = owner.id
    if _claims_halted(session, owner):
        logger.info(f"Import {import_id} is cancelled; nothing claimed")
        return []

    claimed: list[int] = []
    with storage_guard(f"claiming files for import {import_id}"):
        for _ in range(policy.claim_max_rounds):
            wanted = limit - len(claimed)
            if wanted <= 0:
                break
            candidates = session.execute(
                select(ImportFile.id, ImportFile.status)
                .where(_claimable_filter(import_id, policy), ImportFile.id.notin_(claimed))
                .order_by(ImportFile.created_at, ImportFile.id)
                .limit(wanted)
                .with_for_update(skip_locked=True, of=ImportFile)
            ).all()
            if not candidates:
                break

            lost = 0
            for file_id, observed in candidates:
                if _compare_and_claim(session, file_id, observed):
                    claimed.append(file_id)
                else:
                    lost += 1
            if lost:
                logger.warning(
                    f"Lost {lost} claim(s) on import {import_id} to concurrent workers"
                )
            elif len(candidates) < wanted:
                break

        if not claimed:
            return []
        records = session.scalars(
            select(ImportFile)
            .where(ImportFile.id.in_(claimed))
            .order_by(ImportFile.created_at, ImportFile.id)
            .execution_options(populate_existing=True)
        ).all()

    for batch_id in {r.batch_id for r in records if r.batch_id is not None}:
        aggregator.mark_batch_running(session, batch_id)
    logger.info(f"Claimed {len(records)} file(s) for import {import_id}")
    return list(records)


def list_queued(session: Session, import_id: str) -> list[ImportFile]:
    """Snapshot of PENDING/QUEUED/PROCESSING files, oldest first."""
    import_id = get_import(session, import_id).id
    with storage_guard(f"listing queue for import {import_id}"):
        return list(
            session.scalars(
                select(ImportFile)
                .where(
                    ImportFile.import_id == import_id,
                    text(QUEUE_PREDICATE),
                )
                .order_by(ImportFile.created_at, ImportFile.id)
            ).all()
        )


def queue_stats(session: Session, import_id: str) -> dict[str, int]:
    """File counts per status for an import, plus ``total`` and ``active``."""
    import_id = get_import(session, import_id).id
    with storage_guard(f"computing queue stats for import {import_id}"):
        rows = session.execute(
            select(ImportFile.status, func.count(ImportFile.id))
            .where(ImportFile.import_id == import_id)
            .group_by(ImportFile.status)
        ).all()

    stats = {status.name.lower(): 0 for status in FileStatus}
    for code, count in rows:
        stats[FileStatus(code).name.lower()] = count
    stats["total"] = sum(count for _, count in rows)
    stats["active"] = sum(stats[s.name.lower()] for s in QUEUE_STATUSES)
    return stats


def find_stalled(
    session: Session, policy: IngestPolicy, now: datetime | None = None
) -> list[ImportFile]:
    """PROCESSING files with no progress for longer than the stall threshold."""
    cutoff = (now or utcnow()) - timedelta(seconds=policy.stall_threshold_seconds)
    with storage_guard("finding stalled files"):
        return list(
            session.scalars(
                select(ImportFile)
                .where(
                    ImportFile.status == int(FileStatus.PROCESSING),
                    ImportFile.updated_at < cutoff,
                )
                .order_by(ImportFile.updated_at, ImportFile.id)
            ).all()
        )


def recover_stalled(
    session: Session, policy: IngestPolicy, now: datetime | None = None
) -> list[ImportFile]:
    """Apply the configured stall policy.

    ``manual`` only reports the stalled files. ``requeue`` fails them with a
    stall message so they become eligible for retry; a heartbeat that lands in
    between wins and the file is left alone.
    """
    now = now or utcnow()
    stalled = find_stalled(session, policy, now)
    if policy.stall_recovery == "manual":
        for record in stalled:
            logger.warning(
                f"File {record.id} of import {record.import_id} stalled in PROCESSING "
                f"since {record.updated_at.isoformat()}"
            )
        return stalled

    cutoff = now - timedelta(seconds=policy.stall_threshold_seconds)
    message = clip_message(
        f"stalled: no progress for {policy.stall_threshold_seconds} seconds"
    )
    recovered = []
    for record in stalled:
        with storage_guard(f"requeueing stalled file {record.id}"):
            result = session.execute(
                update(ImportFile)
                .where(
                    ImportFile.id == record.id,
                    ImportFile.status == int(FileStatus.PROCESSING),
                    ImportFile.updated_at < cutoff,
                )
                .values(
                    status=int(FileStatus.FAILED),
                    last_error=message,
                    attempt_count=ImportFile.attempt_count + 1,
                    updated_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
        if not result.rowcount:
            continue
        refreshed = session.get(ImportFile, record.id, populate_existing=True)
        recovered.append(refreshed)
        logger.warning(f"Requeued stalled file {record.id} as FAILED for retry")
        if refreshed.batch_id is not None and policy.rollup_on_transition:
            aggregator.rollup_status(session, refreshed.batch_id, policy)
    return recovered
