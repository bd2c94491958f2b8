"""Keep Batch counters and status consistent with the files they track.

Two paths feed the counters:

* incremental, from discovery and ingest transitions (``record_*``), applied in
  the same transaction as the file change;
* full recomputation from file statuses (``recompute_counters``), run by the
  periodic reconcile task and after bulk deletes.

Both write the same totals, so repeated or concurrent runs converge.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from archive_ingest.core.errors import ConflictingState, NotFound
from archive_ingest.core.policy import IngestPolicy
from archive_ingest.db.base import utcnow
from archive_ingest.db.guard import storage_guard
from archive_ingest.db.models import Batch, BatchStatus, FileStatus, ImportFile
from archive_ingest.services.file_states import BATCH_TERMINAL

logger = logging.getLogger(__name__)

_TERMINAL_CODES = [int(s) for s in BATCH_TERMINAL]


@dataclass(frozen=True)
class BatchFileSummary:
    """Per-status file counts for one batch."""

    pending: int = 0
    queued: int = 0
    processing: int = 0
    ingested: int = 0
    failed: int = 0
    skipped_dedup: int = 0
    quarantined: int = 0
    exhausted: int = 0

    @property
    def total(self) -> int:
        return (
            self.pending
            + self.queued
            + self.processing
            + self.ingested
            + self.failed
            + self.skipped_dedup
            + self.quarantined
        )

    @property
    def active(self) -> int:
        return self.pending + self.queued + self.processing

    @property
    def succeeded(self) -> int:
        return self.ingested + self.skipped_dedup

    @property
    def started(self) -> bool:
        return self.total - self.pending - self.queued > 0


def _load_batch(session: Session, batch_id: str) -> Batch:
    batch = session.get(Batch, batch_id, populate_existing=True)
    if batch is None:
        raise NotFound("Batch", batch_id)
    return batch


def summarize_files(session: Session, batch_id: str, retry_ceiling: int) -> BatchFileSummary:
    """Count the batch's files by status."""
    with storage_guard(f"summarizing files for batch {batch_id}"):
        rows = session.execute(
            select(ImportFile.status, func.count(ImportFile.id))
            .where(ImportFile.batch_id == batch_id)
            .group_by(ImportFile.status)
        ).all()
        exhausted = session.scalar(
            select(func.count(ImportFile.id)).where(
                ImportFile.batch_id == batch_id,
                ImportFile.status == int(FileStatus.FAILED),
                ImportFile.attempt_count > retry_ceiling,
            )
        )

    counts = {FileStatus(code).name.lower(): count for code, count in rows}
    return BatchFileSummary(exhausted=exhausted or 0, **counts)


def decide_batch_status(
    current: BatchStatus,
    summary: BatchFileSummary,
    expected: int | None,
    policy: IngestPolicy,
) -> BatchStatus:
    """Roll file outcomes up into a batch status. Terminal values never move."""
    if current in BATCH_TERMINAL:
        return current
    if summary.exhausted > 0:
        return BatchStatus.FAILED

    if expected is None:
        # Unknown expected count: more files may still be discovered
        waiting_for_discovery = not policy.complete_without_expected
    else:
        waiting_for_discovery = summary.total < expected
    unresolved = summary.active + summary.failed
    if summary.total == 0 or unresolved > 0 or waiting_for_discovery:
        if summary.started:
            return BatchStatus.RUNNING
        return current

    if summary.quarantined > policy.quarantine_tolerance:
        return BatchStatus.FAILED
    if summary.succeeded > 0:
        return BatchStatus.COMPLETED
    return BatchStatus.FAILED


def record_discovered(session: Session, batch_id: str) -> None:
    """Count one newly registered file against the batch."""
    with storage_guard(f"counting discovered file for batch {batch_id}"):
        result = session.execute(
            update(Batch)
            .where(
                Batch.id == batch_id,
                Batch.status.notin_(_TERMINAL_CODES),
                or_(
                    Batch.file_count_expected.is_(None),
                    Batch.file_count_discovered < Batch.file_count_expected,
                ),
            )
            .values(
                file_count_discovered=Batch.file_count_discovered + 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
    if result.rowcount:
        return

    batch = _load_batch(session, batch_id)
    if batch.status in _TERMINAL_CODES:
        raise ConflictingState(
            f"Batch {batch_id} is {BatchStatus(batch.status).name}; it accepts no new files"
        )
    raise ConflictingState(
        f"Batch {batch_id} already discovered its expected {batch.file_count_expected} files"
    )


def record_ingested(session: Session, batch_id: str) -> None:
    """Count one file that reached INGESTED or SKIPPED_DEDUP."""
    with storage_guard(f"counting ingested file for batch {batch_id}"):
        result = session.execute(
            update(Batch)
            .where(
                Batch.id == batch_id,
                Batch.file_count_ingested < Batch.file_count_discovered,
            )
            .values(
                file_count_ingested=Batch.file_count_ingested + 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
    if not result.rowcount:
        # The file transition stands; the next reconcile repairs the counter.
        logger.warning(f"Ingested counter for batch {batch_id} not incremented")


def record_removed(session: Session, batch_id: str, was_ingested: bool) -> None:
    """Undo the counters a deleted file contributed."""
    with storage_guard(f"uncounting removed file for batch {batch_id}"):
        if was_ingested:
            session.execute(
                update(Batch)
                .where(Batch.id == batch_id, Batch.file_count_ingested > 0)
                .values(file_count_ingested=Batch.file_count_ingested - 1)
                .execution_options(synchronize_session=False)
            )
        session.execute(
            update(Batch)
            .where(
                Batch.id == batch_id,
                Batch.file_count_discovered > Batch.file_count_ingested,
            )
            .values(
                file_count_discovered=Batch.file_count_discovered - 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )


def mark_batch_running(session: Session, batch_id: str) -> bool:
    """PENDING -> RUNNING once the first file is claimed."""
    with storage_guard(f"starting batch {batch_id}"):
        result = session.execute(
            update(Batch)
            .where(Batch.id == batch_id, Batch.status == int(BatchStatus.PENDING))
            .values(status=int(BatchStatus.RUNNING), updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
    if result.rowcount:
        logger.info(f"Batch {batch_id} is now RUNNING")
    return bool(result.rowcount)


def recompute_counters(session: Session, batch_id: str, policy: IngestPolicy) -> Batch:
    """Overwrite discovered/ingested with totals derived from file rows."""
    _load_batch(session, batch_id)
    summary = summarize_files(session, batch_id, policy.retry_ceiling)
    with storage_guard(f"recomputing counters for batch {batch_id}"):
        session.execute(
            update(Batch)
            .where(Batch.id == batch_id)
            .values(
                file_count_discovered=summary.total,
                file_count_ingested=summary.succeeded,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
    batch = _load_batch(session, batch_id)
    if batch.file_count_expected is not None and summary.total > batch.file_count_expected:
        logger.warning(
            f"Batch {batch_id} holds {summary.total} files but expected "
            f"{batch.file_count_expected}"
        )
    return batch


def rollup_status(session: Session, batch_id: str, policy: IngestPolicy) -> Batch:
    """Move the batch status forward according to its files' outcomes."""
    batch = _load_batch(session, batch_id)
    current = BatchStatus(batch.status)
    if current in BATCH_TERMINAL:
        return batch

    summary = summarize_files(session, batch_id, policy.retry_ceiling)
    target = decide_batch_status(current, summary, batch.file_count_expected, policy)
    if target == current:
        return batch

    with storage_guard(f"rolling up status for batch {batch_id}"):
        result = session.execute(
            update(Batch)
            .where(Batch.id == batch_id, Batch.status == int(current))
            .values(status=int(target), updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
    if result.rowcount:
        logger.info(f"Batch {batch_id} moved {current.name} -> {target.name}")
    return _load_batch(session, batch_id)


def reconcile_batch(session: Session, batch_id: str, policy: IngestPolicy) -> Batch:
    recompute_counters(session, batch_id, policy)
    return rollup_status(session, batch_id, policy)


def reconcile_open_batches(session: Session, policy: IngestPolicy) -> list[Batch]:
    """Reconcile every batch that has not reached a terminal status."""
    with storage_guard("listing open batches"):
        batch_ids = session.scalars(
            select(Batch.id)
            .where(Batch.status.notin_(_TERMINAL_CODES))
            .order_by(Batch.created_at)
        ).all()
    return [reconcile_batch(session, batch_id, policy) for batch_id in batch_ids]


def check_consistency(session: Session, batch_id: str, policy: IngestPolicy) -> list[str]:
    """Describe every counter invariant the batch currently violates."""
    batch = _load_batch(session, batch_id)
    summary = summarize_files(session, batch_id, policy.retry_ceiling)
    problems = []

    if batch.file_count_ingested > batch.file_count_discovered:
        problems.append(
            f"file_count_ingested ({batch.file_count_ingested}) exceeds "
            f"file_count_discovered ({batch.file_count_discovered})"
        )
    if (
        batch.file_count_expected is not None
        and batch.file_count_discovered > batch.file_count_expected
    ):
        problems.append(
            f"file_count_discovered ({batch.file_count_discovered}) exceeds "
            f"file_count_expected ({batch.file_count_expected})"
        )
    if batch.file_count_discovered != summary.total:
        problems.append(
            f"file_count_discovered is {batch.file_count_discovered} but "
            f"{summary.total} files are tracked"
        )
    if batch.file_count_ingested != summary.succeeded:
        problems.append(
            f"file_count_ingested is {batch.file_count_ingested} but "
            f"{summary.succeeded} files are ingested or deduplicated"
        )
    return problems
