"""Attempt supervisor: one ImportAttempt per execution run of an import."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

from sqlalchemy import delete, exists, func, select, update
from sqlalchemy.orm import Session

from archive_ingest.core.errors import ConflictingState, InvalidTransition, NotFound
from archive_ingest.core.policy import IngestPolicy
from archive_ingest.db.base import utcnow
from archive_ingest.db.guard import storage_guard
from archive_ingest.db.models import AttemptStatus, ImportAttempt
from archive_ingest.services.file_states import (
    ATTEMPT_ACTIVE,
    ATTEMPT_TRANSITIONS,
    sources_for,
    status_name,
)
from archive_ingest.services.imports import get_import
from archive_ingest.services.work_queue import queue_stats
from archive_ingest.utils.validators import (
    clip_message,
    validate_pagination,
    validate_status_code,
    validate_uuid,
)

logger = logging.getLogger(__name__)

_ACTIVE_CODES = [int(s) for s in ATTEMPT_ACTIVE]


def start_attempt(session: Session, import_id: str, policy: IngestPolicy) -> ImportAttempt:
    """Open a PENDING attempt for an import.

    With ``single_active_attempt`` the import row is locked while checking so
    two supervisors cannot both open a run.
    """
    owner = get_import(session, import_id, for_update=policy.single_active_attempt)
    if owner.cancelled_at is not None:
        raise ConflictingState(f"Import {owner.id} is cancelled")

    with storage_guard(f"starting attempt for import {owner.id}"):
        if policy.single_active_attempt:
            busy = session.scalar(
                select(
                    exists().where(
                        ImportAttempt.import_id == owner.id,
                        ImportAttempt.status.in_(_ACTIVE_CODES),
                    )
                )
            )
            if busy:
                raise ConflictingState(f"Import {owner.id} already has an attempt in progress")

        attempt = ImportAttempt(
            import_id=owner.id,
            status=int(AttemptStatus.PENDING),
            started_at=utcnow(),
        )
        session.add(attempt)
        session.flush()
    logger.info(f"Started attempt {attempt.id} for import {owner.id}")
    return attempt


def get_attempt(session: Session, attempt_id: int) -> ImportAttempt:
    with storage_guard(f"fetching attempt {attempt_id}"):
        attempt = session.get(ImportAttempt, attempt_id, populate_existing=True)
    if attempt is None:
        raise NotFound("ImportAttempt", attempt_id)
    return attempt


def list_attempts(
    session: Session,
    *,
    import_id: str | None = None,
    status: int | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[ImportAttempt], int]:
    page, limit = validate_pagination(page, limit)
    filters = []
    if import_id is not None:
        filters.append(ImportAttempt.import_id == validate_uuid(import_id, "import_id"))
    if status is not None:
        filters.append(ImportAttempt.status == int(validate_status_code(status, AttemptStatus)))

    with storage_guard("listing attempts"):
        total = session.scalar(select(func.count(ImportAttempt.id)).where(*filters)) or 0
        items = session.scalars(
            select(ImportAttempt)
            .where(*filters)
            .order_by(ImportAttempt.started_at.desc(), ImportAttempt.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()
    return list(items), total


def _transition(
    session: Session,
    attempt_id: int,
    target: AttemptStatus,
    values: dict[str, Any] | None = None,
) -> ImportAttempt:
    sources = [int(s) for s in sources_for(ATTEMPT_TRANSITIONS, target)]
    if target not in ATTEMPT_ACTIVE:
        values = {"ended_at": utcnow(), **(values or {})}
    with storage_guard(f"moving attempt {attempt_id} to {target.name}"):
        result = session.execute(
            update(ImportAttempt)
            .where(ImportAttempt.id == attempt_id, ImportAttempt.status.in_(sources))
            .values(status=int(target), updated_at=utcnow(), **(values or {}))
            .execution_options(synchronize_session=False)
        )
    attempt = get_attempt(session, attempt_id)
    if not result.rowcount:
        raise InvalidTransition(
            "ImportAttempt",
            attempt_id,
            status_name(AttemptStatus, attempt.status),
            target.name,
        )
    logger.info(f"Attempt {attempt_id} -> {target.name}")
    return attempt


def mark_running(session: Session, attempt_id: int) -> ImportAttempt:
    return _transition(session, attempt_id, AttemptStatus.RUNNING)


def mark_completed(session: Session, attempt_id: int) -> ImportAttempt:
    return _transition(session, attempt_id, AttemptStatus.COMPLETED)


def mark_failed(
    session: Session, attempt_id: int, summary: str | None = None
) -> ImportAttempt:
    return _transition(
        session,
        attempt_id,
        AttemptStatus.FAILED,
        {"error_summary": clip_message(summary)},
    )


def mark_cancelled(session: Session, attempt_id: int) -> ImportAttempt:
    return _transition(session, attempt_id, AttemptStatus.CANCELLED)


def finish_attempt(session: Session, attempt_id: int) -> ImportAttempt:
    """Close out an attempt from the outcome of its import's files.

    Refused while files are still queued or processing. The attempt fails when
    any file failed or was quarantined, and completes otherwise.
    """
    attempt = get_attempt(session, attempt_id)
    stats = queue_stats(session, attempt.import_id)
    if stats["active"]:
        raise ConflictingState(
            f"Import {attempt.import_id} still has {stats['active']} file(s) in flight"
        )

    problems = []
    if stats["failed"]:
        problems.append(f"{stats['failed']} failed")
    if stats["quarantined"]:
        problems.append(f"{stats['quarantined']} quarantined")
    if problems:
        summary = ", ".join(problems) + f" of {stats['total']} file(s)"
        return mark_failed(session, attempt_id, summary)
    return mark_completed(session, attempt_id)


def delete_attempt(session: Session, attempt_id: int) -> None:
    """Delete a finished attempt; refused while it is PENDING or RUNNING."""
    with storage_guard(f"deleting attempt {attempt_id}"):
        result = session.execute(
            delete(ImportAttempt)
            .where(
                ImportAttempt.id == attempt_id,
                ImportAttempt.status.notin_(_ACTIVE_CODES),
            )
            .execution_options(synchronize_session=False)
        )
    if result.rowcount:
        logger.info(f"Deleted attempt {attempt_id}")
        return
    attempt = get_attempt(session, attempt_id)
    raise ConflictingState(
        f"ImportAttempt {attempt_id} is {status_name(AttemptStatus, attempt.status)}"
    )


def attempt_duration(attempt: ImportAttempt) -> timedelta | None:
    """Elapsed run time, or None while the attempt is still open."""
    if attempt.started_at is None or attempt.ended_at is None:
        return None
    return attempt.ended_at - attempt.started_at

