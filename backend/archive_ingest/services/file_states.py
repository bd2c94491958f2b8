"""Transition tables for files, attempts and batches.

The tables are plain data so the queue claimer, the retry path and the API all
validate moves against the same source of truth. Nothing here touches the
database.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from archive_ingest.core.errors import InvalidTransition
from archive_ingest.db.models.status_codes import (
    AttemptStatus,
    BatchStatus,
    FileStatus,
)

FILE_TRANSITIONS: dict[FileStatus, frozenset[FileStatus]] = {
    FileStatus.PENDING: frozenset({FileStatus.QUEUED, FileStatus.PROCESSING}),
    FileStatus.QUEUED: frozenset({FileStatus.PROCESSING}),
    FileStatus.PROCESSING: frozenset(
        {
            FileStatus.INGESTED,
            FileStatus.FAILED,
            FileStatus.SKIPPED_DEDUP,
            FileStatus.QUARANTINED,
        }
    ),
    FileStatus.FAILED: frozenset({FileStatus.PROCESSING}),
    FileStatus.INGESTED: frozenset(),
    FileStatus.SKIPPED_DEDUP: frozenset(),
    FileStatus.QUARANTINED: frozenset(),
}

FILE_TERMINAL = frozenset(
    {FileStatus.INGESTED, FileStatus.SKIPPED_DEDUP, FileStatus.QUARANTINED}
)
# Statuses that count towards Batch.file_count_ingested
FILE_INGESTED = frozenset({FileStatus.INGESTED, FileStatus.SKIPPED_DEDUP})

ATTEMPT_TRANSITIONS: dict[AttemptStatus, frozenset[AttemptStatus]] = {
    AttemptStatus.PENDING: frozenset(
        {
            AttemptStatus.RUNNING,
            AttemptStatus.COMPLETED,
            AttemptStatus.FAILED,
            AttemptStatus.CANCELLED,
        }
    ),
    AttemptStatus.RUNNING: frozenset(
        {AttemptStatus.COMPLETED, AttemptStatus.FAILED, AttemptStatus.CANCELLED}
    ),
    AttemptStatus.COMPLETED: frozenset(),
    AttemptStatus.FAILED: frozenset(),
    AttemptStatus.CANCELLED: frozenset(),
}

ATTEMPT_ACTIVE = frozenset({AttemptStatus.PENDING, AttemptStatus.RUNNING})

BATCH_TRANSITIONS: dict[BatchStatus, frozenset[BatchStatus]] = {
    BatchStatus.PENDING: frozenset(
        {
            BatchStatus.RUNNING,
            BatchStatus.COMPLETED,
            BatchStatus.FAILED,
            BatchStatus.CANCELLED,
        }
    ),
    BatchStatus.RUNNING: frozenset(
        {BatchStatus.COMPLETED, BatchStatus.FAILED, BatchStatus.CANCELLED}
    ),
    BatchStatus.COMPLETED: frozenset(),
    BatchStatus.FAILED: frozenset(),
    BatchStatus.CANCELLED: frozenset(),
}

BATCH_TERMINAL = frozenset(
    {BatchStatus.COMPLETED, BatchStatus.FAILED, BatchStatus.CANCELLED}
)


def sources_for(table: dict, target) -> tuple:
    """All statuses from which ``target`` is reachable in one step."""
    return tuple(sorted(src for src, targets in table.items() if target in targets))


def can_transition(table: dict, current, target) -> bool:
    return target in table.get(current, frozenset())


def require_transition(table: dict, entity: str, key: Any, current, target) -> None:
    if not can_transition(table, current, target):
        raise InvalidTransition(
            entity, key, status_name(type(target), current), target.name
        )


def status_name(enum_cls: type, code: int | None) -> str:
    try:
        return enum_cls(code).name
    except (TypeError, ValueError):
        return "UNKNOWN"


# Derived file fields


def is_in_queue(status: int) -> bool:
    return status in (FileStatus.PENDING, FileStatus.QUEUED, FileStatus.PROCESSING)


def is_terminal(status: int) -> bool:
    return status in FILE_TERMINAL


def is_exhausted(status: int, attempt_count: int, retry_ceiling: int) -> bool:
    """A FAILED file past the retry ceiling is no longer expected to recover."""
    return status == FileStatus.FAILED and attempt_count > retry_ceiling


def is_retryable(status: int, attempt_count: int, retry_ceiling: int) -> bool:
    return status == FileStatus.FAILED and attempt_count <= retry_ceiling


def format_size(size_bytes: int | None) -> str:
    if size_bytes is None:
        return "Unknown"
    if size_bytes == 0:
        return "0 B"
    units = ["B", "KB", "MB", "GB", "TB"]
    value = float(size_bytes)
    index = 0
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    return f"{round(value, 2):g} {units[index]}"


# Derived attempt fields


def duration_ms(started_at: datetime | None, ended_at: datetime | None) -> int | None:
    if started_at is None or ended_at is None:
        return None
    return int((ended_at - started_at).total_seconds() * 1000)


def format_duration(milliseconds: int | None) -> str | None:
    if milliseconds is None:
        return None
    seconds = milliseconds // 1000
    minutes = seconds // 60
    hours = minutes // 60
    if hours > 0:
        return f"{hours}h {minutes % 60}m {seconds % 60}s"
    if minutes > 0:
        return f"{minutes}m {seconds % 60}s"
    return f"{seconds}s"


def completion_percentage(expected: int | None, ingested: int) -> int:
    if not expected:
        return 0
    return round(ingested / expected * 100)
