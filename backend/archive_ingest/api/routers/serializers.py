"""Shared helpers for shaping entity responses."""
from __future__ import annotations

from archive_ingest.api.schemas.batch import BatchRead, ImportRead
from archive_ingest.api.schemas.import_attempt import ImportAttemptRead
from archive_ingest.api.schemas.import_file import ImportFileRead
from archive_ingest.core.policy import IngestPolicy
from archive_ingest.db.models import (
    AttemptStatus,
    Batch,
    BatchStatus,
    FileStatus,
    Import,
    ImportAttempt,
    ImportFile,
)
from archive_ingest.services import file_states
from archive_ingest.utils.validators import sha256_to_hex


def serialize_file(record: ImportFile, policy: IngestPolicy) -> ImportFileRead:
    """Row state + derived fields (hex digest, status name, queue membership)."""
    return ImportFileRead(
        id=record.id,
        import_id=record.import_id,
        batch_id=record.batch_id,
        path=record.path,
        size_bytes=record.size_bytes,
        sha256=sha256_to_hex(record.sha256),
        status=record.status,
        status_name=file_states.status_name(FileStatus, record.status),
        size_formatted=file_states.format_size(record.size_bytes),
        ingested_at=record.ingested_at,
        attempt_count=record.attempt_count,
        last_error=record.last_error,
        is_in_queue=file_states.is_in_queue(record.status),
        is_terminal=file_states.is_terminal(record.status),
        is_retryable=file_states.is_retryable(
            record.status, record.attempt_count, policy.retry_ceiling
        ),
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


def serialize_attempt(attempt: ImportAttempt) -> ImportAttemptRead:
    duration = file_states.duration_ms(attempt.started_at, attempt.ended_at)
    return ImportAttemptRead(
        id=attempt.id,
        import_id=attempt.import_id,
        status=attempt.status,
        status_name=file_states.status_name(AttemptStatus, attempt.status),
        started_at=attempt.started_at,
        ended_at=attempt.ended_at,
        error_summary=attempt.error_summary,
        duration_ms=duration,
        duration_formatted=file_states.format_duration(duration),
        is_in_progress=attempt.status in file_states.ATTEMPT_ACTIVE,
    )


def serialize_batch(batch: Batch) -> BatchRead:
    return BatchRead(
        id=batch.id,
        source_system=batch.source_system,
        created_by=batch.created_by,
        manifest_sha256=sha256_to_hex(batch.manifest_sha256),
        status=batch.status,
        status_name=file_states.status_name(BatchStatus, batch.status),
        file_count_expected=batch.file_count_expected,
        file_count_discovered=batch.file_count_discovered,
        file_count_ingested=batch.file_count_ingested,
        completion_percentage=file_states.completion_percentage(
            batch.file_count_expected, batch.file_count_ingested
        ),
        is_in_progress=batch.status not in file_states.BATCH_TERMINAL,
        metadata=batch.meta,
        created_at=batch.created_at,
        updated_at=batch.updated_at,
    )


def serialize_import(record: Import) -> ImportRead:
    return ImportRead(
        id=record.id,
        batch_id=record.batch_id,
        label=record.label,
        cancelled_at=record.cancelled_at,
        created_at=record.created_at,
    )
