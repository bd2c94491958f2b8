"""File registration, listing and status transitions."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from archive_ingest.api.dependencies.db import get_session
from archive_ingest.api.routers.serializers import serialize_file
from archive_ingest.api.schemas.import_file import (
    DedupResult,
    FailurePayload,
    ImportFileCreate,
    ImportFileListResponse,
    ImportFileRead,
    ImportFileUpdate,
    QuarantinePayload,
)
from archive_ingest.core.policy import IngestPolicy, get_policy
from archive_ingest.services import import_files

router = APIRouter()


@router.get("/", summary="List file records", response_model=ImportFileListResponse)
def list_files(
    import_id: str | None = Query(None),
    batch_id: str | None = Query(None),
    status_code: int | None = Query(None, alias="status", ge=0, le=6),
    sha256: str | None = Query(None, description="Hex digest, any case"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_session),
    policy: IngestPolicy = Depends(get_policy),
) -> ImportFileListResponse:
    items, total = import_files.list_files(
        db,
        import_id=import_id,
        batch_id=batch_id,
        status=status_code,
        sha256=sha256,
        page=page,
        limit=limit,
    )
    return ImportFileListResponse(
        items=[serialize_file(r, policy) for r in items], total=total, page=page, limit=limit
    )


@router.post(
    "/",
    summary="Register a discovered file",
    status_code=status.HTTP_201_CREATED,
    response_model=ImportFileRead,
)
def register_file(
    payload: ImportFileCreate,
    db: Session = Depends(get_session),
    policy: IngestPolicy = Depends(get_policy),
) -> ImportFileRead:
    record = import_files.register_file(
        db,
        import_id=payload.import_id,
        path=payload.path,
        sha256=payload.sha256,
        size_bytes=payload.size_bytes,
        batch_id=payload.batch_id,
    )
    return serialize_file(record, policy)


@router.get("/{file_id}", summary="Fetch a file record", response_model=ImportFileRead)
def get_file(
    file_id: int,
    db: Session = Depends(get_session),
    policy: IngestPolicy = Depends(get_policy),
) -> ImportFileRead:
    return serialize_file(import_files.get_file(db, file_id), policy)


@router.put("/{file_id}", summary="Correct path or size", response_model=ImportFileRead)
def update_file(
    file_id: int,
    payload: ImportFileUpdate,
    db: Session = Depends(get_session),
    policy: IngestPolicy = Depends(get_policy),
) -> ImportFileRead:
    record = import_files.update_file(
        db, file_id, path=payload.path, size_bytes=payload.size_bytes
    )
    return serialize_file(record, policy)


@router.delete(
    "/{file_id}",
    summary="Delete a file record",
    status_code=status.HTTP_204_NO_CONTENT,
)
def delete_file(file_id: int, db: Session = Depends(get_session)) -> Response:
    import_files.delete_file(db, file_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.patch("/{file_id}/enqueue", summary="PENDING -> QUEUED", response_model=ImportFileRead)
def enqueue_file(
    file_id: int,
    db: Session = Depends(get_session),
    policy: IngestPolicy = Depends(get_policy),
) -> ImportFileRead:
    return serialize_file(import_files.enqueue_file(db, file_id), policy)


@router.patch("/{file_id}/ingest", summary="Mark ingested", response_model=ImportFileRead)
def mark_ingested(
    file_id: int,
    db: Session = Depends(get_session),
    policy: IngestPolicy = Depends(get_policy),
) -> ImportFileRead:
    return serialize_file(import_files.mark_ingested(db, file_id, policy), policy)


@router.patch("/{file_id}/fail", summary="Mark failed", response_model=ImportFileRead)
def mark_failed(
    file_id: int,
    payload: FailurePayload,
    db: Session = Depends(get_session),
    policy: IngestPolicy = Depends(get_policy),
) -> ImportFileRead:
    record = import_files.mark_failed(db, file_id, payload.message, policy)
    return serialize_file(record, policy)


@router.patch(
    "/{file_id}/skip-dedup", summary="Mark skipped as duplicate", response_model=ImportFileRead
)
def mark_skipped_dedup(
    file_id: int,
    db: Session = Depends(get_session),
    policy: IngestPolicy = Depends(get_policy),
) -> ImportFileRead:
    return serialize_file(import_files.mark_skipped_dedup(db, file_id, policy), policy)


@router.patch("/{file_id}/quarantine", summary="Quarantine", response_model=ImportFileRead)
def mark_quarantined(
    file_id: int,
    payload: QuarantinePayload,
    db: Session = Depends(get_session),
    policy: IngestPolicy = Depends(get_policy),
) -> ImportFileRead:
    record = import_files.mark_quarantined(db, file_id, payload.reason, policy)
    return serialize_file(record, policy)


@router.patch("/{file_id}/retry", summary="FAILED -> PROCESSING", response_model=ImportFileRead)
def retry_file(
    file_id: int,
    db: Session = Depends(get_session),
    policy: IngestPolicy = Depends(get_policy),
) -> ImportFileRead:
    return serialize_file(import_files.retry_file(db, file_id), policy)


@router.patch("/{file_id}/heartbeat", summary="Record progress", response_model=ImportFileRead)
def heartbeat(
    file_id: int,
    db: Session = Depends(get_session),
    policy: IngestPolicy = Depends(get_policy),
) -> ImportFileRead:
    return serialize_file(import_files.heartbeat(db, file_id), policy)


@router.post(
    "/{file_id}/dedup",
    summary="Skip the file if its content was already ingested",
    response_model=DedupResult,
)
def resolve_duplicate(
    file_id: int,
    db: Session = Depends(get_session),
    policy: IngestPolicy = Depends(get_policy),
) -> DedupResult:
    original = import_files.resolve_duplicate(db, file_id, policy)
    return DedupResult(
        file=serialize_file(import_files.get_file(db, file_id), policy),
        duplicate_of=serialize_file(original, policy) if original is not None else None,
    )
