"""Batch registration, manifest updates, aggregate reads, cancellation and deletion."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from archive_ingest.api.dependencies.db import get_session
from archive_ingest.api.routers.serializers import serialize_batch
from archive_ingest.api.schemas.batch import (
    BatchCreate,
    BatchListResponse,
    BatchRead,
    BatchUpdate,
    ConsistencyReport,
)
from archive_ingest.core.policy import IngestPolicy, get_policy
from archive_ingest.services import aggregator, batches
from archive_ingest.services.progress_tracker import fetch_batch_progress

router = APIRouter()


@router.get("/", summary="List batches", response_model=BatchListResponse)
def list_batches(
    status_code: int | None = Query(None, alias="status", ge=0, le=4),
    source_system: str | None = Query(None),
    created_by: str | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_session),
) -> BatchListResponse:
    items, total = batches.list_batches(
        db,
        status=status_code,
        source_system=source_system,
        created_by=created_by,
        page=page,
        limit=limit,
    )
    return BatchListResponse(
        items=[serialize_batch(b) for b in items], total=total, page=page, limit=limit
    )


@router.post(
    "/",
    summary="Register a batch",
    status_code=status.HTTP_201_CREATED,
    response_model=BatchRead,
)
def create_batch(payload: BatchCreate, db: Session = Depends(get_session)) -> BatchRead:
    batch = batches.create_batch(
        db,
        source_system=payload.source_system,
        created_by=payload.created_by,
        manifest_sha256=payload.manifest_sha256,
        file_count_expected=payload.file_count_expected,
        meta=payload.metadata,
    )
    return serialize_batch(batch)


@router.get("/{batch_id}", summary="Batch status and counters", response_model=BatchRead)
def get_batch(batch_id: str, db: Session = Depends(get_session)) -> BatchRead:
    return serialize_batch(batches.get_batch(db, batch_id))


@router.get("/{batch_id}/progress", summary="Last published progress snapshot")
def get_batch_progress(batch_id: str, db: Session = Depends(get_session)) -> dict[str, Any]:
    batch = batches.get_batch(db, batch_id)
    return fetch_batch_progress(batch.id)


@router.post(
    "/{batch_id}/reconcile",
    summary="Recompute counters and roll up status",
    response_model=BatchRead,
)
def reconcile_batch(
    batch_id: str,
    db: Session = Depends(get_session),
    policy: IngestPolicy = Depends(get_policy),
) -> BatchRead:
    batch = batches.get_batch(db, batch_id)
    return serialize_batch(aggregator.reconcile_batch(db, batch.id, policy))


@router.get(
    "/{batch_id}/consistency",
    summary="Check counter invariants",
    response_model=ConsistencyReport,
)
def check_consistency(
    batch_id: str,
    db: Session = Depends(get_session),
    policy: IngestPolicy = Depends(get_policy),
) -> ConsistencyReport:
    batch = batches.get_batch(db, batch_id)
    problems = aggregator.check_consistency(db, batch.id, policy)
    return ConsistencyReport(batch_id=batch.id, consistent=not problems, problems=problems)


@router.post("/{batch_id}/cancel", summary="Cancel a batch", response_model=BatchRead)
def cancel_batch(batch_id: str, db: Session = Depends(get_session)) -> BatchRead:
    return serialize_batch(batches.cancel_batch(db, batch_id))


@router.put("/{batch_id}", summary="Fill in manifest details", response_model=BatchRead)
def update_batch(
    batch_id: str,
    payload: BatchUpdate,
    db: Session = Depends(get_session),
    policy: IngestPolicy = Depends(get_policy),
) -> BatchRead:
    batch = batches.update_batch(
        db,
        batch_id,
        file_count_expected=payload.file_count_expected,
        manifest_sha256=payload.manifest_sha256,
        source_system=payload.source_system,
        created_by=payload.created_by,
        meta=payload.metadata,
        policy=policy,
    )
    return serialize_batch(batch)


@router.delete(
    "/{batch_id}",
    summary="Delete a finished batch",
    status_code=status.HTTP_204_NO_CONTENT,
)
def delete_batch(batch_id: str, db: Session = Depends(get_session)) -> Response:
    batches.delete_batch(db, batch_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
