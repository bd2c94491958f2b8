"""Attempt supervisor endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from archive_ingest.api.dependencies.db import get_session
from archive_ingest.api.routers.serializers import serialize_attempt
from archive_ingest.api.schemas.import_attempt import (
    AttemptFailurePayload,
    ImportAttemptCreate,
    ImportAttemptListResponse,
    ImportAttemptRead,
)
from archive_ingest.core.policy import IngestPolicy, get_policy
from archive_ingest.services import attempts

router = APIRouter()


@router.get("/", summary="List attempts", response_model=ImportAttemptListResponse)
def list_attempts(
    import_id: str | None = Query(None),
    status_code: int | None = Query(None, alias="status", ge=0, le=4),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_session),
) -> ImportAttemptListResponse:
    items, total = attempts.list_attempts(
        db, import_id=import_id, status=status_code, page=page, limit=limit
    )
    return ImportAttemptListResponse(
        items=[serialize_attempt(a) for a in items], total=total, page=page, limit=limit
    )


@router.post(
    "/",
    summary="Start an attempt",
    status_code=status.HTTP_201_CREATED,
    response_model=ImportAttemptRead,
)
def start_attempt(
    payload: ImportAttemptCreate,
    db: Session = Depends(get_session),
    policy: IngestPolicy = Depends(get_policy),
) -> ImportAttemptRead:
    return serialize_attempt(attempts.start_attempt(db, payload.import_id, policy))


@router.get("/{attempt_id}", summary="Fetch an attempt", response_model=ImportAttemptRead)
def get_attempt(attempt_id: int, db: Session = Depends(get_session)) -> ImportAttemptRead:
    return serialize_attempt(attempts.get_attempt(db, attempt_id))


@router.delete(
    "/{attempt_id}",
    summary="Delete a finished attempt",
    status_code=status.HTTP_204_NO_CONTENT,
)
def delete_attempt(attempt_id: int, db: Session = Depends(get_session)) -> Response:
    attempts.delete_attempt(db, attempt_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.patch("/{attempt_id}/run", summary="PENDING -> RUNNING", response_model=ImportAttemptRead)
def mark_running(attempt_id: int, db: Session = Depends(get_session)) -> ImportAttemptRead:
    return serialize_attempt(attempts.mark_running(db, attempt_id))


@router.patch("/{attempt_id}/complete", summary="Complete", response_model=ImportAttemptRead)
def mark_completed(attempt_id: int, db: Session = Depends(get_session)) -> ImportAttemptRead:
    return serialize_attempt(attempts.mark_completed(db, attempt_id))


@router.patch("/{attempt_id}/fail", summary="Fail", response_model=ImportAttemptRead)
def mark_failed(
    attempt_id: int,
    payload: AttemptFailurePayload,
    db: Session = Depends(get_session),
) -> ImportAttemptRead:
    return serialize_attempt(attempts.mark_failed(db, attempt_id, payload.error_summary))


@router.patch("/{attempt_id}/cancel", summary="Cancel", response_model=ImportAttemptRead)
def mark_cancelled(attempt_id: int, db: Session = Depends(get_session)) -> ImportAttemptRead:
    return serialize_attempt(attempts.mark_cancelled(db, attempt_id))


@router.patch(
    "/{attempt_id}/finish",
    summary="Close the attempt from its files' outcome",
    response_model=ImportAttemptRead,
)
def finish_attempt(attempt_id: int, db: Session = Depends(get_session)) -> ImportAttemptRead:
    return serialize_attempt(attempts.finish_attempt(db, attempt_id))
