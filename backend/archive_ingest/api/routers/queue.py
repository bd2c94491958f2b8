"""Work queue endpoints: snapshot, stats, claiming and stall reports."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from archive_ingest.api.dependencies.db import get_session
from archive_ingest.api.routers.serializers import serialize_file
from archive_ingest.api.schemas.import_file import ImportFileRead, QueueStats
from archive_ingest.core.policy import IngestPolicy, get_policy
from archive_ingest.services import work_queue

router = APIRouter()


@router.get(
    "/stalled",
    summary="PROCESSING files past the stall threshold",
    response_model=list[ImportFileRead],
)
def list_stalled(
    db: Session = Depends(get_session),
    policy: IngestPolicy = Depends(get_policy),
) -> list[ImportFileRead]:
    return [serialize_file(r, policy) for r in work_queue.find_stalled(db, policy)]


@router.get(
    "/{import_id}",
    summary="Files still in the queue, oldest first",
    response_model=list[ImportFileRead],
)
def list_queued(
    import_id: str,
    db: Session = Depends(get_session),
    policy: IngestPolicy = Depends(get_policy),
) -> list[ImportFileRead]:
    return [serialize_file(r, policy) for r in work_queue.list_queued(db, import_id)]


@router.get("/{import_id}/stats", summary="File counts per status", response_model=QueueStats)
def queue_stats(import_id: str, db: Session = Depends(get_session)) -> QueueStats:
    return QueueStats(**work_queue.queue_stats(db, import_id))


@router.post(
    "/{import_id}/claim",
    summary="Claim up to `limit` files for processing",
    response_model=list[ImportFileRead],
)
def claim_next(
    import_id: str,
    limit: int = Query(1, ge=1, le=work_queue.MAX_CLAIM),
    db: Session = Depends(get_session),
    policy: IngestPolicy = Depends(get_policy),
) -> list[ImportFileRead]:
    claimed = work_queue.claim_next(db, import_id, limit, policy)
    return [serialize_file(r, policy) for r in claimed]
