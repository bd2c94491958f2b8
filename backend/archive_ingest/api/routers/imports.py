"""Import sessions: creation, cancellation and cascade deletion."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from archive_ingest.api.dependencies.db import get_session
from archive_ingest.api.routers.serializers import serialize_import
from archive_ingest.api.schemas.batch import ImportCreate, ImportRead
from archive_ingest.core.policy import IngestPolicy, get_policy
from archive_ingest.services import imports

router = APIRouter()


@router.post(
    "/",
    summary="Open an import session",
    status_code=status.HTTP_201_CREATED,
    response_model=ImportRead,
)
def create_import(payload: ImportCreate, db: Session = Depends(get_session)) -> ImportRead:
    record = imports.create_import(db, batch_id=payload.batch_id, label=payload.label)
    return serialize_import(record)


@router.get("/{import_id}", summary="Fetch an import", response_model=ImportRead)
def get_import(import_id: str, db: Session = Depends(get_session)) -> ImportRead:
    return serialize_import(imports.get_import(db, import_id))


@router.post(
    "/{import_id}/cancel",
    summary="Stop new claims for an import",
    response_model=ImportRead,
)
def cancel_import(import_id: str, db: Session = Depends(get_session)) -> ImportRead:
    return serialize_import(imports.cancel_import(db, import_id))


@router.delete(
    "/{import_id}",
    summary="Delete an import with its files and attempts",
    status_code=status.HTTP_204_NO_CONTENT,
)
def delete_import(
    import_id: str,
    db: Session = Depends(get_session),
    policy: IngestPolicy = Depends(get_policy),
) -> Response:
    imports.delete_import(db, import_id, policy)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
