"""Pydantic models describing ImportFile payloads."""

from datetime import datetime

from pydantic import BaseModel, Field


class ImportFileCreate(BaseModel):
    import_id: str = Field(..., description="UUID of the owning import")
    path: str = Field(..., min_length=1, max_length=10000)
    sha256: str = Field(..., description="64-character hex digest, any case")
    size_bytes: int | None = Field(None, ge=0)
    batch_id: str | None = Field(None, description="Defaults to the import's batch")


class ImportFileUpdate(BaseModel):
    path: str | None = Field(None, min_length=1, max_length=10000)
    size_bytes: int | None = Field(None, ge=0)


class FailurePayload(BaseModel):
    message: str = Field(..., min_length=1, max_length=10000)


class QuarantinePayload(BaseModel):
    reason: str = Field(..., min_length=1, max_length=10000)


class ImportFileRead(BaseModel):
    id: int
    import_id: str
    batch_id: str | None = None
    path: str
    size_bytes: int | None = None
    sha256: str
    status: int
    status_name: str
    size_formatted: str
    ingested_at: datetime | None = None
    attempt_count: int
    last_error: str | None = None
    is_in_queue: bool
    is_terminal: bool
    is_retryable: bool
    created_at: datetime
    updated_at: datetime


class ImportFileListResponse(BaseModel):
    items: list[ImportFileRead]
    total: int
    page: int
    limit: int


class DedupResult(BaseModel):
    file: ImportFileRead
    duplicate_of: ImportFileRead | None = None


class QueueStats(BaseModel):
    pending: int = 0
    queued: int = 0
    processing: int = 0
    ingested: int = 0
    failed: int = 0
    skipped_dedup: int = 0
    quarantined: int = 0
    total: int = 0
    active: int = 0
