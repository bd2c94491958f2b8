"""Pydantic models describing ImportAttempt payloads."""

from datetime import datetime

from pydantic import BaseModel, Field


class ImportAttemptCreate(BaseModel):
    import_id: str


class AttemptFailurePayload(BaseModel):
    error_summary: str | None = Field(None, max_length=10000)


class ImportAttemptRead(BaseModel):
    id: int
    import_id: str
    status: int
    status_name: str
    started_at: datetime
    ended_at: datetime | None = None
    error_summary: str | None = None
    duration_ms: int | None = None
    duration_formatted: str | None = None
    is_in_progress: bool


class ImportAttemptListResponse(BaseModel):
    items: list[ImportAttemptRead]
    total: int
    page: int
    limit: int
