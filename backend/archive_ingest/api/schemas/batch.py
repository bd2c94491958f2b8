"""Pydantic models describing Batch and Import payloads."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class BatchCreate(BaseModel):
    source_system: str | None = Field(None, max_length=255)
    created_by: str | None = Field(None, max_length=255)
    manifest_sha256: str | None = Field(None, description="64-character hex digest")
    file_count_expected: int | None = Field(None, ge=0)
    metadata: dict[str, Any] | None = None


class BatchUpdate(BaseModel):
    """Manifest details arriving after the batch was opened."""

    file_count_expected: int | None = Field(None, ge=0)
    manifest_sha256: str | None = Field(None, description="64-character hex digest")
    source_system: str | None = Field(None, max_length=255)
    created_by: str | None = Field(None, max_length=255)
    metadata: dict[str, Any] | None = None


class BatchRead(BaseModel):
    id: str
    source_system: str | None = None
    created_by: str | None = None
    manifest_sha256: str | None = None
    status: int
    status_name: str
    file_count_expected: int | None = None
    file_count_discovered: int
    file_count_ingested: int
    completion_percentage: int
    is_in_progress: bool
    metadata: dict[str, Any] | None = None
    created_at: datetime
    updated_at: datetime


class BatchListResponse(BaseModel):
    items: list[BatchRead]
    total: int
    page: int
    limit: int


class ConsistencyReport(BaseModel):
    batch_id: str
    consistent: bool
    problems: list[str]


class ImportCreate(BaseModel):
    batch_id: str | None = None
    label: str | None = Field(None, max_length=255)


class ImportRead(BaseModel):
    id: str
    batch_id: str | None = None
    label: str | None = None
    cancelled_at: datetime | None = None
    created_at: datetime
