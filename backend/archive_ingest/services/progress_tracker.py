"""Shared helpers for publishing batch progress snapshots to Redis."""

from __future__ import annotations

import json
from datetime import timedelta
from functools import lru_cache
from typing import Any

from redis import Redis
from redis.exceptions import RedisError

from archive_ingest.core.config import get_settings
from archive_ingest.db.models import Batch, BatchStatus
from archive_ingest.services.file_states import completion_percentage
from archive_ingest.utils.redis_client import create_redis_client

PROGRESS_PREFIX = "batches:progress:"
PROGRESS_TTL = timedelta(hours=24)


@lru_cache
def get_redis() -> Redis:
    return create_redis_client(get_settings().redis_url, decode_responses=True)


def _key(batch_id: str) -> str:
    return f"{PROGRESS_PREFIX}{batch_id}"


def batch_snapshot(batch: Batch) -> dict[str, Any]:
    return {
        "batch_id": batch.id,
        "status": BatchStatus(batch.status).name,
        "file_count_expected": batch.file_count_expected,
        "file_count_discovered": batch.file_count_discovered,
        "file_count_ingested": batch.file_count_ingested,
        "completion_percentage": completion_percentage(
            batch.file_count_expected, batch.file_count_ingested
        ),
    }


def publish_batch_progress(batch: Batch) -> None:
    """Persist the latest reconciled counters so dashboards can poll them."""
    try:
        get_redis().set(
            _key(batch.id),
            json.dumps(batch_snapshot(batch)),
            ex=int(PROGRESS_TTL.total_seconds()),
        )
    except RedisError:
        # Redis availability should not break reconciliation.
        pass


def fetch_batch_progress(batch_id: str) -> dict[str, Any]:
    """Return the latest published snapshot, or {} when none is cached."""
    try:
        raw = get_redis().get(_key(batch_id))
    except RedisError:
        return {}
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return {}
