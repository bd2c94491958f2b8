"""Small-integer status codes persisted on each table."""

from enum import IntEnum


class FileStatus(IntEnum):
    PENDING = 0
    QUEUED = 1
    PROCESSING = 2
    INGESTED = 3
    FAILED = 4
    SKIPPED_DEDUP = 5
    QUARANTINED = 6


class AttemptStatus(IntEnum):
    PENDING = 0
    RUNNING = 1
    COMPLETED = 2
    FAILED = 3
    CANCELLED = 4


class BatchStatus(IntEnum):
    PENDING = 0
    RUNNING = 1
    COMPLETED = 2
    FAILED = 3
    CANCELLED = 4


# Statuses served by the filtered queue index
QUEUE_STATUSES = (FileStatus.PENDING, FileStatus.QUEUED, FileStatus.PROCESSING)
CLAIMABLE_STATUSES = (FileStatus.PENDING, FileStatus.QUEUED)
