"""Database models package."""
from archive_ingest.db.models.batch import Batch
from archive_ingest.db.models.import_attempt import ImportAttempt
from archive_ingest.db.models.import_file import ImportFile
from archive_ingest.db.models.import_session import Import
from archive_ingest.db.models.status_codes import AttemptStatus, BatchStatus, FileStatus

__all__ = [
    "Batch",
    "Import",
    "ImportFile",
    "ImportAttempt",
    "AttemptStatus",
    "BatchStatus",
    "FileStatus",
]
