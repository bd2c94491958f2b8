"""One file's per-import ingestion record."""

from sqlalchemy import (
    BigInteger,
    Column,
    ForeignKey,
    Index,
    Integer,
    LargeBinary,
    SmallInteger,
    String,
    Text,
    text,
)

from archive_ingest.db.base import Base, UTCDateTime, utcnow
from archive_ingest.db.models.status_codes import QUEUE_STATUSES, FileStatus

_QUEUE_CODES = ", ".join(str(int(s)) for s in QUEUE_STATUSES)
# Queries that want ix_import_files_queue must repeat this term literally
QUEUE_PREDICATE = f"import_files.status IN ({_QUEUE_CODES})"


class ImportFile(Base):
    __tablename__ = "import_files"

    id = Column(Integer, primary_key=True, autoincrement=True)
    import_id = Column(
        String(36), ForeignKey("imports.id", ondelete="CASCADE"), nullable=False
    )
    batch_id = Column(String(36), ForeignKey("batches.id", ondelete="SET NULL"))
    path = Column(Text, nullable=False)
    size_bytes = Column(BigInteger)
    sha256 = Column(LargeBinary(32), nullable=False)
    status = Column(SmallInteger, nullable=False, default=int(FileStatus.PENDING))
    ingested_at = Column(UTCDateTime)
    attempt_count = Column(Integer, nullable=False, default=0)
    last_error = Column(Text)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_import_files_import_status", "import_id", "status"),
        # Work queue: the non-terminal slice in claim order
        Index(
            "ix_import_files_queue",
            "import_id",
            "created_at",
            "id",
            postgresql_where=text(f"status IN ({_QUEUE_CODES})"),
            sqlite_where=text(f"status IN ({_QUEUE_CODES})"),
        ),
        Index("ix_import_files_batch_status", "batch_id", "status"),
        Index("ix_import_files_sha256", "sha256"),
        Index("ix_import_files_path", "path"),
        Index("ix_import_files_ingested_at", "ingested_at"),
        Index("ix_import_files_attempt_count", "attempt_count"),
    )
