"""Physical grouping of files tracked with expected/discovered/ingested counters."""

import uuid

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    Column,
    Index,
    LargeBinary,
    SmallInteger,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB

from archive_ingest.db.base import Base, UTCDateTime, utcnow
from archive_ingest.db.models.status_codes import BatchStatus


class Batch(Base):
    __tablename__ = "batches"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    source_system = Column(Text)
    created_by = Column(Text)
    manifest_sha256 = Column(LargeBinary(32))
    status = Column(SmallInteger, nullable=False, default=int(BatchStatus.PENDING))
    file_count_expected = Column(BigInteger)
    file_count_discovered = Column(BigInteger, nullable=False, default=0)
    file_count_ingested = Column(BigInteger, nullable=False, default=0)
    # "metadata" is reserved on declarative classes
    meta = Column("metadata", JSON().with_variant(JSONB, "postgresql"))
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("file_count_ingested >= 0", name="ck_batches_ingested_nonneg"),
        CheckConstraint(
            "file_count_ingested <= file_count_discovered",
            name="ck_batches_ingested_le_discovered",
        ),
        Index("ix_batches_status", "status"),
        Index("ix_batches_created_at", "created_at"),
        Index("ix_batches_source_system", "source_system"),
        Index("ix_batches_created_by", "created_by"),
    )
