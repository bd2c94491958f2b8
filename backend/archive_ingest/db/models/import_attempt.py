"""One execution run of an import."""

from sqlalchemy import Column, ForeignKey, Index, Integer, SmallInteger, String, Text

from archive_ingest.db.base import Base, UTCDateTime, utcnow
from archive_ingest.db.models.status_codes import AttemptStatus


class ImportAttempt(Base):
    __tablename__ = "import_attempts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    import_id = Column(
        String(36), ForeignKey("imports.id", ondelete="CASCADE"), nullable=False
    )
    started_at = Column(UTCDateTime, nullable=False, default=utcnow)
    ended_at = Column(UTCDateTime)
    status = Column(SmallInteger, nullable=False, default=int(AttemptStatus.PENDING))
    error_summary = Column(Text)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_import_attempts_import_id", "import_id"),
        Index("ix_import_attempts_status", "status"),
        Index("ix_import_attempts_started_at", "started_at"),
        Index("ix_import_attempts_ended_at", "ended_at"),
    )
