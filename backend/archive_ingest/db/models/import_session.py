"""Logical import session that owns files and attempts."""

import uuid

from sqlalchemy import Column, ForeignKey, Index, String, Text

from archive_ingest.db.base import Base, UTCDateTime, utcnow


class Import(Base):
    __tablename__ = "imports"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    batch_id = Column(String(36), ForeignKey("batches.id", ondelete="SET NULL"))
    label = Column(Text)
    cancelled_at = Column(UTCDateTime)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (Index("ix_imports_batch_id", "batch_id"),)
