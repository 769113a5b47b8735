from sqlalchemy import Column, String, Integer, Boolean, DateTime, Float, Text, ForeignKey, Index
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid
from models.base import Base, JSONType


class SyncLog(Base):
    """
    Immutable record of one synchronization attempt.

    Purpose:
    - Audit trail of every sync run (exactly one row per run)
    - Source of truth for total_syncs / failed_syncs counters
    - Carries the watermark the next run resumes from
    """
    __tablename__ = "sync_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    data_source_id = Column(
        String(36),
        ForeignKey("data_sources.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    success = Column(Boolean, nullable=False)
    records_sync = Column(Integer, nullable=False, default=0)
    duration = Column(Float, nullable=False, default=0.0)  # milliseconds
    error_message = Column(Text, nullable=True)

    # Batch statistics
    batches_total = Column(Integer, nullable=False, default=0)
    batches_failed = Column(Integer, nullable=False, default=0)
    error_details = Column(JSONType, nullable=True)  # per-batch and per-row errors

    # Watermark after this run
    cursor = Column(JSONType, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    data_source = relationship("DataSource", back_populates="sync_logs")

    __table_args__ = (
        Index("idx_sync_log_source_created", "data_source_id", "created_at"),
    )
