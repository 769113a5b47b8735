from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Index
from datetime import datetime
from models.base import Base, JSONType


class SyncedRecord(Base):
    """
    Stores records pulled from a data source, unprocessed.

    Purpose:
    - Landing zone for sync runs (no transformation happens here)
    - Re-syncing the same external id updates the row in place

    Design Decisions:
    - external_id comes from the record's natural key when present,
      otherwise from its position in the source
    - content_hash lets re-syncs skip unchanged rows
    """
    __tablename__ = "synced_records"

    id = Column(Integer, primary_key=True, autoincrement=True)

    data_source_id = Column(
        String(36),
        ForeignKey("data_sources.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    sync_log_id = Column(String(36), nullable=True, index=True)

    external_id = Column(String(512), nullable=False)
    payload = Column(JSONType, nullable=False)
    content_hash = Column(String(64), nullable=False)

    ingested_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    __table_args__ = (
        Index("idx_synced_record_source_external", "data_source_id", "external_id", unique=True),
    )
