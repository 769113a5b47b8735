from sqlalchemy import Column, String, Integer, BigInteger, Boolean, DateTime, Enum, Float, Text, Index
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid
from models.base import Base, JSONType, DataSourceType, DataSourceStatus


class DataSource(Base):
    """
    A configured external connection with lifecycle status and metrics.

    Design:
    - Non-secret connection fields are plain columns (shown to operators)
    - Secrets live only in ``encrypted_credentials`` (Fernet token)
    - ``configuration`` holds per-type extras (schema, collections, query, ...)
    - Counters are written together with the SyncLog that changes them
    """
    __tablename__ = "data_sources"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    name = Column(String(200), nullable=False, index=True)
    description = Column(Text, nullable=True)
    type = Column(Enum(DataSourceType, name="data_source_type"), nullable=False, index=True)
    status = Column(
        Enum(DataSourceStatus, name="data_source_status"),
        default=DataSourceStatus.CONFIGURING,
        nullable=False,
        index=True
    )

    # SQL / Mongo
    host = Column(String(255), nullable=True)
    port = Column(Integer, nullable=True)
    database = Column(String(255), nullable=True)
    username = Column(String(255), nullable=True)
    ssl = Column(Boolean, nullable=False, default=False)

    # REST / GraphQL
    endpoint = Column(String(2048), nullable=True)

    # S3
    bucket = Column(String(255), nullable=True)
    region = Column(String(64), nullable=True)

    # Google Sheets
    sheet_id = Column(String(255), nullable=True)

    # CSV
    uploaded_file_ref = Column(String(1024), nullable=True)

    configuration = Column(JSONType, nullable=True)
    encrypted_credentials = Column(Text, nullable=True)

    # Connection diagnostics
    connection_error = Column(Text, nullable=True)
    last_connection_test = Column(DateTime, nullable=True)
    last_successful_sync = Column(DateTime, nullable=True)

    # Metrics
    total_records = Column(BigInteger, nullable=False, default=0)
    total_syncs = Column(Integer, nullable=False, default=0)
    failed_syncs = Column(Integer, nullable=False, default=0)
    successful_tests = Column(Integer, nullable=False, default=0)
    avg_response_time = Column(Float, nullable=True)  # milliseconds

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    sync_logs = relationship(
        "SyncLog",
        back_populates="data_source",
        order_by="SyncLog.created_at.desc()",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("idx_data_source_type_status", "type", "status"),
    )

    def __repr__(self) -> str:
        return f"<DataSource {self.id} {self.type} {self.status}>"
