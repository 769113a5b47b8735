"""
SQLAlchemy ORM models for database tables.

Models:
    base: Base declarative class and shared enums (DataSourceType, DataSourceStatus)
    data_source: Configured external connections with status and metrics
    sync_log: One row per synchronization run
    synced_record: Records landed by sync runs

Relationships:
    - DataSource → SyncLog (one-to-many, cascade delete)
    - DataSource → SyncedRecord (one-to-many, cascade delete)
"""

from models.base import Base, DataSourceType, DataSourceStatus
from models.data_source import DataSource
from models.sync_log import SyncLog
from models.synced_record import SyncedRecord

__all__ = [
    "Base",
    "DataSourceType",
    "DataSourceStatus",
    "DataSource",
    "SyncLog",
    "SyncedRecord",
]
