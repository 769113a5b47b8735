from sqlalchemy import JSON
from sqlalchemy.orm import declarative_base
from sqlalchemy.dialects.postgresql import JSONB
import enum

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


# ============================================================================
# ENUMS
# ============================================================================

class DataSourceType(str, enum.Enum):
    """Supported external data source types"""
    POSTGRESQL = "POSTGRESQL"
    MYSQL = "MYSQL"
    MONGODB = "MONGODB"
    REST_API = "REST_API"
    GRAPHQL = "GRAPHQL"
    S3 = "S3"
    GOOGLE_SHEETS = "GOOGLE_SHEETS"
    CSV_FILE = "CSV_FILE"


class DataSourceStatus(str, enum.Enum):
    """Data source lifecycle status"""
    CONFIGURING = "CONFIGURING"
    TESTING = "TESTING"
    CONNECTED = "CONNECTED"
    ERROR = "ERROR"
    DISCONNECTED = "DISCONNECTED"
