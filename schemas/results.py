"""
Response schemas for connection tests, schema introspection, syncs and
errors
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import ConfigDict, Field

from connectors.base import ConnectionTestResult, SchemaResult, Unsupported
from models.base import DataSourceType
from schemas.data_source import CamelModel


class TestResultResponse(CamelModel):
    """Outcome of POST /api/data-sources/{id}/test"""

    __test__ = False  # not a pytest test class

    success: bool
    message: str
    response_time: Optional[float] = Field(None, description="Milliseconds; omitted when no round trip happened")
    server_info: Optional[Dict[str, Any]] = None
    error_type: Optional[str] = None

    @classmethod
    def from_result(cls, result: ConnectionTestResult) -> "TestResultResponse":
        return cls(
            success=result.success,
            message=result.message,
            response_time=result.response_time,
            server_info=result.server_info if result.success else None,
            error_type=result.error_type,
        )


class CancelTestResponse(CamelModel):
    cancelled: bool


class ColumnResponse(CamelModel):
    name: str
    type: str


class TableResponse(CamelModel):
    name: str
    columns: List[ColumnResponse] = Field(default_factory=list)
    row_count: Optional[int] = None
    columns_truncated: bool = False


class SchemaResponse(CamelModel):
    model_config = ConfigDict(extra="forbid")

    tables: List[TableResponse] = Field(default_factory=list)
    truncated: bool = False
    error: Optional[str] = None


class UnsupportedResponse(CamelModel):
    unsupported: bool = True
    type: DataSourceType
    reason: str


def schema_response(result: Union[SchemaResult, Unsupported]) -> Union[SchemaResponse, UnsupportedResponse]:
    if isinstance(result, Unsupported):
        return UnsupportedResponse(type=result.source_type, reason=result.reason)
    return SchemaResponse.model_validate(result)


class SyncAcceptedResponse(CamelModel):
    accepted: bool = True
    data_source_id: str
    full_refresh: bool = False


class ErrorResponse(CamelModel):
    error: str
    message: str


class HealthResponse(CamelModel):
    status: str = Field(..., description="healthy or unhealthy")
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    database_connected: bool
    running_jobs: int = 0
    scheduler_running: bool = False
    sources_by_status: Dict[str, int] = Field(default_factory=dict)
