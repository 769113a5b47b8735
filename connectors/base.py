"""
Abstract base class for data source connectors and the result types they return
"""

import asyncio
import socket
import ssl
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, Iterator, List, Optional, Union

from connectors.config import BaseConnectionConfig
from core.exceptions import (
    ConnectorException,
    ConnectionTimeoutError,
    HostNotFoundError,
    NetworkError,
    RefusedConnectionError,
    SourceConnectionError,
    SSLError,
)
from models.base import DataSourceType

Cursor = Dict[str, Any]


# ============================================================================
# RESULT TYPES
# ============================================================================

@dataclass
class ConnectionTestResult:
    """Outcome of a connection test, success or not"""
    success: bool
    message: str
    response_time: Optional[float] = None  # milliseconds
    server_info: Dict[str, Any] = field(default_factory=dict)
    error_type: Optional[str] = None

    @classmethod
    def cancelled(cls) -> "ConnectionTestResult":
        return cls(success=False, message="cancelled", error_type="cancelled")


@dataclass
class ColumnInfo:
    name: str
    type: str


@dataclass
class TableInfo:
    name: str
    columns: List[ColumnInfo] = field(default_factory=list)
    row_count: Optional[int] = None  # catalog estimate, never a COUNT(*)
    columns_truncated: bool = False


@dataclass
class SchemaResult:
    tables: List[TableInfo] = field(default_factory=list)
    truncated: bool = False
    error: Optional[str] = None


@dataclass(frozen=True)
class Unsupported:
    """Introspection is not available for this source type (not an error)"""
    source_type: DataSourceType
    reason: str = "Schema introspection is only available for tabular and collection sources"


@dataclass(frozen=True)
class SchemaLimits:
    max_tables: int
    max_columns: int


@dataclass
class SourceRecord:
    external_id: str
    data: Dict[str, Any]


@dataclass
class SyncBatch:
    """One bounded pull from a source"""
    records: List[SourceRecord]
    next_cursor: Cursor
    has_more: bool
    row_errors: List[Dict[str, Any]] = field(default_factory=list)


class LatencyProbe:
    """
    Monotonic stopwatch around connect + first round trip.

    Connectors call ``mark_round_trip()`` as soon as the first server answer
    arrives; whatever they do afterwards (server info queries) is excluded.
    """

    def __init__(self):
        self._started: Optional[float] = None
        self._round_trip: Optional[float] = None

    def start(self) -> None:
        self._started = time.perf_counter()
        self._round_trip = None

    def mark_round_trip(self) -> None:
        if self._round_trip is None and self._started is not None:
            self._round_trip = (time.perf_counter() - self._started) * 1000

    @property
    def round_trip_ms(self) -> Optional[float]:
        return self._round_trip

    @property
    def elapsed_ms(self) -> Optional[float]:
        if self._started is None:
            return None
        return (time.perf_counter() - self._started) * 1000


def apply_schema_limits(tables: List[TableInfo], limits: SchemaLimits) -> SchemaResult:
    """Keep the largest tables first (unknown sizes last), cap tables and columns"""
    ordered = sorted(
        tables,
        key=lambda t: (t.row_count is None, -(t.row_count or 0), t.name)
    )
    truncated = len(ordered) > limits.max_tables
    kept = ordered[:limits.max_tables]

    for table in kept:
        if len(table.columns) > limits.max_columns:
            table.columns = table.columns[:limits.max_columns]
            table.columns_truncated = True
            truncated = True

    return SchemaResult(tables=kept, truncated=truncated)


# ============================================================================
# CONNECTOR
# ============================================================================

class Connector(ABC):
    """
    Abstract base class for all connectors.

    Responsibilities:
    - Minimal protocol handshake (test_connection)
    - Read-only schema discovery where the source is tabular
    - Bounded, cursor-driven batch pulls (sync)
    - Mapping driver exceptions onto core.exceptions
    """

    source_type: ClassVar[DataSourceType]
    supports_introspection: ClassVar[bool] = False

    @abstractmethod
    async def test_connection(
        self,
        config: BaseConnectionConfig,
        probe: LatencyProbe
    ) -> Dict[str, Any]:
        """
        Perform the handshake and return best-effort server info.

        Raises:
            SourceConnectionError: classified connection failure
        """
        pass

    async def introspect_schema(
        self,
        config: BaseConnectionConfig,
        limits: SchemaLimits
    ) -> Union[SchemaResult, Unsupported]:
        """List tables/collections with columns and approximate row counts"""
        return Unsupported(source_type=self.source_type)

    @abstractmethod
    async def sync(
        self,
        config: BaseConnectionConfig,
        cursor: Optional[Cursor],
        limit: int
    ) -> SyncBatch:
        """
        Pull at most ``limit`` records starting at ``cursor``.

        Args:
            config: Decrypted connection config
            cursor: Position returned by the previous batch (None = start)
            limit: Maximum records in this batch

        Returns:
            SyncBatch with records and the cursor of the next batch
        """
        pass

    def skip_batch(self, cursor: Optional[Cursor], limit: int) -> Optional[Cursor]:
        """
        Cursor just past a batch that could not be pulled.

        Offset-based by default; connectors whose position depends on the
        previous page's content return None and the batch is retried.
        """
        cursor = dict(cursor or {})
        cursor["offset"] = int(cursor.get("offset", 0)) + limit
        return cursor

    def classify_error(self, exc: BaseException) -> ConnectorException:
        """Map a driver/network exception onto the connection error taxonomy"""
        for cause in iter_causes(exc):
            if isinstance(cause, ConnectorException):
                return cause
            detail = str(cause) or type(cause).__name__
            if isinstance(cause, (asyncio.TimeoutError, socket.timeout)):
                return ConnectionTimeoutError("timeout", original_exception=exc)
            if isinstance(cause, socket.gaierror):
                return HostNotFoundError(detail, original_exception=exc)
            if isinstance(cause, ConnectionRefusedError):
                return RefusedConnectionError(detail, original_exception=exc)
            if isinstance(cause, ssl.SSLError):
                return SSLError(detail, original_exception=exc)
            if isinstance(cause, OSError):
                return NetworkError(detail, original_exception=exc)
        return SourceConnectionError(str(exc) or type(exc).__name__, original_exception=exc)


def iter_causes(exc: Optional[BaseException]) -> Iterator[BaseException]:
    """Walk an exception and the chain of exceptions it was raised from"""
    seen = set()
    while exc is not None and id(exc) not in seen:
        seen.add(id(exc))
        yield exc
        exc = exc.__cause__ or exc.__context__


def natural_key(record: Dict[str, Any], position: int, id_field: Optional[str] = None) -> str:
    """Natural key of a record, falling back to its position in the source"""
    for key in ([id_field] if id_field else []) + ["_id", "id", "key"]:
        value = record.get(key)
        if value not in (None, ""):
            return str(value)
    return str(position)
