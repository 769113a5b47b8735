"""
Scriptable stand-ins for real connectors
"""

import asyncio
from typing import Any, Dict, List, Optional

from connectors.base import (
    Connector,
    LatencyProbe,
    SchemaLimits,
    SchemaResult,
    SourceRecord,
    SyncBatch,
    apply_schema_limits,
)
from models.base import DataSourceType


class FakeConnector(Connector):
    """
    Scriptable connector standing in for a real driver.

    test_behaviour: None (succeed), an exception to raise, or "hang"
    sync_script: per-call steps for sync(); an exception step is raised,
        any other step serves ``rows`` by offset
    """

    source_type = DataSourceType.POSTGRESQL
    supports_introspection = True

    def __init__(self, rows: Optional[List[Dict[str, Any]]] = None):
        self.rows = rows or []
        self.test_behaviour: Any = None
        self.round_trip_delay = 0.0
        self.server_info = {"version": "PostgreSQL 16.2", "database": "orders"}
        self.sync_script: List[Any] = []
        self.sync_calls: List[Optional[Dict[str, Any]]] = []
        self.tables = []
        self.test_started = asyncio.Event()

    async def test_connection(self, config, probe: LatencyProbe) -> Dict[str, Any]:
        self.test_started.set()
        if self.test_behaviour == "hang":
            await asyncio.sleep(3600)
        if self.round_trip_delay:
            await asyncio.sleep(self.round_trip_delay)
        if isinstance(self.test_behaviour, BaseException):
            raise self.test_behaviour
        probe.mark_round_trip()
        return dict(self.server_info)

    async def introspect_schema(self, config, limits: SchemaLimits) -> SchemaResult:
        return apply_schema_limits(list(self.tables), limits)

    async def sync(self, config, cursor, limit: int) -> SyncBatch:
        self.sync_calls.append(cursor)
        if self.sync_script:
            step = self.sync_script.pop(0)
            if isinstance(step, BaseException):
                raise step
        offset = int((cursor or {}).get("offset", 0))
        window = self.rows[offset:offset + limit]
        records = [SourceRecord(external_id=str(row["id"]), data=row) for row in window]
        next_offset = offset + len(window)
        return SyncBatch(
            records=records,
            next_cursor={"offset": next_offset},
            has_more=next_offset < len(self.rows),
        )
