"""
Per data source mutual exclusion for state writes
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict


class LockRegistry:
    """
    One asyncio.Lock per data source id.

    Held only around read-modify-write of a DataSource row and its SyncLog
    writes, never across network I/O.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}

    def get(self, data_source_id: str) -> asyncio.Lock:
        lock = self._locks.get(data_source_id)
        if lock is None:
            lock = self._locks[data_source_id] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def hold(self, data_source_id: str) -> AsyncIterator[None]:
        async with self.get(data_source_id):
            yield

    def discard(self, data_source_id: str) -> None:
        lock = self._locks.get(data_source_id)
        if lock is not None and not lock.locked():
            del self._locks[data_source_id]

    def __len__(self) -> int:
        return len(self._locks)
