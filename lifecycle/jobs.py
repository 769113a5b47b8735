"""
Background job tracking for connection tests and sync runs.

Jobs are keyed by (data source id, kind); at most one of each kind runs per
data source. A semaphore bounds how many run at once across all sources.
"""

import asyncio
import enum
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from core.exceptions import ConflictError

logger = logging.getLogger(__name__)


class JobKind(str, enum.Enum):
    TEST = "test"
    SYNC = "sync"


JobKey = Tuple[str, JobKind]


class JobManager:
    """
    Owns every in-flight test and sync task.

    Tests are cancellable (explicit cancel or the requesting client going
    away). Syncs are never cancelled by a request; on shutdown they get a
    grace period before being cancelled.
    """

    def __init__(self, max_concurrent: int):
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._tasks: Dict[JobKey, asyncio.Task] = {}

    def get(self, data_source_id: str, kind: JobKind) -> Optional[asyncio.Task]:
        task = self._tasks.get((data_source_id, kind))
        if task is not None and task.done():
            return None
        return task

    def is_running(self, data_source_id: str, kind: Optional[JobKind] = None) -> bool:
        kinds = [kind] if kind else list(JobKind)
        return any(self.get(data_source_id, k) is not None for k in kinds)

    def submit(
        self,
        data_source_id: str,
        kind: JobKind,
        job: Callable[[], Awaitable]
    ) -> asyncio.Task:
        """
        Start a job in the background.

        Raises:
            ConflictError: if a job of the same kind is already running
        """
        if self.get(data_source_id, kind) is not None:
            raise ConflictError(
                f"A {kind.value} is already running for this data source",
                context={"data_source_id": data_source_id, "job": kind.value}
            )

        key = (data_source_id, kind)
        task = asyncio.create_task(self._run(job), name=f"{kind.value}:{data_source_id}")
        self._tasks[key] = task
        task.add_done_callback(lambda t: self._finished(key, t))
        return task

    async def _run(self, job: Callable[[], Awaitable]):
        async with self._semaphore:
            return await job()

    def _finished(self, key: JobKey, task: asyncio.Task) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]
        if task.cancelled():
            logger.info(f"Job {task.get_name()} cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Job {task.get_name()} failed: {exc}", exc_info=exc)

    def cancel(self, data_source_id: str, kind: JobKind = JobKind.TEST) -> bool:
        task = self.get(data_source_id, kind)
        if task is None:
            return False
        return task.cancel()

    async def cancel_and_wait(self, data_source_id: str, kind: JobKind = JobKind.TEST) -> bool:
        task = self.get(data_source_id, kind)
        if task is None:
            return False
        task.cancel()
        await asyncio.wait([task])
        return True

    def running(self) -> List[JobKey]:
        return [key for key, task in self._tasks.items() if not task.done()]

    async def shutdown(self, grace_seconds: float) -> None:
        """Cancel tests, give syncs ``grace_seconds`` to finish, then cancel them"""
        tests = [t for (_, kind), t in self._tasks.items() if kind == JobKind.TEST and not t.done()]
        syncs = [t for (_, kind), t in self._tasks.items() if kind == JobKind.SYNC and not t.done()]

        for task in tests:
            task.cancel()

        if syncs:
            logger.info(f"Waiting up to {grace_seconds}s for {len(syncs)} sync(s) to finish")
            _, pending = await asyncio.wait(syncs, timeout=grace_seconds)
            for task in pending:
                logger.warning(f"Sync {task.get_name()} did not finish in time; cancelling")
                task.cancel()

        remaining = [t for t in self._tasks.values() if not t.done()]
        if remaining:
            await asyncio.wait(remaining)
