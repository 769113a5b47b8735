import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from core.config import settings
from core.exceptions import ConflictError, ConnectorException
from lifecycle.jobs import JobKind
from lifecycle.manager import DataSourceManager

logger = logging.getLogger(__name__)


class SyncScheduler:
    """Periodically starts an incremental sync for every CONNECTED data source"""

    def __init__(self, manager: DataSourceManager, interval_minutes: int = settings.SYNC_INTERVAL_MINUTES):
        self.manager = manager
        self.interval_minutes = interval_minutes
        self.scheduler = AsyncIOScheduler()

    @property
    def running(self) -> bool:
        return self.scheduler.running

    async def run_sync_job(self) -> int:
        """Start syncs; returns how many were started"""
        logger.info("Scheduler: Starting sync job")
        started = 0
        try:
            source_ids = await self.manager.connected_ids()
        except Exception as e:
            logger.error(f"Scheduler: could not list data sources - {e}")
            return 0

        for source_id in source_ids:
            if self.manager.jobs.is_running(source_id, JobKind.SYNC):
                continue
            try:
                await self.manager.start_sync(source_id)
                started += 1
            except ConflictError as e:
                # Status changed or a sync started since the listing
                logger.info(f"Scheduler: skipped {source_id} - {e.message}")
            except ConnectorException as e:
                logger.error(f"Scheduler: sync for {source_id} not started - {e.message}", extra={"error_context": e.to_dict()})

        logger.info(f"Scheduler: started {started} sync(s)")
        return started

    def start(self):
        """Start the scheduler"""
        self.scheduler.add_job(
            self.run_sync_job,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id="sync_job",
            replace_existing=True
        )
        self.scheduler.start()
        logger.info(f"Sync Scheduler started (every {self.interval_minutes} minutes)")

    def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Sync Scheduler stopped")
