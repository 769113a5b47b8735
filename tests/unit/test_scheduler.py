import pytest
from unittest.mock import AsyncMock, MagicMock

from core.exceptions import StateTransitionError
from lifecycle.jobs import JobKind
from lifecycle.scheduler import SyncScheduler


def test_scheduler_initialization():
    manager = MagicMock()
    scheduler = SyncScheduler(manager, interval_minutes=15)
    assert scheduler.scheduler is not None
    assert scheduler.manager is manager
    assert scheduler.running is False


@pytest.mark.asyncio
async def test_scheduler_job_starts_connected_sources():
    manager = MagicMock()
    manager.connected_ids = AsyncMock(return_value=["ds-1", "ds-2", "ds-3"])
    manager.jobs.is_running.side_effect = lambda source_id, kind: source_id == "ds-2"
    manager.start_sync = AsyncMock()

    started = await SyncScheduler(manager).run_sync_job()

    assert started == 2
    assert [c.args[0] for c in manager.start_sync.await_args_list] == ["ds-1", "ds-3"]
    manager.jobs.is_running.assert_any_call("ds-2", JobKind.SYNC)


@pytest.mark.asyncio
async def test_scheduler_job_skips_sources_that_changed_state():
    manager = MagicMock()
    manager.connected_ids = AsyncMock(return_value=["ds-1", "ds-2"])
    manager.jobs.is_running.return_value = False
    manager.start_sync = AsyncMock(side_effect=[StateTransitionError("not connected"), None])

    started = await SyncScheduler(manager).run_sync_job()

    assert started == 1


@pytest.mark.asyncio
async def test_scheduler_job_survives_listing_failure():
    manager = MagicMock()
    manager.connected_ids = AsyncMock(side_effect=RuntimeError("database is down"))
    manager.start_sync = AsyncMock()

    assert await SyncScheduler(manager).run_sync_job() == 0
    manager.start_sync.assert_not_awaited()


@pytest.mark.asyncio
async def test_scheduler_start_and_stop():
    scheduler = SyncScheduler(MagicMock(), interval_minutes=5)

    scheduler.start()
    try:
        assert scheduler.running is True
        assert scheduler.scheduler.get_job("sync_job") is not None
    finally:
        scheduler.stop()
