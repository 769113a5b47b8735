"""
Lifecycle tests through DataSourceManager against a SQLite database
"""

import asyncio

import pytest
from sqlalchemy import func, select, update

from core.exceptions import (
    AuthenticationError,
    ConflictError,
    RefusedConnectionError,
    ResourceNotFoundError,
    StateTransitionError,
    ValidationError,
)
from lifecycle.jobs import JobKind
from models.base import DataSourceStatus, DataSourceType
from models.data_source import DataSource
from models.sync_log import SyncLog
from models.synced_record import SyncedRecord
from schemas.data_source import DataSourceCreate, DataSourceUpdate

S = DataSourceStatus


async def sync_logs(session_factory, data_source_id):
    async with session_factory() as session:
        result = await session.execute(
            select(SyncLog).where(SyncLog.data_source_id == data_source_id).order_by(SyncLog.created_at)
        )
        return list(result.scalars().all())


async def record_count(session_factory, data_source_id):
    async with session_factory() as session:
        result = await session.execute(
            select(func.count()).select_from(SyncedRecord).where(SyncedRecord.data_source_id == data_source_id)
        )
        return result.scalar_one()


def gate_sync(connector):
    """Make the connector's sync wait until the returned event is set"""
    gate = asyncio.Event()
    entered = asyncio.Event()
    original = connector.sync

    async def gated(config, cursor, limit):
        entered.set()
        await gate.wait()
        return await original(config, cursor, limit)

    connector.sync = gated
    return gate, entered


def hold_test(connector):
    """Make the next connection tests wait until the returned event is set"""
    release = asyncio.Event()
    in_test = asyncio.Event()
    original = connector.test_connection

    async def held(config, probe):
        in_test.set()
        await release.wait()
        return await original(config, probe)

    connector.test_connection = held
    return release, in_test


class TestCreateAndTest:

    @pytest.mark.asyncio
    async def test_create_persists_in_configuring(self, manager, postgres_payload, vault):
        source = await manager.create(postgres_payload)

        assert source.status == S.CONFIGURING
        assert source.total_syncs == 0
        assert "s3cret" not in (source.encrypted_credentials or "")
        assert vault.decrypt(source.encrypted_credentials) == {"password": "s3cret"}

    @pytest.mark.asyncio
    async def test_successful_test_connects(self, manager, postgres_payload):
        source = await manager.create(postgres_payload)

        result = await manager.test(source.id)

        assert result.success is True
        stored = await manager.get(source.id)
        assert stored.status == S.CONNECTED
        assert stored.connection_error is None
        assert stored.last_connection_test is not None
        assert stored.avg_response_time == result.response_time

    @pytest.mark.asyncio
    async def test_wrong_password_moves_to_error(self, manager, postgres_payload, fake_connector):
        fake_connector.test_behaviour = AuthenticationError('password authentication failed for user "reader"')
        source = await manager.create(postgres_payload)

        result = await manager.test(source.id)

        assert result.success is False
        assert "auth" in result.message
        stored = await manager.get(source.id)
        assert stored.status == S.ERROR
        assert "auth" in stored.connection_error
        assert stored.last_connection_test is not None

    @pytest.mark.asyncio
    async def test_incomplete_config_is_rejected_without_state_change(self, manager):
        source = await manager.create(DataSourceCreate(name="Half done", type=DataSourceType.POSTGRESQL, host="db"))

        with pytest.raises(ValidationError):
            await manager.test(source.id)

        stored = await manager.get(source.id)
        assert stored.status == S.CONFIGURING
        assert stored.last_connection_test is None

    @pytest.mark.asyncio
    async def test_timeout_is_reported(self, manager, postgres_payload, fake_connector):
        fake_connector.test_behaviour = "hang"
        source = await manager.create(postgres_payload)

        result = await manager.test(source.id, timeout=0.05)

        assert result.message == "timeout"
        assert (await manager.get(source.id)).status == S.ERROR

    @pytest.mark.asyncio
    async def test_unknown_id(self, manager):
        with pytest.raises(ResourceNotFoundError):
            await manager.test("does-not-exist")

    @pytest.mark.asyncio
    async def test_concurrent_requests_share_one_test(self, manager, postgres_payload, fake_connector):
        fake_connector.round_trip_delay = 0.05
        source = await manager.create(postgres_payload)

        first, second = await asyncio.gather(manager.test(source.id), manager.test(source.id))

        assert first == second
        stored = await manager.get(source.id)
        assert stored.successful_tests == 1

    @pytest.mark.asyncio
    async def test_explicit_cancel(self, manager, postgres_payload, fake_connector):
        fake_connector.test_behaviour = "hang"
        source = await manager.create(postgres_payload)

        waiter = asyncio.create_task(manager.test(source.id))
        await fake_connector.test_started.wait()
        assert manager.cancel_test(source.id) is True

        result = await waiter

        assert result.success is False
        assert result.message == "cancelled"
        stored = await manager.get(source.id)
        assert stored.status == S.ERROR
        assert stored.connection_error == "cancelled"

    @pytest.mark.asyncio
    async def test_caller_going_away_cancels_test(self, manager, postgres_payload, fake_connector):
        fake_connector.test_behaviour = "hang"
        source = await manager.create(postgres_payload)

        waiter = asyncio.create_task(manager.test(source.id))
        await fake_connector.test_started.wait()
        job = manager.jobs.get(source.id, JobKind.TEST)
        waiter.cancel()

        with pytest.raises(asyncio.CancelledError):
            await waiter
        await asyncio.wait([job])

        assert not manager.jobs.is_running(source.id)
        assert (await manager.get(source.id)).status == S.ERROR

    @pytest.mark.asyncio
    async def test_cancel_without_running_test(self, manager, connected_source):
        assert manager.cancel_test(connected_source.id) is False

    @pytest.mark.asyncio
    async def test_repeated_tests_against_healthy_source(self, manager, connected_source):
        results = [await manager.test(connected_source.id) for _ in range(3)]

        assert all(r.success for r in results)
        assert {r.message for r in results} == {results[0].message}
        stored = await manager.get(connected_source.id)
        assert stored.status == S.CONNECTED
        assert stored.successful_tests == 4

    @pytest.mark.asyncio
    async def test_repeated_tests_against_unreachable_source(self, manager, postgres_payload, fake_connector):
        fake_connector.test_behaviour = RefusedConnectionError("[Errno 111] Connection refused")
        source = await manager.create(postgres_payload)

        results = [await manager.test(source.id) for _ in range(3)]

        assert not any(r.success for r in results)
        assert all(r.message.startswith("refused:") for r in results)
        assert {r.message for r in results} == {results[0].message}
        stored = await manager.get(source.id)
        assert stored.status == S.ERROR
        assert stored.connection_error == results[0].message
        assert stored.successful_tests == 0


class TestUpdateAndDisconnect:

    @pytest.mark.asyncio
    async def test_connection_change_requires_new_test(self, manager, connected_source, vault):
        updated = await manager.update(connected_source.id, DataSourceUpdate(password="rotated"))

        assert updated.status == S.CONFIGURING
        assert vault.decrypt(updated.encrypted_credentials) == {"password": "rotated"}

    @pytest.mark.asyncio
    async def test_rename_keeps_status(self, manager, connected_source):
        updated = await manager.update(connected_source.id, DataSourceUpdate(name="Orders (replica)"))

        assert updated.name == "Orders (replica)"
        assert updated.status == S.CONNECTED

    @pytest.mark.asyncio
    async def test_disconnect_and_reconnect(self, manager, connected_source):
        disconnected = await manager.disconnect(connected_source.id)
        assert disconnected.status == S.DISCONNECTED

        with pytest.raises(StateTransitionError):
            await manager.start_sync(connected_source.id)

        result = await manager.test(connected_source.id)
        assert result.success is True
        assert (await manager.get(connected_source.id)).status == S.CONNECTED

    @pytest.mark.asyncio
    async def test_disconnect_cancels_running_test(self, manager, postgres_payload, fake_connector):
        fake_connector.test_behaviour = "hang"
        source = await manager.create(postgres_payload)
        waiter = asyncio.create_task(manager.test(source.id))
        await fake_connector.test_started.wait()

        disconnected = await manager.disconnect(source.id)

        assert disconnected.status == S.DISCONNECTED
        assert (await waiter).message == "cancelled"

    @pytest.mark.asyncio
    async def test_recover_interrupted_tests(self, manager, postgres_payload, session_factory):
        source = await manager.create(postgres_payload)
        async with session_factory() as session:
            await session.execute(update(DataSource).where(DataSource.id == source.id).values(status=S.TESTING))
            await session.commit()

        assert await manager.recover_interrupted() == 1

        stored = await manager.get(source.id)
        assert stored.status == S.ERROR
        assert stored.connection_error == "interrupted"


class TestSync:

    @pytest.mark.asyncio
    async def test_successful_sync(self, manager, connected_source, session_factory):
        outcome = await manager.sync(connected_source.id)

        assert outcome.success is True
        logs = await sync_logs(session_factory, connected_source.id)
        assert len(logs) == 1
        assert logs[0].success is True
        assert logs[0].records_sync == 250
        assert logs[0].batches_total == 3

        stored = await manager.get(connected_source.id)
        assert stored.status == S.CONNECTED
        assert stored.total_syncs == 1
        assert stored.failed_syncs == 0
        assert stored.total_records == 250
        assert stored.last_successful_sync is not None

    @pytest.mark.asyncio
    async def test_sync_requires_connected(self, manager, postgres_payload):
        source = await manager.create(postgres_payload)

        with pytest.raises(StateTransitionError):
            await manager.start_sync(source.id)

    @pytest.mark.asyncio
    async def test_revoked_credentials_abort_and_demote(self, manager, connected_source, fake_connector, session_factory, make_rows):
        fake_connector.rows = make_rows(1000)
        fake_connector.sync_script = [None, None, None, AuthenticationError("token revoked")]

        outcome = await manager.sync(connected_source.id)

        assert outcome.success is False
        logs = await sync_logs(session_factory, connected_source.id)
        assert logs[-1].success is False
        assert logs[-1].records_sync == 300
        stored = await manager.get(connected_source.id)
        assert stored.status == S.ERROR
        assert stored.connection_error == "auth: token revoked"
        assert stored.total_syncs == 1
        assert stored.failed_syncs == 1
        assert stored.total_records == 300

    @pytest.mark.asyncio
    async def test_next_run_resumes_after_abort(self, manager, connected_source, fake_connector, make_rows):
        fake_connector.rows = make_rows(500)
        fake_connector.sync_script = [None, None, AuthenticationError("token revoked")]
        await manager.sync(connected_source.id)

        assert (await manager.test(connected_source.id)).success
        fake_connector.sync_calls.clear()
        outcome = await manager.sync(connected_source.id)

        assert fake_connector.sync_calls[0] == {"offset": 200}
        assert outcome.success is True
        assert (await manager.get(connected_source.id)).total_records == 500

    @pytest.mark.asyncio
    async def test_full_refresh_ignores_cursor(self, manager, connected_source, fake_connector):
        fake_connector.sync_script = [None, AuthenticationError("token revoked")]
        await manager.sync(connected_source.id)
        await manager.test(connected_source.id)
        fake_connector.sync_calls.clear()

        await manager.sync(connected_source.id, full_refresh=True)

        assert fake_connector.sync_calls[0] is None

    @pytest.mark.asyncio
    async def test_failed_preflight_records_failed_run(self, manager, connected_source, fake_connector, session_factory):
        fake_connector.test_behaviour = AuthenticationError("password authentication failed")

        outcome = await manager.sync(connected_source.id)

        assert outcome.success is False
        assert outcome.error_message.startswith("preflight connection test failed: auth")
        assert fake_connector.sync_calls == []
        stored = await manager.get(connected_source.id)
        assert stored.status == S.ERROR
        assert stored.total_syncs == 1
        assert stored.failed_syncs == 1
        assert len(await sync_logs(session_factory, connected_source.id)) == 1

    @pytest.mark.asyncio
    async def test_fatal_sync_does_not_swallow_concurrent_test(self, manager, connected_source, fake_connector):
        gate, entered = gate_sync(fake_connector)
        gated = fake_connector.sync

        async def revoked(config, cursor, limit):
            await gated(config, cursor, limit)
            raise AuthenticationError("revoked")

        fake_connector.sync = revoked
        sync_task = await manager.start_sync(connected_source.id)
        await entered.wait()

        release, in_test = hold_test(fake_connector)
        test_task = asyncio.create_task(manager.test(connected_source.id))
        await in_test.wait()

        gate.set()
        outcome = await sync_task
        assert outcome.fatal is True
        during = await manager.get(connected_source.id)
        assert during.status == S.TESTING
        assert during.connection_error == "auth: revoked"

        release.set()
        result = await test_task

        assert result.success is True
        stored = await manager.get(connected_source.id)
        assert stored.status == S.CONNECTED
        assert stored.connection_error is None
        # fixture test, sync preflight, standalone test
        assert stored.successful_tests == 3
        assert stored.failed_syncs == 1

    @pytest.mark.asyncio
    async def test_cancel_during_preflight_writes_one_log(self, manager, connected_source, fake_connector, session_factory):
        fake_connector.sync_script = [None, AuthenticationError("token revoked")]
        await manager.sync(connected_source.id)
        assert (await manager.test(connected_source.id)).success

        release, in_test = hold_test(fake_connector)
        sync_task = await manager.start_sync(connected_source.id)
        await in_test.wait()
        sync_task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await sync_task

        logs = await sync_logs(session_factory, connected_source.id)
        assert len(logs) == 2
        assert logs[-1].success is False
        assert logs[-1].error_message == "cancelled: service shutting down"
        # Resume point from the aborted run survives
        assert logs[-1].cursor == {"offset": 100}
        stored = await manager.get(connected_source.id)
        assert stored.total_syncs == 2
        assert stored.failed_syncs == 2

    @pytest.mark.asyncio
    async def test_one_sync_at_a_time_and_no_delete_or_update_during_sync(self, manager, connected_source, fake_connector):
        gate, entered = gate_sync(fake_connector)
        task = await manager.start_sync(connected_source.id)
        await entered.wait()

        with pytest.raises(ConflictError):
            await manager.start_sync(connected_source.id)
        with pytest.raises(ConflictError):
            await manager.delete(connected_source.id)
        with pytest.raises(ConflictError):
            await manager.update(connected_source.id, DataSourceUpdate(name="renamed"))

        gate.set()
        outcome = await task
        assert outcome.success is True
        assert (await manager.get(connected_source.id)).total_syncs == 1

    @pytest.mark.asyncio
    async def test_counters_match_sync_logs(self, manager, connected_source, fake_connector, session_factory):
        await manager.sync(connected_source.id)
        fake_connector.sync_script = [AuthenticationError("token revoked")]
        await manager.sync(connected_source.id)
        await manager.test(connected_source.id)
        await manager.sync(connected_source.id)

        logs = await sync_logs(session_factory, connected_source.id)
        stored = await manager.get(connected_source.id)
        assert stored.total_syncs == len(logs) == 3
        assert stored.failed_syncs == sum(1 for log in logs if not log.success) == 1
        assert stored.total_records == await record_count(session_factory, connected_source.id)


class TestDelete:

    @pytest.mark.asyncio
    async def test_delete_cascades(self, manager, connected_source, session_factory):
        await manager.sync(connected_source.id)
        assert await record_count(session_factory, connected_source.id) == 250

        await manager.delete(connected_source.id)

        with pytest.raises(ResourceNotFoundError):
            await manager.get(connected_source.id)
        assert await sync_logs(session_factory, connected_source.id) == []
        assert await record_count(session_factory, connected_source.id) == 0

    @pytest.mark.asyncio
    async def test_delete_unknown(self, manager):
        with pytest.raises(ResourceNotFoundError):
            await manager.delete("does-not-exist")


class TestSchema:

    @pytest.mark.asyncio
    async def test_introspection_does_not_change_status(self, manager, postgres_payload):
        source = await manager.create(postgres_payload)

        result = await manager.introspect(source.id)

        assert result.tables == []
        assert (await manager.get(source.id)).status == S.CONFIGURING
