"""
DataSourceManager - single entry point for every data source mutation.

Each state write happens under the per-id lock inside one short
transaction; connector I/O always happens outside the lock. Tests and syncs
run as JobManager tasks so they outlive the request that started them.
"""

import asyncio
import logging
import time
import uuid
from typing import Any, Dict, Optional, Union

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from connectors.base import ConnectionTestResult, Cursor, SchemaResult, Unsupported
from connectors.registry import ConnectorResolver, get_connector
from core.config import Settings, settings as default_settings
from core.exceptions import ConflictError, ConnectorException, ResourceNotFoundError, StateTransitionError
from core.security import CredentialVault
from lifecycle import state
from lifecycle.introspector import SchemaIntrospector
from lifecycle.jobs import JobKind, JobManager
from lifecycle.loader import RecordLoader
from lifecycle.locks import LockRegistry
from lifecycle.sync_engine import Sleep, SyncEngine, SyncOutcome
from lifecycle.tester import ConnectionTester, PreparedCall
from models.base import DataSourceStatus, DataSourceType
from models.data_source import DataSource
from models.sync_log import SyncLog
from models.synced_record import SyncedRecord
from schemas.data_source import DataSourceCreate, DataSourceUpdate

logger = logging.getLogger(__name__)


class DataSourceManager:
    """
    Orchestrates the data source lifecycle.

    Responsibilities:
    - CRUD with credential encryption
    - Connection tests (cancellable) and schema introspection
    - Background sync runs with exactly one SyncLog each
    - Serialized, atomic state and metrics updates per data source
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        vault: Optional[CredentialVault] = None,
        resolver: ConnectorResolver = get_connector,
        settings: Settings = default_settings,
        sleep: Sleep = asyncio.sleep
    ):
        self.session_factory = session_factory
        self.settings = settings
        self.vault = vault or CredentialVault()
        self.locks = LockRegistry()
        self.jobs = JobManager(settings.MAX_CONCURRENT_JOBS)
        self.tester = ConnectionTester(self.vault, resolver, settings)
        self.introspector = SchemaIntrospector(settings)
        self.engine = SyncEngine(session_factory, settings, sleep)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _load(self, session: AsyncSession, data_source_id: str, for_update: bool = False) -> DataSource:
        stmt = select(DataSource).where(DataSource.id == data_source_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await session.execute(stmt)
        source = result.scalar_one_or_none()
        if source is None:
            raise ResourceNotFoundError(
                f"Data source {data_source_id} not found",
                context={"data_source_id": data_source_id}
            )
        return source

    async def get(self, data_source_id: str) -> DataSource:
        async with self.session_factory() as session:
            return await self._load(session, data_source_id)

    def _ensure_idle(self, data_source_id: str, action: str) -> None:
        if self.jobs.is_running(data_source_id, JobKind.SYNC):
            raise ConflictError(
                f"Cannot {action} while a sync is running",
                context={"data_source_id": data_source_id}
            )

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    async def create(self, payload: DataSourceCreate) -> DataSource:
        fields = payload.connection_values()
        fields["ssl"] = bool(fields.get("ssl"))

        source = DataSource(
            id=str(uuid.uuid4()),
            name=payload.name,
            description=payload.description,
            type=payload.type,
            status=DataSourceStatus.CONFIGURING,
            configuration=dict(payload.configuration or {}),
            encrypted_credentials=self.vault.encrypt(payload.secret_values()),
            **fields
        )

        async with self.session_factory() as session:
            session.add(source)
            await session.commit()
            await session.refresh(source)

        logger.info(f"Created data source {source.id} ({source.type.value}) '{source.name}'")
        return source

    async def update(self, data_source_id: str, payload: DataSourceUpdate) -> DataSource:
        """
        Raises:
            ConflictError: a test or sync is in flight
        """
        if self.jobs.is_running(data_source_id):
            raise ConflictError(
                "Cannot update a data source while a test or sync is running",
                context={"data_source_id": data_source_id}
            )

        async with self.locks.hold(data_source_id):
            async with self.session_factory() as session:
                source = await self._load(session, data_source_id, for_update=True)

                if "name" in payload.model_fields_set and payload.name:
                    source.name = payload.name
                if "description" in payload.model_fields_set:
                    source.description = payload.description

                for name, value in payload.connection_values(only_set=True).items():
                    setattr(source, name, bool(value) if name == "ssl" else value)

                secrets = payload.secret_values(only_set=True)
                if secrets:
                    source.encrypted_credentials = self.vault.merge(source.encrypted_credentials, secrets)

                if "configuration" in payload.model_fields_set:
                    source.configuration = dict(payload.configuration or {})

                if payload.changes_connection():
                    state.reset_to_configuring(source)

                await session.commit()
                await session.refresh(source)

        logger.info(f"Updated data source {data_source_id}")
        return source

    async def delete(self, data_source_id: str) -> None:
        """
        Delete a data source with its sync logs and synced records.

        Raises:
            ConflictError: a sync is in flight
        """
        self._ensure_idle(data_source_id, "delete a data source")
        await self.jobs.cancel_and_wait(data_source_id, JobKind.TEST)

        async with self.locks.hold(data_source_id):
            self._ensure_idle(data_source_id, "delete a data source")
            async with self.session_factory() as session:
                source = await self._load(session, data_source_id, for_update=True)
                await session.execute(delete(SyncedRecord).where(SyncedRecord.data_source_id == data_source_id))
                await session.execute(delete(SyncLog).where(SyncLog.data_source_id == data_source_id))
                await session.delete(source)
                await session.commit()

        self.locks.discard(data_source_id)
        logger.info(f"Deleted data source {data_source_id}")

    async def disconnect(self, data_source_id: str) -> DataSource:
        await self.jobs.cancel_and_wait(data_source_id, JobKind.TEST)

        async with self.locks.hold(data_source_id):
            async with self.session_factory() as session:
                source = await self._load(session, data_source_id, for_update=True)
                state.disconnect(source)
                await session.commit()
                await session.refresh(source)

        logger.info(f"Disconnected data source {data_source_id}")
        return source

    # ------------------------------------------------------------------
    # Connection tests
    # ------------------------------------------------------------------

    async def _begin_test(
        self,
        data_source_id: str,
        timeout: Optional[float] = None,
        require: Optional[DataSourceStatus] = None
    ) -> PreparedCall:
        """Validate + decrypt, then move to TESTING. Caller holds the lock."""
        async with self.session_factory() as session:
            source = await self._load(session, data_source_id, for_update=True)
            if require is not None and DataSourceStatus(source.status) != require:
                raise StateTransitionError(
                    f"Data source is {DataSourceStatus(source.status).value}, expected {require.value}",
                    context={"data_source_id": data_source_id}
                )
            call = self.tester.prepare(source, timeout)
            state.begin_test(source)
            await session.commit()
        return call

    async def _record_test(self, data_source_id: str, result: ConnectionTestResult) -> None:
        async with self.locks.hold(data_source_id):
            async with self.session_factory() as session:
                try:
                    source = await self._load(session, data_source_id, for_update=True)
                except ResourceNotFoundError:
                    logger.warning(f"Data source {data_source_id} deleted before its test finished")
                    return
                state.record_test_result(source, result)
                await session.commit()

    async def _execute_test(self, call: PreparedCall) -> ConnectionTestResult:
        try:
            result = await self.tester.execute(call)
        except asyncio.CancelledError:
            await self._record_test(call.data_source_id, ConnectionTestResult.cancelled())
            raise
        await self._record_test(call.data_source_id, result)
        return result

    async def test(self, data_source_id: str, timeout: Optional[float] = None) -> ConnectionTestResult:
        """
        Run (or join) a connection test.

        Cancelling the caller cancels the test. If the test is cancelled
        from elsewhere, the caller receives a "cancelled" result.

        Raises:
            ResourceNotFoundError: unknown id
            ValidationError: incomplete or malformed configuration
        """
        async with self.locks.hold(data_source_id):
            task = self.jobs.get(data_source_id, JobKind.TEST)
            if task is None:
                call = await self._begin_test(data_source_id, timeout)
                task = self.jobs.submit(data_source_id, JobKind.TEST, lambda: self._execute_test(call))

        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                task.cancel()
                raise
            return ConnectionTestResult.cancelled()

    def cancel_test(self, data_source_id: str) -> bool:
        cancelled = self.jobs.cancel(data_source_id, JobKind.TEST)
        if cancelled:
            logger.info(f"Cancelled connection test for {data_source_id}")
        return cancelled

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    async def introspect(self, data_source_id: str) -> Union[SchemaResult, Unsupported]:
        """Read-only; never changes the data source status"""
        async with self.session_factory() as session:
            source = await self._load(session, data_source_id)
            source_type = DataSourceType(source.type)
            # No config checks or decryption for types without a schema
            if not self.tester.resolver(source_type).supports_introspection:
                return Unsupported(source_type=source_type)
            call = self.tester.prepare(source)
        return await self.introspector.introspect(call)

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    async def start_sync(self, data_source_id: str, full_refresh: bool = False) -> asyncio.Task:
        """
        Start a background sync run.

        Raises:
            ResourceNotFoundError: unknown id
            StateTransitionError: the data source is not CONNECTED
            ConflictError: a sync is already running
        """
        async with self.locks.hold(data_source_id):
            async with self.session_factory() as session:
                source = await self._load(session, data_source_id)
                status = DataSourceStatus(source.status)

            if status != DataSourceStatus.CONNECTED:
                raise StateTransitionError(
                    f"Data source must be CONNECTED to sync (currently {status.value})",
                    context={"data_source_id": data_source_id, "current_status": status.value}
                )

            return self.jobs.submit(
                data_source_id,
                JobKind.SYNC,
                lambda: self._run_sync(data_source_id, full_refresh)
            )

    async def sync(self, data_source_id: str, full_refresh: bool = False) -> SyncOutcome:
        """Start a sync and wait for it"""
        task = await self.start_sync(data_source_id, full_refresh)
        return await asyncio.shield(task)

    async def _last_cursor(self, data_source_id: str) -> Optional[Cursor]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(SyncLog.cursor)
                .where(SyncLog.data_source_id == data_source_id)
                .order_by(SyncLog.created_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def _run_sync(self, data_source_id: str, full_refresh: bool) -> SyncOutcome:
        sync_log_id = str(uuid.uuid4())
        started = time.perf_counter()

        outcome = SyncOutcome(success=False)
        try:
            # Runs that end before reading keep the previous resume point
            previous_cursor = await self._last_cursor(data_source_id)
            outcome.cursor = previous_cursor

            # Preflight connection test
            try:
                async with self.locks.hold(data_source_id):
                    call = await self._begin_test(data_source_id, require=DataSourceStatus.CONNECTED)
            except ConnectorException as e:
                outcome.error_message = f"preflight connection test failed: {e.message}"
                return await self._finish_sync(data_source_id, sync_log_id, outcome, started)

            result = await self._execute_test(call)
            if not result.success:
                outcome.error_message = f"preflight connection test failed: {result.message}"
                return await self._finish_sync(data_source_id, sync_log_id, outcome, started)

            outcome.success = True
            cursor = None if full_refresh else previous_cursor
            await self.engine.run(call, cursor, sync_log_id, outcome=outcome)
        except asyncio.CancelledError:
            outcome.success = False
            outcome.error_message = "cancelled: service shutting down"
            await self._finish_sync(data_source_id, sync_log_id, outcome, started)
            raise

        return await self._finish_sync(data_source_id, sync_log_id, outcome, started)

    async def _finish_sync(
        self,
        data_source_id: str,
        sync_log_id: str,
        outcome: SyncOutcome,
        started: float
    ) -> SyncOutcome:
        """Write the SyncLog, the counters and any status change in one transaction"""
        if not outcome.duration_ms:
            outcome.duration_ms = round((time.perf_counter() - started) * 1000, 2)

        async with self.locks.hold(data_source_id):
            async with self.session_factory() as session:
                source = await self._load(session, data_source_id, for_update=True)
                log = SyncLog(
                    id=sync_log_id,
                    data_source_id=data_source_id,
                    success=outcome.success,
                    records_sync=outcome.records_synced,
                    duration=outcome.duration_ms,
                    error_message=outcome.error_message,
                    batches_total=outcome.batches_total,
                    batches_failed=outcome.batches_failed,
                    error_details=outcome.error_details or None,
                    cursor=outcome.cursor,
                )
                session.add(log)
                total_records = await RecordLoader(session).count(data_source_id)
                state.record_sync_result(source, log, outcome.fatal, total_records)
                await session.commit()

        return outcome

    # ------------------------------------------------------------------
    # Service lifecycle
    # ------------------------------------------------------------------

    async def recover_interrupted(self) -> int:
        """Tests cut short by a restart leave sources in TESTING; fail them"""
        async with self.session_factory() as session:
            result = await session.execute(
                select(DataSource).where(DataSource.status == DataSourceStatus.TESTING)
            )
            sources = result.scalars().all()
            for source in sources:
                state.record_test_result(
                    source,
                    ConnectionTestResult(success=False, message="interrupted", error_type="unknown")
                )
            await session.commit()

        if sources:
            logger.warning(f"Marked {len(sources)} interrupted connection test(s) as failed")
        return len(sources)

    async def connected_ids(self) -> list:
        async with self.session_factory() as session:
            result = await session.execute(
                select(DataSource.id).where(DataSource.status == DataSourceStatus.CONNECTED)
            )
            return list(result.scalars().all())

    def stats(self) -> Dict[str, Any]:
        return {"running_jobs": len(self.jobs.running()), "locks": len(self.locks)}

    async def shutdown(self) -> None:
        await self.jobs.shutdown(self.settings.SHUTDOWN_GRACE_SECONDS)
