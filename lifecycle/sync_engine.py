"""
Sync Engine - pulls a CONNECTED source in bounded batches.

This module provides the batch loop with:
- Exponential backoff retry for transient batch errors
- Per-batch failure recording (the run continues past a failed batch)
- Fatal aborts on auth loss or repeated consecutive failures
- Per-batch ingestion into synced_records

Writing the SyncLog and the data source counters is the caller's job, in
one transaction, once the run's SyncOutcome is known.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from connectors.base import Cursor, SyncBatch
from core.config import Settings, settings as default_settings
from core.exceptions import (
    AuthenticationError,
    BatchFailedError,
    ConnectionTimeoutError,
    ConnectorException,
    FatalSyncError,
    NonRetryableError,
    PermissionDeniedError,
    SourceConnectionError,
)
from lifecycle.loader import RecordLoader
from lifecycle.tester import PreparedCall

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


@dataclass
class SyncOutcome:
    """Result of one run, before it is written as a SyncLog"""
    success: bool
    fatal: bool = False
    records_synced: int = 0
    batches_total: int = 0
    batches_failed: int = 0
    duration_ms: float = 0.0
    error_message: Optional[str] = None
    error_details: List[Dict[str, Any]] = field(default_factory=list)
    cursor: Optional[Cursor] = None  # resume point, None once the source was read to the end


def describe(error: ConnectorException) -> str:
    if isinstance(error, SourceConnectionError):
        return error.public_message
    return error.message


class SyncEngine:
    """
    Batch orchestrator.

    Responsibilities:
    - Drive connector.sync() from a cursor until the source is exhausted
    - Retry transient batch errors with capped exponential backoff
    - Skip past batches that keep failing (when the connector can)
    - Abort on auth/permission loss or too many consecutive failures
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        settings: Settings = default_settings,
        sleep: Sleep = asyncio.sleep
    ):
        self.session_factory = session_factory
        self.settings = settings
        self.sleep = sleep

    def backoff(self, attempt: int) -> float:
        """Delay before retry ``attempt + 1``: 1s, 2s, 4s, ... capped"""
        delay = self.settings.SYNC_RETRY_BASE_DELAY * (2 ** (attempt - 1))
        return min(delay, self.settings.SYNC_RETRY_MAX_DELAY)

    async def run(
        self,
        call: PreparedCall,
        cursor: Optional[Cursor],
        sync_log_id: str,
        outcome: Optional[SyncOutcome] = None
    ) -> SyncOutcome:
        """
        Pull batches until the source is exhausted or the run aborts.

        ``outcome`` is filled in place so a caller that cancels the run still
        sees the progress made so far.
        """
        started = time.perf_counter()
        if outcome is None:
            outcome = SyncOutcome(success=True)
        outcome.cursor = cursor
        limit = self.settings.SYNC_BATCH_SIZE
        consecutive_failures = 0

        logger.info(f"Starting sync for {call.data_source_id} from cursor {cursor}")

        while True:
            outcome.batches_total += 1
            batch_number = outcome.batches_total

            try:
                batch = await self._pull_with_retry(call, outcome.cursor, limit, batch_number)

            except FatalSyncError as e:
                outcome.fatal = True
                outcome.error_message = e.message
                self._add_detail(outcome, {"batch": batch_number, "error": e.message, "fatal": True})
                break

            except BatchFailedError as e:
                outcome.batches_failed += 1
                consecutive_failures += 1
                self._add_detail(outcome, {
                    "batch": batch_number,
                    "error": e.message,
                    "attempts": e.context.get("attempts"),
                })
                logger.warning(f"Batch {batch_number} failed for {call.data_source_id}: {e.message}")

                if consecutive_failures >= self.settings.SYNC_MAX_CONSECUTIVE_FAILURES:
                    outcome.fatal = True
                    outcome.error_message = f"{consecutive_failures} consecutive batches failed: {e.message}"
                    break

                skipped = call.connector.skip_batch(outcome.cursor, limit)
                if skipped is not None:
                    outcome.cursor = skipped
                continue

            consecutive_failures = 0
            await self._ingest(call, sync_log_id, batch, batch_number, outcome)
            if outcome.fatal:
                break

            outcome.cursor = batch.next_cursor
            if not batch.has_more:
                # Read to the end: the next run starts over
                outcome.cursor = None
                break

        outcome.success = not outcome.fatal
        if outcome.success and outcome.batches_failed:
            outcome.error_message = f"{outcome.batches_failed} of {outcome.batches_total} batches failed"
        outcome.duration_ms = round((time.perf_counter() - started) * 1000, 2)

        logger.info(
            f"Sync for {call.data_source_id} finished: "
            f"{'success' if outcome.success else 'aborted'} - "
            f"Records: {outcome.records_synced}, Batches: {outcome.batches_total}, "
            f"Failed batches: {outcome.batches_failed}"
        )
        return outcome

    async def _pull_with_retry(
        self,
        call: PreparedCall,
        cursor: Optional[Cursor],
        limit: int,
        batch_number: int
    ) -> SyncBatch:
        """
        Pull one batch, retrying transient failures.

        Raises:
            FatalSyncError: credentials or permissions were rejected
            BatchFailedError: non-retryable failure or attempts exhausted
        """
        max_attempts = self.settings.SYNC_MAX_BATCH_ATTEMPTS
        error: Optional[ConnectorException] = None

        for attempt in range(1, max_attempts + 1):
            try:
                return await asyncio.wait_for(
                    call.connector.sync(call.config, cursor, limit),
                    timeout=self.settings.SYNC_BATCH_TIMEOUT
                )
            except asyncio.TimeoutError as e:
                error = ConnectionTimeoutError("timeout", original_exception=e)
            except Exception as e:
                error = call.connector.classify_error(e)

            context = {"batch_number": batch_number, "attempts": attempt, "cursor": cursor}

            if isinstance(error, (AuthenticationError, PermissionDeniedError)):
                raise FatalSyncError(describe(error), context=context, original_exception=error)

            if isinstance(error, NonRetryableError):
                raise BatchFailedError(describe(error), context=context, original_exception=error)

            if attempt < max_attempts:
                delay = self.backoff(attempt)
                logger.warning(
                    f"Batch {batch_number} error: {describe(error)}. "
                    f"Retrying in {delay} seconds (attempt {attempt}/{max_attempts})"
                )
                await self.sleep(delay)

        raise BatchFailedError(
            describe(error),
            context={"batch_number": batch_number, "attempts": max_attempts, "cursor": cursor},
            original_exception=error
        )

    async def _ingest(
        self,
        call: PreparedCall,
        sync_log_id: str,
        batch: SyncBatch,
        batch_number: int,
        outcome: SyncOutcome
    ) -> None:
        for row_error in batch.row_errors:
            self._add_detail(outcome, {"batch": batch_number, **row_error})

        if not batch.records:
            return

        try:
            async with self.session_factory() as session:
                loaded, row_errors = await RecordLoader(session).load(
                    call.data_source_id, sync_log_id, batch.records
                )
        except Exception as e:
            logger.exception(f"Storing batch {batch_number} for {call.data_source_id} failed")
            outcome.fatal = True
            outcome.error_message = f"storage: {e}"
            return

        outcome.records_synced += loaded
        for row_error in row_errors:
            self._add_detail(outcome, {"batch": batch_number, **row_error})

    def _add_detail(self, outcome: SyncOutcome, detail: Dict[str, Any]) -> None:
        if len(outcome.error_details) < self.settings.SYNC_MAX_ERROR_DETAILS:
            outcome.error_details.append(detail)
