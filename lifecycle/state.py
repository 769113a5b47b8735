"""
Data source state machine and metrics aggregator.

Every function here mutates an attached DataSource row in memory only; the
caller owns the transaction and holds the per-id lock while calling them.
"""

from datetime import datetime
from typing import Dict, FrozenSet, Optional

from connectors.base import ConnectionTestResult
from core.exceptions import StateTransitionError
from models.base import DataSourceStatus
from models.data_source import DataSource
from models.sync_log import SyncLog

S = DataSourceStatus

ALLOWED_TRANSITIONS: Dict[DataSourceStatus, FrozenSet[DataSourceStatus]] = {
    S.CONFIGURING: frozenset({S.CONFIGURING, S.TESTING, S.DISCONNECTED}),
    S.TESTING: frozenset({S.CONNECTED, S.ERROR, S.CONFIGURING, S.DISCONNECTED}),
    S.CONNECTED: frozenset({S.TESTING, S.ERROR, S.CONFIGURING, S.DISCONNECTED}),
    S.ERROR: frozenset({S.TESTING, S.CONFIGURING, S.DISCONNECTED}),
    # Terminal until a new test is requested
    S.DISCONNECTED: frozenset({S.TESTING, S.DISCONNECTED}),
}


def can_transition(current: DataSourceStatus, target: DataSourceStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def transition(source: DataSource, target: DataSourceStatus) -> None:
    """
    Move a data source to ``target``.

    Raises:
        StateTransitionError: if the lifecycle does not allow the move
    """
    current = DataSourceStatus(source.status)
    if not can_transition(current, target):
        raise StateTransitionError(
            f"Cannot move data source from {current.value} to {target.value}",
            context={
                "data_source_id": source.id,
                "current_status": current.value,
                "requested_status": target.value,
            }
        )
    source.status = target


def begin_test(source: DataSource) -> None:
    transition(source, S.TESTING)


def record_test_result(
    source: DataSource,
    result: ConnectionTestResult,
    tested_at: Optional[datetime] = None
) -> None:
    """Apply a finished test: status, error text and the latency running mean"""
    source.last_connection_test = tested_at or datetime.utcnow()

    current = DataSourceStatus(source.status)
    # A disconnect or config change that landed mid-test wins
    if current in (S.DISCONNECTED, S.CONFIGURING):
        return

    target = S.CONNECTED if result.success else S.ERROR
    if current == S.TESTING:
        transition(source, target)
    else:
        # Repeated result for a test that already finished
        source.status = target

    if result.success:
        source.connection_error = None
        if result.response_time is not None:
            source.successful_tests = (source.successful_tests or 0) + 1
            previous = source.avg_response_time or 0.0
            source.avg_response_time = previous + (result.response_time - previous) / source.successful_tests
    else:
        source.connection_error = result.message


def record_sync_result(
    source: DataSource,
    log: SyncLog,
    fatal: bool,
    total_records: int,
    finished_at: Optional[datetime] = None
) -> None:
    """Fold one finished sync run into the data source counters"""
    source.total_syncs = (source.total_syncs or 0) + 1
    if not log.success:
        source.failed_syncs = (source.failed_syncs or 0) + 1
    else:
        source.last_successful_sync = finished_at or datetime.utcnow()
    source.total_records = total_records

    if fatal:
        mark_sync_fatal(source, log.error_message)


def mark_sync_fatal(source: DataSource, error_message: Optional[str]) -> None:
    """
    Demote a CONNECTED source to ERROR.

    While a test is in flight only the error text is recorded; the test
    result decides the status. User actions (disconnect, config change) win.
    """
    current = DataSourceStatus(source.status)
    if current == S.CONNECTED:
        transition(source, S.ERROR)
        source.connection_error = error_message
    elif current == S.TESTING:
        source.connection_error = error_message


def reset_to_configuring(source: DataSource) -> None:
    """Connection settings changed; previous test results no longer apply"""
    if DataSourceStatus(source.status) == S.DISCONNECTED:
        return
    transition(source, S.CONFIGURING)
    source.connection_error = None


def disconnect(source: DataSource) -> None:
    transition(source, S.DISCONNECTED)
