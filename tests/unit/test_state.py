"""
Unit tests for the data source state machine and metrics aggregation
"""

import pytest

from connectors.base import ConnectionTestResult
from core.exceptions import StateTransitionError
from lifecycle import state
from models.base import DataSourceStatus, DataSourceType
from models.data_source import DataSource
from models.sync_log import SyncLog

S = DataSourceStatus


def make_source(status=S.CONFIGURING, **kwargs) -> DataSource:
    defaults = dict(
        id="ds-1",
        name="Orders DB",
        type=DataSourceType.POSTGRESQL,
        status=status,
        total_records=0,
        total_syncs=0,
        failed_syncs=0,
        successful_tests=0,
        avg_response_time=None,
    )
    defaults.update(kwargs)
    return DataSource(**defaults)


def ok(response_time=42.0) -> ConnectionTestResult:
    return ConnectionTestResult(success=True, message="Connection successful", response_time=response_time)


def failed(message="auth: password authentication failed") -> ConnectionTestResult:
    return ConnectionTestResult(success=False, message=message, response_time=12.0, error_type="auth")


class TestTransitions:

    @pytest.mark.parametrize("current,target", [
        (S.CONFIGURING, S.TESTING),
        (S.TESTING, S.CONNECTED),
        (S.TESTING, S.ERROR),
        (S.CONNECTED, S.TESTING),
        (S.ERROR, S.TESTING),
        (S.CONNECTED, S.DISCONNECTED),
        (S.DISCONNECTED, S.TESTING),
    ])
    def test_allowed(self, current, target):
        source = make_source(current)
        state.transition(source, target)
        assert source.status == target

    @pytest.mark.parametrize("current,target", [
        (S.CONFIGURING, S.CONNECTED),
        (S.CONFIGURING, S.ERROR),
        (S.ERROR, S.CONNECTED),
        (S.DISCONNECTED, S.CONNECTED),
        (S.TESTING, S.TESTING),
    ])
    def test_rejected(self, current, target):
        source = make_source(current)
        with pytest.raises(StateTransitionError) as exc_info:
            state.transition(source, target)
        assert exc_info.value.context["current_status"] == current.value
        assert source.status == current


class TestRecordTestResult:

    def test_success_connects_and_clears_error(self):
        source = make_source(S.TESTING, connection_error="old failure")

        state.record_test_result(source, ok())

        assert source.status == S.CONNECTED
        assert source.connection_error is None
        assert source.avg_response_time == 42.0
        assert source.last_connection_test is not None

    def test_failure_sets_error(self):
        source = make_source(S.TESTING)

        state.record_test_result(source, failed())

        assert source.status == S.ERROR
        assert source.connection_error == "auth: password authentication failed"

    def test_avg_response_time_is_mean_of_successful_tests(self):
        source = make_source(S.CONFIGURING)
        for result in [ok(40.0), failed(), ok(50.0), ok(60.0)]:
            state.begin_test(source)
            state.record_test_result(source, result)

        assert source.successful_tests == 3
        assert source.avg_response_time == pytest.approx(50.0)

    def test_same_result_twice_changes_nothing_more(self):
        source = make_source(S.TESTING)
        state.record_test_result(source, failed())
        snapshot = (source.status, source.connection_error, source.avg_response_time)

        state.record_test_result(source, failed())

        assert (source.status, source.connection_error, source.avg_response_time) == snapshot

    def test_disconnect_during_test_wins(self):
        source = make_source(S.TESTING)
        state.disconnect(source)

        state.record_test_result(source, ok())

        assert source.status == S.DISCONNECTED

    def test_result_after_fatal_sync_during_test_still_applies(self):
        source = make_source(S.TESTING, successful_tests=1, avg_response_time=40.0)
        log = SyncLog(success=False, records_sync=0, error_message="auth: token revoked")

        state.record_sync_result(source, log, fatal=True, total_records=0)
        assert source.status == S.TESTING
        assert source.connection_error == "auth: token revoked"

        state.record_test_result(source, ok(60.0))

        assert source.status == S.CONNECTED
        assert source.connection_error is None
        assert source.successful_tests == 2
        assert source.avg_response_time == pytest.approx(50.0)


class TestRecordSyncResult:

    def test_successful_run(self):
        source = make_source(S.CONNECTED)
        log = SyncLog(success=True, records_sync=1000, error_message=None)

        state.record_sync_result(source, log, fatal=False, total_records=1000)

        assert source.total_syncs == 1
        assert source.failed_syncs == 0
        assert source.total_records == 1000
        assert source.last_successful_sync is not None
        assert source.status == S.CONNECTED

    def test_fatal_run_demotes_to_error(self):
        source = make_source(S.CONNECTED)
        log = SyncLog(success=False, records_sync=300, error_message="auth: token revoked")

        state.record_sync_result(source, log, fatal=True, total_records=300)

        assert source.total_syncs == 1
        assert source.failed_syncs == 1
        assert source.status == S.ERROR
        assert source.connection_error == "auth: token revoked"

    def test_non_fatal_failure_keeps_status(self):
        source = make_source(S.CONNECTED)
        log = SyncLog(success=False, records_sync=0, error_message="preflight connection test failed: timeout")

        state.record_sync_result(source, log, fatal=False, total_records=0)

        assert source.failed_syncs == 1
        assert source.status == S.CONNECTED

    def test_fatal_run_does_not_override_disconnect(self):
        source = make_source(S.DISCONNECTED)
        log = SyncLog(success=False, records_sync=0, error_message="auth: token revoked")

        state.record_sync_result(source, log, fatal=True, total_records=0)

        assert source.status == S.DISCONNECTED
        assert source.failed_syncs == 1

    def test_counters_stay_consistent(self):
        source = make_source(S.CONNECTED)
        outcomes = [True, False, True, True, False]
        for success in outcomes:
            state.record_sync_result(source, SyncLog(success=success), fatal=False, total_records=0)

        assert source.total_syncs == len(outcomes)
        assert source.failed_syncs == outcomes.count(False)
        assert source.failed_syncs <= source.total_syncs


class TestResetToConfiguring:

    def test_connected_goes_back_to_configuring(self):
        source = make_source(S.CONNECTED)
        state.reset_to_configuring(source)
        assert source.status == S.CONFIGURING

    def test_disconnected_stays_disconnected(self):
        source = make_source(S.DISCONNECTED)
        state.reset_to_configuring(source)
        assert source.status == S.DISCONNECTED
