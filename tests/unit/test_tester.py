"""
Unit tests for the connection tester and schema introspector
"""

import pytest

from connectors.base import ColumnInfo, TableInfo, Unsupported
from connectors.config import build_connection_config
from connectors.sources.csv_file import CSVFileConnector
from core.exceptions import AuthenticationError, RefusedConnectionError, ValidationError
from lifecycle.introspector import SchemaIntrospector
from lifecycle.tester import ConnectionTester, PreparedCall
from models.base import DataSourceStatus, DataSourceType
from models.data_source import DataSource
from tests.fakes import FakeConnector


def pg_config(**options):
    return build_connection_config(
        DataSourceType.POSTGRESQL,
        {"host": "db", "port": 5432, "database": "orders", "username": "reader"},
        {"password": "pw"},
        options,
    )


def make_call(connector, timeout=2.0) -> PreparedCall:
    return PreparedCall(
        data_source_id="ds-1",
        source_type=connector.source_type,
        connector=connector,
        config=pg_config(),
        timeout=timeout,
    )


@pytest.fixture
def tester(vault, test_settings):
    return ConnectionTester(vault, settings=test_settings)


class TestConnectionTester:

    @pytest.mark.asyncio
    async def test_success(self, tester):
        connector = FakeConnector()

        result = await tester.execute(make_call(connector))

        assert result.success is True
        assert result.response_time is not None
        assert result.response_time >= 0
        assert result.server_info["version"].startswith("PostgreSQL")
        assert result.error_type is None

    @pytest.mark.asyncio
    async def test_timeout(self, tester):
        connector = FakeConnector()
        connector.test_behaviour = "hang"

        result = await tester.execute(make_call(connector, timeout=0.05))

        assert result.success is False
        assert result.message == "timeout"
        assert result.error_type == "timeout"

    @pytest.mark.asyncio
    async def test_auth_failure_keeps_round_trip_time(self, tester):
        connector = FakeConnector()
        connector.test_behaviour = AuthenticationError('password authentication failed for user "reader"')

        result = await tester.execute(make_call(connector))

        assert result.success is False
        assert result.message.startswith("auth:")
        assert result.error_type == "auth"
        assert result.response_time is not None
        assert result.server_info == {}

    @pytest.mark.asyncio
    async def test_refused_has_no_response_time(self, tester):
        connector = FakeConnector()
        connector.test_behaviour = RefusedConnectionError("[Errno 111] Connection refused")

        result = await tester.execute(make_call(connector))

        assert result.success is False
        assert result.error_type == "refused"
        assert result.response_time is None

    @pytest.mark.asyncio
    async def test_raw_driver_exception_is_classified(self, tester):
        connector = FakeConnector()
        connector.test_behaviour = ConnectionRefusedError(111, "Connection refused")

        result = await tester.execute(make_call(connector))

        assert result.message.startswith("refused:")

    def test_timeout_override_must_be_positive(self, tester):
        with pytest.raises(ValidationError):
            tester.timeout_for(DataSourceType.POSTGRESQL, pg_config(), 0)

    def test_timeout_resolution_order(self, tester):
        assert tester.timeout_for(DataSourceType.POSTGRESQL, pg_config(), 5) == 5.0
        assert tester.timeout_for(DataSourceType.POSTGRESQL, pg_config(timeout=7)) == 7.0
        assert tester.timeout_for(DataSourceType.POSTGRESQL, pg_config()) == 2.0
        assert tester.timeout_for(DataSourceType.S3, pg_config()) == 15.0

    def test_prepare_decrypts_credentials(self, tester, vault):
        source = DataSource(
            id="ds-1",
            name="Orders DB",
            type=DataSourceType.POSTGRESQL,
            status=DataSourceStatus.CONFIGURING,
            host="db",
            port=5432,
            database="orders",
            username="reader",
            ssl=False,
            encrypted_credentials=vault.encrypt({"password": "s3cret"}),
            configuration={"schema": "sales"},
        )

        call = tester.prepare(source)

        assert call.config.password.get_secret_value() == "s3cret"
        assert call.config.schema_name == "sales"
        assert call.connector.source_type == DataSourceType.POSTGRESQL

    def test_prepare_rejects_incomplete_config(self, tester):
        source = DataSource(
            id="ds-1",
            name="Half done",
            type=DataSourceType.POSTGRESQL,
            status=DataSourceStatus.CONFIGURING,
            host="db",
            ssl=False,
        )

        with pytest.raises(ValidationError):
            tester.prepare(source)


class TestSchemaIntrospector:

    @pytest.mark.asyncio
    async def test_unsupported_type(self, test_settings, tmp_path):
        connector = CSVFileConnector(upload_dir=str(tmp_path))
        call = PreparedCall(
            data_source_id="ds-1",
            source_type=DataSourceType.CSV_FILE,
            connector=connector,
            config=build_connection_config(DataSourceType.CSV_FILE, {"uploaded_file_ref": "a.csv"}, {}),
            timeout=1.0,
        )

        result = await SchemaIntrospector(test_settings).introspect(call)

        assert isinstance(result, Unsupported)
        assert result.source_type == DataSourceType.CSV_FILE

    @pytest.mark.asyncio
    async def test_large_schema_is_capped(self, test_settings):
        connector = FakeConnector()
        connector.tables = [
            TableInfo(
                name=f"table_{i:03d}",
                columns=[ColumnInfo(name=f"col_{c}", type="integer") for c in range(250)],
                row_count=i,
            )
            for i in range(150)
        ]

        result = await SchemaIntrospector(test_settings).introspect(make_call(connector))

        assert result.truncated is True
        assert len(result.tables) == 100
        assert all(len(t.columns) <= 200 for t in result.tables)
        # Largest tables first
        assert result.tables[0].name == "table_149"

    @pytest.mark.asyncio
    async def test_failure_degrades_to_empty_result(self, test_settings):
        connector = FakeConnector()

        async def failing(config, limits):
            raise PermissionError("catalog not readable")

        connector.introspect_schema = failing

        result = await SchemaIntrospector(test_settings).introspect(make_call(connector))

        assert result.tables == []
        assert result.truncated is True
        assert "catalog not readable" in result.error
