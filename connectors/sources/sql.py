"""
PostgreSQL and MySQL connectors over SQLAlchemy's async engine.

Supports:
- Handshake with server info (version, database, user, timezone)
- Schema discovery from catalog tables, row counts from statistics only
- Offset-paged batch pulls, one table at a time
"""

import logging
import ssl as ssl_lib
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, ClassVar, Dict, List, Optional, Tuple

from sqlalchemy import bindparam, text
from sqlalchemy.engine import URL
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

from connectors.base import (
    ColumnInfo,
    Connector,
    Cursor,
    LatencyProbe,
    SchemaLimits,
    SchemaResult,
    SourceRecord,
    SyncBatch,
    TableInfo,
    apply_schema_limits,
    natural_key,
)
from connectors.config import MySQLConfig, PostgresConfig, SQLConnectionConfig
from core.exceptions import (
    AuthenticationError,
    ConnectorException,
    HostNotFoundError,
    NetworkError,
    PermissionDeniedError,
    RefusedConnectionError,
    SourceNotFoundError,
)
from models.base import DataSourceType

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 10


class SQLConnector(Connector):
    """Shared handshake, introspection and paging for SQL databases"""

    supports_introspection = True
    driver: ClassVar[str]

    # ------------------------------------------------------------------
    # Dialect hooks
    # ------------------------------------------------------------------

    def connect_args(self, config: SQLConnectionConfig) -> Dict[str, Any]:
        raise NotImplementedError

    def schema_of(self, config: SQLConnectionConfig) -> str:
        return config.database

    async def server_info(self, conn: AsyncConnection, config: SQLConnectionConfig) -> Dict[str, Any]:
        raise NotImplementedError

    def table_stats_query(self) -> str:
        raise NotImplementedError

    def columns_query(self) -> str:
        raise NotImplementedError

    def classify_sql_error(self, code: Optional[str], exc: BaseException) -> Optional[ConnectorException]:
        return None

    # ------------------------------------------------------------------

    def build_url(self, config: SQLConnectionConfig) -> URL:
        return URL.create(
            self.driver,
            username=config.username,
            password=config.password.get_secret_value() or None,
            host=config.host,
            port=config.port,
            database=config.database,
        )

    @asynccontextmanager
    async def _engine(self, config: SQLConnectionConfig) -> AsyncIterator[AsyncEngine]:
        engine = create_async_engine(
            self.build_url(config),
            poolclass=NullPool,
            connect_args=self.connect_args(config),
        )
        try:
            yield engine
        finally:
            await engine.dispose()

    async def test_connection(self, config: SQLConnectionConfig, probe: LatencyProbe) -> Dict[str, Any]:
        try:
            async with self._engine(config) as engine:
                async with engine.connect() as conn:
                    await conn.execute(text("SELECT 1"))
                    probe.mark_round_trip()
                    return await self.server_info(conn, config)
        except Exception as e:
            raise self.classify_error(e)

    async def _scalar(self, conn: AsyncConnection, sql: str) -> Optional[Any]:
        """Best-effort single value; a missing privilege is not an error"""
        try:
            result = await conn.execute(text(sql))
            return result.scalar()
        except Exception as e:
            logger.debug(f"Server info query failed ({sql}): {e}")
            return None

    async def introspect_schema(self, config: SQLConnectionConfig, limits: SchemaLimits) -> SchemaResult:
        schema = self.schema_of(config)
        try:
            async with self._engine(config) as engine:
                async with engine.connect() as conn:
                    tables = await self._list_tables(conn, schema)
                    result = apply_schema_limits(tables, limits)
                    if not result.tables:
                        return result

                    names = [t.name for t in result.tables]
                    stmt = text(self.columns_query()).bindparams(bindparam("names", expanding=True))
                    rows = await conn.execute(stmt, {"schema": schema, "names": names})

                    columns: Dict[str, List[ColumnInfo]] = {}
                    for table_name, column_name, data_type in rows:
                        columns.setdefault(table_name, []).append(ColumnInfo(name=column_name, type=str(data_type)))

                    for table in result.tables:
                        table.columns = columns.get(table.name, [])
                    capped = apply_schema_limits(result.tables, limits)
                    capped.truncated = capped.truncated or result.truncated
                    return capped
        except Exception as e:
            raise self.classify_error(e)

    async def _list_tables(self, conn: AsyncConnection, schema: str) -> List[TableInfo]:
        rows = await conn.execute(text(self.table_stats_query()), {"schema": schema})
        tables = []
        for name, estimate in rows:
            # Negative or NULL estimates mean the table was never analyzed
            row_count = int(estimate) if estimate is not None and estimate >= 0 else None
            tables.append(TableInfo(name=name, row_count=row_count))
        return tables

    async def sync(self, config: SQLConnectionConfig, cursor: Optional[Cursor], limit: int) -> SyncBatch:
        cursor = dict(cursor or {})
        try:
            async with self._engine(config) as engine:
                async with engine.connect() as conn:
                    if not cursor.get("tables"):
                        cursor["tables"] = config.tables or sorted(
                            t.name for t in await self._list_tables(conn, self.schema_of(config))
                        )
                        cursor.setdefault("table_index", 0)
                        cursor.setdefault("offset", 0)

                    tables = cursor["tables"]
                    index = int(cursor.get("table_index", 0))
                    if index >= len(tables):
                        return SyncBatch(records=[], next_cursor=cursor, has_more=False)

                    table = tables[index]
                    offset = int(cursor.get("offset", 0))
                    rows = await conn.execute(
                        text(f"SELECT * FROM {self._qualified(engine, config, table)} ORDER BY 1 LIMIT :limit OFFSET :offset"),
                        {"limit": limit, "offset": offset},
                    )
                    mappings = [dict(row._mapping) for row in rows]
        except Exception as e:
            raise self.classify_error(e)

        id_field = config.option("id_field")
        records = [
            SourceRecord(
                external_id=f"{table}:{natural_key(data, offset + i, id_field)}",
                data=data,
            )
            for i, data in enumerate(mappings)
        ]

        next_cursor = dict(cursor)
        if len(mappings) < limit:
            next_cursor["table_index"] = index + 1
            next_cursor["offset"] = 0
        else:
            next_cursor["offset"] = offset + len(mappings)

        has_more = next_cursor["table_index"] < len(tables)
        return SyncBatch(records=records, next_cursor=next_cursor, has_more=has_more)

    def _qualified(self, engine: AsyncEngine, config: SQLConnectionConfig, table: str) -> str:
        preparer = engine.dialect.identifier_preparer
        return f"{preparer.quote_schema(self.schema_of(config))}.{preparer.quote(table)}"

    def classify_error(self, exc: BaseException) -> ConnectorException:
        if isinstance(exc, ConnectorException):
            return exc

        orig = getattr(exc, "orig", None) or exc
        code, cause = _driver_code(orig)
        classified = self.classify_sql_error(code, orig)
        if classified is not None:
            return classified

        if isinstance(cause, OSError):
            return super().classify_error(cause)
        return super().classify_error(orig)


def _driver_code(orig: BaseException) -> Tuple[Optional[str], Optional[BaseException]]:
    """Extract SQLSTATE / MySQL error number from a wrapped driver exception"""
    cause = orig.__cause__ or orig
    for candidate in (orig, cause):
        code = getattr(candidate, "sqlstate", None) or getattr(candidate, "pgcode", None)
        if code:
            return str(code), cause
    args = getattr(cause, "args", None) or getattr(orig, "args", ())
    if args and isinstance(args[0], int):
        return str(args[0]), cause
    return None, cause


def _first_line(exc: BaseException) -> str:
    text_ = str(exc).strip().splitlines()
    return text_[0] if text_ else type(exc).__name__


class PostgreSQLConnector(SQLConnector):
    source_type = DataSourceType.POSTGRESQL
    driver = "postgresql+asyncpg"

    def connect_args(self, config: PostgresConfig) -> Dict[str, Any]:
        args: Dict[str, Any] = {"timeout": config.option("connect_timeout", DEFAULT_CONNECT_TIMEOUT)}
        if config.ssl:
            args["ssl"] = "require"
        return args

    def schema_of(self, config: PostgresConfig) -> str:
        return config.schema_name

    async def server_info(self, conn: AsyncConnection, config: PostgresConfig) -> Dict[str, Any]:
        info = {
            "version": await self._scalar(conn, "SELECT version()"),
            "database": await self._scalar(conn, "SELECT current_database()"),
            "user": await self._scalar(conn, "SELECT current_user"),
            "timezone": await self._scalar(conn, "SHOW timezone"),
        }
        return {k: v for k, v in info.items() if v is not None}

    def table_stats_query(self) -> str:
        return (
            "SELECT c.relname, c.reltuples::bigint "
            "FROM pg_catalog.pg_class c "
            "JOIN pg_catalog.pg_namespace n ON n.oid = c.relnamespace "
            "WHERE n.nspname = :schema AND c.relkind IN ('r', 'p')"
        )

    def columns_query(self) -> str:
        return (
            "SELECT table_name, column_name, data_type "
            "FROM information_schema.columns "
            "WHERE table_schema = :schema AND table_name IN :names "
            "ORDER BY table_name, ordinal_position"
        )

    def classify_sql_error(self, code: Optional[str], exc: BaseException) -> Optional[ConnectorException]:
        detail = _first_line(exc)
        if code in ("28P01", "28000"):
            return AuthenticationError(detail, context={"sqlstate": code}, original_exception=exc)
        if code == "42501":
            return PermissionDeniedError(detail, context={"sqlstate": code}, original_exception=exc)
        if code == "3D000":
            return SourceNotFoundError(detail, context={"sqlstate": code}, original_exception=exc)
        if code in ("57P03", "53300", "08006", "08001"):
            return NetworkError(detail, context={"sqlstate": code}, original_exception=exc, round_trip=True)
        return None


class MySQLConnector(SQLConnector):
    source_type = DataSourceType.MYSQL
    driver = "mysql+aiomysql"

    def connect_args(self, config: MySQLConfig) -> Dict[str, Any]:
        args: Dict[str, Any] = {"connect_timeout": config.option("connect_timeout", DEFAULT_CONNECT_TIMEOUT)}
        if config.ssl:
            args["ssl"] = ssl_lib.create_default_context()
        return args

    async def server_info(self, conn: AsyncConnection, config: MySQLConfig) -> Dict[str, Any]:
        user = await self._scalar(conn, "SELECT CURRENT_USER()")
        info = {
            "version": await self._scalar(conn, "SELECT VERSION()"),
            "database": await self._scalar(conn, "SELECT DATABASE()"),
            "user": user.split("@")[0] if isinstance(user, str) else user,
            "timezone": await self._scalar(conn, "SELECT @@session.time_zone"),
        }
        return {k: v for k, v in info.items() if v is not None}

    def table_stats_query(self) -> str:
        return (
            "SELECT TABLE_NAME, TABLE_ROWS "
            "FROM information_schema.TABLES "
            "WHERE TABLE_SCHEMA = :schema AND TABLE_TYPE = 'BASE TABLE'"
        )

    def columns_query(self) -> str:
        return (
            "SELECT TABLE_NAME, COLUMN_NAME, COLUMN_TYPE "
            "FROM information_schema.COLUMNS "
            "WHERE TABLE_SCHEMA = :schema AND TABLE_NAME IN :names "
            "ORDER BY TABLE_NAME, ORDINAL_POSITION"
        )

    def _qualified(self, engine: AsyncEngine, config: MySQLConfig, table: str) -> str:
        return engine.dialect.identifier_preparer.quote(table)

    def classify_sql_error(self, code: Optional[str], exc: BaseException) -> Optional[ConnectorException]:
        detail = _first_line(exc)
        context = {"mysql_errno": code}
        if code == "1045":
            return AuthenticationError(detail, context=context, original_exception=exc)
        if code in ("1044", "1142"):
            return PermissionDeniedError(detail, context=context, original_exception=exc)
        if code == "1049":
            return SourceNotFoundError(detail, context=context, original_exception=exc)
        if code == "2003":
            return RefusedConnectionError(detail, context=context, original_exception=exc)
        if code == "2005":
            return HostNotFoundError(detail, context=context, original_exception=exc)
        if code in ("2006", "2013"):
            return NetworkError(detail, context=context, original_exception=exc)
        return None
