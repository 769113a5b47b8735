"""
MongoDB connector over motor
"""

import logging
from typing import Any, Dict, List, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import (
    ConfigurationError,
    ConnectionFailure,
    NetworkTimeout,
    OperationFailure,
    ServerSelectionTimeoutError,
)

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
from connectors.config import MongoConfig
from core.exceptions import (
    AuthenticationError,
    ConnectionTimeoutError,
    ConnectorException,
    HostNotFoundError,
    InvalidConfigurationError,
    NetworkError,
    PermissionDeniedError,
    RefusedConnectionError,
)
from models.base import DataSourceType

logger = logging.getLogger(__name__)

# Server error codes
AUTH_FAILED = 18
UNAUTHORIZED = 13

DEFAULT_SERVER_SELECTION_MS = 10000


def bson_type(value: Any) -> str:
    """Display name of a BSON value's type"""
    if value is None:
        return "null"
    if isinstance(value, ObjectId):
        return "objectId"
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, int):
        return "int"
    if isinstance(value, float):
        return "double"
    if isinstance(value, str):
        return "string"
    if isinstance(value, dict):
        return "object"
    if isinstance(value, list):
        return "array"
    return type(value).__name__


class MongoDBConnector(Connector):
    """
    Supports:
    - ping / buildInfo handshake
    - Collection listing with estimated document counts
    - Field types sampled from one document per collection
    - _id ordered batch pulls
    """

    source_type = DataSourceType.MONGODB
    supports_introspection = True

    def _client(self, config: MongoConfig) -> AsyncIOMotorClient:
        kwargs: Dict[str, Any] = {
            "host": config.host,
            "port": config.port,
            "tls": config.ssl,
            "serverSelectionTimeoutMS": config.option("server_selection_timeout_ms", DEFAULT_SERVER_SELECTION_MS),
        }
        if config.username:
            kwargs["username"] = config.username
            kwargs["password"] = config.password.get_secret_value()
            kwargs["authSource"] = config.auth_source
        return AsyncIOMotorClient(**kwargs)

    def classify_error(self, exc: BaseException) -> ConnectorException:
        if isinstance(exc, ConnectorException):
            return exc
        detail = str(exc).split(", full error:")[0]
        if isinstance(exc, OperationFailure):
            if exc.code == AUTH_FAILED:
                return AuthenticationError(detail, context={"code": exc.code}, original_exception=exc)
            if exc.code == UNAUTHORIZED:
                return PermissionDeniedError(detail, context={"code": exc.code}, original_exception=exc)
            return NetworkError(detail, context={"code": exc.code}, original_exception=exc, round_trip=True)
        if isinstance(exc, ConfigurationError):
            return InvalidConfigurationError(detail, original_exception=exc)
        if isinstance(exc, (NetworkTimeout, ServerSelectionTimeoutError)):
            # Server selection hides refused / DNS failures behind a timeout
            lowered = detail.lower()
            if "refused" in lowered:
                return RefusedConnectionError(detail, original_exception=exc)
            if "name or service not known" in lowered or "nodename nor servname" in lowered:
                return HostNotFoundError(detail, original_exception=exc)
            return ConnectionTimeoutError("timeout", original_exception=exc)
        if isinstance(exc, ConnectionFailure):
            return NetworkError(detail, original_exception=exc)
        return super().classify_error(exc)

    async def test_connection(self, config: MongoConfig, probe: LatencyProbe) -> Dict[str, Any]:
        client = self._client(config)
        try:
            db = client[config.database]
            await db.command("ping")
            probe.mark_round_trip()

            info: Dict[str, Any] = {"database": config.database}
            try:
                build = await db.command("buildInfo")
                info["version"] = build.get("version")
            except OperationFailure as e:
                logger.debug(f"buildInfo unavailable: {e}")
            try:
                status = await db.command("serverStatus")
                info["host"] = status.get("host")
                info["uptime"] = status.get("uptime")
            except OperationFailure as e:
                logger.debug(f"serverStatus unavailable: {e}")
            return {k: v for k, v in info.items() if v is not None}
        except Exception as e:
            raise self.classify_error(e)
        finally:
            client.close()

    async def _collection_names(self, db, config: MongoConfig) -> List[str]:
        if config.collections:
            return config.collections
        names = await db.list_collection_names(filter={"type": "collection"})
        return sorted(n for n in names if not n.startswith("system."))

    async def introspect_schema(self, config: MongoConfig, limits: SchemaLimits) -> SchemaResult:
        client = self._client(config)
        try:
            db = client[config.database]
            tables = []
            for name in await self._collection_names(db, config):
                tables.append(TableInfo(name=name, row_count=await db[name].estimated_document_count()))

            result = apply_schema_limits(tables, limits)
            for table in result.tables:
                sample = await db[table.name].find_one()
                if sample:
                    table.columns = [ColumnInfo(name=k, type=bson_type(v)) for k, v in sample.items()]

            capped = apply_schema_limits(result.tables, limits)
            capped.truncated = capped.truncated or result.truncated
            return capped
        except Exception as e:
            raise self.classify_error(e)
        finally:
            client.close()

    async def sync(self, config: MongoConfig, cursor: Optional[Cursor], limit: int) -> SyncBatch:
        cursor = dict(cursor or {})
        client = self._client(config)
        try:
            db = client[config.database]
            if not cursor.get("collections"):
                cursor["collections"] = await self._collection_names(db, config)
                cursor.setdefault("index", 0)
                cursor.setdefault("offset", 0)

            collections = cursor["collections"]
            index = int(cursor.get("index", 0))
            if index >= len(collections):
                return SyncBatch(records=[], next_cursor=cursor, has_more=False)

            name = collections[index]
            offset = int(cursor.get("offset", 0))
            docs = await db[name].find().sort("_id", 1).skip(offset).limit(limit).to_list(length=limit)
        except Exception as e:
            raise self.classify_error(e)
        finally:
            client.close()

        id_field = config.option("id_field")
        records = [
            SourceRecord(external_id=f"{name}:{natural_key(doc, offset + i, id_field)}", data=doc)
            for i, doc in enumerate(docs)
        ]

        next_cursor = dict(cursor)
        if len(docs) < limit:
            next_cursor["index"] = index + 1
            next_cursor["offset"] = 0
        else:
            next_cursor["offset"] = offset + len(docs)

        return SyncBatch(records=records, next_cursor=next_cursor, has_more=next_cursor["index"] < len(collections))
