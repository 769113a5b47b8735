"""
Static mapping from data source type to connector.

The mapping is checked for exhaustiveness at import time, so adding a
DataSourceType without a connector fails at startup rather than at request time.
"""

from typing import Callable, Dict

from connectors.base import Connector
from connectors.sources.csv_file import CSVFileConnector
from connectors.sources.google_sheets import GoogleSheetsConnector
from connectors.sources.http_api import GraphQLConnector, RestApiConnector
from connectors.sources.mongodb import MongoDBConnector
from connectors.sources.s3 import S3Connector
from connectors.sources.sql import MySQLConnector, PostgreSQLConnector
from models.base import DataSourceType

ConnectorResolver = Callable[[DataSourceType], Connector]

CONNECTORS: Dict[DataSourceType, Connector] = {
    DataSourceType.POSTGRESQL: PostgreSQLConnector(),
    DataSourceType.MYSQL: MySQLConnector(),
    DataSourceType.MONGODB: MongoDBConnector(),
    DataSourceType.REST_API: RestApiConnector(),
    DataSourceType.GRAPHQL: GraphQLConnector(),
    DataSourceType.S3: S3Connector(),
    DataSourceType.GOOGLE_SHEETS: GoogleSheetsConnector(),
    DataSourceType.CSV_FILE: CSVFileConnector(),
}

_missing = set(DataSourceType) - set(CONNECTORS)
if _missing:
    raise RuntimeError(f"No connector registered for: {sorted(t.value for t in _missing)}")


def get_connector(source_type: DataSourceType) -> Connector:
    """Connector for a data source type"""
    return CONNECTORS[DataSourceType(source_type)]
