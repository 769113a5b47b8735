"""
Pydantic schemas for request validation and response serialization.

Schemas:
    data_source: Data source create/update requests, responses, sync logs
    results: Connection test, schema, sync and health responses

All schemas serialize with camelCase keys and accept camelCase or
snake_case input.

Usage:
    from schemas.data_source import DataSourceCreate, DataSourceResponse
    from schemas.results import TestResultResponse, schema_response
"""

__all__ = [
    "DataSourceCreate",
    "DataSourceUpdate",
    "DataSourceResponse",
    "DataSourceDetail",
    "SyncLogResponse",
    "TestResultResponse",
    "SchemaResponse",
    "UnsupportedResponse",
    "HealthResponse",
]
