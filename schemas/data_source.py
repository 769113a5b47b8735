"""
Pydantic schemas for data source requests and responses.

JSON uses camelCase keys; request bodies accept camelCase or snake_case.
Secret fields are write-only: they are accepted on create/update and never
serialized back.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator
from pydantic.alias_generators import to_camel

from connectors.config import CONNECTION_FIELDS, SECRET_FIELDS
from models.base import DataSourceStatus, DataSourceType


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class ConnectionFieldsMixin(CamelModel):
    """Per-type connection fields; completeness is checked at test time"""

    host: Optional[str] = Field(None, max_length=255)
    port: Optional[int] = Field(None, ge=1, le=65535)
    database: Optional[str] = Field(None, max_length=255)
    username: Optional[str] = Field(None, max_length=255)
    ssl: Optional[bool] = None
    endpoint: Optional[str] = Field(None, max_length=2048)
    bucket: Optional[str] = Field(None, max_length=255)
    region: Optional[str] = Field(None, max_length=64)
    sheet_id: Optional[str] = Field(None, max_length=255)
    uploaded_file_ref: Optional[str] = Field(None, max_length=1024)

    # Write-only secrets
    password: Optional[SecretStr] = None
    api_key: Optional[SecretStr] = None
    access_key: Optional[SecretStr] = None
    secret_key: Optional[SecretStr] = None
    service_account_json: Optional[SecretStr] = None

    configuration: Optional[Dict[str, Any]] = None

    @field_validator("endpoint")
    @classmethod
    def validate_endpoint(cls, v):
        if v and not v.startswith(("http://", "https://")):
            raise ValueError("endpoint must be an http(s) URL")
        return v

    def connection_values(self, only_set: bool = False) -> Dict[str, Any]:
        names = [n for n in CONNECTION_FIELDS if not only_set or n in self.model_fields_set]
        return {name: getattr(self, name) for name in names}

    def secret_values(self, only_set: bool = False) -> Dict[str, Optional[str]]:
        values = {}
        for name in SECRET_FIELDS:
            if only_set and name not in self.model_fields_set:
                continue
            secret = getattr(self, name)
            values[name] = secret.get_secret_value() if secret is not None else None
        return values


class DataSourceCreate(ConnectionFieldsMixin):
    """Request body for POST /api/data-sources"""

    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    type: DataSourceType

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "name": "Orders DB",
                "type": "POSTGRESQL",
                "host": "db.internal",
                "port": 5432,
                "database": "orders",
                "username": "reader",
                "password": "********",
                "ssl": True,
                "configuration": {"schema": "public"},
            }
        }
    )


class DataSourceUpdate(ConnectionFieldsMixin):
    """
    Request body for PATCH /api/data-sources/{id}.

    Omitted fields are unchanged; an explicit null clears a field (or
    removes a stored secret).
    """

    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None

    def changes_connection(self) -> bool:
        touched = set(CONNECTION_FIELDS) | set(SECRET_FIELDS) | {"configuration"}
        return bool(self.model_fields_set & touched)


class SyncLogResponse(CamelModel):
    id: str
    data_source_id: str
    success: bool
    records_sync: int
    duration: float
    error_message: Optional[str] = None
    batches_total: int = 0
    batches_failed: int = 0
    error_details: Optional[List[Dict[str, Any]]] = None
    created_at: datetime


class DataSourceResponse(CamelModel):
    id: str
    name: str
    description: Optional[str] = None
    type: DataSourceType
    status: DataSourceStatus

    host: Optional[str] = None
    port: Optional[int] = None
    database: Optional[str] = None
    username: Optional[str] = None
    ssl: bool = False
    endpoint: Optional[str] = None
    bucket: Optional[str] = None
    region: Optional[str] = None
    sheet_id: Optional[str] = None
    uploaded_file_ref: Optional[str] = None
    configuration: Dict[str, Any] = Field(default_factory=dict)

    has_credentials: bool = False

    connection_error: Optional[str] = None
    last_connection_test: Optional[datetime] = None
    last_successful_sync: Optional[datetime] = None
    total_records: int = 0
    total_syncs: int = 0
    failed_syncs: int = 0
    avg_response_time: Optional[float] = None

    created_at: datetime
    updated_at: datetime

    @field_validator("configuration", mode="before")
    @classmethod
    def default_configuration(cls, v):
        return v or {}

    @classmethod
    def from_model(cls, source) -> "DataSourceResponse":
        response = cls.model_validate(source)
        response.has_credentials = bool(source.encrypted_credentials)
        return response


class DataSourceDetail(DataSourceResponse):
    sync_logs: List[SyncLogResponse] = Field(default_factory=list)

    @classmethod
    def from_model(cls, source, sync_logs=()) -> "DataSourceDetail":
        base = DataSourceResponse.from_model(source)
        return cls(
            **base.model_dump(),
            sync_logs=[SyncLogResponse.model_validate(log) for log in sync_logs],
        )
