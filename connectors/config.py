"""
Typed, per-protocol connection configuration and credential envelope.

A config object is assembled per call from the stored (non-secret) columns,
the decrypted credential envelope and the free-form ``configuration`` extras.
It is validated here, before any network call, and discarded when the call
returns.
"""

import json
from pathlib import Path
from typing import Any, ClassVar, Dict, List, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator
from pydantic import ValidationError as PydanticValidationError

from core.exceptions import ValidationError
from models.base import DataSourceType

# Stored encrypted, never echoed back
SECRET_FIELDS = ("password", "api_key", "access_key", "secret_key", "service_account_json")

# Stored as plain columns on DataSource
CONNECTION_FIELDS = (
    "host", "port", "database", "username", "ssl",
    "endpoint", "bucket", "region", "sheet_id", "uploaded_file_ref",
)


class BaseConnectionConfig(BaseModel):
    """Fields shared by every connection type"""

    model_config = ConfigDict(extra="ignore", frozen=True)

    source_type: ClassVar[DataSourceType]

    options: Dict[str, Any] = Field(default_factory=dict)

    @property
    def timeout_override(self) -> Optional[float]:
        value = self.options.get("timeout")
        return float(value) if value else None

    def option(self, key: str, default: Any = None) -> Any:
        value = self.options.get(key)
        return default if value in (None, "") else value


class SQLConnectionConfig(BaseConnectionConfig):
    host: str = Field(..., min_length=1)
    port: int = Field(..., ge=1, le=65535)
    database: str = Field(..., min_length=1)
    username: str = Field(..., min_length=1)
    password: SecretStr = SecretStr("")
    ssl: bool = False

    @property
    def tables(self) -> Optional[List[str]]:
        tables = self.option("tables")
        return list(tables) if tables else None


class PostgresConfig(SQLConnectionConfig):
    source_type: ClassVar[DataSourceType] = DataSourceType.POSTGRESQL
    default_port: ClassVar[int] = 5432

    @property
    def schema_name(self) -> str:
        return self.option("schema", "public")


class MySQLConfig(SQLConnectionConfig):
    source_type: ClassVar[DataSourceType] = DataSourceType.MYSQL
    default_port: ClassVar[int] = 3306


class MongoConfig(BaseConnectionConfig):
    source_type: ClassVar[DataSourceType] = DataSourceType.MONGODB
    default_port: ClassVar[int] = 27017

    host: str = Field(..., min_length=1)
    port: int = Field(27017, ge=1, le=65535)
    database: str = Field(..., min_length=1)
    username: Optional[str] = None
    password: SecretStr = SecretStr("")
    ssl: bool = False

    @property
    def auth_source(self) -> str:
        return self.option("auth_source", "admin")

    @property
    def collections(self) -> Optional[List[str]]:
        collections = self.option("collections")
        return list(collections) if collections else None


class RestApiConfig(BaseConnectionConfig):
    source_type: ClassVar[DataSourceType] = DataSourceType.REST_API

    endpoint: str = Field(..., min_length=1)
    api_key: Optional[SecretStr] = None

    @field_validator("endpoint")
    @classmethod
    def validate_endpoint(cls, v):
        if not v.startswith(("http://", "https://")):
            raise ValueError("endpoint must be an http(s) URL")
        return v

    def auth_headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key is not None and self.api_key.get_secret_value():
            header_name = self.option("auth_header", "Authorization")
            scheme = self.option("auth_scheme", "Bearer")
            token = self.api_key.get_secret_value()
            headers[header_name] = f"{scheme} {token}" if scheme else token
        return headers


class GraphQLConfig(RestApiConfig):
    source_type: ClassVar[DataSourceType] = DataSourceType.GRAPHQL


class S3Config(BaseConnectionConfig):
    source_type: ClassVar[DataSourceType] = DataSourceType.S3

    bucket: str = Field(..., min_length=3, max_length=63)
    region: str = Field(..., min_length=1)
    access_key: SecretStr
    secret_key: SecretStr

    @property
    def prefix(self) -> str:
        return self.option("prefix", "")

    @property
    def endpoint_url(self) -> Optional[str]:
        return self.option("endpoint_url")


class GoogleSheetsConfig(BaseConnectionConfig):
    source_type: ClassVar[DataSourceType] = DataSourceType.GOOGLE_SHEETS

    sheet_id: str = Field(..., min_length=1)
    service_account_json: SecretStr

    @field_validator("service_account_json")
    @classmethod
    def validate_service_account(cls, v):
        parse_service_account(v.get_secret_value())
        return v

    def service_account_info(self) -> Dict[str, Any]:
        return parse_service_account(self.service_account_json.get_secret_value())

    @property
    def worksheet(self) -> Optional[str]:
        return self.option("worksheet")


class CSVFileConfig(BaseConnectionConfig):
    source_type: ClassVar[DataSourceType] = DataSourceType.CSV_FILE

    uploaded_file_ref: str = Field(..., min_length=1)

    def resolve_path(self, upload_dir: str) -> Path:
        """Resolve the upload reference inside the upload directory"""
        root = Path(upload_dir).resolve()
        candidate = (root / self.uploaded_file_ref).resolve()
        if root != candidate and root not in candidate.parents:
            raise ValidationError(
                "uploadedFileRef points outside the upload directory",
                context={"uploaded_file_ref": self.uploaded_file_ref}
            )
        return candidate


CONFIG_MODELS: Dict[DataSourceType, Type[BaseConnectionConfig]] = {
    DataSourceType.POSTGRESQL: PostgresConfig,
    DataSourceType.MYSQL: MySQLConfig,
    DataSourceType.MONGODB: MongoConfig,
    DataSourceType.REST_API: RestApiConfig,
    DataSourceType.GRAPHQL: GraphQLConfig,
    DataSourceType.S3: S3Config,
    DataSourceType.GOOGLE_SHEETS: GoogleSheetsConfig,
    DataSourceType.CSV_FILE: CSVFileConfig,
}


def parse_service_account(raw: str) -> Dict[str, Any]:
    try:
        info = json.loads(raw)
    except (TypeError, json.JSONDecodeError):
        raise ValueError("serviceAccountJson is not valid JSON")
    if not isinstance(info, dict):
        raise ValueError("serviceAccountJson must be a JSON object")
    missing = [key for key in ("client_email", "private_key") if not info.get(key)]
    if missing:
        raise ValueError(f"serviceAccountJson is missing {', '.join(missing)}")
    return info


def build_connection_config(
    source_type: DataSourceType,
    fields: Dict[str, Any],
    secrets: Dict[str, Any],
    options: Optional[Dict[str, Any]] = None
) -> BaseConnectionConfig:
    """
    Assemble and validate a complete config for a connector call.

    Raises:
        ValidationError: if required fields are missing or malformed
    """
    model = CONFIG_MODELS[source_type]

    values = {k: v for k, v in fields.items() if v is not None}
    values.update({k: v for k, v in secrets.items() if v not in (None, "")})
    values["options"] = dict(options or {})

    default_port = getattr(model, "default_port", None)
    if default_port and not values.get("port"):
        values["port"] = default_port

    try:
        return model(**values)
    except PydanticValidationError as e:
        field_errors = {
            ".".join(str(p) for p in err["loc"]) or "config": err["msg"]
            for err in e.errors()
        }
        summary = "; ".join(f"{k}: {v}" for k, v in field_errors.items())
        raise ValidationError(
            f"Invalid {source_type.value} configuration ({summary})",
            context={"source_type": source_type.value, "field_errors": field_errors},
            original_exception=e
        )
