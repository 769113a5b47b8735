"""
S3 and S3-compatible object storage connector.

boto3 is synchronous; every call runs in a worker thread.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import (
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    NoCredentialsError,
    ReadTimeoutError,
)

from connectors.base import Connector, Cursor, LatencyProbe, SourceRecord, SyncBatch
from connectors.config import S3Config
from core.exceptions import (
    AuthenticationError,
    ConnectionTimeoutError,
    ConnectorException,
    InvalidConfigurationError,
    NetworkError,
    PermissionDeniedError,
    SourceConnectionError,
    SourceNotFoundError,
)
from models.base import DataSourceType

logger = logging.getLogger(__name__)

AUTH_ERROR_CODES = {"InvalidAccessKeyId", "SignatureDoesNotMatch", "InvalidToken", "ExpiredToken"}
DENIED_ERROR_CODES = {"AccessDenied", "AllAccessDisabled", "403"}
MISSING_ERROR_CODES = {"NoSuchBucket", "404"}


class S3Connector(Connector):
    """
    Supports:
    - AWS S3 and S3-compatible storage via ``endpoint_url``
    - Prefix filtering
    - Object listings synced as records (key, size, etag, last modified)
    """

    source_type = DataSourceType.S3

    def _client(self, config: S3Config):
        boto_config = Config(
            connect_timeout=config.option("connect_timeout", 10),
            read_timeout=config.option("read_timeout", 30),
            retries={"max_attempts": 1, "mode": "standard"},
        )
        # One session per call; boto3's default session is not thread-safe
        session = boto3.session.Session()
        return session.client(
            "s3",
            region_name=config.region,
            aws_access_key_id=config.access_key.get_secret_value(),
            aws_secret_access_key=config.secret_key.get_secret_value(),
            endpoint_url=config.endpoint_url,
            config=boto_config,
        )

    def classify_error(self, exc: BaseException) -> ConnectorException:
        if isinstance(exc, ConnectorException):
            return exc
        if isinstance(exc, ClientError):
            code = str(exc.response.get("Error", {}).get("Code", ""))
            message = exc.response.get("Error", {}).get("Message") or code
            context = {"code": code}
            if code in AUTH_ERROR_CODES:
                return AuthenticationError(message, context=context, original_exception=exc)
            if code in DENIED_ERROR_CODES:
                return PermissionDeniedError(message, context=context, original_exception=exc)
            if code in MISSING_ERROR_CODES:
                return SourceNotFoundError(f"bucket not found: {message}", context=context, original_exception=exc)
            if code in ("PermanentRedirect", "AuthorizationHeaderMalformed", "IllegalLocationConstraintException"):
                return InvalidConfigurationError(f"wrong region: {message}", context=context, original_exception=exc)
            if code in ("SlowDown", "ServiceUnavailable", "InternalError", "503", "500"):
                return NetworkError(message, context=context, original_exception=exc, round_trip=True)
            return SourceConnectionError(message, context=context, original_exception=exc, round_trip=True)
        if isinstance(exc, NoCredentialsError):
            return AuthenticationError(str(exc), original_exception=exc, round_trip=False)
        if isinstance(exc, (ConnectTimeoutError, ReadTimeoutError)):
            return ConnectionTimeoutError("timeout", original_exception=exc)
        if isinstance(exc, EndpointConnectionError):
            classified = super().classify_error(exc)
            if type(classified) is SourceConnectionError:
                return NetworkError(str(exc), original_exception=exc)
            return classified
        return super().classify_error(exc)

    def _probe_bucket(self, config: S3Config) -> Dict[str, Any]:
        client = self._client(config)
        listing = client.list_objects_v2(Bucket=config.bucket, Prefix=config.prefix, MaxKeys=1)
        return {"client": client, "listing": listing}

    async def test_connection(self, config: S3Config, probe: LatencyProbe) -> Dict[str, Any]:
        try:
            result = await asyncio.to_thread(self._probe_bucket, config)
        except Exception as e:
            raise self.classify_error(e)
        probe.mark_round_trip()

        info: Dict[str, Any] = {"bucket": config.bucket, "region": config.region}
        if config.prefix:
            info["prefix"] = config.prefix
        try:
            location = await asyncio.to_thread(result["client"].get_bucket_location, Bucket=config.bucket)
            # us-east-1 reports a null location constraint
            info["region"] = location.get("LocationConstraint") or "us-east-1"
        except ClientError as e:
            logger.debug(f"get_bucket_location unavailable: {e}")
        info["hasObjects"] = result["listing"].get("KeyCount", 0) > 0
        return info

    def _list_page(self, config: S3Config, start_after: Optional[str], limit: int) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {"Bucket": config.bucket, "Prefix": config.prefix, "MaxKeys": limit}
        if start_after:
            kwargs["StartAfter"] = start_after
        return self._client(config).list_objects_v2(**kwargs)

    async def sync(self, config: S3Config, cursor: Optional[Cursor], limit: int) -> SyncBatch:
        start_after = (cursor or {}).get("start_after")
        try:
            page = await asyncio.to_thread(self._list_page, config, start_after, limit)
        except Exception as e:
            raise self.classify_error(e)

        records = []
        for obj in page.get("Contents", []):
            last_modified = obj.get("LastModified")
            records.append(SourceRecord(
                external_id=obj["Key"],
                data={
                    "key": obj["Key"],
                    "size": obj.get("Size"),
                    "etag": (obj.get("ETag") or "").strip('"'),
                    "lastModified": last_modified.isoformat() if last_modified else None,
                    "storageClass": obj.get("StorageClass"),
                },
            ))

        next_cursor = {"start_after": records[-1].external_id if records else start_after}
        return SyncBatch(records=records, next_cursor=next_cursor, has_more=bool(page.get("IsTruncated")))

    def skip_batch(self, cursor: Optional[Cursor], limit: int) -> Optional[Cursor]:
        # Key listings cannot be skipped without reading them
        return None
