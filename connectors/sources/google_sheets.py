"""
Google Sheets connector.

A service account token is minted with google-auth, then the Sheets v4 REST
API is called through httpx.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx
from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2 import service_account

from connectors.base import Connector, Cursor, LatencyProbe, SourceRecord, SyncBatch, natural_key
from connectors.config import GoogleSheetsConfig
from connectors.sources.http_api import check_response
from core.exceptions import (
    AuthenticationError,
    ConnectionTimeoutError,
    ConnectorException,
    InvalidConfigurationError,
    NetworkError,
    SourceConnectionError,
)
from models.base import DataSourceType

logger = logging.getLogger(__name__)

SHEETS_API = "https://sheets.googleapis.com/v4/spreadsheets"
SCOPES = ["https://www.googleapis.com/auth/spreadsheets.readonly"]

# Header row is row 1; data starts on row 2
FIRST_DATA_ROW = 2
LAST_COLUMN = "ZZ"


class GoogleSheetsConnector(Connector):
    """
    Supports:
    - Service account authentication
    - Spreadsheet metadata handshake (title, worksheets)
    - Row-window pulls keyed by the header row
    """

    source_type = DataSourceType.GOOGLE_SHEETS

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.transport = transport

    def _token(self, config: GoogleSheetsConfig) -> str:
        credentials = service_account.Credentials.from_service_account_info(
            config.service_account_info(), scopes=SCOPES
        )
        credentials.refresh(Request())
        return credentials.token

    def classify_error(self, exc: BaseException) -> ConnectorException:
        if isinstance(exc, ConnectorException):
            return exc
        if isinstance(exc, RefreshError):
            return AuthenticationError(f"service account rejected: {exc}", original_exception=exc)
        if isinstance(exc, ValueError):
            return InvalidConfigurationError(f"invalid service account key: {exc}", original_exception=exc)
        if isinstance(exc, httpx.TimeoutException):
            return ConnectionTimeoutError("timeout", original_exception=exc)
        classified = super().classify_error(exc)
        if type(classified) is SourceConnectionError and isinstance(exc, (TransportError, httpx.TransportError)):
            return NetworkError(str(exc) or type(exc).__name__, original_exception=exc)
        return classified

    async def _get(
        self,
        config: GoogleSheetsConfig,
        path: str,
        params: Dict[str, Any],
        probe: Optional[LatencyProbe] = None
    ) -> Dict[str, Any]:
        try:
            token = await asyncio.to_thread(self._token, config)
            if probe is not None:
                probe.mark_round_trip()
            url = f"{SHEETS_API}/{config.sheet_id}{path}"
            async with httpx.AsyncClient(
                headers={"Authorization": f"Bearer {token}"},
                timeout=config.option("request_timeout", 30.0),
                transport=self.transport,
            ) as client:
                response = await client.get(url, params=params)
        except Exception as e:
            raise self.classify_error(e)

        check_response(response, f"{SHEETS_API}/{config.sheet_id}")
        return response.json()

    async def _worksheet(self, config: GoogleSheetsConfig) -> str:
        if config.worksheet:
            return config.worksheet
        meta = await self._get(config, "", {"fields": "sheets.properties.title"})
        sheets = meta.get("sheets") or []
        if not sheets:
            raise InvalidConfigurationError("spreadsheet has no worksheets", context={"sheet_id": config.sheet_id})
        return sheets[0]["properties"]["title"]

    async def test_connection(self, config: GoogleSheetsConfig, probe: LatencyProbe) -> Dict[str, Any]:
        meta = await self._get(
            config, "", {"fields": "properties.title,properties.timeZone,sheets.properties.title"}, probe=probe
        )
        properties = meta.get("properties", {})
        info = {
            "title": properties.get("title"),
            "timezone": properties.get("timeZone"),
            "worksheets": [s["properties"]["title"] for s in meta.get("sheets", [])],
        }
        return {k: v for k, v in info.items() if v is not None}

    async def sync(self, config: GoogleSheetsConfig, cursor: Optional[Cursor], limit: int) -> SyncBatch:
        row = int((cursor or {}).get("row", FIRST_DATA_ROW))
        worksheet = (cursor or {}).get("worksheet") or await self._worksheet(config)
        quoted = "'" + worksheet.replace("'", "''") + "'"

        header_range = f"{quoted}!A1:{LAST_COLUMN}1"
        window_range = f"{quoted}!A{row}:{LAST_COLUMN}{row + limit - 1}"
        result = await self._get(
            config,
            "/values:batchGet",
            {"ranges": [header_range, window_range], "majorDimension": "ROWS"},
        )
        value_ranges = result.get("valueRanges", [])
        header = _rows(value_ranges, 0)
        rows = _rows(value_ranges, 1)

        columns = [
            str(h).strip().lower().replace(" ", "_") or f"column_{i + 1}"
            for i, h in enumerate(header[0] if header else [])
        ]
        id_field = config.option("id_field")

        records = []
        for i, values in enumerate(rows):
            data = {col: (values[j] if j < len(values) else None) for j, col in enumerate(columns)}
            records.append(SourceRecord(external_id=natural_key(data, row + i, id_field), data=data))

        return SyncBatch(
            records=records,
            next_cursor={"row": row + len(rows), "worksheet": worksheet},
            has_more=len(rows) >= limit,
        )

    def skip_batch(self, cursor: Optional[Cursor], limit: int) -> Optional[Cursor]:
        cursor = dict(cursor or {})
        cursor["row"] = int(cursor.get("row", FIRST_DATA_ROW)) + limit
        return cursor


def _rows(value_ranges: List[Dict[str, Any]], index: int) -> List[List[Any]]:
    if index >= len(value_ranges):
        return []
    return value_ranges[index].get("values", [])
