"""
Uploaded CSV file connector
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd

from connectors.base import Connector, Cursor, LatencyProbe, SourceRecord, SyncBatch, natural_key
from connectors.config import CSVFileConfig
from core.config import settings
from core.exceptions import (
    ConnectorException,
    InvalidConfigurationError,
    PermissionDeniedError,
    SourceNotFoundError,
)
from models.base import DataSourceType

logger = logging.getLogger(__name__)


def normalize_columns(df: pd.DataFrame) -> pd.DataFrame:
    """Strip whitespace, lowercase and underscore header names"""
    df.columns = df.columns.astype(str).str.strip().str.lower().str.replace(" ", "_")
    return df


class CSVFileConnector(Connector):
    """
    Read an uploaded CSV file in row windows.

    Supports:
    - Configurable delimiter and encoding
    - Header normalization
    - Malformed rows reported per batch instead of failing the run
    """

    source_type = DataSourceType.CSV_FILE

    def __init__(self, upload_dir: Optional[str] = None):
        self.upload_dir = upload_dir or settings.UPLOAD_DIR

    def _read_options(self, config: CSVFileConfig) -> Dict[str, Any]:
        return {
            "sep": config.option("delimiter", ","),
            "encoding": config.option("encoding", "utf-8"),
        }

    def classify_error(self, exc: BaseException) -> ConnectorException:
        if isinstance(exc, ConnectorException):
            return exc
        if isinstance(exc, FileNotFoundError):
            return SourceNotFoundError(f"file not found: {exc.filename}", original_exception=exc)
        if isinstance(exc, PermissionError):
            return PermissionDeniedError(f"file not readable: {exc.filename}", original_exception=exc)
        if isinstance(exc, (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError)):
            return InvalidConfigurationError(f"unreadable CSV: {exc}", original_exception=exc)
        return super().classify_error(exc)

    async def test_connection(self, config: CSVFileConfig, probe: LatencyProbe) -> Dict[str, Any]:
        path = config.resolve_path(self.upload_dir)
        try:
            header = await asyncio.to_thread(self._read_header, path, config)
        except Exception as e:
            raise self.classify_error(e)
        probe.mark_round_trip()

        return {
            "file": path.name,
            "sizeBytes": os.path.getsize(path),
            "columns": list(header.columns),
        }

    def _read_header(self, path: Path, config: CSVFileConfig) -> pd.DataFrame:
        return normalize_columns(pd.read_csv(path, nrows=0, **self._read_options(config)))

    def _read_window(
        self,
        path: Path,
        config: CSVFileConfig,
        offset: int,
        limit: int
    ) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
        bad_lines: List[Dict[str, Any]] = []

        def on_bad_line(fields: List[str]) -> None:
            bad_lines.append({
                "error": "malformed row",
                "fields": len(fields),
                "preview": ",".join(fields)[:200],
            })
            return None

        df = pd.read_csv(
            path,
            skiprows=range(1, offset + 1),
            nrows=limit,
            engine="python",
            on_bad_lines=on_bad_line,
            **self._read_options(config)
        )
        df = normalize_columns(df)

        # NaN is not valid JSON
        df = df.astype(object).where(pd.notna(df), None)
        return df.to_dict(orient="records"), bad_lines

    async def sync(self, config: CSVFileConfig, cursor: Optional[Cursor], limit: int) -> SyncBatch:
        path = config.resolve_path(self.upload_dir)
        offset = int((cursor or {}).get("offset", 0))

        try:
            rows, bad_lines = await asyncio.to_thread(self._read_window, path, config, offset, limit)
        except pd.errors.EmptyDataError:
            rows, bad_lines = [], []
        except Exception as e:
            raise self.classify_error(e)

        logger.debug(f"Read {len(rows)} rows from {path.name} at offset {offset}")

        id_field = config.option("id_field", "id")
        records = [
            SourceRecord(external_id=natural_key(row, offset + i, id_field), data=row)
            for i, row in enumerate(rows)
        ]
        consumed = len(rows) + len(bad_lines)
        return SyncBatch(
            records=records,
            next_cursor={"offset": offset + consumed},
            has_more=consumed >= limit,
            row_errors=bad_lines,
        )
