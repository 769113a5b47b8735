"""
Land synced records with upsert logic (idempotency)
"""

import hashlib
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Tuple

from sqlalchemy import func, select
from sqlalchemy.dialects.mysql import insert as mysql_insert
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from connectors.base import SourceRecord
from models.synced_record import SyncedRecord

logger = logging.getLogger(__name__)

# Longest external id the table accepts
MAX_EXTERNAL_ID = 512


def to_payload(data: Dict[str, Any]) -> Tuple[Dict[str, Any], str]:
    """
    Convert a source row to a JSON-safe payload and its content hash.

    Raises:
        ValueError / TypeError: row cannot be represented as JSON
    """
    encoded = json.dumps(data, default=str, allow_nan=False, sort_keys=True)
    return json.loads(encoded), hashlib.sha256(encoded.encode("utf-8")).hexdigest()


class RecordLoader:
    """
    Upsert records into synced_records.

    Ensures:
    - No duplicate rows on repeated runs (unique data_source_id + external_id)
    - Unchanged rows are left alone (content hash comparison)
    - Rows that cannot be converted are reported, not fatal
    """

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    def _insert(self):
        dialect = self.db.bind.dialect.name
        if dialect == "postgresql":
            return pg_insert(SyncedRecord)
        if dialect == "sqlite":
            return sqlite_insert(SyncedRecord)
        if dialect in ("mysql", "mariadb"):
            return mysql_insert(SyncedRecord)
        raise NotImplementedError(f"Upsert not supported on {dialect}")

    def _upsert(self, rows: List[Dict[str, Any]]):
        stmt = self._insert().values(rows)
        if self.db.bind.dialect.name in ("mysql", "mariadb"):
            return stmt.on_duplicate_key_update(
                payload=stmt.inserted.payload,
                content_hash=stmt.inserted.content_hash,
                sync_log_id=stmt.inserted.sync_log_id,
                ingested_at=stmt.inserted.ingested_at,
            )
        return stmt.on_conflict_do_update(
            index_elements=["data_source_id", "external_id"],
            set_={
                "payload": stmt.excluded.payload,
                "content_hash": stmt.excluded.content_hash,
                "sync_log_id": stmt.excluded.sync_log_id,
                "ingested_at": stmt.excluded.ingested_at,
            },
            where=SyncedRecord.content_hash != stmt.excluded.content_hash,
        )

    async def load(
        self,
        data_source_id: str,
        sync_log_id: str,
        records: List[SourceRecord]
    ) -> Tuple[int, List[Dict[str, Any]]]:
        """
        Upsert one batch and commit.

        Returns:
            (records accepted, per-row errors)
        """
        rows: Dict[str, Dict[str, Any]] = {}
        row_errors: List[Dict[str, Any]] = []
        now = datetime.utcnow()

        for record in records:
            external_id = str(record.external_id)
            if len(external_id) > MAX_EXTERNAL_ID:
                row_errors.append({"externalId": external_id[:100], "error": "external id too long"})
                continue
            try:
                payload, content_hash = to_payload(record.data)
            except (TypeError, ValueError, RecursionError) as e:
                row_errors.append({"externalId": external_id, "error": f"{type(e).__name__}: {e}"})
                continue

            # Last occurrence wins within a batch
            rows[external_id] = {
                "data_source_id": data_source_id,
                "sync_log_id": sync_log_id,
                "external_id": external_id,
                "payload": payload,
                "content_hash": content_hash,
                "ingested_at": now,
            }

        if rows:
            try:
                await self.db.execute(self._upsert(list(rows.values())))
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        logger.debug(f"Loaded {len(rows)} records for {data_source_id} ({len(row_errors)} row errors)")
        return len(rows), row_errors

    async def count(self, data_source_id: str) -> int:
        result = await self.db.execute(
            select(func.count()).select_from(SyncedRecord).where(SyncedRecord.data_source_id == data_source_id)
        )
        return int(result.scalar_one())
