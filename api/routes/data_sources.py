"""
Data source endpoints: CRUD, connection test, schema, sync and disconnect
"""

import logging
import uuid
from typing import List, Optional, Union

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_db, get_manager
from core.exceptions import ResourceNotFoundError
from lifecycle.manager import DataSourceManager
from models.base import DataSourceStatus, DataSourceType
from models.data_source import DataSource
from models.sync_log import SyncLog
from schemas.data_source import (
    DataSourceCreate,
    DataSourceDetail,
    DataSourceResponse,
    DataSourceUpdate,
    SyncLogResponse,
)
from schemas.results import (
    CancelTestResponse,
    SchemaResponse,
    SyncAcceptedResponse,
    TestResultResponse,
    UnsupportedResponse,
    schema_response,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/data-sources", tags=["Data Sources"])


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", f"req_{uuid.uuid4().hex[:12]}")


async def _get_source(db: AsyncSession, data_source_id: str) -> DataSource:
    source = await db.get(DataSource, data_source_id)
    if source is None:
        raise ResourceNotFoundError(
            f"Data source {data_source_id} not found",
            context={"data_source_id": data_source_id}
        )
    return source


async def _recent_logs(db: AsyncSession, data_source_id: str, limit: int) -> List[SyncLog]:
    result = await db.execute(
        select(SyncLog)
        .where(SyncLog.data_source_id == data_source_id)
        .order_by(SyncLog.created_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


@router.get("", response_model=List[DataSourceResponse], response_model_by_alias=True)
async def list_data_sources(
    request: Request,
    search: Optional[str] = Query(None, description="Match name or description"),
    type: Optional[DataSourceType] = Query(None, description="Filter by type"),
    status: Optional[DataSourceStatus] = Query(None, description="Filter by status"),
    db: AsyncSession = Depends(get_db)
):
    """List data sources, newest first"""
    logger.info(f"[{_request_id(request)}] GET /api/data-sources - search={search}, type={type}, status={status}")

    query = select(DataSource)
    if search:
        query = query.where(or_(
            DataSource.name.ilike(f"%{search}%"),
            DataSource.description.ilike(f"%{search}%")
        ))
    if type:
        query = query.where(DataSource.type == type)
    if status:
        query = query.where(DataSource.status == status)

    result = await db.execute(query.order_by(DataSource.created_at.desc()))
    return [DataSourceResponse.from_model(source) for source in result.scalars().all()]


@router.post(
    "",
    response_model=DataSourceResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_201_CREATED
)
async def create_data_source(
    payload: DataSourceCreate,
    manager: DataSourceManager = Depends(get_manager)
):
    """
    Create a data source in CONFIGURING.

    The record is persisted before any test so a failed test stays
    inspectable.
    """
    source = await manager.create(payload)
    return DataSourceResponse.from_model(source)


@router.get("/{data_source_id}", response_model=DataSourceDetail, response_model_by_alias=True)
async def get_data_source(
    data_source_id: str,
    log_limit: int = Query(10, ge=0, le=500, alias="logLimit", description="Most recent sync logs to include"),
    db: AsyncSession = Depends(get_db)
):
    source = await _get_source(db, data_source_id)
    logs = await _recent_logs(db, data_source_id, log_limit) if log_limit else []
    return DataSourceDetail.from_model(source, logs)


@router.patch("/{data_source_id}", response_model=DataSourceResponse, response_model_by_alias=True)
async def update_data_source(
    data_source_id: str,
    payload: DataSourceUpdate,
    manager: DataSourceManager = Depends(get_manager)
):
    """
    Update fields. Changing any connection field, secret or configuration
    sends the source back to CONFIGURING until it is tested again.
    """
    source = await manager.update(data_source_id, payload)
    return DataSourceResponse.from_model(source)


@router.delete("/{data_source_id}")
async def delete_data_source(
    data_source_id: str,
    manager: DataSourceManager = Depends(get_manager)
):
    """Delete with its sync logs and synced records; 409 while a sync runs"""
    await manager.delete(data_source_id)
    return {"deleted": True, "id": data_source_id}


@router.post("/{data_source_id}/test", response_model=TestResultResponse, response_model_by_alias=True)
async def test_data_source(
    data_source_id: str,
    timeout: Optional[float] = Query(None, gt=0, le=300, description="Seconds; overrides the per-type default"),
    manager: DataSourceManager = Depends(get_manager)
):
    """
    Run a connection test and wait for its result.

    Connection failures are reported with ``success: false``; only
    validation problems (400) and unknown ids (404) are HTTP errors.
    """
    result = await manager.test(data_source_id, timeout)
    return TestResultResponse.from_result(result)


@router.delete("/{data_source_id}/test", response_model=CancelTestResponse, response_model_by_alias=True)
async def cancel_test(
    data_source_id: str,
    manager: DataSourceManager = Depends(get_manager)
):
    await manager.get(data_source_id)
    return CancelTestResponse(cancelled=manager.cancel_test(data_source_id))


@router.get(
    "/{data_source_id}/schema",
    response_model=Union[SchemaResponse, UnsupportedResponse],
    response_model_by_alias=True
)
async def get_schema(
    data_source_id: str,
    manager: DataSourceManager = Depends(get_manager)
):
    """Discover tables/collections and columns; never changes status"""
    result = await manager.introspect(data_source_id)
    return schema_response(result)


@router.post(
    "/{data_source_id}/sync",
    response_model=SyncAcceptedResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_202_ACCEPTED
)
async def start_sync(
    data_source_id: str,
    full_refresh: bool = Query(False, alias="fullRefresh"),
    manager: DataSourceManager = Depends(get_manager)
):
    """Start a background sync; its outcome is recorded as a sync log"""
    await manager.start_sync(data_source_id, full_refresh)
    return SyncAcceptedResponse(data_source_id=data_source_id, full_refresh=full_refresh)


@router.get("/{data_source_id}/sync-logs", response_model=List[SyncLogResponse], response_model_by_alias=True)
async def list_sync_logs(
    data_source_id: str,
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db)
):
    await _get_source(db, data_source_id)
    return [SyncLogResponse.model_validate(log) for log in await _recent_logs(db, data_source_id, limit)]


@router.post("/{data_source_id}/disconnect", response_model=DataSourceResponse, response_model_by_alias=True)
async def disconnect_data_source(
    data_source_id: str,
    manager: DataSourceManager = Depends(get_manager)
):
    source = await manager.disconnect(data_source_id)
    return DataSourceResponse.from_model(source)
