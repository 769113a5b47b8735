"""
Health check endpoint with database and job status
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import func, select, text
from api.dependencies import get_db
from schemas.results import HealthResponse
from models.data_source import DataSource
from datetime import datetime
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthResponse, response_model_by_alias=True)
async def health_check(request: Request, db: AsyncSession = Depends(get_db)):
    """
    Health check endpoint.

    Returns:
    - Database connectivity status
    - Data source counts per status
    - Running background jobs and scheduler state
    """

    # Check database connectivity
    db_connected = False

    try:
        await db.execute(text("SELECT 1"))
        db_connected = True
    except Exception as e:
        logger.error(f"Database connection failed: {str(e)}")

    sources_by_status = {}
    if db_connected:
        try:
            result = await db.execute(
                select(DataSource.status, func.count()).group_by(DataSource.status)
            )
            sources_by_status = {status.value: count for status, count in result.all()}
        except Exception as e:
            logger.error(f"Failed to count data sources: {str(e)}")

    manager = request.app.state.manager
    scheduler = getattr(request.app.state, "scheduler", None)

    return HealthResponse(
        status="healthy" if db_connected else "unhealthy",
        timestamp=datetime.utcnow(),
        database_connected=db_connected,
        running_jobs=len(manager.jobs.running()),
        scheduler_running=bool(scheduler and scheduler.running),
        sources_by_status=sources_by_status
    )
