"""
FastAPI application initialization
"""

from fastapi import FastAPI
from api.errors import register_exception_handlers
from api.middleware import RequestContextMiddleware
from api.routes import data_sources, health
from core.config import settings
from core.database import async_session_maker
from core.logging import setup_logging
from core.security import CredentialVault
from lifecycle.manager import DataSourceManager
from lifecycle.scheduler import SyncScheduler
import logging

setup_logging()

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Data Source Connector Manager",
    description="Register external data sources, test connections, discover schemas and sync records",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(RequestContextMiddleware)
register_exception_handlers(app)

# Include routers
app.include_router(health.router)
app.include_router(data_sources.router)


@app.on_event("startup")
async def startup_event():
    """Application startup event"""
    logger.info("Starting Data Source Connector Manager")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Database: {settings.DATABASE_URL.split('@')[1] if '@' in settings.DATABASE_URL else 'configured'}")

    manager = DataSourceManager(async_session_maker, CredentialVault())
    await manager.recover_interrupted()
    app.state.manager = manager

    if settings.SCHEDULER_ENABLED:
        scheduler = SyncScheduler(manager)
        scheduler.start()
        app.state.scheduler = scheduler


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown event"""
    logger.info("Shutting down Data Source Connector Manager")
    scheduler = getattr(app.state, "scheduler", None)
    if scheduler is not None:
        scheduler.stop()

    manager = getattr(app.state, "manager", None)
    if manager is not None:
        await manager.shutdown()


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Data Source Connector Manager",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "dataSources": "/api/data-sources"
        }
    }
