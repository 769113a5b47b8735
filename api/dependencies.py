"""
FastAPI dependencies
"""

from typing import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from lifecycle.manager import DataSourceManager


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Read-only session from the manager's session factory"""
    async with request.app.state.manager.session_factory() as session:
        yield session


def get_manager(request: Request) -> DataSourceManager:
    return request.app.state.manager
