"""
Create the connector manager tables (data_sources, sync_logs, synced_records).

Use alembic for managed databases; this is for local development and
throwaway environments. ``--drop`` recreates everything from scratch.
"""

import argparse
import asyncio
import logging
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.database import build_engine
from core.logging import setup_logging
from models import Base  # registers every model

logger = logging.getLogger(__name__)


async def init_database(drop: bool = False) -> None:
    engine = build_engine()
    logger.info(f"Connecting to {engine.url.render_as_string(hide_password=True)}")

    try:
        async with engine.begin() as conn:
            if drop:
                logger.warning("Dropping existing connector manager tables")
                await conn.run_sync(Base.metadata.drop_all)
            await conn.run_sync(Base.metadata.create_all)
        logger.info(f"Tables ready: {', '.join(sorted(Base.metadata.tables))}")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("--drop", action="store_true", help="Drop all tables before creating them")
    args = parser.parse_args()

    setup_logging()
    asyncio.run(init_database(drop=args.drop))
