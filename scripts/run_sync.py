"""
Script to run one sync pass for every CONNECTED data source (or the ids given)
"""

import argparse
import asyncio
import sys
import os
import logging

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.database import async_session_maker, engine
from core.exceptions import ConnectorException
from core.logging import setup_logging
from core.security import CredentialVault
from lifecycle.manager import DataSourceManager

logger = logging.getLogger(__name__)


async def run_sync(source_ids, full_refresh: bool) -> int:
    """Sync each source in turn; returns the number of failed runs"""
    manager = DataSourceManager(async_session_maker, CredentialVault())
    failures = 0

    try:
        if not source_ids:
            source_ids = await manager.connected_ids()

        if not source_ids:
            logger.warning("No CONNECTED data sources. Skipping sync.")
            return 0

        for source_id in source_ids:
            try:
                logger.info(f"Running sync for data source: {source_id}")
                outcome = await manager.sync(source_id, full_refresh=full_refresh)
                logger.info(
                    f"Sync completed for {source_id}: "
                    f"Success={outcome.success}, Records={outcome.records_synced}, "
                    f"FailedBatches={outcome.batches_failed}"
                )
                if not outcome.success:
                    failures += 1
            except ConnectorException as e:
                logger.error(f"Sync failed for {source_id}: {e.message}", extra={"error_context": e.to_dict()})
                failures += 1
                continue

        logger.info("All sync jobs completed")
        return failures

    finally:
        await manager.shutdown()
        await engine.dispose()


def main():
    parser = argparse.ArgumentParser(description="Sync data sources once")
    parser.add_argument("ids", nargs="*", help="Data source ids (default: every CONNECTED source)")
    parser.add_argument("--full-refresh", action="store_true", help="Ignore saved cursors and read from the start")
    args = parser.parse_args()

    setup_logging()
    failures = asyncio.run(run_sync(args.ids, args.full_refresh))
    sys.exit(1 if failures else 0)


if __name__ == "__main__":
    main()
