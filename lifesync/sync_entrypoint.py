"""Sync entrypoint - Standalone script for running syncs outside the API process.

Usage:
    python -m lifesync.sync_entrypoint                    # Run every due sync once
    python -m lifesync.sync_entrypoint <connection_id>    # Sync one connection now

Requires STORAGE_BACKEND=sql so the connections and policies are shared
with the API process.
"""

import asyncio
import sys
from typing import Dict

from lifesync.core.config import settings
from lifesync.core.logging import get_logger
from lifesync.schemas.sync import SyncResult
from lifesync.services.ingestion_service import build_ingestion_service

logger = get_logger("sync_entrypoint")


async def run_sync_job(connection_id: str) -> Dict[str, SyncResult]:
    """Sync a single connection."""
    logger.info(f"Starting sync job for connection: {connection_id}")
    service = build_ingestion_service(settings)
    result = await service.trigger_sync(connection_id)
    logger.info(f"Sync job completed for {connection_id}: success={result.success} errors={result.errors}")
    return {connection_id: result}


async def run_due_syncs() -> Dict[str, SyncResult]:
    """Run one scheduler tick."""
    logger.info("Running all due syncs")
    service = build_ingestion_service(settings)
    results = await service.tick()
    logger.info(f"Tick completed: {len(results)} sync(s) executed")
    return results


def main():
    """Main entry point for the sync job."""
    logger.info("Sync job starting...")

    if settings.STORAGE_BACKEND != "sql":
        logger.warning("STORAGE_BACKEND is not 'sql'; this process sees no connections from the API")

    if len(sys.argv) > 1:
        results = asyncio.run(run_sync_job(sys.argv[1]))
    else:
        results = asyncio.run(run_due_syncs())

    failed = [cid for cid, r in results.items() if not r.success and not r.skipped]
    logger.info(f"Sync job completed: {len(results) - len(failed)} ok, {len(failed)} failed")

    # Exit with error code if any sync failed
    if failed:
        sys.exit(1)

    return results


if __name__ == "__main__":
    main()
