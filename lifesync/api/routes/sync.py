"""Sync routes - manual triggers, policy state and scheduler stats."""

from fastapi import APIRouter, Depends

from lifesync.api.deps import get_ingestion_service, get_owner_id
from lifesync.core.errors import PolicyNotFoundError
from lifesync.schemas.sync import SyncPolicy, SyncResult, SyncStats
from lifesync.services.ingestion_service import IngestionService

router = APIRouter(prefix="/sync", tags=["sync"])


@router.post("/tick", response_model=dict[str, SyncResult])
async def run_tick(
    owner_id: str = Depends(get_owner_id),
    service: IngestionService = Depends(get_ingestion_service),
):
    """
    Run the caller's due syncs once, as the background driver would.

    Returns an empty object when nothing is due or a tick is already running.
    """
    return await service.tick(owner_id)


@router.get("/stats", response_model=SyncStats)
def sync_stats(
    owner_id: str = Depends(get_owner_id),
    service: IngestionService = Depends(get_ingestion_service),
):
    """Scheduler counters over the caller's connections."""
    return service.get_sync_stats(owner_id)


@router.get("/policies/{connection_id}", response_model=SyncPolicy)
def get_policy(
    connection_id: str,
    owner_id: str = Depends(get_owner_id),
    service: IngestionService = Depends(get_ingestion_service),
):
    service.connections.require(connection_id, owner_id)
    policy = service.scheduler.get_policy(connection_id)
    if policy is None:
        raise PolicyNotFoundError(connection_id)
    return policy


@router.post("/{connection_id}", response_model=SyncResult)
async def trigger_sync(
    connection_id: str,
    owner_id: str = Depends(get_owner_id),
    service: IngestionService = Depends(get_ingestion_service),
):
    """
    Sync one connection now, ignoring its schedule.

    A sync already running for the connection yields a skipped result.
    """
    return await service.trigger_sync(connection_id, owner_id)


@router.post("/{connection_id}/reenable", response_model=SyncPolicy)
def reenable_sync(
    connection_id: str,
    owner_id: str = Depends(get_owner_id),
    service: IngestionService = Depends(get_ingestion_service),
):
    """Re-activate a policy disabled after repeated failures; it becomes due immediately."""
    return service.reenable_sync(connection_id, owner_id)
