"""Stats routes - sync observability and connection health."""

from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query

from lifesync.api.deps import get_data_service, get_owner_id
from lifesync.schemas.api import ConnectionSummaryOut, SyncRunOut
from lifesync.services.data_service import DataService

router = APIRouter(prefix="/stats", tags=["stats"])


@router.get("/runs", response_model=list[SyncRunOut])
def get_sync_runs(
    connection_id: Optional[str] = Query(None, description="Filter by connection id"),
    status: Optional[Literal["running", "success", "failure"]] = Query(None, description="Filter by status"),
    limit: int = Query(10, ge=1, le=50, description="Number of runs to return"),
    owner_id: str = Depends(get_owner_id),
    service: DataService = Depends(get_data_service),
):
    """
    Recent sync runs for the caller's connections, newest first.

    Shows records processed, status and error messages.
    """
    owned = {c["connection_id"] for c in service.get_connections_summary(owner_id)}
    if connection_id is not None and connection_id not in owned:
        return []

    runs = service.get_sync_runs(connection_id=connection_id, status=status, limit=limit if connection_id else 50)
    return [
        SyncRunOut(
            run_id=run.id,
            connection_id=run.connection_id,
            status=run.status,
            records_processed=run.records_processed,
            records_created=run.records_created,
            error_message=run.error_message,
            started_at=run.started_at,
            ended_at=run.ended_at,
        )
        for run in runs
        if run.connection_id in owned
    ][:limit]


@router.get("/connections", response_model=list[ConnectionSummaryOut])
def get_connections_summary(
    owner_id: str = Depends(get_owner_id),
    service: DataService = Depends(get_data_service),
):
    """Per-connection status, sync policy state and latest run."""
    return service.get_connections_summary(owner_id)
