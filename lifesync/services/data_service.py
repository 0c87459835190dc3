"""Data Service - read-side queries for the data and stats endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from lifesync.core.logging import get_logger
from lifesync.schemas.records import DateRange, LifeDomain, NormalizedRecord, RecordQuery
from lifesync.schemas.sync import SyncRun
from lifesync.services.ingestion_service import IngestionService

log = get_logger("data_service")


class DataService:
    """Handles all read operations - no writes."""

    def __init__(self, service: IngestionService):
        self.service = service

    # -------------------------------------------------------------------------
    # Normalized Data Queries
    # -------------------------------------------------------------------------
    def get_records(
        self,
        owner_id: str,
        domain: Optional[LifeDomain] = None,
        tags: Optional[List[str]] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[NormalizedRecord]:
        """Records for an owner, newest first. Open-ended date bounds are allowed."""
        date_range = None
        if start or end:
            date_range = DateRange(start=start or datetime.min, end=end or datetime.max)
        query = RecordQuery(domain=domain, tags=tags or [], date_range=date_range, limit=limit, offset=offset)
        return self.service.query(owner_id, query)

    def get_record(self, owner_id: str, record_id: str) -> Optional[NormalizedRecord]:
        return self.service.get_record(record_id, owner_id)

    def get_record_count(self, owner_id: str) -> int:
        return self.service.get_data_stats(owner_id).total_records

    # -------------------------------------------------------------------------
    # Sync Runs
    # -------------------------------------------------------------------------
    def get_sync_runs(
        self,
        connection_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 10,
    ) -> List[SyncRun]:
        return self.service.list_runs(connection_id=connection_id, status=status, limit=limit)

    def get_latest_sync_run(self, connection_id: Optional[str] = None) -> Optional[SyncRun]:
        runs = self.service.list_runs(connection_id=connection_id, limit=1)
        return runs[0] if runs else None

    # -------------------------------------------------------------------------
    # Aggregation
    # -------------------------------------------------------------------------
    def get_connections_summary(self, owner_id: str) -> List[Dict[str, Any]]:
        """One row per connection: status, sync policy state and last run."""
        summary = []
        for connection in self.service.list_connections(owner_id):
            policy = self.service.scheduler.get_policy(connection.id)
            latest_run = self.get_latest_sync_run(connection.id)
            summary.append(
                {
                    "connection_id": connection.id,
                    "provider": connection.provider,
                    "status": connection.status.value,
                    "error_message": connection.error_message,
                    "last_sync_at": connection.last_sync_at,
                    "next_sync_at": connection.next_sync_at,
                    "sync_active": policy.active if policy else False,
                    "failure_count": policy.failure_count if policy else 0,
                    "last_run_status": latest_run.status if latest_run else None,
                    "last_run_at": latest_run.started_at if latest_run else None,
                }
            )
        return summary
