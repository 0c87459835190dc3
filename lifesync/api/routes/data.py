"""Data routes - Exposes normalized life records with request metadata."""

import time
import uuid
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from lifesync.api.deps import get_data_service, get_ingestion_service, get_owner_id
from lifesync.schemas.api import RecordsResponse, RecordUpdateRequest
from lifesync.schemas.records import DataStats, LifeDomain, NormalizedRecord
from lifesync.services.data_service import DataService
from lifesync.services.ingestion_service import IngestionService

router = APIRouter(prefix="/data", tags=["data"])


@router.get("", response_model=RecordsResponse)
def get_records(
    domain: Optional[LifeDomain] = Query(None, description="Filter by life domain"),
    tags: Optional[List[str]] = Query(None, description="Records must carry every tag given"),
    start: Optional[datetime] = Query(None, description="Inclusive lower bound on record timestamp"),
    end: Optional[datetime] = Query(None, description="Inclusive upper bound on record timestamp"),
    limit: int = Query(100, ge=1, le=1000, description="Number of records to return (max 1000)"),
    offset: int = Query(0, ge=0, description="Number of records to skip"),
    owner_id: str = Depends(get_owner_id),
    service: DataService = Depends(get_data_service),
):
    """
    Query normalized records, newest first.

    Filters combine with AND: domain, every listed tag, and the timestamp window.
    Includes request metadata (request_id, latency_ms).
    """
    if start and end and end < start:
        raise HTTPException(status_code=422, detail="end must not precede start")

    started = time.perf_counter()
    request_id = str(uuid.uuid4())

    records = service.get_records(
        owner_id,
        domain=domain,
        tags=tags,
        start=start,
        end=end,
        limit=limit,
        offset=offset,
    )

    latency_ms = int((time.perf_counter() - started) * 1000)
    return RecordsResponse(request_id=request_id, api_latency_ms=latency_ms, count=len(records), data=records)


@router.get("/search", response_model=RecordsResponse)
def search_records(
    q: str = Query(..., min_length=1, description="Case-insensitive match against tags and payload"),
    domain: Optional[List[LifeDomain]] = Query(None, description="Restrict to these domains"),
    limit: Optional[int] = Query(None, ge=1, le=1000, description="Maximum matches to return"),
    owner_id: str = Depends(get_owner_id),
    service: IngestionService = Depends(get_ingestion_service),
):
    started = time.perf_counter()
    request_id = str(uuid.uuid4())

    records = service.search(owner_id, q, domains=domain, limit=limit)

    latency_ms = int((time.perf_counter() - started) * 1000)
    return RecordsResponse(request_id=request_id, api_latency_ms=latency_ms, count=len(records), data=records)


@router.get("/stats", response_model=DataStats)
def get_data_stats(
    owner_id: str = Depends(get_owner_id),
    service: IngestionService = Depends(get_ingestion_service),
):
    """Record counts by domain, tag and day, plus the covered date range."""
    return service.get_data_stats(owner_id)


@router.get("/{record_id}", response_model=NormalizedRecord)
def get_record(
    record_id: str,
    owner_id: str = Depends(get_owner_id),
    service: DataService = Depends(get_data_service),
):
    record = service.get_record(owner_id, record_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Record '{record_id}' not found")
    return record


@router.patch("/{record_id}", response_model=NormalizedRecord)
def update_record(
    record_id: str,
    body: RecordUpdateRequest,
    owner_id: str = Depends(get_owner_id),
    service: IngestionService = Depends(get_ingestion_service),
):
    """Change payload, tags, domain or timestamp; indexes follow the change."""
    record = service.update_record(record_id, owner_id, body.model_dump(exclude_unset=True))
    if record is None:
        raise HTTPException(status_code=404, detail=f"Record '{record_id}' not found")
    return record


@router.delete("/{record_id}", status_code=204)
def delete_record(
    record_id: str,
    owner_id: str = Depends(get_owner_id),
    service: IngestionService = Depends(get_ingestion_service),
):
    if not service.delete_record(record_id, owner_id):
        raise HTTPException(status_code=404, detail=f"Record '{record_id}' not found")
    return Response(status_code=204)
