from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from lifesync.schemas.connection import SyncCadence
from lifesync.schemas.records import LifeDomain, NormalizedRecord, RecordProvenance
from lifesync.schemas.secret import CredentialKind


class HealthResponse(BaseModel):
    status: str
    storage: str
    scheduler_running: bool
    last_sync_status: Optional[str] = None


class ProviderOut(BaseModel):
    id: str
    name: str
    category: str
    domain: str
    supported_data_types: List[str]
    capabilities: List[str]


class CredentialConnectRequest(BaseModel):
    provider_id: str
    kind: CredentialKind
    credentials: Dict[str, Any]
    name: Optional[str] = None
    sync_cadence: Optional[SyncCadence] = None


class RecordsResponse(BaseModel):
    request_id: str
    api_latency_ms: int
    count: int
    data: List[NormalizedRecord]


class RecordUpdateRequest(BaseModel):
    payload: Optional[Dict[str, Any]] = None
    tags: Optional[List[str]] = None
    domain: Optional[LifeDomain] = None
    timestamp: Optional[datetime] = None


class IngestRequest(BaseModel):
    """Inbound raw record; the owner comes from the X-Owner-Id header."""

    source_id: Optional[str] = None
    domain: Optional[LifeDomain] = None
    timestamp: Optional[datetime] = None
    payload: Optional[Dict[str, Any]] = None
    metadata: Optional[RecordProvenance] = None


class SyncRunOut(BaseModel):
    run_id: str
    connection_id: str
    status: str
    records_processed: int
    records_created: int
    error_message: Optional[str] = None
    started_at: datetime
    ended_at: Optional[datetime] = None


class ConnectionSummaryOut(BaseModel):
    connection_id: str
    provider: str
    status: str
    error_message: Optional[str] = None
    last_sync_at: Optional[datetime] = None
    next_sync_at: Optional[datetime] = None
    sync_active: bool
    failure_count: int
    last_run_status: Optional[str] = None
    last_run_at: Optional[datetime] = None


class CredentialRotationOut(BaseModel):
    rotated: int
    key_id: str
