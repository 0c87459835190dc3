"""Connection entity and the result of establishing one."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from lifesync.core.clock import as_utc, utcnow


class ConnectionCategory(str, Enum):
    FINANCIAL = "financial"
    CALENDAR = "calendar"
    HEALTH = "health"
    SOCIAL = "social"
    MANUAL = "manual"


class ConnectionStatus(str, Enum):
    PENDING = "pending"
    CONNECTED = "connected"
    ERROR = "error"
    DISCONNECTED = "disconnected"


class Cadence(str, Enum):
    REALTIME = "realtime"
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MANUAL = "manual"


class SyncCadence(BaseModel):
    """How often a connection wants to be synchronized."""

    frequency: Cadence = Cadence.DAILY
    time_of_day: Optional[str] = Field(default="06:00", pattern=r"^([01]\d|2[0-3]):[0-5]\d$")
    days_of_week: Optional[List[int]] = None  # 0-6, Sunday = 0


class Connection(BaseModel):
    """One external data source owned by exactly one user."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    owner_id: str
    category: ConnectionCategory
    name: str
    provider: str
    status: ConnectionStatus = ConnectionStatus.PENDING
    credential_ref: Optional[str] = None
    sync_cadence: SyncCadence = Field(default_factory=SyncCadence)
    data_types: List[str] = Field(default_factory=list)
    last_sync_at: Optional[datetime] = None
    next_sync_at: Optional[datetime] = None
    # Newest record timestamp fetched so far; the incremental checkpoint.
    sync_cursor: Optional[datetime] = None
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("last_sync_at", "next_sync_at", "sync_cursor", "created_at", "updated_at")
    @classmethod
    def _utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)

    class Config:
        from_attributes = True


class ConnectionResult(BaseModel):
    """Outcome of an authorization or credential connection attempt."""

    success: bool
    connection_id: Optional[str] = None
    error: Optional[str] = None
    capabilities: List[str] = Field(default_factory=list)
