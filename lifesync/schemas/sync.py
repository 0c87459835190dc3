"""Sync scheduling state, outcomes and aggregate stats."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from lifesync.core.clock import as_utc, utcnow
from lifesync.schemas.connection import Cadence


class SyncPolicy(BaseModel):
    """Scheduling and retry state for one connection."""

    connection_id: str = Field(min_length=1)
    cadence: Cadence = Cadence.DAILY
    next_run: Optional[datetime] = None
    last_run: Optional[datetime] = None
    active: bool = True
    failure_count: int = Field(default=0, ge=0)
    max_failures: int = Field(default=3, ge=0, le=10)

    @field_validator("next_run", "last_run")
    @classmethod
    def _utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)

    @model_validator(mode="after")
    def _exhausted_is_inactive(self) -> "SyncPolicy":
        if self.failure_count >= self.max_failures:
            self.active = False
        return self

    @property
    def exhausted(self) -> bool:
        return self.failure_count >= self.max_failures

    class Config:
        from_attributes = True


class SyncResult(BaseModel):
    success: bool
    records_processed: int = 0
    records_created: int = 0
    errors: List[str] = Field(default_factory=list)
    last_sync_time: datetime = Field(default_factory=utcnow)
    skipped: bool = False

    @classmethod
    def failure(cls, message: str) -> "SyncResult":
        return cls(success=False, errors=[message])

    @classmethod
    def skip(cls, reason: str) -> "SyncResult":
        return cls(success=False, skipped=True, errors=[reason])


class SyncStats(BaseModel):
    total_sources: int
    active_sources: int
    pending_syncs: int
    failed_sources: int
    next_sync_time: Optional[datetime] = None


class SyncRun(BaseModel):
    """Audit row for one sync execution."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    connection_id: str
    status: Literal["running", "success", "failure"] = "running"
    records_processed: int = 0
    records_created: int = 0
    error_message: Optional[str] = None
    started_at: datetime = Field(default_factory=utcnow)
    ended_at: Optional[datetime] = None

    @field_validator("started_at", "ended_at")
    @classmethod
    def _utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)

    class Config:
        from_attributes = True
