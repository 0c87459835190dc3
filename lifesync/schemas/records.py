"""Inbound raw records, normalized records and the query surface over them."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from lifesync.core.clock import as_utc, utcnow


class LifeDomain(str, Enum):
    FINANCIAL = "financial"
    CAREER = "career"
    HEALTH = "health"
    EMOTIONAL = "emotional"
    SOCIAL = "social"
    PERSONAL = "personal"
    CALENDAR = "calendar"


class RecordProvenance(BaseModel):
    """Optional provenance carried by a raw record. Extra keys are kept."""

    model_config = ConfigDict(extra="allow")

    provider: Optional[str] = None
    data_type: Optional[str] = None
    version: Optional[str] = None
    source_kind: Optional[str] = None


class RawRecord(BaseModel):
    """One unvalidated inbound payload. Never persisted.

    Every field is optional: the pipeline's validation step reports
    missing pieces instead of the model rejecting them at construction.
    """

    owner_id: Optional[str] = None
    source_id: Optional[str] = None
    domain: Optional[LifeDomain] = None
    timestamp: Optional[datetime] = None
    payload: Optional[Dict[str, Any]] = None
    metadata: Optional[RecordProvenance] = None

    @field_validator("timestamp")
    @classmethod
    def _utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)


class ValidationResult(BaseModel):
    is_valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class Categorization(BaseModel):
    primary: str
    secondary: Optional[str] = None
    confidence: float = Field(ge=0.0, le=1.0)
    suggested_tags: List[str] = Field(default_factory=list)


class SourceDescriptor(BaseModel):
    id: str
    name: str
    kind: str = "api"
    reliability: float = Field(default=0.8, ge=0.0, le=1.0)


class ProcessingMetadata(BaseModel):
    processed_at: datetime
    pipeline_version: str
    validation_score: float
    transformations_applied: List[str] = Field(default_factory=list)
    categorization: Categorization


class NormalizedRecord(BaseModel):
    """The persisted, queryable unit of life data."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    owner_id: str
    domain: LifeDomain
    timestamp: datetime
    payload: Dict[str, Any]
    source: SourceDescriptor
    confidence: float = Field(ge=0.0, le=1.0)
    tags: List[str] = Field(default_factory=list)
    processing_metadata: ProcessingMetadata
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("timestamp", "created_at")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    @field_validator("tags")
    @classmethod
    def _unique_tags(cls, value: List[str]) -> List[str]:
        return list(dict.fromkeys(value))


class DateRange(BaseModel):
    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    @model_validator(mode="after")
    def _ordered(self) -> "DateRange":
        if self.end < self.start:
            raise ValueError("date range end must not precede start")
        return self


class RecordQuery(BaseModel):
    domain: Optional[LifeDomain] = None
    tags: List[str] = Field(default_factory=list)
    date_range: Optional[DateRange] = None
    limit: int = Field(default=100, ge=1, le=1000)
    offset: int = Field(default=0, ge=0)


class DataStats(BaseModel):
    total_records: int = 0
    records_by_domain: Dict[str, int] = Field(default_factory=dict)
    records_by_tag: Dict[str, int] = Field(default_factory=dict)
    records_by_day: Dict[str, int] = Field(default_factory=dict)
    date_range: Optional[DateRange] = None
