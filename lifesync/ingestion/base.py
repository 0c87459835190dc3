"""Abstract source interface for ingestion."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date, datetime, timezone
from typing import Any, List, Optional

from lifesync.schemas.connection import Connection
from lifesync.schemas.records import RawRecord


class BaseSource(ABC):
    """Abstract base class for data sources."""

    name: str

    @abstractmethod
    async def fetch(
        self,
        connection: Optional[Connection] = None,
        credentials: Any = None,
        since: Optional[datetime] = None,
    ) -> List[RawRecord]:
        """Fetch raw records for a connection (each must carry a timestamp)."""

    @staticmethod
    def filter_incremental(records: List[RawRecord], checkpoint: Optional[datetime]) -> List[RawRecord]:
        if not checkpoint:
            return records
        return [rec for rec in records if rec.timestamp and rec.timestamp > checkpoint]


def parse_timestamp(value: Any) -> Optional[datetime]:
    """ISO 8601 strings, dates or datetimes to aware UTC. None when unparseable."""
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)
