"""Run provider sources for a connection and keep only what is new."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from lifesync.core.logging import get_logger
from lifesync.schemas.connection import Connection
from lifesync.schemas.records import RawRecord
from .base import BaseSource

log = get_logger("ingestion.runner")


@dataclass
class SourceBatch:
    source: str
    fetched: int = 0
    records: List[RawRecord] = field(default_factory=list)

    @property
    def high_water_mark(self) -> Optional[datetime]:
        """Newest timestamp in the batch, the next checkpoint for this source."""
        stamps = [r.timestamp for r in self.records if r.timestamp]
        return max(stamps) if stamps else None


class IngestionRunner:
    """Fetches every source in turn. Source errors propagate to the caller."""

    def __init__(self, sources: List[BaseSource]):
        self.sources = sources

    async def run(
        self,
        connection: Optional[Connection] = None,
        credentials: Any = None,
        checkpoints: Optional[Dict[str, datetime]] = None,
    ) -> Dict[str, SourceBatch]:
        checkpoints = checkpoints or {}
        batches: Dict[str, SourceBatch] = {}

        for source in self.sources:
            since = checkpoints.get(source.name)
            started = time.perf_counter()
            raw = await source.fetch(connection, credentials, since)
            # Oldest first so records are stored in the order they happened; undated ones lead.
            fresh = sorted(
                source.filter_incremental(raw, since),
                key=lambda r: (r.timestamp is not None, r.timestamp or datetime.min),
            )

            batches[source.name] = SourceBatch(source=source.name, fetched=len(raw), records=fresh)
            elapsed_ms = (time.perf_counter() - started) * 1000
            log.info(f"source={source.name} since={since} fetched={len(raw)} fresh={len(fresh)} in {elapsed_ms:.0f}ms")
        return batches
