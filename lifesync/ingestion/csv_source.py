"""CSV source implementation (manual uploads and local files)."""

from __future__ import annotations

import csv
import io
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from lifesync.core.logging import get_logger
from lifesync.schemas.connection import Connection
from lifesync.schemas.records import LifeDomain, RawRecord, RecordProvenance
from .base import BaseSource, parse_timestamp

log = get_logger("ingestion.csv")

RESERVED_COLUMNS = ("timestamp", "domain")


class CSVSource(BaseSource):
    """Reads a CSV with a required ``timestamp`` column and an optional ``domain`` column.

    Every other column lands in the record payload; numeric cells become
    numbers and empty cells are dropped.
    """

    name = "csv"

    def __init__(
        self,
        text: str,
        owner_id: Optional[str] = None,
        source_id: str = "csv-upload",
        domain: Optional[LifeDomain] = None,
        provider: str = "CSV Upload",
    ):
        self.text = text
        self.owner_id = owner_id
        self.source_id = source_id
        self.domain = domain
        self.provider = provider
        self.skipped = 0

    @classmethod
    def from_path(cls, file_path: str, **kwargs: Any) -> "CSVSource":
        path = Path(file_path)
        if not path.exists():
            log.warning(f"CSV file not found: {path}")
            return cls("", **kwargs)
        return cls(path.read_text(encoding="utf-8"), **kwargs)

    async def fetch(
        self,
        connection: Optional[Connection] = None,
        credentials: Any = None,
        since: Optional[datetime] = None,
    ) -> List[RawRecord]:
        return self.parse(connection)

    def parse(self, connection: Optional[Connection] = None) -> List[RawRecord]:
        owner_id = connection.owner_id if connection else self.owner_id
        source_id = connection.id if connection else self.source_id

        records: List[RawRecord] = []
        self.skipped = 0
        reader = csv.DictReader(io.StringIO(self.text))
        for row in reader:
            ts = parse_timestamp(row.get("timestamp"))
            domain = self._domain(row.get("domain"))
            if not ts or domain is None:
                self.skipped += 1
                continue
            records.append(
                RawRecord(
                    owner_id=owner_id,
                    source_id=source_id,
                    domain=domain,
                    timestamp=ts,
                    payload=self._payload(row),
                    metadata=RecordProvenance(provider=self.provider, data_type="csv", source_kind="file"),
                )
            )
        if self.skipped:
            log.warning(f"Skipped {self.skipped} CSV row(s) without a usable timestamp or domain")
        log.info(f"Loaded {len(records)} records from CSV")
        return records

    def _domain(self, value: Optional[str]) -> Optional[LifeDomain]:
        if value:
            try:
                return LifeDomain(value.strip().lower())
            except ValueError:
                return None
        return self.domain

    @staticmethod
    def _payload(row: Dict[str, Optional[str]]) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        for key, value in row.items():
            if key is None or key in RESERVED_COLUMNS or value is None or value == "":
                continue
            payload[key] = _to_number(value)
        return payload


def _to_number(value: str) -> Any:
    for cast in (int, float):
        try:
            return cast(value)
        except ValueError:
            continue
    return value
