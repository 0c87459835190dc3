"""Indexed Record Store - normalized records plus four secondary indexes.

Indexes: owner, (owner, domain), (owner, tag), (owner, day). Every write
applies the primary table change and all index changes as one unit under
a lock; if any step fails the completed steps are undone and
``IndexConsistencyError`` is raised.
"""

from __future__ import annotations

import json
import threading
from collections import Counter, defaultdict
from functools import partial
from typing import Any, Callable, DefaultDict, Dict, Hashable, List, Mapping, Optional, Sequence, Set, Tuple

from pydantic import ValidationError as PydanticValidationError

from lifesync.core.errors import IndexConsistencyError, ValidationError
from lifesync.core.logging import get_logger
from lifesync.repositories.base import RecordStore
from lifesync.schemas.records import DataStats, DateRange, LifeDomain, NormalizedRecord, RecordQuery

log = get_logger("record_store")

Index = DefaultDict[Hashable, Set[str]]

# Fields a caller may change through update(); id and owner are fixed.
UPDATABLE_FIELDS = frozenset({"domain", "timestamp", "payload", "tags", "confidence", "source"})


def day_key(record: NormalizedRecord) -> str:
    return record.timestamp.strftime("%Y-%m-%d")


class IndexedRecordStore(RecordStore):
    def __init__(self):
        self._records: Dict[str, NormalizedRecord] = {}
        self._by_owner: Index = defaultdict(set)
        self._by_domain: Index = defaultdict(set)
        self._by_tag: Index = defaultdict(set)
        self._by_day: Index = defaultdict(set)
        self._lock = threading.RLock()

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------
    def store(self, record: NormalizedRecord) -> NormalizedRecord:
        record = record.model_copy(deep=True)
        with self._lock:
            previous = self._records.get(record.id)
            self._commit(remove=previous, add=record)
        return record.model_copy(deep=True)

    def update(self, record_id: str, owner_id: str, changes: Mapping[str, Any]) -> Optional[NormalizedRecord]:
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

        with self._lock:
            current = self._owned(record_id, owner_id)
            if current is None:
                return None
            try:
                updated = NormalizedRecord.model_validate({**current.model_dump(), **changes})
            except PydanticValidationError as exc:
                raise ValidationError("Invalid record update", [e["msg"] for e in exc.errors()]) from exc
            self._commit(remove=current, add=updated)
        log.debug(f"Updated record id={record_id}")
        return updated.model_copy(deep=True)

    def delete(self, record_id: str, owner_id: Optional[str] = None) -> bool:
        with self._lock:
            current = self._owned(record_id, owner_id)
            if current is None:
                return False
            self._commit(remove=current, add=None)
        log.debug(f"Deleted record id={record_id}")
        return True

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------
    def get(self, record_id: str, owner_id: Optional[str] = None) -> Optional[NormalizedRecord]:
        with self._lock:
            record = self._owned(record_id, owner_id)
            return record.model_copy(deep=True) if record else None

    def query(self, owner_id: str, query: Optional[RecordQuery] = None) -> List[NormalizedRecord]:
        query = query or RecordQuery()
        with self._lock:
            ids = set(self._by_owner.get(owner_id, ()))
            if query.domain is not None:
                ids &= self._by_domain.get((owner_id, query.domain.value), set())
            for tag in query.tags:
                ids &= self._by_tag.get((owner_id, tag), set())
            records = [self._records[i] for i in ids]

        if query.date_range is not None:
            start, end = query.date_range.start, query.date_range.end
            records = [r for r in records if start <= r.timestamp <= end]

        records.sort(key=lambda r: (r.timestamp, r.id), reverse=True)
        page = records[query.offset : query.offset + query.limit]
        return [r.model_copy(deep=True) for r in page]

    def get_data_stats(self, owner_id: str) -> DataStats:
        with self._lock:
            records = [self._records[i] for i in self._by_owner.get(owner_id, ())]

        if not records:
            return DataStats()

        by_tag: Counter = Counter()
        for record in records:
            by_tag.update(record.tags)
        timestamps = [r.timestamp for r in records]
        return DataStats(
            total_records=len(records),
            records_by_domain=dict(Counter(r.domain.value for r in records)),
            records_by_tag=dict(by_tag),
            records_by_day=dict(Counter(day_key(r) for r in records)),
            date_range=DateRange(start=min(timestamps), end=max(timestamps)),
        )

    def search_data(
        self,
        owner_id: str,
        term: str,
        domains: Optional[Sequence[LifeDomain]] = None,
        limit: Optional[int] = None,
    ) -> List[NormalizedRecord]:
        needle = term.lower()
        wanted = {LifeDomain(d).value for d in domains} if domains else None

        with self._lock:
            records = [self._records[i] for i in self._by_owner.get(owner_id, ())]

        matches = []
        for record in records:
            if wanted is not None and record.domain.value not in wanted:
                continue
            in_tags = any(needle in tag.lower() for tag in record.tags)
            if in_tags or needle in json.dumps(record.payload, default=str).lower():
                matches.append(record)

        matches.sort(key=lambda r: (r.timestamp, r.id), reverse=True)
        if limit is not None:
            matches = matches[:limit]
        return [r.model_copy(deep=True) for r in matches]

    def count(self) -> int:
        with self._lock:
            return len(self._records)

    def verify_integrity(self) -> List[str]:
        """Cross-check every index against the primary table. Empty means consistent."""
        problems: List[str] = []
        with self._lock:
            expected: Dict[Tuple[int, Hashable], Set[str]] = defaultdict(set)
            for record in self._records.values():
                for index, key in self._index_entries(record):
                    expected[(id(index), key)].add(record.id)

            for index in (self._by_owner, self._by_domain, self._by_tag, self._by_day):
                for key, ids in index.items():
                    want = expected.pop((id(index), key), set())
                    if ids != want:
                        problems.append(f"index entry {key!r} holds {sorted(ids)} expected {sorted(want)}")
            for (_, key), ids in expected.items():
                problems.append(f"index entry {key!r} missing for {sorted(ids)}")
        return problems

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------
    def _owned(self, record_id: str, owner_id: Optional[str]) -> Optional[NormalizedRecord]:
        record = self._records.get(record_id)
        if record is None or (owner_id is not None and record.owner_id != owner_id):
            return None
        return record

    def _index_entries(self, record: NormalizedRecord) -> List[Tuple[Index, Hashable]]:
        owner = record.owner_id
        entries: List[Tuple[Index, Hashable]] = [
            (self._by_owner, owner),
            (self._by_domain, (owner, record.domain.value)),
            (self._by_day, (owner, day_key(record))),
        ]
        entries.extend((self._by_tag, (owner, tag)) for tag in record.tags)
        return entries

    def _commit(self, remove: Optional[NormalizedRecord], add: Optional[NormalizedRecord]) -> None:
        undo: List[Callable[[], None]] = []
        try:
            if remove is not None:
                for index, key in self._index_entries(remove):
                    self._index_discard(index, key, remove.id)
                    undo.append(partial(self._index_add, index, key, remove.id))
                del self._records[remove.id]
                undo.append(partial(self._records.__setitem__, remove.id, remove))

            if add is not None:
                self._records[add.id] = add
                undo.append(partial(self._records.pop, add.id, None))
                for index, key in self._index_entries(add):
                    self._index_add(index, key, add.id)
                    undo.append(partial(self._index_discard, index, key, add.id))
        except Exception as exc:
            for step in reversed(undo):
                step()
            record_id = (add or remove).id
            log.error(f"Index update failed for record id={record_id}; rolled back: {exc}")
            raise IndexConsistencyError(f"Index update failed for record {record_id}") from exc

    def _index_add(self, index: Index, key: Hashable, record_id: str) -> None:
        index[key].add(record_id)

    def _index_discard(self, index: Index, key: Hashable, record_id: str) -> None:
        ids = index.get(key)
        if ids is None:
            return
        ids.discard(record_id)
        if not ids:
            del index[key]
