"""Indexed record store tests: AND queries, index maintenance and rollback"""

from datetime import timedelta

import pytest

from lifesync.core.errors import IndexConsistencyError, ValidationError
from lifesync.schemas.records import (
    Categorization,
    DateRange,
    LifeDomain,
    NormalizedRecord,
    ProcessingMetadata,
    RecordQuery,
    SourceDescriptor,
)
from lifesync.services.record_store import IndexedRecordStore
from lifesync.tests.conftest import NOW


def make_record(record_id, owner_id="user-1", domain=LifeDomain.FINANCIAL, hours_ago=0, tags=(), payload=None):
    return NormalizedRecord(
        id=record_id,
        owner_id=owner_id,
        domain=domain,
        timestamp=NOW - timedelta(hours=hours_ago),
        payload=payload if payload is not None else {"amount": -10},
        source=SourceDescriptor(id="src-1", name="Test"),
        confidence=0.9,
        tags=list(tags),
        processing_metadata=ProcessingMetadata(
            processed_at=NOW,
            pipeline_version="1.0.0",
            validation_score=1.0,
            categorization=Categorization(primary="financial", confidence=0.9),
        ),
    )


@pytest.fixture
def store():
    store = IndexedRecordStore()
    store.store(make_record("r1", hours_ago=1, tags=["expense", "negative"], payload={"amount": -25, "memo": "Coffee"}))
    store.store(make_record("r2", hours_ago=2, tags=["expense"], payload={"amount": -80, "memo": "Groceries"}))
    store.store(make_record("r3", hours_ago=30, tags=["income"], payload={"amount": 2000}))
    store.store(make_record("r4", domain=LifeDomain.HEALTH, hours_ago=3, tags=["activity"], payload={"steps": 9000}))
    store.store(make_record("other", owner_id="user-2", tags=["expense", "negative"]))
    return store


def ids(records):
    return [r.id for r in records]


class TestQuery:
    def test_tags_are_anded(self, store):
        assert ids(store.query("user-1", RecordQuery(tags=["expense", "negative"]))) == ["r1"]
        assert ids(store.query("user-1", RecordQuery(tags=["expense"]))) == ["r1", "r2"]
        assert store.query("user-1", RecordQuery(tags=["expense", "income"])) == []

    def test_domain_filter(self, store):
        assert ids(store.query("user-1", RecordQuery(domain=LifeDomain.HEALTH))) == ["r4"]
        assert ids(store.query("user-1", RecordQuery(domain=LifeDomain.FINANCIAL, tags=["income"]))) == ["r3"]

    def test_date_range_inclusive(self, store):
        window = DateRange(start=NOW - timedelta(hours=2), end=NOW - timedelta(hours=1))
        assert ids(store.query("user-1", RecordQuery(date_range=window))) == ["r1", "r2"]

    def test_newest_first_and_paginated(self, store):
        assert ids(store.query("user-1")) == ["r1", "r2", "r4", "r3"]
        assert ids(store.query("user-1", RecordQuery(limit=2, offset=1))) == ["r2", "r4"]

    def test_owner_isolation(self, store):
        assert ids(store.query("user-2")) == ["other"]
        assert store.get("other", "user-1") is None
        assert store.delete("other", "user-1") is False
        assert store.query("nobody") == []

    def test_returned_records_are_copies(self, store):
        record = store.get("r1", "user-1")
        record.tags.append("mutated")
        assert "mutated" not in store.get("r1", "user-1").tags


class TestWrites:
    def test_delete_cleans_every_index(self, store):
        assert store.delete("r3", "user-1") is True
        assert store.query("user-1", RecordQuery(tags=["income"])) == []
        assert store.get("r3") is None
        assert store.get_data_stats("user-1").total_records == 3
        assert store.verify_integrity() == []

    def test_update_reindexes_tags_and_domain(self, store):
        updated = store.update("r2", "user-1", {"tags": ["refund"], "domain": LifeDomain.PERSONAL})

        assert updated.tags == ["refund"]
        assert "r2" not in ids(store.query("user-1", RecordQuery(tags=["expense"])))
        assert ids(store.query("user-1", RecordQuery(tags=["refund"], domain=LifeDomain.PERSONAL))) == ["r2"]
        assert store.verify_integrity() == []

    def test_update_moves_day_bucket(self, store):
        store.update("r1", "user-1", {"timestamp": NOW - timedelta(days=3)})
        stats = store.get_data_stats("user-1")
        assert (NOW - timedelta(days=3)).strftime("%Y-%m-%d") in stats.records_by_day
        assert store.verify_integrity() == []

    def test_update_rejects_fixed_fields(self, store):
        with pytest.raises(ValidationError):
            store.update("r1", "user-1", {"owner_id": "user-2"})
        with pytest.raises(ValidationError):
            store.update("r1", "user-1", {"confidence": 5})
        assert store.update("r1", "user-2", {"tags": []}) is None

    def test_failed_insert_rolls_back(self, store, monkeypatch):
        original = store._index_add

        def failing(index, key, record_id):
            if key == ("user-1", "boom"):
                raise RuntimeError("index write failed")
            original(index, key, record_id)

        monkeypatch.setattr(store, "_index_add", failing)

        with pytest.raises(IndexConsistencyError):
            store.store(make_record("r5", tags=["expense", "boom"]))

        assert store.get("r5") is None
        assert "r5" not in ids(store.query("user-1", RecordQuery(tags=["expense"])))
        assert store.verify_integrity() == []

    def test_failed_update_keeps_previous_version(self, store, monkeypatch):
        original = store._index_add

        def failing(index, key, record_id):
            if key == ("user-1", "boom"):
                raise RuntimeError("index write failed")
            original(index, key, record_id)

        monkeypatch.setattr(store, "_index_add", failing)

        with pytest.raises(IndexConsistencyError):
            store.update("r1", "user-1", {"tags": ["boom"]})

        assert store.get("r1").tags == ["expense", "negative"]
        assert ids(store.query("user-1", RecordQuery(tags=["negative"]))) == ["r1"]
        assert store.verify_integrity() == []


class TestStatsAndSearch:
    def test_data_stats(self, store):
        stats = store.get_data_stats("user-1")
        assert stats.total_records == 4
        assert stats.records_by_domain == {"financial": 3, "health": 1}
        assert stats.records_by_tag["expense"] == 2
        assert stats.date_range.start == NOW - timedelta(hours=30)
        assert stats.date_range.end == NOW - timedelta(hours=1)

    def test_empty_stats(self, store):
        stats = store.get_data_stats("nobody")
        assert stats.total_records == 0
        assert stats.date_range is None

    def test_search_payload_and_tags(self, store):
        assert ids(store.search_data("user-1", "coffee")) == ["r1"]
        assert ids(store.search_data("user-1", "INCOME")) == ["r3"]
        assert ids(store.search_data("user-1", "expense", limit=1)) == ["r1"]

    def test_search_domain_restriction(self, store):
        assert ids(store.search_data("user-1", "9000", domains=[LifeDomain.HEALTH])) == ["r4"]
        assert store.search_data("user-1", "9000", domains=[LifeDomain.FINANCIAL]) == []
