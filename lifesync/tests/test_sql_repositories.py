"""SQL storage adapter tests against in-memory SQLite"""

from datetime import timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from lifesync.core.config import Settings
from lifesync.models import Base
from lifesync.repositories.sql import (
    SqlConnectionRepository,
    SqlSecretRepository,
    SqlSyncPolicyRepository,
    SqlSyncRunRepository,
)
from lifesync.schemas.connection import Cadence, Connection, ConnectionCategory, ConnectionStatus, SyncCadence
from lifesync.schemas.secret import CredentialKind, SecretMetadata, StoredSecret
from lifesync.schemas.sync import SyncPolicy, SyncRun
from lifesync.services.ingestion_service import build_ingestion_service
from lifesync.tests.conftest import NOW, TEST_KEY, make_providers


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    engine.dispose()


class TestSqlConnections:
    def test_round_trip(self, session_factory):
        repo = SqlConnectionRepository(session_factory)
        connection = Connection(
            owner_id="user-1",
            category=ConnectionCategory.HEALTH,
            name="Acme Health",
            provider="acme_health",
            sync_cadence=SyncCadence(frequency=Cadence.HOURLY),
            data_types=["activity"],
            next_sync_at=NOW,
            created_at=NOW,
            updated_at=NOW,
        )
        repo.put(connection)

        loaded = repo.get(connection.id)
        assert loaded.status == ConnectionStatus.PENDING
        assert loaded.sync_cadence.frequency == Cadence.HOURLY
        assert loaded.data_types == ["activity"]
        assert loaded.next_sync_at == NOW

        loaded.status = ConnectionStatus.CONNECTED
        loaded.credential_ref = "secret-1"
        repo.put(loaded)
        assert repo.get(connection.id).credential_ref == "secret-1"
        assert [c.id for c in repo.list_for_owner("user-1")] == [connection.id]
        assert repo.list_for_owner("user-2") == []

        assert repo.delete(connection.id) is True
        assert repo.delete(connection.id) is False
        assert repo.get(connection.id) is None


class TestSqlSecrets:
    def test_round_trip(self, session_factory):
        repo = SqlSecretRepository(session_factory)
        secret = StoredSecret(
            owner_id="user-1",
            provider="acme_bank",
            kind=CredentialKind.API_KEY,
            encrypted_payload="ciphertext",
            key_id="k1",
            algorithm="fernet",
            metadata=SecretMetadata(scopes=["read"], expires_at=NOW + timedelta(days=1)),
            created_at=NOW,
            updated_at=NOW,
        )
        repo.put(secret)

        loaded = repo.get(secret.id)
        assert loaded.kind == CredentialKind.API_KEY
        assert loaded.metadata.scopes == ["read"]
        assert loaded.metadata.expires_at == NOW + timedelta(days=1)
        assert [s.id for s in repo.list_for_owner("user-1")] == [secret.id]
        assert repo.delete(secret.id) is True
        assert repo.get(secret.id) is None


class TestSqlPoliciesAndRuns:
    def test_policy_round_trip(self, session_factory):
        repo = SqlSyncPolicyRepository(session_factory)
        repo.put(SyncPolicy(connection_id="c1", cadence=Cadence.WEEKLY, next_run=NOW, failure_count=2))

        loaded = repo.get("c1")
        assert loaded.cadence == Cadence.WEEKLY
        assert loaded.next_run == NOW
        assert loaded.failure_count == 2
        assert loaded.active is True

        loaded.active = False
        repo.put(loaded)
        assert repo.list_all()[0].active is False
        assert repo.delete("c1") is True

    def test_runs_filtered_newest_first(self, session_factory):
        repo = SqlSyncRunRepository(session_factory)
        repo.put(SyncRun(id="old", connection_id="c1", status="failure", started_at=NOW - timedelta(hours=2)))
        repo.put(SyncRun(id="new", connection_id="c1", status="success", started_at=NOW))
        repo.put(SyncRun(id="other", connection_id="c2", status="success", started_at=NOW - timedelta(hours=1)))

        assert [r.id for r in repo.list(limit=10)] == ["new", "other", "old"]
        assert [r.id for r in repo.list(connection_id="c1")] == ["new", "old"]
        assert [r.id for r in repo.list(status="failure")] == ["old"]
        assert [r.id for r in repo.list(limit=1)] == ["new"]


class TestSqlBackedService:
    @pytest.mark.asyncio
    async def test_credential_connection_persists(self, session_factory, clock):
        config = Settings(STORAGE_BACKEND="sql", ENCRYPTION_KEY=TEST_KEY, LOG_TO_FILE=False)
        service = build_ingestion_service(
            config=config, providers=make_providers(), clock=clock, session_factory=session_factory
        )

        result = await service.connect_with_credentials("user-1", "acme_bank", "api_key", {"api_key": "k"})
        assert result.success is True

        # a second service over the same tables sees the same state
        other = build_ingestion_service(
            config=config, providers=make_providers(), clock=clock, session_factory=session_factory
        )
        connection = other.get_connection(result.connection_id, "user-1")
        assert connection.status == ConnectionStatus.CONNECTED
        assert other.secret_store.retrieve(connection.credential_ref, "user-1").api_key == "k"
        assert other.scheduler.get_policy(result.connection_id).next_run == clock() + timedelta(hours=1)

        sync = await other.trigger_sync(result.connection_id)
        assert sync.success is True
        assert other.list_runs(connection_id=result.connection_id)[0].status == "success"
