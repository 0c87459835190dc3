"""Connection lifecycle tests"""

from datetime import timedelta

import pytest

from lifesync.core.errors import ConnectionNotFoundError, ConnectionStateError
from lifesync.repositories.memory import InMemoryConnectionRepository
from lifesync.schemas.connection import Cadence, ConnectionCategory, ConnectionStatus, SyncCadence
from lifesync.services.connection_registry import ConnectionRegistry


@pytest.fixture
def registry(clock):
    return ConnectionRegistry(InMemoryConnectionRepository(), clock=clock)


@pytest.fixture
def pending(registry):
    return registry.create_pending("user-1", "acme_bank", ConnectionCategory.FINANCIAL, "Acme Bank", ["transactions"])


class TestConnectionLifecycle:
    def test_created_pending(self, pending, clock):
        assert pending.status == ConnectionStatus.PENDING
        assert pending.credential_ref is None
        assert pending.created_at == clock()
        assert pending.sync_cadence.frequency == Cadence.DAILY

    def test_connected_requires_credential_ref(self, registry, pending):
        with pytest.raises(ConnectionStateError):
            registry.mark_connected(pending.id, "")
        assert registry.get(pending.id).status == ConnectionStatus.PENDING

    def test_connect_error_recover(self, registry, pending, clock):
        registry.mark_connected(pending.id, "secret-1")
        errored = registry.mark_error(pending.id, "HTTP 500")
        assert errored.status == ConnectionStatus.ERROR
        assert errored.error_message == "HTTP 500"

        synced = registry.mark_synced(pending.id, clock())
        assert synced.status == ConnectionStatus.CONNECTED
        assert synced.error_message is None
        assert synced.last_sync_at == clock()

    def test_sync_cursor_only_moves_forward(self, registry, pending, clock):
        registry.mark_connected(pending.id, "secret-1")
        newest = clock() - timedelta(hours=2)

        assert registry.mark_synced(pending.id, clock(), cursor=newest).sync_cursor == newest
        assert registry.mark_synced(pending.id, clock(), cursor=newest - timedelta(days=1)).sync_cursor == newest
        assert registry.mark_synced(pending.id, clock()).sync_cursor == newest

    def test_disconnected_is_terminal(self, registry, pending):
        registry.mark_connected(pending.id, "secret-1")
        registry.set_next_sync(pending.id, registry.clock())
        disconnected = registry.disconnect(pending.id)
        assert disconnected.status == ConnectionStatus.DISCONNECTED
        assert disconnected.next_sync_at is None

        with pytest.raises(ConnectionStateError):
            registry.mark_connected(pending.id, "secret-1")
        with pytest.raises(ConnectionStateError):
            registry.mark_error(pending.id, "boom")

        # idempotent
        assert registry.disconnect(pending.id).status == ConnectionStatus.DISCONNECTED

    def test_custom_cadence_kept(self, registry):
        connection = registry.create_pending(
            "user-1", "acme_bank", ConnectionCategory.FINANCIAL, "Bank", sync_cadence=SyncCadence(frequency=Cadence.HOURLY)
        )
        assert registry.get(connection.id).sync_cadence.frequency == Cadence.HOURLY


class TestConnectionLookup:
    def test_owner_scoping(self, registry, pending):
        assert registry.get(pending.id, "user-1") is not None
        assert registry.get(pending.id, "user-2") is None
        with pytest.raises(ConnectionNotFoundError):
            registry.require(pending.id, "user-2")

    def test_list_by_owner(self, registry, pending):
        registry.create_pending("user-2", "acme_bank", ConnectionCategory.FINANCIAL, "Other")
        assert [c.id for c in registry.list("user-1")] == [pending.id]
        assert len(registry.list("user-2")) == 1

    def test_delete(self, registry, pending):
        assert registry.delete(pending.id) is True
        assert registry.delete(pending.id) is False
        assert registry.get(pending.id) is None
