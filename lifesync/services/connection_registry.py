"""Connection Registry - owns Connection records and their lifecycle."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, FrozenSet, Iterable, List, Optional

from lifesync.core.clock import Clock, utcnow
from lifesync.core.errors import ConnectionNotFoundError, ConnectionStateError
from lifesync.core.logging import get_logger
from lifesync.repositories.base import ConnectionRepository
from lifesync.schemas.connection import Connection, ConnectionCategory, ConnectionStatus, SyncCadence

log = get_logger("connection_registry")

S = ConnectionStatus

# disconnected is terminal and nothing re-enters pending
_ALLOWED: Dict[ConnectionStatus, FrozenSet[ConnectionStatus]] = {
    S.PENDING: frozenset({S.CONNECTED, S.ERROR, S.DISCONNECTED}),
    S.CONNECTED: frozenset({S.CONNECTED, S.ERROR, S.DISCONNECTED}),
    S.ERROR: frozenset({S.CONNECTED, S.ERROR, S.DISCONNECTED}),
    S.DISCONNECTED: frozenset(),
}


class ConnectionRegistry:
    def __init__(self, repository: ConnectionRepository, clock: Clock = utcnow):
        self.repository = repository
        self.clock = clock

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------
    def get(self, connection_id: str, owner_id: Optional[str] = None) -> Optional[Connection]:
        """Fetch a connection; with ``owner_id`` a foreign connection reads as missing."""
        connection = self.repository.get(connection_id)
        if connection is None:
            return None
        if owner_id is not None and connection.owner_id != owner_id:
            return None
        return connection

    def require(self, connection_id: str, owner_id: Optional[str] = None) -> Connection:
        connection = self.get(connection_id, owner_id)
        if connection is None:
            raise ConnectionNotFoundError(connection_id)
        return connection

    def list(self, owner_id: str) -> List[Connection]:
        return self.repository.list_for_owner(owner_id)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------
    def create_pending(
        self,
        owner_id: str,
        provider: str,
        category: ConnectionCategory,
        name: str,
        data_types: Iterable[str] = (),
        sync_cadence: Optional[SyncCadence] = None,
    ) -> Connection:
        now = self.clock()
        connection = Connection(
            owner_id=owner_id,
            category=category,
            name=name,
            provider=provider,
            status=S.PENDING,
            data_types=list(data_types),
            sync_cadence=sync_cadence or SyncCadence(),
            created_at=now,
            updated_at=now,
        )
        self.repository.put(connection)
        log.info(f"Created pending connection id={connection.id} owner={owner_id} provider={provider}")
        return connection

    def mark_connected(self, connection_id: str, credential_ref: str) -> Connection:
        if not credential_ref:
            raise ConnectionStateError("A connected connection requires a credential reference")
        connection = self._transition(connection_id, S.CONNECTED)
        connection.credential_ref = credential_ref
        connection.error_message = None
        return self._save(connection)

    def mark_error(self, connection_id: str, message: str) -> Connection:
        connection = self._transition(connection_id, S.ERROR)
        connection.error_message = message
        log.warning(f"Connection id={connection_id} moved to error: {message}")
        return self._save(connection)

    def mark_synced(self, connection_id: str, synced_at: datetime, cursor: Optional[datetime] = None) -> Connection:
        """Record a successful sync; an errored connection recovers to connected.

        ``cursor`` only ever moves forward.
        """
        connection = self._transition(connection_id, S.CONNECTED)
        connection.last_sync_at = synced_at
        if cursor is not None and (connection.sync_cursor is None or cursor > connection.sync_cursor):
            connection.sync_cursor = cursor
        connection.error_message = None
        return self._save(connection)

    def set_next_sync(self, connection_id: str, next_sync_at: Optional[datetime]) -> Optional[Connection]:
        connection = self.repository.get(connection_id)
        if connection is None:
            return None
        connection.next_sync_at = next_sync_at
        return self._save(connection)

    def disconnect(self, connection_id: str) -> Connection:
        connection = self.require(connection_id)
        if connection.status == S.DISCONNECTED:
            return connection
        connection = self._transition(connection_id, S.DISCONNECTED, connection)
        connection.next_sync_at = None
        log.info(f"Disconnected connection id={connection_id}")
        return self._save(connection)

    def delete(self, connection_id: str) -> bool:
        deleted = self.repository.delete(connection_id)
        if deleted:
            log.info(f"Deleted connection id={connection_id}")
        return deleted

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------
    def _transition(
        self,
        connection_id: str,
        target: ConnectionStatus,
        connection: Optional[Connection] = None,
    ) -> Connection:
        connection = connection or self.require(connection_id)
        if target not in _ALLOWED[connection.status]:
            raise ConnectionStateError(
                f"Illegal transition for connection {connection_id}: {connection.status.value} -> {target.value}"
            )
        connection.status = target
        return connection

    def _save(self, connection: Connection) -> Connection:
        connection.updated_at = self.clock()
        return self.repository.put(connection)
