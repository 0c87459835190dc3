"""In-process adapters for the storage ports.

Every read and write goes through a deep copy so callers can never mutate
stored state behind the repository's back.
"""

from __future__ import annotations

import threading
from typing import Dict, List, Optional

from lifesync.repositories.base import (
    ConnectionRepository,
    SecretRepository,
    SyncPolicyRepository,
    SyncRunRepository,
)
from lifesync.schemas.connection import Connection
from lifesync.schemas.secret import StoredSecret
from lifesync.schemas.sync import SyncPolicy, SyncRun


class InMemoryConnectionRepository(ConnectionRepository):
    def __init__(self):
        self._rows: Dict[str, Connection] = {}
        self._lock = threading.Lock()

    def get(self, connection_id: str) -> Optional[Connection]:
        with self._lock:
            row = self._rows.get(connection_id)
            return row.model_copy(deep=True) if row else None

    def put(self, connection: Connection) -> Connection:
        with self._lock:
            self._rows[connection.id] = connection.model_copy(deep=True)
        return connection

    def list_for_owner(self, owner_id: str) -> List[Connection]:
        with self._lock:
            return [c.model_copy(deep=True) for c in self._rows.values() if c.owner_id == owner_id]

    def delete(self, connection_id: str) -> bool:
        with self._lock:
            return self._rows.pop(connection_id, None) is not None


class InMemorySecretRepository(SecretRepository):
    def __init__(self):
        self._rows: Dict[str, StoredSecret] = {}
        self._lock = threading.Lock()

    def get(self, secret_id: str) -> Optional[StoredSecret]:
        with self._lock:
            row = self._rows.get(secret_id)
            return row.model_copy(deep=True) if row else None

    def put(self, secret: StoredSecret) -> StoredSecret:
        with self._lock:
            self._rows[secret.id] = secret.model_copy(deep=True)
        return secret

    def list_for_owner(self, owner_id: str) -> List[StoredSecret]:
        with self._lock:
            return [s.model_copy(deep=True) for s in self._rows.values() if s.owner_id == owner_id]

    def delete(self, secret_id: str) -> bool:
        with self._lock:
            return self._rows.pop(secret_id, None) is not None


class InMemorySyncPolicyRepository(SyncPolicyRepository):
    def __init__(self):
        self._rows: Dict[str, SyncPolicy] = {}
        self._lock = threading.Lock()

    def get(self, connection_id: str) -> Optional[SyncPolicy]:
        with self._lock:
            row = self._rows.get(connection_id)
            return row.model_copy(deep=True) if row else None

    def put(self, policy: SyncPolicy) -> SyncPolicy:
        with self._lock:
            self._rows[policy.connection_id] = policy.model_copy(deep=True)
        return policy

    def list_all(self) -> List[SyncPolicy]:
        with self._lock:
            return [p.model_copy(deep=True) for p in self._rows.values()]

    def delete(self, connection_id: str) -> bool:
        with self._lock:
            return self._rows.pop(connection_id, None) is not None


class InMemorySyncRunRepository(SyncRunRepository):
    def __init__(self, max_runs: int = 1000):
        self._rows: Dict[str, SyncRun] = {}
        self._max_runs = max_runs
        self._lock = threading.Lock()

    def put(self, run: SyncRun) -> SyncRun:
        with self._lock:
            self._rows[run.id] = run.model_copy(deep=True)
            if len(self._rows) > self._max_runs:
                oldest = min(self._rows.values(), key=lambda r: r.started_at)
                del self._rows[oldest.id]
        return run

    def list(
        self,
        connection_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 10,
    ) -> List[SyncRun]:
        with self._lock:
            runs = list(self._rows.values())
        if connection_id:
            runs = [r for r in runs if r.connection_id == connection_id]
        if status:
            runs = [r for r in runs if r.status == status]
        runs.sort(key=lambda r: r.started_at, reverse=True)
        return [r.model_copy(deep=True) for r in runs[:limit]]
