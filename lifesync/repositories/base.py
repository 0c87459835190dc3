"""Storage ports.

Business logic only talks to these interfaces, so the in-process adapters
can be swapped for a durable engine without touching the services.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, List, Mapping, Optional, Sequence

from lifesync.schemas.connection import Connection
from lifesync.schemas.records import DataStats, LifeDomain, NormalizedRecord, RecordQuery
from lifesync.schemas.secret import StoredSecret
from lifesync.schemas.sync import SyncPolicy, SyncRun


class ConnectionRepository(ABC):
    @abstractmethod
    def get(self, connection_id: str) -> Optional[Connection]:
        ...

    @abstractmethod
    def put(self, connection: Connection) -> Connection:
        ...

    @abstractmethod
    def list_for_owner(self, owner_id: str) -> List[Connection]:
        ...

    @abstractmethod
    def delete(self, connection_id: str) -> bool:
        ...


class SecretRepository(ABC):
    @abstractmethod
    def get(self, secret_id: str) -> Optional[StoredSecret]:
        ...

    @abstractmethod
    def put(self, secret: StoredSecret) -> StoredSecret:
        ...

    @abstractmethod
    def list_for_owner(self, owner_id: str) -> List[StoredSecret]:
        ...

    @abstractmethod
    def delete(self, secret_id: str) -> bool:
        ...


class SyncPolicyRepository(ABC):
    @abstractmethod
    def get(self, connection_id: str) -> Optional[SyncPolicy]:
        ...

    @abstractmethod
    def put(self, policy: SyncPolicy) -> SyncPolicy:
        ...

    @abstractmethod
    def list_all(self) -> List[SyncPolicy]:
        ...

    @abstractmethod
    def delete(self, connection_id: str) -> bool:
        ...


class SyncRunRepository(ABC):
    @abstractmethod
    def put(self, run: SyncRun) -> SyncRun:
        ...

    @abstractmethod
    def list(
        self,
        connection_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 10,
    ) -> List[SyncRun]:
        """Most recent runs first."""


class RecordStore(ABC):
    """Read/write surface over normalized records."""

    @abstractmethod
    def store(self, record: NormalizedRecord) -> NormalizedRecord:
        ...

    @abstractmethod
    def get(self, record_id: str, owner_id: Optional[str] = None) -> Optional[NormalizedRecord]:
        ...

    @abstractmethod
    def update(self, record_id: str, owner_id: str, changes: Mapping[str, Any]) -> Optional[NormalizedRecord]:
        ...

    @abstractmethod
    def delete(self, record_id: str, owner_id: Optional[str] = None) -> bool:
        ...

    @abstractmethod
    def query(self, owner_id: str, query: RecordQuery) -> List[NormalizedRecord]:
        ...

    @abstractmethod
    def get_data_stats(self, owner_id: str) -> DataStats:
        ...

    @abstractmethod
    def search_data(
        self,
        owner_id: str,
        term: str,
        domains: Optional[Sequence[LifeDomain]] = None,
        limit: Optional[int] = None,
    ) -> List[NormalizedRecord]:
        ...
