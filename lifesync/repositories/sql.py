"""SQLAlchemy adapters for the storage ports.

Each call runs in its own short transaction. Rows are converted to and from
the pydantic entities at this boundary so services never see ORM objects.
"""

from __future__ import annotations

from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session, sessionmaker

from lifesync.core.clock import as_utc
from lifesync.models import ConnectionRow, StoredSecretRow, SyncPolicyRow, SyncRunRow
from lifesync.repositories.base import (
    ConnectionRepository,
    SecretRepository,
    SyncPolicyRepository,
    SyncRunRepository,
)
from lifesync.schemas.connection import Connection, SyncCadence
from lifesync.schemas.secret import SecretMetadata, StoredSecret
from lifesync.schemas.sync import SyncPolicy, SyncRun


class _SqlRepository:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def _session(self) -> Session:
        return self._session_factory()


# -------------------------------------------------------------------------
# Connections
# -------------------------------------------------------------------------
def _connection_from_row(row: ConnectionRow) -> Connection:
    return Connection(
        id=row.id,
        owner_id=row.owner_id,
        category=row.category,
        name=row.name,
        provider=row.provider,
        status=row.status,
        credential_ref=row.credential_ref,
        sync_cadence=SyncCadence.model_validate(row.sync_cadence or {}),
        data_types=list(row.data_types or []),
        last_sync_at=as_utc(row.last_sync_at),
        next_sync_at=as_utc(row.next_sync_at),
        sync_cursor=as_utc(row.sync_cursor),
        error_message=row.error_message,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


def _apply_connection(row: ConnectionRow, connection: Connection) -> None:
    row.owner_id = connection.owner_id
    row.category = connection.category.value
    row.name = connection.name
    row.provider = connection.provider
    row.status = connection.status.value
    row.credential_ref = connection.credential_ref
    row.sync_cadence = connection.sync_cadence.model_dump(mode="json")
    row.data_types = list(connection.data_types)
    row.last_sync_at = connection.last_sync_at
    row.next_sync_at = connection.next_sync_at
    row.sync_cursor = connection.sync_cursor
    row.error_message = connection.error_message
    row.created_at = connection.created_at
    row.updated_at = connection.updated_at


class SqlConnectionRepository(_SqlRepository, ConnectionRepository):
    def get(self, connection_id: str) -> Optional[Connection]:
        with self._session() as session:
            row = session.get(ConnectionRow, connection_id)
            return _connection_from_row(row) if row else None

    def put(self, connection: Connection) -> Connection:
        with self._session() as session, session.begin():
            row = session.get(ConnectionRow, connection.id)
            if row is None:
                row = ConnectionRow(id=connection.id)
                session.add(row)
            _apply_connection(row, connection)
        return connection

    def list_for_owner(self, owner_id: str) -> List[Connection]:
        stmt = select(ConnectionRow).where(ConnectionRow.owner_id == owner_id).order_by(ConnectionRow.created_at)
        with self._session() as session:
            return [_connection_from_row(r) for r in session.execute(stmt).scalars()]

    def delete(self, connection_id: str) -> bool:
        with self._session() as session, session.begin():
            result = session.execute(delete(ConnectionRow).where(ConnectionRow.id == connection_id))
            return result.rowcount > 0


# -------------------------------------------------------------------------
# Secrets
# -------------------------------------------------------------------------
def _secret_from_row(row: StoredSecretRow) -> StoredSecret:
    return StoredSecret(
        id=row.id,
        owner_id=row.owner_id,
        provider=row.provider,
        kind=row.kind,
        encrypted_payload=row.encrypted_payload,
        key_id=row.key_id,
        algorithm=row.algorithm,
        metadata=SecretMetadata.model_validate(row.meta) if row.meta else None,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


class SqlSecretRepository(_SqlRepository, SecretRepository):
    def get(self, secret_id: str) -> Optional[StoredSecret]:
        with self._session() as session:
            row = session.get(StoredSecretRow, secret_id)
            return _secret_from_row(row) if row else None

    def put(self, secret: StoredSecret) -> StoredSecret:
        with self._session() as session, session.begin():
            row = session.get(StoredSecretRow, secret.id)
            if row is None:
                row = StoredSecretRow(id=secret.id)
                session.add(row)
            row.owner_id = secret.owner_id
            row.provider = secret.provider
            row.kind = secret.kind.value
            row.encrypted_payload = secret.encrypted_payload
            row.key_id = secret.key_id
            row.algorithm = secret.algorithm
            row.meta = secret.metadata.model_dump(mode="json") if secret.metadata else None
            row.created_at = secret.created_at
            row.updated_at = secret.updated_at
        return secret

    def list_for_owner(self, owner_id: str) -> List[StoredSecret]:
        stmt = select(StoredSecretRow).where(StoredSecretRow.owner_id == owner_id).order_by(StoredSecretRow.created_at)
        with self._session() as session:
            return [_secret_from_row(r) for r in session.execute(stmt).scalars()]

    def delete(self, secret_id: str) -> bool:
        with self._session() as session, session.begin():
            result = session.execute(delete(StoredSecretRow).where(StoredSecretRow.id == secret_id))
            return result.rowcount > 0


# -------------------------------------------------------------------------
# Sync policies and runs
# -------------------------------------------------------------------------
def _policy_from_row(row: SyncPolicyRow) -> SyncPolicy:
    return SyncPolicy(
        connection_id=row.connection_id,
        cadence=row.cadence,
        next_run=as_utc(row.next_run),
        last_run=as_utc(row.last_run),
        active=row.active,
        failure_count=row.failure_count,
        max_failures=row.max_failures,
    )


class SqlSyncPolicyRepository(_SqlRepository, SyncPolicyRepository):
    def get(self, connection_id: str) -> Optional[SyncPolicy]:
        with self._session() as session:
            row = session.get(SyncPolicyRow, connection_id)
            return _policy_from_row(row) if row else None

    def put(self, policy: SyncPolicy) -> SyncPolicy:
        with self._session() as session, session.begin():
            row = session.get(SyncPolicyRow, policy.connection_id)
            if row is None:
                row = SyncPolicyRow(connection_id=policy.connection_id)
                session.add(row)
            row.cadence = policy.cadence.value
            row.next_run = policy.next_run
            row.last_run = policy.last_run
            row.active = policy.active
            row.failure_count = policy.failure_count
            row.max_failures = policy.max_failures
        return policy

    def list_all(self) -> List[SyncPolicy]:
        with self._session() as session:
            return [_policy_from_row(r) for r in session.execute(select(SyncPolicyRow)).scalars()]

    def delete(self, connection_id: str) -> bool:
        with self._session() as session, session.begin():
            result = session.execute(delete(SyncPolicyRow).where(SyncPolicyRow.connection_id == connection_id))
            return result.rowcount > 0


def _run_from_row(row: SyncRunRow) -> SyncRun:
    return SyncRun(
        id=row.id,
        connection_id=row.connection_id,
        status=row.status,
        records_processed=row.records_processed,
        records_created=row.records_created,
        error_message=row.error_message,
        started_at=as_utc(row.started_at),
        ended_at=as_utc(row.ended_at),
    )


class SqlSyncRunRepository(_SqlRepository, SyncRunRepository):
    def put(self, run: SyncRun) -> SyncRun:
        with self._session() as session, session.begin():
            row = session.get(SyncRunRow, run.id)
            if row is None:
                row = SyncRunRow(id=run.id, connection_id=run.connection_id)
                session.add(row)
            row.status = run.status
            row.records_processed = run.records_processed
            row.records_created = run.records_created
            row.error_message = run.error_message
            row.started_at = run.started_at
            row.ended_at = run.ended_at
        return run

    def list(
        self,
        connection_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 10,
    ) -> List[SyncRun]:
        stmt = select(SyncRunRow)
        if connection_id:
            stmt = stmt.where(SyncRunRow.connection_id == connection_id)
        if status:
            stmt = stmt.where(SyncRunRow.status == status)
        stmt = stmt.order_by(SyncRunRow.started_at.desc()).limit(limit)
        with self._session() as session:
            return [_run_from_row(r) for r in session.execute(stmt).scalars()]
