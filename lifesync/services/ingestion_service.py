"""Ingestion Service - composition root for connections, sync and records.

Wires the Secret Store, Connection Registry, Authorization Flow Manager,
Sync Scheduler, Transformation Pipeline and Record Store together, and is
the scheduler's executor for a single connection's sync.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

import httpx
from pydantic import BaseModel, Field

from lifesync.core.clock import Clock, utcnow
from lifesync.core.config import Settings, settings
from lifesync.core.crypto import SecretCipher
from lifesync.core.db import get_session_factory
from lifesync.core.errors import (
    CredentialError,
    LifeSyncError,
    ProviderConnectionError,
    ValidationError,
)
from lifesync.core.logging import get_logger
from lifesync.ingestion.base import BaseSource
from lifesync.ingestion.http_source import ProviderApiSource
from lifesync.ingestion.runner import IngestionRunner
from lifesync.pipeline import TransformationPipeline
from lifesync.providers.registry import ProviderDefinition, ProviderRegistry
from lifesync.repositories.base import RecordStore, SyncRunRepository
from lifesync.repositories.memory import (
    InMemoryConnectionRepository,
    InMemorySecretRepository,
    InMemorySyncPolicyRepository,
    InMemorySyncRunRepository,
)
from lifesync.repositories.sql import (
    SqlConnectionRepository,
    SqlSecretRepository,
    SqlSyncPolicyRepository,
    SqlSyncRunRepository,
)
from lifesync.schemas.connection import (
    Cadence,
    Connection,
    ConnectionResult,
    ConnectionStatus,
    SyncCadence,
)
from lifesync.schemas.records import (
    DataStats,
    LifeDomain,
    NormalizedRecord,
    RawRecord,
    RecordQuery,
)
from lifesync.schemas.secret import CredentialKind, CredentialPayload, SecretMetadata, SecretSummary
from lifesync.schemas.sync import SyncPolicy, SyncResult, SyncRun, SyncStats
from lifesync.services import events as ev
from lifesync.services.connection_registry import ConnectionRegistry
from lifesync.services.events import EventSink, LoggingEventSink
from lifesync.services.oauth_flow import AuthorizationFlowManager, AuthorizationRedirect
from lifesync.services.record_store import IndexedRecordStore
from lifesync.services.secret_store import SecretStore
from lifesync.services.sync_scheduler import SyncScheduler

log = get_logger("ingestion_service")

SourceFactory = Callable[[ProviderDefinition], Optional[BaseSource]]

FIRST_SYNC_DELAY = timedelta(hours=1)

SYNCABLE = (ConnectionStatus.CONNECTED, ConnectionStatus.ERROR)


class IngestSummary(BaseModel):
    received: int = 0
    stored: int = 0
    rejected: int = 0
    record_ids: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


class IngestionService:
    def __init__(
        self,
        providers: ProviderRegistry,
        secret_store: SecretStore,
        connections: ConnectionRegistry,
        oauth: AuthorizationFlowManager,
        scheduler: SyncScheduler,
        pipeline: TransformationPipeline,
        record_store: RecordStore,
        runs: SyncRunRepository,
        events: Optional[EventSink] = None,
        source_factory: Optional[SourceFactory] = None,
        clock: Clock = utcnow,
        max_retries: int = settings.SYNC_MAX_RETRIES,
    ):
        self.providers = providers
        self.secret_store = secret_store
        self.connections = connections
        self.oauth = oauth
        self.scheduler = scheduler
        self.pipeline = pipeline
        self.record_store = record_store
        self.runs = runs
        self.events = events or LoggingEventSink()
        self.source_factory = source_factory or default_source_factory(oauth.http_client)
        self.clock = clock
        self.max_retries = max_retries
        self._cancelled_runs: Dict[str, SyncRun] = {}

        self.scheduler.executor = self.sync_connection
        self.scheduler.listener = self._mirror_next_run
        self.scheduler.timeout_listener = self._sync_timed_out

    # -------------------------------------------------------------------------
    # Connections
    # -------------------------------------------------------------------------
    def begin_authorization(self, owner_id: str, provider_id: str, state: Optional[str] = None) -> AuthorizationRedirect:
        return self.oauth.begin_authorization(owner_id, provider_id, state)

    async def complete_authorization(self, owner_id: str, provider_id: str, code: str, state: str) -> ConnectionResult:
        result = await self.oauth.complete_authorization(owner_id, provider_id, code, state)
        if result.success and result.connection_id:
            self._on_connected(result.connection_id)
        return result

    async def connect_with_credentials(
        self,
        owner_id: str,
        provider_id: str,
        kind: CredentialKind,
        payload: Any,
        name: Optional[str] = None,
        sync_cadence: Optional[SyncCadence] = None,
        metadata: Optional[SecretMetadata] = None,
    ) -> ConnectionResult:
        """API key, basic auth or certificate connections. Reports failures, never raises."""
        provider = self.providers.find(provider_id)
        if provider is None:
            return ConnectionResult(success=False, error=f"Unsupported provider: {provider_id}")

        secret_id: Optional[str] = None
        connection: Optional[Connection] = None
        try:
            secret_id = self.secret_store.store(owner_id, provider.id, kind, payload, metadata)
            connection = self.connections.create_pending(
                owner_id,
                provider.id,
                provider.category,
                name or provider.name,
                data_types=provider.supported_data_types,
                sync_cadence=sync_cadence,
            )
            credentials = self.secret_store.retrieve(secret_id, owner_id)
            test = await self.oauth.test_connection(provider, credentials)
            if not test.success:
                raise ProviderConnectionError(f"Connection test failed: {test.error}")
            self.connections.mark_connected(connection.id, secret_id)
        except LifeSyncError as exc:
            if connection is not None:
                self.connections.delete(connection.id)
            if secret_id is not None:
                self.secret_store.delete(secret_id, owner_id)
            log.error(f"Credential connection failed owner={owner_id} provider={provider_id}: {exc}")
            return ConnectionResult(success=False, error=str(exc))

        self._on_connected(connection.id)
        return ConnectionResult(success=True, connection_id=connection.id, capabilities=list(provider.capabilities))

    def list_connections(self, owner_id: str) -> List[Connection]:
        return self.connections.list(owner_id)

    def get_connection(self, connection_id: str, owner_id: Optional[str] = None) -> Optional[Connection]:
        return self.connections.get(connection_id, owner_id)

    async def disconnect(self, connection_id: str, owner_id: Optional[str] = None) -> bool:
        connection = self.connections.get(connection_id, owner_id)
        if connection is None:
            return False

        await self.oauth.revoke(connection_id)
        if self.scheduler.get_policy(connection_id) is not None:
            self.scheduler.deactivate(connection_id)
        self.events.publish(ev.CONNECTION_DISCONNECTED, {"connection_id": connection_id, "owner_id": connection.owner_id})
        return True

    async def delete_connection(self, connection_id: str, owner_id: Optional[str] = None) -> bool:
        """Disconnect, then destroy the connection and its secret. The policy stays, inactive."""
        connection = self.connections.get(connection_id, owner_id)
        if connection is None:
            return False

        if connection.status != ConnectionStatus.DISCONNECTED:
            await self.disconnect(connection_id, owner_id)
        if connection.credential_ref:
            self.secret_store.delete(connection.credential_ref, connection.owner_id)
        return self.connections.delete(connection_id)

    # -------------------------------------------------------------------------
    # Credentials
    # -------------------------------------------------------------------------
    def expiring_credentials(self, owner_id: str, days_ahead: int = 7) -> List[SecretSummary]:
        return self.secret_store.get_expiring(owner_id, days_ahead)

    def rotate_credentials(self, owner_id: str) -> int:
        """Re-encrypt the owner's credentials under the current primary key."""
        return self.secret_store.rotate_keys(owner_id)

    # -------------------------------------------------------------------------
    # Sync
    # -------------------------------------------------------------------------
    async def trigger_sync(self, connection_id: str, owner_id: Optional[str] = None) -> SyncResult:
        self.connections.require(connection_id, owner_id)
        return await self.scheduler.trigger_sync(connection_id)

    async def tick(self, owner_id: Optional[str] = None) -> Dict[str, SyncResult]:
        return await self.scheduler.tick(self._owned_ids(owner_id))

    def reenable_sync(self, connection_id: str, owner_id: Optional[str] = None) -> SyncPolicy:
        self.connections.require(connection_id, owner_id)
        return self.scheduler.reactivate(connection_id)

    def get_sync_stats(self, owner_id: Optional[str] = None) -> SyncStats:
        return self.scheduler.get_sync_stats(self._owned_ids(owner_id))

    def list_runs(self, connection_id: Optional[str] = None, status: Optional[str] = None, limit: int = 10) -> List[SyncRun]:
        return self.runs.list(connection_id=connection_id, status=status, limit=limit)

    async def sync_connection(self, connection_id: str) -> SyncResult:
        """Fetch, normalize and store everything new for one connection."""
        connection = self.connections.get(connection_id)
        if connection is None:
            return SyncResult.failure(f"Connection not found: {connection_id}")
        if connection.status not in SYNCABLE:
            return SyncResult.failure(f"Connection is not connected: {connection.status.value}")

        run = SyncRun(connection_id=connection_id, started_at=self.clock())
        self.runs.put(run)
        log.info(f"Starting sync connection={connection_id} provider={connection.provider} since={connection.sync_cursor}")

        try:
            return await self._sync(connection, run)
        except asyncio.CancelledError:
            self._finish_run(run, "failure", error="Sync cancelled")
            self._cancelled_runs[connection_id] = run
            raise

    async def _sync(self, connection: Connection, run: SyncRun) -> SyncResult:
        connection_id = connection.id
        try:
            credentials = await self._credentials_for(connection)
            provider = self.providers.get(connection.provider)
            source = self.source_factory(provider)

            raw_records: List[RawRecord] = []
            cursor = None
            if source is not None:
                runner = IngestionRunner([source])
                batches = await runner.run(connection, credentials, {source.name: connection.sync_cursor})
                raw_records = batches[source.name].records
                cursor = batches[source.name].high_water_mark

            summary = self._store_all(raw_records)
        except LifeSyncError as exc:
            return self._sync_failed(connection_id, run, str(exc), exc.retryable)
        except Exception as exc:  # noqa: BLE001
            log.exception(f"Unexpected error syncing connection={connection_id}: {exc}")
            return self._sync_failed(connection_id, run, f"Unexpected error: {exc}", retryable=False)

        current = self.connections.get(connection_id)
        if current is None or current.status not in SYNCABLE:
            message = "Connection was disconnected during sync"
            self._finish_run(run, "failure", processed=summary.received, created=summary.stored, error=message)
            log.info(f"{message}: connection={connection_id}")
            return SyncResult.skip(message)

        synced_at = self.clock()
        self.connections.mark_synced(connection_id, synced_at, cursor=cursor)
        self._finish_run(run, "success", processed=summary.received, created=summary.stored)
        result = SyncResult(
            success=True,
            records_processed=summary.received,
            records_created=summary.stored,
            errors=summary.errors,
            last_sync_time=synced_at,
        )
        self.events.publish(
            ev.SYNC_COMPLETED,
            {"connection_id": connection_id, "records_processed": summary.received, "records_created": summary.stored},
        )
        log.info(f"Sync finished connection={connection_id} | processed={summary.received} created={summary.stored}")
        return result

    # -------------------------------------------------------------------------
    # Records
    # -------------------------------------------------------------------------
    def ingest(self, raw: RawRecord) -> NormalizedRecord:
        """Normalize and store one record. Raises ValidationError when it is rejected."""
        record = self.pipeline.process(raw).raise_for_error()
        stored = self.record_store.store(record)
        self.events.publish(
            ev.RECORD_INGESTED,
            {"record_id": stored.id, "owner_id": stored.owner_id, "domain": stored.domain.value},
        )
        return stored

    def ingest_many(self, raws: Iterable[RawRecord]) -> IngestSummary:
        return self._store_all(list(raws))

    def query(self, owner_id: str, query: Optional[RecordQuery] = None) -> List[NormalizedRecord]:
        return self.record_store.query(owner_id, query or RecordQuery())

    def search(
        self,
        owner_id: str,
        term: str,
        domains: Optional[Sequence[LifeDomain]] = None,
        limit: Optional[int] = None,
    ) -> List[NormalizedRecord]:
        return self.record_store.search_data(owner_id, term, domains, limit)

    def get_data_stats(self, owner_id: str) -> DataStats:
        return self.record_store.get_data_stats(owner_id)

    def get_record(self, record_id: str, owner_id: str) -> Optional[NormalizedRecord]:
        return self.record_store.get(record_id, owner_id)

    def update_record(self, record_id: str, owner_id: str, changes: Mapping[str, Any]) -> Optional[NormalizedRecord]:
        return self.record_store.update(record_id, owner_id, changes)

    def delete_record(self, record_id: str, owner_id: str) -> bool:
        return self.record_store.delete(record_id, owner_id)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------
    def _on_connected(self, connection_id: str) -> None:
        connection = self.connections.require(connection_id)
        cadence = connection.sync_cadence.frequency
        next_run = None if cadence == Cadence.MANUAL else self.clock() + FIRST_SYNC_DELAY
        self.scheduler.schedule(
            SyncPolicy(
                connection_id=connection_id,
                cadence=cadence,
                next_run=next_run,
                max_failures=self.max_retries,
            )
        )
        self.events.publish(
            ev.CONNECTION_CONNECTED,
            {"connection_id": connection_id, "owner_id": connection.owner_id, "provider": connection.provider},
        )

    def _owned_ids(self, owner_id: Optional[str]) -> Optional[List[str]]:
        if owner_id is None:
            return None
        return [c.id for c in self.connections.list(owner_id)]

    def _mirror_next_run(self, policy: SyncPolicy) -> None:
        self.connections.set_next_sync(policy.connection_id, policy.next_run if policy.active else None)

    async def _credentials_for(self, connection: Connection) -> CredentialPayload:
        secret_id, owner_id = connection.credential_ref, connection.owner_id
        if not secret_id:
            raise CredentialError("Connection has no stored credentials")

        if self.secret_store.is_expired(secret_id, owner_id):
            summary = self.secret_store.describe(secret_id, owner_id)
            if summary is not None and summary.kind == CredentialKind.OAUTH:
                refreshed = await self.oauth.refresh(secret_id, owner_id)
                if refreshed is not None:
                    return refreshed
            raise CredentialError("Stored credentials are missing or expired and could not be refreshed")

        credentials = self.secret_store.retrieve(secret_id, owner_id)
        if credentials is None:
            raise CredentialError("Stored credentials not found")
        return credentials

    def _store_all(self, raws: List[RawRecord]) -> IngestSummary:
        summary = IngestSummary(received=len(raws))
        for raw in raws:
            try:
                stored = self.ingest(raw)
            except ValidationError as exc:
                summary.rejected += 1
                summary.errors.append(str(exc))
                continue
            summary.stored += 1
            summary.record_ids.append(stored.id)
        return summary

    def _sync_failed(
        self,
        connection_id: str,
        run: Optional[SyncRun],
        message: str,
        retryable: bool = True,
    ) -> SyncResult:
        if run is not None:
            self._finish_run(run, "failure", error=message)
        connection = self.connections.get(connection_id)
        if connection is not None and connection.status in SYNCABLE:
            self.connections.mark_error(connection_id, message)
        self.events.publish(ev.SYNC_FAILED, {"connection_id": connection_id, "error": message, "retryable": retryable})
        log.error(f"Sync failed connection={connection_id}: {message}")
        return SyncResult.failure(message)

    def _sync_timed_out(self, connection_id: str, message: str) -> None:
        run = self._cancelled_runs.pop(connection_id, None)
        self._sync_failed(connection_id, run, message, retryable=True)

    def _finish_run(
        self,
        run: SyncRun,
        status: str,
        processed: int = 0,
        created: int = 0,
        error: Optional[str] = None,
    ) -> None:
        run.status = status
        run.records_processed = processed
        run.records_created = created
        run.error_message = error
        run.ended_at = self.clock()
        self.runs.put(run)


def default_source_factory(http_client: Optional[httpx.AsyncClient] = None) -> SourceFactory:
    def factory(provider: ProviderDefinition) -> Optional[BaseSource]:
        if not provider.data_url:
            return None
        return ProviderApiSource(provider, http_client=http_client)

    return factory


def build_ingestion_service(
    config: Settings = settings,
    http_client: Optional[httpx.AsyncClient] = None,
    events: Optional[EventSink] = None,
    providers: Optional[ProviderRegistry] = None,
    source_factory: Optional[SourceFactory] = None,
    clock: Clock = utcnow,
    session_factory=None,
) -> IngestionService:
    """Assemble the service graph for the configured storage backend."""
    if config.STORAGE_BACKEND == "sql":
        session_factory = session_factory or get_session_factory()
        connection_repo = SqlConnectionRepository(session_factory)
        secret_repo = SqlSecretRepository(session_factory)
        policy_repo = SqlSyncPolicyRepository(session_factory)
        run_repo = SqlSyncRunRepository(session_factory)
    else:
        connection_repo = InMemoryConnectionRepository()
        secret_repo = InMemorySecretRepository()
        policy_repo = InMemorySyncPolicyRepository()
        run_repo = InMemorySyncRunRepository()

    if config.uses_default_encryption_key and config.is_production:
        raise RuntimeError("ENCRYPTION_KEY must be set in production")
    if config.uses_default_encryption_key:
        log.warning("Using the development ENCRYPTION_KEY; set ENCRYPTION_KEY outside local development")

    providers = providers or ProviderRegistry()
    cipher = SecretCipher(config.ENCRYPTION_KEY, config.previous_encryption_keys)
    secret_store = SecretStore(secret_repo, cipher=cipher, clock=clock)
    connections = ConnectionRegistry(connection_repo, clock=clock)
    oauth = AuthorizationFlowManager(
        providers,
        secret_store,
        connections,
        http_client=http_client,
        clock=clock,
        state_ttl_seconds=config.OAUTH_STATE_TTL_SECONDS,
        http_timeout=config.HTTP_TIMEOUT_SECONDS,
    )
    scheduler = SyncScheduler(
        policy_repo,
        clock=clock,
        timeout=config.SYNC_TIMEOUT_SECONDS,
        daily_hour=config.SYNC_DAILY_HOUR,
        max_concurrency=config.SYNC_MAX_CONCURRENCY,
        tick_interval=config.SYNC_TICK_SECONDS,
    )
    pipeline = TransformationPipeline(clock=clock, base_currency=config.BASE_CURRENCY, version=config.PIPELINE_VERSION)

    return IngestionService(
        providers=providers,
        secret_store=secret_store,
        connections=connections,
        oauth=oauth,
        scheduler=scheduler,
        pipeline=pipeline,
        record_store=IndexedRecordStore(),
        runs=run_repo,
        events=events,
        source_factory=source_factory,
        clock=clock,
        max_retries=config.SYNC_MAX_RETRIES,
    )
