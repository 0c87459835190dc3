"""Sync Scheduler - cadence, retry and backoff for per-connection syncs.

One policy per connection. A periodic driver calls ``tick()``, which runs
every due policy through the injected executor. Per-connection locks keep
two executions of the same connection from ever overlapping: whoever finds
the lock taken gets a skipped result back instead of waiting.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, Iterable, List, Optional

from lifesync.core.clock import Clock, utcnow
from lifesync.core.config import settings
from lifesync.core.errors import PolicyNotFoundError
from lifesync.core.logging import get_logger
from lifesync.repositories.base import SyncPolicyRepository
from lifesync.schemas.connection import Cadence
from lifesync.schemas.sync import SyncPolicy, SyncResult, SyncStats

log = get_logger("sync_scheduler")

SyncExecutor = Callable[[str], Awaitable[SyncResult]]
PolicyListener = Callable[[SyncPolicy], None]
TimeoutListener = Callable[[str, str], None]

BACKOFF_BASE = timedelta(minutes=5)


def backoff_delay(failure_count: int) -> timedelta:
    """Delay before the retry that follows failure number ``failure_count``."""
    return BACKOFF_BASE * (2**failure_count)


class SyncScheduler:
    def __init__(
        self,
        repository: SyncPolicyRepository,
        executor: Optional[SyncExecutor] = None,
        clock: Clock = utcnow,
        timeout: float = settings.SYNC_TIMEOUT_SECONDS,
        daily_hour: int = settings.SYNC_DAILY_HOUR,
        max_concurrency: int = settings.SYNC_MAX_CONCURRENCY,
        tick_interval: float = settings.SYNC_TICK_SECONDS,
        listener: Optional[PolicyListener] = None,
        timeout_listener: Optional[TimeoutListener] = None,
    ):
        self.repository = repository
        self.executor = executor
        self.clock = clock
        self.timeout = timeout
        self.daily_hour = daily_hour
        self.tick_interval = tick_interval
        self.listener = listener
        self.timeout_listener = timeout_listener
        self._semaphore = asyncio.Semaphore(max(1, max_concurrency))
        self._locks: Dict[str, asyncio.Lock] = {}
        self._tick_lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None

    # -------------------------------------------------------------------------
    # Policies
    # -------------------------------------------------------------------------
    def schedule(self, policy: SyncPolicy) -> SyncPolicy:
        """Upsert a policy, filling in next_run for active non-manual cadences."""
        policy = SyncPolicy.model_validate(policy.model_dump())
        if policy.active and policy.cadence != Cadence.MANUAL and policy.next_run is None:
            policy.next_run = self.compute_next_run(policy.cadence, self.clock())
        self._save(policy)
        log.info(
            f"Scheduled connection={policy.connection_id} cadence={policy.cadence.value} "
            f"next_run={policy.next_run} active={policy.active}"
        )
        return policy

    def get_policy(self, connection_id: str) -> Optional[SyncPolicy]:
        return self.repository.get(connection_id)

    def list_policies(self) -> List[SyncPolicy]:
        return self.repository.list_all()

    def list_active(self) -> List[SyncPolicy]:
        return [p for p in self.repository.list_all() if p.active]

    def reactivate(self, connection_id: str) -> SyncPolicy:
        """Operator re-enable: clears failures and makes the policy due now."""
        policy = self._require(connection_id)
        policy = policy.model_copy(update={"active": True, "failure_count": 0, "next_run": self.clock()})
        self._save(policy)
        log.info(f"Re-enabled sync for connection={connection_id}")
        return policy

    def deactivate(self, connection_id: str) -> SyncPolicy:
        policy = self._require(connection_id)
        policy = policy.model_copy(update={"active": False})
        self._save(policy)
        log.info(f"Disabled sync for connection={connection_id}")
        return policy

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------
    async def tick(self, connection_ids: Optional[Iterable[str]] = None) -> Dict[str, SyncResult]:
        """
        Run every due policy once. A tick already in progress makes this a no-op.

        ``connection_ids`` narrows the tick to those connections.
        """
        if self._tick_lock.locked():
            log.debug("Tick already running; skipping")
            return {}

        async with self._tick_lock:
            now = self.clock()
            due = [p.connection_id for p in self._scoped(connection_ids) if p.active and p.next_run and p.next_run <= now]
            if not due:
                return {}

            log.info(f"Executing {len(due)} due sync(s)")
            outcomes = await asyncio.gather(*(self._run_pooled(cid) for cid in due), return_exceptions=True)

        results: Dict[str, SyncResult] = {}
        for connection_id, outcome in zip(due, outcomes):
            if isinstance(outcome, BaseException):
                log.error(f"Sync bookkeeping failed for connection={connection_id}: {outcome}")
                outcome = SyncResult.failure(str(outcome))
            results[connection_id] = outcome
        return results

    execute_scheduled_syncs = tick

    async def trigger_sync(self, connection_id: str) -> SyncResult:
        """Out-of-band run that ignores next_run but not the per-connection lock."""
        policy = self._require(connection_id)
        if not policy.active:
            return SyncResult.skip(f"Sync is disabled for connection: {connection_id}")
        return await self._run(connection_id)

    async def _run_pooled(self, connection_id: str) -> SyncResult:
        async with self._semaphore:
            return await self._run(connection_id)

    async def _run(self, connection_id: str) -> SyncResult:
        lock = self._locks.setdefault(connection_id, asyncio.Lock())
        if lock.locked():
            log.info(f"Sync already running for connection={connection_id}; rejecting duplicate")
            return SyncResult.skip(f"Sync already in progress for connection: {connection_id}")

        async with lock:
            policy = self.repository.get(connection_id)
            if policy is None or not policy.active:
                return SyncResult.skip(f"Sync is disabled for connection: {connection_id}")
            if self.executor is None:
                raise RuntimeError("SyncScheduler has no executor configured")

            try:
                result = await asyncio.wait_for(self.executor(connection_id), timeout=self.timeout)
            except asyncio.TimeoutError:
                result = SyncResult.failure(f"Sync timed out after {self.timeout:g}s")
                if self.timeout_listener:
                    self.timeout_listener(connection_id, result.errors[0])
            except Exception as exc:  # noqa: BLE001
                log.exception(f"Sync executor raised for connection={connection_id}: {exc}")
                result = SyncResult.failure(str(exc))

            # The policy may have been disabled or removed while the executor ran.
            current = self.repository.get(connection_id)
            if current is None or not current.active:
                log.info(f"Policy for connection={connection_id} changed during sync; outcome not recorded")
                return result
            if result.success:
                self.record_success(current)
            elif not result.skipped:
                self.record_failure(current)
            return result

    def record_success(self, policy: SyncPolicy) -> SyncPolicy:
        now = self.clock()
        policy = policy.model_copy(
            update={
                "failure_count": 0,
                "last_run": now,
                "next_run": self.compute_next_run(policy.cadence, now),
            }
        )
        self._save(policy)
        return policy

    def record_failure(self, policy: SyncPolicy) -> SyncPolicy:
        now = self.clock()
        failures = policy.failure_count + 1
        if failures >= policy.max_failures:
            policy = policy.model_copy(update={"failure_count": failures, "last_run": now, "active": False})
            log.warning(
                f"Sync disabled for connection={policy.connection_id} after {failures} consecutive failure(s)"
            )
        else:
            next_run = now + backoff_delay(failures)
            policy = policy.model_copy(update={"failure_count": failures, "last_run": now, "next_run": next_run})
            log.warning(f"Sync failed for connection={policy.connection_id}; retry {failures} at {next_run}")
        self._save(policy)
        return policy

    def compute_next_run(self, cadence: Cadence, now: datetime) -> datetime:
        if cadence == Cadence.REALTIME:
            return now + timedelta(minutes=5)
        if cadence == Cadence.HOURLY:
            return now + timedelta(hours=1)
        if cadence == Cadence.DAILY:
            return (now + timedelta(days=1)).replace(hour=self.daily_hour, minute=0, second=0, microsecond=0)
        if cadence == Cadence.WEEKLY:
            return (now + timedelta(days=7)).replace(hour=self.daily_hour, minute=0, second=0, microsecond=0)
        return now + timedelta(days=365)

    # -------------------------------------------------------------------------
    # Observability
    # -------------------------------------------------------------------------
    def get_sync_stats(self, connection_ids: Optional[Iterable[str]] = None) -> SyncStats:
        now = self.clock()
        policies = self._scoped(connection_ids)
        active = [p for p in policies if p.active]
        upcoming = [p.next_run for p in active if p.next_run and p.next_run > now]
        return SyncStats(
            total_sources=len(policies),
            active_sources=len(active),
            pending_syncs=sum(1 for p in active if p.next_run and p.next_run <= now),
            failed_sources=sum(1 for p in policies if p.exhausted),
            next_sync_time=min(upcoming) if upcoming else None,
        )

    def is_running(self, connection_id: str) -> bool:
        lock = self._locks.get(connection_id)
        return bool(lock and lock.locked())

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------
    def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._task = asyncio.create_task(self._loop())
        log.info(f"Sync scheduler started (interval: {self.tick_interval}s)")

    async def stop(self) -> None:
        if not self._task:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        log.info("Sync scheduler stopped")

    @property
    def running(self) -> bool:
        return bool(self._task and not self._task.done())

    async def _loop(self) -> None:
        while True:
            try:
                await self.tick()
                await asyncio.sleep(self.tick_interval)
            except asyncio.CancelledError:
                log.info("Scheduled sync task cancelled")
                raise
            except Exception as exc:  # noqa: BLE001
                log.exception(f"Scheduled sync task error: {exc}")
                await asyncio.sleep(self.tick_interval)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------
    def _require(self, connection_id: str) -> SyncPolicy:
        policy = self.repository.get(connection_id)
        if policy is None:
            raise PolicyNotFoundError(connection_id)
        return policy

    def _scoped(self, connection_ids: Optional[Iterable[str]]) -> List[SyncPolicy]:
        policies = self.repository.list_all()
        if connection_ids is None:
            return policies
        wanted = set(connection_ids)
        return [p for p in policies if p.connection_id in wanted]

    def _save(self, policy: SyncPolicy) -> None:
        self.repository.put(policy)
        if self.listener:
            self.listener(policy)
