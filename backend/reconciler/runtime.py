"""
Process-wide wiring for the reconciler.

One ReconcilerRuntime per process owns the detector, latency monitor,
broadcaster, store, provider client, pipeline and jobs, and drives the job
scheduler and push-feed consumer as background tasks. Tests build their own
instance with an in-memory store and a fake provider.
"""
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional

from redis.exceptions import RedisError
from sqlalchemy.exc import OperationalError

from shared.config import Settings, StoreBackend, get_settings
from shared.utils.database import DatabaseManager
from shared.utils.latency import LatencyMonitor
from shared.utils.logging import get_logger
from shared.utils.redis_manager import RedisManager

from api.ws.broadcaster import Broadcaster
from ingest.providers.base import ProviderClient
from ingest.providers.thesports import TheSportsClient
from ingest.service import LiveFeedConsumer
from reconciler.config import ReconcilerSettings, get_reconciler_settings
from reconciler.detector import EventDetector
from reconciler.jobs.diary import DiarySync
from reconciler.jobs.force_refresh import ForceRefresh
from reconciler.jobs.lineup import LineupPreSync
from reconciler.jobs.refresh import MatchRefresher
from reconciler.jobs.stuck import StuckMatchDetector
from reconciler.memory_store import InMemoryReconciliationStore
from reconciler.pipeline import ReconcilePipeline
from reconciler.sql_store import SqlReconciliationStore
from reconciler.store import ReconciliationStore
from scheduler.service import JobDescriptor, JobScheduler

logger = get_logger(__name__)

# Retry connection on startup (e.g. Redis/DB not ready yet in Docker)
CONNECT_RETRY_ATTEMPTS = 10
CONNECT_RETRY_BASE_DELAY_S = 2.0


async def _connect_with_retry(connect_fn: Callable[[], Awaitable[None]], name: str) -> None:
    """Call async connect_fn(); retry with exponential backoff on connection errors."""
    for attempt in range(1, CONNECT_RETRY_ATTEMPTS + 1):
        try:
            await connect_fn()
            return
        except (OSError, RedisError, OperationalError) as exc:
            if attempt == CONNECT_RETRY_ATTEMPTS:
                raise
            delay = CONNECT_RETRY_BASE_DELAY_S * (2 ** (attempt - 1))
            logger.warning(
                "connect_retry",
                name=name,
                attempt=attempt,
                max_attempts=CONNECT_RETRY_ATTEMPTS,
                delay_s=delay,
                error=str(exc),
            )
            await asyncio.sleep(delay)


class ReconcilerRuntime:
    def __init__(
        self,
        settings: Settings | None = None,
        reconciler_settings: ReconcilerSettings | None = None,
        *,
        store: Optional[ReconciliationStore] = None,
        provider: Optional[ProviderClient] = None,
        redis: Optional[RedisManager] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.reconciler_settings = rs = reconciler_settings or get_reconciler_settings()

        self.detector = EventDetector(dedup_window_s=rs.dedup_window_s, default_max_age_s=rs.dedup_max_age_s)
        self.latency = LatencyMonitor(capacity=rs.latency_capacity, warn_threshold_ms=rs.latency_warn_ms)
        self.broadcaster = Broadcaster(self.latency, self.settings)

        if redis is None and self.settings.redis_enabled:
            redis = RedisManager(self.settings)
        self.redis = redis

        self.db: Optional[DatabaseManager] = None
        if store is None:
            if self.settings.store_backend == StoreBackend.SQL:
                self.db = DatabaseManager(self.settings)
                store = SqlReconciliationStore(self.db, full_time_minute=rs.full_time_minute)
            else:
                store = InMemoryReconciliationStore(full_time_minute=rs.full_time_minute)
        self.store = store
        self.provider = provider or TheSportsClient(self.settings)

        self.pipeline = ReconcilePipeline(self.store, self.detector, self.latency, self.broadcaster)
        refresher = MatchRefresher(self.provider, self.pipeline)
        self.stuck = StuckMatchDetector(self.store, refresher, rs)
        self.diary = DiarySync(self.store, self.provider, rs)
        self.presync = LineupPreSync(self.store, self.provider, rs)
        self.force_refresh = ForceRefresh(self.store, refresher, self.stuck)

        self.scheduler = JobScheduler(self.redis, self.settings)
        self._register_jobs()

        self.feed: Optional[LiveFeedConsumer] = None
        if self.redis is not None and self.settings.feed_enabled:
            self.feed = LiveFeedConsumer(self.redis, self.store, self.pipeline, self.settings)

        self._tasks: list[asyncio.Task[None]] = []

    def _register_jobs(self) -> None:
        rs = self.reconciler_settings
        self.scheduler.register(JobDescriptor(
            name=StuckMatchDetector.name,
            interval_s=rs.stuck_interval_s,
            timeout_s=rs.stuck_timeout_s,
            handler=self.stuck.run,
            run_on_start=True,
        ))
        self.scheduler.register(JobDescriptor(
            name=DiarySync.name,
            interval_s=rs.diary_interval_s,
            timeout_s=rs.diary_timeout_s,
            handler=self.diary.run,
            run_on_start=True,
        ))
        self.scheduler.register(JobDescriptor(
            name=LineupPreSync.name,
            interval_s=rs.presync_interval_s,
            timeout_s=rs.presync_timeout_s,
            handler=self.presync.run,
        ))
        # Dedup map and latency buffer are process-local: no cross-process lock
        self.scheduler.register(JobDescriptor(
            name="dedup_cleanup",
            interval_s=rs.dedup_cleanup_interval_s,
            timeout_s=30.0,
            handler=self._dedup_cleanup,
            overlap_guard=False,
        ))
        self.scheduler.register(JobDescriptor(
            name="latency_summary",
            interval_s=rs.latency_summary_interval_s,
            timeout_s=30.0,
            handler=self._latency_summary,
            overlap_guard=False,
        ))

    async def _dedup_cleanup(self) -> dict[str, Any]:
        removed = self.detector.cleanup_old_events()
        return {"removed": removed, "remaining": len(self.detector)}

    async def _latency_summary(self) -> None:
        self.latency.log_summary()

    # ── Lifecycle ───────────────────────────────────────────────────────

    async def start(self, background: bool = True) -> None:
        if self.redis is not None:
            await _connect_with_retry(self.redis.connect, "Redis")
        if self.db is not None:
            await _connect_with_retry(self.db.connect, "Database")
        await self.provider.start()
        await self.broadcaster.start()

        if background:
            self._tasks.append(asyncio.create_task(self.scheduler.run(), name="scheduler"))
            if self.feed is not None:
                self._tasks.append(asyncio.create_task(self.feed.listen(), name="feed"))
        logger.info(
            "reconciler_runtime_started",
            store=type(self.store).__name__,
            feed=self.feed is not None,
            jobs=[j.name for j in self.scheduler.jobs],
        )

    async def stop(self) -> None:
        self.scheduler.request_shutdown()
        if self.feed is not None:
            self.feed.request_shutdown()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
            self._tasks.clear()
        await self.broadcaster.stop()
        await self.provider.close()
        await self.store.close()
        if self.db is not None:
            await self.db.disconnect()
        if self.redis is not None:
            await self.redis.disconnect()
        logger.info("reconciler_runtime_stopped")

    async def readiness(self) -> dict[str, bool]:
        checks = {"store": await self.store.ping()}
        if self.redis is not None:
            checks["redis"] = await self.redis.ping()
        return checks
