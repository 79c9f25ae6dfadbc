"""
Job scheduler for the reconciler.

A single loop owns every periodic job: it decides when a job is due, takes the
job's overlap lock, enforces the timeout and records the outcome. Jobs run as
independent tasks so a slow diary sync never delays the stuck-match detector;
two runs of the same job never overlap (a held lock skips the tick).
"""
from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel
from redis.exceptions import RedisError

from shared.config import Settings, get_settings
from shared.models.domain import JobRun
from shared.utils.logging import get_logger
from shared.utils.metrics import JOB_DURATION, JOB_RUNS
from shared.utils.redis_manager import RedisManager

logger = get_logger(__name__)

OUTCOME_COMPLETED = "completed"
OUTCOME_SKIPPED = "skipped"
OUTCOME_TIMED_OUT = "timed_out"
OUTCOME_FAILED = "failed"


@dataclass(frozen=True)
class JobDescriptor:
    """Named job: schedule, overlap guard, timeout and handler."""

    name: str
    interval_s: float
    timeout_s: float
    handler: Callable[[], Awaitable[Any]]
    overlap_guard: bool = True
    run_on_start: bool = False


def _result_fields(result: Any) -> Optional[dict[str, Any]]:
    if isinstance(result, BaseModel):
        data = result.model_dump(mode="json")
        # Per-match outcome lists are for synchronous callers, not the job log
        data.pop("results", None)
        return data
    if isinstance(result, dict):
        return result
    return None


class JobScheduler:
    def __init__(
        self,
        redis: Optional[RedisManager] = None,
        settings: Settings | None = None,
        tick_s: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._redis = redis
        self._settings = settings or get_settings()
        self._instance_id = self._settings.instance_id or uuid.uuid4().hex[:8]
        self._tick_s = tick_s
        self._clock = clock
        self._jobs: dict[str, JobDescriptor] = {}
        self._next_due: dict[str, float] = {}
        self._running: set[str] = set()
        self._tasks: set[asyncio.Task[JobRun]] = set()
        self._last: dict[str, JobRun] = {}
        self._shutdown = asyncio.Event()

    @property
    def jobs(self) -> list[JobDescriptor]:
        return list(self._jobs.values())

    def register(self, job: JobDescriptor) -> None:
        if job.name in self._jobs:
            raise ValueError(f"Job already registered: {job.name}")
        self._jobs[job.name] = job
        self._next_due[job.name] = self._clock() + (0.0 if job.run_on_start else job.interval_s)
        logger.info(
            "job_registered",
            job=job.name,
            interval_s=job.interval_s,
            timeout_s=job.timeout_s,
            overlap_guard=job.overlap_guard,
        )

    def last_outcomes(self) -> dict[str, JobRun]:
        return dict(self._last)

    # ── Single invocation ───────────────────────────────────────────────

    async def run_once(self, name: str) -> JobRun:
        """Run one job now under its overlap guard and timeout."""
        job = self._jobs.get(name)
        if job is None:
            raise KeyError(f"Unknown job: {name}")

        started_at = int(time.time())
        if job.overlap_guard and name in self._running:
            return self._record(job, OUTCOME_SKIPPED, started_at, 0.0)

        token = f"{self._instance_id}:{uuid.uuid4().hex[:8]}"
        locked = False
        if job.overlap_guard and self._redis is not None:
            try:
                locked = await self._redis.try_acquire_job_lock(name, token, int(job.timeout_s) + 5)
            except RedisError as exc:
                logger.warning("job_lock_unavailable", job=name, error=str(exc))
                return self._record(job, OUTCOME_FAILED, started_at, 0.0, error=str(exc))
            if not locked:
                return self._record(job, OUTCOME_SKIPPED, started_at, 0.0)

        self._running.add(name)
        start = time.perf_counter()
        try:
            result = await asyncio.wait_for(job.handler(), timeout=job.timeout_s)
        except asyncio.TimeoutError:
            elapsed = (time.perf_counter() - start) * 1000
            logger.error("job_timed_out", job=name, timeout_s=job.timeout_s)
            return self._record(job, OUTCOME_TIMED_OUT, started_at, elapsed, error="timeout")
        except Exception as exc:
            elapsed = (time.perf_counter() - start) * 1000
            logger.exception("job_failed", job=name, error=str(exc))
            return self._record(job, OUTCOME_FAILED, started_at, elapsed, error=str(exc))
        finally:
            self._running.discard(name)
            if locked and self._redis is not None:
                try:
                    await self._redis.release_job_lock(name, token)
                except RedisError as exc:
                    logger.warning("job_lock_release_failed", job=name, error=str(exc))

        elapsed = (time.perf_counter() - start) * 1000
        return self._record(job, OUTCOME_COMPLETED, started_at, elapsed, result=_result_fields(result))

    def _record(
        self,
        job: JobDescriptor,
        outcome: str,
        started_at: int,
        duration_ms: float,
        error: Optional[str] = None,
        result: Optional[dict[str, Any]] = None,
    ) -> JobRun:
        run = JobRun(
            job=job.name,
            outcome=outcome,
            started_at=started_at,
            duration_ms=round(duration_ms, 2),
            error=error,
            result=result,
        )
        JOB_RUNS.labels(job=job.name, outcome=outcome).inc()
        if outcome == OUTCOME_SKIPPED:
            logger.debug("job_skipped_locked", job=job.name)
            # Keep the last real run visible
            self._last.setdefault(job.name, run)
            return run
        JOB_DURATION.labels(job=job.name).observe(duration_ms / 1000)
        self._last[job.name] = run
        if outcome == OUTCOME_COMPLETED:
            logger.debug("job_completed", job=job.name, duration_ms=run.duration_ms)
        return run

    # ── Main loop ───────────────────────────────────────────────────────

    async def run(self) -> None:
        """Dispatch due jobs until shutdown is requested."""
        logger.info("scheduler_started", jobs=list(self._jobs), instance_id=self._instance_id)
        try:
            while not self._shutdown.is_set():
                now = self._clock()
                for name, job in self._jobs.items():
                    if now < self._next_due[name]:
                        continue
                    self._next_due[name] = now + job.interval_s
                    task = asyncio.create_task(self.run_once(name), name=f"job:{name}")
                    self._tasks.add(task)
                    task.add_done_callback(self._tasks.discard)
                try:
                    await asyncio.wait_for(self._shutdown.wait(), timeout=self._tick_s)
                except asyncio.TimeoutError:
                    pass
        finally:
            for task in list(self._tasks):
                task.cancel()
            if self._tasks:
                await asyncio.gather(*self._tasks, return_exceptions=True)
            logger.info("scheduler_stopped")

    def request_shutdown(self) -> None:
        self._shutdown.set()
