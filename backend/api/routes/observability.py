"""
Read-only observability endpoints.

GET /v1/observability/latency[?event_type=] : percentile stats per event type
GET /v1/observability/broadcast             : broadcaster health and counters
GET /v1/observability/jobs                  : last outcome of every scheduled job
"""
from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query

from shared.models.domain import BroadcastHealth, JobRun, LatencyStats
from shared.utils.latency import LatencyMonitor

from api.dependencies import get_broadcaster, get_latency, get_scheduler
from api.ws.broadcaster import Broadcaster
from scheduler.service import JobScheduler

router = APIRouter(prefix="/v1/observability", tags=["observability"])


@router.get("/latency")
async def latency_stats(
    event_type: Optional[str] = Query(None, description="Restrict to one event type"),
    latency: LatencyMonitor = Depends(get_latency),
) -> dict[str, Any]:
    stats: dict[str, LatencyStats] = latency.get_stats(event_type)
    return {
        "buffered": len(latency),
        "capacity": latency.capacity,
        "stats": {k: v.model_dump() for k, v in stats.items()},
    }


@router.get("/broadcast", response_model=BroadcastHealth)
async def broadcast_health(
    broadcaster: Broadcaster = Depends(get_broadcaster),
) -> BroadcastHealth:
    return broadcaster.health()


@router.get("/jobs")
async def job_outcomes(
    scheduler: JobScheduler = Depends(get_scheduler),
) -> dict[str, Any]:
    """Registered jobs with their schedule and most recent run, if any."""
    last: dict[str, JobRun] = scheduler.last_outcomes()
    jobs = []
    for job in scheduler.jobs:
        run = last.get(job.name)
        jobs.append({
            "name": job.name,
            "interval_s": job.interval_s,
            "timeout_s": job.timeout_s,
            "last_run": run.model_dump() if run else None,
        })
    return {"jobs": jobs}
