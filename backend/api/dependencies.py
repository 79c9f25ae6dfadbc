"""
Dependency injection for the API service.
Hands the process-wide ReconcilerRuntime and its parts to route handlers.
"""
from __future__ import annotations

from shared.utils.latency import LatencyMonitor

from api.ws.broadcaster import Broadcaster
from reconciler.jobs.force_refresh import ForceRefresh
from reconciler.runtime import ReconcilerRuntime
from scheduler.service import JobScheduler

# Module-level singleton, initialized at startup
_runtime: ReconcilerRuntime | None = None


def init_runtime(runtime: ReconcilerRuntime | None) -> None:
    """Install (or clear, with None) the runtime. Called once at startup."""
    global _runtime
    _runtime = runtime


def get_runtime() -> ReconcilerRuntime:
    """FastAPI dependency: returns the shared ReconcilerRuntime."""
    if _runtime is None:
        raise RuntimeError("ReconcilerRuntime not initialized, call init_runtime first")
    return _runtime


def get_force_refresh() -> ForceRefresh:
    return get_runtime().force_refresh


def get_latency() -> LatencyMonitor:
    return get_runtime().latency


def get_broadcaster() -> Broadcaster:
    return get_runtime().broadcaster


def get_scheduler() -> JobScheduler:
    return get_runtime().scheduler
