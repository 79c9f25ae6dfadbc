"""
Prometheus metrics for the reconciler.
Wraps prometheus_client with async-safe patterns.
"""
from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from shared.config import get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# ── Counters ────────────────────────────────────────────────────────────
PROVIDER_REQUESTS = Counter(
    "lr_provider_requests_total",
    "Total provider HTTP requests",
    ["provider", "endpoint", "status"],
)
PAYLOAD_REJECTED = Counter(
    "lr_payload_rejected_total",
    "Provider records dropped at the boundary parser",
    ["kind"],
)
JOB_RUNS = Counter(
    "lr_job_runs_total",
    "Scheduled job invocations by outcome",
    ["job", "outcome"],
)
CONDITIONAL_WRITES = Counter(
    "lr_conditional_writes_total",
    "Field-group conditional writes by result",
    ["field_group", "result"],
)
EVENTS_DETECTED = Counter(
    "lr_events_detected_total",
    "Semantic match events emitted by the detector",
    ["event_type"],
)
EVENTS_SUPPRESSED = Counter(
    "lr_events_suppressed_total",
    "Events suppressed by the dedup window",
    ["event_type"],
)
BROADCAST_MESSAGES = Counter(
    "lr_broadcast_messages_total",
    "WebSocket deliveries by result",
    ["result"],
)
FEED_MESSAGES = Counter(
    "lr_feed_messages_total",
    "Push feed frames by classification",
    ["kind"],
)

# ── Histograms ──────────────────────────────────────────────────────────
PROVIDER_LATENCY = Histogram(
    "lr_provider_latency_seconds",
    "Provider request latency in seconds",
    ["provider"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)
JOB_DURATION = Histogram(
    "lr_job_duration_seconds",
    "Wall time of a job run",
    ["job"],
    buckets=(0.1, 0.5, 1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0),
)
STORE_LATENCY = Histogram(
    "lr_store_operation_seconds",
    "Reconciliation store statement latency in seconds",
    ["operation"],
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 1.0),
)
EVENT_PIPELINE_LATENCY = Histogram(
    "lr_event_pipeline_latency_ms",
    "Ingest to broadcast-sent latency per event in milliseconds",
    ["event_type"],
    buckets=(1, 5, 10, 25, 50, 100, 250, 500, 1000),
)

# ── Gauges ──────────────────────────────────────────────────────────────
WS_CONNECTIONS = Gauge(
    "lr_ws_connections_active",
    "Currently active WebSocket connections",
)
STUCK_CANDIDATES = Gauge(
    "lr_stuck_candidates",
    "Candidates returned by the last stuck-match scan",
)


@asynccontextmanager
async def atrack_latency(histogram: Histogram, **labels: str) -> AsyncIterator[None]:
    """Async context manager to track operation latency."""
    start = time.perf_counter()
    try:
        yield
    finally:
        histogram.labels(**labels).observe(time.perf_counter() - start)


def start_metrics_server(port: int | None = None) -> None:
    """Start the Prometheus metrics HTTP server."""
    settings = get_settings()
    if not settings.metrics_enabled:
        return
    metrics_port = port or settings.metrics_port
    try:
        start_http_server(metrics_port)
        logger.info("metrics_server_started", port=metrics_port)
    except OSError as exc:
        logger.warning("metrics_server_failed", error=str(exc), port=metrics_port)
