"""
Per-event pipeline latency: ingest -> event emitted -> broadcast sent.

Measurements live in a bounded ring buffer (most recent N, drop-oldest) and
are process-local. A measurement is identified by (event_type, match_id,
ingest_ts); several events of one type for one match detected from the same
ingest queue up under the same key and complete in FIFO order.
"""
from __future__ import annotations

import math
import time
from collections import OrderedDict, deque
from dataclasses import dataclass
from typing import Callable, Optional

from shared.models.domain import LatencyStats
from shared.utils.logging import get_logger
from shared.utils.metrics import EVENT_PIPELINE_LATENCY

logger = get_logger(__name__)

PendingKey = tuple[str, str, float]


def _monotonic_ms() -> float:
    return time.perf_counter() * 1000.0


@dataclass(frozen=True)
class LatencyMeasurement:
    event_type: str
    match_id: str
    ingest_ts: float
    emit_ts: float
    broadcast_ts: float

    @property
    def processing_ms(self) -> float:
        return self.emit_ts - self.ingest_ts

    @property
    def broadcast_ms(self) -> float:
        return self.broadcast_ts - self.emit_ts

    @property
    def total_ms(self) -> float:
        return self.broadcast_ts - self.ingest_ts


def _percentile(sorted_values: list[float], pct: float) -> float:
    # Nearest-rank
    if not sorted_values:
        return 0.0
    rank = max(1, math.ceil(pct / 100.0 * len(sorted_values)))
    return sorted_values[min(rank, len(sorted_values)) - 1]


class LatencyMonitor:
    """Records pipeline checkpoints and serves rolling percentile stats."""

    def __init__(
        self,
        capacity: int = 1000,
        warn_threshold_ms: float = 100.0,
        max_pending: int = 5000,
        clock: Callable[[], float] = _monotonic_ms,
    ) -> None:
        self._measurements: deque[LatencyMeasurement] = deque(maxlen=capacity)
        self._pending: OrderedDict[PendingKey, deque[float]] = OrderedDict()
        self._max_pending = max_pending
        self._warn_threshold_ms = warn_threshold_ms
        self._clock = clock

    @property
    def capacity(self) -> int:
        return self._measurements.maxlen or 0

    def __len__(self) -> int:
        return len(self._measurements)

    def record_ingest(self, event_type: str, match_id: str) -> float:
        """Mark the moment a provider payload entered the pipeline."""
        ts = self._clock()
        logger.debug("latency_ingest", event_type=event_type, match_id=match_id)
        return ts

    def record_emitted(self, event_type: str, match_id: str, ingest_ts: float) -> None:
        """Stash the emit checkpoint until the broadcast completes."""
        key = (event_type, match_id, ingest_ts)
        queue = self._pending.get(key)
        if queue is None:
            queue = self._pending[key] = deque()
        queue.append(self._clock())
        while len(self._pending) > self._max_pending:
            self._pending.popitem(last=False)

    def record_broadcast_sent(self, event_type: str, match_id: str, ingest_ts: float) -> None:
        """Complete a measurement; silently ignored when no pending entry exists."""
        key = (event_type, match_id, ingest_ts)
        queue = self._pending.get(key)
        if not queue:
            return
        emit_ts = queue.popleft()
        if not queue:
            del self._pending[key]

        measurement = LatencyMeasurement(
            event_type=event_type,
            match_id=match_id,
            ingest_ts=ingest_ts,
            emit_ts=emit_ts,
            broadcast_ts=self._clock(),
        )
        self._measurements.append(measurement)
        EVENT_PIPELINE_LATENCY.labels(event_type=event_type).observe(measurement.total_ms)

        if measurement.total_ms > self._warn_threshold_ms:
            logger.warning(
                "event_latency_high",
                event_type=event_type,
                match_id=match_id,
                total_ms=round(measurement.total_ms, 2),
                processing_ms=round(measurement.processing_ms, 2),
                broadcast_ms=round(measurement.broadcast_ms, 2),
                threshold_ms=self._warn_threshold_ms,
            )

    def get_stats(self, event_type: Optional[str] = None) -> dict[str, LatencyStats]:
        """Stats per event type over the current buffer contents."""
        by_type: dict[str, list[float]] = {}
        for m in self._measurements:
            if event_type is not None and m.event_type != event_type:
                continue
            by_type.setdefault(m.event_type, []).append(m.total_ms)

        stats: dict[str, LatencyStats] = {}
        for etype, values in by_type.items():
            values.sort()
            stats[etype] = LatencyStats(
                count=len(values),
                avg=round(sum(values) / len(values), 2),
                p50=round(_percentile(values, 50), 2),
                p95=round(_percentile(values, 95), 2),
                p99=round(_percentile(values, 99), 2),
                min=round(values[0], 2),
                max=round(values[-1], 2),
            )
        return stats

    def log_summary(self) -> None:
        """Aggregate summary for all event types; run on a fixed interval."""
        stats = self.get_stats()
        if not stats:
            logger.debug("latency_summary_empty")
            return
        logger.info(
            "latency_summary",
            pending=len(self._pending),
            buffered=len(self._measurements),
            **{etype: s.model_dump() for etype, s in stats.items()},
        )

    def clear(self) -> None:
        self._measurements.clear()
        self._pending.clear()
