"""Shared fixtures: in-memory store, scripted provider, recording event sink."""
from __future__ import annotations

from typing import Any, Optional

import pytest

from shared.config import Settings, StoreBackend
from shared.errors import ProviderError
from shared.models.domain import MatchSnapshot, ProviderMatch, ScoreComponents
from shared.models.events import MatchEvent
from shared.utils.latency import LatencyMonitor

from ingest.providers.base import ProviderClient
from reconciler.config import ReconcilerSettings
from reconciler.detector import EventDetector
from reconciler.memory_store import InMemoryReconciliationStore
from reconciler.pipeline import ReconcilePipeline

# 2025-10-09 08:53:20 UTC
NOW = 1_760_000_000


class FakeProvider(ProviderClient):
    """Scripted provider: tests fill the dicts, or set an error to raise."""

    name = "fake"

    def __init__(self) -> None:
        self.live: dict[str, ProviderMatch] = {}
        self.diary: dict[str, list[ProviderMatch]] = {}
        self.lineups: dict[str, dict[str, Any]] = {}
        self.error: Optional[ProviderError] = None
        self.errors_for: dict[str, ProviderError] = {}
        self.calls: list[str] = []

    def _raise_for(self, key: str) -> None:
        self.calls.append(key)
        if key in self.errors_for:
            raise self.errors_for[key]
        if self.error is not None:
            raise self.error

    async def fetch_live_details(self, match_ids: Optional[list[str]] = None) -> list[ProviderMatch]:
        self._raise_for(",".join(match_ids or []))
        if match_ids is None:
            return list(self.live.values())
        return [self.live[m] for m in match_ids if m in self.live]

    async def fetch_diary(self, date: str) -> list[ProviderMatch]:
        self._raise_for(date)
        return list(self.diary.get(date, []))

    async def fetch_lineup(self, match_id: str) -> Optional[dict[str, Any]]:
        self._raise_for(match_id)
        return self.lineups.get(match_id)


class RecordingSink:
    """Stands in for the broadcaster; keeps every fanned-out event."""

    def __init__(self) -> None:
        self.events: list[MatchEvent] = []

    async def fan_out(self, event: MatchEvent, ingest_ts: Optional[float] = None) -> int:
        self.events.append(event)
        return 1

    @property
    def types(self) -> list[str]:
        return [e.type.value for e in self.events]


def side(goals: int) -> ScoreComponents:
    return ScoreComponents(regular=goals, halftime=0, red_cards=0, yellow_cards=0, corners=0)


# ── Fixtures ────────────────────────────────────────────────────────────

@pytest.fixture
def settings() -> Settings:
    return Settings(
        store_backend=StoreBackend.MEMORY,
        redis_enabled=False,
        feed_enabled=False,
        metrics_enabled=False,
        ws_ping_interval_s=0.05,
        ws_receive_timeout_s=0.05,
    )


@pytest.fixture
def rsettings() -> ReconcilerSettings:
    return ReconcilerSettings(candidate_delay_s=0.0)


@pytest.fixture
def store() -> InMemoryReconciliationStore:
    return InMemoryReconciliationStore()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def detector() -> EventDetector:
    return EventDetector()


@pytest.fixture
def latency() -> LatencyMonitor:
    return LatencyMonitor()


@pytest.fixture
def pipeline(
    store: InMemoryReconciliationStore,
    detector: EventDetector,
    latency: LatencyMonitor,
    sink: RecordingSink,
) -> ReconcilePipeline:
    return ReconcilePipeline(store, detector, latency, sink)


@pytest.fixture
def snapshot() -> MatchSnapshot:
    """A second-half match at 2-1, last touched by the live feed a minute ago."""
    return MatchSnapshot(
        external_id="m1",
        status_id=4,
        status_source="live-feed",
        status_timestamp=NOW - 60,
        minute=70,
        minute_source="live-feed",
        minute_timestamp=NOW - 60,
        home_score_display=2,
        away_score_display=1,
        home_score_timestamp=NOW - 60,
        away_score_timestamp=NOW - 60,
        match_time=NOW - 5400,
    )
