"""
Reconcile pipeline and job family against the in-memory store:
late starts, time-based closure, retracted goals, duplicate incidents,
forced refresh, diary day windows and lineup pre-sync.
"""
from __future__ import annotations

import pytest

from shared.errors import MatchNotFoundError, ProviderError, ProviderUnavailableError
from shared.models.domain import Incident, MatchSnapshot, ProviderMatch
from shared.models.enums import MatchStatus, RefreshStatus, SourceTag

from conftest import NOW, FakeProvider, RecordingSink, side
from reconciler.config import ReconcilerSettings
from reconciler.jobs.diary import (
    DiarySync,
    local_day_bounds,
    merge_day_window,
    provider_dates_for_local_day,
)
from reconciler.jobs.force_refresh import ForceRefresh
from reconciler.jobs.lineup import LineupPreSync
from reconciler.jobs.refresh import MatchRefresher
from reconciler.jobs.stuck import StuckMatchDetector
from reconciler.memory_store import InMemoryReconciliationStore
from reconciler.pipeline import ReconcilePipeline
from reconciler.store import StuckCriteria


@pytest.fixture
def refresher(provider: FakeProvider, pipeline: ReconcilePipeline) -> MatchRefresher:
    return MatchRefresher(provider, pipeline, clock=lambda: NOW)


@pytest.fixture
def stuck(
    store: InMemoryReconciliationStore, refresher: MatchRefresher, rsettings: ReconcilerSettings
) -> StuckMatchDetector:
    return StuckMatchDetector(store, refresher, rsettings, clock=lambda: NOW)


@pytest.fixture
def force(
    store: InMemoryReconciliationStore, refresher: MatchRefresher, stuck: StuckMatchDetector
) -> ForceRefresh:
    return ForceRefresh(store, refresher, stuck)


# ── Pipeline ────────────────────────────────────────────────────────────

class TestPipeline:

    @pytest.mark.asyncio
    async def test_events_follow_write_order(
        self,
        store: InMemoryReconciliationStore,
        pipeline: ReconcilePipeline,
        sink: RecordingSink,
        snapshot: MatchSnapshot,
    ) -> None:
        store.add(snapshot)
        observed = ProviderMatch(
            external_id="m1",
            status=MatchStatus.OVERTIME,
            minute=91,
            home=side(3),
            away=side(1),
            incidents=[Incident(type=1, time=90, player_id="p9", home_score=3, away_score=1)],
        )
        changes = await pipeline.apply(snapshot, observed, SourceTag.LIVE_FEED, False, NOW)

        assert sink.types == ["MATCH_STATE_CHANGE", "MINUTE_UPDATE", "SCORE_CHANGE", "GOAL"]
        assert changes.events == sink.types
        assert changes.status and changes.minute and changes.score
        assert not changes.finished

    @pytest.mark.asyncio
    async def test_lost_race_emits_nothing(
        self,
        store: InMemoryReconciliationStore,
        pipeline: ReconcilePipeline,
        sink: RecordingSink,
        snapshot: MatchSnapshot,
    ) -> None:
        store.add(snapshot)
        observed = ProviderMatch(external_id="m1", minute=72, home=side(3), away=side(1))
        changes = await pipeline.apply(
            snapshot, observed, SourceTag.DIARY_SYNC, False, NOW, write_ts=NOW - 3600
        )
        assert not changes.any
        assert sink.events == []
        row = await store.get("m1")
        assert row is not None
        assert row.minute == 70

    @pytest.mark.asyncio
    async def test_terminal_snapshot_untouched(
        self,
        store: InMemoryReconciliationStore,
        pipeline: ReconcilePipeline,
        sink: RecordingSink,
        snapshot: MatchSnapshot,
    ) -> None:
        finished = snapshot.model_copy(update={"status_id": 8})
        store.add(finished)
        observed = ProviderMatch(external_id="m1", status=MatchStatus.SECOND_HALF, minute=75)
        changes = await pipeline.apply(finished, observed, SourceTag.MANUAL, True, NOW)
        assert changes.finished and not changes.any
        assert sink.events == []

    @pytest.mark.asyncio
    async def test_finish_transition_clamps_minute(
        self,
        store: InMemoryReconciliationStore,
        pipeline: ReconcilePipeline,
        sink: RecordingSink,
        snapshot: MatchSnapshot,
    ) -> None:
        early = snapshot.model_copy(update={"minute": 88})
        store.add(early)
        observed = ProviderMatch(external_id="m1", status=MatchStatus.FINISHED)
        changes = await pipeline.apply(early, observed, SourceTag.STUCK_DETECTOR, False, NOW)
        assert changes.finished
        row = await store.get("m1")
        assert row is not None
        assert (row.status_id, row.minute) == (8, 90)
        assert sink.types == ["MATCH_STATE_CHANGE", "MINUTE_UPDATE"]

    @pytest.mark.asyncio
    async def test_incident_score_used_without_score_tuple(
        self,
        store: InMemoryReconciliationStore,
        pipeline: ReconcilePipeline,
        sink: RecordingSink,
        snapshot: MatchSnapshot,
    ) -> None:
        store.add(snapshot)
        observed = ProviderMatch(
            external_id="m1",
            incidents=[Incident(type=1, time=75, player_id="p2", home_score=2, away_score=2)],
        )
        await pipeline.apply(snapshot, observed, SourceTag.LIVE_FEED, False, NOW)
        row = await store.get("m1")
        assert row is not None
        assert row.score.as_tuple() == (2, 2)
        assert sink.types == ["SCORE_CHANGE", "GOAL"]

    @pytest.mark.asyncio
    async def test_incident_behind_stored_minute_still_announced(
        self,
        store: InMemoryReconciliationStore,
        pipeline: ReconcilePipeline,
        sink: RecordingSink,
    ) -> None:
        snap = MatchSnapshot(
            external_id="m1",
            status_id=2,
            minute=36,
            minute_timestamp=NOW - 5,
            home_score_display=0,
            away_score_display=0,
            home_score_timestamp=NOW - 600,
            away_score_timestamp=NOW - 600,
        )
        store.add(snap)
        observed = ProviderMatch(
            external_id="m1",
            incidents=[Incident(type=1, time=35, player_id="p9", home_score=1, away_score=0)],
        )

        await pipeline.apply(snap, observed, SourceTag.LIVE_FEED, False, NOW)

        assert sink.types == ["SCORE_CHANGE", "GOAL"]
        assert sink.events[1].player_id == "p9"  # type: ignore[union-attr]

    @pytest.mark.asyncio
    async def test_repeated_incident_list_announced_once(
        self,
        store: InMemoryReconciliationStore,
        pipeline: ReconcilePipeline,
        sink: RecordingSink,
        snapshot: MatchSnapshot,
    ) -> None:
        store.add(snapshot)
        observed = ProviderMatch(
            external_id="m1",
            incidents=[
                Incident(type=3, time=30, player_id="early"),
                Incident(type=3, time=72, player_id="late"),
            ],
        )

        await pipeline.apply(snapshot, observed, SourceTag.LIVE_FEED, False, NOW)
        row = await store.get("m1")
        assert row is not None
        await pipeline.apply(row, observed, SourceTag.LIVE_FEED, False, NOW + 30)

        assert [e.player_id for e in sink.events] == ["early", "late"]  # type: ignore[union-attr]


# ── Stuck-match detector ────────────────────────────────────────────────

class TestStuckDetector:

    @pytest.mark.asyncio
    async def test_late_start_picked_up(
        self,
        store: InMemoryReconciliationStore,
        provider: FakeProvider,
        stuck: StuckMatchDetector,
        sink: RecordingSink,
    ) -> None:
        store.add(MatchSnapshot(external_id="m1", status_id=1, match_time=NOW - 600))
        provider.live["m1"] = ProviderMatch(
            external_id="m1",
            status=MatchStatus.FIRST_HALF,
            kickoff_ts=NOW - 600,
            home=side(0),
            away=side(0),
        )

        report = await stuck.run()

        assert report.summary.updated == 1
        row = await store.get("m1")
        assert row is not None
        assert row.status_id == MatchStatus.FIRST_HALF.value
        assert row.status_source == "stuck-detector"
        assert row.minute == 11
        assert sink.types == ["MATCH_STATE_CHANGE", "MINUTE_UPDATE"]

    @pytest.mark.asyncio
    async def test_late_start_missing_from_provider_not_finished(
        self,
        store: InMemoryReconciliationStore,
        stuck: StuckMatchDetector,
    ) -> None:
        store.add(MatchSnapshot(external_id="m1", status_id=1, match_time=NOW - 600))
        report = await stuck.run()
        assert report.results[0].status == RefreshStatus.NOT_FOUND
        row = await store.get("m1")
        assert row is not None
        assert row.status_id == 1

    @pytest.mark.asyncio
    async def test_overdue_match_missing_from_provider_auto_finished(
        self,
        store: InMemoryReconciliationStore,
        stuck: StuckMatchDetector,
        sink: RecordingSink,
        snapshot: MatchSnapshot,
    ) -> None:
        store.add(snapshot.model_copy(update={
            "minute": 97,
            "home_score_timestamp": NOW - 2000,
            "away_score_timestamp": NOW - 2000,
        }))

        report = await stuck.run()

        assert report.summary.finished == 1
        row = await store.get("m1")
        assert row is not None
        assert row.status_id == MatchStatus.FINISHED.value
        assert row.status_source == "auto-finish"
        assert row.minute == 97
        assert sink.types == ["MATCH_STATE_CHANGE"]

    @pytest.mark.asyncio
    async def test_no_minute_match_finished_at_full_time(
        self,
        store: InMemoryReconciliationStore,
        stuck: StuckMatchDetector,
    ) -> None:
        store.add(MatchSnapshot(external_id="m1", status_id=2, match_time=NOW - 20000))
        await stuck.run()
        row = await store.get("m1")
        assert row is not None
        assert (row.status_id, row.minute) == (8, 90)

    @pytest.mark.asyncio
    async def test_provider_reports_finish(
        self,
        store: InMemoryReconciliationStore,
        provider: FakeProvider,
        stuck: StuckMatchDetector,
        snapshot: MatchSnapshot,
    ) -> None:
        store.add(snapshot.model_copy(update={"minute": 108}))
        provider.live["m1"] = ProviderMatch(
            external_id="m1", status=MatchStatus.FINISHED, home=side(2), away=side(1)
        )
        report = await stuck.run()
        assert report.results[0].status == RefreshStatus.FINISHED
        row = await store.get("m1")
        assert row is not None
        assert (row.status_id, row.minute, row.status_source) == (8, 108, "stuck-detector")

    @pytest.mark.asyncio
    async def test_cooldown_skips_recently_checked(
        self,
        store: InMemoryReconciliationStore,
        provider: FakeProvider,
        stuck: StuckMatchDetector,
    ) -> None:
        store.add(MatchSnapshot(external_id="m1", status_id=1, match_time=NOW - 600))
        await stuck.run()
        second = await stuck.run()
        assert second.summary.total == 0
        assert len(provider.calls) == 1

    @pytest.mark.asyncio
    async def test_single_provider_error_isolated(
        self,
        store: InMemoryReconciliationStore,
        provider: FakeProvider,
        stuck: StuckMatchDetector,
    ) -> None:
        store.add(MatchSnapshot(external_id="a", status_id=1, match_time=NOW - 600))
        store.add(MatchSnapshot(external_id="b", status_id=1, match_time=NOW - 700))
        provider.errors_for["a"] = ProviderError("502", status=502)
        report = await stuck.run()
        assert report.summary.total == 2
        assert report.summary.errors == 1
        assert report.summary.not_found == 1

    @pytest.mark.asyncio
    async def test_every_request_failing_aborts_run(
        self,
        store: InMemoryReconciliationStore,
        provider: FakeProvider,
        stuck: StuckMatchDetector,
    ) -> None:
        store.add(MatchSnapshot(external_id="a", status_id=1, match_time=NOW - 600))
        store.add(MatchSnapshot(external_id="b", status_id=1, match_time=NOW - 700))
        provider.error = ProviderError("timeout")
        with pytest.raises(ProviderUnavailableError):
            await stuck.run()

    @pytest.mark.asyncio
    async def test_lone_candidate_failing_is_reported(
        self,
        store: InMemoryReconciliationStore,
        provider: FakeProvider,
        stuck: StuckMatchDetector,
    ) -> None:
        store.add(MatchSnapshot(external_id="a", status_id=1, match_time=NOW - 600))
        provider.errors_for["a"] = ProviderError("502", status=502)
        report = await stuck.run()
        assert (report.summary.total, report.summary.errors) == (1, 1)

    @pytest.mark.asyncio
    async def test_provider_unavailable_propagates(
        self,
        store: InMemoryReconciliationStore,
        provider: FakeProvider,
        stuck: StuckMatchDetector,
    ) -> None:
        store.add(MatchSnapshot(external_id="a", status_id=1, match_time=NOW - 600))
        store.add(MatchSnapshot(external_id="b", status_id=1, match_time=NOW - 700))
        provider.error = ProviderUnavailableError("circuit open")
        with pytest.raises(ProviderUnavailableError):
            await stuck.run()
        assert len(provider.calls) == 1


# ── Forced refresh ──────────────────────────────────────────────────────

class TestForceRefresh:

    @pytest.mark.asyncio
    async def test_retracted_goal_announced(
        self,
        store: InMemoryReconciliationStore,
        provider: FakeProvider,
        force: ForceRefresh,
        sink: RecordingSink,
        snapshot: MatchSnapshot,
    ) -> None:
        store.add(snapshot.model_copy(update={"home_score_timestamp": NOW + 50, "away_score_timestamp": NOW + 50}))
        provider.live["m1"] = ProviderMatch(
            external_id="m1", status=MatchStatus.SECOND_HALF, minute=71, home=side(1), away=side(1)
        )

        report = await force.refresh_one("m1")

        assert report.ok
        assert report.results[0].status == RefreshStatus.UPDATED
        assert sink.types == ["MINUTE_UPDATE", "GOAL_CANCELLED"]
        row = await store.get("m1")
        assert row is not None
        assert row.score.as_tuple() == (1, 1)
        assert row.home_score_source == "manual"

    @pytest.mark.asyncio
    async def test_unknown_match(self, force: ForceRefresh) -> None:
        with pytest.raises(MatchNotFoundError):
            await force.refresh_one("nope")

    @pytest.mark.asyncio
    async def test_single_match_missing_from_provider(
        self, store: InMemoryReconciliationStore, force: ForceRefresh, snapshot: MatchSnapshot
    ) -> None:
        store.add(snapshot)
        report = await force.refresh_one("m1")
        assert report.summary.not_found == 1

    @pytest.mark.asyncio
    async def test_already_finished(
        self, store: InMemoryReconciliationStore, force: ForceRefresh, snapshot: MatchSnapshot
    ) -> None:
        store.add(snapshot.model_copy(update={"status_id": 8}))
        report = await force.refresh_one("m1")
        assert report.results[0].status == RefreshStatus.TERMINAL
        assert report.summary.unchanged == 1

    @pytest.mark.asyncio
    async def test_bulk_ignores_cooldown_and_overrides(
        self,
        store: InMemoryReconciliationStore,
        provider: FakeProvider,
        stuck: StuckMatchDetector,
        force: ForceRefresh,
    ) -> None:
        store.add(MatchSnapshot(
            external_id="m1", status_id=1, status_timestamp=NOW + 900, match_time=NOW - 600
        ))
        await stuck.run()
        provider.live["m1"] = ProviderMatch(external_id="m1", status=MatchStatus.FIRST_HALF)

        report = await force.refresh_stuck()

        assert report.summary.total == 1
        assert report.summary.updated == 1
        row = await store.get("m1")
        assert row is not None
        assert row.status_source == "api-force-refresh"


# ── Duplicate incidents across sources ──────────────────────────────────

@pytest.mark.asyncio
async def test_same_goal_from_feed_and_pull_announced_once(
    store: InMemoryReconciliationStore,
    provider: FakeProvider,
    pipeline: ReconcilePipeline,
    force: ForceRefresh,
    sink: RecordingSink,
    snapshot: MatchSnapshot,
) -> None:
    store.add(snapshot)
    goal = Incident(type=1, time=71, player_id="p9", home_score=3, away_score=1)
    await pipeline.apply(
        snapshot, ProviderMatch(external_id="m1", incidents=[goal]), SourceTag.LIVE_FEED, False, NOW
    )
    provider.live["m1"] = ProviderMatch(external_id="m1", status=MatchStatus.SECOND_HALF, incidents=[goal])
    await force.refresh_one("m1")

    assert sink.types.count("GOAL") == 1
    assert sink.types.count("SCORE_CHANGE") == 1


# ── Diary sync ──────────────────────────────────────────────────────────

class TestDiaryWindow:

    def test_local_day_bounds(self) -> None:
        start, end = local_day_bounds(NOW, 3)
        # 2025-10-09 00:00 at UTC+3
        assert start == 1_759_957_200
        assert end == start + 86399

    def test_two_provider_dates(self) -> None:
        assert provider_dates_for_local_day(NOW, 3, 8) == ["20251009", "20251010"]

    def test_same_offset_single_date(self) -> None:
        assert provider_dates_for_local_day(NOW, 8, 8) == ["20251009"]

    def test_merge_dedups_and_trims(self) -> None:
        start, end = 1000, 2000
        first = [ProviderMatch(external_id="a", match_time=1500, minute=1)]
        second = [
            ProviderMatch(external_id="a", match_time=1500, minute=2),
            ProviderMatch(external_id="b", match_time=2001),
            ProviderMatch(external_id="c"),
        ]
        merged = merge_day_window([first, second], start, end)
        assert [(m.external_id, m.minute) for m in merged] == [("a", 1)]


class TestDiarySync:

    @pytest.fixture
    def diary(
        self, store: InMemoryReconciliationStore, provider: FakeProvider, rsettings: ReconcilerSettings
    ) -> DiarySync:
        return DiarySync(store, provider, rsettings, clock=lambda: NOW)

    @pytest.mark.asyncio
    async def test_upserts_local_day(
        self,
        store: InMemoryReconciliationStore,
        provider: FakeProvider,
        diary: DiarySync,
    ) -> None:
        start, end = local_day_bounds(NOW, 3)
        store.add(MatchSnapshot(external_id="done", status_id=8, match_time=start + 100))
        provider.diary["20251009"] = [
            ProviderMatch(external_id="done", status=MatchStatus.SECOND_HALF, match_time=start + 100),
            ProviderMatch(external_id="early", status=MatchStatus.FINISHED, match_time=start - 100),
        ]
        provider.diary["20251010"] = [
            ProviderMatch(external_id="done", status=MatchStatus.FIRST_HALF, match_time=start + 100),
            ProviderMatch(external_id="late", status=MatchStatus.NOT_STARTED, match_time=end - 10),
        ]

        report = await diary.run()

        assert report.dates == ["20251009", "20251010"]
        assert (report.fetched, report.kept, report.upserted, report.failed) == (4, 2, 2, 0)
        assert await store.get("early") is None
        late = await store.get("late")
        assert late is not None
        assert late.status_source == "diary-sync"
        done = await store.get("done")
        assert done is not None
        assert done.status_id == 8

    @pytest.mark.asyncio
    async def test_unchanged_score_keeps_its_age(
        self, store: InMemoryReconciliationStore, provider: FakeProvider, diary: DiarySync
    ) -> None:
        start, _ = local_day_bounds(NOW, 3)
        store.add(MatchSnapshot(
            external_id="late-goal", status_id=4, minute=92, match_time=start + 100,
            status_timestamp=NOW - 1200, minute_timestamp=NOW - 60,
            home_score_display=1, away_score_display=1,
            home_score_timestamp=NOW - 1200, away_score_timestamp=NOW - 1200,
        ))
        provider.diary["20251010"] = [ProviderMatch(
            external_id="late-goal", status=MatchStatus.SECOND_HALF, minute=92,
            match_time=start + 100, home=side(1), away=side(1),
        )]

        report = await diary.run()

        assert report.upserted == 1
        row = await store.get("late-goal")
        assert row is not None
        assert (row.status_timestamp, row.minute_timestamp, row.score_timestamp) == (
            NOW - 1200, NOW - 60, NOW - 1200,
        )
        assert StuckCriteria(now=NOW + 300).reason(row) == "stale_score"

    @pytest.mark.asyncio
    async def test_changed_score_is_stamped(
        self, store: InMemoryReconciliationStore, provider: FakeProvider, diary: DiarySync
    ) -> None:
        start, _ = local_day_bounds(NOW, 3)
        store.add(MatchSnapshot(
            external_id="late-goal", status_id=4, minute=92, match_time=start + 100,
            home_score_display=1, away_score_display=1,
            home_score_timestamp=NOW - 1200, away_score_timestamp=NOW - 1200,
        ))
        provider.diary["20251010"] = [ProviderMatch(
            external_id="late-goal", status=MatchStatus.SECOND_HALF, minute=93,
            match_time=start + 100, home=side(2), away=side(1),
        )]

        await diary.run()

        row = await store.get("late-goal")
        assert row is not None
        assert row.score.as_tuple() == (2, 1)
        assert (row.minute_timestamp, row.score_timestamp, row.home_score_source) == (NOW, NOW, "diary-sync")
        assert StuckCriteria(now=NOW + 300).reason(row) is None

    @pytest.mark.asyncio
    async def test_one_date_failing_is_partial(
        self, provider: FakeProvider, diary: DiarySync
    ) -> None:
        provider.errors_for["20251010"] = ProviderError("502")
        report = await diary.run()
        assert report.failed == 1

    @pytest.mark.asyncio
    async def test_all_dates_failing_aborts(self, provider: FakeProvider, diary: DiarySync) -> None:
        provider.error = ProviderError("502")
        with pytest.raises(ProviderUnavailableError):
            await diary.run()


# ── Lineup pre-sync ─────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_lineup_pre_sync(
    store: InMemoryReconciliationStore,
    provider: FakeProvider,
    rsettings: ReconcilerSettings,
) -> None:
    for match_id, offset in (("a", 300), ("b", 600), ("c", 900)):
        store.add(MatchSnapshot(external_id=match_id, status_id=1, match_time=NOW + offset))
    provider.lineups["a"] = {"home": ["p1"], "away": ["p2"]}
    provider.errors_for["c"] = ProviderError("500")

    report = await LineupPreSync(store, provider, rsettings, clock=lambda: NOW).run()

    assert (report.candidates, report.synced, report.missing, report.failed) == (3, 1, 1, 1)
    assert store.lineups == {"a": {"home": ["p1"], "away": ["p2"]}}
    row = await store.get("a")
    assert row is not None
    assert row.lineup_synced_at == NOW


# ── End-to-end scenarios ────────────────────────────────────────────────

class TestScenarios:

    @pytest.mark.asyncio
    async def test_late_start_with_provider_minute(
        self,
        store: InMemoryReconciliationStore,
        provider: FakeProvider,
        stuck: StuckMatchDetector,
        sink: RecordingSink,
    ) -> None:
        store.add(MatchSnapshot(external_id="m1", status_id=1, match_time=NOW - 2400))
        provider.live["m1"] = ProviderMatch(external_id="m1", status=MatchStatus.FIRST_HALF, minute=38)

        await stuck.run()

        row = await store.get("m1")
        assert row is not None
        assert (row.status_id, row.minute) == (2, 38)
        assert sink.types == ["MATCH_STATE_CHANGE", "MINUTE_UPDATE"]

    @pytest.mark.asyncio
    async def test_abandoned_match_auto_finished(
        self,
        store: InMemoryReconciliationStore,
        stuck: StuckMatchDetector,
        sink: RecordingSink,
    ) -> None:
        store.add(MatchSnapshot(
            external_id="m1",
            status_id=4,
            minute=91,
            home_score_display=1,
            away_score_display=1,
            home_score_timestamp=NOW - 1200,
            away_score_timestamp=NOW - 1200,
            match_time=NOW - 6600,
        ))

        await stuck.run()

        row = await store.get("m1")
        assert row is not None
        assert row.status_id == MatchStatus.FINISHED.value
        assert row.status_source == "auto-finish"
        assert row.minute is not None and row.minute >= 90
        assert row.home_score_timestamp == NOW - 1200
        assert "SCORE_CHANGE" not in sink.types

    @pytest.mark.asyncio
    async def test_corrected_score_from_incident_stream(
        self,
        store: InMemoryReconciliationStore,
        pipeline: ReconcilePipeline,
        sink: RecordingSink,
    ) -> None:
        snap = MatchSnapshot(
            external_id="m1",
            status_id=2,
            minute=30,
            home_score_display=1,
            away_score_display=0,
            home_score_timestamp=NOW - 120,
            away_score_timestamp=NOW - 120,
        )
        store.add(snap)
        var = Incident(type=28, time=31, var_result=2, home_score=0, away_score=0)

        await pipeline.apply(
            snap, ProviderMatch(external_id="m1", incidents=[var]), SourceTag.LIVE_FEED, False, NOW
        )

        assert sink.types == ["GOAL_CANCELLED"]
        event = sink.events[0]
        assert (event.previous_home_score, event.previous_away_score) == (1, 0)  # type: ignore[union-attr]
        assert (event.home_score, event.away_score) == (0, 0)  # type: ignore[union-attr]

    @pytest.mark.asyncio
    async def test_two_forced_refreshes_one_goal(
        self,
        store: InMemoryReconciliationStore,
        provider: FakeProvider,
        force: ForceRefresh,
        sink: RecordingSink,
        snapshot: MatchSnapshot,
    ) -> None:
        store.add(snapshot)
        provider.live["m1"] = ProviderMatch(
            external_id="m1",
            status=MatchStatus.SECOND_HALF,
            incidents=[Incident(type=1, time=75, player_id="p9", home_score=3, away_score=1)],
        )

        await force.refresh_one("m1")
        await force.refresh_one("m1")

        assert sink.types.count("GOAL") == 1
