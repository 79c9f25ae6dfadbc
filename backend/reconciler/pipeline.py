"""
Shared reconcile step: diff an observed provider record against the stored
snapshot, write changed field groups conditionally, derive events for the
writes that won, and broadcast them in detection order.

Used by the stuck-match detector, forced refresh and the push-feed consumer.
"""
from __future__ import annotations

from typing import Optional, Protocol, Sequence

from shared.models.domain import FieldChanges, Incident, MatchSnapshot, ProviderMatch, ScoreLine, ScoreValue
from shared.models.enums import FieldGroup, MatchStatus, SourceTag
from shared.models.events import MatchEvent
from shared.utils.latency import LatencyMonitor
from shared.utils.logging import get_logger

from ingest.normalization.payload import estimate_minute
from reconciler.detector import EventDetector
from reconciler.store import ReconciliationStore, terminal_minute

logger = get_logger(__name__)

INGEST_CHECKPOINT = "SNAPSHOT"


class EventSink(Protocol):
    async def fan_out(self, event: MatchEvent, ingest_ts: Optional[float] = None) -> int:
        ...


def _incident_score(incidents: Sequence[Incident]) -> Optional[ScoreLine]:
    """Score carried by the most recent incident that has one."""
    for incident in reversed(incidents):
        if incident.home_score is not None and incident.away_score is not None:
            return ScoreLine(home=incident.home_score, away=incident.away_score)
    return None


class ReconcilePipeline:
    def __init__(
        self,
        store: ReconciliationStore,
        detector: EventDetector,
        latency: LatencyMonitor,
        sink: EventSink,
    ) -> None:
        self._store = store
        self._detector = detector
        self._latency = latency
        self._sink = sink

    async def apply(
        self,
        previous: MatchSnapshot,
        observed: ProviderMatch,
        source: SourceTag,
        allow_override: bool,
        now: int,
        write_ts: Optional[int] = None,
    ) -> FieldChanges:
        """
        Reconcile one match. `now` drives minute estimation; `write_ts`
        (defaults to now) is the authority timestamp of every write.
        """
        match_id = previous.external_id
        ts = write_ts if write_ts is not None else now
        ingest_ts = self._latency.record_ingest(INGEST_CHECKPOINT, match_id)
        changes = FieldChanges()

        if previous.is_terminal:
            logger.debug("write_refused_terminal", match_id=match_id, source=source.value)
            changes.finished = True
            return changes

        events: list[MatchEvent] = []
        status_id = previous.status_id

        # ── Status ──
        new_status = observed.status
        if new_status is not None and new_status.value != previous.status_id:
            if await self._store.conditional_update(
                match_id, FieldGroup.STATUS, new_status, source, ts, allow_override
            ):
                changes.status = True
                status_id = new_status.value
                event = self._detector.detect_state_change(match_id, new_status.value, previous.status_id)
                if event is not None:
                    events.append(event)
        changes.finished = status_id == MatchStatus.FINISHED.value

        # ── Minute ──
        minute = observed.minute
        if minute is None:
            minute = estimate_minute(MatchStatus.coerce(status_id), observed.kickoff_ts, now)
        if changes.finished and changes.status:
            minute = terminal_minute(
                minute if minute is not None else previous.minute, self._store.full_time_minute
            )
        if minute is not None and minute != previous.minute:
            if await self._store.conditional_update(
                match_id, FieldGroup.MINUTE, minute, source, ts, allow_override
            ):
                changes.minute = True
                event = self._detector.detect_minute_update(match_id, minute, previous.minute, status_id)
                if event is not None:
                    events.append(event)
        current_minute = minute if changes.minute else previous.minute

        # ── Score ──
        score: Optional[ScoreValue] = None
        if observed.has_score:
            score = observed.score
        else:
            line = _incident_score(observed.incidents)
            if line is not None:
                score = ScoreValue(home_display=line.home, away_display=line.away)
        current_score = previous.score
        if score is not None and score.home_display is not None and score.line != previous.score:
            if await self._store.conditional_update(
                match_id, FieldGroup.SCORE, score, source, ts, allow_override
            ):
                changes.score = True
                current_score = score.line
                event = self._detector.detect_score_change(
                    match_id, score.line, previous.score, current_minute, status_id
                )
                if event is not None:
                    events.append(event)

        # ── Incidents ──
        if observed.incidents:
            events.extend(self._detector.detect_incidents(match_id, observed.incidents, current_score))

        await self._emit(match_id, events, ingest_ts, changes)
        if changes.any or changes.events:
            logger.info(
                "match_reconciled",
                match_id=match_id,
                source=source.value,
                status=changes.status,
                minute=changes.minute,
                score=changes.score,
                finished=changes.finished,
                events=changes.events,
            )
        return changes

    async def finish(self, previous: MatchSnapshot, source: SourceTag, now: int) -> FieldChanges:
        """Time-based closure through mark_terminal, announced like any other transition."""
        match_id = previous.external_id
        ingest_ts = self._latency.record_ingest(INGEST_CHECKPOINT, match_id)
        if previous.is_terminal:
            return FieldChanges(finished=True)
        if not await self._store.mark_terminal(match_id, previous.minute, source, now):
            return FieldChanges()

        finished = MatchStatus.FINISHED.value
        minute = terminal_minute(previous.minute, self._store.full_time_minute)
        changes = FieldChanges(status=True, minute=minute != previous.minute, finished=True)
        events: list[MatchEvent] = []
        for event in (
            self._detector.detect_state_change(match_id, finished, previous.status_id),
            self._detector.detect_minute_update(match_id, minute, previous.minute, finished),
        ):
            if event is not None:
                events.append(event)
        await self._emit(match_id, events, ingest_ts, changes)
        return changes

    async def _emit(
        self, match_id: str, events: Sequence[MatchEvent], ingest_ts: float, changes: FieldChanges
    ) -> None:
        for event in events:
            event_type = event.type.value
            self._latency.record_emitted(event_type, match_id, ingest_ts)
            await self._sink.fan_out(event, ingest_ts)
            changes.events.append(event_type)
