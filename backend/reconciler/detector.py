"""
Event detector: turns incident records and snapshot deltas into typed match events.

Detection never raises on partial provider data; missing player or assist ids
simply leave the corresponding event fields empty. Incident-derived events and
score transitions are deduplicated by a deterministic event id inside a short
window so the same goal arriving from the push feed and a forced pull is only
announced once. Provider records repeat the whole incident list on every pull,
so a batch additionally skips incidents whose id is still in the map; each
sighting keeps the entry alive until the dedup_cleanup job sweeps it.
"""
from __future__ import annotations

import time
from typing import Callable, Optional, Sequence, TypeVar, Union

from shared.models.domain import Incident, ScoreLine
from shared.models.enums import CardType, EventType, IncidentType
from shared.models.events import (
    CardEvent,
    EventModel,
    GoalCancelledEvent,
    GoalEvent,
    MatchEvent,
    MatchStateChangeEvent,
    MinuteUpdateEvent,
    ScoreChangeEvent,
    SubstitutionEvent,
)
from shared.utils.logging import get_logger
from shared.utils.metrics import EVENTS_DETECTED, EVENTS_SUPPRESSED

logger = get_logger(__name__)

_E = TypeVar("_E", bound=EventModel)


def _side(value: Optional[int]) -> int:
    return value if value is not None else 0


def incident_event_id(match_id: str, kind: EventType, incident: Incident) -> str:
    """Deterministic dedup id of a goal, card or substitution incident."""
    player = incident.player_id
    if kind == EventType.SUBSTITUTION:
        player = incident.in_player_id or incident.out_player_id
    return f"{match_id}:{kind.value}:{incident.time}:{player or 'unknown'}"


class EventDetector:
    """Stateful only through its dedup map; one instance per process."""

    def __init__(
        self,
        dedup_window_s: float = 5.0,
        default_max_age_s: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._window_s = dedup_window_s
        self._default_max_age_s = default_max_age_s
        self._clock = clock
        self._seen: dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._seen)

    # ── Dedup ───────────────────────────────────────────────────────────

    def _is_duplicate(self, event_id: str, event_type: EventType) -> bool:
        now = self._clock()
        seen_at = self._seen.get(event_id)
        if seen_at is not None and now - seen_at < self._window_s:
            EVENTS_SUPPRESSED.labels(event_type=event_type.value).inc()
            logger.debug("event_suppressed", event_id=event_id)
            return True
        self._seen[event_id] = now
        return False

    def _still_tracked(self, event_id: str) -> bool:
        """An incident already announced and seen again before the entry was swept."""
        now = self._clock()
        seen_at = self._seen.get(event_id)
        if seen_at is None or now - seen_at >= self._default_max_age_s:
            return False
        self._seen[event_id] = now
        return True

    def cleanup_old_events(self, max_age_s: Optional[float] = None) -> int:
        """Drop dedup entries older than max_age_s. Returns the number removed."""
        cutoff = self._clock() - (max_age_s if max_age_s is not None else self._default_max_age_s)
        stale = [key for key, seen_at in self._seen.items() if seen_at < cutoff]
        for key in stale:
            del self._seen[key]
        if stale:
            logger.debug("dedup_cleanup", removed=len(stale), remaining=len(self._seen))
        return len(stale)

    @staticmethod
    def _emitted(event: _E) -> _E:
        EVENTS_DETECTED.labels(event_type=event.type.value).inc()  # type: ignore[attr-defined]
        return event

    # ── Incident events ─────────────────────────────────────────────────

    def detect_goal(
        self, match_id: str, incident: Incident, previous_score: Optional[ScoreLine] = None
    ) -> Optional[GoalEvent]:
        if not incident.is_goal:
            return None
        if self._is_duplicate(incident_event_id(match_id, EventType.GOAL, incident), EventType.GOAL):
            return None

        prev = previous_score or ScoreLine()
        home = incident.home_score if incident.home_score is not None else _side(prev.home)
        away = incident.away_score if incident.away_score is not None else _side(prev.away)
        return self._emitted(GoalEvent(
            match_id=match_id,
            time=incident.time,
            position=incident.position,
            player_id=incident.player_id,
            player_name=incident.player_name,
            assist1_id=incident.assist1_id,
            assist1_name=incident.assist1_name,
            assist2_id=incident.assist2_id,
            assist2_name=incident.assist2_name,
            home_score=home,
            away_score=away,
        ))

    def detect_card(self, match_id: str, incident: Incident) -> Optional[CardEvent]:
        if not incident.is_card:
            return None
        if self._is_duplicate(incident_event_id(match_id, EventType.CARD, incident), EventType.CARD):
            return None
        card_type = CardType.YELLOW if incident.kind == IncidentType.YELLOW_CARD else CardType.RED
        return self._emitted(CardEvent(
            match_id=match_id,
            card_type=card_type,
            time=incident.time,
            position=incident.position,
            player_id=incident.player_id,
            player_name=incident.player_name,
        ))

    def detect_substitution(self, match_id: str, incident: Incident) -> Optional[SubstitutionEvent]:
        if not incident.is_substitution:
            return None
        event_id = incident_event_id(match_id, EventType.SUBSTITUTION, incident)
        if self._is_duplicate(event_id, EventType.SUBSTITUTION):
            return None
        return self._emitted(SubstitutionEvent(
            match_id=match_id,
            time=incident.time,
            position=incident.position,
            in_player_id=incident.in_player_id,
            in_player_name=incident.in_player_name,
            out_player_id=incident.out_player_id,
            out_player_name=incident.out_player_name,
        ))

    def detect_incidents(
        self,
        match_id: str,
        incidents: Sequence[Incident],
        previous_score: Optional[ScoreLine] = None,
    ) -> list[MatchEvent]:
        """
        Goal, card and substitution events for a batch, in incident order.

        Every incident is considered regardless of its clock time; ones already
        announced and still tracked in the dedup map are skipped.
        """
        events: list[MatchEvent] = []
        for incident in incidents:
            event: Optional[MatchEvent]
            if incident.is_goal:
                kind = EventType.GOAL
            elif incident.is_card:
                kind = EventType.CARD
            elif incident.is_substitution:
                kind = EventType.SUBSTITUTION
            else:
                continue
            if self._still_tracked(incident_event_id(match_id, kind, incident)):
                EVENTS_SUPPRESSED.labels(event_type=kind.value).inc()
                continue
            if kind == EventType.GOAL:
                event = self.detect_goal(match_id, incident, previous_score)
            elif kind == EventType.CARD:
                event = self.detect_card(match_id, incident)
            else:
                event = self.detect_substitution(match_id, incident)
            if event is not None:
                events.append(event)
        return events

    # ── Snapshot deltas ─────────────────────────────────────────────────

    def detect_score_change(
        self,
        match_id: str,
        current: ScoreLine,
        previous: ScoreLine,
        minute: Optional[int] = None,
        status_id: Optional[int] = None,
    ) -> Optional[Union[ScoreChangeEvent, GoalCancelledEvent]]:
        """
        Classify a score transition.

        Any side going down is a retraction (VAR, correction) and yields
        GoalCancelledEvent; otherwise a change on either side yields
        ScoreChangeEvent. Unknown current scores are not comparable.
        """
        if current.home is None or current.away is None:
            return None
        home, away = current.home, current.away
        prev_home, prev_away = _side(previous.home), _side(previous.away)
        if (home, away) == (prev_home, prev_away):
            return None

        transition = f"{prev_home}-{prev_away}->{home}-{away}"
        if home < prev_home or away < prev_away:
            if self._is_duplicate(f"{match_id}:GOAL_CANCELLED:{transition}", EventType.GOAL_CANCELLED):
                return None
            return self._emitted(GoalCancelledEvent(
                match_id=match_id,
                home_score=home,
                away_score=away,
                previous_home_score=prev_home,
                previous_away_score=prev_away,
            ))

        if self._is_duplicate(f"{match_id}:SCORE_CHANGE:{transition}", EventType.SCORE_CHANGE):
            return None
        return self._emitted(ScoreChangeEvent(
            match_id=match_id,
            home_score=home,
            away_score=away,
            previous_home_score=prev_home,
            previous_away_score=prev_away,
            minute=minute,
            status_id=status_id,
        ))

    def detect_state_change(
        self, match_id: str, status_id: int, previous_status_id: Optional[int]
    ) -> Optional[MatchStateChangeEvent]:
        if status_id == previous_status_id:
            return None
        return self._emitted(MatchStateChangeEvent(
            match_id=match_id, status_id=status_id, previous_status_id=previous_status_id
        ))

    def detect_minute_update(
        self,
        match_id: str,
        minute: Optional[int],
        previous_minute: Optional[int],
        status_id: Optional[int] = None,
    ) -> Optional[MinuteUpdateEvent]:
        if minute is None or minute == previous_minute:
            return None
        return self._emitted(MinuteUpdateEvent(match_id=match_id, minute=minute, status_id=status_id))
