"""Unit tests for EventDetector: incident events, score transitions, dedup window."""
from __future__ import annotations

from shared.models.domain import Incident, ScoreLine
from shared.models.enums import CardType, EventType
from shared.models.events import GoalCancelledEvent, GoalEvent, ScoreChangeEvent

from reconciler.detector import EventDetector


class FakeClock:
    def __init__(self, t: float = 1000.0) -> None:
        self.t = t

    def __call__(self) -> float:
        return self.t


def goal(time: int = 23, player_id: str | None = "p9", home: int | None = 1, away: int | None = 0) -> Incident:
    return Incident(type=1, time=time, player_id=player_id, home_score=home, away_score=away)


# ── Goals, cards, substitutions ─────────────────────────────────────────

class TestIncidentEvents:

    def test_goal_carries_incident_score(self) -> None:
        event = EventDetector().detect_goal("m1", goal())
        assert isinstance(event, GoalEvent)
        assert (event.home_score, event.away_score) == (1, 0)
        assert event.player_id == "p9"

    def test_goal_falls_back_to_previous_score(self) -> None:
        event = EventDetector().detect_goal("m1", goal(home=None, away=None), ScoreLine(home=2, away=1))
        assert event is not None
        assert (event.home_score, event.away_score) == (2, 1)

    def test_goal_without_any_score_is_zero(self) -> None:
        event = EventDetector().detect_goal("m1", goal(home=None, away=None))
        assert event is not None
        assert (event.home_score, event.away_score) == (0, 0)

    def test_goal_without_player_still_detected(self) -> None:
        event = EventDetector().detect_goal("m1", goal(player_id=None))
        assert event is not None
        assert event.player_id is None

    def test_non_goal_ignored(self) -> None:
        assert EventDetector().detect_goal("m1", Incident(type=3, time=5)) is None

    def test_yellow_card(self) -> None:
        event = EventDetector().detect_card("m1", Incident(type=3, time=30, player_id="p4"))
        assert event is not None
        assert event.card_type == CardType.YELLOW

    def test_red_card(self) -> None:
        event = EventDetector().detect_card("m1", Incident(type=4, time=80, player_id="p4"))
        assert event is not None
        assert event.card_type == CardType.RED

    def test_substitution(self) -> None:
        event = EventDetector().detect_substitution(
            "m1", Incident(type=9, time=60, in_player_id="p12", out_player_id="p7")
        )
        assert event is not None
        assert event.in_player_id == "p12"
        assert event.out_player_id == "p7"

    def test_batch_keeps_order_and_skips_other_types(self) -> None:
        incidents = [
            Incident(type=2, time=10),
            goal(time=12),
            Incident(type=28, time=14, var_result=2),
            Incident(type=3, time=20, player_id="p3"),
            Incident(type=9, time=46, in_player_id="p14"),
        ]
        events = EventDetector().detect_incidents("m1", incidents)
        assert [e.type for e in events] == [EventType.GOAL, EventType.CARD, EventType.SUBSTITUTION]


# ── Dedup ───────────────────────────────────────────────────────────────

class TestDedup:

    def test_same_goal_twice_inside_window_suppressed(self) -> None:
        clock = FakeClock()
        detector = EventDetector(dedup_window_s=5.0, clock=clock)
        assert detector.detect_goal("m1", goal()) is not None
        clock.t += 2.0
        assert detector.detect_goal("m1", goal()) is None

    def test_same_goal_after_window_emitted_again(self) -> None:
        clock = FakeClock()
        detector = EventDetector(dedup_window_s=5.0, clock=clock)
        assert detector.detect_goal("m1", goal()) is not None
        clock.t += 5.0
        assert detector.detect_goal("m1", goal()) is not None

    def test_different_minute_is_a_different_goal(self) -> None:
        detector = EventDetector()
        assert detector.detect_goal("m1", goal(time=23)) is not None
        assert detector.detect_goal("m1", goal(time=67)) is not None

    def test_same_incident_on_other_match_not_suppressed(self) -> None:
        detector = EventDetector()
        assert detector.detect_goal("m1", goal()) is not None
        assert detector.detect_goal("m2", goal()) is not None

    def test_repeated_batch_stays_quiet_after_window(self) -> None:
        clock = FakeClock()
        detector = EventDetector(dedup_window_s=5.0, default_max_age_s=300.0, clock=clock)
        assert len(detector.detect_incidents("m1", [goal()])) == 1
        clock.t += 60.0
        assert detector.detect_incidents("m1", [goal()]) == []
        clock.t += 250.0
        # the sighting at +60 kept the entry alive
        assert detector.detect_incidents("m1", [goal()]) == []

    def test_batch_announces_again_once_swept(self) -> None:
        clock = FakeClock()
        detector = EventDetector(dedup_window_s=5.0, default_max_age_s=300.0, clock=clock)
        detector.detect_incidents("m1", [goal()])
        clock.t += 301.0
        assert detector.cleanup_old_events() == 1
        assert len(detector.detect_incidents("m1", [goal()])) == 1

    def test_batch_considers_incidents_of_any_minute(self) -> None:
        detector = EventDetector()
        detector.detect_incidents("m1", [goal(time=70)])
        events = detector.detect_incidents("m1", [goal(time=70), goal(time=35, player_id="p3")])
        assert [e.time for e in events] == [35]  # type: ignore[union-attr]

    def test_cleanup_removes_old_entries(self) -> None:
        clock = FakeClock()
        detector = EventDetector(default_max_age_s=300.0, clock=clock)
        detector.detect_goal("m1", goal(time=10))
        clock.t += 200.0
        detector.detect_goal("m1", goal(time=20))
        clock.t += 150.0
        assert detector.cleanup_old_events() == 1
        assert len(detector) == 1

    def test_cleanup_with_explicit_age(self) -> None:
        clock = FakeClock()
        detector = EventDetector(clock=clock)
        detector.detect_card("m1", Incident(type=3, time=10, player_id="p1"))
        clock.t += 10.0
        assert detector.cleanup_old_events(max_age_s=5.0) == 1
        assert len(detector) == 0


# ── Score transitions ───────────────────────────────────────────────────

class TestScoreChange:

    def test_increase_is_score_change(self) -> None:
        event = EventDetector().detect_score_change("m1", ScoreLine(home=2, away=1), ScoreLine(home=1, away=1), 67, 4)
        assert isinstance(event, ScoreChangeEvent)
        assert (event.previous_home_score, event.home_score) == (1, 2)
        assert event.minute == 67

    def test_decrease_is_goal_cancelled(self) -> None:
        event = EventDetector().detect_score_change("m1", ScoreLine(home=1, away=1), ScoreLine(home=2, away=1))
        assert isinstance(event, GoalCancelledEvent)
        assert (event.home_score, event.previous_home_score) == (1, 2)

    def test_mixed_change_with_a_decrease_is_goal_cancelled(self) -> None:
        event = EventDetector().detect_score_change("m1", ScoreLine(home=0, away=2), ScoreLine(home=1, away=1))
        assert isinstance(event, GoalCancelledEvent)

    def test_unknown_previous_counts_as_zero(self) -> None:
        event = EventDetector().detect_score_change("m1", ScoreLine(home=1, away=0), ScoreLine())
        assert isinstance(event, ScoreChangeEvent)
        assert event.previous_home_score == 0

    def test_unchanged(self) -> None:
        assert EventDetector().detect_score_change("m1", ScoreLine(home=1, away=0), ScoreLine(home=1, away=0)) is None

    def test_unknown_current_not_comparable(self) -> None:
        assert EventDetector().detect_score_change("m1", ScoreLine(home=None, away=1), ScoreLine(home=0, away=0)) is None

    def test_same_transition_deduplicated(self) -> None:
        detector = EventDetector()
        assert detector.detect_score_change("m1", ScoreLine(home=1, away=0), ScoreLine(home=0, away=0)) is not None
        assert detector.detect_score_change("m1", ScoreLine(home=1, away=0), ScoreLine(home=0, away=0)) is None


# ── State and minute ────────────────────────────────────────────────────

class TestStateAndMinute:

    def test_state_change(self) -> None:
        event = EventDetector().detect_state_change("m1", 8, 4)
        assert event is not None
        assert (event.status_id, event.previous_status_id) == (8, 4)

    def test_same_state(self) -> None:
        assert EventDetector().detect_state_change("m1", 4, 4) is None

    def test_state_change_not_deduplicated(self) -> None:
        detector = EventDetector()
        assert detector.detect_state_change("m1", 2, 1) is not None
        assert detector.detect_state_change("m1", 2, 1) is not None

    def test_minute_update(self) -> None:
        event = EventDetector().detect_minute_update("m1", 71, 70, 4)
        assert event is not None
        assert event.minute == 71

    def test_minute_none_or_same(self) -> None:
        detector = EventDetector()
        assert detector.detect_minute_update("m1", None, 70) is None
        assert detector.detect_minute_update("m1", 70, 70) is None
