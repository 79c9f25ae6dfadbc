"""
Semantic match events pushed to real-time subscribers.

The set of event types is closed: every EventType member has exactly one model
below, and to_envelope() refuses anything outside EVENT_MODELS. The mapping is
checked when this module is imported, so a new EventType without a model fails
at startup rather than at the first broadcast.
"""
from __future__ import annotations

import time
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from shared.models.enums import CardType, EventType


def now_ms() -> int:
    return int(time.time() * 1000)


class EventModel(BaseModel):
    """Wire shape: camelCase keys, `type` + `matchId` + fields + `timestamp`."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    match_id: str
    timestamp: int = Field(default_factory=now_ms)


class GoalEvent(EventModel):
    type: Literal[EventType.GOAL] = EventType.GOAL
    time: Optional[int] = None
    position: Optional[int] = None
    player_id: Optional[str] = None
    player_name: Optional[str] = None
    assist1_id: Optional[str] = None
    assist1_name: Optional[str] = None
    assist2_id: Optional[str] = None
    assist2_name: Optional[str] = None
    home_score: int = 0
    away_score: int = 0


class CardEvent(EventModel):
    type: Literal[EventType.CARD] = EventType.CARD
    card_type: CardType
    time: Optional[int] = None
    position: Optional[int] = None
    player_id: Optional[str] = None
    player_name: Optional[str] = None


class SubstitutionEvent(EventModel):
    type: Literal[EventType.SUBSTITUTION] = EventType.SUBSTITUTION
    time: Optional[int] = None
    position: Optional[int] = None
    in_player_id: Optional[str] = None
    in_player_name: Optional[str] = None
    out_player_id: Optional[str] = None
    out_player_name: Optional[str] = None


class GoalCancelledEvent(EventModel):
    type: Literal[EventType.GOAL_CANCELLED] = EventType.GOAL_CANCELLED
    home_score: int
    away_score: int
    previous_home_score: int
    previous_away_score: int


class ScoreChangeEvent(EventModel):
    type: Literal[EventType.SCORE_CHANGE] = EventType.SCORE_CHANGE
    home_score: int
    away_score: int
    previous_home_score: int
    previous_away_score: int
    minute: Optional[int] = None
    status_id: Optional[int] = None


class MatchStateChangeEvent(EventModel):
    type: Literal[EventType.MATCH_STATE_CHANGE] = EventType.MATCH_STATE_CHANGE
    status_id: int
    previous_status_id: Optional[int] = None


class MinuteUpdateEvent(EventModel):
    type: Literal[EventType.MINUTE_UPDATE] = EventType.MINUTE_UPDATE
    minute: int
    status_id: Optional[int] = None


MatchEvent = Annotated[
    Union[
        GoalEvent,
        CardEvent,
        SubstitutionEvent,
        GoalCancelledEvent,
        ScoreChangeEvent,
        MatchStateChangeEvent,
        MinuteUpdateEvent,
    ],
    Field(discriminator="type"),
]

EVENT_MODELS: dict[EventType, type[EventModel]] = {
    EventType.GOAL: GoalEvent,
    EventType.CARD: CardEvent,
    EventType.SUBSTITUTION: SubstitutionEvent,
    EventType.GOAL_CANCELLED: GoalCancelledEvent,
    EventType.SCORE_CHANGE: ScoreChangeEvent,
    EventType.MATCH_STATE_CHANGE: MatchStateChangeEvent,
    EventType.MINUTE_UPDATE: MinuteUpdateEvent,
}

_unmapped = set(EventType) - set(EVENT_MODELS)
if _unmapped:
    raise RuntimeError(f"Event types without a wire model: {sorted(t.value for t in _unmapped)}")


def to_envelope(event: EventModel) -> dict[str, Any]:
    """Serialize an event for the broadcast channel."""
    event_type = getattr(event, "type", None)
    model = EVENT_MODELS.get(event_type) if isinstance(event_type, EventType) else None
    if model is None or not isinstance(event, model):
        raise TypeError(f"Unsupported event for broadcast: {type(event).__name__}")
    return event.model_dump(mode="json", by_alias=True)
