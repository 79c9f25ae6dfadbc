"""Domain enumerations for the live reconciler."""
from __future__ import annotations

from enum import Enum


class MatchStatus(int, Enum):
    """Provider status ids for a football match."""
    ABNORMAL = 0
    NOT_STARTED = 1
    FIRST_HALF = 2
    HALF_TIME = 3
    SECOND_HALF = 4
    OVERTIME = 5
    OVERTIME_DEPRECATED = 6
    PENALTY_SHOOTOUT = 7
    FINISHED = 8
    DELAY = 9
    INTERRUPT = 10
    CUT_IN_HALF = 11
    CANCEL = 12
    TO_BE_DETERMINED = 13

    @property
    def is_live(self) -> bool:
        return self in LIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self == MatchStatus.FINISHED

    @property
    def rank(self) -> int | None:
        """Position in the forward-only lifecycle; None for off-machine statuses."""
        try:
            return STATUS_ORDER.index(self)
        except ValueError:
            return None

    @classmethod
    def coerce(cls, value: object) -> "MatchStatus | None":
        if isinstance(value, bool) or not isinstance(value, int):
            return None
        try:
            return cls(value)
        except ValueError:
            return None


LIVE_STATUSES: frozenset[MatchStatus] = frozenset({
    MatchStatus.FIRST_HALF,
    MatchStatus.HALF_TIME,
    MatchStatus.SECOND_HALF,
    MatchStatus.OVERTIME,
    MatchStatus.PENALTY_SHOOTOUT,
})

# NOT_STARTED -> FIRST_HALF -> HALF_TIME -> SECOND_HALF -> (OVERTIME -> PENALTY_SHOOTOUT)? -> FINISHED
STATUS_ORDER: tuple[MatchStatus, ...] = (
    MatchStatus.NOT_STARTED,
    MatchStatus.FIRST_HALF,
    MatchStatus.HALF_TIME,
    MatchStatus.SECOND_HALF,
    MatchStatus.OVERTIME,
    MatchStatus.PENALTY_SHOOTOUT,
    MatchStatus.FINISHED,
)


class FieldGroup(str, Enum):
    """Unit of independent conditional writes."""
    STATUS = "status"
    MINUTE = "minute"
    SCORE = "score"


class SourceTag(str, Enum):
    """Which subsystem last wrote a field group."""
    LIVE_FEED = "live-feed"
    DIARY_SYNC = "diary-sync"
    STUCK_DETECTOR = "stuck-detector"
    AUTO_FINISH = "auto-finish"
    API_FORCE_REFRESH = "api-force-refresh"
    MANUAL = "manual"


class IncidentType(int, Enum):
    """TheSports technical-statistic codes carried by incidents."""
    GOAL = 1
    CORNER = 2
    YELLOW_CARD = 3
    RED_CARD = 4
    OFFSIDE = 5
    FREE_KICK = 6
    GOAL_KICK = 7
    PENALTY = 8
    SUBSTITUTION = 9
    START = 10
    MIDFIELD = 11
    END = 12
    HALFTIME_SCORE = 13
    CARD_UPGRADE_CONFIRMED = 15
    PENALTY_MISSED = 16
    OWN_GOAL = 17
    INJURY_TIME = 19
    SHOTS_ON_TARGET = 21
    SHOTS_OFF_TARGET = 22
    ATTACKS = 23
    DANGEROUS_ATTACK = 24
    BALL_POSSESSION = 25
    OVERTIME_OVER = 26
    PENALTY_KICK_ENDED = 27
    VAR = 28
    PENALTY_SHOOTOUT = 29
    PENALTY_MISSED_SHOOTOUT = 30

    @property
    def is_goal(self) -> bool:
        return self in (IncidentType.GOAL, IncidentType.OWN_GOAL)

    @property
    def is_card(self) -> bool:
        return self in (
            IncidentType.YELLOW_CARD,
            IncidentType.RED_CARD,
            IncidentType.CARD_UPGRADE_CONFIRMED,
        )


class EventType(str, Enum):
    GOAL = "GOAL"
    CARD = "CARD"
    SUBSTITUTION = "SUBSTITUTION"
    GOAL_CANCELLED = "GOAL_CANCELLED"
    SCORE_CHANGE = "SCORE_CHANGE"
    MATCH_STATE_CHANGE = "MATCH_STATE_CHANGE"
    MINUTE_UPDATE = "MINUTE_UPDATE"


class CardType(str, Enum):
    YELLOW = "YELLOW"
    RED = "RED"


class RefreshStatus(str, Enum):
    """Per-match outcome of a forced or scheduled refresh."""
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    FINISHED = "finished"
    NOT_FOUND = "not_found"
    TERMINAL = "terminal"
    ERROR = "error"


class WSClientOp(str, Enum):
    PING = "PING"
    PONG = "PONG"


class WSServerMsgType(str, Enum):
    CONNECTED = "CONNECTED"
    PING = "PING"
    PONG = "PONG"
