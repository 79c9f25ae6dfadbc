"""
Boundary parser for TheSports payloads.

The provider encodes status and score positionally and is inconsistent about
which fields are present. Everything that reads raw provider data goes through
this module; callers get either Parsed(value) or Malformed(reason) and never
index into provider arrays themselves.

Score tuple (detail_live `score`, push frames):

    [match_id, status_id, home[7], away[7], kickoff_ts, ...]

    index 4 is the kick-off time of the current period. It drives minute
    estimation only; write freshness of a push frame comes from the frame's own
    update_time/ts fields (see frame_update_time).

Score side:

    [regular, halftime, red_cards, yellow_cards, corners, overtime, penalty]

Incident, object form or positional form:

    [type, position, time, player_id, player_name, assist1_id, assist1_name,
     assist2_id, assist2_name, in_player_id, in_player_name, out_player_id,
     out_player_name, home_score, away_score, var_reason, var_result, reason_type]
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar, Union

from shared.errors import PayloadShapeError
from shared.models.domain import Incident, ProviderMatch, ScoreComponents
from shared.models.enums import MatchStatus
from shared.utils.logging import get_logger
from shared.utils.metrics import PAYLOAD_REJECTED

logger = get_logger(__name__)

T = TypeVar("T")

SCORE_SIDE_FIELDS = (
    "regular", "halftime", "red_cards", "yellow_cards", "corners", "overtime", "penalty",
)
INCIDENT_FIELDS = (
    "type", "position", "time", "player_id", "player_name", "assist1_id", "assist1_name",
    "assist2_id", "assist2_name", "in_player_id", "in_player_name", "out_player_id",
    "out_player_name", "home_score", "away_score", "var_reason", "var_result", "reason_type",
)
_INCIDENT_INT_FIELDS = frozenset({
    "type", "position", "time", "home_score", "away_score", "var_reason", "var_result", "reason_type",
})


@dataclass(frozen=True)
class Parsed(Generic[T]):
    value: T


@dataclass(frozen=True)
class Malformed:
    reason: str


ParseResult = Union[Parsed[T], Malformed]


@dataclass(frozen=True)
class ScoreTuple:
    match_id: str
    status: Optional[MatchStatus]
    home: ScoreComponents
    away: ScoreComponents
    kickoff_ts: Optional[int]
    home_raw: list[Any]
    away_raw: list[Any]


@dataclass(frozen=True)
class IncidentBatch:
    match_id: str
    incidents: list[Incident]


@dataclass(frozen=True)
class PushFrame:
    scores: list[ScoreTuple]
    incidents: list[IncidentBatch]
    update_time: Optional[int] = None

    @property
    def empty(self) -> bool:
        return not self.scores and not self.incidents


# ── Scalars ─────────────────────────────────────────────────────────────

def as_int(value: Any) -> Optional[int]:
    """Lenient int coercion; anything that is not clearly an integer becomes None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str):
        text = value.strip()
        if text.lstrip("-").isdigit():
            return int(text)
    return None


def as_str(value: Any) -> Optional[str]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        return value.strip() or None
    return None


def _require(condition: bool, reason: str) -> None:
    if not condition:
        raise PayloadShapeError(reason)


# ── Score ───────────────────────────────────────────────────────────────

def parse_score_side(raw: Any) -> Optional[ScoreComponents]:
    """Parse one side array; short arrays are padded, junk entries become None."""
    if not isinstance(raw, list):
        return None
    padded = list(raw[: len(SCORE_SIDE_FIELDS)]) + [None] * max(0, len(SCORE_SIDE_FIELDS) - len(raw))
    return ScoreComponents(**{name: as_int(v) for name, v in zip(SCORE_SIDE_FIELDS, padded)})


def parse_score_tuple(raw: Any) -> ParseResult[ScoreTuple]:
    if isinstance(raw, dict) and isinstance(raw.get("score"), list):
        raw = raw["score"]
    # Some frames wrap the tuple once more: {"score": [[...]]}
    if isinstance(raw, list) and len(raw) == 1 and isinstance(raw[0], list):
        raw = raw[0]
    try:
        _require(isinstance(raw, list), "score tuple is not an array")
        _require(len(raw) >= 4, f"score tuple too short ({len(raw)})")
        match_id = as_str(raw[0])
        _require(match_id is not None, "score tuple has no match id")
        _require(as_int(raw[1]) is not None, "score tuple status is not an integer")
        home = parse_score_side(raw[2])
        away = parse_score_side(raw[3])
        _require(home is not None and away is not None, "score sides are not arrays")
    except PayloadShapeError as exc:
        return _malformed("score_tuple", str(exc))
    return Parsed(ScoreTuple(
        match_id=match_id,
        status=MatchStatus.coerce(as_int(raw[1])),
        home=home,
        away=away,
        kickoff_ts=as_int(raw[4]) if len(raw) > 4 else None,
        home_raw=list(raw[2]),
        away_raw=list(raw[3]),
    ))


# ── Incidents ───────────────────────────────────────────────────────────

def parse_incident(raw: Any) -> ParseResult[Incident]:
    if isinstance(raw, list):
        raw = dict(zip(INCIDENT_FIELDS, raw))
    if not isinstance(raw, dict):
        return _malformed("incident", "incident is neither object nor array")
    incident_type = as_int(raw.get("type"))
    if incident_type is None:
        return _malformed("incident", "incident has no type")
    fields: dict[str, Any] = {}
    for name in INCIDENT_FIELDS:
        value = raw.get(name)
        fields[name] = as_int(value) if name in _INCIDENT_INT_FIELDS else as_str(value)
    return Parsed(Incident(**fields))


def parse_incidents(raw: Any) -> list[Incident]:
    """Parse an incident list, dropping malformed entries."""
    if not isinstance(raw, list):
        return []
    incidents: list[Incident] = []
    for item in raw:
        result = parse_incident(item)
        if isinstance(result, Parsed):
            incidents.append(result.value)
    return incidents


# ── Match records (detail_live, diary) ──────────────────────────────────

def parse_match_record(raw: Any) -> ParseResult[ProviderMatch]:
    """Parse one detail_live or diary result record."""
    if not isinstance(raw, dict):
        return _malformed("match_record", "record is not an object")
    external_id = as_str(raw.get("id")) or as_str(raw.get("match_id"))
    if external_id is None:
        return _malformed("match_record", "record has no id")

    status: Optional[MatchStatus] = None
    home: Optional[ScoreComponents] = None
    away: Optional[ScoreComponents] = None
    home_raw: Optional[list[Any]] = None
    away_raw: Optional[list[Any]] = None
    kickoff_ts: Optional[int] = None

    if "score" in raw:
        score = parse_score_tuple(raw["score"])
        if isinstance(score, Parsed):
            status = score.value.status
            home, away = score.value.home, score.value.away
            home_raw, away_raw = score.value.home_raw, score.value.away_raw
            kickoff_ts = score.value.kickoff_ts
    if status is None:
        status = MatchStatus.coerce(as_int(raw.get("status_id", raw.get("status"))))
    if home is None and isinstance(raw.get("home_scores"), list):
        home, home_raw = parse_score_side(raw["home_scores"]), list(raw["home_scores"])
    if away is None and isinstance(raw.get("away_scores"), list):
        away, away_raw = parse_score_side(raw["away_scores"]), list(raw["away_scores"])

    minute = as_int(raw.get("minute"))
    if minute is None:
        minute = as_int(raw.get("match_minute"))
    if minute is not None and minute < 0:
        minute = None

    incidents_raw = raw.get("incidents")
    if incidents_raw is None:
        incidents_raw = raw.get("events")

    return Parsed(ProviderMatch(
        external_id=external_id,
        status=status,
        minute=minute,
        home=home,
        away=away,
        match_time=as_int(raw.get("match_time")),
        update_time=as_int(raw.get("update_time")),
        kickoff_ts=kickoff_ts if kickoff_ts and kickoff_ts > 0 else None,
        incidents=parse_incidents(incidents_raw),
        competition_id=as_str(raw.get("competition_id")),
        season_id=as_str(raw.get("season_id")),
        home_team_id=as_str(raw.get("home_team_id")),
        away_team_id=as_str(raw.get("away_team_id")),
        home_scores_raw=home_raw,
        away_scores_raw=away_raw,
    ))


def parse_results(body: Any) -> list[ProviderMatch]:
    """Parse a list response body (`results` or `result_list`), dropping malformed records."""
    if not isinstance(body, dict):
        return []
    records = body.get("results")
    if records is None:
        records = body.get("result_list")
    if isinstance(records, dict):
        # Some endpoints key results by match id
        records = list(records.values())
    if not isinstance(records, list):
        return []
    matches: list[ProviderMatch] = []
    for record in records:
        result = parse_match_record(record)
        if isinstance(result, Parsed):
            matches.append(result.value)
    return matches


# ── Push frames ─────────────────────────────────────────────────────────

_UPDATE_TIME_KEYS = ("update_time", "updateTime", "ut", "ts", "timestamp")
# Plausible unix seconds: 2000-01-01 .. 2100-01-01
_MIN_UNIX_S = 946_684_800
_MAX_UNIX_S = 4_102_444_800


def frame_update_time(raw: Any) -> Optional[int]:
    """
    Provider update time carried by a push frame, in unix seconds.

    Looks at the frame's own update_time/updateTime/ut/ts/timestamp fields and
    the same under `meta`; millisecond values are scaled down. Returns None when
    the frame carries no plausible time, so callers fall back to receipt time.
    """
    if not isinstance(raw, dict):
        return None
    meta = raw.get("meta") if isinstance(raw.get("meta"), dict) else {}
    candidates = [raw.get(key) for key in _UPDATE_TIME_KEYS]
    candidates += [meta.get("update_time"), meta.get("timestamp")]
    for candidate in candidates:
        value = as_int(candidate)
        if value is None:
            continue
        if value >= _MIN_UNIX_S * 1000:
            value //= 1000
        if _MIN_UNIX_S <= value < _MAX_UNIX_S:
            return value
    return None


def _incident_batch(raw: Any) -> Optional[IncidentBatch]:
    if isinstance(raw, dict) and isinstance(raw.get("incidents"), list):
        match_id = as_str(raw.get("id"))
        incidents = raw["incidents"]
    elif (
        isinstance(raw, list)
        and len(raw) >= 2
        and isinstance(raw[1], list)
        and (not raw[1] or isinstance(raw[1][0], (list, dict)))
    ):
        match_id = as_str(raw[0])
        incidents = raw[1]
    else:
        return None
    if match_id is None:
        return None
    return IncidentBatch(match_id=match_id, incidents=parse_incidents(incidents))


def parse_push_message(raw: Any) -> PushFrame:
    """
    Classify a push frame relayed from the provider's MQTT feed.

    A frame is a score tuple, an incident batch, an object carrying `score`
    and/or `incidents`, or a list of any of these. Anything else is ignored.
    """
    scores: list[ScoreTuple] = []
    batches: list[IncidentBatch] = []

    def visit(item: Any, depth: int) -> None:
        if depth > 2:
            return
        score = parse_score_tuple(item) if _looks_like_score(item) else None
        if isinstance(score, Parsed):
            scores.append(score.value)
            if isinstance(item, dict):
                batch = _incident_batch(item)
                if batch:
                    batches.append(batch)
            return
        batch = _incident_batch(item)
        if batch is not None:
            batches.append(batch)
            return
        if isinstance(item, list):
            for child in item:
                visit(child, depth + 1)

    visit(raw, 0)
    return PushFrame(scores=scores, incidents=batches, update_time=frame_update_time(raw))


def _looks_like_score(item: Any) -> bool:
    if isinstance(item, dict):
        return isinstance(item.get("score"), list)
    return (
        isinstance(item, list)
        and len(item) >= 4
        and not isinstance(item[0], list)
        and isinstance(item[2], list)
        and isinstance(item[3], list)
    )


# ── Minute ──────────────────────────────────────────────────────────────

def estimate_minute(
    status: Optional[MatchStatus], kickoff_ts: Optional[int], now: int
) -> Optional[int]:
    """Match minute from the current period's kick-off when the provider omits it."""
    if status == MatchStatus.HALF_TIME:
        return 45
    if kickoff_ts is None or kickoff_ts <= 0 or now < kickoff_ts:
        return None
    elapsed = (now - kickoff_ts) // 60 + 1
    if status == MatchStatus.FIRST_HALF:
        return min(elapsed, 45)
    if status == MatchStatus.SECOND_HALF:
        return max(45 + elapsed, 46)
    if status == MatchStatus.OVERTIME:
        return 90 + elapsed
    return None


def _malformed(kind: str, reason: str) -> Malformed:
    PAYLOAD_REJECTED.labels(kind=kind).inc()
    logger.debug("payload_malformed", kind=kind, reason=reason)
    return Malformed(reason)
