"""
Pydantic v2 domain models shared across the reconciler services.
These are the canonical internal representations, NOT ORM models.
"""
from __future__ import annotations

from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from shared.models.enums import FieldGroup, IncidentType, MatchStatus, RefreshStatus


# ── Base ────────────────────────────────────────────────────────────────
class DomainModel(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


# ── Score ───────────────────────────────────────────────────────────────
class ScoreComponents(DomainModel):
    """One side of the provider score array."""
    regular: Optional[int] = None
    halftime: Optional[int] = None
    red_cards: Optional[int] = None
    yellow_cards: Optional[int] = None
    corners: Optional[int] = None
    overtime: Optional[int] = None
    penalty: Optional[int] = None

    @property
    def display(self) -> Optional[int]:
        """
        Score shown to end users.

        Once extra time has been played the overtime component already contains
        the regular goals, so it replaces regular; shoot-out goals are added on top.
        """
        penalty = self.penalty or 0
        if self.overtime:
            return self.overtime + penalty
        if self.regular is None:
            return None
        return self.regular + penalty


class ScoreLine(DomainModel):
    home: Optional[int] = None
    away: Optional[int] = None

    def as_tuple(self) -> tuple[Optional[int], Optional[int]]:
        return (self.home, self.away)


class ScoreValue(DomainModel):
    """New value for the score field group."""
    home_display: Optional[int] = None
    away_display: Optional[int] = None
    home: Optional[ScoreComponents] = None
    away: Optional[ScoreComponents] = None
    home_raw: Optional[list[Any]] = None
    away_raw: Optional[list[Any]] = None

    @classmethod
    def from_components(
        cls,
        home: Optional[ScoreComponents],
        away: Optional[ScoreComponents],
        home_raw: Optional[list[Any]] = None,
        away_raw: Optional[list[Any]] = None,
    ) -> "ScoreValue":
        return cls(
            home_display=home.display if home else None,
            away_display=away.display if away else None,
            home=home,
            away=away,
            home_raw=home_raw,
            away_raw=away_raw,
        )

    @property
    def line(self) -> ScoreLine:
        return ScoreLine(home=self.home_display, away=self.away_display)


# Value accepted by a conditional write, per field group
FieldValue = Union[MatchStatus, int, None, ScoreValue]


# ── Incidents ───────────────────────────────────────────────────────────
class Incident(DomainModel):
    """A single timeline incident as delivered by the provider."""
    type: int
    position: Optional[int] = None
    time: Optional[int] = None
    player_id: Optional[str] = None
    player_name: Optional[str] = None
    assist1_id: Optional[str] = None
    assist1_name: Optional[str] = None
    assist2_id: Optional[str] = None
    assist2_name: Optional[str] = None
    in_player_id: Optional[str] = None
    in_player_name: Optional[str] = None
    out_player_id: Optional[str] = None
    out_player_name: Optional[str] = None
    home_score: Optional[int] = None
    away_score: Optional[int] = None
    var_reason: Optional[int] = None
    var_result: Optional[int] = None
    reason_type: Optional[int] = None

    @property
    def kind(self) -> Optional[IncidentType]:
        try:
            return IncidentType(self.type)
        except ValueError:
            return None

    @property
    def is_goal(self) -> bool:
        return self.kind is not None and self.kind.is_goal

    @property
    def is_card(self) -> bool:
        return self.kind is not None and self.kind.is_card

    @property
    def is_substitution(self) -> bool:
        return self.kind == IncidentType.SUBSTITUTION

    @property
    def is_goal_cancelled(self) -> bool:
        # VAR result 2: goal cancelled
        return self.var_result == 2


# ── Provider payload ────────────────────────────────────────────────────
class ProviderMatch(DomainModel):
    """Validated view of one provider match record."""
    external_id: str
    status: Optional[MatchStatus] = None
    minute: Optional[int] = None
    home: Optional[ScoreComponents] = None
    away: Optional[ScoreComponents] = None
    match_time: Optional[int] = None
    update_time: Optional[int] = None
    # Kick-off of the current period (score tuple index 4 in detail_live)
    kickoff_ts: Optional[int] = None
    incidents: list[Incident] = Field(default_factory=list)
    home_scores_raw: Optional[list[Any]] = None
    away_scores_raw: Optional[list[Any]] = None
    competition_id: Optional[str] = None
    season_id: Optional[str] = None
    home_team_id: Optional[str] = None
    away_team_id: Optional[str] = None

    @property
    def score(self) -> ScoreValue:
        return ScoreValue.from_components(
            self.home, self.away, self.home_scores_raw, self.away_scores_raw
        )

    @property
    def has_score(self) -> bool:
        return self.home is not None and self.away is not None


# ── Authoritative match row ─────────────────────────────────────────────
class MatchSnapshot(DomainModel):
    """One persisted match with per-field-group provenance."""
    external_id: str
    status_id: int = MatchStatus.NOT_STARTED.value
    status_source: Optional[str] = None
    status_timestamp: Optional[int] = None
    minute: Optional[int] = None
    minute_source: Optional[str] = None
    minute_timestamp: Optional[int] = None
    home_score_display: Optional[int] = None
    away_score_display: Optional[int] = None
    home_score_source: Optional[str] = None
    home_score_timestamp: Optional[int] = None
    away_score_source: Optional[str] = None
    away_score_timestamp: Optional[int] = None
    home_score_regular: Optional[int] = None
    home_score_overtime: Optional[int] = None
    home_score_penalties: Optional[int] = None
    away_score_regular: Optional[int] = None
    away_score_overtime: Optional[int] = None
    away_score_penalties: Optional[int] = None
    match_time: Optional[int] = None
    competition_id: Optional[str] = None
    season_id: Optional[str] = None
    home_team_id: Optional[str] = None
    away_team_id: Optional[str] = None
    lineup_synced_at: Optional[int] = None

    @property
    def status(self) -> Optional[MatchStatus]:
        return MatchStatus.coerce(self.status_id)

    @property
    def is_terminal(self) -> bool:
        return self.status_id == MatchStatus.FINISHED.value

    @property
    def score(self) -> ScoreLine:
        return ScoreLine(home=self.home_score_display, away=self.away_score_display)

    @property
    def score_timestamp(self) -> Optional[int]:
        stamps = [t for t in (self.home_score_timestamp, self.away_score_timestamp) if t is not None]
        return max(stamps) if stamps else None

    def stored_timestamp(self, group: FieldGroup) -> Optional[int]:
        if group == FieldGroup.STATUS:
            return self.status_timestamp
        if group == FieldGroup.MINUTE:
            return self.minute_timestamp
        return self.score_timestamp


# ── Refresh outcomes ────────────────────────────────────────────────────
class FieldChanges(DomainModel):
    status: bool = False
    minute: bool = False
    score: bool = False
    finished: bool = False
    events: list[str] = Field(default_factory=list)

    @property
    def any(self) -> bool:
        return self.status or self.minute or self.score


class RefreshOutcome(DomainModel):
    match_id: str
    status: RefreshStatus
    message: Optional[str] = None
    changes: Optional[FieldChanges] = None


class RefreshSummary(DomainModel):
    total: int = 0
    updated: int = 0
    finished: int = 0
    unchanged: int = 0
    not_found: int = 0
    errors: int = 0


class RefreshReport(DomainModel):
    """Structured result of a forced or scheduled refresh run."""
    ok: bool = True
    results: list[RefreshOutcome] = Field(default_factory=list)
    summary: RefreshSummary = Field(default_factory=RefreshSummary)

    @classmethod
    def from_outcomes(cls, outcomes: list[RefreshOutcome]) -> "RefreshReport":
        summary = RefreshSummary(total=len(outcomes))
        for outcome in outcomes:
            if outcome.status == RefreshStatus.UPDATED:
                summary.updated += 1
            elif outcome.status == RefreshStatus.FINISHED:
                summary.updated += 1
                summary.finished += 1
            elif outcome.status in (RefreshStatus.UNCHANGED, RefreshStatus.TERMINAL):
                summary.unchanged += 1
            elif outcome.status == RefreshStatus.NOT_FOUND:
                summary.not_found += 1
            elif outcome.status == RefreshStatus.ERROR:
                summary.errors += 1
        return cls(results=outcomes, summary=summary)

    def log_fields(self) -> dict[str, Any]:
        return self.summary.model_dump()


class DiarySyncReport(DomainModel):
    dates: list[str] = Field(default_factory=list)
    fetched: int = 0
    kept: int = 0
    upserted: int = 0
    failed: int = 0

    def log_fields(self) -> dict[str, Any]:
        return self.model_dump()


class PreSyncReport(DomainModel):
    candidates: int = 0
    synced: int = 0
    missing: int = 0
    failed: int = 0

    def log_fields(self) -> dict[str, Any]:
        return self.model_dump()


# ── Observability ───────────────────────────────────────────────────────
class LatencyStats(DomainModel):
    count: int = 0
    avg: float = 0.0
    p50: float = 0.0
    p95: float = 0.0
    p99: float = 0.0
    min: float = 0.0
    max: float = 0.0


class BroadcastHealth(DomainModel):
    active_connections: int
    total_connections: int
    total_disconnections: int
    messages_sent: int
    send_errors: int
    uptime_ms: int
    uptime_seconds: int


# ── Scheduler ───────────────────────────────────────────────────────────
class JobRun(DomainModel):
    """Outcome of one scheduled or on-demand job invocation."""
    job: str
    outcome: str
    started_at: int
    duration_ms: float = 0.0
    error: Optional[str] = None
    result: Optional[dict[str, Any]] = None
